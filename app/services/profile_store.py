"""Replace-on-write user documents with in-process live updates."""

from __future__ import annotations

import asyncio
import inspect
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable

from pydantic import ValidationError
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import UserDocument
from ..models import UserProfile

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProfileSnapshot:
    """A versioned copy of a user's document as it was stored."""

    user_id: str
    profile: UserProfile
    version: int
    writer_id: str | None = None


SnapshotListener = Callable[[ProfileSnapshot], Awaitable[None] | None]


class ProfileStore:
    """Stores one JSON document per user and pushes every write to subscribers."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._listeners: dict[str, list[SnapshotListener]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def load(self, user_id: str) -> ProfileSnapshot | None:
        async with self._session_factory() as session:
            record = await session.get(UserDocument, user_id)
            if record is None:
                return None
            payload = record.payload
            version = record.version or 0
            writer_id = record.written_by
        try:
            profile = UserProfile.model_validate(payload or {})
        except ValidationError as exc:
            logger.warning("Stored profile for %s is invalid, using defaults: %s", user_id, exc)
            profile = UserProfile()
        return ProfileSnapshot(user_id, profile, version, writer_id)

    async def save(
        self,
        user_id: str,
        profile: UserProfile,
        *,
        writer_id: str | None = None,
    ) -> ProfileSnapshot:
        """Overwrite the whole document and publish the resulting snapshot."""

        lock = self._locks.setdefault(user_id, asyncio.Lock())
        async with lock:
            now = datetime.utcnow()
            document = profile.to_document()
            async with self._session_factory() as session:
                record = await session.get(UserDocument, user_id)
                if record is None:
                    record = UserDocument(
                        user_id=user_id,
                        payload=document,
                        version=1,
                        written_by=writer_id,
                        created_at=now,
                        updated_at=now,
                    )
                    session.add(record)
                else:
                    record.payload = document
                    record.version = (record.version or 0) + 1
                    record.written_by = writer_id
                    record.updated_at = now
                await session.commit()
                version = record.version
            snapshot = ProfileSnapshot(
                user_id, profile.model_copy(deep=True), version, writer_id
            )
        await self._publish(snapshot)
        return snapshot

    async def delete(self, user_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                delete(UserDocument).where(UserDocument.user_id == user_id)
            )
            await session.commit()

    def subscribe(self, user_id: str, listener: SnapshotListener) -> Callable[[], None]:
        """Register ``listener`` for writes to ``user_id``; returns an unsubscribe."""

        listeners = self._listeners.setdefault(user_id, [])
        listeners.append(listener)

        def _unsubscribe() -> None:
            current = self._listeners.get(user_id)
            if current and listener in current:
                current.remove(listener)
                if not current:
                    self._listeners.pop(user_id, None)

        return _unsubscribe

    async def _publish(self, snapshot: ProfileSnapshot) -> None:
        for listener in list(self._listeners.get(snapshot.user_id, ())):
            try:
                result = listener(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # pragma: no cover - listener safety net
                logger.exception("Profile listener for %s failed", snapshot.user_id)


ProfileHandler = Callable[[UserProfile], None]


class ProfileSession:
    """A single writer's view of the store.

    Snapshots this session wrote itself, and snapshots no newer than the last
    one it has seen, are dropped so a write echoing back never re-initialises
    the caller. ``loaded`` flips from False to True exactly once.
    """

    def __init__(
        self,
        store: ProfileStore,
        user_id: str,
        *,
        on_load: ProfileHandler,
        on_update: ProfileHandler,
    ):
        self.id = secrets.token_hex(8)
        self.user_id = user_id
        self.loaded = False
        self._store = store
        self._on_load = on_load
        self._on_update = on_update
        self._last_version = 0
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def last_version(self) -> int:
        return self._last_version

    async def open(self) -> None:
        """Subscribe, then load the document, creating it with defaults if missing."""

        if self._unsubscribe is None:
            self._unsubscribe = self._store.subscribe(self.user_id, self._receive)
        snapshot = await self._store.load(self.user_id)
        if snapshot is None:
            snapshot = await self._store.save(
                self.user_id, UserProfile(), writer_id=self.id
            )
        self._accept(snapshot)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def write(self, profile: UserProfile) -> ProfileSnapshot | None:
        """Persist ``profile``; failures are logged and never raised."""

        try:
            snapshot = await self._store.save(self.user_id, profile, writer_id=self.id)
        except SQLAlchemyError as exc:
            logger.error("Error writing profile for %s: %s", self.user_id, exc)
            return None
        self._last_version = max(self._last_version, snapshot.version)
        return snapshot

    def _receive(self, snapshot: ProfileSnapshot) -> None:
        if snapshot.writer_id == self.id:
            self._last_version = max(self._last_version, snapshot.version)
            return
        if snapshot.version <= self._last_version:
            logger.debug(
                "Discarding stale profile snapshot v%s for %s (have v%s)",
                snapshot.version,
                self.user_id,
                self._last_version,
            )
            return
        self._accept(snapshot)

    def _accept(self, snapshot: ProfileSnapshot) -> None:
        self._last_version = max(self._last_version, snapshot.version)
        if not self.loaded:
            self.loaded = True
            self._on_load(snapshot.profile)
        else:
            self._on_update(snapshot.profile)
