"""Tests for the versioned profile store and single-writer sessions."""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError

from app.database import Database
from app.db_models import UserDocument
from app.models import ShowFavorite, UserProfile
from app.services.profile_store import ProfileSession, ProfileSnapshot, ProfileStore


def test_save_increments_version_and_load_returns_document(tmp_path) -> None:
    async def runner() -> None:
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
        await database.create_all()
        store = ProfileStore(database.session_factory)

        assert await store.load("user-1") is None
        first = await store.save("user-1", UserProfile(user_name="Sam"))
        second = await store.save(
            "user-1", UserProfile(user_name="Sam", subscriptions=[8]), writer_id="w1"
        )
        loaded = await store.load("user-1")

        assert (first.version, second.version) == (1, 2)
        assert loaded is not None
        assert loaded.version == 2
        assert loaded.writer_id == "w1"
        assert loaded.profile.subscriptions == [8]

        await store.delete("user-1")
        assert await store.load("user-1") is None
        await database.dispose()

    asyncio.run(runner())


def test_invalid_stored_payload_falls_back_to_defaults(tmp_path) -> None:
    async def runner() -> None:
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
        await database.create_all()
        store = ProfileStore(database.session_factory)
        await store.save("user-1", UserProfile())

        async with database.session() as session:
            record = await session.get(UserDocument, "user-1")
            record.payload = {"favorites": [{"media_type": "podcast", "id": 1}]}
            await session.commit()

        loaded = await store.load("user-1")
        assert loaded is not None
        assert loaded.profile == UserProfile()
        await database.dispose()

    asyncio.run(runner())


def test_session_creates_missing_document_and_loads_once(tmp_path) -> None:
    async def runner() -> None:
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
        await database.create_all()
        store = ProfileStore(database.session_factory)
        loads: list[UserProfile] = []
        updates: list[UserProfile] = []

        session = ProfileSession(
            store, "user-1", on_load=loads.append, on_update=updates.append
        )
        assert session.loaded is False
        await session.open()

        assert session.loaded is True
        assert loads == [UserProfile()]
        stored = await store.load("user-1")
        assert stored is not None and stored.version == 1

        # Our own write echoing back must not re-initialise or refresh.
        await session.write(UserProfile(user_name="Sam"))
        assert len(loads) == 1
        assert updates == []
        assert session.last_version == 2

        session.close()
        await database.dispose()

    asyncio.run(runner())


def test_session_applies_newer_foreign_writes_and_drops_stale_ones(tmp_path) -> None:
    async def runner() -> None:
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
        await database.create_all()
        store = ProfileStore(database.session_factory)
        updates: list[UserProfile] = []
        session = ProfileSession(
            store, "user-1", on_load=lambda profile: None, on_update=updates.append
        )
        await session.open()

        other = UserProfile(favorites=[ShowFavorite(id=1, name="Severance")])
        await store.save("user-1", other, writer_id="another-device")
        assert updates == [other]

        session._receive(ProfileSnapshot("user-1", UserProfile(), 1, "another-device"))
        assert updates == [other]
        assert session.loaded is True

        session.close()
        await store.save("user-1", UserProfile(), writer_id="another-device")
        assert updates == [other]
        await database.dispose()

    asyncio.run(runner())


def test_write_failures_are_logged_not_raised(tmp_path, caplog) -> None:
    async def runner() -> None:
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
        await database.create_all()
        store = ProfileStore(database.session_factory)
        session = ProfileSession(
            store, "user-1", on_load=lambda profile: None, on_update=lambda profile: None
        )
        await session.open()

        async def _failing_save(*args, **kwargs):
            raise SQLAlchemyError("database is locked")

        store.save = _failing_save  # type: ignore[method-assign]
        with caplog.at_level(logging.ERROR):
            result = await session.write(UserProfile(user_name="Sam"))

        assert result is None
        assert "database is locked" in caplog.text
        await database.dispose()

    asyncio.run(runner())
