"""Per-user sessions: owned state, persistence and the view dispatcher."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import date
from typing import Any, Awaitable, Callable, Mapping

from ..config import Settings
from ..models import BulkRemoveRequest, MediaType, PreferencesUpdate, UserProfile
from ..presets import theme_definition
from ..utils import build_image_url
from .catalog import CatalogClient, CatalogFetchError
from .favorites import VIEW_NAMES, AppState, Favorite, ScheduleLayout
from .profile_store import ProfileSession, ProfileStore
from .recommendations import RecommendationEngine, RecommendationResult
from .schedule import ScheduleEngine

logger = logging.getLogger(__name__)

# Which data each view needs before it can be rendered.
VIEW_FETCHES: dict[str, tuple[str, ...]] = {
    "dashboard": ("schedule", "trending", "upcoming", "recommendations"),
    "favorites": (),
    "schedule": ("schedule",),
    "search-results": ("search",),
}
SCHEDULE_VIEWS = frozenset({"dashboard", "schedule"})


class UserSession:
    """Everything one signed-in user is looking at.

    Registry mutations apply synchronously, then a write is queued in the
    background. Views are rendered through :meth:`dispatch`, which runs the
    fetches listed in ``VIEW_FETCHES`` and degrades per section on failure.
    """

    def __init__(
        self,
        user_id: str,
        settings: Settings,
        store: ProfileStore,
        catalog: CatalogClient,
        *,
        today: Callable[[], date] = date.today,
    ):
        self.user_id = user_id
        self.state = AppState()
        self._settings = settings
        self._catalog = catalog
        self._today = today
        self.profile = ProfileSession(
            store,
            user_id,
            on_load=self._handle_initial_load,
            on_update=self._handle_remote_update,
        )
        self.schedule = ScheduleEngine(
            catalog,
            self.state.registry,
            settings.watch_region,
            today=today,
            spotlight_window_days=settings.spotlight_window_days,
        )
        self.recommendations = RecommendationEngine(
            catalog, limit=settings.recommendation_limit
        )
        self._pending_writes: set[asyncio.Task[Any]] = set()
        self._refresh_jobs: set[asyncio.Task[Any]] = set()

    @property
    def loaded(self) -> bool:
        return self.profile.loaded

    async def open(self) -> None:
        await self.profile.open()

    async def close(self) -> None:
        self.profile.close()
        for job in list(self._refresh_jobs):
            job.cancel()
        await asyncio.gather(*self._refresh_jobs, return_exceptions=True)
        await self.wait_for_writes()

    async def wait_for_writes(self) -> None:
        """Block until every queued profile write has finished."""

        while self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    def profile_document(self) -> dict[str, Any]:
        return self.state.to_profile().to_document()

    def _handle_initial_load(self, profile: UserProfile) -> None:
        self.state.apply_profile(profile)
        logger.info(
            "Loaded profile for %s with %d favorites",
            self.user_id,
            len(profile.favorites),
        )

    def _handle_remote_update(self, profile: UserProfile) -> None:
        self.state.apply_profile(profile)
        self._request_schedule_refresh()

    def _persist(self) -> None:
        profile = self.state.to_profile()
        task = asyncio.create_task(self.profile.write(profile))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    def _request_schedule_refresh(self) -> None:
        if self.state.active_view not in SCHEDULE_VIEWS:
            return

        async def _runner() -> None:
            try:
                await self.schedule.refresh()
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception(
                    "Background schedule refresh for %s failed: %s", self.user_id, exc
                )

        job = asyncio.create_task(_runner())
        self._refresh_jobs.add(job)
        job.add_done_callback(self._refresh_jobs.discard)

    # Mutations

    def toggle_favorite(
        self, item: Mapping[str, Any], *, media_type: MediaType | None = None
    ) -> bool:
        favorited = self.state.registry.toggle_favorite(item, media_type=media_type)
        self._persist()
        self._request_schedule_refresh()
        return favorited

    def toggle_subscription(self, service_id: int) -> bool:
        subscribed = self.state.registry.toggle_subscription(service_id)
        self._persist()
        return subscribed

    def set_manual_time(self, favorite_id: int, text: str | None) -> Favorite:
        entry = self.state.registry.set_manual_time(favorite_id, text)
        self._persist()
        self._request_schedule_refresh()
        return entry

    def remove_favorites(self, request: BulkRemoveRequest) -> int:
        if request.media_type is not None:
            removed = self.state.registry.remove_kind(request.media_type)
        else:
            removed = self.state.registry.remove_ids(request.ids or [])
        self._persist()
        self._request_schedule_refresh()
        return removed

    def update_preferences(self, update: PreferencesUpdate) -> None:
        fields = update.model_fields_set
        if "user_name" in fields:
            self.state.set_user_name(update.user_name)
        if "theme" in fields and update.theme is not None:
            self.state.set_theme(update.theme)
        if "dashboard_schedule_filter" in fields and update.dashboard_schedule_filter:
            self.state.set_dashboard_filter(update.dashboard_schedule_filter)
        self._persist()

    async def replace_profile(self, profile: UserProfile) -> dict[str, Any]:
        """Overwrite the whole document and wait for the write to land."""

        self.state.apply_profile(profile)
        await self.wait_for_writes()
        await self.profile.write(self.state.to_profile())
        self._request_schedule_refresh()
        return self.profile_document()

    # Views

    async def dispatch(
        self,
        view: str,
        *,
        query: str | None = None,
        layout: ScheduleLayout | None = None,
        year: int | None = None,
        month: int | None = None,
    ) -> dict[str, Any]:
        if view not in VIEW_NAMES:
            raise ValueError(f"Unknown view: {view}")
        self.state.active_view = view  # type: ignore[assignment]
        if layout is not None:
            self.state.schedule_layout = layout

        results, errors = await self._run_fetches(VIEW_FETCHES[view], query=query)
        today = self._today()
        if view == "dashboard":
            return self._render_dashboard(results, errors, today)
        if view == "favorites":
            return self._render_favorites()
        if view == "schedule":
            return self._render_schedule(today, year=year, month=month)
        return self._render_search(query or "", results, errors)

    async def _run_fetches(
        self, fetches: tuple[str, ...], *, query: str | None
    ) -> tuple[dict[str, Any], dict[str, str]]:
        factories: dict[str, Callable[[], Awaitable[Any]]] = {
            "schedule": self.schedule.refresh,
            "trending": self._catalog.trending,
            "upcoming": self._catalog.upcoming_movies,
            "recommendations": lambda: self.recommendations.recommend(
                self.state.registry.favorites
            ),
            "search": lambda: self._search(query),
        }
        outcomes = await asyncio.gather(
            *(factories[name]() for name in fetches), return_exceptions=True
        )
        results: dict[str, Any] = {}
        errors: dict[str, str] = {}
        for name, outcome in zip(fetches, outcomes):
            if isinstance(outcome, CatalogFetchError):
                logger.warning("Section %s failed for %s: %s", name, self.user_id, outcome)
                errors[name] = str(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results[name] = outcome
        if "schedule" in fetches and self.schedule.error:
            errors["schedule"] = self.schedule.error
        return results, errors

    async def _search(self, query: str | None) -> list[dict[str, Any]]:
        if not query or not query.strip():
            return []
        return await self._catalog.search(query.strip())

    def _image_url(self, path: str | None, size: str = "w342") -> str:
        return build_image_url(
            path,
            base_url=str(self._settings.image_base_url),
            placeholder=str(self._settings.placeholder_image_url),
            size=size,  # type: ignore[arg-type]
        )

    def _logo_url(self, path: str | None) -> str | None:
        return self._image_url(path, "w92") if path else None

    def _schedule_payload(self, payload: dict[str, Any]) -> dict[str, Any]:
        network = payload.get("displayNetwork")
        if network is not None:
            network["logoUrl"] = self._logo_url(network.get("logoPath"))
        return payload

    def _decorate(self, item: Mapping[str, Any]) -> dict[str, Any]:
        payload = dict(item)
        payload["posterUrl"] = self._image_url(item.get("poster_path"))
        payload["isFavorite"] = self.state.registry.is_favorite(item.get("id"))
        return payload

    def _render_dashboard(
        self, results: Mapping[str, Any], errors: Mapping[str, str], today: date
    ) -> dict[str, Any]:
        recommendations: RecommendationResult = results.get(
            "recommendations", RecommendationResult(hidden=True)
        )
        return {
            "view": "dashboard",
            "header": theme_definition(self.state.theme).to_payload(),
            "userName": self.state.user_name,
            "scheduleFilter": self.state.dashboard_schedule_filter,
            "digest": [
                self._schedule_payload(item.to_payload())
                for item in self.schedule.digest(self.state.dashboard_schedule_filter, today)
            ],
            "spotlight": self.schedule.spotlight(today).to_payload(),
            "trending": [self._decorate(item) for item in results.get("trending", [])],
            "upcomingMovies": [
                self._decorate(item) for item in results.get("upcoming", [])
            ],
            "recommendations": {
                "hidden": recommendations.hidden,
                "items": [self._decorate(item) for item in recommendations.items],
            },
            "errors": dict(errors),
        }

    def _favorite_payload(self, entry: Favorite) -> dict[str, Any]:
        payload = entry.model_dump(mode="json", by_alias=True)
        payload["posterUrl"] = self._image_url(entry.poster_path)
        return payload

    def _render_favorites(self) -> dict[str, Any]:
        registry = self.state.registry
        return {
            "view": "favorites",
            "movies": [self._favorite_payload(entry) for entry in registry.movies],
            "shows": [self._favorite_payload(entry) for entry in registry.shows],
        }

    def _render_schedule(
        self, today: date, *, year: int | None, month: int | None
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "view": "schedule",
            "layout": self.state.schedule_layout,
            "error": self.schedule.error,
        }
        if self.state.schedule_layout == "calendar":
            year = year or today.year
            month = month or today.month
            payload.update(
                {
                    "year": year,
                    "month": month,
                    "days": [day.to_payload() for day in self.schedule.calendar(year, month)],
                }
            )
        else:
            payload["items"] = [
                self._schedule_payload(item) for item in self.schedule.agenda(today)
            ]
        return payload

    def _render_search(
        self, query: str, results: Mapping[str, Any], errors: Mapping[str, str]
    ) -> dict[str, Any]:
        return {
            "view": "search-results",
            "query": query,
            "results": [self._decorate(item) for item in results.get("search", [])],
            "errors": dict(errors),
        }

    # Detail and recommendations outside the dashboard

    async def media_details(self, media_type: MediaType, media_id: int) -> dict[str, Any]:
        details = await self._catalog.media_details(
            media_type, media_id, append="watch/providers,credits"
        )
        subscriptions = set(self.state.registry.subscriptions)
        providers = (details.get("watch/providers") or {}).get("results") or {}
        regional = providers.get(self._settings.watch_region) or {}
        payload = self._decorate(details)
        payload["mediaType"] = media_type
        payload["subscribedProviderIds"] = [
            provider.get("provider_id")
            for provider in regional.get("flatrate") or []
            if provider.get("provider_id") in subscriptions
        ]
        return payload

    async def recommend(self) -> dict[str, Any]:
        result = await self.recommendations.recommend(self.state.registry.favorites)
        return {
            "hidden": result.hidden,
            "items": [self._decorate(item) for item in result.items],
        }


class SessionManager:
    """Keeps one open :class:`UserSession` per active user id.

    Sessions not requested for ``SESSION_IDLE_SECONDS`` are closed the next
    time another user's session is requested.
    """

    def __init__(
        self,
        settings: Settings,
        store: ProfileStore,
        catalog: CatalogClient,
        *,
        today: Callable[[], date] = date.today,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._settings = settings
        self._store = store
        self._catalog = catalog
        self._today = today
        self._clock = clock
        self._idle_seconds = settings.session_idle_seconds
        self._sessions: dict[str, UserSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._last_seen: dict[str, float] = {}

    async def get(self, user_id: str) -> UserSession:
        user_id = user_id.strip()
        if not user_id:
            raise ValueError("User id must not be empty")
        await self.evict_idle(keep=user_id)
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        async with lock:
            session = self._sessions.get(user_id)
            if session is None:
                session = UserSession(
                    user_id, self._settings, self._store, self._catalog, today=self._today
                )
                await session.open()
                self._sessions[user_id] = session
            self._last_seen[user_id] = self._clock()
            return session

    async def evict_idle(self, *, keep: str | None = None) -> list[str]:
        """Close sessions idle past the configured limit; returns their ids."""

        cutoff = self._clock() - self._idle_seconds
        idle = [
            user_id
            for user_id, seen in self._last_seen.items()
            if seen <= cutoff and user_id != keep and not self._is_busy(user_id)
        ]
        for user_id in idle:
            logger.info("Closing idle session for %s", user_id)
            await self.drop(user_id)
        return idle

    def _is_busy(self, user_id: str) -> bool:
        lock = self._locks.get(user_id)
        return lock is not None and lock.locked()

    async def drop(self, user_id: str) -> None:
        session = self._sessions.pop(user_id, None)
        self._last_seen.pop(user_id, None)
        if not self._is_busy(user_id):
            self._locks.pop(user_id, None)
        if session is not None:
            await session.close()

    async def delete_user(self, user_id: str) -> None:
        """Close the user's session and remove their stored document."""

        await self.drop(user_id)
        await self._store.delete(user_id)

    async def close_all(self) -> None:
        for user_id in list(self._sessions):
            await self.drop(user_id)
