"""Tests for per-user sessions and the view dispatcher."""

from __future__ import annotations

import asyncio
from datetime import date
from typing import Any

import httpx

from app.config import Settings
from app.database import Database
from app.models import BulkRemoveRequest, PreferencesUpdate
from app.services.catalog import CatalogClient
from app.services.profile_store import ProfileStore
from app.services.session import SessionManager

TODAY = date(2024, 10, 5)

ROUTES: dict[str, Any] = {
    "tv/1?append_to_response=watch/providers": {
        "id": 1,
        "name": "Severance",
        "seasons": [{"season_number": 2, "air_date": "2025-01-17"}],
        "networks": [{"name": "Apple TV+", "logo_path": "/atv.png"}],
    },
    "tv/1/season/2": {
        "season_number": 2,
        "episodes": [
            {"season_number": 2, "episode_number": 1, "name": "Hello", "air_date": "2024-10-05"},
        ],
    },
    "trending/all/day": {"results": [{"id": 1, "name": "Severance", "poster_path": "/sev.jpg"}]},
    "movie/upcoming": {"results": [{"id": 77, "title": "Wicked", "poster_path": None}]},
    "search/multi?query=dune": {
        "results": [{"id": 438631, "title": "Dune", "media_type": "movie"}]
    },
    "tv/1?append_to_response=watch/providers,credits": {
        "id": 1,
        "name": "Severance",
        "poster_path": "/sev.jpg",
        "watch/providers": {
            "results": {
                "US": {
                    "flatrate": [
                        {"provider_id": 2, "provider_name": "Apple TV Plus"},
                        {"provider_id": 8, "provider_name": "Netflix"},
                    ]
                }
            }
        },
    },
}


def build_settings() -> Settings:
    return Settings(_env_file=None, TMDB_API_KEY="test-key", WATCH_REGION="US")


def run_with_manager(tmp_path, body, routes: dict[str, Any] | None = None) -> list[str]:
    """Run ``body(manager, store)`` against a mocked catalog; returns requested endpoints."""

    table = dict(ROUTES if routes is None else routes)
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        endpoint = request.url.params["endpoint"]
        requested.append(endpoint)
        value = table.get(endpoint)
        if value is None:
            return httpx.Response(404, json={"status_message": "Not found"})
        if isinstance(value, int):
            return httpx.Response(value, json={"error": "Failed to fetch data from TMDb."})
        return httpx.Response(200, json=value)

    async def runner() -> None:
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'hub.db'}")
        await database.create_all()
        store = ProfileStore(database.session_factory)
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="https://hub.example"
        ) as http_client:
            manager = SessionManager(
                build_settings(), store, CatalogClient(http_client), today=lambda: TODAY
            )
            try:
                await body(manager, store)
            finally:
                await manager.close_all()
        await database.dispose()

    asyncio.run(runner())
    return requested


def test_dashboard_renders_every_section(tmp_path) -> None:
    async def body(manager: SessionManager, store: ProfileStore) -> None:
        session = await manager.get("user-1")
        session.toggle_favorite({"id": 1, "name": "Severance", "media_type": "tv"})
        session.set_manual_time(1, "9pm")
        payload = await session.dispatch("dashboard")

        assert payload["view"] == "dashboard"
        assert payload["header"]["title"] == "Entertainment Hub"
        assert payload["errors"] == {}
        assert [item["label"] for item in payload["digest"]] == ["S2 E1 · Hello"]
        assert payload["digest"][0]["manualTime"] == "9pm"
        assert payload["digest"][0]["displayNetwork"]["logoUrl"] == (
            "https://image.tmdb.org/t/p/w92/atv.png"
        )
        assert payload["spotlight"]["focusIndex"] == 0
        assert payload["trending"][0]["isFavorite"] is True
        assert payload["trending"][0]["posterUrl"].endswith("/w342/sev.jpg")
        assert payload["upcomingMovies"][0]["posterUrl"].startswith("https://placehold.co/")
        assert payload["recommendations"] == {"hidden": True, "items": []}

    requested = run_with_manager(tmp_path, body)
    assert not any(endpoint.startswith("discover/") for endpoint in requested)


def test_failing_section_degrades_only_that_section(tmp_path) -> None:
    routes = dict(ROUTES)
    routes["trending/all/day"] = 500

    async def body(manager: SessionManager, store: ProfileStore) -> None:
        session = await manager.get("user-1")
        payload = await session.dispatch("dashboard")

        assert payload["errors"] == {"trending": "Failed to fetch data from TMDb."}
        assert payload["trending"] == []
        assert payload["upcomingMovies"][0]["id"] == 77

    run_with_manager(tmp_path, body, routes)


def test_favorites_view_fetches_nothing(tmp_path) -> None:
    async def body(manager: SessionManager, store: ProfileStore) -> None:
        session = await manager.get("user-1")
        session.toggle_favorite({"id": 5, "title": "Alien", "poster_path": "/alien.jpg"})
        payload = await session.dispatch("favorites")

        assert payload["shows"] == []
        assert payload["movies"][0]["title"] == "Alien"
        assert payload["movies"][0]["posterUrl"].endswith("/w342/alien.jpg")
        assert session.state.active_view == "favorites"

    requested = run_with_manager(tmp_path, body)
    assert requested == []


def test_search_results_flag_favorites(tmp_path) -> None:
    async def body(manager: SessionManager, store: ProfileStore) -> None:
        session = await manager.get("user-1")
        session.toggle_favorite({"id": 438631, "title": "Dune"})
        payload = await session.dispatch("search-results", query="dune")
        empty = await session.dispatch("search-results", query="   ")

        assert payload["results"][0]["isFavorite"] is True
        assert empty["results"] == []

    requested = run_with_manager(tmp_path, body)
    assert requested.count("search/multi?query=dune") == 1


def test_schedule_calendar_layout(tmp_path) -> None:
    async def body(manager: SessionManager, store: ProfileStore) -> None:
        session = await manager.get("user-1")
        session.toggle_favorite({"id": 1, "name": "Severance", "media_type": "tv"})
        payload = await session.dispatch("schedule", layout="calendar", year=2024, month=10)

        assert payload["layout"] == "calendar"
        assert payload["days"][4] == {"date": "2024-10-05", "shows": ["Severance"]}

        agenda = await session.dispatch("schedule", layout="agenda")
        assert agenda["items"][0]["isPast"] is False
        assert agenda["items"][0]["displayNetwork"]["logoUrl"].endswith("/w92/atv.png")

    run_with_manager(tmp_path, body)


def test_mutations_are_persisted_in_background(tmp_path) -> None:
    async def body(manager: SessionManager, store: ProfileStore) -> None:
        session = await manager.get("user-1")
        session.toggle_favorite({"id": 1, "name": "Severance", "media_type": "tv"})
        session.toggle_favorite({"id": 2, "title": "Dune"})
        session.toggle_subscription(8)
        session.update_preferences(PreferencesUpdate.model_validate({"theme": "horror"}))
        assert session.remove_favorites(BulkRemoveRequest(ids=[2])) == 1
        await session.wait_for_writes()

        stored = await store.load("user-1")
        assert stored is not None
        assert [entry.id for entry in stored.profile.favorites] == [1]
        assert stored.profile.subscriptions == [8]
        assert stored.profile.theme == "horror"
        assert session.loaded is True

    run_with_manager(tmp_path, body)


def test_media_details_include_subscribed_providers(tmp_path) -> None:
    async def body(manager: SessionManager, store: ProfileStore) -> None:
        session = await manager.get("user-1")
        session.toggle_subscription(8)
        payload = await session.media_details("tv", 1)

        assert payload["isFavorite"] is False
        assert payload["subscribedProviderIds"] == [8]
        assert payload["mediaType"] == "tv"

    run_with_manager(tmp_path, body)


def test_delete_user_drops_document_and_session(tmp_path) -> None:
    async def body(manager: SessionManager, store: ProfileStore) -> None:
        session = await manager.get("user-1")
        session.toggle_favorite({"id": 2, "title": "Dune"})
        await manager.delete_user("user-1")

        assert await store.load("user-1") is None
        fresh = await manager.get("user-1")
        assert fresh is not session
        assert fresh.state.registry.favorites == []

    run_with_manager(tmp_path, body)


def test_idle_sessions_are_evicted_on_next_request(tmp_path) -> None:
    async def runner() -> None:
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'hub.db'}")
        await database.create_all()
        store = ProfileStore(database.session_factory)
        now = [0.0]
        settings = Settings(
            _env_file=None, TMDB_API_KEY="test-key", SESSION_IDLE_SECONDS=60
        )
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(404, json={})),
            base_url="https://hub.example",
        ) as http_client:
            manager = SessionManager(
                settings,
                store,
                CatalogClient(http_client),
                today=lambda: TODAY,
                clock=lambda: now[0],
            )
            for index in range(200):
                await manager.get(f"user-{index}")
            assert len(manager._sessions) == 200

            now[0] = 30.0
            kept = await manager.get("user-0")
            now[0] = 61.0
            await manager.get("user-200")

            assert set(manager._sessions) == {"user-0", "user-200"}
            assert set(manager._locks) == {"user-0", "user-200"}
            assert set(store._listeners) == {"user-0", "user-200"}
            assert await manager.get("user-0") is kept

            await manager.close_all()
            assert manager._sessions == {}
            assert manager._locks == {}
            assert store._listeners == {}
        await database.dispose()

    asyncio.run(runner())
