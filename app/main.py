"""Entry point for the FastAPI-powered Entertainment Hub."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, Literal

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .config import FirebaseConfigError, settings
from .database import Database
from .models import (
    BulkRemoveRequest,
    ManualTimeUpdate,
    MediaType,
    PreferencesUpdate,
    UserProfile,
)
from .presets import STREAMING_SERVICES, THEMES
from .services.catalog import CatalogClient, CatalogFetchError
from .services.profile_store import ProfileStore
from .services.proxy import CatalogProxy
from .services.session import SessionManager, UserSession
from .utils import build_image_url

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI

IN_PROCESS_BASE_URL = "http://entertainment-hub"


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    upstream_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(20.0, connect=10.0))
    )
    if settings.catalog_proxy_url is not None:
        catalog_http_client = await exit_stack.enter_async_context(
            httpx.AsyncClient(timeout=httpx.Timeout(20.0, connect=10.0))
        )
        proxy_url = str(settings.catalog_proxy_url)
    else:
        # Route catalog calls through this app's own /api/tmdb endpoint.
        catalog_http_client = await exit_stack.enter_async_context(
            httpx.AsyncClient(
                transport=httpx.ASGITransport(app=fastapi_app),
                base_url=IN_PROCESS_BASE_URL,
            )
        )
        proxy_url = "/api/tmdb"

    database = Database(settings.database_url)
    await database.create_all()

    store = ProfileStore(database.session_factory)
    catalog = CatalogClient(catalog_http_client, proxy_url)
    sessions = SessionManager(settings, store, catalog)

    fastapi_app.state.catalog_proxy = CatalogProxy(settings, upstream_client)
    fastapi_app.state.profile_store = store
    fastapi_app.state.session_manager = sessions
    fastapi_app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await sessions.close_all()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Favorites, upcoming episodes and recommendations for movies and TV",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_catalog_proxy(app: FastAPI) -> CatalogProxy:
    proxy = getattr(app.state, "catalog_proxy", None)
    if not isinstance(proxy, CatalogProxy):
        raise RuntimeError("Catalog proxy not initialised")
    return proxy


def get_session_manager(app: FastAPI) -> SessionManager:
    manager = getattr(app.state, "session_manager", None)
    if not isinstance(manager, SessionManager):
        raise RuntimeError("Session manager not initialised")
    return manager


async def _read_json(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")
    return payload


def _validation_detail(exc: ValidationError) -> list[dict[str, Any]]:
    # Validator contexts may hold the raised exception, which is not JSON.
    return exc.errors(include_context=False, include_url=False)


def register_routes(fastapi_app: FastAPI) -> None:
    async def _session(user_id: str) -> UserSession:
        manager = get_session_manager(fastapi_app)
        try:
            return await manager.get(user_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/tmdb")
    async def catalog_proxy(endpoint: str | None = None) -> JSONResponse:
        result = await get_catalog_proxy(fastapi_app).forward(endpoint)
        return JSONResponse(result.body, status_code=result.status_code)

    @fastapi_app.get("/api/get-firebase-config")
    async def firebase_config() -> JSONResponse:
        try:
            payload = settings.firebase_client_config()
        except FirebaseConfigError as exc:
            logger.error("Firebase configuration incomplete: %s", exc.variable)
            return JSONResponse({"error": str(exc)}, status_code=500)
        return JSONResponse(payload)

    @fastapi_app.get("/api/presets")
    async def presets() -> dict[str, Any]:
        return {
            "themes": [theme.to_payload() for theme in THEMES],
            "streamingServices": [
                {
                    **service.to_payload(),
                    "logoUrl": build_image_url(
                        service.logo_path,
                        base_url=str(settings.image_base_url),
                        placeholder=str(settings.placeholder_image_url),
                        size="w92",
                    ),
                }
                for service in STREAMING_SERVICES
            ],
            "watchRegion": settings.watch_region,
        }

    @fastapi_app.get("/api/users/{user_id}/profile")
    async def read_profile(user_id: str) -> dict[str, Any]:
        session = await _session(user_id)
        return session.profile_document()

    @fastapi_app.put("/api/users/{user_id}/profile")
    async def replace_profile(user_id: str, request: Request) -> dict[str, Any]:
        payload = await _read_json(request)
        try:
            profile = UserProfile.model_validate(payload)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=_validation_detail(exc)) from exc
        session = await _session(user_id)
        return await session.replace_profile(profile)

    @fastapi_app.patch("/api/users/{user_id}/preferences")
    async def update_preferences(user_id: str, request: Request) -> dict[str, Any]:
        payload = await _read_json(request)
        try:
            update = PreferencesUpdate.model_validate(payload)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=_validation_detail(exc)) from exc
        session = await _session(user_id)
        try:
            session.update_preferences(update)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return session.profile_document()

    @fastapi_app.post("/api/users/{user_id}/favorites/toggle")
    async def toggle_favorite(user_id: str, request: Request) -> dict[str, Any]:
        payload = await _read_json(request)
        media_type = payload.pop("mediaType", None)
        if media_type not in (None, "movie", "tv"):
            raise HTTPException(status_code=400, detail="mediaType must be movie or tv")
        item = payload.get("item", payload)
        if not isinstance(item, dict):
            raise HTTPException(status_code=400, detail="Invalid catalog item")
        session = await _session(user_id)
        try:
            favorited = session.toggle_favorite(item, media_type=media_type)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"id": item.get("id"), "isFavorite": favorited}

    @fastapi_app.put("/api/users/{user_id}/favorites/{favorite_id}/manual-time")
    async def set_manual_time(
        user_id: str, favorite_id: int, request: Request
    ) -> dict[str, Any]:
        payload = await _read_json(request)
        try:
            update = ManualTimeUpdate.model_validate(payload)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=_validation_detail(exc)) from exc
        session = await _session(user_id)
        try:
            entry = session.set_manual_time(favorite_id, update.manual_time)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Favorite not found") from exc
        return entry.model_dump(mode="json", by_alias=True)

    @fastapi_app.post("/api/users/{user_id}/favorites/remove")
    async def remove_favorites(user_id: str, request: Request) -> dict[str, int]:
        payload = await _read_json(request)
        try:
            selection = BulkRemoveRequest.model_validate(payload)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=_validation_detail(exc)) from exc
        session = await _session(user_id)
        return {"removed": session.remove_favorites(selection)}

    @fastapi_app.post("/api/users/{user_id}/subscriptions/{service_id}/toggle")
    async def toggle_subscription(user_id: str, service_id: int) -> dict[str, Any]:
        session = await _session(user_id)
        subscribed = session.toggle_subscription(service_id)
        return {
            "serviceId": service_id,
            "subscribed": subscribed,
            "subscriptions": session.state.registry.subscriptions,
        }

    @fastapi_app.get("/api/users/{user_id}/views/{view}")
    async def render_view(
        user_id: str,
        view: str,
        query: str | None = None,
        layout: Literal["agenda", "calendar"] | None = None,
        year: int | None = None,
        month: int | None = None,
    ) -> dict[str, Any]:
        session = await _session(user_id)
        try:
            return await session.dispatch(
                view, query=query, layout=layout, year=year, month=month
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @fastapi_app.get("/api/users/{user_id}/schedule")
    async def schedule(
        user_id: str,
        layout: Literal["agenda", "calendar"] = "agenda",
        year: int | None = None,
        month: int | None = None,
    ) -> dict[str, Any]:
        session = await _session(user_id)
        try:
            return await session.dispatch(
                "schedule", layout=layout, year=year, month=month
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @fastapi_app.get("/api/users/{user_id}/recommendations")
    async def recommendations(user_id: str) -> dict[str, Any]:
        session = await _session(user_id)
        return await session.recommend()

    @fastapi_app.get("/api/users/{user_id}/media/{media_type}/{media_id}")
    async def media_details(
        user_id: str, media_type: MediaType, media_id: int
    ) -> dict[str, Any]:
        session = await _session(user_id)
        try:
            return await session.media_details(media_type, media_id)
        except CatalogFetchError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc

    @fastapi_app.delete("/api/users/{user_id}")
    async def delete_user(user_id: str) -> dict[str, str]:
        await get_session_manager(fastapi_app).delete_user(user_id)
        return {"status": "deleted"}


app = create_app()
