"""Client for the movie/TV catalog, reached through the credential proxy."""

from __future__ import annotations

import logging
from typing import Any, Literal, Mapping
from urllib.parse import urlencode

import httpx

logger = logging.getLogger(__name__)

MediaKind = Literal["movie", "tv"]


class CatalogFetchError(Exception):
    """Network failure, non-2xx status or malformed body from the catalog."""

    def __init__(
        self,
        message: str | None = None,
        *,
        endpoint: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message or "Could not load data from the catalog.")
        self.message = message
        self.endpoint = endpoint
        self.status_code = status_code


class CatalogClient:
    """Issues read-only catalog requests via ``GET <proxy>?endpoint=<path>``."""

    def __init__(
        self, http_client: httpx.AsyncClient, proxy_url: str = "/api/tmdb"
    ):
        self._client = http_client
        self._proxy_url = proxy_url

    async def fetch(self, endpoint: str) -> Any:
        """Return the parsed JSON body for a catalog path such as ``tv/1399``."""

        endpoint = endpoint.lstrip("/")
        try:
            response = await self._client.get(
                self._proxy_url, params={"endpoint": endpoint}
            )
        except httpx.HTTPError as exc:
            logger.warning("Catalog request for %s failed: %s", endpoint, exc)
            raise CatalogFetchError(
                "Network error while contacting the catalog.", endpoint=endpoint
            ) from exc

        if not response.is_success:
            message = self._extract_error_message(response)
            logger.warning(
                "Catalog request for %s returned %s: %s",
                endpoint,
                response.status_code,
                message,
            )
            raise CatalogFetchError(
                message, endpoint=endpoint, status_code=response.status_code
            )

        try:
            return response.json()
        except ValueError as exc:
            raise CatalogFetchError(
                "Catalog returned a malformed response.",
                endpoint=endpoint,
                status_code=response.status_code,
            ) from exc

    async def tv_details(self, show_id: int) -> dict[str, Any]:
        """Show details including seasons, networks and watch providers."""

        return await self._fetch_object(f"tv/{show_id}?append_to_response=watch/providers")

    async def tv_season(self, show_id: int, season_number: int) -> dict[str, Any]:
        return await self._fetch_object(f"tv/{show_id}/season/{season_number}")

    async def media_details(
        self, kind: MediaKind, media_id: int, *, append: str | None = None
    ) -> dict[str, Any]:
        endpoint = f"{kind}/{media_id}"
        if append:
            endpoint = f"{endpoint}?append_to_response={append}"
        return await self._fetch_object(endpoint)

    async def discover(
        self, kind: MediaKind, params: Mapping[str, str | int]
    ) -> list[dict[str, Any]]:
        query = urlencode(params, safe="|,.")
        return await self._fetch_results(f"discover/{kind}?{query}")

    async def trending(self) -> list[dict[str, Any]]:
        return await self._fetch_results("trending/all/day")

    async def upcoming_movies(self) -> list[dict[str, Any]]:
        return await self._fetch_results("movie/upcoming")

    async def search(self, query: str) -> list[dict[str, Any]]:
        return await self._fetch_results(f"search/multi?{urlencode({'query': query})}")

    async def _fetch_object(self, endpoint: str) -> dict[str, Any]:
        payload = await self.fetch(endpoint)
        if not isinstance(payload, dict):
            raise CatalogFetchError(
                "Catalog returned an unexpected payload.", endpoint=endpoint
            )
        return payload

    async def _fetch_results(self, endpoint: str) -> list[dict[str, Any]]:
        payload = await self._fetch_object(endpoint)
        results = payload.get("results") or []
        if not isinstance(results, list):
            return []
        return [entry for entry in results if isinstance(entry, dict)]

    @staticmethod
    def _extract_error_message(response: httpx.Response) -> str | None:
        try:
            data = response.json()
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None
        for key in ("error", "status_message", "message"):
            value = data.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None
