"""Server-side catalog proxy that injects the secret API key."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from ..config import Settings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ProxyResponse:
    """Status and JSON body to relay back to the caller unchanged."""

    status_code: int
    body: Any


class CatalogProxy:
    """Forwards ``endpoint`` paths to the upstream catalog API."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    def build_upstream_url(self, endpoint: str) -> str:
        """Join the endpoint with the API key using ``?`` or ``&`` as needed."""

        api_key = self._settings.tmdb_api_key
        if not api_key:
            raise ValueError("TMDB API key is required to build upstream URLs")
        base = str(self._settings.tmdb_api_url).rstrip("/")
        path = endpoint.lstrip("/")
        separator = "&" if "?" in path else "?"
        return f"{base}/{path}{separator}api_key={quote(api_key, safe='')}"

    async def forward(self, endpoint: str | None) -> ProxyResponse:
        if not self._settings.tmdb_api_key:
            return ProxyResponse(500, {"error": "API key is not set on the server."})
        if not endpoint or not endpoint.strip():
            return ProxyResponse(400, {"error": "No API endpoint provided."})

        url = self.build_upstream_url(endpoint.strip())
        try:
            response = await self._client.get(url)
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            # The upstream URL carries the key, so only the endpoint is logged.
            logger.warning("Failed to fetch %s from TMDb: %s", endpoint, exc.__class__.__name__)
            return ProxyResponse(500, {"error": "Failed to fetch data from TMDb."})
        return ProxyResponse(response.status_code, body)
