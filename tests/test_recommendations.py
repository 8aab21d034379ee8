"""Tests for genre/keyword based recommendations."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from app.models import MovieFavorite, ShowFavorite
from app.services.catalog import CatalogClient
from app.services.recommendations import (
    RecommendationEngine,
    merge_candidates,
    tally_signals,
)


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


FAVORITES = [
    MovieFavorite(id=1, title="Alien"),
    MovieFavorite(id=2, title="The Thing"),
    ShowFavorite(id=3, name="Stranger Things"),
]

DETAILS = {
    "movie/1?append_to_response=keywords": {
        "genres": [{"id": 27}, {"id": 878}],
        "keywords": {"keywords": [{"id": 100}, {"id": 101}]},
    },
    "movie/2?append_to_response=keywords": {
        "genres": [{"id": 27}, {"id": 9648}],
        "keywords": {"keywords": [{"id": 100}, {"id": 102}]},
    },
    "tv/3?append_to_response=keywords": {
        "genres": [{"id": 878}, {"id": 18}],
        "keywords": {"results": [{"id": 100}, {"id": 103}]},
    },
}


def build_engine(
    handler_routes: dict[str, Any], requests: list[str]
) -> tuple[RecommendationEngine, httpx.AsyncClient]:
    def handler(request: httpx.Request) -> httpx.Response:
        endpoint = request.url.params["endpoint"]
        requests.append(endpoint)
        # Discovery routes are keyed without their query string.
        key = endpoint.split("?", 1)[0] if endpoint.startswith("discover/") else endpoint
        value = handler_routes.get(key)
        if value is None:
            return httpx.Response(404, json={"status_message": "missing"})
        if isinstance(value, int):
            return httpx.Response(value, json={"error": "boom"})
        return httpx.Response(200, json=value)

    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://hub.example"
    )
    return RecommendationEngine(CatalogClient(http_client), limit=20), http_client


def test_tally_signals_handles_movie_and_show_keyword_shapes() -> None:
    genres, keywords = tally_signals(DETAILS.values())

    assert genres == [27, 878]
    assert keywords[0] == 100
    assert set(keywords) == {100, 101, 102, 103}


def test_merge_candidates_filters_dedupes_and_sorts() -> None:
    batches = [
        [
            {"id": 1, "poster_path": "/fav.jpg", "popularity": 99},
            {"id": 5, "poster_path": "/a.jpg", "popularity": 10},
            {"id": 6, "poster_path": None, "popularity": 50},
        ],
        [
            {"id": 5, "poster_path": "/a.jpg", "popularity": 10},
            {"id": 7, "poster_path": "/b.jpg", "popularity": 30.5},
        ],
    ]

    merged = merge_candidates(batches, exclude_ids=[1], limit=20)

    assert [item["id"] for item in merged] == [7, 5]
    assert merge_candidates(batches, exclude_ids=[1], limit=1) == [merged[0]]


@pytest.mark.anyio("asyncio")
async def test_fewer_than_three_favorites_makes_no_requests() -> None:
    requests: list[str] = []
    engine, http_client = build_engine({}, requests)
    async with http_client:
        result = await engine.recommend(FAVORITES[:2])

    assert result.items == []
    assert result.hidden is True
    assert requests == []


@pytest.mark.anyio("asyncio")
async def test_recommendations_merge_both_discovery_queries() -> None:
    requests: list[str] = []
    routes: dict[str, Any] = dict(DETAILS)
    routes["discover/movie"] = {
        "results": [
            {"id": 1, "title": "Alien", "poster_path": "/alien.jpg", "popularity": 500},
            {"id": 20, "title": "Prey", "poster_path": "/prey.jpg", "popularity": 40},
        ]
    }
    routes["discover/tv"] = {
        "results": [
            {"id": 30, "name": "Dark", "poster_path": "/dark.jpg", "popularity": 60},
            {"id": 31, "name": "No Poster", "poster_path": None, "popularity": 90},
        ]
    }
    engine, http_client = build_engine(routes, requests)
    async with http_client:
        result = await engine.recommend(FAVORITES)

    assert [item["id"] for item in result.items] == [30, 20]
    assert result.items[0]["media_type"] == "tv"
    discover_calls = [endpoint for endpoint in requests if endpoint.startswith("discover/")]
    assert len(discover_calls) == 2
    assert "with_genres=27|878" in discover_calls[0]
    assert "sort_by=popularity.desc" in discover_calls[0]


@pytest.mark.anyio("asyncio")
async def test_one_failing_discovery_query_does_not_block_the_other() -> None:
    requests: list[str] = []
    routes: dict[str, Any] = dict(DETAILS)
    routes["discover/movie"] = 500
    routes["discover/tv"] = {
        "results": [{"id": 30, "name": "Dark", "poster_path": "/dark.jpg", "popularity": 60}]
    }
    engine, http_client = build_engine(routes, requests)
    async with http_client:
        result = await engine.recommend(FAVORITES)

    assert [item["id"] for item in result.items] == [30]
    assert result.hidden is False


@pytest.mark.anyio("asyncio")
async def test_both_queries_failing_hides_the_section() -> None:
    requests: list[str] = []
    routes: dict[str, Any] = dict(DETAILS)
    routes["discover/movie"] = 500
    routes["discover/tv"] = 502
    engine, http_client = build_engine(routes, requests)
    async with http_client:
        result = await engine.recommend(FAVORITES)

    assert result.items == []
    assert result.hidden is True


@pytest.mark.anyio("asyncio")
async def test_failed_detail_fetch_is_skipped() -> None:
    requests: list[str] = []
    routes: dict[str, Any] = {
        key: value for key, value in DETAILS.items() if not key.startswith("tv/3")
    }
    routes["discover/movie"] = {"results": []}
    routes["discover/tv"] = {"results": []}
    engine, http_client = build_engine(routes, requests)
    async with http_client:
        result = await engine.recommend(FAVORITES)

    assert result.items == []
    assert result.hidden is False
    assert "tv/3?append_to_response=keywords" in requests


@pytest.mark.anyio("asyncio")
async def test_no_genre_or_keyword_signals_skips_discovery() -> None:
    requests: list[str] = []
    routes: dict[str, Any] = {
        "discover/movie": {
            "results": [{"id": 99, "title": "Popular", "poster_path": "/p.jpg", "popularity": 900}]
        },
        "discover/tv": {"results": []},
    }
    engine, http_client = build_engine(routes, requests)
    async with http_client:
        result = await engine.recommend(FAVORITES)

    assert result.items == []
    assert result.hidden is True
    assert len(requests) == 3
    assert not any(endpoint.startswith("discover/") for endpoint in requests)


@pytest.mark.anyio("asyncio")
async def test_details_without_genres_or_keywords_hide_the_section() -> None:
    requests: list[str] = []
    routes: dict[str, Any] = {key: {"genres": [], "keywords": {}} for key in DETAILS}
    engine, http_client = build_engine(routes, requests)
    async with http_client:
        result = await engine.recommend(FAVORITES)

    assert result.hidden is True
    assert not any(endpoint.startswith("discover/") for endpoint in requests)
