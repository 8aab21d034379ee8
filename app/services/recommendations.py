"""Genre and keyword based recommendations drawn from the user's favorites."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

from .catalog import CatalogClient, CatalogFetchError, MediaKind
from .favorites import Favorite

logger = logging.getLogger(__name__)

MIN_FAVORITES = 3
TOP_GENRES = 2
TOP_KEYWORDS = 5


@dataclass(slots=True)
class RecommendationResult:
    items: list[dict[str, Any]] = field(default_factory=list)
    hidden: bool = False


def _keyword_entries(details: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    # Movies nest keywords under "keywords", shows under "results".
    block = details.get("keywords") or {}
    if not isinstance(block, Mapping):
        return []
    entries = block.get("keywords")
    if entries is None:
        entries = block.get("results")
    return [entry for entry in entries or [] if isinstance(entry, Mapping)]


def tally_signals(
    details: Iterable[Mapping[str, Any]],
) -> tuple[list[int], list[int]]:
    """Return the most frequent genre ids and keyword ids across ``details``.

    Ties keep the order in which ids were first seen.
    """

    genres: Counter[int] = Counter()
    keywords: Counter[int] = Counter()
    for entry in details:
        for genre in entry.get("genres") or []:
            if isinstance(genre, Mapping) and isinstance(genre.get("id"), int):
                genres[genre["id"]] += 1
        for keyword in _keyword_entries(entry):
            if isinstance(keyword.get("id"), int):
                keywords[keyword["id"]] += 1
    return (
        [genre_id for genre_id, _ in genres.most_common(TOP_GENRES)],
        [keyword_id for keyword_id, _ in keywords.most_common(TOP_KEYWORDS)],
    )


def merge_candidates(
    batches: Sequence[Sequence[Mapping[str, Any]]],
    exclude_ids: Iterable[int],
    limit: int,
) -> list[dict[str, Any]]:
    """Drop favorites and poster-less items, dedupe, order by popularity."""

    excluded = set(exclude_ids)
    seen: set[int] = set()
    merged: list[dict[str, Any]] = []
    for batch in batches:
        for item in batch:
            item_id = item.get("id")
            if item_id in excluded or item_id in seen or not item.get("poster_path"):
                continue
            seen.add(item_id)
            merged.append(dict(item))
    merged.sort(key=lambda item: float(item.get("popularity") or 0), reverse=True)
    return merged[:limit]


class RecommendationEngine:
    def __init__(self, catalog: CatalogClient, *, limit: int = 20):
        self._catalog = catalog
        self._limit = limit

    async def recommend(self, favorites: Sequence[Favorite]) -> RecommendationResult:
        if len(favorites) < MIN_FAVORITES:
            return RecommendationResult(hidden=True)

        favorites = list(favorites)
        responses = await asyncio.gather(
            *(
                self._catalog.media_details(entry.media_type, entry.id, append="keywords")
                for entry in favorites
            ),
            return_exceptions=True,
        )
        details: list[Mapping[str, Any]] = []
        for entry, response in zip(favorites, responses):
            if isinstance(response, CatalogFetchError):
                logger.warning(
                    "Skipping %s %s for recommendations: %s",
                    entry.media_type,
                    entry.id,
                    response,
                )
                continue
            if isinstance(response, BaseException):
                raise response
            details.append(response)

        genre_ids, keyword_ids = tally_signals(details)
        if not genre_ids and not keyword_ids:
            logger.info("No genre or keyword signals in %d favorites", len(favorites))
            return RecommendationResult(hidden=True)

        params: dict[str, str] = {"sort_by": "popularity.desc"}
        if genre_ids:
            params["with_genres"] = "|".join(str(value) for value in genre_ids)
        if keyword_ids:
            params["with_keywords"] = "|".join(str(value) for value in keyword_ids)

        movie_results, show_results = await asyncio.gather(
            self._discover("movie", params),
            self._discover("tv", params),
        )
        if movie_results is None and show_results is None:
            return RecommendationResult(hidden=True)

        batches = [
            [{**item, "media_type": "movie"} for item in movie_results or []],
            [{**item, "media_type": "tv"} for item in show_results or []],
        ]
        items = merge_candidates(batches, (entry.id for entry in favorites), self._limit)
        return RecommendationResult(items=items)

    async def _discover(
        self, kind: MediaKind, params: Mapping[str, str]
    ) -> list[dict[str, Any]] | None:
        """Run one discovery query; ``None`` marks a failed query."""

        try:
            return await self._catalog.discover(kind, params)
        except CatalogFetchError as exc:
            logger.warning("Discovery query for %s failed: %s", kind, exc)
            return None
