"""Upcoming-episode aggregation for favorited shows."""

from __future__ import annotations

import asyncio
import logging
from calendar import monthrange
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Any, Literal

from ..models import ShowFavorite
from ..utils import (
    UNSCHEDULED_MINUTES,
    add_months,
    parse_catalog_date,
    parse_time_to_minutes,
)
from .catalog import CatalogClient, CatalogFetchError
from .favorites import FavoritesRegistry

logger = logging.getLogger(__name__)

DigestFilter = Literal["today", "week", "month"]


class ScheduleStatus(str, Enum):
    STALE = "stale"
    REFRESHING = "refreshing"


@dataclass(frozen=True, slots=True)
class DisplayNetwork:
    """Where an episode is shown: a subscribed provider or the broadcast network."""

    name: str
    logo_path: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {"name": self.name, "logoPath": self.logo_path}


@dataclass(frozen=True, slots=True)
class ScheduledEpisode:
    show_id: int
    show_name: str
    poster_path: str | None
    season_number: int
    episode_number: int
    episode_name: str
    air_date: date
    display_network: DisplayNetwork | None = None


@dataclass(frozen=True, slots=True)
class EpisodeRef:
    season_number: int
    episode_number: int
    episode_name: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "seasonNumber": self.season_number,
            "episodeNumber": self.episode_number,
            "episodeName": self.episode_name,
        }


@dataclass(frozen=True, slots=True)
class ScheduleItem:
    """All of one show's episodes airing on one day."""

    show_id: int
    show_name: str
    poster_path: str | None
    air_date: date
    episodes: tuple[EpisodeRef, ...]
    display_network: DisplayNetwork | None = None
    manual_time: str | None = None
    sort_minutes: int = UNSCHEDULED_MINUTES

    @property
    def label(self) -> str:
        if len(self.episodes) > 1:
            return f"{len(self.episodes)} episodes"
        episode = self.episodes[0]
        return f"S{episode.season_number} E{episode.episode_number} · {episode.episode_name}"

    def to_payload(self, *, today: date | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "showId": self.show_id,
            "showName": self.show_name,
            "posterPath": self.poster_path,
            "airDate": self.air_date.isoformat(),
            "label": self.label,
            "episodes": [episode.to_payload() for episode in self.episodes],
            "displayNetwork": (
                self.display_network.to_payload() if self.display_network else None
            ),
            "manualTime": self.manual_time,
        }
        if today is not None:
            payload["isPast"] = self.air_date < today
        return payload


@dataclass(frozen=True, slots=True)
class SpotlightEntry:
    media_type: Literal["movie", "tv"]
    id: int
    title: str
    poster_path: str | None
    day: date
    label: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "mediaType": self.media_type,
            "id": self.id,
            "title": self.title,
            "posterPath": self.poster_path,
            "date": self.day.isoformat(),
            "label": self.label,
        }


@dataclass(frozen=True, slots=True)
class Spotlight:
    entries: tuple[SpotlightEntry, ...] = ()
    focus_index: int | None = None

    @property
    def hidden(self) -> bool:
        return not self.entries

    def to_payload(self) -> dict[str, Any]:
        return {
            "hidden": self.hidden,
            "focusIndex": self.focus_index,
            "items": [entry.to_payload() for entry in self.entries],
        }


@dataclass(frozen=True, slots=True)
class CalendarDay:
    day: date
    shows: tuple[str, ...] = ()

    def to_payload(self) -> dict[str, Any]:
        return {"date": self.day.isoformat(), "shows": list(self.shows)}


@dataclass(frozen=True, slots=True)
class ScheduleSnapshot:
    """The published result of one refresh, replaced as a whole."""

    episodes: tuple[ScheduledEpisode, ...] = ()
    items: tuple[ScheduleItem, ...] = ()
    error: str | None = None
    generation: int = 0


def select_season(
    seasons: Sequence[Mapping[str, Any]], today: date
) -> Mapping[str, Any] | None:
    """Pick the single season to track for a show.

    The earliest season airing strictly after ``today`` wins. Otherwise the
    highest-numbered regular season (``season_number > 0``), and failing that
    the highest-numbered season of any kind. ``None`` only when there are no
    seasons at all.
    """

    candidates = [
        season
        for season in seasons
        if isinstance(season, Mapping) and isinstance(season.get("season_number"), int)
    ]
    if not candidates:
        return None

    upcoming = [
        (air_date, season)
        for season in candidates
        if (air_date := parse_catalog_date(season.get("air_date"))) is not None
        and air_date > today
    ]
    if upcoming:
        return min(upcoming, key=lambda pair: pair[0])[1]

    regular = [season for season in candidates if season["season_number"] > 0]
    pool = regular or candidates
    return max(pool, key=lambda season: season["season_number"])


def resolve_display_network(
    details: Mapping[str, Any],
    subscriptions: Iterable[int],
    region: str,
) -> DisplayNetwork | None:
    """Prefer a subscribed flat-rate provider in ``region`` over the network."""

    subscribed = set(subscriptions)
    providers = details.get("watch/providers") or {}
    regional = (providers.get("results") or {}).get(region) or {}
    for provider in regional.get("flatrate") or []:
        if provider.get("provider_id") in subscribed:
            return DisplayNetwork(
                name=str(provider.get("provider_name") or ""),
                logo_path=provider.get("logo_path"),
            )

    networks = details.get("networks") or []
    if networks:
        first = networks[0]
        return DisplayNetwork(name=str(first.get("name") or ""), logo_path=first.get("logo_path"))
    return None


def flatten_season(
    show: ShowFavorite,
    details: Mapping[str, Any],
    season: Mapping[str, Any],
    network: DisplayNetwork | None,
) -> list[ScheduledEpisode]:
    """Turn a season payload into episodes; undated episodes are dropped."""

    show_name = str(details.get("name") or show.display_title)
    poster_path = show.poster_path or details.get("poster_path")
    season_number = season.get("season_number")
    flattened: list[ScheduledEpisode] = []
    for episode in season.get("episodes") or []:
        if not isinstance(episode, Mapping):
            continue
        air_date = parse_catalog_date(episode.get("air_date"))
        if air_date is None:
            continue
        flattened.append(
            ScheduledEpisode(
                show_id=show.id,
                show_name=show_name,
                poster_path=poster_path,
                season_number=int(episode.get("season_number", season_number) or 0),
                episode_number=int(episode.get("episode_number") or 0),
                episode_name=str(episode.get("name") or ""),
                air_date=air_date,
                display_network=network,
            )
        )
    return flattened


def build_schedule_items(
    episodes: Iterable[ScheduledEpisode],
    manual_times: Mapping[int, str | None],
) -> list[ScheduleItem]:
    """Sort by day then the show's manual time, and merge per show and day."""

    def _minutes(episode: ScheduledEpisode) -> int:
        return parse_time_to_minutes(manual_times.get(episode.show_id))

    ordered = sorted(episodes, key=lambda episode: (episode.air_date, _minutes(episode)))

    groups: dict[tuple[int, date], list[ScheduledEpisode]] = {}
    for episode in ordered:
        groups.setdefault((episode.show_id, episode.air_date), []).append(episode)

    items: list[ScheduleItem] = []
    for (show_id, air_date), members in groups.items():
        first = members[0]
        items.append(
            ScheduleItem(
                show_id=show_id,
                show_name=first.show_name,
                poster_path=first.poster_path,
                air_date=air_date,
                episodes=tuple(
                    EpisodeRef(member.season_number, member.episode_number, member.episode_name)
                    for member in members
                ),
                display_network=first.display_network,
                manual_time=manual_times.get(show_id),
                sort_minutes=_minutes(first),
            )
        )
    return items


def digest_window(filter_name: DigestFilter, today: date) -> tuple[date, date]:
    if filter_name == "today":
        return today, today
    if filter_name == "week":
        return today, today + timedelta(days=6)
    if filter_name == "month":
        return today, add_months(today, 1)
    raise ValueError(f"Unknown schedule filter: {filter_name}")


class ScheduleEngine:
    """Builds and holds the upcoming schedule for one user's favorites.

    Each ``refresh`` takes a generation number and only the newest generation
    may publish, so overlapping refreshes resolve to the last one started.
    """

    def __init__(
        self,
        catalog: CatalogClient,
        registry: FavoritesRegistry,
        region: str = "US",
        *,
        today: Callable[[], date] = date.today,
        spotlight_window_days: int = 7,
    ):
        self._catalog = catalog
        self._registry = registry
        self._region = region
        self._today = today
        self._spotlight_window = timedelta(days=spotlight_window_days)
        self._snapshot = ScheduleSnapshot()
        self._generation = 0
        self.status = ScheduleStatus.STALE

    @property
    def snapshot(self) -> ScheduleSnapshot:
        return self._snapshot

    @property
    def error(self) -> str | None:
        return self._snapshot.error

    async def refresh(self) -> ScheduleSnapshot:
        # Read the registry before the first suspension point so a mutation
        # made just before this call is always included.
        shows = self._registry.shows
        subscriptions = frozenset(self._registry.subscriptions)
        manual_times = {show.id: show.manual_time for show in shows}
        today = self._today()

        self._generation += 1
        generation = self._generation
        self.status = ScheduleStatus.REFRESHING
        try:
            results = await asyncio.gather(
                *(self._collect_show(show, subscriptions, today) for show in shows),
                return_exceptions=True,
            )

            if generation != self._generation:
                logger.debug("Discarding superseded schedule refresh %s", generation)
                return self._snapshot

            episodes: list[ScheduledEpisode] = []
            failure: CatalogFetchError | None = None
            for show, result in zip(shows, results):
                if isinstance(result, CatalogFetchError):
                    logger.warning("Schedule fetch for show %s failed: %s", show.id, result)
                    failure = failure or result
                elif isinstance(result, BaseException):
                    raise result
                else:
                    episodes.extend(result)

            if failure is not None:
                snapshot = ScheduleSnapshot(
                    error=str(failure), generation=generation
                )
            else:
                snapshot = ScheduleSnapshot(
                    episodes=tuple(episodes),
                    items=tuple(build_schedule_items(episodes, manual_times)),
                    generation=generation,
                )
            self._snapshot = snapshot
            return snapshot
        finally:
            if generation == self._generation:
                self.status = ScheduleStatus.STALE

    async def _collect_show(
        self,
        show: ShowFavorite,
        subscriptions: frozenset[int],
        today: date,
    ) -> list[ScheduledEpisode]:
        details = await self._catalog.tv_details(show.id)
        season = select_season(details.get("seasons") or [], today)
        if season is None:
            return []
        season_payload = await self._catalog.tv_season(show.id, int(season["season_number"]))
        network = resolve_display_network(details, subscriptions, self._region)
        return flatten_season(show, details, season_payload, network)

    def agenda(self, today: date | None = None) -> list[dict[str, Any]]:
        """Every item, past ones included and flagged."""

        today = today or self._today()
        return [item.to_payload(today=today) for item in self._snapshot.items]

    def digest(self, filter_name: DigestFilter, today: date | None = None) -> list[ScheduleItem]:
        today = today or self._today()
        start, end = digest_window(filter_name, today)
        return [item for item in self._snapshot.items if start <= item.air_date <= end]

    def spotlight(self, today: date | None = None) -> Spotlight:
        today = today or self._today()
        window_start = today - self._spotlight_window
        window_end = today + self._spotlight_window

        candidates: list[SpotlightEntry] = []
        for movie in self._registry.movies:
            release = movie.catalog_date
            if release is None:
                continue
            candidates.append(
                SpotlightEntry("movie", movie.id, movie.display_title, movie.poster_path, release)
            )

        by_show: dict[int, list[ScheduleItem]] = {}
        for item in self._snapshot.items:
            by_show.setdefault(item.show_id, []).append(item)
        for show_items in by_show.values():
            upcoming = [item for item in show_items if item.air_date >= today]
            chosen = upcoming[0] if upcoming else show_items[-1]
            candidates.append(
                SpotlightEntry(
                    "tv",
                    chosen.show_id,
                    chosen.show_name,
                    chosen.poster_path,
                    chosen.air_date,
                    chosen.label,
                )
            )

        entries = sorted(
            (entry for entry in candidates if window_start <= entry.day <= window_end),
            key=lambda entry: entry.day,
        )
        if not entries:
            return Spotlight()
        focus = next(
            (index for index, entry in enumerate(entries) if entry.day >= today),
            len(entries) - 1,
        )
        return Spotlight(tuple(entries), focus)

    def calendar(self, year: int, month: int) -> list[CalendarDay]:
        """Distinct show names per day of the month."""

        if not 1 <= month <= 12:
            raise ValueError("month must be between 1 and 12")
        names_by_day: dict[date, list[str]] = {}
        for episode in self._snapshot.episodes:
            if episode.air_date.year != year or episode.air_date.month != month:
                continue
            names = names_by_day.setdefault(episode.air_date, [])
            if episode.show_name not in names:
                names.append(episode.show_name)

        days_in_month = monthrange(year, month)[1]
        return [
            CalendarDay(day, tuple(names_by_day.get(day, ())))
            for day in (date(year, month, number) for number in range(1, days_in_month + 1))
        ]
