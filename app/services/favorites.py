"""In-memory favorites and subscriptions owned by a single user session."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Literal, Mapping

from ..models import (
    MediaType,
    MovieFavorite,
    SCHEDULE_FILTERS,
    ScheduleFilter,
    ShowFavorite,
    UserProfile,
    favorite_from_catalog_item,
)
from ..presets import DEFAULT_THEME, THEME_KEYS, ThemeKey

ViewName = Literal["dashboard", "favorites", "schedule", "search-results"]
VIEW_NAMES: tuple[str, ...] = ("dashboard", "favorites", "schedule", "search-results")
ScheduleLayout = Literal["agenda", "calendar"]

Favorite = MovieFavorite | ShowFavorite


class FavoritesRegistry:
    """Ordered favorites plus the subscribed streaming-provider ids.

    Every mutation goes through this class so the one-entry-per-id rule is
    enforced in a single place.
    """

    def __init__(
        self,
        favorites: Iterable[Favorite] = (),
        subscriptions: Iterable[int] = (),
    ):
        self._favorites: list[Favorite] = []
        self._subscriptions: list[int] = []
        self.replace(favorites, subscriptions)

    def replace(self, favorites: Iterable[Favorite], subscriptions: Iterable[int]) -> None:
        """Swap in a freshly loaded document's collections."""

        unique: list[Favorite] = []
        seen: set[int] = set()
        for favorite in favorites:
            if favorite.id in seen:
                continue
            seen.add(favorite.id)
            unique.append(favorite.model_copy())
        services: list[int] = []
        for service_id in subscriptions:
            if service_id not in services:
                services.append(service_id)
        self._favorites = unique
        self._subscriptions = services

    @property
    def favorites(self) -> list[Favorite]:
        return list(self._favorites)

    @property
    def shows(self) -> list[ShowFavorite]:
        return [entry for entry in self._favorites if isinstance(entry, ShowFavorite)]

    @property
    def movies(self) -> list[MovieFavorite]:
        return [entry for entry in self._favorites if isinstance(entry, MovieFavorite)]

    @property
    def subscriptions(self) -> list[int]:
        return list(self._subscriptions)

    def is_favorite(self, favorite_id: int) -> bool:
        return any(entry.id == favorite_id for entry in self._favorites)

    def get(self, favorite_id: int) -> Favorite | None:
        for entry in self._favorites:
            if entry.id == favorite_id:
                return entry
        return None

    def toggle_favorite(
        self, item: Mapping[str, Any], *, media_type: MediaType | None = None
    ) -> bool:
        """Remove the entry with ``item['id']`` or append a new one.

        Returns ``True`` when the item is a favorite afterwards.
        """

        candidate = favorite_from_catalog_item(item, media_type=media_type)
        if self.is_favorite(candidate.id):
            self._favorites = [
                entry for entry in self._favorites if entry.id != candidate.id
            ]
            return False
        self._favorites.append(candidate)
        return True

    def toggle_subscription(self, service_id: int) -> bool:
        if service_id in self._subscriptions:
            self._subscriptions.remove(service_id)
            return False
        self._subscriptions.append(service_id)
        return True

    def set_manual_time(self, favorite_id: int, text: str | None) -> Favorite:
        for index, entry in enumerate(self._favorites):
            if entry.id == favorite_id:
                value = text.strip() if isinstance(text, str) else None
                updated = entry.model_copy(update={"manual_time": value or None})
                self._favorites[index] = updated
                return updated
        raise KeyError(f"Favorite {favorite_id} not found")

    def remove_kind(self, media_type: MediaType) -> int:
        """Delete every favorite of ``media_type``; returns how many were removed."""

        kept = [entry for entry in self._favorites if entry.media_type != media_type]
        removed = len(self._favorites) - len(kept)
        self._favorites = kept
        return removed

    def remove_ids(self, ids: Iterable[int]) -> int:
        selected = set(ids)
        kept = [entry for entry in self._favorites if entry.id not in selected]
        removed = len(self._favorites) - len(kept)
        self._favorites = kept
        return removed


@dataclass(slots=True)
class AppState:
    """Everything a session knows about its user, passed around explicitly."""

    registry: FavoritesRegistry = field(default_factory=FavoritesRegistry)
    user_name: str | None = None
    theme: ThemeKey = DEFAULT_THEME
    dashboard_schedule_filter: ScheduleFilter = "today"
    active_view: ViewName = "dashboard"
    schedule_layout: ScheduleLayout = "agenda"

    @classmethod
    def from_profile(cls, profile: UserProfile) -> "AppState":
        state = cls()
        state.apply_profile(profile)
        return state

    def apply_profile(self, profile: UserProfile) -> None:
        """Adopt a stored document; view selection is session-local and kept."""

        self.registry.replace(profile.favorites, profile.subscriptions)
        self.user_name = profile.user_name
        self.theme = profile.theme
        self.dashboard_schedule_filter = profile.dashboard_schedule_filter

    def to_profile(self) -> UserProfile:
        return UserProfile(
            user_name=self.user_name,
            subscriptions=self.registry.subscriptions,
            favorites=self.registry.favorites,
            theme=self.theme,
            dashboard_schedule_filter=self.dashboard_schedule_filter,
        )

    def set_user_name(self, name: str | None) -> None:
        cleaned = name.strip() if isinstance(name, str) else ""
        self.user_name = cleaned or None

    def set_theme(self, theme: str) -> None:
        if theme not in THEME_KEYS:
            raise ValueError(f"Unknown theme: {theme}")
        self.theme = theme  # type: ignore[assignment]

    def set_dashboard_filter(self, value: str) -> None:
        if value not in SCHEDULE_FILTERS:
            raise ValueError(f"Unknown schedule filter: {value}")
        self.dashboard_schedule_filter = value  # type: ignore[assignment]
