"""Pydantic models describing the persisted user document and inbound payloads."""

from __future__ import annotations

from datetime import date
from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from .presets import DEFAULT_THEME, THEME_KEYS, ThemeKey
from .utils import parse_catalog_date

MediaType = Literal["movie", "tv"]
ScheduleFilter = Literal["today", "week", "month"]
SCHEDULE_FILTERS: tuple[str, ...] = ("today", "week", "month")


class _FavoriteBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    poster_path: str | None = None
    manual_time: str | None = Field(default=None, alias="manualTime")

    @field_validator("manual_time", mode="before")
    @classmethod
    def _blank_time_is_unset(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class MovieFavorite(_FavoriteBase):
    """A favorited film."""

    media_type: Literal["movie"] = "movie"
    title: str = ""
    release_date: str | None = None

    @property
    def display_title(self) -> str:
        return self.title or f"Movie {self.id}"

    @property
    def catalog_date(self) -> date | None:
        return parse_catalog_date(self.release_date)


class ShowFavorite(_FavoriteBase):
    """A favorited TV series."""

    media_type: Literal["tv"] = "tv"
    name: str = ""
    first_air_date: str | None = None

    @property
    def display_title(self) -> str:
        return self.name or f"Show {self.id}"

    @property
    def catalog_date(self) -> date | None:
        return parse_catalog_date(self.first_air_date)


FavoriteEntry = Annotated[
    Union[MovieFavorite, ShowFavorite], Field(discriminator="media_type")
]


def favorite_from_catalog_item(
    item: Mapping[str, Any], *, media_type: MediaType | None = None
) -> MovieFavorite | ShowFavorite:
    """Build a favorite from a raw catalog result.

    An explicit ``media_type`` (argument or field) wins; otherwise a result
    carrying ``title`` is a movie and anything else is a show.
    """

    kind = media_type or item.get("media_type")
    if kind not in ("movie", "tv"):
        kind = "movie" if item.get("title") else "tv"

    try:
        favorite_id = int(item["id"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError("Catalog item must carry a numeric id") from exc

    if kind == "movie":
        return MovieFavorite(
            id=favorite_id,
            title=str(item.get("title") or item.get("name") or ""),
            poster_path=item.get("poster_path"),
            release_date=item.get("release_date") or None,
        )
    return ShowFavorite(
        id=favorite_id,
        name=str(item.get("name") or item.get("title") or ""),
        poster_path=item.get("poster_path"),
        first_air_date=item.get("first_air_date") or None,
    )


class UserProfile(BaseModel):
    """The per-user document, always written as a whole."""

    model_config = ConfigDict(populate_by_name=True)

    user_name: str | None = Field(default=None, alias="userName")
    subscriptions: list[int] = Field(default_factory=list)
    favorites: list[FavoriteEntry] = Field(default_factory=list)
    theme: ThemeKey = DEFAULT_THEME
    dashboard_schedule_filter: ScheduleFilter = Field(
        default="today", alias="dashboardScheduleFilter"
    )

    @field_validator("theme", mode="before")
    @classmethod
    def _fallback_theme(cls, value: object) -> object:
        if value not in THEME_KEYS:
            return DEFAULT_THEME
        return value

    @field_validator("dashboard_schedule_filter", mode="before")
    @classmethod
    def _fallback_filter(cls, value: object) -> object:
        if value not in SCHEDULE_FILTERS:
            return "today"
        return value

    @field_validator("subscriptions", mode="before")
    @classmethod
    def _unique_subscriptions(cls, value: object) -> object:
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            return value
        seen: list[int] = []
        for entry in value:
            service_id = int(entry)
            if service_id not in seen:
                seen.append(service_id)
        return seen

    @model_validator(mode="after")
    def _unique_favorites(self) -> "UserProfile":
        """Keep the first entry for any repeated id."""

        seen: set[int] = set()
        unique: list[MovieFavorite | ShowFavorite] = []
        for favorite in self.favorites:
            if favorite.id in seen:
                continue
            seen.add(favorite.id)
            unique.append(favorite)
        if len(unique) != len(self.favorites):
            self.favorites = unique
        return self

    def to_document(self) -> dict[str, Any]:
        """Return the JSON document stored for the user."""

        return self.model_dump(mode="json", by_alias=True)


class PreferencesUpdate(BaseModel):
    """Partial preference changes submitted from the settings screen."""

    user_name: str | None = Field(
        default=None, validation_alias=AliasChoices("userName", "user_name")
    )
    theme: ThemeKey | None = None
    dashboard_schedule_filter: ScheduleFilter | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "dashboardScheduleFilter", "dashboard_schedule_filter", "filter"
        ),
    )


class ManualTimeUpdate(BaseModel):
    manual_time: str | None = Field(
        default=None, validation_alias=AliasChoices("manualTime", "manual_time")
    )


class BulkRemoveRequest(BaseModel):
    """Either every favorite of one media type or an explicit id selection."""

    media_type: MediaType | None = Field(
        default=None, validation_alias=AliasChoices("mediaType", "media_type")
    )
    ids: list[int] | None = None

    @model_validator(mode="after")
    def _exactly_one_selector(self) -> "BulkRemoveRequest":
        if (self.media_type is None) == (self.ids is None):
            raise ValueError("Provide either mediaType or ids")
        return self
