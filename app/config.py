"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


FIREBASE_CONFIG_FIELDS: tuple[tuple[str, str, str], ...] = (
    ("apiKey", "firebase_api_key", "FIREBASE_API_KEY"),
    ("authDomain", "firebase_auth_domain", "FIREBASE_AUTH_DOMAIN"),
    ("projectId", "firebase_project_id", "FIREBASE_PROJECT_ID"),
    ("storageBucket", "firebase_storage_bucket", "FIREBASE_STORAGE_BUCKET"),
    (
        "messagingSenderId",
        "firebase_messaging_sender_id",
        "FIREBASE_MESSAGING_SENDER_ID",
    ),
    ("appId", "firebase_app_id", "FIREBASE_APP_ID"),
)


class FirebaseConfigError(RuntimeError):
    """Raised when a server-side client credential has not been configured."""

    def __init__(self, variable: str):
        super().__init__(f"Missing required environment variable: {variable}")
        self.variable = variable


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Entertainment Hub", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    catalog_proxy_url: HttpUrl | None = Field(
        default=None, alias="CATALOG_PROXY_URL"
    )
    watch_region: str = Field(default="US", alias="WATCH_REGION")

    image_base_url: HttpUrl = Field(
        default="https://image.tmdb.org/t/p/", alias="IMAGE_BASE_URL"
    )
    placeholder_image_url: HttpUrl = Field(
        default="https://placehold.co/500x750/1f2937/9ca3af?text=No+Image",
        alias="PLACEHOLDER_IMAGE_URL",
    )

    recommendation_limit: int = Field(
        default=20, alias="RECOMMENDATION_LIMIT", ge=1, le=100
    )
    spotlight_window_days: int = Field(
        default=7, alias="SPOTLIGHT_WINDOW_DAYS", ge=0, le=60
    )
    session_idle_seconds: int = Field(
        default=1800, alias="SESSION_IDLE_SECONDS", ge=1
    )

    firebase_api_key: str | None = Field(default=None, alias="FIREBASE_API_KEY")
    firebase_auth_domain: str | None = Field(
        default=None, alias="FIREBASE_AUTH_DOMAIN"
    )
    firebase_project_id: str | None = Field(
        default=None, alias="FIREBASE_PROJECT_ID"
    )
    firebase_storage_bucket: str | None = Field(
        default=None, alias="FIREBASE_STORAGE_BUCKET"
    )
    firebase_messaging_sender_id: str | None = Field(
        default=None, alias="FIREBASE_MESSAGING_SENDER_ID"
    )
    firebase_app_id: str | None = Field(default=None, alias="FIREBASE_APP_ID")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./entertainment_hub.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("watch_region", mode="before")
    @classmethod
    def _normalise_region(cls, value: object) -> str:
        """Watch-provider regions are two-letter upper-case country codes."""

        if value is None:
            return "US"
        region = str(value).strip().upper()
        if not region:
            return "US"
        if len(region) != 2 or not region.isalpha():
            raise ValueError("WATCH_REGION must be a two-letter country code")
        return region

    @field_validator(
        "tmdb_api_key",
        "firebase_api_key",
        "firebase_auth_domain",
        "firebase_project_id",
        "firebase_storage_bucket",
        "firebase_messaging_sender_id",
        "firebase_app_id",
        mode="before",
    )
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    def firebase_client_config(self) -> dict[str, str]:
        """Return the public client configuration or raise if incomplete."""

        config: dict[str, str] = {}
        for key, attribute, variable in FIREBASE_CONFIG_FIELDS:
            value = getattr(self, attribute)
            if not value:
                raise FirebaseConfigError(variable)
            config[key] = value
        return config

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
