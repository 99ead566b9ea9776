"""Application settings and configuration.

This module defines all configuration options for the Vote Gallery service.
Settings are loaded from environment variables with sensible defaults.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Vote Gallery", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Vote store selection ("remote" needs a base URL, otherwise local is used)
    storage_backend: Literal["remote", "local"] = Field(
        default="local",
        alias="VOTE_STORE_BACKEND",
    )

    # Local single-writer backend
    database_url: str = Field(default="sqlite:///./votes.db", alias="DATABASE_URL")
    local_storage_key: str = Field(default="houseRatings", alias="LOCAL_STORAGE_KEY")
    local_favorites_key: str = Field(default="houseFavorites", alias="LOCAL_FAVORITES_KEY")
    local_comments_key: str = Field(default="houseComments", alias="LOCAL_COMMENTS_KEY")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Identity used when neither an explicit voter nor a bound user is known
    fallback_voter: str = Field(default="Guest", alias="FALLBACK_VOTER")

    # Remote multi-writer document service
    remote_base_url: str | None = Field(default=None, alias="REMOTE_STORE_BASE_URL")
    remote_instance_id: str = Field(
        default="vote-gallery",
        alias="REMOTE_STORE_INSTANCE_ID",
    )
    remote_shared_secret: str | None = Field(
        default=None,
        alias="REMOTE_STORE_SHARED_SECRET",
    )
    remote_audience: str = Field(default="vote-store", alias="REMOTE_STORE_AUDIENCE")
    remote_token_ttl_seconds: int = Field(
        default=300,
        alias="REMOTE_STORE_TOKEN_TTL_SECONDS",
    )
    remote_http_timeout_seconds: float = Field(
        default=10.0,
        alias="REMOTE_STORE_HTTP_TIMEOUT_SECONDS",
    )
    remote_watch_retry_seconds: float = Field(
        default=2.0,
        alias="REMOTE_STORE_WATCH_RETRY_SECONDS",
    )

    # CORS configuration for the gallery frontend
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def remote_enabled(self) -> bool:
        """Return True when the remote document service should be used.

        Returns:
            True if the remote backend is selected and has a base URL
        """
        return self.storage_backend == "remote" and bool(self.remote_base_url)


settings = Settings()
