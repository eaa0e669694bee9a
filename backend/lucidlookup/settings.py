from __future__ import annotations

from datetime import time, timedelta
from enum import Enum
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from lucidlookup.pipeline.fetcher import DEFAULT_USER_AGENT, FetchConfig
from lucidlookup.pipeline.refresh import MAX_BACKOFF_S


def _default_repo_root() -> Path:
    return Path(__file__).resolve().parents[2]


class TokenTransportEnum(str, Enum):
    """Where the upstream expects the access token."""
    QUERY = "query"
    HEADER = "header"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LUCIDLOOKUP_", extra="ignore", populate_by_name=True)

    repo_root: Path = Field(default_factory=_default_repo_root)
    # Unprefixed aliases (CACHE_DIR, ZSVR_TOKEN, PORT, ...) are the names
    # used by existing deployments.
    data_dir: Path | None = Field(
        default=None, validation_alias=AliasChoices("LUCIDLOOKUP_DATA_DIR", "CACHE_DIR")
    )
    cache_filename: str = "lucid-cache.json"

    # Upstream register download
    api_url: str = Field(
        default="https://registerabruf.verpackungsregister.org/v1/listofproducers",
        validation_alias=AliasChoices("LUCIDLOOKUP_API_URL", "LUCID_API_URL"),
    )
    token: str = Field(default="", validation_alias=AliasChoices("LUCIDLOOKUP_TOKEN", "ZSVR_TOKEN"))
    token_transport: TokenTransportEnum = TokenTransportEnum.QUERY  # LUCID expects ?token=
    token_name: str = "token"
    request_timeout_s: float = 300.0
    max_response_mb: int = 2000
    user_agent: str = DEFAULT_USER_AGENT

    # Refresh policy
    cache_ttl_hours: float = Field(
        default=24.0, validation_alias=AliasChoices("LUCIDLOOKUP_CACHE_TTL_HOURS", "CACHE_TTL_HOURS")
    )
    refresh_max_retries: int = 2
    refresh_backoff_s: float = 5.0
    refresh_on_startup: bool = True

    # Daily refresh
    schedule_enabled: bool = True
    schedule_time: time = time(2, 30)
    schedule_timezone: str = "Europe/Berlin"
    schedule_min_age_hours: float = 1.0

    # HTTP surface
    internal_api_key: str | None = Field(
        default=None, validation_alias=AliasChoices("LUCIDLOOKUP_INTERNAL_API_KEY", "INTERNAL_API_KEY")
    )
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    lookup_rate_limit: str = "600/minute"
    admin_rate_limit: str = "6/minute"
    host: str = "0.0.0.0"
    port: int = Field(default=3000, validation_alias=AliasChoices("LUCIDLOOKUP_PORT", "PORT"))

    log_level: str = "INFO"

    @property
    def resolved_data_dir(self) -> Path:
        return self.data_dir or (self.repo_root / "data")

    @property
    def cache_path(self) -> Path:
        return self.resolved_data_dir / self.cache_filename

    @property
    def max_response_bytes(self) -> int:
        return self.max_response_mb * 1024 * 1024

    @property
    def cache_ttl(self) -> timedelta:
        return timedelta(hours=self.cache_ttl_hours)

    @property
    def schedule_min_age(self) -> timedelta:
        return timedelta(hours=self.schedule_min_age_hours)

    @property
    def request_deadline_s(self) -> float:
        """Upper bound for a request that waits on a lazy refresh (every attempt, backoff, parse)."""
        # Each retry sleeps at most MAX_BACKOFF_S, including Retry-After waits.
        attempts = self.refresh_max_retries + 1
        return attempts * self.request_timeout_s + self.refresh_max_retries * MAX_BACKOFF_S + 120.0

    def fetch_config(self) -> FetchConfig:
        return FetchConfig(
            url=self.api_url,
            token=self.token,
            token_transport=self.token_transport.value,
            token_name=self.token_name,
            timeout_s=self.request_timeout_s,
            max_bytes=self.max_response_bytes,
            user_agent=self.user_agent,
        )


# Singleton instance - import this instead of creating Settings()
settings = Settings()
