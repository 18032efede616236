from functools import lru_cache
from threading import Lock
from typing import Optional
from urllib.parse import urlparse

import structlog
from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dci_provider.shared.core.backoff import (
    DEFAULT_INITIAL_INTERVAL,
    DEFAULT_MAX_ELAPSED_TIME,
    DEFAULT_MAX_INTERVAL,
    DEFAULT_MULTIPLIER,
    BackoffPolicy,
)

DEFAULT_HOST = "https://api.doit.com"


@lru_cache
def get_settings() -> "Settings":
    """Returns a singleton instance of the provider settings."""
    return Settings()


_settings_reload_lock = Lock()


def reload_settings_from_environment() -> "Settings":
    """
    Atomically rebuild and replace cached settings from environment values.

    This avoids mutating the cached singleton instance in-place.
    """
    logger = structlog.get_logger()
    with _settings_reload_lock:
        logger.info("settings_reload_started")
        get_settings.cache_clear()
        refreshed = get_settings()
        logger.info("settings_reload_completed")
        return refreshed


class Settings(BaseSettings):
    """
    Configuration for the DoiT Console API access layer.
    Uses Pydantic-Settings for environment variable parsing from .env.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    DEBUG: bool = False

    # API access
    DOIT_API_TOKEN: Optional[SecretStr] = None
    DOIT_HOST: str = DEFAULT_HOST
    # Tenant scope sent as ?customerContext= on every request
    DOIT_CUSTOMER_CONTEXT: Optional[str] = None
    VALIDATE_ON_CONNECT: bool = True

    # User-Agent: "Terraform/<HOST_VERSION> dci-provider/<PROVIDER_VERSION> <TF_APPEND_USER_AGENT>"
    HOST_VERSION: str = "unknown"
    PROVIDER_VERSION: str = "dev"
    TF_APPEND_USER_AGENT: Optional[str] = None

    HTTP_TIMEOUT_SECONDS: float = 30.0
    HTTP_CONNECT_TIMEOUT_SECONDS: float = 10.0

    BACKOFF_INITIAL_INTERVAL_SECONDS: float = DEFAULT_INITIAL_INTERVAL
    BACKOFF_MULTIPLIER: float = DEFAULT_MULTIPLIER
    BACKOFF_MAX_INTERVAL_SECONDS: float = DEFAULT_MAX_INTERVAL
    BACKOFF_MAX_ELAPSED_SECONDS: float = DEFAULT_MAX_ELAPSED_TIME
    BACKOFF_RANDOMIZATION_FACTOR: float = 0.0

    # Hard stop for auto pagination; None means unbounded
    PAGINATION_MAX_PAGES: Optional[int] = None

    @model_validator(mode="after")
    def validate_all_config(self) -> "Settings":
        self._validate_host()
        self._validate_timeouts()
        self._validate_backoff()
        if self.PAGINATION_MAX_PAGES is not None and self.PAGINATION_MAX_PAGES <= 0:
            raise ValueError("PAGINATION_MAX_PAGES must be > 0 when provided.")
        return self

    def _validate_host(self) -> None:
        parsed = urlparse(self.DOIT_HOST)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(
                f"DOIT_HOST must be an absolute http(s) URL, got {self.DOIT_HOST!r}."
            )

    def _validate_timeouts(self) -> None:
        if self.HTTP_TIMEOUT_SECONDS <= 0 or self.HTTP_CONNECT_TIMEOUT_SECONDS <= 0:
            raise ValueError("HTTP timeouts must be > 0.")

    def _validate_backoff(self) -> None:
        # BackoffPolicy enforces the same bounds; surface them at load time instead
        self.backoff_policy()

    @property
    def customer_context(self) -> Optional[str]:
        value = (self.DOIT_CUSTOMER_CONTEXT or "").strip()
        return value or None

    def backoff_policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            initial_interval=self.BACKOFF_INITIAL_INTERVAL_SECONDS,
            multiplier=self.BACKOFF_MULTIPLIER,
            max_interval=self.BACKOFF_MAX_INTERVAL_SECONDS,
            max_elapsed_time=self.BACKOFF_MAX_ELAPSED_SECONDS,
            randomization_factor=self.BACKOFF_RANDOMIZATION_FACTOR,
        )
