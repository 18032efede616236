import pytest
from pydantic import ValidationError

from dci_provider.shared.core.backoff import BackoffPolicy
from dci_provider.shared.core.config import (
    DEFAULT_HOST,
    Settings,
    get_settings,
    reload_settings_from_environment,
)


def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.DOIT_HOST == DEFAULT_HOST
    assert settings.DOIT_API_TOKEN is None
    assert settings.customer_context is None
    assert settings.VALIDATE_ON_CONNECT is True
    assert settings.PAGINATION_MAX_PAGES is None
    assert settings.backoff_policy() == BackoffPolicy()


def test_reads_environment(monkeypatch):
    monkeypatch.setenv("DOIT_API_TOKEN", "secret-token")
    monkeypatch.setenv("DOIT_HOST", "https://console.example.com")
    monkeypatch.setenv("DOIT_CUSTOMER_CONTEXT", "  cust-123 ")
    monkeypatch.setenv("BACKOFF_MAX_ELAPSED_SECONDS", "30")

    settings = Settings(_env_file=None)

    assert settings.DOIT_API_TOKEN.get_secret_value() == "secret-token"
    assert "secret-token" not in repr(settings)
    assert settings.DOIT_HOST == "https://console.example.com"
    assert settings.customer_context == "cust-123"
    assert settings.backoff_policy().max_elapsed_time == 30.0


def test_blank_customer_context_is_none():
    assert Settings(_env_file=None, DOIT_CUSTOMER_CONTEXT="   ").customer_context is None


@pytest.mark.parametrize("host", ["api.doit.com", "ftp://api.doit.com", "https://"])
def test_invalid_host_rejected(host):
    with pytest.raises(ValidationError, match="DOIT_HOST"):
        Settings(_env_file=None, DOIT_HOST=host)


@pytest.mark.parametrize(
    "overrides",
    [
        {"HTTP_TIMEOUT_SECONDS": 0},
        {"HTTP_CONNECT_TIMEOUT_SECONDS": -1},
        {"BACKOFF_MULTIPLIER": 0.5},
        {"BACKOFF_INITIAL_INTERVAL_SECONDS": 90, "BACKOFF_MAX_INTERVAL_SECONDS": 60},
        {"BACKOFF_RANDOMIZATION_FACTOR": 1.5},
        {"PAGINATION_MAX_PAGES": 0},
    ],
)
def test_invalid_tuning_rejected(overrides):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **overrides)


def test_get_settings_is_cached_and_reloadable(monkeypatch):
    first = get_settings()
    assert get_settings() is first

    monkeypatch.setenv("DOIT_CUSTOMER_CONTEXT", "reloaded")
    refreshed = reload_settings_from_environment()

    assert refreshed is not first
    assert refreshed.customer_context == "reloaded"
    assert get_settings() is refreshed


def test_unrelated_environment_keys_are_ignored(monkeypatch):
    monkeypatch.setenv("TESTING", "true")

    settings = Settings(_env_file=None)

    assert "TESTING" not in Settings.model_fields
    assert not hasattr(settings, "TESTING")
