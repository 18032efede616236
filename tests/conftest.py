"""
Global pytest fixtures for the dci_provider test suite.

Provides:
- A pinned test environment (no real credentials or host leak in)
- A fake monotonic clock whose sleep advances time instead of blocking
- An httpx.AsyncClient bound to a fake API host
"""
import os

import httpx
import pytest

# Clear provider env vars BEFORE any package imports read settings
for _key in ("DOIT_API_TOKEN", "DOIT_HOST", "DOIT_CUSTOMER_CONTEXT", "TF_APPEND_USER_AGENT"):
    os.environ.pop(_key, None)

from dci_provider.shared.core.config import get_settings  # noqa: E402

API_HOST = "https://api.test.invalid"


class FakeClock:
    """Monotonic clock + sleep pair for driving retry loops deterministically."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def http_client():
    async with httpx.AsyncClient(base_url=API_HOST) as client:
        yield client
