"""
Async HTTP Client Construction

Builds the httpx.AsyncClient every DoiT Console API call goes through. The
client owns the connection pool; the retry layer above it never opens
connections of its own.
"""

from typing import Optional

import httpx
import structlog

from dci_provider.shared.core.config import Settings, get_settings

logger = structlog.get_logger()

MAX_CONNECTIONS = 100
MAX_KEEPALIVE_CONNECTIONS = 20
KEEPALIVE_EXPIRY_SECONDS = 30.0


def build_http_client(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Returns a new httpx.AsyncClient bound to the configured API host.

    `transport` replaces the network transport (tests pass an httpx.MockTransport).
    """
    settings = settings or get_settings()
    client = httpx.AsyncClient(
        base_url=settings.DOIT_HOST,
        http2=True,
        timeout=httpx.Timeout(
            settings.HTTP_TIMEOUT_SECONDS, connect=settings.HTTP_CONNECT_TIMEOUT_SECONDS
        ),
        limits=httpx.Limits(
            max_connections=MAX_CONNECTIONS,
            max_keepalive_connections=MAX_KEEPALIVE_CONNECTIONS,
            keepalive_expiry=KEEPALIVE_EXPIRY_SECONDS,
        ),
        transport=transport,
    )
    logger.debug(
        "http_client_initialized",
        host=settings.DOIT_HOST,
        timeout_seconds=settings.HTTP_TIMEOUT_SECONDS,
    )
    return client
