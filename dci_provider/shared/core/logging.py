import logging
import re
import sys
from typing import Any, cast

import structlog

from dci_provider.shared.core.config import get_settings

_SECRET_FIELDS = {
    "authorization",
    "token",
    "api_token",
    "access_token",
    "refresh_token",
    "secret",
    "client_secret",
    "password",
    "api_key",
    "apikey",
}
_SECRET_SUFFIXES = ("_token", "_secret", "_password", "_key")
_BEARER_RE = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/=-]+")


def _is_secret_key(key: Any) -> bool:
    key_norm = str(key).lower().strip().replace("-", "_")
    return key_norm in _SECRET_FIELDS or key_norm.endswith(_SECRET_SUFFIXES)


def _redact(data: Any) -> Any:
    if isinstance(data, dict):
        return {
            k: ("[REDACTED]" if _is_secret_key(k) else _redact(v))
            for k, v in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [_redact(item) for item in data]
    if isinstance(data, str):
        return _BEARER_RE.sub("Bearer [REDACTED]", data)
    return data


def secret_redactor(
    _logger: Any, _method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Strip API tokens and bearer credentials before anything is rendered."""
    redacted = _redact(event_dict)
    if isinstance(redacted, dict):
        return cast(dict[str, Any], redacted)
    return {}


def setup_logging() -> None:
    settings = get_settings()

    base_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        secret_redactor,
    ]

    if settings.DEBUG:
        renderer: Any = structlog.dev.ConsoleRenderer()
        processors = base_processors + [renderer]
        min_level = logging.DEBUG
    else:
        renderer = structlog.processors.JSONRenderer()
        processors = base_processors + [structlog.processors.dict_tracebacks, renderer]
        min_level = logging.INFO

    # stderr only: stdout belongs to the host's plugin protocol
    structlog.configure(
        processors=cast(Any, processors),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=min_level,
    )
