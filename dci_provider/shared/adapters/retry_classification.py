"""
Retry Classification for DoiT Console API responses.

Pure decisions only: nothing here sleeps, reads a body or touches the network,
so the rules can be tested apart from the retry loop that applies them.

| Status                 | Decision                                    |
|------------------------|---------------------------------------------|
| 200, 201, 202, 204     | success                                     |
| 429                    | Retry-After wait (> 0), else backoff        |
| 502, 503, 504          | exponential backoff                         |
| other >= 400           | permanent failure                           |
| other 2xx/3xx          | success                                     |
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Optional, Union

import httpx

SUCCESS_STATUS_CODES = frozenset({200, 201, 202, 204})
RATE_LIMIT_STATUS_CODE = 429
BACKOFF_STATUS_CODES = frozenset({502, 503, 504})
RETRYABLE_STATUS_CODES = BACKOFF_STATUS_CODES | {RATE_LIMIT_STATUS_CODE}

# Transient transport failures: connection refused/reset, DNS, timeouts, dropped streams
RETRYABLE_TRANSPORT_ERRORS: tuple[type[Exception], ...] = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


class AttemptOutcome(Enum):
    SUCCESS = "success"
    RETRY_AFTER = "retry_after"
    RETRY_BACKOFF = "retry_backoff"
    PERMANENT = "permanent"


@dataclass(frozen=True)
class AttemptClassification:
    outcome: AttemptOutcome
    # Only set for RETRY_AFTER: the server-mandated wait in seconds
    delay: Optional[float] = None

    @property
    def retryable(self) -> bool:
        return self.outcome in (AttemptOutcome.RETRY_AFTER, AttemptOutcome.RETRY_BACKOFF)


SUCCESS = AttemptClassification(AttemptOutcome.SUCCESS)
RETRY_BACKOFF = AttemptClassification(AttemptOutcome.RETRY_BACKOFF)
PERMANENT = AttemptClassification(AttemptOutcome.PERMANENT)


def parse_retry_after(
    value: Optional[str], now: Optional[datetime] = None
) -> Optional[float]:
    """
    Parse a Retry-After header into seconds to wait.

    Accepts a non-negative integer number of seconds or an HTTP-date. Dates are
    rounded up by a second so the wait never ends early. Returns None when the
    value is missing, malformed or already in the past.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if value.isascii() and value.isdigit():
        return float(int(value))

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if retry_at is None:
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)

    wait = (retry_at - (now or datetime.now(timezone.utc))).total_seconds()
    if wait <= 0:
        return None
    return float(int(wait) + 1)


def classify_response(
    status_code: int,
    headers: Union[httpx.Headers, Mapping[str, str], None] = None,
    *,
    passthrough_status_codes: Iterable[int] = (),
) -> AttemptClassification:
    """Map a response status (and its Retry-After header) to the next retry step."""
    if status_code in SUCCESS_STATUS_CODES or status_code in passthrough_status_codes:
        return SUCCESS

    if status_code == RATE_LIMIT_STATUS_CODE:
        delay = parse_retry_after(httpx.Headers(headers or {}).get("Retry-After"))
        # Retry-After: 0 falls back to backoff
        if not delay:
            return RETRY_BACKOFF
        return AttemptClassification(AttemptOutcome.RETRY_AFTER, delay=delay)

    if status_code in BACKOFF_STATUS_CODES:
        return RETRY_BACKOFF

    if status_code >= 400:
        return PERMANENT

    return SUCCESS


def classify_transport_error(exc: BaseException) -> AttemptClassification:
    """Transient network failures back off; any other transport error is permanent."""
    if isinstance(exc, RETRYABLE_TRANSPORT_ERRORS):
        return RETRY_BACKOFF
    return PERMANENT
