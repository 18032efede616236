"""
Resilient Transport for the DoiT Console API.

Executes one logical request as a sequence of physical attempts:

    ATTEMPTING -> SUCCESS | RETRYABLE | PERMANENT
    RETRYABLE  -> ATTEMPTING (after a wait) | EXHAUSTED

Classification lives in retry_classification; this module owns the loop,
the waits and the connection hygiene between attempts.
"""
import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, cast

import httpx
import structlog

from dci_provider.shared.adapters.retry_classification import (
    RETRYABLE_STATUS_CODES,
    AttemptClassification,
    AttemptOutcome,
    classify_response,
    classify_transport_error,
)
from dci_provider.shared.core.backoff import BackoffPolicy
from dci_provider.shared.core.exceptions import (
    ConfigurationError,
    PermanentAPIError,
    RequestTransportError,
    RetriesExhaustedError,
)

logger = structlog.get_logger()

Classifier = Callable[[int, httpx.Headers], AttemptClassification]
Sleeper = Callable[[float], Awaitable[None]]


class AttemptState(Enum):
    ATTEMPTING = "attempting"
    SUCCESS = "success"
    RETRYABLE = "retryable"
    PERMANENT = "permanent"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class RequestAttempt:
    """
    One fully-built request. Re-issued verbatim on every retry, so the body is
    held as bytes rather than a stream.
    """

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    content: Optional[bytes] = None

    def build(self, client: httpx.AsyncClient) -> httpx.Request:
        return client.build_request(
            self.method, self.url, headers=dict(self.headers), content=self.content
        )


@dataclass
class _AttemptResult:
    state: AttemptState
    classification: AttemptClassification
    response: Optional[httpx.Response] = None
    status_code: Optional[int] = None
    body: str = ""
    error: Optional[Exception] = None
    # Set when the status arrived but reading its body failed
    read_error: Optional[Exception] = None


async def _drain(response: httpx.Response) -> str:
    """Read the remaining body and release the connection back to the pool."""
    try:
        await response.aread()
        return response.text
    finally:
        await response.aclose()


class ResilientTransport:
    """
    Retries transient failures of a single logical request.

    Usage:
        transport = ResilientTransport(client, BackoffPolicy())
        response = await transport.execute(RequestAttempt("GET", "/analytics/v1/budgets"))

    `sleep` and `clock` are injectable so tests can drive the loop without real waits.
    The sleep is awaited, so cancelling the calling task also cancels a pending
    Retry-After or backoff wait.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        policy: Optional[BackoffPolicy] = None,
        *,
        passthrough_status_codes: Iterable[int] = (),
        classify: Optional[Classifier] = None,
        sleep: Sleeper = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        passthrough = frozenset(passthrough_status_codes)
        if passthrough & RETRYABLE_STATUS_CODES:
            raise ConfigurationError(
                "Retryable statuses cannot be passed through",
                details={"status_codes": sorted(passthrough & RETRYABLE_STATUS_CODES)},
            )
        self.client = client
        self.policy = policy or BackoffPolicy()
        self.passthrough_status_codes = passthrough
        self._classify = classify or self._default_classify
        self._sleep = sleep
        self._clock = clock

    def _default_classify(
        self, status_code: int, headers: httpx.Headers
    ) -> AttemptClassification:
        return classify_response(
            status_code, headers, passthrough_status_codes=self.passthrough_status_codes
        )

    async def _attempt_once(self, attempt: RequestAttempt) -> _AttemptResult:
        response: Optional[httpx.Response] = None
        try:
            response = await self.client.send(attempt.build(self.client), stream=True)
            classification = self._classify(response.status_code, response.headers)
            if classification.outcome is AttemptOutcome.SUCCESS:
                await response.aread()
                return _AttemptResult(
                    AttemptState.SUCCESS,
                    classification,
                    response=response,
                    status_code=response.status_code,
                )
        except httpx.TransportError as exc:
            if response is not None:
                await response.aclose()
            classification = classify_transport_error(exc)
            state = (
                AttemptState.RETRYABLE
                if classification.retryable
                else AttemptState.PERMANENT
            )
            return _AttemptResult(state, classification, error=exc)

        state = (
            AttemptState.RETRYABLE
            if classification.retryable
            else AttemptState.PERMANENT
        )
        # Outcome follows the status even when the body read fails
        read_error: Optional[Exception] = None
        try:
            body = await _drain(response)
        except httpx.TransportError as exc:
            read_error = exc
            body = f"<failed to read body: {exc}>"
        return _AttemptResult(
            state,
            classification,
            status_code=response.status_code,
            body=body,
            read_error=read_error,
        )

    def _next_delay(
        self, result: _AttemptResult, backoff_retries: int, elapsed: float
    ) -> Optional[float]:
        if result.classification.outcome is AttemptOutcome.RETRY_AFTER:
            delay = result.classification.delay or 0.0
            # Server-mandated wait: exact duration, still bounded by the elapsed budget
            if self.policy.exceeds_budget(elapsed, delay):
                return None
            return delay
        return self.policy.next(backoff_retries, elapsed)

    async def execute(self, attempt: RequestAttempt) -> httpx.Response:
        started = self._clock()
        attempts = 0
        backoff_retries = 0

        while True:
            attempts += 1
            result = await self._attempt_once(attempt)

            if result.state is AttemptState.SUCCESS:
                if attempts > 1:
                    logger.info(
                        "dci_request_succeeded_after_retry",
                        method=attempt.method,
                        url=attempt.url,
                        attempts=attempts,
                    )
                return cast(httpx.Response, result.response)

            if result.state is AttemptState.PERMANENT:
                if result.error is not None:
                    raise RequestTransportError(
                        f"{attempt.method} {attempt.url} failed: {result.error}",
                        details={"error_type": type(result.error).__name__},
                    ) from result.error
                logger.warning(
                    "dci_request_permanent_failure",
                    method=attempt.method,
                    url=attempt.url,
                    status_code=result.status_code,
                )
                raise PermanentAPIError(
                    result.status_code or 0, result.body, attempt.method, attempt.url
                ) from result.read_error

            elapsed = self._clock() - started
            delay = self._next_delay(result, backoff_retries, elapsed)
            if result.classification.outcome is AttemptOutcome.RETRY_BACKOFF:
                backoff_retries += 1

            if delay is None:
                logger.error(
                    "dci_request_retries_exhausted",
                    method=attempt.method,
                    url=attempt.url,
                    attempts=attempts,
                    elapsed_seconds=round(elapsed, 3),
                    status_code=result.status_code,
                    error=str(result.error) if result.error else None,
                )
                raise RetriesExhaustedError(
                    attempts=attempts,
                    elapsed=elapsed,
                    last_status=result.status_code,
                    last_error=(
                        f"{type(result.error).__name__}: {result.error}"
                        if result.error
                        else None
                    ),
                    url=attempt.url,
                ) from result.error

            logger.warning(
                "dci_request_retry_scheduled",
                method=attempt.method,
                url=attempt.url,
                attempt=attempts,
                status_code=result.status_code,
                error=str(result.error) if result.error else None,
                delay_seconds=round(delay, 3),
                retry_after=result.classification.outcome is AttemptOutcome.RETRY_AFTER,
            )
            await self._sleep(delay)
