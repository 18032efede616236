from typing import Optional, Dict, Any


class DCIError(Exception):
    """Base exception for all DoiT Console API access errors."""
    def __init__(
        self,
        message: str,
        code: str = "dci_error",
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}

    def __str__(self) -> str:
        if self.status_code is None:
            return f"[{self.code}] {self.message}"
        return f"[{self.code}] {self.message} (status {self.status_code})"


class ConfigurationError(DCIError):
    """Raised when provider configuration is invalid or missing."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="config_error", details=details)


class CredentialError(DCIError):
    """Raised when a bearer token cannot be obtained. Never retried."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="credential_error", details=details)


class PermanentAPIError(DCIError):
    """The API rejected the request with a status that retrying will not fix."""
    def __init__(self, status_code: int, body: str, method: str = "", url: str = ""):
        super().__init__(
            f"non-retryable error: {status_code}, body: {body}",
            code="api_error",
            status_code=status_code,
            details={"method": method, "url": url},
        )
        self.body = body

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class RetriesExhaustedError(DCIError):
    """
    Raised when the retry budget ran out on a retryable failure.

    The last observed failure is kept: `last_status` for an HTTP status,
    `__cause__` for a transport exception.
    """
    def __init__(
        self,
        attempts: int,
        elapsed: float,
        last_status: Optional[int] = None,
        last_error: Optional[str] = None,
        url: str = "",
    ):
        reason = f"status {last_status}" if last_status is not None else last_error
        super().__init__(
            f"gave up after {attempts} attempts in {elapsed:.1f}s: {reason}",
            code="retries_exhausted",
            status_code=last_status,
            details={"attempts": attempts, "elapsed_seconds": elapsed, "url": url},
        )
        self.attempts = attempts
        self.elapsed = elapsed
        self.last_status = last_status
        self.last_error = last_error


class RequestTransportError(DCIError):
    """Transport failure that is not transient (bad scheme, local protocol misuse)."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="transport_error", details=details)


class UnexpectedResponseError(DCIError):
    """A successful status carried a body the caller cannot use."""
    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message, code="unexpected_response", status_code=status_code)
        self.body = body


class PaginationError(DCIError):
    """Pagination could not complete without truncating the result set."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="pagination_error", details=details)
