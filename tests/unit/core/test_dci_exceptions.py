"""
Tests for dci_provider/shared/core/exceptions.py
"""
from dci_provider.shared.core.exceptions import (
    CredentialError,
    DCIError,
    PermanentAPIError,
    RetriesExhaustedError,
)


class TestDCIError:
    def test_creation_with_all_parameters(self):
        exc = DCIError(message="boom", code="TEST", status_code=400, details={"k": "v"})

        assert exc.message == "boom"
        assert exc.code == "TEST"
        assert exc.status_code == 400
        assert exc.details == {"k": "v"}
        assert "TEST" in str(exc) and "400" in str(exc)

    def test_creation_minimal(self):
        exc = DCIError("simple")

        assert exc.code == "dci_error"
        assert exc.status_code is None
        assert exc.details == {}
        assert str(exc) == "[dci_error] simple"


class TestPermanentAPIError:
    def test_carries_status_and_body(self):
        exc = PermanentAPIError(403, '{"message": "Access denied"}', "GET", "/iam/v1/users")

        assert exc.status_code == 403
        assert exc.body == '{"message": "Access denied"}'
        assert "403" in exc.message and "Access denied" in exc.message
        assert exc.details == {"method": "GET", "url": "/iam/v1/users"}
        assert exc.is_not_found is False

    def test_not_found_helper(self):
        assert PermanentAPIError(404, "").is_not_found is True


class TestRetriesExhaustedError:
    def test_status_failure(self):
        exc = RetriesExhaustedError(attempts=4, elapsed=7.0, last_status=503, url="/x")

        assert exc.code == "retries_exhausted"
        assert exc.last_status == 503
        assert exc.status_code == 503
        assert "4 attempts" in exc.message and "status 503" in exc.message

    def test_transport_failure(self):
        exc = RetriesExhaustedError(attempts=2, elapsed=1.5, last_error="ConnectError: down")

        assert exc.status_code is None
        assert "ConnectError: down" in exc.message

    def test_distinct_from_permanent_failure(self):
        exc = RetriesExhaustedError(attempts=1, elapsed=0.0, last_status=502)

        assert not isinstance(exc, PermanentAPIError)
        assert not issubclass(PermanentAPIError, RetriesExhaustedError)


def test_credential_error_code():
    assert CredentialError("no token").code == "credential_error"
