"""
Unit tests for the exception system.

Tests the base error, the layer errors and the status codes of the domain
taxonomy.
"""

import pytest

from connection_broker.exceptions import (
    AccessMaterialNotFoundError,
    BaseError,
    ClaimMismatchError,
    ConnectionNotFoundError,
    DuplicateConnectionError,
    ErrorCode,
    ExpiredTokenError,
    ExternalServiceError,
    ForbiddenError,
    InvalidStateError,
    InvalidTokenError,
    ScopeViolationError,
    ServiceError,
    TokenReplayedError,
    ValidationError,
    VaultTimeoutError,
    VersionConflictError,
    WebhookError,
    clear_correlation_id,
    get_correlation_id,
    set_correlation_id,
)


class TestBaseError:
    """Test BaseError class."""

    def test_basic_error_creation(self):
        """Test creating a basic error."""
        error = BaseError("Test error message")

        assert error.message == "Test error message"
        assert error.error_code == ErrorCode.INTERNAL_ERROR
        assert error.status_code == 500
        assert error.cause is None
        assert error.context["error_id"] == error.error_id

    def test_error_with_cause(self):
        """The cause is summarised in the context."""
        original_error = ValueError("Original error")
        error = BaseError("Wrapped error", cause=original_error)

        assert error.cause is original_error
        assert error.context["cause"]["type"] == "ValueError"
        assert error.context["cause"]["message"] == "Original error"

    def test_error_with_correlation_id(self):
        """Errors pick up the current correlation id."""
        set_correlation_id("corr-123")
        try:
            error = BaseError("Correlated")
            assert error.context["correlation_id"] == "corr-123"
            assert error.to_dict()["error"]["correlation_id"] == "corr-123"
        finally:
            clear_correlation_id()

        assert get_correlation_id() is None

    def test_to_dict_hides_cause_by_default(self):
        error = BaseError("Wrapped", cause=RuntimeError("secret detail"), tenant_id="t1")

        result = error.to_dict()

        assert result["error"]["message"] == "Wrapped"
        assert result["error"]["context"] == {"tenant_id": "t1"}
        assert "cause" not in result["error"]

    def test_to_dict_with_cause_and_traceback(self):
        error = BaseError("Wrapped", cause=RuntimeError("detail"))

        result = error.to_dict(include_cause=True, include_traceback=True)

        assert result["error"]["cause"]["type"] == "RuntimeError"
        assert "traceback" in result["error"]["cause"]

    def test_add_context(self):
        error = BaseError("Err").add_context(connection_id="c1")

        assert error.context["connection_id"] == "c1"

    def test_error_chain(self):
        """Test the chain follows nested causes."""
        root = ValueError("socket closed")
        middle = ServiceError("Vault call failed", cause=root)
        top = ExternalServiceError("Vault unavailable", service_name="vault", cause=middle)

        assert top.error_chain() == [top, middle, root]


class TestErrorTaxonomy:
    """Each domain error carries its HTTP status and error code."""

    @pytest.mark.parametrize(
        "error,status_code,error_code",
        [
            (ConnectionNotFoundError(), 404, ErrorCode.NOT_FOUND),
            (AccessMaterialNotFoundError(), 404, ErrorCode.NOT_FOUND),
            (ForbiddenError(), 403, ErrorCode.PERMISSION_DENIED),
            (InvalidStateError("revoked"), 400, ErrorCode.INVALID_STATE),
            (VersionConflictError(), 400, ErrorCode.CONFLICT),
            (ScopeViolationError(["admin"]), 403, ErrorCode.SCOPE_VIOLATION),
            (DuplicateConnectionError(), 409, ErrorCode.DUPLICATE),
            (WebhookError(), 400, ErrorCode.VALIDATION_FAILED),
            (InvalidTokenError(), 401, ErrorCode.INVALID_TOKEN),
            (ExpiredTokenError(), 401, ErrorCode.EXPIRED),
            (ClaimMismatchError("missing required claim: jti", claim="jti"), 401, ErrorCode.CLAIM_MISMATCH),
            (TokenReplayedError(), 401, ErrorCode.TOKEN_REPLAYED),
            (ExternalServiceError("Vault down", service_name="vault"), 502, ErrorCode.EXTERNAL_API_ERROR),
            (VaultTimeoutError(), 504, ErrorCode.TIMEOUT_ERROR),
            (ServiceError("boom"), 500, ErrorCode.INTERNAL_ERROR),
            (ValidationError("bad", field="x"), 400, ErrorCode.VALIDATION_FAILED),
        ],
    )
    def test_status_and_code(self, error, status_code, error_code):
        assert error.status_code == status_code
        assert error.error_code == error_code

    def test_invalid_state_carries_status(self):
        """The actual connection status is exposed to callers."""
        error = InvalidStateError("revoked")

        assert error.status == "revoked"
        assert error.context["status"] == "revoked"
        assert error.message == "Connection is revoked"

    def test_scope_violation_message(self):
        error = ScopeViolationError(["admin", "delete"])

        assert error.message == "Unauthorized scopes requested: admin, delete"
        assert error.unauthorized_scopes == ["admin", "delete"]

    def test_claim_mismatch_records_claim(self):
        error = ClaimMismatchError("invalid audience", claim="aud")

        assert error.claim == "aud"
        assert error.context["claim"] == "aud"

    def test_vault_timeout_is_external_service_error(self):
        """Timeouts are a kind of transient external failure."""
        error = VaultTimeoutError()

        assert isinstance(error, ExternalServiceError)
        assert error.context["service_name"] == "vault"
