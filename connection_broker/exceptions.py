"""
Consolidated exception system with error codes, context, and correlation support.

Every error raised by the broker derives from BaseError so that handlers can map
it to an HTTP status and a client-safe message without inspecting its type.
"""

import threading
import traceback
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

_thread_local = threading.local()


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # System errors (1xxx)
    INTERNAL_ERROR = "1000"
    DATABASE_ERROR = "1001"
    CONNECTION_ERROR = "1002"
    CONFIGURATION_ERROR = "1003"
    TIMEOUT_ERROR = "1004"

    # Validation errors (2xxx)
    VALIDATION_FAILED = "2000"
    INVALID_FORMAT = "2001"
    MISSING_REQUIRED = "2002"
    TYPE_MISMATCH = "2003"

    # Resource errors (3xxx)
    NOT_FOUND = "3000"
    DUPLICATE = "3001"
    CONFLICT = "3002"
    EXPIRED = "3004"

    # Business logic errors (4xxx)
    INVALID_STATE_TRANSITION = "4001"
    PERMISSION_DENIED = "4003"
    INVALID_STATE = "4005"
    SCOPE_VIOLATION = "4006"

    # External service errors (5xxx)
    EXTERNAL_API_ERROR = "5002"

    # Delegation token errors (6xxx)
    INVALID_TOKEN = "6000"
    CLAIM_MISMATCH = "6001"
    TOKEN_REPLAYED = "6002"


class BaseError(Exception):
    """Base exception with context, error codes, logging, and error chaining."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        cause: Optional[Exception] = None,
        **context: Any,
    ):
        """
        Initialize base error with rich context.

        Args:
            message: Human-readable error message, safe to return to callers
            error_code: Standardized error code from ErrorCode enum
            status_code: HTTP status code for API responses
            cause: Original exception that caused this error
            **context: Additional context information
        """
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.error_id = str(uuid.uuid4())
        self.context = context

        correlation_id = get_correlation_id()
        if correlation_id:
            self.context["correlation_id"] = correlation_id

        self.context["error_id"] = self.error_id

        if cause:
            self.context["cause"] = {
                "type": type(cause).__name__,
                "message": str(cause),
                "traceback": traceback.format_exception(type(cause), cause, cause.__traceback__),
            }

        self._log_error()

        super().__init__(message)

    def _log_error(self) -> None:
        """Log error with appropriate level based on status code."""
        # Lazy import: the logger module imports tenant context, which imports this module
        from .utils.logger import get_logger

        logger = get_logger()

        log_data = {
            "error_id": self.error_id,
            "error_code": self.error_code.value,
            "status_code": self.status_code,
            "error_message": self.message,
            "timestamp": self.timestamp,
            "context": {k: v for k, v in self.context.items() if k not in ["cause", "traceback"]},
        }

        if "correlation_id" in self.context:
            log_data["correlation_id"] = self.context["correlation_id"]

        if self.status_code >= 500:
            logger.error(
                f"Error {self.error_code.value}: {self.message}", extra=log_data, exc_info=self.cause
            )
        elif self.status_code >= 400:
            logger.warning(f"Client error {self.error_code.value}: {self.message}", extra=log_data)
        else:
            logger.info(f"Error {self.error_code.value}: {self.message}", extra=log_data)

    def to_dict(
        self, include_cause: bool = False, include_traceback: bool = False
    ) -> Dict[str, Any]:
        """
        Convert to dict for API responses.

        Args:
            include_cause: Include cause information (useful for debugging)
            include_traceback: Include full traceback (only in debug mode)

        Returns:
            Dictionary representation suitable for JSON serialization
        """
        result: Dict[str, Any] = {
            "error": {
                "id": self.error_id,
                "code": self.error_code.value,
                "message": self.message,
                "timestamp": self.timestamp,
                "context": {
                    k: v
                    for k, v in self.context.items()
                    if k not in ["cause", "error_id", "correlation_id"]
                },
            }
        }

        if "correlation_id" in self.context:
            result["error"]["correlation_id"] = self.context["correlation_id"]

        if include_cause and "cause" in self.context:
            result["error"]["cause"] = {
                "type": self.context["cause"]["type"],
                "message": self.context["cause"]["message"],
            }
            if include_traceback:
                result["error"]["cause"]["traceback"] = self.context["cause"]["traceback"]

        return result

    def add_context(self, **kwargs: Any) -> "BaseError":
        """
        Add additional context to the error (fluent interface).

        Returns:
            Self for method chaining
        """
        self.context.update(kwargs)
        return self

    @property
    def error_chain(self) -> List[Exception]:
        """Get the full chain of errors."""
        chain: List[Exception] = [self]
        current = self.cause
        while current:
            chain.append(current)
            current = getattr(current, "cause", None)
        return chain


# Layer-specific base exceptions
class ServiceError(BaseError):
    """Service layer errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        operation: Optional[str] = None,
        cause: Optional[Exception] = None,
        **context,
    ):
        """Initialize service error with operation context."""
        if operation:
            context["operation"] = operation
        super().__init__(message, error_code, 500, cause, **context)


class ValidationError(BaseError):
    """Validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        cause: Optional[Exception] = None,
        **context,
    ):
        """Initialize validation error with field context."""
        if field:
            context["field"] = field
        super().__init__(message, error_code, 400, cause, **context)


class ExternalServiceError(BaseError):
    """External service integration errors."""

    def __init__(
        self,
        message: str,
        service_name: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_API_ERROR,
        cause: Optional[Exception] = None,
        status_code: int = 502,
        **context,
    ):
        """Initialize external service error with service context."""
        context["service_name"] = service_name
        super().__init__(message, error_code, status_code, cause, **context)


class VaultTimeoutError(ExternalServiceError):
    """The token vault did not answer within the configured timeout."""

    def __init__(self, message: str = "Token vault request timed out", **kwargs):
        kwargs.setdefault("service_name", "vault")
        super().__init__(message, error_code=ErrorCode.TIMEOUT_ERROR, status_code=504, **kwargs)


# ==================== CONNECTION EXCEPTIONS ====================


class ConnectionNotFoundError(BaseError):
    """Raised when a connection does not exist or belongs to another tenant."""

    def __init__(self, message: str = "Connection not found", **kwargs):
        super().__init__(message=message, error_code=ErrorCode.NOT_FOUND, status_code=404, **kwargs)


class AccessMaterialNotFoundError(BaseError):
    """Raised when the vault holds no access token for a connection."""

    def __init__(self, message: str = "Access token not available", **kwargs):
        super().__init__(message=message, error_code=ErrorCode.NOT_FOUND, status_code=404, **kwargs)


class ForbiddenError(BaseError):
    """Raised on subject or tenant ownership mismatch."""

    def __init__(self, message: str = "Access to connection denied", **kwargs):
        super().__init__(
            message=message, error_code=ErrorCode.PERMISSION_DENIED, status_code=403, **kwargs
        )


class InvalidStateError(BaseError):
    """Raised when a connection is not in a status that permits the operation."""

    def __init__(self, status: str, message: Optional[str] = None, **kwargs):
        self.status = status
        super().__init__(
            message=message or f"Connection is {status}",
            error_code=ErrorCode.INVALID_STATE,
            status_code=400,
            status=status,
            **kwargs,
        )


class VersionConflictError(BaseError):
    """Raised when a delegation token was minted against a stale authorization version."""

    def __init__(
        self,
        message: str = "Authorization version mismatch; re-mint the delegation token",
        **kwargs,
    ):
        super().__init__(message=message, error_code=ErrorCode.CONFLICT, status_code=400, **kwargs)


class ScopeViolationError(BaseError):
    """Raised when requested scopes exceed the scopes authorized on a connection."""

    def __init__(self, unauthorized_scopes: Iterable[str], **kwargs):
        self.unauthorized_scopes = list(unauthorized_scopes)
        super().__init__(
            message=f"Unauthorized scopes requested: {', '.join(self.unauthorized_scopes)}",
            error_code=ErrorCode.SCOPE_VIOLATION,
            status_code=403,
            unauthorized_scopes=self.unauthorized_scopes,
            **kwargs,
        )


class DuplicateConnectionError(BaseError):
    """Raised when a tenant/subject/provider triple already has a live connection."""

    def __init__(self, message: str = "User already has a connection for this provider", **kwargs):
        super().__init__(message=message, error_code=ErrorCode.DUPLICATE, status_code=409, **kwargs)


class WebhookError(BaseError):
    """Raised when a vault webhook payload is malformed."""

    def __init__(self, message: str = "Invalid webhook payload", **kwargs):
        super().__init__(
            message=message, error_code=ErrorCode.VALIDATION_FAILED, status_code=400, **kwargs
        )


# ==================== DELEGATION TOKEN EXCEPTIONS ====================


class DelegationTokenError(BaseError):
    """Base exception for delegation token rejections."""

    def __init__(
        self,
        message: str = "Invalid delegation token",
        error_code: ErrorCode = ErrorCode.INVALID_TOKEN,
        **kwargs,
    ):
        super().__init__(message=message, error_code=error_code, status_code=401, **kwargs)


class InvalidTokenError(DelegationTokenError):
    """Bad signature, malformed token, or disallowed algorithm."""

    def __init__(self, message: str = "Invalid delegation token", **kwargs):
        super().__init__(message=message, error_code=ErrorCode.INVALID_TOKEN, **kwargs)


class ExpiredTokenError(DelegationTokenError):
    """The delegation token is past its expiry."""

    def __init__(self, message: str = "Delegation token has expired", **kwargs):
        super().__init__(message=message, error_code=ErrorCode.EXPIRED, **kwargs)


class ClaimMismatchError(DelegationTokenError):
    """A mandatory claim is missing, malformed, or bound to another resource."""

    def __init__(self, message: str, claim: Optional[str] = None, **kwargs):
        self.claim = claim
        if claim:
            kwargs["claim"] = claim
        super().__init__(message=message, error_code=ErrorCode.CLAIM_MISMATCH, **kwargs)


class TokenReplayedError(DelegationTokenError):
    """The delegation token id has already been consumed."""

    def __init__(self, message: str = "Delegation token has already been used", **kwargs):
        super().__init__(message=message, error_code=ErrorCode.TOKEN_REPLAYED, **kwargs)


# Correlation ID management
def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current thread."""
    _thread_local.correlation_id = correlation_id


def get_correlation_id() -> Optional[str]:
    """Get the current thread's correlation ID."""
    return getattr(_thread_local, "correlation_id", None)


def clear_correlation_id() -> None:
    """Clear the current thread's correlation ID."""
    if hasattr(_thread_local, "correlation_id"):
        delattr(_thread_local, "correlation_id")
