"""
Consolidated exception system with error codes, context, and correlation support.

Every failure of the credential lifecycle is raised as a BaseError subclass carrying
an HTTP status, an error code and a short ``kind`` string the HTTP layer hands back
to the caller. Errors log themselves on creation; callers never need to log again.

Plaintext API keys must never be passed as context to any of these errors.
"""

import traceback
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # System errors (1xxx)
    INTERNAL_ERROR = "1000"
    DATABASE_ERROR = "1001"
    CONNECTION_ERROR = "1002"
    CONFIGURATION_ERROR = "1003"
    TIMEOUT_ERROR = "1004"
    ENCRYPTION_ERROR = "1005"
    DECRYPTION_ERROR = "1006"

    # Validation errors (2xxx)
    VALIDATION_FAILED = "2000"
    INVALID_FORMAT = "2001"
    MISSING_REQUIRED = "2002"

    # Resource errors (3xxx)
    NOT_FOUND = "3000"
    DUPLICATE = "3001"
    CONFLICT = "3002"
    EXPIRED = "3004"
    LIMIT_EXCEEDED = "3005"

    # Business logic errors (4xxx)
    PERMISSION_DENIED = "4003"
    UNAUTHENTICATED = "4005"

    # External service errors (5xxx)
    EXTERNAL_API_ERROR = "5002"
    UPSTREAM_RATE_LIMITED = "5005"
    UPSTREAM_UNAVAILABLE = "5006"
    USAGE_CHECK_FAILED = "5007"


class BaseError(Exception):
    """Base exception with context, error codes, logging, and error chaining."""

    kind = "InternalError"

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
            message: Human-readable error message
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

        # Upstream exception text can embed request URLs carrying the key, so only
        # the type and the raising location are kept for the cause.
        if cause:
            frames = traceback.extract_tb(cause.__traceback__)
            self.context["cause"] = {
                "type": type(cause).__name__,
                "location": f"{frames[-1].filename}:{frames[-1].lineno}" if frames else None,
            }

        self._log_error()

        super().__init__(message)

    def _log_error(self) -> None:
        """Log error with appropriate level based on status code."""
        # Lazy import, the logger reads config which imports nothing from here
        from .utils.logger import get_logger

        logger = get_logger()

        log_data = {
            "error_id": self.error_id,
            "error_kind": self.kind,
            "error_code": self.error_code.value,
            "status_code": self.status_code,
            "error_message": self.message,
            "timestamp": self.timestamp,
            "context": {k: v for k, v in self.context.items() if k not in ["cause", "traceback"]},
        }

        if "correlation_id" in self.context:
            log_data["correlation_id"] = self.context["correlation_id"]

        if self.status_code >= 500:
            logger.error(f"Error {self.kind}: {self.message}", extra=log_data)
        elif self.status_code >= 400:
            logger.warning(f"Client error {self.kind}: {self.message}", extra=log_data)
        else:
            logger.info(f"Error {self.kind}: {self.message}", extra=log_data)

    def to_dict(self, include_cause: bool = False) -> Dict[str, Any]:
        """
        Convert to dict for API responses.

        Args:
            include_cause: Include the cause type (useful for debugging)

        Returns:
            Dictionary representation suitable for JSON serialization
        """
        result: Dict[str, Any] = {
            "error": {
                "id": self.error_id,
                "kind": self.kind,
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
            result["error"]["cause"] = {"type": self.context["cause"]["type"]}

        return result

    def add_context(self, **kwargs: Any) -> "BaseError":
        """
        Add additional context to the error (fluent interface).

        Returns:
            Self for method chaining
        """
        self.context.update(kwargs)
        return self


# Layer-specific base exceptions
class RepositoryError(BaseError):
    """Repository layer errors."""

    kind = "RepositoryError"

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.DATABASE_ERROR,
        status_code: int = 500,
        cause: Optional[Exception] = None,
        **context,
    ):
        super().__init__(message, error_code, status_code, cause, **context)


class ConfigurationError(BaseError):
    """Missing or invalid runtime configuration."""

    kind = "ConfigurationError"

    def __init__(self, message: str, setting: Optional[str] = None, **context):
        if setting:
            context["setting"] = setting
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR, 500, **context)


class ValidationError(BaseError):
    """Validation errors."""

    kind = "ValidationError"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        cause: Optional[Exception] = None,
        **context,
    ):
        if field:
            context["field"] = field
        super().__init__(message, error_code, 400, cause, **context)


class ExternalServiceError(BaseError):
    """External service integration errors."""

    kind = "ExternalServiceError"

    def __init__(
        self,
        message: str,
        service_name: str = "pnw_api",
        error_code: ErrorCode = ErrorCode.EXTERNAL_API_ERROR,
        status_code: int = 502,
        cause: Optional[Exception] = None,
        **context,
    ):
        context["service_name"] = service_name
        super().__init__(message, error_code, status_code, cause, **context)


# ==================== KEY VALIDATION ERRORS ====================


class InvalidFormatError(ValidationError):
    """API key rejected locally; no upstream call was made."""

    kind = "InvalidFormat"

    def __init__(self, message: str = "Invalid API key format", **context):
        super().__init__(message, field="api_key", error_code=ErrorCode.INVALID_FORMAT, **context)


class InvalidOrExpiredKeyError(ExternalServiceError):
    """Upstream rejected the key's authorization."""

    kind = "InvalidOrExpired"

    def __init__(self, message: str = "Invalid or expired API key", **context):
        super().__init__(message, error_code=ErrorCode.EXPIRED, status_code=400, **context)


class UpstreamRateLimitedError(ExternalServiceError):
    """Upstream quota for the key is exhausted."""

    kind = "UpstreamRateLimited"

    def __init__(
        self, message: str = "API rate limit exceeded, please try again later", **context
    ):
        super().__init__(
            message, error_code=ErrorCode.UPSTREAM_RATE_LIMITED, status_code=429, **context
        )


class UpstreamUnavailableError(ExternalServiceError):
    """Upstream returned 5xx, refused the connection or timed out."""

    kind = "UpstreamUnavailable"

    def __init__(
        self,
        message: str = "Politics and War API is currently unavailable",
        cause: Optional[Exception] = None,
        **context,
    ):
        super().__init__(
            message,
            error_code=ErrorCode.UPSTREAM_UNAVAILABLE,
            status_code=503,
            cause=cause,
            **context,
        )


class UnknownUpstreamError(ExternalServiceError):
    """Any other upstream error payload."""

    kind = "UnknownUpstreamError"

    def __init__(self, message: str = "Failed to validate API key", **context):
        super().__init__(message, error_code=ErrorCode.EXTERNAL_API_ERROR, status_code=502, **context)


class UsageCheckFailedError(ExternalServiceError):
    """The lightweight usage lookup failed. Read paths degrade instead of failing."""

    kind = "UsageCheckFailed"

    def __init__(
        self,
        message: str = "Failed to check rate limit",
        cause: Optional[Exception] = None,
        **context,
    ):
        super().__init__(
            message,
            error_code=ErrorCode.USAGE_CHECK_FAILED,
            status_code=502,
            cause=cause,
            **context,
        )


# ==================== CIPHER ERRORS ====================


class EncryptionError(BaseError):
    """Raised when a key cannot be encrypted (usually a missing master key)."""

    kind = "EncryptionError"

    def __init__(self, message: str = "Failed to encrypt API key", **kwargs):
        super().__init__(
            message=message, error_code=ErrorCode.ENCRYPTION_ERROR, status_code=500, **kwargs
        )


class DecryptionError(BaseError):
    """Ciphertext is corrupt, was tampered with, or the master key does not match."""

    kind = "DecryptionError"

    def __init__(self, message: str = "Failed to decrypt API key", **kwargs):
        super().__init__(
            message=message, error_code=ErrorCode.DECRYPTION_ERROR, status_code=500, **kwargs
        )


# ==================== ACCESS AND STORE ERRORS ====================


class AuthenticationError(BaseError):
    """No valid session for the request."""

    kind = "AuthenticationRequired"

    def __init__(self, message: str = "Authentication required", **kwargs):
        super().__init__(
            message=message, error_code=ErrorCode.UNAUTHENTICATED, status_code=401, **kwargs
        )


class AccessDeniedError(BaseError):
    """Access policy denied the caller for the target owner."""

    kind = "AccessDenied"

    def __init__(self, message: str = "insufficient privilege", **kwargs):
        super().__init__(
            message=message, error_code=ErrorCode.PERMISSION_DENIED, status_code=403, **kwargs
        )


class AlreadyLinkedElsewhereError(BaseError):
    """The key is already linked to an owner belonging to another user."""

    kind = "AlreadyLinkedElsewhere"

    def __init__(self, message: str = "API key already linked to another account", **kwargs):
        super().__init__(message=message, error_code=ErrorCode.CONFLICT, status_code=409, **kwargs)


class StoreUnavailableError(RepositoryError):
    """Credential store could not be reached; the operation is blocked."""

    kind = "StoreUnavailable"

    def __init__(
        self,
        message: str = "Credential store unavailable",
        cause: Optional[Exception] = None,
        **context,
    ):
        super().__init__(
            message,
            error_code=ErrorCode.CONNECTION_ERROR,
            status_code=503,
            cause=cause,
            **context,
        )


class NotFoundError(RepositoryError):
    """Owner record (user, alliance, manager assignment) does not exist."""

    kind = "NotFound"

    def __init__(self, message: str, cause: Optional[Exception] = None, **context):
        super().__init__(
            message, error_code=ErrorCode.NOT_FOUND, status_code=404, cause=cause, **context
        )


class RateLimitExceededError(BaseError):
    """Caller exceeded the request quota of the current window."""

    kind = "RateLimitExceeded"

    def __init__(self, retry_after: int, message: str = "Rate limit exceeded", **kwargs):
        self.retry_after = retry_after
        super().__init__(
            message=message,
            error_code=ErrorCode.LIMIT_EXCEEDED,
            status_code=429,
            retry_after=retry_after,
            **kwargs,
        )


# Factory functions for common error patterns
def not_found(
    resource_type: str, cause: Optional[Exception] = None, **identifiers
) -> "NotFoundError":
    """
    Factory for not found errors.

    Args:
        resource_type: Type of resource (e.g., 'User', 'Alliance')
        cause: Original exception if any
        **identifiers: Resource identifiers (e.g., user_id='123')

    Returns:
        Configured NotFoundError instance with 404 status
    """
    id_parts = [f"{k}={v}" for k, v in identifiers.items()]
    message = f"{resource_type} not found"
    if id_parts:
        message += f": {', '.join(id_parts)}"

    return NotFoundError(message, cause=cause, resource_type=resource_type, **identifiers)


def validation_failed(
    field: str, value: Any, reason: str, cause: Optional[Exception] = None
) -> ValidationError:
    """
    Factory for validation errors.

    Args:
        field: Field that failed validation
        value: The invalid value (never pass a secret here)
        reason: Why validation failed
        cause: Original exception if any

    Returns:
        Configured ValidationError instance
    """
    return ValidationError(
        f"Validation failed for {field}: {reason}",
        field=field,
        error_code=ErrorCode.VALIDATION_FAILED,
        cause=cause,
        value=str(value),
        reason=reason,
    )


def permission_denied(action: str, resource: str, reason: str, **context) -> AccessDeniedError:
    """
    Factory for permission denied errors.

    Args:
        action: Action that was denied (e.g., 'link', 'unlink')
        resource: Resource being accessed
        reason: Reason reported by the access policy
        **context: Additional context

    Returns:
        Configured AccessDeniedError instance
    """
    return AccessDeniedError(
        f"Permission denied: {action} on {resource} ({reason})",
        action=action,
        resource=resource,
        reason=reason,
        **context,
    )


def duplicate(resource_type: str, **identifiers) -> AlreadyLinkedElsewhereError:
    """
    Factory for conflicts with a record owned by someone else.

    Args:
        resource_type: Type of resource in conflict
        **identifiers: Identifiers of the conflicting record (never the secret)

    Returns:
        Configured AlreadyLinkedElsewhereError instance with 409 status
    """
    return AlreadyLinkedElsewhereError(
        f"{resource_type} already linked to another account",
        resource_type=resource_type,
        **identifiers,
    )


# Correlation ID management
def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current request context."""
    _correlation_id.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    """Get the correlation ID of the current request context."""
    return _correlation_id.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID of the current request context."""
    _correlation_id.set(None)
