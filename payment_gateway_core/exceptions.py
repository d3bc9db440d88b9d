"""
Consolidated exception system with error codes, context, and correlation support.

This module provides the exception hierarchy for the gateway core. Every
error logs itself on construction, carries a stable error code and an HTTP
status, and can be rendered for API responses with ``to_dict()``.
"""

import threading
import traceback
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

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
    AMOUNT_MISMATCH = "2005"

    # Resource errors (3xxx)
    NOT_FOUND = "3000"
    DUPLICATE = "3001"
    CONFLICT = "3002"

    # Business logic errors (4xxx)
    BUSINESS_RULE_VIOLATION = "4000"
    INVALID_STATE_TRANSITION = "4001"
    PERMISSION_DENIED = "4003"

    # External service errors (5xxx)
    QUEUE_ERROR = "5001"
    EXTERNAL_API_ERROR = "5002"
    INTEGRATION_ERROR = "5003"
    AUTHENTICATION_FAILED = "5005"


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
        # Imported lazily, the logger module imports config which imports nothing from here
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
                "type": type(self).__name__,
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
class RepositoryError(BaseError):
    """Persistence layer errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.DATABASE_ERROR,
        status_code: int = 500,
        cause: Optional[Exception] = None,
        **context,
    ):
        super().__init__(message, error_code, status_code, cause, **context)


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
    """Validation errors: bad input, malformed callbacks, amount mismatches."""

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


class ConfigError(BaseError):
    """Missing, inactive or malformed configuration. Not retryable without operator action."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CONFIGURATION_ERROR,
        cause: Optional[Exception] = None,
        **context,
    ):
        super().__init__(message, error_code, 500, cause, **context)


class ProviderError(BaseError):
    """Base class for failures talking to an external payment provider."""

    def __init__(
        self,
        message: str,
        provider: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_API_ERROR,
        status_code: int = 502,
        cause: Optional[Exception] = None,
        **context,
    ):
        context["provider"] = provider
        self.provider = provider
        super().__init__(message, error_code, status_code, cause, **context)


class ProviderAuthError(ProviderError):
    """Token acquisition or request signing failed."""

    def __init__(self, message: str, provider: str, cause: Optional[Exception] = None, **context):
        super().__init__(
            message, provider, ErrorCode.AUTHENTICATION_FAILED, 502, cause, **context
        )


class ProviderTimeoutError(ProviderError):
    """The provider did not answer within the configured timeout, or was unreachable."""

    def __init__(self, message: str, provider: str, cause: Optional[Exception] = None, **context):
        super().__init__(message, provider, ErrorCode.TIMEOUT_ERROR, 504, cause, **context)


class ProviderRejectedError(ProviderError):
    """The provider declined the push request itself."""

    def __init__(
        self,
        message: str,
        provider: str,
        provider_code: Optional[str] = None,
        cause: Optional[Exception] = None,
        **context,
    ):
        if provider_code is not None:
            context["provider_code"] = provider_code
        self.provider_code = provider_code
        super().__init__(message, provider, ErrorCode.EXTERNAL_API_ERROR, 502, cause, **context)


class NotFoundError(RepositoryError):
    """A referenced record does not exist."""

    def __init__(self, message: str, cause: Optional[Exception] = None, **context):
        super().__init__(message, ErrorCode.NOT_FOUND, 404, cause, **context)


class DuplicateError(RepositoryError):
    """An idempotent skip: the record or transition already exists."""

    def __init__(self, message: str, cause: Optional[Exception] = None, **context):
        super().__init__(message, ErrorCode.DUPLICATE, 409, cause, **context)

    def _log_error(self) -> None:
        # Duplicates are expected under at-least-once delivery
        from .utils.logger import get_logger

        get_logger().info(
            f"Duplicate skipped: {self.message}",
            extra={"error_id": self.error_id, "error_code": self.error_code.value},
        )


class SecurityRejection(BaseError):
    """An inbound request came from an unauthorized source."""

    def __init__(
        self,
        message: str,
        source_address: Optional[str] = None,
        cause: Optional[Exception] = None,
        **context,
    ):
        context["source_address"] = source_address
        super().__init__(message, ErrorCode.PERMISSION_DENIED, 403, cause, **context)


# Factory functions for common error patterns
def not_found(resource_type: str, cause: Optional[Exception] = None, **identifiers) -> NotFoundError:
    """
    Factory for not found errors.

    Args:
        resource_type: Type of resource (e.g., 'Invoice', 'Lease')
        cause: Original exception if any
        **identifiers: Resource identifiers (e.g., invoice_id='123')

    Returns:
        Configured NotFoundError instance with 404 status
    """
    id_parts = [f"{k}={v}" for k, v in identifiers.items()]
    message = f"{resource_type} not found"
    if id_parts:
        message += f": {', '.join(id_parts)}"

    return NotFoundError(message, cause=cause, resource_type=resource_type, **identifiers)


def duplicate(resource_type: str, cause: Optional[Exception] = None, **identifiers) -> DuplicateError:
    """
    Factory for duplicate resource errors.

    Args:
        resource_type: Type of resource (e.g., 'PaymentTransaction')
        cause: Original exception if any
        **identifiers: Resource identifiers

    Returns:
        Configured DuplicateError instance with 409 status
    """
    id_parts = [f"{k}={v}" for k, v in identifiers.items()]
    message = f"Duplicate {resource_type}"
    if id_parts:
        message += f": {', '.join(id_parts)}"

    return DuplicateError(message, cause=cause, resource_type=resource_type, **identifiers)


def validation_failed(
    field: str, value: Any, reason: str, cause: Optional[Exception] = None
) -> ValidationError:
    """
    Factory for validation errors.

    Args:
        field: Field that failed validation
        value: The invalid value
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
