"""Typed errors for the marketplace connector library."""

import math
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Closed set of error kinds raised by the connector."""

    AUTH_FAILED = "auth_failed"
    TOKEN_EXPIRED = "token_expired"
    INVALID_CREDENTIALS = "invalid_credentials"
    NOT_FOUND = "not_found"
    OUT_OF_STOCK = "out_of_stock"
    API_ERROR = "api_error"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    INVALID_REQUEST = "invalid_request"
    NETWORK_ERROR = "network_error"
    CIRCUIT_OPEN = "circuit_open"
    BATCH_PARTIAL_FAILURE = "batch_partial_failure"
    SYNC_CONFLICT = "sync_conflict"
    VALIDATION_ERROR = "validation_error"
    QUOTA_EXCEEDED = "quota_exceeded"


class MarketplaceError(Exception):
    """
    Base exception for all marketplace connector errors.

    Attributes:
        message: Human readable message
        retryable: Whether a caller may retry the logical operation
        retry_after: Suggested wait in seconds before retrying
        error_code: Vendor supplied error code, if any
        http_status: HTTP status of the failed response, if any
        endpoint: Endpoint the failure belongs to
        context: Free-form diagnostic context
    """

    kind: ErrorKind = ErrorKind.API_ERROR
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        retryable: bool | None = None,
        retry_after: float | None = None,
        error_code: str | None = None,
        http_status: int | None = None,
        endpoint: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        self.message = message
        self.retryable = self.default_retryable if retryable is None else retryable
        self.retry_after = retry_after
        self.error_code = error_code
        self.http_status = http_status
        self.endpoint = endpoint
        self.context = context or {}
        self.timestamp = datetime.now(UTC)
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert exception to API error response format."""
        return {
            "error": {
                "code": self.kind.value,
                "message": self.message,
                "retryable": self.retryable,
                "retry_after": self.retry_after,
                "vendor_code": self.error_code,
                "http_status": self.http_status,
                "endpoint": self.endpoint,
                "timestamp": self.timestamp.isoformat(),
            }
        }


class AuthenticationError(MarketplaceError):
    """Authentication failed (bad signature, rejected token, token fetch failure)."""

    kind = ErrorKind.AUTH_FAILED


class TokenExpiredError(MarketplaceError):
    """Bearer token expired before the request completed."""

    kind = ErrorKind.TOKEN_EXPIRED


class InvalidCredentialsError(MarketplaceError):
    """Client id / secret rejected or malformed."""

    kind = ErrorKind.INVALID_CREDENTIALS


class NotFoundError(MarketplaceError):
    """Product or order does not exist."""

    kind = ErrorKind.NOT_FOUND


class OutOfStockError(MarketplaceError):
    """Product has no stock left."""

    kind = ErrorKind.OUT_OF_STOCK


class ApiError(MarketplaceError):
    """Generic vendor API failure (5xx and unclassified errors)."""

    kind = ErrorKind.API_ERROR
    default_retryable = True


class RateLimitError(MarketplaceError):
    """Vendor rejected the request with a rate limit response."""

    kind = ErrorKind.RATE_LIMIT
    default_retryable = True


class RequestTimeoutError(MarketplaceError):
    """Request timed out at the transport level."""

    kind = ErrorKind.TIMEOUT
    default_retryable = True


class InvalidRequestError(MarketplaceError):
    """Vendor rejected the request as malformed."""

    kind = ErrorKind.INVALID_REQUEST


class NetworkError(MarketplaceError):
    """Connection refused, DNS failure or other transport error."""

    kind = ErrorKind.NETWORK_ERROR
    default_retryable = True


class CircuitOpenError(MarketplaceError):
    """Circuit breaker rejected the call without invoking it."""

    kind = ErrorKind.CIRCUIT_OPEN

    def __init__(self, endpoint: str, retry_after: float | None = None, **kwargs: Any):
        wait = f" Will retry in {math.ceil(retry_after)}s" if retry_after else ""
        super().__init__(
            f"Circuit breaker is open for {endpoint}.{wait}",
            endpoint=endpoint,
            retry_after=retry_after,
            **kwargs,
        )


class BatchPartialFailureError(MarketplaceError):
    """Raised by strict batch execution when any item failed."""

    kind = ErrorKind.BATCH_PARTIAL_FAILURE

    def __init__(self, success_count: int, failure_count: int, failures: list[Any], **kwargs: Any):
        super().__init__(
            f"Batch operation partially failed: {success_count} succeeded, {failure_count} failed",
            context={"success_count": success_count, "failure_count": failure_count},
            **kwargs,
        )
        self.success_count = success_count
        self.failure_count = failure_count
        self.failures = failures


class SyncConflictError(MarketplaceError):
    """Local and remote versions of an entity could not be reconciled."""

    kind = ErrorKind.SYNC_CONFLICT

    def __init__(
        self,
        resource_id: str,
        message: str,
        conflict_data: dict[str, Any] | None = None,
        **kwargs: Any,
    ):
        super().__init__(
            f"Sync conflict for {resource_id}: {message}",
            context={"resource_id": resource_id, **(conflict_data or {})},
            **kwargs,
        )
        self.resource_id = resource_id


class ValidationError(MarketplaceError):
    """Input rejected before any network call was made."""

    kind = ErrorKind.VALIDATION_ERROR

    def __init__(self, message: str, field: str | None = None, value: Any = None, **kwargs: Any):
        super().__init__(message, context={"field": field, "value": value}, **kwargs)
        self.field = field
        self.value = value


class QuotaExceededError(MarketplaceError):
    """Local or vendor quota exhausted."""

    kind = ErrorKind.QUOTA_EXCEEDED
    default_retryable = True

    def __init__(self, endpoint: str, retry_after: float | None = None, **kwargs: Any):
        kwargs.setdefault("endpoint", endpoint)
        super().__init__(
            f"Rate limit quota exceeded for {endpoint}",
            retry_after=retry_after,
            **kwargs,
        )


class WebhookError(MarketplaceError):
    """Webhook verification or parsing errors."""

    kind = ErrorKind.INVALID_REQUEST


class CheckpointError(MarketplaceError):
    """Checkpoint storage or retrieval errors."""

    kind = ErrorKind.API_ERROR
    default_retryable = False


ERROR_CLASSES: dict[ErrorKind, type[MarketplaceError]] = {
    ErrorKind.AUTH_FAILED: AuthenticationError,
    ErrorKind.TOKEN_EXPIRED: TokenExpiredError,
    ErrorKind.INVALID_CREDENTIALS: InvalidCredentialsError,
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.OUT_OF_STOCK: OutOfStockError,
    ErrorKind.API_ERROR: ApiError,
    ErrorKind.RATE_LIMIT: RateLimitError,
    ErrorKind.TIMEOUT: RequestTimeoutError,
    ErrorKind.INVALID_REQUEST: InvalidRequestError,
    ErrorKind.NETWORK_ERROR: NetworkError,
}


def error_for_kind(kind: ErrorKind, message: str, **kwargs: Any) -> MarketplaceError:
    """
    Build a typed error for a transport-level error kind.

    Args:
        kind: Error kind to instantiate
        message: Error message
        **kwargs: Metadata forwarded to MarketplaceError

    Returns:
        Instance of the matching MarketplaceError subclass
    """
    error_cls = ERROR_CLASSES.get(kind, ApiError)
    return error_cls(message, **kwargs)
