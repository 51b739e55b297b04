"""Translate raw transport and vendor failures into typed connector errors."""

import logging
from typing import Any

import httpx

from .exceptions import (
    ApiError,
    ErrorKind,
    MarketplaceError,
    NetworkError,
    QuotaExceededError,
    RequestTimeoutError,
    error_for_kind,
)

logger = logging.getLogger(__name__)

# Vendor error code -> error kind. Kept separate from the retry policy table.
VENDOR_ERROR_CODES: dict[str, ErrorKind] = {
    # Authentication
    "AUTH01": ErrorKind.AUTH_FAILED,
    "AUTH02": ErrorKind.INVALID_CREDENTIALS,
    "AUTH03": ErrorKind.AUTH_FAILED,
    "AUTH04": ErrorKind.AUTH_FAILED,
    # Orders
    "ORD02": ErrorKind.NOT_FOUND,
    "ORD004": ErrorKind.INVALID_REQUEST,
    "ORD03": ErrorKind.INVALID_REQUEST,
    "ORD05": ErrorKind.INVALID_REQUEST,
    "ORD112": ErrorKind.INVALID_REQUEST,
    "ORD114": ErrorKind.INVALID_REQUEST,
    "ORD121": ErrorKind.QUOTA_EXCEEDED,
    "ORD122": ErrorKind.API_ERROR,
    # Rate limiting
    "BR03": ErrorKind.RATE_LIMIT,
}

# Vendor coded errors of these kinds may be retried.
RETRYABLE_VENDOR_KINDS = frozenset({ErrorKind.RATE_LIMIT, ErrorKind.QUOTA_EXCEEDED})

DEFAULT_RATE_LIMIT_RETRY_AFTER = 5.0


def _parse_retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _response_body(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class ErrorMapper:
    """
    Maps failures to MarketplaceError subclasses.

    Resolution order: already typed errors pass through, then vendor error
    codes, then HTTP status ranges, then network-level exceptions.
    """

    def __init__(self, vendor_codes: dict[str, ErrorKind] | None = None):
        self.vendor_codes = dict(VENDOR_ERROR_CODES)
        if vendor_codes:
            self.vendor_codes.update(vendor_codes)

    def register_code(self, code: str, kind: ErrorKind) -> None:
        """Add or override a vendor error code mapping."""
        self.vendor_codes[code] = kind

    def map(
        self,
        error: BaseException,
        operation: str = "request",
        endpoint: str | None = None,
    ) -> MarketplaceError:
        """
        Classify an exception.

        Args:
            error: Raised exception
            operation: Operation name, used in messages
            endpoint: Endpoint the call targeted

        Returns:
            Typed MarketplaceError (the same object if already typed)
        """
        if isinstance(error, MarketplaceError):
            if endpoint and not error.endpoint:
                error.endpoint = endpoint
            return error

        if isinstance(error, httpx.HTTPStatusError):
            return self.from_response(error.response, operation, endpoint)

        context = {"operation": operation, "original_error": str(error)}

        if isinstance(error, (httpx.TimeoutException, TimeoutError)):
            return RequestTimeoutError(
                f"Request timeout in {operation}: {error}",
                endpoint=endpoint,
                context=context,
            )

        if isinstance(error, (httpx.TransportError, ConnectionError)):
            return NetworkError(
                f"Network error in {operation}: {error}",
                endpoint=endpoint,
                context=context,
            )

        return ApiError(
            f"API error in {operation}: {error}",
            retryable=False,
            endpoint=endpoint,
            context={**context, "error_type": type(error).__name__},
        )

    def from_response(
        self,
        response: httpx.Response,
        operation: str = "request",
        endpoint: str | None = None,
    ) -> MarketplaceError:
        """
        Classify a non-2xx response.

        Args:
            response: HTTP response
            operation: Operation name
            endpoint: Endpoint the call targeted

        Returns:
            Typed MarketplaceError
        """
        status = response.status_code
        body = _response_body(response)
        vendor_code = body.get("code") or body.get("errorCode")
        message = body.get("message") or response.reason_phrase or f"HTTP {status}"
        retry_after = _parse_retry_after(response)

        common: dict[str, Any] = {
            "http_status": status,
            "endpoint": endpoint,
            "context": {"operation": operation, "errors": body.get("errors")},
        }

        if vendor_code and vendor_code in self.vendor_codes:
            kind = self.vendor_codes[vendor_code]
            retryable = kind in RETRYABLE_VENDOR_KINDS
            if kind == ErrorKind.QUOTA_EXCEEDED:
                return QuotaExceededError(
                    endpoint or operation,
                    retry_after=retry_after,
                    error_code=vendor_code,
                    retryable=retryable,
                    http_status=status,
                    context=common["context"],
                )
            return error_for_kind(
                kind,
                f"{message} ({vendor_code}) in {operation}",
                retryable=retryable,
                retry_after=retry_after,
                error_code=vendor_code,
                **common,
            )

        if vendor_code:
            logger.debug("Unmapped vendor error code %s in %s", vendor_code, operation)
            common["error_code"] = vendor_code

        if status in (401, 403):
            kind, retryable = ErrorKind.AUTH_FAILED, False
        elif status == 404:
            kind, retryable = ErrorKind.NOT_FOUND, False
        elif status == 429:
            kind, retryable = ErrorKind.RATE_LIMIT, True
            retry_after = retry_after if retry_after is not None else DEFAULT_RATE_LIMIT_RETRY_AFTER
        elif status >= 500:
            kind, retryable = ErrorKind.API_ERROR, True
        elif status >= 400:
            kind, retryable = ErrorKind.INVALID_REQUEST, False
        else:
            kind, retryable = ErrorKind.API_ERROR, False

        return error_for_kind(
            kind,
            f"{message} (HTTP {status}) in {operation}",
            retryable=retryable,
            retry_after=retry_after,
            **common,
        )
