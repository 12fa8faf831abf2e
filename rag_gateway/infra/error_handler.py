"""Upstream error types and classification."""

from enum import Enum
from typing import Optional

import httpx


class ErrorCategory(str, Enum):
    """Categories of errors for better handling."""
    NETWORK = "network"  # Connection issues, timeouts
    API_ERROR = "api_error"  # API returned error response
    AUTH_ERROR = "auth_error"  # Authentication/authorization failures
    RATE_LIMIT = "rate_limit"  # Rate limit or quota exceeded
    UNAVAILABLE = "unavailable"  # Circuit breaker open
    UNKNOWN = "unknown"


class UpstreamError(Exception):
    """Base exception for failures of an upstream service call."""
    def __init__(self, message: str, category: ErrorCategory, retryable: bool = False, retry_after: Optional[float] = None):
        self.message = message
        self.category = category
        self.retryable = retryable
        self.retry_after = retry_after
        super().__init__(message)

    def user_message(self) -> str:
        """Self-explanatory text suitable for an in-band tool result."""
        return f"Error: {self.message}"


class NetworkError(UpstreamError):
    """Network-related errors (connection, timeout)."""
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, ErrorCategory.NETWORK, retryable=True, retry_after=retry_after)

    def user_message(self) -> str:
        return f"Error: {self.message}. The search service could not be reached; please try again shortly."


class APIError(UpstreamError):
    """API returned an error response."""
    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = False, retry_after: Optional[float] = None):
        self.status_code = status_code
        super().__init__(message, ErrorCategory.API_ERROR, retryable=retryable, retry_after=retry_after)


class ClientRequestError(APIError):
    """Upstream rejected the request itself (4xx), e.g. an unknown model name."""


class AuthError(UpstreamError):
    """Authentication/authorization errors against the upstream service."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.AUTH_ERROR, retryable=False)


class RateLimitError(UpstreamError):
    """Rate limit or quota exceeded."""
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, ErrorCategory.RATE_LIMIT, retryable=True, retry_after=retry_after)

    def user_message(self) -> str:
        wait = f" Retry after about {int(self.retry_after)} seconds." if self.retry_after else ""
        return (
            "Error: QUOTA_EXCEEDED. The upstream search quota or rate limit was exceeded "
            "(free tier allows 15 requests per minute). Please wait a moment and try again."
            + wait
        )


class CircuitOpenError(UpstreamError):
    """Raised without calling upstream while the circuit breaker is open."""
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, ErrorCategory.UNAVAILABLE, retryable=True, retry_after=retry_after)

    def user_message(self) -> str:
        return f"Error: the search service is temporarily unavailable after repeated failures. {self.message}"


def _retry_after_from_headers(headers) -> Optional[float]:
    value = headers.get("retry-after") if headers is not None else None
    if not value:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _error_detail(response: httpx.Response) -> str:
    """Pull the upstream error message out of a JSON error body if present."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if body.get("message"):
            return str(body["message"])
    return response.text[:200]


def wrap_upstream_error(error: Exception, provider: str) -> UpstreamError:
    """
    Wrap an exception raised while calling an upstream service.

    Args:
        error: Original exception
        provider: Upstream name used in messages ('gemini', 'supabase')

    Returns:
        UpstreamError subclass with the appropriate category
    """
    if isinstance(error, UpstreamError):
        return error

    if isinstance(error, httpx.HTTPStatusError):
        status_code = error.response.status_code
        detail = _error_detail(error.response)
        if status_code == 429:
            return RateLimitError(
                f"{provider} rate limit exceeded (429)",
                retry_after=_retry_after_from_headers(error.response.headers),
            )
        if status_code in (401, 403):
            return AuthError(f"{provider} rejected the credentials ({status_code}): {detail}")
        if status_code >= 500:
            return APIError(f"{provider} server error ({status_code}): {detail}", status_code=status_code, retryable=True)
        return ClientRequestError(f"{provider} API error ({status_code}): {detail}", status_code=status_code)

    if isinstance(error, httpx.TimeoutException):
        return NetworkError(f"{provider} request timed out")

    if isinstance(error, httpx.RequestError):
        return NetworkError(f"{provider} network error: {error}")

    # SDK errors (google-genai) expose an HTTP status as `code`
    status_code = getattr(error, "code", None)
    if isinstance(status_code, int):
        if status_code == 429:
            return RateLimitError(f"{provider} rate limit exceeded (429)")
        if status_code in (401, 403):
            return AuthError(f"{provider} auth error ({status_code})")
        if 400 <= status_code < 500:
            return ClientRequestError(f"{provider} API error ({status_code}): {error}", status_code=status_code)
        return APIError(
            f"{provider} API error ({status_code}): {error}",
            status_code=status_code,
            retryable=status_code >= 500,
        )

    error_lower = str(error).lower()
    if "quota" in error_lower or "rate limit" in error_lower:
        return RateLimitError(f"{provider} rate limit exceeded")

    return UpstreamError(f"{provider} error: {error}", ErrorCategory.UNKNOWN)
