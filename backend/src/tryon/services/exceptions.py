"""Gateway error hierarchy.

Every error a client can see is a GatewayError subclass carrying its own HTTP
status, error code and payload, so the API layer renders all of them through a
single handler:

- GatewayError: Base for all client-facing errors
- Request errors: validation, body size, authentication, rate and queue limits
- Provider errors: fal.ai API errors, configuration, circuit breaker
"""

from typing import Any


class GatewayError(Exception):
    """Base exception for all client-facing gateway errors."""

    status_code: int = 500
    error_code: str = "TRY_ON_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def headers(self) -> dict[str, str] | None:
        return None

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.error_code, "message": self.message}


# Request errors (detected locally, never reach the provider)
class TryOnValidationError(GatewayError):
    """Payload shape or field validation failure."""

    status_code = 400
    error_code = "INVALID_REQUEST"

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field

    def to_payload(self) -> dict[str, Any]:
        return {**super().to_payload(), "field": self.field}


class RequestTooLargeError(GatewayError):
    """Request body exceeds the configured size cap."""

    status_code = 413
    error_code = "REQUEST_TOO_LARGE"

    def __init__(self, message: str = "Request body exceeds allowed size"):
        super().__init__(message)


class UnauthorizedError(GatewayError):
    """No valid session."""

    status_code = 401
    error_code = "UNAUTHORIZED"

    def __init__(self, message: str = "Authentication required."):
        super().__init__(message)


class RateLimitExceeded(GatewayError):
    """Fixed rate-limit window exhausted for a client."""

    status_code = 429
    error_code = "RATE_LIMITED"

    def __init__(
        self,
        retry_after_seconds: int,
        message: str = "Too many requests. Please slow down.",
        limit: int | None = None,
        reset_at: str | None = None,
    ):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds
        self.limit = limit
        self.reset_at = reset_at

    @property
    def headers(self) -> dict[str, str]:
        headers = {"Retry-After": str(self.retry_after_seconds)}
        if self.limit is not None:
            headers["X-RateLimit-Limit"] = str(self.limit)
            headers["X-RateLimit-Remaining"] = "0"
        if self.reset_at is not None:
            headers["X-RateLimit-Reset"] = self.reset_at
        return headers


class QueueLimitExceeded(GatewayError):
    """Client already has the maximum number of active try-on jobs."""

    status_code = 429
    error_code = "QUEUE_LIMIT_REACHED"

    def __init__(
        self,
        message: str = "Too many pending try-ons. Please wait for existing jobs to finish.",
    ):
        super().__init__(message)


# Provider errors
class FalApiError(GatewayError):
    """fal.ai answered with a non-2xx status.

    Attributes:
        status: HTTP status returned by the provider
        body: Parsed JSON error body (or raw text, or None)
    """

    def __init__(self, status: int, body: Any = None, message: str | None = None):
        super().__init__(message or f"fal.ai request failed with status {status}")
        self.status = status
        self.body = body

    @property
    def retryable(self) -> bool:
        return self.status in (408, 429) or self.status >= 500

    @property
    def status_code(self) -> int:  # type: ignore[override]
        return self.status if self.status >= 400 else 500

    @property
    def error_code(self) -> str:  # type: ignore[override]
        return "TRY_ON_NOT_FOUND" if self.status == 404 else "FAL_API_ERROR"

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.error_code, "message": extract_fal_error_message(self)}


class FalClientConfigError(GatewayError):
    """Provider client cannot be built (missing credentials)."""

    status_code = 503
    error_code = "TRY_ON_SERVICE_UNAVAILABLE"

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": self.error_code,
            "message": "AI try-on service is not configured",
            "detail": self.message,
        }


class CircuitOpenError(GatewayError):
    """Circuit breaker is open; provider calls are rejected without network I/O."""

    status_code = 503
    error_code = "TRY_ON_SERVICE_THROTTLED"

    def __init__(self, message: str = "fal.ai circuit breaker is open"):
        super().__init__(message)

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": self.error_code,
            "message": "AI try-on service is temporarily unavailable. Please wait and try again.",
        }


class TryOnUnexpectedError(GatewayError):
    """Any other failure while serving a try-on request."""

    status_code = 500
    error_code = "TRY_ON_ERROR"

    def __init__(self, message: str = "Unable to process try-on request"):
        super().__init__(message)


def extract_fal_error_message(error: FalApiError) -> str:
    """Pull a human-readable message out of a fal.ai error body.

    A `detail` list is joined from each item's `msg`; a scalar `detail` or a
    `message` field is used as-is; otherwise the exception message is returned.
    """
    body = error.body
    if isinstance(body, dict):
        if "detail" in body:
            detail = body["detail"]
            if isinstance(detail, list):
                return "; ".join(
                    str(item["msg"])
                    if isinstance(item, dict) and item.get("msg")
                    else error.message
                    for item in detail
                )
            return str(detail)

        if "message" in body:
            return str(body["message"])

    return error.message or "fal.ai request failed"
