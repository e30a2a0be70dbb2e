"""
Shared error handling for Tollgate.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class TollgateException(Exception):
    """Base exception for Tollgate services."""

    status_code: int = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(TollgateException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class EndpointNotFoundError(TollgateException):
    """Unknown endpoint id, or a stored record that cannot be decoded."""

    status_code = 404

    def __init__(self, endpoint_id: str, message: str = "Endpoint not found", details: Optional[Dict[str, Any]] = None):
        self.endpoint_id = endpoint_id
        super().__init__("ENDPOINT_NOT_FOUND", message, {"endpoint_id": endpoint_id, **(details or {})})


class RateLimitError(TollgateException):
    """Rate limiting or payment validation denied the request."""

    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded", details: Optional[Dict[str, Any]] = None,
                 retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__("RATE_LIMIT_ERROR", message, details)


class ExternalServiceError(TollgateException):
    """External service errors."""

    status_code = 503

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        self.service = service
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)


class UpstreamError(TollgateException):
    """The proxied upstream could not be reached."""

    status_code = 502

    def __init__(self, url: str, message: str = "Upstream unreachable", details: Optional[Dict[str, Any]] = None):
        self.url = url
        super().__init__("UPSTREAM_ERROR", message, {"url": url, **(details or {})})


class UpstreamTimeoutError(UpstreamError):
    """The proxied upstream did not answer in time."""

    status_code = 504

    def __init__(self, url: str, message: str = "Upstream timed out", details: Optional[Dict[str, Any]] = None):
        super().__init__(url, message, details)
        self.code = "UPSTREAM_TIMEOUT"


class StoreError(TollgateException):
    """Persistent store could not be opened or prepared."""

    status_code = 500

    def __init__(self, message: str = "Store error", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_ERROR", message, details)
