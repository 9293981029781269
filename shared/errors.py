"""
Shared error handling for the Morph view client.
"""

from enum import Enum
from typing import Dict, Any, Optional
from pydantic import BaseModel

from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class MorphError(Exception):
    """Base exception for the Morph client."""

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


class ValidationError(MorphError):
    """Malformed request input."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotReadyExhaustedError(MorphError):
    """Upstream kept answering 202 after the polling budget was spent."""

    def __init__(self, url: str, attempts: int):
        self.url = url
        self.attempts = attempts
        super().__init__(
            "MORPH_NOT_READY",
            f"Response code was 202 after {attempts} tries. URL: {url}",
            {"url": url, "attempts": attempts, "status_code": 202},
        )


class TransportErrorKind(str, Enum):
    """Classification of a failed upstream call."""
    NETWORK = "network"
    HTTP = "http"


class MorphTransportError(MorphError):
    """Network failure or an unexpected upstream status."""

    def __init__(
        self,
        kind: TransportErrorKind,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.kind = kind
        self.status_code = status_code
        merged = {"kind": kind.value, "status_code": status_code}
        merged.update(details or {})
        super().__init__("MORPH_TRANSPORT_ERROR", message, merged)


class MorphDecodeError(MorphError):
    """Response body could not be decoded into a view."""

    def __init__(self, message: str = "Malformed view document", details: Optional[Dict[str, Any]] = None):
        super().__init__("MORPH_DECODE_ERROR", message, details)
