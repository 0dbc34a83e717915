"""
Shared error handling for the dashboard data-freshness layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Error state surfaced to UI-layer consumers."""

    code: str
    message: str
    status_code: Optional[int] = None
    details: Dict[str, Any] = {}


class FreshnessLayerException(Exception):
    """Base exception for the freshness layer."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            status_code=getattr(self, "status_code", None),
            details=self.details
        )


class FetchError(FreshnessLayerException):
    """A fetch function rejected; carries the upstream status code when known."""

    def __init__(self, message: str = "Fetch failed", status_code: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        super().__init__("FETCH_ERROR", message, details)


class StorageError(FreshnessLayerException):
    """Durable session medium read/write/quota errors."""

    def __init__(self, message: str = "Storage unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORAGE_ERROR", message, details)


class StreamConnectionError(FreshnessLayerException):
    """Push stream failed to open or dropped."""

    def __init__(self, message: str = "Stream connection failed", terminal: bool = True,
                 details: Optional[Dict[str, Any]] = None):
        self.terminal = terminal
        super().__init__("STREAM_CONNECTION_ERROR", message, details)


class MalformedEventError(FreshnessLayerException):
    """A stream event payload could not be decoded."""

    def __init__(self, event: str, raw: Any, message: str = "Malformed stream event"):
        super().__init__("MALFORMED_EVENT", message, {"event": event, "raw": str(raw)[:200]})
        self.event = event


class ConfigurationError(FreshnessLayerException):
    """Invalid configuration or policy values."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


def to_error_response(error: BaseException) -> ErrorResponse:
    """Map any exception raised by a fetch function to a consumer-visible error."""
    if isinstance(error, FreshnessLayerException):
        return error.to_response()
    return ErrorResponse(
        code="UNEXPECTED_ERROR",
        message=str(error) or error.__class__.__name__,
        status_code=getattr(error, "status_code", None),
    )
