"""
Shared error handling for Pineapple Tours services.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from shared.logging import get_request_id


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class ToursServiceException(Exception):
    """Base exception for catalog services."""

    http_status: int = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=get_request_id(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(ToursServiceException):
    """Request validation errors."""

    http_status = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(ToursServiceException):
    """Requested resource does not exist upstream."""

    http_status = 404

    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class ConfigurationError(ToursServiceException):
    """Required configuration is missing; never retried and never served from cache."""

    http_status = 500

    def __init__(self, message: str = "Service misconfigured", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class UpstreamFailure(ToursServiceException):
    """An upstream fetch failed (network error, non-2xx status, malformed payload)."""

    http_status = 502

    def __init__(self, service: str, message: str = "Upstream request failed", details: Optional[Dict[str, Any]] = None):
        self.service = service
        super().__init__("UPSTREAM_FAILURE", f"{service}: {message}", details)
