"""
Shared error handling for the compliance data layer.

Errors raised by the transport are captured by the query and mutation
executors and attached to cache entries and results; they only propagate
when a caller asks for them with ``raise_for_error()``.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


DEFAULT_ERROR_MESSAGE = "An unexpected error occurred"


class ErrorResponse(BaseModel):
    """Standard error payload exposed to the UI layer."""

    code: str
    message: str
    status_code: Optional[int] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class ComplianceClientError(Exception):
    """Base exception for the compliance client."""

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


class TransportError(ComplianceClientError):
    """Request never reached the server or the response could not be decoded."""

    def __init__(self, message: str = "Network error", details: Optional[Dict[str, Any]] = None):
        super().__init__("NETWORK_ERROR", message, details)


class ApplicationError(ComplianceClientError):
    """Server answered with a structured failure (validation, not found, ...)."""

    def __init__(self, status_code: int, message: str = "Request failed", details: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        super().__init__("APPLICATION_ERROR", message, details)


class ValidationError(ComplianceClientError):
    """Caller supplied unusable input."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


def get_error_message(error: Optional[BaseException]) -> str:
    """Extract a human readable message from any error."""
    if error is None:
        return DEFAULT_ERROR_MESSAGE
    if isinstance(error, ComplianceClientError):
        return error.message or DEFAULT_ERROR_MESSAGE
    return str(error) or DEFAULT_ERROR_MESSAGE
