"""
Shared error handling for the marketplace backend.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from shared.logging import current_trace_id


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class MarketplaceException(Exception):
    """Base exception for marketplace services."""

    status_code: int = 400

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            trace_id=current_trace_id(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(MarketplaceException):
    """Validation-related errors."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(MarketplaceException):
    """Requested document does not exist."""

    status_code = 404

    def __init__(self, resource: str, resource_id: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "NOT_FOUND",
            f"{resource} not found",
            {"resource": resource, "id": resource_id, **(details or {})},
        )
