"""Custom exceptions and helpers for consistent error responses."""
from typing import Any, Dict


class AppError(Exception):
    """Base class for application errors."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(AppError):
    """Raised when a requested resource is missing."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status_code=404)


class CustomerNotFoundError(NotFoundError):
    """Raised when a customer id does not resolve to a customer."""

    def __init__(self, customer_id: int):
        super().__init__(f"Customer {customer_id} not found")
        self.customer_id = customer_id


class SegmentNotFoundError(NotFoundError):
    def __init__(self, segment_id: int):
        super().__init__(f"Segment {segment_id} not found")
        self.segment_id = segment_id


class ValidationError(AppError):
    """Raised when input validation fails."""

    def __init__(self, message: str = "Invalid input"):
        super().__init__(message, status_code=422)


def to_response(error: AppError) -> Dict[str, Any]:
    """Convert an AppError into a JSON response body."""
    return {"detail": str(error), "status": "error"}
