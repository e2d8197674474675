"""
Domain exceptions for class scheduling, booking and waitlists.

CRUD and service functions raise these; the GraphQL layer turns them into
`success=False` responses carrying `error_code`, and `to_http_exception`
covers plain FastAPI routes.
"""
from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class DomainException(Exception):
    """Base exception for all scheduling errors."""

    default_code = "DOMAIN_ERROR"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.http_status,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationError(DomainException):
    """Malformed input; raised before anything is written."""

    default_code = "VALIDATION_ERROR"
    http_status = status.HTTP_400_BAD_REQUEST


class NotFoundError(DomainException):
    default_code = "NOT_FOUND"
    http_status = status.HTTP_404_NOT_FOUND


class ConflictError(DomainException):
    """Teacher, location, blocked-time or client overlap."""

    default_code = "SCHEDULE_CONFLICT"
    http_status = status.HTTP_409_CONFLICT


class CapacityError(DomainException):
    default_code = "CAPACITY_ERROR"
    http_status = status.HTTP_409_CONFLICT


class SessionFullError(CapacityError):
    default_code = "SESSION_FULL"


class DuplicateBookingError(DomainException):
    default_code = "DUPLICATE_BOOKING"
    http_status = status.HTTP_409_CONFLICT


class DuplicateWaitlistError(DomainException):
    default_code = "DUPLICATE_WAITLIST"
    http_status = status.HTTP_409_CONFLICT


class InvalidTransitionError(DomainException):
    """State machine violation on a booking, waitlist entry or session."""

    default_code = "INVALID_TRANSITION"
    http_status = status.HTTP_409_CONFLICT


class ForbiddenError(DomainException):
    """Caller may not act on this record."""

    default_code = "FORBIDDEN"
    http_status = status.HTTP_403_FORBIDDEN
