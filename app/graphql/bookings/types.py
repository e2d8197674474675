"""
GraphQL types for bookings
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List
import strawberry

from app.models.classModel import Booking as BookingModel


@strawberry.enum
class BookingOutcome(Enum):
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"


@strawberry.type
class Booking:
    """Booking GraphQL type"""
    id: int
    studio_id: int
    client_id: int
    session_id: int
    status: str
    paid_amount: Optional[Decimal]
    payment_id: Optional[str]
    cancelled_at: Optional[datetime]
    cancellation_reason: Optional[str]
    notes: Optional[str]
    created_at: datetime

    # Related data
    client_name: Optional[str]
    session_start: Optional[datetime]
    session_end: Optional[datetime]

    @classmethod
    def from_model(cls, booking: BookingModel) -> "Booking":
        loaded = booking.__dict__
        client = loaded.get("client")
        session = loaded.get("class_session")
        return cls(
            id=booking.id,
            studio_id=booking.studio_id,
            client_id=booking.client_id,
            session_id=booking.class_session_id,
            status=booking.status,
            paid_amount=booking.paid_amount,
            payment_id=booking.payment_id,
            cancelled_at=booking.cancelled_at,
            cancellation_reason=booking.cancellation_reason,
            notes=booking.notes,
            created_at=booking.created_at,
            client_name=client.full_name if client else None,
            session_start=session.start_time if session else None,
            session_end=session.end_time if session else None
        )


@strawberry.type
class BookingResponse:
    """Response for booking operations"""
    success: bool
    message: str
    error_code: Optional[str] = None
    booking: Optional[Booking] = None
    # Set when the class is full and the client can join the waitlist instead
    can_join_waitlist: bool = False


@strawberry.type
class CancelBookingResponse:
    success: bool
    message: str
    error_code: Optional[str] = None
    booking: Optional[Booking] = None
    promoted_waitlist_entry_id: Optional[int] = None


@strawberry.type
class BookingsResponse:
    bookings: List[Booking]
    total_count: int


@strawberry.input
class BookClassInput:
    session_id: int
    client_id: Optional[int] = None
    paid_amount: Optional[Decimal] = None
    payment_id: Optional[str] = None
    notes: Optional[str] = None
    block_overlapping: Optional[bool] = None


@strawberry.input
class CancelBookingInput:
    booking_id: int
    reason: Optional[str] = None


@strawberry.input
class MarkOutcomeInput:
    booking_id: int
    outcome: BookingOutcome
