"""
GraphQL mutations for bookings
"""
import strawberry
from strawberry.types import Info

from app.core.exceptions import SessionFullError
from app.crud.bookingsCrud import book_class, cancel_booking, get_booking_by_id, mark_outcome
from app.crud.classSessionCrud import get_class_session_by_id
from app.graphql.auth.permissions import (
    IsAuthenticated,
    IsStaff,
    ensure_owner_or_staff,
    ensure_same_studio,
    resolve_client_id
)
from app.graphql.errors import error_fields
from .types import (
    BookClassInput,
    Booking,
    BookingResponse,
    CancelBookingInput,
    CancelBookingResponse,
    MarkOutcomeInput
)


@strawberry.type
class BookingMutations:
    """Booking mutations"""

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def book_class(
        self,
        info: Info,
        input: BookClassInput
    ) -> BookingResponse:
        """Book a seat; a full class answers with can_join_waitlist"""
        db = info.context.db

        try:
            client_id = resolve_client_id(info, input.client_id)
            session = await get_class_session_by_id(db, input.session_id)
            ensure_same_studio(info, session, "class session", input.session_id)

            booking = await book_class(
                db,
                session_id=input.session_id,
                client_id=client_id,
                paid_amount=input.paid_amount,
                payment_id=input.payment_id,
                notes=input.notes,
                enforce_client_overlap=input.block_overlapping
            )

            return BookingResponse(
                success=True,
                booking=Booking.from_model(booking),
                message="Class booked successfully"
            )
        except SessionFullError as e:
            return BookingResponse(can_join_waitlist=True, **error_fields(e, "booking class"))
        except Exception as e:
            return BookingResponse(**error_fields(e, "booking class"))

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def cancel_booking(
        self,
        info: Info,
        input: CancelBookingInput
    ) -> CancelBookingResponse:
        """Cancel a booking and offer the seat to the waitlist"""
        db = info.context.db

        try:
            existing = await get_booking_by_id(db, input.booking_id)
            ensure_same_studio(info, existing, "booking", input.booking_id)
            ensure_owner_or_staff(info, existing.client_id)

            result = await cancel_booking(
                db,
                input.booking_id,
                input.reason,
                notifier=info.context.notifier
            )

            return CancelBookingResponse(
                success=True,
                booking=Booking.from_model(result.booking),
                promoted_waitlist_entry_id=result.promoted_entry.id if result.promoted_entry else None,
                message="Booking cancelled successfully"
            )
        except Exception as e:
            return CancelBookingResponse(**error_fields(e, "cancelling booking"))

    @strawberry.mutation(permission_classes=[IsStaff])
    async def mark_booking_outcome(
        self,
        info: Info,
        input: MarkOutcomeInput
    ) -> BookingResponse:
        """Record attendance or a no-show once the class has ended"""
        db = info.context.db

        try:
            existing = await get_booking_by_id(db, input.booking_id)
            ensure_same_studio(info, existing, "booking", input.booking_id)

            booking = await mark_outcome(db, input.booking_id, input.outcome.value)

            return BookingResponse(
                success=True,
                booking=Booking.from_model(booking),
                message=f"Booking marked {booking.status}"
            )
        except Exception as e:
            return BookingResponse(**error_fields(e, "marking outcome"))
