"""
GraphQL queries for bookings
"""
from typing import Optional
import strawberry
from strawberry.types import Info

from app.crud.bookingsCrud import get_client_bookings, get_session_bookings
from app.crud.classSessionCrud import get_class_session_by_id
from app.graphql.auth.permissions import IsAuthenticated, IsStaff, ensure_same_studio, resolve_client_id
from .types import Booking, BookingsResponse


@strawberry.type
class BookingQueries:
    """Booking queries"""

    @strawberry.field(permission_classes=[IsStaff])
    async def get_session_bookings(
        self,
        info: Info,
        session_id: int,
        include_cancelled: bool = False
    ) -> BookingsResponse:
        """Roster of a class session"""
        db = info.context.db

        session = await get_class_session_by_id(db, session_id)
        ensure_same_studio(info, session, "class session", session_id)
        bookings = await get_session_bookings(db, session_id, include_cancelled=include_cancelled)

        return BookingsResponse(
            bookings=[Booking.from_model(b) for b in bookings],
            total_count=len(bookings)
        )

    @strawberry.field(permission_classes=[IsAuthenticated])
    async def get_client_bookings(
        self,
        info: Info,
        client_id: Optional[int] = None,
        include_past: bool = False,
        include_cancelled: bool = False
    ) -> BookingsResponse:
        """Bookings of a client; clients see their own"""
        db = info.context.db

        client_id = resolve_client_id(info, client_id)
        bookings = await get_client_bookings(
            db,
            client_id,
            include_past=include_past,
            include_cancelled=include_cancelled
        )
        bookings = [b for b in bookings if b.studio_id == info.context.principal.studio_id]

        return BookingsResponse(
            bookings=[Booking.from_model(b) for b in bookings],
            total_count=len(bookings)
        )
