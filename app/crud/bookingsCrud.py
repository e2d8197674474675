"""
Capacity & booking engine.

Booking lifecycle: (none) -> CONFIRMED -> CANCELLED | COMPLETED | NO_SHOW.
Every decision that depends on the number of occupied seats of a session is
taken while holding that session's lock and the session row lock, and is
committed before the lock is released.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, and_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from app.core.config import get_settings
from app.core.exceptions import (
    ConflictError,
    DuplicateBookingError,
    InvalidTransitionError,
    NotFoundError,
    SessionFullError,
    ValidationError,
)
from app.core.locks import session_locks
from app.db.types import utcnow
from app.models.classModel import (
    Booking, BookingStatus, ClassSession, SessionStatus, WaitlistEntry, WaitlistStatus
)
from app.models.userModel import Client
from app.services.notifications import DispatchReport, Notifier

logger = logging.getLogger(__name__)

CLASS_CANCELLED_REASON = "Class cancelled"
OUTCOME_STATUSES = (BookingStatus.COMPLETED.value, BookingStatus.NO_SHOW.value)


@dataclass
class CapacityInfo:
    """Seat usage of one class session"""
    class_session_id: int
    capacity: int
    confirmed: int
    held_seats: int
    waiting: int
    available_spots: int
    is_full: bool


@dataclass
class CancelBookingResult:
    booking: Booking
    promoted_entry: Optional[WaitlistEntry] = None
    dispatch: DispatchReport = field(default_factory=DispatchReport)


# ------------------------------
# Locked reads
# ------------------------------
async def lock_class_session(db: AsyncSession, session_id: int) -> ClassSession:
    """Load a session with a row lock, refreshing any cached copy"""
    result = await db.execute(
        select(ClassSession)
        .where(ClassSession.id == session_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    session = result.scalar_one_or_none()
    if not session:
        raise NotFoundError(f"Class session {session_id} not found")
    return session


async def count_active_bookings(db: AsyncSession, session_id: int) -> int:
    result = await db.execute(
        select(func.count(Booking.id)).where(
            and_(
                Booking.class_session_id == session_id,
                Booking.status == BookingStatus.CONFIRMED.value
            )
        )
    )
    return result.scalar() or 0


async def count_held_seats(
    db: AsyncSession,
    session_id: int,
    now: datetime,
    exclude_client_id: Optional[int] = None
) -> int:
    """Seats reserved for notified waitlist clients whose offer has not expired"""
    conditions = [
        WaitlistEntry.class_session_id == session_id,
        WaitlistEntry.status == WaitlistStatus.NOTIFIED.value,
        WaitlistEntry.expires_at > now,
    ]
    if exclude_client_id is not None:
        conditions.append(WaitlistEntry.client_id != exclude_client_id)

    result = await db.execute(select(func.count(WaitlistEntry.id)).where(and_(*conditions)))
    return result.scalar() or 0


async def seats_available(
    db: AsyncSession,
    session: ClassSession,
    now: datetime,
    exclude_client_id: Optional[int] = None
) -> int:
    confirmed = await count_active_bookings(db, session.id)
    held = await count_held_seats(db, session.id, now, exclude_client_id)
    return session.capacity - confirmed - held


async def _get_booking(db: AsyncSession, booking_id: int, refresh: bool = False) -> Booking:
    stmt = select(Booking).where(Booking.id == booking_id)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    result = await db.execute(stmt)
    booking = result.scalar_one_or_none()
    if not booking:
        raise NotFoundError(f"Booking {booking_id} not found")
    return booking


async def _find_open_booking(db: AsyncSession, session_id: int, client_id: int) -> Optional[Booking]:
    result = await db.execute(
        select(Booking).where(
            and_(
                Booking.class_session_id == session_id,
                Booking.client_id == client_id,
                Booking.status != BookingStatus.CANCELLED.value
            )
        ).limit(1)
    )
    return result.scalar_one_or_none()


async def _find_overlapping_booking(
    db: AsyncSession,
    session: ClassSession,
    client_id: int
) -> Optional[Booking]:
    result = await db.execute(
        select(Booking)
        .join(ClassSession, Booking.class_session_id == ClassSession.id)
        .where(
            and_(
                Booking.client_id == client_id,
                Booking.studio_id == session.studio_id,
                Booking.status == BookingStatus.CONFIRMED.value,
                ClassSession.id != session.id,
                ClassSession.status == SessionStatus.SCHEDULED.value,
                ClassSession.start_time < session.end_time,
                ClassSession.end_time > session.start_time
            )
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


# ------------------------------
# Booking operations
# ------------------------------
async def create_booking_locked(
    db: AsyncSession,
    session: ClassSession,
    client_id: int,
    now: datetime,
    *,
    paid_amount: Optional[Decimal] = None,
    payment_id: Optional[str] = None,
    notes: Optional[str] = None,
    enforce_client_overlap: Optional[bool] = None,
) -> Booking:
    """
    Validate and add a CONFIRMED booking. The caller holds the session lock,
    has locked the session row and commits.

    A waitlist entry the client still holds for this session is consumed:
    their own seat hold does not count against capacity.
    """
    # Imported here to avoid a circular import with the waitlist module
    from app.crud.waitlistCrud import find_open_entry, close_entry

    if session.status != SessionStatus.SCHEDULED.value:
        raise InvalidTransitionError(f"Class session {session.id} is cancelled")
    if session.start_time <= now:
        raise ValidationError("Cannot book a class that has already started")

    client_result = await db.execute(select(Client).where(Client.id == client_id))
    client = client_result.scalar_one_or_none()
    if not client:
        raise NotFoundError(f"Client {client_id} not found")
    if client.studio_id != session.studio_id:
        raise ValidationError("Client does not belong to this studio")

    if await _find_open_booking(db, session.id, client_id):
        raise DuplicateBookingError(
            "Client already has a booking for this class",
            details={"class_session_id": session.id, "client_id": client_id}
        )

    if enforce_client_overlap is None:
        enforce_client_overlap = get_settings().block_overlapping_bookings
    if enforce_client_overlap:
        overlapping = await _find_overlapping_booking(db, session, client_id)
        if overlapping:
            raise ConflictError(
                "Client already has a booking for an overlapping class",
                code="CLIENT_OVERLAP",
                details={"booking_id": overlapping.id, "class_session_id": overlapping.class_session_id}
            )

    confirmed = await count_active_bookings(db, session.id)
    held = await count_held_seats(db, session.id, now, exclude_client_id=client_id)
    if confirmed + held >= session.capacity:
        raise SessionFullError(
            "Class is full",
            details={"capacity": session.capacity, "confirmed": confirmed, "held_seats": held}
        )

    booking = Booking(
        studio_id=session.studio_id,
        client_id=client_id,
        class_session_id=session.id,
        status=BookingStatus.CONFIRMED.value,
        paid_amount=paid_amount,
        payment_id=payment_id,
        notes=notes,
        created_at=now,
        updated_at=now
    )
    db.add(booking)

    own_entry = await find_open_entry(db, session.id, client_id)
    if own_entry:
        await close_entry(db, own_entry, WaitlistStatus.CONFIRMED)

    await db.flush()
    return booking


async def book_class(
    db: AsyncSession,
    *,
    session_id: int,
    client_id: int,
    paid_amount: Optional[Decimal] = None,
    payment_id: Optional[str] = None,
    notes: Optional[str] = None,
    enforce_client_overlap: Optional[bool] = None,
    now: Optional[datetime] = None
) -> Booking:
    """
    Book a seat for a client.

    Raises SessionFullError when no seat is free; the caller is expected to
    offer the waitlist instead.
    """
    now = now or utcnow()

    async with session_locks.hold(session_id):
        try:
            session = await lock_class_session(db, session_id)
            booking = await create_booking_locked(
                db, session, client_id, now,
                paid_amount=paid_amount,
                payment_id=payment_id,
                notes=notes,
                enforce_client_overlap=enforce_client_overlap,
            )
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise DuplicateBookingError("Client already has a booking for this class")
        except Exception:
            await db.rollback()
            raise

    logger.info("Booking %s confirmed: client=%s session=%s", booking.id, client_id, session_id)
    return booking


async def cancel_booking(
    db: AsyncSession,
    booking_id: int,
    reason: Optional[str] = None,
    *,
    notifier: Optional[Notifier] = None,
    now: Optional[datetime] = None
) -> CancelBookingResult:
    """
    Cancel a confirmed booking and offer the freed seat to the waitlist.

    The cancellation is committed before the promotion attempt so the
    promotion sees the reduced booking count. Cancelling an already
    cancelled booking is a no-op.
    """
    from app.crud.waitlistCrud import promote_next_locked, notify_promotions

    now = now or utcnow()
    booking = await _get_booking(db, booking_id)
    session_id = booking.class_session_id
    promoted: Optional[WaitlistEntry] = None

    async with session_locks.hold(session_id):
        try:
            session = await lock_class_session(db, session_id)
            booking = await _get_booking(db, booking_id, refresh=True)

            if booking.status == BookingStatus.CANCELLED.value:
                await db.commit()
                return CancelBookingResult(booking=booking)
            if booking.status != BookingStatus.CONFIRMED.value:
                raise InvalidTransitionError(
                    f"Cannot cancel booking with status {booking.status}"
                )
            if session.start_time <= now:
                raise ValidationError("Cannot cancel a booking for a class that has already started")

            booking.status = BookingStatus.CANCELLED.value
            booking.cancelled_at = now
            booking.cancellation_reason = reason
            booking.updated_at = now
            await db.commit()

            session = await lock_class_session(db, session_id)
            promoted = await promote_next_locked(db, session, now)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    logger.info("Booking %s cancelled (session=%s reason=%s)", booking_id, session_id, reason)

    dispatch = DispatchReport()
    if promoted:
        dispatch = await notify_promotions([promoted], notifier)
    return CancelBookingResult(booking=booking, promoted_entry=promoted, dispatch=dispatch)


async def mark_outcome(
    db: AsyncSession,
    booking_id: int,
    outcome: str,
    *,
    now: Optional[datetime] = None
) -> Booking:
    """Record attendance (COMPLETED) or NO_SHOW for a finished class"""
    now = now or utcnow()
    outcome = getattr(outcome, "value", outcome)
    if outcome not in OUTCOME_STATUSES:
        raise ValidationError(f"Outcome must be one of {', '.join(OUTCOME_STATUSES)}")

    result = await db.execute(
        select(Booking)
        .options(joinedload(Booking.class_session))
        .where(Booking.id == booking_id)
        .execution_options(populate_existing=True)
    )
    booking = result.scalar_one_or_none()
    if not booking:
        raise NotFoundError(f"Booking {booking_id} not found")

    if booking.status != BookingStatus.CONFIRMED.value:
        raise InvalidTransitionError(
            f"Cannot mark {outcome} on booking with status {booking.status}"
        )
    if booking.class_session.end_time > now:
        raise InvalidTransitionError("Cannot mark attendance before the class has ended")

    booking.status = outcome
    booking.updated_at = now

    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Booking %s marked %s", booking_id, outcome)
    return booking


async def cancel_session_bookings_locked(
    db: AsyncSession,
    session: ClassSession,
    now: datetime,
    reason: str = CLASS_CANCELLED_REASON
) -> List[Booking]:
    """
    Cancel every confirmed booking of a session that is being cancelled.
    The caller holds the session lock and commits. No promotion happens.
    """
    result = await db.execute(
        select(Booking).where(
            and_(
                Booking.class_session_id == session.id,
                Booking.status == BookingStatus.CONFIRMED.value
            )
        ).order_by(Booking.id)
    )
    bookings = list(result.scalars().all())

    for booking in bookings:
        booking.status = BookingStatus.CANCELLED.value
        booking.cancelled_at = now
        booking.cancellation_reason = reason
        booking.updated_at = now

    return bookings


# ------------------------------
# Reads
# ------------------------------
async def get_booking_by_id(db: AsyncSession, booking_id: int) -> Optional[Booking]:
    result = await db.execute(
        select(Booking).options(
            joinedload(Booking.client),
            joinedload(Booking.class_session)
        ).where(Booking.id == booking_id)
    )
    return result.scalar_one_or_none()


async def get_session_bookings(
    db: AsyncSession,
    session_id: int,
    include_cancelled: bool = False
) -> List[Booking]:
    """Get all bookings for a session"""
    query = select(Booking).options(
        joinedload(Booking.client)
    ).where(Booking.class_session_id == session_id)

    if not include_cancelled:
        query = query.where(Booking.status != BookingStatus.CANCELLED.value)

    query = query.order_by(Booking.created_at, Booking.id)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_client_bookings(
    db: AsyncSession,
    client_id: int,
    include_past: bool = False,
    include_cancelled: bool = False,
    limit: int = 100,
    now: Optional[datetime] = None
) -> List[Booking]:
    """Get bookings for a client, soonest class first"""
    query = select(Booking).join(
        ClassSession, Booking.class_session_id == ClassSession.id
    ).options(
        joinedload(Booking.class_session)
    ).where(Booking.client_id == client_id)

    if not include_past:
        query = query.where(ClassSession.start_time >= (now or utcnow()))
    if not include_cancelled:
        query = query.where(Booking.status != BookingStatus.CANCELLED.value)

    query = query.order_by(ClassSession.start_time).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_session_capacity_info(
    db: AsyncSession,
    session_id: int,
    now: Optional[datetime] = None
) -> Optional[CapacityInfo]:
    """Capacity, confirmed bookings, held seats and queue length for a session"""
    now = now or utcnow()
    result = await db.execute(select(ClassSession).where(ClassSession.id == session_id))
    session = result.scalar_one_or_none()
    if not session:
        return None

    confirmed = await count_active_bookings(db, session_id)
    held = await count_held_seats(db, session_id, now)
    waiting_result = await db.execute(
        select(func.count(WaitlistEntry.id)).where(
            and_(
                WaitlistEntry.class_session_id == session_id,
                WaitlistEntry.status == WaitlistStatus.WAITING.value
            )
        )
    )
    waiting = waiting_result.scalar() or 0
    available = max(0, session.capacity - confirmed - held)

    return CapacityInfo(
        class_session_id=session_id,
        capacity=session.capacity,
        confirmed=confirmed,
        held_seats=held,
        waiting=waiting,
        available_spots=available,
        is_full=available == 0
    )
