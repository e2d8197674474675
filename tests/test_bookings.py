import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import (
    ConflictError,
    DuplicateBookingError,
    InvalidTransitionError,
    SessionFullError,
    ValidationError,
)
from app.crud.bookingsCrud import (
    book_class,
    cancel_booking,
    get_client_bookings,
    get_session_bookings,
    get_session_capacity_info,
    mark_outcome,
)
from app.crud.classSessionCrud import cancel_class_session
from app.crud.waitlistCrud import join_waitlist
from app.models import Booking, BookingStatus, WaitlistStatus
from app.services.notifications import WAITLIST_PROMOTED


async def _attempt_booking(session_factory, session_id, client_id):
    async with session_factory() as own_db:
        try:
            booking = await book_class(own_db, session_id=session_id, client_id=client_id)
        except (SessionFullError, DuplicateBookingError) as e:
            return e
        return booking.id


@pytest.mark.asyncio
async def test_book_class_confirms_a_seat(db, studio_setup, make_session, base_time):
    session = await make_session(base_time, capacity=3)
    client = studio_setup.clients[0]

    booking = await book_class(
        db, session_id=session.id, client_id=client.id, paid_amount=Decimal("18.50"), payment_id="pay_123"
    )

    assert booking.status == BookingStatus.CONFIRMED.value
    assert booking.studio_id == studio_setup.studio.id
    info = await get_session_capacity_info(db, session.id)
    assert (info.confirmed, info.available_spots, info.is_full) == (1, 2, False)
    assert [b.id for b in await get_client_bookings(db, client.id)] == [booking.id]


@pytest.mark.asyncio
async def test_concurrent_requests_for_last_seat_admit_exactly_one(session_factory, studio_setup, make_session, base_time):
    session = await make_session(base_time, capacity=1)
    clients = studio_setup.clients[:5]

    outcomes = await asyncio.gather(*[
        _attempt_booking(session_factory, session.id, c.id) for c in clients
    ])

    admitted = [o for o in outcomes if isinstance(o, int)]
    rejected = [o for o in outcomes if isinstance(o, SessionFullError)]
    assert len(admitted) == 1
    assert len(rejected) == 4

    async with session_factory() as check_db:
        info = await get_session_capacity_info(check_db, session.id)
    assert info.confirmed == 1
    assert info.is_full


@pytest.mark.asyncio
async def test_concurrent_duplicate_requests_create_one_booking(session_factory, studio_setup, make_session, base_time):
    session = await make_session(base_time, capacity=5)
    client = studio_setup.clients[0]

    outcomes = await asyncio.gather(*[
        _attempt_booking(session_factory, session.id, client.id) for _ in range(3)
    ])

    assert len([o for o in outcomes if isinstance(o, int)]) == 1
    assert len([o for o in outcomes if isinstance(o, DuplicateBookingError)]) == 2

    async with session_factory() as check_db:
        assert len(await get_session_bookings(check_db, session.id)) == 1


@pytest.mark.asyncio
async def test_full_session_rejects_booking(db, studio_setup, make_session, base_time):
    session = await make_session(base_time, capacity=1)
    await book_class(db, session_id=session.id, client_id=studio_setup.clients[0].id)

    with pytest.raises(SessionFullError) as exc_info:
        await book_class(db, session_id=session.id, client_id=studio_setup.clients[1].id)
    assert exc_info.value.code == "SESSION_FULL"


@pytest.mark.asyncio
async def test_overlapping_booking_is_blocked_unless_disabled(db, studio_setup, make_session, base_time):
    first = await make_session(base_time)
    overlapping = await make_session(
        base_time + timedelta(minutes=30),
        teacher_id=studio_setup.second_teacher.id,
        location_id=studio_setup.second_location.id,
    )
    client_id = studio_setup.clients[0].id
    await book_class(db, session_id=first.id, client_id=client_id)

    with pytest.raises(ConflictError) as exc_info:
        await book_class(db, session_id=overlapping.id, client_id=client_id)
    assert exc_info.value.code == "CLIENT_OVERLAP"

    allowed = await book_class(
        db, session_id=overlapping.id, client_id=client_id, enforce_client_overlap=False
    )
    assert allowed.class_session_id == overlapping.id


@pytest.mark.asyncio
async def test_started_cancelled_and_foreign_bookings_are_rejected(db, studio_setup, make_session, base_time):
    started = await make_session(base_time - timedelta(days=3))
    cancelled = await make_session(base_time + timedelta(hours=2))
    open_session = await make_session(base_time)
    await cancel_class_session(db, cancelled.id)
    client_id = studio_setup.clients[0].id

    with pytest.raises(ValidationError):
        await book_class(db, session_id=started.id, client_id=client_id)
    with pytest.raises(InvalidTransitionError):
        await book_class(db, session_id=cancelled.id, client_id=client_id)
    with pytest.raises(ValidationError):
        await book_class(db, session_id=open_session.id, client_id=studio_setup.outsider.id)


@pytest.mark.asyncio
async def test_cancel_booking_is_idempotent_and_frees_the_seat(db, studio_setup, make_session, base_time):
    session = await make_session(base_time, capacity=1)
    client_id = studio_setup.clients[0].id
    booking = await book_class(db, session_id=session.id, client_id=client_id)

    first = await cancel_booking(db, booking.id, "Feeling unwell")
    second = await cancel_booking(db, booking.id, "Clicked twice")

    assert first.booking.status == BookingStatus.CANCELLED.value
    assert second.booking.cancellation_reason == "Feeling unwell"
    assert second.promoted_entry is None

    rebooked = await book_class(db, session_id=session.id, client_id=client_id)
    assert rebooked.id != booking.id


@pytest.mark.asyncio
async def test_cancel_booking_promotes_first_waiting_client(db, studio_setup, make_session, base_time, notifier):
    session = await make_session(base_time, capacity=1)
    c1, c2, c3 = studio_setup.clients[:3]
    booking = await book_class(db, session_id=session.id, client_id=c1.id)
    await join_waitlist(db, session_id=session.id, client_id=c2.id)
    await join_waitlist(db, session_id=session.id, client_id=c3.id)

    result = await cancel_booking(db, booking.id, notifier=notifier)

    assert result.promoted_entry.client_id == c2.id
    assert result.promoted_entry.status == WaitlistStatus.NOTIFIED.value
    assert result.promoted_entry.expires_at is not None
    assert notifier.client_ids(WAITLIST_PROMOTED) == [c2.id]

    info = await get_session_capacity_info(db, session.id)
    assert (info.confirmed, info.held_seats, info.waiting, info.available_spots) == (0, 1, 1, 0)

    # The offered seat is held for c2 only
    with pytest.raises(SessionFullError):
        await book_class(db, session_id=session.id, client_id=c3.id)
    held = await book_class(db, session_id=session.id, client_id=c2.id)
    assert held.client_id == c2.id


@pytest.mark.asyncio
async def test_mark_outcome_rules(db, studio_setup, make_session, base_time):
    session = await make_session(base_time)
    booking = await book_class(db, session_id=session.id, client_id=studio_setup.clients[0].id)
    booking_id = booking.id
    after_class = session.end_time + timedelta(minutes=1)

    with pytest.raises(ValidationError):
        await mark_outcome(db, booking_id, "CANCELLED", now=after_class)
    with pytest.raises(InvalidTransitionError):
        await mark_outcome(db, booking_id, BookingStatus.COMPLETED, now=session.start_time)

    completed = await mark_outcome(db, booking_id, BookingStatus.COMPLETED, now=after_class)
    assert completed.status == BookingStatus.COMPLETED.value

    with pytest.raises(InvalidTransitionError):
        await mark_outcome(db, booking_id, BookingStatus.NO_SHOW, now=after_class)
    with pytest.raises(InvalidTransitionError):
        await cancel_booking(db, booking_id)


@pytest.mark.asyncio
async def test_booking_for_a_started_class_cannot_be_cancelled(db, studio_setup, make_session, base_time):
    session = await make_session(base_time)
    booking = await book_class(db, session_id=session.id, client_id=studio_setup.clients[0].id)
    booking_id = booking.id
    during_class = session.start_time + timedelta(minutes=5)

    with pytest.raises(ValidationError):
        await cancel_booking(db, booking_id, "changed my mind", now=during_class)
    with pytest.raises(ValidationError):
        await cancel_booking(db, booking_id, now=session.start_time)

    stored = await get_session_bookings(db, session.id)
    assert [b.status for b in stored] == [BookingStatus.CONFIRMED.value]

    no_show = await mark_outcome(db, booking_id, BookingStatus.NO_SHOW, now=session.end_time)
    assert no_show.status == BookingStatus.NO_SHOW.value


@pytest.mark.asyncio
async def test_one_active_booking_row_per_client_and_session(session_factory, studio_setup, make_session, base_time):
    session = await make_session(base_time)
    studio_id = studio_setup.studio.id
    client_id = studio_setup.clients[0].id

    async with session_factory() as raw_db:
        raw_db.add(Booking(
            studio_id=studio_id, client_id=client_id, class_session_id=session.id,
            status=BookingStatus.CANCELLED.value,
        ))
        raw_db.add(Booking(studio_id=studio_id, client_id=client_id, class_session_id=session.id))
        await raw_db.commit()

    async with session_factory() as raw_db:
        raw_db.add(Booking(studio_id=studio_id, client_id=client_id, class_session_id=session.id))
        with pytest.raises(IntegrityError):
            await raw_db.commit()
