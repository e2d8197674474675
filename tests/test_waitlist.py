from datetime import timedelta

import pytest

from app.core.exceptions import (
    DuplicateBookingError,
    DuplicateWaitlistError,
    InvalidTransitionError,
    SessionFullError,
    ValidationError,
)
from app.crud.bookingsCrud import book_class, cancel_booking, get_session_capacity_info
from app.crud.waitlistCrud import (
    confirm_entry,
    expire_entry,
    get_client_waitlist_entries,
    get_session_waitlist,
    get_waitlist_entry_by_id,
    join_waitlist,
    leave_waitlist,
    promote_next,
    sweep_expired_entries,
)
from app.models import BookingStatus, WaitlistStatus
from app.services.notifications import WAITLIST_PROMOTED
from app.tasks.waitlist_sweep import parse_args, run_loop, run_once


async def _full_session(db, make_session, base_time, clients, capacity=1, **overrides):
    """Session filled by the first `capacity` clients; returns it with the booking ids"""
    session = await make_session(base_time, capacity=capacity, **overrides)
    booking_ids = []
    for client in clients[:capacity]:
        booking = await book_class(db, session_id=session.id, client_id=client.id)
        booking_ids.append(booking.id)
    return session, booking_ids


async def _queue(db, session_id):
    entries = await get_session_waitlist(db, session_id, include_closed=True)
    return [(e.client_id, e.status, e.position) for e in entries]


@pytest.mark.asyncio
async def test_join_appends_in_arrival_order(db, studio_setup, make_session, base_time):
    c1, c2, c3, c4 = studio_setup.clients[:4]
    session, _ = await _full_session(db, make_session, base_time, [c1])

    for client in (c2, c3, c4):
        await join_waitlist(db, session_id=session.id, client_id=client.id)

    waiting = WaitlistStatus.WAITING.value
    assert await _queue(db, session.id) == [(c2.id, waiting, 1), (c3.id, waiting, 2), (c4.id, waiting, 3)]
    assert [e.client_id for e in await get_client_waitlist_entries(db, c3.id)] == [c3.id]


@pytest.mark.asyncio
async def test_join_rejections(db, studio_setup, make_session, base_time):
    c1, c2 = studio_setup.clients[:2]
    session, _ = await _full_session(db, make_session, base_time, [c1])
    roomy = await make_session(base_time + timedelta(hours=2), capacity=5)
    await join_waitlist(db, session_id=session.id, client_id=c2.id)

    with pytest.raises(DuplicateWaitlistError):
        await join_waitlist(db, session_id=session.id, client_id=c2.id)
    with pytest.raises(DuplicateBookingError):
        await join_waitlist(db, session_id=session.id, client_id=c1.id)
    with pytest.raises(ValidationError) as exc_info:
        await join_waitlist(db, session_id=roomy.id, client_id=c2.id)
    assert exc_info.value.code == "SEATS_AVAILABLE"
    with pytest.raises(ValidationError):
        await join_waitlist(db, session_id=session.id, client_id=studio_setup.outsider.id)


@pytest.mark.asyncio
async def test_leaving_compacts_positions_without_promotion(db, studio_setup, make_session, base_time, notifier):
    c1, c2, c3, c4 = studio_setup.clients[:4]
    session, _ = await _full_session(db, make_session, base_time, [c1])
    await join_waitlist(db, session_id=session.id, client_id=c2.id)
    middle = await join_waitlist(db, session_id=session.id, client_id=c3.id)
    await join_waitlist(db, session_id=session.id, client_id=c4.id)

    promoted = await leave_waitlist(db, middle.id, notifier=notifier)

    assert promoted is None
    assert notifier.events == []
    waiting = WaitlistStatus.WAITING.value
    assert await _queue(db, session.id) == [(c2.id, waiting, 1), (c4.id, waiting, 2)]


@pytest.mark.asyncio
async def test_promote_next_needs_a_free_seat(db, studio_setup, make_session, base_time, notifier):
    c1, c2 = studio_setup.clients[:2]
    session, _ = await _full_session(db, make_session, base_time, [c1])
    await join_waitlist(db, session_id=session.id, client_id=c2.id)

    assert await promote_next(db, session.id, notifier=notifier) is None
    assert notifier.events == []


@pytest.mark.asyncio
async def test_freed_seat_is_held_then_confirmed(db, studio_setup, make_session, base_time, notifier):
    c1, c2, c3 = studio_setup.clients[:3]
    session, (booking_id,) = await _full_session(db, make_session, base_time, [c1])
    await join_waitlist(db, session_id=session.id, client_id=c2.id)
    await join_waitlist(db, session_id=session.id, client_id=c3.id)

    result = await cancel_booking(db, booking_id, notifier=notifier)
    entry_id = result.promoted_entry.id

    assert notifier.client_ids(WAITLIST_PROMOTED) == [c2.id]
    assert await _queue(db, session.id) == [
        (c2.id, WaitlistStatus.NOTIFIED.value, None),
        (c3.id, WaitlistStatus.WAITING.value, 1),
    ]

    with pytest.raises(SessionFullError):
        await book_class(db, session_id=session.id, client_id=c3.id)

    booking = await confirm_entry(db, entry_id)

    assert booking.client_id == c2.id
    assert booking.status == BookingStatus.CONFIRMED.value
    assert await get_waitlist_entry_by_id(db, entry_id) is None
    info = await get_session_capacity_info(db, session.id)
    assert (info.confirmed, info.held_seats, info.waiting) == (1, 0, 1)


@pytest.mark.asyncio
async def test_confirming_a_lapsed_offer_fails(db, studio_setup, make_session, base_time):
    c1, c2 = studio_setup.clients[:2]
    session, (booking_id,) = await _full_session(db, make_session, base_time, [c1])
    await join_waitlist(db, session_id=session.id, client_id=c2.id)
    result = await cancel_booking(db, booking_id)
    entry_id = result.promoted_entry.id
    lapsed = result.promoted_entry.expires_at + timedelta(seconds=1)

    with pytest.raises(InvalidTransitionError):
        await confirm_entry(db, entry_id, now=lapsed)
    with pytest.raises(InvalidTransitionError):
        await expire_entry(db, entry_id)


@pytest.mark.asyncio
async def test_expired_offer_passes_seat_to_next_client(db, studio_setup, make_session, base_time, notifier):
    c1, c2, c3 = studio_setup.clients[:3]
    session, (booking_id,) = await _full_session(db, make_session, base_time, [c1])
    await join_waitlist(db, session_id=session.id, client_id=c2.id)
    await join_waitlist(db, session_id=session.id, client_id=c3.id)
    result = await cancel_booking(db, booking_id, notifier=notifier)
    lapsed = result.promoted_entry.expires_at + timedelta(seconds=1)

    promoted = await expire_entry(db, result.promoted_entry.id, notifier=notifier, now=lapsed)

    assert promoted.client_id == c3.id
    assert notifier.client_ids(WAITLIST_PROMOTED) == [c2.id, c3.id]
    assert await _queue(db, session.id) == [
        (c3.id, WaitlistStatus.NOTIFIED.value, None),
        (c2.id, WaitlistStatus.EXPIRED.value, None),
    ]


@pytest.mark.asyncio
async def test_leaving_with_an_offer_releases_the_seat(db, studio_setup, make_session, base_time, notifier):
    c1, c2, c3 = studio_setup.clients[:3]
    session, (booking_id,) = await _full_session(db, make_session, base_time, [c1])
    await join_waitlist(db, session_id=session.id, client_id=c2.id)
    await join_waitlist(db, session_id=session.id, client_id=c3.id)
    result = await cancel_booking(db, booking_id)

    promoted = await leave_waitlist(db, result.promoted_entry.id, notifier=notifier)

    assert promoted.client_id == c3.id
    assert notifier.client_ids(WAITLIST_PROMOTED) == [c3.id]
    assert await _queue(db, session.id) == [(c3.id, WaitlistStatus.NOTIFIED.value, None)]


@pytest.mark.asyncio
async def test_sweep_expires_lapsed_offers_for_one_studio(db, session_factory, studio_setup, make_session, base_time, notifier):
    c1, c2, c3, c4 = studio_setup.clients[:4]
    first, (first_booking,) = await _full_session(db, make_session, base_time, [c1])
    second = await make_session(base_time + timedelta(hours=2), capacity=1)
    await book_class(db, session_id=second.id, client_id=c3.id)
    await join_waitlist(db, session_id=first.id, client_id=c2.id)
    await join_waitlist(db, session_id=first.id, client_id=c4.id)
    await join_waitlist(db, session_id=second.id, client_id=c1.id)

    offer = (await cancel_booking(db, first_booking)).promoted_entry
    lapsed = offer.expires_at + timedelta(seconds=1)

    still_open = offer.expires_at - timedelta(seconds=1)
    assert (await sweep_expired_entries(db, now=still_open))["expired"] == 0
    other_studio = await sweep_expired_entries(db, now=lapsed, studio_id=studio_setup.other_studio.id)
    assert other_studio["expired"] == 0

    stats = await sweep_expired_entries(db, notifier=notifier, now=lapsed, studio_id=studio_setup.studio.id)

    assert stats == {"expired": 1, "promoted": 1, "errors": []}
    assert notifier.client_ids(WAITLIST_PROMOTED) == [c4.id]
    assert await _queue(db, second.id) == [(c1.id, WaitlistStatus.WAITING.value, 1)]


@pytest.mark.asyncio
async def test_sweep_task_runs_with_its_own_sessions(db, session_factory, studio_setup, make_session, base_time, notifier):
    c1, c2 = studio_setup.clients[:2]
    session, (booking_id,) = await _full_session(db, make_session, base_time, [c1])
    await join_waitlist(db, session_id=session.id, client_id=c2.id)
    await cancel_booking(db, booking_id)

    # Nothing has lapsed yet
    stats = await run_once(session_factory, notifier)
    assert stats["expired"] == 0

    await run_loop(session_factory, interval=0, notifier=notifier, iterations=2)
    async with session_factory() as check_db:
        entries = await get_session_waitlist(check_db, session.id)
    assert [e.status for e in entries] == [WaitlistStatus.NOTIFIED.value]


def test_sweep_task_arguments():
    args = parse_args(["--loop", "--interval", "15", "--studio-id", "3"])

    assert args.loop
    assert args.interval == 15
    assert args.studio_id == 3
    assert parse_args([]).interval is None
