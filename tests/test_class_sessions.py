from datetime import timedelta

import pytest
from sqlalchemy import select

from app.core.exceptions import (
    CapacityError,
    ConflictError,
    InvalidTransitionError,
    ValidationError,
)
from app.crud.bookingsCrud import book_class, mark_outcome
from app.crud.classSessionCrud import (
    CLASS_CANCELLED_REASON,
    SessionPatch,
    cancel_class_session,
    get_class_session_by_id,
    query_sessions,
    teacher_attendance_summary,
    update_class_session,
)
from app.crud import waitlistCrud
from app.crud.waitlistCrud import join_waitlist
from app.models import Booking, BookingStatus, ClassSession, Teacher, WaitlistEntry, WaitlistStatus
from app.services.notifications import SESSION_CANCELLED, WAITLIST_PROMOTED


async def _book_clients(db, session, clients):
    return [await book_class(db, session_id=session.id, client_id=c.id) for c in clients]


@pytest.mark.asyncio
async def test_create_rejects_bad_interval_and_capacity(db, studio_setup, make_session, base_time):
    with pytest.raises(ValidationError):
        await make_session(base_time, minutes=0)
    with pytest.raises(ValidationError):
        await make_session(base_time, capacity=0)

    assert await query_sessions(db, studio_setup.studio.id) == []


@pytest.mark.asyncio
async def test_create_defaults_capacity_from_class_type(db, studio_setup, make_session, base_time):
    session = await make_session(base_time, capacity=None)

    assert session.capacity == studio_setup.class_type.default_capacity


@pytest.mark.asyncio
async def test_create_rejects_teacher_of_another_studio(db, studio_setup, make_session, base_time):
    foreign = Teacher(studio_id=studio_setup.other_studio.id, full_name="Visiting Teacher")
    db.add(foreign)
    await db.commit()

    with pytest.raises(ValidationError):
        await make_session(base_time, teacher_id=foreign.id)


@pytest.mark.asyncio
async def test_query_orders_by_start_and_filters(db, studio_setup, make_session, base_time):
    late = await make_session(base_time + timedelta(hours=3))
    early = await make_session(base_time)
    other = await make_session(
        base_time,
        teacher_id=studio_setup.second_teacher.id,
        location_id=studio_setup.second_location.id,
    )
    await cancel_class_session(db, late.id)

    sessions = await query_sessions(db, studio_setup.studio.id)
    assert [s.id for s in sessions] == sorted([early.id, other.id])

    by_teacher = await query_sessions(db, studio_setup.studio.id, teacher_id=studio_setup.teacher.id)
    assert [s.id for s in by_teacher] == [early.id]

    with_cancelled = await query_sessions(
        db, studio_setup.studio.id, teacher_id=studio_setup.teacher.id, include_cancelled=True
    )
    assert [s.id for s in with_cancelled] == [early.id, late.id]

    in_range = await query_sessions(
        db,
        studio_setup.studio.id,
        start=base_time + timedelta(hours=1),
        end=base_time + timedelta(hours=5),
        include_cancelled=True,
    )
    assert [s.id for s in in_range] == [late.id]

    assert await query_sessions(db, studio_setup.other_studio.id) == []


@pytest.mark.asyncio
async def test_capacity_cannot_drop_below_active_bookings(db, session_factory, studio_setup, make_session, base_time):
    session = await make_session(base_time, capacity=5)
    await _book_clients(db, session, studio_setup.clients[:4])

    with pytest.raises(CapacityError):
        await update_class_session(db, session.id, SessionPatch(capacity=3))

    async with session_factory() as fresh:
        stored = await fresh.get(ClassSession, session.id)
        assert stored.capacity == 5

    updated = await update_class_session(db, session.id, SessionPatch(capacity=4))
    assert updated.capacity == 4


@pytest.mark.asyncio
async def test_moving_a_session_rechecks_conflicts(db, studio_setup, make_session, base_time):
    await make_session(base_time)
    second = await make_session(base_time + timedelta(hours=2))

    with pytest.raises(ConflictError):
        await update_class_session(
            db,
            second.id,
            SessionPatch(start_time=base_time + timedelta(minutes=30), end_time=base_time + timedelta(minutes=90)),
        )

    moved = await update_class_session(
        db,
        second.id,
        SessionPatch(
            start_time=base_time + timedelta(minutes=30),
            end_time=base_time + timedelta(minutes=90),
            teacher_id=studio_setup.second_teacher.id,
            location_id=studio_setup.second_location.id,
        ),
    )
    assert moved.teacher_id == studio_setup.second_teacher.id
    assert moved.start_time == base_time + timedelta(minutes=30)


@pytest.mark.asyncio
async def test_raising_capacity_offers_new_seats_to_waitlist(db, studio_setup, make_session, base_time, notifier):
    session = await make_session(base_time, capacity=1)
    c1, c2, c3 = studio_setup.clients[:3]
    await book_class(db, session_id=session.id, client_id=c1.id)
    await join_waitlist(db, session_id=session.id, client_id=c2.id)
    await join_waitlist(db, session_id=session.id, client_id=c3.id)

    await update_class_session(db, session.id, SessionPatch(capacity=3), notifier=notifier)

    assert notifier.client_ids(WAITLIST_PROMOTED) == [c2.id, c3.id]
    result = await db.execute(select(WaitlistEntry).where(WaitlistEntry.class_session_id == session.id))
    assert {e.status for e in result.scalars().all()} == {WaitlistStatus.NOTIFIED.value}


@pytest.mark.asyncio
async def test_saved_capacity_raise_survives_a_failed_promotion(
    db, session_factory, studio_setup, make_session, base_time, notifier, monkeypatch
):
    session = await make_session(base_time, capacity=1)
    session_id = session.id
    c1, c2 = studio_setup.clients[:2]
    await book_class(db, session_id=session_id, client_id=c1.id)
    await join_waitlist(db, session_id=session_id, client_id=c2.id)

    async def broken_promotion(db, session, now):
        raise RuntimeError("waitlist unavailable")

    monkeypatch.setattr(waitlistCrud, "promote_next_locked", broken_promotion)

    updated = await update_class_session(db, session_id, SessionPatch(capacity=2), notifier=notifier)

    assert updated.capacity == 2
    assert notifier.events == []
    async with session_factory() as fresh:
        stored = await fresh.get(ClassSession, session_id)
        assert stored.capacity == 2
        entries = (await fresh.execute(
            select(WaitlistEntry).where(WaitlistEntry.class_session_id == session_id)
        )).scalars().all()
        assert [(e.client_id, e.status) for e in entries] == [(c2.id, WaitlistStatus.WAITING.value)]


@pytest.mark.asyncio
async def test_cancelling_a_session_cancels_every_booking_and_notifies_each_client(
    db, studio_setup, make_session, base_time, notifier
):
    session = await make_session(base_time, capacity=5)
    booked = studio_setup.clients[:5]
    await _book_clients(db, session, booked)
    await join_waitlist(db, session_id=session.id, client_id=studio_setup.clients[5].id)

    result = await cancel_class_session(db, session.id, notifier=notifier)

    assert result.affected_clients == 5
    assert result.notified == 5
    assert result.closed_waitlist_entries == 1
    assert sorted(notifier.client_ids(SESSION_CANCELLED)) == sorted(c.id for c in booked)
    assert notifier.client_ids(WAITLIST_PROMOTED) == []

    rows = await db.execute(select(Booking).where(Booking.class_session_id == session.id))
    bookings = rows.scalars().all()
    assert len(bookings) == 5
    assert all(b.status == BookingStatus.CANCELLED.value for b in bookings)
    assert all(b.cancellation_reason == CLASS_CANCELLED_REASON for b in bookings)

    entries = await db.execute(select(WaitlistEntry).where(WaitlistEntry.class_session_id == session.id))
    assert [e.status for e in entries.scalars().all()] == [WaitlistStatus.EXPIRED.value]


@pytest.mark.asyncio
async def test_notification_failures_do_not_undo_cancellation(
    db, studio_setup, make_session, base_time, failing_notifier
):
    session = await make_session(base_time, capacity=5)
    booked = studio_setup.clients[:5]
    await _book_clients(db, session, booked)
    flaky = failing_notifier(failing_client_ids=[booked[0].id, booked[3].id])

    result = await cancel_class_session(db, session.id, notifier=flaky)

    assert result.affected_clients == 5
    assert result.dispatch.sent == 3
    assert len(result.dispatch.failed) == 2

    rows = await db.execute(
        select(Booking).where(
            Booking.class_session_id == session.id,
            Booking.status == BookingStatus.CONFIRMED.value,
        )
    )
    assert rows.scalars().all() == []


@pytest.mark.asyncio
async def test_cancelled_session_cannot_be_cancelled_or_edited_again(db, studio_setup, make_session, base_time):
    session = await make_session(base_time)
    await cancel_class_session(db, session.id)

    with pytest.raises(InvalidTransitionError):
        await cancel_class_session(db, session.id)
    with pytest.raises(InvalidTransitionError):
        await update_class_session(db, session.id, SessionPatch(capacity=12))

    stored = await get_class_session_by_id(db, session.id)
    assert stored.cancelled_at is not None


@pytest.mark.asyncio
async def test_teacher_attendance_summary_counts_outcomes(db, studio_setup, make_session, base_time):
    session = await make_session(base_time, capacity=5)
    other = await make_session(base_time + timedelta(hours=2), capacity=5)
    b1, b2, b3 = await _book_clients(db, session, studio_setup.clients[:3])
    await book_class(db, session_id=other.id, client_id=studio_setup.clients[0].id)

    after_class = session.end_time + timedelta(minutes=5)
    await mark_outcome(db, b1.id, BookingStatus.COMPLETED, now=after_class)
    await mark_outcome(db, b2.id, "NO_SHOW", now=after_class)

    summary = await teacher_attendance_summary(
        db,
        studio_setup.teacher.id,
        base_time - timedelta(hours=1),
        base_time + timedelta(hours=6),
        studio_id=studio_setup.studio.id,
    )

    assert summary.total_classes == 2
    first = summary.sessions[0]
    assert first.class_session_id == session.id
    assert (first.confirmed, first.completed, first.no_show) == (1, 1, 1)
    assert first.students == 2
    assert summary.total_students == 3
    assert summary.total_hours == 2.0
