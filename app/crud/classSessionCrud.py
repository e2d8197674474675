"""
CRUD operations for ClassSession management
Implements scheduling, range queries, single-session updates and cancellation
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import select, and_, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.exceptions import (
    CapacityError,
    InvalidTransitionError,
    ValidationError,
)
from app.core.locks import session_locks
from app.crud.bookingsCrud import (
    CLASS_CANCELLED_REASON,
    cancel_session_bookings_locked,
    count_active_bookings,
    lock_class_session,
)
from app.db.types import utcnow
from app.models.classModel import Booking, BookingStatus, ClassSession, ClassType, SessionStatus
from app.models.studioModel import Location
from app.models.userModel import Teacher
from app.services.conflict_checker import ConflictChecker
from app.services.notifications import (
    SESSION_CANCELLED,
    DispatchReport,
    NotificationEvent,
    Notifier,
    dispatch_notifications,
)

logger = logging.getLogger(__name__)


@dataclass
class SessionPatch:
    """Fields to change on one session; None leaves a field untouched"""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    capacity: Optional[int] = None
    teacher_id: Optional[int] = None
    location_id: Optional[int] = None
    class_type_id: Optional[int] = None
    notes: Optional[str] = None

    def moves_slot(self) -> bool:
        return any(
            value is not None
            for value in (self.start_time, self.end_time, self.teacher_id, self.location_id)
        )


@dataclass
class SkippedOccurrence:
    """One occurrence a batch operation did not apply"""
    code: str
    reason: str
    class_session_id: Optional[int] = None
    occurrence_date: Optional[date] = None


@dataclass
class SessionCancellation:
    session: ClassSession
    affected_clients: int
    closed_waitlist_entries: int
    dispatch: DispatchReport = field(default_factory=DispatchReport)

    @property
    def notified(self) -> int:
        return self.dispatch.sent


def validate_interval_and_capacity(start_time: datetime, end_time: datetime, capacity: int) -> None:
    """Reject bad intervals and capacities before anything is written"""
    if start_time is None or end_time is None:
        raise ValidationError("Start and end time are required")
    if end_time <= start_time:
        raise ValidationError(
            "End time must be after start time",
            details={"start_time": start_time.isoformat(), "end_time": end_time.isoformat()}
        )
    if capacity is None or isinstance(capacity, bool) or not isinstance(capacity, int) or capacity < 1:
        raise ValidationError("Capacity must be a whole number of at least 1", details={"capacity": capacity})


async def validate_references(
    db: AsyncSession,
    studio_id: int,
    class_type_id: Optional[int] = None,
    teacher_id: Optional[int] = None,
    location_id: Optional[int] = None
) -> None:
    """Class type, teacher and location must exist and belong to the studio"""
    checks = (
        (ClassType, class_type_id, "class type"),
        (Teacher, teacher_id, "teacher"),
        (Location, location_id, "location"),
    )
    for model, record_id, label in checks:
        if record_id is None:
            continue
        result = await db.execute(
            select(model.id).where(and_(model.id == record_id, model.studio_id == studio_id))
        )
        if result.scalar_one_or_none() is None:
            raise ValidationError(f"Invalid {label} {record_id} for this studio")


async def create_class_session(
    db: AsyncSession,
    *,
    studio_id: int,
    class_type_id: int,
    teacher_id: int,
    location_id: int,
    start_time: datetime,
    end_time: datetime,
    capacity: Optional[int] = None,
    notes: Optional[str] = None,
    recurring_group_id: Optional[str] = None,
    check_conflicts: bool = True,
    commit: bool = True
) -> ClassSession:
    """
    Schedule one class session.

    Capacity defaults to the class type's default capacity. Raises
    ValidationError for bad input and ConflictError when the teacher,
    location or a teacher blocked time overlaps, unless check_conflicts is off.
    """
    await validate_references(db, studio_id, class_type_id, teacher_id, location_id)

    if capacity is None:
        class_type = await db.get(ClassType, class_type_id)
        capacity = class_type.default_capacity if class_type else None
    validate_interval_and_capacity(start_time, end_time, capacity)

    if check_conflicts:
        await ConflictChecker(db).ensure_no_conflict(teacher_id, location_id, start_time, end_time)

    now = utcnow()
    session = ClassSession(
        studio_id=studio_id,
        class_type_id=class_type_id,
        teacher_id=teacher_id,
        location_id=location_id,
        start_time=start_time,
        end_time=end_time,
        capacity=capacity,
        notes=notes,
        recurring_group_id=recurring_group_id,
        status=SessionStatus.SCHEDULED.value,
        created_at=now,
        updated_at=now
    )

    db.add(session)
    try:
        if commit:
            await db.commit()
        else:
            await db.flush()
    except SQLAlchemyError:
        await db.rollback()
        raise

    logger.info(
        "Class session %s scheduled: teacher=%s location=%s %s",
        session.id, teacher_id, location_id, start_time.isoformat()
    )
    return session


async def get_class_session_by_id(
    db: AsyncSession,
    session_id: int
) -> Optional[ClassSession]:
    """Get a class session by ID with its related records"""
    query = select(ClassSession).options(
        selectinload(ClassSession.class_type),
        selectinload(ClassSession.teacher),
        selectinload(ClassSession.location)
    ).where(ClassSession.id == session_id)

    result = await db.execute(query)
    return result.scalar_one_or_none()


async def query_sessions(
    db: AsyncSession,
    studio_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    teacher_id: Optional[int] = None,
    location_id: Optional[int] = None,
    class_type_id: Optional[int] = None,
    recurring_group_id: Optional[str] = None,
    include_cancelled: bool = False
) -> List[ClassSession]:
    """Sessions of a studio starting within [start, end], earliest first"""
    query = select(ClassSession).options(
        selectinload(ClassSession.class_type),
        selectinload(ClassSession.teacher),
        selectinload(ClassSession.location)
    ).where(ClassSession.studio_id == studio_id)

    if start:
        query = query.where(ClassSession.start_time >= start)
    if end:
        query = query.where(ClassSession.start_time <= end)
    if teacher_id:
        query = query.where(ClassSession.teacher_id == teacher_id)
    if location_id:
        query = query.where(ClassSession.location_id == location_id)
    if class_type_id:
        query = query.where(ClassSession.class_type_id == class_type_id)
    if recurring_group_id:
        query = query.where(ClassSession.recurring_group_id == recurring_group_id)
    if not include_cancelled:
        query = query.where(ClassSession.status == SessionStatus.SCHEDULED.value)

    query = query.order_by(ClassSession.start_time, ClassSession.id)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_series_sessions(
    db: AsyncSession,
    recurring_group_id: str,
    future_only: bool = True,
    now: Optional[datetime] = None,
    studio_id: Optional[int] = None
) -> List[ClassSession]:
    """Scheduled sessions sharing a recurring group id, earliest first"""
    query = select(ClassSession).where(
        and_(
            ClassSession.recurring_group_id == recurring_group_id,
            ClassSession.status == SessionStatus.SCHEDULED.value
        )
    )
    if future_only:
        query = query.where(ClassSession.start_time >= (now or utcnow()))
    if studio_id is not None:
        query = query.where(ClassSession.studio_id == studio_id)

    query = query.order_by(ClassSession.start_time, ClassSession.id)
    result = await db.execute(query)
    return list(result.scalars().all())


async def update_class_session(
    db: AsyncSession,
    session_id: int,
    patch: SessionPatch,
    *,
    check_conflicts: bool = True,
    notifier: Optional[Notifier] = None,
    now: Optional[datetime] = None
) -> ClassSession:
    """
    Apply a patch to one session.

    Lowering capacity below the confirmed bookings raises CapacityError and
    leaves the session unchanged. Raising capacity offers each new seat to
    the waitlist.
    """
    from app.crud.waitlistCrud import promote_next_locked, notify_promotions

    now = now or utcnow()
    promoted = []

    async with session_locks.hold(session_id):
        try:
            session = await lock_class_session(db, session_id)
            if session.status != SessionStatus.SCHEDULED.value:
                raise InvalidTransitionError(f"Class session {session_id} is cancelled")

            new_start = patch.start_time or session.start_time
            new_end = patch.end_time or session.end_time
            new_capacity = patch.capacity if patch.capacity is not None else session.capacity
            new_teacher = patch.teacher_id or session.teacher_id
            new_location = patch.location_id or session.location_id

            validate_interval_and_capacity(new_start, new_end, new_capacity)
            await validate_references(
                db, session.studio_id, patch.class_type_id, patch.teacher_id, patch.location_id
            )

            if new_capacity < session.capacity:
                active = await count_active_bookings(db, session_id)
                if new_capacity < active:
                    raise CapacityError(
                        f"Cannot reduce capacity below current bookings ({active})",
                        details={"capacity": session.capacity, "requested": new_capacity, "active_bookings": active}
                    )

            if check_conflicts and patch.moves_slot():
                await ConflictChecker(db).ensure_no_conflict(
                    new_teacher, new_location, new_start, new_end, exclude_session_id=session_id
                )

            added_seats = max(0, new_capacity - session.capacity)
            session.start_time = new_start
            session.end_time = new_end
            session.capacity = new_capacity
            session.teacher_id = new_teacher
            session.location_id = new_location
            if patch.class_type_id:
                session.class_type_id = patch.class_type_id
            if patch.notes is not None:
                session.notes = patch.notes
            session.updated_at = now
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        # The patch is saved; promote_next can offer any seat left over
        try:
            for _ in range(added_seats):
                session = await lock_class_session(db, session_id)
                entry = await promote_next_locked(db, session, now)
                await db.commit()
                if not entry:
                    break
                promoted.append(entry)
        except Exception as e:
            await db.rollback()
            logger.error("Class session %s: waitlist promotion failed after update: %s", session_id, e)
            session = await get_class_session_by_id(db, session_id)

    logger.info("Class session %s updated", session_id)
    if promoted:
        await notify_promotions(promoted, notifier)
    return session


async def cancel_class_session(
    db: AsyncSession,
    session_id: int,
    *,
    notifier: Optional[Notifier] = None,
    now: Optional[datetime] = None
) -> SessionCancellation:
    """
    Cancel a session and cascade to its bookings.

    Every confirmed booking becomes CANCELLED with reason "Class cancelled"
    and open waitlist entries are expired; all of it is committed before one
    notification per affected client is dispatched. A failed notification is
    reported in the result and never undoes the cancellation.
    """
    from app.crud.waitlistCrud import close_session_waitlist_locked

    now = now or utcnow()

    async with session_locks.hold(session_id):
        try:
            session = await lock_class_session(db, session_id)
            if session.status == SessionStatus.CANCELLED.value:
                raise InvalidTransitionError(f"Class session {session_id} is already cancelled")

            bookings = await cancel_session_bookings_locked(db, session, now, CLASS_CANCELLED_REASON)
            closed_entries = await close_session_waitlist_locked(db, session)

            session.status = SessionStatus.CANCELLED.value
            session.cancelled_at = now
            session.updated_at = now
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    events = [
        NotificationEvent(
            kind=SESSION_CANCELLED,
            client_id=booking.client_id,
            class_session_id=session.id,
            reason=CLASS_CANCELLED_REASON,
            studio_id=session.studio_id,
        )
        for booking in bookings
    ]
    dispatch = await dispatch_notifications(events, notifier)

    logger.info(
        "Class session %s cancelled: %s bookings cancelled, %s notified, %s notification failures",
        session_id, len(bookings), dispatch.sent, len(dispatch.failed)
    )
    return SessionCancellation(
        session=session,
        affected_clients=len(bookings),
        closed_waitlist_entries=closed_entries,
        dispatch=dispatch
    )


@dataclass
class SessionAttendance:
    class_session_id: int
    start_time: datetime
    end_time: datetime
    class_type_name: str
    location_name: str
    confirmed: int = 0
    completed: int = 0
    no_show: int = 0

    @property
    def students(self) -> int:
        return self.confirmed + self.completed

    @property
    def hours(self) -> float:
        return (self.end_time - self.start_time).total_seconds() / 3600


@dataclass
class AttendanceSummary:
    teacher_id: int
    sessions: List[SessionAttendance]

    @property
    def total_classes(self) -> int:
        return len(self.sessions)

    @property
    def total_students(self) -> int:
        return sum(item.students for item in self.sessions)

    @property
    def total_hours(self) -> float:
        return round(sum(item.hours for item in self.sessions), 2)


async def teacher_attendance_summary(
    db: AsyncSession,
    teacher_id: int,
    start: datetime,
    end: datetime,
    studio_id: Optional[int] = None
) -> AttendanceSummary:
    """
    Classes taught by a teacher in [start, end] with per-session attendance.

    Cancelled sessions are left out. Students are confirmed plus completed
    bookings; no-shows are counted separately for pay calculation.
    """
    if end < start:
        raise ValidationError("End of range must not be before its start")

    query = select(ClassSession).options(
        selectinload(ClassSession.class_type),
        selectinload(ClassSession.location)
    ).where(
        and_(
            ClassSession.teacher_id == teacher_id,
            ClassSession.status == SessionStatus.SCHEDULED.value,
            ClassSession.start_time >= start,
            ClassSession.start_time <= end
        )
    )
    if studio_id is not None:
        query = query.where(ClassSession.studio_id == studio_id)
    result = await db.execute(query.order_by(ClassSession.start_time))
    sessions = list(result.scalars().all())

    counts = {}
    if sessions:
        count_result = await db.execute(
            select(Booking.class_session_id, Booking.status, func.count(Booking.id))
            .where(Booking.class_session_id.in_([s.id for s in sessions]))
            .group_by(Booking.class_session_id, Booking.status)
        )
        for session_id, status, total in count_result.all():
            counts[(session_id, status)] = total

    rows = [
        SessionAttendance(
            class_session_id=s.id,
            start_time=s.start_time,
            end_time=s.end_time,
            class_type_name=s.class_type.name if s.class_type else "",
            location_name=s.location.name if s.location else "",
            confirmed=counts.get((s.id, BookingStatus.CONFIRMED.value), 0),
            completed=counts.get((s.id, BookingStatus.COMPLETED.value), 0),
            no_show=counts.get((s.id, BookingStatus.NO_SHOW.value), 0),
        )
        for s in sessions
    ]
    return AttendanceSummary(teacher_id=teacher_id, sessions=rows)
