"""
Series-wide edits and cancellations

Each occurrence of a recurring group is handled as its own locked,
committed operation. A failure on one occurrence is recorded as skipped and
the batch moves on; occurrences that already started are never touched when
future_only is set.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import DomainException, ValidationError
from app.crud.classSessionCrud import (
    SessionPatch,
    SkippedOccurrence,
    cancel_class_session,
    get_series_sessions,
    update_class_session,
)
from app.crud.studiosCrud import get_studio_by_id, studio_timezone
from app.db.types import utcnow
from app.services.notifications import DispatchReport, Notifier
from app.services.session_generator import local_slot

logger = logging.getLogger(__name__)


@dataclass
class SeriesPatch:
    """Changes applied to every targeted occurrence of a series"""
    teacher_id: Optional[int] = None
    location_id: Optional[int] = None
    capacity: Optional[int] = None
    class_type_id: Optional[int] = None
    notes: Optional[str] = None
    start_time_of_day: Optional[time] = None
    duration_minutes: Optional[int] = None

    def is_empty(self) -> bool:
        return all(value is None for value in vars(self).values())

    def validate(self) -> None:
        if self.is_empty():
            raise ValidationError("Nothing to update")
        if self.capacity is not None and self.capacity < 1:
            raise ValidationError("Capacity must be at least 1", details={"capacity": self.capacity})
        if self.duration_minutes is not None and self.duration_minutes <= 0:
            raise ValidationError("Duration must be positive", details={"duration_minutes": self.duration_minutes})


@dataclass
class SeriesResult:
    recurring_group_id: str
    session_ids: List[int] = field(default_factory=list)
    skipped: List[SkippedOccurrence] = field(default_factory=list)
    dispatch: DispatchReport = field(default_factory=DispatchReport)

    @property
    def count(self) -> int:
        return len(self.session_ids)


async def _studio_tz(db: AsyncSession, studio_id: int, tz_cache: dict):
    if studio_id not in tz_cache:
        tz_cache[studio_id] = studio_timezone(await get_studio_by_id(db, studio_id))
    return tz_cache[studio_id]


async def update_series(
    db: AsyncSession,
    recurring_group_id: str,
    patch: SeriesPatch,
    *,
    future_only: bool = True,
    studio_id: Optional[int] = None,
    notifier: Optional[Notifier] = None,
    now: Optional[datetime] = None
) -> SeriesResult:
    """
    Apply a patch to every occurrence of a series.

    New time-of-day and duration are applied on each occurrence's own
    calendar date in the studio timezone. Occurrences that would conflict
    or drop below their bookings are skipped with a reason.
    """
    patch.validate()
    now = now or utcnow()
    result = SeriesResult(recurring_group_id=recurring_group_id)

    sessions = await get_series_sessions(
        db, recurring_group_id, future_only=future_only, now=now, studio_id=studio_id
    )
    targets = [(s.id, s.studio_id, s.start_time, s.end_time) for s in sessions]
    tz_cache = {}

    for session_id, session_studio_id, start_time, end_time in targets:
        single = SessionPatch(
            capacity=patch.capacity,
            teacher_id=patch.teacher_id,
            location_id=patch.location_id,
            class_type_id=patch.class_type_id,
            notes=patch.notes,
        )
        if patch.start_time_of_day is not None or patch.duration_minutes is not None:
            tz = await _studio_tz(db, session_studio_id, tz_cache)
            local_start = start_time.astimezone(tz)
            time_of_day = patch.start_time_of_day or local_start.time().replace(tzinfo=None)
            duration = (
                timedelta(minutes=patch.duration_minutes)
                if patch.duration_minutes is not None
                else end_time - start_time
            )
            single.start_time, single.end_time = local_slot(local_start.date(), time_of_day, duration, tz)

        try:
            await update_class_session(db, session_id, single, notifier=notifier, now=now)
        except DomainException as e:
            logger.warning("Series %s: skipped session %s (%s) %s", recurring_group_id, session_id, e.code, e.message)
            tz = await _studio_tz(db, session_studio_id, tz_cache)
            result.skipped.append(SkippedOccurrence(
                code=e.code,
                reason=e.message,
                class_session_id=session_id,
                occurrence_date=start_time.astimezone(tz).date()
            ))
            continue
        result.session_ids.append(session_id)

    logger.info(
        "Series %s updated: %s sessions, %s skipped",
        recurring_group_id, result.count, len(result.skipped)
    )
    return result


async def delete_series(
    db: AsyncSession,
    recurring_group_id: str,
    *,
    future_only: bool = True,
    studio_id: Optional[int] = None,
    notifier: Optional[Notifier] = None,
    now: Optional[datetime] = None
) -> SeriesResult:
    """Cancel every occurrence of a series, cascading to their bookings"""
    now = now or utcnow()
    result = SeriesResult(recurring_group_id=recurring_group_id)

    sessions = await get_series_sessions(
        db, recurring_group_id, future_only=future_only, now=now, studio_id=studio_id
    )
    targets = [(s.id, s.studio_id, s.start_time) for s in sessions]
    tz_cache = {}

    for session_id, session_studio_id, start_time in targets:
        try:
            cancellation = await cancel_class_session(db, session_id, notifier=notifier, now=now)
        except DomainException as e:
            logger.warning("Series %s: skipped session %s (%s) %s", recurring_group_id, session_id, e.code, e.message)
            tz = await _studio_tz(db, session_studio_id, tz_cache)
            result.skipped.append(SkippedOccurrence(
                code=e.code,
                reason=e.message,
                class_session_id=session_id,
                occurrence_date=start_time.astimezone(tz).date()
            ))
            continue
        result.session_ids.append(session_id)
        result.dispatch.merge(cancellation.dispatch)

    logger.info(
        "Series %s cancelled: %s sessions, %s clients notified, %s skipped",
        recurring_group_id, result.count, result.dispatch.sent, len(result.skipped)
    )
    return result
