"""
Session Generator Service
Expands a weekly recurrence into concrete class sessions sharing one recurring group id
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, date, time, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from app.core.conversions import coerce_weekdays
from app.core.exceptions import NotFoundError, ValidationError
from app.crud.classSessionCrud import (
    SkippedOccurrence,
    create_class_session,
    validate_interval_and_capacity,
    validate_references,
)
from app.crud.studiosCrud import require_studio, studio_timezone
from app.models.classModel import ClassSession, SessionStatus
from app.services.conflict_checker import ConflictChecker

logger = logging.getLogger(__name__)

ALREADY_SCHEDULED = "ALREADY_SCHEDULED"


def occurrence_dates(
    anchor_date: date,
    weekdays: Iterable[int],
    end_date: date,
    skip_first: bool = False
) -> List[date]:
    """
    Calendar dates matching the weekday selector, from the anchor date
    (or the day after it when skip_first is set) through end_date inclusive.

    Weekdays use Python's convention, 0 = Monday.
    """
    selected = set(weekdays)
    current = anchor_date + timedelta(days=1) if skip_first else anchor_date
    dates = []
    while current <= end_date:
        if current.weekday() in selected:
            dates.append(current)
        current += timedelta(days=1)
    return dates


def local_slot(day: date, time_of_day: time, duration: timedelta, tz: ZoneInfo) -> Tuple[datetime, datetime]:
    """UTC start/end for a wall-clock time on a calendar day in the studio timezone"""
    start = datetime.combine(day, time_of_day, tzinfo=tz).astimezone(timezone.utc)
    return start, start + duration


@dataclass
class RecurrenceResult:
    recurring_group_id: str
    sessions: List[ClassSession] = field(default_factory=list)
    skipped: List[SkippedOccurrence] = field(default_factory=list)

    @property
    def created(self) -> int:
        return len(self.sessions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recurring_group_id": self.recurring_group_id,
            "sessions_created": self.created,
            "sessions_skipped": len(self.skipped),
            "skipped": [
                {
                    "date": item.occurrence_date.isoformat() if item.occurrence_date else None,
                    "code": item.code,
                    "reason": item.reason
                }
                for item in self.skipped
            ]
        }


class SessionGeneratorService:
    """Service to expand recurrences and extend existing series"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def generate_recurrence(
        self,
        *,
        studio_id: int,
        class_type_id: int,
        teacher_id: int,
        location_id: int,
        anchor_start: datetime,
        duration: timedelta,
        capacity: int,
        weekdays: Iterable[Any],
        end_date: date,
        skip_first: bool = False,
        recurring_group_id: Optional[str] = None,
        notes: Optional[str] = None,
        commit: bool = True
    ) -> RecurrenceResult:
        """
        Create one session per matching weekday up to end_date.

        Input is validated before anything is written. An occurrence that
        conflicts with another session or a teacher blocked time is skipped
        and reported; the rest of the batch still goes in.

        Args:
            anchor_start: First occurrence; its local date and time-of-day
                in the studio timezone drive every other occurrence
            duration: Length of each session
            weekdays: Weekday selector (ints 0=Monday, or day names)
            end_date: Last calendar day that may hold an occurrence
            skip_first: Leave the anchor date out (the anchor already exists)
            recurring_group_id: Series to extend; a new one is generated otherwise

        Returns:
            RecurrenceResult with created sessions and skipped dates
        """
        try:
            selected = coerce_weekdays(weekdays)
        except ValueError as e:
            raise ValidationError(str(e))
        if not selected:
            raise ValidationError("At least one weekday is required")
        if duration <= timedelta(0):
            raise ValidationError("Duration must be positive")
        validate_interval_and_capacity(anchor_start, anchor_start + duration, capacity)

        studio = await require_studio(self.db, studio_id)
        await validate_references(self.db, studio_id, class_type_id, teacher_id, location_id)

        tz = studio_timezone(studio)
        local_anchor = anchor_start.astimezone(tz)
        if end_date < local_anchor.date():
            raise ValidationError("End date must not be before the first occurrence")

        result = RecurrenceResult(recurring_group_id=recurring_group_id or str(uuid.uuid4()))
        existing_dates = await self._series_dates(result.recurring_group_id, tz) if recurring_group_id else set()
        checker = ConflictChecker(self.db)
        time_of_day = local_anchor.time().replace(tzinfo=None)

        logger.info(
            f"Generating recurrence {result.recurring_group_id} for teacher {teacher_id} "
            f"from {local_anchor.date()} to {end_date} on weekdays {sorted(selected)}"
        )

        for day in occurrence_dates(local_anchor.date(), selected, end_date, skip_first):
            if day in existing_dates:
                result.skipped.append(SkippedOccurrence(
                    code=ALREADY_SCHEDULED,
                    reason="Series already has a session on this date",
                    occurrence_date=day
                ))
                continue

            start, end = local_slot(day, time_of_day, duration, tz)
            conflict = await checker.find_conflict(teacher_id, location_id, start, end)
            if conflict:
                logger.warning(f"Skipping occurrence on {day}: {conflict.message}")
                result.skipped.append(SkippedOccurrence(
                    code=conflict.code,
                    reason=conflict.message,
                    class_session_id=conflict.class_session_id,
                    occurrence_date=day
                ))
                continue

            session = ClassSession(
                studio_id=studio_id,
                class_type_id=class_type_id,
                teacher_id=teacher_id,
                location_id=location_id,
                start_time=start,
                end_time=end,
                capacity=capacity,
                notes=notes,
                recurring_group_id=result.recurring_group_id,
                status=SessionStatus.SCHEDULED.value
            )
            self.db.add(session)
            await self.db.flush()
            result.sessions.append(session)

        if commit:
            try:
                await self.db.commit()
            except SQLAlchemyError:
                await self.db.rollback()
                raise

        logger.info(
            f"Recurrence {result.recurring_group_id}: {result.created} created, "
            f"{len(result.skipped)} skipped"
        )
        return result

    async def create_with_recurrence(
        self,
        *,
        studio_id: int,
        class_type_id: int,
        teacher_id: int,
        location_id: int,
        start_time: datetime,
        end_time: datetime,
        weekdays: Iterable[Any],
        end_date: date,
        capacity: Optional[int] = None,
        notes: Optional[str] = None,
        check_conflicts: bool = True
    ) -> Tuple[ClassSession, RecurrenceResult]:
        """
        Schedule an anchor session and repeat it weekly until end_date.

        A conflict on the anchor itself fails the call like a single
        scheduling would; later occurrences are skipped instead.
        """
        group_id = str(uuid.uuid4())
        try:
            anchor = await create_class_session(
                self.db,
                studio_id=studio_id,
                class_type_id=class_type_id,
                teacher_id=teacher_id,
                location_id=location_id,
                start_time=start_time,
                end_time=end_time,
                capacity=capacity,
                notes=notes,
                recurring_group_id=group_id,
                check_conflicts=check_conflicts,
                commit=False
            )
            result = await self.generate_recurrence(
                studio_id=studio_id,
                class_type_id=class_type_id,
                teacher_id=teacher_id,
                location_id=location_id,
                anchor_start=anchor.start_time,
                duration=anchor.end_time - anchor.start_time,
                capacity=anchor.capacity,
                weekdays=weekdays,
                end_date=end_date,
                skip_first=True,
                recurring_group_id=group_id,
                notes=notes,
                commit=False
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return anchor, result

    async def extend_series(
        self,
        anchor_session_id: int,
        weekdays: Iterable[Any],
        end_date: date,
        studio_id: Optional[int] = None
    ) -> RecurrenceResult:
        """
        Repeat an existing session (or series) on the given weekdays.

        Copies the anchor's class type, teacher, location, capacity, notes,
        local time-of-day and duration. Dates the series already covers are
        reported as skipped.
        """
        anchor = await self.db.get(ClassSession, anchor_session_id)
        if not anchor or (studio_id is not None and anchor.studio_id != studio_id):
            raise NotFoundError(f"Class session {anchor_session_id} not found")
        if anchor.status != SessionStatus.SCHEDULED.value:
            raise ValidationError("Cannot extend a cancelled session")

        group_id = anchor.recurring_group_id
        if not group_id:
            group_id = str(uuid.uuid4())
            anchor.recurring_group_id = group_id
            await self.db.flush()

        try:
            result = await self.generate_recurrence(
                studio_id=anchor.studio_id,
                class_type_id=anchor.class_type_id,
                teacher_id=anchor.teacher_id,
                location_id=anchor.location_id,
                anchor_start=anchor.start_time,
                duration=anchor.end_time - anchor.start_time,
                capacity=anchor.capacity,
                weekdays=weekdays,
                end_date=end_date,
                skip_first=True,
                recurring_group_id=group_id,
                notes=anchor.notes
            )
        except Exception:
            await self.db.rollback()
            raise

        return result

    async def _series_dates(self, recurring_group_id: str, tz: ZoneInfo) -> Set[date]:
        """Local calendar dates already holding a scheduled session of the series"""
        query = select(ClassSession.start_time).where(
            ClassSession.recurring_group_id == recurring_group_id,
            ClassSession.status == SessionStatus.SCHEDULED.value
        )
        result = await self.db.execute(query)
        return {start.astimezone(tz).date() for start in result.scalars().all()}
