"""
Conflict Checker for class scheduling

Decides whether a proposed [start, end) interval for a teacher and location
overlaps another scheduled session of that teacher or at that location, or
a blocked-time interval of the teacher. Intervals are half-open, so a class
ending at 10:00 never conflicts with one starting at 10:00. Cancelled
sessions are ignored. The checker only reads; callers decide whether a
conflict is fatal (single scheduling) or skips one occurrence (recurrence
and series operations).
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError
from app.models.classModel import ClassSession, SessionStatus
from app.models.userModel import TeacherBlockedTime

logger = logging.getLogger(__name__)

TEACHER_CONFLICT = "TEACHER_CONFLICT"
LOCATION_CONFLICT = "LOCATION_CONFLICT"
BLOCKED_TIME = "BLOCKED_TIME"


@dataclass
class ScheduleConflict:
    """First conflict found for a proposed interval"""
    code: str
    message: str
    class_session_id: Optional[int] = None
    blocked_time_id: Optional[int] = None

    def to_error(self) -> ConflictError:
        details = {}
        if self.class_session_id is not None:
            details["class_session_id"] = self.class_session_id
        if self.blocked_time_id is not None:
            details["blocked_time_id"] = self.blocked_time_id
        return ConflictError(self.message, code=self.code, details=details)


class ConflictChecker:
    """Teacher/location/blocked-time overlap detection"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_conflict(
        self,
        teacher_id: int,
        location_id: int,
        start: datetime,
        end: datetime,
        exclude_session_id: Optional[int] = None
    ) -> Optional[ScheduleConflict]:
        """
        Return the earliest conflicting session or blocked time, or None.

        Args:
            teacher_id: Teacher who would lead the session
            location_id: Location the session would use
            start: Proposed start (inclusive)
            end: Proposed end (exclusive)
            exclude_session_id: Session being edited, ignored in the check
        """
        conditions = [
            ClassSession.status == SessionStatus.SCHEDULED.value,
            or_(
                ClassSession.teacher_id == teacher_id,
                ClassSession.location_id == location_id
            ),
            ClassSession.start_time < end,
            ClassSession.end_time > start,
        ]
        if exclude_session_id is not None:
            conditions.append(ClassSession.id != exclude_session_id)

        result = await self.db.execute(
            select(ClassSession)
            .where(and_(*conditions))
            .order_by(ClassSession.start_time)
            .limit(1)
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            if existing.teacher_id == teacher_id:
                return ScheduleConflict(
                    code=TEACHER_CONFLICT,
                    message=(
                        f"Teacher already teaches session {existing.id} "
                        f"from {existing.start_time.isoformat()} to {existing.end_time.isoformat()}"
                    ),
                    class_session_id=existing.id,
                )
            return ScheduleConflict(
                code=LOCATION_CONFLICT,
                message=(
                    f"Location is already used by session {existing.id} "
                    f"from {existing.start_time.isoformat()} to {existing.end_time.isoformat()}"
                ),
                class_session_id=existing.id,
            )

        blocked_result = await self.db.execute(
            select(TeacherBlockedTime)
            .where(
                and_(
                    TeacherBlockedTime.teacher_id == teacher_id,
                    TeacherBlockedTime.start_time < end,
                    TeacherBlockedTime.end_time > start,
                )
            )
            .order_by(TeacherBlockedTime.start_time)
            .limit(1)
        )
        blocked = blocked_result.scalar_one_or_none()
        if blocked is not None:
            return ScheduleConflict(
                code=BLOCKED_TIME,
                message="Teacher is blocked/unavailable in this time slot",
                blocked_time_id=blocked.id,
            )

        return None

    async def has_conflict(
        self,
        teacher_id: int,
        location_id: int,
        start: datetime,
        end: datetime,
        exclude_session_id: Optional[int] = None
    ) -> bool:
        conflict = await self.find_conflict(teacher_id, location_id, start, end, exclude_session_id)
        return conflict is not None

    async def ensure_no_conflict(
        self,
        teacher_id: int,
        location_id: int,
        start: datetime,
        end: datetime,
        exclude_session_id: Optional[int] = None
    ) -> None:
        """Raise ConflictError for the first conflict found"""
        conflict = await self.find_conflict(teacher_id, location_id, start, end, exclude_session_id)
        if conflict is not None:
            logger.info(
                "Schedule conflict %s for teacher=%s location=%s %s-%s",
                conflict.code, teacher_id, location_id, start, end
            )
            raise conflict.to_error()
