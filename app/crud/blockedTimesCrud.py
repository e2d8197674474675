"""
Teacher blocked-time records consumed by the conflict checker
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError, ValidationError
from app.models.userModel import Teacher, TeacherBlockedTime

logger = logging.getLogger(__name__)


async def create_blocked_time(
    db: AsyncSession,
    teacher_id: int,
    start_time: datetime,
    end_time: datetime,
    reason: Optional[str] = None
) -> TeacherBlockedTime:
    if end_time <= start_time:
        raise ValidationError("End time must be after start time")

    teacher = await db.get(Teacher, teacher_id)
    if not teacher:
        raise NotFoundError(f"Teacher {teacher_id} not found")

    blocked = TeacherBlockedTime(
        teacher_id=teacher_id,
        start_time=start_time,
        end_time=end_time,
        reason=reason
    )
    db.add(blocked)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Blocked time %s added for teacher %s", blocked.id, teacher_id)
    return blocked


async def list_blocked_times(
    db: AsyncSession,
    teacher_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None
) -> List[TeacherBlockedTime]:
    """Blocked intervals of a teacher overlapping [start, end)"""
    query = select(TeacherBlockedTime).where(TeacherBlockedTime.teacher_id == teacher_id)
    if start:
        query = query.where(TeacherBlockedTime.end_time > start)
    if end:
        query = query.where(TeacherBlockedTime.start_time < end)

    result = await db.execute(query.order_by(TeacherBlockedTime.start_time))
    return list(result.scalars().all())


async def delete_blocked_time(db: AsyncSession, blocked_time_id: int) -> bool:
    result = await db.execute(
        select(TeacherBlockedTime).where(TeacherBlockedTime.id == blocked_time_id)
    )
    blocked = result.scalar_one_or_none()
    if not blocked:
        return False

    await db.delete(blocked)
    await db.commit()
    return True
