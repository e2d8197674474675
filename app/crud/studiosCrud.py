"""
Studio configuration lookups used by scheduling
"""
from datetime import timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.conversions import resolve_timezone
from app.core.exceptions import NotFoundError
from app.models.studioModel import Studio


async def get_studio_by_id(db: AsyncSession, studio_id: int) -> Optional[Studio]:
    result = await db.execute(select(Studio).where(Studio.id == studio_id))
    return result.scalar_one_or_none()


async def require_studio(db: AsyncSession, studio_id: int) -> Studio:
    studio = await get_studio_by_id(db, studio_id)
    if not studio:
        raise NotFoundError(f"Studio {studio_id} not found")
    return studio


def studio_timezone(studio: Optional[Studio]) -> ZoneInfo:
    """Studio timezone, or the configured default when unset or unknown"""
    fallback = get_settings().default_studio_timezone
    return resolve_timezone(studio.timezone if studio else None, fallback)


def waitlist_window(studio: Optional[Studio]) -> timedelta:
    """How long a notified waitlist client has to confirm their seat"""
    minutes = studio.waitlist_window_minutes if studio and studio.waitlist_window_minutes else None
    return timedelta(minutes=minutes or get_settings().waitlist_notification_minutes)
