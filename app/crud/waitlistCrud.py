"""
Waitlist manager.

Entry lifecycle: WAITING -> NOTIFIED -> CONFIRMED (row removed, booking
created) or EXPIRED (kept for history). Positions are 1-based and only WAITING
entries hold one; they are renumbered 1..n after every removal so the queue
never has gaps. Order is join order and nothing else.

A NOTIFIED entry holds a seat until `expires_at`; expiry is applied by the
periodic sweep (`sweep_expired_entries`), never by a timer in the request
path.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, and_, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    DomainException,
    DuplicateBookingError,
    DuplicateWaitlistError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from app.core.locks import session_locks
from app.crud.bookingsCrud import (
    _find_open_booking,
    create_booking_locked,
    lock_class_session,
    seats_available,
)
from app.crud.studiosCrud import get_studio_by_id, waitlist_window
from app.db.types import utcnow
from app.models.classModel import (
    Booking, ClassSession, SessionStatus, WaitlistEntry, WaitlistStatus
)
from app.models.userModel import Client
from app.services.notifications import (
    WAITLIST_PROMOTED,
    DispatchReport,
    NotificationEvent,
    Notifier,
    dispatch_notifications,
)

logger = logging.getLogger(__name__)

OPEN_STATUSES = (WaitlistStatus.WAITING.value, WaitlistStatus.NOTIFIED.value)


# ------------------------------
# Queue helpers (caller holds the session lock)
# ------------------------------
async def find_open_entry(db: AsyncSession, session_id: int, client_id: int) -> Optional[WaitlistEntry]:
    result = await db.execute(
        select(WaitlistEntry).where(
            and_(
                WaitlistEntry.class_session_id == session_id,
                WaitlistEntry.client_id == client_id,
                WaitlistEntry.status.in_(OPEN_STATUSES)
            )
        ).limit(1)
    )
    return result.scalar_one_or_none()


async def compact_positions(db: AsyncSession, session_id: int) -> None:
    """Renumber WAITING entries 1..n keeping their relative order"""
    result = await db.execute(
        select(WaitlistEntry).where(
            and_(
                WaitlistEntry.class_session_id == session_id,
                WaitlistEntry.status == WaitlistStatus.WAITING.value
            )
        ).order_by(WaitlistEntry.position, WaitlistEntry.id)
    )
    for index, entry in enumerate(result.scalars().all(), start=1):
        if entry.position != index:
            entry.position = index
    await db.flush()


async def remove_entry(db: AsyncSession, entry: WaitlistEntry) -> None:
    session_id = entry.class_session_id
    await db.delete(entry)
    await db.flush()
    await compact_positions(db, session_id)


async def close_entry(db: AsyncSession, entry: WaitlistEntry, status: WaitlistStatus) -> None:
    """Take an entry out of the queue: CONFIRMED removes it, EXPIRED keeps it without a position"""
    if status == WaitlistStatus.CONFIRMED:
        await remove_entry(db, entry)
        return

    entry.status = status.value
    entry.position = None
    await db.flush()
    await compact_positions(db, entry.class_session_id)


async def close_session_waitlist_locked(db: AsyncSession, session: ClassSession) -> int:
    """Expire every open entry of a cancelled session, without promotion"""
    result = await db.execute(
        select(WaitlistEntry).where(
            and_(
                WaitlistEntry.class_session_id == session.id,
                WaitlistEntry.status.in_(OPEN_STATUSES)
            )
        )
    )
    entries = result.scalars().all()
    for entry in entries:
        entry.status = WaitlistStatus.EXPIRED.value
        entry.position = None
    await db.flush()
    return len(entries)


async def promote_next_locked(
    db: AsyncSession,
    session: ClassSession,
    now: datetime
) -> Optional[WaitlistEntry]:
    """
    Offer a free seat to the first WAITING entry.

    No-op when the session is cancelled or started, when no seat is free
    (confirmed bookings plus unexpired offers already fill it), or when
    nobody is waiting. The caller holds the session lock and commits.
    """
    if session.status != SessionStatus.SCHEDULED.value or session.start_time <= now:
        return None
    if await seats_available(db, session, now) <= 0:
        return None

    result = await db.execute(
        select(WaitlistEntry).where(
            and_(
                WaitlistEntry.class_session_id == session.id,
                WaitlistEntry.status == WaitlistStatus.WAITING.value
            )
        ).order_by(WaitlistEntry.position, WaitlistEntry.id).limit(1)
    )
    entry = result.scalar_one_or_none()
    if not entry:
        return None

    studio = await get_studio_by_id(db, session.studio_id)
    entry.status = WaitlistStatus.NOTIFIED.value
    entry.notified_at = now
    entry.expires_at = now + waitlist_window(studio)
    entry.position = None
    await db.flush()
    await compact_positions(db, session.id)

    logger.info(
        "Waitlist entry %s promoted for session %s (expires %s)",
        entry.id, session.id, entry.expires_at.isoformat()
    )
    return entry


async def notify_promotions(
    entries: List[WaitlistEntry],
    notifier: Optional[Notifier] = None
) -> DispatchReport:
    events = [
        NotificationEvent(
            kind=WAITLIST_PROMOTED,
            client_id=entry.client_id,
            class_session_id=entry.class_session_id,
            reason="A spot opened up in a class you are waitlisted for",
            studio_id=entry.studio_id,
            waitlist_entry_id=entry.id,
            expires_at=entry.expires_at,
        )
        for entry in entries
    ]
    return await dispatch_notifications(events, notifier)


async def _get_entry(db: AsyncSession, entry_id: int, refresh: bool = False) -> WaitlistEntry:
    stmt = select(WaitlistEntry).where(WaitlistEntry.id == entry_id)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    result = await db.execute(stmt)
    entry = result.scalar_one_or_none()
    if not entry:
        raise NotFoundError(f"Waitlist entry {entry_id} not found")
    return entry


# ------------------------------
# Waitlist operations
# ------------------------------
async def join_waitlist(
    db: AsyncSession,
    *,
    session_id: int,
    client_id: int,
    now: Optional[datetime] = None
) -> WaitlistEntry:
    """Queue a client for a full session at the end of the line"""
    now = now or utcnow()

    async with session_locks.hold(session_id):
        try:
            session = await lock_class_session(db, session_id)
            if session.status != SessionStatus.SCHEDULED.value:
                raise InvalidTransitionError(f"Class session {session_id} is cancelled")
            if session.start_time <= now:
                raise ValidationError("This class has already started")

            client_result = await db.execute(select(Client).where(Client.id == client_id))
            client = client_result.scalar_one_or_none()
            if not client:
                raise NotFoundError(f"Client {client_id} not found")
            if client.studio_id != session.studio_id:
                raise ValidationError("Client does not belong to this studio")

            if await _find_open_booking(db, session_id, client_id):
                raise DuplicateBookingError("Client already has a booking for this class")

            existing = await find_open_entry(db, session_id, client_id)
            if existing:
                raise DuplicateWaitlistError(
                    "Client is already on the waitlist for this class",
                    details={"waitlist_entry_id": existing.id, "position": existing.position}
                )

            free = await seats_available(db, session, now)
            if free > 0:
                raise ValidationError(
                    "Class has available spots. Please book directly.",
                    code="SEATS_AVAILABLE",
                    details={"spots_left": free}
                )

            max_result = await db.execute(
                select(func.max(WaitlistEntry.position)).where(
                    and_(
                        WaitlistEntry.class_session_id == session_id,
                        WaitlistEntry.status == WaitlistStatus.WAITING.value
                    )
                )
            )
            next_position = (max_result.scalar() or 0) + 1

            entry = WaitlistEntry(
                studio_id=session.studio_id,
                client_id=client_id,
                class_session_id=session_id,
                position=next_position,
                status=WaitlistStatus.WAITING.value,
                created_at=now
            )
            db.add(entry)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    logger.info("Client %s joined waitlist of session %s at position %s", client_id, session_id, next_position)
    return entry


async def leave_waitlist(
    db: AsyncSession,
    entry_id: int,
    *,
    notifier: Optional[Notifier] = None,
    now: Optional[datetime] = None
) -> Optional[WaitlistEntry]:
    """
    Remove a WAITING or NOTIFIED entry. Leaving while NOTIFIED releases the
    held seat, which is offered to the next client; that entry is returned.
    """
    now = now or utcnow()
    entry = await _get_entry(db, entry_id)
    session_id = entry.class_session_id
    promoted: Optional[WaitlistEntry] = None

    async with session_locks.hold(session_id):
        try:
            session = await lock_class_session(db, session_id)
            entry = await _get_entry(db, entry_id, refresh=True)
            if entry.status not in OPEN_STATUSES:
                raise InvalidTransitionError(f"Cannot leave waitlist entry with status {entry.status}")

            held_seat = entry.status == WaitlistStatus.NOTIFIED.value
            await remove_entry(db, entry)
            await db.commit()

            if held_seat:
                session = await lock_class_session(db, session_id)
                promoted = await promote_next_locked(db, session, now)
                await db.commit()
        except Exception:
            await db.rollback()
            raise

    logger.info("Waitlist entry %s left session %s", entry_id, session_id)
    if promoted:
        await notify_promotions([promoted], notifier)
    return promoted


async def promote_next(
    db: AsyncSession,
    session_id: int,
    *,
    notifier: Optional[Notifier] = None,
    now: Optional[datetime] = None
) -> Optional[WaitlistEntry]:
    """Offer a free seat of the session to the next waiting client, if any"""
    now = now or utcnow()

    async with session_locks.hold(session_id):
        try:
            session = await lock_class_session(db, session_id)
            promoted = await promote_next_locked(db, session, now)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    if promoted:
        await notify_promotions([promoted], notifier)
    return promoted


async def confirm_entry(
    db: AsyncSession,
    entry_id: int,
    *,
    now: Optional[datetime] = None
) -> Booking:
    """Turn an unexpired seat offer into a CONFIRMED booking"""
    now = now or utcnow()
    entry = await _get_entry(db, entry_id)
    session_id = entry.class_session_id

    async with session_locks.hold(session_id):
        try:
            session = await lock_class_session(db, session_id)
            entry = await _get_entry(db, entry_id, refresh=True)
            if entry.status != WaitlistStatus.NOTIFIED.value:
                raise InvalidTransitionError(
                    f"Cannot confirm waitlist entry with status {entry.status}"
                )
            if entry.expires_at is None or entry.expires_at <= now:
                raise InvalidTransitionError("This waitlist offer has expired")

            # Final capacity guard; the client's own hold is excluded and the entry consumed
            booking = await create_booking_locked(db, session, entry.client_id, now)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    logger.info("Waitlist entry %s confirmed as booking %s", entry_id, booking.id)
    return booking


async def expire_entry(
    db: AsyncSession,
    entry_id: int,
    *,
    notifier: Optional[Notifier] = None,
    now: Optional[datetime] = None
) -> Optional[WaitlistEntry]:
    """Expire a lapsed offer and pass the seat to the next client, returned if any"""
    now = now or utcnow()
    entry = await _get_entry(db, entry_id)
    session_id = entry.class_session_id

    async with session_locks.hold(session_id):
        try:
            session = await lock_class_session(db, session_id)
            entry = await _get_entry(db, entry_id, refresh=True)
            if entry.status != WaitlistStatus.NOTIFIED.value:
                raise InvalidTransitionError(
                    f"Cannot expire waitlist entry with status {entry.status}"
                )
            if entry.expires_at is not None and entry.expires_at > now:
                raise InvalidTransitionError("This waitlist offer has not expired yet")

            await close_entry(db, entry, WaitlistStatus.EXPIRED)
            await db.commit()

            session = await lock_class_session(db, session_id)
            promoted = await promote_next_locked(db, session, now)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    logger.info("Waitlist entry %s expired for session %s", entry_id, session_id)
    if promoted:
        await notify_promotions([promoted], notifier)
    return promoted


async def sweep_expired_entries(
    db: AsyncSession,
    *,
    notifier: Optional[Notifier] = None,
    now: Optional[datetime] = None,
    studio_id: Optional[int] = None
) -> Dict[str, Any]:
    """Expire every lapsed offer, optionally of one studio; one failure never stops the sweep"""
    now = now or utcnow()
    stats: Dict[str, Any] = {
        "expired": 0,
        "promoted": 0,
        "errors": []
    }

    query = select(WaitlistEntry.id).where(
        and_(
            WaitlistEntry.status == WaitlistStatus.NOTIFIED.value,
            WaitlistEntry.expires_at <= now
        )
    )
    if studio_id is not None:
        query = query.where(WaitlistEntry.studio_id == studio_id)
    result = await db.execute(query.order_by(WaitlistEntry.expires_at, WaitlistEntry.id))
    entry_ids = list(result.scalars().all())

    for entry_id in entry_ids:
        try:
            promoted = await expire_entry(db, entry_id, notifier=notifier, now=now)
        except DomainException as exc:
            stats["errors"].append(f"Entry {entry_id}: {exc.message}")
            continue
        stats["expired"] += 1
        if promoted:
            stats["promoted"] += 1

    if stats["expired"] or stats["errors"]:
        logger.info(
            "Waitlist sweep: expired=%s promoted=%s errors=%s",
            stats["expired"], stats["promoted"], len(stats["errors"])
        )
    return stats


# ------------------------------
# Reads
# ------------------------------
async def get_session_waitlist(
    db: AsyncSession,
    session_id: int,
    include_closed: bool = False
) -> List[WaitlistEntry]:
    """Notified entries first, then the queue in position order"""
    query = select(WaitlistEntry).where(WaitlistEntry.class_session_id == session_id)
    if not include_closed:
        query = query.where(WaitlistEntry.status.in_(OPEN_STATUSES))

    result = await db.execute(query.order_by(WaitlistEntry.id))
    entries = list(result.scalars().all())
    rank = {
        WaitlistStatus.NOTIFIED.value: 0,
        WaitlistStatus.WAITING.value: 1,
    }
    entries.sort(key=lambda e: (rank.get(e.status, 2), e.position or 0, e.id))
    return entries


async def get_client_waitlist_entries(db: AsyncSession, client_id: int) -> List[WaitlistEntry]:
    result = await db.execute(
        select(WaitlistEntry).where(
            and_(
                WaitlistEntry.client_id == client_id,
                WaitlistEntry.status.in_(OPEN_STATUSES)
            )
        ).order_by(WaitlistEntry.created_at.desc())
    )
    return list(result.scalars().all())


async def get_waitlist_entry_by_id(db: AsyncSession, entry_id: int) -> Optional[WaitlistEntry]:
    result = await db.execute(select(WaitlistEntry).where(WaitlistEntry.id == entry_id))
    return result.scalar_one_or_none()
