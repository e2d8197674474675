"""
GraphQL mutations for class waitlists
"""
from typing import Optional
import strawberry
from strawberry.types import Info

from app.crud.classSessionCrud import get_class_session_by_id
from app.crud.waitlistCrud import (
    confirm_entry,
    get_waitlist_entry_by_id,
    join_waitlist,
    leave_waitlist,
    promote_next,
    sweep_expired_entries
)
from app.graphql.auth.permissions import (
    IsAuthenticated,
    IsStaff,
    ensure_owner_or_staff,
    ensure_same_studio,
    resolve_client_id
)
from app.graphql.errors import error_fields
from .types import (
    ConfirmWaitlistResponse,
    WaitlistActionResponse,
    WaitlistEntry,
    WaitlistEntryResponse,
    WaitlistSweepResponse
)


@strawberry.type
class WaitlistMutations:
    """Waitlist mutations"""

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def join_waitlist(
        self,
        info: Info,
        session_id: int,
        client_id: Optional[int] = None
    ) -> WaitlistEntryResponse:
        """Queue for a full class"""
        db = info.context.db

        try:
            client_id = resolve_client_id(info, client_id)
            session = await get_class_session_by_id(db, session_id)
            ensure_same_studio(info, session, "class session", session_id)

            entry = await join_waitlist(db, session_id=session_id, client_id=client_id)

            return WaitlistEntryResponse(
                success=True,
                entry=WaitlistEntry.from_model(entry),
                message=f"Added to waitlist at position {entry.position}"
            )
        except Exception as e:
            return WaitlistEntryResponse(**error_fields(e, "joining waitlist"))

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def leave_waitlist(
        self,
        info: Info,
        entry_id: int
    ) -> WaitlistActionResponse:
        db = info.context.db

        try:
            existing = await get_waitlist_entry_by_id(db, entry_id)
            ensure_same_studio(info, existing, "waitlist entry", entry_id)
            ensure_owner_or_staff(info, existing.client_id)

            promoted = await leave_waitlist(db, entry_id, notifier=info.context.notifier)

            return WaitlistActionResponse(
                success=True,
                promoted_entry=WaitlistEntry.from_model(promoted) if promoted else None,
                message="Removed from waitlist"
            )
        except Exception as e:
            return WaitlistActionResponse(**error_fields(e, "leaving waitlist"))

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def confirm_waitlist_entry(
        self,
        info: Info,
        entry_id: int
    ) -> ConfirmWaitlistResponse:
        """Take the seat offered to a notified client"""
        db = info.context.db

        try:
            existing = await get_waitlist_entry_by_id(db, entry_id)
            ensure_same_studio(info, existing, "waitlist entry", entry_id)
            ensure_owner_or_staff(info, existing.client_id)

            booking = await confirm_entry(db, entry_id)

            return ConfirmWaitlistResponse(
                success=True,
                booking_id=booking.id,
                message="Seat confirmed"
            )
        except Exception as e:
            return ConfirmWaitlistResponse(**error_fields(e, "confirming waitlist entry"))

    @strawberry.mutation(permission_classes=[IsStaff])
    async def promote_next_waitlist_entry(
        self,
        info: Info,
        session_id: int
    ) -> WaitlistActionResponse:
        """Offer a free seat to the next client in line"""
        db = info.context.db

        try:
            session = await get_class_session_by_id(db, session_id)
            ensure_same_studio(info, session, "class session", session_id)

            promoted = await promote_next(db, session_id, notifier=info.context.notifier)

            return WaitlistActionResponse(
                success=True,
                promoted_entry=WaitlistEntry.from_model(promoted) if promoted else None,
                message="Next client notified" if promoted else "No seat or no one waiting"
            )
        except Exception as e:
            return WaitlistActionResponse(**error_fields(e, "promoting waitlist"))

    @strawberry.mutation(permission_classes=[IsStaff])
    async def sweep_expired_waitlist(
        self,
        info: Info
    ) -> WaitlistSweepResponse:
        """Expire lapsed seat offers and pass the seats on"""
        db = info.context.db

        try:
            stats = await sweep_expired_entries(
                db,
                notifier=info.context.notifier,
                studio_id=info.context.principal.studio_id
            )

            return WaitlistSweepResponse(
                success=True,
                expired=stats["expired"],
                promoted=stats["promoted"],
                errors=stats["errors"],
                message=f"{stats['expired']} offers expired"
            )
        except Exception as e:
            return WaitlistSweepResponse(**error_fields(e, "sweeping waitlist"))
