"""
GraphQL queries for class waitlists
"""
from typing import Optional
import strawberry
from strawberry.types import Info

from app.crud.classSessionCrud import get_class_session_by_id
from app.crud.waitlistCrud import get_client_waitlist_entries, get_session_waitlist
from app.graphql.auth.permissions import IsAuthenticated, IsStaff, ensure_same_studio, resolve_client_id
from .types import WaitlistEntry, WaitlistResponse


@strawberry.type
class WaitlistQueries:

    @strawberry.field(permission_classes=[IsStaff])
    async def get_session_waitlist(
        self,
        info: Info,
        session_id: int,
        include_closed: bool = False
    ) -> WaitlistResponse:
        """Notified clients first, then the queue in order"""
        db = info.context.db

        session = await get_class_session_by_id(db, session_id)
        ensure_same_studio(info, session, "class session", session_id)
        entries = await get_session_waitlist(db, session_id, include_closed=include_closed)

        return WaitlistResponse(
            entries=[WaitlistEntry.from_model(e) for e in entries],
            total_count=len(entries)
        )

    @strawberry.field(permission_classes=[IsAuthenticated])
    async def get_client_waitlist_entries(
        self,
        info: Info,
        client_id: Optional[int] = None
    ) -> WaitlistResponse:
        db = info.context.db

        client_id = resolve_client_id(info, client_id)
        entries = await get_client_waitlist_entries(db, client_id)
        entries = [e for e in entries if e.studio_id == info.context.principal.studio_id]

        return WaitlistResponse(
            entries=[WaitlistEntry.from_model(e) for e in entries],
            total_count=len(entries)
        )
