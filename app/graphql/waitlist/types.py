"""
GraphQL types for class waitlists
"""
from datetime import datetime
from typing import Optional, List
import strawberry

from app.models.classModel import WaitlistEntry as WaitlistEntryModel


@strawberry.type
class WaitlistEntry:
    id: int
    client_id: int
    session_id: int
    position: Optional[int]
    status: str
    notified_at: Optional[datetime]
    expires_at: Optional[datetime]
    created_at: datetime

    @classmethod
    def from_model(cls, entry: WaitlistEntryModel) -> "WaitlistEntry":
        return cls(
            id=entry.id,
            client_id=entry.client_id,
            session_id=entry.class_session_id,
            position=entry.position,
            status=entry.status,
            notified_at=entry.notified_at,
            expires_at=entry.expires_at,
            created_at=entry.created_at
        )


@strawberry.type
class WaitlistEntryResponse:
    success: bool
    message: str
    error_code: Optional[str] = None
    entry: Optional[WaitlistEntry] = None


@strawberry.type
class WaitlistActionResponse:
    """Result of leaving or promoting; carries the client offered the seat, if any"""
    success: bool
    message: str
    error_code: Optional[str] = None
    promoted_entry: Optional[WaitlistEntry] = None


@strawberry.type
class ConfirmWaitlistResponse:
    success: bool
    message: str
    error_code: Optional[str] = None
    booking_id: Optional[int] = None


@strawberry.type
class WaitlistSweepResponse:
    success: bool
    message: str
    error_code: Optional[str] = None
    expired: int = 0
    promoted: int = 0
    errors: List[str] = strawberry.field(default_factory=list)


@strawberry.type
class WaitlistResponse:
    entries: List[WaitlistEntry]
    total_count: int
