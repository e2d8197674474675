from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession
from strawberry.fastapi import BaseContext

from app.auth.jwt import verify_token
from app.core.conversions import coerce_int
from app.core.logging_config import log_auth_event
from app.db.postgresql import get_db
from app.services.notifications import Notifier

STAFF_ROLES = ("OWNER", "MANAGER", "STAFF")


@dataclass
class Principal:
    """Authenticated caller, scoped to one studio"""
    user_id: int
    studio_id: int
    role: str
    client_id: Optional[int] = None
    teacher_id: Optional[int] = None

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @classmethod
    def from_claims(cls, payload: dict) -> Optional["Principal"]:
        user_id = coerce_int(payload.get("user_id"))
        studio_id = coerce_int(payload.get("studio_id"))
        if user_id is None or studio_id is None:
            return None
        return cls(
            user_id=user_id,
            studio_id=studio_id,
            role=str(payload.get("role") or "CLIENT").upper(),
            client_id=coerce_int(payload.get("client_id")),
            teacher_id=coerce_int(payload.get("teacher_id")),
        )


@dataclass
class Context(BaseContext):
    db: AsyncSession
    request: Optional[Request] = None
    response: Optional[Response] = None
    principal: Optional[Principal] = None
    notifier: Optional[Notifier] = None


async def build_context(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> Context:
    principal = None

    access_token = request.headers.get("x-access-token")
    if access_token:
        payload = verify_token(access_token)
        if payload:
            principal = Principal.from_claims(payload)
            log_auth_event(
                "token",
                user_id=principal.user_id if principal else None,
                studio_id=principal.studio_id if principal else None,
                success=principal is not None
            )
        else:
            log_auth_event("token", success=False)

    return Context(db=db, request=request, response=response, principal=principal)
