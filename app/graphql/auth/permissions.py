from typing import Optional

from strawberry.types import Info
from strawberry.permission import BasePermission

from app.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from app.core.logging_config import log_security_event


class IsAuthenticated(BasePermission):
    message = "Authentication required."

    def has_permission(self, source, info: Info, **kwargs):
        return bool(info.context.principal)


class IsStaff(BasePermission):
    message = "Studio staff access required."

    def has_permission(self, source, info: Info, **kwargs):
        principal = info.context.principal
        return bool(principal and principal.is_staff)


def ensure_same_studio(info: Info, record, label: str, record_id: int):
    """Records of another studio are reported as missing"""
    principal = info.context.principal
    if record is None or record.studio_id != principal.studio_id:
        if record is not None:
            log_security_event(
                "cross_studio_access",
                f"user {principal.user_id} of studio {principal.studio_id} requested {label} {record_id}"
            )
        raise NotFoundError(f"{label.capitalize()} {record_id} not found")
    return record


def resolve_client_id(info: Info, client_id: Optional[int]) -> int:
    """Staff act for any client; a client only for themselves"""
    principal = info.context.principal
    if principal.is_staff:
        if client_id is None:
            raise ValidationError("client_id is required")
        return client_id
    if principal.client_id is None:
        raise ForbiddenError("Only clients and studio staff can do this")
    if client_id is not None and client_id != principal.client_id:
        raise ForbiddenError("Clients can only act for themselves")
    return principal.client_id


def ensure_owner_or_staff(info: Info, client_id: int) -> None:
    principal = info.context.principal
    if not principal.is_staff and principal.client_id != client_id:
        raise ForbiddenError("Clients can only act for themselves")
