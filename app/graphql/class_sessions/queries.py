"""
GraphQL queries for Class Sessions
"""
from datetime import datetime
from typing import Optional
import strawberry
from strawberry.types import Info

from app.core.conversions import as_utc
from app.core.exceptions import ForbiddenError
from app.crud.bookingsCrud import get_session_capacity_info
from app.crud.classSessionCrud import (
    get_class_session_by_id,
    query_sessions,
    teacher_attendance_summary
)
from app.graphql.auth.permissions import IsAuthenticated, ensure_same_studio
from app.graphql.errors import error_fields
from .types import (
    AttendanceSummaryResponse,
    ClassSession,
    ClassSessionsResponse,
    SessionCapacityResponse,
    GetClassSessionsInput,
    convert_attendance_summary,
    convert_capacity_info
)


@strawberry.type
class ClassSessionQueries:
    """Class Session queries"""

    @strawberry.field(permission_classes=[IsAuthenticated])
    async def get_class_session(
        self,
        info: Info,
        session_id: int
    ) -> Optional[ClassSession]:
        """Get a single class session by ID"""
        db = info.context.db

        session = await get_class_session_by_id(db, session_id)
        if session and session.studio_id == info.context.principal.studio_id:
            return ClassSession.from_model(session)
        return None

    @strawberry.field(permission_classes=[IsAuthenticated])
    async def get_class_sessions(
        self,
        info: Info,
        filters: Optional[GetClassSessionsInput] = None
    ) -> ClassSessionsResponse:
        """Sessions of the caller's studio, earliest first"""
        db = info.context.db
        if not filters:
            filters = GetClassSessionsInput()

        sessions = await query_sessions(
            db=db,
            studio_id=info.context.principal.studio_id,
            start=as_utc(filters.start) if filters.start else None,
            end=as_utc(filters.end) if filters.end else None,
            teacher_id=filters.teacher_id,
            location_id=filters.location_id,
            class_type_id=filters.class_type_id,
            recurring_group_id=filters.recurring_group_id,
            include_cancelled=filters.include_cancelled
        )

        session_list = [ClassSession.from_model(session) for session in sessions]
        return ClassSessionsResponse(
            sessions=session_list,
            total_count=len(session_list)
        )

    @strawberry.field(permission_classes=[IsAuthenticated])
    async def get_session_capacity_info(
        self,
        info: Info,
        session_id: int
    ) -> SessionCapacityResponse:
        """Get capacity information for a session"""
        db = info.context.db

        try:
            session = await get_class_session_by_id(db, session_id)
            ensure_same_studio(info, session, "class session", session_id)
            capacity_info = await get_session_capacity_info(db, session_id)

            return SessionCapacityResponse(
                success=True,
                capacity_info=convert_capacity_info(capacity_info),
                message="Capacity information retrieved successfully"
            )
        except Exception as e:
            return SessionCapacityResponse(**error_fields(e, "retrieving capacity"))

    @strawberry.field(permission_classes=[IsAuthenticated])
    async def get_teacher_attendance_summary(
        self,
        info: Info,
        teacher_id: int,
        start: datetime,
        end: datetime
    ) -> AttendanceSummaryResponse:
        """Classes a teacher led in a period with attendance counts"""
        db = info.context.db
        principal = info.context.principal

        try:
            if not principal.is_staff and principal.teacher_id != teacher_id:
                raise ForbiddenError("Teachers can only view their own classes")

            summary = await teacher_attendance_summary(
                db,
                teacher_id=teacher_id,
                start=as_utc(start),
                end=as_utc(end),
                studio_id=principal.studio_id
            )
            return AttendanceSummaryResponse(
                success=True,
                message=f"{summary.total_classes} classes found",
                summary=convert_attendance_summary(summary)
            )
        except Exception as e:
            return AttendanceSummaryResponse(**error_fields(e, "building attendance summary"))
