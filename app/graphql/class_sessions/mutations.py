"""
GraphQL mutations for Class Sessions
"""
import logging
import strawberry
from strawberry.types import Info

from app.core.conversions import as_utc
from app.crud.classSessionCrud import (
    SessionPatch,
    cancel_class_session,
    create_class_session,
    get_class_session_by_id,
    update_class_session
)
from app.graphql.auth.permissions import IsStaff, ensure_same_studio
from app.graphql.errors import error_fields
from app.services.series_operations import SeriesPatch, delete_series, update_series
from app.services.session_generator import SessionGeneratorService
from .types import (
    CancelClassSessionResponse,
    ClassSession,
    ClassSessionResponse,
    CreateClassSessionInput,
    ExtendSeriesInput,
    RecurrenceInput,
    RecurrenceResponse,
    SeriesResponse,
    UpdateClassSessionInput,
    UpdateSeriesInput,
    convert_skipped
)

logger = logging.getLogger(__name__)


def _recurrence_message(created: int, skipped: int) -> str:
    message = f"{created} sessions created"
    if skipped:
        message += f", {skipped} skipped"
    return message


@strawberry.type
class ClassSessionMutations:
    """Class Session mutations"""

    @strawberry.mutation(permission_classes=[IsStaff])
    async def create_class_session(
        self,
        info: Info,
        input: CreateClassSessionInput
    ) -> ClassSessionResponse:
        """Schedule a single class session"""
        db = info.context.db

        try:
            session = await create_class_session(
                db=db,
                studio_id=info.context.principal.studio_id,
                class_type_id=input.class_type_id,
                teacher_id=input.teacher_id,
                location_id=input.location_id,
                start_time=as_utc(input.start_time),
                end_time=as_utc(input.end_time),
                capacity=input.capacity,
                notes=input.notes,
                check_conflicts=not input.allow_conflicts
            )

            return ClassSessionResponse(
                success=True,
                session=ClassSession.from_model(session),
                message="Class session created successfully"
            )
        except Exception as e:
            return ClassSessionResponse(**error_fields(e, "creating session"))

    @strawberry.mutation(permission_classes=[IsStaff])
    async def create_recurring_class_session(
        self,
        info: Info,
        input: CreateClassSessionInput,
        recurrence: RecurrenceInput
    ) -> RecurrenceResponse:
        """Schedule a session and repeat it weekly; conflicting dates are skipped"""
        db = info.context.db

        try:
            anchor, result = await SessionGeneratorService(db).create_with_recurrence(
                studio_id=info.context.principal.studio_id,
                class_type_id=input.class_type_id,
                teacher_id=input.teacher_id,
                location_id=input.location_id,
                start_time=as_utc(input.start_time),
                end_time=as_utc(input.end_time),
                capacity=input.capacity,
                notes=input.notes,
                weekdays=[day.value for day in recurrence.weekdays],
                end_date=recurrence.end_date,
                check_conflicts=not input.allow_conflicts
            )

            return RecurrenceResponse(
                success=True,
                message=_recurrence_message(result.created + 1, len(result.skipped)),
                recurring_group_id=result.recurring_group_id,
                created_count=result.created + 1,
                skipped_count=len(result.skipped),
                anchor=ClassSession.from_model(anchor),
                sessions=[ClassSession.from_model(s) for s in result.sessions],
                skipped=convert_skipped(result.skipped)
            )
        except Exception as e:
            return RecurrenceResponse(**error_fields(e, "creating recurring session"))

    @strawberry.mutation(permission_classes=[IsStaff])
    async def extend_series(
        self,
        info: Info,
        input: ExtendSeriesInput
    ) -> RecurrenceResponse:
        """Repeat an existing session on more weekdays or further into the future"""
        db = info.context.db

        try:
            result = await SessionGeneratorService(db).extend_series(
                anchor_session_id=input.session_id,
                weekdays=[day.value for day in input.weekdays],
                end_date=input.end_date,
                studio_id=info.context.principal.studio_id
            )

            return RecurrenceResponse(
                success=True,
                message=_recurrence_message(result.created, len(result.skipped)),
                recurring_group_id=result.recurring_group_id,
                created_count=result.created,
                skipped_count=len(result.skipped),
                sessions=[ClassSession.from_model(s) for s in result.sessions],
                skipped=convert_skipped(result.skipped)
            )
        except Exception as e:
            return RecurrenceResponse(**error_fields(e, "extending series"))

    @strawberry.mutation(permission_classes=[IsStaff])
    async def update_class_session(
        self,
        info: Info,
        input: UpdateClassSessionInput
    ) -> ClassSessionResponse:
        """Change time, capacity, teacher, location, class type or notes of one session"""
        db = info.context.db

        try:
            existing = await get_class_session_by_id(db, input.session_id)
            ensure_same_studio(info, existing, "class session", input.session_id)

            patch = SessionPatch(
                start_time=as_utc(input.start_time) if input.start_time else None,
                end_time=as_utc(input.end_time) if input.end_time else None,
                capacity=input.capacity,
                teacher_id=input.teacher_id,
                location_id=input.location_id,
                class_type_id=input.class_type_id,
                notes=input.notes
            )
            session = await update_class_session(
                db,
                input.session_id,
                patch,
                check_conflicts=not input.allow_conflicts,
                notifier=info.context.notifier
            )

            return ClassSessionResponse(
                success=True,
                session=ClassSession.from_model(session),
                message="Class session updated successfully"
            )
        except Exception as e:
            return ClassSessionResponse(**error_fields(e, "updating session"))

    @strawberry.mutation(permission_classes=[IsStaff])
    async def cancel_class_session(
        self,
        info: Info,
        session_id: int
    ) -> CancelClassSessionResponse:
        """Cancel a session; its bookings are cancelled and each client notified"""
        db = info.context.db

        try:
            existing = await get_class_session_by_id(db, session_id)
            ensure_same_studio(info, existing, "class session", session_id)

            cancellation = await cancel_class_session(
                db, session_id, notifier=info.context.notifier
            )

            return CancelClassSessionResponse(
                success=True,
                session=ClassSession.from_model(cancellation.session),
                message=f"Class session cancelled, {cancellation.notified} clients notified",
                affected_clients=cancellation.affected_clients,
                notified=cancellation.notified,
                notification_failures=len(cancellation.dispatch.failed)
            )
        except Exception as e:
            return CancelClassSessionResponse(**error_fields(e, "cancelling session"))

    @strawberry.mutation(permission_classes=[IsStaff])
    async def update_series(
        self,
        info: Info,
        input: UpdateSeriesInput
    ) -> SeriesResponse:
        """Apply changes to every (future) session of a recurring series"""
        db = info.context.db

        try:
            patch = SeriesPatch(
                teacher_id=input.teacher_id,
                location_id=input.location_id,
                capacity=input.capacity,
                class_type_id=input.class_type_id,
                notes=input.notes,
                start_time_of_day=input.start_time_of_day,
                duration_minutes=input.duration_minutes
            )
            result = await update_series(
                db,
                input.recurring_group_id,
                patch,
                future_only=input.future_only,
                studio_id=info.context.principal.studio_id,
                notifier=info.context.notifier
            )

            return SeriesResponse(
                success=True,
                message=f"{result.count} sessions updated, {len(result.skipped)} skipped",
                recurring_group_id=result.recurring_group_id,
                count=result.count,
                skipped=convert_skipped(result.skipped)
            )
        except Exception as e:
            return SeriesResponse(**error_fields(e, "updating series"))

    @strawberry.mutation(permission_classes=[IsStaff])
    async def delete_series(
        self,
        info: Info,
        recurring_group_id: str,
        future_only: bool = True
    ) -> SeriesResponse:
        """Cancel every (future) session of a recurring series"""
        db = info.context.db

        try:
            result = await delete_series(
                db,
                recurring_group_id,
                future_only=future_only,
                studio_id=info.context.principal.studio_id,
                notifier=info.context.notifier
            )

            return SeriesResponse(
                success=True,
                message=f"{result.count} sessions cancelled, {result.dispatch.sent} clients notified",
                recurring_group_id=result.recurring_group_id,
                count=result.count,
                notified=result.dispatch.sent,
                skipped=convert_skipped(result.skipped)
            )
        except Exception as e:
            return SeriesResponse(**error_fields(e, "deleting series"))
