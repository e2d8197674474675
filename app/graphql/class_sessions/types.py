"""
GraphQL types for Class Sessions
"""
from datetime import datetime, date, time
from enum import Enum
from typing import Optional, List
import strawberry

from app.crud.bookingsCrud import CapacityInfo
from app.crud.classSessionCrud import AttendanceSummary as AttendanceSummaryData
from app.crud.classSessionCrud import SkippedOccurrence as SkippedOccurrenceData
from app.models.classModel import ClassSession as ClassSessionModel


@strawberry.enum
class Weekday(Enum):
    MON = 0
    TUE = 1
    WED = 2
    THU = 3
    FRI = 4
    SAT = 5
    SUN = 6


@strawberry.type
class ClassSession:
    """Class Session GraphQL type"""
    id: int
    studio_id: int
    class_type_id: int
    teacher_id: int
    location_id: int
    start_time: datetime
    end_time: datetime
    capacity: int
    notes: Optional[str]
    recurring_group_id: Optional[str]
    status: str
    cancelled_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    # Related data
    class_type_name: Optional[str]
    teacher_name: Optional[str]
    location_name: Optional[str]

    @classmethod
    def from_model(cls, session: ClassSessionModel) -> "ClassSession":
        # Only relationships already loaded; async sessions cannot lazy load
        loaded = session.__dict__
        class_type = loaded.get("class_type")
        teacher = loaded.get("teacher")
        location = loaded.get("location")
        return cls(
            id=session.id,
            studio_id=session.studio_id,
            class_type_id=session.class_type_id,
            teacher_id=session.teacher_id,
            location_id=session.location_id,
            start_time=session.start_time,
            end_time=session.end_time,
            capacity=session.capacity,
            notes=session.notes,
            recurring_group_id=session.recurring_group_id,
            status=session.status,
            cancelled_at=session.cancelled_at,
            created_at=session.created_at,
            updated_at=session.updated_at,
            class_type_name=class_type.name if class_type else None,
            teacher_name=teacher.full_name if teacher else None,
            location_name=location.name if location else None
        )


@strawberry.type
class SessionCapacityInfo:
    """Session capacity information"""
    session_id: int
    capacity: int
    confirmed: int
    held_seats: int
    waiting: int
    available_spots: int
    is_full: bool


@strawberry.type
class SkippedOccurrence:
    """Occurrence left out of a recurrence or series operation"""
    code: str
    reason: str
    session_id: Optional[int]
    occurrence_date: Optional[date]


@strawberry.type
class SessionAttendance:
    session_id: int
    start_time: datetime
    end_time: datetime
    class_type_name: str
    location_name: str
    confirmed: int
    completed: int
    no_show: int
    students: int
    hours: float


@strawberry.type
class AttendanceSummary:
    """Classes taught in a period with attendance, for pay calculation"""
    teacher_id: int
    total_classes: int
    total_students: int
    total_hours: float
    sessions: List[SessionAttendance]


# Response types
@strawberry.type
class ClassSessionResponse:
    """Response for single class session operations"""
    success: bool
    message: str
    error_code: Optional[str] = None
    session: Optional[ClassSession] = None


@strawberry.type
class ClassSessionsResponse:
    sessions: List[ClassSession]
    total_count: int


@strawberry.type
class SessionCapacityResponse:
    success: bool
    message: str
    error_code: Optional[str] = None
    capacity_info: Optional[SessionCapacityInfo] = None


@strawberry.type
class RecurrenceResponse:
    """Result of expanding a recurrence"""
    success: bool
    message: str
    error_code: Optional[str] = None
    recurring_group_id: Optional[str] = None
    created_count: int = 0
    skipped_count: int = 0
    anchor: Optional[ClassSession] = None
    sessions: List[ClassSession] = strawberry.field(default_factory=list)
    skipped: List[SkippedOccurrence] = strawberry.field(default_factory=list)


@strawberry.type
class CancelClassSessionResponse:
    success: bool
    message: str
    error_code: Optional[str] = None
    session: Optional[ClassSession] = None
    affected_clients: int = 0
    notified: int = 0
    notification_failures: int = 0


@strawberry.type
class SeriesResponse:
    """Result of a series-wide update or cancellation"""
    success: bool
    message: str
    error_code: Optional[str] = None
    recurring_group_id: Optional[str] = None
    count: int = 0
    notified: int = 0
    skipped: List[SkippedOccurrence] = strawberry.field(default_factory=list)


@strawberry.type
class AttendanceSummaryResponse:
    success: bool
    message: str
    error_code: Optional[str] = None
    summary: Optional[AttendanceSummary] = None


# Input types
@strawberry.input
class CreateClassSessionInput:
    class_type_id: int
    teacher_id: int
    location_id: int
    start_time: datetime
    end_time: datetime
    capacity: Optional[int] = None
    notes: Optional[str] = None
    allow_conflicts: bool = False


@strawberry.input
class RecurrenceInput:
    weekdays: List[Weekday]
    end_date: date


@strawberry.input
class ExtendSeriesInput:
    session_id: int
    weekdays: List[Weekday]
    end_date: date


@strawberry.input
class UpdateClassSessionInput:
    session_id: int
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    capacity: Optional[int] = None
    teacher_id: Optional[int] = None
    location_id: Optional[int] = None
    class_type_id: Optional[int] = None
    notes: Optional[str] = None
    allow_conflicts: bool = False


@strawberry.input
class UpdateSeriesInput:
    recurring_group_id: str
    teacher_id: Optional[int] = None
    location_id: Optional[int] = None
    capacity: Optional[int] = None
    class_type_id: Optional[int] = None
    notes: Optional[str] = None
    start_time_of_day: Optional[time] = None
    duration_minutes: Optional[int] = None
    future_only: bool = True


@strawberry.input
class GetClassSessionsInput:
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    teacher_id: Optional[int] = None
    location_id: Optional[int] = None
    class_type_id: Optional[int] = None
    recurring_group_id: Optional[str] = None
    include_cancelled: bool = False


# Helper functions
def convert_capacity_info(info: CapacityInfo) -> SessionCapacityInfo:
    return SessionCapacityInfo(
        session_id=info.class_session_id,
        capacity=info.capacity,
        confirmed=info.confirmed,
        held_seats=info.held_seats,
        waiting=info.waiting,
        available_spots=info.available_spots,
        is_full=info.is_full
    )


def convert_skipped(items: List[SkippedOccurrenceData]) -> List[SkippedOccurrence]:
    return [
        SkippedOccurrence(
            code=item.code,
            reason=item.reason,
            session_id=item.class_session_id,
            occurrence_date=item.occurrence_date
        )
        for item in items
    ]


def convert_attendance_summary(summary: AttendanceSummaryData) -> AttendanceSummary:
    return AttendanceSummary(
        teacher_id=summary.teacher_id,
        total_classes=summary.total_classes,
        total_students=summary.total_students,
        total_hours=summary.total_hours,
        sessions=[
            SessionAttendance(
                session_id=row.class_session_id,
                start_time=row.start_time,
                end_time=row.end_time,
                class_type_name=row.class_type_name,
                location_name=row.location_name,
                confirmed=row.confirmed,
                completed=row.completed,
                no_show=row.no_show,
                students=row.students,
                hours=round(row.hours, 2)
            )
            for row in summary.sessions
        ]
    )
