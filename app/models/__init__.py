# Scheduling models - importing this package registers every table on Base.metadata
from app.models.studioModel import Studio, Location
from app.models.userModel import Teacher, Client, TeacherBlockedTime
from app.models.classModel import (
    ClassType, ClassSession, Booking, WaitlistEntry,
    SessionStatus, BookingStatus, WaitlistStatus
)

__all__ = [
    "Studio", "Location",
    "Teacher", "Client", "TeacherBlockedTime",
    "ClassType", "ClassSession", "Booking", "WaitlistEntry",
    "SessionStatus", "BookingStatus", "WaitlistStatus",
]
