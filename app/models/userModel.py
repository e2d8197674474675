"""
Teacher, client and teacher availability models
"""
from datetime import datetime
from typing import Optional, List, TYPE_CHECKING
from sqlalchemy import ForeignKey, BigInteger, String, Text, Boolean, CheckConstraint, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.postgresql import Base
from app.db.types import BigIntPK, UTCDateTime, utcnow

if TYPE_CHECKING:
    from app.models.studioModel import Studio
    from app.models.classModel import ClassSession, Booking, WaitlistEntry


class Teacher(Base):
    """Teachers who lead class sessions"""

    __tablename__ = "teachers"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    studio_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("studios.id"), nullable=False)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(200))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    # Relationships
    studio: Mapped["Studio"] = relationship(back_populates="teachers")
    class_sessions: Mapped[List["ClassSession"]] = relationship(back_populates="teacher")
    blocked_times: Mapped[List["TeacherBlockedTime"]] = relationship(back_populates="teacher")

    __table_args__ = (
        Index("idx_teachers_studio", "studio_id"),
    )


class Client(Base):
    """Studio clients who book classes"""

    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    studio_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("studios.id"), nullable=False)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(200))
    phone_number: Mapped[Optional[str]] = mapped_column(String(32))
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    # Relationships
    studio: Mapped["Studio"] = relationship(back_populates="clients")
    bookings: Mapped[List["Booking"]] = relationship(back_populates="client")
    waitlist_entries: Mapped[List["WaitlistEntry"]] = relationship(back_populates="client")

    __table_args__ = (
        Index("idx_clients_studio", "studio_id"),
        Index("idx_clients_email", "email", postgresql_where=text("email IS NOT NULL")),
    )


class TeacherBlockedTime(Base):
    """Intervals a teacher is unavailable; maintained by teacher availability management"""

    __tablename__ = "teacher_blocked_times"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    teacher_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("teachers.id", ondelete="CASCADE"), nullable=False
    )
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    # Relationships
    teacher: Mapped["Teacher"] = relationship(back_populates="blocked_times")

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_blocked_time_interval"),
        Index("idx_blocked_times_teacher", "teacher_id", "start_time"),
    )
