"""
Class scheduling, booking and waitlist models
"""
import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, TYPE_CHECKING
from sqlalchemy import (
    ForeignKey, Integer, BigInteger, Numeric, String, Text,
    CheckConstraint, Index, text
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.postgresql import Base
from app.db.types import BigIntPK, UTCDateTime, utcnow

if TYPE_CHECKING:
    from app.models.studioModel import Studio, Location
    from app.models.userModel import Teacher, Client


class SessionStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    CANCELLED = "CANCELLED"


class BookingStatus(str, enum.Enum):
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"


class WaitlistStatus(str, enum.Enum):
    WAITING = "WAITING"
    NOTIFIED = "NOTIFIED"
    EXPIRED = "EXPIRED"
    CONFIRMED = "CONFIRMED"


class ClassType(Base):
    """Types of classes offered by a studio"""

    __tablename__ = "class_types"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    studio_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("studios.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    default_duration_min: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    default_capacity: Mapped[Optional[int]] = mapped_column(Integer)

    # Relationships
    studio: Mapped["Studio"] = relationship(back_populates="class_types")
    class_sessions: Mapped[List["ClassSession"]] = relationship(back_populates="class_type")

    __table_args__ = (
        CheckConstraint("default_duration_min > 0", name="ck_class_type_duration"),
    )


class ClassSession(Base):
    """One scheduled occurrence of a class"""

    __tablename__ = "class_sessions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    studio_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("studios.id"), nullable=False)
    class_type_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("class_types.id"), nullable=False)
    teacher_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("teachers.id"), nullable=False)
    location_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("locations.id"), nullable=False)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    recurring_group_id: Mapped[Optional[str]] = mapped_column(String(36))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SessionStatus.SCHEDULED.value)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    # Relationships
    studio: Mapped["Studio"] = relationship(back_populates="class_sessions")
    class_type: Mapped["ClassType"] = relationship(back_populates="class_sessions")
    teacher: Mapped["Teacher"] = relationship(back_populates="class_sessions")
    location: Mapped["Location"] = relationship(back_populates="class_sessions")
    bookings: Mapped[List["Booking"]] = relationship(back_populates="class_session")
    waitlist_entries: Mapped[List["WaitlistEntry"]] = relationship(back_populates="class_session")

    __table_args__ = (
        CheckConstraint("capacity >= 1", name="ck_session_capacity"),
        CheckConstraint("end_time > start_time", name="ck_session_interval"),
        CheckConstraint("status IN ('SCHEDULED','CANCELLED')", name="ck_session_status"),
        Index("idx_sessions_studio_time", "studio_id", "start_time"),
        Index("idx_sessions_teacher", "teacher_id", "start_time"),
        Index("idx_sessions_location", "location_id", "start_time"),
        Index("idx_sessions_recurring_group", "recurring_group_id", "start_time"),
    )


class Booking(Base):
    """A client's claim on one seat of a class session"""

    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    studio_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("studios.id"), nullable=False)
    client_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("clients.id"), nullable=False)
    class_session_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("class_sessions.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=BookingStatus.CONFIRMED.value)
    paid_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    payment_id: Mapped[Optional[str]] = mapped_column(String(120))  # external payment reference
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    # Relationships
    class_session: Mapped["ClassSession"] = relationship(back_populates="bookings")
    client: Mapped["Client"] = relationship(back_populates="bookings")

    __table_args__ = (
        CheckConstraint(
            "status IN ('CONFIRMED','CANCELLED','COMPLETED','NO_SHOW')",
            name="ck_booking_status",
        ),
        # One non-cancelled booking per client and session
        Index(
            "uq_bookings_client_session_active", "class_session_id", "client_id",
            unique=True,
            postgresql_where=text("status <> 'CANCELLED'"),
            sqlite_where=text("status <> 'CANCELLED'"),
        ),
        Index("idx_bookings_session", "class_session_id", "status"),
        Index("idx_bookings_client", "client_id", "created_at"),
    )


class WaitlistEntry(Base):
    """A client queued for a seat in a full class session"""

    __tablename__ = "waitlist_entries"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    studio_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("studios.id"), nullable=False)
    client_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("clients.id"), nullable=False)
    class_session_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("class_sessions.id", ondelete="CASCADE"), nullable=False
    )
    # 1-based queue position while WAITING; NULL once the entry has left the queue
    position: Mapped[Optional[int]] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=WaitlistStatus.WAITING.value)
    notified_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    # Relationships
    class_session: Mapped["ClassSession"] = relationship(back_populates="waitlist_entries")
    client: Mapped["Client"] = relationship(back_populates="waitlist_entries")

    __table_args__ = (
        CheckConstraint(
            "status IN ('WAITING','NOTIFIED','EXPIRED','CONFIRMED')",
            name="ck_waitlist_status",
        ),
        CheckConstraint("position IS NULL OR position >= 1", name="ck_waitlist_position"),
        Index("idx_waitlist_session", "class_session_id", "status", "position"),
        Index("idx_waitlist_expiry", "status", "expires_at"),
    )
