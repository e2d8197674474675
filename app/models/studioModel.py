"""
Studio (tenant) and location models
"""
from datetime import datetime
from typing import Optional, List, TYPE_CHECKING
from sqlalchemy import ForeignKey, Integer, BigInteger, String, Text, Boolean, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.postgresql import Base
from app.db.types import BigIntPK, UTCDateTime, utcnow

if TYPE_CHECKING:
    from app.models.classModel import ClassSession, ClassType
    from app.models.userModel import Teacher, Client


class Studio(Base):
    """A studio business; every scheduling record belongs to exactly one"""

    __tablename__ = "studios"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    subdomain: Mapped[str] = mapped_column(String(63), unique=True, nullable=False)
    timezone: Mapped[Optional[str]] = mapped_column(String(64))  # IANA name, e.g. "Europe/London"
    waitlist_window_minutes: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    # Relationships
    locations: Mapped[List["Location"]] = relationship(back_populates="studio")
    class_types: Mapped[List["ClassType"]] = relationship(back_populates="studio")
    teachers: Mapped[List["Teacher"]] = relationship(back_populates="studio")
    clients: Mapped[List["Client"]] = relationship(back_populates="studio")
    class_sessions: Mapped[List["ClassSession"]] = relationship(back_populates="studio")

    __table_args__ = (
        CheckConstraint(
            "waitlist_window_minutes IS NULL OR waitlist_window_minutes > 0",
            name="ck_studio_waitlist_window",
        ),
    )


class Location(Base):
    """Rooms or sites where classes run"""

    __tablename__ = "locations"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    studio_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("studios.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    # Relationships
    studio: Mapped["Studio"] = relationship(back_populates="locations")
    class_sessions: Mapped[List["ClassSession"]] = relationship(back_populates="location")

    __table_args__ = (
        Index("idx_locations_studio", "studio_id"),
    )
