"""SQLAlchemy model for a single tracked work session.

An entry with ``end_at IS NULL`` is the user's running timer. The partial
unique index below lets the database itself refuse a second running entry
for the same user.
"""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import JSON, Column, Float, ForeignKey, Index, String, Text
from sqlalchemy.orm import relationship

from ..db.session import Base
from ..db.types import UTCDateTime, utcnow
from ..services.timecalc import elapsed_seconds

DEFAULT_COLOR = "#3b82f6"


class TimeEntry(Base):
    __tablename__ = "time_entries"
    __allow_unmapped__ = True

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    project = Column(String(255), nullable=False, default="")
    tags = Column(JSON, nullable=False, default=list)
    note = Column(Text, nullable=False, default="")
    color = Column(String(32), nullable=False, default=DEFAULT_COLOR)

    location_lat = Column(Float, nullable=True)
    location_lng = Column(Float, nullable=True)
    location_addr = Column(Text, nullable=True)
    photo_data = Column(Text, nullable=True)

    start_at = Column(UTCDateTime, nullable=False, default=utcnow)
    end_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="entries")

    __table_args__ = (
        Index("ix_time_entries_user_start", "user_id", "start_at"),
        Index(
            "uq_time_entries_one_open",
            "user_id",
            unique=True,
            sqlite_where=end_at.is_(None),
            postgresql_where=end_at.is_(None),
        ),
    )

    @property
    def running(self) -> bool:
        return self.end_at is None

    @property
    def duration_seconds(self) -> int:
        return elapsed_seconds(self.start_at, self.end_at)


__all__ = ["TimeEntry", "DEFAULT_COLOR"]
