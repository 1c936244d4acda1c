"""SQLAlchemy model for the people who own time entries and tokens."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, String, Text
from sqlalchemy.orm import relationship

from ..db.session import Base
from ..db.types import UTCDateTime, utcnow


class User(Base):
    __tablename__ = "users"
    __allow_unmapped__ = True

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    email = Column(Text, nullable=False, unique=True, index=True)
    password_hash = Column(Text, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow)

    entries = relationship("TimeEntry", back_populates="user", passive_deletes=True)
    tokens = relationship("AuthToken", back_populates="user", passive_deletes=True)


__all__ = ["User"]
