"""SQLAlchemy model for the token registry.

One row per issued JWT, keyed by its ``jti``. Rows are only ever updated to
record a revocation and are kept after expiry for audit.
"""

from __future__ import annotations

from sqlalchemy import Column, ForeignKey, String
from sqlalchemy.orm import relationship

from ..db.session import Base
from ..db.types import UTCDateTime, utcnow


class AuthToken(Base):
    __tablename__ = "auth_tokens"
    __allow_unmapped__ = True

    jti = Column(String(64), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    issued_at = Column(UTCDateTime, nullable=True)
    expires_at = Column(UTCDateTime, nullable=True)
    revoked_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="tokens")

    @property
    def revoked(self) -> bool:
        return self.revoked_at is not None


__all__ = ["AuthToken"]
