"""Token registry: every issued JWT and whether it has been revoked.

Both writes are single-statement upserts keyed on ``jti`` so they can be
retried safely and never need cross-row locks.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.errors import PersistenceError
from ..db.session import atomic
from ..db.types import utcnow
from ..models.auth_token import AuthToken

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class TokenStatus(str, enum.Enum):
    ACTIVE = "active"
    REVOKED = "revoked"
    UNKNOWN = "unknown"


def _upsert(db: Session):
    dialect = db.get_bind().dialect.name
    try:
        return _INSERTS[dialect](AuthToken.__table__)
    except KeyError:
        raise PersistenceError(f"Token registry does not support the {dialect} dialect") from None


def record_token(
    db: Session,
    jti: str,
    user_id: str,
    expires_at: datetime,
    *,
    issued_at: datetime | None = None,
    now: datetime | None = None,
) -> None:
    """Insert an active registry row, or refresh the expiry of an existing one.

    An existing revocation is never cleared.
    """

    now = now or utcnow()
    stmt = _upsert(db).values(
        jti=jti,
        user_id=user_id,
        issued_at=issued_at or now,
        expires_at=expires_at,
        revoked_at=None,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["jti"],
        set_={"expires_at": stmt.excluded.expires_at, "updated_at": stmt.excluded.updated_at},
    )
    with atomic(db):
        db.execute(stmt)


def revoke_token(
    db: Session,
    jti: str,
    user_id: str,
    expires_at: datetime,
    *,
    now: datetime | None = None,
) -> None:
    """Mark ``jti`` revoked, creating the row pre-revoked if it was never recorded.

    Repeated calls keep the first revocation time. Returns only once the
    change is committed.
    """

    now = now or utcnow()
    stmt = _upsert(db).values(
        jti=jti,
        user_id=user_id,
        issued_at=None,
        expires_at=expires_at,
        revoked_at=now,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["jti"],
        set_={
            "revoked_at": func.coalesce(AuthToken.__table__.c.revoked_at, stmt.excluded.revoked_at),
            "expires_at": stmt.excluded.expires_at,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    with atomic(db):
        db.execute(stmt)


def get_token(db: Session, jti: str) -> AuthToken | None:
    return db.execute(select(AuthToken).where(AuthToken.jti == jti)).scalars().first()


def token_status(db: Session, jti: str) -> TokenStatus:
    try:
        revoked_at = db.execute(
            select(AuthToken.revoked_at).where(AuthToken.jti == jti)
        ).first()
    except SQLAlchemyError as exc:
        raise PersistenceError("Token registry lookup failed") from exc
    if revoked_at is None:
        return TokenStatus.UNKNOWN
    return TokenStatus.ACTIVE if revoked_at[0] is None else TokenStatus.REVOKED


def is_revoked(db: Session, jti: str) -> bool:
    """True only for a recorded, revoked token. A missing row is not revoked."""
    return token_status(db, jti) is TokenStatus.REVOKED


__all__ = [
    "TokenStatus",
    "get_token",
    "is_revoked",
    "record_token",
    "revoke_token",
    "token_status",
]
