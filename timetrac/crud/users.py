"""User accounts: registration and password login."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.errors import EmailInUse, InvalidLogin, ValidationError, WriteConflict
from ..core.security import hash_password, verify_password
from ..db.session import atomic
from ..models.user import User

# bcrypt only looks at the first 72 bytes of a password.
PASSWORD_MAX_BYTES = 72


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def get_user(db: Session, user_id: str) -> User | None:
    return db.get(User, user_id)


def get_user_by_email(db: Session, email: str) -> User | None:
    stmt = select(User).where(User.email == normalize_email(email))
    return db.execute(stmt).scalars().first()


def create_user(db: Session, email: str, password: str, *, min_password_length: int = 6) -> User:
    email = normalize_email(email)
    password = password or ""
    if not email or "@" not in email:
        raise ValidationError("A valid email is required")
    if len(password) < min_password_length:
        raise ValidationError(f"Password must be at least {min_password_length} characters")
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValidationError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes")
    if get_user_by_email(db, email) is not None:
        raise EmailInUse()
    user = User(email=email, password_hash=hash_password(password))
    try:
        with atomic(db):
            db.add(user)
    except WriteConflict as exc:
        # Lost a race with a concurrent registration for the same email.
        raise EmailInUse() from exc
    db.refresh(user)
    return user


def authenticate_user(db: Session, email: str, password: str) -> User:
    user = get_user_by_email(db, email)
    if user is None or not verify_password(password or "", user.password_hash):
        raise InvalidLogin()
    return user


__all__ = [
    "authenticate_user",
    "create_user",
    "get_user",
    "get_user_by_email",
    "normalize_email",
]
