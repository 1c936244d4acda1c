from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..core.config import AppSettings, get_settings
from ..core.errors import PersistenceError
from ..core.security import TokenService
from ..crud.auth_tokens import record_token, revoke_token
from ..crud.users import authenticate_user, create_user
from ..db.session import get_db
from ..deps.auth import AuthContext, get_token_service, require_user
from ..models.user import User
from ..schemas.auth import AuthResponse, Credentials, LogoutResponse, UserOut

router = APIRouter(prefix="/api", tags=["auth"])
logger = logging.getLogger("timetrac.auth")


def _issue_session(db: Session, tokens: TokenService, settings: AppSettings, user: User) -> AuthResponse:
    # Snapshot the user first: a failed registry write rolls the session back.
    user_out = UserOut.model_validate(user)
    issued = tokens.issue(user_out.id)
    try:
        record_token(db, issued.jti, user_out.id, issued.expires_at, issued_at=issued.issued_at)
    except PersistenceError:
        if settings.AUTH_STRICT_TOKEN_REGISTRY:
            raise
        # The signed token is still good; only the audit row is missing.
        logger.warning(
            "token.record_failed",
            exc_info=True,
            extra={"extra_data": {"user_id": user_out.id, "jti": issued.jti}},
        )
    return AuthResponse(user=user_out, token=issued.credential, expires_at=issued.expires_at)


@router.post(
    "/auth/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an account and sign in",
)
def register(
    payload: Credentials,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    settings: AppSettings = Depends(get_settings),
):
    user = create_user(db, payload.email, payload.password, min_password_length=settings.PASSWORD_MIN_LENGTH)
    return _issue_session(db, tokens, settings, user)


@router.post("/auth/login", response_model=AuthResponse, summary="Exchange email and password for a token")
def login(
    payload: Credentials,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    settings: AppSettings = Depends(get_settings),
):
    user = authenticate_user(db, payload.email, payload.password)
    return _issue_session(db, tokens, settings, user)


@router.get("/me", response_model=UserOut, summary="Current user")
def me(auth: AuthContext = Depends(require_user)):
    return UserOut.model_validate(auth.user)


@router.post("/logout", response_model=LogoutResponse, summary="Revoke the presented token")
def logout(auth: AuthContext = Depends(require_user), db: Session = Depends(get_db)):
    try:
        revoke_token(db, auth.claims.jti, auth.user_id, auth.claims.expires_at)
    except PersistenceError as exc:
        # Fail closed: the client must not believe it is logged out.
        logger.error(
            "token.revoke_failed",
            exc_info=True,
            extra={"extra_data": {"user_id": auth.user_id, "jti": auth.claims.jti}},
        )
        raise PersistenceError("Logout failed") from exc
    return LogoutResponse()
