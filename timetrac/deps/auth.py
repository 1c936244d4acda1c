"""Bearer-token authentication for the protected API.

``authenticate_bearer`` does the actual work and is plain enough to call from
tests; ``require_user`` wraps it as a FastAPI dependency. Every way a request
can fail here ends up as the same 401 for the client, the specific reason is
only logged.
"""

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, Header, Request
from fastapi.security.utils import get_authorization_scheme_param
from starlette.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from ..core.config import AppSettings, TokenConfig, get_settings
from ..core.errors import InvalidCredential, MissingCredential, RevokedCredential, TokenError, UnknownUser
from ..core.security import TokenClaims, TokenService
from ..crud.auth_tokens import TokenStatus, token_status
from ..crud.users import get_user
from ..db.session import get_db
from ..middlewares import principal_ctx_var
from ..models.user import User


class AuthContext:
    def __init__(self, *, user: User, claims: TokenClaims, credential: str) -> None:
        self.user = user
        self.claims = claims
        self.credential = credential

    @property
    def user_id(self) -> str:
        return self.user.id


@lru_cache(maxsize=1)
def _default_token_service() -> TokenService:
    return TokenService(TokenConfig.from_settings(get_settings()))


def get_token_service() -> TokenService:
    return _default_token_service()


def extract_bearer(authorization: str | None) -> str:
    scheme, credential = get_authorization_scheme_param(authorization or "")
    if scheme.lower() != "bearer" or not credential.strip():
        raise MissingCredential()
    return credential.strip()


def authenticate_bearer(
    db: Session,
    tokens: TokenService,
    authorization: str | None,
    *,
    strict_registry: bool = False,
) -> AuthContext:
    credential = extract_bearer(authorization)
    try:
        claims = tokens.verify(credential)
    except TokenError as exc:
        # Expired, forged and garbage tokens look identical from outside.
        raise InvalidCredential(exc.reason) from exc

    status = token_status(db, claims.jti)
    if status is TokenStatus.REVOKED:
        raise RevokedCredential()
    if status is TokenStatus.UNKNOWN and strict_registry:
        raise RevokedCredential("Token is not registered")

    user = get_user(db, claims.uid)
    if user is None:
        raise UnknownUser()
    return AuthContext(user=user, claims=claims, credential=credential)


async def require_user(
    request: Request,
    authorization: str | None = Header(default=None, alias="Authorization"),
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    settings: AppSettings = Depends(get_settings),
) -> AuthContext:
    # Async so the principal lands in the request's own context, which the
    # threadpool copies for sync endpoints; the DB work still runs off-loop.
    context = await run_in_threadpool(
        authenticate_bearer,
        db,
        tokens,
        authorization,
        strict_registry=settings.AUTH_STRICT_TOKEN_REGISTRY,
    )
    principal_ctx_var.set(context.user_id)
    request.state.principal = context.user_id
    request.state.user = context.user
    return context


__all__ = [
    "AuthContext",
    "authenticate_bearer",
    "extract_bearer",
    "get_token_service",
    "require_user",
]
