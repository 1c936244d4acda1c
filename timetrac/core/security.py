"""Issuing and verifying signed bearer tokens, plus password hashing.

``TokenService`` is stateless apart from the immutable ``TokenConfig`` it is
built with. It never looks at the token registry: whether a token was
revoked is the caller's business.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable
from uuid import uuid4

import bcrypt
from jose import jwt
from jose.exceptions import JWTClaimsError, JWTError
from pydantic import BaseModel, ConfigDict, ValidationError

from .config import TokenConfig
from .errors import InvalidSignature, MalformedToken, TokenExpired


class TokenClaims(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    uid: str
    jti: str
    iat: int
    exp: int

    @property
    def expires_at(self) -> datetime:
        return datetime.fromtimestamp(self.exp, tz=timezone.utc)

    @property
    def issued_at(self) -> datetime:
        return datetime.fromtimestamp(self.iat, tz=timezone.utc)


class IssuedToken(BaseModel):
    model_config = ConfigDict(frozen=True)

    credential: str
    jti: str
    issued_at: datetime
    expires_at: datetime


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def new_jti() -> str:
    return uuid4().hex


class TokenService:
    def __init__(self, config: TokenConfig, *, clock: Callable[[], datetime] = _now) -> None:
        self.config = config
        self._clock = clock

    def now(self) -> datetime:
        # Claims carry whole seconds, so does everything derived from them.
        return self._clock().astimezone(timezone.utc).replace(microsecond=0)

    def issue(self, user_id: str) -> IssuedToken:
        issued_at = self.now()
        expires_at = issued_at + self.config.ttl
        jti = new_jti()
        claims = {
            "uid": str(user_id),
            "jti": jti,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        credential = jwt.encode(claims, self.config.secret, algorithm=self.config.algorithm)
        return IssuedToken(
            credential=credential,
            jti=jti,
            issued_at=issued_at,
            expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
        )

    def verify(self, credential: str) -> TokenClaims:
        if not credential or credential.count(".") != 2:
            raise MalformedToken("Token is not a compact JWT")
        try:
            jwt.get_unverified_claims(credential)
        except JWTError as exc:
            raise MalformedToken("Token could not be decoded") from exc
        try:
            # Expiry is checked below against our own clock so the boundary is exact.
            decoded = jwt.decode(
                credential,
                self.config.secret,
                algorithms=[self.config.algorithm],
                options={"verify_exp": False, "verify_aud": False},
            )
        except JWTClaimsError as exc:
            raise MalformedToken("Token claims are invalid") from exc
        except JWTError as exc:
            raise InvalidSignature("Token signature is invalid") from exc
        try:
            claims = TokenClaims.model_validate(decoded)
        except ValidationError as exc:
            raise MalformedToken("Token claims are incomplete") from exc
        if int(self.now().timestamp()) >= claims.exp:
            raise TokenExpired("Token has expired")
        return claims


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash.
        return False


__all__ = [
    "IssuedToken",
    "TokenClaims",
    "TokenService",
    "hash_password",
    "new_jti",
    "verify_password",
]
