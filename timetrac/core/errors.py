from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("timetrac.errors")


class TimeTracError(Exception):
    """Base class for every error the service reports to its callers."""

    code = "error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Internal error"

    def __init__(self, message: str | None = None, *, details: Any | None = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message
        self.details = details


# ---- authentication: one public face, four internal reasons


class Unauthorized(TimeTracError):
    code = "unauthorized"
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Unauthorized"
    reason = "unauthorized"


class MissingCredential(Unauthorized):
    reason = "missing_credential"


class InvalidCredential(Unauthorized):
    reason = "invalid_credential"


class RevokedCredential(Unauthorized):
    reason = "revoked_credential"


class UnknownUser(Unauthorized):
    reason = "unknown_user"


class InvalidLogin(TimeTracError):
    code = "invalid_credentials"
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Invalid email or password"


# ---- token validation (never leaves the authenticator as-is)


class TokenError(ValueError):
    reason = "token_error"


class InvalidSignature(TokenError):
    reason = "invalid_signature"


class TokenExpired(TokenError):
    reason = "expired"


class MalformedToken(TokenError):
    reason = "malformed"


# ---- session ledger and payloads


class NotFound(TimeTracError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    message = "Not found"


class NoRunningEntry(TimeTracError):
    code = "no_running_entry"
    status_code = status.HTTP_404_NOT_FOUND
    message = "No running entry"


class ValidationError(TimeTracError):
    code = "validation_error"
    status_code = 422
    message = "Validation failed"


class EmailInUse(TimeTracError):
    code = "email_in_use"
    status_code = status.HTTP_409_CONFLICT
    message = "Email already in use"


class PersistenceError(TimeTracError):
    code = "persistence_error"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    message = "Storage unavailable"


class WriteConflict(PersistenceError):
    message = "Concurrent write conflict"


class ErrorEnvelope(JSONResponse):
    def __init__(
        self,
        *,
        status_code: int,
        code: str,
        message: str,
        details: Any | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        payload: dict[str, Any] = {"code": code, "message": message}
        if details is not None:
            payload["details"] = details
        super().__init__(payload, status_code=status_code, headers=headers)


async def timetrac_exception_handler(request: Request, exc: TimeTracError):
    if isinstance(exc, Unauthorized):
        # Callers only ever see "unauthorized"; the reason stays in the logs.
        logger.warning(
            "auth.rejected",
            extra={"extra_data": {"reason": exc.reason, "path": request.url.path}},
        )
        return ErrorEnvelope(
            status_code=exc.status_code,
            code=Unauthorized.code,
            message=Unauthorized.message,
            headers={"WWW-Authenticate": "Bearer"},
        )
    if isinstance(exc, PersistenceError):
        logger.error(
            "storage.failed",
            exc_info=exc.__cause__ is not None,
            extra={"extra_data": {"path": request.url.path, "error": exc.message}},
        )
    return ErrorEnvelope(
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    message = detail if isinstance(detail, str) else "Error"
    details = detail if isinstance(detail, dict) else None
    return ErrorEnvelope(
        status_code=exc.status_code,
        code="http_error",
        message=message,
        details=details,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return ErrorEnvelope(
        status_code=422,
        code=ValidationError.code,
        message=ValidationError.message,
        details={"errors": _jsonable_errors(exc.errors())},
    )


def _jsonable_errors(errors: Any) -> list[dict[str, Any]]:
    cleaned: list[dict[str, Any]] = []
    for error in errors:
        item = {key: value for key, value in error.items() if key != "ctx"}
        if "ctx" in error:
            item["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        cleaned.append(item)
    return cleaned


__all__ = [
    "TimeTracError",
    "Unauthorized",
    "MissingCredential",
    "InvalidCredential",
    "RevokedCredential",
    "UnknownUser",
    "InvalidLogin",
    "TokenError",
    "InvalidSignature",
    "TokenExpired",
    "MalformedToken",
    "NotFound",
    "NoRunningEntry",
    "ValidationError",
    "EmailInUse",
    "PersistenceError",
    "WriteConflict",
    "ErrorEnvelope",
    "timetrac_exception_handler",
    "http_exception_handler",
    "validation_exception_handler",
]
