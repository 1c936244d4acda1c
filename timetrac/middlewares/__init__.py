"""Starlette middleware plus the per-request context it publishes.

``RequestIdMiddleware`` owns the request id; ``deps.auth.require_user`` fills
in the principal once a bearer token checks out. Log formatting reads both
through ``current_request_id`` and ``current_principal``.
"""

from __future__ import annotations

from .request_id import RequestIdMiddleware, principal_ctx_var, request_id_ctx_var
from .security_headers import SecurityHeadersMiddleware


def current_request_id() -> str | None:
    return request_id_ctx_var.get()


def current_principal() -> str | None:
    return principal_ctx_var.get()


__all__ = [
    "RequestIdMiddleware",
    "SecurityHeadersMiddleware",
    "current_principal",
    "current_request_id",
    "principal_ctx_var",
    "request_id_ctx_var",
]
