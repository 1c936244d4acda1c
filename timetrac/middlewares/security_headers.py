from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

NO_STORE_PREFIXES = ("/api/auth", "/api/me", "/api/logout")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Baseline headers for a JSON-only API."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
        if request.url.path.startswith(NO_STORE_PREFIXES):
            # Tokens and profile data must not land in shared caches.
            response.headers["Cache-Control"] = "no-store"
        return response
