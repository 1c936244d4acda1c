"""Application factory and top-level wiring for the TimeTrac API.

Run it with ``uvicorn timetrac.main:app``. ``create_app`` wires
configuration, logging, middleware, routers and error handlers. Tables are
created and upgraded when the app starts, not when it is imported.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import models as _models  # noqa: F401  (registers tables on Base.metadata)
from .core.config import AppSettings, get_settings
from .core.errors import (
    TimeTracError,
    http_exception_handler,
    timetrac_exception_handler,
    validation_exception_handler,
)
from .core.logging import configure_logging
from .db.migrate import run_migrations
from .db.session import Base, engine
from .middlewares import RequestIdMiddleware, SecurityHeadersMiddleware
from .routers import api_auth, api_tracks


@asynccontextmanager
async def _lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    run_migrations(engine)
    yield


def create_app(settings: AppSettings | None = None, *, manage_schema: bool = True) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL, service=settings.APP_NAME, environment=settings.APP_ENV)

    app = FastAPI(title=settings.APP_NAME, lifespan=_lifespan if manage_schema else None)

    # Added last runs first: request ids wrap everything else.
    app.add_middleware(SecurityHeadersMiddleware)
    if settings.allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type", "Accept", "X-Request-ID"],
        )
    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(TimeTracError, timetrac_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    app.include_router(api_auth.router)
    app.include_router(api_tracks.router)

    @app.get("/health", tags=["meta"])
    async def health() -> dict[str, bool]:
        return {"ok": True}

    Instrumentator().instrument(app).expose(app, include_in_schema=False)
    return app


app = create_app()

__all__ = ["app", "create_app"]
