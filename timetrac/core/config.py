"""Environment-driven configuration for the TimeTrac service.

Everything the process needs to know at boot lives on ``AppSettings``. The
object is built once by ``get_settings()`` and handed to the pieces that need
it through FastAPI dependencies, so request handlers never read the
environment themselves.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("timetrac.config")

# Only ever used outside production, see ``AppSettings._require_secret_in_production``.
DEV_JWT_SECRET = "dev-secret"


class AppSettings(BaseSettings):
    """Environment-driven application configuration."""

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    APP_NAME: str = "TimeTrac"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    BASE_DIR: Path = Field(default_factory=lambda: Path(__file__).resolve().parents[2])
    DATA_DIR: Path = Field(default_factory=lambda: Path(__file__).resolve().parents[2] / "data")

    DB_URL: str = Field(
        default="",
        validation_alias=AliasChoices("DATABASE_URL", "DB_URL"),
    )
    DB_ECHO: bool = False

    JWT_SECRET: str = ""
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRES_HOURS: float = 24
    AUTH_STRICT_TOKEN_REGISTRY: bool = False

    PASSWORD_MIN_LENGTH: int = 6
    ENTRY_LIST_LIMIT: int = Field(default=200, ge=1)
    DEFAULT_ENTRY_COLOR: str = "#3b82f6"
    START_RETRY_ATTEMPTS: int = Field(default=3, ge=1)
    START_RETRY_BACKOFF: float = Field(default=0.05, ge=0)

    ALLOWED_ORIGINS: str = ""
    HOST: str = "0.0.0.0"
    PORT: int = 8089

    @property
    def is_production(self) -> bool:
        return self.APP_ENV.strip().lower() in {"prod", "production"}

    @property
    def allowed_origins(self) -> list[str]:
        return [item.strip() for item in self.ALLOWED_ORIGINS.split(",") if item.strip()]

    @property
    def uses_dev_secret(self) -> bool:
        return not self.JWT_SECRET.strip()

    @property
    def signing_secret(self) -> str:
        return self.JWT_SECRET.strip() or DEV_JWT_SECRET

    @model_validator(mode="after")
    def _require_secret_in_production(self) -> "AppSettings":
        if not self.DB_URL:
            self.DB_URL = f"sqlite:///{self.DATA_DIR / 'timetrac.db'}"
        if self.is_production and self.uses_dev_secret:
            raise ValueError("JWT_SECRET must be set when APP_ENV is production")
        if self.JWT_EXPIRES_HOURS <= 0:
            raise ValueError("JWT_EXPIRES_HOURS must be positive")
        return self


class TokenConfig(BaseModel):
    """Immutable signing parameters handed to the token service."""

    model_config = ConfigDict(frozen=True)

    secret: str = Field(min_length=1)
    algorithm: str = "HS256"
    ttl: timedelta = timedelta(hours=24)
    uses_dev_secret: bool = False

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "TokenConfig":
        if settings.uses_dev_secret:
            logger.warning(
                "config.dev_secret",
                extra={"extra_data": {"detail": "JWT_SECRET unset, using development fallback"}},
            )
        return cls(
            secret=settings.signing_secret,
            algorithm=settings.JWT_ALGORITHM,
            ttl=timedelta(hours=settings.JWT_EXPIRES_HOURS),
            uses_dev_secret=settings.uses_dev_secret,
        )


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    settings = AppSettings()
    if settings.DB_URL.startswith("sqlite"):
        settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
    return settings


__all__ = ["AppSettings", "TokenConfig", "DEV_JWT_SECRET", "get_settings"]
