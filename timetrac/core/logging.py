"""One JSON object per log line, tagged with the request and its principal."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Mapping

from ..middlewares import current_principal, current_request_id

# uvicorn's access lines duplicate ``request.completed`` from RequestIdMiddleware.
QUIET_LOGGERS = ("uvicorn.access",)


class JsonLogFormatter(logging.Formatter):
    def __init__(self, *, static_fields: Mapping[str, Any] | None = None) -> None:
        super().__init__()
        self.static_fields = dict(static_fields or {})

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
            **self.static_fields,
        }
        request_id = current_request_id()
        if request_id:
            payload["request_id"] = request_id
        principal = current_principal()
        if principal:
            payload["principal"] = principal
        extra = getattr(record, "extra_data", None)
        if isinstance(extra, Mapping):
            payload.update(extra)
        if record.exc_info:
            payload["exc_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), default=str)


def configure_logging(
    level: str | int = logging.INFO,
    *,
    service: str | None = None,
    environment: str | None = None,
) -> None:
    static_fields = {key: value for key, value in (("service", service), ("env", environment)) if value}
    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter(static_fields=static_fields))
    logging.root.handlers = [handler]
    logging.root.setLevel(level.upper() if isinstance(level, str) else level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


__all__ = ["JsonLogFormatter", "configure_logging"]
