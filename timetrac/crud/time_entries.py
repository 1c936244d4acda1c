"""Session ledger operations: start, stop, patch, delete and list time entries.

A user is either idle (no open entry) or running (exactly one entry with
``end_at IS NULL``). Every mutation that touches the open entry starts its
transaction by writing to the owning user row, which takes the write lock on
every backend: a row lock on PostgreSQL, the database RESERVED lock on
SQLite. Two concurrent ``start`` calls for the same user are therefore
serialised. The partial unique index on ``time_entries`` backs this up: if
it ever rejects a write, ``start_entry`` backs off and retries the whole
close-then-open sequence.
"""

from __future__ import annotations

import logging
import random
import re
import time
from datetime import datetime
from typing import Any, Iterable, Mapping

from sqlalchemy import delete, desc, select, update
from sqlalchemy.orm import Session

from ..core.errors import NoRunningEntry, NotFound, UnknownUser, ValidationError, WriteConflict
from ..db.session import atomic
from ..db.types import utcnow
from ..models.time_entry import DEFAULT_COLOR, TimeEntry
from ..models.user import User

logger = logging.getLogger("timetrac.entries")

DEFAULT_LIST_LIMIT = 200
EDITABLE_FIELDS = ("project", "tags", "note", "color")
HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


def _clean_project(value: object) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError("project must be a string")
    return value.strip()


def _clean_note(value: object) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError("note must be a string")
    return value


def _clean_tags(value: object) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str) or not isinstance(value, Iterable):
        raise ValidationError("tags must be a list of strings")
    tags: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValidationError("tags must be a list of strings")
        tag = item.strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def _clean_color(value: object, default: str = DEFAULT_COLOR) -> str:
    if value is None:
        return default
    if not isinstance(value, str):
        raise ValidationError("color must be a hex string")
    color = value.strip()
    if not color:
        return default
    if not HEX_COLOR.match(color):
        raise ValidationError("color must look like #rgb or #rrggbb")
    return color


def _clean_address(value: object) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None


def _lock_user(db: Session, user_id: str) -> None:
    # Must be the first statement of the transaction. A no-op UPDATE rather
    # than SELECT ... FOR UPDATE: SQLite drops FOR UPDATE, and pysqlite only
    # opens a transaction on a write, so a SELECT would lock nothing.
    result = db.execute(
        update(User)
        .where(User.id == user_id)
        .values(updated_at=User.updated_at)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise UnknownUser()


def _owned_entry(db: Session, user_id: str, entry_id: str, *, for_update: bool = False) -> TimeEntry:
    # Absent and not-yours are deliberately the same answer.
    stmt = select(TimeEntry).where(TimeEntry.id == str(entry_id), TimeEntry.user_id == user_id)
    if for_update:
        stmt = stmt.with_for_update()
    entry = db.execute(stmt).scalars().first()
    if entry is None:
        raise NotFound("Entry not found")
    return entry


def _close_open_entries(db: Session, user_id: str, now: datetime) -> list[str]:
    open_ids = db.execute(
        select(TimeEntry.id).where(TimeEntry.user_id == user_id, TimeEntry.end_at.is_(None))
    ).scalars().all()
    if open_ids:
        db.execute(
            update(TimeEntry)
            .where(TimeEntry.id.in_(open_ids))
            .values(end_at=now, updated_at=now)
        )
    return list(open_ids)


def get_entry(db: Session, user_id: str, entry_id: str) -> TimeEntry:
    return _owned_entry(db, user_id, entry_id)


def get_running_entry(db: Session, user_id: str) -> TimeEntry | None:
    stmt = (
        select(TimeEntry)
        .where(TimeEntry.user_id == user_id, TimeEntry.end_at.is_(None))
        .order_by(desc(TimeEntry.start_at))
        .limit(1)
    )
    return db.execute(stmt).scalars().first()


def list_entries(
    db: Session,
    user_id: str,
    limit: int | None = None,
    *,
    cap: int = DEFAULT_LIST_LIMIT,
) -> list[TimeEntry]:
    """Newest first, never more than ``cap`` rows."""
    limit = min(limit, cap) if limit and limit > 0 else cap
    stmt = (
        select(TimeEntry)
        .where(TimeEntry.user_id == user_id)
        .order_by(desc(TimeEntry.start_at), desc(TimeEntry.created_at))
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().all())


def start_entry(
    db: Session,
    user_id: str,
    payload: Mapping[str, Any] | None = None,
    *,
    now: datetime | None = None,
    default_color: str = DEFAULT_COLOR,
    attempts: int = 3,
    backoff: float = 0.05,
) -> TimeEntry:
    """Close whatever is running for ``user_id`` and open a new entry, atomically.

    A ``WriteConflict`` from the one-open-entry index is retried up to
    ``attempts`` times, sleeping a jittered, growing multiple of ``backoff``
    seconds in between.
    """

    payload = dict(payload or {})
    fields = {
        "project": _clean_project(payload.get("project")),
        "tags": _clean_tags(payload.get("tags")),
        "note": _clean_note(payload.get("note")),
        "color": _clean_color(payload.get("color"), default_color),
        "location_lat": payload.get("location_lat"),
        "location_lng": payload.get("location_lng"),
        "location_addr": _clean_address(payload.get("location_addr")),
        "photo_data": payload.get("photo_data"),
    }
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        started_at = now or utcnow()
        try:
            with atomic(db):
                _lock_user(db, user_id)
                closed = _close_open_entries(db, user_id, started_at)
                entry = TimeEntry(
                    user_id=user_id,
                    start_at=started_at,
                    end_at=None,
                    created_at=started_at,
                    updated_at=started_at,
                    **fields,
                )
                db.add(entry)
        except WriteConflict:
            if attempt >= attempts:
                raise
            logger.info(
                "entry.start_retry",
                extra={"extra_data": {"user_id": user_id, "attempt": attempt}},
            )
            if backoff > 0:
                time.sleep(backoff * attempt * random.uniform(0.5, 1.5))
            continue
        if closed:
            logger.warning(
                "entry.auto_stopped",
                extra={"extra_data": {"user_id": user_id, "closed_entry_ids": closed}},
            )
        db.refresh(entry)
        return entry
    raise WriteConflict()


def stop_entry(
    db: Session,
    user_id: str,
    entry_id: str | None = None,
    *,
    now: datetime | None = None,
) -> TimeEntry:
    """Close ``entry_id``, or the most recently started open entry when no id is given.

    Stopping an entry that is already closed returns it unchanged: its
    ``end_at`` is never moved, so a repeated stop cannot stretch a finished
    session. Fixing a closed entry's times is not something stop does.
    """

    stopped_at = now or utcnow()
    with atomic(db):
        _lock_user(db, user_id)
        if entry_id:
            entry = _owned_entry(db, user_id, entry_id, for_update=True)
        else:
            entry = get_running_entry(db, user_id)
            if entry is None:
                raise NoRunningEntry()
        if entry.end_at is None:
            entry.end_at = stopped_at
            entry.updated_at = stopped_at
    db.refresh(entry)
    return entry


def update_entry(
    db: Session,
    user_id: str,
    entry_id: str,
    changes: Mapping[str, Any],
    *,
    now: datetime | None = None,
    default_color: str = DEFAULT_COLOR,
) -> TimeEntry:
    """Apply the keys present in ``changes``; absent keys are left alone.

    Only project, tags, note and color can change. A ``None`` value counts
    as absent, and so does a blank color. To clear text or tags send ``""``
    or ``[]``.
    """

    unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValidationError("Fields cannot be updated", details={"fields": unknown})
    present = {key: value for key, value in changes.items() if value is not None}
    cleaned: dict[str, Any] = {}
    if "project" in present:
        cleaned["project"] = _clean_project(present["project"])
    if "tags" in present:
        cleaned["tags"] = _clean_tags(present["tags"])
    if "note" in present:
        cleaned["note"] = _clean_note(present["note"])
    if isinstance(present.get("color"), str) and not present["color"].strip():
        del present["color"]
    if "color" in present:
        cleaned["color"] = _clean_color(present["color"], default_color)

    with atomic(db):
        entry = _owned_entry(db, user_id, entry_id, for_update=True)
        for field, value in cleaned.items():
            setattr(entry, field, value)
        if cleaned:
            entry.updated_at = now or utcnow()
    db.refresh(entry)
    return entry


def delete_entry(db: Session, user_id: str, entry_id: str) -> None:
    """Hard-delete an owned entry; the affected row count decides NotFound."""

    with atomic(db):
        result = db.execute(
            delete(TimeEntry)
            .where(TimeEntry.id == str(entry_id), TimeEntry.user_id == user_id)
            .execution_options(synchronize_session="evaluate")
        )
        if result.rowcount == 0:
            raise NotFound("Entry not found")


__all__ = [
    "DEFAULT_LIST_LIMIT",
    "EDITABLE_FIELDS",
    "delete_entry",
    "get_entry",
    "get_running_entry",
    "list_entries",
    "start_entry",
    "stop_entry",
    "update_entry",
]
