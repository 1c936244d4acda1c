"""Schema upkeep for databases created before the current models."""

import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATA_DIR", str(ROOT / "data"))

from timetrac.db.migrate import run_migrations

LEGACY_SCHEMA = [
    """
    CREATE TABLE users (
        id VARCHAR(36) PRIMARY KEY,
        email VARCHAR(320) NOT NULL UNIQUE,
        password_hash VARCHAR(255) NOT NULL,
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE time_entries (
        id VARCHAR(36) PRIMARY KEY,
        user_id VARCHAR(36) NOT NULL REFERENCES users(id),
        project VARCHAR(255) NOT NULL DEFAULT '',
        tags JSON,
        note TEXT NOT NULL DEFAULT '',
        color VARCHAR(16) NOT NULL DEFAULT '#3b82f6',
        start_at TIMESTAMP NOT NULL,
        end_at TIMESTAMP,
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE auth_tokens (
        jti VARCHAR(64) PRIMARY KEY,
        user_id VARCHAR(36) NOT NULL REFERENCES users(id),
        expires_at TIMESTAMP NOT NULL,
        revoked_at TIMESTAMP,
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL
    )
    """,
]


@pytest.fixture()
def legacy_engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    with engine.begin() as conn:
        for ddl in LEGACY_SCHEMA:
            conn.execute(text(ddl))
        conn.execute(
            text(
                "INSERT INTO users (id, email, password_hash, created_at, updated_at) "
                "VALUES ('u1', 'dev@example.com', 'x', '2025-01-01 00:00:00', '2025-01-01 00:00:00')"
            )
        )
        for entry_id, start in (("e1", "2025-01-01 09:00:00"), ("e2", "2025-01-01 10:00:00")):
            conn.execute(
                text(
                    "INSERT INTO time_entries (id, user_id, start_at, created_at, updated_at) "
                    "VALUES (:id, 'u1', :start, :start, :start)"
                ),
                {"id": entry_id, "start": start},
            )
    return engine


def _open_ids(engine):
    with engine.connect() as conn:
        return [row[0] for row in conn.execute(text("SELECT id FROM time_entries WHERE end_at IS NULL"))]


def test_missing_columns_are_added(legacy_engine):
    run_migrations(legacy_engine)

    inspector = inspect(legacy_engine)
    entry_columns = {column["name"] for column in inspector.get_columns("time_entries")}
    token_columns = {column["name"] for column in inspector.get_columns("auth_tokens")}
    assert {"location_lat", "location_lng", "location_addr", "photo_data"} <= entry_columns
    assert "issued_at" in token_columns


def test_duplicate_open_entries_keep_only_the_newest(legacy_engine):
    run_migrations(legacy_engine)

    assert _open_ids(legacy_engine) == ["e2"]
    with legacy_engine.connect() as conn:
        closed = conn.execute(text("SELECT start_at, end_at FROM time_entries WHERE id = 'e1'")).one()
    assert closed[0] == closed[1]


def test_one_open_entry_index_is_enforced_afterwards(legacy_engine):
    run_migrations(legacy_engine)

    index_names = {index["name"] for index in inspect(legacy_engine).get_indexes("time_entries")}
    assert {"ix_time_entries_user_start", "uq_time_entries_one_open"} <= index_names
    with pytest.raises(IntegrityError):
        with legacy_engine.begin() as conn:
            conn.execute(
                text(
                    "INSERT INTO time_entries (id, user_id, start_at, created_at, updated_at) "
                    "VALUES ('e3', 'u1', '2025-01-01 11:00:00', '2025-01-01 11:00:00', '2025-01-01 11:00:00')"
                )
            )


def test_running_twice_changes_nothing(legacy_engine):
    run_migrations(legacy_engine)
    run_migrations(legacy_engine)

    assert _open_ids(legacy_engine) == ["e2"]
    token_columns = [column["name"] for column in inspect(legacy_engine).get_columns("auth_tokens")]
    assert token_columns.count("issued_at") == 1
