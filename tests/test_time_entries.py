"""Session ledger: the start/stop state machine and ownership rules."""

import os
import sys
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATA_DIR", str(ROOT / "data"))

from timetrac.db.session import Base, build_engine
from timetrac.core.errors import NoRunningEntry, NotFound, ValidationError, WriteConflict
from timetrac.crud.time_entries import (
    delete_entry,
    get_running_entry,
    list_entries,
    start_entry,
    stop_entry,
    update_entry,
)
from timetrac.crud.users import create_user
from timetrac.models.time_entry import DEFAULT_COLOR, TimeEntry

# Ensure models are registered so metadata tables are created
from timetrac import models  # noqa: F401

T0 = datetime(2025, 9, 10, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
def db_session():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False})
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def alice(db_session):
    return create_user(db_session, "alice@example.com", "password1")


@pytest.fixture()
def bob(db_session):
    return create_user(db_session, "bob@example.com", "password2")


def _open_count(db_session, user_id):
    stmt = select(func.count()).select_from(TimeEntry).where(
        TimeEntry.user_id == user_id, TimeEntry.end_at.is_(None)
    )
    return db_session.execute(stmt).scalar_one()


def test_start_from_idle_opens_one_entry(db_session, alice):
    entry = start_entry(db_session, alice.id, {"project": "Web"}, now=T0)

    assert entry.end_at is None
    assert entry.running is True
    assert entry.project == "Web"
    assert entry.start_at == T0
    listed = list_entries(db_session, alice.id)
    assert [e.id for e in listed] == [entry.id]


def test_start_defaults_optional_fields(db_session, alice):
    entry = start_entry(db_session, alice.id, {}, now=T0)

    assert entry.project == ""
    assert entry.tags == []
    assert entry.note == ""
    assert entry.color == DEFAULT_COLOR
    assert entry.location_lat is None
    assert entry.photo_data is None


def test_start_while_running_auto_stops_previous(db_session, alice):
    first = start_entry(db_session, alice.id, {"project": "Web"}, now=T0)
    second = start_entry(db_session, alice.id, {"project": "Mobile"}, now=T0 + timedelta(minutes=30))

    db_session.refresh(first)
    assert first.end_at == T0 + timedelta(minutes=30)
    assert second.end_at is None
    assert second.project == "Mobile"

    listed = list_entries(db_session, alice.id)
    assert [e.id for e in listed] == [second.id, first.id]
    assert [e.id for e in listed if e.end_at is None] == [second.id]


def test_never_more_than_one_open_entry_per_user(db_session, alice, bob):
    for minute in range(5):
        start_entry(db_session, alice.id, {"project": f"p{minute}"}, now=T0 + timedelta(minutes=minute))
        start_entry(db_session, bob.id, {"project": f"q{minute}"}, now=T0 + timedelta(minutes=minute))
        assert _open_count(db_session, alice.id) == 1
        assert _open_count(db_session, bob.id) == 1
    stop_entry(db_session, alice.id, now=T0 + timedelta(hours=1))
    assert _open_count(db_session, alice.id) == 0
    assert _open_count(db_session, bob.id) == 1


def test_database_refuses_a_second_open_entry(db_session, alice):
    start_entry(db_session, alice.id, {}, now=T0)
    db_session.add(TimeEntry(user_id=alice.id, start_at=T0 + timedelta(minutes=1)))
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


def test_start_normalizes_input(db_session, alice):
    entry = start_entry(
        db_session,
        alice.id,
        {
            "project": "  Web  ",
            "tags": [" client ", "", "client", "billable"],
            "color": " #ABC ",
            "location_lat": 24.7136,
            "location_lng": 46.6753,
            "location_addr": "  Riyadh  ",
            "photo_data": "data:image/png;base64,AAAA",
        },
        now=T0,
    )

    assert entry.project == "Web"
    assert entry.tags == ["client", "billable"]
    assert entry.color == "#ABC"
    assert entry.location_addr == "Riyadh"
    assert entry.location_lat == pytest.approx(24.7136)
    assert entry.photo_data == "data:image/png;base64,AAAA"


@pytest.mark.parametrize("color", ["blue", "#12", "#1234567", "3b82f6"])
def test_start_rejects_bad_color(db_session, alice, color):
    with pytest.raises(ValidationError):
        start_entry(db_session, alice.id, {"color": color}, now=T0)
    assert _open_count(db_session, alice.id) == 0


def test_stop_without_running_entry_fails(db_session, alice):
    with pytest.raises(NoRunningEntry):
        stop_entry(db_session, alice.id)


def test_stop_closes_running_entry(db_session, alice):
    entry = start_entry(db_session, alice.id, {}, now=T0)
    stopped = stop_entry(db_session, alice.id, now=T0 + timedelta(minutes=45))

    assert stopped.id == entry.id
    assert stopped.end_at == T0 + timedelta(minutes=45)
    assert stopped.updated_at == T0 + timedelta(minutes=45)
    assert stopped.duration_seconds == 45 * 60
    assert get_running_entry(db_session, alice.id) is None
    with pytest.raises(NoRunningEntry):
        stop_entry(db_session, alice.id)


def test_stop_by_id_requires_ownership(db_session, alice, bob):
    entry = start_entry(db_session, alice.id, {}, now=T0)

    with pytest.raises(NotFound):
        stop_entry(db_session, bob.id, entry.id)
    with pytest.raises(NotFound):
        stop_entry(db_session, alice.id, str(uuid4()))
    assert get_running_entry(db_session, alice.id).id == entry.id


def test_stop_by_id_on_closed_entry_keeps_its_end(db_session, alice):
    entry = start_entry(db_session, alice.id, {}, now=T0)
    stop_entry(db_session, alice.id, entry.id, now=T0 + timedelta(minutes=10))

    again = stop_entry(db_session, alice.id, entry.id, now=T0 + timedelta(hours=3))

    assert again.end_at == T0 + timedelta(minutes=10)


def test_update_applies_only_present_fields(db_session, alice):
    entry = start_entry(
        db_session,
        alice.id,
        {"project": "Web", "tags": ["a"], "note": "keep me", "color": "#111111"},
        now=T0,
    )

    updated = update_entry(db_session, alice.id, entry.id, {"project": "API"}, now=T0 + timedelta(minutes=1))

    assert updated.project == "API"
    assert updated.tags == ["a"]
    assert updated.note == "keep me"
    assert updated.color == "#111111"
    assert updated.end_at is None
    assert updated.updated_at == T0 + timedelta(minutes=1)


def test_update_treats_null_as_absent(db_session, alice):
    entry = start_entry(
        db_session, alice.id, {"project": "Web", "note": "old", "tags": ["x"], "color": "#222222"}, now=T0
    )

    updated = update_entry(
        db_session, alice.id, entry.id, {"project": None, "note": None, "tags": None, "color": None}
    )

    assert updated.project == "Web"
    assert updated.note == "old"
    assert updated.tags == ["x"]
    assert updated.color == "#222222"


def test_update_with_blank_color_keeps_color(db_session, alice):
    entry = start_entry(db_session, alice.id, {"color": "#111111"}, now=T0)

    updated = update_entry(db_session, alice.id, entry.id, {"color": "  ", "note": "standup"})

    assert updated.color == "#111111"
    assert updated.note == "standup"


def test_update_with_empty_values_clears(db_session, alice):
    entry = start_entry(db_session, alice.id, {"project": "Web", "note": "old", "tags": ["x"]}, now=T0)

    updated = update_entry(db_session, alice.id, entry.id, {"project": "", "note": "", "tags": []})

    assert updated.project == ""
    assert updated.note == ""
    assert updated.tags == []


def test_update_refuses_timestamps(db_session, alice):
    entry = start_entry(db_session, alice.id, {}, now=T0)
    with pytest.raises(ValidationError):
        update_entry(db_session, alice.id, entry.id, {"end_at": T0})


def test_update_on_someone_elses_entry_is_not_found(db_session, alice, bob):
    entry = start_entry(db_session, bob.id, {"project": "Bob's"}, now=T0)

    with pytest.raises(NotFound):
        update_entry(db_session, alice.id, entry.id, {"project": "Mine now"})
    db_session.refresh(entry)
    assert entry.project == "Bob's"


def test_delete_is_scoped_to_owner(db_session, alice, bob):
    entry = start_entry(db_session, alice.id, {}, now=T0)

    with pytest.raises(NotFound):
        delete_entry(db_session, bob.id, entry.id)
    delete_entry(db_session, alice.id, entry.id)
    assert list_entries(db_session, alice.id) == []
    with pytest.raises(NotFound):
        delete_entry(db_session, alice.id, entry.id)


def test_list_is_newest_first_and_capped(db_session, alice, bob):
    for minute in range(6):
        start_entry(db_session, alice.id, {"project": str(minute)}, now=T0 + timedelta(minutes=minute))
    start_entry(db_session, bob.id, {"project": "other"}, now=T0)

    listed = list_entries(db_session, alice.id, cap=4)
    assert [e.project for e in listed] == ["5", "4", "3", "2"]
    assert len(list_entries(db_session, alice.id, limit=2)) == 2
    assert len(list_entries(db_session, alice.id, limit=50, cap=3)) == 3
    assert all(e.user_id == alice.id for e in list_entries(db_session, alice.id))


def test_start_retries_after_a_write_conflict(db_session, alice, monkeypatch):
    from timetrac.crud import time_entries

    start_entry(db_session, alice.id, {"project": "first"}, now=T0)
    real_close = time_entries._close_open_entries
    calls = []

    def close_nothing_once(db, user_id, now):
        calls.append(now)
        if len(calls) == 1:
            # Leaves the open entry in place, so the insert hits the one-open index.
            return []
        return real_close(db, user_id, now)

    monkeypatch.setattr(time_entries, "_close_open_entries", close_nothing_once)
    entry = start_entry(db_session, alice.id, {"project": "second"}, now=T0 + timedelta(minutes=5), backoff=0)

    assert len(calls) == 2
    assert entry.project == "second"
    assert _open_count(db_session, alice.id) == 1
    assert len(list_entries(db_session, alice.id)) == 2


def test_start_gives_up_after_its_attempts(db_session, alice, monkeypatch):
    from timetrac.crud import time_entries

    start_entry(db_session, alice.id, {"project": "first"}, now=T0)
    monkeypatch.setattr(time_entries, "_close_open_entries", lambda db, user_id, now: [])

    with pytest.raises(WriteConflict):
        start_entry(db_session, alice.id, {}, now=T0 + timedelta(minutes=1), attempts=2, backoff=0)
    assert _open_count(db_session, alice.id) == 1
    assert [e.project for e in list_entries(db_session, alice.id)] == ["first"]


def test_concurrent_starts_leave_one_open_entry(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    with Session() as setup:
        user_id = create_user(setup, "racer@example.com", "password1").id

    workers, rounds = 8, 10
    barrier = threading.Barrier(workers)
    errors = []

    def worker(n):
        with Session() as db:
            barrier.wait()
            for i in range(rounds):
                try:
                    start_entry(db, user_id, {"project": f"w{n}-{i}"})
                except Exception as exc:  # collected and asserted on below
                    errors.append(repr(exc))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    with Session() as db:
        assert errors == []
        assert _open_count(db, user_id) == 1
        assert db.execute(select(func.count()).select_from(TimeEntry)).scalar_one() == workers * rounds
    engine.dispose()
