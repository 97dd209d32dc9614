from datetime import UTC, datetime, timedelta

from sqlalchemy import select

from trustdesk.models.scheduler_lock import SchedulerLock
from trustdesk.services.scheduler_lock import (
    LOCK_NAME,
    describe_scheduler_lock,
    refresh_scheduler_lock,
    release_scheduler_lock,
    try_acquire_scheduler_lock,
)
from trustdesk.utils.time import ensure_utc


def _lock(db_session) -> SchedulerLock | None:
    return db_session.execute(select(SchedulerLock).where(SchedulerLock.name == LOCK_NAME)).scalar_one_or_none()


def test_scheduler_lock_reentrant_for_owner(db_session):
    release_scheduler_lock(db_session=db_session)

    assert try_acquire_scheduler_lock(db_session=db_session) is True
    assert try_acquire_scheduler_lock(db_session=db_session) is True

    release_scheduler_lock(db_session=db_session)
    assert _lock(db_session) is None


def test_lock_cannot_be_taken_if_not_expired(monkeypatch, db_session):
    release_scheduler_lock(db_session=db_session)

    monkeypatch.setattr("trustdesk.services.scheduler_lock.owner_id", lambda: "node-A")
    assert try_acquire_scheduler_lock(db_session=db_session, ttl_seconds=300)

    monkeypatch.setattr("trustdesk.services.scheduler_lock.owner_id", lambda: "node-B")
    assert try_acquire_scheduler_lock(db_session=db_session, ttl_seconds=300) is False
    assert refresh_scheduler_lock(db_session=db_session) is False

    # Only the owner may release it.
    release_scheduler_lock(db_session=db_session)
    assert _lock(db_session).owner == "node-A"

    release_scheduler_lock(owner="node-A", db_session=db_session)
    assert _lock(db_session) is None


def test_lock_can_be_reacquired_after_expiry(monkeypatch, db_session):
    release_scheduler_lock(db_session=db_session)

    monkeypatch.setattr("trustdesk.services.scheduler_lock.owner_id", lambda: "node-A")
    assert try_acquire_scheduler_lock(db_session=db_session, ttl_seconds=60)

    lock = _lock(db_session)
    lock.expires_at = datetime.now(UTC) - timedelta(seconds=1)
    db_session.commit()

    monkeypatch.setattr("trustdesk.services.scheduler_lock.owner_id", lambda: "node-B")
    assert try_acquire_scheduler_lock(db_session=db_session, ttl_seconds=300)
    assert _lock(db_session).owner == "node-B"

    release_scheduler_lock(db_session=db_session)


def test_refresh_extends_ttl(monkeypatch, db_session):
    monkeypatch.setattr("trustdesk.services.scheduler_lock.owner_id", lambda: "node-A")
    assert try_acquire_scheduler_lock(db_session=db_session, ttl_seconds=10)
    before = ensure_utc(_lock(db_session).expires_at)

    assert refresh_scheduler_lock(db_session=db_session, ttl_seconds=600) is True
    db_session.refresh(_lock(db_session))
    assert ensure_utc(_lock(db_session).expires_at) > before

    release_scheduler_lock(db_session=db_session)


def test_describe_scheduler_lock(db_session, monkeypatch):
    release_scheduler_lock(db_session=db_session)
    assert describe_scheduler_lock(db_session=db_session) == {"status": "none", "owner": None, "present": False}

    monkeypatch.setattr("trustdesk.services.scheduler_lock.owner_id", lambda: "node-A")
    assert try_acquire_scheduler_lock(db_session=db_session, ttl_seconds=60)

    info = describe_scheduler_lock(db_session=db_session)
    assert info["present"] is True
    assert info["status"] == "owned_by_self"
    assert info["owner"] == "node-A"
    assert 0 < info["expires_in_seconds"] <= 60
    assert info["stale"] is False
    assert "age_seconds" in info

    monkeypatch.setattr("trustdesk.services.scheduler_lock.owner_id", lambda: "node-B")
    assert describe_scheduler_lock(db_session=db_session)["status"] == "owned_by_other"

    release_scheduler_lock(owner="node-A", db_session=db_session)
