"""DB-backed lock so only one process runs the background sweeps."""
from __future__ import annotations

import os
import socket
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from trustdesk import db
from trustdesk.models.scheduler_lock import SchedulerLock
from trustdesk.utils.time import ensure_utc, utcnow

LOCK_NAME = "trustdesk-scheduler"
LOCK_TTL_SECONDS = 300

# Process-local view of the scheduler, reported by /health.
_scheduler_active = False
_last_sweeps: dict[str, dict[str, object]] = {}


def set_scheduler_active(active: bool) -> None:
    global _scheduler_active
    _scheduler_active = active


def is_scheduler_active() -> bool:
    return _scheduler_active


def record_sweep(job: str, processed: int, *, at: datetime | None = None) -> None:
    """Remember when ``job`` last ran here and how many escrows or disputes it moved."""

    _last_sweeps[job] = {"at": (at or utcnow()).isoformat(), "processed": processed}


def last_sweeps() -> dict[str, dict[str, object]]:
    return {job: dict(info) for job, info in _last_sweeps.items()}


def owner_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


def _load(session: Session, name: str) -> SchedulerLock | None:
    return session.execute(
        select(SchedulerLock).where(SchedulerLock.name == name).with_for_update()
    ).scalar_one_or_none()




def try_acquire_scheduler_lock(
    name: str = LOCK_NAME,
    *,
    ttl_seconds: int = LOCK_TTL_SECONDS,
    owner: str | None = None,
    db_session: Session | None = None,
) -> bool:
    """Take the lock if it is free, expired, or already ours."""

    owner = owner or owner_id()
    now = utcnow()
    expires = now + timedelta(seconds=ttl_seconds)

    with db.session_scope(db_session) as session:
        try:
            lock = _load(session, name)
            if lock is None:
                session.add(SchedulerLock(name=name, owner=owner, acquired_at=now, expires_at=expires))
                session.commit()
                return True

            expires_at = ensure_utc(lock.expires_at)
            if lock.owner != owner and expires_at is not None and expires_at > now:
                session.rollback()
                return False

            if lock.owner != owner:
                lock.acquired_at = now
            lock.owner = owner
            lock.expires_at = expires
            session.commit()
            return True
        except IntegrityError:
            # another runner inserted the row first
            session.rollback()
            return False


def refresh_scheduler_lock(
    name: str = LOCK_NAME,
    *,
    ttl_seconds: int = LOCK_TTL_SECONDS,
    owner: str | None = None,
    db_session: Session | None = None,
) -> bool:
    """Extend the TTL when this runner still holds the lock."""

    owner = owner or owner_id()
    with db.session_scope(db_session) as session:
        lock = _load(session, name)
        if lock is None or lock.owner != owner:
            session.rollback()
            return False
        lock.expires_at = utcnow() + timedelta(seconds=ttl_seconds)
        session.commit()
        return True


def release_scheduler_lock(
    name: str = LOCK_NAME, *, owner: str | None = None, db_session: Session | None = None
) -> None:
    owner = owner or owner_id()
    with db.session_scope(db_session) as session:
        lock = _load(session, name)
        if lock is not None and lock.owner == owner:
            session.delete(lock)
        session.commit()


def describe_scheduler_lock(name: str = LOCK_NAME, *, db_session: Session | None = None) -> dict[str, object]:
    """Lightweight lock description for the health endpoint."""

    with db.session_scope(db_session) as session:
        lock = session.execute(select(SchedulerLock).where(SchedulerLock.name == name)).scalar_one_or_none()
        if lock is None:
            return {"status": "none", "owner": None, "present": False}

        now = utcnow()
        acquired_at = ensure_utc(lock.acquired_at)
        expires_at = ensure_utc(lock.expires_at)
        expires_in = (expires_at - now).total_seconds() if expires_at else None
        return {
            "status": "owned_by_self" if lock.owner == owner_id() else "owned_by_other",
            "owner": lock.owner,
            "present": True,
            "age_seconds": (now - acquired_at).total_seconds() if acquired_at else None,
            "expires_in_seconds": expires_in,
            "stale": expires_in is not None and expires_in < 0,
        }


__all__ = [
    "LOCK_NAME",
    "LOCK_TTL_SECONDS",
    "describe_scheduler_lock",
    "is_scheduler_active",
    "last_sweeps",
    "owner_id",
    "record_sweep",
    "refresh_scheduler_lock",
    "release_scheduler_lock",
    "set_scheduler_active",
    "try_acquire_scheduler_lock",
]
