"""Background sweeps run by the scheduler."""
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from trustdesk import db
from trustdesk.core.logging import log_context
from trustdesk.services import disputes as dispute_service
from trustdesk.services import escrow as escrow_service
from trustdesk.services.scheduler_lock import record_sweep
from trustdesk.utils.errors import DomainError
from trustdesk.utils.time import utcnow

logger = logging.getLogger(__name__)

AUTO_RELEASE_JOB = "escrow-auto-release"
DISPUTE_ESCALATION_JOB = "dispute-escalation"


def auto_release_escrows_once(db_session: Session | None = None, *, now: datetime | None = None) -> int:
    """Run ``check_auto_release`` over every candidate escrow; returns releases done."""

    now = now or utcnow()
    released = 0
    with log_context(job=AUTO_RELEASE_JOB), db.session_scope(db_session) as session:
        for escrow_id in escrow_service.list_auto_release_candidates(session, now=now):
            with log_context(escrow_id=escrow_id):
                try:
                    if escrow_service.check_auto_release(session, escrow_id, now=now):
                        released += 1
                except DomainError:
                    logger.exception("Auto-release failed", extra={"escrow_id": escrow_id})
        record_sweep(AUTO_RELEASE_JOB, released, at=now)
        if released:
            logger.info("Auto-release sweep done", extra={"released": released})
    return released


def escalate_overdue_disputes_once(db_session: Session | None = None, *, now: datetime | None = None) -> int:
    now = now or utcnow()
    with log_context(job=DISPUTE_ESCALATION_JOB), db.session_scope(db_session) as session:
        escalated = dispute_service.escalate_overdue_disputes(session, now=now)
        record_sweep(DISPUTE_ESCALATION_JOB, escalated, at=now)
        if escalated:
            logger.info("Dispute escalation sweep done", extra={"escalated": escalated})
    return escalated


__all__ = [
    "AUTO_RELEASE_JOB",
    "DISPUTE_ESCALATION_JOB",
    "auto_release_escrows_once",
    "escalate_overdue_disputes_once",
]
