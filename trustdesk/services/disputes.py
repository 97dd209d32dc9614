"""Dispute lifecycle services.

Status changes and child appends go through a conditional UPDATE on the
dispute row, so a message racing a resolution either lands first or fails
with ``InvalidStateError``. ``resolved`` and ``cancelled`` are terminal; the
only write allowed afterwards is the parties' answer to the resolution.
"""
import logging
from collections.abc import Mapping
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

import pydantic
from sqlalchemy import case, func, or_, select
from sqlalchemy.orm import Session

from trustdesk.models.dispute import (
    PRIORITY_RANK,
    TERMINAL_DISPUTE_STATUSES,
    Dispute,
    DisputeEvidence,
    DisputeMessage,
    DisputeNote,
    DisputePriority,
    DisputeStatus,
    DisputeType,
    MessageVisibility,
    NoteKind,
    PartyRole,
    ThreadRole,
    VerificationStatus,
)
from trustdesk.schemas.dispute import DisputeCreate, DisputeResolutionCreate, EvidenceCreate
from trustdesk.services.transitions import guarded_update
from trustdesk.utils.audit import Actor, log_audit
from trustdesk.utils.errors import InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError
from trustdesk.utils.ids import ensure_object_id
from trustdesk.utils.time import utcnow

logger = logging.getLogger(__name__)

RESPONSE_WINDOW = timedelta(days=5)
ESCALATION_WINDOW = timedelta(days=14)
NEXT_ACTION_OFFSETS = {
    DisputeStatus.UNDER_REVIEW: timedelta(hours=48),
    DisputeStatus.EVIDENCE_NEEDED: timedelta(hours=72),
    DisputeStatus.MEDIATION: timedelta(days=7),
}
REVIEW_TRANSITIONS: dict[DisputeStatus, frozenset[DisputeStatus]] = {
    DisputeStatus.OPENED: frozenset({DisputeStatus.UNDER_REVIEW}),
    DisputeStatus.UNDER_REVIEW: frozenset({DisputeStatus.EVIDENCE_NEEDED, DisputeStatus.MEDIATION}),
    DisputeStatus.EVIDENCE_NEEDED: frozenset({DisputeStatus.UNDER_REVIEW, DisputeStatus.MEDIATION}),
    DisputeStatus.MEDIATION: frozenset({DisputeStatus.UNDER_REVIEW, DisputeStatus.EVIDENCE_NEEDED}),
    DisputeStatus.ESCALATED: frozenset({DisputeStatus.UNDER_REVIEW, DisputeStatus.MEDIATION}),
}
OVERDUE_ESCALATION_REASON = "Escalation deadline passed"
_NOT_ESCALATABLE = (*TERMINAL_DISPUTE_STATUSES, DisputeStatus.ESCALATED)
_OPPOSITE_ROLE = {PartyRole.CLIENT: PartyRole.FREELANCER, PartyRole.FREELANCER: PartyRole.CLIENT}


def next_action_date(
    status: DisputeStatus, *, now: datetime, response_deadline: datetime | None
) -> datetime | None:
    """When the dispute next needs attention after entering ``status``."""

    if status == DisputeStatus.OPENED:
        return response_deadline
    offset = NEXT_ACTION_OFFSETS.get(status)
    return now + offset if offset is not None else None


def _audit(db: Session, *, actor: Actor | str | None, action: str, dispute: Dispute, data: dict[str, Any]) -> None:
    log_audit(db, actor=actor, action=action, entity="Dispute", entity_id=dispute.id, data=data)


def _guard_open(db: Session, dispute: Dispute, operation: str) -> None:
    guarded_update(db, dispute, forbidden=TERMINAL_DISPUTE_STATUSES, operation=operation)


def _add_note(dispute: Dispute, kind: NoteKind, content: str, *, author_id: str | None, at: datetime) -> DisputeNote:
    note = DisputeNote(
        seq=len(dispute.notes) + 1,
        kind=kind,
        content=content,
        author_id=author_id,
        timestamp=at,
    )
    dispute.notes.append(note)
    return note


def _coerce_enum(enum_cls, value: Any, field: str):
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise ValidationError(f"Invalid {field}", details={field: str(value)}) from exc


def get_dispute(db: Session, dispute_id: str) -> Dispute:
    dispute_id = ensure_object_id(dispute_id, "dispute_id")
    dispute = db.get(Dispute, dispute_id)
    if dispute is None:
        raise NotFoundError("Dispute", dispute_id)
    return dispute


def open_dispute(db: Session, payload: DisputeCreate, *, initiator_id: str) -> Dispute:
    """Open a dispute; both deadlines are fixed here and never recomputed."""

    initiator_id = ensure_object_id(initiator_id, "initiator_id")
    respondent_id = ensure_object_id(payload.respondent_id, "respondent_id")
    if initiator_id == respondent_id:
        raise ValidationError("A user cannot open a dispute against themselves")

    links = {
        field: ensure_object_id(getattr(payload, field), field)
        for field in ("job_id", "contract_id", "milestone_id", "transaction_id")
        if getattr(payload, field) is not None
    }
    title = payload.title.strip()
    description = payload.description.strip()
    desired_outcome = payload.desired_outcome.strip()
    if not (title and description and desired_outcome):
        raise ValidationError("Title, description and desired outcome are required")

    now = utcnow()
    response_deadline = now + RESPONSE_WINDOW
    dispute = Dispute(
        created_at=now,
        updated_at=now,
        initiator_user_id=initiator_id,
        initiator_role=payload.initiator_role,
        respondent_user_id=respondent_id,
        respondent_role=_OPPOSITE_ROLE[payload.initiator_role],
        type=payload.type,
        sub_type=payload.sub_type,
        status=DisputeStatus.OPENED,
        priority=payload.priority,
        amount_disputed=payload.amount_disputed,
        amount_currency=payload.currency.upper(),
        hold_amount=payload.hold_amount,
        title=title,
        description=description,
        desired_outcome=desired_outcome,
        response_deadline=response_deadline,
        escalation_deadline=now + ESCALATION_WINDOW,
        next_action_date=response_deadline,
        mediation_required=False,
        tags=list(payload.tags),
        **links,
    )
    try:
        db.add(dispute)
        db.flush()
        _audit(
            db,
            actor=initiator_id,
            action="DISPUTE_OPENED",
            dispute=dispute,
            data={
                "respondent_id": respondent_id,
                "type": dispute.type.value,
                "priority": dispute.priority.value,
                "amount_disputed": str(dispute.amount_disputed) if dispute.amount_disputed is not None else None,
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(dispute)
    logger.info("Dispute opened", extra={"dispute_id": dispute.id, "initiator_id": initiator_id})
    return dispute


def add_message(
    db: Session,
    dispute_id: str,
    sender_id: str,
    role: ThreadRole | str,
    message: str,
    attachments: list[str] | None = None,
    *,
    visibility: MessageVisibility | str = MessageVisibility.ALL,
) -> DisputeMessage:
    """Append one entry to the thread and return it."""

    dispute = get_dispute(db, dispute_id)
    sender_id = ensure_object_id(sender_id, "sender_id")
    role = _coerce_enum(ThreadRole, role, "role")
    visibility = _coerce_enum(MessageVisibility, visibility, "visibility")
    message = (message or "").strip()
    if not message:
        raise ValidationError("Message cannot be empty", details={"field": "message"})

    try:
        _guard_open(db, dispute, "add a message")
        entry = DisputeMessage(
            seq=len(dispute.thread) + 1,
            sender_id=sender_id,
            role=role,
            message=message,
            attachments=list(attachments or []),
            visibility=visibility,
            timestamp=utcnow(),
        )
        dispute.thread.append(entry)
        db.flush()
        _audit(
            db,
            actor=sender_id,
            action="DISPUTE_MESSAGE_ADDED",
            dispute=dispute,
            data={"message_id": entry.id, "role": role.value, "visibility": visibility.value},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(entry)
    logger.info("Dispute message added", extra={"dispute_id": dispute.id, "message_id": entry.id})
    return entry


def add_evidence(db: Session, dispute_id: str, payload: EvidenceCreate, *, uploaded_by: str) -> DisputeEvidence:
    dispute = get_dispute(db, dispute_id)
    uploaded_by = ensure_object_id(uploaded_by, "uploaded_by")
    try:
        _guard_open(db, dispute, "add evidence")
        evidence = DisputeEvidence(
            seq=len(dispute.evidence) + 1,
            type=payload.type,
            title=payload.title,
            description=payload.description,
            url=payload.url,
            file_type=payload.file_type,
            file_size=payload.file_size,
            uploaded_by=uploaded_by,
            uploaded_at=utcnow(),
            verification_status=VerificationStatus.PENDING,
        )
        dispute.evidence.append(evidence)
        db.flush()
        _audit(
            db,
            actor=uploaded_by,
            action="DISPUTE_EVIDENCE_ADDED",
            dispute=dispute,
            data={"evidence_id": evidence.id, "type": evidence.type.value},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(evidence)
    logger.info("Dispute evidence added", extra={"dispute_id": dispute.id, "evidence_id": evidence.id})
    return evidence


def verify_evidence(
    db: Session,
    dispute_id: str,
    evidence_id: str,
    verification_status: VerificationStatus | str,
    *,
    admin_id: str,
) -> DisputeEvidence:
    dispute = get_dispute(db, dispute_id)
    evidence_id = ensure_object_id(evidence_id, "evidence_id")
    admin_id = ensure_object_id(admin_id, "admin_id")
    verification_status = _coerce_enum(VerificationStatus, verification_status, "verification_status")
    evidence = next((item for item in dispute.evidence if item.id == evidence_id), None)
    if evidence is None:
        raise NotFoundError("Evidence", evidence_id)

    try:
        _guard_open(db, dispute, "verify evidence")
        previous = evidence.verification_status
        evidence.verification_status = verification_status
        _audit(
            db,
            actor=admin_id,
            action="DISPUTE_EVIDENCE_VERIFIED",
            dispute=dispute,
            data={"evidence_id": evidence_id, "from": previous.value, "to": verification_status.value},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(evidence)
    return evidence


def update_dispute_status(
    db: Session, dispute_id: str, status: DisputeStatus | str, *, actor: Actor | str | None = None
) -> Dispute:
    """Move a dispute along the review workflow and recompute its next action date."""

    dispute = get_dispute(db, dispute_id)
    status = _coerce_enum(DisputeStatus, status, "status")
    sources = [source for source, targets in REVIEW_TRANSITIONS.items() if status in targets]
    if not sources:
        raise ValidationError(
            f"Status {status.value} is set through its own operation",
            details={"status": status.value},
        )

    now = utcnow()
    previous = dispute.status
    values: dict[str, Any] = {
        "status": status,
        "next_action_date": next_action_date(status, now=now, response_deadline=dispute.response_deadline),
    }
    if status == DisputeStatus.MEDIATION and dispute.mediation_started_at is None:
        values["mediation_started_at"] = now

    try:
        guarded_update(db, dispute, allowed=sources, operation=f"move to {status.value}", updated_at=now, **values)
        _audit(
            db,
            actor=actor,
            action="DISPUTE_STATUS_UPDATED",
            dispute=dispute,
            data={"from": previous.value, "to": status.value},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(dispute)
    logger.info(
        "Dispute status updated",
        extra={"dispute_id": dispute.id, "from": previous.value, "to": status.value},
    )
    return dispute


def assign_dispute(db: Session, dispute_id: str, admin_id: str, *, priority: Any = None) -> Dispute:
    dispute = get_dispute(db, dispute_id)
    admin_id = ensure_object_id(admin_id, "admin_id")
    values: dict[str, Any] = {"assigned_to": admin_id, "assigned_at": utcnow()}
    if priority is not None:
        priority = _coerce_enum(DisputePriority, priority, "priority")
        values["admin_priority"] = priority
    try:
        guarded_update(db, dispute, forbidden=TERMINAL_DISPUTE_STATUSES, operation="be assigned", **values)
        _audit(
            db,
            actor=admin_id,
            action="DISPUTE_ASSIGNED",
            dispute=dispute,
            data={"assigned_to": admin_id, "priority": getattr(priority, "value", priority)},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(dispute)
    logger.info("Dispute assigned", extra={"dispute_id": dispute.id, "assigned_to": admin_id})
    return dispute


def add_admin_note(db: Session, dispute_id: str, author_id: str, content: str) -> DisputeNote:
    dispute = get_dispute(db, dispute_id)
    author_id = ensure_object_id(author_id, "author_id")
    content = (content or "").strip()
    if not content:
        raise ValidationError("Note cannot be empty", details={"field": "content"})
    try:
        _guard_open(db, dispute, "take a note")
        note = _add_note(dispute, NoteKind.ADMIN, content, author_id=author_id, at=utcnow())
        db.flush()
        _audit(db, actor=author_id, action="DISPUTE_NOTE_ADDED", dispute=dispute, data={"note_id": note.id})
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(note)
    return note


def resolve_dispute(
    db: Session,
    dispute_id: str,
    resolution: DisputeResolutionCreate | Mapping[str, Any],
    admin_id: str,
) -> Dispute:
    """Record the outcome and close the dispute. Terminal."""

    if not isinstance(resolution, DisputeResolutionCreate):
        try:
            resolution = DisputeResolutionCreate.model_validate(resolution)
        except pydantic.ValidationError as exc:
            raise ValidationError(
                "Invalid resolution",
                details={"fields": [".".join(str(part) for part in err["loc"]) for err in exc.errors()]},
            ) from exc

    dispute = get_dispute(db, dispute_id)
    admin_id = ensure_object_id(admin_id, "admin_id")
    now = utcnow()
    values: dict[str, Any] = {
        "status": DisputeStatus.RESOLVED,
        "next_action_date": None,
        "resolved_at": now,
        "resolution_outcome": resolution.outcome,
        "resolution_description": resolution.description,
        "resolution_amount": resolution.amount,
        "resolution_currency": (
            (resolution.currency or dispute.amount_currency).upper() if resolution.amount is not None else None
        ),
        "resolved_by": admin_id,
        "resolution_resolved_at": now,
    }
    if dispute.mediation_started_at is not None and dispute.mediation_ended_at is None:
        values["mediation_ended_at"] = now

    try:
        guarded_update(db, dispute, forbidden=TERMINAL_DISPUTE_STATUSES, operation="resolve", **values)
        _audit(
            db,
            actor=admin_id,
            action="DISPUTE_RESOLVED",
            dispute=dispute,
            data={
                "outcome": resolution.outcome.value,
                "amount": str(resolution.amount) if resolution.amount is not None else None,
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(dispute)
    logger.info(
        "Dispute resolved",
        extra={"dispute_id": dispute.id, "outcome": resolution.outcome.value, "resolved_by": admin_id},
    )
    return dispute


def respond_to_resolution(db: Session, dispute_id: str, user_id: str, accepted: bool) -> Dispute:
    """Record whether the initiator or respondent accepts the resolution."""

    dispute = get_dispute(db, dispute_id)
    user_id = ensure_object_id(user_id, "user_id")
    if user_id == dispute.initiator_user_id:
        side = "initiator"
    elif user_id == dispute.respondent_user_id:
        side = "respondent"
    else:
        raise PermissionDeniedError("Only dispute parties can respond to a resolution")

    try:
        guarded_update(
            db,
            dispute,
            allowed=(DisputeStatus.RESOLVED,),
            operation="record a resolution response",
            **{f"accepted_by_{side}": bool(accepted), f"accepted_by_{side}_at": utcnow()},
        )
        _audit(
            db,
            actor=user_id,
            action="DISPUTE_RESOLUTION_RESPONSE",
            dispute=dispute,
            data={"side": side, "accepted": bool(accepted)},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(dispute)
    logger.info("Resolution response recorded", extra={"dispute_id": dispute.id, "side": side})
    return dispute


def escalate_dispute(
    db: Session, dispute_id: str, reason: str, *, actor: Actor | str | None = None
) -> Dispute:
    dispute = get_dispute(db, dispute_id)
    author = Actor.parse(actor)
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Escalation reason is required", details={"field": "reason"})

    now = utcnow()
    try:
        guarded_update(
            db,
            dispute,
            forbidden=_NOT_ESCALATABLE,
            operation="escalate",
            status=DisputeStatus.ESCALATED,
            next_action_date=None,
            mediation_required=True,
            updated_at=now,
        )
        _add_note(dispute, NoteKind.SYSTEM, f"Dispute escalated: {reason}", author_id=author.user_id, at=now)
        _audit(db, actor=author, action="DISPUTE_ESCALATED", dispute=dispute, data={"reason": reason})
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(dispute)
    logger.info("Dispute escalated", extra={"dispute_id": dispute.id, "reason": reason})
    return dispute


def cancel_dispute(db: Session, dispute_id: str, user_id: str, reason: str) -> Dispute:
    dispute = get_dispute(db, dispute_id)
    user_id = ensure_object_id(user_id, "user_id")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Cancellation reason is required", details={"field": "reason"})

    now = utcnow()
    try:
        guarded_update(
            db,
            dispute,
            forbidden=TERMINAL_DISPUTE_STATUSES,
            operation="cancel",
            status=DisputeStatus.CANCELLED,
            next_action_date=None,
            updated_at=now,
        )
        _add_note(dispute, NoteKind.SYSTEM, f"Dispute cancelled: {reason}", author_id=user_id, at=now)
        _audit(db, actor=user_id, action="DISPUTE_CANCELLED", dispute=dispute, data={"reason": reason})
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(dispute)
    logger.info("Dispute cancelled", extra={"dispute_id": dispute.id})
    return dispute


def get_user_disputes(
    db: Session,
    user_id: str,
    *,
    status: DisputeStatus | None = None,
    type: DisputeType | None = None,
    page: int = 1,
    limit: int = 10,
) -> list[Dispute]:
    """Disputes where ``user_id`` is initiator or respondent, newest first."""

    user_id = ensure_object_id(user_id, "user_id")
    if page < 1 or not 1 <= limit <= 100:
        raise ValidationError("Invalid pagination", details={"page": page, "limit": limit})

    stmt = select(Dispute).where(
        or_(Dispute.initiator_user_id == user_id, Dispute.respondent_user_id == user_id)
    )
    if status is not None:
        stmt = stmt.where(Dispute.status == status)
    if type is not None:
        stmt = stmt.where(Dispute.type == type)
    stmt = stmt.order_by(Dispute.created_at.desc(), Dispute.id.desc()).offset((page - 1) * limit).limit(limit)
    return list(db.scalars(stmt))


def get_disputes_requiring_attention(db: Session, *, now: datetime | None = None) -> list[Dispute]:
    """Open disputes whose next action is due, most urgent first.

    The admin priority set on assignment takes precedence over the priority
    chosen by the initiator.
    """

    now = now or utcnow()
    effective = func.coalesce(Dispute.admin_priority, Dispute.priority)
    rank = case(*((effective == priority, value) for priority, value in PRIORITY_RANK.items()), else_=0)
    stmt = (
        select(Dispute)
        .where(
            Dispute.status.not_in(TERMINAL_DISPUTE_STATUSES),
            Dispute.next_action_date.is_not(None),
            Dispute.next_action_date <= now,
        )
        .order_by(rank.desc(), Dispute.next_action_date.asc())
    )
    return list(db.scalars(stmt))


def get_dispute_stats(
    db: Session, *, user_id: str | None = None, type: DisputeType | None = None
) -> list[dict[str, Any]]:
    stmt = select(
        Dispute.status,
        func.count(Dispute.id),
        func.coalesce(func.sum(func.coalesce(Dispute.amount_disputed, 0)), 0),
    )
    if user_id is not None:
        user_id = ensure_object_id(user_id, "user_id")
        stmt = stmt.where(or_(Dispute.initiator_user_id == user_id, Dispute.respondent_user_id == user_id))
    if type is not None:
        stmt = stmt.where(Dispute.type == type)
    stmt = stmt.group_by(Dispute.status)

    ordering = list(DisputeStatus)
    rows = sorted(db.execute(stmt), key=lambda row: ordering.index(row[0]))
    return [
        {"status": status, "count": count, "total_amount": Decimal(str(total))}
        for status, count, total in rows
    ]


def escalate_overdue_disputes(db: Session, *, now: datetime | None = None) -> int:
    """Escalate every open dispute past its escalation deadline; returns how many."""

    now = now or utcnow()
    overdue = db.scalars(
        select(Dispute.id).where(
            Dispute.status.not_in(_NOT_ESCALATABLE),
            Dispute.escalation_deadline <= now,
        )
    ).all()

    escalated = 0
    for dispute_id in overdue:
        try:
            escalate_dispute(db, dispute_id, OVERDUE_ESCALATION_REASON, actor=Actor.system())
        except InvalidStateError:
            logger.info("Overdue dispute already closed", extra={"dispute_id": dispute_id})
            continue
        escalated += 1
    return escalated


__all__ = [
    "NEXT_ACTION_OFFSETS",
    "OVERDUE_ESCALATION_REASON",
    "REVIEW_TRANSITIONS",
    "add_admin_note",
    "add_evidence",
    "add_message",
    "assign_dispute",
    "cancel_dispute",
    "escalate_dispute",
    "escalate_overdue_disputes",
    "get_dispute",
    "get_dispute_stats",
    "get_disputes_requiring_attention",
    "get_user_disputes",
    "next_action_date",
    "open_dispute",
    "resolve_dispute",
    "respond_to_resolution",
    "update_dispute_status",
    "verify_evidence",
]
