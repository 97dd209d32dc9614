"""Escrow domain services."""
import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from trustdesk.config import get_settings
from trustdesk.models.escrow import (
    ACTIVE_ESCROW_STATUSES,
    Escrow,
    EscrowAction,
    EscrowHistoryEntry,
    EscrowResolution,
    EscrowStatus,
    ReleaseCondition,
)
from trustdesk.models.transaction import (
    LedgerPaymentMethod,
    RecipientType,
    SenderType,
    Transaction,
    TransactionStatus,
    TransactionSubType,
    TransactionType,
)
from trustdesk.schemas.escrow import EscrowCreate
from trustdesk.schemas.fees import FeeType
from trustdesk.schemas.transaction import (
    FeeComponents,
    MoneyAmount,
    RecipientParty,
    SenderParty,
    TransactionCreate,
)
from trustdesk.services.fees import CENT, calculate_fees
from trustdesk.services.transactions import apply_status, stage_transaction
from trustdesk.services.transitions import guarded_update
from trustdesk.utils.audit import Actor, log_audit
from trustdesk.utils.errors import InvalidStateError, NotFoundError, ValidationError
from trustdesk.utils.ids import ensure_object_id
from trustdesk.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

AUTO_RELEASE_NOTE = "Auto-released"


def _to_amount(value: Any, field: str = "amount") -> Decimal:
    """Parse a positive money amount with at most two decimals."""

    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required", details={"field": field})
    try:
        # str() avoids binary float artefacts
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValidationError(f"Invalid {field}", details={"field": field}) from exc
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"{field} must be greater than 0", details={"field": field, "value": str(value)})
    if amount != amount.quantize(CENT):
        raise ValidationError(f"{field} must have at most two decimals", details={"field": field})
    return amount


def _append_history(
    escrow: Escrow,
    action: EscrowAction,
    performed_by: str,
    *,
    at: datetime,
    amount: Decimal | None = None,
    notes: str | None = None,
) -> None:
    escrow.history.append(
        EscrowHistoryEntry(
            seq=len(escrow.history) + 1,
            action=action,
            performed_by=performed_by,
            amount=amount,
            notes=notes,
            at=at,
        )
    )


def _audit(db: Session, *, actor: Actor | str | None, action: str, escrow: Escrow, data: dict[str, Any]) -> None:
    log_audit(db, actor=actor, action=action, entity="Escrow", entity_id=escrow.id, data=data)


def _stage_release_transaction(
    db: Session, escrow: Escrow, amount: Decimal, *, actor: Actor, notes: str | None = None
) -> Transaction:
    """Stage the completed ``escrow_release`` ledger row paying the freelancer."""

    fees = calculate_fees(amount, FeeType.escrow)
    payload = TransactionCreate(
        sender=SenderParty(user_id=escrow.client_id, type=SenderType.CLIENT),
        recipient=RecipientParty(user_id=escrow.freelancer_id, type=RecipientType.FREELANCER),
        job_id=escrow.job_id,
        escrow_id=escrow.id,
        type=TransactionType.ESCROW_RELEASE,
        sub_type=TransactionSubType.ESCROW_DISBURSEMENT,
        description=notes or f"Escrow release for job {escrow.job_id}",
        amount=MoneyAmount(value=amount, currency=escrow.currency),
        fees=FeeComponents(platform=fees.platform, processing=fees.processing, currency=escrow.currency),
        payment_method=LedgerPaymentMethod(escrow.payment_method.value),
        status=TransactionStatus.COMPLETED,
    )
    return stage_transaction(db, payload, actor=actor)


def _refund_funding_transactions(db: Session, escrow: Escrow, *, actor: Actor, at: datetime) -> list[str]:
    stmt = select(Transaction).where(
        or_(Transaction.id.in_(list(escrow.transaction_ids)), Transaction.escrow_id == escrow.id),
        Transaction.type == TransactionType.ESCROW_FUND,
        Transaction.status != TransactionStatus.REFUNDED,
    )
    refunded: list[str] = []
    for transaction in db.scalars(stmt):
        apply_status(
            transaction,
            TransactionStatus.REFUNDED,
            reason="Escrow refunded",
            updated_by=actor.user_id,
            at=at,
        )
        refunded.append(transaction.id)
    return refunded


def get_escrow(db: Session, escrow_id: str) -> Escrow:
    escrow_id = ensure_object_id(escrow_id, "escrow_id")
    escrow = db.get(Escrow, escrow_id)
    if escrow is None:
        raise NotFoundError("Escrow", escrow_id)
    return escrow


def create_escrow(db: Session, payload: EscrowCreate, *, actor: Actor | str | None = None) -> Escrow:
    """Create a ``pending`` escrow; the fee is quoted once from the escrow fee table."""

    if payload.client_id is None:
        raise ValidationError("client_id is required", details={"field": "client_id"})
    job_id = ensure_object_id(payload.job_id, "job_id")
    client_id = ensure_object_id(payload.client_id, "client_id")
    freelancer_id = ensure_object_id(payload.freelancer_id, "freelancer_id")
    gateway_id = ensure_object_id(payload.payment_gateway_id, "payment_gateway_id")
    amount = _to_amount(payload.amount)

    settings = get_settings()
    now = utcnow()
    expiry_date = payload.expiry_date or now + timedelta(days=settings.ESCROW_DEFAULT_EXPIRY_DAYS)

    conditions = []
    for position, condition in enumerate(payload.release_conditions):
        if condition.amount is not None and condition.amount > amount:
            raise ValidationError(
                "Release condition amount exceeds escrow amount",
                details={"position": position, "amount": str(condition.amount)},
            )
        conditions.append(
            ReleaseCondition(
                position=position,
                type=condition.type,
                description=condition.description,
                amount=condition.amount,
                milestone_id=(
                    ensure_object_id(condition.milestone_id, "milestone_id")
                    if condition.milestone_id is not None
                    else None
                ),
                completed=False,
            )
        )

    escrow = Escrow(
        job_id=job_id,
        client_id=client_id,
        freelancer_id=freelancer_id,
        amount=amount,
        currency=payload.currency,
        fee_amount=calculate_fees(amount, FeeType.escrow).total,
        status=EscrowStatus.PENDING,
        expiry_date=expiry_date,
        payment_gateway_id=gateway_id,
        payment_method=payload.payment_method,
        transaction_ids=[],
        is_disputed=False,
        auto_release_enabled=payload.auto_release.enabled,
        auto_release_days=payload.auto_release.time_threshold or settings.ESCROW_AUTO_RELEASE_DAYS,
        require_milestone_completion=payload.auto_release.require_milestone_completion,
        release_conditions=conditions,
    )
    try:
        db.add(escrow)
        db.flush()
        _audit(
            db,
            actor=actor or client_id,
            action="ESCROW_CREATED",
            escrow=escrow,
            data={
                "status": escrow.status.value,
                "amount": str(escrow.amount),
                "fee_amount": str(escrow.fee_amount),
                "currency": escrow.currency,
                "job_id": job_id,
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(escrow)
    logger.info("Escrow created", extra={"escrow_id": escrow.id, "job_id": job_id})
    return escrow


def fund_escrow(
    db: Session, escrow_id: str, transaction_id: str, *, actor: Actor | str | None = None
) -> Escrow:
    """Move ``pending -> funded`` and attach the funding transaction id."""

    escrow = get_escrow(db, escrow_id)
    transaction_id = ensure_object_id(transaction_id, "transaction_id")
    now = utcnow()
    try:
        guarded_update(
            db,
            escrow,
            allowed=(EscrowStatus.PENDING,),
            operation="fund",
            status=EscrowStatus.FUNDED,
            funded_at=now,
            transaction_ids=[*escrow.transaction_ids, transaction_id],
        )
        _append_history(escrow, EscrowAction.FUNDED, escrow.client_id, at=now, amount=escrow.amount)
        _audit(
            db,
            actor=actor or escrow.client_id,
            action="ESCROW_FUNDED",
            escrow=escrow,
            data={"transaction_id": transaction_id, "amount": str(escrow.amount)},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(escrow)
    logger.info("Escrow funded", extra={"escrow_id": escrow.id, "transaction_id": transaction_id})
    return escrow


def _release(
    db: Session,
    escrow: Escrow,
    *,
    performed_by: str,
    amount: Decimal,
    notes: str | None,
    actor: Actor,
) -> Escrow:
    now = utcnow()
    try:
        guarded_update(
            db,
            escrow,
            allowed=(EscrowStatus.FUNDED,),
            operation="release",
            status=EscrowStatus.RELEASED,
            released_at=now,
        )
        transaction = _stage_release_transaction(db, escrow, amount, actor=actor, notes=notes)
        escrow.transaction_ids = [*escrow.transaction_ids, transaction.id]
        _append_history(escrow, EscrowAction.RELEASED, performed_by, at=now, amount=amount, notes=notes)
        _audit(
            db,
            actor=actor,
            action="ESCROW_RELEASED",
            escrow=escrow,
            data={"amount": str(amount), "transaction_id": transaction.id, "notes": notes},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(escrow)
    logger.info(
        "Escrow released",
        extra={"escrow_id": escrow.id, "amount": str(amount), "performed_by": performed_by},
    )
    return escrow


def release_escrow(
    db: Session,
    escrow_id: str,
    user_id: str,
    amount: Any = None,
    notes: str | None = None,
) -> Escrow:
    """Release ``amount`` (default: everything) to the freelancer. Terminal."""

    escrow = get_escrow(db, escrow_id)
    user_id = ensure_object_id(user_id, "user_id")
    if escrow.status != EscrowStatus.FUNDED:
        raise InvalidStateError(
            f"Escrow cannot release while {escrow.status.value}",
            details={"id": escrow.id, "status": escrow.status.value, "operation": "release"},
        )

    release_amount = escrow.amount if amount is None else _to_amount(amount)
    if release_amount > escrow.amount:
        raise ValidationError(
            "Release amount exceeds escrow amount",
            details={"amount": str(release_amount), "escrow_amount": str(escrow.amount)},
        )
    return _release(
        db, escrow, performed_by=user_id, amount=release_amount, notes=notes, actor=Actor.user(user_id)
    )


def dispute_escrow(
    db: Session,
    escrow_id: str,
    user_id: str,
    reason: str,
    *,
    dispute_id: str | None = None,
) -> Escrow:
    escrow = get_escrow(db, escrow_id)
    user_id = ensure_object_id(user_id, "user_id")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Dispute reason is required", details={"field": "reason"})
    if dispute_id is not None:
        dispute_id = ensure_object_id(dispute_id, "dispute_id")

    now = utcnow()
    try:
        guarded_update(
            db,
            escrow,
            allowed=(EscrowStatus.FUNDED,),
            operation="dispute",
            status=EscrowStatus.DISPUTED,
            is_disputed=True,
            disputed_at=now,
            dispute_id=dispute_id,
        )
        _append_history(escrow, EscrowAction.DISPUTED, user_id, at=now, notes=reason)
        _audit(
            db,
            actor=user_id,
            action="ESCROW_DISPUTED",
            escrow=escrow,
            data={"reason": reason, "dispute_id": dispute_id},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(escrow)
    logger.info("Escrow disputed", extra={"escrow_id": escrow.id, "dispute_id": dispute_id})
    return escrow


def check_auto_release(db: Session, escrow_id: str, *, now: datetime | None = None) -> bool:
    """Release to the freelancer once the holding period elapsed.

    Returns ``True`` only when this call performed the release. Safe to call
    repeatedly and concurrently: only one caller wins ``funded -> released``.
    """

    escrow = get_escrow(db, escrow_id)
    now = now or utcnow()
    if not escrow.auto_release_enabled or escrow.status != EscrowStatus.FUNDED:
        return False

    funded_at = ensure_utc(escrow.funded_at)
    if funded_at is None:
        return False
    days_held = (now - funded_at) / timedelta(days=1)
    if days_held < escrow.auto_release_days:
        return False
    if escrow.require_milestone_completion and not all(c.completed for c in escrow.release_conditions):
        logger.debug("Auto-release blocked by open conditions", extra={"escrow_id": escrow.id})
        return False

    try:
        _release(
            db,
            escrow,
            performed_by=escrow.freelancer_id,
            amount=escrow.amount,
            notes=AUTO_RELEASE_NOTE,
            actor=Actor.system(),
        )
    except InvalidStateError:
        logger.info("Auto-release lost race", extra={"escrow_id": escrow.id})
        return False
    return True


def refund_escrow(db: Session, escrow_id: str, user_id: str, notes: str | None = None) -> Escrow:
    """Return funds to the client. Only from ``funded``."""

    escrow = get_escrow(db, escrow_id)
    user_id = ensure_object_id(user_id, "user_id")
    actor = Actor.user(user_id)
    now = utcnow()
    try:
        guarded_update(
            db,
            escrow,
            allowed=(EscrowStatus.FUNDED,),
            operation="refund",
            status=EscrowStatus.REFUNDED,
            refunded_at=now,
        )
        refunded = _refund_funding_transactions(db, escrow, actor=actor, at=now)
        _append_history(escrow, EscrowAction.REFUNDED, user_id, at=now, amount=escrow.amount, notes=notes)
        _audit(
            db,
            actor=actor,
            action="ESCROW_REFUNDED",
            escrow=escrow,
            data={"amount": str(escrow.amount), "refunded_transactions": refunded, "notes": notes},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(escrow)
    logger.info("Escrow refunded", extra={"escrow_id": escrow.id})
    return escrow


def resolve_escrow_dispute(
    db: Session,
    escrow_id: str,
    admin_id: str,
    resolution: EscrowResolution | str,
    *,
    release_amount: Any = None,
    notes: str | None = None,
) -> Escrow:
    """Settle a disputed escrow by releasing, refunding or splitting it."""

    escrow = get_escrow(db, escrow_id)
    admin_id = ensure_object_id(admin_id, "admin_id")
    if escrow.status != EscrowStatus.DISPUTED:
        raise InvalidStateError(
            f"Escrow cannot resolve a dispute while {escrow.status.value}",
            details={"id": escrow.id, "status": escrow.status.value, "operation": "resolve"},
        )
    try:
        resolution = EscrowResolution(resolution)
    except ValueError as exc:
        raise ValidationError("Invalid resolution", details={"resolution": str(resolution)}) from exc

    if resolution == EscrowResolution.SPLIT:
        amount = _to_amount(release_amount, "release_amount")
        if amount >= escrow.amount:
            raise ValidationError(
                "Split release amount must be below the escrow amount",
                details={"release_amount": str(amount), "escrow_amount": str(escrow.amount)},
            )
    else:
        amount = escrow.amount

    actor = Actor.user(admin_id)
    now = utcnow()
    values: dict[str, Any] = {"dispute_resolved_at": now, "dispute_resolution": resolution}
    if resolution == EscrowResolution.REFUNDED:
        values.update(status=EscrowStatus.REFUNDED, refunded_at=now)
    else:
        values.update(status=EscrowStatus.RELEASED, released_at=now)

    try:
        guarded_update(db, escrow, allowed=(EscrowStatus.DISPUTED,), operation="resolve", **values)
        transaction_id = None
        if resolution == EscrowResolution.REFUNDED:
            _refund_funding_transactions(db, escrow, actor=actor, at=now)
        else:
            transaction = _stage_release_transaction(db, escrow, amount, actor=actor, notes=notes)
            transaction_id = transaction.id
            escrow.transaction_ids = [*escrow.transaction_ids, transaction.id]
        _append_history(escrow, EscrowAction.RESOLVED, admin_id, at=now, amount=amount, notes=notes)
        _audit(
            db,
            actor=actor,
            action="ESCROW_DISPUTE_RESOLVED",
            escrow=escrow,
            data={
                "resolution": resolution.value,
                "amount": str(amount),
                "transaction_id": transaction_id,
                "notes": notes,
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(escrow)
    logger.info(
        "Escrow dispute resolved",
        extra={"escrow_id": escrow.id, "resolution": resolution.value, "amount": str(amount)},
    )
    return escrow


def complete_release_condition(db: Session, escrow_id: str, condition_id: str, user_id: str) -> Escrow:
    escrow = get_escrow(db, escrow_id)
    condition_id = ensure_object_id(condition_id, "condition_id")
    user_id = ensure_object_id(user_id, "user_id")
    condition = next((c for c in escrow.release_conditions if c.id == condition_id), None)
    if condition is None:
        raise NotFoundError("ReleaseCondition", condition_id)
    if condition.completed:
        return escrow

    now = utcnow()
    try:
        guarded_update(
            db,
            escrow,
            allowed=(EscrowStatus.PENDING, EscrowStatus.FUNDED),
            operation="complete a release condition",
        )
        condition.completed = True
        condition.completed_at = now
        _audit(
            db,
            actor=user_id,
            action="ESCROW_CONDITION_COMPLETED",
            escrow=escrow,
            data={"condition_id": condition_id, "type": condition.type.value},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(escrow)
    logger.info("Release condition completed", extra={"escrow_id": escrow.id, "condition_id": condition_id})
    return escrow


def get_active_escrows(db: Session, user_id: str) -> list[Escrow]:
    """Funded or disputed escrows where ``user_id`` is a party, newest first."""

    user_id = ensure_object_id(user_id, "user_id")
    stmt = (
        select(Escrow)
        .where(
            Escrow.status.in_(ACTIVE_ESCROW_STATUSES),
            or_(Escrow.client_id == user_id, Escrow.freelancer_id == user_id),
        )
        .order_by(Escrow.created_at.desc(), Escrow.id.desc())
    )
    return list(db.scalars(stmt))


def get_escrow_stats(db: Session, user_id: str) -> list[dict[str, Any]]:
    user_id = ensure_object_id(user_id, "user_id")
    stmt = (
        select(Escrow.status, func.count(Escrow.id), func.coalesce(func.sum(Escrow.amount), 0))
        .where(or_(Escrow.client_id == user_id, Escrow.freelancer_id == user_id))
        .group_by(Escrow.status)
    )
    ordering = list(EscrowStatus)
    rows = sorted(db.execute(stmt), key=lambda row: ordering.index(row[0]))
    return [
        {"status": status, "count": count, "total_amount": Decimal(str(total))}
        for status, count, total in rows
    ]


def list_auto_release_candidates(db: Session, *, now: datetime | None = None) -> list[str]:
    """Ids of funded escrows whose holding period may have elapsed."""

    now = now or utcnow()
    stmt = select(Escrow.id, Escrow.funded_at, Escrow.auto_release_days).where(
        Escrow.status == EscrowStatus.FUNDED,
        Escrow.auto_release_enabled.is_(True),
        Escrow.funded_at.is_not(None),
    )
    return [
        escrow_id
        for escrow_id, funded_at, days in db.execute(stmt)
        if ensure_utc(funded_at) + timedelta(days=days) <= now
    ]


__all__ = [
    "AUTO_RELEASE_NOTE",
    "check_auto_release",
    "complete_release_condition",
    "create_escrow",
    "dispute_escrow",
    "fund_escrow",
    "get_active_escrows",
    "get_escrow",
    "get_escrow_stats",
    "list_auto_release_candidates",
    "refund_escrow",
    "release_escrow",
    "resolve_escrow_dispute",
]
