"""Ledger transaction service."""
import logging
import secrets
import time
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from trustdesk.models.transaction import (
    ProcessingAttempt,
    Transaction,
    TransactionStatus,
    TransactionStatusEntry,
    TransactionType,
)
from trustdesk.schemas.transaction import TransactionCreate
from trustdesk.utils.audit import Actor, log_audit
from trustdesk.utils.errors import NotFoundError, ValidationError
from trustdesk.utils.ids import ensure_object_id, is_object_id
from trustdesk.utils.time import utcnow

logger = logging.getLogger(__name__)

_LINK_FIELDS = ("job_id", "contract_id", "milestone_id", "dispute_id", "escrow_id")


def generate_transaction_id() -> str:
    """Business id: ``TXN`` + epoch millis + a random suffix below 10000."""

    return f"TXN{int(time.time() * 1000)}{secrets.randbelow(10000)}"


def compute_total(amount: Decimal, *fees: Decimal | None) -> Decimal:
    return amount + sum((fee for fee in fees if fee is not None), Decimal("0"))


def apply_status(
    transaction: Transaction,
    status: TransactionStatus,
    *,
    reason: str | None = None,
    updated_by: str | None = None,
    at: datetime | None = None,
) -> None:
    """Set ``status`` and append exactly one history row, without committing."""

    now = at or utcnow()
    transaction.status = status
    transaction.status_history.append(
        TransactionStatusEntry(
            seq=len(transaction.status_history) + 1,
            status=status,
            reason=reason,
            updated_by=updated_by,
            timestamp=now,
        )
    )
    if status == TransactionStatus.COMPLETED:
        transaction.completed_at = now


def stage_transaction(
    db: Session, payload: TransactionCreate, *, actor: Actor | str | None = None
) -> Transaction:
    """Validate ``payload`` and add the new ledger row to the session.

    The caller owns the commit so a transaction can be written atomically with
    the escrow transition that produced it.
    """

    sender_id = ensure_object_id(payload.sender.user_id, "sender.user_id")
    recipient_id = ensure_object_id(payload.recipient.user_id, "recipient.user_id")
    links = {
        field: ensure_object_id(getattr(payload, field), field)
        for field in _LINK_FIELDS
        if getattr(payload, field) is not None
    }

    fees = payload.fees
    total = compute_total(payload.amount.value, fees.platform, fees.processing, fees.tax)
    if payload.total is not None and payload.total != total:
        raise ValidationError(
            "Transaction total must equal amount plus fees",
            details={"expected": str(total), "received": str(payload.total)},
        )

    has_fees = any(fee is not None for fee in (fees.platform, fees.processing, fees.tax))
    author = Actor.parse(actor)
    now = utcnow()
    transaction = Transaction(
        transaction_id=payload.transaction_id or generate_transaction_id(),
        reference=payload.reference,
        external_id=payload.external_id,
        sender_user_id=sender_id,
        sender_type=payload.sender.type,
        recipient_user_id=recipient_id,
        recipient_type=payload.recipient.type,
        type=payload.type,
        sub_type=payload.sub_type,
        description=payload.description,
        amount_value=payload.amount.value,
        amount_currency=payload.amount.currency,
        exchange_rate=payload.amount.exchange_rate,
        converted_value=payload.amount.converted_value,
        converted_currency=payload.amount.converted_currency,
        fee_platform=fees.platform,
        fee_processing=fees.processing,
        fee_tax=fees.tax,
        fee_currency=(fees.currency or payload.amount.currency) if has_fees else None,
        total_value=total,
        total_currency=payload.amount.currency,
        payment_method_type=payload.payment_method,
        status=TransactionStatus.PENDING,
        processor_name=payload.processor_name,
        processor_transaction_id=payload.processor_transaction_id,
        tags=list(payload.tags),
        **links,
    )
    apply_status(
        transaction,
        TransactionStatus.PENDING,
        reason="Transaction created",
        updated_by=author.user_id,
        at=now,
    )
    if payload.status != TransactionStatus.PENDING:
        apply_status(transaction, payload.status, updated_by=author.user_id, at=now)

    db.add(transaction)
    db.flush()
    log_audit(
        db,
        actor=author,
        action="TRANSACTION_CREATED",
        entity="Transaction",
        entity_id=transaction.id,
        data={
            "transaction_id": transaction.transaction_id,
            "type": transaction.type.value,
            "status": transaction.status.value,
            "amount": str(transaction.amount_value),
            "currency": transaction.amount_currency,
            "processor_transaction_id": transaction.processor_transaction_id,
        },
    )
    return transaction


def create_transaction(
    db: Session, payload: TransactionCreate, *, actor: Actor | str | None = None
) -> Transaction:
    """Create a ledger transaction with its initial ``pending`` history row."""

    try:
        transaction = stage_transaction(db, payload, actor=actor)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(transaction)
    logger.info(
        "Transaction created",
        extra={"transaction_id": transaction.transaction_id, "status": transaction.status.value},
    )
    return transaction


def get_transaction(db: Session, transaction_ref: str) -> Transaction:
    """Look a transaction up by primary key or business ``transaction_id``."""

    transaction = None
    if is_object_id(transaction_ref):
        transaction = db.get(Transaction, transaction_ref.lower())
    if transaction is None:
        transaction = db.scalars(
            select(Transaction).where(Transaction.transaction_id == transaction_ref)
        ).one_or_none()
    if transaction is None:
        raise NotFoundError("Transaction", transaction_ref)
    return transaction


def update_status(
    db: Session,
    transaction_pk: str,
    status: TransactionStatus,
    *,
    reason: str | None = None,
    updated_by: Actor | str | None = None,
) -> Transaction:
    transaction = get_transaction(db, transaction_pk)
    author = Actor.parse(updated_by)
    previous = transaction.status
    try:
        apply_status(transaction, status, reason=reason, updated_by=author.user_id)
        log_audit(
            db,
            actor=author,
            action="TRANSACTION_STATUS_UPDATED",
            entity="Transaction",
            entity_id=transaction.id,
            data={"from": previous.value, "to": status.value, "reason": reason},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(transaction)
    logger.info(
        "Transaction status updated",
        extra={"transaction_id": transaction.transaction_id, "from": previous.value, "to": status.value},
    )
    return transaction


def add_processing_attempt(
    db: Session,
    transaction_pk: str,
    status: str,
    *,
    error: dict[str, Any] | None = None,
) -> Transaction:
    """Append a processor attempt; an ``error`` also becomes the failure reason."""

    transaction = get_transaction(db, transaction_pk)
    try:
        transaction.attempts.append(
            ProcessingAttempt(
                seq=len(transaction.attempts) + 1,
                status=status,
                error=error,
                timestamp=utcnow(),
            )
        )
        transaction.processor_status = status
        if error:
            transaction.failure_reason = str(error.get("message") or error)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(transaction)
    logger.info(
        "Processing attempt recorded",
        extra={"transaction_id": transaction.transaction_id, "attempt_status": status},
    )
    return transaction


def _date_filters(stmt, start_date: datetime | None, end_date: datetime | None):
    if start_date is not None:
        stmt = stmt.where(Transaction.created_at >= start_date)
    if end_date is not None:
        stmt = stmt.where(Transaction.created_at <= end_date)
    return stmt


def get_user_transactions(
    db: Session,
    user_id: str,
    *,
    status: TransactionStatus | None = None,
    type: TransactionType | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = 100,
) -> list[Transaction]:
    """Transactions where ``user_id`` is sender or recipient, newest first."""

    user_id = ensure_object_id(user_id, "user_id")
    stmt = select(Transaction).where(
        or_(Transaction.sender_user_id == user_id, Transaction.recipient_user_id == user_id)
    )
    if status is not None:
        stmt = stmt.where(Transaction.status == status)
    if type is not None:
        stmt = stmt.where(Transaction.type == type)
    stmt = _date_filters(stmt, start_date, end_date)
    stmt = stmt.order_by(Transaction.created_at.desc(), Transaction.id.desc()).limit(limit)
    return list(db.scalars(stmt))


def get_transaction_stats(
    db: Session,
    *,
    user_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> list[dict[str, Any]]:
    """Counts and sums grouped by type, then by status within each type."""

    stmt = select(
        Transaction.type,
        Transaction.status,
        func.count(Transaction.id),
        func.coalesce(func.sum(Transaction.amount_value), 0),
    )
    if user_id is not None:
        user_id = ensure_object_id(user_id, "user_id")
        stmt = stmt.where(
            or_(Transaction.sender_user_id == user_id, Transaction.recipient_user_id == user_id)
        )
    stmt = _date_filters(stmt, start_date, end_date)
    stmt = stmt.group_by(Transaction.type, Transaction.status)

    grouped: dict[TransactionType, dict[str, Any]] = {}
    for txn_type, status, count, total in db.execute(stmt):
        amount = Decimal(str(total))
        bucket = grouped.setdefault(
            txn_type,
            {"type": txn_type, "statuses": [], "total_count": 0, "total_amount": Decimal("0")},
        )
        bucket["statuses"].append({"status": status, "count": count, "total_amount": amount})
        bucket["total_count"] += count
        bucket["total_amount"] += amount

    return [grouped[key] for key in sorted(grouped, key=lambda item: item.value)]


__all__ = [
    "add_processing_attempt",
    "apply_status",
    "compute_total",
    "create_transaction",
    "generate_transaction_id",
    "get_transaction",
    "get_transaction_stats",
    "get_user_transactions",
    "stage_transaction",
    "update_status",
]
