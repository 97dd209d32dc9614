"""Ledger transaction endpoints."""
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from trustdesk.db import get_db
from trustdesk.models.api_key import ApiKey, ApiScope
from trustdesk.models.transaction import Transaction, TransactionStatus, TransactionType
from trustdesk.schemas.transaction import (
    ProcessingAttemptCreate,
    TransactionCreate,
    TransactionRead,
    TransactionStatRead,
    TransactionStatusUpdate,
)
from trustdesk.security import is_staff, require_api_key, require_scope, require_user_id
from trustdesk.services import transactions as transactions_service
from trustdesk.utils.audit import actor_from_api_key
from trustdesk.utils.errors import PermissionDeniedError

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.post("", response_model=TransactionRead, status_code=status.HTTP_201_CREATED)
def create_transaction(
    payload: TransactionCreate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.admin})),
) -> Transaction:
    return transactions_service.create_transaction(db, payload, actor=actor_from_api_key(api_key))


@router.get("", response_model=list[TransactionRead])
def list_my_transactions(
    status_filter: TransactionStatus | None = Query(default=None, alias="status"),
    type_filter: TransactionType | None = Query(default=None, alias="type"),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> list[Transaction]:
    return transactions_service.get_user_transactions(
        db,
        user_id,
        status=status_filter,
        type=type_filter,
        start_date=start_date,
        end_date=end_date,
    )


@router.get(
    "/stats",
    response_model=list[TransactionStatRead],
    dependencies=[Depends(require_scope({ApiScope.admin, ApiScope.support}))],
)
def transaction_stats(
    user_id: str | None = Query(default=None),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[dict]:
    return transactions_service.get_transaction_stats(
        db, user_id=user_id, start_date=start_date, end_date=end_date
    )


@router.get("/{transaction_ref}", response_model=TransactionRead)
def read_transaction(
    transaction_ref: str,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key),
) -> Transaction:
    transaction = transactions_service.get_transaction(db, transaction_ref)
    if not is_staff(api_key) and api_key.user_id not in {
        transaction.sender_user_id,
        transaction.recipient_user_id,
    }:
        raise PermissionDeniedError("Not a party to this transaction")
    return transaction


@router.post("/{transaction_ref}/status", response_model=TransactionRead)
def update_transaction_status(
    transaction_ref: str,
    payload: TransactionStatusUpdate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.admin})),
) -> Transaction:
    return transactions_service.update_status(
        db,
        transaction_ref,
        payload.status,
        reason=payload.reason,
        updated_by=actor_from_api_key(api_key),
    )


@router.post(
    "/{transaction_ref}/attempts",
    response_model=TransactionRead,
    dependencies=[Depends(require_scope({ApiScope.admin}))],
)
def add_processing_attempt(
    transaction_ref: str,
    payload: ProcessingAttemptCreate,
    db: Session = Depends(get_db),
) -> Transaction:
    return transactions_service.add_processing_attempt(
        db, transaction_ref, payload.status, error=payload.error
    )
