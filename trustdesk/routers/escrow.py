"""Escrow endpoints."""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from trustdesk.db import get_db
from trustdesk.models.api_key import ApiKey, ApiScope
from trustdesk.models.escrow import Escrow
from trustdesk.schemas.escrow import (
    AutoReleaseCheckRead,
    EscrowCreate,
    EscrowDisputeCreate,
    EscrowFund,
    EscrowRead,
    EscrowRefund,
    EscrowRelease,
    EscrowResolve,
    EscrowStatRead,
)
from trustdesk.security import is_staff, require_api_key, require_scope, require_user_id
from trustdesk.services import escrow as escrow_service
from trustdesk.utils.errors import PermissionDeniedError

router = APIRouter(prefix="/escrows", tags=["escrow"])

_ANY_SCOPE = {ApiScope.user, ApiScope.support, ApiScope.admin}


def _ensure_party(escrow: Escrow, user_id: str, api_key: ApiKey, *, allowed: set[str] | None = None) -> None:
    """Parties (or the subset in ``allowed``) may act; admins always may."""

    if api_key.scope == ApiScope.admin:
        return
    parties = allowed if allowed is not None else {escrow.client_id, escrow.freelancer_id}
    if user_id not in parties:
        raise PermissionDeniedError("Not allowed to act on this escrow", details={"escrow_id": escrow.id})


@router.post("", response_model=EscrowRead, status_code=status.HTTP_201_CREATED)
def create_escrow(
    payload: EscrowCreate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(_ANY_SCOPE)),
    user_id: str = Depends(require_user_id),
) -> Escrow:
    if payload.client_id is None:
        payload = payload.model_copy(update={"client_id": user_id})
    elif payload.client_id.lower() != user_id and api_key.scope != ApiScope.admin:
        raise PermissionDeniedError("Escrows can only be created by their client")
    return escrow_service.create_escrow(db, payload, actor=user_id)


@router.get("", response_model=list[EscrowRead])
def list_active_escrows(
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> list[Escrow]:
    return escrow_service.get_active_escrows(db, user_id)


@router.get("/stats", response_model=list[EscrowStatRead])
def escrow_stats(
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> list[dict]:
    return escrow_service.get_escrow_stats(db, user_id)


@router.get("/{escrow_id}", response_model=EscrowRead)
def read_escrow(
    escrow_id: str,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key),
) -> Escrow:
    escrow = escrow_service.get_escrow(db, escrow_id)
    if not is_staff(api_key):
        _ensure_party(escrow, api_key.user_id, api_key)
    return escrow


@router.post("/{escrow_id}/fund", response_model=EscrowRead)
def fund_escrow(
    escrow_id: str,
    payload: EscrowFund,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key),
    user_id: str = Depends(require_user_id),
) -> Escrow:
    escrow = escrow_service.get_escrow(db, escrow_id)
    _ensure_party(escrow, user_id, api_key, allowed={escrow.client_id})
    return escrow_service.fund_escrow(db, escrow.id, payload.transaction_id, actor=user_id)


@router.post("/{escrow_id}/release", response_model=EscrowRead)
def release_escrow(
    escrow_id: str,
    payload: EscrowRelease,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key),
    user_id: str = Depends(require_user_id),
) -> Escrow:
    escrow = escrow_service.get_escrow(db, escrow_id)
    _ensure_party(escrow, user_id, api_key, allowed={escrow.client_id})
    return escrow_service.release_escrow(db, escrow.id, user_id, payload.amount, payload.notes)


@router.post("/{escrow_id}/dispute", response_model=EscrowRead)
def dispute_escrow(
    escrow_id: str,
    payload: EscrowDisputeCreate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key),
    user_id: str = Depends(require_user_id),
) -> Escrow:
    escrow = escrow_service.get_escrow(db, escrow_id)
    _ensure_party(escrow, user_id, api_key)
    return escrow_service.dispute_escrow(
        db, escrow.id, user_id, payload.reason, dispute_id=payload.dispute_id
    )


@router.post("/{escrow_id}/refund", response_model=EscrowRead)
def refund_escrow(
    escrow_id: str,
    payload: EscrowRefund,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key),
    user_id: str = Depends(require_user_id),
) -> Escrow:
    escrow = escrow_service.get_escrow(db, escrow_id)
    # The payee gives the money back; the client cannot claw it back alone.
    _ensure_party(escrow, user_id, api_key, allowed={escrow.freelancer_id})
    return escrow_service.refund_escrow(db, escrow.id, user_id, payload.notes)


@router.post(
    "/{escrow_id}/resolve",
    response_model=EscrowRead,
    dependencies=[Depends(require_scope({ApiScope.admin}))],
)
def resolve_escrow(
    escrow_id: str,
    payload: EscrowResolve,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> Escrow:
    return escrow_service.resolve_escrow_dispute(
        db,
        escrow_id,
        user_id,
        payload.resolution,
        release_amount=payload.release_amount,
        notes=payload.notes,
    )


@router.post("/{escrow_id}/conditions/{condition_id}/complete", response_model=EscrowRead)
def complete_condition(
    escrow_id: str,
    condition_id: str,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key),
    user_id: str = Depends(require_user_id),
) -> Escrow:
    escrow = escrow_service.get_escrow(db, escrow_id)
    _ensure_party(escrow, user_id, api_key, allowed={escrow.client_id})
    return escrow_service.complete_release_condition(db, escrow.id, condition_id, user_id)


@router.post("/{escrow_id}/check-auto-release", response_model=AutoReleaseCheckRead)
def check_auto_release(
    escrow_id: str,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key),
) -> dict:
    escrow = escrow_service.get_escrow(db, escrow_id)
    _ensure_party(escrow, api_key.user_id, api_key)
    released = escrow_service.check_auto_release(db, escrow.id)
    return {"released": released, "escrow": escrow_service.get_escrow(db, escrow.id)}
