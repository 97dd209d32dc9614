"""Dispute endpoints."""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from trustdesk.db import get_db
from trustdesk.models.api_key import ApiKey, ApiScope
from trustdesk.models.dispute import (
    Dispute,
    DisputeEvidence,
    DisputeMessage,
    DisputeNote,
    DisputeStatus,
    DisputeType,
    MessageVisibility,
    ThreadRole,
)
from trustdesk.schemas.dispute import (
    AdminNoteCreate,
    DisputeAssign,
    DisputeCancel,
    DisputeCreate,
    DisputeEscalate,
    DisputeMessageCreate,
    DisputeMessageRead,
    DisputeNoteRead,
    DisputePage,
    DisputeRead,
    DisputeResolutionCreate,
    DisputeStatRead,
    DisputeStatusUpdate,
    EvidenceCreate,
    EvidenceRead,
    EvidenceVerify,
    ResolutionResponse,
)
from trustdesk.security import is_staff, require_api_key, require_scope, require_user_id
from trustdesk.services import disputes as dispute_service
from trustdesk.utils.errors import PermissionDeniedError

router = APIRouter(prefix="/disputes", tags=["disputes"])

_admin_only = [Depends(require_scope({ApiScope.admin}))]
_staff_only = [Depends(require_scope({ApiScope.admin, ApiScope.support}))]


def _ensure_party(dispute: Dispute, user_id: str | None, api_key: ApiKey) -> None:
    if is_staff(api_key):
        return
    if user_id is None or dispute.party_role(user_id) is None:
        raise PermissionDeniedError("Not a party to this dispute", details={"dispute_id": dispute.id})


def _present(dispute: Dispute, api_key: ApiKey) -> DisputeRead:
    """Hide admin-only thread entries and admin notes from the parties."""

    read = DisputeRead.model_validate(dispute)
    if is_staff(api_key):
        return read
    return read.model_copy(
        update={
            "thread": [entry for entry in read.thread if entry.visibility == MessageVisibility.ALL],
            "admin_notes": [],
        }
    )


@router.post("", response_model=DisputeRead, status_code=status.HTTP_201_CREATED)
def open_dispute(
    payload: DisputeCreate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key),
    user_id: str = Depends(require_user_id),
) -> DisputeRead:
    dispute = dispute_service.open_dispute(db, payload, initiator_id=user_id)
    return _present(dispute, api_key)


@router.get("", response_model=DisputePage)
def list_my_disputes(
    status_filter: DisputeStatus | None = Query(default=None, alias="status"),
    type_filter: DisputeType | None = Query(default=None, alias="type"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key),
    user_id: str = Depends(require_user_id),
) -> DisputePage:
    disputes = dispute_service.get_user_disputes(
        db, user_id, status=status_filter, type=type_filter, page=page, limit=limit
    )
    return DisputePage(items=[_present(d, api_key) for d in disputes], page=page, limit=limit)


@router.get("/attention", response_model=list[DisputeRead], dependencies=_staff_only)
def disputes_requiring_attention(db: Session = Depends(get_db)) -> list[Dispute]:
    return dispute_service.get_disputes_requiring_attention(db)


@router.get("/stats", response_model=list[DisputeStatRead], dependencies=_staff_only)
def dispute_stats(
    user_id: str | None = Query(default=None),
    type_filter: DisputeType | None = Query(default=None, alias="type"),
    db: Session = Depends(get_db),
) -> list[dict]:
    return dispute_service.get_dispute_stats(db, user_id=user_id, type=type_filter)


@router.get("/{dispute_id}", response_model=DisputeRead)
def read_dispute(
    dispute_id: str,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key),
) -> DisputeRead:
    dispute = dispute_service.get_dispute(db, dispute_id)
    _ensure_party(dispute, api_key.user_id, api_key)
    return _present(dispute, api_key)


@router.post("/{dispute_id}/messages", response_model=DisputeMessageRead, status_code=status.HTTP_201_CREATED)
def add_message(
    dispute_id: str,
    payload: DisputeMessageCreate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key),
    user_id: str = Depends(require_user_id),
) -> DisputeMessage:
    dispute = dispute_service.get_dispute(db, dispute_id)
    party_role = dispute.party_role(user_id)
    if party_role is not None:
        role = ThreadRole(party_role.value)
    elif is_staff(api_key):
        role = ThreadRole.ADMIN
    else:
        raise PermissionDeniedError("Not a party to this dispute", details={"dispute_id": dispute.id})
    if payload.visibility == MessageVisibility.ADMIN_ONLY and not is_staff(api_key):
        raise PermissionDeniedError("Only staff can post admin-only messages")
    return dispute_service.add_message(
        db,
        dispute.id,
        user_id,
        role,
        payload.message,
        payload.attachments,
        visibility=payload.visibility,
    )


@router.post("/{dispute_id}/evidence", response_model=EvidenceRead, status_code=status.HTTP_201_CREATED)
def add_evidence(
    dispute_id: str,
    payload: EvidenceCreate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key),
    user_id: str = Depends(require_user_id),
) -> DisputeEvidence:
    dispute = dispute_service.get_dispute(db, dispute_id)
    _ensure_party(dispute, user_id, api_key)
    return dispute_service.add_evidence(db, dispute.id, payload, uploaded_by=user_id)


@router.post(
    "/{dispute_id}/evidence/{evidence_id}/verify",
    response_model=EvidenceRead,
    dependencies=_admin_only,
)
def verify_evidence(
    dispute_id: str,
    evidence_id: str,
    payload: EvidenceVerify,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> DisputeEvidence:
    return dispute_service.verify_evidence(
        db, dispute_id, evidence_id, payload.verification_status, admin_id=user_id
    )


@router.post("/{dispute_id}/status", response_model=DisputeRead, dependencies=_admin_only)
def update_status(
    dispute_id: str,
    payload: DisputeStatusUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> Dispute:
    return dispute_service.update_dispute_status(db, dispute_id, payload.status, actor=user_id)


@router.post("/{dispute_id}/assign", response_model=DisputeRead, dependencies=_admin_only)
def assign_dispute(
    dispute_id: str,
    payload: DisputeAssign,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> Dispute:
    return dispute_service.assign_dispute(
        db, dispute_id, payload.admin_id or user_id, priority=payload.priority
    )


@router.post(
    "/{dispute_id}/notes",
    response_model=DisputeNoteRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=_admin_only,
)
def add_admin_note(
    dispute_id: str,
    payload: AdminNoteCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> DisputeNote:
    return dispute_service.add_admin_note(db, dispute_id, user_id, payload.content)


@router.post("/{dispute_id}/resolve", response_model=DisputeRead, dependencies=_admin_only)
def resolve_dispute(
    dispute_id: str,
    payload: DisputeResolutionCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> Dispute:
    return dispute_service.resolve_dispute(db, dispute_id, payload, user_id)


@router.post("/{dispute_id}/resolution-response", response_model=DisputeRead)
def respond_to_resolution(
    dispute_id: str,
    payload: ResolutionResponse,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key),
    user_id: str = Depends(require_user_id),
) -> DisputeRead:
    dispute = dispute_service.respond_to_resolution(db, dispute_id, user_id, payload.accepted)
    return _present(dispute, api_key)


@router.post("/{dispute_id}/escalate", response_model=DisputeRead)
def escalate_dispute(
    dispute_id: str,
    payload: DisputeEscalate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key),
    user_id: str = Depends(require_user_id),
) -> DisputeRead:
    dispute = dispute_service.get_dispute(db, dispute_id)
    _ensure_party(dispute, user_id, api_key)
    dispute = dispute_service.escalate_dispute(db, dispute.id, payload.reason, actor=user_id)
    return _present(dispute, api_key)


@router.post("/{dispute_id}/cancel", response_model=DisputeRead)
def cancel_dispute(
    dispute_id: str,
    payload: DisputeCancel,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key),
    user_id: str = Depends(require_user_id),
) -> DisputeRead:
    dispute = dispute_service.get_dispute(db, dispute_id)
    if api_key.scope != ApiScope.admin and user_id != dispute.initiator_user_id:
        raise PermissionDeniedError("Only the initiator can withdraw a dispute")
    dispute = dispute_service.cancel_dispute(db, dispute.id, user_id, payload.reason)
    return _present(dispute, api_key)
