"""API key administration endpoints."""
from __future__ import annotations

from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from trustdesk.db import get_db
from trustdesk.models.api_key import ApiKey, ApiScope
from trustdesk.security import require_scope
from trustdesk.utils.apikey import gen_key
from trustdesk.utils.audit import actor_from_api_key, log_audit
from trustdesk.utils.errors import NotFoundError, error_response
from trustdesk.utils.ids import ensure_object_id
from trustdesk.utils.time import utcnow

router = APIRouter(prefix="/apikeys", tags=["apikeys"])


class CreateKeyIn(BaseModel):
    name: str
    scope: ApiScope
    user_id: str | None = None
    days_valid: int | None = 90

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("name cannot be blank")
        return value.strip()


class ApiKeyCreateOut(BaseModel):
    """Returned once on creation; the raw key is never shown again."""

    id: str
    name: str
    scope: ApiScope
    user_id: str | None
    key: str
    expires_at: datetime | None


class ApiKeyRead(BaseModel):
    id: str
    name: str
    prefix: str
    scope: ApiScope
    user_id: str | None
    is_active: bool
    created_at: datetime
    expires_at: datetime | None
    last_used_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


def _get_key(db: Session, api_key_id: str) -> ApiKey:
    row = db.get(ApiKey, ensure_object_id(api_key_id, "api_key_id"))
    if row is None:
        raise NotFoundError("ApiKey", api_key_id)
    return row


@router.post("", response_model=ApiKeyCreateOut, status_code=status.HTTP_201_CREATED)
def create_api_key(
    payload: CreateKeyIn,
    db: Session = Depends(get_db),
    admin: ApiKey = Depends(require_scope({ApiScope.admin})),
) -> ApiKeyCreateOut:
    user_id = ensure_object_id(payload.user_id, "user_id") if payload.user_id is not None else None
    raw, prefix, key_hash = gen_key()
    now = utcnow()
    row = ApiKey(
        name=payload.name,
        prefix=prefix,
        key_hash=key_hash,
        scope=payload.scope,
        user_id=user_id,
        created_at=now,
        expires_at=now + timedelta(days=payload.days_valid) if payload.days_valid else None,
        is_active=True,
    )
    db.add(row)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("APIKEY_EXISTS", "Key name already exists."),
        ) from exc

    log_audit(
        db,
        actor=actor_from_api_key(admin),
        action="CREATE_API_KEY",
        entity="ApiKey",
        entity_id=row.id,
        data={"name": row.name, "scope": row.scope.value, "user_id": user_id},
    )
    db.commit()
    db.refresh(row)
    return ApiKeyCreateOut(
        id=row.id,
        name=row.name,
        scope=row.scope,
        user_id=row.user_id,
        key=raw,
        expires_at=row.expires_at,
    )


@router.get(
    "/{api_key_id}",
    response_model=ApiKeyRead,
    dependencies=[Depends(require_scope({ApiScope.admin}))],
)
def get_apikey(api_key_id: str, db: Session = Depends(get_db)) -> ApiKey:
    return _get_key(db, api_key_id)


@router.delete("/{api_key_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def revoke_apikey(
    api_key_id: str,
    db: Session = Depends(get_db),
    admin: ApiKey = Depends(require_scope({ApiScope.admin})),
) -> Response:
    row = _get_key(db, api_key_id)
    action = "REVOKE_API_KEY" if row.is_active else "REVOKE_API_KEY_NOOP"
    row.is_active = False
    log_audit(
        db,
        actor=actor_from_api_key(admin),
        action=action,
        entity="ApiKey",
        entity_id=row.id,
        data={"name": row.name},
    )
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
