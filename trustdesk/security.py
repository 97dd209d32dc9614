"""Security dependencies for API key validation and scope enforcement."""
from __future__ import annotations

from typing import Callable, Set

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from trustdesk.config import DEV_API_KEY_ALLOWED, ENV
from trustdesk.db import get_db
from trustdesk.models.api_key import ApiKey, ApiScope
from trustdesk.utils.apikey import find_valid_key, is_legacy_key
from trustdesk.utils.audit import Actor, log_audit
from trustdesk.utils.errors import error_response
from trustdesk.utils.time import utcnow

LEGACY_KEY_NAME = "__legacy__"


def _extract_key(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> str | None:
    """Read the key from ``Authorization: Bearer ...`` or ``X-API-Key``."""

    if x_api_key:
        return x_api_key.strip()
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip()
    return None


def _legacy_key(db: Session) -> ApiKey:
    if not DEV_API_KEY_ALLOWED:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("LEGACY_KEY_FORBIDDEN", "Legacy dev key disabled."),
        )
    now = utcnow()
    log_audit(
        db,
        actor=Actor.system(),
        action="LEGACY_API_KEY_USED",
        entity="ApiKey",
        entity_id=LEGACY_KEY_NAME,
        data={"env": ENV},
    )
    db.commit()
    # Transient admin key with no bound user; never persisted.
    return ApiKey(
        name=LEGACY_KEY_NAME,
        prefix="legacy",
        key_hash="legacy",
        scope=ApiScope.admin,
        user_id=None,
        is_active=True,
        created_at=now,
        expires_at=None,
        last_used_at=now,
    )


def require_api_key(
    db: Session = Depends(get_db),
    token: str | None = Depends(_extract_key),
) -> ApiKey:
    """Validate the presented key and return the matching row."""

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("NO_API_KEY", "API key required."),
        )

    if is_legacy_key(token):
        return _legacy_key(db)

    key = find_valid_key(db, token)
    if key is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("UNAUTHORIZED", "Invalid or expired API key"),
        )

    key.last_used_at = utcnow()
    log_audit(
        db,
        actor=key.user_id or Actor.system(),
        action="API_KEY_USED",
        entity="ApiKey",
        entity_id=key.id,
        data={"scope": key.scope.value, "prefix": key.prefix},
    )
    db.commit()
    return key


def require_scope(allowed: Set[ApiScope]) -> Callable:
    """Enforce that the key carries one of ``allowed`` (admin passes everything)."""

    if not allowed:
        raise RuntimeError("require_scope needs a non-empty set of ApiScope")

    def _dep(key: ApiKey = Depends(require_api_key)) -> ApiKey:
        if key.scope == ApiScope.admin or key.scope in allowed:
            return key
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response(
                "INSUFFICIENT_SCOPE",
                f"Requires one of: {sorted(scope.value for scope in allowed)}",
            ),
        )

    return _dep


def require_user_id(key: ApiKey = Depends(require_api_key)) -> str:
    """Return the marketplace user the key acts for; unbound keys are refused."""

    if not key.user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response("USER_BINDING_REQUIRED", "API key is not bound to a user."),
        )
    return key.user_id


def is_staff(key: ApiKey) -> bool:
    return key.scope in {ApiScope.admin, ApiScope.support}


__all__ = ["require_api_key", "require_scope", "require_user_id", "is_staff"]
