"""Audit logging helper utilities."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Mapping

from sqlalchemy.orm import Session

from trustdesk.models.audit import AuditLog
from trustdesk.utils.errors import ValidationError
from trustdesk.utils.ids import is_object_id
from trustdesk.utils.time import utcnow


SENSITIVE_KEYS = {
    "account_number",
    "card_number",
    "routing_number",
    "email",
    "address",
    "processor_transaction_id",
}


class ActorKind(str, enum.Enum):
    user = "user"
    system = "system"
    anonymous = "anonymous"


@dataclass(frozen=True)
class Actor:
    """Who performed an audited action: a user id, the system, or nobody known."""

    kind: ActorKind
    user_id: str | None = None

    @classmethod
    def user(cls, user_id: str) -> "Actor":
        if not is_object_id(user_id):
            raise ValidationError("Actor user id must be a 24-hex identifier", details={"user_id": user_id})
        return cls(ActorKind.user, user_id.lower())

    @classmethod
    def system(cls) -> "Actor":
        return cls(ActorKind.system)

    @classmethod
    def anonymous(cls) -> "Actor":
        return cls(ActorKind.anonymous)

    @classmethod
    def parse(cls, value: "str | Actor | None") -> "Actor":
        """Accept an ``Actor``, a user id, ``"system"``, ``"anonymous"`` or ``None``."""

        if isinstance(value, Actor):
            return value
        if value is None or value == ActorKind.anonymous.value:
            return cls.anonymous()
        if value == ActorKind.system.value:
            return cls.system()
        return cls.user(value)

    def __str__(self) -> str:
        if self.kind is ActorKind.user:
            return str(self.user_id)
        return self.kind.value


def _mask_value(key: str, value: Any) -> Any:
    if value is None:
        return None

    if key in {"account_number", "card_number", "routing_number"}:
        stripped = str(value).replace(" ", "")
        if len(stripped) <= 4:
            return f"***{stripped}"
        return f"***{stripped[-4:]}"

    if key == "email":
        text = str(value)
        if "@" in text:
            _, domain = text.split("@", 1)
            return f"***@{domain}"
        return "***"

    if key == "processor_transaction_id":
        text = str(value)
        if len(text) <= 6:
            return "***"
        return f"***{text[-4:]}"

    return "***"


def sanitize_payload_for_audit(data: Any) -> Any:
    """Return a copy of ``data`` with obvious PII fields masked."""

    if isinstance(data, Mapping):
        sanitized: dict[str, Any] = {}
        for key, value in data.items():
            masked_value = _mask_value(key, value) if key in SENSITIVE_KEYS else value
            sanitized[key] = sanitize_payload_for_audit(masked_value)
        return sanitized

    if isinstance(data, list):
        return [sanitize_payload_for_audit(item) for item in data]

    return data


def log_audit(
    db: Session,
    *,
    actor: Actor | str | None,
    action: str,
    entity: str,
    entity_id: str | None,
    data: dict | None = None,
) -> None:
    """Stage an audit entry; it is committed with the surrounding state change."""

    db.add(
        AuditLog(
            actor=str(Actor.parse(actor)),
            action=action,
            entity=entity,
            entity_id=entity_id or "",
            data_json=sanitize_payload_for_audit(data or {}),
            at=utcnow(),
        )
    )


def actor_from_api_key(api_key: Any, fallback: str = "system") -> str:
    """Return the canonical actor string for a given API key object."""

    user_id = getattr(api_key, "user_id", None)
    if user_id:
        return user_id
    return fallback


__all__ = [
    "Actor",
    "ActorKind",
    "SENSITIVE_KEYS",
    "sanitize_payload_for_audit",
    "log_audit",
    "actor_from_api_key",
]
