"""Opaque 24-hex identifiers, compatible with the ObjectId format used by external callers."""
from __future__ import annotations

import re
import secrets
import time

from trustdesk.utils.errors import ValidationError

OBJECT_ID_PATTERN = re.compile(r"[0-9a-fA-F]{24}")


def new_object_id() -> str:
    """Return a new id: 4-byte seconds timestamp followed by 8 random bytes."""

    return f"{int(time.time()) & 0xFFFFFFFF:08x}{secrets.token_hex(8)}"


def is_object_id(value: object) -> bool:
    return isinstance(value, str) and bool(OBJECT_ID_PATTERN.fullmatch(value))


def ensure_object_id(value: object, field: str) -> str:
    """Return ``value`` lower-cased or raise ``ValidationError`` naming ``field``."""

    if not is_object_id(value):
        raise ValidationError(f"Invalid {field} format", details={"field": field})
    return str(value).lower()


__all__ = ["OBJECT_ID_PATTERN", "new_object_id", "is_object_id", "ensure_object_id"]
