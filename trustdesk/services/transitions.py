"""Compare-and-set status updates on aggregate rows."""
from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from trustdesk.models.base import Base
from trustdesk.utils.errors import InvalidStateError
from trustdesk.utils.time import utcnow


def guarded_update(
    db: Session,
    obj: Base,
    *,
    allowed: Iterable[Any] | None = None,
    forbidden: Iterable[Any] | None = None,
    operation: str,
    **values: Any,
) -> None:
    """Apply ``values`` to ``obj``'s row only if its stored status passes the guard.

    ``allowed`` restricts the current status to a set; ``forbidden`` excludes
    one. Zero affected rows raises ``InvalidStateError`` and writes nothing.
    The touched attributes are expired so the next read sees the new row.
    """

    model = type(obj)
    criteria = [model.id == obj.id]
    if allowed is not None:
        criteria.append(model.status.in_(list(allowed)))
    if forbidden is not None:
        criteria.append(model.status.not_in(list(forbidden)))

    values.setdefault("updated_at", utcnow())
    stmt = update(model).where(*criteria).values(**values).execution_options(synchronize_session=False)
    result = db.execute(stmt)
    if result.rowcount == 1:
        db.expire(obj, list(values))
        return

    current = db.scalar(select(model.status).where(model.id == obj.id))
    raise InvalidStateError(
        f"{model.__name__} cannot {operation} while {getattr(current, 'value', current)}",
        details={
            "id": obj.id,
            "status": getattr(current, "value", current),
            "operation": operation,
        },
    )


__all__ = ["guarded_update"]
