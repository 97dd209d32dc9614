"""Declarative base model for SQLAlchemy."""
import enum
from datetime import UTC, datetime

from sqlalchemy import DateTime, Enum as SqlEnum, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from trustdesk.utils.ids import new_object_id


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def enum_column_type(enum_cls: type[enum.Enum], name: str) -> SqlEnum:
    """Store enum *values* (lower-case wire strings) rather than member names."""

    return SqlEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    id: Mapped[str] = mapped_column(String(24), primary_key=True, default=new_object_id)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )
