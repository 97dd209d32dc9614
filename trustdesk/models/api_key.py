"""API key model."""
from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, enum_column_type


class ApiScope(str, enum.Enum):
    user = "user"
    support = "support"
    admin = "admin"


class ApiKey(Base):
    """A hashed API key, optionally bound to the marketplace user it acts for."""

    __tablename__ = "api_keys"

    name: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    prefix: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    key_hash: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    scope: Mapped[ApiScope] = mapped_column(
        enum_column_type(ApiScope, "apiscope"), nullable=False, default=ApiScope.user
    )
    user_id: Mapped[str | None] = mapped_column(String(24), nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


__all__ = ["ApiKey", "ApiScope"]
