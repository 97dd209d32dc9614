"""Escrow related models."""
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, JSON, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, enum_column_type


class EscrowStatus(str, PyEnum):
    """Status of an escrow trust account."""

    PENDING = "pending"
    FUNDED = "funded"
    RELEASED = "released"
    REFUNDED = "refunded"
    DISPUTED = "disputed"


TERMINAL_ESCROW_STATUSES = frozenset({EscrowStatus.RELEASED, EscrowStatus.REFUNDED})
ACTIVE_ESCROW_STATUSES = (EscrowStatus.FUNDED, EscrowStatus.DISPUTED)


class EscrowAction(str, PyEnum):
    CREATED = "created"
    FUNDED = "funded"
    RELEASED = "released"
    DISPUTED = "disputed"
    RESOLVED = "resolved"
    REFUNDED = "refunded"


class EscrowResolution(str, PyEnum):
    RELEASED = "released"
    REFUNDED = "refunded"
    SPLIT = "split"


class ReleaseConditionType(str, PyEnum):
    MILESTONE = "milestone"
    TIME = "time"
    MANUAL = "manual"


class PaymentMethod(str, PyEnum):
    CREDIT_CARD = "credit_card"
    BANK_TRANSFER = "bank_transfer"
    PAYPAL = "paypal"
    WALLET = "wallet"
    CRYPTO = "crypto"


class Escrow(Base):
    """Money held in trust for one job between a client and a freelancer."""

    __tablename__ = "escrows"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_escrows_amount_positive"),
        CheckConstraint("fee_amount >= 0", name="ck_escrows_fee_non_negative"),
        Index("ix_escrows_status", "status"),
        Index("ix_escrows_is_disputed", "is_disputed"),
        Index("ix_escrows_expiry_date", "expiry_date"),
    )

    job_id: Mapped[str] = mapped_column(String(24), nullable=False, index=True)
    client_id: Mapped[str] = mapped_column(String(24), nullable=False, index=True)
    freelancer_id: Mapped[str] = mapped_column(String(24), nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    fee_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))

    status: Mapped[EscrowStatus] = mapped_column(
        enum_column_type(EscrowStatus, "escrowstatus"), nullable=False, default=EscrowStatus.PENDING
    )
    funded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expiry_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    payment_gateway_id: Mapped[str] = mapped_column(String(24), nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        enum_column_type(PaymentMethod, "escrowpaymentmethod"), nullable=False
    )
    transaction_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    is_disputed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    dispute_id: Mapped[str | None] = mapped_column(String(24), nullable=True)
    disputed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    dispute_resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    dispute_resolution: Mapped[EscrowResolution | None] = mapped_column(
        enum_column_type(EscrowResolution, "escrowresolution"), nullable=True
    )

    auto_release_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_release_days: Mapped[int] = mapped_column(Integer, nullable=False, default=14)
    require_milestone_completion: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    client_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    freelancer_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    release_conditions = relationship(
        "ReleaseCondition",
        back_populates="escrow",
        cascade="all, delete-orphan",
        order_by="ReleaseCondition.position",
    )
    history = relationship(
        "EscrowHistoryEntry",
        back_populates="escrow",
        cascade="all, delete-orphan",
        order_by="EscrowHistoryEntry.seq",
    )

    @property
    def dispute(self) -> dict:
        return {
            "is_disputed": self.is_disputed,
            "dispute_id": self.dispute_id,
            "disputed_at": self.disputed_at,
            "resolved_at": self.dispute_resolved_at,
            "resolution": self.dispute_resolution,
        }

    @property
    def auto_release(self) -> dict:
        return {
            "enabled": self.auto_release_enabled,
            "conditions": {
                "time_threshold": self.auto_release_days,
                "require_milestone_completion": self.require_milestone_completion,
            },
        }

    @property
    def verification_status(self) -> dict:
        return {
            "client_verified": self.client_verified,
            "freelancer_verified": self.freelancer_verified,
        }

    def is_party(self, user_id: str) -> bool:
        return user_id in {self.client_id, self.freelancer_id}


class ReleaseCondition(Base):
    """One ordered condition gating release of (part of) the escrowed amount."""

    __tablename__ = "escrow_release_conditions"
    __table_args__ = (
        CheckConstraint("amount IS NULL OR amount > 0", name="ck_release_conditions_amount_positive"),
    )

    escrow_id: Mapped[str] = mapped_column(ForeignKey("escrows.id"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[ReleaseConditionType] = mapped_column(
        enum_column_type(ReleaseConditionType, "releaseconditiontype"), nullable=False
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    milestone_id: Mapped[str | None] = mapped_column(String(24), nullable=True)

    escrow = relationship("Escrow", back_populates="release_conditions")


class EscrowHistoryEntry(Base):
    """Append-only audit trail entry on an escrow."""

    __tablename__ = "escrow_history"

    escrow_id: Mapped[str] = mapped_column(ForeignKey("escrows.id"), nullable=False, index=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[EscrowAction] = mapped_column(enum_column_type(EscrowAction, "escrowaction"), nullable=False)
    performed_by: Mapped[str] = mapped_column(String(24), nullable=False)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    escrow = relationship("Escrow", back_populates="history")
