"""Ledger transaction models."""
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, JSON, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, enum_column_type


class SenderType(str, PyEnum):
    CLIENT = "client"
    PLATFORM = "platform"
    SYSTEM = "system"


class RecipientType(str, PyEnum):
    FREELANCER = "freelancer"
    PLATFORM = "platform"
    SYSTEM = "system"


class TransactionType(str, PyEnum):
    PAYMENT = "payment"
    REFUND = "refund"
    WITHDRAWAL = "withdrawal"
    DEPOSIT = "deposit"
    FEE = "fee"
    BONUS = "bonus"
    ADJUSTMENT = "adjustment"
    ESCROW_FUND = "escrow_fund"
    ESCROW_RELEASE = "escrow_release"
    ESCROW_REFUND = "escrow_refund"


class TransactionSubType(str, PyEnum):
    MILESTONE_PAYMENT = "milestone_payment"
    HOURLY_PAYMENT = "hourly_payment"
    SERVICE_FEE = "service_fee"
    PROCESSING_FEE = "processing_fee"
    PLATFORM_FEE = "platform_fee"
    DISPUTE_REFUND = "dispute_refund"
    BONUS_CREDIT = "bonus_credit"
    REFERRAL_BONUS = "referral_bonus"
    WITHDRAWAL_FEE = "withdrawal_fee"
    CURRENCY_CONVERSION = "currency_conversion"
    TAX_DEDUCTION = "tax_deduction"
    ESCROW_DEPOSIT = "escrow_deposit"
    ESCROW_DISBURSEMENT = "escrow_disbursement"
    ESCROW_FEE = "escrow_fee"
    ESCROW_REFUND_FEE = "escrow_refund_fee"


class TransactionStatus(str, PyEnum):
    """Possible transaction statuses."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    DISPUTED = "disputed"


class LedgerPaymentMethod(str, PyEnum):
    CREDIT_CARD = "credit_card"
    BANK_TRANSFER = "bank_transfer"
    PAYPAL = "paypal"
    WALLET = "wallet"
    CRYPTO = "crypto"
    SYSTEM = "system"


class Transaction(Base):
    """One financial event. Never deleted; mutated only through status updates and attempts."""

    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("amount_value >= 0", name="ck_transactions_amount_non_negative"),
        Index("ix_transactions_created_at", "created_at"),
        Index("ix_transactions_status", "status"),
    )

    transaction_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    external_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    sender_user_id: Mapped[str] = mapped_column(String(24), nullable=False, index=True)
    sender_type: Mapped[SenderType] = mapped_column(enum_column_type(SenderType, "sendertype"), nullable=False)
    recipient_user_id: Mapped[str] = mapped_column(String(24), nullable=False, index=True)
    recipient_type: Mapped[RecipientType] = mapped_column(
        enum_column_type(RecipientType, "recipienttype"), nullable=False
    )

    job_id: Mapped[str | None] = mapped_column(String(24), nullable=True, index=True)
    contract_id: Mapped[str | None] = mapped_column(String(24), nullable=True, index=True)
    milestone_id: Mapped[str | None] = mapped_column(String(24), nullable=True)
    dispute_id: Mapped[str | None] = mapped_column(String(24), nullable=True)
    escrow_id: Mapped[str | None] = mapped_column(String(24), nullable=True, index=True)

    type: Mapped[TransactionType] = mapped_column(
        enum_column_type(TransactionType, "transactiontype"), nullable=False
    )
    sub_type: Mapped[TransactionSubType | None] = mapped_column(
        enum_column_type(TransactionSubType, "transactionsubtype"), nullable=True
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)

    amount_value: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    amount_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    exchange_rate: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True)
    converted_value: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    converted_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)

    fee_platform: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    fee_processing: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    fee_tax: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    fee_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)

    total_value: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    total_currency: Mapped[str] = mapped_column(String(3), nullable=False)

    payment_method_type: Mapped[LedgerPaymentMethod] = mapped_column(
        enum_column_type(LedgerPaymentMethod, "ledgerpaymentmethod"), nullable=False
    )

    status: Mapped[TransactionStatus] = mapped_column(
        enum_column_type(TransactionStatus, "transactionstatus"),
        nullable=False,
        default=TransactionStatus.PENDING,
    )

    processor_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    processor_transaction_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    processor_status: Mapped[str | None] = mapped_column(String(64), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    status_history = relationship(
        "TransactionStatusEntry",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionStatusEntry.seq",
    )
    attempts = relationship(
        "ProcessingAttempt",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="ProcessingAttempt.seq",
    )

    @property
    def sender(self) -> dict:
        return {"user_id": self.sender_user_id, "type": self.sender_type}

    @property
    def recipient(self) -> dict:
        return {"user_id": self.recipient_user_id, "type": self.recipient_type}

    @property
    def amount(self) -> dict:
        return {
            "value": self.amount_value,
            "currency": self.amount_currency,
            "exchange_rate": self.exchange_rate,
            "converted_value": self.converted_value,
            "converted_currency": self.converted_currency,
        }

    @property
    def fees(self) -> dict:
        return {
            "platform": self.fee_platform,
            "processing": self.fee_processing,
            "tax": self.fee_tax,
            "currency": self.fee_currency,
        }

    @property
    def total(self) -> dict:
        return {"value": self.total_value, "currency": self.total_currency}


class TransactionStatusEntry(Base):
    """Append-only status history row."""

    __tablename__ = "transaction_status_history"

    transaction_pk: Mapped[str] = mapped_column(ForeignKey("transactions.id"), nullable=False, index=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        enum_column_type(TransactionStatus, "transactionstatus"), nullable=False
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(24), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    transaction = relationship("Transaction", back_populates="status_history")


class ProcessingAttempt(Base):
    __tablename__ = "transaction_attempts"

    transaction_pk: Mapped[str] = mapped_column(ForeignKey("transactions.id"), nullable=False, index=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(64), nullable=False)
    error: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    transaction = relationship("Transaction", back_populates="attempts")
