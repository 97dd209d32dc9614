"""Transaction schemas."""
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from trustdesk.models.transaction import (
    LedgerPaymentMethod,
    RecipientType,
    SenderType,
    TransactionStatus,
    TransactionSubType,
    TransactionType,
)


class SenderParty(BaseModel):
    user_id: str
    type: SenderType

    model_config = ConfigDict(from_attributes=True)


class RecipientParty(BaseModel):
    user_id: str
    type: RecipientType

    model_config = ConfigDict(from_attributes=True)


class MoneyAmount(BaseModel):
    value: Decimal = Field(ge=Decimal("0"))
    currency: str = Field(default="USD", min_length=3, max_length=3)
    exchange_rate: Decimal | None = Field(default=None, gt=Decimal("0"))
    converted_value: Decimal | None = None
    converted_currency: str | None = Field(default=None, min_length=3, max_length=3)

    @field_validator("currency", "converted_currency")
    @classmethod
    def _upper(cls, value: str | None) -> str | None:
        return value.upper() if value else value


class FeeComponents(BaseModel):
    platform: Decimal | None = Field(default=None, ge=Decimal("0"))
    processing: Decimal | None = Field(default=None, ge=Decimal("0"))
    tax: Decimal | None = Field(default=None, ge=Decimal("0"))
    currency: str | None = Field(default=None, min_length=3, max_length=3)


class TransactionCreate(BaseModel):
    transaction_id: str | None = Field(default=None, max_length=64)
    reference: str | None = Field(default=None, max_length=128)
    external_id: str | None = Field(default=None, max_length=128)
    sender: SenderParty
    recipient: RecipientParty
    job_id: str | None = None
    contract_id: str | None = None
    milestone_id: str | None = None
    dispute_id: str | None = None
    escrow_id: str | None = None
    type: TransactionType
    sub_type: TransactionSubType | None = None
    description: str = Field(min_length=1, max_length=2000)
    amount: MoneyAmount
    fees: FeeComponents = Field(default_factory=FeeComponents)
    total: Decimal | None = None
    payment_method: LedgerPaymentMethod
    status: TransactionStatus = TransactionStatus.PENDING
    processor_name: str | None = Field(default=None, max_length=64)
    processor_transaction_id: str | None = Field(default=None, max_length=128)
    tags: list[str] = Field(default_factory=list)


class TransactionStatusUpdate(BaseModel):
    status: TransactionStatus
    reason: str | None = Field(default=None, max_length=1000)


class ProcessingAttemptCreate(BaseModel):
    status: str = Field(min_length=1, max_length=64)
    error: dict[str, Any] | None = None


class StatusHistoryRead(BaseModel):
    status: TransactionStatus
    reason: str | None
    updated_by: str | None
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class ProcessingAttemptRead(BaseModel):
    status: str
    error: dict[str, Any] | None
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionTotal(BaseModel):
    value: Decimal
    currency: str


class TransactionAmountRead(BaseModel):
    value: Decimal
    currency: str
    exchange_rate: Decimal | None = None
    converted_value: Decimal | None = None
    converted_currency: str | None = None


class TransactionRead(BaseModel):
    id: str
    transaction_id: str
    reference: str | None
    external_id: str | None
    sender: SenderParty
    recipient: RecipientParty
    job_id: str | None
    contract_id: str | None
    milestone_id: str | None
    dispute_id: str | None
    escrow_id: str | None
    type: TransactionType
    sub_type: TransactionSubType | None
    description: str
    amount: TransactionAmountRead
    fees: FeeComponents
    total: TransactionTotal
    payment_method_type: LedgerPaymentMethod
    status: TransactionStatus
    status_history: list[StatusHistoryRead]
    attempts: list[ProcessingAttemptRead]
    completed_at: datetime | None
    failure_reason: str | None
    tags: list[str]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionStatusStat(BaseModel):
    status: TransactionStatus
    count: int
    total_amount: Decimal


class TransactionStatRead(BaseModel):
    type: TransactionType
    statuses: list[TransactionStatusStat]
    total_count: int
    total_amount: Decimal
