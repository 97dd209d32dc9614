"""Escrow schemas."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from trustdesk.models.escrow import (
    EscrowAction,
    EscrowResolution,
    EscrowStatus,
    PaymentMethod,
    ReleaseConditionType,
)


class ReleaseConditionCreate(BaseModel):
    type: ReleaseConditionType
    description: str | None = Field(default=None, max_length=1000)
    amount: Decimal | None = Field(default=None, gt=Decimal("0"))
    milestone_id: str | None = None


class AutoReleaseSettings(BaseModel):
    enabled: bool = True
    time_threshold: int | None = Field(default=None, ge=1, le=365)
    require_milestone_completion: bool = True


class EscrowCreate(BaseModel):
    job_id: str
    # Filled from the authenticated caller when omitted.
    client_id: str | None = None
    freelancer_id: str
    amount: Decimal
    currency: str = Field(default="USD", min_length=3, max_length=3)
    payment_gateway_id: str
    payment_method: PaymentMethod
    expiry_date: datetime | None = None
    release_conditions: list[ReleaseConditionCreate] = Field(default_factory=list)
    auto_release: AutoReleaseSettings = Field(default_factory=AutoReleaseSettings)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class EscrowFund(BaseModel):
    transaction_id: str


class EscrowRelease(BaseModel):
    amount: Decimal | None = None
    notes: str | None = Field(default=None, max_length=1000)


class EscrowDisputeCreate(BaseModel):
    reason: str = Field(min_length=10, max_length=1000)
    dispute_id: str | None = None


class EscrowRefund(BaseModel):
    notes: str | None = Field(default=None, max_length=1000)


class EscrowResolve(BaseModel):
    resolution: EscrowResolution
    release_amount: Decimal | None = None
    notes: str | None = Field(default=None, max_length=1000)


class ReleaseConditionRead(BaseModel):
    id: str
    type: ReleaseConditionType
    description: str | None
    amount: Decimal | None
    completed: bool
    completed_at: datetime | None
    milestone_id: str | None

    model_config = ConfigDict(from_attributes=True)


class EscrowHistoryRead(BaseModel):
    action: EscrowAction
    performed_by: str
    amount: Decimal | None
    notes: str | None
    at: datetime

    model_config = ConfigDict(from_attributes=True)


class EscrowDisputeRead(BaseModel):
    is_disputed: bool
    dispute_id: str | None
    disputed_at: datetime | None
    resolved_at: datetime | None
    resolution: EscrowResolution | None


class AutoReleaseConditionsRead(BaseModel):
    time_threshold: int
    require_milestone_completion: bool


class AutoReleaseRead(BaseModel):
    enabled: bool
    conditions: AutoReleaseConditionsRead


class VerificationStatusRead(BaseModel):
    client_verified: bool
    freelancer_verified: bool


class EscrowRead(BaseModel):
    id: str
    job_id: str
    client_id: str
    freelancer_id: str
    amount: Decimal
    currency: str
    fee_amount: Decimal
    status: EscrowStatus
    funded_at: datetime | None
    released_at: datetime | None
    refunded_at: datetime | None
    expiry_date: datetime
    payment_gateway_id: str
    payment_method: PaymentMethod
    transaction_ids: list[str]
    release_conditions: list[ReleaseConditionRead]
    auto_release: AutoReleaseRead
    dispute: EscrowDisputeRead
    verification_status: VerificationStatusRead
    history: list[EscrowHistoryRead]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EscrowStatRead(BaseModel):
    status: EscrowStatus
    count: int
    total_amount: Decimal


class AutoReleaseCheckRead(BaseModel):
    released: bool
    escrow: EscrowRead
