"""Dispute schemas."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from trustdesk.models.dispute import (
    DisputePriority,
    DisputeStatus,
    DisputeType,
    EvidenceType,
    MessageVisibility,
    NoteKind,
    PartyRole,
    ResolutionOutcome,
    ThreadRole,
    VerificationStatus,
)


class DisputeCreate(BaseModel):
    respondent_id: str
    initiator_role: PartyRole
    job_id: str | None = None
    contract_id: str | None = None
    milestone_id: str | None = None
    transaction_id: str | None = None
    type: DisputeType
    sub_type: str | None = Field(default=None, max_length=100)
    priority: DisputePriority = DisputePriority.MEDIUM
    amount_disputed: Decimal | None = Field(default=None, ge=Decimal("0"))
    currency: str = Field(default="USD", min_length=3, max_length=3)
    hold_amount: bool = False
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=5000)
    desired_outcome: str = Field(min_length=1, max_length=1000)
    tags: list[str] = Field(default_factory=list)

    model_config = ConfigDict(str_strip_whitespace=True)


class DisputeMessageCreate(BaseModel):
    message: str = Field(min_length=1, max_length=5000)
    attachments: list[str] = Field(default_factory=list)
    visibility: MessageVisibility = MessageVisibility.ALL

    model_config = ConfigDict(str_strip_whitespace=True)


class EvidenceCreate(BaseModel):
    type: EvidenceType
    title: str | None = Field(default=None, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    url: str | None = Field(default=None, max_length=2048)
    file_type: str | None = Field(default=None, max_length=100)
    file_size: int | None = Field(default=None, ge=0)


class EvidenceVerify(BaseModel):
    verification_status: VerificationStatus


class DisputeStatusUpdate(BaseModel):
    status: DisputeStatus


class DisputeAssign(BaseModel):
    # Defaults to the calling admin when omitted.
    admin_id: str | None = None
    priority: DisputePriority | None = None


class AdminNoteCreate(BaseModel):
    content: str = Field(min_length=1, max_length=5000)

    model_config = ConfigDict(str_strip_whitespace=True)


class DisputeResolutionCreate(BaseModel):
    outcome: ResolutionOutcome
    description: str | None = Field(default=None, max_length=5000)
    amount: Decimal | None = Field(default=None, ge=Decimal("0"))
    currency: str | None = Field(default=None, min_length=3, max_length=3)


class ResolutionResponse(BaseModel):
    accepted: bool


class DisputeEscalate(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)

    model_config = ConfigDict(str_strip_whitespace=True)


class DisputeCancel(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)

    model_config = ConfigDict(str_strip_whitespace=True)


class DisputePartyRead(BaseModel):
    user_id: str
    role: PartyRole


class DisputeAmountRead(BaseModel):
    disputed: Decimal | None
    currency: str
    hold_amount: bool


class AcceptanceRead(BaseModel):
    accepted: bool
    timestamp: datetime | None


class DisputeResolutionRead(BaseModel):
    outcome: ResolutionOutcome
    description: str | None
    amount: Decimal | None
    currency: str | None
    resolved_by: str | None
    resolved_at: datetime | None
    accepted_by_initiator: AcceptanceRead | None
    accepted_by_respondent: AcceptanceRead | None


class MediationRead(BaseModel):
    required: bool
    mediator: str | None
    started_at: datetime | None
    ended_at: datetime | None
    outcome: str | None
    notes: str | None


class DisputeMessageRead(BaseModel):
    id: str
    sender_id: str
    role: ThreadRole
    message: str
    attachments: list[str]
    visibility: MessageVisibility
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class EvidenceRead(BaseModel):
    id: str
    type: EvidenceType
    title: str | None
    description: str | None
    url: str | None
    file_type: str | None
    file_size: int | None
    uploaded_by: str
    uploaded_at: datetime
    verification_status: VerificationStatus

    model_config = ConfigDict(from_attributes=True)


class DisputeNoteRead(BaseModel):
    id: str
    kind: NoteKind
    content: str
    author_id: str | None
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class DisputeRead(BaseModel):
    id: str
    initiator: DisputePartyRead
    respondent: DisputePartyRead
    job_id: str | None
    contract_id: str | None
    milestone_id: str | None
    transaction_id: str | None
    type: DisputeType
    sub_type: str | None
    status: DisputeStatus
    priority: DisputePriority
    amount: DisputeAmountRead
    title: str
    description: str
    desired_outcome: str
    evidence: list[EvidenceRead]
    thread: list[DisputeMessageRead]
    resolution: DisputeResolutionRead | None
    assigned_to: str | None
    assigned_at: datetime | None
    admin_priority: DisputePriority | None
    admin_notes: list[DisputeNoteRead]
    mediation: MediationRead
    response_deadline: datetime
    escalation_deadline: datetime
    next_action_date: datetime | None
    resolved_at: datetime | None
    system_notes: list[DisputeNoteRead]
    tags: list[str]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DisputePage(BaseModel):
    items: list[DisputeRead]
    page: int
    limit: int


class DisputeStatRead(BaseModel):
    status: DisputeStatus
    count: int
    total_amount: Decimal
