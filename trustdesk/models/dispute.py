"""Dispute models: the dispute itself, its evidence, message thread and notes."""
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, JSON, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, enum_column_type


class PartyRole(str, PyEnum):
    CLIENT = "client"
    FREELANCER = "freelancer"


class ThreadRole(str, PyEnum):
    CLIENT = "client"
    FREELANCER = "freelancer"
    ADMIN = "admin"
    MEDIATOR = "mediator"


class DisputeType(str, PyEnum):
    PAYMENT = "payment"
    DELIVERY = "delivery"
    QUALITY = "quality"
    COMMUNICATION = "communication"
    SCOPE = "scope"
    CANCELLATION = "cancellation"
    REFUND = "refund"
    OTHER = "other"


class DisputeStatus(str, PyEnum):
    OPENED = "opened"
    UNDER_REVIEW = "under_review"
    EVIDENCE_NEEDED = "evidence_needed"
    MEDIATION = "mediation"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"
    ESCALATED = "escalated"


TERMINAL_DISPUTE_STATUSES = (DisputeStatus.RESOLVED, DisputeStatus.CANCELLED)


class DisputePriority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


PRIORITY_RANK = {
    DisputePriority.LOW: 0,
    DisputePriority.MEDIUM: 1,
    DisputePriority.HIGH: 2,
    DisputePriority.URGENT: 3,
}


class ResolutionOutcome(str, PyEnum):
    RESOLVED_MUTUALLY = "resolved_mutually"
    IN_FAVOR_OF_CLIENT = "in_favor_of_client"
    IN_FAVOR_OF_FREELANCER = "in_favor_of_freelancer"
    PARTIAL_REFUND = "partial_refund"
    FULL_REFUND = "full_refund"
    CANCELLED = "cancelled"
    OTHER = "other"


class EvidenceType(str, PyEnum):
    MESSAGE = "message"
    FILE = "file"
    SCREENSHOT = "screenshot"
    CONTRACT = "contract"
    PAYMENT_PROOF = "payment_proof"
    DELIVERY_PROOF = "delivery_proof"
    OTHER = "other"


class VerificationStatus(str, PyEnum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class MessageVisibility(str, PyEnum):
    ALL = "all"
    ADMIN_ONLY = "admin_only"


class NoteKind(str, PyEnum):
    SYSTEM = "system"
    ADMIN = "admin"


class Dispute(Base):
    """Adversarial overlay on a job / contract / payment relationship."""

    __tablename__ = "disputes"
    __table_args__ = (
        Index("ix_disputes_status", "status"),
        Index("ix_disputes_created_at", "created_at"),
        Index("ix_disputes_next_action_date", "next_action_date"),
    )

    initiator_user_id: Mapped[str] = mapped_column(String(24), nullable=False, index=True)
    initiator_role: Mapped[PartyRole] = mapped_column(enum_column_type(PartyRole, "partyrole"), nullable=False)
    respondent_user_id: Mapped[str] = mapped_column(String(24), nullable=False, index=True)
    respondent_role: Mapped[PartyRole] = mapped_column(enum_column_type(PartyRole, "partyrole"), nullable=False)

    job_id: Mapped[str | None] = mapped_column(String(24), nullable=True, index=True)
    contract_id: Mapped[str | None] = mapped_column(String(24), nullable=True, index=True)
    milestone_id: Mapped[str | None] = mapped_column(String(24), nullable=True)
    transaction_id: Mapped[str | None] = mapped_column(String(24), nullable=True)

    type: Mapped[DisputeType] = mapped_column(enum_column_type(DisputeType, "disputetype"), nullable=False)
    sub_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[DisputeStatus] = mapped_column(
        enum_column_type(DisputeStatus, "disputestatus"), nullable=False, default=DisputeStatus.OPENED
    )
    priority: Mapped[DisputePriority] = mapped_column(
        enum_column_type(DisputePriority, "disputepriority"), nullable=False, default=DisputePriority.MEDIUM
    )

    amount_disputed: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    amount_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    hold_amount: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    desired_outcome: Mapped[str] = mapped_column(Text, nullable=False)

    resolution_outcome: Mapped[ResolutionOutcome | None] = mapped_column(
        enum_column_type(ResolutionOutcome, "resolutionoutcome"), nullable=True
    )
    resolution_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolution_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    resolution_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(24), nullable=True)
    resolution_resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_by_initiator: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    accepted_by_initiator_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_by_respondent: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    accepted_by_respondent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    assigned_to: Mapped[str | None] = mapped_column(String(24), nullable=True, index=True)
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    admin_priority: Mapped[DisputePriority | None] = mapped_column(
        enum_column_type(DisputePriority, "disputepriority"), nullable=True
    )

    mediation_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    mediator_id: Mapped[str | None] = mapped_column(String(24), nullable=True)
    mediation_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    mediation_ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    mediation_outcome: Mapped[str | None] = mapped_column(Text, nullable=True)
    mediation_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    response_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    escalation_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    next_action_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    evidence = relationship(
        "DisputeEvidence", back_populates="dispute", cascade="all, delete-orphan", order_by="DisputeEvidence.seq"
    )
    thread = relationship(
        "DisputeMessage", back_populates="dispute", cascade="all, delete-orphan", order_by="DisputeMessage.seq"
    )
    notes = relationship(
        "DisputeNote", back_populates="dispute", cascade="all, delete-orphan", order_by="DisputeNote.seq"
    )

    @property
    def initiator(self) -> dict:
        return {"user_id": self.initiator_user_id, "role": self.initiator_role}

    @property
    def respondent(self) -> dict:
        return {"user_id": self.respondent_user_id, "role": self.respondent_role}

    @property
    def amount(self) -> dict:
        return {
            "disputed": self.amount_disputed,
            "currency": self.amount_currency,
            "hold_amount": self.hold_amount,
        }

    @property
    def resolution(self) -> dict | None:
        if self.resolution_outcome is None:
            return None
        return {
            "outcome": self.resolution_outcome,
            "description": self.resolution_description,
            "amount": self.resolution_amount,
            "currency": self.resolution_currency,
            "resolved_by": self.resolved_by,
            "resolved_at": self.resolution_resolved_at,
            "accepted_by_initiator": _acceptance(self.accepted_by_initiator, self.accepted_by_initiator_at),
            "accepted_by_respondent": _acceptance(self.accepted_by_respondent, self.accepted_by_respondent_at),
        }

    @property
    def mediation(self) -> dict:
        return {
            "required": self.mediation_required,
            "mediator": self.mediator_id,
            "started_at": self.mediation_started_at,
            "ended_at": self.mediation_ended_at,
            "outcome": self.mediation_outcome,
            "notes": self.mediation_notes,
        }

    @property
    def system_notes(self) -> list["DisputeNote"]:
        return [note for note in self.notes if note.kind == NoteKind.SYSTEM]

    @property
    def admin_notes(self) -> list["DisputeNote"]:
        return [note for note in self.notes if note.kind == NoteKind.ADMIN]

    def party_role(self, user_id: str) -> PartyRole | None:
        if user_id == self.initiator_user_id:
            return self.initiator_role
        if user_id == self.respondent_user_id:
            return self.respondent_role
        return None


def _acceptance(accepted: bool | None, at: datetime | None) -> dict | None:
    if accepted is None:
        return None
    return {"accepted": accepted, "timestamp": at}


class DisputeEvidence(Base):
    __tablename__ = "dispute_evidence"

    dispute_id: Mapped[str] = mapped_column(ForeignKey("disputes.id"), nullable=False, index=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[EvidenceType] = mapped_column(enum_column_type(EvidenceType, "evidencetype"), nullable=False)
    title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    file_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    uploaded_by: Mapped[str] = mapped_column(String(24), nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    verification_status: Mapped[VerificationStatus] = mapped_column(
        enum_column_type(VerificationStatus, "verificationstatus"),
        nullable=False,
        default=VerificationStatus.PENDING,
    )

    dispute = relationship("Dispute", back_populates="evidence")


class DisputeMessage(Base):
    """One entry of the append-only negotiation thread."""

    __tablename__ = "dispute_messages"

    dispute_id: Mapped[str] = mapped_column(ForeignKey("disputes.id"), nullable=False, index=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    sender_id: Mapped[str] = mapped_column(String(24), nullable=False)
    role: Mapped[ThreadRole] = mapped_column(enum_column_type(ThreadRole, "threadrole"), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    attachments: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    visibility: Mapped[MessageVisibility] = mapped_column(
        enum_column_type(MessageVisibility, "messagevisibility"), nullable=False, default=MessageVisibility.ALL
    )
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    dispute = relationship("Dispute", back_populates="thread")


class DisputeNote(Base):
    """System or admin note attached to a dispute."""

    __tablename__ = "dispute_notes"

    dispute_id: Mapped[str] = mapped_column(ForeignKey("disputes.id"), nullable=False, index=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[NoteKind] = mapped_column(enum_column_type(NoteKind, "notekind"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    author_id: Mapped[str | None] = mapped_column(String(24), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    dispute = relationship("Dispute", back_populates="notes")
