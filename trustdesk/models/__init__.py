"""ORM models package."""
from .api_key import ApiKey, ApiScope
from .audit import AuditLog
from .base import Base
from .dispute import (
    Dispute,
    DisputeEvidence,
    DisputeMessage,
    DisputeNote,
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
from .escrow import (
    Escrow,
    EscrowAction,
    EscrowHistoryEntry,
    EscrowResolution,
    EscrowStatus,
    PaymentMethod,
    ReleaseCondition,
    ReleaseConditionType,
)
from .scheduler_lock import SchedulerLock
from .transaction import (
    LedgerPaymentMethod,
    ProcessingAttempt,
    RecipientType,
    SenderType,
    Transaction,
    TransactionStatus,
    TransactionStatusEntry,
    TransactionSubType,
    TransactionType,
)

__all__ = [
    "ApiKey",
    "ApiScope",
    "AuditLog",
    "Base",
    "Dispute",
    "DisputeEvidence",
    "DisputeMessage",
    "DisputeNote",
    "DisputePriority",
    "DisputeStatus",
    "DisputeType",
    "EvidenceType",
    "MessageVisibility",
    "NoteKind",
    "PartyRole",
    "ResolutionOutcome",
    "ThreadRole",
    "VerificationStatus",
    "Escrow",
    "EscrowAction",
    "EscrowHistoryEntry",
    "EscrowResolution",
    "EscrowStatus",
    "PaymentMethod",
    "ReleaseCondition",
    "ReleaseConditionType",
    "SchedulerLock",
    "LedgerPaymentMethod",
    "ProcessingAttempt",
    "RecipientType",
    "SenderType",
    "Transaction",
    "TransactionStatus",
    "TransactionStatusEntry",
    "TransactionSubType",
    "TransactionType",
]
