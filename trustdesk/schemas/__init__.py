"""Schema package exports."""
from .dispute import (
    AdminNoteCreate,
    DisputeAssign,
    DisputeCancel,
    DisputeCreate,
    DisputeEscalate,
    DisputeMessageCreate,
    DisputeMessageRead,
    DisputePage,
    DisputeRead,
    DisputeResolutionCreate,
    DisputeStatRead,
    DisputeStatusUpdate,
    EvidenceCreate,
    EvidenceRead,
    EvidenceVerify,
    ResolutionResponse,
)
from .escrow import (
    AutoReleaseCheckRead,
    AutoReleaseSettings,
    EscrowCreate,
    EscrowDisputeCreate,
    EscrowFund,
    EscrowRead,
    EscrowRefund,
    EscrowRelease,
    EscrowResolve,
    EscrowStatRead,
    ReleaseConditionCreate,
)
from .fees import FeeEstimate, FeeEstimateRequest, FeeQuote, FeeSavings, FeeStructure, FeeType
from .transaction import (
    ProcessingAttemptCreate,
    TransactionCreate,
    TransactionRead,
    TransactionStatRead,
    TransactionStatusUpdate,
)

__all__ = [
    "AdminNoteCreate",
    "DisputeAssign",
    "DisputeCancel",
    "DisputeCreate",
    "DisputeEscalate",
    "DisputeMessageCreate",
    "DisputeMessageRead",
    "DisputePage",
    "DisputeRead",
    "DisputeResolutionCreate",
    "DisputeStatRead",
    "DisputeStatusUpdate",
    "EvidenceCreate",
    "EvidenceRead",
    "EvidenceVerify",
    "ResolutionResponse",
    "AutoReleaseCheckRead",
    "AutoReleaseSettings",
    "EscrowCreate",
    "EscrowDisputeCreate",
    "EscrowFund",
    "EscrowRead",
    "EscrowRefund",
    "EscrowRelease",
    "EscrowResolve",
    "EscrowStatRead",
    "ReleaseConditionCreate",
    "FeeEstimate",
    "FeeEstimateRequest",
    "FeeQuote",
    "FeeSavings",
    "FeeStructure",
    "FeeType",
    "ProcessingAttemptCreate",
    "TransactionCreate",
    "TransactionRead",
    "TransactionStatRead",
    "TransactionStatusUpdate",
]
