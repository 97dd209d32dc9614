"""initial escrow, dispute and ledger schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-16 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


APISCOPE = ("user", "support", "admin")
ESCROW_STATUS = ("pending", "funded", "released", "refunded", "disputed")
ESCROW_ACTION = ("created", "funded", "released", "disputed", "resolved", "refunded")
ESCROW_RESOLUTION = ("released", "refunded", "split")
RELEASE_CONDITION_TYPE = ("milestone", "time", "manual")
ESCROW_PAYMENT_METHOD = ("credit_card", "bank_transfer", "paypal", "wallet", "crypto")
PARTY_ROLE = ("client", "freelancer")
THREAD_ROLE = ("client", "freelancer", "admin", "mediator")
DISPUTE_TYPE = ("payment", "delivery", "quality", "communication", "scope", "cancellation", "refund", "other")
DISPUTE_STATUS = ("opened", "under_review", "evidence_needed", "mediation", "resolved", "cancelled", "escalated")
DISPUTE_PRIORITY = ("low", "medium", "high", "urgent")
RESOLUTION_OUTCOME = (
    "resolved_mutually",
    "in_favor_of_client",
    "in_favor_of_freelancer",
    "partial_refund",
    "full_refund",
    "cancelled",
    "other",
)
EVIDENCE_TYPE = ("message", "file", "screenshot", "contract", "payment_proof", "delivery_proof", "other")
VERIFICATION_STATUS = ("pending", "verified", "rejected")
MESSAGE_VISIBILITY = ("all", "admin_only")
NOTE_KIND = ("system", "admin")
SENDER_TYPE = ("client", "platform", "system")
RECIPIENT_TYPE = ("freelancer", "platform", "system")
TRANSACTION_TYPE = (
    "payment",
    "refund",
    "withdrawal",
    "deposit",
    "fee",
    "bonus",
    "adjustment",
    "escrow_fund",
    "escrow_release",
    "escrow_refund",
)
TRANSACTION_SUB_TYPE = (
    "milestone_payment",
    "hourly_payment",
    "service_fee",
    "processing_fee",
    "platform_fee",
    "dispute_refund",
    "bonus_credit",
    "referral_bonus",
    "withdrawal_fee",
    "currency_conversion",
    "tax_deduction",
    "escrow_deposit",
    "escrow_disbursement",
    "escrow_fee",
    "escrow_refund_fee",
)
TRANSACTION_STATUS = ("pending", "processing", "completed", "failed", "cancelled", "refunded", "disputed")
LEDGER_PAYMENT_METHOD = ("credit_card", "bank_transfer", "paypal", "wallet", "crypto", "system")


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.String(length=24), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def _money(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.Numeric(18, 2), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        "api_keys",
        *_base_columns(),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("prefix", sa.String(length=32), nullable=False),
        sa.Column("key_hash", sa.String(length=128), nullable=False, unique=True),
        sa.Column("scope", sa.Enum(*APISCOPE, name="apiscope"), nullable=False),
        sa.Column("user_id", sa.String(length=24), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_api_keys_prefix", "api_keys", ["prefix"])
    op.create_index("ix_api_keys_user_id", "api_keys", ["user_id"])

    op.create_table(
        "audit_logs",
        *_base_columns(),
        sa.Column("actor", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("data_json", sa.JSON(), nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity", "entity_id"])

    op.create_table(
        "scheduler_locks",
        *_base_columns(),
        sa.Column("name", sa.String(length=64), nullable=False, unique=True),
        sa.Column("owner", sa.String(length=128), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "escrows",
        *_base_columns(),
        sa.Column("job_id", sa.String(length=24), nullable=False),
        sa.Column("client_id", sa.String(length=24), nullable=False),
        sa.Column("freelancer_id", sa.String(length=24), nullable=False),
        _money("amount", nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        _money("fee_amount", nullable=False),
        sa.Column("status", sa.Enum(*ESCROW_STATUS, name="escrowstatus"), nullable=False),
        sa.Column("funded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("payment_gateway_id", sa.String(length=24), nullable=False),
        sa.Column(
            "payment_method",
            sa.Enum(*ESCROW_PAYMENT_METHOD, name="escrowpaymentmethod"),
            nullable=False,
        ),
        sa.Column("transaction_ids", sa.JSON(), nullable=False),
        sa.Column("is_disputed", sa.Boolean(), nullable=False),
        sa.Column("dispute_id", sa.String(length=24), nullable=True),
        sa.Column("disputed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dispute_resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "dispute_resolution",
            sa.Enum(*ESCROW_RESOLUTION, name="escrowresolution"),
            nullable=True,
        ),
        sa.Column("auto_release_enabled", sa.Boolean(), nullable=False),
        sa.Column("auto_release_days", sa.Integer(), nullable=False),
        sa.Column("require_milestone_completion", sa.Boolean(), nullable=False),
        sa.Column("client_verified", sa.Boolean(), nullable=False),
        sa.Column("freelancer_verified", sa.Boolean(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_escrows_amount_positive"),
        sa.CheckConstraint("fee_amount >= 0", name="ck_escrows_fee_non_negative"),
    )
    op.create_index("ix_escrows_job_id", "escrows", ["job_id"])
    op.create_index("ix_escrows_client_id", "escrows", ["client_id"])
    op.create_index("ix_escrows_freelancer_id", "escrows", ["freelancer_id"])
    op.create_index("ix_escrows_status", "escrows", ["status"])
    op.create_index("ix_escrows_is_disputed", "escrows", ["is_disputed"])
    op.create_index("ix_escrows_expiry_date", "escrows", ["expiry_date"])

    op.create_table(
        "escrow_release_conditions",
        *_base_columns(),
        sa.Column("escrow_id", sa.String(length=24), sa.ForeignKey("escrows.id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("type", sa.Enum(*RELEASE_CONDITION_TYPE, name="releaseconditiontype"), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _money("amount"),
        sa.Column("completed", sa.Boolean(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("milestone_id", sa.String(length=24), nullable=True),
        sa.CheckConstraint("amount IS NULL OR amount > 0", name="ck_release_conditions_amount_positive"),
    )
    op.create_index("ix_escrow_release_conditions_escrow_id", "escrow_release_conditions", ["escrow_id"])

    op.create_table(
        "escrow_history",
        *_base_columns(),
        sa.Column("escrow_id", sa.String(length=24), sa.ForeignKey("escrows.id"), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("action", sa.Enum(*ESCROW_ACTION, name="escrowaction"), nullable=False),
        sa.Column("performed_by", sa.String(length=24), nullable=False),
        _money("amount"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_escrow_history_escrow_id", "escrow_history", ["escrow_id"])

    op.create_table(
        "disputes",
        *_base_columns(),
        sa.Column("initiator_user_id", sa.String(length=24), nullable=False),
        sa.Column("initiator_role", sa.Enum(*PARTY_ROLE, name="partyrole"), nullable=False),
        sa.Column("respondent_user_id", sa.String(length=24), nullable=False),
        sa.Column("respondent_role", sa.Enum(*PARTY_ROLE, name="partyrole"), nullable=False),
        sa.Column("job_id", sa.String(length=24), nullable=True),
        sa.Column("contract_id", sa.String(length=24), nullable=True),
        sa.Column("milestone_id", sa.String(length=24), nullable=True),
        sa.Column("transaction_id", sa.String(length=24), nullable=True),
        sa.Column("type", sa.Enum(*DISPUTE_TYPE, name="disputetype"), nullable=False),
        sa.Column("sub_type", sa.String(length=100), nullable=True),
        sa.Column("status", sa.Enum(*DISPUTE_STATUS, name="disputestatus"), nullable=False),
        sa.Column("priority", sa.Enum(*DISPUTE_PRIORITY, name="disputepriority"), nullable=False),
        _money("amount_disputed"),
        sa.Column("amount_currency", sa.String(length=3), nullable=False),
        sa.Column("hold_amount", sa.Boolean(), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("desired_outcome", sa.Text(), nullable=False),
        sa.Column(
            "resolution_outcome",
            sa.Enum(*RESOLUTION_OUTCOME, name="resolutionoutcome"),
            nullable=True,
        ),
        sa.Column("resolution_description", sa.Text(), nullable=True),
        _money("resolution_amount"),
        sa.Column("resolution_currency", sa.String(length=3), nullable=True),
        sa.Column("resolved_by", sa.String(length=24), nullable=True),
        sa.Column("resolution_resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("accepted_by_initiator", sa.Boolean(), nullable=True),
        sa.Column("accepted_by_initiator_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("accepted_by_respondent", sa.Boolean(), nullable=True),
        sa.Column("accepted_by_respondent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_to", sa.String(length=24), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("admin_priority", sa.Enum(*DISPUTE_PRIORITY, name="disputepriority"), nullable=True),
        sa.Column("mediation_required", sa.Boolean(), nullable=False),
        sa.Column("mediator_id", sa.String(length=24), nullable=True),
        sa.Column("mediation_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("mediation_ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("mediation_outcome", sa.Text(), nullable=True),
        sa.Column("mediation_notes", sa.Text(), nullable=True),
        sa.Column("response_deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("escalation_deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("next_action_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
    )
    op.create_index("ix_disputes_initiator_user_id", "disputes", ["initiator_user_id"])
    op.create_index("ix_disputes_respondent_user_id", "disputes", ["respondent_user_id"])
    op.create_index("ix_disputes_job_id", "disputes", ["job_id"])
    op.create_index("ix_disputes_contract_id", "disputes", ["contract_id"])
    op.create_index("ix_disputes_assigned_to", "disputes", ["assigned_to"])
    op.create_index("ix_disputes_status", "disputes", ["status"])
    op.create_index("ix_disputes_created_at", "disputes", ["created_at"])
    op.create_index("ix_disputes_next_action_date", "disputes", ["next_action_date"])

    op.create_table(
        "dispute_evidence",
        *_base_columns(),
        sa.Column("dispute_id", sa.String(length=24), sa.ForeignKey("disputes.id"), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("type", sa.Enum(*EVIDENCE_TYPE, name="evidencetype"), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("url", sa.String(length=2048), nullable=True),
        sa.Column("file_type", sa.String(length=100), nullable=True),
        sa.Column("file_size", sa.Integer(), nullable=True),
        sa.Column("uploaded_by", sa.String(length=24), nullable=False),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "verification_status",
            sa.Enum(*VERIFICATION_STATUS, name="verificationstatus"),
            nullable=False,
        ),
    )
    op.create_index("ix_dispute_evidence_dispute_id", "dispute_evidence", ["dispute_id"])

    op.create_table(
        "dispute_messages",
        *_base_columns(),
        sa.Column("dispute_id", sa.String(length=24), sa.ForeignKey("disputes.id"), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("sender_id", sa.String(length=24), nullable=False),
        sa.Column("role", sa.Enum(*THREAD_ROLE, name="threadrole"), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("attachments", sa.JSON(), nullable=False),
        sa.Column("visibility", sa.Enum(*MESSAGE_VISIBILITY, name="messagevisibility"), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_dispute_messages_dispute_id", "dispute_messages", ["dispute_id"])

    op.create_table(
        "dispute_notes",
        *_base_columns(),
        sa.Column("dispute_id", sa.String(length=24), sa.ForeignKey("disputes.id"), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("kind", sa.Enum(*NOTE_KIND, name="notekind"), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("author_id", sa.String(length=24), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_dispute_notes_dispute_id", "dispute_notes", ["dispute_id"])

    op.create_table(
        "transactions",
        *_base_columns(),
        sa.Column("transaction_id", sa.String(length=64), nullable=False, unique=True),
        sa.Column("reference", sa.String(length=128), nullable=True),
        sa.Column("external_id", sa.String(length=128), nullable=True),
        sa.Column("sender_user_id", sa.String(length=24), nullable=False),
        sa.Column("sender_type", sa.Enum(*SENDER_TYPE, name="sendertype"), nullable=False),
        sa.Column("recipient_user_id", sa.String(length=24), nullable=False),
        sa.Column("recipient_type", sa.Enum(*RECIPIENT_TYPE, name="recipienttype"), nullable=False),
        sa.Column("job_id", sa.String(length=24), nullable=True),
        sa.Column("contract_id", sa.String(length=24), nullable=True),
        sa.Column("milestone_id", sa.String(length=24), nullable=True),
        sa.Column("dispute_id", sa.String(length=24), nullable=True),
        sa.Column("escrow_id", sa.String(length=24), nullable=True),
        sa.Column("type", sa.Enum(*TRANSACTION_TYPE, name="transactiontype"), nullable=False),
        sa.Column("sub_type", sa.Enum(*TRANSACTION_SUB_TYPE, name="transactionsubtype"), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        _money("amount_value", nullable=False),
        sa.Column("amount_currency", sa.String(length=3), nullable=False),
        sa.Column("exchange_rate", sa.Numeric(18, 8), nullable=True),
        _money("converted_value"),
        sa.Column("converted_currency", sa.String(length=3), nullable=True),
        _money("fee_platform"),
        _money("fee_processing"),
        _money("fee_tax"),
        sa.Column("fee_currency", sa.String(length=3), nullable=True),
        _money("total_value", nullable=False),
        sa.Column("total_currency", sa.String(length=3), nullable=False),
        sa.Column(
            "payment_method_type",
            sa.Enum(*LEDGER_PAYMENT_METHOD, name="ledgerpaymentmethod"),
            nullable=False,
        ),
        sa.Column("status", sa.Enum(*TRANSACTION_STATUS, name="transactionstatus"), nullable=False),
        sa.Column("processor_name", sa.String(length=64), nullable=True),
        sa.Column("processor_transaction_id", sa.String(length=128), nullable=True),
        sa.Column("processor_status", sa.String(length=64), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.CheckConstraint("amount_value >= 0", name="ck_transactions_amount_non_negative"),
    )
    op.create_index("ix_transactions_sender_user_id", "transactions", ["sender_user_id"])
    op.create_index("ix_transactions_recipient_user_id", "transactions", ["recipient_user_id"])
    op.create_index("ix_transactions_job_id", "transactions", ["job_id"])
    op.create_index("ix_transactions_contract_id", "transactions", ["contract_id"])
    op.create_index("ix_transactions_escrow_id", "transactions", ["escrow_id"])
    op.create_index("ix_transactions_created_at", "transactions", ["created_at"])
    op.create_index("ix_transactions_status", "transactions", ["status"])

    op.create_table(
        "transaction_status_history",
        *_base_columns(),
        sa.Column("transaction_pk", sa.String(length=24), sa.ForeignKey("transactions.id"), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("status", sa.Enum(*TRANSACTION_STATUS, name="transactionstatus"), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("updated_by", sa.String(length=24), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_transaction_status_history_transaction_pk", "transaction_status_history", ["transaction_pk"]
    )

    op.create_table(
        "transaction_attempts",
        *_base_columns(),
        sa.Column("transaction_pk", sa.String(length=24), sa.ForeignKey("transactions.id"), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=64), nullable=False),
        sa.Column("error", sa.JSON(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_transaction_attempts_transaction_pk", "transaction_attempts", ["transaction_pk"])


def downgrade() -> None:
    op.drop_table("transaction_attempts")
    op.drop_table("transaction_status_history")
    op.drop_table("transactions")
    op.drop_table("dispute_notes")
    op.drop_table("dispute_messages")
    op.drop_table("dispute_evidence")
    op.drop_table("disputes")
    op.drop_table("escrow_history")
    op.drop_table("escrow_release_conditions")
    op.drop_table("escrows")
    op.drop_table("scheduler_locks")
    op.drop_table("audit_logs")
    op.drop_table("api_keys")
