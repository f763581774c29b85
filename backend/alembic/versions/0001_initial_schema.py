"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

QUANTITY = sa.Numeric(14, 4)


def _id() -> sa.Column:
    return sa.Column("id", sa.Uuid(), nullable=False, primary_key=True)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    op.create_table(
        "leave_type",
        _id(),
        _created_at(),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("key", sa.String(length=100), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("unit", sa.String(length=20), nullable=False),
        sa.Column("allow_half_day", sa.Boolean(), nullable=False),
        sa.Column("allow_negative", sa.Boolean(), nullable=False),
        sa.Column("negative_balance_floor", QUANTITY, nullable=False),
        sa.UniqueConstraint("organization_id", "key", name="uq_leave_type_org_key"),
    )
    op.create_index("ix_leave_type_organization_id", "leave_type", ["organization_id"])

    op.create_table(
        "organization_holiday",
        _id(),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.UniqueConstraint("organization_id", "date", name="uq_holiday_org_date"),
    )
    op.create_index("ix_organization_holiday_organization_id", "organization_holiday", ["organization_id"])

    op.create_table(
        "work_schedule",
        _id(),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("definition_json", sa.JSON(), nullable=False),
    )
    op.create_index("ix_work_schedule_organization_id", "work_schedule", ["organization_id"])

    op.create_table(
        "policy",
        _id(),
        _created_at(),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("key", sa.String(length=255), nullable=False),
        sa.Column("kind", sa.String(length=20), nullable=False),
        sa.Column("leave_type_id", sa.Uuid(), sa.ForeignKey("leave_type.id", ondelete="CASCADE"), nullable=True),
        sa.UniqueConstraint("organization_id", "key", name="uq_policy_org_key"),
    )
    op.create_index("ix_policy_organization_id", "policy", ["organization_id"])
    op.create_index("ix_policy_leave_type_id", "policy", ["leave_type_id"])

    op.create_table(
        "policy_version",
        _id(),
        _created_at(),
        sa.Column("policy_id", sa.Uuid(), sa.ForeignKey("policy.id", ondelete="CASCADE"), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("effective_from", sa.Date(), nullable=False),
        sa.Column("effective_to", sa.Date(), nullable=True),
        sa.Column("settings_json", sa.JSON(), nullable=False),
        sa.Column("created_by", sa.Uuid(), nullable=False),
        sa.Column("change_reason", sa.String(), nullable=True),
        sa.UniqueConstraint("policy_id", "version", name="uq_policy_version_number"),
    )
    op.create_index("ix_policy_version_policy_id", "policy_version", ["policy_id"])

    op.create_table(
        "policy_assignment",
        _id(),
        _created_at(),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("employee_id", sa.Uuid(), nullable=False),
        sa.Column("policy_id", sa.Uuid(), sa.ForeignKey("policy.id", ondelete="CASCADE"), nullable=False),
        sa.Column("effective_from", sa.Date(), nullable=False),
        sa.Column("effective_to", sa.Date(), nullable=True),
        sa.Column("created_by", sa.Uuid(), nullable=False),
        sa.UniqueConstraint(
            "organization_id",
            "employee_id",
            "policy_id",
            "effective_from",
            name="uq_assignment_employee_policy_from",
        ),
    )
    op.create_index("ix_policy_assignment_organization_id", "policy_assignment", ["organization_id"])
    op.create_index("ix_policy_assignment_employee_id", "policy_assignment", ["employee_id"])
    op.create_index("ix_policy_assignment_policy_id", "policy_assignment", ["policy_id"])

    op.create_table(
        "leave_request",
        _id(),
        _created_at(),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("employee_id", sa.Uuid(), nullable=False),
        sa.Column("leave_type_id", sa.Uuid(), sa.ForeignKey("leave_type.id", ondelete="CASCADE"), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("unit", sa.String(length=20), nullable=False),
        sa.Column("half_day", sa.Boolean(), nullable=False),
        sa.Column("requested_quantity", QUANTITY, nullable=False),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("status", sa.String(length=20), server_default="DRAFT", nullable=False),
        sa.Column("current_step", sa.Integer(), server_default="0", nullable=False),
        sa.Column("created_by", sa.Uuid(), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_reason", sa.String(), nullable=True),
    )
    op.create_index("ix_leave_request_organization_id", "leave_request", ["organization_id"])
    op.create_index("ix_leave_request_employee_id", "leave_request", ["employee_id"])
    op.create_index("ix_leave_request_leave_type_id", "leave_request", ["leave_type_id"])
    op.create_index("ix_leave_request_status", "leave_request", ["status"])
    op.create_index("ix_leave_request_org_status", "leave_request", ["organization_id", "status"])
    op.create_index("ix_leave_request_employee_range", "leave_request", ["employee_id", "start_at", "end_at"])

    op.create_table(
        "overtime_entry",
        _id(),
        _created_at(),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("employee_id", sa.Uuid(), nullable=False),
        sa.Column("policy_id", sa.Uuid(), sa.ForeignKey("policy.id", ondelete="CASCADE"), nullable=False),
        sa.Column("work_date", sa.Date(), nullable=False),
        sa.Column("reported_hours", QUANTITY, nullable=False),
        sa.Column("tier1_hours", QUANTITY, nullable=False),
        sa.Column("tier2_hours", QUANTITY, nullable=False),
        sa.Column("excess_hours", QUANTITY, nullable=False),
        sa.Column("select_comp_time", sa.Boolean(), nullable=False),
        sa.Column("select_cash_payout", sa.Boolean(), nullable=False),
        sa.Column("payout_requested", sa.Boolean(), nullable=False),
        sa.Column("toil_credit", QUANTITY, nullable=True),
        sa.Column("payout_hours", QUANTITY, nullable=True),
        sa.Column("note", sa.String(), nullable=True),
        sa.Column("status", sa.String(length=20), server_default="DRAFT", nullable=False),
        sa.Column("current_step", sa.Integer(), server_default="0", nullable=False),
        sa.Column("created_by", sa.Uuid(), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_reason", sa.String(), nullable=True),
    )
    op.create_index("ix_overtime_entry_organization_id", "overtime_entry", ["organization_id"])
    op.create_index("ix_overtime_entry_employee_id", "overtime_entry", ["employee_id"])
    op.create_index("ix_overtime_entry_policy_id", "overtime_entry", ["policy_id"])
    op.create_index("ix_overtime_entry_status", "overtime_entry", ["status"])
    op.create_index("ix_overtime_entry_org_status", "overtime_entry", ["organization_id", "status"])
    op.create_index("ix_overtime_entry_employee_date", "overtime_entry", ["employee_id", "work_date"])

    op.create_table(
        "approval_step",
        _id(),
        _created_at(),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("subject_kind", sa.String(length=30), nullable=False),
        sa.Column("subject_id", sa.Uuid(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("approver_id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.String(length=20), server_default="PENDING", nullable=False),
        sa.Column("decided_by", sa.Uuid(), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("comment", sa.String(), nullable=True),
        sa.UniqueConstraint("subject_kind", "subject_id", "sequence", name="uq_approval_step_sequence"),
    )
    op.create_index("ix_approval_step_organization_id", "approval_step", ["organization_id"])
    op.create_index("ix_approval_step_approver_id", "approval_step", ["approver_id"])
    op.create_index("ix_approval_step_subject", "approval_step", ["subject_kind", "subject_id"])

    op.create_table(
        "ledger_event",
        _id(),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("employee_id", sa.Uuid(), nullable=False),
        sa.Column("leave_type_id", sa.Uuid(), sa.ForeignKey("leave_type.id", ondelete="CASCADE"), nullable=False),
        sa.Column("kind", sa.String(length=30), nullable=False),
        sa.Column("quantity", QUANTITY, nullable=False),
        sa.Column("balance_after", QUANTITY, nullable=False),
        sa.Column("effective_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source_type", sa.String(length=30), nullable=False),
        sa.Column("source_id", sa.String(length=255), nullable=False),
        sa.Column("reference_id", sa.Uuid(), nullable=True),
        sa.Column("note", sa.String(), nullable=True),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("source_type", "source_id", "kind", name="uq_ledger_source"),
    )
    op.create_index("ix_ledger_event_organization_id", "ledger_event", ["organization_id"])
    op.create_index("ix_ledger_event_employee_id", "ledger_event", ["employee_id"])
    op.create_index("ix_ledger_event_leave_type_id", "ledger_event", ["leave_type_id"])
    op.create_index("ix_ledger_employee_leave_type", "ledger_event", ["employee_id", "leave_type_id"])

    op.create_table(
        "balance_summary",
        sa.Column("employee_id", sa.Uuid(), nullable=False),
        sa.Column("leave_type_id", sa.Uuid(), sa.ForeignKey("leave_type.id", ondelete="CASCADE"), nullable=False),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("balance", QUANTITY, server_default="0", nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("version", sa.Integer(), server_default="1", nullable=False),
        sa.PrimaryKeyConstraint("employee_id", "leave_type_id"),
    )
    op.create_index("ix_balance_summary_organization_id", "balance_summary", ["organization_id"])

    op.create_table(
        "idempotency_record",
        _id(),
        _created_at(),
        sa.Column("scope", sa.String(length=100), nullable=False),
        sa.Column("caller_key", sa.String(length=255), nullable=False),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column("request_hash", sa.String(length=64), nullable=False),
        sa.Column("response_status", sa.Integer(), nullable=False),
        sa.Column("response_body", sa.JSON(), nullable=False),
        sa.UniqueConstraint("scope", "caller_key", "idempotency_key", name="uq_idempotency_scope_caller_key"),
    )

    op.create_table(
        "audit_log",
        _id(),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("actor_id", sa.Uuid(), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("before_json", sa.JSON(), nullable=True),
        sa.Column("after_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_audit_log_organization_id", "audit_log", ["organization_id"])
    op.create_index("ix_audit_log_created_at", "audit_log", ["created_at"])
    op.create_index("ix_audit_entity", "audit_log", ["entity_type", "entity_id"])


def downgrade() -> None:
    for table in (
        "audit_log",
        "idempotency_record",
        "balance_summary",
        "ledger_event",
        "approval_step",
        "overtime_entry",
        "leave_request",
        "policy_assignment",
        "policy_version",
        "policy",
        "work_schedule",
        "organization_holiday",
        "leave_type",
    ):
        op.drop_table(table)
