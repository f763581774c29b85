# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlmodel import Field

from app.models.base import TimestampMixin, UTCDateTime, UUIDBase, quantity_column
from app.models.enums import RequestStatus


class OvertimeEntry(UUIDBase, TimestampMixin, table=True):
    """Hours worked beyond schedule, settled as comp time or a cash payout."""

    __tablename__ = "overtime_entry"
    __table_args__ = (
        sa.Index("ix_overtime_entry_org_status", "organization_id", "status"),
        sa.Index("ix_overtime_entry_employee_date", "employee_id", "work_date"),
    )

    organization_id: uuid.UUID = Field(index=True)
    employee_id: uuid.UUID = Field(index=True)
    policy_id: uuid.UUID = Field(
        sa_column=sa.Column(sa.Uuid, sa.ForeignKey("policy.id", ondelete="CASCADE"), nullable=False, index=True),
    )
    work_date: date
    reported_hours: Decimal = quantity_column()
    tier1_hours: Decimal = quantity_column(default=Decimal(0))
    tier2_hours: Decimal = quantity_column(default=Decimal(0))
    excess_hours: Decimal = quantity_column(default=Decimal(0))
    select_comp_time: bool = Field(default=False)
    select_cash_payout: bool = Field(default=False)
    payout_requested: bool = Field(default=False)
    toil_credit: Decimal | None = quantity_column(default=None, nullable=True)
    payout_hours: Decimal | None = quantity_column(default=None, nullable=True)
    note: str | None = None
    status: str = Field(
        default=RequestStatus.DRAFT, max_length=20, index=True, sa_column_kwargs={"server_default": "DRAFT"}
    )
    current_step: int = Field(default=0, sa_column_kwargs={"server_default": "0"})
    created_by: uuid.UUID
    submitted_at: datetime | None = Field(default=None, sa_type=UTCDateTime)  # ty: ignore[invalid-argument-type]
    decided_at: datetime | None = Field(default=None, sa_type=UTCDateTime)  # ty: ignore[invalid-argument-type]
    cancelled_at: datetime | None = Field(default=None, sa_type=UTCDateTime)  # ty: ignore[invalid-argument-type]
    cancel_reason: str | None = None
