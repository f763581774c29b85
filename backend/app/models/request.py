# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlmodel import Field

from app.models.base import TimestampMixin, UTCDateTime, UUIDBase, quantity_column
from app.models.enums import RequestStatus


class LeaveRequest(UUIDBase, TimestampMixin, table=True):
    """An employee's leave request with approval workflow state."""

    __tablename__ = "leave_request"
    __table_args__ = (
        sa.Index("ix_leave_request_org_status", "organization_id", "status"),
        sa.Index("ix_leave_request_employee_range", "employee_id", "start_at", "end_at"),
    )

    organization_id: uuid.UUID = Field(index=True)
    employee_id: uuid.UUID = Field(index=True)
    leave_type_id: uuid.UUID = Field(
        sa_column=sa.Column(sa.Uuid, sa.ForeignKey("leave_type.id", ondelete="CASCADE"), nullable=False, index=True),
    )
    start_at: datetime = Field(sa_type=UTCDateTime)  # ty: ignore[invalid-argument-type]
    end_at: datetime = Field(sa_type=UTCDateTime)  # ty: ignore[invalid-argument-type]
    unit: str = Field(max_length=20)
    half_day: bool = Field(default=False)
    requested_quantity: Decimal = quantity_column()
    reason: str | None = None
    status: str = Field(
        default=RequestStatus.DRAFT, max_length=20, index=True, sa_column_kwargs={"server_default": "DRAFT"}
    )
    current_step: int = Field(default=0, sa_column_kwargs={"server_default": "0"})
    created_by: uuid.UUID
    submitted_at: datetime | None = Field(default=None, sa_type=UTCDateTime)  # ty: ignore[invalid-argument-type]
    decided_at: datetime | None = Field(default=None, sa_type=UTCDateTime)  # ty: ignore[invalid-argument-type]
    cancelled_at: datetime | None = Field(default=None, sa_type=UTCDateTime)  # ty: ignore[invalid-argument-type]
    cancel_reason: str | None = None
