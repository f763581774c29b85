# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from app.models.enums import RequestStatus
from app.schemas.request import ApprovalStepResponse


class CreateOvertimeEntryPayload(BaseModel):
    """Request body for recording worked overtime as a draft entry."""

    employee_id: uuid.UUID
    policy_id: uuid.UUID
    work_date: date
    reported_hours: Decimal = Field(gt=0, le=24)
    select_comp_time: bool = False
    select_cash_payout: bool = False
    note: str | None = Field(default=None, max_length=1000)
    idempotency_key: str | None = Field(default=None, max_length=255)


class OvertimeEntryResponse(BaseModel):
    """Response schema for a single overtime entry."""

    id: uuid.UUID
    organization_id: uuid.UUID
    employee_id: uuid.UUID
    policy_id: uuid.UUID
    work_date: date
    reported_hours: Decimal
    tier1_hours: Decimal
    tier2_hours: Decimal
    excess_hours: Decimal
    select_comp_time: bool
    select_cash_payout: bool
    payout_requested: bool
    payout_hours: Decimal | None
    toil_credit: Decimal | None
    note: str | None
    status: RequestStatus
    current_step: int
    steps: list[ApprovalStepResponse]
    created_by: uuid.UUID
    submitted_at: datetime | None
    decided_at: datetime | None
    cancelled_at: datetime | None
    cancel_reason: str | None
    created_at: datetime


class OvertimeEntryListResponse(BaseModel):
    """Paginated list of overtime entries."""

    items: list[OvertimeEntryResponse]
    total: int
