# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from app.models.enums import DecisionOutcome, LeaveUnit, RequestStatus, StepStatus

# ---------------------------------------------------------------------------
# Shared workflow payloads
# ---------------------------------------------------------------------------


class WorkflowActionPayload(BaseModel):
    """Request body for submitting a draft."""

    idempotency_key: str | None = Field(default=None, max_length=255)


class SkipStepPayload(BaseModel):
    """Request body for an admin skipping the current step."""

    comment: str | None = Field(default=None, max_length=1000)
    idempotency_key: str | None = Field(default=None, max_length=255)


class DecisionPayload(BaseModel):
    """Request body for an approver's decision on the current step."""

    outcome: DecisionOutcome
    comment: str | None = Field(default=None, max_length=1000)
    idempotency_key: str | None = Field(default=None, max_length=255)


class CancelPayload(BaseModel):
    """Request body for cancelling a pending or approved request."""

    reason: str | None = Field(default=None, max_length=1000)
    idempotency_key: str | None = Field(default=None, max_length=255)


class ApprovalStepResponse(BaseModel):
    """One step of an approval chain."""

    id: uuid.UUID
    sequence: int
    approver_id: uuid.UUID
    status: StepStatus
    decided_by: uuid.UUID | None
    decided_at: datetime | None
    comment: str | None


# ---------------------------------------------------------------------------
# Leave request payloads
# ---------------------------------------------------------------------------


class CreateLeaveRequestPayload(BaseModel):
    """Request body for creating a draft leave request."""

    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    start_at: datetime
    end_at: datetime
    unit: LeaveUnit
    half_day: bool = False
    reason: str | None = Field(default=None, max_length=1000)
    idempotency_key: str | None = Field(default=None, max_length=255)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class LeaveRequestResponse(BaseModel):
    """Response schema for a single leave request."""

    id: uuid.UUID
    organization_id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    start_at: datetime
    end_at: datetime
    unit: LeaveUnit
    half_day: bool
    requested_quantity: Decimal
    reason: str | None
    status: RequestStatus
    current_step: int
    steps: list[ApprovalStepResponse]
    created_by: uuid.UUID
    submitted_at: datetime | None
    decided_at: datetime | None
    cancelled_at: datetime | None
    cancel_reason: str | None
    created_at: datetime


class LeaveRequestListResponse(BaseModel):
    """Paginated list of leave requests."""

    items: list[LeaveRequestResponse]
    total: int
