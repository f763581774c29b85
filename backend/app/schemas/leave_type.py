# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from app.models.enums import LeaveUnit


class CreateLeaveTypeRequest(BaseModel):
    """Request body for creating a leave type."""

    key: str = Field(min_length=1, max_length=100)
    name: str = Field(min_length=1, max_length=255)
    unit: LeaveUnit = LeaveUnit.DAYS
    allow_half_day: bool = False
    allow_negative: bool = False
    negative_balance_floor: Decimal = Field(default=Decimal(0), ge=0)


class LeaveTypeResponse(BaseModel):
    """Response schema for a leave type."""

    id: uuid.UUID
    organization_id: uuid.UUID
    key: str
    name: str
    unit: LeaveUnit
    allow_half_day: bool
    allow_negative: bool
    negative_balance_floor: Decimal
    created_at: datetime


class LeaveTypeListResponse(BaseModel):
    """List of leave types."""

    items: list[LeaveTypeResponse]
    total: int
