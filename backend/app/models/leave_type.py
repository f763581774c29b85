# ruff: noqa: TC003
from __future__ import annotations

import uuid
from decimal import Decimal

import sqlalchemy as sa
from sqlmodel import Field

from app.models.base import TimestampMixin, UUIDBase, quantity_column
from app.models.enums import LeaveUnit


class LeaveType(UUIDBase, TimestampMixin, table=True):
    """A benefit employees hold a balance in (vacation, sick, toil, ...)."""

    __tablename__ = "leave_type"
    __table_args__ = (sa.UniqueConstraint("organization_id", "key", name="uq_leave_type_org_key"),)

    organization_id: uuid.UUID = Field(index=True)
    key: str = Field(max_length=100)
    name: str = Field(max_length=255)
    unit: str = Field(default=LeaveUnit.DAYS, max_length=20)
    allow_half_day: bool = Field(default=False)
    allow_negative: bool = Field(default=False)
    negative_balance_floor: Decimal = quantity_column(default=Decimal(0))
