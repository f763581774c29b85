# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from app.models.base import UTCDateTime, quantity_column


def _now_utc() -> datetime:
    return datetime.now(UTC)


class BalanceSummary(SQLModel, table=True):
    """Current balance per employee and leave type, kept equal to the ledger sum."""

    __tablename__ = "balance_summary"

    employee_id: uuid.UUID = Field(primary_key=True, sa_type=sa.Uuid)
    leave_type_id: uuid.UUID = Field(
        sa_column=sa.Column(sa.Uuid, sa.ForeignKey("leave_type.id", ondelete="CASCADE"), primary_key=True),
    )
    organization_id: uuid.UUID = Field(index=True)
    balance: Decimal = quantity_column(default=Decimal(0), sa_column_kwargs={"server_default": "0"})
    updated_at: datetime = Field(
        default_factory=_now_utc,
        sa_type=UTCDateTime,  # ty: ignore[invalid-argument-type]
        sa_column_kwargs={"server_default": sa.func.now()},
    )
    version: int = Field(default=1, sa_column_kwargs={"server_default": "1"})
