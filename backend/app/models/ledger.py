# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlmodel import Field

from app.models.base import UTCDateTime, UUIDBase, quantity_column


def _now_utc() -> datetime:
    return datetime.now(UTC)


class LedgerEvent(UUIDBase, table=True):
    """Append-only signed balance movement for one employee and leave type."""

    __tablename__ = "ledger_event"
    __table_args__ = (
        sa.Index("ix_ledger_employee_leave_type", "employee_id", "leave_type_id"),
        sa.UniqueConstraint("source_type", "source_id", "kind", name="uq_ledger_source"),
    )

    organization_id: uuid.UUID = Field(index=True)
    employee_id: uuid.UUID = Field(index=True)
    leave_type_id: uuid.UUID = Field(
        sa_column=sa.Column(sa.Uuid, sa.ForeignKey("leave_type.id", ondelete="CASCADE"), nullable=False, index=True),
    )
    kind: str = Field(max_length=30)
    quantity: Decimal = quantity_column()
    # Summary balance right after posting. Events are projected in posting
    # order, so a backdated event does not carry the balance as of effective_at.
    balance_after: Decimal = quantity_column()
    effective_at: datetime = Field(sa_type=UTCDateTime)  # ty: ignore[invalid-argument-type]
    source_type: str = Field(max_length=30)
    source_id: str = Field(max_length=255)
    reference_id: uuid.UUID | None = None
    note: str | None = None
    created_by: uuid.UUID | None = None
    created_at: datetime = Field(
        default_factory=_now_utc,
        sa_type=UTCDateTime,  # ty: ignore[invalid-argument-type]
        sa_column_kwargs={"server_default": sa.func.now()},
    )
