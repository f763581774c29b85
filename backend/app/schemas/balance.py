# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from app.models.enums import LeaveUnit, LedgerEventKind, LedgerSourceType

# ---------------------------------------------------------------------------
# Balance response schemas
# ---------------------------------------------------------------------------


class BalanceResponse(BaseModel):
    """Balance for a single leave type."""

    leave_type_id: uuid.UUID
    leave_type_key: str
    unit: LeaveUnit
    balance: Decimal
    version: int
    updated_at: datetime | None


class BalanceListResponse(BaseModel):
    """All leave-type balances for an employee."""

    items: list[BalanceResponse]
    total: int


# ---------------------------------------------------------------------------
# Ledger response schemas
# ---------------------------------------------------------------------------


class LedgerEventResponse(BaseModel):
    """A single ledger event."""

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    kind: LedgerEventKind
    quantity: Decimal
    balance_after: Decimal
    effective_at: datetime
    source_type: LedgerSourceType
    source_id: str
    reference_id: uuid.UUID | None
    note: str | None
    created_by: uuid.UUID | None
    created_at: datetime


class LedgerListResponse(BaseModel):
    """Paginated ledger events."""

    items: list[LedgerEventResponse]
    total: int


# ---------------------------------------------------------------------------
# Adjustment request schema
# ---------------------------------------------------------------------------


class CreateAdjustmentRequest(BaseModel):
    """Request body for an admin balance adjustment."""

    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    quantity: Decimal = Field(description="Signed quantity: positive to add, negative to deduct")
    note: str = Field(min_length=1, max_length=1000)
    idempotency_key: str | None = Field(default=None, max_length=255)


# ---------------------------------------------------------------------------
# Maintenance schemas
# ---------------------------------------------------------------------------


class BalanceDriftResponse(BaseModel):
    """A summary row that disagrees with the ledger sum."""

    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    summary_balance: Decimal | None
    ledger_balance: Decimal


class IntegrityReportResponse(BaseModel):
    """Result of a ledger/summary reconciliation."""

    consistent: bool
    drifts: list[BalanceDriftResponse]


class RebuildRequest(BaseModel):
    """Request body for recomputing summaries from the ledger."""

    employee_id: uuid.UUID | None = None


class RebuildResponse(BaseModel):
    """Number of summary rows rewritten."""

    summaries_rebuilt: int
