# ruff: noqa: TC003
from __future__ import annotations

import calendar
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Self

from pydantic import BaseModel, Discriminator, Field, Tag, model_validator

from app.models.enums import AccrualFrequency, PolicyKind, ProrationMethod

# ---------------------------------------------------------------------------
# Settings sub-schemas
# ---------------------------------------------------------------------------


class BlackoutWindow(BaseModel):
    """Inclusive date range in which new leave requests are refused."""

    start_date: date
    end_date: date
    reason: str | None = None

    @model_validator(mode="after")
    def _validate_dates(self) -> Self:
        if self.end_date < self.start_date:
            msg = "end_date must be >= start_date"
            raise ValueError(msg)
        return self


# ---------------------------------------------------------------------------
# Per-kind policy settings (discriminated union)
# ---------------------------------------------------------------------------


class LeavePolicySettings(BaseModel):
    """Accrual, cap, carryover and blackout rules for one leave type."""

    kind: Literal["LEAVE"] = "LEAVE"
    accrual_frequency: AccrualFrequency | None = None
    accrual_amount: Decimal = Field(default=Decimal(0), ge=0)
    proration: ProrationMethod = ProrationMethod.WORKING_DAYS
    max_balance: Decimal | None = Field(default=None, ge=0)
    carryover_limit: Decimal | None = Field(default=None, ge=0)
    carryover_expiry_month: int | None = Field(default=None, ge=1, le=12)
    carryover_expiry_day: int | None = Field(default=None, ge=1, le=31)
    blackout_windows: list[BlackoutWindow] = []

    @model_validator(mode="after")
    def _validate_rules(self) -> Self:
        if self.accrual_frequency is not None and self.accrual_amount <= 0:
            msg = "accrual_amount must be positive when accrual_frequency is set"
            raise ValueError(msg)
        if (self.carryover_expiry_month is None) != (self.carryover_expiry_day is None):
            msg = "carryover_expiry_month and carryover_expiry_day must be set together"
            raise ValueError(msg)
        if self.carryover_expiry_month is not None and self.carryover_expiry_day is not None:
            # A non-leap year so that Feb 29 is refused.
            _, last_day = calendar.monthrange(2023, self.carryover_expiry_month)
            if self.carryover_expiry_day > last_day:
                msg = "carryover_expiry_day is out of range for carryover_expiry_month"
                raise ValueError(msg)
            if self.carryover_limit is None:
                msg = "carryover_limit is required when a carryover expiry date is set"
                raise ValueError(msg)
        return self

    @property
    def has_carryover_expiry(self) -> bool:
        return self.carryover_expiry_month is not None


class OvertimePolicySettings(BaseModel):
    """Tier thresholds, weekly limits and comp-time conversion for overtime."""

    kind: Literal["OVERTIME"] = "OVERTIME"
    tier1_hours: Decimal = Field(ge=0)
    tier1_multiplier: Decimal = Field(default=Decimal("1.5"), gt=0)
    tier2_multiplier: Decimal = Field(default=Decimal("2.0"), gt=0)
    weekly_threshold_hours: Decimal | None = Field(default=None, ge=0)
    weekly_max_overtime_hours: Decimal | None = Field(default=None, ge=0)
    comp_time_eligible: bool = True
    comp_time_multiplier: Decimal = Field(default=Decimal("1.0"), gt=0)


def _settings_discriminator(v: Any) -> str:
    """Discriminate policy settings by kind."""
    kind = v.get("kind", "") if isinstance(v, dict) else getattr(v, "kind", "")
    if kind == PolicyKind.LEAVE:
        return "leave"
    if kind == PolicyKind.OVERTIME:
        return "overtime"
    return "unknown"


PolicySettings = Annotated[
    Annotated[LeavePolicySettings, Tag("leave")] | Annotated[OvertimePolicySettings, Tag("overtime")],
    Discriminator(_settings_discriminator),
]

# ---------------------------------------------------------------------------
# API request / response schemas
# ---------------------------------------------------------------------------


class PolicyVersionInput(BaseModel):
    """Input for creating a policy version (used in both create and update)."""

    effective_from: date
    settings: PolicySettings
    change_reason: str | None = None


class CreatePolicyRequest(BaseModel):
    """Request body for creating a new policy."""

    key: str = Field(min_length=1, max_length=255)
    leave_type_id: uuid.UUID | None = None
    version: PolicyVersionInput

    @model_validator(mode="after")
    def _validate_leave_type(self) -> Self:
        is_leave = isinstance(self.version.settings, LeavePolicySettings)
        if is_leave and self.leave_type_id is None:
            msg = "leave_type_id is required for LEAVE policies"
            raise ValueError(msg)
        if not is_leave and self.leave_type_id is not None:
            msg = "leave_type_id is only allowed for LEAVE policies"
            raise ValueError(msg)
        return self


class UpdatePolicyRequest(BaseModel):
    """Request body for updating a policy (creates a new version)."""

    version: PolicyVersionInput


class PolicyVersionResponse(BaseModel):
    """Response schema for a policy version."""

    id: uuid.UUID
    policy_id: uuid.UUID
    version: int
    effective_from: date
    effective_to: date | None
    settings: PolicySettings
    created_by: uuid.UUID
    change_reason: str | None
    created_at: datetime


class PolicyResponse(BaseModel):
    """Response schema for a policy with its current version."""

    id: uuid.UUID
    organization_id: uuid.UUID
    key: str
    kind: PolicyKind
    leave_type_id: uuid.UUID | None
    created_at: datetime
    current_version: PolicyVersionResponse | None


class PolicyListResponse(BaseModel):
    """Paginated list of policies."""

    items: list[PolicyResponse]
    total: int


class PolicyVersionListResponse(BaseModel):
    """Paginated list of policy versions."""

    items: list[PolicyVersionResponse]
    total: int
