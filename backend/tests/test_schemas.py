"""Unit tests for Pydantic policy settings, schedule definitions and API schemas."""

from __future__ import annotations

from datetime import date, time
from decimal import Decimal

import pytest
from pydantic import TypeAdapter, ValidationError

from app.models.enums import AccrualFrequency, ProrationMethod
from app.schemas.balance import CreateAdjustmentRequest
from app.schemas.overtime import CreateOvertimeEntryPayload
from app.schemas.policy import (
    BlackoutWindow,
    CreatePolicyRequest,
    LeavePolicySettings,
    OvertimePolicySettings,
    PolicySettings,
    UpdatePolicyRequest,
)
from app.services.calendar import ScheduleDefinition, WorkingWindow

_adapter: TypeAdapter[PolicySettings] = TypeAdapter(PolicySettings)

# ---------------------------------------------------------------------------
# LeavePolicySettings
# ---------------------------------------------------------------------------


def test_leave_settings_defaults() -> None:
    s = LeavePolicySettings()
    assert s.kind == "LEAVE"
    assert s.accrual_frequency is None
    assert s.accrual_amount == Decimal(0)
    assert s.proration == ProrationMethod.WORKING_DAYS
    assert s.blackout_windows == []
    assert s.has_carryover_expiry is False


def test_leave_settings_accrual_requires_positive_amount() -> None:
    with pytest.raises(ValidationError, match="accrual_amount must be positive"):
        LeavePolicySettings(accrual_frequency=AccrualFrequency.MONTHLY)


def test_leave_settings_full_config() -> None:
    s = LeavePolicySettings(
        accrual_frequency=AccrualFrequency.YEARLY,
        accrual_amount=Decimal(20),
        proration=ProrationMethod.CALENDAR_DAYS,
        max_balance=Decimal(30),
        carryover_limit=Decimal(5),
        carryover_expiry_month=3,
        carryover_expiry_day=31,
        blackout_windows=[BlackoutWindow(start_date=date(2025, 12, 20), end_date=date(2025, 12, 31))],
    )
    assert s.has_carryover_expiry is True
    assert s.blackout_windows[0].end_date == date(2025, 12, 31)


def test_leave_settings_expiry_month_requires_day() -> None:
    with pytest.raises(ValidationError, match="must be set together"):
        LeavePolicySettings(carryover_limit=Decimal(5), carryover_expiry_month=3)


def test_leave_settings_expiry_requires_limit() -> None:
    with pytest.raises(ValidationError, match="carryover_limit is required"):
        LeavePolicySettings(carryover_expiry_month=3, carryover_expiry_day=31)


@pytest.mark.parametrize(("month", "day"), [(2, 29), (4, 31)])
def test_leave_settings_expiry_day_out_of_range(month: int, day: int) -> None:
    with pytest.raises(ValidationError, match="out of range"):
        LeavePolicySettings(carryover_limit=Decimal(5), carryover_expiry_month=month, carryover_expiry_day=day)


def test_leave_settings_rejects_negative_cap() -> None:
    with pytest.raises(ValidationError):
        LeavePolicySettings(max_balance=Decimal(-1))


def test_blackout_window_rejects_inverted_dates() -> None:
    with pytest.raises(ValidationError, match="end_date must be >= start_date"):
        BlackoutWindow(start_date=date(2025, 7, 2), end_date=date(2025, 7, 1))


# ---------------------------------------------------------------------------
# OvertimePolicySettings
# ---------------------------------------------------------------------------


def test_overtime_settings_defaults() -> None:
    s = OvertimePolicySettings(tier1_hours=Decimal(2))
    assert s.kind == "OVERTIME"
    assert s.tier1_multiplier == Decimal("1.5")
    assert s.tier2_multiplier == Decimal("2.0")
    assert s.comp_time_eligible is True
    assert s.comp_time_multiplier == Decimal("1.0")
    assert s.weekly_threshold_hours is None
    assert s.weekly_max_overtime_hours is None


def test_overtime_settings_require_tier1_hours() -> None:
    with pytest.raises(ValidationError):
        OvertimePolicySettings()  # type: ignore[call-arg]


def test_overtime_settings_reject_zero_multiplier() -> None:
    with pytest.raises(ValidationError):
        OvertimePolicySettings(tier1_hours=Decimal(2), tier1_multiplier=Decimal(0))


# ---------------------------------------------------------------------------
# Discriminated union
# ---------------------------------------------------------------------------


def test_discriminated_union_leave() -> None:
    s = _adapter.validate_python({"kind": "LEAVE", "accrual_frequency": "MONTHLY", "accrual_amount": "1.25"})
    assert isinstance(s, LeavePolicySettings)
    assert s.accrual_amount == Decimal("1.25")


def test_discriminated_union_overtime() -> None:
    s = _adapter.validate_python({"kind": "OVERTIME", "tier1_hours": "2"})
    assert isinstance(s, OvertimePolicySettings)


def test_discriminated_union_rejects_unknown_kind() -> None:
    with pytest.raises(ValidationError):
        _adapter.validate_python({"kind": "BONUS"})


def test_discriminated_union_from_json() -> None:
    s = _adapter.validate_json('{"kind": "OVERTIME", "tier1_hours": "4", "weekly_threshold_hours": "10"}')
    assert isinstance(s, OvertimePolicySettings)
    assert s.weekly_threshold_hours == Decimal(10)


def test_stored_settings_survive_a_json_dump() -> None:
    original = LeavePolicySettings(accrual_frequency=AccrualFrequency.MONTHLY, accrual_amount=Decimal("1.25"))
    restored = _adapter.validate_python(original.model_dump(mode="json"))
    assert restored == original


# ---------------------------------------------------------------------------
# API request schemas
# ---------------------------------------------------------------------------


def test_create_policy_request_leave() -> None:
    req = CreatePolicyRequest.model_validate(
        {
            "key": "vacation-ft",
            "leave_type_id": "00000000-0000-0000-0000-000000000001",
            "version": {"effective_from": "2025-01-01", "settings": {"kind": "LEAVE"}},
        }
    )
    assert req.version.effective_from == date(2025, 1, 1)


def test_create_policy_request_leave_without_type() -> None:
    with pytest.raises(ValidationError, match="leave_type_id is required"):
        CreatePolicyRequest.model_validate(
            {"key": "vacation-ft", "version": {"effective_from": "2025-01-01", "settings": {"kind": "LEAVE"}}}
        )


def test_create_policy_request_overtime_with_type() -> None:
    with pytest.raises(ValidationError, match="only allowed for LEAVE"):
        CreatePolicyRequest.model_validate(
            {
                "key": "ot",
                "leave_type_id": "00000000-0000-0000-0000-000000000001",
                "version": {"effective_from": "2025-01-01", "settings": {"kind": "OVERTIME", "tier1_hours": "2"}},
            }
        )


def test_create_policy_request_rejects_empty_key() -> None:
    with pytest.raises(ValidationError):
        CreatePolicyRequest.model_validate(
            {"key": "", "version": {"effective_from": "2025-01-01", "settings": {"kind": "OVERTIME", "tier1_hours": "2"}}}
        )


def test_update_policy_request_valid() -> None:
    req = UpdatePolicyRequest.model_validate(
        {"version": {"effective_from": "2025-07-01", "settings": {"kind": "LEAVE"}, "change_reason": "Rate change"}}
    )
    assert req.version.change_reason == "Rate change"


@pytest.mark.parametrize("hours", ["0", "-1", "24.5"])
def test_overtime_entry_rejects_hours_out_of_range(hours: str) -> None:
    with pytest.raises(ValidationError):
        CreateOvertimeEntryPayload.model_validate(
            {
                "employee_id": "00000000-0000-0000-0000-000000000001",
                "policy_id": "00000000-0000-0000-0000-000000000002",
                "work_date": "2025-03-03",
                "reported_hours": hours,
            }
        )


def test_adjustment_requires_note() -> None:
    with pytest.raises(ValidationError):
        CreateAdjustmentRequest.model_validate(
            {
                "employee_id": "00000000-0000-0000-0000-000000000001",
                "leave_type_id": "00000000-0000-0000-0000-000000000002",
                "quantity": "1",
                "note": "",
            }
        )


# ---------------------------------------------------------------------------
# Schedule definitions
# ---------------------------------------------------------------------------


def test_schedule_parse_with_breaks() -> None:
    schedule = ScheduleDefinition.parse(
        {"1": {"start": "08:00", "end": "17:00", "breaks": [{"start": "12:00", "end": "13:00"}]}}
    )
    window = schedule.window_for(date(2025, 3, 3))
    assert window is not None
    assert window.start == time(8, 0)
    assert window.breaks[0].end == time(13, 0)
    assert schedule.window_for(date(2025, 3, 4)) is None


def test_schedule_rejects_invalid_weekday() -> None:
    with pytest.raises(ValueError, match="Invalid ISO weekday"):
        ScheduleDefinition.parse({"8": {"start": "09:00", "end": "17:00"}})


def test_working_window_rejects_break_outside() -> None:
    with pytest.raises(ValidationError, match="inside the working window"):
        WorkingWindow.model_validate({"start": "09:00", "end": "17:00", "breaks": [{"start": "08:00", "end": "09:30"}]})


def test_working_window_rejects_inverted_range() -> None:
    with pytest.raises(ValidationError):
        WorkingWindow(start=time(17, 0), end=time(9, 0))
