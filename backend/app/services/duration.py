from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from app.exceptions import ValidationError
from app.models.base import quantize
from app.models.enums import LeaveUnit

if TYPE_CHECKING:
    from app.schemas.policy import OvertimePolicySettings
    from app.services.calendar import CalendarSnapshot, WorkingWindow

_ZERO = Decimal(0)
_HALF_DAY = Decimal("0.5")
_FULL_DAY = Decimal(1)
_MINUTES_PER_HOUR = Decimal(60)


# ---------------------------------------------------------------------------
# Leave duration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _DayCoverage:
    day: date
    minutes: int
    full: bool


def _overlap_minutes(start: datetime, end: datetime, other_start: datetime, other_end: datetime) -> int:
    overlap_start = max(start, other_start)
    overlap_end = min(end, other_end)
    if overlap_start >= overlap_end:
        return 0
    return int((overlap_end - overlap_start).total_seconds()) // 60


def _cover_day(
    day: date,
    window: WorkingWindow,
    local_start: datetime,
    local_end: datetime,
) -> _DayCoverage | None:
    """Clamp the request to one day's working window, net of breaks."""
    tz = local_start.tzinfo
    day_start = datetime.combine(day, window.start, tzinfo=tz)
    day_end = datetime.combine(day, window.end, tzinfo=tz)

    overlap_start = max(local_start, day_start)
    overlap_end = min(local_end, day_end)
    if overlap_start >= overlap_end:
        return None

    minutes = int((overlap_end - overlap_start).total_seconds()) // 60
    for brk in window.breaks:
        brk_start = datetime.combine(day, brk.start, tzinfo=tz)
        brk_end = datetime.combine(day, brk.end, tzinfo=tz)
        minutes -= _overlap_minutes(overlap_start, overlap_end, brk_start, brk_end)

    full = overlap_start == day_start and overlap_end == day_end
    return _DayCoverage(day=day, minutes=minutes, full=full)


def _covered_working_days(
    local_start: datetime,
    local_end: datetime,
    calendar: CalendarSnapshot,
) -> list[_DayCoverage]:
    last_date = local_end.date()
    # An end at local midnight does not touch that day.
    if local_end.time() == time(0, 0):
        last_date -= timedelta(days=1)

    coverage: list[_DayCoverage] = []
    current = local_start.date()
    one_day = timedelta(days=1)
    while current <= last_date:
        window = calendar.working_window(current)
        if window is not None:
            day = _cover_day(current, window, local_start, local_end)
            if day is not None:
                coverage.append(day)
        current += one_day
    return coverage


def compute_duration(
    start_at: datetime,
    end_at: datetime,
    unit: LeaveUnit,
    calendar: CalendarSnapshot,
    *,
    half_day: bool = False,
    half_day_allowed: bool = False,
    leave_type_unit: LeaveUnit | None = None,
) -> Decimal:
    """Chargeable quantity of a leave request in ``unit``.

    Days are enumerated in the calendar's timezone. Weekends (days the
    schedule does not work) and holidays are skipped.

    DAYS: every fully covered working day charges 1. A partially covered
    day charges 0.5 when the request is flagged half-day and is rejected
    otherwise.

    HOURS: the request is clamped to each day's working window, breaks are
    subtracted and the remaining minutes are expressed as hours.

    Raises ``ValidationError`` for an empty or inverted range, a unit that
    differs from the leave type's, a disallowed half day, or a range with no
    working time.
    """
    if start_at.tzinfo is None or end_at.tzinfo is None:
        raise ValidationError("start_at and end_at must include a timezone offset")
    if end_at <= start_at:
        raise ValidationError("end_at must be after start_at")
    if leave_type_unit is not None and unit != leave_type_unit:
        raise ValidationError(f"Unit {unit} does not match the leave type unit {leave_type_unit}")
    if half_day and not half_day_allowed:
        raise ValidationError("Half-day requests are not allowed for this leave type")
    if half_day and unit != LeaveUnit.DAYS:
        raise ValidationError("Half-day requests are only supported for DAYS leave types")

    local_start = start_at.astimezone(calendar.timezone)
    local_end = end_at.astimezone(calendar.timezone)
    coverage = _covered_working_days(local_start, local_end, calendar)

    if unit == LeaveUnit.HOURS:
        total_minutes = sum(day.minutes for day in coverage)
        if total_minutes <= 0:
            raise ValidationError("Request covers no working time after excluding weekends and holidays")
        return quantize(Decimal(total_minutes) / _MINUTES_PER_HOUR)

    if not coverage:
        raise ValidationError("Request covers no working time after excluding weekends and holidays")
    partial = [day.day for day in coverage if not day.full]
    if half_day:
        return quantize(_FULL_DAY * (len(coverage) - len(partial)) + _HALF_DAY * len(partial))
    if partial:
        raise ValidationError(f"Request partially covers working day {partial[0].isoformat()}; use half_day or HOURS")
    return quantize(_FULL_DAY * len(coverage))


# ---------------------------------------------------------------------------
# Overtime split
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OvertimeSplit:
    """Reported overtime hours split into multiplier tiers."""

    tier1_hours: Decimal
    tier2_hours: Decimal

    @property
    def total_hours(self) -> Decimal:
        return self.tier1_hours + self.tier2_hours


@dataclass(frozen=True)
class WeeklyOvertime:
    """Tier split after ISO-week threshold and cap have been applied."""

    tier1_hours: Decimal
    tier2_hours: Decimal
    excess_hours: Decimal

    @property
    def countable_hours(self) -> Decimal:
        return self.tier1_hours + self.tier2_hours


def split_overtime(reported_hours: Decimal, policy: OvertimePolicySettings) -> OvertimeSplit:
    """Split reported hours at the policy's tier-1 threshold."""
    if reported_hours < _ZERO:
        raise ValidationError("reported_hours must not be negative")
    tier1 = min(reported_hours, policy.tier1_hours)
    tier2 = max(_ZERO, reported_hours - policy.tier1_hours)
    return OvertimeSplit(tier1_hours=quantize(tier1), tier2_hours=quantize(tier2))


def apply_weekly_limits(
    split: OvertimeSplit,
    prior_week_hours: Decimal,
    policy: OvertimePolicySettings,
) -> WeeklyOvertime:
    """Apply the ISO-week threshold and cap to one entry's split.

    ``prior_week_hours`` is the countable overtime already recorded by the
    employee's other entries in the same ISO week: pending or approved when
    an entry is recorded, approved only when it is settled.
    Tier-1 hours that push the weekly total past ``weekly_threshold_hours``
    move to tier 2. Hours beyond ``weekly_max_overtime_hours`` become
    ``excess_hours``, taken from tier 2 first.
    """
    tier1 = split.tier1_hours
    tier2 = split.tier2_hours
    total = split.total_hours

    if policy.weekly_threshold_hours is not None:
        over_threshold = max(_ZERO, prior_week_hours + total - policy.weekly_threshold_hours)
        moved = min(tier1, over_threshold)
        tier1 -= moved
        tier2 += moved

    excess = _ZERO
    if policy.weekly_max_overtime_hours is not None:
        room = max(_ZERO, policy.weekly_max_overtime_hours - prior_week_hours)
        excess = total - min(total, room)
        from_tier2 = min(tier2, excess)
        tier2 -= from_tier2
        tier1 -= excess - from_tier2

    return WeeklyOvertime(
        tier1_hours=quantize(tier1),
        tier2_hours=quantize(tier2),
        excess_hours=quantize(excess),
    )


def weighted_overtime_hours(weekly: WeeklyOvertime, policy: OvertimePolicySettings) -> Decimal:
    """Countable hours weighted by the tier multipliers, for payroll."""
    return quantize(weekly.tier1_hours * policy.tier1_multiplier + weekly.tier2_hours * policy.tier2_multiplier)


def iso_week_bounds(day: date) -> tuple[date, date]:
    """Monday and Sunday of the ISO week containing ``day``."""
    monday = day - timedelta(days=day.isoweekday() - 1)
    return monday, monday + timedelta(days=6)
