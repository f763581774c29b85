# ruff: noqa: TC003
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, time, timedelta
from typing import TYPE_CHECKING, Any, Self
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, TypeAdapter, model_validator
from sqlalchemy import select
from sqlmodel import col

from app.config import get_settings
from app.exceptions import NotFoundError, UnprocessableError
from app.models.calendar import OrganizationHoliday, WorkSchedule
from app.services.organization import get_organization_service

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Schedule definition
# ---------------------------------------------------------------------------


class BreakWindow(BaseModel):
    """Unpaid break inside a working window."""

    model_config = ConfigDict(frozen=True)

    start: time
    end: time

    @model_validator(mode="after")
    def _validate_range(self) -> Self:
        if self.end <= self.start:
            msg = "break end must be after break start"
            raise ValueError(msg)
        return self


class WorkingWindow(BaseModel):
    """Working hours for one weekday, local wall-clock time."""

    model_config = ConfigDict(frozen=True)

    start: time
    end: time
    breaks: tuple[BreakWindow, ...] = ()

    @model_validator(mode="after")
    def _validate_range(self) -> Self:
        if self.end <= self.start:
            msg = "working window end must be after start"
            raise ValueError(msg)
        for brk in self.breaks:
            if brk.start < self.start or brk.end > self.end:
                msg = "breaks must lie inside the working window"
                raise ValueError(msg)
        return self


# ISO weekday (1 = Monday) -> working window; absent weekdays are days off.
_definition_adapter: TypeAdapter[dict[int, WorkingWindow]] = TypeAdapter(dict[int, WorkingWindow])


@dataclass(frozen=True)
class ScheduleDefinition:
    """Typed weekly schedule, parsed once from a ``WorkSchedule`` row."""

    windows: dict[int, WorkingWindow]

    @classmethod
    def parse(cls, definition: dict[str, Any]) -> ScheduleDefinition:
        windows = _definition_adapter.validate_python(definition)
        for weekday in windows:
            if not 1 <= weekday <= 7:  # noqa: PLR2004
                msg = f"Invalid ISO weekday {weekday} in schedule definition"
                raise ValueError(msg)
        return cls(windows=windows)

    @classmethod
    def default(cls) -> ScheduleDefinition:
        """Monday to Friday, 09:00 to 17:00, no breaks."""
        window = WorkingWindow(start=time(9, 0), end=time(17, 0))
        return cls(windows=dict.fromkeys(range(1, 6), window))

    def window_for(self, day: date) -> WorkingWindow | None:
        return self.windows.get(day.isoweekday())


# ---------------------------------------------------------------------------
# Calendar snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CalendarSnapshot:
    """Read-only view of an organization's calendar for a date range."""

    timezone: ZoneInfo
    holidays: frozenset[date] = field(default_factory=frozenset)
    schedule: ScheduleDefinition = field(default_factory=ScheduleDefinition.default)

    def is_working_day(self, day: date) -> bool:
        return day not in self.holidays and self.schedule.window_for(day) is not None

    def working_window(self, day: date) -> WorkingWindow | None:
        """The day's working window, or None for weekends and holidays."""
        if day in self.holidays:
            return None
        return self.schedule.window_for(day)

    def count_working_days(self, start: date, end: date) -> int:
        """Working days in the half-open range ``[start, end)``."""
        count = 0
        current = start
        one_day = timedelta(days=1)
        while current < end:
            if self.is_working_day(current):
                count += 1
            current += one_day
        return count


def resolve_timezone(name: str) -> ZoneInfo:
    """Resolve an IANA timezone name, failing UNPROCESSABLE when unknown."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise UnprocessableError(f"Unknown timezone '{name}'") from exc


async def get_organization_timezone(organization_id: uuid.UUID) -> ZoneInfo:
    """Organization timezone from the directory, or the configured default."""
    organization = await get_organization_service().get_organization(organization_id)
    if organization is None:
        return resolve_timezone(get_settings().default_timezone)
    return resolve_timezone(organization.timezone)


async def _fetch_holiday_dates(
    session: AsyncSession,
    organization_id: uuid.UUID,
    start_date: date,
    end_date: date,
) -> frozenset[date]:
    """Fetch organization holidays in the given inclusive date range."""
    result = await session.execute(
        select(col(OrganizationHoliday.date)).where(
            col(OrganizationHoliday.organization_id) == organization_id,
            col(OrganizationHoliday.date) >= start_date,
            col(OrganizationHoliday.date) <= end_date,
        )
    )
    return frozenset(row[0] for row in result.all())


async def _load_schedule(
    session: AsyncSession,
    organization_id: uuid.UUID,
    schedule_id: uuid.UUID | None,
) -> ScheduleDefinition:
    if schedule_id is None:
        return ScheduleDefinition.default()
    schedule = await session.get(WorkSchedule, schedule_id)
    if schedule is None or schedule.organization_id != organization_id:
        raise NotFoundError("Work schedule not found")
    try:
        return ScheduleDefinition.parse(schedule.definition_json)
    except ValueError as exc:
        logger.warning("Work schedule %s has an invalid definition: %s", schedule_id, exc)
        raise UnprocessableError("Work schedule definition is invalid") from exc


async def load_calendar(
    session: AsyncSession,
    organization_id: uuid.UUID,
    start_date: date,
    end_date: date,
    schedule_id: uuid.UUID | None = None,
) -> CalendarSnapshot:
    """Build the calendar snapshot the computation engine works against.

    Holidays cover the inclusive range ``[start_date, end_date]``; callers
    pad the range when local dates may shift across timezones.
    """
    timezone = await get_organization_timezone(organization_id)
    holidays = await _fetch_holiday_dates(session, organization_id, start_date, end_date)
    schedule = await _load_schedule(session, organization_id, schedule_id)
    return CalendarSnapshot(timezone=timezone, holidays=holidays, schedule=schedule)
