"""Accrual batch engine: periodic accrual credits and carryover expiry.

A run walks an organization's employees in keyset order, one unit of work
per employee. For every LEAVE policy assignment it builds a timeline of
elapsed accrual periods and carryover expiry dates and applies it in
chronological order. Every posted event carries a natural key, so running
again for the same as-of date posts nothing new.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlmodel import col

from app.config import get_settings
from app.models.assignment import PolicyAssignment
from app.models.base import quantize
from app.models.enums import (
    AccrualFrequency,
    AuditAction,
    AuditEntityType,
    LedgerEventKind,
    LedgerSourceType,
    PolicyKind,
    ProrationMethod,
)
from app.models.ledger import LedgerEvent
from app.models.policy import Policy
from app.schemas.policy import LeavePolicySettings
from app.services.audit import model_to_audit_dict, write_audit_log
from app.services.balance import balance_as_of, event_exists, post_event, read_balance
from app.services.calendar import get_organization_timezone, load_calendar
from app.services.employee import get_employee_service
from app.services.policy import get_version_on, parse_settings

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from app.services.calendar import CalendarSnapshot
    from app.services.employee import EmployeeInfo

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = uuid.UUID(int=0)

_ZERO = Decimal(0)

# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------


@dataclass
class AccrualRunResult:
    """Summary of one accrual run."""

    as_of_date: date
    employees_processed: int = 0
    events_posted: int = 0
    skipped: int = 0
    errors: int = 0


@dataclass(frozen=True)
class AssignmentSpan:
    """One LEAVE policy assignment, detached from the session."""

    policy_id: uuid.UUID
    leave_type_id: uuid.UUID
    effective_from: date
    effective_to: date | None


@dataclass(frozen=True)
class EmployeeWorkItem:
    """All LEAVE assignments of one employee; one unit of work."""

    employee_id: uuid.UUID
    assignments: list[AssignmentSpan] = field(default_factory=list)


@dataclass(frozen=True)
class _TimelineItem:
    effective_at: datetime
    kind: LedgerEventKind
    source_id: str
    quantity: Decimal | None = None
    carryover_limit: Decimal | None = None
    max_balance: Decimal | None = None
    note: str | None = None


# ---------------------------------------------------------------------------
# Pure computation helpers (no DB)
# ---------------------------------------------------------------------------


def period_bounds(frequency: AccrualFrequency, day: date) -> tuple[date, date]:
    """Calendar-aligned period containing ``day`` as a half-open ``[start, end)``.

    WEEKLY periods start on the ISO Monday; QUARTERLY on Jan/Apr/Jul/Oct 1.
    """
    if frequency == AccrualFrequency.WEEKLY:
        start = day - timedelta(days=day.isoweekday() - 1)
        return start, start + timedelta(days=7)

    if frequency == AccrualFrequency.YEARLY:
        return date(day.year, 1, 1), date(day.year + 1, 1, 1)

    months = 3 if frequency == AccrualFrequency.QUARTERLY else 1
    first_month = (day.month - 1) // months * months + 1
    start = date(day.year, first_month, 1)
    next_month = first_month + months
    if next_month > 12:
        return start, date(day.year + 1, next_month - 12, 1)
    return start, date(day.year, next_month, 1)


def prorate(
    amount: Decimal,
    method: ProrationMethod,
    period: tuple[date, date],
    active: tuple[date, date],
    calendar: CalendarSnapshot | None = None,
) -> Decimal:
    """Scale ``amount`` by the share of ``period`` covered by ``active``.

    Both ranges are half-open. WORKING_DAYS needs the calendar of the period.
    """
    if method == ProrationMethod.NONE or active == period:
        return quantize(amount)

    if method == ProrationMethod.CALENDAR_DAYS:
        total = (period[1] - period[0]).days
        covered = (active[1] - active[0]).days
    else:
        if calendar is None:
            msg = "WORKING_DAYS proration requires a calendar"
            raise ValueError(msg)
        total = calendar.count_working_days(*period)
        covered = calendar.count_working_days(*active)

    if total <= 0 or covered <= 0:
        return quantize(_ZERO)
    return quantize(amount * covered / total)


def cap_credit(amount: Decimal, balance: Decimal, max_balance: Decimal | None) -> Decimal:
    """Credit allowed under ``max_balance``; the rest is dropped."""
    if max_balance is None:
        return quantize(amount)
    return quantize(max(_ZERO, min(amount, max_balance - balance)))


def local_midnight(day: date, tz: ZoneInfo) -> datetime:
    """Start of ``day`` in the organization's timezone, as a UTC instant."""
    return datetime.combine(day, time(0, 0), tzinfo=tz).astimezone(UTC)


def accrual_source_id(policy_id: uuid.UUID, employee_id: uuid.UUID, period_start: date) -> str:
    return f"accrual:{policy_id}:{employee_id}:{period_start.isoformat()}"


def carryover_source_id(policy_id: uuid.UUID, employee_id: uuid.UUID, year: int) -> str:
    return f"carryover_expire:{policy_id}:{employee_id}:{year}"


# ---------------------------------------------------------------------------
# Work items
# ---------------------------------------------------------------------------


async def iter_work_items(
    session: AsyncSession,
    organization_id: uuid.UUID,
    as_of_date: date,
    *,
    after_employee_id: uuid.UUID | None = None,
    batch_size: int | None = None,
) -> AsyncIterator[EmployeeWorkItem]:
    """Lazily yield per-employee bundles of LEAVE assignments in employee id order.

    Pages are fetched with a keyset on employee_id, so a run can resume from
    the last employee it finished.
    """
    if batch_size is None:
        batch_size = get_settings().accrual_batch_size

    filters = [
        col(PolicyAssignment.organization_id) == organization_id,
        col(PolicyAssignment.effective_from) <= as_of_date,
        col(Policy.kind) == PolicyKind.LEAVE.value,
        col(Policy.leave_type_id).is_not(None),
    ]
    cursor = after_employee_id

    while True:
        page_query = (
            select(col(PolicyAssignment.employee_id))
            .join(Policy, col(Policy.id) == col(PolicyAssignment.policy_id))
            .where(*filters)
            .distinct()
            .order_by(col(PolicyAssignment.employee_id))
            .limit(batch_size)
        )
        if cursor is not None:
            page_query = page_query.where(col(PolicyAssignment.employee_id) > cursor)
        employee_ids = list((await session.execute(page_query)).scalars().all())
        if not employee_ids:
            return

        rows = await session.execute(
            select(
                col(PolicyAssignment.employee_id),
                col(PolicyAssignment.policy_id),
                col(Policy.leave_type_id),
                col(PolicyAssignment.effective_from),
                col(PolicyAssignment.effective_to),
            )
            .join(Policy, col(Policy.id) == col(PolicyAssignment.policy_id))
            .where(*filters, col(PolicyAssignment.employee_id).in_(employee_ids))
            .order_by(col(PolicyAssignment.employee_id), col(PolicyAssignment.effective_from))
        )
        bundles: dict[uuid.UUID, list[AssignmentSpan]] = {employee_id: [] for employee_id in employee_ids}
        for row in rows.all():
            bundles[row.employee_id].append(
                AssignmentSpan(
                    policy_id=row.policy_id,
                    leave_type_id=row.leave_type_id,
                    effective_from=row.effective_from,
                    effective_to=row.effective_to,
                )
            )

        for employee_id in employee_ids:
            yield EmployeeWorkItem(employee_id=employee_id, assignments=bundles[employee_id])

        cursor = employee_ids[-1]
        if len(employee_ids) < batch_size:
            return


# ---------------------------------------------------------------------------
# Timeline construction
# ---------------------------------------------------------------------------


async def _leave_settings_on(
    session: AsyncSession, policy_id: uuid.UUID, on_date: date
) -> tuple[LeavePolicySettings | None, date | None]:
    """Settings in force on a date and the date that version stops applying."""
    version = await get_version_on(session, policy_id, on_date)
    if version is None:
        return None, None
    settings = parse_settings(version)
    if not isinstance(settings, LeavePolicySettings):
        return None, version.effective_to
    return settings, version.effective_to


async def _resume_date(
    session: AsyncSession,
    employee_id: uuid.UUID,
    span: AssignmentSpan,
    tz: ZoneInfo,
) -> date | None:
    """Local end date of the last period already accrued under this policy."""
    result = await session.execute(
        select(col(LedgerEvent.effective_at))
        .where(
            col(LedgerEvent.employee_id) == employee_id,
            col(LedgerEvent.leave_type_id) == span.leave_type_id,
            col(LedgerEvent.kind) == LedgerEventKind.ACCRUAL.value,
            col(LedgerEvent.source_type) == LedgerSourceType.SYSTEM.value,
            col(LedgerEvent.source_id).startswith(f"accrual:{span.policy_id}:{employee_id}:"),
        )
        .order_by(col(LedgerEvent.effective_at).desc())
        .limit(1)
    )
    last = result.scalar_one_or_none()
    if last is None:
        return None
    return last.astimezone(tz).date()


def _active_end(span: AssignmentSpan, employee: EmployeeInfo) -> date | None:
    """Exclusive end of the span in which the employee accrues under the assignment."""
    ends = [d for d in (span.effective_to,) if d is not None]
    if employee.termination_date is not None:
        ends.append(employee.termination_date + timedelta(days=1))
    return min(ends) if ends else None


async def _accrual_items(
    session: AsyncSession,
    organization_id: uuid.UUID,
    employee: EmployeeInfo,
    span: AssignmentSpan,
    as_of_date: date,
    tz: ZoneInfo,
) -> list[_TimelineItem]:
    """One ACCRUAL item per elapsed period since the basis date."""
    if employee.hire_date is None:
        return []
    basis = max(employee.hire_date, span.effective_from)
    resume = await _resume_date(session, employee.id, span, tz)
    cursor = max(basis, resume) if resume is not None else basis
    active_end = _active_end(span, employee)

    items: list[_TimelineItem] = []
    while cursor <= as_of_date and (active_end is None or cursor < active_end):
        settings, version_end = await _leave_settings_on(session, span.policy_id, cursor)
        if settings is None or settings.accrual_frequency is None:
            # Nothing accrues under this version; jump to the next one.
            if version_end is None or version_end <= cursor:
                break
            cursor = version_end
            continue

        period = period_bounds(settings.accrual_frequency, cursor)
        active_stop = period[1] if active_end is None else min(period[1], active_end)
        if active_stop > as_of_date:
            break
        active = (max(period[0], cursor, basis), active_stop)

        calendar = None
        if settings.proration == ProrationMethod.WORKING_DAYS:
            calendar = await load_calendar(session, organization_id, period[0], period[1], employee.work_schedule_id)
        amount = prorate(settings.accrual_amount, settings.proration, period, active, calendar)

        items.append(
            _TimelineItem(
                effective_at=local_midnight(active_stop, tz),
                kind=LedgerEventKind.ACCRUAL,
                source_id=accrual_source_id(span.policy_id, employee.id, period[0]),
                quantity=amount,
                max_balance=settings.max_balance,
                note=f"Accrual for {period[0].isoformat()} to {(period[1] - timedelta(days=1)).isoformat()}",
            )
        )
        cursor = period[1]
    return items


async def _expiry_items(
    session: AsyncSession,
    employee: EmployeeInfo,
    span: AssignmentSpan,
    as_of_date: date,
    tz: ZoneInfo,
) -> list[_TimelineItem]:
    """One CARRYOVER_EXPIRE check per configured expiry date up to the as-of date."""
    if employee.hire_date is None:
        return []
    basis = max(employee.hire_date, span.effective_from)
    active_end = _active_end(span, employee)

    items: list[_TimelineItem] = []
    for year in range(basis.year, as_of_date.year + 1):
        settings, _ = await _leave_settings_on(session, span.policy_id, max(basis, date(year, 1, 1)))
        if settings is None or not settings.has_carryover_expiry:
            continue
        expiry = date(year, settings.carryover_expiry_month or 1, settings.carryover_expiry_day or 1)
        if expiry <= basis or expiry > as_of_date:
            continue
        if active_end is not None and expiry >= active_end:
            continue
        items.append(
            _TimelineItem(
                effective_at=local_midnight(expiry, tz),
                kind=LedgerEventKind.CARRYOVER_EXPIRE,
                source_id=carryover_source_id(span.policy_id, employee.id, year),
                carryover_limit=settings.carryover_limit,
                note=f"Carryover above {settings.carryover_limit} expired on {expiry.isoformat()}",
            )
        )
    return items


# ---------------------------------------------------------------------------
# Posting
# ---------------------------------------------------------------------------


async def _apply_item(
    session: AsyncSession,
    organization_id: uuid.UUID,
    employee_id: uuid.UUID,
    span: AssignmentSpan,
    item: _TimelineItem,
) -> bool:
    """Post one timeline item. Returns False when its natural key is already posted."""
    if await event_exists(session, LedgerSourceType.SYSTEM, item.source_id, item.kind):
        return False

    if item.kind == LedgerEventKind.ACCRUAL:
        balance = await read_balance(session, employee_id, span.leave_type_id)
        quantity = cap_credit(item.quantity or _ZERO, balance, item.max_balance)
        note = item.note
        if quantity < (item.quantity or _ZERO):
            note = f"{item.note} (capped at {item.max_balance})"
    else:
        balance = await balance_as_of(session, employee_id, span.leave_type_id, item.effective_at)
        excess = balance - (item.carryover_limit or _ZERO)
        if excess <= 0:
            return False
        quantity = -excess
        note = item.note

    event = await post_event(
        session,
        organization_id=organization_id,
        employee_id=employee_id,
        leave_type_id=span.leave_type_id,
        kind=item.kind,
        quantity=quantity,
        effective_at=item.effective_at,
        source_type=LedgerSourceType.SYSTEM,
        source_id=item.source_id,
        reference_id=span.policy_id,
        note=note,
        max_balance=item.max_balance if quantity > 0 else None,
        enforce_floor=False,
    )
    await write_audit_log(
        session,
        organization_id=organization_id,
        actor_id=SYSTEM_ACTOR,
        entity_type=AuditEntityType.LEDGER_EVENT,
        entity_id=event.id,
        action=AuditAction.CREATE,
        after_json=model_to_audit_dict(event),
    )
    return True


async def _process_employee(
    session: AsyncSession,
    organization_id: uuid.UUID,
    employee: EmployeeInfo,
    item: EmployeeWorkItem,
    as_of_date: date,
    tz: ZoneInfo,
) -> tuple[int, int]:
    """Apply every pending timeline item of one employee. Returns (posted, skipped)."""
    posted = 0
    skipped = 0
    for span in item.assignments:
        timeline = await _accrual_items(session, organization_id, employee, span, as_of_date, tz)
        timeline += await _expiry_items(session, employee, span, as_of_date, tz)
        # Accruals ending on an expiry date land before that expiry.
        timeline.sort(key=lambda t: (t.effective_at, t.kind != LedgerEventKind.ACCRUAL))
        for entry in timeline:
            if await _apply_item(session, organization_id, employee.id, span, entry):
                posted += 1
            else:
                skipped += 1
    return posted, skipped


async def run_accrual(
    session: AsyncSession,
    organization_id: uuid.UUID,
    as_of_date: date,
    *,
    after_employee_id: uuid.UUID | None = None,
) -> AccrualRunResult:
    """Post every accrual and carryover expiry due up to ``as_of_date``.

    Each employee is committed on its own; a failure is logged, counted and
    rolled back without touching other employees. Employees not employed on
    the as-of date are skipped.
    """
    result = AccrualRunResult(as_of_date=as_of_date)
    tz = await get_organization_timezone(organization_id)
    employee_service = get_employee_service()

    async for item in iter_work_items(session, organization_id, as_of_date, after_employee_id=after_employee_id):
        employee = await employee_service.get_employee(organization_id, item.employee_id)
        if employee is None or not employee.is_active_on(as_of_date):
            result.skipped += 1
            continue

        try:
            posted, skipped = await _process_employee(session, organization_id, employee, item, as_of_date, tz)
            await session.commit()
        except Exception:
            await session.rollback()
            logger.exception("Accrual failed for employee=%s organization=%s", item.employee_id, organization_id)
            result.errors += 1
            continue

        result.employees_processed += 1
        result.events_posted += posted
        result.skipped += skipped

    logger.info(
        "Accrual run for organization=%s as_of=%s: %d employees, %d events, %d skipped, %d errors",
        organization_id,
        as_of_date,
        result.employees_processed,
        result.events_posted,
        result.skipped,
        result.errors,
    )
    return result

