from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError
from sqlmodel import col

from app.exceptions import ConflictError, NotFoundError, UnprocessableError
from app.models.balance import BalanceSummary
from app.models.base import quantize
from app.models.enums import (
    AuditAction,
    AuditEntityType,
    IdempotencyScope,
    LeaveUnit,
    LedgerEventKind,
    LedgerSourceType,
)
from app.models.leave_type import LeaveType
from app.models.ledger import LedgerEvent
from app.schemas.balance import (
    BalanceListResponse,
    BalanceResponse,
    LedgerEventResponse,
    LedgerListResponse,
)
from app.services.audit import model_to_audit_dict, write_audit_log
from app.services.employee import get_employee_service
from app.services.idempotency import hash_request, run_idempotent
from app.services.leave_type import get_leave_type_or_404
from app.services.policy import get_assigned_leave_settings

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from app.schemas.auth import AuthContext
    from app.schemas.balance import CreateAdjustmentRequest

logger = logging.getLogger(__name__)

_ZERO = Decimal(0)


def _to_decimal(value: Any) -> Decimal:
    """Aggregate results come back as Decimal, float or int depending on backend."""
    if value is None:
        return quantize(_ZERO)
    return quantize(Decimal(str(value)))


@dataclass(frozen=True)
class BalanceDrift:
    """A summary row that disagrees with the sum of its ledger events."""

    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    summary_balance: Decimal | None
    ledger_balance: Decimal


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _build_ledger_event_response(event: LedgerEvent) -> LedgerEventResponse:
    """Map a ledger event model to its response schema."""
    return LedgerEventResponse(
        id=event.id,
        employee_id=event.employee_id,
        leave_type_id=event.leave_type_id,
        kind=LedgerEventKind(event.kind),
        quantity=event.quantity,
        balance_after=event.balance_after,
        effective_at=event.effective_at,
        source_type=LedgerSourceType(event.source_type),
        source_id=event.source_id,
        reference_id=event.reference_id,
        note=event.note,
        created_by=event.created_by,
        created_at=event.created_at,
    )


async def _ledger_sum(
    session: AsyncSession,
    employee_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    *,
    as_of: datetime | None = None,
) -> Decimal:
    query = select(func.coalesce(func.sum(col(LedgerEvent.quantity)), 0)).where(
        col(LedgerEvent.employee_id) == employee_id,
        col(LedgerEvent.leave_type_id) == leave_type_id,
    )
    if as_of is not None:
        query = query.where(col(LedgerEvent.effective_at) <= as_of)
    result = await session.execute(query)
    return _to_decimal(result.scalar_one())


async def _select_summary_for_update(
    session: AsyncSession,
    employee_id: uuid.UUID,
    leave_type_id: uuid.UUID,
) -> BalanceSummary | None:
    result = await session.execute(
        select(BalanceSummary)
        .where(
            col(BalanceSummary.employee_id) == employee_id,
            col(BalanceSummary.leave_type_id) == leave_type_id,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _get_or_create_summary_for_update(
    session: AsyncSession,
    organization_id: uuid.UUID,
    employee_id: uuid.UUID,
    leave_type_id: uuid.UUID,
) -> BalanceSummary:
    """Get the balance summary with a FOR UPDATE lock, creating it if absent.

    Two first posts can both find no row. The insert runs in a savepoint and
    the post that loses the primary key race re-reads the committed row.
    """
    summary = await _select_summary_for_update(session, employee_id, leave_type_id)
    if summary is not None:
        return summary

    # First interaction: seed from any existing ledger events.
    summary = BalanceSummary(
        organization_id=organization_id,
        employee_id=employee_id,
        leave_type_id=leave_type_id,
        balance=await _ledger_sum(session, employee_id, leave_type_id),
        version=1,
    )
    try:
        async with session.begin_nested():
            session.add(summary)
            await session.flush()
    except IntegrityError:
        logger.info("Balance summary for employee %s created concurrently; re-reading", employee_id)
        existing = await _select_summary_for_update(session, employee_id, leave_type_id)
        if existing is None:
            raise
        return existing

    return summary


def _floor_for(leave_type: LeaveType) -> Decimal:
    """Lowest balance a debit may leave behind."""
    if not leave_type.allow_negative:
        return _ZERO
    return -leave_type.negative_balance_floor


async def event_exists(
    session: AsyncSession,
    source_type: LedgerSourceType,
    source_id: str,
    kind: LedgerEventKind,
) -> bool:
    """Whether the natural key (source type, source id, kind) is already posted."""
    result = await session.execute(
        select(col(LedgerEvent.id))
        .where(
            col(LedgerEvent.source_type) == source_type.value,
            col(LedgerEvent.source_id) == source_id,
            col(LedgerEvent.kind) == kind.value,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


# ---------------------------------------------------------------------------
# Write path
# ---------------------------------------------------------------------------


async def post_event(
    session: AsyncSession,
    *,
    organization_id: uuid.UUID,
    employee_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    kind: LedgerEventKind,
    quantity: Decimal,
    effective_at: datetime,
    source_type: LedgerSourceType,
    source_id: str,
    reference_id: uuid.UUID | None = None,
    note: str | None = None,
    created_by: uuid.UUID | None = None,
    max_balance: Decimal | None = None,
    enforce_floor: bool | None = None,
) -> LedgerEvent:
    """Append one ledger event and move the summary by the same quantity.

    Flow:
    1. Resolve the leave type (floor settings)
    2. Refuse a natural key that is already posted (CONFLICT)
    3. Lock the summary row with SELECT FOR UPDATE and re-read the balance
    4. Enforce the negative-balance floor for debits (USAGE by default)
    5. Enforce ``max_balance`` for credits when one is given
    6. Insert the event with ``balance_after`` and update the summary

    Flushes only; the caller owns the transaction.
    """
    quantity = quantize(quantity)

    # 1. Leave type.
    leave_type = await get_leave_type_or_404(session, organization_id, leave_type_id)

    # 2. Natural key.
    if await event_exists(session, source_type, source_id, kind):
        raise ConflictError(f"Ledger event {kind} for {source_type}:{source_id} is already posted")

    # 3. Lock.
    summary = await _get_or_create_summary_for_update(session, organization_id, employee_id, leave_type_id)
    new_balance = summary.balance + quantity

    # 4. Floor.
    if enforce_floor is None:
        enforce_floor = kind == LedgerEventKind.USAGE
    if enforce_floor and quantity < 0 and new_balance < _floor_for(leave_type):
        raise UnprocessableError(
            f"Insufficient balance: {summary.balance} available, {-quantity} requested for '{leave_type.key}'"
        )

    # 5. Cap.
    if max_balance is not None and quantity > 0 and new_balance > max_balance:
        raise UnprocessableError(f"Balance would exceed the maximum of {max_balance} for '{leave_type.key}'")

    # 6. Append and project.
    event = LedgerEvent(
        organization_id=organization_id,
        employee_id=employee_id,
        leave_type_id=leave_type_id,
        kind=kind.value,
        quantity=quantity,
        balance_after=new_balance,
        effective_at=effective_at,
        source_type=source_type.value,
        source_id=source_id,
        reference_id=reference_id,
        note=note,
        created_by=created_by,
    )
    session.add(event)

    summary.balance = new_balance
    summary.version += 1
    summary.updated_at = datetime.now(UTC)

    await session.flush()
    logger.info(
        "Posted %s %s to employee=%s leave_type=%s (balance %s)",
        kind,
        quantity,
        employee_id,
        leave_type_id,
        new_balance,
    )
    return event


# ---------------------------------------------------------------------------
# Read path
# ---------------------------------------------------------------------------


async def read_balance(
    session: AsyncSession,
    employee_id: uuid.UUID,
    leave_type_id: uuid.UUID,
) -> Decimal:
    """Current balance from the summary, falling back to the ledger sum."""
    result = await session.execute(
        select(col(BalanceSummary.balance)).where(
            col(BalanceSummary.employee_id) == employee_id,
            col(BalanceSummary.leave_type_id) == leave_type_id,
        )
    )
    balance = result.scalar_one_or_none()
    if balance is None:
        return await _ledger_sum(session, employee_id, leave_type_id)
    return quantize(balance)


async def balance_as_of(
    session: AsyncSession,
    employee_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    instant: datetime,
) -> Decimal:
    """Sum of events effective at or before ``instant``."""
    return await _ledger_sum(session, employee_id, leave_type_id, as_of=instant)


async def _ensure_employee(organization_id: uuid.UUID, employee_id: uuid.UUID) -> None:
    employee = await get_employee_service().get_employee(organization_id, employee_id)
    if employee is None:
        raise NotFoundError("Employee not found")


async def get_employee_balances(
    session: AsyncSession,
    organization_id: uuid.UUID,
    employee_id: uuid.UUID,
) -> BalanceListResponse:
    """Balances for every leave type of the organization (zero when untouched)."""
    await _ensure_employee(organization_id, employee_id)

    result = await session.execute(
        select(LeaveType, BalanceSummary)
        .outerjoin(
            BalanceSummary,
            and_(
                col(BalanceSummary.leave_type_id) == col(LeaveType.id),
                col(BalanceSummary.employee_id) == employee_id,
            ),
        )
        .where(col(LeaveType.organization_id) == organization_id)
        .order_by(col(LeaveType.key))
    )

    items: list[BalanceResponse] = []
    for leave_type, summary in result.all():
        items.append(
            BalanceResponse(
                leave_type_id=leave_type.id,
                leave_type_key=leave_type.key,
                unit=LeaveUnit(leave_type.unit),
                balance=quantize(summary.balance) if summary is not None else quantize(_ZERO),
                version=summary.version if summary is not None else 0,
                updated_at=summary.updated_at if summary is not None else None,
            )
        )

    return BalanceListResponse(items=items, total=len(items))


async def get_employee_ledger(
    session: AsyncSession,
    organization_id: uuid.UUID,
    employee_id: uuid.UUID,
    leave_type_id: uuid.UUID | None = None,
    offset: int = 0,
    limit: int = 50,
) -> LedgerListResponse:
    """Get paginated ledger events for an employee, newest first."""
    base_filter = [
        col(LedgerEvent.organization_id) == organization_id,
        col(LedgerEvent.employee_id) == employee_id,
    ]
    if leave_type_id is not None:
        base_filter.append(col(LedgerEvent.leave_type_id) == leave_type_id)

    count_result = await session.execute(select(func.count()).select_from(LedgerEvent).where(*base_filter))
    total = count_result.scalar_one()

    events_result = await session.execute(
        select(LedgerEvent)
        .where(*base_filter)
        .order_by(
            col(LedgerEvent.effective_at).desc(),
            col(LedgerEvent.created_at).desc(),
        )
        .offset(offset)
        .limit(limit)
    )
    events = list(events_result.scalars().all())

    return LedgerListResponse(
        items=[_build_ledger_event_response(e) for e in events],
        total=total,
    )


# ---------------------------------------------------------------------------
# Admin adjustments
# ---------------------------------------------------------------------------


async def create_adjustment(
    session: AsyncSession,
    auth: AuthContext,
    payload: CreateAdjustmentRequest,
) -> LedgerEventResponse:
    """Post an admin ADJUSTMENT with a mandatory note.

    Flow:
    1. Verify the employee and leave type
    2. Resolve the assigned leave policy's max balance for today
    3. Post the event (floor enforced for debits, cap for credits)
    4. Write audit log
    5. Commit (idempotent when a key is supplied)
    """

    async def _work() -> LedgerEventResponse:
        # 1. Employee and leave type.
        await _ensure_employee(auth.organization_id, payload.employee_id)
        await get_leave_type_or_404(session, auth.organization_id, payload.leave_type_id)
        if payload.quantity == 0:
            raise UnprocessableError("Adjustment quantity must not be zero")

        # 2. Cap from the assigned policy.
        settings = await get_assigned_leave_settings(
            session, auth.organization_id, payload.employee_id, payload.leave_type_id, date.today()
        )

        # 3. Post.
        event = await post_event(
            session,
            organization_id=auth.organization_id,
            employee_id=payload.employee_id,
            leave_type_id=payload.leave_type_id,
            kind=LedgerEventKind.ADJUSTMENT,
            quantity=payload.quantity,
            effective_at=datetime.now(UTC),
            source_type=LedgerSourceType.ADMIN,
            source_id=str(uuid.uuid4()),
            note=payload.note,
            created_by=auth.user_id,
            max_balance=settings.max_balance if settings is not None else None,
            enforce_floor=True,
        )

        # 4. Audit.
        await write_audit_log(
            session,
            organization_id=auth.organization_id,
            actor_id=auth.user_id,
            entity_type=AuditEntityType.LEDGER_EVENT,
            entity_id=event.id,
            action=AuditAction.CREATE,
            after_json=model_to_audit_dict(event),
        )
        return _build_ledger_event_response(event)

    # 5. Commit.
    return await run_idempotent(
        session,
        scope=IdempotencyScope.BALANCE_ADJUST,
        caller_key=str(auth.user_id),
        idempotency_key=payload.idempotency_key,
        request_hash=hash_request(payload, organization_id=auth.organization_id),
        response_model=LedgerEventResponse,
        work=_work,
        response_status=201,
    )


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


async def _ledger_sums_by_key(
    session: AsyncSession,
    organization_id: uuid.UUID,
    employee_id: uuid.UUID | None = None,
) -> dict[tuple[uuid.UUID, uuid.UUID], Decimal]:
    query = select(
        col(LedgerEvent.employee_id),
        col(LedgerEvent.leave_type_id),
        func.sum(col(LedgerEvent.quantity)),
    ).where(col(LedgerEvent.organization_id) == organization_id)
    if employee_id is not None:
        query = query.where(col(LedgerEvent.employee_id) == employee_id)
    result = await session.execute(query.group_by(col(LedgerEvent.employee_id), col(LedgerEvent.leave_type_id)))
    return {(row[0], row[1]): _to_decimal(row[2]) for row in result.all()}


async def _summaries_by_key(
    session: AsyncSession,
    organization_id: uuid.UUID,
    employee_id: uuid.UUID | None = None,
    *,
    for_update: bool = False,
) -> dict[tuple[uuid.UUID, uuid.UUID], BalanceSummary]:
    query = select(BalanceSummary).where(col(BalanceSummary.organization_id) == organization_id)
    if employee_id is not None:
        query = query.where(col(BalanceSummary.employee_id) == employee_id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return {(s.employee_id, s.leave_type_id): s for s in result.scalars().all()}


async def check_balance_integrity(
    session: AsyncSession,
    organization_id: uuid.UUID,
) -> list[BalanceDrift]:
    """Compare every summary with its ledger sum; an empty list means consistent."""
    ledger = await _ledger_sums_by_key(session, organization_id)
    summaries = await _summaries_by_key(session, organization_id)

    drifts: list[BalanceDrift] = []
    for key in sorted(ledger.keys() | summaries.keys(), key=lambda k: (str(k[0]), str(k[1]))):
        ledger_balance = ledger.get(key, quantize(_ZERO))
        summary = summaries.get(key)
        summary_balance = quantize(summary.balance) if summary is not None else None
        if summary_balance is None and ledger_balance == 0:
            continue
        if summary_balance != ledger_balance:
            drifts.append(
                BalanceDrift(
                    employee_id=key[0],
                    leave_type_id=key[1],
                    summary_balance=summary_balance,
                    ledger_balance=ledger_balance,
                )
            )

    if drifts:
        logger.warning("Balance integrity check found %d drifted summaries in org=%s", len(drifts), organization_id)
    return drifts


async def rebuild_balance_summaries(
    session: AsyncSession,
    organization_id: uuid.UUID,
    employee_id: uuid.UUID | None = None,
) -> int:
    """Recompute summaries from ledger sums and commit. Returns rows rewritten."""
    try:
        summaries = await _summaries_by_key(session, organization_id, employee_id, for_update=True)
        ledger = await _ledger_sums_by_key(session, organization_id, employee_id)

        now = datetime.now(UTC)
        rebuilt = 0
        for key in ledger.keys() | summaries.keys():
            balance = ledger.get(key, quantize(_ZERO))
            summary = summaries.get(key)
            if summary is None:
                summary = BalanceSummary(
                    organization_id=organization_id,
                    employee_id=key[0],
                    leave_type_id=key[1],
                    balance=balance,
                    version=1,
                )
                session.add(summary)
            else:
                summary.balance = balance
                summary.version += 1
                summary.updated_at = now
            rebuilt += 1

        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info("Rebuilt %d balance summaries in org=%s", rebuilt, organization_id)
    return rebuilt
