# ruff: noqa: TC003
from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlmodel import col

from app.exceptions import ConflictError, ForbiddenError, NotFoundError, UnprocessableError, ValidationError
from app.models.base import quantize
from app.models.enums import (
    AuditAction,
    AuditEntityType,
    IdempotencyScope,
    LedgerEventKind,
    LedgerSourceType,
    RequestStatus,
    SubjectKind,
)
from app.models.overtime import OvertimeEntry
from app.schemas.overtime import OvertimeEntryListResponse, OvertimeEntryResponse
from app.services import workflow
from app.services.approvers import get_approver_resolver
from app.services.assignment import verify_active_assignment
from app.services.audit import model_to_audit_dict, write_audit_log
from app.services.balance import post_event
from app.services.duration import (
    WeeklyOvertime,
    apply_weekly_limits,
    iso_week_bounds,
    split_overtime,
    weighted_overtime_hours,
)
from app.services.employee import get_employee_service
from app.services.idempotency import hash_request, run_idempotent
from app.services.organization import get_organization_service
from app.services.policy import get_overtime_settings_on

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from app.models.approval import ApprovalStep
    from app.schemas.auth import AuthContext
    from app.schemas.overtime import CreateOvertimeEntryPayload
    from app.schemas.policy import OvertimePolicySettings
    from app.schemas.request import CancelPayload, DecisionPayload, SkipStepPayload, WorkflowActionPayload

logger = logging.getLogger(__name__)

_ACTIVE_STATUSES = (RequestStatus.PENDING.value, RequestStatus.APPROVED.value)
_APPROVED_STATUSES = (RequestStatus.APPROVED.value,)


async def _toil_leave_type_id(organization_id: uuid.UUID) -> uuid.UUID:
    organization = await get_organization_service().get_organization(organization_id)
    if organization is None:
        raise NotFoundError("Organization not found")
    if organization.toil_leave_type_id is None:
        raise UnprocessableError("Organization has no TOIL leave type configured")
    return organization.toil_leave_type_id


# ---------------------------------------------------------------------------
# Ledger hooks
# ---------------------------------------------------------------------------


class OvertimeEntryHooks:
    """Settle an approved entry as comp time or as a payout request."""

    kind = SubjectKind.OVERTIME_ENTRY

    async def on_finalize(self, session: AsyncSession, subject: OvertimeEntry, actor_id: uuid.UUID) -> None:
        settings = await get_overtime_settings_on(
            session, subject.organization_id, subject.policy_id, subject.work_date
        )
        # Weekly limits count only the week's approved entries at settlement.
        await _apply_split(session, subject, settings, _APPROVED_STATUSES)

        if subject.select_cash_payout:
            weekly = WeeklyOvertime(
                tier1_hours=subject.tier1_hours,
                tier2_hours=subject.tier2_hours,
                excess_hours=subject.excess_hours,
            )
            subject.payout_requested = True
            subject.payout_hours = weighted_overtime_hours(weekly, settings)
            logger.info("Overtime entry %s approved for payout of %s hours", subject.id, subject.payout_hours)
            return

        credit = quantize((subject.tier1_hours + subject.tier2_hours) * settings.comp_time_multiplier)
        await post_event(
            session,
            organization_id=subject.organization_id,
            employee_id=subject.employee_id,
            leave_type_id=await _toil_leave_type_id(subject.organization_id),
            kind=LedgerEventKind.OVERTIME_TO_TOIL,
            quantity=credit,
            effective_at=datetime.now(UTC),
            source_type=LedgerSourceType.OVERTIME_ENTRY,
            source_id=str(subject.id),
            reference_id=subject.id,
            created_by=actor_id,
        )
        subject.toil_credit = credit

    async def on_reverse(self, session: AsyncSession, subject: OvertimeEntry, actor_id: uuid.UUID) -> None:
        if subject.select_cash_payout:
            subject.payout_requested = False
            return
        if not subject.toil_credit:
            return
        await post_event(
            session,
            organization_id=subject.organization_id,
            employee_id=subject.employee_id,
            leave_type_id=await _toil_leave_type_id(subject.organization_id),
            kind=LedgerEventKind.ADJUSTMENT,
            quantity=-subject.toil_credit,
            effective_at=datetime.now(UTC),
            source_type=LedgerSourceType.OVERTIME_ENTRY,
            source_id=str(subject.id),
            reference_id=subject.id,
            note="Reversal of cancelled overtime entry",
            created_by=actor_id,
        )


_hooks = OvertimeEntryHooks()


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _build_entry_response(entry: OvertimeEntry, steps: list[ApprovalStep]) -> OvertimeEntryResponse:
    return OvertimeEntryResponse(
        id=entry.id,
        organization_id=entry.organization_id,
        employee_id=entry.employee_id,
        policy_id=entry.policy_id,
        work_date=entry.work_date,
        reported_hours=entry.reported_hours,
        tier1_hours=entry.tier1_hours,
        tier2_hours=entry.tier2_hours,
        excess_hours=entry.excess_hours,
        select_comp_time=entry.select_comp_time,
        select_cash_payout=entry.select_cash_payout,
        payout_requested=entry.payout_requested,
        payout_hours=entry.payout_hours,
        toil_credit=entry.toil_credit,
        note=entry.note,
        status=RequestStatus(entry.status),
        current_step=entry.current_step,
        steps=[workflow.build_step_response(s) for s in steps],
        created_by=entry.created_by,
        submitted_at=entry.submitted_at,
        decided_at=entry.decided_at,
        cancelled_at=entry.cancelled_at,
        cancel_reason=entry.cancel_reason,
        created_at=entry.created_at,
    )


async def _respond(session: AsyncSession, entry: OvertimeEntry) -> OvertimeEntryResponse:
    await session.flush()
    steps = await workflow.list_steps(session, _hooks.kind, entry.id)
    return _build_entry_response(entry, steps)


async def _get_entry_or_404(
    session: AsyncSession,
    organization_id: uuid.UUID,
    entry_id: uuid.UUID,
    *,
    for_update: bool = False,
) -> OvertimeEntry:
    query = select(OvertimeEntry).where(
        col(OvertimeEntry.id) == entry_id,
        col(OvertimeEntry.organization_id) == organization_id,
    )
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(query)
    entry = result.scalar_one_or_none()
    if entry is None:
        raise NotFoundError("Overtime entry not found")
    return entry


def _check_settlement_choice(select_comp_time: bool, select_cash_payout: bool) -> None:
    if select_comp_time == select_cash_payout:
        raise ValidationError("Exactly one of select_comp_time and select_cash_payout must be set")


async def _prior_week_hours(
    session: AsyncSession,
    entry: OvertimeEntry,
    statuses: tuple[str, ...] = _ACTIVE_STATUSES,
) -> Decimal:
    """Countable overtime of the employee's other entries in the ISO week with one of ``statuses``."""
    monday, sunday = iso_week_bounds(entry.work_date)
    result = await session.execute(
        select(func.coalesce(func.sum(col(OvertimeEntry.tier1_hours) + col(OvertimeEntry.tier2_hours)), 0)).where(
            col(OvertimeEntry.organization_id) == entry.organization_id,
            col(OvertimeEntry.employee_id) == entry.employee_id,
            col(OvertimeEntry.id) != entry.id,
            col(OvertimeEntry.status).in_(statuses),
            col(OvertimeEntry.work_date) >= monday,
            col(OvertimeEntry.work_date) <= sunday,
        )
    )
    return quantize(Decimal(str(result.scalar_one())))


async def _apply_split(
    session: AsyncSession,
    entry: OvertimeEntry,
    settings: OvertimePolicySettings,
    statuses: tuple[str, ...] = _ACTIVE_STATUSES,
) -> None:
    prior = await _prior_week_hours(session, entry, statuses)
    weekly = apply_weekly_limits(split_overtime(entry.reported_hours, settings), prior, settings)
    entry.tier1_hours = weekly.tier1_hours
    entry.tier2_hours = weekly.tier2_hours
    entry.excess_hours = weekly.excess_hours


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def create_overtime_entry(
    session: AsyncSession,
    auth: AuthContext,
    payload: CreateOvertimeEntryPayload,
) -> OvertimeEntryResponse:
    """Record worked overtime as a DRAFT entry with its tier split.

    Flow:
    1. Authorize and validate the settlement choice
    2. Resolve employee, active assignment and the policy version on work_date
    3. Split the hours, taking the rest of the ISO week into account
    4. Insert the DRAFT entry and write audit log
    5. Commit (idempotent when a key is supplied)
    """

    async def _work() -> OvertimeEntryResponse:
        # 1. Authorize.
        if auth.user_id != payload.employee_id and not auth.is_admin:
            raise ForbiddenError("Only the employee or an admin may record this overtime")
        _check_settlement_choice(payload.select_comp_time, payload.select_cash_payout)

        # 2. Employee, assignment and settings.
        employee = await get_employee_service().get_employee(auth.organization_id, payload.employee_id)
        if employee is None:
            raise NotFoundError("Employee not found")
        settings = await get_overtime_settings_on(session, auth.organization_id, payload.policy_id, payload.work_date)
        await verify_active_assignment(
            session, auth.organization_id, payload.employee_id, payload.policy_id, payload.work_date
        )
        if payload.select_comp_time and not settings.comp_time_eligible:
            raise UnprocessableError("Overtime policy does not allow comp time")

        # 3-4. Split and insert.
        entry = OvertimeEntry(
            organization_id=auth.organization_id,
            employee_id=payload.employee_id,
            policy_id=payload.policy_id,
            work_date=payload.work_date,
            reported_hours=quantize(payload.reported_hours),
            select_comp_time=payload.select_comp_time,
            select_cash_payout=payload.select_cash_payout,
            note=payload.note,
            created_by=auth.user_id,
        )
        await _apply_split(session, entry, settings)
        session.add(entry)
        await session.flush()

        await write_audit_log(
            session,
            organization_id=auth.organization_id,
            actor_id=auth.user_id,
            entity_type=AuditEntityType.OVERTIME_ENTRY,
            entity_id=entry.id,
            action=AuditAction.CREATE,
            after_json=model_to_audit_dict(entry),
        )
        return _build_entry_response(entry, [])

    # 5. Commit.
    return await run_idempotent(
        session,
        scope=IdempotencyScope.OVERTIME_CREATE,
        caller_key=str(auth.user_id),
        idempotency_key=payload.idempotency_key,
        request_hash=hash_request(payload, organization_id=auth.organization_id),
        response_model=OvertimeEntryResponse,
        work=_work,
        response_status=201,
    )


async def submit_overtime_entry(
    session: AsyncSession,
    auth: AuthContext,
    entry_id: uuid.UUID,
    payload: WorkflowActionPayload,
) -> OvertimeEntryResponse:
    """Submit a DRAFT entry, re-splitting against the current ISO week."""

    async def _work() -> OvertimeEntryResponse:
        entry = await _get_entry_or_404(session, auth.organization_id, entry_id, for_update=True)
        workflow.ensure_owner_or_admin(entry, auth)
        if entry.status != RequestStatus.DRAFT:
            raise ConflictError(f"Only DRAFT entries can be submitted (entry is {entry.status})")
        _check_settlement_choice(entry.select_comp_time, entry.select_cash_payout)

        settings = await get_overtime_settings_on(session, entry.organization_id, entry.policy_id, entry.work_date)
        if entry.select_comp_time and not settings.comp_time_eligible:
            raise UnprocessableError("Overtime policy does not allow comp time")
        await _apply_split(session, entry, settings)

        approver_ids = await get_approver_resolver().resolve_chain(
            entry.organization_id, entry.employee_id, _hooks.kind
        )
        await workflow.submit(session, entry, _hooks, approver_ids, auth.user_id)
        return await _respond(session, entry)

    return await run_idempotent(
        session,
        scope=IdempotencyScope.OVERTIME_SUBMIT,
        caller_key=str(auth.user_id),
        idempotency_key=payload.idempotency_key,
        request_hash=hash_request(payload, organization_id=auth.organization_id, entry_id=entry_id),
        response_model=OvertimeEntryResponse,
        work=_work,
    )


async def decide_overtime_entry(
    session: AsyncSession,
    auth: AuthContext,
    entry_id: uuid.UUID,
    step_id: uuid.UUID,
    payload: DecisionPayload,
) -> OvertimeEntryResponse:
    """Approve or reject the current step; the last approval settles the entry."""

    async def _work() -> OvertimeEntryResponse:
        entry = await _get_entry_or_404(session, auth.organization_id, entry_id, for_update=True)
        await workflow.decide(session, entry, _hooks, step_id, payload.outcome, payload.comment, auth)
        return await _respond(session, entry)

    return await run_idempotent(
        session,
        scope=IdempotencyScope.OVERTIME_DECIDE,
        caller_key=str(auth.user_id),
        idempotency_key=payload.idempotency_key,
        request_hash=hash_request(payload, organization_id=auth.organization_id, entry_id=entry_id, step_id=step_id),
        response_model=OvertimeEntryResponse,
        work=_work,
    )


async def skip_overtime_entry_step(
    session: AsyncSession,
    auth: AuthContext,
    entry_id: uuid.UUID,
    step_id: uuid.UUID,
    payload: SkipStepPayload,
) -> OvertimeEntryResponse:
    async def _work() -> OvertimeEntryResponse:
        entry = await _get_entry_or_404(session, auth.organization_id, entry_id, for_update=True)
        await workflow.skip_step(session, entry, _hooks, step_id, payload.comment, auth)
        return await _respond(session, entry)

    return await run_idempotent(
        session,
        scope=IdempotencyScope.OVERTIME_SKIP,
        caller_key=str(auth.user_id),
        idempotency_key=payload.idempotency_key,
        request_hash=hash_request(payload, organization_id=auth.organization_id, entry_id=entry_id, step_id=step_id),
        response_model=OvertimeEntryResponse,
        work=_work,
    )


async def cancel_overtime_entry(
    session: AsyncSession,
    auth: AuthContext,
    entry_id: uuid.UUID,
    payload: CancelPayload,
) -> OvertimeEntryResponse:
    """Cancel a pending entry, or reverse the settlement of an approved one."""

    async def _work() -> OvertimeEntryResponse:
        entry = await _get_entry_or_404(session, auth.organization_id, entry_id, for_update=True)
        await workflow.cancel(session, entry, _hooks, payload.reason, auth)
        return await _respond(session, entry)

    return await run_idempotent(
        session,
        scope=IdempotencyScope.OVERTIME_CANCEL,
        caller_key=str(auth.user_id),
        idempotency_key=payload.idempotency_key,
        request_hash=hash_request(payload, organization_id=auth.organization_id, entry_id=entry_id),
        response_model=OvertimeEntryResponse,
        work=_work,
    )


async def get_overtime_entry(
    session: AsyncSession,
    organization_id: uuid.UUID,
    entry_id: uuid.UUID,
) -> OvertimeEntryResponse:
    entry = await _get_entry_or_404(session, organization_id, entry_id)
    return await _respond(session, entry)


async def list_overtime_entries(
    session: AsyncSession,
    organization_id: uuid.UUID,
    status_filter: RequestStatus | None = None,
    employee_id: uuid.UUID | None = None,
    offset: int = 0,
    limit: int = 50,
) -> OvertimeEntryListResponse:
    """List entries with optional filters, newest work date first."""
    base_filters = [col(OvertimeEntry.organization_id) == organization_id]
    if status_filter is not None:
        base_filters.append(col(OvertimeEntry.status) == status_filter.value)
    if employee_id is not None:
        base_filters.append(col(OvertimeEntry.employee_id) == employee_id)

    count_result = await session.execute(select(func.count()).select_from(OvertimeEntry).where(*base_filters))
    total = count_result.scalar_one()

    result = await session.execute(
        select(OvertimeEntry)
        .where(*base_filters)
        .order_by(col(OvertimeEntry.work_date).desc(), col(OvertimeEntry.created_at).desc())
        .offset(offset)
        .limit(limit)
    )
    entries = list(result.scalars().all())
    steps = await workflow.steps_by_subject(session, _hooks.kind, [e.id for e in entries])

    return OvertimeEntryListResponse(
        items=[_build_entry_response(e, steps[e.id]) for e in entries],
        total=total,
    )
