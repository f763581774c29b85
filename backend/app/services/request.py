# ruff: noqa: TC003
from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, time, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlmodel import col

from app.exceptions import ConflictError, ForbiddenError, NotFoundError
from app.models.enums import (
    AuditAction,
    AuditEntityType,
    IdempotencyScope,
    LeaveUnit,
    LedgerEventKind,
    LedgerSourceType,
    RequestStatus,
    SubjectKind,
)
from app.models.request import LeaveRequest
from app.schemas.request import LeaveRequestListResponse, LeaveRequestResponse
from app.services import workflow
from app.services.approvers import get_approver_resolver
from app.services.audit import model_to_audit_dict, write_audit_log
from app.services.balance import post_event
from app.services.calendar import get_organization_timezone, load_calendar
from app.services.duration import compute_duration
from app.services.employee import get_employee_service
from app.services.idempotency import hash_request, run_idempotent
from app.services.leave_type import get_leave_type_or_404
from app.services.policy import get_assigned_leave_settings

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from app.models.approval import ApprovalStep
    from app.schemas.auth import AuthContext
    from app.schemas.request import (
        CancelPayload,
        CreateLeaveRequestPayload,
        DecisionPayload,
        SkipStepPayload,
        WorkflowActionPayload,
    )
    from app.services.employee import EmployeeInfo

logger = logging.getLogger(__name__)

_ACTIVE_STATUSES = [RequestStatus.PENDING.value, RequestStatus.APPROVED.value]


# ---------------------------------------------------------------------------
# Ledger hooks
# ---------------------------------------------------------------------------


class LeaveRequestHooks:
    """Charge the balance on final approval; credit it back on cancellation."""

    kind = SubjectKind.LEAVE_REQUEST

    async def on_finalize(self, session: AsyncSession, subject: LeaveRequest, actor_id: uuid.UUID) -> None:
        await post_event(
            session,
            organization_id=subject.organization_id,
            employee_id=subject.employee_id,
            leave_type_id=subject.leave_type_id,
            kind=LedgerEventKind.USAGE,
            quantity=-subject.requested_quantity,
            effective_at=datetime.now(UTC),
            source_type=LedgerSourceType.LEAVE_REQUEST,
            source_id=str(subject.id),
            reference_id=subject.id,
            created_by=actor_id,
        )

    async def on_reverse(self, session: AsyncSession, subject: LeaveRequest, actor_id: uuid.UUID) -> None:
        await post_event(
            session,
            organization_id=subject.organization_id,
            employee_id=subject.employee_id,
            leave_type_id=subject.leave_type_id,
            kind=LedgerEventKind.ADJUSTMENT,
            quantity=subject.requested_quantity,
            effective_at=datetime.now(UTC),
            source_type=LedgerSourceType.LEAVE_REQUEST,
            source_id=str(subject.id),
            reference_id=subject.id,
            note="Reversal of cancelled leave request",
            created_by=actor_id,
        )


_hooks = LeaveRequestHooks()


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _build_request_response(request: LeaveRequest, steps: list[ApprovalStep]) -> LeaveRequestResponse:
    """Map a request model and its steps to the response schema."""
    return LeaveRequestResponse(
        id=request.id,
        organization_id=request.organization_id,
        employee_id=request.employee_id,
        leave_type_id=request.leave_type_id,
        start_at=request.start_at,
        end_at=request.end_at,
        unit=LeaveUnit(request.unit),
        half_day=request.half_day,
        requested_quantity=request.requested_quantity,
        reason=request.reason,
        status=RequestStatus(request.status),
        current_step=request.current_step,
        steps=[workflow.build_step_response(s) for s in steps],
        created_by=request.created_by,
        submitted_at=request.submitted_at,
        decided_at=request.decided_at,
        cancelled_at=request.cancelled_at,
        cancel_reason=request.cancel_reason,
        created_at=request.created_at,
    )


async def _respond(session: AsyncSession, request: LeaveRequest) -> LeaveRequestResponse:
    await session.flush()
    steps = await workflow.list_steps(session, _hooks.kind, request.id)
    return _build_request_response(request, steps)


async def _get_request_or_404(
    session: AsyncSession,
    organization_id: uuid.UUID,
    request_id: uuid.UUID,
    *,
    for_update: bool = False,
) -> LeaveRequest:
    """Fetch a request scoped to the organization, optionally row-locked."""
    query = select(LeaveRequest).where(
        col(LeaveRequest.id) == request_id,
        col(LeaveRequest.organization_id) == organization_id,
    )
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(query)
    request = result.scalar_one_or_none()
    if request is None:
        raise NotFoundError("Leave request not found")
    return request


async def _get_employee_or_404(organization_id: uuid.UUID, employee_id: uuid.UUID) -> EmployeeInfo:
    employee = await get_employee_service().get_employee(organization_id, employee_id)
    if employee is None:
        raise NotFoundError("Employee not found")
    return employee


async def _check_blackout(session: AsyncSession, request: LeaveRequest) -> None:
    """Refuse requests touching a blackout window of the assigned leave policy."""
    tz = await get_organization_timezone(request.organization_id)
    local_start = request.start_at.astimezone(tz)
    local_end = request.end_at.astimezone(tz)
    first_day = local_start.date()
    last_day = local_end.date()
    if local_end.time() == time(0, 0) and last_day > first_day:
        last_day -= timedelta(days=1)

    settings = await get_assigned_leave_settings(
        session, request.organization_id, request.employee_id, request.leave_type_id, first_day
    )
    if settings is None:
        return
    for window in settings.blackout_windows:
        if window.start_date <= last_day and window.end_date >= first_day:
            reason = f" ({window.reason})" if window.reason else ""
            raise ConflictError(
                f"Request falls in a blackout window {window.start_date.isoformat()} to "
                f"{window.end_date.isoformat()}{reason}"
            )


async def _check_overlap(session: AsyncSession, request: LeaveRequest) -> None:
    """Raise CONFLICT if a pending or approved request of the employee overlaps.

    Two intervals overlap when existing.start_at < new.end_at AND
    existing.end_at > new.start_at.
    """
    result = await session.execute(
        select(col(LeaveRequest.id))
        .where(
            col(LeaveRequest.organization_id) == request.organization_id,
            col(LeaveRequest.employee_id) == request.employee_id,
            col(LeaveRequest.id) != request.id,
            col(LeaveRequest.status).in_(_ACTIVE_STATUSES),
            col(LeaveRequest.start_at) < request.end_at,
            col(LeaveRequest.end_at) > request.start_at,
        )
        .limit(1)
    )
    if result.scalar_one_or_none() is not None:
        raise ConflictError("Request overlaps with an existing pending or approved request")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def create_leave_request(
    session: AsyncSession,
    auth: AuthContext,
    payload: CreateLeaveRequestPayload,
) -> LeaveRequestResponse:
    """Create a DRAFT leave request with its chargeable quantity.

    Flow:
    1. Authorize (the employee or an admin)
    2. Resolve employee and leave type
    3. Load the calendar around the request and compute the quantity
    4. Insert the DRAFT request and write audit log
    5. Commit (idempotent when a key is supplied)
    """

    async def _work() -> LeaveRequestResponse:
        # 1. Authorize.
        if auth.user_id != payload.employee_id and not auth.is_admin:
            raise ForbiddenError("Only the employee or an admin may create this request")

        # 2. Employee and leave type.
        employee = await _get_employee_or_404(auth.organization_id, payload.employee_id)
        leave_type = await get_leave_type_or_404(session, auth.organization_id, payload.leave_type_id)

        # 3. Quantity. Pad by a day so local dates in any timezone are covered.
        calendar = await load_calendar(
            session,
            auth.organization_id,
            (payload.start_at - timedelta(days=1)).date(),
            (payload.end_at + timedelta(days=1)).date(),
            employee.work_schedule_id,
        )
        quantity = compute_duration(
            payload.start_at,
            payload.end_at,
            payload.unit,
            calendar,
            half_day=payload.half_day,
            half_day_allowed=leave_type.allow_half_day,
            leave_type_unit=LeaveUnit(leave_type.unit),
        )

        # 4. Insert.
        request = LeaveRequest(
            organization_id=auth.organization_id,
            employee_id=payload.employee_id,
            leave_type_id=payload.leave_type_id,
            start_at=payload.start_at,
            end_at=payload.end_at,
            unit=payload.unit.value,
            half_day=payload.half_day,
            requested_quantity=quantity,
            reason=payload.reason,
            created_by=auth.user_id,
        )
        session.add(request)
        await session.flush()

        await write_audit_log(
            session,
            organization_id=auth.organization_id,
            actor_id=auth.user_id,
            entity_type=AuditEntityType.LEAVE_REQUEST,
            entity_id=request.id,
            action=AuditAction.CREATE,
            after_json=model_to_audit_dict(request),
        )
        return _build_request_response(request, [])

    # 5. Commit.
    return await run_idempotent(
        session,
        scope=IdempotencyScope.LEAVE_CREATE,
        caller_key=str(auth.user_id),
        idempotency_key=payload.idempotency_key,
        request_hash=hash_request(payload, organization_id=auth.organization_id),
        response_model=LeaveRequestResponse,
        work=_work,
        response_status=201,
    )


async def submit_leave_request(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
    payload: WorkflowActionPayload,
) -> LeaveRequestResponse:
    """Submit a DRAFT request into its approval chain.

    Flow:
    1. Lock the request; it must be a DRAFT owned by the caller (or admin)
    2. Verify the employee still exists
    3. Refuse blackout windows and overlapping pending/approved requests
    4. Resolve the approver chain and materialize the steps
    5. Commit (idempotent when a key is supplied)
    """

    async def _work() -> LeaveRequestResponse:
        # 1. Lock.
        request = await _get_request_or_404(session, auth.organization_id, request_id, for_update=True)
        workflow.ensure_owner_or_admin(request, auth)
        if request.status != RequestStatus.DRAFT:
            raise ConflictError(f"Only DRAFT requests can be submitted (request is {request.status})")

        # 2. Employee.
        await _get_employee_or_404(request.organization_id, request.employee_id)

        # 3. Conflicts.
        await _check_blackout(session, request)
        await _check_overlap(session, request)

        # 4. Chain.
        approver_ids = await get_approver_resolver().resolve_chain(
            request.organization_id, request.employee_id, _hooks.kind
        )
        await workflow.submit(session, request, _hooks, approver_ids, auth.user_id)
        return await _respond(session, request)

    # 5. Commit.
    return await run_idempotent(
        session,
        scope=IdempotencyScope.LEAVE_SUBMIT,
        caller_key=str(auth.user_id),
        idempotency_key=payload.idempotency_key,
        request_hash=hash_request(payload, organization_id=auth.organization_id, request_id=request_id),
        response_model=LeaveRequestResponse,
        work=_work,
    )


async def decide_leave_request(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
    step_id: uuid.UUID,
    payload: DecisionPayload,
) -> LeaveRequestResponse:
    """Approve or reject the current step; the last approval charges the balance."""

    async def _work() -> LeaveRequestResponse:
        request = await _get_request_or_404(session, auth.organization_id, request_id, for_update=True)
        await workflow.decide(session, request, _hooks, step_id, payload.outcome, payload.comment, auth)
        return await _respond(session, request)

    return await run_idempotent(
        session,
        scope=IdempotencyScope.LEAVE_DECIDE,
        caller_key=str(auth.user_id),
        idempotency_key=payload.idempotency_key,
        request_hash=hash_request(
            payload, organization_id=auth.organization_id, request_id=request_id, step_id=step_id
        ),
        response_model=LeaveRequestResponse,
        work=_work,
    )


async def skip_leave_request_step(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
    step_id: uuid.UUID,
    payload: SkipStepPayload,
) -> LeaveRequestResponse:
    """Admin override that marks the current step SKIPPED."""

    async def _work() -> LeaveRequestResponse:
        request = await _get_request_or_404(session, auth.organization_id, request_id, for_update=True)
        await workflow.skip_step(session, request, _hooks, step_id, payload.comment, auth)
        return await _respond(session, request)

    return await run_idempotent(
        session,
        scope=IdempotencyScope.LEAVE_SKIP,
        caller_key=str(auth.user_id),
        idempotency_key=payload.idempotency_key,
        request_hash=hash_request(
            payload, organization_id=auth.organization_id, request_id=request_id, step_id=step_id
        ),
        response_model=LeaveRequestResponse,
        work=_work,
    )


async def cancel_leave_request(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
    payload: CancelPayload,
) -> LeaveRequestResponse:
    """Cancel a pending request, or reverse the charge of an approved one."""

    async def _work() -> LeaveRequestResponse:
        request = await _get_request_or_404(session, auth.organization_id, request_id, for_update=True)
        await workflow.cancel(session, request, _hooks, payload.reason, auth)
        return await _respond(session, request)

    return await run_idempotent(
        session,
        scope=IdempotencyScope.LEAVE_CANCEL,
        caller_key=str(auth.user_id),
        idempotency_key=payload.idempotency_key,
        request_hash=hash_request(payload, organization_id=auth.organization_id, request_id=request_id),
        response_model=LeaveRequestResponse,
        work=_work,
    )


async def get_leave_request(
    session: AsyncSession,
    organization_id: uuid.UUID,
    request_id: uuid.UUID,
) -> LeaveRequestResponse:
    """Get a single request with its approval steps."""
    request = await _get_request_or_404(session, organization_id, request_id)
    return await _respond(session, request)


async def list_leave_requests(
    session: AsyncSession,
    organization_id: uuid.UUID,
    status_filter: RequestStatus | None = None,
    employee_id: uuid.UUID | None = None,
    offset: int = 0,
    limit: int = 50,
) -> LeaveRequestListResponse:
    """List requests with optional filters, ordered by created_at DESC."""
    base_filters = [col(LeaveRequest.organization_id) == organization_id]

    if status_filter is not None:
        base_filters.append(col(LeaveRequest.status) == status_filter.value)
    if employee_id is not None:
        base_filters.append(col(LeaveRequest.employee_id) == employee_id)

    count_result = await session.execute(select(func.count()).select_from(LeaveRequest).where(*base_filters))
    total = count_result.scalar_one()

    result = await session.execute(
        select(LeaveRequest)
        .where(*base_filters)
        .order_by(col(LeaveRequest.created_at).desc())
        .offset(offset)
        .limit(limit)
    )
    requests = list(result.scalars().all())
    steps = await workflow.steps_by_subject(session, _hooks.kind, [r.id for r in requests])

    return LeaveRequestListResponse(
        items=[_build_request_response(r, steps[r.id]) for r in requests],
        total=total,
    )
