"""Approval state machine shared by leave requests and overtime entries.

A subject moves DRAFT -> PENDING -> {APPROVED, REJECTED}; PENDING and
APPROVED subjects may be CANCELLED. Steps are materialized at submission in
sequence 1..n and decided strictly in order. Subject-specific ledger effects
run through ``WorkflowHooks`` inside the caller's transaction.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy import select
from sqlmodel import col

from app.exceptions import ConflictError, ForbiddenError, NotFoundError, UnprocessableError
from app.models.approval import ApprovalStep
from app.models.enums import (
    AuditAction,
    AuditEntityType,
    DecisionOutcome,
    RequestStatus,
    StepStatus,
    SubjectKind,
)
from app.schemas.request import ApprovalStepResponse
from app.services.audit import model_to_audit_dict, write_audit_log

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from app.schemas.auth import AuthContext

logger = logging.getLogger(__name__)

TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.DRAFT: frozenset({RequestStatus.PENDING}),
    RequestStatus.PENDING: frozenset({RequestStatus.APPROVED, RequestStatus.REJECTED, RequestStatus.CANCELLED}),
    RequestStatus.APPROVED: frozenset({RequestStatus.CANCELLED}),
    RequestStatus.REJECTED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
}

# Steps that satisfy their position in the chain.
_SATISFIED_STEP_STATUSES = frozenset({StepStatus.APPROVED.value, StepStatus.SKIPPED.value})

_AUDIT_ENTITY: dict[SubjectKind, AuditEntityType] = {
    SubjectKind.LEAVE_REQUEST: AuditEntityType.LEAVE_REQUEST,
    SubjectKind.OVERTIME_ENTRY: AuditEntityType.OVERTIME_ENTRY,
}


class ApprovalSubject(Protocol):
    """Anything that can travel through the approval chain."""

    id: uuid.UUID
    organization_id: uuid.UUID
    employee_id: uuid.UUID
    created_by: uuid.UUID
    status: str
    current_step: int
    submitted_at: datetime | None
    decided_at: datetime | None
    cancelled_at: datetime | None
    cancel_reason: str | None


class WorkflowHooks(Protocol):
    """Per-kind effects run on final approval and on cancelling an approval."""

    kind: SubjectKind

    async def on_finalize(self, session: AsyncSession, subject: Any, actor_id: uuid.UUID) -> None: ...

    async def on_reverse(self, session: AsyncSession, subject: Any, actor_id: uuid.UUID) -> None: ...


def can_transition(current: RequestStatus, target: RequestStatus) -> bool:
    return target in TRANSITIONS[current]


def _transition(subject: ApprovalSubject, target: RequestStatus) -> RequestStatus:
    current = RequestStatus(subject.status)
    if not can_transition(current, target):
        raise ConflictError(f"Cannot move from {current} to {target}")
    subject.status = target.value
    return current


async def _audit(
    session: AsyncSession,
    subject: ApprovalSubject,
    hooks: WorkflowHooks,
    actor_id: uuid.UUID,
    action: AuditAction,
    before: dict[str, Any] | None,
) -> None:
    await write_audit_log(
        session,
        organization_id=subject.organization_id,
        actor_id=actor_id,
        entity_type=_AUDIT_ENTITY[hooks.kind],
        entity_id=subject.id,
        action=action,
        before_json=before,
        after_json=model_to_audit_dict(subject),  # type: ignore[arg-type]
    )


def ensure_owner_or_admin(subject: ApprovalSubject, actor: AuthContext) -> None:
    """Only the employee, the creator or an admin may submit or cancel."""
    if actor.is_admin:
        return
    if actor.user_id not in (subject.employee_id, subject.created_by):
        raise ForbiddenError("Only the employee or an admin may act on this request")


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


async def list_steps(
    session: AsyncSession,
    kind: SubjectKind,
    subject_id: uuid.UUID,
) -> list[ApprovalStep]:
    """Steps of one subject in sequence order."""
    result = await session.execute(
        select(ApprovalStep)
        .where(
            col(ApprovalStep.subject_kind) == kind.value,
            col(ApprovalStep.subject_id) == subject_id,
        )
        .order_by(col(ApprovalStep.sequence))
    )
    return list(result.scalars().all())


async def steps_by_subject(
    session: AsyncSession,
    kind: SubjectKind,
    subject_ids: list[uuid.UUID],
) -> dict[uuid.UUID, list[ApprovalStep]]:
    """Steps for many subjects at once, grouped by subject id."""
    grouped: dict[uuid.UUID, list[ApprovalStep]] = {subject_id: [] for subject_id in subject_ids}
    if not subject_ids:
        return grouped
    result = await session.execute(
        select(ApprovalStep)
        .where(
            col(ApprovalStep.subject_kind) == kind.value,
            col(ApprovalStep.subject_id).in_(subject_ids),
        )
        .order_by(col(ApprovalStep.subject_id), col(ApprovalStep.sequence))
    )
    for step in result.scalars().all():
        grouped[step.subject_id].append(step)
    return grouped


def build_step_response(step: ApprovalStep) -> ApprovalStepResponse:
    return ApprovalStepResponse(
        id=step.id,
        sequence=step.sequence,
        approver_id=step.approver_id,
        status=StepStatus(step.status),
        decided_by=step.decided_by,
        decided_at=step.decided_at,
        comment=step.comment,
    )


def _verify_chain_complete(steps: list[ApprovalStep]) -> None:
    """Every step 1..n is approved or skipped, with no gaps."""
    for expected, step in enumerate(steps, start=1):
        if step.sequence != expected:
            raise ConflictError(f"Approval chain has a gap at sequence {expected}")
        if step.status not in _SATISFIED_STEP_STATUSES:
            raise ConflictError(f"Approval step {step.sequence} is {step.status}")


async def _current_step(
    session: AsyncSession,
    subject: ApprovalSubject,
    hooks: WorkflowHooks,
    step_id: uuid.UUID,
) -> tuple[ApprovalStep, list[ApprovalStep]]:
    if subject.status != RequestStatus.PENDING:
        raise ConflictError(f"Request is {subject.status}, not PENDING")
    steps = await list_steps(session, hooks.kind, subject.id)
    step = next((s for s in steps if s.id == step_id), None)
    if step is None:
        raise NotFoundError("Approval step not found")
    if step.sequence != subject.current_step or step.status != StepStatus.PENDING:
        raise ConflictError(f"Step {step.sequence} is not the current step (current is {subject.current_step})")
    return step, steps


async def _advance(
    session: AsyncSession,
    subject: ApprovalSubject,
    hooks: WorkflowHooks,
    steps: list[ApprovalStep],
    actor_id: uuid.UUID,
) -> None:
    """Move the cursor forward, or finalize after the last step."""
    if subject.current_step < len(steps):
        subject.current_step += 1
        return

    _verify_chain_complete(steps)
    _transition(subject, RequestStatus.APPROVED)
    subject.decided_at = datetime.now(UTC)
    await hooks.on_finalize(session, subject, actor_id)
    logger.info("%s %s approved", hooks.kind, subject.id)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


async def submit(
    session: AsyncSession,
    subject: ApprovalSubject,
    hooks: WorkflowHooks,
    approver_ids: list[uuid.UUID],
    actor_id: uuid.UUID,
) -> list[ApprovalStep]:
    """Materialize the approval chain and move the subject to PENDING."""
    if not approver_ids:
        raise UnprocessableError("No approvers could be resolved for this request")

    before = model_to_audit_dict(subject)  # type: ignore[arg-type]
    _transition(subject, RequestStatus.PENDING)

    steps = [
        ApprovalStep(
            organization_id=subject.organization_id,
            subject_kind=hooks.kind.value,
            subject_id=subject.id,
            sequence=sequence,
            approver_id=approver_id,
        )
        for sequence, approver_id in enumerate(approver_ids, start=1)
    ]
    session.add_all(steps)
    subject.current_step = 1
    subject.submitted_at = datetime.now(UTC)
    await session.flush()

    await _audit(session, subject, hooks, actor_id, AuditAction.SUBMIT, before)
    logger.info("%s %s submitted with %d approval steps", hooks.kind, subject.id, len(steps))
    return steps


async def decide(
    session: AsyncSession,
    subject: ApprovalSubject,
    hooks: WorkflowHooks,
    step_id: uuid.UUID,
    outcome: DecisionOutcome,
    comment: str | None,
    actor: AuthContext,
) -> ApprovalStep:
    """Record an approver's decision on the current step.

    APPROVE advances the cursor or, on the last step, approves the subject
    and runs ``on_finalize``. REJECT terminates the subject; later steps
    stay PENDING.
    """
    step, steps = await _current_step(session, subject, hooks, step_id)
    if step.approver_id != actor.user_id and not actor.is_admin:
        raise ForbiddenError("Only the step approver or an admin may decide this step")

    before = model_to_audit_dict(subject)  # type: ignore[arg-type]
    now = datetime.now(UTC)
    step.decided_by = actor.user_id
    step.decided_at = now
    step.comment = comment

    if outcome == DecisionOutcome.REJECT:
        step.status = StepStatus.REJECTED.value
        _transition(subject, RequestStatus.REJECTED)
        subject.decided_at = now
        action = AuditAction.REJECT
        logger.info("%s %s rejected at step %d", hooks.kind, subject.id, step.sequence)
    else:
        step.status = StepStatus.APPROVED.value
        await _advance(session, subject, hooks, steps, actor.user_id)
        action = AuditAction.APPROVE

    await session.flush()
    await _audit(session, subject, hooks, actor.user_id, action, before)
    return step


async def skip_step(
    session: AsyncSession,
    subject: ApprovalSubject,
    hooks: WorkflowHooks,
    step_id: uuid.UUID,
    comment: str | None,
    actor: AuthContext,
) -> ApprovalStep:
    """Admin override: mark the current step SKIPPED and move on."""
    if not actor.is_admin:
        raise ForbiddenError("Admin access required")
    step, steps = await _current_step(session, subject, hooks, step_id)

    before = model_to_audit_dict(subject)  # type: ignore[arg-type]
    step.status = StepStatus.SKIPPED.value
    step.decided_by = actor.user_id
    step.decided_at = datetime.now(UTC)
    step.comment = comment
    await _advance(session, subject, hooks, steps, actor.user_id)

    await session.flush()
    await _audit(session, subject, hooks, actor.user_id, AuditAction.SKIP, before)
    logger.info("%s %s step %d skipped by %s", hooks.kind, subject.id, step.sequence, actor.user_id)
    return step


async def cancel(
    session: AsyncSession,
    subject: ApprovalSubject,
    hooks: WorkflowHooks,
    reason: str | None,
    actor: AuthContext,
) -> None:
    """Cancel a PENDING or APPROVED subject; approved ones are reversed."""
    ensure_owner_or_admin(subject, actor)

    before = model_to_audit_dict(subject)  # type: ignore[arg-type]
    previous = _transition(subject, RequestStatus.CANCELLED)
    subject.cancelled_at = datetime.now(UTC)
    subject.cancel_reason = reason

    if previous == RequestStatus.APPROVED:
        await hooks.on_reverse(session, subject, actor.user_id)

    await session.flush()
    await _audit(session, subject, hooks, actor.user_id, AuditAction.CANCEL, before)
    logger.info("%s %s cancelled from %s", hooks.kind, subject.id, previous)
