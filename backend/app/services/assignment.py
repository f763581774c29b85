# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import date
from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlmodel import col

from app.exceptions import ConflictError, NotFoundError, UnprocessableError, ValidationError
from app.models.assignment import PolicyAssignment
from app.models.enums import AuditAction, AuditEntityType, PolicyKind
from app.models.policy import Policy
from app.schemas.assignment import AssignmentListResponse, AssignmentResponse
from app.services.audit import model_to_audit_dict, write_audit_log
from app.services.policy import get_policy_or_404

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from app.schemas.assignment import CreateAssignmentRequest
    from app.schemas.auth import AuthContext


def _build_assignment_response(assignment: PolicyAssignment) -> AssignmentResponse:
    """Build an AssignmentResponse from a DB model."""
    return AssignmentResponse(
        id=assignment.id,
        organization_id=assignment.organization_id,
        employee_id=assignment.employee_id,
        policy_id=assignment.policy_id,
        effective_from=assignment.effective_from,
        effective_to=assignment.effective_to,
        created_by=assignment.created_by,
        created_at=assignment.created_at,
    )


async def _check_overlap(
    session: AsyncSession,
    organization_id: uuid.UUID,
    employee_id: uuid.UUID,
    policy: Policy,
    effective_from: date,
    effective_to: date | None,
) -> None:
    """Check for overlapping assignments using half-open intervals [from, to).

    A leave policy also may not overlap another leave policy of the same
    leave type for the employee, so one policy governs each balance.
    """
    query = (
        select(PolicyAssignment)
        .join(Policy, col(Policy.id) == col(PolicyAssignment.policy_id))
        .where(
            col(PolicyAssignment.organization_id) == organization_id,
            col(PolicyAssignment.employee_id) == employee_id,
            or_(
                col(PolicyAssignment.effective_to).is_(None),
                col(PolicyAssignment.effective_to) > effective_from,
            ),
        )
    )
    if policy.kind == PolicyKind.LEAVE and policy.leave_type_id is not None:
        query = query.where(
            or_(
                col(PolicyAssignment.policy_id) == policy.id,
                col(Policy.leave_type_id) == policy.leave_type_id,
            )
        )
    else:
        query = query.where(col(PolicyAssignment.policy_id) == policy.id)
    if effective_to is not None:
        query = query.where(col(PolicyAssignment.effective_from) < effective_to)
    result = await session.execute(query.limit(1))
    if result.scalar_one_or_none() is not None:
        raise ConflictError("Assignment overlaps with an existing assignment for this employee")


async def create_assignment(
    session: AsyncSession,
    auth: AuthContext,
    policy_id: uuid.UUID,
    payload: CreateAssignmentRequest,
) -> AssignmentResponse:
    """Create a new policy assignment for an employee."""
    policy = await get_policy_or_404(session, auth.organization_id, policy_id)
    await _check_overlap(
        session,
        auth.organization_id,
        payload.employee_id,
        policy,
        payload.effective_from,
        payload.effective_to,
    )

    assignment = PolicyAssignment(
        organization_id=auth.organization_id,
        employee_id=payload.employee_id,
        policy_id=policy_id,
        effective_from=payload.effective_from,
        effective_to=payload.effective_to,
        created_by=auth.user_id,
    )
    session.add(assignment)

    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        raise ConflictError("Duplicate assignment") from None

    await write_audit_log(
        session,
        organization_id=auth.organization_id,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.ASSIGNMENT,
        entity_id=assignment.id,
        action=AuditAction.CREATE,
        after_json=model_to_audit_dict(assignment),
    )

    await session.commit()
    await session.refresh(assignment)
    return _build_assignment_response(assignment)


async def list_assignments_by_policy(
    session: AsyncSession,
    organization_id: uuid.UUID,
    policy_id: uuid.UUID,
    offset: int = 0,
    limit: int = 50,
) -> AssignmentListResponse:
    """List all assignments for a policy."""
    await get_policy_or_404(session, organization_id, policy_id)

    base_filter = [
        col(PolicyAssignment.organization_id) == organization_id,
        col(PolicyAssignment.policy_id) == policy_id,
    ]
    count_result = await session.execute(select(func.count()).select_from(PolicyAssignment).where(*base_filter))
    total = count_result.scalar_one()

    result = await session.execute(
        select(PolicyAssignment)
        .where(*base_filter)
        .order_by(col(PolicyAssignment.effective_from).desc())
        .offset(offset)
        .limit(limit)
    )
    assignments = list(result.scalars().all())

    return AssignmentListResponse(
        items=[_build_assignment_response(a) for a in assignments],
        total=total,
    )


async def end_date_assignment(
    session: AsyncSession,
    auth: AuthContext,
    assignment_id: uuid.UUID,
    effective_to: date,
) -> AssignmentResponse:
    """End-date an assignment; the end date is exclusive."""
    result = await session.execute(
        select(PolicyAssignment).where(
            col(PolicyAssignment.id) == assignment_id,
            col(PolicyAssignment.organization_id) == auth.organization_id,
        )
    )
    assignment = result.scalar_one_or_none()
    if assignment is None:
        raise NotFoundError("Assignment not found")

    if assignment.effective_to is not None:
        raise ValidationError("Assignment is already end-dated")

    if effective_to <= assignment.effective_from:
        raise ValidationError("effective_to must be after effective_from")

    before_dict = model_to_audit_dict(assignment)
    assignment.effective_to = effective_to
    await session.flush()

    await write_audit_log(
        session,
        organization_id=auth.organization_id,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.ASSIGNMENT,
        entity_id=assignment.id,
        action=AuditAction.UPDATE,
        before_json=before_dict,
        after_json=model_to_audit_dict(assignment),
    )

    await session.commit()
    await session.refresh(assignment)
    return _build_assignment_response(assignment)


async def verify_active_assignment(
    session: AsyncSession,
    organization_id: uuid.UUID,
    employee_id: uuid.UUID,
    policy_id: uuid.UUID,
    at_date: date,
) -> PolicyAssignment:
    """Verify an employee has an active assignment to a policy on a given date.

    Uses half-open interval semantics: assignment is active when
    effective_from <= at_date AND (effective_to IS NULL OR effective_to > at_date).
    """
    result = await session.execute(
        select(PolicyAssignment).where(
            col(PolicyAssignment.organization_id) == organization_id,
            col(PolicyAssignment.employee_id) == employee_id,
            col(PolicyAssignment.policy_id) == policy_id,
            col(PolicyAssignment.effective_from) <= at_date,
            or_(
                col(PolicyAssignment.effective_to).is_(None),
                col(PolicyAssignment.effective_to) > at_date,
            ),
        )
    )
    assignment = result.scalars().first()
    if assignment is None:
        raise UnprocessableError("Employee is not assigned to this policy on the given date")
    return assignment
