# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import date
from typing import TYPE_CHECKING

from pydantic import TypeAdapter
from sqlalchemy import func, or_, select
from sqlmodel import col

from app.exceptions import ConflictError, NotFoundError, UnprocessableError, ValidationError
from app.models.assignment import PolicyAssignment
from app.models.enums import AuditAction, AuditEntityType, PolicyKind
from app.models.policy import Policy, PolicyVersion
from app.schemas.policy import (
    LeavePolicySettings,
    OvertimePolicySettings,
    PolicyListResponse,
    PolicyResponse,
    PolicySettings,
    PolicyVersionListResponse,
    PolicyVersionResponse,
)
from app.services.audit import model_to_audit_dict, write_audit_log
from app.services.leave_type import get_leave_type_or_404

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from app.schemas.auth import AuthContext
    from app.schemas.policy import CreatePolicyRequest, UpdatePolicyRequest

_settings_adapter: TypeAdapter[PolicySettings] = TypeAdapter(PolicySettings)


def parse_settings(version: PolicyVersion) -> LeavePolicySettings | OvertimePolicySettings:
    """Validate a stored version's settings JSON into its typed form."""
    return _settings_adapter.validate_python(version.settings_json)


def _build_version_response(version: PolicyVersion) -> PolicyVersionResponse:
    """Build a PolicyVersionResponse from a DB model."""
    return PolicyVersionResponse(
        id=version.id,
        policy_id=version.policy_id,
        version=version.version,
        effective_from=version.effective_from,
        effective_to=version.effective_to,
        settings=parse_settings(version),
        created_by=version.created_by,
        change_reason=version.change_reason,
        created_at=version.created_at,
    )


def _build_policy_response(
    policy: Policy,
    current_version: PolicyVersion | None,
) -> PolicyResponse:
    """Build a PolicyResponse from DB models."""
    return PolicyResponse(
        id=policy.id,
        organization_id=policy.organization_id,
        key=policy.key,
        kind=PolicyKind(policy.kind),
        leave_type_id=policy.leave_type_id,
        created_at=policy.created_at,
        current_version=_build_version_response(current_version) if current_version else None,
    )


async def get_policy_or_404(
    session: AsyncSession,
    organization_id: uuid.UUID,
    policy_id: uuid.UUID,
) -> Policy:
    result = await session.execute(
        select(Policy).where(
            col(Policy.id) == policy_id,
            col(Policy.organization_id) == organization_id,
        )
    )
    policy = result.scalar_one_or_none()
    if policy is None:
        raise NotFoundError("Policy not found")
    return policy


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


async def create_policy(
    session: AsyncSession,
    auth: AuthContext,
    payload: CreatePolicyRequest,
) -> PolicyResponse:
    """Create a new policy with its initial version (version 1)."""
    existing = await session.execute(
        select(Policy).where(
            col(Policy.organization_id) == auth.organization_id,
            col(Policy.key) == payload.key,
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise ConflictError("Policy with this key already exists for this organization")

    if payload.leave_type_id is not None:
        await get_leave_type_or_404(session, auth.organization_id, payload.leave_type_id)

    settings = payload.version.settings
    policy = Policy(
        organization_id=auth.organization_id,
        key=payload.key,
        kind=settings.kind,
        leave_type_id=payload.leave_type_id,
    )
    session.add(policy)
    await session.flush()

    version = PolicyVersion(
        policy_id=policy.id,
        version=1,
        effective_from=payload.version.effective_from,
        settings_json=settings.model_dump(mode="json"),
        created_by=auth.user_id,
        change_reason=payload.version.change_reason,
    )
    session.add(version)
    await session.flush()

    await write_audit_log(
        session,
        organization_id=auth.organization_id,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.POLICY,
        entity_id=policy.id,
        action=AuditAction.CREATE,
        after_json=model_to_audit_dict(policy),
    )
    await write_audit_log(
        session,
        organization_id=auth.organization_id,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.POLICY_VERSION,
        entity_id=version.id,
        action=AuditAction.CREATE,
        after_json=model_to_audit_dict(version),
    )

    await session.commit()
    await session.refresh(policy)
    await session.refresh(version)

    return _build_policy_response(policy, version)


async def get_policy(
    session: AsyncSession,
    organization_id: uuid.UUID,
    policy_id: uuid.UUID,
) -> PolicyResponse:
    """Fetch a single policy with its current (latest) version."""
    policy = await get_policy_or_404(session, organization_id, policy_id)
    current_version = await get_current_version(session, policy_id)
    return _build_policy_response(policy, current_version)


async def list_policies(
    session: AsyncSession,
    organization_id: uuid.UUID,
    offset: int = 0,
    limit: int = 50,
) -> PolicyListResponse:
    """List all policies for an organization with their current versions."""
    count_result = await session.execute(
        select(func.count()).select_from(Policy).where(col(Policy.organization_id) == organization_id)
    )
    total = count_result.scalar_one()

    policies_result = await session.execute(
        select(Policy)
        .where(col(Policy.organization_id) == organization_id)
        .order_by(col(Policy.created_at))
        .offset(offset)
        .limit(limit)
    )
    policies = list(policies_result.scalars().all())

    items: list[PolicyResponse] = []
    for policy in policies:
        current_version = await get_current_version(session, policy.id)
        items.append(_build_policy_response(policy, current_version))

    return PolicyListResponse(items=items, total=total)


async def update_policy(
    session: AsyncSession,
    auth: AuthContext,
    policy_id: uuid.UUID,
    payload: UpdatePolicyRequest,
) -> PolicyResponse:
    """Update a policy by creating a new version and end-dating the current one."""
    policy = await get_policy_or_404(session, auth.organization_id, policy_id)

    current_version = await get_current_version(session, policy_id)
    if current_version is None:
        raise NotFoundError("Policy has no current version")

    settings = payload.version.settings
    if settings.kind != policy.kind:
        raise ValidationError(f"Settings kind {settings.kind} does not match policy kind {policy.kind}")
    if payload.version.effective_from <= current_version.effective_from:
        raise ValidationError("New version effective_from must be after the current version's effective_from")

    before_version_dict = model_to_audit_dict(current_version)

    current_version.effective_to = payload.version.effective_from

    new_version = PolicyVersion(
        policy_id=policy.id,
        version=current_version.version + 1,
        effective_from=payload.version.effective_from,
        settings_json=settings.model_dump(mode="json"),
        created_by=auth.user_id,
        change_reason=payload.version.change_reason,
    )
    session.add(new_version)
    await session.flush()

    await write_audit_log(
        session,
        organization_id=auth.organization_id,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.POLICY_VERSION,
        entity_id=current_version.id,
        action=AuditAction.UPDATE,
        before_json=before_version_dict,
        after_json=model_to_audit_dict(current_version),
    )
    await write_audit_log(
        session,
        organization_id=auth.organization_id,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.POLICY_VERSION,
        entity_id=new_version.id,
        action=AuditAction.CREATE,
        after_json=model_to_audit_dict(new_version),
    )

    await session.commit()
    await session.refresh(policy)
    await session.refresh(new_version)

    return _build_policy_response(policy, new_version)


async def list_policy_versions(
    session: AsyncSession,
    organization_id: uuid.UUID,
    policy_id: uuid.UUID,
    offset: int = 0,
    limit: int = 50,
) -> PolicyVersionListResponse:
    """List all versions of a policy ordered by version number descending."""
    await get_policy_or_404(session, organization_id, policy_id)

    count_result = await session.execute(
        select(func.count()).select_from(PolicyVersion).where(col(PolicyVersion.policy_id) == policy_id)
    )
    total = count_result.scalar_one()

    versions_result = await session.execute(
        select(PolicyVersion)
        .where(col(PolicyVersion.policy_id) == policy_id)
        .order_by(col(PolicyVersion.version).desc())
        .offset(offset)
        .limit(limit)
    )
    versions = list(versions_result.scalars().all())

    return PolicyVersionListResponse(
        items=[_build_version_response(v) for v in versions],
        total=total,
    )


# ---------------------------------------------------------------------------
# Version resolution
# ---------------------------------------------------------------------------


async def get_current_version(
    session: AsyncSession,
    policy_id: uuid.UUID,
) -> PolicyVersion | None:
    """Get the current (latest, open-ended) version of a policy."""
    result = await session.execute(
        select(PolicyVersion)
        .where(
            col(PolicyVersion.policy_id) == policy_id,
            col(PolicyVersion.effective_to).is_(None),
        )
        .order_by(col(PolicyVersion.version).desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_version_on(
    session: AsyncSession,
    policy_id: uuid.UUID,
    on_date: date,
) -> PolicyVersion | None:
    """Get the version effective on a date (half-open ``[from, to)``)."""
    result = await session.execute(
        select(PolicyVersion)
        .where(
            col(PolicyVersion.policy_id) == policy_id,
            col(PolicyVersion.effective_from) <= on_date,
            or_(
                col(PolicyVersion.effective_to).is_(None),
                col(PolicyVersion.effective_to) > on_date,
            ),
        )
        .order_by(col(PolicyVersion.version).desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_overtime_settings_on(
    session: AsyncSession,
    organization_id: uuid.UUID,
    policy_id: uuid.UUID,
    on_date: date,
) -> OvertimePolicySettings:
    """Overtime settings in force on a date; UNPROCESSABLE when none apply."""
    policy = await get_policy_or_404(session, organization_id, policy_id)
    if policy.kind != PolicyKind.OVERTIME:
        raise ValidationError("Policy is not an overtime policy")
    version = await get_version_on(session, policy_id, on_date)
    if version is None:
        raise UnprocessableError(f"Overtime policy has no version effective on {on_date.isoformat()}")
    settings = parse_settings(version)
    if not isinstance(settings, OvertimePolicySettings):
        raise UnprocessableError("Overtime policy version carries leave settings")
    return settings


async def get_assigned_leave_settings(
    session: AsyncSession,
    organization_id: uuid.UUID,
    employee_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    on_date: date,
) -> LeavePolicySettings | None:
    """Settings of the leave policy assigned to the employee for a leave type on a date."""
    result = await session.execute(
        select(PolicyVersion)
        .join(Policy, col(Policy.id) == col(PolicyVersion.policy_id))
        .join(PolicyAssignment, col(PolicyAssignment.policy_id) == col(Policy.id))
        .where(
            col(Policy.organization_id) == organization_id,
            col(Policy.leave_type_id) == leave_type_id,
            col(Policy.kind) == PolicyKind.LEAVE.value,
            col(PolicyAssignment.employee_id) == employee_id,
            col(PolicyAssignment.effective_from) <= on_date,
            or_(
                col(PolicyAssignment.effective_to).is_(None),
                col(PolicyAssignment.effective_to) > on_date,
            ),
            col(PolicyVersion.effective_from) <= on_date,
            or_(
                col(PolicyVersion.effective_to).is_(None),
                col(PolicyVersion.effective_to) > on_date,
            ),
        )
        .order_by(col(PolicyAssignment.effective_from).desc(), col(PolicyVersion.version).desc())
        .limit(1)
    )
    version = result.scalar_one_or_none()
    if version is None:
        return None
    settings = parse_settings(version)
    return settings if isinstance(settings, LeavePolicySettings) else None
