# ruff: noqa: TC003
from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlmodel import col

from app.exceptions import ConflictError, NotFoundError
from app.models.enums import AuditAction, AuditEntityType, LeaveUnit
from app.models.leave_type import LeaveType
from app.schemas.leave_type import LeaveTypeListResponse, LeaveTypeResponse
from app.services.audit import model_to_audit_dict, write_audit_log

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from app.schemas.auth import AuthContext
    from app.schemas.leave_type import CreateLeaveTypeRequest


def normalize_key(key: str) -> str:
    """Leave type keys compare case-insensitively."""
    return key.strip().lower()


def _build_leave_type_response(leave_type: LeaveType) -> LeaveTypeResponse:
    return LeaveTypeResponse(
        id=leave_type.id,
        organization_id=leave_type.organization_id,
        key=leave_type.key,
        name=leave_type.name,
        unit=LeaveUnit(leave_type.unit),
        allow_half_day=leave_type.allow_half_day,
        allow_negative=leave_type.allow_negative,
        negative_balance_floor=leave_type.negative_balance_floor,
        created_at=leave_type.created_at,
    )


async def get_leave_type_or_404(
    session: AsyncSession,
    organization_id: uuid.UUID,
    leave_type_id: uuid.UUID,
) -> LeaveType:
    result = await session.execute(
        select(LeaveType).where(
            col(LeaveType.id) == leave_type_id,
            col(LeaveType.organization_id) == organization_id,
        )
    )
    leave_type = result.scalar_one_or_none()
    if leave_type is None:
        raise NotFoundError("Leave type not found")
    return leave_type


async def create_leave_type(
    session: AsyncSession,
    auth: AuthContext,
    payload: CreateLeaveTypeRequest,
) -> LeaveTypeResponse:
    """Create a leave type; the key is stored lowercase and unique per organization."""
    key = normalize_key(payload.key)
    existing = await session.execute(
        select(LeaveType).where(
            col(LeaveType.organization_id) == auth.organization_id,
            col(LeaveType.key) == key,
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise ConflictError("Leave type with this key already exists for this organization")

    leave_type = LeaveType(
        organization_id=auth.organization_id,
        key=key,
        name=payload.name,
        unit=payload.unit.value,
        allow_half_day=payload.allow_half_day,
        allow_negative=payload.allow_negative,
        negative_balance_floor=payload.negative_balance_floor,
    )
    session.add(leave_type)
    await session.flush()

    await write_audit_log(
        session,
        organization_id=auth.organization_id,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.LEAVE_TYPE,
        entity_id=leave_type.id,
        action=AuditAction.CREATE,
        after_json=model_to_audit_dict(leave_type),
    )

    await session.commit()
    await session.refresh(leave_type)
    return _build_leave_type_response(leave_type)


async def get_leave_type(
    session: AsyncSession,
    organization_id: uuid.UUID,
    leave_type_id: uuid.UUID,
) -> LeaveTypeResponse:
    leave_type = await get_leave_type_or_404(session, organization_id, leave_type_id)
    return _build_leave_type_response(leave_type)


async def list_leave_types(
    session: AsyncSession,
    organization_id: uuid.UUID,
) -> LeaveTypeListResponse:
    """List an organization's leave types ordered by key."""
    count_result = await session.execute(
        select(func.count()).select_from(LeaveType).where(col(LeaveType.organization_id) == organization_id)
    )
    total = count_result.scalar_one()

    result = await session.execute(
        select(LeaveType).where(col(LeaveType.organization_id) == organization_id).order_by(col(LeaveType.key))
    )
    items = [_build_leave_type_response(lt) for lt in result.scalars().all()]
    return LeaveTypeListResponse(items=items, total=total)
