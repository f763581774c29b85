# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import AdminDep, AuthDep, validate_organization_scope
from app.db import SessionDep
from app.models.enums import RequestStatus
from app.schemas.overtime import CreateOvertimeEntryPayload, OvertimeEntryListResponse, OvertimeEntryResponse
from app.schemas.request import CancelPayload, DecisionPayload, SkipStepPayload, WorkflowActionPayload
from app.services import overtime as overtime_service

overtime_router = APIRouter(
    prefix="/organizations/{organization_id}/overtime-entries",
    tags=["overtime-entries"],
    dependencies=[Depends(validate_organization_scope)],
)


@overtime_router.post("", response_model=OvertimeEntryResponse, status_code=status.HTTP_201_CREATED)
async def create_overtime_entry(
    payload: CreateOvertimeEntryPayload,
    session: SessionDep,
    auth: AuthDep,
) -> OvertimeEntryResponse:
    """Record worked overtime as a draft entry."""
    return await overtime_service.create_overtime_entry(session, auth, payload)


@overtime_router.get("", response_model=OvertimeEntryListResponse)
async def list_overtime_entries(
    session: SessionDep,
    auth: AuthDep,
    status_filter: RequestStatus | None = Query(default=None, alias="status"),
    employee_id: uuid.UUID | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> OvertimeEntryListResponse:
    return await overtime_service.list_overtime_entries(
        session, auth.organization_id, status_filter, employee_id, offset, limit
    )


@overtime_router.get("/{entry_id}", response_model=OvertimeEntryResponse)
async def get_overtime_entry(
    entry_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
) -> OvertimeEntryResponse:
    return await overtime_service.get_overtime_entry(session, auth.organization_id, entry_id)


@overtime_router.post("/{entry_id}/submit", response_model=OvertimeEntryResponse)
async def submit_overtime_entry(
    entry_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
    payload: WorkflowActionPayload | None = None,
) -> OvertimeEntryResponse:
    """Submit a draft entry into its approval chain."""
    return await overtime_service.submit_overtime_entry(session, auth, entry_id, payload or WorkflowActionPayload())


@overtime_router.post("/{entry_id}/steps/{step_id}/decision", response_model=OvertimeEntryResponse)
async def decide_overtime_entry(
    entry_id: uuid.UUID,
    step_id: uuid.UUID,
    payload: DecisionPayload,
    session: SessionDep,
    auth: AuthDep,
) -> OvertimeEntryResponse:
    return await overtime_service.decide_overtime_entry(session, auth, entry_id, step_id, payload)


@overtime_router.post("/{entry_id}/steps/{step_id}/skip", response_model=OvertimeEntryResponse)
async def skip_overtime_entry_step(
    entry_id: uuid.UUID,
    step_id: uuid.UUID,
    session: SessionDep,
    auth: AdminDep,
    payload: SkipStepPayload | None = None,
) -> OvertimeEntryResponse:
    """Skip the current approval step (admin only)."""
    return await overtime_service.skip_overtime_entry_step(
        session, auth, entry_id, step_id, payload or SkipStepPayload()
    )


@overtime_router.post("/{entry_id}/cancel", response_model=OvertimeEntryResponse)
async def cancel_overtime_entry(
    entry_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
    payload: CancelPayload | None = None,
) -> OvertimeEntryResponse:
    """Cancel a pending or approved entry, reversing any settlement."""
    return await overtime_service.cancel_overtime_entry(session, auth, entry_id, payload or CancelPayload())
