# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import AdminDep, AuthDep, validate_organization_scope
from app.db import SessionDep
from app.models.enums import RequestStatus
from app.schemas.request import (
    CancelPayload,
    CreateLeaveRequestPayload,
    DecisionPayload,
    LeaveRequestListResponse,
    LeaveRequestResponse,
    SkipStepPayload,
    WorkflowActionPayload,
)
from app.services import request as request_service

requests_router = APIRouter(
    prefix="/organizations/{organization_id}/leave-requests",
    tags=["leave-requests"],
    dependencies=[Depends(validate_organization_scope)],
)


@requests_router.post("", response_model=LeaveRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_leave_request(
    payload: CreateLeaveRequestPayload,
    session: SessionDep,
    auth: AuthDep,
) -> LeaveRequestResponse:
    """Create a draft leave request with its computed quantity."""
    return await request_service.create_leave_request(session, auth, payload)


@requests_router.get("", response_model=LeaveRequestListResponse)
async def list_leave_requests(
    session: SessionDep,
    auth: AuthDep,
    status_filter: RequestStatus | None = Query(default=None, alias="status"),
    employee_id: uuid.UUID | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> LeaveRequestListResponse:
    """List leave requests with optional filters."""
    return await request_service.list_leave_requests(
        session, auth.organization_id, status_filter, employee_id, offset, limit
    )


@requests_router.get("/{request_id}", response_model=LeaveRequestResponse)
async def get_leave_request(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
) -> LeaveRequestResponse:
    return await request_service.get_leave_request(session, auth.organization_id, request_id)


@requests_router.post("/{request_id}/submit", response_model=LeaveRequestResponse)
async def submit_leave_request(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
    payload: WorkflowActionPayload | None = None,
) -> LeaveRequestResponse:
    """Submit a draft into its approval chain."""
    return await request_service.submit_leave_request(
        session, auth, request_id, payload or WorkflowActionPayload()
    )


@requests_router.post("/{request_id}/steps/{step_id}/decision", response_model=LeaveRequestResponse)
async def decide_leave_request(
    request_id: uuid.UUID,
    step_id: uuid.UUID,
    payload: DecisionPayload,
    session: SessionDep,
    auth: AuthDep,
) -> LeaveRequestResponse:
    """Approve or reject the current approval step."""
    return await request_service.decide_leave_request(session, auth, request_id, step_id, payload)


@requests_router.post("/{request_id}/steps/{step_id}/skip", response_model=LeaveRequestResponse)
async def skip_leave_request_step(
    request_id: uuid.UUID,
    step_id: uuid.UUID,
    session: SessionDep,
    auth: AdminDep,
    payload: SkipStepPayload | None = None,
) -> LeaveRequestResponse:
    """Skip the current approval step (admin only)."""
    return await request_service.skip_leave_request_step(
        session, auth, request_id, step_id, payload or SkipStepPayload()
    )


@requests_router.post("/{request_id}/cancel", response_model=LeaveRequestResponse)
async def cancel_leave_request(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
    payload: CancelPayload | None = None,
) -> LeaveRequestResponse:
    """Cancel a pending or approved leave request."""
    return await request_service.cancel_leave_request(session, auth, request_id, payload or CancelPayload())
