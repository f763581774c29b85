# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import AdminDep, AuthDep, validate_organization_scope
from app.db import SessionDep
from app.schemas.balance import (
    BalanceDriftResponse,
    BalanceListResponse,
    CreateAdjustmentRequest,
    IntegrityReportResponse,
    LedgerEventResponse,
    LedgerListResponse,
    RebuildRequest,
    RebuildResponse,
)
from app.services import balance as balance_service

employee_balance_router = APIRouter(
    prefix="/organizations/{organization_id}/employees/{employee_id}/balances",
    tags=["balances"],
    dependencies=[Depends(validate_organization_scope)],
)

employee_ledger_router = APIRouter(
    prefix="/organizations/{organization_id}/employees/{employee_id}/ledger",
    tags=["balances"],
    dependencies=[Depends(validate_organization_scope)],
)

adjustment_router = APIRouter(
    prefix="/organizations/{organization_id}/adjustments",
    tags=["balances"],
    dependencies=[Depends(validate_organization_scope)],
)

maintenance_router = APIRouter(
    prefix="/organizations/{organization_id}/balances",
    tags=["balances"],
    dependencies=[Depends(validate_organization_scope)],
)


@employee_balance_router.get("", response_model=BalanceListResponse)
async def get_employee_balances(
    employee_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
) -> BalanceListResponse:
    """Get every leave type balance for an employee."""
    return await balance_service.get_employee_balances(session, auth.organization_id, employee_id)


@employee_ledger_router.get("", response_model=LedgerListResponse)
async def get_employee_ledger(
    employee_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
    leave_type_id: uuid.UUID | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> LedgerListResponse:
    """Get paginated ledger events for an employee, newest first."""
    return await balance_service.get_employee_ledger(
        session, auth.organization_id, employee_id, leave_type_id, offset, limit
    )


@adjustment_router.post("", response_model=LedgerEventResponse, status_code=status.HTTP_201_CREATED)
async def create_adjustment(
    payload: CreateAdjustmentRequest,
    session: SessionDep,
    auth: AdminDep,
) -> LedgerEventResponse:
    """Create an admin balance adjustment."""
    return await balance_service.create_adjustment(session, auth, payload)


@maintenance_router.get("/integrity", response_model=IntegrityReportResponse)
async def check_integrity(
    session: SessionDep,
    auth: AdminDep,
) -> IntegrityReportResponse:
    """Compare every balance summary with the sum of its ledger events."""
    drifts = await balance_service.check_balance_integrity(session, auth.organization_id)
    return IntegrityReportResponse(
        consistent=not drifts,
        drifts=[
            BalanceDriftResponse(
                employee_id=d.employee_id,
                leave_type_id=d.leave_type_id,
                summary_balance=d.summary_balance,
                ledger_balance=d.ledger_balance,
            )
            for d in drifts
        ],
    )


@maintenance_router.post("/rebuild", response_model=RebuildResponse)
async def rebuild_summaries(
    session: SessionDep,
    auth: AdminDep,
    payload: RebuildRequest | None = None,
) -> RebuildResponse:
    """Recompute balance summaries from the ledger (admin only)."""
    employee_id = payload.employee_id if payload is not None else None
    rebuilt = await balance_service.rebuild_balance_summaries(session, auth.organization_id, employee_id)
    return RebuildResponse(summaries_rebuilt=rebuilt)
