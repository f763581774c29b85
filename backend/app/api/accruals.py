# ruff: noqa: B008, TC001, TC003
"""API endpoint for running the accrual batch on demand."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.api.deps import AdminDep, validate_organization_scope
from app.db import SessionDep
from app.schemas.accrual import AccrualRunRequest, AccrualRunResponse
from app.services.accrual import run_accrual

accrual_router = APIRouter(
    prefix="/organizations/{organization_id}/accruals",
    tags=["accruals"],
    dependencies=[Depends(validate_organization_scope)],
)


@accrual_router.post("/run", response_model=AccrualRunResponse)
async def run_accruals(
    payload: AccrualRunRequest,
    session: SessionDep,
    auth: AdminDep,
) -> AccrualRunResponse:
    """Post every accrual and carryover expiry due up to ``as_of_date`` (admin only).

    Safe to repeat: periods already recorded are skipped. Pass
    ``after_employee_id`` to resume an interrupted run.
    """
    result = await run_accrual(
        session,
        auth.organization_id,
        payload.as_of_date,
        after_employee_id=payload.after_employee_id,
    )
    return AccrualRunResponse(
        as_of_date=result.as_of_date,
        employees_processed=result.employees_processed,
        events_posted=result.events_posted,
        skipped=result.skipped,
        errors=result.errors,
    )
