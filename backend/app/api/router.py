from fastapi import APIRouter

from app.api.accruals import accrual_router
from app.api.assignments import organization_assignments_router, policy_assignments_router
from app.api.balances import adjustment_router, employee_balance_router, employee_ledger_router, maintenance_router
from app.api.leave_types import leave_types_router
from app.api.overtime import overtime_router
from app.api.policies import router as policies_router
from app.api.requests import requests_router

api_router = APIRouter()
api_router.include_router(leave_types_router)
api_router.include_router(policies_router)
api_router.include_router(policy_assignments_router)
api_router.include_router(organization_assignments_router)
api_router.include_router(employee_balance_router)
api_router.include_router(employee_ledger_router)
api_router.include_router(adjustment_router)
api_router.include_router(maintenance_router)
api_router.include_router(requests_router)
api_router.include_router(overtime_router)
api_router.include_router(accrual_router)
