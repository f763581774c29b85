# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import date

from pydantic import BaseModel


class AccrualRunRequest(BaseModel):
    """Request body for the accrual trigger endpoint."""

    as_of_date: date
    after_employee_id: uuid.UUID | None = None


class AccrualRunResponse(BaseModel):
    """Response from the accrual trigger endpoint."""

    as_of_date: date
    employees_processed: int
    events_posted: int
    skipped: int
    errors: int
