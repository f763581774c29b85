# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import date
from typing import Protocol, runtime_checkable

from pydantic import BaseModel


class EmployeeInfo(BaseModel):
    """Employee metadata from the Employee Service."""

    id: uuid.UUID
    organization_id: uuid.UUID
    first_name: str
    last_name: str
    email: str
    manager_id: uuid.UUID | None = None
    hire_date: date | None = None
    termination_date: date | None = None
    work_schedule_id: uuid.UUID | None = None

    def is_active_on(self, on: date) -> bool:
        """Whether the employee is employed on the given date."""
        if self.hire_date is None or self.hire_date > on:
            return False
        return self.termination_date is None or on <= self.termination_date


@runtime_checkable
class EmployeeService(Protocol):
    """Interface for the Employee Service."""

    async def get_employee(self, organization_id: uuid.UUID, employee_id: uuid.UUID) -> EmployeeInfo | None:
        """Fetch employee metadata. Returns None if not found."""
        ...

    async def list_employees(self, organization_id: uuid.UUID) -> list[EmployeeInfo]:
        """List all employees for an organization."""
        ...


class InMemoryEmployeeService:
    """In-memory stub implementation for development."""

    def __init__(self) -> None:
        self._employees: dict[tuple[uuid.UUID, uuid.UUID], EmployeeInfo] = {}

    def seed(self, employee: EmployeeInfo) -> None:
        """Seed an employee for testing."""
        self._employees[(employee.organization_id, employee.id)] = employee

    async def get_employee(self, organization_id: uuid.UUID, employee_id: uuid.UUID) -> EmployeeInfo | None:
        """Fetch employee metadata. Returns None if not found."""
        return self._employees.get((organization_id, employee_id))

    async def list_employees(self, organization_id: uuid.UUID) -> list[EmployeeInfo]:
        """List all employees for an organization."""
        return [e for e in self._employees.values() if e.organization_id == organization_id]


_employee_service: EmployeeService = InMemoryEmployeeService()


def get_employee_service() -> EmployeeService:
    """FastAPI dependency for the Employee Service."""
    return _employee_service


def set_employee_service(service: EmployeeService) -> None:
    """Override the service (for testing or production wiring)."""
    global _employee_service
    _employee_service = service
