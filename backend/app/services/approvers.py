# ruff: noqa: TC003
from __future__ import annotations

import uuid
from typing import Protocol, runtime_checkable

from app.config import get_settings
from app.models.enums import SubjectKind
from app.services.employee import get_employee_service


@runtime_checkable
class ApproverResolver(Protocol):
    """Interface for the organization-specific approval routing rule."""

    async def resolve_chain(
        self,
        organization_id: uuid.UUID,
        employee_id: uuid.UUID,
        subject_kind: SubjectKind,
    ) -> list[uuid.UUID]:
        """Return the ordered approver ids for a request. May be empty."""
        ...


class ManagerChainApproverResolver:
    """Walks the employee's reporting line up to ``depth`` managers."""

    def __init__(self, depth: int | None = None) -> None:
        self._depth = depth

    async def resolve_chain(
        self,
        organization_id: uuid.UUID,
        employee_id: uuid.UUID,
        subject_kind: SubjectKind,
    ) -> list[uuid.UUID]:
        depth = self._depth if self._depth is not None else get_settings().approval_chain_depth
        employee_service = get_employee_service()
        chain: list[uuid.UUID] = []
        current = await employee_service.get_employee(organization_id, employee_id)
        while current is not None and current.manager_id is not None and len(chain) < depth:
            # Stop on reporting cycles.
            if current.manager_id in chain or current.manager_id == employee_id:
                break
            chain.append(current.manager_id)
            current = await employee_service.get_employee(organization_id, current.manager_id)
        return chain


class InMemoryApproverResolver:
    """In-memory stub with fixed chains per employee, for tests."""

    def __init__(self) -> None:
        self._chains: dict[tuple[uuid.UUID, uuid.UUID], list[uuid.UUID]] = {}

    def seed(self, organization_id: uuid.UUID, employee_id: uuid.UUID, approver_ids: list[uuid.UUID]) -> None:
        """Seed the approval chain for one employee."""
        self._chains[(organization_id, employee_id)] = list(approver_ids)

    async def resolve_chain(
        self,
        organization_id: uuid.UUID,
        employee_id: uuid.UUID,
        subject_kind: SubjectKind,
    ) -> list[uuid.UUID]:
        return list(self._chains.get((organization_id, employee_id), []))


_approver_resolver: ApproverResolver = ManagerChainApproverResolver()


def get_approver_resolver() -> ApproverResolver:
    """Return the active approver resolver."""
    return _approver_resolver


def set_approver_resolver(resolver: ApproverResolver) -> None:
    """Override the resolver (for testing or production wiring)."""
    global _approver_resolver
    _approver_resolver = resolver
