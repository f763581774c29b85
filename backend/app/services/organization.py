# ruff: noqa: TC003
from __future__ import annotations

import uuid
from typing import Protocol, runtime_checkable

from pydantic import BaseModel


class OrganizationInfo(BaseModel):
    """Organization metadata from the Organization Service."""

    id: uuid.UUID
    name: str
    timezone: str  # e.g. "America/New_York"
    toil_leave_type_id: uuid.UUID | None = None  # credited by comp-time overtime


@runtime_checkable
class OrganizationService(Protocol):
    """Interface for the Organization Service."""

    async def get_organization(self, organization_id: uuid.UUID) -> OrganizationInfo | None:
        """Fetch organization metadata. Returns None if not found."""
        ...

    async def list_organizations(self) -> list[OrganizationInfo]:
        """List every organization known to the directory."""
        ...


class InMemoryOrganizationService:
    """In-memory stub implementation for development."""

    def __init__(self) -> None:
        self._organizations: dict[uuid.UUID, OrganizationInfo] = {}

    def seed(self, organization: OrganizationInfo) -> None:
        """Seed an organization for testing."""
        self._organizations[organization.id] = organization

    async def get_organization(self, organization_id: uuid.UUID) -> OrganizationInfo | None:
        """Fetch organization metadata. Returns None if not found."""
        return self._organizations.get(organization_id)

    async def list_organizations(self) -> list[OrganizationInfo]:
        """List every seeded organization."""
        return list(self._organizations.values())


_organization_service: OrganizationService = InMemoryOrganizationService()


def get_organization_service() -> OrganizationService:
    """FastAPI dependency for the Organization Service."""
    return _organization_service


def set_organization_service(service: OrganizationService) -> None:
    """Override the service (for testing or production wiring)."""
    global _organization_service
    _organization_service = service
