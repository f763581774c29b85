from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db import build_engine, get_session
from app.main import app
from app.models import SQLModel
from app.services.approvers import ManagerChainApproverResolver, set_approver_resolver
from app.services.employee import EmployeeInfo, InMemoryEmployeeService, set_employee_service
from app.services.organization import InMemoryOrganizationService, OrganizationInfo, set_organization_service
from helpers import DIRECTOR_ID, EMPLOYEE_ID, MANAGER_ID, ORG_ID

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """A fresh SQLite database file per test with every table created."""
    _engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with _engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield _engine
    await _engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """Session for calling services directly."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def async_client(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncClient]:
    """Async HTTP client with the database session dependency overridden."""

    async def _override_get_session() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _override_get_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def organization_service() -> Iterator[InMemoryOrganizationService]:
    svc = InMemoryOrganizationService()
    svc.seed(OrganizationInfo(id=ORG_ID, name="Acme", timezone="UTC"))
    set_organization_service(svc)
    yield svc
    set_organization_service(InMemoryOrganizationService())


@pytest.fixture
def employee_service() -> Iterator[InMemoryEmployeeService]:
    """Employee -> manager -> director reporting line, all hired 2024-01-01."""
    svc = InMemoryEmployeeService()
    for employee_id, manager_id, name in (
        (EMPLOYEE_ID, MANAGER_ID, "Erin"),
        (MANAGER_ID, DIRECTOR_ID, "Morgan"),
        (DIRECTOR_ID, None, "Dana"),
    ):
        svc.seed(
            EmployeeInfo(
                id=employee_id,
                organization_id=ORG_ID,
                first_name=name,
                last_name="Example",
                email=f"{name.lower()}@example.com",
                manager_id=manager_id,
                hire_date=date(2024, 1, 1),
            )
        )
    set_employee_service(svc)
    yield svc
    set_employee_service(InMemoryEmployeeService())


@pytest.fixture(autouse=True)
def _directory(
    organization_service: InMemoryOrganizationService,
    employee_service: InMemoryEmployeeService,
) -> Iterator[None]:
    """Seed the directory stubs and route approvals to the direct manager."""
    set_approver_resolver(ManagerChainApproverResolver(depth=1))
    yield
    set_approver_resolver(ManagerChainApproverResolver())
