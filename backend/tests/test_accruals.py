"""Tests for the accrual batch engine: period arithmetic, proration, caps,
carryover expiry, eligibility, and repeat-run safety.
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

import pytest

from app.models.enums import AccrualFrequency, ProrationMethod
from app.services.accrual import (
    accrual_source_id,
    cap_credit,
    local_midnight,
    period_bounds,
    prorate,
    run_accrual,
)
from app.services.calendar import CalendarSnapshot
from app.services.employee import EmployeeInfo, InMemoryEmployeeService
from helpers import (
    ADMIN_HEADERS,
    BASE_URL,
    EMPLOYEE_HEADERS,
    EMPLOYEE_ID,
    MANAGER_ID,
    ORG_ID,
    POLICIES_URL,
    assign,
    balance_of,
    create_leave_policy,
    create_leave_type,
    ledger_url,
)

if TYPE_CHECKING:
    from httpx import AsyncClient
    from sqlalchemy.ext.asyncio import AsyncSession

RUN_URL = f"{BASE_URL}/accruals/run"


# ---------------------------------------------------------------------------
# Period arithmetic
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("frequency", "day", "expected"),
    [
        (AccrualFrequency.WEEKLY, date(2025, 3, 6), (date(2025, 3, 3), date(2025, 3, 10))),
        (AccrualFrequency.MONTHLY, date(2025, 2, 14), (date(2025, 2, 1), date(2025, 3, 1))),
        (AccrualFrequency.MONTHLY, date(2025, 12, 31), (date(2025, 12, 1), date(2026, 1, 1))),
        (AccrualFrequency.QUARTERLY, date(2025, 5, 20), (date(2025, 4, 1), date(2025, 7, 1))),
        (AccrualFrequency.QUARTERLY, date(2025, 11, 1), (date(2025, 10, 1), date(2026, 1, 1))),
        (AccrualFrequency.YEARLY, date(2024, 2, 29), (date(2024, 1, 1), date(2025, 1, 1))),
    ],
)
def test_period_bounds(frequency: AccrualFrequency, day: date, expected: tuple[date, date]) -> None:
    assert period_bounds(frequency, day) == expected


def test_prorate_full_period_is_unchanged() -> None:
    period = (date(2025, 1, 1), date(2025, 2, 1))
    assert prorate(Decimal("1.5"), ProrationMethod.CALENDAR_DAYS, period, period) == Decimal("1.5")


def test_prorate_calendar_days() -> None:
    period = (date(2025, 1, 1), date(2025, 2, 1))
    active = (date(2025, 1, 15), date(2025, 2, 1))
    assert prorate(Decimal("31"), ProrationMethod.CALENDAR_DAYS, period, active) == Decimal("17")


def test_prorate_working_days() -> None:
    calendar = CalendarSnapshot(timezone=ZoneInfo("UTC"))
    # March 2025 has 21 weekdays; 10 of them fall on or after the 18th.
    period = (date(2025, 3, 1), date(2025, 4, 1))
    active = (date(2025, 3, 18), date(2025, 4, 1))
    assert prorate(Decimal("2.1"), ProrationMethod.WORKING_DAYS, period, active, calendar) == Decimal("1")


def test_prorate_none_grants_full_amount() -> None:
    period = (date(2025, 1, 1), date(2025, 2, 1))
    active = (date(2025, 1, 30), date(2025, 2, 1))
    assert prorate(Decimal("2"), ProrationMethod.NONE, period, active) == Decimal("2")


def test_prorate_working_days_requires_calendar() -> None:
    period = (date(2025, 1, 1), date(2025, 2, 1))
    with pytest.raises(ValueError, match="calendar"):
        prorate(Decimal("1"), ProrationMethod.WORKING_DAYS, period, (date(2025, 1, 2), date(2025, 2, 1)))


@pytest.mark.parametrize(
    ("amount", "balance", "max_balance", "expected"),
    [
        ("5", "0", None, "5"),
        ("5", "8", "10", "2"),
        ("5", "10", "10", "0"),
        ("5", "12", "10", "0"),
    ],
)
def test_cap_credit(amount: str, balance: str, max_balance: str | None, expected: str) -> None:
    cap = Decimal(max_balance) if max_balance is not None else None
    assert cap_credit(Decimal(amount), Decimal(balance), cap) == Decimal(expected)


def test_local_midnight_is_expressed_in_utc() -> None:
    instant = local_midnight(date(2025, 1, 1), ZoneInfo("America/New_York"))
    assert instant.isoformat() == "2025-01-01T05:00:00+00:00"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _run(client: AsyncClient, as_of: str, **extra: Any) -> dict[str, Any]:
    resp = await client.post(RUN_URL, json={"as_of_date": as_of, **extra}, headers=ADMIN_HEADERS)
    assert resp.status_code == 200, resp.text
    result: dict[str, Any] = resp.json()
    return result


async def _accruing_type(
    client: AsyncClient,
    effective_from: str = "2025-01-01",
    **settings: Any,
) -> tuple[str, str]:
    """Leave type with a monthly accruing policy assigned to the employee."""
    leave_type_id = await create_leave_type(client)
    policy_settings = {"accrual_frequency": "MONTHLY", "accrual_amount": "1.5", **settings}
    policy_id = await create_leave_policy(client, leave_type_id, **policy_settings)
    await assign(client, policy_id, effective_from=effective_from)
    return leave_type_id, policy_id


async def _events(client: AsyncClient, leave_type_id: str, kind: str) -> list[dict[str, Any]]:
    resp = await client.get(ledger_url(), params={"leave_type_id": leave_type_id}, headers=ADMIN_HEADERS)
    items: list[dict[str, Any]] = resp.json()["items"]
    return sorted((e for e in items if e["kind"] == kind), key=lambda e: e["effective_at"])


# ---------------------------------------------------------------------------
# Batch runs
# ---------------------------------------------------------------------------


async def test_only_elapsed_periods_accrue(async_client: AsyncClient) -> None:
    leave_type_id, _ = await _accruing_type(async_client)
    result = await _run(async_client, "2025-03-31")

    assert result["employees_processed"] == 1
    assert result["events_posted"] == 2
    assert result["errors"] == 0
    assert Decimal(await balance_of(async_client, leave_type_id)) == Decimal("3")

    events = await _events(async_client, leave_type_id, "ACCRUAL")
    assert [e["effective_at"][:10] for e in events] == ["2025-02-01", "2025-03-01"]
    assert all(e["source_type"] == "SYSTEM" for e in events)


async def test_repeat_run_posts_nothing(async_client: AsyncClient) -> None:
    leave_type_id, _ = await _accruing_type(async_client)
    await _run(async_client, "2025-04-01")
    again = await _run(async_client, "2025-04-01")

    assert again["events_posted"] == 0
    assert again["errors"] == 0
    assert Decimal(await balance_of(async_client, leave_type_id)) == Decimal("4.5")


async def test_later_run_resumes_after_last_period(async_client: AsyncClient) -> None:
    leave_type_id, _ = await _accruing_type(async_client)
    await _run(async_client, "2025-02-15")
    later = await _run(async_client, "2025-05-01")

    assert later["events_posted"] == 3
    assert len(await _events(async_client, leave_type_id, "ACCRUAL")) == 4
    assert Decimal(await balance_of(async_client, leave_type_id)) == Decimal("6")


async def test_source_ids_are_period_keys(async_client: AsyncClient) -> None:
    leave_type_id, policy_id = await _accruing_type(async_client)
    await _run(async_client, "2025-02-01")
    events = await _events(async_client, leave_type_id, "ACCRUAL")
    assert [e["source_id"] for e in events] == [
        accrual_source_id(uuid.UUID(policy_id), EMPLOYEE_ID, date(2025, 1, 1)),
    ]


async def test_mid_period_assignment_is_prorated(async_client: AsyncClient) -> None:
    leave_type_id, _ = await _accruing_type(
        async_client, effective_from="2025-01-15", accrual_amount="31", proration="CALENDAR_DAYS"
    )
    await _run(async_client, "2025-02-01")
    assert Decimal(await balance_of(async_client, leave_type_id)) == Decimal("17")


async def test_max_balance_caps_and_marks_period(async_client: AsyncClient) -> None:
    leave_type_id, _ = await _accruing_type(async_client, accrual_amount="5", max_balance="12")
    await _run(async_client, "2025-05-01")

    assert Decimal(await balance_of(async_client, leave_type_id)) == Decimal("12")
    events = await _events(async_client, leave_type_id, "ACCRUAL")
    assert [Decimal(e["quantity"]) for e in events] == [Decimal("5"), Decimal("5"), Decimal("2"), Decimal("0")]
    assert "capped" in events[-1]["note"]


async def test_policy_version_change_applies_from_its_date(async_client: AsyncClient) -> None:
    leave_type_id, policy_id = await _accruing_type(async_client, accrual_amount="1")
    resp = await async_client.put(
        f"{POLICIES_URL}/{policy_id}",
        json={
            "version": {
                "effective_from": "2025-03-01",
                "settings": {"kind": "LEAVE", "accrual_frequency": "MONTHLY", "accrual_amount": "3"},
            }
        },
        headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 200, resp.text

    await _run(async_client, "2025-04-01")
    events = await _events(async_client, leave_type_id, "ACCRUAL")
    assert [Decimal(e["quantity"]) for e in events] == [Decimal("1"), Decimal("1"), Decimal("3")]


async def test_policy_without_accrual_posts_nothing(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    policy_id = await create_leave_policy(async_client, leave_type_id)
    await assign(async_client, policy_id)

    result = await _run(async_client, "2025-06-01")
    assert result["events_posted"] == 0
    assert Decimal(await balance_of(async_client, leave_type_id)) == Decimal("0")


# ---------------------------------------------------------------------------
# Carryover expiry
# ---------------------------------------------------------------------------


async def test_carryover_above_limit_expires(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    policy_id = await create_leave_policy(
        async_client,
        leave_type_id,
        accrual_frequency="YEARLY",
        accrual_amount="8",
        proration="NONE",
        carryover_limit="5",
        carryover_expiry_month=3,
        carryover_expiry_day=31,
    )
    await assign(async_client, policy_id, effective_from="2024-01-01")

    result = await _run(async_client, "2025-04-01")
    assert result["events_posted"] == 2
    assert Decimal(await balance_of(async_client, leave_type_id)) == Decimal("5")

    expired = await _events(async_client, leave_type_id, "CARRYOVER_EXPIRE")
    assert len(expired) == 1
    assert Decimal(expired[0]["quantity"]) == Decimal("-3")
    assert expired[0]["effective_at"][:10] == "2025-03-31"

    again = await _run(async_client, "2025-04-01")
    assert again["events_posted"] == 0
    assert len(await _events(async_client, leave_type_id, "CARRYOVER_EXPIRE")) == 1


async def test_carryover_within_limit_posts_nothing(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    policy_id = await create_leave_policy(
        async_client,
        leave_type_id,
        accrual_frequency="YEARLY",
        accrual_amount="4",
        proration="NONE",
        carryover_limit="5",
        carryover_expiry_month=3,
        carryover_expiry_day=31,
    )
    await assign(async_client, policy_id, effective_from="2024-01-01")

    await _run(async_client, "2025-04-01")
    assert await _events(async_client, leave_type_id, "CARRYOVER_EXPIRE") == []
    assert Decimal(await balance_of(async_client, leave_type_id)) == Decimal("4")


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------


async def test_terminated_employee_is_skipped(
    async_client: AsyncClient,
    employee_service: InMemoryEmployeeService,
) -> None:
    leave_type_id, _ = await _accruing_type(async_client)
    employee_service.seed(
        EmployeeInfo(
            id=EMPLOYEE_ID,
            organization_id=ORG_ID,
            first_name="Erin",
            last_name="Example",
            email="erin@example.com",
            manager_id=MANAGER_ID,
            hire_date=date(2024, 1, 1),
            termination_date=date(2025, 2, 14),
        )
    )

    # Still employed: January has elapsed, the partial February has not.
    while_employed = await _run(async_client, "2025-02-14")
    assert while_employed["events_posted"] == 1

    after = await _run(async_client, "2025-03-31")
    assert after["employees_processed"] == 0
    assert after["skipped"] == 1
    assert Decimal(await balance_of(async_client, leave_type_id)) == Decimal("1.5")


async def test_accrual_starts_at_hire_date(
    async_client: AsyncClient,
    employee_service: InMemoryEmployeeService,
) -> None:
    leave_type_id, _ = await _accruing_type(async_client, accrual_amount="28", proration="CALENDAR_DAYS")
    employee_service.seed(
        EmployeeInfo(
            id=EMPLOYEE_ID,
            organization_id=ORG_ID,
            first_name="Erin",
            last_name="Example",
            email="erin@example.com",
            manager_id=MANAGER_ID,
            hire_date=date(2025, 2, 15),
        )
    )
    await _run(async_client, "2025-03-01")
    # 14 of February's 28 days.
    assert Decimal(await balance_of(async_client, leave_type_id)) == Decimal("14")


async def test_run_service_directly(async_client: AsyncClient, db_session: AsyncSession) -> None:
    leave_type_id, _ = await _accruing_type(async_client)
    result = await run_accrual(db_session, ORG_ID, date(2025, 2, 1))

    assert result.as_of_date == date(2025, 2, 1)
    assert result.employees_processed == 1
    assert result.events_posted == 1
    assert Decimal(await balance_of(async_client, leave_type_id)) == Decimal("1.5")


async def test_run_requires_admin(async_client: AsyncClient) -> None:
    resp = await async_client.post(RUN_URL, json={"as_of_date": "2025-02-01"}, headers=EMPLOYEE_HEADERS)
    assert resp.status_code == 403
