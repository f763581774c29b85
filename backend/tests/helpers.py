"""Shared ids, headers and HTTP helpers for the test suite."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from httpx import AsyncClient

ORG_ID = uuid.uuid4()
ADMIN_ID = uuid.uuid4()
EMPLOYEE_ID = uuid.uuid4()
MANAGER_ID = uuid.uuid4()
DIRECTOR_ID = uuid.uuid4()


def headers(user_id: uuid.UUID, role: str = "employee") -> dict[str, str]:
    return {"X-Organization-Id": str(ORG_ID), "X-User-Id": str(user_id), "X-Role": role}


ADMIN_HEADERS = headers(ADMIN_ID, "admin")
EMPLOYEE_HEADERS = headers(EMPLOYEE_ID)
MANAGER_HEADERS = headers(MANAGER_ID)
DIRECTOR_HEADERS = headers(DIRECTOR_ID)

BASE_URL = f"/organizations/{ORG_ID}"
LEAVE_TYPES_URL = f"{BASE_URL}/leave-types"
POLICIES_URL = f"{BASE_URL}/policies"
REQUESTS_URL = f"{BASE_URL}/leave-requests"
OVERTIME_URL = f"{BASE_URL}/overtime-entries"
ADJUSTMENTS_URL = f"{BASE_URL}/adjustments"


def balances_url(employee_id: uuid.UUID = EMPLOYEE_ID) -> str:
    return f"{BASE_URL}/employees/{employee_id}/balances"


def ledger_url(employee_id: uuid.UUID = EMPLOYEE_ID) -> str:
    return f"{BASE_URL}/employees/{employee_id}/ledger"


async def create_leave_type(client: AsyncClient, key: str = "vacation", **overrides: Any) -> str:
    body: dict[str, Any] = {"key": key, "name": key.title(), "unit": "DAYS", **overrides}
    resp = await client.post(LEAVE_TYPES_URL, json=body, headers=ADMIN_HEADERS)
    assert resp.status_code == 201, resp.text
    result: str = resp.json()["id"]
    return result


async def create_leave_policy(
    client: AsyncClient,
    leave_type_id: str,
    key: str = "vacation-ft",
    effective_from: str = "2024-01-01",
    **settings: Any,
) -> str:
    resp = await client.post(
        POLICIES_URL,
        json={
            "key": key,
            "leave_type_id": leave_type_id,
            "version": {"effective_from": effective_from, "settings": {"kind": "LEAVE", **settings}},
        },
        headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 201, resp.text
    result: str = resp.json()["id"]
    return result


async def create_overtime_policy(
    client: AsyncClient,
    key: str = "overtime-std",
    effective_from: str = "2024-01-01",
    **settings: Any,
) -> str:
    body_settings: dict[str, Any] = {"kind": "OVERTIME", "tier1_hours": "2", **settings}
    resp = await client.post(
        POLICIES_URL,
        json={"key": key, "version": {"effective_from": effective_from, "settings": body_settings}},
        headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 201, resp.text
    result: str = resp.json()["id"]
    return result


async def assign(
    client: AsyncClient,
    policy_id: str,
    employee_id: uuid.UUID = EMPLOYEE_ID,
    effective_from: str = "2024-01-01",
) -> str:
    resp = await client.post(
        f"{POLICIES_URL}/{policy_id}/assignments",
        json={"employee_id": str(employee_id), "effective_from": effective_from},
        headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 201, resp.text
    result: str = resp.json()["id"]
    return result


async def adjust(client: AsyncClient, leave_type_id: str, quantity: str, note: str = "Opening balance") -> None:
    resp = await client.post(
        ADJUSTMENTS_URL,
        json={"employee_id": str(EMPLOYEE_ID), "leave_type_id": leave_type_id, "quantity": quantity, "note": note},
        headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 201, resp.text


async def balance_of(client: AsyncClient, leave_type_id: str, employee_id: uuid.UUID = EMPLOYEE_ID) -> str:
    resp = await client.get(balances_url(employee_id), headers=ADMIN_HEADERS)
    assert resp.status_code == 200, resp.text
    for item in resp.json()["items"]:
        if item["leave_type_id"] == leave_type_id:
            result: str = item["balance"]
            return result
    msg = f"No balance row for leave type {leave_type_id}"
    raise AssertionError(msg)
