"""Tests for the leave request workflow: draft, submit, multi-step approval,
rejection, skip, cancellation, blackout and overlap checks, and the balance
effects of each transition.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any

import pytest
from sqlalchemy import func, select
from sqlmodel import col

from app.models.audit import AuditLog
from app.models.ledger import LedgerEvent
from app.services.approvers import InMemoryApproverResolver, set_approver_resolver
from helpers import (
    ADMIN_HEADERS,
    ADMIN_ID,
    DIRECTOR_HEADERS,
    DIRECTOR_ID,
    EMPLOYEE_HEADERS,
    EMPLOYEE_ID,
    MANAGER_HEADERS,
    MANAGER_ID,
    ORG_ID,
    REQUESTS_URL,
    adjust,
    assign,
    balance_of,
    create_leave_policy,
    create_leave_type,
    ledger_url,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

    from httpx import AsyncClient
    from sqlalchemy.ext.asyncio import AsyncSession

# 2025-03-03 is a Monday; the organization runs on UTC.
WEEK_START = "2025-03-03T00:00:00Z"
WEEK_END = "2025-03-08T00:00:00Z"


# ---------------------------------------------------------------------------
# Test helpers
# ---------------------------------------------------------------------------


async def _create_request(
    client: AsyncClient,
    leave_type_id: str,
    start_at: str = WEEK_START,
    end_at: str = WEEK_END,
    headers: dict[str, str] = EMPLOYEE_HEADERS,
    **overrides: Any,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "employee_id": str(EMPLOYEE_ID),
        "leave_type_id": leave_type_id,
        "start_at": start_at,
        "end_at": end_at,
        "unit": "DAYS",
        **overrides,
    }
    resp = await client.post(REQUESTS_URL, json=body, headers=headers)
    assert resp.status_code == 201, resp.text
    result: dict[str, Any] = resp.json()
    return result


async def _submit(client: AsyncClient, request_id: str, headers: dict[str, str] = EMPLOYEE_HEADERS) -> Any:
    return await client.post(f"{REQUESTS_URL}/{request_id}/submit", headers=headers)


async def _decide(
    client: AsyncClient,
    request: dict[str, Any],
    sequence: int,
    outcome: str,
    headers: dict[str, str],
) -> Any:
    step_id = request["steps"][sequence - 1]["id"]
    return await client.post(
        f"{REQUESTS_URL}/{request['id']}/steps/{step_id}/decision",
        json={"outcome": outcome},
        headers=headers,
    )


async def _pending_request(client: AsyncClient, leave_type_id: str, **overrides: Any) -> dict[str, Any]:
    """Create and submit a request, returning the PENDING response."""
    draft = await _create_request(client, leave_type_id, **overrides)
    resp = await _submit(client, draft["id"])
    assert resp.status_code == 200, resp.text
    result: dict[str, Any] = resp.json()
    return result


async def _ledger_kinds(client: AsyncClient) -> list[tuple[str, Decimal]]:
    resp = await client.get(ledger_url(), headers=ADMIN_HEADERS)
    assert resp.status_code == 200
    return [(e["kind"], Decimal(e["quantity"])) for e in resp.json()["items"]]


@pytest.fixture
def three_step_chain() -> Iterator[None]:
    """Route the employee's requests through manager, director, then an admin."""
    resolver = InMemoryApproverResolver()
    resolver.seed(ORG_ID, EMPLOYEE_ID, [MANAGER_ID, DIRECTOR_ID, ADMIN_ID])
    set_approver_resolver(resolver)
    yield


# ---------------------------------------------------------------------------
# Draft
# ---------------------------------------------------------------------------


async def test_create_draft_computes_quantity(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    draft = await _create_request(async_client, leave_type_id)

    assert draft["status"] == "DRAFT"
    assert Decimal(draft["requested_quantity"]) == Decimal("5")
    assert draft["steps"] == []
    assert draft["current_step"] == 0


async def test_create_half_day_request(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client, allow_half_day=True)
    draft = await _create_request(
        async_client,
        leave_type_id,
        start_at="2025-03-03T09:00:00Z",
        end_at="2025-03-03T13:00:00Z",
        half_day=True,
    )
    assert Decimal(draft["requested_quantity"]) == Decimal("0.5")


async def test_half_day_request_over_two_days(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client, allow_half_day=True)
    draft = await _create_request(
        async_client,
        leave_type_id,
        start_at="2025-03-03T00:00:00Z",
        end_at="2025-03-04T13:00:00Z",
        half_day=True,
    )
    assert Decimal(draft["requested_quantity"]) == Decimal("1.5")



async def test_create_for_another_employee_is_forbidden(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    resp = await async_client.post(
        REQUESTS_URL,
        json={
            "employee_id": str(EMPLOYEE_ID),
            "leave_type_id": leave_type_id,
            "start_at": WEEK_START,
            "end_at": WEEK_END,
            "unit": "DAYS",
        },
        headers=MANAGER_HEADERS,
    )
    assert resp.status_code == 403


async def test_create_with_unit_mismatch_is_rejected(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    resp = await async_client.post(
        REQUESTS_URL,
        json={
            "employee_id": str(EMPLOYEE_ID),
            "leave_type_id": leave_type_id,
            "start_at": WEEK_START,
            "end_at": WEEK_END,
            "unit": "HOURS",
        },
        headers=EMPLOYEE_HEADERS,
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "VALIDATION"


async def test_draft_does_not_touch_balance(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    await adjust(async_client, leave_type_id, "10")
    await _create_request(async_client, leave_type_id)
    assert Decimal(await balance_of(async_client, leave_type_id)) == Decimal("10")


# ---------------------------------------------------------------------------
# Submit and single-step approval
# ---------------------------------------------------------------------------


async def test_submit_materializes_manager_step(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    pending = await _pending_request(async_client, leave_type_id)

    assert pending["status"] == "PENDING"
    assert pending["current_step"] == 1
    assert len(pending["steps"]) == 1
    step = pending["steps"][0]
    assert step["sequence"] == 1
    assert step["approver_id"] == str(MANAGER_ID)
    assert step["status"] == "PENDING"
    assert pending["submitted_at"] is not None


async def test_submit_twice_is_conflict(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    pending = await _pending_request(async_client, leave_type_id)
    resp = await _submit(async_client, pending["id"])
    assert resp.status_code == 409


async def test_submit_without_approvers_is_unprocessable(async_client: AsyncClient) -> None:
    """The director has no manager, so no chain can be resolved."""
    leave_type_id = await create_leave_type(async_client)
    draft = await _create_request(
        async_client, leave_type_id, headers=DIRECTOR_HEADERS, employee_id=str(DIRECTOR_ID)
    )
    resp = await _submit(async_client, draft["id"], headers=DIRECTOR_HEADERS)
    assert resp.status_code == 422
    assert "approvers" in resp.json()["detail"]


async def test_approval_charges_balance_once(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    await adjust(async_client, leave_type_id, "10")
    pending = await _pending_request(async_client, leave_type_id)

    resp = await _decide(async_client, pending, 1, "APPROVE", MANAGER_HEADERS)
    assert resp.status_code == 200, resp.text
    approved = resp.json()
    assert approved["status"] == "APPROVED"
    assert approved["steps"][0]["status"] == "APPROVED"
    assert approved["steps"][0]["decided_by"] == str(MANAGER_ID)
    assert approved["decided_at"] is not None

    assert Decimal(await balance_of(async_client, leave_type_id)) == Decimal("5")
    assert ("USAGE", Decimal("-5")) in await _ledger_kinds(async_client)

    # A second decision on the same step is refused and charges nothing.
    again = await _decide(async_client, pending, 1, "APPROVE", MANAGER_HEADERS)
    assert again.status_code == 409
    assert Decimal(await balance_of(async_client, leave_type_id)) == Decimal("5")


async def test_employee_cannot_decide_own_step(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    pending = await _pending_request(async_client, leave_type_id)
    resp = await _decide(async_client, pending, 1, "APPROVE", EMPLOYEE_HEADERS)
    assert resp.status_code == 403


async def test_admin_may_decide_any_step(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    await adjust(async_client, leave_type_id, "5")
    pending = await _pending_request(async_client, leave_type_id)
    resp = await _decide(async_client, pending, 1, "APPROVE", ADMIN_HEADERS)
    assert resp.status_code == 200
    assert resp.json()["steps"][0]["decided_by"] == str(ADMIN_ID)


async def test_insufficient_balance_leaves_request_pending(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    await adjust(async_client, leave_type_id, "2")
    pending = await _pending_request(async_client, leave_type_id)

    resp = await _decide(async_client, pending, 1, "APPROVE", MANAGER_HEADERS)
    assert resp.status_code == 422
    assert "Insufficient balance" in resp.json()["detail"]

    current = await async_client.get(f"{REQUESTS_URL}/{pending['id']}", headers=EMPLOYEE_HEADERS)
    assert current.json()["status"] == "PENDING"
    assert current.json()["steps"][0]["status"] == "PENDING"
    assert Decimal(await balance_of(async_client, leave_type_id)) == Decimal("2")


async def test_negative_balance_allowed_down_to_floor(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client, allow_negative=True, negative_balance_floor="3")
    await adjust(async_client, leave_type_id, "2")
    pending = await _pending_request(async_client, leave_type_id)

    resp = await _decide(async_client, pending, 1, "APPROVE", MANAGER_HEADERS)
    assert resp.status_code == 200
    assert Decimal(await balance_of(async_client, leave_type_id)) == Decimal("-3")


async def test_pending_requests_are_charged_in_approval_order(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    await adjust(async_client, leave_type_id, "7")
    first = await _pending_request(async_client, leave_type_id)
    second = await _pending_request(
        async_client, leave_type_id, start_at="2025-03-10T00:00:00Z", end_at="2025-03-15T00:00:00Z"
    )

    resp = await _decide(async_client, first, 1, "APPROVE", MANAGER_HEADERS)
    assert resp.status_code == 200
    assert resp.json()["status"] == "APPROVED"

    resp = await _decide(async_client, second, 1, "APPROVE", MANAGER_HEADERS)
    assert resp.status_code == 422
    current = await async_client.get(f"{REQUESTS_URL}/{second['id']}", headers=EMPLOYEE_HEADERS)
    assert current.json()["status"] == "PENDING"
    assert Decimal(await balance_of(async_client, leave_type_id)) == Decimal("2")



# ---------------------------------------------------------------------------
# Multi-step chains
# ---------------------------------------------------------------------------


@pytest.mark.usefixtures("three_step_chain")
async def test_steps_are_decided_in_order(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    pending = await _pending_request(async_client, leave_type_id)
    assert [s["approver_id"] for s in pending["steps"]] == [str(MANAGER_ID), str(DIRECTOR_ID), str(ADMIN_ID)]

    out_of_order = await _decide(async_client, pending, 2, "APPROVE", DIRECTOR_HEADERS)
    assert out_of_order.status_code == 409

    first = await _decide(async_client, pending, 1, "APPROVE", MANAGER_HEADERS)
    assert first.status_code == 200
    assert first.json()["status"] == "PENDING"
    assert first.json()["current_step"] == 2


@pytest.mark.usefixtures("three_step_chain")
async def test_rejection_at_step_two_terminates(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    await adjust(async_client, leave_type_id, "10")
    pending = await _pending_request(async_client, leave_type_id)

    await _decide(async_client, pending, 1, "APPROVE", MANAGER_HEADERS)
    resp = await _decide(async_client, pending, 2, "REJECT", DIRECTOR_HEADERS)
    assert resp.status_code == 200
    rejected = resp.json()

    assert rejected["status"] == "REJECTED"
    assert [s["status"] for s in rejected["steps"]] == ["APPROVED", "REJECTED", "PENDING"]
    assert Decimal(await balance_of(async_client, leave_type_id)) == Decimal("10")
    assert [k for k, _ in await _ledger_kinds(async_client)] == ["ADJUSTMENT"]

    # Nothing can be decided after a rejection.
    late = await _decide(async_client, pending, 3, "APPROVE", ADMIN_HEADERS)
    assert late.status_code == 409


@pytest.mark.usefixtures("three_step_chain")
async def test_full_chain_approval_charges_once(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    await adjust(async_client, leave_type_id, "10")
    pending = await _pending_request(async_client, leave_type_id)

    await _decide(async_client, pending, 1, "APPROVE", MANAGER_HEADERS)
    await _decide(async_client, pending, 2, "APPROVE", DIRECTOR_HEADERS)
    assert Decimal(await balance_of(async_client, leave_type_id)) == Decimal("10")

    resp = await _decide(async_client, pending, 3, "APPROVE", ADMIN_HEADERS)
    assert resp.json()["status"] == "APPROVED"
    assert Decimal(await balance_of(async_client, leave_type_id)) == Decimal("5")


@pytest.mark.usefixtures("three_step_chain")
async def test_admin_skip_advances_chain(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    await adjust(async_client, leave_type_id, "10")
    pending = await _pending_request(async_client, leave_type_id)

    for step in pending["steps"]:
        resp = await async_client.post(
            f"{REQUESTS_URL}/{pending['id']}/steps/{step['id']}/skip",
            json={"comment": "Manager on leave"},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 200, resp.text

    final = resp.json()
    assert final["status"] == "APPROVED"
    assert {s["status"] for s in final["steps"]} == {"SKIPPED"}
    assert Decimal(await balance_of(async_client, leave_type_id)) == Decimal("5")


async def test_skip_requires_admin(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    pending = await _pending_request(async_client, leave_type_id)
    step_id = pending["steps"][0]["id"]
    resp = await async_client.post(
        f"{REQUESTS_URL}/{pending['id']}/steps/{step_id}/skip",
        headers=MANAGER_HEADERS,
    )
    assert resp.status_code == 403


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


async def test_cancel_pending_request(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    pending = await _pending_request(async_client, leave_type_id)

    resp = await async_client.post(
        f"{REQUESTS_URL}/{pending['id']}/cancel",
        json={"reason": "Plans changed"},
        headers=EMPLOYEE_HEADERS,
    )
    assert resp.status_code == 200
    cancelled = resp.json()
    assert cancelled["status"] == "CANCELLED"
    assert cancelled["cancel_reason"] == "Plans changed"
    assert await _ledger_kinds(async_client) == []


async def test_cancel_approved_request_restores_balance(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    await adjust(async_client, leave_type_id, "10")
    pending = await _pending_request(async_client, leave_type_id)
    await _decide(async_client, pending, 1, "APPROVE", MANAGER_HEADERS)
    assert Decimal(await balance_of(async_client, leave_type_id)) == Decimal("5")

    resp = await async_client.post(f"{REQUESTS_URL}/{pending['id']}/cancel", headers=EMPLOYEE_HEADERS)
    assert resp.status_code == 200
    assert resp.json()["status"] == "CANCELLED"

    assert Decimal(await balance_of(async_client, leave_type_id)) == Decimal("10")
    kinds = await _ledger_kinds(async_client)
    assert ("USAGE", Decimal("-5")) in kinds
    assert ("ADJUSTMENT", Decimal("5")) in kinds


async def test_cancel_rejected_request_is_conflict(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    pending = await _pending_request(async_client, leave_type_id)
    await _decide(async_client, pending, 1, "REJECT", MANAGER_HEADERS)

    resp = await async_client.post(f"{REQUESTS_URL}/{pending['id']}/cancel", headers=EMPLOYEE_HEADERS)
    assert resp.status_code == 409


async def test_cancel_by_approver_is_forbidden(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    pending = await _pending_request(async_client, leave_type_id)
    resp = await async_client.post(f"{REQUESTS_URL}/{pending['id']}/cancel", headers=MANAGER_HEADERS)
    assert resp.status_code == 403


async def test_cancel_twice_reverses_once(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    await adjust(async_client, leave_type_id, "10")
    pending = await _pending_request(async_client, leave_type_id)
    await _decide(async_client, pending, 1, "APPROVE", MANAGER_HEADERS)

    first = await async_client.post(f"{REQUESTS_URL}/{pending['id']}/cancel", headers=EMPLOYEE_HEADERS)
    second = await async_client.post(f"{REQUESTS_URL}/{pending['id']}/cancel", headers=EMPLOYEE_HEADERS)
    assert first.status_code == 200
    assert second.status_code == 409
    assert Decimal(await balance_of(async_client, leave_type_id)) == Decimal("10")


# ---------------------------------------------------------------------------
# Blackout and overlap
# ---------------------------------------------------------------------------


async def test_overlapping_submission_is_conflict(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    await _pending_request(async_client, leave_type_id)

    overlapping = await _create_request(
        async_client, leave_type_id, start_at="2025-03-05T00:00:00Z", end_at="2025-03-06T00:00:00Z"
    )
    resp = await _submit(async_client, overlapping["id"])
    assert resp.status_code == 409
    assert "overlaps" in resp.json()["detail"]


async def test_adjacent_request_does_not_overlap(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    await _pending_request(async_client, leave_type_id)
    await _pending_request(
        async_client, leave_type_id, start_at="2025-03-10T00:00:00Z", end_at="2025-03-11T00:00:00Z"
    )


async def test_cancelled_request_frees_its_dates(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    pending = await _pending_request(async_client, leave_type_id)
    await async_client.post(f"{REQUESTS_URL}/{pending['id']}/cancel", headers=EMPLOYEE_HEADERS)
    await _pending_request(async_client, leave_type_id)


async def test_blackout_window_blocks_submission(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    policy_id = await create_leave_policy(
        async_client,
        leave_type_id,
        blackout_windows=[{"start_date": "2025-03-07", "end_date": "2025-03-14", "reason": "Quarter close"}],
    )
    await assign(async_client, policy_id)

    draft = await _create_request(async_client, leave_type_id)
    resp = await _submit(async_client, draft["id"])
    assert resp.status_code == 409
    assert "Quarter close" in resp.json()["detail"]


async def test_blackout_outside_request_is_ignored(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    policy_id = await create_leave_policy(
        async_client,
        leave_type_id,
        blackout_windows=[{"start_date": "2025-03-08", "end_date": "2025-03-14"}],
    )
    await assign(async_client, policy_id)
    await _pending_request(async_client, leave_type_id)


# ---------------------------------------------------------------------------
# Idempotency
# ---------------------------------------------------------------------------


async def test_create_replays_with_same_key(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    body = {
        "employee_id": str(EMPLOYEE_ID),
        "leave_type_id": leave_type_id,
        "start_at": WEEK_START,
        "end_at": WEEK_END,
        "unit": "DAYS",
        "idempotency_key": "req-1",
    }
    first = await async_client.post(REQUESTS_URL, json=body, headers=EMPLOYEE_HEADERS)
    second = await async_client.post(REQUESTS_URL, json=body, headers=EMPLOYEE_HEADERS)

    assert first.status_code == second.status_code == 201
    assert first.content == second.content
    listing = await async_client.get(REQUESTS_URL, headers=ADMIN_HEADERS)
    assert listing.json()["total"] == 1


async def test_decision_replay_does_not_charge_twice(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    await adjust(async_client, leave_type_id, "10")
    pending = await _pending_request(async_client, leave_type_id)
    step_id = pending["steps"][0]["id"]
    url = f"{REQUESTS_URL}/{pending['id']}/steps/{step_id}/decision"
    body = {"outcome": "APPROVE", "idempotency_key": "decide-1"}

    first = await async_client.post(url, json=body, headers=MANAGER_HEADERS)
    second = await async_client.post(url, json=body, headers=MANAGER_HEADERS)
    assert first.status_code == 200
    assert second.status_code == 200
    assert first.content == second.content
    assert Decimal(await balance_of(async_client, leave_type_id)) == Decimal("5")


# ---------------------------------------------------------------------------
# Listing and audit
# ---------------------------------------------------------------------------


async def test_list_filters_by_status(async_client: AsyncClient) -> None:
    leave_type_id = await create_leave_type(async_client)
    await _create_request(async_client, leave_type_id)
    await _pending_request(
        async_client, leave_type_id, start_at="2025-03-10T00:00:00Z", end_at="2025-03-11T00:00:00Z"
    )

    resp = await async_client.get(REQUESTS_URL, params={"status": "PENDING"}, headers=ADMIN_HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 1
    assert body["items"][0]["status"] == "PENDING"
    assert len(body["items"][0]["steps"]) == 1


async def test_get_unknown_request_is_not_found(async_client: AsyncClient) -> None:
    resp = await async_client.get(f"{REQUESTS_URL}/00000000-0000-0000-0000-000000000001", headers=ADMIN_HEADERS)
    assert resp.status_code == 404


async def test_transitions_are_audited(async_client: AsyncClient, db_session: AsyncSession) -> None:
    leave_type_id = await create_leave_type(async_client)
    await adjust(async_client, leave_type_id, "10")
    pending = await _pending_request(async_client, leave_type_id)
    await _decide(async_client, pending, 1, "APPROVE", MANAGER_HEADERS)

    result = await db_session.execute(
        select(col(AuditLog.action))
        .where(col(AuditLog.entity_type) == "LEAVE_REQUEST")
        .order_by(col(AuditLog.created_at))
    )
    assert list(result.scalars().all()) == ["CREATE", "SUBMIT", "APPROVE"]

    usage = await db_session.execute(
        select(func.count()).select_from(LedgerEvent).where(col(LedgerEvent.kind) == "USAGE")
    )
    assert usage.scalar_one() == 1
