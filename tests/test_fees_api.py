"""HTTP surface of the fee ledger."""

from decimal import Decimal

import pytest
from httpx import AsyncClient


async def _setup_course(client: AsyncClient, headers, course_id: str = "CS101", amount: str = "10000") -> None:
    resp = await client.post(
        "/api/v1/fees/structures",
        json={"course_id": course_id, "amount": amount, "semester": "Sem 1"},
        headers=headers,
    )
    assert resp.status_code == 201


@pytest.mark.asyncio
async def test_requires_authentication(client: AsyncClient) -> None:
    response = await client.get("/api/v1/fees/accounts")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_invalid_token_rejected(client: AsyncClient) -> None:
    response = await client.get("/api/v1/fees/accounts", headers={"Authorization": "Bearer nonsense"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_record_payment_flow(client: AsyncClient, admin_headers) -> None:
    await _setup_course(client, admin_headers)
    resp = await client.post(
        "/api/v1/fees/accounts/STU-1/assign", json={"course_id": "CS101"}, headers=admin_headers
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "Unpaid"

    payment = {"student_id": "STU-1", "amount": 4000, "method": "mobile-money", "transaction_ref": "A1"}
    resp = await client.post("/api/v1/fees/payments", json=payment, headers=admin_headers)
    assert resp.status_code == 201
    created = resp.json()
    assert created["method"] == "MOBILE_MONEY"
    assert created["recorded_by"] == "bursar@school.test"

    resp = await client.get("/api/v1/fees/accounts/STU-1", headers=admin_headers)
    account = resp.json()
    assert Decimal(account["total_paid"]) == Decimal("4000")
    assert Decimal(account["balance"]) == Decimal("6000")
    assert account["status"] == "Partial"

    # Replay is acknowledged with the original payment.
    resp = await client.post(
        "/api/v1/fees/payments", json={**payment, "amount": 1}, headers=admin_headers
    )
    assert resp.status_code == 200
    assert resp.json()["id"] == created["id"]
    assert Decimal(resp.json()["amount"]) == Decimal("4000")

    resp = await client.get("/api/v1/fees/payments", params={"student_id": "STU-1"}, headers=admin_headers)
    assert len(resp.json()) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"student_id": "STU-1", "amount": 0, "method": "CASH", "transaction_ref": "R1"},
        {"student_id": "STU-1", "amount": -10, "method": "CASH", "transaction_ref": "R1"},
        {"student_id": "STU-1", "amount": 10, "method": "BITCOIN", "transaction_ref": "R1"},
        {"student_id": "STU-1", "amount": 10, "method": "CASH", "transaction_ref": "   "},
        {"student_id": "", "amount": 10, "method": "CASH", "transaction_ref": "R1"},
    ],
)
async def test_invalid_payments_rejected(client: AsyncClient, admin_headers, body) -> None:
    resp = await client.post("/api/v1/fees/payments", json=body, headers=admin_headers)
    assert resp.status_code == 422
    resp = await client.get("/api/v1/fees/accounts", headers=admin_headers)
    assert resp.json() == []


@pytest.mark.asyncio
async def test_student_cannot_record_payments(client: AsyncClient, auth_headers) -> None:
    headers = auth_headers("STUDENT", student_id="STU-1")
    resp = await client.post(
        "/api/v1/fees/payments",
        json={"student_id": "STU-1", "amount": 10, "method": "CASH", "transaction_ref": "S1"},
        headers=headers,
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_student_sees_only_own_records(client: AsyncClient, admin_headers, auth_headers) -> None:
    await client.post(
        "/api/v1/fees/payments",
        json={"student_id": "STU-1", "amount": 100, "method": "CASH", "transaction_ref": "OWN-1"},
        headers=admin_headers,
    )
    await client.post(
        "/api/v1/fees/payments",
        json={"student_id": "STU-2", "amount": 200, "method": "CASH", "transaction_ref": "OTHER-1"},
        headers=admin_headers,
    )
    headers = auth_headers("STUDENT", student_id="STU-1", email="stu1@school.test")

    assert (await client.get("/api/v1/fees/accounts/STU-1", headers=headers)).status_code == 200
    assert (await client.get("/api/v1/fees/accounts/STU-2", headers=headers)).status_code == 403
    assert (await client.get("/api/v1/fees/accounts", headers=headers)).status_code == 403

    resp = await client.get("/api/v1/fees/payments", headers=headers)
    assert resp.status_code == 200
    assert [p["transaction_ref"] for p in resp.json()] == ["OWN-1"]
    resp = await client.get("/api/v1/fees/payments", params={"student_id": "STU-2"}, headers=headers)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_unknown_student_account_is_zero(client: AsyncClient, admin_headers) -> None:
    resp = await client.get("/api/v1/fees/accounts/STU-404", headers=admin_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert Decimal(body["total_due"]) == 0
    assert Decimal(body["total_paid"]) == 0


@pytest.mark.asyncio
async def test_summary_endpoint(client: AsyncClient, admin_headers) -> None:
    await _setup_course(client, admin_headers, "MATH", "10000")
    await _setup_course(client, admin_headers, "CHEM", "5000")
    await client.post("/api/v1/fees/accounts/STU-1/assign", json={"course_id": "MATH"}, headers=admin_headers)
    await client.post("/api/v1/fees/accounts/STU-2/assign", json={"course_id": "CHEM"}, headers=admin_headers)
    await client.post(
        "/api/v1/fees/payments",
        json={"student_id": "STU-1", "amount": 10000, "method": "BANK_TRANSFER", "transaction_ref": "BT-1"},
        headers=admin_headers,
    )

    resp = await client.get("/api/v1/fees/summary", headers=admin_headers)
    assert resp.status_code == 200
    data = resp.json()
    summary = data["summary"]
    assert Decimal(summary["total_expected"]) == Decimal("15000")
    assert Decimal(summary["total_collected"]) == Decimal("10000")
    assert Decimal(summary["total_outstanding"]) == Decimal("5000")
    assert summary["pending_account_count"] == 1
    assert [p["transaction_ref"] for p in data["recent_payments"]] == ["BT-1"]

    resp = await client.get("/api/v1/fees/accounts", headers=admin_headers)
    statuses = {a["student_id"]: a["status"] for a in resp.json()}
    assert statuses == {"STU-1": "Paid", "STU-2": "Unpaid"}


@pytest.mark.asyncio
async def test_sync_reprices_accounts(client: AsyncClient, admin_headers) -> None:
    await client.post(
        "/api/v1/fees/structures",
        json={"course_id": "HIST", "amount": "3000", "effective_from": "2020-01-01"},
        headers=admin_headers,
    )
    await client.post("/api/v1/fees/accounts/STU-9/assign", json={"course_id": "HIST"}, headers=admin_headers)
    await client.post(
        "/api/v1/fees/structures",
        json={"course_id": "HIST", "amount": "3500", "effective_from": "2021-01-01"},
        headers=admin_headers,
    )

    resp = await client.post("/api/v1/fees/accounts/sync", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["updated"] == 1

    resp = await client.get("/api/v1/fees/accounts/STU-9", headers=admin_headers)
    assert Decimal(resp.json()["total_due"]) == Decimal("3500")

    resp = await client.get("/api/v1/fees/structures", params={"course_id": "HIST"}, headers=admin_headers)
    assert [Decimal(s["amount"]) for s in resp.json()] == [Decimal("3500"), Decimal("3000")]
