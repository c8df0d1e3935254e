"""Points and mining session endpoints."""

from __future__ import annotations

from datetime import timedelta

import pytest
from httpx import AsyncClient

from arxledger.clock import utcnow

pytestmark = pytest.mark.asyncio

CREDIT = "/api/v1/points/credit"


async def test_mining_credit_is_bounded_and_idempotent(client: AsyncClient, make_user, add_session, auth_headers):
    user_id = await make_user()
    session_id = await add_session(user_id, utcnow() - timedelta(hours=5))
    body = {"type": "mining", "amount": 1000, "sessionId": session_id}

    first = await client.post(CREDIT, json=body, headers=auth_headers(user_id))
    second = await client.post(CREDIT, json=body, headers=auth_headers(user_id))

    assert first.status_code == 200
    data = first.json()
    assert data["success"] is True
    assert data["status"] == "credited"
    assert data["points"] == 50
    assert data["balance"]["mining_points"] == 50
    assert data["balance"]["total_points"] == 50

    assert second.status_code == 200
    assert second.json()["status"] == "already_credited"
    assert second.json()["points"] == 0
    assert second.json()["balance"]["total_points"] == 50


async def test_mining_credit_needs_a_session(client: AsyncClient, make_user, auth_headers):
    user_id = await make_user()

    response = await client.post(CREDIT, json={"type": "mining", "amount": 10}, headers=auth_headers(user_id))

    assert response.status_code == 400
    assert response.json()["success"] is False


async def test_someone_elses_session_is_not_found(client: AsyncClient, make_user, add_session, auth_headers):
    owner = await make_user()
    other = await make_user()
    session_id = await add_session(owner, utcnow() - timedelta(hours=2))

    response = await client.post(
        CREDIT, json={"type": "mining", "amount": 10, "session_id": session_id}, headers=auth_headers(other)
    )

    assert response.status_code == 404
    assert response.json() == {"success": False, "detail": "session not found or access denied"}


async def test_task_credit(client: AsyncClient, make_user, auth_headers):
    user_id = await make_user(mining=5)

    response = await client.post(CREDIT, json={"type": "task", "amount": 75}, headers=auth_headers(user_id))

    assert response.status_code == 200
    assert response.json()["balance"] == {
        "mining_points": 5,
        "task_points": 75,
        "social_points": 0,
        "referral_points": 0,
        "total_points": 80,
    }


@pytest.mark.parametrize(("amount", "detail"), [(0, "invalid amount"), ("lots", "amount must be a number")])
async def test_bad_amounts(client: AsyncClient, make_user, auth_headers, amount, detail):
    user_id = await make_user()

    response = await client.post(CREDIT, json={"type": "social", "amount": amount}, headers=auth_headers(user_id))

    assert response.status_code == 400
    assert response.json()["detail"] == detail


async def test_unknown_point_type_fails_validation(client: AsyncClient, make_user, auth_headers):
    user_id = await make_user()

    response = await client.post(CREDIT, json={"type": "bonus", "amount": 10}, headers=auth_headers(user_id))

    assert response.status_code == 422


async def test_credit_requires_a_valid_token(client: AsyncClient, make_user, auth_headers):
    banned = await make_user(banned=True)

    missing = await client.post(CREDIT, json={"type": "task", "amount": 1})
    forged = await client.post(
        CREDIT, json={"type": "task", "amount": 1}, headers={"Authorization": "Bearer not-a-jwt"}
    )
    blocked = await client.post(CREDIT, json={"type": "task", "amount": 1}, headers=auth_headers(banned))

    assert missing.status_code in (401, 403)
    assert forged.status_code == 401
    assert blocked.status_code == 403


async def test_unknown_user_is_unauthorized(client: AsyncClient, auth_headers):
    response = await client.get("/api/v1/points/me", headers=auth_headers("00000000-0000-0000-0000-000000000000"))

    assert response.status_code == 401


async def test_my_points(client: AsyncClient, make_user, auth_headers):
    user_id = await make_user(mining=10, task=20, social=30, referral=40)

    response = await client.get("/api/v1/points/me", headers=auth_headers(user_id))

    assert response.status_code == 200
    assert response.json()["total_points"] == 100
    assert response.json()["referral_points"] == 40


async def test_my_points_without_a_balance_row(client: AsyncClient, make_user, auth_headers):
    user_id = await make_user(with_points=False)

    response = await client.get("/api/v1/points/me", headers=auth_headers(user_id))

    assert response.json()["total_points"] == 0


async def test_start_session_then_fetch_it(client: AsyncClient, make_user, auth_headers):
    user_id = await make_user()
    headers = auth_headers(user_id)

    assert (await client.get("/api/v1/mining/sessions/active", headers=headers)).json() == {"session": None}

    started = await client.post("/api/v1/mining/sessions", headers=headers)
    again = await client.post("/api/v1/mining/sessions", headers=headers)
    active = await client.get("/api/v1/mining/sessions/active", headers=headers)

    assert started.json()["created"] is True
    assert again.json()["created"] is False
    session_id = started.json()["session"]["id"]
    assert again.json()["session"]["id"] == session_id
    assert active.json()["session"]["id"] == session_id
    assert active.json()["session"]["is_active"] is True
