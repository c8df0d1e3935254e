"""Admin batch endpoints."""

from __future__ import annotations

from datetime import timedelta

import pytest
from httpx import AsyncClient

from arxledger.clock import utcnow
from arxledger.ledger import balance

pytestmark = pytest.mark.asyncio


async def test_admin_routes_require_the_admin_role(client: AsyncClient, make_user, auth_headers):
    user_id = await make_user()
    headers = auth_headers(user_id)

    for path in (
        "/api/v1/admin/sessions/sweep",
        "/api/v1/admin/sessions/backfill",
        "/api/v1/admin/points/reconcile",
        "/api/v1/admin/points/clamp",
    ):
        response = await client.post(path, json={}, headers=headers)
        assert response.status_code == 403, path
        assert response.json()["detail"] == "Admin access required"


async def test_reconcile_one_user_then_read_the_audit(client: AsyncClient, make_user, add_proofs, auth_headers):
    admin_id = await make_user(admin=True)
    user_id = await make_user()
    await add_proofs(user_id, sessions=(100,), checkins=(20,))
    headers = auth_headers(admin_id)

    response = await client.post("/api/v1/admin/points/reconcile", json={"userId": user_id}, headers=headers)

    assert response.status_code == 200
    data = response.json()
    assert data["processed"] == 1
    assert data["restored"] == 1
    assert data["total_points_delta"] == 120
    assert data["summary"]["restored"] == 1
    (result,) = data["results"]
    assert result["action"] == "restored"
    assert result["computed"]["checkin"] == 20

    audit = await client.get(f"/api/v1/admin/points/audit/{user_id}", headers=headers)
    (entry,) = audit.json()["entries"]
    assert entry["id"] == result["audit_id"]
    assert entry["audit_type"] == "reconciliation"
    assert entry["created_by"] == admin_id
    assert entry["total_diff"] == 120


async def test_reconcile_batch_reports_paging(client: AsyncClient, make_user, add_proofs, auth_headers):
    admin_id = await make_user(admin=True)
    for _ in range(2):
        await add_proofs(await make_user(), sessions=(10,))

    response = await client.post(
        "/api/v1/admin/points/reconcile",
        json={"batchSize": 2, "offset": 0, "dryRun": True},
        headers=auth_headers(admin_id),
    )

    data = response.json()
    assert data["dry_run"] is True
    assert data["total"] == 3
    assert data["processed"] == 2
    assert data["has_more"] is True


async def test_clamp_dry_run(client: AsyncClient, session_factory, make_user, add_proofs, auth_headers):
    admin_id = await make_user(admin=True)
    user_id = await make_user(mining=1000)
    await add_proofs(user_id, sessions=(400,))
    await make_user(mining=900)

    response = await client.post(
        "/api/v1/admin/points/clamp", json={"dryRun": True, "threshold": 1.5}, headers=auth_headers(admin_id)
    )

    data = response.json()
    assert data["dry_run"] is True
    assert data["clamped"] == 1
    assert data["inconclusive"] == 1
    assert data["total_points_delta"] == -600
    statuses = {r["status"]: r for r in data["results"]}
    assert statuses["clamped"]["after"]["mining"] == 400
    assert statuses["inconclusive"]["ratio"] is None
    async with session_factory() as db:
        assert balance.subtotals(await balance.get_points(db, user_id))["mining"] == 1000


async def test_sweep_and_backfill(client: AsyncClient, make_user, add_session, auth_headers):
    admin_id = await make_user(admin=True)
    user_id = await make_user()
    now = utcnow()
    await add_session(user_id, now - timedelta(hours=9))
    await add_session(
        user_id, now - timedelta(days=2), active=False, ended_at=now - timedelta(days=2, hours=-3), raw_points=30
    )
    headers = auth_headers(admin_id)

    sweep = await client.post("/api/v1/admin/sessions/sweep", headers=headers)
    backfill = await client.post("/api/v1/admin/sessions/backfill", json={"batchSize": 10}, headers=headers)
    me = await client.get("/api/v1/points/me", headers=auth_headers(user_id))

    assert sweep.json()["credited"] == 1
    assert sweep.json()["total_points_delta"] == 80
    assert backfill.json()["credited"] == 1
    assert backfill.json()["total_points_delta"] == 30
    assert me.json()["mining_points"] == 110


async def test_bad_batch_body_is_rejected(client: AsyncClient, make_user, auth_headers):
    admin_id = await make_user(admin=True)

    response = await client.post(
        "/api/v1/admin/points/clamp", json={"batchSize": 0}, headers=auth_headers(admin_id)
    )

    assert response.status_code == 422
