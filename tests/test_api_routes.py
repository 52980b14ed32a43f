"""
tests.test_api_routes

REST surface outside the agent: campaigns and quota, rules, alerts, pixels,
Meta connection, billing and the system-only cron jobs.
"""

from __future__ import annotations

import uuid

import httpx
import pytest
from conftest import FakeUpstream, bearer

from batu.auth.models import ROLE_SYSTEM
from batu.db.models import AlertSeverity
from batu.db.repositories.alerts import AlertRepo


async def _create(client, headers, name: str = "봄 세일", budget: int = 30000) -> httpx.Response:
    return await client.post(
        "/v1/campaigns",
        json={"name": name, "objective": "OUTCOME_SALES", "daily_budget": budget},
        headers=headers,
    )


@pytest.mark.asyncio
async def test_campaign_lifecycle(client, settings) -> None:
    headers = bearer(settings)

    r = await _create(client, headers)
    assert r.status_code == 201
    campaign = r.json()["campaign"]
    assert campaign["status"] == "DRAFT"
    assert campaign["meta_campaign_id"] is None
    cid = campaign["id"]

    r = await client.post(f"/v1/campaigns/{cid}/pause", headers=headers)
    assert r.status_code == 409
    assert r.json()["details"] == {"from": "DRAFT", "to": "PAUSED"}

    r = await client.post(f"/v1/campaigns/{cid}/resume", headers=headers)
    assert r.json()["campaign"]["status"] == "ACTIVE"
    r = await client.post(f"/v1/campaigns/{cid}/pause", headers=headers)
    assert r.json()["campaign"]["status"] == "PAUSED"

    r = await client.patch(f"/v1/campaigns/{cid}/budget", json={"daily_budget": 9999}, headers=headers)
    assert r.status_code == 422
    r = await client.patch(f"/v1/campaigns/{cid}/budget", json={"daily_budget": 20000}, headers=headers)
    assert r.json()["campaign"]["daily_budget"] == 20000

    r = await client.get(f"/v1/campaigns/{cid}", headers=headers)
    assert r.status_code == 200
    assert r.json()["kpi"]["spend"] == 0

    r = await client.get("/v1/campaigns", params={"status": "PAUSED"}, headers=headers)
    assert [c["id"] for c in r.json()["campaigns"]] == [cid]

    # Other tenants see nothing.
    other = bearer(settings, "user-2")
    r = await client.get(f"/v1/campaigns/{cid}", headers=other)
    assert r.status_code == 404
    r = await client.get("/v1/campaigns", headers=other)
    assert r.json()["campaigns"] == []


@pytest.mark.asyncio
async def test_free_plan_campaign_quota(client, settings) -> None:
    headers = bearer(settings)
    for i in range(3):
        assert (await _create(client, headers, name=f"캠페인 {i}")).status_code == 201

    r = await _create(client, headers, name="한도 초과")
    assert r.status_code == 429
    body = r.json()
    assert body["error"] == "quota_exceeded"
    assert body["details"]["limit"] == 3
    assert body["details"]["period"] == "week"

    r = await client.get("/v1/campaigns", headers=headers)
    assert len(r.json()["campaigns"]) == 3

    r = await client.get("/v1/billing/usage", headers=headers)
    usage = r.json()
    assert usage["plan"] == "FREE"
    assert usage["usage"]["CAMPAIGN_CREATE"]["used"] == 3
    assert usage["usage"]["CAMPAIGN_CREATE"]["remaining"] == 0


@pytest.mark.asyncio
async def test_optimization_rule_endpoints(client, settings) -> None:
    headers = bearer(settings)
    cid = (await _create(client, headers)).json()["campaign"]["id"]

    r = await client.post("/v1/optimization-rules/presets", json={"campaign_id": cid}, headers=headers)
    assert r.status_code == 201
    rules = r.json()["rules"]
    assert {rule["rule_type"] for rule in rules} == {"CPA_THRESHOLD", "ROAS_FLOOR", "BUDGET_PACE"}

    rule_id = rules[0]["id"]
    r = await client.patch(f"/v1/optimization-rules/{rule_id}", json={"enabled": False}, headers=headers)
    assert r.json()["rule"]["is_enabled"] is False

    r = await client.post(
        "/v1/optimization-rules",
        json={
            "campaign_id": cid,
            "name": "잘못된 지표",
            "rule_type": "CPA_THRESHOLD",
            "conditions": [{"metric": "likes", "operator": "gt", "value": 1}],
            "actions": [{"type": "PAUSE_CAMPAIGN"}],
        },
        headers=headers,
    )
    assert r.status_code == 422
    assert r.json()["error"] == "validation_error"

    r = await client.delete(f"/v1/optimization-rules/{rule_id}", headers=headers)
    assert r.json() == {"success": True}
    r = await client.get("/v1/optimization-rules", params={"campaign_id": cid}, headers=headers)
    assert len(r.json()["rules"]) == 2

    r = await client.delete(f"/v1/optimization-rules/{uuid.uuid4()}", headers=headers)
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_alert_endpoints(app, client, settings) -> None:
    async with app.state.sessionmaker() as s:
        alert = await AlertRepo(s).add(
            user_id="user-1",
            type="optimization_rule",
            severity=AlertSeverity.warning,
            title="자동 규칙 실행",
            message="규칙이 적용되었습니다.",
        )
        await AlertRepo(s).add(
            user_id="user-2",
            type="billing",
            severity=AlertSeverity.critical,
            title="남의 알림",
            message="보이면 안 됩니다.",
        )
        await s.commit()
    headers = bearer(settings)

    r = await client.get("/v1/alerts", params={"unread_only": True}, headers=headers)
    assert [a["id"] for a in r.json()["alerts"]] == [str(alert.id)]
    assert r.json()["alerts"][0]["severity"] == "warning"

    r = await client.post("/v1/alerts/read", json={"alert_ids": [str(alert.id)]}, headers=headers)
    assert r.json() == {"updated": 1}

    r = await client.get("/v1/alerts", params={"unread_only": True}, headers=headers)
    assert r.json()["alerts"] == []


@pytest.mark.asyncio
async def test_meta_connection_never_returns_token(client, settings) -> None:
    headers = bearer(settings)

    r = await client.get("/v1/meta/connection", headers=headers)
    assert r.status_code == 404

    r = await client.put(
        "/v1/meta/connection",
        json={"ad_account_id": "act_123", "access_token": "EAAB-secret"},
        headers=headers,
    )
    assert r.status_code == 200
    assert r.json()["connection"]["ad_account_id"] == "act_123"
    assert "EAAB-secret" not in r.text

    r = await client.get("/v1/meta/connection", headers=headers)
    assert r.json()["connection"]["ad_account_id"] == "act_123"
    assert "access_token" not in r.json()["connection"]

    r = await client.put(
        "/v1/meta/connection",
        json={"ad_account_id": "123", "access_token": "EAAB-secret"},
        headers=headers,
    )
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_pixel_endpoints(client, settings) -> None:
    headers = bearer(settings)

    r = await client.post(
        "/v1/pixels", json={"meta_pixel_id": "999", "name": "쇼핑몰 픽셀"}, headers=headers
    )
    assert r.status_code == 201
    pixel_id = r.json()["pixel"]["id"]

    events = [
        {"event_name": "Purchase", "event_id": "o-1", "user_data": {"em": "a@b.com"}},
        {"event_name": "Purchase", "event_id": "o-1"},
    ]
    r = await client.post(f"/v1/pixels/{pixel_id}/events", json={"events": events}, headers=headers)
    assert r.status_code == 202
    assert r.json() == {"queued": 1, "duplicates": 1}

    r = await client.post(
        f"/v1/pixels/{pixel_id}/events", json={"events": events}, headers=bearer(settings, "user-2")
    )
    assert r.status_code == 404

    r = await client.get("/v1/pixels", headers=headers)
    assert [p["meta_pixel_id"] for p in r.json()["pixels"]] == ["999"]


@pytest.mark.asyncio
async def test_subscribe_over_http(client, settings, upstream: FakeUpstream) -> None:
    upstream.on(
        "POST",
        "/v1/billing/authorizations/issue",
        httpx.Response(200, json={"billingKey": "bk_1", "customerKey": "cust_1", "cardNumber": "4330****1234"}),
    )
    upstream.on(
        "POST",
        "/v1/billing/bk_1",
        httpx.Response(200, json={"paymentKey": "pay_1", "orderId": "o", "status": "DONE", "totalAmount": 39000}),
    )
    headers = bearer(settings)

    r = await client.post(
        "/v1/billing/subscribe",
        json={"plan": "STARTER", "auth_key": "auth_1", "customer_key": "cust_1"},
        headers=headers,
    )
    assert r.status_code == 201
    assert r.json()["subscription"]["status"] == "ACTIVE"
    assert "bk_1" not in r.text

    r = await client.get("/v1/billing/subscription", headers=headers)
    assert r.json()["subscription"]["plan"] == "STARTER"
    assert [i["amount"] for i in r.json()["invoices"]] == [39000]

    r = await client.get("/v1/billing/usage", headers=headers)
    assert r.json()["plan"] == "STARTER"

    r = await client.post("/v1/billing/cancel", headers=headers)
    assert r.json()["subscription"]["status"] == "CANCELLED"


@pytest.mark.asyncio
async def test_cron_jobs_require_system_role(client, settings) -> None:
    r = await client.post("/v1/cron/expire-actions", headers=bearer(settings))
    assert r.status_code == 403

    system = bearer(settings, "scheduler", roles=[ROLE_SYSTEM])

    r = await client.post("/v1/cron/expire-actions", headers=system)
    assert r.json() == {"expired": 0}

    r = await client.post("/v1/cron/run-optimization", headers=system)
    assert r.json() == {"evaluated": 0, "triggered": 0, "executed": []}

    r = await client.post("/v1/cron/renew-subscriptions", headers=system)
    assert r.json() == {"renewed": 0, "failed": 0, "expired": 0}

    r = await client.post("/v1/cron/send-capi-events", headers=system)
    assert r.json()["processed"] == 0
