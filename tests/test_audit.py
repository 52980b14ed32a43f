"""
tests.test_audit

Free audit funnel: Meta pull, scoring, caching and signed share links.
"""

from __future__ import annotations

from datetime import datetime, timedelta

import httpx
import pytest
from conftest import FakeUpstream, make_settings

from batu.errors import MetaApiError, NotFoundError, PermissionDeniedError
from batu.integrations.meta_ads import MetaAdsClient
from batu.services.audit import AuditService
from batu.services.cache import TTLCache

NOW = datetime(2024, 5, 1, 12, 0)


async def _no_sleep(_: float) -> None:
    return None


def _account(upstream: FakeUpstream) -> None:
    upstream.on(
        "GET",
        "/act_1/campaigns",
        httpx.Response(
            200,
            json={
                "data": [
                    {
                        "id": "1",
                        "name": "봄 세일",
                        "status": "ACTIVE",
                        "objective": "OUTCOME_SALES",
                        "daily_budget": "30000",
                        "created_time": "2024-01-01T00:00:00+0000",
                    },
                    {
                        "id": "2",
                        "name": "신규 유입",
                        "status": "PAUSED",
                        "objective": "OUTCOME_TRAFFIC",
                        "daily_budget": "20000",
                        "created_time": "2024-01-01T00:00:00+0000",
                    },
                ]
            },
        ),
    )
    upstream.on(
        "GET",
        "/act_1/insights",
        httpx.Response(
            200,
            json={
                "data": [
                    {
                        "campaign_id": "1",
                        "impressions": "10000",
                        "clicks": "300",
                        "spend": "100000",
                        "actions": [{"action_type": "purchase", "value": "15"}],
                        "action_values": [{"action_type": "purchase", "value": "300000"}],
                    },
                    {
                        "campaign_id": "2",
                        "impressions": "10000",
                        "clicks": "20",
                        "spend": "50000",
                        "action_values": [{"action_type": "purchase", "value": "20000"}],
                    },
                ]
            },
        ),
    )


def _service(session, http: httpx.AsyncClient) -> AuditService:
    settings = make_settings()
    return AuditService(
        session=session,
        settings=settings,
        meta=MetaAdsClient(settings=settings, http=http, sleep=_no_sleep),
        cache=TTLCache(ttl_seconds=600),
    )


@pytest.mark.asyncio
async def test_audit_scores_account_and_caches(session, upstream: FakeUpstream) -> None:
    _account(upstream)
    async with upstream.client() as http:
        svc = _service(session, http)
        report = await svc.run(access_token="tok", ad_account_id="act_1", now=NOW)
        cached = await svc.run(access_token="tok", ad_account_id="act_1", now=NOW)

    assert (report["total_campaigns"], report["active_campaigns"]) == (2, 1)
    assert report["score"]["overall"] == 60
    assert report["score"]["grade"] == "B"
    assert report["score"]["estimated_waste"] == 50000
    assert cached["report_id"] == report["report_id"]
    assert len(upstream.requests) == 2
    assert upstream.requests[1].url.params["level"] == "campaign"


@pytest.mark.asyncio
async def test_share_tokens_are_signed_and_expire(session, upstream: FakeUpstream) -> None:
    _account(upstream)
    async with upstream.client() as http:
        svc = _service(session, http)
        report = await svc.run(access_token="tok", ad_account_id="act_1", now=NOW)

    token = report["share_token"]
    shared = await svc.get_shared(token, now=NOW + timedelta(days=1))
    assert str(shared.id) == report["report_id"]
    assert shared.grade == "B"

    tampered = token[:-1] + ("0" if token[-1] != "0" else "1")
    with pytest.raises(NotFoundError):
        svc.verify_share_token(tampered, now=NOW)
    with pytest.raises(NotFoundError):
        svc.verify_share_token("not-a-token", now=NOW)
    with pytest.raises(PermissionDeniedError):
        svc.verify_share_token(token, now=NOW + timedelta(days=7))


@pytest.mark.asyncio
async def test_audit_endpoints(client, upstream: FakeUpstream) -> None:
    _account(upstream)

    r = await client.post("/v1/audit", json={"access_token": "tok", "ad_account_id": "act_1"})
    assert r.status_code == 200
    body = r.json()
    assert body["score"]["overall"] == 60

    r = await client.get(f"/v1/audit/shared/{body['share_token']}")
    assert r.status_code == 200
    assert r.json()["report_id"] == body["report_id"]
    assert r.json()["score"]["grade"] == "B"

    r = await client.get("/v1/audit/shared/bogus")
    assert r.status_code == 404
    assert r.json()["error"] == "not_found"

    r = await client.post("/v1/audit", json={"access_token": "tok", "ad_account_id": "12345"})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_cached_audit_is_not_served_to_another_token(session, upstream: FakeUpstream) -> None:
    _account(upstream)
    async with upstream.client() as http:
        svc = _service(session, http)
        owner = await svc.run(access_token="owner-token", ad_account_id="act_1", now=NOW)

        # Meta rejects the stranger's credential; the cached report must not answer first.
        upstream.on(
            "GET",
            "/act_1/campaigns",
            httpx.Response(400, json={"error": {"message": "Invalid OAuth access token", "code": 190}}),
        )
        with pytest.raises(MetaApiError):
            await svc.run(access_token="forged", ad_account_id="act_1", now=NOW)

        # The owner's own token still hits the cache.
        again = await svc.run(access_token="owner-token", ad_account_id="act_1", now=NOW)

    assert upstream.requests[-1].headers["Authorization"] == "Bearer forged"
    assert len(upstream.requests) == 3
    assert again["report_id"] == owner["report_id"]
