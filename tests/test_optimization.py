"""
tests.test_optimization

Rule engine runs against seeded daily KPIs.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta

import httpx
import pytest
from conftest import FakeUpstream, make_settings

from batu.db.models import AlertSeverity
from batu.db.repositories.alerts import AlertRepo
from batu.db.repositories.campaigns import CampaignRepo, KpiRepo, MetaConnectionRepo
from batu.domain.campaign import CampaignStatus
from batu.domain.kpi import KpiSnapshot
from batu.domain.optimization import RuleType
from batu.errors import NotFoundError, ValidationError
from batu.integrations.meta_ads import MetaAdsClient
from batu.services.optimization import OptimizationService

USER = "user-1"
NOW = datetime(2024, 5, 1, 12, 0)

CPA_GUARD = {
    "rule_type": RuleType.cpa_threshold,
    "conditions": [{"metric": "cpa", "operator": "gt", "value": 15000}],
    "actions": [{"type": "PAUSE_CAMPAIGN"}],
}


async def _no_sleep(_: float) -> None:
    return None


async def _campaign(session, *, daily_budget=30000, snapshot: KpiSnapshot, **kwargs):
    campaign = await CampaignRepo(session).create(
        user_id=kwargs.pop("user_id", USER),
        name="봄 세일",
        objective="OUTCOME_SALES",
        daily_budget=daily_budget,
        status=CampaignStatus.active,
        **kwargs,
    )
    await KpiRepo(session).upsert_daily(campaign_id=campaign.id, day=NOW.date(), snapshot=snapshot)
    await session.commit()
    return campaign


@pytest.mark.asyncio
async def test_cpa_rule_pauses_and_raises_critical_alert(session) -> None:
    campaign = await _campaign(session, snapshot=KpiSnapshot(conversions=2, spend=40000))
    svc = OptimizationService(session=session)
    rule = await svc.create_rule(user_id=USER, campaign_id=campaign.id, name="CPA 가드", **CPA_GUARD)

    summary = await svc.run_for_user(user_id=USER, now=NOW)

    assert (summary.evaluated, summary.triggered) == (1, 1)
    assert summary.executed[0]["actions"][0]["type"] == "PAUSE_CAMPAIGN"
    assert (await CampaignRepo(session).get(campaign.id)).status == CampaignStatus.paused

    alerts = await AlertRepo(session).list_for_user(user_id=USER)
    assert len(alerts) == 1
    assert alerts[0].severity == AlertSeverity.critical
    assert alerts[0].data["rule_id"] == str(rule.id)
    assert alerts[0].data["kpi"]["cpa"] == 20000

    (stored,) = await svc.list_rules(user_id=USER)
    assert stored.trigger_count == 1
    assert stored.last_triggered_at == NOW

    # A paused campaign is no longer evaluated.
    again = await svc.run_for_user(user_id=USER, now=NOW + timedelta(hours=2))
    assert again.evaluated == 0


@pytest.mark.asyncio
async def test_cooldown_blocks_repeat_triggers(session) -> None:
    campaign = await _campaign(session, snapshot=KpiSnapshot(spend=37000))
    svc = OptimizationService(session=session)
    await svc.create_rule(
        user_id=USER,
        campaign_id=campaign.id,
        name="소진 속도 알림",
        rule_type=RuleType.budget_pace,
        conditions=[{"metric": "spend_pace", "operator": "gt", "value": 120}],
        actions=[{"type": "ALERT_ONLY", "params": {"notify_channel": "in_app"}}],
        cooldown_minutes=60,
    )

    assert (await svc.run_for_user(user_id=USER, now=NOW)).triggered == 1
    assert (await svc.run_for_user(user_id=USER, now=NOW + timedelta(minutes=30))).triggered == 0
    assert (await svc.run_for_user(user_id=USER, now=NOW + timedelta(minutes=60))).triggered == 1

    alerts = await AlertRepo(session).list_for_user(user_id=USER)
    assert [a.severity for a in alerts] == [AlertSeverity.warning, AlertSeverity.warning]
    assert (await CampaignRepo(session).get(campaign.id)).status == CampaignStatus.active


@pytest.mark.asyncio
async def test_budget_reduction_stops_at_the_minimum(session) -> None:
    campaign = await _campaign(
        session, daily_budget=12000, snapshot=KpiSnapshot(spend=10000, revenue=5000)
    )
    svc = OptimizationService(session=session)
    await svc.create_rule(
        user_id=USER,
        campaign_id=campaign.id,
        name="ROAS 하한",
        rule_type=RuleType.roas_floor,
        conditions=[{"metric": "roas", "operator": "lt", "value": 1.0}],
        actions=[{"type": "REDUCE_BUDGET", "params": {"percentage": 30}}],
        cooldown_minutes=0,
    )

    first = await svc.run_for_user(user_id=USER, now=NOW)
    outcome = first.executed[0]["actions"][0]
    assert (outcome["from"], outcome["to"]) == (12000, 10000)

    second = await svc.run_for_user(user_id=USER, now=NOW)
    assert second.executed[0]["actions"][0]["skipped"] == "at_minimum"
    assert (await CampaignRepo(session).get(campaign.id)).daily_budget == 10000


@pytest.mark.asyncio
async def test_disabled_rules_are_skipped(session) -> None:
    campaign = await _campaign(session, snapshot=KpiSnapshot(conversions=1, spend=50000))
    svc = OptimizationService(session=session)

    presets = await svc.apply_presets(user_id=USER, campaign_id=campaign.id)
    assert len(presets) == 3
    for rule in presets:
        await svc.set_enabled(user_id=USER, rule_id=rule.id, enabled=False)

    summary = await svc.run_for_user(user_id=USER, now=NOW)
    assert summary.evaluated == 0
    assert await AlertRepo(session).list_for_user(user_id=USER) == []


@pytest.mark.asyncio
async def test_rule_crud_is_tenant_scoped(session) -> None:
    campaign = await _campaign(session, snapshot=KpiSnapshot())
    svc = OptimizationService(session=session)

    with pytest.raises(ValidationError):
        await svc.create_rule(
            user_id=USER,
            campaign_id=campaign.id,
            name="잘못된 규칙",
            rule_type=RuleType.cpa_threshold,
            conditions=[{"metric": "clicks", "operator": "gt", "value": 1}],
            actions=[{"type": "PAUSE_CAMPAIGN"}],
        )
    with pytest.raises(ValidationError):
        await svc.create_rule(
            user_id=USER,
            campaign_id=campaign.id,
            name="값 누락",
            rule_type=RuleType.cpa_threshold,
            conditions=[{"metric": "cpa", "operator": "gt"}],
            actions=[{"type": "PAUSE_CAMPAIGN"}],
        )
    with pytest.raises(NotFoundError):
        await svc.create_rule(user_id="user-2", campaign_id=campaign.id, name="남의 캠페인", **CPA_GUARD)
    with pytest.raises(NotFoundError):
        await svc.create_rule(user_id=USER, campaign_id=uuid.uuid4(), name="없는 캠페인", **CPA_GUARD)

    rule = await svc.create_rule(user_id=USER, campaign_id=campaign.id, name="CPA 가드", **CPA_GUARD)
    with pytest.raises(NotFoundError):
        await svc.delete_rule(user_id="user-2", rule_id=rule.id)
    await svc.delete_rule(user_id=USER, rule_id=rule.id)
    assert await svc.list_rules(user_id=USER) == []


@pytest.mark.asyncio
async def test_actions_are_pushed_to_meta(session, upstream: FakeUpstream) -> None:
    upstream.on("POST", "/120", httpx.Response(200, json={"success": True}))
    await MetaConnectionRepo(session).upsert(user_id=USER, ad_account_id="act_1", access_token="tok")
    campaign = await _campaign(
        session, snapshot=KpiSnapshot(conversions=2, spend=40000), meta_campaign_id="120"
    )

    async with upstream.client() as http:
        meta = MetaAdsClient(settings=make_settings(), http=http, sleep=_no_sleep)
        svc = OptimizationService(session=session, meta=meta)
        await svc.create_rule(user_id=USER, campaign_id=campaign.id, name="CPA 가드", **CPA_GUARD)
        await svc.run_for_user(user_id=USER, now=NOW)

    assert upstream.json_body() == {"status": "PAUSED"}
    assert upstream.requests[0].headers["Authorization"] == "Bearer tok"
    assert (await CampaignRepo(session).get(campaign.id)).status == CampaignStatus.paused


@pytest.mark.asyncio
async def test_meta_failure_keeps_local_state(session, upstream: FakeUpstream) -> None:
    upstream.on(
        "POST",
        "/120",
        httpx.Response(400, json={"error": {"message": "Invalid parameter", "code": 100}}),
    )
    await MetaConnectionRepo(session).upsert(user_id=USER, ad_account_id="act_1", access_token="tok")
    campaign = await _campaign(
        session, snapshot=KpiSnapshot(conversions=2, spend=40000), meta_campaign_id="120"
    )

    async with upstream.client() as http:
        meta = MetaAdsClient(settings=make_settings(), http=http, sleep=_no_sleep)
        svc = OptimizationService(session=session, meta=meta)
        await svc.create_rule(user_id=USER, campaign_id=campaign.id, name="CPA 가드", **CPA_GUARD)
        summary = await svc.run_for_user(user_id=USER, now=NOW)

    assert "error" in summary.executed[0]["actions"][0]
    assert (await CampaignRepo(session).get(campaign.id)).status == CampaignStatus.active
    (alert,) = await AlertRepo(session).list_for_user(user_id=USER)
    assert alert.severity == AlertSeverity.warning


@pytest.mark.asyncio
async def test_run_all_covers_every_user(session) -> None:
    for user_id in (USER, "user-2"):
        campaign = await _campaign(
            session, snapshot=KpiSnapshot(conversions=2, spend=40000), user_id=user_id
        )
        await OptimizationService(session=session).create_rule(
            user_id=user_id, campaign_id=campaign.id, name="CPA 가드", **CPA_GUARD
        )

    total = await OptimizationService(session=session).run_all(now=NOW)
    assert (total.evaluated, total.triggered) == (2, 2)
