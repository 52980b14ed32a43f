"""
tests.test_tools

Built-in agent tools run directly against a session, outside the graph.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta

import pytest
from conftest import make_settings

from batu.agent.builtin_tools import build_default_registry
from batu.agent.tools import AgentTool, ToolContext
from batu.db.repositories.campaigns import CampaignRepo, KpiRepo
from batu.db.repositories.optimization_rules import OptimizationRuleRepo
from batu.db.repositories.usage import UsageRepo
from batu.domain.campaign import CampaignStatus
from batu.domain.kpi import KpiSnapshot
from batu.errors import QuotaExceededError, ValidationError

USER = "user-1"
NOW = datetime(2024, 5, 1, 12, 0)


@pytest.fixture
def registry():
    return build_default_registry()


def _ctx(session) -> ToolContext:
    return ToolContext(
        session=session,
        settings=make_settings(),
        user_id=USER,
        conversation_id=None,
        meta=None,
        now=NOW,
    )


async def _campaign(session, name: str, status=CampaignStatus.active):
    return await CampaignRepo(session).create(
        user_id=USER, name=name, objective="OUTCOME_SALES", daily_budget=30000, status=status
    )


def test_registry_contract(registry) -> None:
    mutations = {t.name for t in registry.all() if t.requires_confirmation}
    assert mutations == {
        "pause_campaign",
        "resume_campaign",
        "update_campaign_budget",
        "create_campaign",
        "create_optimization_rule",
    }
    assert all(registry.get(name).build_confirmation is not None for name in mutations)

    names = [t["function"]["name"] for t in registry.to_openai_tools()]
    assert "list_campaigns" in names and "get_usage_summary" in names

    with pytest.raises(ValueError):
        registry.register(registry.get("list_campaigns"))
    with pytest.raises(ValueError):
        registry.register(
            AgentTool(
                name="delete_everything",
                description="",
                parameters={},
                execute=registry.get("list_campaigns").execute,
                requires_confirmation=True,
            )
        )


@pytest.mark.asyncio
async def test_performance_kpi_windows(session, registry) -> None:
    winner = await _campaign(session, "봄 세일")
    other = await _campaign(session, "신규 유입")
    kpis = KpiRepo(session)
    await kpis.upsert_daily(
        campaign_id=winner.id,
        day=NOW.date(),
        snapshot=KpiSnapshot(impressions=1000, clicks=50, conversions=5, spend=50000, revenue=150000),
    )
    await kpis.upsert_daily(
        campaign_id=other.id,
        day=NOW.date(),
        snapshot=KpiSnapshot(impressions=1000, clicks=30, spend=20000),
    )
    await kpis.upsert_daily(
        campaign_id=other.id,
        day=NOW.date() - timedelta(days=10),
        snapshot=KpiSnapshot(spend=99999),
    )
    tool = registry.get("get_performance_kpi")

    week = await tool.execute({}, _ctx(session))
    assert week.data["spend"] == 70000
    assert week.data["roas"] == 2.14
    assert week.data["cpa"] == 14000
    assert week.formatted_message.startswith("전체 캠페인 2개 최근 7일 성과")

    month = await tool.execute({"days": 30}, _ctx(session))
    assert month.data["spend"] == 169999

    single = await tool.execute({"campaign_id": str(winner.id), "days": 500}, _ctx(session))
    assert single.data["days"] == 90
    assert single.data["conversions"] == 5

    detail = await registry.get("get_campaign_detail").execute(
        {"campaign_id": str(winner.id)}, _ctx(session)
    )
    assert detail.data["kpi_7d"]["roas"] == 3.0
    assert "ROAS 3.00" in detail.formatted_message


@pytest.mark.asyncio
async def test_query_tools_validate_input(session, registry) -> None:
    with pytest.raises(ValidationError):
        await registry.get("list_campaigns").execute({"status": "deleted"}, _ctx(session))
    with pytest.raises(ValidationError):
        await registry.get("get_campaign_detail").execute({"campaign_id": "abc"}, _ctx(session))

    empty = await registry.get("list_alerts").execute({}, _ctx(session))
    assert empty.data == []
    assert empty.formatted_message == "새로운 알림이 없습니다."

    usage = await registry.get("get_usage_summary").execute({}, _ctx(session))
    assert usage.data["plan"] == "FREE"
    assert "현재 플랜: FREE" in usage.formatted_message


@pytest.mark.asyncio
async def test_guide_tools(session, registry) -> None:
    ask = registry.get("ask_guide_question")
    assert ask.ends_turn and not ask.requires_confirmation

    target = await ask.execute({"question_id": "target"}, _ctx(session))
    assert target.data["progress"] == {"current": 5, "total": 5}
    budget = await ask.execute(
        {"question_id": "budget", "experience_level": "ADVANCED"}, _ctx(session)
    )
    assert budget.data["progress"] == {"current": 4, "total": 4}
    with pytest.raises(ValidationError):
        await ask.execute({"question_id": "target", "experience_level": "ADVANCED"}, _ctx(session))
    with pytest.raises(ValidationError):
        await ask.execute({"question_id": "favorite_color"}, _ctx(session))

    recommend = registry.get("recommend_campaign_settings")
    expert = await recommend.execute(
        {"experience_level": "ADVANCED", "objective": "traffic", "budget": "50000-200000"},
        _ctx(session),
    )
    assert expert.data["campaign_mode"] == "MANUAL"
    assert expert.data["form_data"] == {
        "objective": "OUTCOME_TRAFFIC",
        "daily_budget": 100000,
        "campaign_mode": "MANUAL",
    }
    assert expert.formatted_message.startswith(
        "추천 설정: 수동 캠페인 / 목표 트래픽 / 일일 예산 ₩100,000"
    )

    novice = await recommend.execute(
        {"experience_level": "BEGINNER", "objective": "sales", "budget": "unknown"}, _ctx(session)
    )
    assert novice.data["campaign_mode"] == "ADVANTAGE_PLUS"
    assert novice.data["form_data"]["daily_budget"] == 30000
    with pytest.raises(ValidationError):
        await recommend.execute(
            {"experience_level": "BEGINNER", "objective": "fame", "budget": "1-10000"},
            _ctx(session),
        )


@pytest.mark.asyncio
async def test_create_campaign_confirmation_checks_quota(session, registry) -> None:
    tool = registry.get("create_campaign")
    args = {"name": "여름 세일", "objective": "outcome_traffic", "daily_budget": 20000}
    usage = UsageRepo(session)

    await usage.log(user_id=USER, feature="CAMPAIGN_CREATE", at=NOW - timedelta(days=1))
    await usage.log(user_id=USER, feature="CAMPAIGN_CREATE", at=NOW - timedelta(days=2))
    last = await tool.build_confirmation(args, _ctx(session))
    assert "이번 주 캠페인 생성 한도의 마지막 1회입니다" in last.warnings
    assert [d.value for d in last.details] == ["여름 세일", "트래픽", "₩20,000"]

    await usage.log(user_id=USER, feature="CAMPAIGN_CREATE", at=NOW - timedelta(hours=1))
    with pytest.raises(QuotaExceededError):
        await tool.build_confirmation(args, _ctx(session))

    # Uses older than the weekly window no longer count.
    next_week = replace(_ctx(session), now=NOW + timedelta(days=8))
    assert await tool.build_confirmation(args, next_week)


@pytest.mark.asyncio
async def test_rule_tool_adds_one_preset(session, registry) -> None:
    campaign = await _campaign(session, "봄 세일")
    tool = registry.get("create_optimization_rule")

    with pytest.raises(ValidationError):
        await tool.build_confirmation(
            {"campaign_id": str(campaign.id), "preset": "magic"}, _ctx(session)
        )

    args = {"campaign_id": str(campaign.id), "preset": "roas_floor"}
    card = await tool.build_confirmation(args, _ctx(session))
    assert card.details[1].value == "ROAS 1.0 미만 시 예산 30% 감액"

    result = await tool.execute(args, _ctx(session))
    (rule,) = await OptimizationRuleRepo(session).list_for_user(user_id=USER)
    assert str(rule.id) == result.data["rule_id"]
    assert rule.actions[0].params == {"percentage": 30}
