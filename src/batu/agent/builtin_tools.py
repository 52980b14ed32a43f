"""
batu.agent.builtin_tools

The tools the 바투 agent can call.

Responsibilities:
- Query tools: read campaigns, KPIs, quota usage and alerts for the caller.
- Guide tools: interview the seller one question at a time, then recommend settings.
- Mutation tools: build a confirmation card, and execute only once confirmed.
- Keep Meta-linked campaigns consistent: Meta is updated first, the local row
  only after Meta accepted the change.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Any

from batu.agent import guide
from batu.agent.tools import (
    AgentTool,
    Confirmation,
    ConfirmationDetail,
    ToolContext,
    ToolRegistry,
    ToolResult,
)
from batu.db.models import Campaign
from batu.db.repositories.alerts import AlertRepo
from batu.db.repositories.optimization_rules import OptimizationRuleRepo
from batu.domain.campaign import (
    CampaignObjective,
    CampaignStatus,
    ensure_transition,
    validate_campaign_name,
    validate_daily_budget,
)
from batu.domain.optimization import PRESET_NAMES, ecommerce_presets
from batu.domain.plans import QuotaFeature
from batu.errors import ValidationError
from batu.services.campaigns import CampaignService, campaign_to_dict
from batu.services.quota import QuotaService


STATUS_LABELS = {
    CampaignStatus.draft: "초안",
    CampaignStatus.pending_review: "검토 중",
    CampaignStatus.active: "활성",
    CampaignStatus.paused: "일시정지",
    CampaignStatus.completed: "완료",
}

OBJECTIVE_LABELS = {
    CampaignObjective.sales: "매출",
    CampaignObjective.traffic: "트래픽",
    CampaignObjective.awareness: "인지도",
    CampaignObjective.engagement: "참여",
    CampaignObjective.leads: "잠재고객",
}

PRESET_LABELS = {
    "cpa_guard": "CPA 15,000원 초과 시 캠페인 일시정지",
    "roas_floor": "ROAS 1.0 미만 시 예산 30% 감액",
    "budget_pace": "예산 소진 속도 120% 초과 시 알림",
}

LARGE_BUDGET_CHANGE_PCT = 50
MAX_KPI_DAYS = 90


def won(amount: int | float) -> str:
    return f"₩{int(round(amount)):,}"


def _campaign_id(args: dict[str, Any]) -> uuid.UUID:
    raw = args.get("campaign_id")
    try:
        return uuid.UUID(str(raw))
    except (TypeError, ValueError) as e:
        raise ValidationError("유효하지 않은 캠페인 ID입니다", details={"campaign_id": raw}) from e


def _campaigns(ctx: ToolContext) -> CampaignService:
    return CampaignService(session=ctx.session, meta=ctx.meta)


async def _owned_campaign(ctx: ToolContext, args: dict[str, Any]) -> Campaign:
    return await _campaigns(ctx).get_owned(user_id=ctx.user_id, campaign_id=_campaign_id(args))


# --- Query tools --------------------------------------------------------------


async def _list_campaigns(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    status = None
    if args.get("status"):
        try:
            status = CampaignStatus(str(args["status"]).upper())
        except ValueError as e:
            raise ValidationError(f"알 수 없는 캠페인 상태입니다: {args['status']}") from e

    campaigns = await _campaigns(ctx).list(user_id=ctx.user_id, status=status)
    if not campaigns:
        return ToolResult(data=[], formatted_message="조건에 맞는 캠페인이 없습니다.")

    lines = [f"캠페인 목록 ({len(campaigns)}개):"]
    for i, c in enumerate(campaigns, start=1):
        lines.append(
            f"{i}. **{c.name}** ({STATUS_LABELS[c.status]}) - 일일 예산: {won(c.daily_budget)}"
        )
    return ToolResult(
        data=[campaign_to_dict(c) for c in campaigns], formatted_message="\n".join(lines)
    )


async def _kpi_for(ctx: ToolContext, campaign_ids: list[uuid.UUID], days: int) -> dict[str, Any]:
    end = ctx.now.date()
    start = end - timedelta(days=days - 1)
    kpi = await _campaigns(ctx).kpi(campaign_ids=campaign_ids, start=start, end=end)
    return {"start": start.isoformat(), "end": end.isoformat(), "days": days, **kpi.to_dict()}


def _kpi_line(kpi: dict[str, Any]) -> str:
    return (
        f"ROAS {kpi['roas']:.2f} | CTR {kpi['ctr']:.2f}% | CVR {kpi['cvr']:.2f}% | "
        f"CPA {won(kpi['cpa'])} | 지출 {won(kpi['spend'])}"
    )


async def _get_campaign_detail(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    campaign = await _owned_campaign(ctx, args)
    kpi = await _kpi_for(ctx, [campaign.id], 7)
    data = {**campaign_to_dict(campaign), "kpi_7d": kpi}
    message = (
        f"**{campaign.name}** ({STATUS_LABELS[campaign.status]})\n"
        f"목표: {campaign.objective} / 일일 예산: {won(campaign.daily_budget)}\n"
        f"최근 7일: {_kpi_line(kpi)}"
    )
    return ToolResult(data=data, formatted_message=message)


async def _get_performance_kpi(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    try:
        days = int(args.get("days") or 7)
    except (TypeError, ValueError) as e:
        raise ValidationError("days는 숫자여야 합니다") from e
    days = max(1, min(MAX_KPI_DAYS, days))

    if args.get("campaign_id"):
        campaign = await _owned_campaign(ctx, args)
        ids, scope = [campaign.id], f"'{campaign.name}'"
    else:
        campaigns = await _campaigns(ctx).list(user_id=ctx.user_id)
        ids, scope = [c.id for c in campaigns], f"전체 캠페인 {len(campaigns)}개"

    kpi = await _kpi_for(ctx, ids, days)
    return ToolResult(
        data=kpi, formatted_message=f"{scope} 최근 {days}일 성과: {_kpi_line(kpi)}"
    )


async def _get_usage_summary(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    summary = await QuotaService(session=ctx.session).summary(user_id=ctx.user_id, now=ctx.now)
    lines = [f"현재 플랜: {summary['plan']}"]
    for feature, status in summary["usage"].items():
        limit = "무제한" if status["limit"] == -1 else f"{status['limit']}회"
        lines.append(f"- {feature}: {status['used']}회 사용 / {limit}")
    return ToolResult(data=summary, formatted_message="\n".join(lines))


async def _list_alerts(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    alerts = await AlertRepo(ctx.session).list_for_user(
        user_id=ctx.user_id, unread_only=bool(args.get("unread_only")), limit=20
    )
    data = [
        {
            "id": str(a.id),
            "type": a.type,
            "severity": a.severity.value,
            "title": a.title,
            "message": a.message,
            "is_read": a.is_read,
            "created_at": a.created_at.isoformat(),
        }
        for a in alerts
    ]
    if not alerts:
        return ToolResult(data=[], formatted_message="새로운 알림이 없습니다.")
    lines = [f"알림 {len(alerts)}건:"] + [f"- [{a.severity.value}] {a.title}" for a in alerts]
    return ToolResult(data=data, formatted_message="\n".join(lines))


# --- Guide tools --------------------------------------------------------------


async def _ask_guide_question(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    data = guide.ask(
        str(args.get("question_id") or ""), experience_level=args.get("experience_level")
    )
    progress = data["progress"]
    options = " / ".join(o["label"] for o in data["options"])
    return ToolResult(
        data=data,
        formatted_message=(
            f"{progress['total']}단계 중 {progress['current']}단계입니다. {data['question']}\n({options})"
        ),
    )


async def _recommend_campaign_settings(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    data = guide.recommend(args)
    form = data["form_data"]
    objective = OBJECTIVE_LABELS[CampaignObjective(form["objective"])]
    mode = "Advantage+" if data["campaign_mode"] == guide.CampaignMode.advantage_plus else "수동"
    return ToolResult(
        data=data,
        formatted_message=(
            f"추천 설정: {mode} 캠페인 / 목표 {objective} / 일일 예산 {won(form['daily_budget'])}\n"
            f"{data['reasoning']}"
        ),
    )


# --- Mutation tools -----------------------------------------------------------


def _status_change(target: CampaignStatus, verb: str, warning: str | None):
    async def _confirm(args: dict[str, Any], ctx: ToolContext) -> Confirmation:
        campaign = await _owned_campaign(ctx, args)
        ensure_transition(campaign.status, target)
        return Confirmation(
            summary=f"'{campaign.name}' 캠페인을 {verb}합니다",
            details=[
                ConfirmationDetail("캠페인", campaign.name),
                ConfirmationDetail(
                    "상태", f"{STATUS_LABELS[campaign.status]} → {STATUS_LABELS[target]}"
                ),
            ],
            warnings=[warning] if warning else [],
        )

    async def _execute(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
        campaign = await _owned_campaign(ctx, args)
        await _campaigns(ctx).apply_status(campaign, target)
        return ToolResult(
            data=campaign_to_dict(campaign),
            formatted_message=f"'{campaign.name}' 캠페인을 {verb}했습니다.",
        )

    return _confirm, _execute


_pause_confirm, _pause_execute = _status_change(
    CampaignStatus.paused, "일시정지", "일시정지 기간 동안 광고가 노출되지 않습니다"
)
_resume_confirm, _resume_execute = _status_change(CampaignStatus.active, "재개", None)


async def _budget_confirm(args: dict[str, Any], ctx: ToolContext) -> Confirmation:
    campaign = await _owned_campaign(ctx, args)
    new_budget = validate_daily_budget(args.get("daily_budget"))
    warnings: list[str] = []
    if campaign.daily_budget > 0:
        change_pct = abs(new_budget - campaign.daily_budget) / campaign.daily_budget * 100
        if change_pct > LARGE_BUDGET_CHANGE_PCT:
            warnings.append(
                f"예산 변경폭이 {LARGE_BUDGET_CHANGE_PCT}%를 초과합니다 ({change_pct:.0f}%). "
                "급격한 변경은 Meta 학습 단계를 다시 시작시킬 수 있습니다"
            )
    return Confirmation(
        summary=f"'{campaign.name}' 캠페인의 일일 예산을 변경합니다",
        details=[
            ConfirmationDetail("캠페인", campaign.name),
            ConfirmationDetail("현재 예산", won(campaign.daily_budget)),
            ConfirmationDetail("변경 예산", won(new_budget)),
        ],
        warnings=warnings,
    )


async def _budget_execute(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    campaign = await _owned_campaign(ctx, args)
    old_budget = campaign.daily_budget
    new_budget = await _campaigns(ctx).apply_budget(campaign, args.get("daily_budget"))
    return ToolResult(
        data={**campaign_to_dict(campaign), "previous_daily_budget": old_budget},
        formatted_message=(
            f"'{campaign.name}' 캠페인의 일일 예산을 {won(old_budget)}에서 "
            f"{won(new_budget)}(으)로 변경했습니다."
        ),
    )


def _campaign_input(args: dict[str, Any]) -> tuple[str, CampaignObjective, int]:
    name = validate_campaign_name(str(args.get("name") or ""))
    raw_objective = str(args.get("objective") or CampaignObjective.sales.value).upper()
    try:
        objective = CampaignObjective(raw_objective)
    except ValueError as e:
        raise ValidationError(f"지원하지 않는 캠페인 목표입니다: {raw_objective}") from e
    budget = validate_daily_budget(args.get("daily_budget"))
    return name, objective, budget


async def _create_confirm(args: dict[str, Any], ctx: ToolContext) -> Confirmation:
    name, objective, budget = _campaign_input(args)
    quota = await QuotaService(session=ctx.session).ensure_available(
        user_id=ctx.user_id, feature=QuotaFeature.campaign_create, now=ctx.now
    )
    warnings = ["캠페인은 일시정지 상태로 생성되며, 검토 후 직접 활성화해야 합니다"]
    if quota.remaining == 1:
        warnings.append("이번 주 캠페인 생성 한도의 마지막 1회입니다")
    return Confirmation(
        summary=f"새 캠페인 '{name}'을(를) 생성합니다",
        details=[
            ConfirmationDetail("캠페인 이름", name),
            ConfirmationDetail("목표", OBJECTIVE_LABELS[objective]),
            ConfirmationDetail("일일 예산", won(budget)),
        ],
        warnings=warnings,
    )


async def _create_execute(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    name, objective, budget = _campaign_input(args)
    await QuotaService(session=ctx.session).ensure_available(
        user_id=ctx.user_id, feature=QuotaFeature.campaign_create, now=ctx.now
    )

    campaign = await _campaigns(ctx).create(
        user_id=ctx.user_id, name=name, objective=objective, daily_budget=budget
    )
    return ToolResult(
        data=campaign_to_dict(campaign),
        formatted_message=f"'{name}' 캠페인을 생성했습니다 (일일 예산 {won(budget)}).",
    )


def _preset(args: dict[str, Any]) -> str:
    preset = str(args.get("preset") or "")
    if preset not in PRESET_NAMES:
        raise ValidationError(
            f"알 수 없는 프리셋입니다: {preset}", details={"allowed": list(PRESET_NAMES)}
        )
    return preset


async def _rule_confirm(args: dict[str, Any], ctx: ToolContext) -> Confirmation:
    campaign = await _owned_campaign(ctx, args)
    preset = _preset(args)
    return Confirmation(
        summary=f"'{campaign.name}' 캠페인에 자동 최적화 규칙을 추가합니다",
        details=[
            ConfirmationDetail("캠페인", campaign.name),
            ConfirmationDetail("규칙", PRESET_LABELS[preset]),
        ],
        warnings=[],
    )


async def _rule_execute(args: dict[str, Any], ctx: ToolContext) -> ToolResult:
    campaign = await _owned_campaign(ctx, args)
    preset = _preset(args)
    rules = ecommerce_presets(campaign_id=campaign.id, user_id=ctx.user_id)
    rule = rules[PRESET_NAMES.index(preset)]
    await OptimizationRuleRepo(ctx.session).save(rule)
    return ToolResult(
        data={"rule_id": str(rule.id), "campaign_id": str(campaign.id), "name": rule.name},
        formatted_message=f"'{campaign.name}' 캠페인에 '{rule.name}' 규칙을 추가했습니다.",
    )


# --- Registry -----------------------------------------------------------------

_CAMPAIGN_ID = {"type": "string", "description": "캠페인 ID (list_campaigns 결과의 id)"}


def build_default_registry() -> ToolRegistry:
    registry = ToolRegistry()

    registry.register(
        AgentTool(
            name="list_campaigns",
            description="사용자의 캠페인 목록을 조회합니다. 상태로 필터링할 수 있습니다.",
            parameters={
                "type": "object",
                "properties": {
                    "status": {
                        "type": "string",
                        "enum": [s.value for s in CampaignStatus],
                        "description": "캠페인 상태 필터",
                    }
                },
            },
            execute=_list_campaigns,
        )
    )
    registry.register(
        AgentTool(
            name="get_campaign_detail",
            description="캠페인의 설정과 최근 7일 성과를 조회합니다.",
            parameters={
                "type": "object",
                "properties": {"campaign_id": _CAMPAIGN_ID},
                "required": ["campaign_id"],
            },
            execute=_get_campaign_detail,
        )
    )
    registry.register(
        AgentTool(
            name="get_performance_kpi",
            description="캠페인(또는 전체 캠페인)의 ROAS, CTR, CVR, CPA, 지출을 조회합니다.",
            parameters={
                "type": "object",
                "properties": {
                    "campaign_id": _CAMPAIGN_ID,
                    "days": {"type": "integer", "minimum": 1, "maximum": MAX_KPI_DAYS},
                },
            },
            execute=_get_performance_kpi,
        )
    )
    registry.register(
        AgentTool(
            name="get_usage_summary",
            description="현재 플랜과 기능별 사용량/한도를 조회합니다.",
            parameters={"type": "object", "properties": {}},
            execute=_get_usage_summary,
        )
    )
    registry.register(
        AgentTool(
            name="list_alerts",
            description="최적화 규칙과 결제 관련 알림을 조회합니다.",
            parameters={
                "type": "object",
                "properties": {"unread_only": {"type": "boolean"}},
            },
            execute=_list_alerts,
        )
    )

    registry.register(
        AgentTool(
            name="ask_guide_question",
            description=(
                "캠페인 가이드 인터뷰 질문을 한 번에 하나씩 사용자에게 보여줍니다. "
                "순서: experience_level, industry, objective, budget, target(초보자만)."
            ),
            parameters={
                "type": "object",
                "properties": {
                    "question_id": {
                        "type": "string",
                        "enum": [q.question_id for q in guide.QUESTIONS],
                    },
                    "experience_level": {
                        "type": "string",
                        "enum": [e.value for e in guide.ExperienceLevel],
                        "description": "이미 답변받은 광고 경험 수준",
                    },
                },
                "required": ["question_id"],
            },
            execute=_ask_guide_question,
            chunk_type="guide_question",
            ends_turn=True,
        )
    )
    registry.register(
        AgentTool(
            name="recommend_campaign_settings",
            description="가이드 인터뷰 답변을 바탕으로 캠페인 모드, 목표, 일일 예산을 추천합니다.",
            parameters={
                "type": "object",
                "properties": {
                    "experience_level": {
                        "type": "string",
                        "enum": [e.value for e in guide.ExperienceLevel],
                    },
                    "industry": {"type": "string"},
                    "objective": {"type": "string", "enum": list(guide.OBJECTIVES)},
                    "budget": {"type": "string", "enum": list(guide.BUDGETS)},
                    "target": {"type": "string"},
                },
                "required": ["experience_level", "objective", "budget"],
            },
            execute=_recommend_campaign_settings,
            chunk_type="guide_recommendation",
        )
    )

    registry.register(
        AgentTool(
            name="pause_campaign",
            description="캠페인을 일시정지합니다.",
            parameters={
                "type": "object",
                "properties": {"campaign_id": _CAMPAIGN_ID},
                "required": ["campaign_id"],
            },
            execute=_pause_execute,
            requires_confirmation=True,
            build_confirmation=_pause_confirm,
        )
    )
    registry.register(
        AgentTool(
            name="resume_campaign",
            description="일시정지된 캠페인을 다시 활성화합니다.",
            parameters={
                "type": "object",
                "properties": {"campaign_id": _CAMPAIGN_ID},
                "required": ["campaign_id"],
            },
            execute=_resume_execute,
            requires_confirmation=True,
            build_confirmation=_resume_confirm,
        )
    )
    registry.register(
        AgentTool(
            name="update_campaign_budget",
            description="캠페인의 일일 예산(원)을 변경합니다. 최소 10,000원.",
            parameters={
                "type": "object",
                "properties": {
                    "campaign_id": _CAMPAIGN_ID,
                    "daily_budget": {"type": "integer", "minimum": 10000},
                },
                "required": ["campaign_id", "daily_budget"],
            },
            execute=_budget_execute,
            requires_confirmation=True,
            build_confirmation=_budget_confirm,
        )
    )
    registry.register(
        AgentTool(
            name="create_campaign",
            description="새 캠페인을 생성합니다. 생성된 캠페인은 일시정지 상태로 시작합니다.",
            parameters={
                "type": "object",
                "properties": {
                    "name": {"type": "string", "maxLength": 255},
                    "objective": {
                        "type": "string",
                        "enum": [o.value for o in CampaignObjective],
                    },
                    "daily_budget": {"type": "integer", "minimum": 10000},
                },
                "required": ["name", "objective", "daily_budget"],
            },
            execute=_create_execute,
            requires_confirmation=True,
            build_confirmation=_create_confirm,
            quota_feature=QuotaFeature.campaign_create,
        )
    )
    registry.register(
        AgentTool(
            name="create_optimization_rule",
            description="캠페인에 자동 최적화 규칙 프리셋을 추가합니다.",
            parameters={
                "type": "object",
                "properties": {
                    "campaign_id": _CAMPAIGN_ID,
                    "preset": {"type": "string", "enum": list(PRESET_NAMES)},
                },
                "required": ["campaign_id", "preset"],
            },
            execute=_rule_execute,
            requires_confirmation=True,
            build_confirmation=_rule_confirm,
        )
    )

    return registry
