"""
batu.services.optimization

Optimization-rule engine (transaction owner).

Responsibilities:
- CRUD on a user's rules, plus the e-commerce preset bundle.
- Evaluate enabled rules against today's KPI of their campaign and execute
  their actions (pause, reduce budget, alert), honouring each rule's cooldown.
- Leave an `Alert` behind for every trigger.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from batu.db.models import AlertSeverity, Campaign
from batu.db.repositories.alerts import AlertRepo
from batu.db.repositories.campaigns import CampaignRepo, KpiRepo, MetaConnectionRepo, to_snapshot
from batu.db.repositories.optimization_rules import OptimizationRuleRepo
from batu.domain.campaign import MIN_DAILY_BUDGET, CampaignStatus
from batu.domain.kpi import KpiSnapshot, aggregate
from batu.domain.optimization import (
    OptimizationRule,
    RuleAction,
    RuleActionType,
    RuleCondition,
    RuleType,
    ecommerce_presets,
)
from batu.errors import MetaApiError, NotFoundError, ValidationError
from batu.integrations.meta_ads import MetaAdsClient
from batu.observability.logging import get_logger

log = get_logger(__name__)


@dataclass
class RunSummary:
    evaluated: int = 0
    triggered: int = 0
    executed: list[dict[str, Any]] = field(default_factory=list)

    def merge(self, other: RunSummary) -> None:
        self.evaluated += other.evaluated
        self.triggered += other.triggered
        self.executed.extend(other.executed)


class OptimizationService:
    def __init__(self, *, session: AsyncSession, meta: MetaAdsClient | None = None) -> None:
        self._session = session
        self._meta = meta

        self._rules = OptimizationRuleRepo(session)
        self._campaigns = CampaignRepo(session)
        self._kpis = KpiRepo(session)
        self._connections = MetaConnectionRepo(session)
        self._alerts = AlertRepo(session)

    async def _owned_campaign(self, *, user_id: str, campaign_id: uuid.UUID) -> Campaign:
        campaign = await self._campaigns.get_owned(campaign_id=campaign_id, user_id=user_id)
        if campaign is None:
            raise NotFoundError("캠페인을 찾을 수 없습니다")
        return campaign

    async def create_rule(
        self,
        *,
        user_id: str,
        campaign_id: uuid.UUID,
        name: str,
        rule_type: RuleType,
        conditions: list[dict[str, Any]],
        actions: list[dict[str, Any]],
        cooldown_minutes: int = 60,
    ) -> OptimizationRule:
        await self._owned_campaign(user_id=user_id, campaign_id=campaign_id)
        try:
            parsed_conditions = tuple(RuleCondition.from_dict(c) for c in conditions)
            parsed_actions = tuple(RuleAction.from_dict(a) for a in actions)
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"잘못된 규칙 정의입니다: {e}") from e

        rule = OptimizationRule(
            id=uuid.uuid4(),
            campaign_id=campaign_id,
            user_id=user_id,
            name=name,
            rule_type=rule_type,
            conditions=parsed_conditions,
            actions=parsed_actions,
            cooldown_minutes=cooldown_minutes,
        )
        await self._rules.save(rule)
        await self._session.commit()
        return rule

    async def apply_presets(
        self, *, user_id: str, campaign_id: uuid.UUID
    ) -> list[OptimizationRule]:
        await self._owned_campaign(user_id=user_id, campaign_id=campaign_id)
        rules = ecommerce_presets(campaign_id=campaign_id, user_id=user_id)
        for rule in rules:
            await self._rules.save(rule)
        await self._session.commit()
        return rules

    async def list_rules(
        self, *, user_id: str, campaign_id: uuid.UUID | None = None
    ) -> list[OptimizationRule]:
        return await self._rules.list_for_user(user_id=user_id, campaign_id=campaign_id)

    async def set_enabled(
        self, *, user_id: str, rule_id: uuid.UUID, enabled: bool
    ) -> OptimizationRule:
        rule = await self._rules.get_owned(rule_id=rule_id, user_id=user_id)
        if rule is None:
            raise NotFoundError("규칙을 찾을 수 없습니다")
        rule = rule.enable() if enabled else rule.disable()
        await self._rules.save(rule)
        await self._session.commit()
        return rule

    async def delete_rule(self, *, user_id: str, rule_id: uuid.UUID) -> None:
        if not await self._rules.delete_owned(rule_id=rule_id, user_id=user_id):
            raise NotFoundError("규칙을 찾을 수 없습니다")
        await self._session.commit()

    async def _today_kpi(self, campaign: Campaign, now: datetime) -> KpiSnapshot:
        rows = await self._kpis.range_for_campaigns(
            campaign_ids=[campaign.id], start=now.date(), end=now.date()
        )
        return aggregate(to_snapshot(r) for r in rows)

    async def _meta_target(self, campaign: Campaign) -> tuple[MetaAdsClient, str] | None:
        if self._meta is None or not campaign.meta_campaign_id:
            return None
        conn = await self._connections.get_for_user(campaign.user_id)
        if conn is None:
            return None
        return self._meta, conn.access_token

    async def _execute(self, action: RuleAction, campaign: Campaign) -> dict[str, Any]:
        outcome: dict[str, Any] = {"type": action.type.value, "campaign_id": str(campaign.id)}
        target = await self._meta_target(campaign)

        if action.type == RuleActionType.pause_campaign:
            if campaign.status != CampaignStatus.active:
                outcome["skipped"] = "not_active"
                return outcome
            if target is not None:
                meta, token = target
                await meta.update_campaign_status(
                    access_token=token, campaign_id=campaign.meta_campaign_id, status="PAUSED"
                )
            await self._campaigns.set_status(campaign, CampaignStatus.paused)

        elif action.type == RuleActionType.reduce_budget:
            pct = float(action.params.get("percentage", 0))
            reduced = max(MIN_DAILY_BUDGET, math.floor(campaign.daily_budget * (1 - pct / 100)))
            outcome["from"] = campaign.daily_budget
            if reduced >= campaign.daily_budget:
                outcome["skipped"] = "at_minimum"
                return outcome
            if target is not None:
                meta, token = target
                await meta.update_campaign_budget(
                    access_token=token, campaign_id=campaign.meta_campaign_id, daily_budget=reduced
                )
            await self._campaigns.set_daily_budget(campaign, reduced)
            outcome["to"] = reduced

        return outcome

    async def run_for_user(self, *, user_id: str, now: datetime | None = None) -> RunSummary:
        now = now or datetime.utcnow()
        summary = RunSummary()

        for rule in await self._rules.list_for_user(user_id=user_id, enabled_only=True):
            if not rule.can_trigger(now):
                continue
            campaign = await self._campaigns.get_owned(campaign_id=rule.campaign_id, user_id=user_id)
            if campaign is None or campaign.status != CampaignStatus.active:
                continue

            summary.evaluated += 1
            kpi = await self._today_kpi(campaign, now)
            if not rule.evaluate(kpi, campaign.daily_budget):
                continue

            summary.triggered += 1
            outcomes: list[dict[str, Any]] = []
            for action in rule.actions:
                try:
                    outcomes.append(await self._execute(action, campaign))
                except MetaApiError as e:
                    log.warning(
                        "rule_action_failed", rule_id=str(rule.id), action=action.type, error=str(e)
                    )
                    outcomes.append({"type": action.type.value, "error": e.message})

            await self._rules.save(rule.record_trigger(now))
            paused = any(
                o["type"] == RuleActionType.pause_campaign.value and "error" not in o
                and "skipped" not in o
                for o in outcomes
            )
            await self._alerts.add(
                user_id=user_id,
                campaign_id=campaign.id,
                type="optimization_rule",
                severity=AlertSeverity.critical if paused else AlertSeverity.warning,
                title=f"자동 규칙 실행: {rule.name}",
                message=f"'{campaign.name}' 캠페인에 '{rule.name}' 규칙이 적용되었습니다.",
                data={"rule_id": str(rule.id), "kpi": kpi.to_dict(), "actions": outcomes},
            )
            summary.executed.append({"rule_id": str(rule.id), "actions": outcomes})
            log.info("rule_triggered", rule_id=str(rule.id), campaign_id=str(campaign.id))

        await self._session.commit()
        return summary

    async def run_all(self, *, now: datetime | None = None) -> RunSummary:
        now = now or datetime.utcnow()
        total = RunSummary()
        for user_id in await self._rules.list_enabled_user_ids():
            total.merge(await self.run_for_user(user_id=user_id, now=now))
        return total
