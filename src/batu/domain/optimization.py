"""
batu.domain.optimization

Optimization rules: condition/action value objects evaluated linearly.

Responsibilities:
- Evaluate a rule's conditions (AND) against a KPI snapshot.
- Enforce the per-rule cooldown between triggers.
- Provide e-commerce preset rules.

Rules are immutable; mutators return a new instance.
"""

from __future__ import annotations

import enum
import operator
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any

from batu.domain.kpi import KpiSnapshot
from batu.errors import ValidationError


class RuleType(enum.StrEnum):
    cpa_threshold = "CPA_THRESHOLD"
    roas_floor = "ROAS_FLOOR"
    budget_pace = "BUDGET_PACE"
    creative_fatigue = "CREATIVE_FATIGUE"


class RuleActionType(enum.StrEnum):
    pause_campaign = "PAUSE_CAMPAIGN"
    reduce_budget = "REDUCE_BUDGET"
    alert_only = "ALERT_ONLY"


_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
    "eq": operator.eq,
}

_METRICS = frozenset({"roas", "cpa", "ctr", "cvr", "cpc", "spend_pace"})

DEFAULT_COOLDOWN_MINUTES = 60


@dataclass(frozen=True, slots=True)
class RuleCondition:
    metric: str
    operator: str
    value: float

    def __post_init__(self) -> None:
        if self.metric not in _METRICS:
            raise ValidationError(f"Unsupported metric: {self.metric}")
        if self.operator not in _OPERATORS:
            raise ValidationError(f"Unsupported operator: {self.operator}")

    def evaluate(self, kpi: KpiSnapshot, daily_budget: float | None = None) -> bool:
        if self.metric == "spend_pace":
            if not daily_budget:
                return False
            actual = kpi.spend / daily_budget * 100
        else:
            actual = float(getattr(kpi, self.metric))
        return _OPERATORS[self.operator](actual, self.value)

    def to_dict(self) -> dict[str, Any]:
        return {"metric": self.metric, "operator": self.operator, "value": self.value}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> RuleCondition:
        return cls(metric=str(raw["metric"]), operator=str(raw["operator"]), value=float(raw["value"]))


@dataclass(frozen=True, slots=True)
class RuleAction:
    type: RuleActionType
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.type == RuleActionType.reduce_budget:
            pct = self.params.get("percentage")
            if not isinstance(pct, int | float) or not 1 <= pct <= 100:
                raise ValidationError("percentage must be between 1 and 100")

    @classmethod
    def pause_campaign(cls) -> RuleAction:
        return cls(type=RuleActionType.pause_campaign)

    @classmethod
    def reduce_budget(cls, percentage: float) -> RuleAction:
        return cls(type=RuleActionType.reduce_budget, params={"percentage": percentage})

    @classmethod
    def alert_only(cls, notify_channel: str = "in_app") -> RuleAction:
        return cls(type=RuleActionType.alert_only, params={"notify_channel": notify_channel})

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "params": dict(self.params)}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> RuleAction:
        return cls(type=RuleActionType(raw["type"]), params=dict(raw.get("params") or {}))


@dataclass(frozen=True, slots=True)
class OptimizationRule:
    id: uuid.UUID
    campaign_id: uuid.UUID
    user_id: str
    name: str
    rule_type: RuleType
    conditions: tuple[RuleCondition, ...]
    actions: tuple[RuleAction, ...]
    is_enabled: bool = True
    cooldown_minutes: int = DEFAULT_COOLDOWN_MINUTES
    last_triggered_at: datetime | None = None
    trigger_count: int = 0

    def __post_init__(self) -> None:
        if not self.name.strip():
            raise ValidationError("Rule name is required")
        if not self.conditions:
            raise ValidationError("At least one condition is required")
        if not self.actions:
            raise ValidationError("At least one action is required")
        if self.cooldown_minutes < 0:
            raise ValidationError("cooldown_minutes must be >= 0")

    def evaluate(self, kpi: KpiSnapshot, daily_budget: float | None = None) -> bool:
        return all(c.evaluate(kpi, daily_budget) for c in self.conditions)

    def can_trigger(self, now: datetime) -> bool:
        if not self.is_enabled:
            return False
        if self.last_triggered_at is None:
            return True
        return now - self.last_triggered_at >= timedelta(minutes=self.cooldown_minutes)

    def record_trigger(self, now: datetime) -> OptimizationRule:
        return replace(self, last_triggered_at=now, trigger_count=self.trigger_count + 1)

    def enable(self) -> OptimizationRule:
        return replace(self, is_enabled=True)

    def disable(self) -> OptimizationRule:
        return replace(self, is_enabled=False)

    def with_conditions(self, conditions: list[RuleCondition]) -> OptimizationRule:
        return replace(self, conditions=tuple(conditions))

    def with_actions(self, actions: list[RuleAction]) -> OptimizationRule:
        return replace(self, actions=tuple(actions))


PRESET_NAMES = ("cpa_guard", "roas_floor", "budget_pace")


def ecommerce_presets(*, campaign_id: uuid.UUID, user_id: str) -> list[OptimizationRule]:
    """
    Starter rules for e-commerce sellers: pause on runaway CPA, cut budget on
    losing ROAS, alert when spend runs ahead of the daily budget.
    """

    return [
        OptimizationRule(
            id=uuid.uuid4(),
            campaign_id=campaign_id,
            user_id=user_id,
            name="CPA 15,000원 초과 시 캠페인 일시정지",
            rule_type=RuleType.cpa_threshold,
            conditions=(RuleCondition("cpa", "gt", 15000),),
            actions=(RuleAction.pause_campaign(),),
        ),
        OptimizationRule(
            id=uuid.uuid4(),
            campaign_id=campaign_id,
            user_id=user_id,
            name="ROAS 1.0 미만 시 예산 30% 감액",
            rule_type=RuleType.roas_floor,
            conditions=(RuleCondition("roas", "lt", 1.0),),
            actions=(RuleAction.reduce_budget(30),),
        ),
        OptimizationRule(
            id=uuid.uuid4(),
            campaign_id=campaign_id,
            user_id=user_id,
            name="예산 소진 속도 120% 초과 시 알림",
            rule_type=RuleType.budget_pace,
            conditions=(RuleCondition("spend_pace", "gt", 120),),
            actions=(RuleAction.alert_only("in_app"),),
        ),
    ]
