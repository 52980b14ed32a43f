"""
batu.domain.plans

Subscription plans and their quota limits.

Responsibilities:
- Define the four plans and their ordering.
- Expose per-plan prices, quota limits and feature availability.

A limit of -1 means unlimited; 0 means the feature is not available on the plan.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Literal

UNLIMITED = -1


class SubscriptionPlan(enum.StrEnum):
    free = "FREE"
    starter = "STARTER"
    pro = "PRO"
    enterprise = "ENTERPRISE"


PLAN_HIERARCHY: dict[SubscriptionPlan, int] = {
    SubscriptionPlan.free: 0,
    SubscriptionPlan.starter: 1,
    SubscriptionPlan.pro: 2,
    SubscriptionPlan.enterprise: 3,
}


class QuotaFeature(enum.StrEnum):
    campaign_create = "CAMPAIGN_CREATE"
    ai_copy_gen = "AI_COPY_GEN"
    premium_copy_gen = "PREMIUM_COPY_GEN"
    ai_analysis = "AI_ANALYSIS"
    science_analysis = "SCIENCE_ANALYSIS"
    kpi_insight = "KPI_INSIGHT"
    competitor_analysis = "COMPETITOR_ANALYSIS"


QuotaPeriod = Literal["day", "week"]

QUOTA_PERIODS: dict[QuotaFeature, QuotaPeriod] = {
    QuotaFeature.campaign_create: "week",
    QuotaFeature.ai_copy_gen: "day",
    QuotaFeature.premium_copy_gen: "day",
    QuotaFeature.ai_analysis: "week",
    QuotaFeature.science_analysis: "week",
    QuotaFeature.kpi_insight: "day",
    QuotaFeature.competitor_analysis: "week",
}


@dataclass(frozen=True, slots=True)
class PlanConfig:
    label: str
    price: int
    annual_price: int
    limits: dict[QuotaFeature, int]
    team_members: int
    model_tier: Literal["standard", "premium"]
    description: str

    def limit_for(self, feature: QuotaFeature) -> int:
        return self.limits.get(feature, 0)


def _limits(
    campaigns: int,
    ai_copy: int,
    premium_copy: int,
    ai_analysis: int,
    science: int,
    kpi_insight: int,
    competitor: int,
) -> dict[QuotaFeature, int]:
    return {
        QuotaFeature.campaign_create: campaigns,
        QuotaFeature.ai_copy_gen: ai_copy,
        QuotaFeature.premium_copy_gen: premium_copy,
        QuotaFeature.ai_analysis: ai_analysis,
        QuotaFeature.science_analysis: science,
        QuotaFeature.kpi_insight: kpi_insight,
        QuotaFeature.competitor_analysis: competitor,
    }


PLAN_CONFIGS: dict[SubscriptionPlan, PlanConfig] = {
    SubscriptionPlan.free: PlanConfig(
        label="Free",
        price=0,
        annual_price=0,
        limits=_limits(3, 5, 0, 3, 0, 5, 0),
        team_members=1,
        model_tier="standard",
        description="무료로 시작하기",
    ),
    SubscriptionPlan.starter: PlanConfig(
        label="Starter",
        price=39000,
        annual_price=29000,
        limits=_limits(20, 30, 5, 15, 5, 10, 3),
        team_members=2,
        model_tier="standard",
        description="소규모 셀러를 위한 플랜",
    ),
    SubscriptionPlan.pro: PlanConfig(
        label="Pro",
        price=99000,
        annual_price=79000,
        limits=_limits(UNLIMITED, 100, 20, UNLIMITED, UNLIMITED, 20, UNLIMITED),
        team_members=5,
        model_tier="premium",
        description="성장하는 브랜드를 위한 플랜",
    ),
    SubscriptionPlan.enterprise: PlanConfig(
        label="Enterprise",
        price=199000,
        annual_price=UNLIMITED,
        limits=_limits(*([UNLIMITED] * 7)),
        team_members=UNLIMITED,
        model_tier="premium",
        description="대규모 조직을 위한 맞춤 플랜",
    ),
}

_PRO_FEATURES = frozenset({"portfolio", "ab_test", "anomaly_alert", "api", "slack"})
_LIMITED_FEATURES: dict[str, QuotaFeature] = {
    "premium_copy": QuotaFeature.premium_copy_gen,
    "science": QuotaFeature.science_analysis,
    "competitor": QuotaFeature.competitor_analysis,
}


def get_plan_config(plan: SubscriptionPlan) -> PlanConfig:
    return PLAN_CONFIGS[plan]


def is_free_plan(plan: SubscriptionPlan) -> bool:
    return plan == SubscriptionPlan.free


def is_unlimited(limit: int) -> bool:
    return limit == UNLIMITED


def can_upgrade_to(current: SubscriptionPlan, target: SubscriptionPlan) -> bool:
    return PLAN_HIERARCHY[target] > PLAN_HIERARCHY[current]


def has_feature(plan: SubscriptionPlan, feature: str) -> bool:
    if feature in _LIMITED_FEATURES:
        return get_plan_config(plan).limit_for(_LIMITED_FEATURES[feature]) != 0
    if feature in _PRO_FEATURES:
        return PLAN_HIERARCHY[plan] >= PLAN_HIERARCHY[SubscriptionPlan.pro]
    return True
