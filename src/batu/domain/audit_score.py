"""
batu.domain.audit_score

Rule-based scoring for the free ad-account audit.

Responsibilities:
- Score four categories (budget efficiency, targeting, creative, conversion tracking).
- Derive the overall score, letter grade, and estimated waste/improvement amounts.

The scoring is deterministic and uses only delivery counters; no LLM is involved.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Literal

FindingType = Literal["positive", "warning", "critical"]
Priority = Literal["high", "medium", "low"]
Grade = Literal["A", "B", "C", "D", "F"]

LOW_CTR = 0.005
HIGH_CTR = 0.02
LOW_CVR = 0.01
HIGH_CVR = 0.03
RECENT_CAMPAIGN_DAYS = 7
IMPROVEMENT_RATE = 0.3


@dataclass(frozen=True, slots=True)
class CampaignAuditData:
    campaign_id: str
    campaign_name: str
    status: str = "ACTIVE"
    daily_budget: float = 0.0
    currency: str = "KRW"
    impressions: int = 0
    clicks: int = 0
    conversions: int = 0
    spend: float = 0.0
    revenue: float = 0.0
    created_time: datetime | None = None

    @property
    def roas(self) -> float:
        return self.revenue / self.spend if self.spend > 0 else 0.0

    @property
    def ctr(self) -> float:
        return self.clicks / self.impressions if self.impressions > 0 else 0.0

    @property
    def cvr(self) -> float:
        return self.conversions / self.clicks if self.clicks > 0 else 0.0


@dataclass(frozen=True, slots=True)
class AuditFinding:
    type: FindingType
    message: str


@dataclass(frozen=True, slots=True)
class AuditRecommendation:
    priority: Priority
    message: str
    estimated_impact: str


@dataclass(frozen=True, slots=True)
class AuditCategory:
    name: str
    score: int
    findings: list[AuditFinding] = field(default_factory=list)
    recommendations: list[AuditRecommendation] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class AuditScore:
    overall: int
    grade: Grade
    categories: list[AuditCategory]
    estimated_waste: int
    estimated_improvement: int
    currency: str = "KRW"

    @classmethod
    def evaluate(
        cls, campaigns: Sequence[CampaignAuditData], *, now: datetime | None = None
    ) -> AuditScore:
        now = now or datetime.utcnow()
        categories = [
            _budget_efficiency(campaigns),
            _targeting_accuracy(campaigns),
            _creative_performance(campaigns),
            _conversion_tracking(campaigns, now=now),
        ]
        overall = round(sum(c.score for c in categories) / len(categories))

        wasted = sum(c.spend for c in campaigns if c.spend > 0 and c.roas < 1.0)
        improvable = sum(c.spend for c in campaigns if c.ctr < LOW_CTR or c.cvr < LOW_CVR)

        return cls(
            overall=overall,
            grade=assign_grade(overall),
            categories=categories,
            estimated_waste=round(wasted),
            estimated_improvement=round(improvable * IMPROVEMENT_RATE),
            currency=campaigns[0].currency if campaigns else "KRW",
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def assign_grade(score: int) -> Grade:
    if score >= 80:
        return "A"
    if score >= 60:
        return "B"
    if score >= 40:
        return "C"
    if score >= 20:
        return "D"
    return "F"


def _clamp(value: float) -> int:
    return round(min(100.0, max(0.0, value)))


def _budget_efficiency(campaigns: Sequence[CampaignAuditData]) -> AuditCategory:
    low_roas = [c for c in campaigns if c.spend > 0 and c.roas < 1.0]
    ratio = len(low_roas) / len(campaigns) if campaigns else 0.0

    if not low_roas:
        return AuditCategory(
            name="예산 효율성",
            score=_clamp(100 - ratio * 100),
            findings=[AuditFinding("positive", "모든 캠페인이 ROAS 1.0 이상을 달성하고 있습니다.")],
        )

    findings = [
        AuditFinding(
            "critical", f'캠페인 "{c.campaign_name}"의 ROAS가 {c.roas:.2f}로 1.0 미만입니다.'
        )
        for c in low_roas
    ]
    wasted = round(sum(c.spend for c in low_roas))
    recommendations = [
        AuditRecommendation(
            "high",
            f"ROAS가 1.0 미만인 {len(low_roas)}개 캠페인을 일시중지하고 예산을 성과 좋은 캠페인에 집중하세요.",
            f"월 ₩{wasted:,} 낭비 절감 예상",
        )
    ]
    return AuditCategory("예산 효율성", _clamp(100 - ratio * 100), findings, recommendations)


def _targeting_accuracy(campaigns: Sequence[CampaignAuditData]) -> AuditCategory:
    with_impressions = [c for c in campaigns if c.impressions > 0]
    if not with_impressions:
        return AuditCategory(
            "타겟팅 정확도",
            0,
            [AuditFinding("warning", "노출 데이터가 없어 타겟팅을 평가할 수 없습니다.")],
        )

    low = [c for c in with_impressions if c.ctr < LOW_CTR]
    high = [c for c in with_impressions if c.ctr > HIGH_CTR]
    n = len(with_impressions)
    score = _clamp(100 - len(low) / n * 80 + len(high) / n * 20)

    findings = [
        AuditFinding("positive", f'캠페인 "{c.campaign_name}"의 CTR이 {c.ctr * 100:.2f}%로 우수합니다.')
        for c in high
    ]
    findings += [
        AuditFinding(
            "warning",
            f'캠페인 "{c.campaign_name}"의 CTR이 {c.ctr * 100:.2f}%로 낮습니다. 타겟팅 재검토가 필요합니다.',
        )
        for c in low
    ]
    recommendations = []
    if low:
        recommendations.append(
            AuditRecommendation(
                "medium",
                "CTR이 낮은 캠페인의 타겟팅 조건(연령대, 관심사, 지역)을 재설정하세요.",
                "CTR 0.5%p 개선 시 클릭 수 2배 증가 예상",
            )
        )
    return AuditCategory("타겟팅 정확도", score, findings, recommendations)


def _creative_performance(campaigns: Sequence[CampaignAuditData]) -> AuditCategory:
    with_clicks = [c for c in campaigns if c.clicks > 0]
    if not with_clicks:
        return AuditCategory(
            "크리에이티브 성과",
            0,
            [AuditFinding("warning", "클릭 데이터가 없어 크리에이티브를 평가할 수 없습니다.")],
        )

    low = [c for c in with_clicks if c.cvr < LOW_CVR]
    high = [c for c in with_clicks if c.cvr > HIGH_CVR]
    n = len(with_clicks)
    score = _clamp(100 - len(low) / n * 80 + len(high) / n * 20)

    findings = [
        AuditFinding("positive", f'캠페인 "{c.campaign_name}"의 전환율이 {c.cvr * 100:.2f}%로 우수합니다.')
        for c in high
    ]
    findings += [
        AuditFinding(
            "warning",
            f'캠페인 "{c.campaign_name}"의 전환율이 {c.cvr * 100:.2f}%로 낮습니다. 크리에이티브 개선이 필요합니다.',
        )
        for c in low
    ]
    recommendations = []
    if low:
        recommendations.append(
            AuditRecommendation(
                "medium",
                "전환율이 낮은 캠페인의 광고 이미지, 카피, CTA를 A/B 테스트로 개선하세요.",
                "CVR 1%p 개선 시 동일 예산 대비 전환 수 50% 증가 예상",
            )
        )
    return AuditCategory("크리에이티브 성과", score, findings, recommendations)


def _conversion_tracking(
    campaigns: Sequence[CampaignAuditData], *, now: datetime
) -> AuditCategory:
    untracked = [c for c in campaigns if c.conversions == 0]
    if not untracked:
        return AuditCategory(
            "전환 추적",
            100,
            [AuditFinding("positive", "모든 캠페인에 전환 추적이 설정되어 있습니다.")],
        )

    threshold = now - timedelta(days=RECENT_CAMPAIGN_DAYS)
    recent = [c for c in untracked if c.created_time is not None and c.created_time > threshold]
    stale = [c for c in untracked if c.created_time is None or c.created_time <= threshold]

    findings = [
        AuditFinding(
            "warning",
            f'캠페인 "{c.campaign_name}"은 최근 생성되어 데이터 수집 중입니다. 7일 후 다시 확인하세요.',
        )
        for c in recent
    ]
    findings += [
        AuditFinding("critical", f'캠페인 "{c.campaign_name}"에 전환 추적이 설정되어 있지 않습니다.')
        for c in stale
    ]
    recommendations = []
    if stale:
        recommendations.append(
            AuditRecommendation(
                "high",
                "전환 추적이 없는 캠페인에 Meta 픽셀 이벤트(Purchase, AddToCart 등)를 연결하세요.",
                "전환 데이터 확보 시 자동 최적화로 ROAS 평균 30% 개선 예상",
            )
        )

    # Recently created campaigns count half: they may simply not have converted yet.
    effective_tracked = len(campaigns) - len(stale) - len(recent) * 0.5
    score = round(effective_tracked / len(campaigns) * 100)
    return AuditCategory("전환 추적", score, findings, recommendations)
