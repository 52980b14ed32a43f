"""
batu.domain.kpi

Campaign performance metrics derived from raw delivery counters.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass


def _div(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


@dataclass(frozen=True, slots=True)
class KpiSnapshot:
    impressions: int = 0
    clicks: int = 0
    conversions: int = 0
    spend: float = 0.0
    revenue: float = 0.0

    @property
    def roas(self) -> float:
        return _div(self.revenue, self.spend)

    @property
    def cpa(self) -> int:
        return round(_div(self.spend, self.conversions))

    @property
    def ctr(self) -> float:
        # Percent, e.g. 1.5 means 1.5%.
        return _div(self.clicks, self.impressions) * 100

    @property
    def cvr(self) -> float:
        return _div(self.conversions, self.clicks) * 100

    @property
    def cpc(self) -> int:
        return round(_div(self.spend, self.clicks))

    @property
    def cpm(self) -> int:
        return round(_div(self.spend, self.impressions) * 1000)

    def to_dict(self) -> dict[str, float | int]:
        return {
            "impressions": self.impressions,
            "clicks": self.clicks,
            "conversions": self.conversions,
            "spend": self.spend,
            "revenue": self.revenue,
            "roas": round(self.roas, 2),
            "cpa": self.cpa,
            "ctr": round(self.ctr, 2),
            "cvr": round(self.cvr, 2),
            "cpc": self.cpc,
            "cpm": self.cpm,
        }


def aggregate(snapshots: Iterable[KpiSnapshot]) -> KpiSnapshot:
    impressions = clicks = conversions = 0
    spend = revenue = 0.0
    for s in snapshots:
        impressions += s.impressions
        clicks += s.clicks
        conversions += s.conversions
        spend += s.spend
        revenue += s.revenue
    return KpiSnapshot(
        impressions=impressions,
        clicks=clicks,
        conversions=conversions,
        spend=spend,
        revenue=revenue,
    )
