"""
batu.services.quota

Plan-based usage quotas.

Responsibilities:
- Resolve the caller's effective plan (FREE unless a subscription grants access).
- Count `UsageLog` rows in the feature's window and compare with the plan limit.
- Record usage once a quota-bearing operation actually happens.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from batu.db.repositories.subscriptions import SubscriptionRepo
from batu.db.repositories.usage import UsageRepo
from batu.domain.billing import has_access
from batu.domain.plans import (
    QUOTA_PERIODS,
    QuotaFeature,
    QuotaPeriod,
    SubscriptionPlan,
    get_plan_config,
    is_unlimited,
)
from batu.errors import QuotaExceededError

_WINDOWS: dict[QuotaPeriod, timedelta] = {"day": timedelta(days=1), "week": timedelta(days=7)}


@dataclass(frozen=True, slots=True)
class QuotaStatus:
    feature: QuotaFeature
    used: int
    limit: int
    remaining: int
    period: QuotaPeriod
    allowed: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class QuotaService:
    def __init__(self, *, session: AsyncSession) -> None:
        self._session = session
        self._usage = UsageRepo(session)
        self._subscriptions = SubscriptionRepo(session)

    async def plan_for(self, user_id: str) -> SubscriptionPlan:
        sub = await self._subscriptions.get_for_user(user_id)
        if sub is None or not has_access(sub.status):
            return SubscriptionPlan.free
        return sub.plan

    async def check(
        self, *, user_id: str, feature: QuotaFeature, now: datetime | None = None
    ) -> QuotaStatus:
        now = now or datetime.utcnow()
        plan = await self.plan_for(user_id)
        return await self._status(user_id=user_id, feature=feature, plan=plan, now=now)

    async def _status(
        self, *, user_id: str, feature: QuotaFeature, plan: SubscriptionPlan, now: datetime
    ) -> QuotaStatus:
        period = QUOTA_PERIODS[feature]
        limit = get_plan_config(plan).limit_for(feature)
        used = await self._usage.count_since(
            user_id=user_id, feature=feature.value, since=now - _WINDOWS[period]
        )
        if is_unlimited(limit):
            return QuotaStatus(feature, used, limit, -1, period, True)
        remaining = max(0, limit - used)
        return QuotaStatus(feature, used, limit, remaining, period, remaining > 0)

    async def ensure_available(
        self, *, user_id: str, feature: QuotaFeature, now: datetime | None = None
    ) -> QuotaStatus:
        status = await self.check(user_id=user_id, feature=feature, now=now)
        if not status.allowed:
            if status.limit == 0:
                message = "현재 플랜에서는 사용할 수 없는 기능입니다"
            else:
                unit = "일" if status.period == "day" else "주"
                message = f"이번 {unit} 사용 한도({status.limit}회)를 모두 사용했습니다"
            raise QuotaExceededError(message, details=status.to_dict())
        return status

    async def consume(
        self, *, user_id: str, feature: QuotaFeature, now: datetime | None = None
    ) -> QuotaStatus:
        """
        Check then record one use. Does not commit; the caller owns the transaction.
        """

        now = now or datetime.utcnow()
        await self.ensure_available(user_id=user_id, feature=feature, now=now)
        await self._usage.log(user_id=user_id, feature=feature.value, at=now)
        return await self.check(user_id=user_id, feature=feature, now=now)

    async def summary(self, *, user_id: str, now: datetime | None = None) -> dict[str, Any]:
        now = now or datetime.utcnow()
        plan = await self.plan_for(user_id)
        usage = {}
        for feature in QuotaFeature:
            status = await self._status(user_id=user_id, feature=feature, plan=plan, now=now)
            usage[feature.value] = status.to_dict()
        return {"plan": plan.value, "usage": usage}
