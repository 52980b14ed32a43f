"""
batu.domain.billing

Billing periods, subscription status transitions and proration.

Responsibilities:
- Compute charge amounts for a plan and billing period.
- Advance billing periods by calendar month/year.
- Guard subscription status transitions.
- Compute the prorated charge for a mid-period plan change.
"""

from __future__ import annotations

import calendar
import enum
import math
from datetime import datetime

from batu.domain.plans import UNLIMITED, SubscriptionPlan, get_plan_config
from batu.errors import ConflictError, PaymentError


class BillingPeriod(enum.StrEnum):
    monthly = "MONTHLY"
    yearly = "YEARLY"


class SubscriptionStatus(enum.StrEnum):
    active = "ACTIVE"
    trialing = "TRIALING"
    past_due = "PAST_DUE"
    cancelled = "CANCELLED"
    expired = "EXPIRED"


_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    SubscriptionStatus.trialing: frozenset(
        {SubscriptionStatus.active, SubscriptionStatus.cancelled, SubscriptionStatus.expired}
    ),
    SubscriptionStatus.active: frozenset(
        {SubscriptionStatus.past_due, SubscriptionStatus.cancelled, SubscriptionStatus.expired}
    ),
    SubscriptionStatus.past_due: frozenset(
        {SubscriptionStatus.active, SubscriptionStatus.cancelled, SubscriptionStatus.expired}
    ),
    SubscriptionStatus.cancelled: frozenset(),
    SubscriptionStatus.expired: frozenset(),
}

_SECONDS_PER_DAY = 24 * 60 * 60


def has_access(status: SubscriptionStatus) -> bool:
    return status in (SubscriptionStatus.active, SubscriptionStatus.trialing)


def ensure_status_transition(current: SubscriptionStatus, target: SubscriptionStatus) -> None:
    if target not in _TRANSITIONS[current]:
        raise ConflictError(
            f"구독 상태를 {current.value}에서 {target.value}(으)로 변경할 수 없습니다",
            details={"from": current.value, "to": target.value},
        )


def billing_amount(plan: SubscriptionPlan, period: BillingPeriod) -> int:
    """
    Amount charged per billing period in KRW.

    Yearly billing charges twelve months of the discounted per-month price up front.
    """

    cfg = get_plan_config(plan)
    per_month = cfg.price if period == BillingPeriod.monthly else cfg.annual_price
    if per_month == UNLIMITED:
        raise PaymentError(f"{cfg.label} 플랜은 별도 문의가 필요합니다")
    return per_month if period == BillingPeriod.monthly else per_month * 12


def _add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def period_end(start: datetime, period: BillingPeriod) -> datetime:
    return _add_months(start, 1 if period == BillingPeriod.monthly else 12)


def prorated_upgrade_charge(
    *,
    old_amount: int,
    new_amount: int,
    period_start: datetime,
    period_end: datetime,
    now: datetime,
) -> int:
    total_days = math.ceil((period_end - period_start).total_seconds() / _SECONDS_PER_DAY)
    remaining_days = max(0, math.ceil((period_end - now).total_seconds() / _SECONDS_PER_DAY))
    if total_days <= 0:
        return 0
    ratio = min(1.0, remaining_days / total_days)
    return max(0, math.floor(new_amount * ratio) - math.floor(old_amount * ratio))
