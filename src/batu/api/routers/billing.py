"""
batu.api.routers.billing

Plans, subscription lifecycle and usage endpoints.

Responsibilities:
- Publish the plan catalogue (no auth).
- Subscribe with a Toss billing auth key, change plan, cancel.
- Report the caller's quota usage and invoices.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from batu.api.deps import billing_service, quota_service
from batu.auth.deps import get_principal, require_roles
from batu.auth.models import ROLE_ADVERTISER, Principal
from batu.db.models import Subscription
from batu.domain.billing import BillingPeriod
from batu.domain.plans import SubscriptionPlan, get_plan_config
from batu.services.billing import BillingService
from batu.services.quota import QuotaService

router = APIRouter(prefix="/v1/billing", tags=["billing"])

_advertiser = [Depends(require_roles(ROLE_ADVERTISER))]


class SubscribeRequest(BaseModel):
    plan: SubscriptionPlan
    billing_period: BillingPeriod = BillingPeriod.monthly
    # Issued by the Toss card-registration widget on the client.
    auth_key: str = Field(min_length=1)
    customer_key: str = Field(min_length=1)


class ChangePlanRequest(BaseModel):
    plan: SubscriptionPlan
    billing_period: BillingPeriod | None = None


def subscription_to_dict(sub: Subscription | None) -> dict[str, Any] | None:
    if sub is None:
        return None
    return {
        "id": str(sub.id),
        "plan": sub.plan.value,
        "status": sub.status.value,
        "billing_period": sub.billing_period.value,
        "current_period_start": sub.current_period_start.isoformat(),
        "current_period_end": sub.current_period_end.isoformat(),
        "cancelled_at": sub.cancelled_at.isoformat() if sub.cancelled_at else None,
    }


@router.get("/plans")
async def list_plans() -> dict[str, Any]:
    plans = []
    for plan in SubscriptionPlan:
        cfg = get_plan_config(plan)
        plans.append(
            {
                "plan": plan.value,
                "label": cfg.label,
                "price": cfg.price,
                "annual_price": cfg.annual_price,
                "limits": {f.value: v for f, v in cfg.limits.items()},
                "team_members": cfg.team_members,
                "model_tier": cfg.model_tier,
                "description": cfg.description,
            }
        )
    return {"plans": plans}


@router.get("/subscription", dependencies=_advertiser)
async def get_subscription(
    principal: Principal = Depends(get_principal),
    svc: BillingService = Depends(billing_service),
) -> dict[str, Any]:
    sub = await svc.get_subscription(principal.user_id)
    invoices = await svc.list_invoices(principal.user_id)
    return {
        "subscription": subscription_to_dict(sub),
        "invoices": [
            {
                "id": str(i.id),
                "amount": i.amount,
                "status": i.status.value,
                "description": i.description,
                "paid_at": i.paid_at.isoformat() if i.paid_at else None,
            }
            for i in invoices
        ],
    }


@router.post("/subscribe", dependencies=_advertiser, status_code=201)
async def subscribe(
    body: SubscribeRequest,
    principal: Principal = Depends(get_principal),
    svc: BillingService = Depends(billing_service),
) -> dict[str, Any]:
    sub = await svc.subscribe(
        user_id=principal.user_id,
        plan=body.plan,
        period=body.billing_period,
        auth_key=body.auth_key,
        customer_key=body.customer_key,
    )
    return {"subscription": subscription_to_dict(sub)}


@router.post("/change-plan", dependencies=_advertiser)
async def change_plan(
    body: ChangePlanRequest,
    principal: Principal = Depends(get_principal),
    svc: BillingService = Depends(billing_service),
) -> dict[str, Any]:
    sub, charged = await svc.change_plan(
        user_id=principal.user_id, new_plan=body.plan, period=body.billing_period
    )
    return {"subscription": subscription_to_dict(sub), "charged_amount": charged}


@router.post("/cancel", dependencies=_advertiser)
async def cancel(
    principal: Principal = Depends(get_principal),
    svc: BillingService = Depends(billing_service),
) -> dict[str, Any]:
    sub = await svc.cancel(user_id=principal.user_id)
    return {"subscription": subscription_to_dict(sub)}


@router.get("/usage", dependencies=_advertiser)
async def usage(
    principal: Principal = Depends(get_principal),
    svc: QuotaService = Depends(quota_service),
) -> dict[str, Any]:
    return await svc.summary(user_id=principal.user_id)
