"""
batu.api.routers.cron

Scheduler-triggered maintenance jobs (role `system`).

Responsibilities:
- Expire overdue pending actions.
- Run enabled optimization rules for every user.
- Renew subscriptions whose period has ended.
- Flush the Conversions API queue.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends

from batu.api.deps import action_service, billing_service, optimization_service, pixel_service
from batu.auth.deps import require_roles
from batu.auth.models import ROLE_SYSTEM
from batu.services.action_confirmation import ActionConfirmationService
from batu.services.billing import BillingService
from batu.services.optimization import OptimizationService
from batu.services.pixel import PixelService

router = APIRouter(
    prefix="/v1/cron",
    tags=["cron"],
    dependencies=[Depends(require_roles(ROLE_SYSTEM))],
)


@router.post("/expire-actions")
async def expire_actions(
    svc: ActionConfirmationService = Depends(action_service),
) -> dict[str, int]:
    return {"expired": await svc.expire_stale()}


@router.post("/run-optimization")
async def run_optimization(
    svc: OptimizationService = Depends(optimization_service),
) -> dict[str, Any]:
    return asdict(await svc.run_all())


@router.post("/renew-subscriptions")
async def renew_subscriptions(
    svc: BillingService = Depends(billing_service),
) -> dict[str, int]:
    return asdict(await svc.renew_due())


@router.post("/send-capi-events")
async def send_capi_events(
    svc: PixelService = Depends(pixel_service),
) -> dict[str, Any]:
    return asdict(await svc.flush())
