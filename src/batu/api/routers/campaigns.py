from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from batu.api.deps import db_session, meta_client
from batu.auth.deps import get_principal, require_roles
from batu.auth.models import ROLE_ADVERTISER, Principal
from batu.domain.campaign import MIN_DAILY_BUDGET, CampaignObjective, CampaignStatus
from batu.integrations.meta_ads import MetaAdsClient
from batu.services.campaigns import CampaignService, campaign_to_dict

router = APIRouter(
    prefix="/v1/campaigns",
    tags=["campaigns"],
    dependencies=[Depends(require_roles(ROLE_ADVERTISER))],
)


class CreateCampaignRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    objective: CampaignObjective = CampaignObjective.sales
    daily_budget: int = Field(ge=MIN_DAILY_BUDGET)


class BudgetRequest(BaseModel):
    daily_budget: int = Field(ge=MIN_DAILY_BUDGET)


def campaign_service(
    session: AsyncSession = Depends(db_session),
    meta: MetaAdsClient = Depends(meta_client),
) -> CampaignService:
    return CampaignService(session=session, meta=meta)


@router.get("")
async def list_campaigns(
    status: CampaignStatus | None = None,
    principal: Principal = Depends(get_principal),
    svc: CampaignService = Depends(campaign_service),
) -> dict[str, Any]:
    campaigns = await svc.list(user_id=principal.user_id, status=status)
    return {"campaigns": [campaign_to_dict(c) for c in campaigns]}


@router.post("", status_code=201)
async def create_draft(
    body: CreateCampaignRequest,
    principal: Principal = Depends(get_principal),
    svc: CampaignService = Depends(campaign_service),
) -> dict[str, Any]:
    campaign = await svc.create_draft(
        user_id=principal.user_id,
        name=body.name,
        objective=body.objective,
        daily_budget=body.daily_budget,
    )
    return {"campaign": campaign_to_dict(campaign)}


@router.get("/{campaign_id}")
async def get_campaign(
    campaign_id: uuid.UUID,
    days: int = 7,
    principal: Principal = Depends(get_principal),
    svc: CampaignService = Depends(campaign_service),
) -> dict[str, Any]:
    campaign = await svc.get_owned(user_id=principal.user_id, campaign_id=campaign_id)
    days = max(1, min(90, days))
    end = datetime.utcnow().date()
    start = end - timedelta(days=days - 1)
    kpi = await svc.kpi(campaign_ids=[campaign.id], start=start, end=end)
    return {
        "campaign": campaign_to_dict(campaign),
        "kpi": {"start": start.isoformat(), "end": end.isoformat(), **kpi.to_dict()},
    }


@router.post("/{campaign_id}/pause")
async def pause_campaign(
    campaign_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    svc: CampaignService = Depends(campaign_service),
) -> dict[str, Any]:
    campaign = await svc.change_status(
        user_id=principal.user_id, campaign_id=campaign_id, target=CampaignStatus.paused
    )
    return {"campaign": campaign_to_dict(campaign)}


@router.post("/{campaign_id}/resume")
async def resume_campaign(
    campaign_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    svc: CampaignService = Depends(campaign_service),
) -> dict[str, Any]:
    campaign = await svc.change_status(
        user_id=principal.user_id, campaign_id=campaign_id, target=CampaignStatus.active
    )
    return {"campaign": campaign_to_dict(campaign)}


@router.patch("/{campaign_id}/budget")
async def update_budget(
    campaign_id: uuid.UUID,
    body: BudgetRequest,
    principal: Principal = Depends(get_principal),
    svc: CampaignService = Depends(campaign_service),
) -> dict[str, Any]:
    campaign = await svc.update_budget(
        user_id=principal.user_id, campaign_id=campaign_id, daily_budget=body.daily_budget
    )
    return {"campaign": campaign_to_dict(campaign)}
