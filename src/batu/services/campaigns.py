"""
batu.services.campaigns

Campaign changes shared by the REST API and the agent's mutation tools.

Responsibilities:
- Ownership-checked campaign lookups and KPI reads.
- Status, budget and creation changes that keep Meta-linked campaigns in
  sync: Meta is updated first, the local row only after Meta accepted it.

The `apply_*` / `create` methods only flush; the public `change_status`,
`update_budget` and `create_draft` own their transaction.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from batu.db.models import Campaign
from batu.db.repositories.campaigns import CampaignRepo, KpiRepo, MetaConnectionRepo, to_snapshot
from batu.domain.campaign import (
    CampaignObjective,
    CampaignStatus,
    ensure_transition,
    validate_campaign_name,
    validate_daily_budget,
)
from batu.domain.kpi import KpiSnapshot, aggregate
from batu.domain.plans import QuotaFeature
from batu.errors import NotFoundError
from batu.integrations.meta_ads import MetaAdsClient
from batu.observability.logging import get_logger
from batu.services.quota import QuotaService

log = get_logger(__name__)


def campaign_to_dict(c: Campaign) -> dict[str, Any]:
    return {
        "id": str(c.id),
        "name": c.name,
        "status": c.status.value,
        "objective": c.objective,
        "daily_budget": c.daily_budget,
        "currency": c.currency,
        "meta_campaign_id": c.meta_campaign_id,
    }


class CampaignService:
    def __init__(self, *, session: AsyncSession, meta: MetaAdsClient | None = None) -> None:
        self._session = session
        self._meta = meta

        self._campaigns = CampaignRepo(session)
        self._kpis = KpiRepo(session)
        self._connections = MetaConnectionRepo(session)

    async def get_owned(self, *, user_id: str, campaign_id: uuid.UUID) -> Campaign:
        campaign = await self._campaigns.get_owned(campaign_id=campaign_id, user_id=user_id)
        if campaign is None:
            raise NotFoundError("캠페인을 찾을 수 없습니다")
        return campaign

    async def list(self, *, user_id: str, status: CampaignStatus | None = None) -> list[Campaign]:
        return await self._campaigns.list_for_user(user_id=user_id, status=status)

    async def kpi(self, *, campaign_ids: list[uuid.UUID], start: date, end: date) -> KpiSnapshot:
        rows = await self._kpis.range_for_campaigns(campaign_ids=campaign_ids, start=start, end=end)
        return aggregate(to_snapshot(r) for r in rows)

    async def _meta_token(self, campaign: Campaign) -> str | None:
        # None means the change stays local (no Meta client, unlinked campaign or no connection).
        if self._meta is None or not campaign.meta_campaign_id:
            return None
        conn = await self._connections.get_for_user(campaign.user_id)
        return conn.access_token if conn else None

    async def apply_status(self, campaign: Campaign, target: CampaignStatus) -> None:
        ensure_transition(campaign.status, target)
        token = await self._meta_token(campaign)
        if token is not None and self._meta is not None and campaign.meta_campaign_id:
            await self._meta.update_campaign_status(
                access_token=token, campaign_id=campaign.meta_campaign_id, status=target.value
            )
        await self._campaigns.set_status(campaign, target)
        log.info("campaign_status_changed", campaign_id=str(campaign.id), status=target.value)

    async def apply_budget(self, campaign: Campaign, daily_budget: Any) -> int:
        budget = validate_daily_budget(daily_budget)
        token = await self._meta_token(campaign)
        if token is not None and self._meta is not None and campaign.meta_campaign_id:
            await self._meta.update_campaign_budget(
                access_token=token, campaign_id=campaign.meta_campaign_id, daily_budget=budget
            )
        await self._campaigns.set_daily_budget(campaign, budget)
        log.info("campaign_budget_changed", campaign_id=str(campaign.id), daily_budget=budget)
        return budget

    async def create(
        self,
        *,
        user_id: str,
        name: str,
        objective: CampaignObjective,
        daily_budget: Any,
        publish: bool = True,
    ) -> Campaign:
        """
        Create a campaign. With `publish` and a Meta connection it is created on
        Meta first (always PAUSED there); otherwise it is a local DRAFT.
        """

        name = validate_campaign_name(name)
        budget = validate_daily_budget(daily_budget)
        conn = await self._connections.get_for_user(user_id) if publish else None
        if conn is not None and self._meta is not None:
            remote = await self._meta.create_campaign(
                access_token=conn.access_token,
                ad_account_id=conn.ad_account_id,
                name=name,
                objective=objective.value,
                daily_budget=budget,
            )
            return await self._campaigns.create(
                user_id=user_id,
                name=name,
                objective=objective.value,
                daily_budget=budget,
                status=CampaignStatus.paused,
                meta_campaign_id=remote.id,
            )
        return await self._campaigns.create(
            user_id=user_id, name=name, objective=objective.value, daily_budget=budget
        )

    async def create_draft(
        self,
        *,
        user_id: str,
        name: str,
        objective: CampaignObjective,
        daily_budget: int,
        now: datetime | None = None,
    ) -> Campaign:
        campaign = await self.create(
            user_id=user_id, name=name, objective=objective, daily_budget=daily_budget, publish=False
        )
        # Checked and recorded together; a refused quota leaves nothing committed.
        await QuotaService(session=self._session).consume(
            user_id=user_id, feature=QuotaFeature.campaign_create, now=now
        )
        await self._session.commit()
        return campaign

    async def change_status(
        self, *, user_id: str, campaign_id: uuid.UUID, target: CampaignStatus
    ) -> Campaign:
        campaign = await self.get_owned(user_id=user_id, campaign_id=campaign_id)
        await self.apply_status(campaign, target)
        await self._session.commit()
        return campaign

    async def update_budget(
        self, *, user_id: str, campaign_id: uuid.UUID, daily_budget: int
    ) -> Campaign:
        campaign = await self.get_owned(user_id=user_id, campaign_id=campaign_id)
        await self.apply_budget(campaign, daily_budget)
        await self._session.commit()
        return campaign
