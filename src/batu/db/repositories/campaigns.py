"""
batu.db.repositories.campaigns

Repository for `Campaign`, `KpiRecord` and `MetaConnection` entities.

Responsibilities:
- Tenant-scoped campaign lookups and updates.
- Daily KPI upserts and range reads.
- The caller's Meta access token / ad account.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from batu.db.models import Campaign, KpiRecord, MetaConnection
from batu.domain.campaign import CampaignStatus
from batu.domain.kpi import KpiSnapshot


class CampaignRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        user_id: str,
        name: str,
        objective: str,
        daily_budget: int,
        status: CampaignStatus = CampaignStatus.draft,
        meta_campaign_id: str | None = None,
        currency: str = "KRW",
    ) -> Campaign:
        campaign = Campaign(
            user_id=user_id,
            name=name,
            objective=objective,
            daily_budget=daily_budget,
            status=status,
            meta_campaign_id=meta_campaign_id,
            currency=currency,
        )
        self._session.add(campaign)
        await self._session.flush()
        return campaign

    async def get_owned(self, *, campaign_id: uuid.UUID, user_id: str) -> Campaign | None:
        stmt = select(Campaign).where(Campaign.id == campaign_id, Campaign.user_id == user_id)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def get(self, campaign_id: uuid.UUID) -> Campaign | None:
        return await self._session.get(Campaign, campaign_id)

    async def list_for_user(
        self, *, user_id: str, status: CampaignStatus | None = None
    ) -> list[Campaign]:
        stmt = select(Campaign).where(Campaign.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Campaign.status == status)
        stmt = stmt.order_by(desc(Campaign.created_at))
        return list((await self._session.execute(stmt)).scalars().all())

    async def set_status(self, campaign: Campaign, status: CampaignStatus) -> None:
        campaign.status = status
        campaign.updated_at = datetime.utcnow()
        await self._session.flush()

    async def set_daily_budget(self, campaign: Campaign, daily_budget: int) -> None:
        campaign.daily_budget = daily_budget
        campaign.updated_at = datetime.utcnow()
        await self._session.flush()


class KpiRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def upsert_daily(
        self, *, campaign_id: uuid.UUID, day: date, snapshot: KpiSnapshot
    ) -> KpiRecord:
        stmt = select(KpiRecord).where(KpiRecord.campaign_id == campaign_id, KpiRecord.day == day)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            row = KpiRecord(campaign_id=campaign_id, day=day)
            self._session.add(row)
        row.impressions = snapshot.impressions
        row.clicks = snapshot.clicks
        row.conversions = snapshot.conversions
        row.spend = snapshot.spend
        row.revenue = snapshot.revenue
        await self._session.flush()
        return row

    async def range_for_campaigns(
        self, *, campaign_ids: list[uuid.UUID], start: date, end: date
    ) -> list[KpiRecord]:
        if not campaign_ids:
            return []
        stmt = (
            select(KpiRecord)
            .where(
                KpiRecord.campaign_id.in_(campaign_ids),
                KpiRecord.day >= start,
                KpiRecord.day <= end,
            )
            .order_by(KpiRecord.day)
        )
        return list((await self._session.execute(stmt)).scalars().all())


def to_snapshot(row: KpiRecord) -> KpiSnapshot:
    return KpiSnapshot(
        impressions=row.impressions,
        clicks=row.clicks,
        conversions=row.conversions,
        spend=row.spend,
        revenue=row.revenue,
    )


class MetaConnectionRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_for_user(self, user_id: str) -> MetaConnection | None:
        stmt = select(MetaConnection).where(MetaConnection.user_id == user_id)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def upsert(
        self,
        *,
        user_id: str,
        ad_account_id: str,
        access_token: str,
        token_expires_at: datetime | None = None,
    ) -> MetaConnection:
        conn = await self.get_for_user(user_id)
        if conn is None:
            conn = MetaConnection(user_id=user_id, ad_account_id=ad_account_id, access_token="")
            self._session.add(conn)
        conn.ad_account_id = ad_account_id
        conn.access_token = access_token
        conn.token_expires_at = token_expires_at
        conn.updated_at = datetime.utcnow()
        await self._session.flush()
        return conn
