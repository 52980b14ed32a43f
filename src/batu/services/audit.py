"""
batu.services.audit

Free ad-account audit funnel.

Responsibilities:
- Pull campaigns and last-30-day insights for an ad account from Meta.
- Score them (`AuditScore`), persist the report and cache it per ad account and token.
- Issue and verify signed, expiring share tokens for a report.
"""

from __future__ import annotations

import hashlib
import hmac
import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from batu.db.models import AuditReport
from batu.db.repositories.audits import AuditReportRepo
from batu.domain.audit_score import AuditScore, CampaignAuditData
from batu.errors import NotFoundError, PermissionDeniedError
from batu.integrations.meta_ads import MetaAdsClient
from batu.observability.logging import get_logger
from batu.services.cache import TTLCache
from batu.settings import Settings

log = get_logger(__name__)

_EPOCH = datetime(1970, 1, 1)


def _epoch(value: datetime) -> int:
    return int((value - _EPOCH).total_seconds())


def cache_key(ad_account_id: str, access_token: str) -> str:
    # A hit must prove the same credential, never just knowledge of the account id.
    digest = hashlib.sha256(access_token.encode("utf-8")).hexdigest()
    return f"{ad_account_id}:{digest}"


class AuditService:
    def __init__(
        self,
        *,
        session: AsyncSession,
        settings: Settings,
        meta: MetaAdsClient,
        cache: TTLCache[dict[str, Any]],
    ) -> None:
        self._session = session
        self._settings = settings
        self._meta = meta
        self._cache = cache
        self._reports = AuditReportRepo(session)

    def _sign(self, payload: str) -> str:
        key = self._settings.audit_share_secret.encode("utf-8")
        return hmac.new(key, payload.encode("utf-8"), hashlib.sha256).hexdigest()

    def share_token(self, report_id: uuid.UUID, *, now: datetime | None = None) -> str:
        now = now or datetime.utcnow()
        expires = _epoch(now + timedelta(days=self._settings.audit_share_ttl_days))
        payload = f"{report_id}.{expires}"
        return f"{payload}.{self._sign(payload)}"

    def verify_share_token(self, token: str, *, now: datetime | None = None) -> uuid.UUID:
        now = now or datetime.utcnow()
        parts = token.split(".")
        if len(parts) != 3:
            raise NotFoundError("유효하지 않은 공유 링크입니다")
        raw_id, raw_expires, signature = parts
        if not hmac.compare_digest(self._sign(f"{raw_id}.{raw_expires}"), signature):
            raise NotFoundError("유효하지 않은 공유 링크입니다")
        try:
            report_id = uuid.UUID(raw_id)
            expires = int(raw_expires)
        except ValueError as e:
            raise NotFoundError("유효하지 않은 공유 링크입니다") from e
        if _epoch(now) >= expires:
            raise PermissionDeniedError("공유 링크가 만료되었습니다")
        return report_id

    async def run(
        self,
        *,
        access_token: str,
        ad_account_id: str,
        user_id: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        key = cache_key(ad_account_id, access_token)
        cached = self._cache.get(key)
        if cached is not None:
            log.info("audit_cache_hit", ad_account_id=ad_account_id)
            return cached

        now = now or datetime.utcnow()
        campaigns = await self._meta.list_campaigns(
            access_token=access_token, ad_account_id=ad_account_id
        )
        insights = await self._meta.get_account_insights(
            access_token=access_token, ad_account_id=ad_account_id, date_preset="last_30d"
        )
        by_campaign = {i.campaign_id: i for i in insights}

        data: list[CampaignAuditData] = []
        for c in campaigns:
            ins = by_campaign.get(c.id)
            data.append(
                CampaignAuditData(
                    campaign_id=c.id,
                    campaign_name=c.name,
                    status=c.status,
                    daily_budget=float(c.daily_budget),
                    impressions=ins.impressions if ins else 0,
                    clicks=ins.clicks if ins else 0,
                    conversions=ins.conversions if ins else 0,
                    spend=ins.spend if ins else 0.0,
                    revenue=ins.revenue if ins else 0.0,
                    created_time=c.created_time,
                )
            )

        score = AuditScore.evaluate(data, now=now)
        active = sum(1 for c in campaigns if c.status == "ACTIVE")
        report = await self._reports.add(
            user_id=user_id,
            ad_account_id=ad_account_id,
            overall=score.overall,
            grade=score.grade,
            result=score.to_dict(),
            total_campaigns=len(campaigns),
            active_campaigns=active,
        )
        await self._session.commit()

        result = {
            "report_id": str(report.id),
            "ad_account_id": ad_account_id,
            "total_campaigns": len(campaigns),
            "active_campaigns": active,
            "score": score.to_dict(),
            "share_token": self.share_token(report.id, now=now),
        }
        self._cache.set(key, result)
        log.info(
            "audit_completed",
            ad_account_id=ad_account_id,
            overall=score.overall,
            grade=score.grade,
            campaigns=len(campaigns),
        )
        return result

    async def get_shared(self, token: str, *, now: datetime | None = None) -> AuditReport:
        report_id = self.verify_share_token(token, now=now)
        report = await self._reports.get(report_id)
        if report is None:
            raise NotFoundError("리포트를 찾을 수 없습니다")
        return report
