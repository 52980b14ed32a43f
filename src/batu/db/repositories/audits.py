from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from batu.db.models import AuditReport


class AuditReportRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(
        self,
        *,
        user_id: str | None,
        ad_account_id: str,
        overall: int,
        grade: str,
        result: dict[str, Any],
        total_campaigns: int,
        active_campaigns: int,
    ) -> AuditReport:
        report = AuditReport(
            user_id=user_id,
            ad_account_id=ad_account_id,
            overall=overall,
            grade=grade,
            result=result,
            total_campaigns=total_campaigns,
            active_campaigns=active_campaigns,
        )
        self._session.add(report)
        await self._session.flush()
        return report

    async def get(self, report_id: uuid.UUID) -> AuditReport | None:
        return await self._session.get(AuditReport, report_id)
