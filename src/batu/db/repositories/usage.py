"""
batu.db.repositories.usage

Repository for `UsageLog` rows (append-only usage counters).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from batu.db.models import UsageLog


class UsageRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def log(self, *, user_id: str, feature: str, at: datetime | None = None) -> UsageLog:
        row = UsageLog(user_id=user_id, feature=feature)
        if at is not None:
            row.created_at = at
        self._session.add(row)
        await self._session.flush()
        return row

    async def count_since(self, *, user_id: str, feature: str, since: datetime) -> int:
        stmt = select(func.count(UsageLog.id)).where(
            UsageLog.user_id == user_id,
            UsageLog.feature == feature,
            UsageLog.created_at >= since,
        )
        return int((await self._session.execute(stmt)).scalar_one())
