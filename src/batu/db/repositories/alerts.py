from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import desc, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from batu.db.models import Alert, AlertSeverity


class AlertRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(
        self,
        *,
        user_id: str,
        type: str,
        severity: AlertSeverity,
        title: str,
        message: str,
        campaign_id: uuid.UUID | None = None,
        data: dict[str, Any] | None = None,
    ) -> Alert:
        alert = Alert(
            user_id=user_id,
            campaign_id=campaign_id,
            type=type,
            severity=severity,
            title=title,
            message=message,
            data=data or {},
            is_read=False,
        )
        self._session.add(alert)
        await self._session.flush()
        return alert

    async def list_for_user(
        self, *, user_id: str, unread_only: bool = False, limit: int = 50
    ) -> list[Alert]:
        stmt = select(Alert).where(Alert.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Alert.is_read.is_(False))
        stmt = stmt.order_by(desc(Alert.created_at)).limit(limit)
        return list((await self._session.execute(stmt)).scalars().all())

    async def mark_read(self, *, user_id: str, alert_ids: list[uuid.UUID]) -> int:
        if not alert_ids:
            return 0
        stmt = (
            update(Alert)
            .where(Alert.user_id == user_id, Alert.id.in_(alert_ids))
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return int(result.rowcount or 0)
