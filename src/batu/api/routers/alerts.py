from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from batu.api.deps import db_session
from batu.auth.deps import get_principal, require_roles
from batu.auth.models import ROLE_ADVERTISER, Principal
from batu.db.repositories.alerts import AlertRepo

router = APIRouter(
    prefix="/v1/alerts",
    tags=["alerts"],
    dependencies=[Depends(require_roles(ROLE_ADVERTISER))],
)


class MarkReadRequest(BaseModel):
    alert_ids: list[uuid.UUID] = Field(min_length=1, max_length=100)


@router.get("")
async def list_alerts(
    unread_only: bool = False,
    limit: int = 50,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(db_session),
) -> dict[str, Any]:
    alerts = await AlertRepo(session).list_for_user(
        user_id=principal.user_id, unread_only=unread_only, limit=max(1, min(limit, 200))
    )
    return {
        "alerts": [
            {
                "id": str(a.id),
                "campaign_id": str(a.campaign_id) if a.campaign_id else None,
                "type": a.type,
                "severity": a.severity.value,
                "title": a.title,
                "message": a.message,
                "data": a.data,
                "is_read": a.is_read,
                "created_at": a.created_at.isoformat(),
            }
            for a in alerts
        ]
    }


@router.post("/read")
async def mark_read(
    body: MarkReadRequest,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(db_session),
) -> dict[str, int]:
    updated = await AlertRepo(session).mark_read(user_id=principal.user_id, alert_ids=body.alert_ids)
    await session.commit()
    return {"updated": updated}
