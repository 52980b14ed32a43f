from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.status import HTTP_404_NOT_FOUND

from batu.api.deps import db_session
from batu.auth.deps import get_principal, require_roles
from batu.auth.models import ROLE_ADVERTISER, Principal
from batu.db.models import MetaConnection
from batu.db.repositories.campaigns import MetaConnectionRepo
from batu.observability.logging import get_logger

log = get_logger(__name__)

router = APIRouter(
    prefix="/v1/meta",
    tags=["meta"],
    dependencies=[Depends(require_roles(ROLE_ADVERTISER))],
)


class ConnectionRequest(BaseModel):
    ad_account_id: str = Field(pattern=r"^act_\d+$")
    access_token: str = Field(min_length=1, repr=False)
    token_expires_at: datetime | None = None


def _connection_dict(conn: MetaConnection) -> dict[str, Any]:
    # The access token is write-only.
    return {
        "ad_account_id": conn.ad_account_id,
        "token_expires_at": conn.token_expires_at.isoformat() if conn.token_expires_at else None,
        "updated_at": conn.updated_at.isoformat(),
    }


@router.get("/connection")
async def get_connection(
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(db_session),
) -> dict[str, Any]:
    conn = await MetaConnectionRepo(session).get_for_user(principal.user_id)
    if conn is None:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Meta account not connected")
    return {"connection": _connection_dict(conn)}


@router.put("/connection")
async def put_connection(
    body: ConnectionRequest,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(db_session),
) -> dict[str, Any]:
    conn = await MetaConnectionRepo(session).upsert(
        user_id=principal.user_id,
        ad_account_id=body.ad_account_id,
        access_token=body.access_token,
        token_expires_at=body.token_expires_at,
    )
    await session.commit()
    log.info("meta_connected", ad_account_id=body.ad_account_id)
    return {"connection": _connection_dict(conn)}
