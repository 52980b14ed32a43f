"""
batu.api.routers.health

Liveness (`/healthz`) and readiness (`/readyz`) endpoints.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from batu.api.deps import db_session

router = APIRouter()


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(request: Request, session: AsyncSession = Depends(db_session)) -> dict[str, Any]:
    await session.execute(text("SELECT 1"))
    # The agent degrades to 503 on chat without a model; everything else still serves.
    agent = "enabled" if getattr(request.app.state, "llm", None) is not None else "disabled"
    return {"status": "ready", "database": "ok", "agent": agent}


# --- Module Notes -----------------------------------------------------------
# A database failure propagates to the 500 handler, which is what readiness
# gating needs. The agent flag is informational and never fails readiness.
