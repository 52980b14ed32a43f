"""
batu.api.routers.audit

Free ad-account audit funnel.

Responsibilities:
- Run an audit for an ad account with a caller-supplied Meta token (no login needed).
- Serve a shared report by its signed token.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from batu.api.deps import audit_service
from batu.services.audit import AuditService

router = APIRouter(prefix="/v1/audit", tags=["audit"])


class AuditRequest(BaseModel):
    access_token: str = Field(min_length=1, repr=False)
    ad_account_id: str = Field(pattern=r"^act_\d+$")


@router.post("")
async def run_audit(
    body: AuditRequest,
    svc: AuditService = Depends(audit_service),
) -> dict[str, Any]:
    return await svc.run(access_token=body.access_token, ad_account_id=body.ad_account_id)


@router.get("/shared/{token}")
async def get_shared(
    token: str,
    svc: AuditService = Depends(audit_service),
) -> dict[str, Any]:
    report = await svc.get_shared(token)
    return {
        "report_id": str(report.id),
        "ad_account_id": report.ad_account_id,
        "total_campaigns": report.total_campaigns,
        "active_campaigns": report.active_campaigns,
        "score": report.result,
        "created_at": report.created_at.isoformat(),
    }
