from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from batu.api.deps import pixel_service
from batu.auth.deps import get_principal, require_roles
from batu.auth.models import ROLE_ADVERTISER, Principal
from batu.db.models import Pixel
from batu.integrations.capi import MAX_BATCH_SIZE, CapiEvent
from batu.services.pixel import PixelService

router = APIRouter(
    prefix="/v1/pixels",
    tags=["pixels"],
    dependencies=[Depends(require_roles(ROLE_ADVERTISER))],
)


class RegisterPixelRequest(BaseModel):
    meta_pixel_id: str = Field(pattern=r"^\d+$")
    name: str = Field(min_length=1, max_length=255)
    test_event_code: str | None = None


class EventIn(BaseModel):
    event_name: str = Field(min_length=1, max_length=64)
    event_time: datetime | None = None
    event_id: str = Field(min_length=1, max_length=128)
    event_source_url: str | None = None
    action_source: str = "website"
    # Raw PII (em, ph, ...) is hashed before it is stored.
    user_data: dict[str, str] = Field(default_factory=dict)
    custom_data: dict[str, Any] | None = None


class EnqueueRequest(BaseModel):
    events: list[EventIn] = Field(min_length=1, max_length=MAX_BATCH_SIZE)


def _pixel_dict(p: Pixel) -> dict[str, Any]:
    return {
        "id": str(p.id),
        "meta_pixel_id": p.meta_pixel_id,
        "name": p.name,
        "test_event_code": p.test_event_code,
        "created_at": p.created_at.isoformat(),
    }


@router.get("")
async def list_pixels(
    principal: Principal = Depends(get_principal),
    svc: PixelService = Depends(pixel_service),
) -> dict[str, Any]:
    return {"pixels": [_pixel_dict(p) for p in await svc.list_pixels(principal.user_id)]}


@router.post("", status_code=201)
async def register_pixel(
    body: RegisterPixelRequest,
    principal: Principal = Depends(get_principal),
    svc: PixelService = Depends(pixel_service),
) -> dict[str, Any]:
    pixel = await svc.register(
        user_id=principal.user_id,
        meta_pixel_id=body.meta_pixel_id,
        name=body.name,
        test_event_code=body.test_event_code,
    )
    return {"pixel": _pixel_dict(pixel)}


@router.post("/{pixel_id}/events", status_code=202)
async def enqueue_events(
    pixel_id: uuid.UUID,
    body: EnqueueRequest,
    principal: Principal = Depends(get_principal),
    svc: PixelService = Depends(pixel_service),
) -> dict[str, int]:
    now = datetime.utcnow()
    events = [
        CapiEvent(
            event_name=e.event_name,
            event_time=e.event_time or now,
            event_id=e.event_id,
            event_source_url=e.event_source_url,
            action_source=e.action_source,
            user_data=e.user_data,
            custom_data=e.custom_data,
        )
        for e in body.events
    ]
    result = await svc.enqueue(user_id=principal.user_id, pixel_id=pixel_id, events=events)
    return {"queued": result.queued, "duplicates": result.duplicates}
