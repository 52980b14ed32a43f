"""
batu.services.pixel

Pixel registration and the outbound Conversions API queue (transaction owner).

Responsibilities:
- Register Meta pixels for a user.
- Hash and enqueue conversion events (deduplicated on `event_id`).
- Flush pending events to CAPI per pixel; expire stale ones and give up after
  repeated failures.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from batu.db.models import ConversionEvent, ConversionEventStatus, Pixel
from batu.db.repositories.campaigns import MetaConnectionRepo
from batu.db.repositories.pixels import ConversionEventRepo, PixelRepo
from batu.errors import ConflictError, MetaApiError, NotFoundError
from batu.integrations.capi import MAX_BATCH_SIZE, CapiClient, CapiEvent, format_event
from batu.observability.logging import get_logger

log = get_logger(__name__)

# Meta rejects events whose event_time is older than seven days.
EVENT_MAX_AGE = timedelta(days=7)
MAX_SEND_ATTEMPTS = 3


@dataclass(frozen=True, slots=True)
class EnqueueResult:
    queued: int
    duplicates: int


@dataclass
class FlushResult:
    processed: int = 0
    sent: int = 0
    expired: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


class PixelService:
    def __init__(self, *, session: AsyncSession, capi: CapiClient) -> None:
        self._session = session
        self._capi = capi

        self._pixels = PixelRepo(session)
        self._events = ConversionEventRepo(session)
        self._connections = MetaConnectionRepo(session)

    async def register(
        self,
        *,
        user_id: str,
        meta_pixel_id: str,
        name: str,
        test_event_code: str | None = None,
    ) -> Pixel:
        if await self._pixels.get_by_meta_id(meta_pixel_id) is not None:
            raise ConflictError("이미 등록된 픽셀입니다", details={"meta_pixel_id": meta_pixel_id})
        pixel = await self._pixels.create(
            user_id=user_id,
            meta_pixel_id=meta_pixel_id,
            name=name,
            test_event_code=test_event_code,
        )
        await self._session.commit()
        log.info("pixel_registered", user_id=user_id, meta_pixel_id=meta_pixel_id)
        return pixel

    async def list_pixels(self, user_id: str) -> list[Pixel]:
        return await self._pixels.list_for_user(user_id)

    async def enqueue(
        self, *, user_id: str, pixel_id: uuid.UUID, events: list[CapiEvent]
    ) -> EnqueueResult:
        pixel = await self._pixels.get(pixel_id)
        if pixel is None or pixel.user_id != user_id:
            raise NotFoundError("픽셀을 찾을 수 없습니다")

        queued = duplicates = 0
        for event in events:
            row = await self._events.enqueue(
                pixel_id=pixel.id,
                event_name=event.event_name,
                event_id=event.event_id,
                payload=format_event(event),
            )
            if row is None:
                duplicates += 1
            else:
                queued += 1
        await self._session.commit()
        return EnqueueResult(queued=queued, duplicates=duplicates)

    async def flush(self, *, now: datetime | None = None) -> FlushResult:
        now = now or datetime.utcnow()
        pending = await self._events.find_unsent(limit=MAX_BATCH_SIZE)
        result = FlushResult(processed=len(pending))

        stale = [e for e in pending if now - e.created_at > EVENT_MAX_AGE]
        exhausted = [
            e for e in pending if e not in stale and e.attempts >= MAX_SEND_ATTEMPTS
        ]
        await self._events.mark(
            event_ids=[e.id for e in stale], status=ConversionEventStatus.expired
        )
        await self._events.mark(
            event_ids=[e.id for e in exhausted], status=ConversionEventStatus.failed
        )
        result.expired = len(stale)
        result.failed = len(exhausted)

        by_pixel: dict[uuid.UUID, list[ConversionEvent]] = defaultdict(list)
        for e in pending:
            if e not in stale and e not in exhausted:
                by_pixel[e.pixel_id].append(e)

        for pixel_id, group in by_pixel.items():
            pixel = await self._pixels.get(pixel_id)
            conn = await self._connections.get_for_user(pixel.user_id) if pixel else None
            if pixel is None or conn is None:
                await self._events.record_failure(events=group, error="no meta connection")
                result.errors.append(f"{pixel_id}: no meta connection")
                continue

            try:
                resp = await self._capi.send_events(
                    access_token=conn.access_token,
                    pixel_id=pixel.meta_pixel_id,
                    events=[e.payload for e in group],
                    test_event_code=pixel.test_event_code,
                )
            except MetaApiError as e:
                await self._events.record_failure(events=group, error=e.message)
                result.errors.append(f"{pixel.meta_pixel_id}: {e.message}")
                log.warning("capi_send_failed", pixel=pixel.meta_pixel_id, error=e.message)
                continue

            await self._events.mark(
                event_ids=[e.id for e in group], status=ConversionEventStatus.sent, sent_at=now
            )
            result.sent += len(group)
            log.info(
                "capi_sent",
                pixel=pixel.meta_pixel_id,
                events=len(group),
                received=resp.events_received,
            )

        await self._session.commit()
        return result
