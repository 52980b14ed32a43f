"""
batu.db.repositories.pixels

Repository for `Pixel` and `ConversionEvent` (the outbound CAPI queue).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from batu.db.models import ConversionEvent, ConversionEventStatus, Pixel


class PixelRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        user_id: str,
        meta_pixel_id: str,
        name: str,
        test_event_code: str | None = None,
    ) -> Pixel:
        pixel = Pixel(
            user_id=user_id,
            meta_pixel_id=meta_pixel_id,
            name=name,
            test_event_code=test_event_code,
        )
        self._session.add(pixel)
        await self._session.flush()
        return pixel

    async def get(self, pixel_id: uuid.UUID) -> Pixel | None:
        return await self._session.get(Pixel, pixel_id)

    async def get_by_meta_id(self, meta_pixel_id: str) -> Pixel | None:
        stmt = select(Pixel).where(Pixel.meta_pixel_id == meta_pixel_id)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def list_for_user(self, user_id: str) -> list[Pixel]:
        stmt = select(Pixel).where(Pixel.user_id == user_id).order_by(Pixel.created_at)
        return list((await self._session.execute(stmt)).scalars().all())


class ConversionEventRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def enqueue(
        self,
        *,
        pixel_id: uuid.UUID,
        event_name: str,
        event_id: str,
        payload: dict[str, Any],
    ) -> ConversionEvent | None:
        """
        Returns None when the (pixel, event_id) pair was already queued, matching
        Meta's own event_id deduplication.
        """

        stmt = select(ConversionEvent.id).where(
            ConversionEvent.pixel_id == pixel_id,
            ConversionEvent.event_id == event_id,
        )
        if (await self._session.execute(stmt)).first() is not None:
            return None
        event = ConversionEvent(
            pixel_id=pixel_id,
            event_name=event_name,
            event_id=event_id,
            payload=payload,
            status=ConversionEventStatus.pending,
            attempts=0,
        )
        self._session.add(event)
        await self._session.flush()
        return event

    async def find_unsent(self, *, limit: int) -> list[ConversionEvent]:
        stmt = (
            select(ConversionEvent)
            .where(ConversionEvent.status == ConversionEventStatus.pending)
            .order_by(ConversionEvent.created_at)
            .limit(limit)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def mark(
        self,
        *,
        event_ids: list[uuid.UUID],
        status: ConversionEventStatus,
        sent_at: datetime | None = None,
    ) -> None:
        if not event_ids:
            return
        values: dict[str, Any] = {"status": status}
        if sent_at is not None:
            values["sent_at"] = sent_at
        await self._session.execute(
            update(ConversionEvent)
            .where(ConversionEvent.id.in_(event_ids))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self._session.flush()

    async def record_failure(self, *, events: list[ConversionEvent], error: str) -> None:
        for event in events:
            event.attempts += 1
            event.last_error = error
        await self._session.flush()
