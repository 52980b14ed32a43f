"""
tests.test_pixels

Conversion event queue: dedupe on enqueue, batched flush, expiry and give-up.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta

import httpx
import pytest
from conftest import FakeUpstream, make_settings
from sqlalchemy import select

from batu.db.models import ConversionEvent, ConversionEventStatus
from batu.db.repositories.campaigns import MetaConnectionRepo
from batu.errors import ConflictError, NotFoundError
from batu.integrations.capi import CapiClient, CapiEvent
from batu.services.pixel import MAX_SEND_ATTEMPTS, PixelService

USER = "user-1"


def _event(event_id: str, name: str = "Purchase") -> CapiEvent:
    return CapiEvent(
        event_name=name,
        event_time=datetime.utcnow(),
        event_id=event_id,
        user_data={"em": "buyer@example.com"},
        custom_data={"value": 39000, "currency": "KRW"},
    )


async def _statuses(session) -> dict[str, ConversionEventStatus]:
    # Column selects bypass the identity map, so bulk updates are visible.
    rows = await session.execute(select(ConversionEvent.event_id, ConversionEvent.status))
    return {event_id: status for event_id, status in rows.all()}


@pytest.mark.asyncio
async def test_register_and_enqueue_dedupes(session, upstream: FakeUpstream) -> None:
    async with upstream.client() as http:
        svc = PixelService(session=session, capi=CapiClient(settings=make_settings(), http=http))
        pixel = await svc.register(user_id=USER, meta_pixel_id="999", name="쇼핑몰 픽셀")

        with pytest.raises(ConflictError):
            await svc.register(user_id="user-2", meta_pixel_id="999", name="중복")

        first = await svc.enqueue(user_id=USER, pixel_id=pixel.id, events=[_event("o-1"), _event("o-2")])
        second = await svc.enqueue(user_id=USER, pixel_id=pixel.id, events=[_event("o-2"), _event("o-3")])

        with pytest.raises(NotFoundError):
            await svc.enqueue(user_id="user-2", pixel_id=pixel.id, events=[_event("o-4")])
        with pytest.raises(NotFoundError):
            await svc.enqueue(user_id=USER, pixel_id=uuid.uuid4(), events=[_event("o-5")])

        assert [p.meta_pixel_id for p in await svc.list_pixels(USER)] == ["999"]

    assert (first.queued, first.duplicates) == (2, 0)
    assert (second.queued, second.duplicates) == (1, 1)
    assert set(await _statuses(session)) == {"o-1", "o-2", "o-3"}
    # Nothing leaves the service until a flush.
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_flush_sends_hashed_events(session, upstream: FakeUpstream) -> None:
    upstream.on("POST", "/999/events", httpx.Response(200, json={"events_received": 2}))
    await MetaConnectionRepo(session).upsert(user_id=USER, ad_account_id="act_1", access_token="tok")

    async with upstream.client() as http:
        svc = PixelService(session=session, capi=CapiClient(settings=make_settings(), http=http))
        pixel = await svc.register(
            user_id=USER, meta_pixel_id="999", name="쇼핑몰 픽셀", test_event_code="TEST42"
        )
        await svc.enqueue(user_id=USER, pixel_id=pixel.id, events=[_event("o-1"), _event("o-2")])

        result = await svc.flush()
        again = await svc.flush()

    assert (result.processed, result.sent, result.failed, result.expired) == (2, 2, 0, 0)
    assert again.processed == 0

    body = upstream.json_body(0)
    assert body["access_token"] == "tok"
    assert body["test_event_code"] == "TEST42"
    assert sorted(e["event_id"] for e in body["data"]) == ["o-1", "o-2"]
    assert "buyer@example.com" not in str(body)
    assert set((await _statuses(session)).values()) == {ConversionEventStatus.sent}


@pytest.mark.asyncio
async def test_flush_without_connection_gives_up_after_retries(session, upstream: FakeUpstream) -> None:
    async with upstream.client() as http:
        svc = PixelService(session=session, capi=CapiClient(settings=make_settings(), http=http))
        pixel = await svc.register(user_id=USER, meta_pixel_id="999", name="쇼핑몰 픽셀")
        await svc.enqueue(user_id=USER, pixel_id=pixel.id, events=[_event("o-1")])

        for _ in range(MAX_SEND_ATTEMPTS):
            result = await svc.flush()
            assert result.errors == [f"{pixel.id}: no meta connection"]
            assert (await _statuses(session))["o-1"] == ConversionEventStatus.pending

        final = await svc.flush()

    assert final.failed == 1
    assert (await _statuses(session))["o-1"] == ConversionEventStatus.failed
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_capi_error_is_recorded_for_retry(session, upstream: FakeUpstream) -> None:
    upstream.on(
        "POST",
        "/999/events",
        httpx.Response(400, json={"error": {"message": "Invalid parameter", "code": 100}}),
        httpx.Response(200, json={"events_received": 1}),
    )
    await MetaConnectionRepo(session).upsert(user_id=USER, ad_account_id="act_1", access_token="tok")

    async with upstream.client() as http:
        svc = PixelService(session=session, capi=CapiClient(settings=make_settings(), http=http))
        pixel = await svc.register(user_id=USER, meta_pixel_id="999", name="쇼핑몰 픽셀")
        await svc.enqueue(user_id=USER, pixel_id=pixel.id, events=[_event("o-1")])

        failed = await svc.flush()
        retried = await svc.flush()

    assert failed.errors == ["999: Invalid parameter"]
    assert failed.sent == 0
    assert retried.sent == 1
    row = (await session.execute(select(ConversionEvent.attempts, ConversionEvent.last_error))).one()
    assert tuple(row) == (1, "Invalid parameter")


@pytest.mark.asyncio
async def test_stale_events_expire_unsent(session, upstream: FakeUpstream) -> None:
    await MetaConnectionRepo(session).upsert(user_id=USER, ad_account_id="act_1", access_token="tok")
    async with upstream.client() as http:
        svc = PixelService(session=session, capi=CapiClient(settings=make_settings(), http=http))
        pixel = await svc.register(user_id=USER, meta_pixel_id="999", name="쇼핑몰 픽셀")
        await svc.enqueue(user_id=USER, pixel_id=pixel.id, events=[_event("o-1")])

        result = await svc.flush(now=datetime.utcnow() + timedelta(days=8))

    assert (result.processed, result.expired, result.sent) == (1, 1, 0)
    assert (await _statuses(session))["o-1"] == ConversionEventStatus.expired
    assert upstream.requests == []
