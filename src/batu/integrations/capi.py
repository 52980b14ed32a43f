"""
batu.integrations.capi

Meta Conversions API (server-side pixel events).

Responsibilities:
- Normalize and SHA-256 hash customer PII before it leaves the service.
- Send events to `/{pixel_id}/events` in batches of at most 1000.
"""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import httpx

from batu.errors import MetaApiError
from batu.settings import Settings

MAX_BATCH_SIZE = 1000

HASHED_FIELDS = ("em", "ph", "fn", "ln", "ct", "st", "zp", "country", "external_id")
PASSTHROUGH_FIELDS = ("client_ip_address", "client_user_agent", "fbc", "fbp")


@dataclass(frozen=True, slots=True)
class CapiEvent:
    event_name: str
    event_time: datetime
    event_id: str
    event_source_url: str | None = None
    action_source: str = "website"
    user_data: dict[str, str] = field(default_factory=dict)
    custom_data: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class CapiResponse:
    events_received: int
    messages: list[str] = field(default_factory=list)
    fbtrace_id: str | None = None


def sha256_normalized(value: str) -> str:
    return hashlib.sha256(value.strip().lower().encode("utf-8")).hexdigest()


def hash_user_data(user_data: dict[str, str]) -> dict[str, str] | None:
    out: dict[str, str] = {}
    for key in HASHED_FIELDS:
        if user_data.get(key):
            out[key] = sha256_normalized(user_data[key])
    for key in PASSTHROUGH_FIELDS:
        if user_data.get(key):
            out[key] = user_data[key]
    return out or None


def _epoch_seconds(value: datetime) -> int:
    # Naive datetimes are UTC throughout the service.
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(value.timestamp())


def format_event(event: CapiEvent) -> dict[str, Any]:
    body: dict[str, Any] = {
        "event_name": event.event_name,
        "event_time": _epoch_seconds(event.event_time),
        "event_id": event.event_id,
        "action_source": event.action_source or "website",
    }
    if event.event_source_url:
        body["event_source_url"] = event.event_source_url
    user_data = hash_user_data(event.user_data)
    if user_data:
        body["user_data"] = user_data
    if event.custom_data:
        body["custom_data"] = event.custom_data
    return body


class CapiClient:
    def __init__(self, *, settings: Settings, http: httpx.AsyncClient) -> None:
        self._base_url = settings.meta_graph_base_url.rstrip("/")
        self._timeout = settings.meta_timeout_seconds
        self._http = http

    async def _send_batch(
        self,
        *,
        access_token: str,
        pixel_id: str,
        events: list[dict[str, Any]],
        test_event_code: str | None = None,
    ) -> CapiResponse:
        body: dict[str, Any] = {"data": events, "access_token": access_token}
        if test_event_code:
            body["test_event_code"] = test_event_code
        try:
            r = await self._http.post(
                f"{self._base_url}/{pixel_id}/events", json=body, timeout=self._timeout
            )
        except httpx.HTTPError as e:
            raise MetaApiError(f"CAPI request failed: {e}") from e

        try:
            data = r.json()
        except ValueError:
            data = {}
        error = data.get("error") if isinstance(data, dict) else None
        if r.status_code >= 400 or error:
            error = error or {}
            raise MetaApiError(
                str(error.get("message") or f"CAPI error ({r.status_code})"),
                status=r.status_code,
                error_code=error.get("code"),
            )
        return CapiResponse(
            events_received=int(data.get("events_received", 0)),
            messages=list(data.get("messages") or []),
            fbtrace_id=data.get("fbtrace_id"),
        )

    async def send_events(
        self,
        *,
        access_token: str,
        pixel_id: str,
        events: list[dict[str, Any]],
        test_event_code: str | None = None,
    ) -> CapiResponse:
        """
        Send already formatted events; lists longer than the Graph limit are split.
        """

        received = 0
        messages: list[str] = []
        trace_id: str | None = None
        for start in range(0, len(events), MAX_BATCH_SIZE):
            resp = await self._send_batch(
                access_token=access_token,
                pixel_id=pixel_id,
                events=events[start : start + MAX_BATCH_SIZE],
                test_event_code=test_event_code,
            )
            received += resp.events_received
            messages.extend(resp.messages)
            trace_id = resp.fbtrace_id or trace_id
        return CapiResponse(events_received=received, messages=messages, fbtrace_id=trace_id)

    async def send_test_event(
        self, *, access_token: str, pixel_id: str, test_event_code: str
    ) -> CapiResponse:
        event = CapiEvent(
            event_name="PageView",
            event_time=datetime.utcnow(),
            event_id=f"test_{uuid.uuid4().hex}",
            user_data={"client_user_agent": "batu-capi-test"},
        )
        return await self._send_batch(
            access_token=access_token,
            pixel_id=pixel_id,
            events=[format_event(event)],
            test_event_code=test_event_code,
        )
