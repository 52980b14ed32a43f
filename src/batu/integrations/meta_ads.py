"""
batu.integrations.meta_ads

HTTP client boundary for the Meta Marketing (Graph) API.

Responsibilities:
- Attach the tenant's access token as a bearer credential.
- Map Graph API errors to `MetaApiError` and retry transient ones.
- Normalize campaign and insights payloads into small typed records.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Literal

import httpx

from batu.errors import MetaApiError
from batu.resilience import retrying
from batu.settings import Settings

DatePreset = Literal["today", "yesterday", "last_7d", "last_30d"]

CAMPAIGN_FIELDS = "id,name,status,objective,daily_budget,start_time,end_time,created_time"
INSIGHT_FIELDS = "campaign_id,campaign_name,impressions,clicks,spend,actions,action_values,date_start,date_stop"


@dataclass(frozen=True, slots=True)
class MetaCampaign:
    id: str
    name: str
    status: str
    objective: str
    daily_budget: int
    created_time: datetime | None = None


@dataclass(frozen=True, slots=True)
class MetaInsights:
    campaign_id: str
    impressions: int
    clicks: int
    spend: float
    conversions: int
    revenue: float
    date_start: str | None = None
    date_stop: str | None = None
    campaign_name: str | None = None


def _parse_time(raw: str | None) -> datetime | None:
    if not raw:
        return None
    # Graph returns e.g. "2024-01-15T09:30:00+0900"; store naive UTC.
    try:
        parsed = datetime.strptime(raw, "%Y-%m-%dT%H:%M:%S%z")
    except ValueError:
        return None
    return parsed.astimezone(UTC).replace(tzinfo=None)


def _purchase_value(items: list[dict[str, Any]] | None) -> str:
    for item in items or []:
        if item.get("action_type") == "purchase":
            return str(item.get("value", "0"))
    return "0"


def _map_campaign(raw: dict[str, Any]) -> MetaCampaign:
    return MetaCampaign(
        id=str(raw["id"]),
        name=str(raw.get("name", "")),
        status=str(raw.get("status", "")),
        objective=str(raw.get("objective", "")),
        daily_budget=int(raw.get("daily_budget") or 0),
        created_time=_parse_time(raw.get("created_time")),
    )


def _map_insights(campaign_id: str, raw: dict[str, Any] | None) -> MetaInsights:
    if not raw:
        return MetaInsights(
            campaign_id=campaign_id, impressions=0, clicks=0, spend=0.0, conversions=0, revenue=0.0
        )
    return MetaInsights(
        campaign_id=str(raw.get("campaign_id", campaign_id)),
        campaign_name=raw.get("campaign_name"),
        impressions=int(raw.get("impressions") or 0),
        clicks=int(raw.get("clicks") or 0),
        spend=float(raw.get("spend") or 0),
        conversions=int(float(_purchase_value(raw.get("actions")))),
        revenue=float(_purchase_value(raw.get("action_values"))),
        date_start=raw.get("date_start"),
        date_stop=raw.get("date_stop"),
    )


class MetaAdsClient:
    def __init__(
        self,
        *,
        settings: Settings,
        http: httpx.AsyncClient,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._base_url = settings.meta_graph_base_url.rstrip("/")
        self._timeout = settings.meta_timeout_seconds
        self._max_attempts = settings.meta_max_attempts
        self._http = http
        self._sleep = sleep

    async def _request_once(
        self,
        method: str,
        path: str,
        *,
        access_token: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            r = await self._http.request(
                method,
                f"{self._base_url}{path}",
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            raise MetaApiError(f"Meta API request failed: {e}") from e

        try:
            data = r.json()
        except ValueError:
            data = {}
        error = data.get("error") if isinstance(data, dict) else None
        if r.status_code >= 400 or error:
            error = error or {}
            raise MetaApiError(
                str(error.get("message") or f"Meta API error ({r.status_code})"),
                status=r.status_code,
                error_code=error.get("code"),
                details={"subcode": error.get("error_subcode")},
            )
        return data if isinstance(data, dict) else {}

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        policy = retrying(
            attempts=self._max_attempts,
            base_delay=0.2,
            is_retryable=lambda e: isinstance(e, MetaApiError) and e.is_transient,
            sleep=self._sleep,
            name=f"meta {method} {path}",
        )
        return await policy(self._request_once, method, path, **kwargs)

    async def list_campaigns(self, *, access_token: str, ad_account_id: str) -> list[MetaCampaign]:
        data = await self._request(
            "GET",
            f"/{ad_account_id}/campaigns",
            access_token=access_token,
            params={"fields": CAMPAIGN_FIELDS, "limit": 100},
        )
        return [_map_campaign(c) for c in data.get("data", [])]

    async def get_campaign(self, *, access_token: str, campaign_id: str) -> MetaCampaign | None:
        try:
            data = await self._request(
                "GET", f"/{campaign_id}", access_token=access_token, params={"fields": CAMPAIGN_FIELDS}
            )
        except MetaApiError as e:
            if e.is_not_found:
                return None
            raise
        return _map_campaign(data)

    async def get_campaign_insights(
        self, *, access_token: str, campaign_id: str, date_preset: DatePreset = "last_7d"
    ) -> MetaInsights:
        data = await self._request(
            "GET",
            f"/{campaign_id}/insights",
            access_token=access_token,
            params={"fields": INSIGHT_FIELDS, "date_preset": date_preset},
        )
        rows = data.get("data") or []
        return _map_insights(campaign_id, rows[0] if rows else None)

    async def get_account_insights(
        self, *, access_token: str, ad_account_id: str, date_preset: DatePreset = "last_30d"
    ) -> list[MetaInsights]:
        # One call for every campaign of the account (level=campaign).
        data = await self._request(
            "GET",
            f"/{ad_account_id}/insights",
            access_token=access_token,
            params={
                "fields": INSIGHT_FIELDS,
                "date_preset": date_preset,
                "level": "campaign",
                "limit": 500,
            },
        )
        return [_map_insights(str(row.get("campaign_id", "")), row) for row in data.get("data", [])]

    async def create_campaign(
        self,
        *,
        access_token: str,
        ad_account_id: str,
        name: str,
        objective: str,
        daily_budget: int,
    ) -> MetaCampaign:
        # New campaigns are always created PAUSED; activation is a separate, explicit step.
        body = {
            "name": name,
            "objective": objective,
            "status": "PAUSED",
            "special_ad_categories": [],
            "daily_budget": daily_budget,
        }
        data = await self._request(
            "POST", f"/{ad_account_id}/campaigns", access_token=access_token, json=body
        )
        return MetaCampaign(
            id=str(data["id"]),
            name=name,
            status="PAUSED",
            objective=objective,
            daily_budget=daily_budget,
        )

    async def update_campaign_status(
        self, *, access_token: str, campaign_id: str, status: Literal["ACTIVE", "PAUSED"]
    ) -> None:
        await self._request(
            "POST", f"/{campaign_id}", access_token=access_token, json={"status": status}
        )

    async def update_campaign_budget(
        self, *, access_token: str, campaign_id: str, daily_budget: int
    ) -> None:
        await self._request(
            "POST", f"/{campaign_id}", access_token=access_token, json={"daily_budget": daily_budget}
        )

    async def delete_campaign(self, *, access_token: str, campaign_id: str) -> None:
        await self._request("DELETE", f"/{campaign_id}", access_token=access_token)


# --- Module Notes -----------------------------------------------------------
# Insights report purchases as `actions`/`action_values` entries with
# action_type="purchase"; those become conversions and revenue here.
