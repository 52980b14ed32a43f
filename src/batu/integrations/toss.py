"""
batu.integrations.toss

HTTP client boundary for Toss Payments recurring billing.

Responsibilities:
- Exchange a card `authKey` for a reusable billing key.
- Charge a billing key for a subscription period.
- Cancel (refund) a payment.

Auth is HTTP Basic with the secret key as username and an empty password.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from batu.errors import TossApiError
from batu.settings import Settings


@dataclass(frozen=True, slots=True)
class IssuedBillingKey:
    billing_key: str
    customer_key: str
    card_company: str | None
    card_number_masked: str | None


@dataclass(frozen=True, slots=True)
class ChargeResult:
    payment_key: str
    order_id: str
    status: str
    total_amount: int
    approved_at: str | None
    raw: dict[str, Any]


class TossPaymentsClient:
    def __init__(self, *, settings: Settings, http: httpx.AsyncClient) -> None:
        self._base_url = settings.toss_base_url.rstrip("/")
        self._auth = httpx.BasicAuth(settings.toss_secret_key, "")
        self._http = http

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            r = await self._http.post(f"{self._base_url}{path}", json=body, auth=self._auth)
        except httpx.HTTPError as e:
            raise TossApiError(f"Toss request failed: {e}") from e

        try:
            data = r.json()
        except ValueError:
            data = {}
        if r.status_code >= 400:
            raise TossApiError(
                str(data.get("message") or f"Toss error ({r.status_code})"),
                status=r.status_code,
                error_code=data.get("code"),
            )
        return data

    async def issue_billing_key(self, *, auth_key: str, customer_key: str) -> IssuedBillingKey:
        data = await self._post(
            "/v1/billing/authorizations/issue",
            {"authKey": auth_key, "customerKey": customer_key},
        )
        card = data.get("card") or {}
        return IssuedBillingKey(
            billing_key=str(data["billingKey"]),
            customer_key=str(data.get("customerKey", customer_key)),
            card_company=data.get("cardCompany") or card.get("issuerCode"),
            card_number_masked=data.get("cardNumber") or card.get("number"),
        )

    async def charge_billing(
        self,
        *,
        billing_key: str,
        customer_key: str,
        amount: int,
        order_id: str,
        order_name: str,
    ) -> ChargeResult:
        data = await self._post(
            f"/v1/billing/{billing_key}",
            {
                "customerKey": customer_key,
                "amount": amount,
                "orderId": order_id,
                "orderName": order_name,
            },
        )
        status = str(data.get("status", ""))
        if status != "DONE":
            raise TossApiError(f"Payment not completed (status={status})", error_code=status)
        return ChargeResult(
            payment_key=str(data["paymentKey"]),
            order_id=str(data.get("orderId", order_id)),
            status=status,
            total_amount=int(data.get("totalAmount", amount)),
            approved_at=data.get("approvedAt"),
            raw=data,
        )

    async def cancel_payment(self, *, payment_key: str, reason: str) -> dict[str, Any]:
        return await self._post(f"/v1/payments/{payment_key}/cancel", {"cancelReason": reason})
