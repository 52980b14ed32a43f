"""
tests.test_billing

Subscription lifecycle against a mocked Toss Payments API.
"""

from __future__ import annotations

from datetime import datetime

import httpx
import pytest
from conftest import FakeUpstream, make_settings

from batu.db.models import AlertSeverity
from batu.db.repositories.alerts import AlertRepo
from batu.db.repositories.subscriptions import BillingKeyRepo
from batu.domain.billing import BillingPeriod, SubscriptionStatus
from batu.domain.plans import SubscriptionPlan
from batu.errors import ConflictError, PaymentError
from batu.integrations.toss import TossPaymentsClient
from batu.services.billing import BillingService
from batu.services.quota import QuotaService

USER = "user-1"
JAN_1 = datetime(2024, 1, 1, 9, 0)


def _issue(upstream: FakeUpstream) -> None:
    upstream.on(
        "POST",
        "/v1/billing/authorizations/issue",
        httpx.Response(
            200,
            json={
                "billingKey": "bk_1",
                "customerKey": "cust_1",
                "cardCompany": "신한",
                "cardNumber": "4330****1234",
            },
        ),
    )


def _charges(upstream: FakeUpstream, *responses: httpx.Response) -> None:
    upstream.on("POST", "/v1/billing/bk_1", *responses)


def _done(amount: int, key: str = "pay_1") -> httpx.Response:
    return httpx.Response(
        200, json={"paymentKey": key, "orderId": "o", "status": "DONE", "totalAmount": amount}
    )


def _rejected() -> httpx.Response:
    return httpx.Response(400, json={"code": "REJECT_CARD_COMPANY", "message": "카드사 거절"})


def _service(session, http: httpx.AsyncClient) -> BillingService:
    settings = make_settings()
    return BillingService(
        session=session, settings=settings, toss=TossPaymentsClient(settings=settings, http=http)
    )


async def _subscribe(svc: BillingService, plan=SubscriptionPlan.starter, now=JAN_1):
    return await svc.subscribe(
        user_id=USER,
        plan=plan,
        period=BillingPeriod.monthly,
        auth_key="auth_1",
        customer_key="cust_1",
        now=now,
    )


@pytest.mark.asyncio
async def test_subscribe_charges_first_period(session, upstream: FakeUpstream) -> None:
    _issue(upstream)
    _charges(upstream, _done(39000))
    async with upstream.client() as http:
        svc = _service(session, http)
        sub = await _subscribe(svc)

        assert sub.status == SubscriptionStatus.active
        assert sub.current_period_end == datetime(2024, 2, 1, 9, 0)
        charge = upstream.json_body()
        assert charge["amount"] == 39000
        assert charge["orderName"] == "바투 Starter 플랜 (월간)"
        assert charge["orderId"].startswith(f"ORDER_{USER}_")

        invoices = await svc.list_invoices(USER)
        assert [i.amount for i in invoices] == [39000]

        quota = await QuotaService(session=session).summary(user_id=USER, now=JAN_1)
        assert quota["plan"] == "STARTER"
        assert quota["usage"]["CAMPAIGN_CREATE"]["limit"] == 20

        with pytest.raises(ConflictError):
            await _subscribe(svc)


@pytest.mark.asyncio
async def test_failed_first_charge_leaves_no_subscription(session, upstream: FakeUpstream) -> None:
    _issue(upstream)
    _charges(upstream, _rejected())
    async with upstream.client() as http:
        svc = _service(session, http)
        with pytest.raises(PaymentError) as info:
            await _subscribe(svc)

        assert info.value.details == {"code": "REJECT_CARD_COMPANY"}
        assert await svc.get_subscription(USER) is None
        assert await BillingKeyRepo(session).active_for_user(USER) is None


@pytest.mark.asyncio
async def test_free_plan_needs_no_payment(session, upstream: FakeUpstream) -> None:
    async with upstream.client() as http:
        svc = _service(session, http)
        with pytest.raises(PaymentError):
            await _subscribe(svc, plan=SubscriptionPlan.free)
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_upgrade_charges_prorated_difference(session, upstream: FakeUpstream) -> None:
    _issue(upstream)
    _charges(upstream, _done(39000), _done(0, key="pay_2"))
    async with upstream.client() as http:
        svc = _service(session, http)
        await _subscribe(svc, now=datetime(2024, 1, 1))

        sub, charged = await svc.change_plan(
            user_id=USER, new_plan=SubscriptionPlan.pro, now=datetime(2024, 1, 16)
        )

    # 16 of 31 days remain in the period.
    expected = (99000 * 16) // 31 - (39000 * 16) // 31
    assert charged == expected
    assert sub.plan == SubscriptionPlan.pro
    assert upstream.json_body()["amount"] == expected
    assert upstream.json_body()["orderId"].startswith(f"CHANGE_{USER}_")


@pytest.mark.asyncio
async def test_downgrade_and_same_plan(session, upstream: FakeUpstream) -> None:
    _issue(upstream)
    _charges(upstream, _done(99000))
    async with upstream.client() as http:
        svc = _service(session, http)
        await _subscribe(svc, plan=SubscriptionPlan.pro)

        with pytest.raises(ConflictError):
            await svc.change_plan(user_id=USER, new_plan=SubscriptionPlan.pro, now=JAN_1)

        sub, charged = await svc.change_plan(
            user_id=USER, new_plan=SubscriptionPlan.starter, now=datetime(2024, 1, 10)
        )
    assert charged == 0
    assert sub.plan == SubscriptionPlan.starter
    # Only the first charge went out.
    assert upstream.paths().count("/v1/billing/bk_1") == 1


@pytest.mark.asyncio
async def test_cancel_falls_back_to_free(session, upstream: FakeUpstream) -> None:
    _issue(upstream)
    _charges(upstream, _done(39000))
    async with upstream.client() as http:
        svc = _service(session, http)
        await _subscribe(svc)
        sub = await svc.cancel(user_id=USER, now=JAN_1)

        assert sub.status == SubscriptionStatus.cancelled
        assert sub.cancelled_at == JAN_1
        assert await QuotaService(session=session).plan_for(USER) == SubscriptionPlan.free
        with pytest.raises(ConflictError):
            await svc.cancel(user_id=USER, now=JAN_1)


@pytest.mark.asyncio
async def test_renewal_advances_the_period(session, upstream: FakeUpstream) -> None:
    _issue(upstream)
    _charges(upstream, _done(39000), _done(39000, key="pay_2"))
    async with upstream.client() as http:
        svc = _service(session, http)
        await _subscribe(svc)

        # Nothing is due before the period ends.
        assert (await svc.renew_due(now=datetime(2024, 1, 20))).renewed == 0

        result = await svc.renew_due(now=datetime(2024, 2, 1, 10, 0))
        sub = await svc.get_subscription(USER)
        invoices = await svc.list_invoices(USER)

    assert (result.renewed, result.failed, result.expired) == (1, 0, 0)
    assert sub.current_period_start == datetime(2024, 2, 1, 9, 0)
    assert sub.current_period_end == datetime(2024, 3, 1, 9, 0)
    assert len(invoices) == 2
    assert upstream.json_body()["orderId"].startswith(f"RENEW_{USER}_")


@pytest.mark.asyncio
async def test_failed_renewal_goes_past_due_then_expires(session, upstream: FakeUpstream) -> None:
    _issue(upstream)
    _charges(upstream, _done(39000), _rejected())
    async with upstream.client() as http:
        svc = _service(session, http)
        await _subscribe(svc)

        first = await svc.renew_due(now=datetime(2024, 2, 1, 10, 0))
        assert first.failed == 1
        assert (await svc.get_subscription(USER)).status == SubscriptionStatus.past_due

        # Still inside the grace period: another failure keeps it PAST_DUE.
        again = await svc.renew_due(now=datetime(2024, 2, 5, 10, 0))
        assert again.failed == 1

        final = await svc.renew_due(now=datetime(2024, 2, 9, 10, 0))
        assert final.expired == 1
        assert (await svc.get_subscription(USER)).status == SubscriptionStatus.expired

        alerts = await AlertRepo(session).list_for_user(user_id=USER)

    severities = [a.severity for a in alerts if a.type == "billing"]
    assert severities.count(AlertSeverity.warning) == 2
    assert severities.count(AlertSeverity.critical) == 1
    assert await QuotaService(session=session).plan_for(USER) == SubscriptionPlan.free
