"""
batu.services.billing

Subscription billing on Toss Payments billing keys (transaction owner).

Responsibilities:
- Subscribe: issue and store a billing key, charge the first period, open the subscription.
- Change plan: charge the prorated difference for the rest of the period.
- Cancel, and renew subscriptions whose period has ended (cron).
- Record every charge attempt in `PaymentLog`, and paid charges as `Invoice`s.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from batu.db.models import AlertSeverity, Invoice, InvoiceStatus, PaymentStatus, Subscription
from batu.db.repositories.alerts import AlertRepo
from batu.db.repositories.subscriptions import (
    BillingKeyRepo,
    InvoiceRepo,
    PaymentLogRepo,
    SubscriptionRepo,
)
from batu.domain.billing import (
    BillingPeriod,
    SubscriptionStatus,
    billing_amount,
    ensure_status_transition,
    has_access,
    period_end,
    prorated_upgrade_charge,
)
from batu.domain.plans import SubscriptionPlan, get_plan_config, is_free_plan
from batu.errors import ConflictError, NotFoundError, PaymentError, TossApiError
from batu.integrations.toss import ChargeResult, TossPaymentsClient
from batu.observability.logging import get_logger
from batu.settings import Settings

log = get_logger(__name__)

# PAST_DUE subscriptions that still cannot be charged after this long are expired.
PAST_DUE_GRACE = timedelta(days=7)


def order_name(plan: SubscriptionPlan, period: BillingPeriod) -> str:
    label = get_plan_config(plan).label
    return f"바투 {label} 플랜 ({'월간' if period == BillingPeriod.monthly else '연간'})"


def _order_id(prefix: str, user_id: str) -> str:
    return f"{prefix}_{user_id}_{int(time.time() * 1000)}"


@dataclass(frozen=True, slots=True)
class RenewalResult:
    renewed: int = 0
    failed: int = 0
    expired: int = 0


class BillingService:
    def __init__(
        self, *, session: AsyncSession, settings: Settings, toss: TossPaymentsClient
    ) -> None:
        self._session = session
        self._settings = settings
        self._toss = toss

        self._subscriptions = SubscriptionRepo(session)
        self._keys = BillingKeyRepo(session)
        self._invoices = InvoiceRepo(session)
        self._payments = PaymentLogRepo(session)
        self._alerts = AlertRepo(session)

    async def _charge(
        self,
        *,
        user_id: str,
        billing_key: str,
        customer_key: str,
        amount: int,
        order_id: str,
        name: str,
    ) -> ChargeResult:
        """
        Charge and log the attempt. On failure the PaymentLog row is flushed, not committed.
        """

        try:
            charge = await self._toss.charge_billing(
                billing_key=billing_key,
                customer_key=customer_key,
                amount=amount,
                order_id=order_id,
                order_name=name,
            )
        except TossApiError as e:
            await self._payments.add(
                user_id=user_id,
                order_id=order_id,
                amount=amount,
                status=PaymentStatus.failed,
                error_code=str(e.error_code) if e.error_code is not None else None,
                error_message=e.message,
            )
            log.warning("charge_failed", user_id=user_id, order_id=order_id, code=e.error_code)
            raise PaymentError(
                f"결제에 실패했습니다: {e.message}", details={"code": e.error_code}
            ) from e

        await self._payments.add(
            user_id=user_id,
            order_id=order_id,
            amount=amount,
            status=PaymentStatus.done,
            payment_key=charge.payment_key,
            raw=charge.raw,
        )
        log.info("charge_succeeded", user_id=user_id, order_id=order_id, amount=amount)
        return charge

    async def get_subscription(self, user_id: str) -> Subscription | None:
        return await self._subscriptions.get_for_user(user_id)

    async def subscribe(
        self,
        *,
        user_id: str,
        plan: SubscriptionPlan,
        period: BillingPeriod,
        auth_key: str,
        customer_key: str,
        now: datetime | None = None,
    ) -> Subscription:
        now = now or datetime.utcnow()
        if is_free_plan(plan):
            raise PaymentError("무료 플랜은 결제가 필요하지 않습니다")
        amount = billing_amount(plan, period)

        existing = await self._subscriptions.get_for_user(user_id, for_update=True)
        if existing is not None and has_access(existing.status):
            raise ConflictError("이미 구독 중입니다. 플랜 변경을 이용해주세요")

        issued = await self._toss.issue_billing_key(auth_key=auth_key, customer_key=customer_key)
        key = await self._keys.save(
            user_id=user_id,
            customer_key=issued.customer_key,
            billing_key=issued.billing_key,
            card_company=issued.card_company,
            card_number_masked=issued.card_number_masked,
        )

        name = order_name(plan, period)
        try:
            charge = await self._charge(
                user_id=user_id,
                billing_key=issued.billing_key,
                customer_key=issued.customer_key,
                amount=amount,
                order_id=_order_id("ORDER", user_id),
                name=name,
            )
        except PaymentError:
            await self._keys.deactivate(key.id)
            await self._session.commit()
            raise

        end = period_end(now, period)
        sub = await self._subscriptions.upsert(
            user_id=user_id,
            plan=plan,
            status=SubscriptionStatus.active,
            billing_period=period,
            period_start=now,
            period_end=end,
        )
        await self._invoices.add(
            subscription_id=sub.id,
            user_id=user_id,
            amount=amount,
            status=InvoiceStatus.paid,
            description=name,
            period_start=now,
            period_end=end,
            payment_key=charge.payment_key,
            paid_at=now,
        )
        await self._session.commit()
        log.info("subscribed", user_id=user_id, plan=plan.value, period=period.value)
        return sub

    async def change_plan(
        self,
        *,
        user_id: str,
        new_plan: SubscriptionPlan,
        period: BillingPeriod | None = None,
        now: datetime | None = None,
    ) -> tuple[Subscription, int]:
        """
        Returns the updated subscription and the amount charged now (0 for downgrades).
        """

        now = now or datetime.utcnow()
        sub = await self._subscriptions.get_for_user(user_id, for_update=True)
        if sub is None:
            raise NotFoundError("구독 정보가 없습니다")
        if not has_access(sub.status):
            raise ConflictError("활성 구독이 아닙니다", details={"status": sub.status.value})
        if is_free_plan(new_plan):
            raise ConflictError("무료 플랜으로 변경하려면 구독을 해지해주세요")

        period = period or sub.billing_period
        if new_plan == sub.plan and period == sub.billing_period:
            raise ConflictError("현재 이용 중인 플랜입니다")

        new_amount = billing_amount(new_plan, period)
        old_amount = billing_amount(sub.plan, sub.billing_period)
        charge_amount = prorated_upgrade_charge(
            old_amount=old_amount,
            new_amount=new_amount,
            period_start=sub.current_period_start,
            period_end=sub.current_period_end,
            now=now,
        )

        if charge_amount > 0:
            key = await self._keys.active_for_user(user_id)
            if key is None:
                raise PaymentError("등록된 결제 수단이 없습니다")
            name = f"{order_name(new_plan, period)} 변경 차액"
            try:
                charge = await self._charge(
                    user_id=user_id,
                    billing_key=key.billing_key,
                    customer_key=key.customer_key,
                    amount=charge_amount,
                    order_id=_order_id("CHANGE", user_id),
                    name=name,
                )
            except PaymentError:
                await self._session.commit()
                raise
            await self._invoices.add(
                subscription_id=sub.id,
                user_id=user_id,
                amount=charge_amount,
                status=InvoiceStatus.paid,
                description=name,
                period_start=now,
                period_end=sub.current_period_end,
                payment_key=charge.payment_key,
                paid_at=now,
            )

        previous = sub.plan
        sub.plan = new_plan
        sub.billing_period = period
        sub.updated_at = now
        await self._session.commit()
        log.info(
            "plan_changed",
            user_id=user_id,
            from_plan=previous.value,
            to_plan=new_plan.value,
            charged=charge_amount,
        )
        return sub, charge_amount

    async def cancel(self, *, user_id: str, now: datetime | None = None) -> Subscription:
        now = now or datetime.utcnow()
        sub = await self._subscriptions.get_for_user(user_id, for_update=True)
        if sub is None:
            raise NotFoundError("구독 정보가 없습니다")
        ensure_status_transition(sub.status, SubscriptionStatus.cancelled)
        sub.status = SubscriptionStatus.cancelled
        sub.cancelled_at = now
        sub.updated_at = now
        await self._session.commit()
        log.info("subscription_cancelled", user_id=user_id)
        return sub

    async def renew_due(self, *, now: datetime | None = None) -> RenewalResult:
        now = now or datetime.utcnow()
        renewed = failed = expired = 0

        for sub in await self._subscriptions.due_for_renewal(now=now):
            outcome = await self._renew_one(sub, now=now)
            if outcome == "renewed":
                renewed += 1
            elif outcome == "expired":
                expired += 1
            else:
                failed += 1
            await self._session.commit()

        if renewed or failed or expired:
            log.info("renewals_processed", renewed=renewed, failed=failed, expired=expired)
        return RenewalResult(renewed=renewed, failed=failed, expired=expired)

    async def _renew_one(self, sub: Subscription, *, now: datetime) -> str:
        key = await self._keys.active_for_user(sub.user_id)
        name = order_name(sub.plan, sub.billing_period)
        try:
            if key is None:
                raise PaymentError("등록된 결제 수단이 없습니다")
            amount = billing_amount(sub.plan, sub.billing_period)
            charge = await self._charge(
                user_id=sub.user_id,
                billing_key=key.billing_key,
                customer_key=key.customer_key,
                amount=amount,
                order_id=_order_id("RENEW", sub.user_id),
                name=name,
            )
        except PaymentError as e:
            return await self._renewal_failed(sub, now=now, reason=e.message)

        if sub.status == SubscriptionStatus.past_due:
            ensure_status_transition(sub.status, SubscriptionStatus.active)
            sub.status = SubscriptionStatus.active
        start = sub.current_period_end
        end = period_end(start, sub.billing_period)
        sub.current_period_start = start
        sub.current_period_end = end
        sub.updated_at = now
        await self._invoices.add(
            subscription_id=sub.id,
            user_id=sub.user_id,
            amount=amount,
            status=InvoiceStatus.paid,
            description=name,
            period_start=start,
            period_end=end,
            payment_key=charge.payment_key,
            paid_at=now,
        )
        return "renewed"

    async def _renewal_failed(self, sub: Subscription, *, now: datetime, reason: str) -> str:
        overdue = now - sub.current_period_end
        if sub.status == SubscriptionStatus.past_due and overdue >= PAST_DUE_GRACE:
            sub.status = SubscriptionStatus.expired
            sub.updated_at = now
            await self._alerts.add(
                user_id=sub.user_id,
                type="billing",
                severity=AlertSeverity.critical,
                title="구독이 만료되었습니다",
                message="결제가 계속 실패하여 구독이 만료되었습니다. 결제 수단을 확인해주세요.",
            )
            return "expired"

        if sub.status == SubscriptionStatus.active:
            ensure_status_transition(sub.status, SubscriptionStatus.past_due)
            sub.status = SubscriptionStatus.past_due
            sub.updated_at = now
        await self._alerts.add(
            user_id=sub.user_id,
            type="billing",
            severity=AlertSeverity.warning,
            title="구독 결제에 실패했습니다",
            message=f"정기 결제에 실패했습니다: {reason}",
        )
        return "failed"

    async def list_invoices(self, user_id: str) -> list[Invoice]:
        return await self._invoices.list_for_user(user_id)


# --- Module Notes -----------------------------------------------------------
# The billing key itself never leaves the service: API responses expose only
# the card company and masked number, and the log processor redacts `billing_key`.
