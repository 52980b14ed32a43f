"""
batu.db.repositories.subscriptions

Repository for billing entities: `Subscription`, `BillingKey`, `Invoice`, `PaymentLog`.

Responsibilities:
- One subscription row per user (reactivated on resubscribe).
- Billing keys (at most one active per user).
- Append-only invoices and payment logs.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import desc, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from batu.db.models import (
    BillingKey,
    Invoice,
    InvoiceStatus,
    PaymentLog,
    PaymentStatus,
    Subscription,
)
from batu.domain.billing import BillingPeriod, SubscriptionStatus
from batu.domain.plans import SubscriptionPlan


class SubscriptionRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_for_user(self, user_id: str, *, for_update: bool = False) -> Subscription | None:
        stmt = select(Subscription).where(Subscription.user_id == user_id)
        if for_update:
            stmt = stmt.with_for_update()
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def upsert(
        self,
        *,
        user_id: str,
        plan: SubscriptionPlan,
        status: SubscriptionStatus,
        billing_period: BillingPeriod,
        period_start: datetime,
        period_end: datetime,
    ) -> Subscription:
        sub = await self.get_for_user(user_id)
        if sub is None:
            sub = Subscription(user_id=user_id)
            self._session.add(sub)
        sub.plan = plan
        sub.status = status
        sub.billing_period = billing_period
        sub.current_period_start = period_start
        sub.current_period_end = period_end
        sub.cancelled_at = None
        sub.updated_at = datetime.utcnow()
        await self._session.flush()
        return sub

    async def due_for_renewal(self, *, now: datetime) -> list[Subscription]:
        stmt = select(Subscription).where(
            Subscription.status.in_([SubscriptionStatus.active, SubscriptionStatus.past_due]),
            Subscription.current_period_end <= now,
        )
        return list((await self._session.execute(stmt)).scalars().all())


class BillingKeyRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def save(
        self,
        *,
        user_id: str,
        customer_key: str,
        billing_key: str,
        card_company: str | None,
        card_number_masked: str | None,
    ) -> BillingKey:
        # A new card replaces any previously active one.
        await self._session.execute(
            update(BillingKey)
            .where(BillingKey.user_id == user_id, BillingKey.is_active.is_(True))
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        key = BillingKey(
            user_id=user_id,
            customer_key=customer_key,
            billing_key=billing_key,
            card_company=card_company,
            card_number_masked=card_number_masked,
            is_active=True,
        )
        self._session.add(key)
        await self._session.flush()
        return key

    async def active_for_user(self, user_id: str) -> BillingKey | None:
        stmt = (
            select(BillingKey)
            .where(BillingKey.user_id == user_id, BillingKey.is_active.is_(True))
            .order_by(desc(BillingKey.created_at))
            .limit(1)
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def deactivate(self, key_id: uuid.UUID) -> None:
        key = await self._session.get(BillingKey, key_id)
        if key is not None:
            key.is_active = False
            await self._session.flush()


class InvoiceRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(
        self,
        *,
        subscription_id: uuid.UUID,
        user_id: str,
        amount: int,
        status: InvoiceStatus,
        description: str,
        period_start: datetime,
        period_end: datetime,
        payment_key: str | None = None,
        paid_at: datetime | None = None,
    ) -> Invoice:
        inv = Invoice(
            subscription_id=subscription_id,
            user_id=user_id,
            amount=amount,
            status=status,
            description=description,
            period_start=period_start,
            period_end=period_end,
            payment_key=payment_key,
            paid_at=paid_at,
        )
        self._session.add(inv)
        await self._session.flush()
        return inv

    async def list_for_user(self, user_id: str, *, limit: int = 24) -> list[Invoice]:
        stmt = (
            select(Invoice)
            .where(Invoice.user_id == user_id)
            .order_by(desc(Invoice.created_at))
            .limit(limit)
        )
        return list((await self._session.execute(stmt)).scalars().all())


class PaymentLogRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(
        self,
        *,
        user_id: str,
        order_id: str,
        amount: int,
        status: PaymentStatus,
        payment_key: str | None = None,
        error_code: str | None = None,
        error_message: str | None = None,
        raw: dict[str, Any] | None = None,
    ) -> PaymentLog:
        entry = PaymentLog(
            user_id=user_id,
            order_id=order_id,
            amount=amount,
            status=status,
            payment_key=payment_key,
            error_code=error_code,
            error_message=error_message,
            raw=raw or {},
        )
        self._session.add(entry)
        await self._session.flush()
        return entry
