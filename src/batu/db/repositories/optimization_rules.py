"""
batu.db.repositories.optimization_rules

Repository for `OptimizationRuleRecord`, mapping rows to and from the immutable
`OptimizationRule` domain object.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from batu.db.models import OptimizationRuleRecord
from batu.domain.optimization import OptimizationRule, RuleAction, RuleCondition


def to_domain(row: OptimizationRuleRecord) -> OptimizationRule:
    return OptimizationRule(
        id=row.id,
        campaign_id=row.campaign_id,
        user_id=row.user_id,
        name=row.name,
        rule_type=row.rule_type,
        conditions=tuple(RuleCondition.from_dict(c) for c in row.conditions),
        actions=tuple(RuleAction.from_dict(a) for a in row.actions),
        is_enabled=row.is_enabled,
        cooldown_minutes=row.cooldown_minutes,
        last_triggered_at=row.last_triggered_at,
        trigger_count=row.trigger_count,
    )


class OptimizationRuleRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def save(self, rule: OptimizationRule) -> OptimizationRuleRecord:
        row = await self._session.get(OptimizationRuleRecord, rule.id)
        if row is None:
            row = OptimizationRuleRecord(id=rule.id)
            self._session.add(row)
        row.campaign_id = rule.campaign_id
        row.user_id = rule.user_id
        row.name = rule.name
        row.rule_type = rule.rule_type
        row.conditions = [c.to_dict() for c in rule.conditions]
        row.actions = [a.to_dict() for a in rule.actions]
        row.is_enabled = rule.is_enabled
        row.cooldown_minutes = rule.cooldown_minutes
        row.last_triggered_at = rule.last_triggered_at
        row.trigger_count = rule.trigger_count
        row.updated_at = datetime.utcnow()
        await self._session.flush()
        return row

    async def get_owned(self, *, rule_id: uuid.UUID, user_id: str) -> OptimizationRule | None:
        stmt = select(OptimizationRuleRecord).where(
            OptimizationRuleRecord.id == rule_id,
            OptimizationRuleRecord.user_id == user_id,
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return to_domain(row) if row else None

    async def list_for_user(
        self,
        *,
        user_id: str,
        campaign_id: uuid.UUID | None = None,
        enabled_only: bool = False,
    ) -> list[OptimizationRule]:
        stmt = select(OptimizationRuleRecord).where(OptimizationRuleRecord.user_id == user_id)
        if campaign_id is not None:
            stmt = stmt.where(OptimizationRuleRecord.campaign_id == campaign_id)
        if enabled_only:
            stmt = stmt.where(OptimizationRuleRecord.is_enabled.is_(True))
        stmt = stmt.order_by(OptimizationRuleRecord.created_at)
        return [to_domain(r) for r in (await self._session.execute(stmt)).scalars().all()]

    async def list_enabled_user_ids(self) -> list[str]:
        stmt = (
            select(OptimizationRuleRecord.user_id)
            .where(OptimizationRuleRecord.is_enabled.is_(True))
            .distinct()
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def delete_owned(self, *, rule_id: uuid.UUID, user_id: str) -> bool:
        stmt = delete(OptimizationRuleRecord).where(
            OptimizationRuleRecord.id == rule_id,
            OptimizationRuleRecord.user_id == user_id,
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return result.rowcount == 1
