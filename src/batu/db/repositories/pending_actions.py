"""
batu.db.repositories.pending_actions

Repository for `PendingAction` entities.

Responsibilities:
- Persist proposed mutations and their confirmation card.
- Load an action for update (row lock where the backend supports it).
- Bulk-expire overdue actions.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from batu.db.models import PendingAction, PendingActionStatus


class PendingActionRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        conversation_id: uuid.UUID,
        user_id: str,
        tool_name: str,
        tool_args: dict[str, Any],
        display_summary: str,
        details: list[dict[str, Any]],
        warnings: list[str],
        expires_at: datetime,
    ) -> PendingAction:
        action = PendingAction(
            conversation_id=conversation_id,
            user_id=user_id,
            tool_name=tool_name,
            tool_args=tool_args,
            display_summary=display_summary,
            details=details,
            warnings=warnings,
            status=PendingActionStatus.pending,
            expires_at=expires_at,
        )
        self._session.add(action)
        await self._session.flush()
        return action

    async def get_owned(
        self, *, action_id: uuid.UUID, user_id: str, for_update: bool = False
    ) -> PendingAction | None:
        stmt = select(PendingAction).where(
            PendingAction.id == action_id,
            PendingAction.user_id == user_id,
        )
        if for_update:
            # Serializes concurrent confirm/modify/cancel on the same row (no-op on SQLite).
            stmt = stmt.with_for_update()
        stmt = stmt.execution_options(populate_existing=True)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def list_pending(
        self,
        *,
        user_id: str,
        now: datetime,
        conversation_id: uuid.UUID | None = None,
    ) -> list[PendingAction]:
        stmt = select(PendingAction).where(
            PendingAction.user_id == user_id,
            PendingAction.status == PendingActionStatus.pending,
            PendingAction.expires_at > now,
        )
        if conversation_id is not None:
            stmt = stmt.where(PendingAction.conversation_id == conversation_id)
        stmt = stmt.order_by(PendingAction.created_at)
        return list((await self._session.execute(stmt)).scalars().all())

    async def claim(self, *, action_id: uuid.UUID, now: datetime) -> bool:
        """
        Atomically move PENDING -> EXECUTING. Returns False if another caller got there first.
        """

        stmt = (
            update(PendingAction)
            .where(
                PendingAction.id == action_id,
                PendingAction.status == PendingActionStatus.pending,
            )
            .values(
                status=PendingActionStatus.executing,
                confirmed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return result.rowcount == 1

    async def expire_overdue(self, *, now: datetime) -> int:
        stmt = (
            update(PendingAction)
            .where(
                PendingAction.status == PendingActionStatus.pending,
                PendingAction.expires_at <= now,
            )
            .values(status=PendingActionStatus.expired, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return int(result.rowcount or 0)


# --- Module Notes -----------------------------------------------------------
# `claim` is a conditional UPDATE so that two confirms racing on the same action
# cannot both execute the tool, even on backends without SELECT ... FOR UPDATE.
