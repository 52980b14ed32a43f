"""
batu.db.repositories.conversations

Repository for `Conversation` and `ConversationMessage` entities.

Responsibilities:
- Create, fetch and archive conversations scoped to their owner.
- Append messages and load the recent window used as LLM context.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from batu.db.models import Conversation, ConversationMessage, MessageRole


class ConversationRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, *, user_id: str, title: str | None = None) -> Conversation:
        conv = Conversation(user_id=user_id, title=title, is_archived=False)
        self._session.add(conv)
        await self._session.flush()
        return conv

    async def get_owned(self, *, conversation_id: uuid.UUID, user_id: str) -> Conversation | None:
        stmt = select(Conversation).where(
            Conversation.id == conversation_id,
            Conversation.user_id == user_id,
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def list_for_user(
        self, *, user_id: str, include_archived: bool = False, limit: int = 50
    ) -> list[Conversation]:
        stmt = select(Conversation).where(Conversation.user_id == user_id)
        if not include_archived:
            stmt = stmt.where(Conversation.is_archived.is_(False))
        stmt = stmt.order_by(desc(Conversation.updated_at)).limit(limit)
        return list((await self._session.execute(stmt)).scalars().all())

    async def set_title(self, conv: Conversation, title: str) -> None:
        conv.title = title
        conv.updated_at = datetime.utcnow()
        await self._session.flush()

    async def archive(self, conv: Conversation) -> None:
        conv.is_archived = True
        conv.updated_at = datetime.utcnow()
        await self._session.flush()

    async def touch(self, conv: Conversation) -> None:
        conv.updated_at = datetime.utcnow()
        await self._session.flush()

    async def add_message(
        self,
        *,
        conversation_id: uuid.UUID,
        role: MessageRole,
        content: str,
        tool_name: str | None = None,
        tool_call_id: str | None = None,
        tool_calls: list[dict[str, Any]] | None = None,
        tool_result: dict[str, Any] | None = None,
        extra: dict[str, Any] | None = None,
    ) -> ConversationMessage:
        msg = ConversationMessage(
            conversation_id=conversation_id,
            role=role,
            content=content,
            tool_name=tool_name,
            tool_call_id=tool_call_id,
            tool_calls=tool_calls,
            tool_result=tool_result,
            extra=extra or {},
        )
        self._session.add(msg)
        await self._session.flush()
        return msg

    async def recent_messages(
        self, *, conversation_id: uuid.UUID, limit: int = 20
    ) -> list[ConversationMessage]:
        # Newest N, returned oldest-first for prompt assembly.
        stmt = (
            select(ConversationMessage)
            .where(ConversationMessage.conversation_id == conversation_id)
            .order_by(desc(ConversationMessage.created_at))
            .limit(limit)
        )
        rows = list((await self._session.execute(stmt)).scalars().all())
        rows.reverse()
        return rows

    async def all_messages(self, *, conversation_id: uuid.UUID) -> list[ConversationMessage]:
        stmt = (
            select(ConversationMessage)
            .where(ConversationMessage.conversation_id == conversation_id)
            .order_by(ConversationMessage.created_at)
        )
        return list((await self._session.execute(stmt)).scalars().all())
