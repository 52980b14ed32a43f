"""
batu.services.conversational_agent

Conversational agent service (transaction + persistence owner for chat turns).

Responsibilities:
- Load or create the conversation and persist user/assistant messages.
- Run the LangGraph turn graph and stream its chunks as they are produced.
- Route mutating tool calls to the action-confirmation gate.
- Guard LLM calls with retry and the shared circuit breaker.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from batu.agent.graph import build_agent_graph
from batu.agent.llm import ChatModel, LLMReply
from batu.agent.prompts import (
    UNAVAILABLE_REPLY,
    build_system_prompt,
    conversation_title,
    suggested_questions,
)
from batu.agent.state import AgentTurnState
from batu.agent.tools import AgentTool, Confirmation, ToolContext, ToolRegistry
from batu.db.models import Conversation, ConversationMessage, MessageRole
from batu.db.repositories.conversations import ConversationRepo
from batu.errors import BatuError, CircuitOpenError, NotFoundError
from batu.integrations.meta_ads import MetaAdsClient
from batu.observability.logging import get_logger
from batu.resilience import get_breaker, retrying
from batu.services.action_confirmation import ActionConfirmationService, action_card
from batu.settings import Settings

log = get_logger(__name__)

LLM_BREAKER = "llm-service"


class GuardedChatModel:
    """
    ChatModel decorator: retries transient failures, then counts the call
    against the process-wide LLM circuit breaker.
    """

    def __init__(
        self,
        model: ChatModel,
        *,
        settings: Settings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._model = model
        self._settings = settings
        self._sleep = sleep

    async def complete(
        self, *, messages: list[dict[str, Any]], tools: list[dict[str, Any]]
    ) -> LLMReply:
        breaker = get_breaker(
            LLM_BREAKER,
            threshold=self._settings.circuit_breaker_threshold,
            reset_seconds=self._settings.circuit_breaker_reset_seconds,
        )
        policy = retrying(
            attempts=self._settings.llm_retry_attempts,
            base_delay=self._settings.llm_retry_base_delay_seconds,
            is_retryable=lambda e: not isinstance(e, BatuError),
            sleep=self._sleep,
            name="llm",
        )
        return await breaker.call(
            lambda: policy(self._model.complete, messages=messages, tools=tools)
        )


def history_to_openai(history: list[ConversationMessage]) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for m in history:
        if m.role in (MessageRole.user, MessageRole.assistant):
            out.append({"role": m.role.value, "content": m.content or ""})
        elif m.role == MessageRole.tool:
            # Confirmed-action outcomes are replayed as assistant context, not as tool replies.
            out.append(
                {"role": "assistant", "content": f"[{m.tool_name} 실행 결과] {m.content or ''}"}
            )
    return out


class ConversationalAgentService:
    def __init__(
        self,
        *,
        session: AsyncSession,
        settings: Settings,
        registry: ToolRegistry,
        model: ChatModel | None,
        meta: MetaAdsClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._session = session
        self._settings = settings
        self._registry = registry
        self._model = (
            GuardedChatModel(model, settings=settings, sleep=sleep) if model is not None else None
        )
        self._meta = meta

        self._conversations = ConversationRepo(session)
        self._actions = ActionConfirmationService(
            session=session, settings=settings, registry=registry, meta=meta
        )

    async def _open_conversation(
        self, *, user_id: str, conversation_id: uuid.UUID | None
    ) -> Conversation:
        if conversation_id is None:
            return await self._conversations.create(user_id=user_id)
        conv = await self._conversations.get_owned(conversation_id=conversation_id, user_id=user_id)
        if conv is None:
            raise NotFoundError("대화를 찾을 수 없습니다")
        return conv

    async def chat(
        self,
        *,
        user_id: str,
        message: str,
        conversation_id: uuid.UUID | None = None,
        ui_context: str | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        if self._model is None:
            yield {"type": "text", "content": UNAVAILABLE_REPLY}
            yield {"type": "done"}
            return
        try:
            conv = await self._open_conversation(user_id=user_id, conversation_id=conversation_id)
            await self._conversations.add_message(
                conversation_id=conv.id, role=MessageRole.user, content=message
            )
            await self._session.commit()
            yield {"type": "conversation", "conversation_id": str(conv.id)}

            history = await self._conversations.recent_messages(
                conversation_id=conv.id, limit=self._settings.agent_history_limit
            )
            messages = [
                {"role": "system", "content": build_system_prompt(self._registry, ui_context)},
                *history_to_openai(history),
            ]

            yield {"type": "progress", "stage": "thinking", "progress": 10}

            now = datetime.utcnow()
            ctx = ToolContext(
                session=self._session,
                settings=self._settings,
                user_id=user_id,
                conversation_id=conv.id,
                meta=self._meta,
                now=now,
            )

            async def _propose(
                tool: AgentTool, args: dict[str, Any], confirmation: Confirmation
            ) -> dict[str, Any]:
                action = await self._actions.propose(
                    conversation_id=conv.id,
                    user_id=user_id,
                    tool_name=tool.name,
                    tool_args=args,
                    confirmation=confirmation,
                )
                return action_card(action)

            graph = build_agent_graph(
                model=self._model,
                registry=self._registry,
                ctx=ctx,
                propose=_propose,
                max_steps=self._settings.agent_max_steps,
            )
            state: AgentTurnState = {
                "user_id": user_id,
                "conversation_id": str(conv.id),
                "messages": messages,
                "chunks": [],
                "steps": 0,
                "final_text": "",
                "tool_messages": [],
                "awaiting_user": False,
            }

            final_text = ""
            streamed_text = False
            async for update in graph.astream(state, stream_mode="updates"):
                if not isinstance(update, dict) or not update:
                    continue
                node_name, node_update = next(iter(update.items()))
                if not isinstance(node_update, dict):
                    continue
                for chunk in node_update.get("chunks", []) or []:
                    if chunk.get("type") == "text":
                        streamed_text = True
                    yield chunk
                if node_name == "finish":
                    final_text = str(node_update.get("final_text", "") or "")

            if final_text and not streamed_text:
                yield {"type": "text", "content": final_text}

            await self._conversations.add_message(
                conversation_id=conv.id, role=MessageRole.assistant, content=final_text
            )
            if not conv.title:
                await self._conversations.set_title(conv, conversation_title(message))
            else:
                await self._conversations.touch(conv)
            await self._session.commit()

            yield {"type": "suggested_questions", "questions": suggested_questions(final_text)}
            yield {"type": "done"}
        except CircuitOpenError:
            await self._session.rollback()
            log.warning("agent_unavailable", user_id=user_id)
            yield {"type": "text", "content": UNAVAILABLE_REPLY}
            yield {"type": "done"}
        except Exception as e:
            await self._session.rollback()
            log.exception("agent_turn_failed", user_id=user_id)
            yield {"type": "error", "error": str(e)}
            yield {"type": "done"}

    async def list_conversations(self, *, user_id: str, limit: int = 50) -> list[Conversation]:
        return await self._conversations.list_for_user(user_id=user_id, limit=limit)

    async def get_conversation(
        self, *, user_id: str, conversation_id: uuid.UUID
    ) -> tuple[Conversation, list[ConversationMessage]]:
        conv = await self._conversations.get_owned(conversation_id=conversation_id, user_id=user_id)
        if conv is None:
            raise NotFoundError("대화를 찾을 수 없습니다")
        messages = await self._conversations.all_messages(conversation_id=conv.id)
        return conv, messages

    async def archive_conversation(self, *, user_id: str, conversation_id: uuid.UUID) -> None:
        conv = await self._conversations.get_owned(conversation_id=conversation_id, user_id=user_id)
        if conv is None:
            raise NotFoundError("대화를 찾을 수 없습니다")
        await self._conversations.archive(conv)
        await self._session.commit()


# --- Module Notes -----------------------------------------------------------
# Chunks are yielded per graph node (stream_mode="updates"), so a client sees
# tool calls and confirmation cards before the model's closing reply arrives.
