"""
batu.api.routers.agent

Conversational agent endpoints.

Responsibilities:
- Stream one chat turn as server-sent events (`data: <json>\\n\\n` per chunk).
- Throttle chat per user with the in-process fixed-window limiter.
- List, read and archive the caller's conversations.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from starlette.status import HTTP_429_TOO_MANY_REQUESTS

from batu.agent.llm import ChatModel
from batu.agent.prompts import UiContext
from batu.agent.tools import ToolRegistry
from batu.api.deps import (
    agent_service,
    chat_model,
    chat_rate_limiter,
    meta_client,
    sessionmaker_from_app,
    settings_dep,
    tool_registry,
)
from batu.auth.deps import get_principal, require_roles
from batu.auth.models import ROLE_ADVERTISER, Principal
from batu.db.models import Conversation, ConversationMessage
from batu.db.repositories.conversations import ConversationRepo
from batu.errors import NotFoundError
from batu.integrations.meta_ads import MetaAdsClient
from batu.services.conversational_agent import ConversationalAgentService
from batu.services.rate_limit import FixedWindowRateLimiter
from batu.settings import Settings

router = APIRouter(
    prefix="/v1/agent",
    tags=["agent"],
    dependencies=[Depends(require_roles(ROLE_ADVERTISER))],
)


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=4000)
    conversation_id: uuid.UUID | None = None
    ui_context: UiContext | None = None


def sse(chunk: dict[str, Any]) -> str:
    return f"data: {json.dumps(chunk, ensure_ascii=False, default=str)}\n\n"


def _conversation_dict(c: Conversation) -> dict[str, Any]:
    return {
        "id": str(c.id),
        "title": c.title,
        "created_at": c.created_at.isoformat(),
        "updated_at": c.updated_at.isoformat(),
    }


def _message_dict(m: ConversationMessage) -> dict[str, Any]:
    return {
        "id": str(m.id),
        "role": m.role.value,
        "content": m.content,
        "tool_name": m.tool_name,
        "tool_result": m.tool_result,
        "created_at": m.created_at.isoformat(),
    }


@router.post("/chat")
async def chat(
    request: Request,
    body: ChatRequest,
    principal: Principal = Depends(get_principal),
    settings: Settings = Depends(settings_dep),
    limiter: FixedWindowRateLimiter = Depends(chat_rate_limiter),
    model: ChatModel = Depends(chat_model),
    registry: ToolRegistry = Depends(tool_registry),
    meta: MetaAdsClient = Depends(meta_client),
) -> StreamingResponse:
    limit = limiter.hit(f"chat:{principal.user_id}")
    if not limit.success:
        raise HTTPException(
            status_code=HTTP_429_TOO_MANY_REQUESTS,
            detail="요청이 너무 많습니다. 잠시 후 다시 시도해주세요.",
            headers=limit.headers(),
        )

    # The stream outlives the request's dependencies, so it opens its own session.
    session_factory = sessionmaker_from_app(request)

    # Status and headers are sent before the first chunk, so a bad id must fail here.
    if body.conversation_id is not None:
        async with session_factory() as session:
            owned = await ConversationRepo(session).get_owned(
                conversation_id=body.conversation_id, user_id=principal.user_id
            )
        if owned is None:
            raise NotFoundError(
                "대화를 찾을 수 없습니다", details={"conversation_id": str(body.conversation_id)}
            )

    async def _events() -> AsyncIterator[str]:
        async with session_factory() as session:
            svc = ConversationalAgentService(
                session=session, settings=settings, registry=registry, model=model, meta=meta
            )
            async for chunk in svc.chat(
                user_id=principal.user_id,
                message=body.message,
                conversation_id=body.conversation_id,
                ui_context=body.ui_context,
            ):
                yield sse(chunk)

    return StreamingResponse(
        _events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no", **limit.headers()},
    )


@router.get("/conversations")
async def list_conversations(
    principal: Principal = Depends(get_principal),
    svc: ConversationalAgentService = Depends(agent_service),
) -> dict[str, Any]:
    items = await svc.list_conversations(user_id=principal.user_id)
    return {"conversations": [_conversation_dict(c) for c in items]}


@router.get("/conversations/{conversation_id}")
async def get_conversation(
    conversation_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    svc: ConversationalAgentService = Depends(agent_service),
) -> dict[str, Any]:
    conv, messages = await svc.get_conversation(
        user_id=principal.user_id, conversation_id=conversation_id
    )
    return {
        "conversation": _conversation_dict(conv),
        "messages": [_message_dict(m) for m in messages],
    }


@router.delete("/conversations/{conversation_id}")
async def archive_conversation(
    conversation_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    svc: ConversationalAgentService = Depends(agent_service),
) -> dict[str, Any]:
    await svc.archive_conversation(user_id=principal.user_id, conversation_id=conversation_id)
    return {"success": True}
