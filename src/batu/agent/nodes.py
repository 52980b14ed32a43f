from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import Any, Literal

from batu.agent.llm import ChatModel
from batu.agent.prompts import FALLBACK_REPLY
from batu.agent.state import AgentTurnState
from batu.agent.tools import AgentTool, Confirmation, ToolContext, ToolRegistry
from batu.observability.logging import get_logger

log = get_logger(__name__)

# Persists a pending action and returns the `action_confirmation` chunk for it.
ProposeFn = Callable[[AgentTool, dict[str, Any], Confirmation], Awaitable[dict[str, Any]]]


async def think_node(
    state: AgentTurnState, *, model: ChatModel, registry: ToolRegistry
) -> dict[str, Any]:
    steps = int(state.get("steps", 0) or 0)
    reply = await model.complete(
        messages=list(state.get("messages", [])),
        tools=registry.to_openai_tools(),
    )

    chunks: list[dict[str, Any]] = []
    if steps > 0:
        progress = min(90, 10 + 20 * steps)
        chunks.append({"type": "progress", "stage": "analyzing", "progress": progress})
    text = (reply.content or "").strip()
    if text:
        chunks.append({"type": "text", "content": text})

    prior = state.get("final_text", "") or ""
    return {
        "messages": [reply.assistant_message()],
        "chunks": chunks,
        "pending_tool_calls": [
            {"id": tc.id, "name": tc.name, "arguments": tc.arguments} for tc in reply.tool_calls
        ],
        "steps": steps + 1,
        "final_text": f"{prior}\n\n{text}".strip() if text else prior,
    }


async def dispatch_tools_node(
    state: AgentTurnState,
    *,
    registry: ToolRegistry,
    ctx: ToolContext,
    propose: ProposeFn,
) -> dict[str, Any]:
    chunks: list[dict[str, Any]] = []
    tool_replies: list[dict[str, Any]] = []
    tool_messages: list[str] = []
    awaiting_user = False

    for call in state.get("pending_tool_calls", []):
        name = str(call.get("name", ""))
        args = dict(call.get("arguments") or {})
        call_id = str(call.get("id", ""))

        tool = registry.get(name)
        if tool is None:
            # The model still expects a reply for every tool_call id.
            tool_replies.append(_tool_reply(call_id, {"error": f"unknown tool: {name}"}))
            continue

        chunks.append({"type": "tool_call", "tool_name": name, "args": args})
        try:
            if tool.requires_confirmation and tool.build_confirmation is not None:
                confirmation = await tool.build_confirmation(args, ctx)
                card = await propose(tool, args, confirmation)
                chunks.append(card)
                tool_replies.append(
                    _tool_reply(
                        call_id,
                        {
                            "status": "awaiting_confirmation",
                            "action_id": card.get("action_id"),
                            "summary": confirmation.summary,
                        },
                    )
                )
            else:
                result = await tool.execute(args, ctx)
                if tool.chunk_type:
                    chunks.append({"type": tool.chunk_type, **result.data})
                else:
                    chunks.append(
                        {
                            "type": "tool_result",
                            "tool_name": name,
                            "formatted_message": result.formatted_message,
                            "data": result.data,
                        }
                    )
                awaiting_user = awaiting_user or tool.ends_turn
                if result.formatted_message.strip():
                    tool_messages.append(result.formatted_message)
                tool_replies.append(
                    _tool_reply(call_id, {"message": result.formatted_message, "data": result.data})
                )
        except Exception as e:
            log.warning("tool_failed", tool=name, error=str(e))
            chunks.append({"type": "error", "error": f"도구 실행 실패 ({name}): {e}"})
            tool_replies.append(_tool_reply(call_id, {"error": str(e)}))

    return {
        "messages": tool_replies,
        "chunks": chunks,
        "tool_messages": tool_messages,
        "pending_tool_calls": [],
        "awaiting_user": awaiting_user,
    }


def _tool_reply(call_id: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {
        "role": "tool",
        "tool_call_id": call_id,
        "content": json.dumps(payload, ensure_ascii=False, default=str),
    }


async def finish_node(state: AgentTurnState) -> dict[str, Any]:
    text = (state.get("final_text", "") or "").strip()
    if not text:
        tool_messages = [m for m in state.get("tool_messages", []) if m.strip()]
        text = "\n\n".join(tool_messages) if tool_messages else FALLBACK_REPLY
    return {"final_text": text}


def route_after_think(
    state: AgentTurnState, *, max_steps: int
) -> Literal["dispatch_tools", "finish"]:
    if state.get("pending_tool_calls") and int(state.get("steps", 0) or 0) < max_steps:
        return "dispatch_tools"
    return "finish"


def route_after_dispatch(state: AgentTurnState) -> Literal["think", "finish"]:
    # A guide question was shown; the next step is the user's answer, not another model call.
    return "finish" if state.get("awaiting_user") else "think"
