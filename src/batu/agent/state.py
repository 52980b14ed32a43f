"""
batu.agent.state

Typed state schema for one agent turn (one user message).

Responsibilities:
- Define the contract between the turn graph nodes.
- Keep the OpenAI-format transcript and the SSE chunks produced so far.
"""

from __future__ import annotations

from typing import Annotated, Any, TypedDict

from batu.agent.reducers import append_items


class AgentTurnState(TypedDict, total=False):
    # Identifiers
    user_id: str
    conversation_id: str

    # Transcript sent to the model (system + history + this turn)
    messages: Annotated[list[dict[str, Any]], append_items]

    # Stream chunks emitted by nodes, in order
    chunks: Annotated[list[dict[str, Any]], append_items]

    # Tool calls from the latest model reply, consumed by dispatch_tools
    pending_tool_calls: list[dict[str, Any]]

    # Loop control
    steps: int
    awaiting_user: bool

    # Text the model produced; formatted messages of query tools
    final_text: str
    tool_messages: Annotated[list[str], append_items]


# --- Module Notes -----------------------------------------------------------
# Tool calls are stored as plain dicts (id/name/arguments) so the state stays
# JSON-serializable if a checkpointer is added later.
