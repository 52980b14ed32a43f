from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from batu.agent.llm import ChatModel
from batu.agent.nodes import (
    ProposeFn,
    dispatch_tools_node,
    finish_node,
    route_after_dispatch,
    route_after_think,
    think_node,
)
from batu.agent.state import AgentTurnState
from batu.agent.tools import ToolContext, ToolRegistry


def build_agent_graph(
    *,
    model: ChatModel,
    registry: ToolRegistry,
    ctx: ToolContext,
    propose: ProposeFn,
    max_steps: int,
):
    """
    Returns a compiled LangGraph runnable for one agent turn:
    think -> (dispatch_tools -> think)* -> finish. A tool that ends the turn
    (a guide question) routes dispatch_tools straight to finish.
    """

    try:
        from langgraph.graph import END, StateGraph  # type: ignore[import-not-found]
    except Exception as e:  # pragma: no cover
        raise RuntimeError(
            "LangGraph is not available. Install dependencies (see pyproject.toml)."
        ) from e

    graph = StateGraph(AgentTurnState)

    graph.add_node("think", _bind(think_node, model=model, registry=registry))
    graph.add_node(
        "dispatch_tools", _bind(dispatch_tools_node, registry=registry, ctx=ctx, propose=propose)
    )
    graph.add_node("finish", finish_node)

    graph.set_entry_point("think")

    graph.add_conditional_edges(
        "think",
        _bind_route(max_steps),
        {"dispatch_tools": "dispatch_tools", "finish": "finish"},
    )
    graph.add_conditional_edges(
        "dispatch_tools",
        route_after_dispatch,
        {"think": "think", "finish": "finish"},
    )
    graph.add_edge("finish", END)

    return graph.compile()


def _bind(
    fn: Callable[..., Awaitable[dict[str, Any]]], **deps: Any
) -> Callable[[AgentTurnState], Awaitable[dict[str, Any]]]:
    async def _wrapped(state: AgentTurnState) -> dict[str, Any]:
        return await fn(state, **deps)

    return _wrapped


def _bind_route(max_steps: int) -> Callable[[AgentTurnState], str]:
    def _route(state: AgentTurnState) -> str:
        return route_after_think(state, max_steps=max_steps)

    return _route
