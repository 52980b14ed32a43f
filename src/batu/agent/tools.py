"""
batu.agent.tools

Tool contract shared by the turn graph and the action-confirmation service.

Responsibilities:
- Describe a tool (name, JSON-schema parameters, whether it mutates state).
- Carry the per-request context a tool runs with (DB session, Meta client, caller).
- Keep the registry the LLM sees as its function list.

Query tools run as soon as the model calls them. Mutation tools never run from
the graph: they produce a `Confirmation` card and wait for the user.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from batu.domain.plans import QuotaFeature
from batu.integrations.meta_ads import MetaAdsClient
from batu.settings import Settings


@dataclass(frozen=True, slots=True)
class ToolContext:
    session: AsyncSession
    settings: Settings
    user_id: str
    conversation_id: uuid.UUID | None
    meta: MetaAdsClient | None
    now: datetime


@dataclass(frozen=True, slots=True)
class ToolResult:
    data: Any
    formatted_message: str


@dataclass(frozen=True, slots=True)
class ConfirmationDetail:
    label: str
    value: str
    changed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class Confirmation:
    summary: str
    details: list[ConfirmationDetail] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def details_as_dicts(self) -> list[dict[str, Any]]:
        return [d.to_dict() for d in self.details]


ExecuteFn = Callable[[dict[str, Any], ToolContext], Awaitable[ToolResult]]
BuildConfirmationFn = Callable[[dict[str, Any], ToolContext], Awaitable[Confirmation]]


@dataclass(frozen=True, slots=True)
class AgentTool:
    name: str
    description: str
    parameters: dict[str, Any]
    execute: ExecuteFn
    requires_confirmation: bool = False
    build_confirmation: BuildConfirmationFn | None = None
    quota_feature: QuotaFeature | None = None
    # Query tools whose result streams as its own chunk type instead of `tool_result`.
    chunk_type: str | None = None
    # The turn ends after this tool so the user can answer.
    ends_turn: bool = False

    def to_openai(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, AgentTool] = {}

    def register(self, tool: AgentTool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        if tool.requires_confirmation and tool.build_confirmation is None:
            raise ValueError(f"Mutation tool {tool.name} needs build_confirmation")
        self._tools[tool.name] = tool

    def get(self, name: str) -> AgentTool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def all(self) -> list[AgentTool]:
        return list(self._tools.values())

    def to_openai_tools(self) -> list[dict[str, Any]]:
        return [t.to_openai() for t in self._tools.values()]
