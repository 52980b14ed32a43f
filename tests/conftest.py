"""
tests.conftest

Shared fixtures: an in-memory app with mocked outbound HTTP and a scripted LLM,
plus a bare session for service-level tests.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from datetime import timedelta
from typing import Any

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession

from batu.agent.llm import LLMReply, ToolCall
from batu.api.app import create_app
from batu.auth.jwt import JwtConfig, issue_token
from batu.auth.models import ROLE_ADVERTISER
from batu.db.init_db import init_db
from batu.db.session import create_engine, create_sessionmaker
from batu.resilience import reset_breakers
from batu.settings import Settings

MEMORY_DB = "sqlite+aiosqlite:///:memory:"
GRAPH_PREFIX = "/v18.0"


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "env": "test",
        "database_url": MEMORY_DB,
        "llm_retry_base_delay_seconds": 0.0,
        "toss_secret_key": "test_sk",
    }
    values.update(overrides)
    return Settings(**values)


class ScriptedModel:
    """
    ChatModel stand-in that returns the queued replies in order and records
    every transcript it was called with.
    """

    def __init__(self, replies: list[LLMReply] | None = None) -> None:
        self.replies = list(replies or [])
        self.calls: list[list[dict[str, Any]]] = []

    def queue(self, *replies: LLMReply) -> None:
        self.replies.extend(replies)

    async def complete(
        self, *, messages: list[dict[str, Any]], tools: list[dict[str, Any]]
    ) -> LLMReply:
        self.calls.append(list(messages))
        if not self.replies:
            return LLMReply(content="완료했습니다.")
        return self.replies.pop(0)


def tool_reply(name: str, call_id: str = "call_1", **arguments: Any) -> LLMReply:
    return LLMReply(tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments)])


class FakeUpstream:
    """
    Routes outbound requests by (method, path) to canned JSON responses and
    keeps every request for assertions.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, path: str, *responses: httpx.Response) -> None:
        self.routes[(method, path)] = list(responses)

    def json_body(self, index: int = -1) -> dict[str, Any]:
        return json.loads(self.requests[index].content or b"{}")

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix(GRAPH_PREFIX)
        queued = self.routes.get((request.method, path))
        if not queued:
            return httpx.Response(404, json={"error": {"message": f"no route {path}", "code": 100}})
        # The last queued response repeats once the others are used up.
        canned = queued.pop(0) if len(queued) > 1 else queued[0]
        return httpx.Response(canned.status_code, headers=canned.headers, content=canned.content)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


def bearer(settings: Settings, user_id: str = "user-1", roles: list[str] | None = None) -> dict[str, str]:
    token = issue_token(
        cfg=JwtConfig.from_settings(settings),
        subject=user_id,
        roles=roles or [ROLE_ADVERTISER],
        ttl=timedelta(minutes=5),
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(autouse=True)
def _fresh_breakers() -> None:
    reset_breakers()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def model() -> ScriptedModel:
    return ScriptedModel()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest_asyncio.fixture
async def app(settings: Settings, upstream: FakeUpstream, model: ScriptedModel) -> AsyncIterator[FastAPI]:
    app = create_app(settings=settings)
    app.state.http = upstream.client()
    app.state.llm = model

    # httpx ASGITransport does not run lifespan events; drive them explicitly.
    await app.router.startup()
    try:
        yield app
    finally:
        await app.router.shutdown()
        await app.state.http.aclose()


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest_asyncio.fixture
async def session() -> AsyncIterator[AsyncSession]:
    engine = create_engine(make_settings())
    await init_db(engine)
    async with create_sessionmaker(engine)() as s:
        yield s
    await engine.dispose()


def sse_chunks(body: str) -> list[dict[str, Any]]:
    return [
        json.loads(line[len("data: ") :])
        for line in body.splitlines()
        if line.startswith("data: ")
    ]


# --- Module Notes -----------------------------------------------------------
# Meta and Toss share the one mocked `app.state.http`; the Graph version
# prefix is stripped so routes read like `("POST", "/act_1/campaigns")`.
