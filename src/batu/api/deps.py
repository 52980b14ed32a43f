"""
batu.api.deps

FastAPI dependency wiring for the API layer.

Responsibilities:
- Provide dependency functions for settings and DB sessions.
- Encapsulate app.state access patterns (engine/sessionmaker, shared clients).
- Build request-scoped service objects for routers.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.status import HTTP_503_SERVICE_UNAVAILABLE

from batu.agent.llm import ChatModel
from batu.agent.tools import ToolRegistry
from batu.integrations.capi import CapiClient
from batu.integrations.meta_ads import MetaAdsClient
from batu.integrations.toss import TossPaymentsClient
from batu.services.action_confirmation import ActionConfirmationService
from batu.services.audit import AuditService
from batu.services.billing import BillingService
from batu.services.conversational_agent import ConversationalAgentService
from batu.services.optimization import OptimizationService
from batu.services.pixel import PixelService
from batu.services.quota import QuotaService
from batu.services.rate_limit import FixedWindowRateLimiter
from batu.settings import Settings


def settings_dep(request: Request) -> Settings:
    # Settings are bound to the app in `batu.api.app.create_app`.
    return request.app.state.settings  # type: ignore[attr-defined]


def sessionmaker_from_app(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.sessionmaker  # type: ignore[attr-defined]


async def db_session(
    session_factory: async_sessionmaker[AsyncSession] = Depends(sessionmaker_from_app),
) -> AsyncIterator[AsyncSession]:
    # Request-scoped DB session. Commit/rollback is managed explicitly by the service layer.
    async with session_factory() as session:
        yield session


def http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http  # type: ignore[attr-defined]


def chat_model(request: Request) -> ChatModel:
    model = getattr(request.app.state, "llm", None)
    if model is None:
        raise HTTPException(
            status_code=HTTP_503_SERVICE_UNAVAILABLE, detail="LLM is not configured"
        )
    return model


def tool_registry(request: Request) -> ToolRegistry:
    return request.app.state.registry  # type: ignore[attr-defined]


def chat_rate_limiter(request: Request) -> FixedWindowRateLimiter:
    return request.app.state.chat_limiter  # type: ignore[attr-defined]


def meta_client(
    settings: Settings = Depends(settings_dep),
    http: httpx.AsyncClient = Depends(http_client),
) -> MetaAdsClient:
    return MetaAdsClient(settings=settings, http=http)


def quota_service(session: AsyncSession = Depends(db_session)) -> QuotaService:
    return QuotaService(session=session)


def action_service(
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
    registry: ToolRegistry = Depends(tool_registry),
    meta: MetaAdsClient = Depends(meta_client),
) -> ActionConfirmationService:
    return ActionConfirmationService(session=session, settings=settings, registry=registry, meta=meta)


def agent_service(
    request: Request,
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
    registry: ToolRegistry = Depends(tool_registry),
    meta: MetaAdsClient = Depends(meta_client),
) -> ConversationalAgentService:
    # Conversation reads work without an LLM; `/chat` requires one via `chat_model`.
    return ConversationalAgentService(
        session=session,
        settings=settings,
        registry=registry,
        model=getattr(request.app.state, "llm", None),
        meta=meta,
    )


def billing_service(
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
    http: httpx.AsyncClient = Depends(http_client),
) -> BillingService:
    return BillingService(
        session=session, settings=settings, toss=TossPaymentsClient(settings=settings, http=http)
    )


def audit_service(
    request: Request,
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
    meta: MetaAdsClient = Depends(meta_client),
) -> AuditService:
    return AuditService(
        session=session,
        settings=settings,
        meta=meta,
        cache=request.app.state.audit_cache,  # type: ignore[attr-defined]
    )


def optimization_service(
    session: AsyncSession = Depends(db_session),
    meta: MetaAdsClient = Depends(meta_client),
) -> OptimizationService:
    return OptimizationService(session=session, meta=meta)


def pixel_service(
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
    http: httpx.AsyncClient = Depends(http_client),
) -> PixelService:
    return PixelService(session=session, capi=CapiClient(settings=settings, http=http))


# --- Module Notes -----------------------------------------------------------
# FastAPI caches a dependency per request, so every service built for one request
# shares the same `db_session`.
