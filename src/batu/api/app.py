"""
batu.api.app

FastAPI app factory for the 바투 API service.

Responsibilities:
- Build the FastAPI application and register routers/middleware.
- Map `BatuError` to JSON error responses.
- Initialize and dispose shared infrastructure (DB engine/session factory,
  outbound HTTP client, LLM client, in-process limiter and cache).
"""

from __future__ import annotations

from typing import Any

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from batu.agent.builtin_tools import build_default_registry
from batu.agent.llm import OpenAIChatModel
from batu.api.routers.actions import router as actions_router
from batu.api.routers.agent import router as agent_router
from batu.api.routers.alerts import router as alerts_router
from batu.api.routers.audit import router as audit_router
from batu.api.routers.billing import router as billing_router
from batu.api.routers.campaigns import router as campaigns_router
from batu.api.routers.cron import router as cron_router
from batu.api.routers.dev_auth import router as dev_auth_router
from batu.api.routers.health import router as health_router
from batu.api.routers.meta import router as meta_router
from batu.api.routers.optimization_rules import router as optimization_rules_router
from batu.api.routers.pixels import router as pixels_router
from batu.db.init_db import init_db
from batu.db.session import create_engine, create_sessionmaker
from batu.errors import BatuError
from batu.observability.logging import configure_logging, get_logger
from batu.observability.middleware import RequestContextMiddleware
from batu.services.cache import TTLCache
from batu.services.rate_limit import FixedWindowRateLimiter
from batu.settings import Settings, get_settings

log = get_logger(__name__)


def create_app(*, settings: Settings) -> FastAPI:
    configure_logging(service_name=settings.service_name, level=settings.log_level)

    app = FastAPI(
        title="바투 API",
        version="0.1.0",
        docs_url="/docs",
        openapi_url="/openapi.json",
    )
    app.state.settings = settings
    # Auth dependencies read `get_settings`; point them at this app's settings.
    app.dependency_overrides[get_settings] = lambda: settings

    app.add_middleware(RequestContextMiddleware)
    app.include_router(health_router, tags=["health"])
    app.include_router(dev_auth_router)
    app.include_router(agent_router)
    app.include_router(actions_router)
    app.include_router(campaigns_router)
    app.include_router(optimization_rules_router)
    app.include_router(alerts_router)
    app.include_router(billing_router)
    app.include_router(audit_router)
    app.include_router(pixels_router)
    app.include_router(meta_router)
    app.include_router(cron_router)

    @app.exception_handler(BatuError)
    async def _batu_error(request: Request, exc: BatuError) -> JSONResponse:
        if exc.status_code >= 500:
            log.warning("request_failed", code=exc.code, error=exc.message)
        content: dict[str, Any] = {"error": exc.code, "detail": exc.message}
        if exc.details:
            content["details"] = exc.details
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.on_event("startup")
    async def _startup() -> None:
        log.info("startup", env=settings.env)
        engine = create_engine(settings)
        app.state.engine = engine
        app.state.sessionmaker = create_sessionmaker(engine)
        if settings.env in ("dev", "test"):
            # Dev/test convenience: create tables automatically. Prod should use Alembic migrations.
            await init_db(engine)

        # Clients may be pre-set (tests inject mock transports and a scripted model).
        app.state.owns_http = getattr(app.state, "http", None) is None
        if app.state.owns_http:
            app.state.http = httpx.AsyncClient()
        if getattr(app.state, "llm", None) is None and settings.openai_api_key:
            app.state.llm = OpenAIChatModel(settings=settings)
        if getattr(app.state, "registry", None) is None:
            app.state.registry = build_default_registry()

        app.state.chat_limiter = FixedWindowRateLimiter(
            limit=settings.rate_limit_ai_per_minute, window_seconds=60
        )
        app.state.audit_cache = TTLCache(
            ttl_seconds=settings.audit_cache_ttl_seconds,
            max_entries=settings.audit_cache_max_entries,
        )

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        if getattr(app.state, "owns_http", False):
            await app.state.http.aclose()
        engine = getattr(app.state, "engine", None)
        if engine is not None:
            await engine.dispose()
        log.info("shutdown")

    return app


# --- Module Notes -----------------------------------------------------------
# Composition only: request handling lives in routers, business rules in services
# and domain modules.
