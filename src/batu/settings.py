"""
batu.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for all layers.
- Hide secrets from repr/logging (JWT secret, OpenAI/Toss keys, share-link secret).
- Offer a cached settings instance for dependency injection.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="BATU_", case_sensitive=False)

    # Environment controls toggle behavior like auto-init DB tables.
    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "batu-api"
    log_level: str = "INFO"

    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Auth
    jwt_alg: str = "HS256"
    jwt_issuer: str = "batu"
    jwt_audience: str = "batu-api"
    jwt_secret: str = Field(default="dev-secret-change-me", repr=False)
    jwt_leeway_seconds: int = 30

    # Persistence
    database_url: str = "sqlite+aiosqlite:///./batu.db"

    # Agent / LLM
    openai_api_key: str = Field(default="", repr=False)
    openai_model: str = "gpt-4o-mini"
    agent_temperature: float = 0.7
    agent_max_steps: int = 5
    agent_history_limit: int = 20
    pending_action_ttl_minutes: int = 30

    # Resilience around the LLM boundary
    llm_retry_attempts: int = 3
    llm_retry_base_delay_seconds: float = 0.5
    circuit_breaker_threshold: int = 5
    circuit_breaker_reset_seconds: float = 60.0

    # Per-user chat throttle (fixed window)
    rate_limit_ai_per_minute: int = 20

    # Meta Marketing API / Conversions API
    meta_graph_base_url: str = "https://graph.facebook.com/v18.0"
    meta_timeout_seconds: float = 30.0
    meta_max_attempts: int = 3

    # Toss Payments
    toss_base_url: str = "https://api.tosspayments.com"
    toss_secret_key: str = Field(default="", repr=False)

    # Free audit funnel
    audit_share_secret: str = Field(default="dev-audit-secret-change-me", repr=False)
    audit_share_ttl_days: int = 7
    audit_cache_ttl_seconds: float = 600.0
    audit_cache_max_entries: int = 1000


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars for each request dependency.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# Every other module depends on this one; add fields with safe local defaults so
# `Settings(env="test")` keeps working without any environment variables.
