"""Application settings loaded from environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """VitalRoute analysis server configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Default to loopback; there is no auth layer in front of the MCP tools.
    vitalroute_host: str = "127.0.0.1"
    vitalroute_port: int = 8011
    vitalroute_log_level: str = "info"
    vitalroute_allow_insecure_bind: bool = False

    # LLM provider backing the AI analysis transport
    llm_provider: Literal["anthropic", "openai", "mock"] = "anthropic"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-5-20250929"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"

    # Remote AI analysis service
    ai_backend: Literal["llm", "http"] = "llm"
    ai_service_url: str = ""
    ai_timeout_seconds: float = 30.0
    ai_max_retries: int = 3
    ai_backoff_base_seconds: float = 1.0
    offline_mode: bool = False

    # Rate limiting / budget
    monthly_budget_usd: float = 10.0
    quota_policy_path: str = ""
    rate_limit_persist: bool = True

    # Result cache
    cache_ttl_seconds: float = 3600.0
    cache_max_entries: int = 50
    cache_similarity_threshold: float = 0.9
    cache_persist: bool = False

    # Storage (key-value store under the cache and rate limiter)
    db_path: str = "~/.vitalroute/state.db"

    # Encryption of persisted cache entries
    encryption_key: str = ""

    # Orchestrator
    history_size: int = 20
    default_language: str = "en"


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
