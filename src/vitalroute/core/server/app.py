"""VitalRoute MCP Server: application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging
from datetime import timedelta

from fastmcp import FastMCP

from vitalroute.core.config.settings import Settings, get_settings
from vitalroute.core.llm.provider import create_provider
from vitalroute.core.storage.database import DatabaseError, StateDatabase
from vitalroute.core.storage.encryption import EncryptionError, ValueEncryptor
from vitalroute.core.storage.kv_store import (
    EncryptedKeyValueStore,
    KeyValueStore,
    SQLiteKeyValueStore,
)
from vitalroute.domains.health.connectors import HealthDataSource, UserProfileStore
from vitalroute.domains.health.connectors.providers import MockHealthDataSource, StaticProfileStore
from vitalroute.domains.health.domain_logic.local_analyzer import LocalHealthAnalyzer
from vitalroute.domains.health.orchestration.ai_client import (
    AIServiceTransport,
    HttpAITransport,
    LLMAITransport,
    RemoteAIClient,
)
from vitalroute.domains.health.orchestration.cache import AnalysisResultCache
from vitalroute.domains.health.orchestration.cost import load_quota_policy
from vitalroute.domains.health.orchestration.decision_engine import DecisionEngine
from vitalroute.domains.health.orchestration.orchestrator import HealthAnalysisOrchestrator
from vitalroute.domains.health.orchestration.rate_limiter import AIRequestRateLimiter
from vitalroute.domains.health.tools.analysis_tools import register_analysis_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "VitalRoute Health Analysis"
SERVER_VERSION = "0.1.0"


def _build_transport(settings: Settings) -> AIServiceTransport:
    """Pick the wire for the AI analysis service.

    ``http`` talks to a dedicated analysis backend; ``llm`` drives the
    configured LLM provider directly, falling back to the mock provider when
    no API key is set.
    """
    if settings.ai_backend == "http":
        if not settings.ai_service_url:
            raise ValueError("AI_BACKEND=http requires AI_SERVICE_URL to be set")
        logger.info("AI analysis backend: HTTP service at %s", settings.ai_service_url)
        return HttpAITransport(settings.ai_service_url, timeout=settings.ai_timeout_seconds)

    if settings.llm_provider == "mock":
        provider_name = "mock"
        api_key = ""
        model = ""
    elif settings.llm_provider == "anthropic":
        api_key = settings.anthropic_api_key
        model = settings.anthropic_model
        provider_name = "anthropic" if api_key else "mock"
    elif settings.llm_provider == "openai":
        api_key = settings.openai_api_key
        model = settings.openai_model
        provider_name = "openai" if api_key else "mock"
    else:  # pragma: no cover
        raise ValueError(f"Unknown LLM provider: {settings.llm_provider!r}")

    if provider_name == "mock" and settings.llm_provider != "mock":
        logger.warning(
            "No API key configured for provider '%s'; falling back to mock provider",
            settings.llm_provider,
        )

    provider = create_provider(
        provider_name=provider_name,
        api_key=api_key,
        model=model,
        timeout=settings.ai_timeout_seconds,
    )
    logger.info("AI analysis backend: LLM provider '%s'", provider.name)
    return LLMAITransport(provider)


def _open_store(settings: Settings) -> tuple[StateDatabase | None, KeyValueStore | None]:
    """Open the SQLite state store when anything is configured to persist."""
    if not (settings.rate_limit_persist or settings.cache_persist):
        logger.info("Persistence disabled; rate limits and cache are in-memory only")
        return None, None

    try:
        db = StateDatabase(settings.db_path)
        db.initialize()
    except (DatabaseError, OSError) as exc:
        logger.error("Failed to open state database %s: %s", settings.db_path, exc)
        logger.warning("Continuing without persistence; quotas reset on restart")
        return None, None

    store: KeyValueStore = SQLiteKeyValueStore(db)
    if settings.encryption_key:
        try:
            store = EncryptedKeyValueStore(store, ValueEncryptor(settings.encryption_key))
        except EncryptionError as exc:
            logger.error("Invalid ENCRYPTION_KEY: %s", exc)
            logger.warning("Continuing without persistence; cached results will not be stored")
            db.close()
            return None, None
    elif settings.cache_persist:
        logger.warning(
            "CACHE_PERSIST is set without ENCRYPTION_KEY; cached results are stored in plain text"
        )

    logger.info(
        "State database ready: %s (schema v%d, encrypted=%s)",
        settings.db_path,
        db.get_schema_version(),
        bool(settings.encryption_key),
    )
    return db, store


def build_orchestrator(
    settings: Settings,
    *,
    ai_client: RemoteAIClient | None = None,
    store: KeyValueStore | None = None,
) -> HealthAnalysisOrchestrator:
    """Wire the orchestrator and its collaborators from settings."""
    policy = load_quota_policy(settings.quota_policy_path or None).with_budget(
        settings.monthly_budget_usd
    )

    if ai_client is None and not settings.offline_mode:
        ai_client = RemoteAIClient(
            _build_transport(settings),
            timeout=settings.ai_timeout_seconds,
            max_attempts=settings.ai_max_retries,
            backoff_base=settings.ai_backoff_base_seconds,
        )

    rate_limiter = AIRequestRateLimiter(
        policy, store=store if settings.rate_limit_persist else None
    )
    cache = AnalysisResultCache(
        ttl=timedelta(seconds=settings.cache_ttl_seconds),
        max_entries=settings.cache_max_entries,
        similarity_threshold=settings.cache_similarity_threshold,
        store=store if settings.cache_persist else None,
    )
    return HealthAnalysisOrchestrator(
        decision_engine=DecisionEngine(),
        rate_limiter=rate_limiter,
        cache=cache,
        local_analyzer=LocalHealthAnalyzer(),
        ai_client=ai_client,
        offline=settings.offline_mode,
        history_size=settings.history_size,
    )


def create_app(
    *,
    orchestrator_override: HealthAnalysisOrchestrator | None = None,
    ai_client_override: RemoteAIClient | None = None,
    store_override: KeyValueStore | None = None,
    data_source_override: HealthDataSource | None = None,
    profile_store_override: UserProfileStore | None = None,
) -> FastMCP:
    """Create and configure the VitalRoute MCP server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Opens the persisted state store (rate limits, optionally the cache)
    3. Builds the AI client, rate limiter, cache, and orchestrator
    4. Initializes the health data source and profile store (mock for now)
    5. Registers all tools
    """
    settings = get_settings()

    # --- Server instance ---
    server = FastMCP(
        SERVER_NAME,
        instructions=(
            "Health analysis server. Routes each analysis request to local "
            "evidence-based rules, a remote AI service, or both, within AI "
            "quota and budget limits, and always returns a usable result."
        ),
    )

    # --- Orchestrator ---
    db: StateDatabase | None = None
    if orchestrator_override is not None:
        orchestrator = orchestrator_override
    else:
        store = store_override
        if store is None:
            db, store = _open_store(settings)
        orchestrator = build_orchestrator(settings, ai_client=ai_client_override, store=store)
    logger.info(
        "Orchestrator ready (ai=%s, offline=%s)",
        orchestrator.ai_client is not None,
        orchestrator.offline,
    )

    # --- Health data source and profile store ---
    if data_source_override is not None:
        data_source = data_source_override
    else:
        data_source = MockHealthDataSource()
        logger.info("Using mock health data source")
    profile_store = profile_store_override or StaticProfileStore()

    # --- Register tools ---
    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        return {
            "status": "ok",
            "server": SERVER_NAME,
            "version": SERVER_VERSION,
            "ai_configured": orchestrator.ai_client is not None,
            "offline": orchestrator.offline,
            "data_source": data_source.data_source,
            "storage_enabled": db is not None or store_override is not None,
            "history_size": len(orchestrator.history),
        }

    register_analysis_tools(
        server,
        orchestrator,
        data_source,
        profile_store,
        default_language=settings.default_language,
    )
    logger.info("Analysis tools registered")

    return server


# Module-level instance for FastMCP discovery ("server": "...app.py:mcp").
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
