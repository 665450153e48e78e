"""MCP tools for routed health analysis.

Callers may pass a snapshot/profile inline; otherwise the configured data
source and profile store supply them. Every tool returns a JSON string.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from vitalroute.domains.health.connectors import HealthDataSource, UserProfileStore
    from vitalroute.domains.health.orchestration.orchestrator import HealthAnalysisOrchestrator

from vitalroute.domains.health.domain_logic.health_models import HealthSnapshot, UserProfile
from vitalroute.domains.health.orchestration.errors import InsufficientDataError
from vitalroute.domains.health.orchestration.models import (
    AnalysisRequest,
    AnalysisResult,
    ProgressEvent,
    ProgressStage,
    RequestKind,
)

logger = logging.getLogger(__name__)

# Progress fraction reported to MCP clients per stage.
_STAGE_PROGRESS = {
    ProgressStage.CACHE_CHECKED: 1,
    ProgressStage.DECIDING: 2,
    ProgressStage.EXECUTING: 3,
    ProgressStage.FALLBACK: 3,
    ProgressStage.CACHING: 4,
    ProgressStage.COMPLETED: 5,
    ProgressStage.FAILED: 5,
}
_TOTAL_STAGES = 5


def _error(exc: Exception) -> str:
    return json.dumps({
        "status": "error",
        "error_type": type(exc).__name__,
        "message": str(exc),
    })


def register_analysis_tools(
    mcp: FastMCP,
    orchestrator: HealthAnalysisOrchestrator,
    data_source: HealthDataSource,
    profile_store: UserProfileStore,
    default_language: str = "en",
) -> None:
    """Register the analysis tools on the MCP server."""

    async def _inputs(
        snapshot: dict[str, Any] | None, profile: dict[str, Any] | None
    ) -> tuple[HealthSnapshot, UserProfile]:
        snap = (
            HealthSnapshot.from_dict(snapshot) if snapshot else await data_source.get_snapshot()
        )
        prof = UserProfile.from_dict(profile) if profile else await profile_store.get_profile()
        return snap, prof

    @mcp.tool
    async def request_analysis(
        ctx: Context,
        kind: str = "daily",
        snapshot: dict[str, Any] | None = None,
        profile: dict[str, Any] | None = None,
        language: str | None = None,
        force_local: bool = False,
    ) -> str:
        """Analyze health data, routing to local rules, the AI service, or both.

        Args:
            kind: quick | daily | comprehensive | weekly | critical | user_requested.
            snapshot: Optional flat dict of metrics (resting_heart_rate, hrv, systolic,
                diastolic, sleep_hours, sleep_efficiency, steps, bmi, ...). Defaults
                to the connected data source.
            profile: Optional user profile dict (age, gender, goals, ...).
            language: Output language for generated insights ('en' or 'ja').
            force_local: Skip routing and answer with the local engine only.
        """
        try:
            request_kind = RequestKind.parse(kind)
            snap, prof = await _inputs(snapshot, profile)
            request = AnalysisRequest(
                snapshot=snap,
                profile=prof,
                kind=request_kind,
                language=language or prof.language or default_language,
                force_local=force_local,
            )

            stages: list[str] = []
            result: AnalysisResult | None = None
            async for item in orchestrator.stream_analysis(request):
                if isinstance(item, ProgressEvent):
                    stages.append(item.stage.value)
                    await ctx.report_progress(
                        progress=_STAGE_PROGRESS[item.stage], total=_TOTAL_STAGES
                    )
                else:
                    result = item
        except (InsufficientDataError, ValueError) as exc:
            logger.info("request_analysis rejected: %s", exc)
            return _error(exc)

        payload = result.to_dict()
        payload["status"] = "ok"
        payload["stages"] = stages
        return json.dumps(payload, default=str)

    @mcp.tool
    async def quick_health_check(
        ctx: Context,
        snapshot: dict[str, Any] | None = None,
        profile: dict[str, Any] | None = None,
        language: str | None = None,
    ) -> str:
        """Fast local-only health check with a single focus area and tips.

        Args:
            snapshot: Optional flat dict of metrics. Defaults to the connected data source.
            profile: Optional user profile dict.
            language: Output language ('en' or 'ja').
        """
        try:
            snap, prof = await _inputs(snapshot, profile)
            result = await orchestrator.quick_health_check(
                snap, prof, language or prof.language or default_language
            )
        except (InsufficientDataError, ValueError) as exc:
            logger.info("quick_health_check rejected: %s", exc)
            return _error(exc)
        payload = result.to_dict()
        payload["status"] = "ok"
        return json.dumps(payload, default=str)

    @mcp.tool
    async def get_capabilities(ctx: Context) -> str:
        """Report which analysis routes are currently available and remaining AI quota."""
        capabilities = await orchestrator.get_capabilities()
        return json.dumps(capabilities.to_dict())

    @mcp.tool
    async def get_usage_statistics(ctx: Context) -> str:
        """Per-kind AI usage, spend, usage analytics, availability, and cache statistics."""
        limiter = orchestrator.rate_limiter
        usage = await limiter.usage_statistics()
        usage["availability"] = {
            kind.value: (await limiter.predict_availability(kind)).to_dict()
            for kind in RequestKind
        }
        usage["cache"] = await orchestrator.cache.stats()
        return json.dumps(usage)

    @mcp.tool
    async def get_analysis_history(ctx: Context, limit: int = 10) -> str:
        """Summaries of the most recent analyses, newest first.

        Args:
            limit: Maximum number of entries (1-20).
        """
        limit = max(1, min(20, limit))
        entries = [
            {
                "id": r.id,
                "method": r.method,
                "request_kind": r.request_kind.value,
                "cache_hit": r.cache_hit,
                "fallback_reason": r.metrics.fallback_reason,
                "primary": r.metrics.primary,
                "overall_score": r.local_insights.overall_score if r.local_insights else None,
                "generated_at": r.generated_at.isoformat(),
            }
            for r in reversed(orchestrator.history[-limit:])
        ]
        return json.dumps({"count": len(entries), "analyses": entries})
