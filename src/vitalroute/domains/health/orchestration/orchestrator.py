"""Health analysis orchestrator: the entry point for analysis requests.

Per request the stages always run in this order:

    cache check -> decision -> (quota gate) -> execution -> caching -> history

Execution is local, AI, or hybrid. AI failures never reach the caller; they
degrade to a local answer with ``metrics.fallback_reason`` explaining why.
The only failure a caller sees is :class:`InsufficientDataError`.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Callable

from vitalroute.domains.health.domain_logic.health_models import (
    HealthSnapshot,
    LocalInsights,
    UserProfile,
)
from vitalroute.domains.health.domain_logic.local_analyzer import (
    LocalHealthAnalyzer,
    data_quality_score,
)
from vitalroute.domains.health.orchestration.ai_client import RemoteAIClient
from vitalroute.domains.health.orchestration.cache import AnalysisResultCache
from vitalroute.domains.health.orchestration.decision_engine import DecisionEngine
from vitalroute.domains.health.orchestration.errors import AIServiceError, InsufficientDataError
from vitalroute.domains.health.orchestration.models import (
    AIInsights,
    AIRoute,
    AnalysisRequest,
    AnalysisResult,
    DecisionFactors,
    HybridRoute,
    LocalRoute,
    PerformanceMetrics,
    ProgressEvent,
    ProgressStage,
    RequestKind,
    RoutingDecision,
)
from vitalroute.domains.health.orchestration.rate_limiter import AIRequestRateLimiter

logger = logging.getLogger(__name__)

EventCallback = Callable[[ProgressEvent], Any]

# Hybrid strategy -> how local and AI payloads are reconciled.
COMBINATION_BY_STRATEGY = {
    "local_first": "local_fallback_ai",
    "ai_enhanced": "ai_fallback_local",
    "parallel": "best_of_both",
    "sequential": "local_fallback_ai",
}

FALLBACK_CONFIDENCE = 0.8
QUICK_CHECK_CONFIDENCE = 0.95

_STREAM_DONE = object()


@dataclass(frozen=True)
class Capabilities:
    ai_available: bool
    local_available: bool
    hybrid_available: bool
    remaining_quota: int
    next_reset_time: datetime
    analysis_in_progress: bool
    cache_size: int

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["next_reset_time"] = self.next_reset_time.isoformat()
        return data


@dataclass
class _Execution:
    method: str
    routing: RoutingDecision
    local: LocalInsights | None = None
    ai: AIInsights | None = None
    fallback_reason: str | None = None
    combination: str | None = None
    primary: str | None = None


class HealthAnalysisOrchestrator:
    """Coordinates caching, routing, quota gating, and execution.

    All collaborators are injected; the orchestrator holds no global state.
    ``ai_client`` may be ``None``, in which case every request is answered
    locally as if offline.
    """

    def __init__(
        self,
        decision_engine: DecisionEngine,
        rate_limiter: AIRequestRateLimiter,
        cache: AnalysisResultCache,
        local_analyzer: LocalHealthAnalyzer,
        ai_client: RemoteAIClient | None = None,
        *,
        offline: bool = False,
        history_size: int = 20,
    ) -> None:
        self.decision_engine = decision_engine
        self.rate_limiter = rate_limiter
        self.cost_calculator = rate_limiter.cost_calculator
        self.cache = cache
        self.local_analyzer = local_analyzer
        self.ai_client = ai_client
        self.offline = offline
        self._history: deque[AnalysisResult] = deque(maxlen=history_size)
        self._last_result: AnalysisResult | None = None
        self._in_flight = 0

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    @property
    def history(self) -> list[AnalysisResult]:
        return list(self._history)

    @property
    def last_result(self) -> AnalysisResult | None:
        return self._last_result

    @property
    def analysis_in_progress(self) -> bool:
        return self._in_flight > 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def request_analysis(
        self,
        request: AnalysisRequest,
        on_event: EventCallback | None = None,
    ) -> AnalysisResult:
        """Analyze a request, degrading to local analysis on any AI failure.

        Raises:
            InsufficientDataError: If the snapshot carries no metrics.
        """
        self._in_flight += 1
        try:
            return await self._run(request, on_event)
        finally:
            self._in_flight -= 1

    async def quick_health_check(
        self,
        snapshot: HealthSnapshot,
        profile: UserProfile,
        language: str = "en",
    ) -> AnalysisResult:
        """Always-local fast path; bypasses the decision engine and the cache."""
        self._require_data(snapshot)
        start = time.monotonic()
        self._in_flight += 1
        try:
            local = self.local_analyzer.analyze(snapshot, profile, language)
            quick = self.local_analyzer.quick_assessment(snapshot)
        finally:
            self._in_flight -= 1

        result = AnalysisResult(
            id=str(uuid.uuid4()),
            method="local",
            routing=LocalRoute(reason="speed_optimization", confidence=QUICK_CHECK_CONFIDENCE),
            metrics=PerformanceMetrics(
                processing_time=time.monotonic() - start,
                data_quality=local.data_quality,
                primary="local",
            ),
            request_kind=RequestKind.QUICK,
            language=language,
            local_insights=local,
            quick_insights=quick,
        )
        self._remember(result)
        return result

    async def get_capabilities(self) -> Capabilities:
        ai_configured = self.ai_client is not None and not self.offline
        quota_ok = (await self.rate_limiter.check(RequestKind.DAILY)).allowed
        ai_available = ai_configured and quota_ok
        return Capabilities(
            ai_available=ai_available,
            local_available=True,
            hybrid_available=ai_available,
            remaining_quota=await self.rate_limiter.remaining_requests(),
            next_reset_time=await self.rate_limiter.next_reset_time(),
            analysis_in_progress=self.analysis_in_progress,
            cache_size=await self.cache.size(),
        )

    async def stream_analysis(
        self, request: AnalysisRequest
    ) -> AsyncIterator[ProgressEvent | AnalysisResult]:
        """Yield progress events as they happen, then the final result.

        Closing the iterator early cancels the underlying analysis.
        """
        queue: asyncio.Queue = asyncio.Queue()
        task = asyncio.create_task(self.request_analysis(request, on_event=queue.put_nowait))
        task.add_done_callback(lambda _: queue.put_nowait(_STREAM_DONE))
        try:
            while True:
                item = await queue.get()
                if item is _STREAM_DONE:
                    break
                yield item
            yield task.result()
        finally:
            if not task.done():
                task.cancel()

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run(self, request: AnalysisRequest, on_event: EventCallback | None) -> AnalysisResult:
        start = time.monotonic()
        rid = request.request_id

        try:
            self._require_data(request.snapshot)
        except InsufficientDataError as exc:
            _emit(on_event, ProgressStage.FAILED, rid, error=str(exc))
            raise

        cached = await self.cache.get(request)
        _emit(on_event, ProgressStage.CACHE_CHECKED, rid, hit=cached is not None)
        if cached is not None:
            logger.info("Serving %s analysis from cache (%s)", request.kind.value, cached.id)
            self._remember(cached)
            _emit(on_event, ProgressStage.COMPLETED, rid, result_id=cached.id, cache_hit=True)
            return cached

        _emit(on_event, ProgressStage.DECIDING, rid)
        factors = self.decision_engine.compute_factors(
            request,
            budget_available=await self.rate_limiter.budget_fraction_available(),
            offline=self.offline or self.ai_client is None,
        )
        route = self.decision_engine.decide(request, factors)
        route, cost, gate_reason = await self._gate(request, route, factors)
        logger.info(
            "Routing %s request %s -> %s (%s)",
            request.kind.value,
            rid,
            route.method,
            getattr(route, "reason", None) or getattr(route, "strategy", ""),
        )

        _emit(on_event, ProgressStage.EXECUTING, rid, method=route.method)
        execution = await self._execute(request, route, factors, on_event)

        result = AnalysisResult(
            id=str(uuid.uuid4()),
            method=execution.method,
            routing=execution.routing,
            metrics=PerformanceMetrics(
                processing_time=time.monotonic() - start,
                cost=cost,
                data_quality=(
                    execution.local.data_quality
                    if execution.local is not None
                    else data_quality_score(request.snapshot)
                ),
                fallback_reason=execution.fallback_reason or gate_reason,
                combination=execution.combination,
                primary=execution.primary or ("local" if execution.local is not None else "ai"),
            ),
            request_kind=request.kind,
            language=request.language,
            local_insights=execution.local,
            ai_insights=execution.ai,
        )

        _emit(on_event, ProgressStage.CACHING, rid, result_id=result.id)
        await self.cache.put(request, result)
        self._remember(result)
        _emit(on_event, ProgressStage.COMPLETED, rid, result_id=result.id, cache_hit=False)
        return result

    async def _gate(
        self,
        request: AnalysisRequest,
        route: RoutingDecision,
        factors: DecisionFactors,
    ) -> tuple[RoutingDecision, float, str | None]:
        """Reserve quota for routes that call the AI service.

        A denial is a routing outcome, not an error: the route becomes Local.
        """
        if isinstance(route, LocalRoute):
            return route, 0.0, None

        gate = await self.rate_limiter.check_and_reserve(request.kind)
        if gate.allowed:
            return route, gate.cost, None

        reason = gate.outcome
        if getattr(gate, "window", None):
            reason = f"{reason}:{gate.window}"
        local = LocalRoute(
            reason="budget_constraints",
            confidence=self.decision_engine.local_score(factors),
        )
        return local, 0.0, reason

    async def _execute(
        self,
        request: AnalysisRequest,
        route: RoutingDecision,
        factors: DecisionFactors,
        on_event: EventCallback | None,
    ) -> _Execution:
        if isinstance(route, LocalRoute):
            return _Execution(method="local", routing=route, local=self._analyze_local(request))
        if isinstance(route, AIRoute):
            return await self._execute_ai(request, route, factors, on_event)
        if isinstance(route, HybridRoute):
            return await self._execute_hybrid(request, route)
        raise TypeError(f"Unsupported routing decision: {route!r}")

    async def _execute_ai(
        self,
        request: AnalysisRequest,
        route: AIRoute,
        factors: DecisionFactors,
        on_event: EventCallback | None,
    ) -> _Execution:
        try:
            ai = await self._call_ai(request)
            return _Execution(method="ai", routing=route, ai=ai)
        except AIServiceError as exc:
            logger.warning("AI analysis failed, falling back to local: %s", exc)
            error: Exception = exc
        except Exception as exc:
            logger.exception("Unexpected AI analysis error, falling back to local")
            error = exc

        limitations = self.decision_engine.local_limitations(factors)
        _emit(on_event, ProgressStage.FALLBACK, request.request_id,
              error=str(error), limitations=limitations)
        return _Execution(
            method="local_fallback",
            routing=LocalRoute(reason="ai_fallback", confidence=FALLBACK_CONFIDENCE),
            local=self._analyze_local(request),
            fallback_reason=f"ai_error: {error}",
        )

    async def _execute_hybrid(self, request: AnalysisRequest, route: HybridRoute) -> _Execution:
        local_task = asyncio.create_task(
            asyncio.to_thread(
                self.local_analyzer.analyze, request.snapshot, request.profile, request.language
            )
        )
        ai_task = asyncio.create_task(self._call_ai(request))
        try:
            local_res, ai_res = await asyncio.gather(local_task, ai_task, return_exceptions=True)
        except asyncio.CancelledError:
            local_task.cancel()
            ai_task.cancel()
            raise

        if isinstance(local_res, BaseException):
            raise local_res

        fallback_reason = None
        ai: AIInsights | None = None
        if isinstance(ai_res, AIServiceError):
            logger.warning("AI half of hybrid analysis failed: %s", ai_res)
            fallback_reason = f"ai_error: {ai_res}"
        elif isinstance(ai_res, asyncio.CancelledError):
            fallback_reason = "ai_cancelled"
        elif isinstance(ai_res, Exception):
            logger.error("Unexpected error in AI half of hybrid analysis", exc_info=ai_res)
            fallback_reason = f"ai_error: {ai_res}"
        elif isinstance(ai_res, BaseException):
            raise ai_res
        else:
            ai = ai_res

        combination = COMBINATION_BY_STRATEGY[route.strategy]
        # ai_fallback_local leads with the AI answer; local stays as the secondary payload.
        primary = "ai" if combination == "ai_fallback_local" and ai is not None else "local"
        return _Execution(
            method="hybrid",
            routing=route,
            local=local_res,
            ai=ai,
            fallback_reason=fallback_reason,
            combination=combination,
            primary=primary,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _call_ai(self, request: AnalysisRequest) -> AIInsights:
        if request.kind is RequestKind.QUICK:
            return await self.ai_client.quick_analyze(
                request.snapshot, request.profile, request.language
            )
        return await self.ai_client.analyze(
            request.snapshot, request.profile, request.kind.goals, request.language
        )

    def _analyze_local(self, request: AnalysisRequest) -> LocalInsights:
        return self.local_analyzer.analyze(request.snapshot, request.profile, request.language)

    @staticmethod
    def _require_data(snapshot: HealthSnapshot) -> None:
        if not snapshot.has_any_metric():
            raise InsufficientDataError("Health snapshot contains no metrics to analyze")

    def _remember(self, result: AnalysisResult) -> None:
        self._history.append(result)
        self._last_result = result


def _emit(on_event: EventCallback | None, stage: ProgressStage, request_id: str, **detail) -> None:
    if on_event is not None:
        on_event(ProgressEvent(stage=stage, request_id=request_id, detail=detail))
