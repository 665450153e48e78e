"""Orchestration data models: requests, routing decisions, and results."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Union

from vitalroute.domains.health.domain_logic.health_models import (
    HealthSnapshot,
    LocalInsights,
    QuickInsights,
    UserProfile,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Request kinds
# ---------------------------------------------------------------------------

class RequestKind(str, Enum):
    QUICK = "quick"
    DAILY = "daily"
    COMPREHENSIVE = "comprehensive"
    WEEKLY = "weekly"
    CRITICAL = "critical"
    USER_REQUESTED = "user_requested"

    @property
    def complexity_tier(self) -> Literal["low", "medium", "high"]:
        return _COMPLEXITY_TIERS[self]

    @property
    def goals(self) -> list[str]:
        return list(_ANALYSIS_GOALS[self])

    @classmethod
    def parse(cls, value: str | RequestKind) -> RequestKind:
        if isinstance(value, RequestKind):
            return value
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(k.value for k in cls)
            raise ValueError(f"Unknown request kind {value!r}; expected one of: {valid}") from None


_COMPLEXITY_TIERS = {
    RequestKind.QUICK: "low",
    RequestKind.DAILY: "medium",
    RequestKind.WEEKLY: "medium",
    RequestKind.COMPREHENSIVE: "high",
    RequestKind.CRITICAL: "high",
    RequestKind.USER_REQUESTED: "high",
}

_ANALYSIS_GOALS = {
    RequestKind.QUICK: ("immediate_insights", "quick_recommendations"),
    RequestKind.DAILY: ("daily_optimization", "progress_tracking", "immediate_actions"),
    RequestKind.COMPREHENSIVE: ("detailed_analysis", "risk_assessment", "long_term_planning"),
    RequestKind.WEEKLY: ("trend_analysis", "progress_review", "goal_adjustment"),
    RequestKind.CRITICAL: ("immediate_risk_assessment", "urgent_recommendations", "medical_guidance"),
    RequestKind.USER_REQUESTED: ("personalized_insights", "specific_concerns", "detailed_explanations"),
}


@dataclass(frozen=True)
class AnalysisRequest:
    """A single analysis request as submitted by a caller."""

    snapshot: HealthSnapshot
    profile: UserProfile
    kind: RequestKind = RequestKind.DAILY
    language: str = "en"
    force_local: bool = False
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=_now)


# ---------------------------------------------------------------------------
# Decision factors
# ---------------------------------------------------------------------------

DataComplexity = Literal["simple", "moderate", "complex", "very_complex"]
UserEngagement = Literal["passive", "active", "interactive", "critical"]
TimeSensitivity = Literal["real_time", "immediate", "standard", "deferred"]


@dataclass(frozen=True)
class DecisionFactors:
    """Normalized inputs to the routing score. Never mutated after creation."""

    data_complexity: DataComplexity
    user_engagement: UserEngagement
    time_sensitivity: TimeSensitivity
    health_criticality: float
    budget_available: float
    privacy_required: bool
    offline: bool


# ---------------------------------------------------------------------------
# Routing decision (tagged union)
# ---------------------------------------------------------------------------

LocalReason = Literal[
    "user_preference",
    "offline",
    "budget_constrained",
    "budget_constraints",
    "fast_response_needed",
    "privacy_preferred",
    "simple_metrics",
    "basic_analysis_only",
    "speed_optimization",
    "ai_fallback",
]
AIReason = Literal["critical_health", "high_complexity", "user_preference", "comprehensive_analysis"]
HybridStrategy = Literal["local_first", "ai_enhanced", "parallel", "sequential"]


@dataclass(frozen=True)
class LocalRoute:
    reason: LocalReason
    confidence: float
    method: Literal["local"] = field(default="local", init=False)


@dataclass(frozen=True)
class AIRoute:
    reason: AIReason
    confidence: float
    estimated_cost: float
    estimated_latency: float
    method: Literal["ai"] = field(default="ai", init=False)


@dataclass(frozen=True)
class HybridRoute:
    strategy: HybridStrategy
    local_components: tuple[str, ...]
    ai_components: tuple[str, ...]
    combined_accuracy: float
    method: Literal["hybrid"] = field(default="hybrid", init=False)


RoutingDecision = Union[LocalRoute, AIRoute, HybridRoute]


def route_to_dict(route: RoutingDecision) -> dict[str, Any]:
    data = asdict(route)
    for key in ("local_components", "ai_components"):
        if key in data:
            data[key] = list(data[key])
    return data


def route_from_dict(data: dict[str, Any]) -> RoutingDecision:
    payload = {k: v for k, v in data.items() if k != "method"}
    method = data.get("method")
    if method == "local":
        return LocalRoute(**payload)
    if method == "ai":
        return AIRoute(**payload)
    if method == "hybrid":
        payload["local_components"] = tuple(payload["local_components"])
        payload["ai_components"] = tuple(payload["ai_components"])
        return HybridRoute(**payload)
    raise ValueError(f"Unknown routing method: {method!r}")


# ---------------------------------------------------------------------------
# AI payloads
# ---------------------------------------------------------------------------

@dataclass
class AIInsights:
    """Analysis returned by the remote AI service."""

    summary: str
    insights: list[str] = field(default_factory=list)
    recommendations: list[dict[str, Any]] = field(default_factory=list)
    confidence: float = 0.0
    tokens_used: int = 0
    raw: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AIInsights:
        return cls(
            summary=data.get("summary", ""),
            insights=list(data.get("insights", [])),
            recommendations=list(data.get("recommendations", [])),
            confidence=float(data.get("confidence", 0.0)),
            tokens_used=int(data.get("tokens_used", 0)),
            raw=dict(data.get("raw", {})),
        )


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

AnalysisMethod = Literal["local", "ai", "hybrid", "local_fallback"]
CombinationStrategy = Literal["ai_fallback_local", "local_fallback_ai", "best_of_both"]


@dataclass(frozen=True)
class PerformanceMetrics:
    processing_time: float
    cache_hit: bool = False
    cost: float = 0.0
    data_quality: float = 0.0
    fallback_reason: str | None = None
    combination: CombinationStrategy | None = None
    primary: Literal["local", "ai"] | None = None


@dataclass(frozen=True)
class AnalysisResult:
    """Immutable outcome of one analysis request."""

    id: str
    method: AnalysisMethod
    routing: RoutingDecision
    metrics: PerformanceMetrics
    request_kind: RequestKind
    language: str
    local_insights: LocalInsights | None = None
    ai_insights: AIInsights | None = None
    quick_insights: QuickInsights | None = None
    generated_at: datetime = field(default_factory=_now)

    @property
    def cache_hit(self) -> bool:
        return self.metrics.cache_hit

    def with_cache_hit(self) -> AnalysisResult:
        """Copy flagged as served from cache; id and payloads are unchanged."""
        return replace(self, metrics=replace(self.metrics, cache_hit=True))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "method": self.method,
            "routing": route_to_dict(self.routing),
            "metrics": asdict(self.metrics),
            "request_kind": self.request_kind.value,
            "language": self.language,
            "local_insights": self.local_insights.to_dict() if self.local_insights else None,
            "ai_insights": self.ai_insights.to_dict() if self.ai_insights else None,
            "quick_insights": self.quick_insights.to_dict() if self.quick_insights else None,
            "generated_at": self.generated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AnalysisResult:
        quick = data.get("quick_insights")
        return cls(
            id=data["id"],
            method=data["method"],
            routing=route_from_dict(data["routing"]),
            metrics=PerformanceMetrics(**data["metrics"]),
            request_kind=RequestKind(data["request_kind"]),
            language=data["language"],
            local_insights=(
                LocalInsights.from_dict(data["local_insights"]) if data.get("local_insights") else None
            ),
            ai_insights=AIInsights.from_dict(data["ai_insights"]) if data.get("ai_insights") else None,
            quick_insights=QuickInsights(**quick) if quick else None,
            generated_at=datetime.fromisoformat(data["generated_at"]),
        )


# ---------------------------------------------------------------------------
# Progress events
# ---------------------------------------------------------------------------

class ProgressStage(str, Enum):
    CACHE_CHECKED = "cache_checked"
    DECIDING = "deciding"
    EXECUTING = "executing"
    FALLBACK = "fallback"
    CACHING = "caching"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class ProgressEvent:
    stage: ProgressStage
    request_id: str
    detail: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_now)
