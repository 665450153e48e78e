"""Routing decision engine: local vs AI vs hybrid.

Decision factors are derived deterministically from the request, then
resolved through a weighted score into exactly one route. The decision is
recomputed for every request; only results are cached, never decisions.
"""

from __future__ import annotations

import logging

from vitalroute.domains.health.domain_logic.health_models import HealthSnapshot, UserProfile
from vitalroute.domains.health.orchestration.models import (
    AIRoute,
    AnalysisRequest,
    DecisionFactors,
    HybridRoute,
    LocalRoute,
    RequestKind,
    RoutingDecision,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Factor -> numeric value tables
# ---------------------------------------------------------------------------

COMPLEXITY_VALUES = {"simple": 0.25, "moderate": 0.5, "complex": 0.75, "very_complex": 1.0}
ENGAGEMENT_VALUES = {"passive": 0.25, "active": 0.5, "interactive": 0.75, "critical": 1.0}
TIME_VALUES = {"real_time": 0.0, "immediate": 0.25, "standard": 0.5, "deferred": 1.0}
COST_MULTIPLIERS = {"simple": 0.5, "moderate": 1.0, "complex": 1.5, "very_complex": 2.0}

TIME_SENSITIVITY_BY_KIND = {
    RequestKind.QUICK: "real_time",
    RequestKind.CRITICAL: "immediate",
    RequestKind.DAILY: "standard",
    RequestKind.USER_REQUESTED: "standard",
    RequestKind.COMPREHENSIVE: "deferred",
    RequestKind.WEEKLY: "deferred",
}

# Score weights
W_COMPLEXITY = 0.30
W_ENGAGEMENT = 0.20
W_CRITICALITY = 0.25
W_TIME = 0.15
W_BUDGET = 0.10

AI_THRESHOLD = 0.7
HYBRID_THRESHOLD = 0.4
MIN_BUDGET = 0.1
LOW_BUDGET = 0.3
HIGH_BUDGET = 0.7
LOCAL_BASE_CAPABILITY = 0.8

BASE_AI_COST = 0.05
AI_ACCURACY = 0.9
LATENCY_SECONDS = {"local": 0.5, "ai": 8.0, "hybrid": 4.0}


# ---------------------------------------------------------------------------
# Factor computation
# ---------------------------------------------------------------------------

def data_complexity(snapshot: HealthSnapshot) -> str:
    points = 0
    if snapshot.resting_heart_rate is not None or snapshot.average_heart_rate is not None:
        points += 1
    if snapshot.hrv is not None:
        points += 2
    if snapshot.systolic is not None and snapshot.diastolic is not None:
        points += 1
    if (snapshot.sleep_hours or 0) > 0:
        points += 1
    if (snapshot.steps or 0) > 0:
        points += 1
    if (snapshot.active_calories or 0) > 0:
        points += 1
    if snapshot.deep_sleep_pct is not None or snapshot.rem_sleep_pct is not None:
        points += 2
    if (snapshot.workouts or 0) > 0:
        points += 1

    if points <= 2:
        return "simple"
    if points <= 5:
        return "moderate"
    if points <= 8:
        return "complex"
    return "very_complex"


def user_engagement(profile: UserProfile) -> str:
    points = sum([
        bool(profile.goals),
        bool(profile.exercise_frequency),
        profile.has_wearable,
        profile.daily_checkins,
    ])
    if points == 0:
        return "passive"
    if points <= 2:
        return "active"
    if points == 3:
        return "interactive"
    return "critical"


def health_criticality(snapshot: HealthSnapshot, profile: UserProfile) -> float:
    score = 0.0
    if (snapshot.systolic or 0) > 180 or (snapshot.diastolic or 0) > 120:
        score += 0.4
    rhr = snapshot.resting_heart_rate
    if rhr is not None and (rhr > 100 or rhr < 50):
        score += 0.3
    if profile.chronic_conditions:
        score += 0.3
    return min(1.0, score)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class DecisionEngine:
    """Pure routing policy. Holds no state between calls."""

    def compute_factors(
        self,
        request: AnalysisRequest,
        budget_available: float = 1.0,
        offline: bool = False,
    ) -> DecisionFactors:
        return DecisionFactors(
            data_complexity=data_complexity(request.snapshot),
            user_engagement=user_engagement(request.profile),
            time_sensitivity=TIME_SENSITIVITY_BY_KIND[request.kind],
            health_criticality=health_criticality(request.snapshot, request.profile),
            budget_available=max(0.0, min(1.0, budget_available)),
            privacy_required=not request.profile.share_data_with_ai,
            offline=offline,
        )

    def ai_score(self, factors: DecisionFactors) -> float:
        score = (
            W_COMPLEXITY * COMPLEXITY_VALUES[factors.data_complexity]
            + W_ENGAGEMENT * ENGAGEMENT_VALUES[factors.user_engagement]
            + W_CRITICALITY * factors.health_criticality
            + W_TIME * TIME_VALUES[factors.time_sensitivity]
            + W_BUDGET * factors.budget_available
        )
        if factors.privacy_required:
            score *= 0.5
        return score

    def local_score(self, factors: DecisionFactors) -> float:
        score = LOCAL_BASE_CAPABILITY
        if factors.data_complexity in ("simple", "moderate"):
            score += 0.2
        if factors.time_sensitivity in ("real_time", "immediate"):
            score += 0.15
        if factors.privacy_required:
            score += 0.3
        if factors.budget_available < LOW_BUDGET:
            score += 0.2
        return min(1.0, score)

    def decide(self, request: AnalysisRequest, factors: DecisionFactors) -> RoutingDecision:
        """Resolve a route; ``force_local`` short-circuits every factor."""
        if request.force_local:
            return LocalRoute(reason="user_preference", confidence=1.0)
        return self.resolve(factors)

    def resolve(self, factors: DecisionFactors) -> RoutingDecision:
        local_score = self.local_score(factors)

        if factors.offline:
            return LocalRoute(reason="offline", confidence=local_score)
        if factors.budget_available < MIN_BUDGET:
            return LocalRoute(reason="budget_constrained", confidence=local_score)

        ai_score = self.ai_score(factors)
        logger.debug("Routing scores: ai=%.3f local=%.3f", ai_score, local_score)

        if ai_score >= AI_THRESHOLD:
            return AIRoute(
                reason=self._ai_reason(factors),
                confidence=ai_score,
                estimated_cost=self.estimate_cost(factors),
                estimated_latency=LATENCY_SECONDS["ai"],
            )
        if ai_score >= HYBRID_THRESHOLD:
            return HybridRoute(
                strategy=self._hybrid_strategy(factors),
                local_components=tuple(self.local_components(factors)),
                ai_components=tuple(self.ai_components(factors)),
                combined_accuracy=(AI_ACCURACY + self.local_accuracy(factors)) / 2,
            )
        return LocalRoute(reason=self._local_reason(factors), confidence=local_score)

    # ---- reason / strategy selection (first match wins) ----

    @staticmethod
    def _ai_reason(factors: DecisionFactors) -> str:
        if factors.health_criticality > 0.7:
            return "critical_health"
        if factors.data_complexity in ("complex", "very_complex"):
            return "high_complexity"
        if factors.user_engagement in ("interactive", "critical"):
            return "user_preference"
        return "comprehensive_analysis"

    @staticmethod
    def _hybrid_strategy(factors: DecisionFactors) -> str:
        if factors.time_sensitivity == "real_time":
            return "local_first"
        if factors.data_complexity == "very_complex":
            return "ai_enhanced"
        if factors.budget_available > HIGH_BUDGET:
            return "parallel"
        return "sequential"

    @staticmethod
    def _local_reason(factors: DecisionFactors) -> str:
        if factors.budget_available < LOW_BUDGET:
            return "budget_constraints"
        if factors.time_sensitivity in ("real_time", "immediate"):
            return "fast_response_needed"
        if factors.privacy_required:
            return "privacy_preferred"
        if factors.data_complexity == "simple":
            return "simple_metrics"
        return "basic_analysis_only"

    # ---- estimates ----

    @staticmethod
    def estimate_cost(factors: DecisionFactors) -> float:
        multiplier = COST_MULTIPLIERS[factors.data_complexity]
        return round(BASE_AI_COST * multiplier * (1 + factors.health_criticality * 0.5), 6)

    @staticmethod
    def local_accuracy(factors: DecisionFactors) -> float:
        if factors.data_complexity == "simple":
            return 0.9
        if factors.data_complexity == "very_complex":
            return 0.6
        return 0.8

    @staticmethod
    def local_components(factors: DecisionFactors) -> list[str]:
        components = ["basic_vitals_analysis", "simple_trends"]
        if factors.data_complexity in ("simple", "moderate"):
            components.append("guidelines_based_recommendations")
        if factors.time_sensitivity == "real_time":
            components.append("immediate_alerts")
        return components

    @staticmethod
    def ai_components(factors: DecisionFactors) -> list[str]:
        components: list[str] = []
        if factors.data_complexity in ("complex", "very_complex"):
            components += ["pattern_recognition", "predictive_analysis"]
        if factors.user_engagement in ("interactive", "critical"):
            components.append("personalized_insights")
        if factors.health_criticality > 0.5:
            components.append("risk_stratification")
        return components

    @staticmethod
    def local_limitations(factors: DecisionFactors) -> list[str]:
        """What a local-only answer cannot provide for these factors."""
        limitations: list[str] = []
        if factors.data_complexity in ("complex", "very_complex"):
            limitations.append("Limited pattern recognition across many metrics")
        if factors.user_engagement in ("interactive", "critical"):
            limitations.append("Generic rather than personalized insights")
        if factors.health_criticality > 0.5:
            limitations.append("No deep risk stratification")
        return limitations

