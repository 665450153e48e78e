"""Local evidence analyzer: guideline evaluations -> category insights.

Deterministic and offline. Each category score is the minimum of its
guideline evaluations (one severe finding caps the whole category), the
overall score is the fixed weighted combination of the four categories,
and sparse inputs degrade to neutral scores rather than failing.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from vitalroute.domains.health.domain_logic import guidelines
from vitalroute.domains.health.domain_logic.health_models import (
    CATEGORIES,
    CATEGORY_WEIGHTS,
    CategoryInsight,
    HealthSnapshot,
    LocalInsights,
    QuickInsights,
    UserProfile,
)
from vitalroute.domains.health.domain_logic.recommendations import build_recommendations
from vitalroute.domains.health.domain_logic.risk_assessment import assess_risks
from vitalroute.domains.health.orchestration.errors import InsufficientDataError

logger = logging.getLogger(__name__)

# Metrics each category expects; drives data completeness.
EXPECTED_METRICS: dict[str, list[str]] = {
    "cardiovascular": ["resting_heart_rate", "hrv", "systolic"],
    "sleep": ["sleep_hours", "sleep_efficiency", "deep_sleep_pct"],
    "activity": ["steps", "exercise_minutes", "active_calories"],
    "metabolic": ["bmi", "body_fat_pct", "water_liters", "sodium_mg"],
}

# Data quality weights (presence of the metric family).
_QUALITY_WEIGHTS = {
    "heart_rate": 0.25,
    "hrv": 0.15,
    "blood_pressure": 0.10,
    "steps": 0.25,
    "exercise": 0.15,
    "sleep": 0.10,
}

# (max age in hours, recency factor)
_RECENCY_BUCKETS = [(1, 1.0), (6, 0.9), (24, 0.8), (72, 0.6)]
_STALE_FACTOR = 0.4

_KEY_INSIGHTS = {
    "en": {
        "excellent": "Your overall health indicators are in excellent shape.",
        "good": "Your health is generally good, with a few areas to improve.",
        "attention": "Several health indicators need attention.",
        "weakest": "Focus first on {category}: it scored {score:.0f} out of 100.",
        "risks": "{count} risk pattern(s) detected; review the long-term plan.",
    },
    "ja": {
        "excellent": "全体的な健康指標は非常に良好です。",
        "good": "健康状態は概ね良好ですが、改善できる点があります。",
        "attention": "いくつかの健康指標に注意が必要です。",
        "weakest": "まず{category}に取り組みましょう（スコア {score:.0f}/100）。",
        "risks": "{count}件のリスクパターンが検出されました。長期計画を確認してください。",
    },
}

_CATEGORY_LABELS = {
    "en": {c: c for c in CATEGORIES},
    "ja": {"cardiovascular": "心血管", "sleep": "睡眠", "activity": "活動", "metabolic": "代謝"},
}

_QUICK_TIPS = {
    "sleep": ["Aim for 7-9 hours tonight", "Dim lights an hour before bed"],
    "activity": ["Take a 15-minute walk", "Use the stairs today"],
    "cardiovascular": ["Try 5 minutes of slow breathing", "Limit caffeine this afternoon"],
    "nutrition": ["Drink a glass of water now", "Add a vegetable to your next meal"],
}


def _metric_present(snapshot: HealthSnapshot, profile: UserProfile, metric: str) -> bool:
    if metric == "bmi":
        return snapshot.effective_bmi(profile) is not None
    return getattr(snapshot, metric) is not None


def data_completeness(snapshot: HealthSnapshot, profile: UserProfile) -> float:
    expected = [m for metrics in EXPECTED_METRICS.values() for m in metrics]
    present = sum(1 for m in expected if _metric_present(snapshot, profile, m))
    return present / len(expected)


def profile_completeness(profile: UserProfile) -> float:
    checks = [
        profile.age is not None,
        bool(profile.gender),
        bool(profile.goals),
        bool(profile.exercise_habits),
        bool(profile.dietary_preferences),
        profile.weight_kg is not None and profile.height_cm is not None,
    ]
    return sum(checks) / len(checks)


def recency_factor(timestamp: datetime, now: datetime | None = None) -> float:
    now = now or datetime.now(timezone.utc)
    age_hours = max(0.0, (now - timestamp).total_seconds() / 3600)
    for limit, factor in _RECENCY_BUCKETS:
        if age_hours <= limit:
            return factor
    return _STALE_FACTOR


def data_quality_score(snapshot: HealthSnapshot, now: datetime | None = None) -> float:
    """Weighted presence of key metric families, discounted by snapshot age. In [0, 1]."""
    present = {
        "heart_rate": snapshot.resting_heart_rate is not None or snapshot.average_heart_rate is not None,
        "hrv": snapshot.hrv is not None,
        "blood_pressure": snapshot.systolic is not None and snapshot.diastolic is not None,
        "steps": snapshot.steps is not None,
        "exercise": snapshot.exercise_minutes is not None,
        "sleep": snapshot.sleep_hours is not None,
    }
    weighted = sum(w for name, w in _QUALITY_WEIGHTS.items() if present[name])
    return round(weighted * recency_factor(snapshot.timestamp, now), 4)


def overall_score(categories: dict[str, CategoryInsight]) -> float:
    return sum(CATEGORY_WEIGHTS[c] * categories[c].score for c in CATEGORIES)


class LocalHealthAnalyzer:
    """Rule-based analyzer that always produces a result for non-empty input."""

    def analyze(
        self,
        snapshot: HealthSnapshot,
        profile: UserProfile,
        language: str = "en",
        now: datetime | None = None,
    ) -> LocalInsights:
        """Run the full category fold, risk scan, and recommendation build.

        Raises:
            InsufficientDataError: If the snapshot has no metric at all.
        """
        if not snapshot.has_any_metric():
            raise InsufficientDataError("Health snapshot contains no metrics to analyze")

        categories = self._evaluate_categories(snapshot, profile)
        risks = assess_risks(snapshot, profile)
        for risk in risks:
            categories[risk.category].risk_factors.append(risk)

        completeness = data_completeness(snapshot, profile)
        confidence = (completeness + profile_completeness(profile)) / 2
        insights = LocalInsights(
            overall_score=round(overall_score(categories), 4),
            categories=categories,
            risk_factors=risks,
            recommendations=build_recommendations(categories, risks),
            key_insights=[],
            confidence=round(confidence, 4),
            data_quality=data_quality_score(snapshot, now),
        )
        insights.key_insights = self.key_insights(insights, language)

        logger.debug(
            "Local analysis: overall=%.1f, risks=%d, confidence=%.2f",
            insights.overall_score,
            len(risks),
            insights.confidence,
        )
        return insights

    def _evaluate_categories(
        self, snapshot: HealthSnapshot, profile: UserProfile
    ) -> dict[str, CategoryInsight]:
        age = profile.age_or_default
        gender = profile.gender
        weight = snapshot.weight_kg if snapshot.weight_kg is not None else profile.weight_kg
        height = snapshot.height_cm if snapshot.height_cm is not None else profile.height_cm
        efficiency_pct = (
            snapshot.sleep_efficiency * 100 if snapshot.sleep_efficiency is not None else None
        )

        evaluations = {
            "cardiovascular": [
                guidelines.evaluate_resting_heart_rate(snapshot.resting_heart_rate, age, gender),
                guidelines.evaluate_hrv(snapshot.hrv, age, gender),
                guidelines.evaluate_blood_pressure(snapshot.systolic, snapshot.diastolic),
            ],
            "sleep": [
                guidelines.evaluate_sleep_duration(snapshot.sleep_hours, age),
                guidelines.evaluate_sleep_efficiency(efficiency_pct),
                guidelines.evaluate_sleep_stages(snapshot.deep_sleep_pct, snapshot.rem_sleep_pct),
            ],
            "activity": [
                guidelines.evaluate_steps(snapshot.steps, age),
                guidelines.evaluate_exercise(snapshot.exercise_minutes),
                guidelines.evaluate_calories(snapshot.active_calories, weight, height, age, gender),
            ],
            "metabolic": [
                guidelines.evaluate_bmi(snapshot.effective_bmi(profile), age),
                guidelines.evaluate_body_fat(snapshot.body_fat_pct),
                guidelines.evaluate_nutrition(snapshot.water_liters, snapshot.sodium_mg),
            ],
        }

        categories: dict[str, CategoryInsight] = {}
        for category in CATEGORIES:
            results = evaluations[category]
            score = max(0.0, min(100.0, min(score for score, _ in results)))
            findings = [f for _, fs in results for f in fs]
            expected = EXPECTED_METRICS[category]
            present = sum(1 for m in expected if _metric_present(snapshot, profile, m))
            categories[category] = CategoryInsight(
                category=category,
                score=score,
                findings=findings,
                recommendations=[
                    f.description for f in findings if f.kind in ("warning", "concerning")
                ],
                confidence=round(present / len(expected), 4),
            )
        return categories

    def key_insights(self, insights: LocalInsights, language: str = "en") -> list[str]:
        strings = _KEY_INSIGHTS.get(language, _KEY_INSIGHTS["en"])
        labels = _CATEGORY_LABELS.get(language, _CATEGORY_LABELS["en"])

        if insights.overall_score >= 80:
            lines = [strings["excellent"]]
        elif insights.overall_score >= 60:
            lines = [strings["good"]]
        else:
            lines = [strings["attention"]]

        weakest = min(CATEGORIES, key=lambda c: (insights.categories[c].score, CATEGORIES.index(c)))
        weakest_score = insights.categories[weakest].score
        if weakest_score < 70:
            lines.append(strings["weakest"].format(category=labels[weakest], score=weakest_score))
        if insights.risk_factors:
            lines.append(strings["risks"].format(count=len(insights.risk_factors)))
        return lines

    def quick_assessment(self, snapshot: HealthSnapshot) -> QuickInsights:
        """Cheap three-signal score and a single focus area with tips."""
        terms: list[float] = []
        if snapshot.sleep_efficiency is not None:
            terms.append(snapshot.sleep_efficiency * 100)
        if snapshot.steps is not None:
            terms.append(min(100.0, snapshot.steps / 10000 * 100))
        if snapshot.hrv is not None:
            terms.append(min(snapshot.hrv, 100.0))
        score = sum(terms) / len(terms) if terms else 50.0

        if snapshot.sleep_hours is not None and snapshot.sleep_hours < 6:
            focus = "sleep"
        elif snapshot.steps is not None and snapshot.steps < 5000:
            focus = "activity"
        elif snapshot.resting_heart_rate is not None and snapshot.resting_heart_rate > 90:
            focus = "cardiovascular"
        else:
            focus = "nutrition"

        return QuickInsights(
            score=round(score, 2),
            focus=focus,
            summary=f"Quick check score {score:.0f}/100; today's focus: {focus}.",
            tips=list(_QUICK_TIPS[focus]),
        )
