"""Tiered recommendation generation from category insights and risk factors."""

from __future__ import annotations

from vitalroute.domains.health.domain_logic.health_models import (
    CATEGORIES,
    CategoryInsight,
    Recommendation,
    RiskFactor,
)

SHORT_TERM_THRESHOLD = 75.0

# category -> (title, description, horizon, steps, evidence)
_IMMEDIATE = {
    "cardiovascular": (
        "Cardiovascular Health Boost",
        "Immediate actions to support heart health",
        "Today",
        ["Take a 10-minute light walk", "Practice 5 minutes of deep breathing", "Stay well-hydrated"],
        "Improved circulation and stress reduction",
    ),
    "sleep": (
        "Tonight's Sleep Enhancement",
        "Immediate actions for better sleep tonight",
        "Tonight",
        ["Stop screen time 1 hour before bed", "Set room temperature to 18-21°C",
         "Listen to calming music or sounds"],
        "Improved sleep quality and recovery",
    ),
    "activity": (
        "Today's Activity Boost",
        "Immediate ways to increase daily movement",
        "Today",
        ["Take stairs instead of elevators", "Go for a 15-minute walk", "Stand while working when possible"],
        "Increased energy levels and mood",
    ),
    "metabolic": (
        "Metabolic Activation",
        "Immediate steps to boost metabolism",
        "Today",
        ["Increase water intake", "Choose balanced, nutritious meals", "Take a light walk after meals"],
        "Enhanced metabolic function and energy",
    ),
}

_SHORT_TERM = {
    "cardiovascular": (
        "Cardiovascular Fitness Improvement",
        "Sustainable plan for heart health enhancement",
        "4-8 weeks",
        ["Engage in aerobic exercise 3x per week", "Take stairs instead of elevators",
         "Monitor heart rate regularly"],
        "Reduced cardiovascular disease risk",
    ),
    "sleep": (
        "Sleep Habit Optimization",
        "Long-term plan for sleep quality improvement",
        "2-4 weeks",
        ["Establish consistent bedtime", "Create pre-sleep routine", "Manage caffeine intake timing"],
        "Enhanced overall health and cognitive function",
    ),
    "activity": (
        "Activity Habit Building",
        "Sustainable exercise routine development",
        "4-6 weeks",
        ["Aim for 150 minutes moderate exercise weekly", "Integrate movement into daily routines",
         "Track and celebrate progress"],
        "Long-term health and fitness improvements",
    ),
    "metabolic": (
        "Metabolic Health Optimization",
        "Long-term metabolic improvement strategy",
        "6-12 weeks",
        ["Review and improve nutritional balance", "Maintain healthy weight range",
         "Schedule regular health checkups"],
        "Prevention of lifestyle diseases",
    ),
}

_RISK_PRIORITY = {"severe": "urgent", "high": "high"}


def priority_category(categories: dict[str, CategoryInsight]) -> str:
    """Lowest-scoring category; ties resolve in CATEGORIES order."""
    present = [c for c in CATEGORIES if c in categories]
    return min(present, key=lambda c: (categories[c].score, CATEGORIES.index(c)))


def _from_template(category: str, template: tuple, priority: str) -> Recommendation:
    title, description, horizon, steps, evidence = template
    return Recommendation(
        category=category,
        priority=priority,
        title=title,
        description=description,
        time_horizon=horizon,
        steps=list(steps),
        evidence=evidence,
    )


def build_recommendations(
    categories: dict[str, CategoryInsight],
    risk_factors: list[RiskFactor],
) -> list[Recommendation]:
    """Immediate action for the priority category, short-term plans, then long-term items."""
    if not categories:
        return []

    focus = priority_category(categories)
    recs = [_from_template(focus, _IMMEDIATE[focus], "high")]

    for category in CATEGORIES:
        insight = categories.get(category)
        if insight is not None and insight.score < SHORT_TERM_THRESHOLD:
            recs.append(_from_template(category, _SHORT_TERM[category], "medium"))

    for risk in risk_factors:
        recs.append(Recommendation(
            category=risk.category,
            priority=_RISK_PRIORITY.get(risk.severity, "medium"),
            title=f"{risk.category.capitalize()} Risk Mitigation",
            description=risk.description,
            time_horizon=risk.follow_up,
            steps=list(risk.remediation),
            evidence="Reduced health risk",
        ))
    return recs
