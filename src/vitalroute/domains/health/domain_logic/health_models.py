"""Health data models and domain constants for local evidence analysis."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Literal

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

CATEGORIES = ["cardiovascular", "sleep", "activity", "metabolic"]

# Overall score is a fixed convex combination of the category scores.
CATEGORY_WEIGHTS = {
    "cardiovascular": 0.30,
    "sleep": 0.25,
    "activity": 0.25,
    "metabolic": 0.20,
}

# Neutral score for a category (or metric) with no data: no findings, no penalty.
NEUTRAL_SCORE = 100.0

Category = Literal["cardiovascular", "sleep", "activity", "metabolic"]
FindingKind = Literal["normal", "warning", "concerning", "excellent"]
Severity = Literal["low", "moderate", "high"]
RiskSeverity = Literal["low", "moderate", "high", "severe"]
RecommendationPriority = Literal["low", "medium", "high", "urgent"]

RISK_SEVERITY_RANK = {"low": 0, "moderate": 1, "high": 2, "severe": 3}


def _parse_timestamp(value: Any) -> datetime:
    if value is None or value == "":
        return datetime.now(timezone.utc)
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _opt_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected a number, got {value!r}") from exc
    if not math.isfinite(number):
        raise ValueError(f"Expected a finite number, got {value!r}")
    return number


# ---------------------------------------------------------------------------
# Inputs (supplied by external collaborators)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HealthSnapshot:
    """Point-in-time bundle of biometric readings.

    Every metric is optional; a reading that was not captured is ``None``.
    """

    # Vital signs
    resting_heart_rate: float | None = None
    average_heart_rate: float | None = None
    hrv: float | None = None                    # ms (SDNN)
    systolic: float | None = None
    diastolic: float | None = None

    # Sleep
    sleep_hours: float | None = None
    sleep_efficiency: float | None = None       # 0-1
    deep_sleep_pct: float | None = None         # % of total sleep
    rem_sleep_pct: float | None = None

    # Activity
    steps: float | None = None
    exercise_minutes: float | None = None       # per day
    active_calories: float | None = None
    workouts: float | None = None               # sessions this week

    # Body measurements
    weight_kg: float | None = None
    height_cm: float | None = None
    bmi: float | None = None
    body_fat_pct: float | None = None

    # Nutrition
    water_liters: float | None = None
    sodium_mg: float | None = None

    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def metric_names(cls) -> list[str]:
        return [f.name for f in fields(cls) if f.name != "timestamp"]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HealthSnapshot:
        """Build a snapshot from a flat dict; unknown keys are rejected."""
        known = set(cls.metric_names())
        unknown = set(data) - known - {"timestamp"}
        if unknown:
            raise ValueError(f"Unknown health metrics: {sorted(unknown)}")
        values = {name: _opt_float(data.get(name)) for name in known}
        return cls(timestamp=_parse_timestamp(data.get("timestamp")), **values)

    def to_dict(self) -> dict[str, Any]:
        data = {name: getattr(self, name) for name in self.metric_names()}
        data["timestamp"] = self.timestamp.isoformat()
        return data

    def present_metrics(self) -> list[str]:
        return [name for name in self.metric_names() if getattr(self, name) is not None]

    def has_any_metric(self) -> bool:
        return bool(self.present_metrics())

    def effective_bmi(self, profile: UserProfile | None = None) -> float | None:
        """BMI as reported, else derived from weight/height (snapshot first, then profile)."""
        if self.bmi is not None:
            return self.bmi
        weight = self.weight_kg if self.weight_kg is not None else (profile.weight_kg if profile else None)
        height = self.height_cm if self.height_cm is not None else (profile.height_cm if profile else None)
        if weight is None or not height:
            return None
        meters = height / 100.0
        return weight / (meters * meters)


@dataclass(frozen=True)
class UserProfile:
    """Demographic and preference attributes. Read-only to the analysis core."""

    age: int | None = None
    gender: str | None = None                  # "male", "female", "other"
    weight_kg: float | None = None
    height_cm: float | None = None
    goals: tuple[str, ...] = ()
    exercise_frequency: str | None = None      # e.g. "3x_week"
    exercise_habits: tuple[str, ...] = ()
    dietary_preferences: tuple[str, ...] = ()
    chronic_conditions: tuple[str, ...] = ()
    has_wearable: bool = False
    daily_checkins: bool = False
    share_data_with_ai: bool = True
    language: str = "en"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserProfile:
        age = data.get("age")
        return cls(
            age=int(age) if age is not None else None,
            gender=data.get("gender"),
            weight_kg=_opt_float(data.get("weight_kg")),
            height_cm=_opt_float(data.get("height_cm")),
            goals=tuple(data.get("goals", ())),
            exercise_frequency=data.get("exercise_frequency"),
            exercise_habits=tuple(data.get("exercise_habits", ())),
            dietary_preferences=tuple(data.get("dietary_preferences", ())),
            chronic_conditions=tuple(data.get("chronic_conditions", ())),
            has_wearable=bool(data.get("has_wearable", False)),
            daily_checkins=bool(data.get("daily_checkins", False)),
            share_data_with_ai=bool(data.get("share_data_with_ai", True)),
            language=data.get("language", "en"),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("goals", "exercise_habits", "dietary_preferences", "chronic_conditions"):
            data[key] = list(data[key])
        return data

    @property
    def is_male(self) -> bool:
        return (self.gender or "").lower() == "male"

    @property
    def age_or_default(self) -> int:
        # Reference ranges are centred on a 30-year-old adult.
        return self.age if self.age is not None else 30


# ---------------------------------------------------------------------------
# Analysis outputs
# ---------------------------------------------------------------------------

@dataclass
class Finding:
    """A single evaluated-metric observation."""

    metric: str
    kind: FindingKind
    severity: Severity
    description: str
    value: float
    reference_range: str = ""


@dataclass
class RiskFactor:
    """A cross-metric pattern indicating elevated health risk."""

    category: Category
    severity: RiskSeverity
    description: str
    remediation: list[str] = field(default_factory=list)
    follow_up: str = ""


@dataclass
class Recommendation:
    """An actionable recommendation with a concrete horizon and steps."""

    category: Category
    priority: RecommendationPriority
    title: str
    description: str
    time_horizon: str
    steps: list[str] = field(default_factory=list)
    evidence: str = ""


@dataclass
class CategoryInsight:
    """Per-category score with the findings that produced it."""

    category: Category
    score: float                                  # 0-100
    findings: list[Finding] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    risk_factors: list[RiskFactor] = field(default_factory=list)
    trend: str = "stable"
    confidence: float = 1.0


@dataclass
class LocalInsights:
    """Full output of the local evidence analyzer."""

    overall_score: float
    categories: dict[str, CategoryInsight]
    risk_factors: list[RiskFactor] = field(default_factory=list)
    recommendations: list[Recommendation] = field(default_factory=list)
    key_insights: list[str] = field(default_factory=list)
    confidence: float = 0.0
    data_quality: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LocalInsights:
        categories = {
            name: CategoryInsight(
                category=c["category"],
                score=c["score"],
                findings=[Finding(**f) for f in c.get("findings", [])],
                recommendations=list(c.get("recommendations", [])),
                risk_factors=[RiskFactor(**r) for r in c.get("risk_factors", [])],
                trend=c.get("trend", "stable"),
                confidence=c.get("confidence", 1.0),
            )
            for name, c in data["categories"].items()
        }
        return cls(
            overall_score=data["overall_score"],
            categories=categories,
            risk_factors=[RiskFactor(**r) for r in data.get("risk_factors", [])],
            recommendations=[Recommendation(**r) for r in data.get("recommendations", [])],
            key_insights=list(data.get("key_insights", [])),
            confidence=data.get("confidence", 0.0),
            data_quality=data.get("data_quality", 0.0),
        )

    def is_empty(self) -> bool:
        return not self.categories


@dataclass
class QuickInsights:
    """Low-latency summary produced without the full category fold."""

    score: float
    focus: Literal["sleep", "activity", "cardiovascular", "nutrition"]
    summary: str
    tips: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
