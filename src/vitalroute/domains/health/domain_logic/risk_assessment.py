"""Cross-metric risk pattern detection.

Scans raw snapshot metrics (not just per-metric findings) for combinations
that indicate elevated risk, and returns them most-severe first.
"""

from __future__ import annotations

from vitalroute.domains.health.domain_logic.health_models import (
    RISK_SEVERITY_RANK,
    HealthSnapshot,
    RiskFactor,
    UserProfile,
)

HIGH_SODIUM_MG = 3000.0
LOW_STEPS = 5000.0
LOW_EXERCISE_MINUTES = 20.0
SHORT_SLEEP_HOURS = 6.0


def _cardiovascular(snapshot: HealthSnapshot, profile: UserProfile) -> list[RiskFactor]:
    risks: list[RiskFactor] = []
    rhr = snapshot.resting_heart_rate

    if snapshot.systolic is not None and snapshot.diastolic is not None:
        if snapshot.systolic >= 180 or snapshot.diastolic >= 120:
            risks.append(RiskFactor(
                category="cardiovascular",
                severity="severe",
                description=(
                    f"Blood pressure {snapshot.systolic:.0f}/{snapshot.diastolic:.0f} mmHg "
                    "is in the hypertensive crisis range"
                ),
                remediation=[
                    "Re-measure after 5 minutes of seated rest",
                    "Seek medical care promptly if the reading persists",
                ],
                follow_up="immediately",
            ))

    if rhr is not None and rhr > 90:
        risks.append(RiskFactor(
            category="cardiovascular",
            severity="high" if rhr > 100 else "moderate",
            description=f"Resting heart rate is persistently elevated ({rhr:.0f} bpm)",
            remediation=[
                "Track resting heart rate each morning",
                "Reduce caffeine and alcohol",
                "Build regular low-intensity aerobic activity",
            ],
            follow_up="2-4 weeks",
        ))
        if snapshot.steps is not None and snapshot.steps < LOW_STEPS:
            risks.append(RiskFactor(
                category="cardiovascular",
                severity="high",
                description="Elevated resting heart rate combined with low daily activity",
                remediation=[
                    "Add two 10-minute walks per day",
                    "Discuss the pattern with a clinician if it persists",
                ],
                follow_up="2-4 weeks",
            ))

    if profile.chronic_conditions:
        risks.append(RiskFactor(
            category="cardiovascular",
            severity="moderate",
            description="Existing chronic conditions: " + ", ".join(profile.chronic_conditions),
            remediation=["Keep scheduled check-ups with your care team"],
            follow_up="ongoing",
        ))
    return risks


def _activity(snapshot: HealthSnapshot) -> list[RiskFactor]:
    steps, exercise = snapshot.steps, snapshot.exercise_minutes
    if steps is None or exercise is None:
        return []
    if steps < LOW_STEPS and exercise < LOW_EXERCISE_MINUTES:
        return [RiskFactor(
            category="activity",
            severity="moderate",
            description="Sedentary pattern: low step count and little exercise",
            remediation=[
                "Set an hourly reminder to stand and move",
                "Schedule three 20-minute workouts per week",
            ],
            follow_up="6-8 weeks",
        )]
    return []


def _metabolic(snapshot: HealthSnapshot, profile: UserProfile) -> list[RiskFactor]:
    risks: list[RiskFactor] = []
    bmi = snapshot.effective_bmi(profile)
    sodium = snapshot.sodium_mg
    obese = bmi is not None and bmi >= 30
    high_sodium = sodium is not None and sodium > HIGH_SODIUM_MG

    if obese:
        risks.append(RiskFactor(
            category="metabolic",
            severity="high",
            description=f"BMI {bmi:.1f} is in the obese range",
            remediation=[
                "Aim for gradual weight loss of 0.5 kg per week",
                "Favour whole foods and reduce ultra-processed snacks",
                "Combine aerobic and strength training",
            ],
            follow_up="6-12 months",
        ))
    if high_sodium:
        risks.append(RiskFactor(
            category="metabolic",
            severity="moderate",
            description=f"Sodium intake is high ({sodium:.0f} mg/day)",
            remediation=["Check labels for sodium", "Cook more meals at home"],
            follow_up="4-6 weeks",
        ))
    if obese and high_sodium:
        risks.append(RiskFactor(
            category="metabolic",
            severity="severe",
            description="Obesity combined with high sodium intake raises hypertension risk",
            remediation=[
                "Cut sodium below 2300 mg/day",
                "Monitor blood pressure weekly",
                "Book a metabolic health review",
            ],
            follow_up="4-6 weeks",
        ))
    return risks


def _sleep(snapshot: HealthSnapshot) -> list[RiskFactor]:
    risks: list[RiskFactor] = []
    if snapshot.sleep_hours is not None and snapshot.sleep_hours < SHORT_SLEEP_HOURS:
        risks.append(RiskFactor(
            category="sleep",
            severity="high",
            description=f"Chronic sleep deprivation ({snapshot.sleep_hours:.1f} h per night)",
            remediation=[
                "Fix a consistent bedtime and wake time",
                "Protect at least 7 hours in bed",
            ],
            follow_up="2-4 weeks",
        ))
    if snapshot.sleep_efficiency is not None and snapshot.sleep_efficiency < 0.8:
        risks.append(RiskFactor(
            category="sleep",
            severity="moderate",
            description=f"Fragmented sleep (efficiency {snapshot.sleep_efficiency * 100:.0f}%)",
            remediation=["Keep the bedroom cool and dark", "Avoid screens before bed"],
            follow_up="4-6 weeks",
        ))
    return risks


def assess_risks(snapshot: HealthSnapshot, profile: UserProfile) -> list[RiskFactor]:
    """Return all detected risk factors, most severe first (stable within a severity)."""
    risks = (
        _cardiovascular(snapshot, profile)
        + _metabolic(snapshot, profile)
        + _sleep(snapshot)
        + _activity(snapshot)
    )
    return sorted(risks, key=lambda r: RISK_SEVERITY_RANK[r.severity], reverse=True)
