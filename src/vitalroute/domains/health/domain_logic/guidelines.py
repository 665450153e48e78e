"""Medical guideline evaluation: one metric -> (category score, findings).

Each evaluate function takes a single metric value plus demographic context
and returns:
    (score: float in [0, 100], findings: list[Finding])

A missing metric (``None``) returns the neutral score with no findings, so
absent data never penalizes a category. All functions are pure.
"""

from __future__ import annotations

from vitalroute.domains.health.domain_logic.health_models import NEUTRAL_SCORE, Finding

Evaluation = tuple[float, list[Finding]]

_NO_DATA: Evaluation = (NEUTRAL_SCORE, [])


def _range(lo: float, hi: float, unit: str = "") -> str:
    suffix = f" {unit}" if unit else ""
    return f"{lo:g}-{hi:g}{suffix}"


# ---------------------------------------------------------------------------
# Cardiovascular
# ---------------------------------------------------------------------------

def resting_heart_rate_range(age: int) -> tuple[float, float]:
    """Healthy resting HR band; narrows slowly with age (floor at 80% of the adult band)."""
    factor = max(0.8, 1.0 - (age - 30) * 0.002)
    return 60.0 * factor, 90.0 * factor


def evaluate_resting_heart_rate(bpm: float | None, age: int, gender: str | None = None) -> Evaluation:
    if bpm is None:
        return _NO_DATA
    lower, upper = resting_heart_rate_range(age)
    ref = _range(round(lower, 1), round(upper, 1), "bpm")

    if bpm < lower:
        severity = "high" if bpm < lower - 10 else "moderate"
        return 60.0, [Finding(
            metric="resting_heart_rate",
            kind="concerning",
            severity=severity,
            description=f"Resting heart rate {bpm:.0f} bpm is below the expected range",
            value=bpm,
            reference_range=ref,
        )]
    if bpm > upper:
        far_above = bpm > upper + 20
        return (40.0 if far_above else 70.0), [Finding(
            metric="resting_heart_rate",
            kind="warning",
            severity="high" if far_above else "moderate",
            description=f"Resting heart rate {bpm:.0f} bpm is elevated",
            value=bpm,
            reference_range=ref,
        )]
    return 100.0, [Finding(
        metric="resting_heart_rate",
        kind="normal",
        severity="low",
        description=f"Resting heart rate {bpm:.0f} bpm is within the healthy range",
        value=bpm,
        reference_range=ref,
    )]


def expected_hrv(age: int, gender: str | None) -> float:
    base = 42.0 if (gender or "").lower() == "male" else 38.0
    return max(20.0, base - age * 0.3)


def evaluate_hrv(hrv_ms: float | None, age: int, gender: str | None = None) -> Evaluation:
    if hrv_ms is None:
        return _NO_DATA
    expected = expected_hrv(age, gender)
    ratio = hrv_ms / expected
    ref = f">= {expected * 0.7:.0f} ms"

    if ratio < 0.7:
        return 60.0, [Finding(
            metric="hrv",
            kind="concerning",
            severity="moderate",
            description=f"Heart rate variability {hrv_ms:.0f} ms is low for your age",
            value=hrv_ms,
            reference_range=ref,
        )]
    if ratio > 1.3:
        return 100.0, [Finding(
            metric="hrv",
            kind="excellent",
            severity="low",
            description=f"Heart rate variability {hrv_ms:.0f} ms indicates strong recovery",
            value=hrv_ms,
            reference_range=ref,
        )]
    return 100.0, [Finding(
        metric="hrv",
        kind="normal",
        severity="low",
        description=f"Heart rate variability {hrv_ms:.0f} ms is typical for your age",
        value=hrv_ms,
        reference_range=ref,
    )]


def evaluate_blood_pressure(systolic: float | None, diastolic: float | None) -> Evaluation:
    if systolic is None or diastolic is None:
        return _NO_DATA
    reading = f"{systolic:.0f}/{diastolic:.0f} mmHg"
    ref = "< 120/80 mmHg"

    if systolic >= 180 or diastolic >= 120:
        score, kind, severity, label = 20.0, "concerning", "high", "in the hypertensive crisis range"
    elif systolic >= 140 or diastolic >= 90:
        score, kind, severity, label = 40.0, "concerning", "moderate", "in the stage 2 hypertension range"
    elif systolic >= 130 or diastolic >= 80:
        score, kind, severity, label = 65.0, "warning", "moderate", "in the stage 1 hypertension range"
    elif systolic >= 120:
        score, kind, severity, label = 80.0, "warning", "low", "elevated"
    else:
        score, kind, severity, label = 100.0, "normal", "low", "normal"

    return score, [Finding(
        metric="blood_pressure",
        kind=kind,
        severity=severity,
        description=f"Blood pressure {reading} is {label}",
        value=systolic,
        reference_range=ref,
    )]


# ---------------------------------------------------------------------------
# Sleep
# ---------------------------------------------------------------------------

def evaluate_sleep_duration(hours: float | None, age: int) -> Evaluation:
    if hours is None:
        return _NO_DATA
    lo, hi = (7.0, 8.0) if age >= 65 else (7.0, 9.0)
    ref = _range(lo, hi, "h")

    if hours < lo - 1:
        return 50.0, [Finding("sleep_duration", "concerning", "moderate",
                              f"Sleep duration {hours:.1f} h is well below the recommended minimum",
                              hours, ref)]
    if hours < lo:
        return 75.0, [Finding("sleep_duration", "warning", "low",
                              f"Sleep duration {hours:.1f} h is slightly short",
                              hours, ref)]
    if hours > hi + 2:
        return 75.0, [Finding("sleep_duration", "warning", "low",
                              f"Sleep duration {hours:.1f} h is longer than typical",
                              hours, ref)]
    return 100.0, [Finding("sleep_duration", "normal", "low",
                           f"Sleep duration {hours:.1f} h is in the recommended range",
                           hours, ref)]


def evaluate_sleep_efficiency(efficiency_pct: float | None) -> Evaluation:
    if efficiency_pct is None:
        return _NO_DATA
    ref = ">= 85%"
    if efficiency_pct >= 90:
        return 100.0, [Finding("sleep_efficiency", "excellent", "low",
                               f"Sleep efficiency {efficiency_pct:.0f}% is excellent",
                               efficiency_pct, ref)]
    if efficiency_pct >= 85:
        return 100.0, [Finding("sleep_efficiency", "normal", "low",
                               f"Sleep efficiency {efficiency_pct:.0f}% is good",
                               efficiency_pct, ref)]
    if efficiency_pct >= 75:
        return 75.0, [Finding("sleep_efficiency", "warning", "low",
                              f"Sleep efficiency {efficiency_pct:.0f}% could be improved",
                              efficiency_pct, ref)]
    return 50.0, [Finding("sleep_efficiency", "concerning", "moderate",
                          f"Sleep efficiency {efficiency_pct:.0f}% is low",
                          efficiency_pct, ref)]


def evaluate_sleep_stages(deep_pct: float | None, rem_pct: float | None) -> Evaluation:
    if deep_pct is None and rem_pct is None:
        return _NO_DATA
    score = NEUTRAL_SCORE
    findings: list[Finding] = []

    if deep_pct is not None:
        if deep_pct < 10:
            score = min(score, 60.0)
            findings.append(Finding("deep_sleep", "concerning", "moderate",
                                    f"Deep sleep {deep_pct:.0f}% of total is very low",
                                    deep_pct, "15-25%"))
        elif deep_pct < 15:
            score = min(score, 80.0)
            findings.append(Finding("deep_sleep", "warning", "low",
                                    f"Deep sleep {deep_pct:.0f}% of total is below target",
                                    deep_pct, "15-25%"))
    if rem_pct is not None and rem_pct < 15:
        score = min(score, 75.0)
        findings.append(Finding("rem_sleep", "warning", "low",
                                f"REM sleep {rem_pct:.0f}% of total is below target",
                                rem_pct, "20-25%"))

    if not findings:
        findings.append(Finding("sleep_stages", "normal", "low",
                                "Sleep stage balance looks healthy",
                                deep_pct if deep_pct is not None else rem_pct or 0.0,
                                "deep 15-25%, REM 20-25%"))
    return score, findings


# ---------------------------------------------------------------------------
# Activity
# ---------------------------------------------------------------------------

def daily_step_target(age: int) -> int:
    if age >= 65:
        return 7000
    if age >= 50:
        return 8000
    return 10000


def evaluate_steps(steps: float | None, age: int) -> Evaluation:
    if steps is None:
        return _NO_DATA
    target = daily_step_target(age)
    ref = f">= {target}"
    if steps >= target:
        return 100.0, [Finding("steps", "normal", "low",
                               f"{steps:.0f} steps meets the daily target", steps, ref)]
    if steps >= target * 0.7:
        return 75.0, [Finding("steps", "warning", "low",
                              f"{steps:.0f} steps is somewhat below the daily target", steps, ref)]
    return 50.0, [Finding("steps", "concerning", "moderate",
                          f"{steps:.0f} steps is well below the daily target of {target}", steps, ref)]


WEEKLY_EXERCISE_TARGET = 150.0


def evaluate_exercise(daily_minutes: float | None) -> Evaluation:
    if daily_minutes is None:
        return _NO_DATA
    weekly = daily_minutes * 7
    ref = f">= {WEEKLY_EXERCISE_TARGET:.0f} min/week"
    if weekly >= WEEKLY_EXERCISE_TARGET:
        return 100.0, [Finding("exercise", "normal", "low",
                               f"About {weekly:.0f} active minutes per week meets guidelines",
                               weekly, ref)]
    if weekly >= WEEKLY_EXERCISE_TARGET / 2:
        return 70.0, [Finding("exercise", "warning", "low",
                              f"About {weekly:.0f} active minutes per week is below guidelines",
                              weekly, ref)]
    return 50.0, [Finding("exercise", "concerning", "moderate",
                          f"About {weekly:.0f} active minutes per week is well below guidelines",
                          weekly, ref)]


def basal_metabolic_rate(weight_kg: float, height_cm: float, age: int, gender: str | None) -> float:
    """Mifflin-St Jeor BMR in kcal/day."""
    bmr = 10 * weight_kg + 6.25 * height_cm - 5 * age
    return bmr + 5 if (gender or "").lower() == "male" else bmr - 161


def evaluate_calories(
    active_calories: float | None,
    weight_kg: float | None,
    height_cm: float | None,
    age: int,
    gender: str | None = None,
) -> Evaluation:
    if active_calories is None or weight_kg is None or height_cm is None:
        return _NO_DATA
    bmr = basal_metabolic_rate(weight_kg, height_cm, age, gender)
    if bmr <= 0:
        return _NO_DATA
    ratio = active_calories / bmr
    ref = f">= {bmr * 0.2:.0f} kcal"
    if ratio >= 0.3:
        return 100.0, [Finding("active_calories", "excellent", "low",
                               f"{active_calories:.0f} active kcal is a strong energy expenditure",
                               active_calories, ref)]
    if ratio >= 0.2:
        return 100.0, [Finding("active_calories", "normal", "low",
                               f"{active_calories:.0f} active kcal is adequate",
                               active_calories, ref)]
    return 70.0, [Finding("active_calories", "warning", "low",
                          f"{active_calories:.0f} active kcal is low relative to your BMR",
                          active_calories, ref)]


# ---------------------------------------------------------------------------
# Metabolic
# ---------------------------------------------------------------------------

def evaluate_bmi(bmi: float | None, age: int) -> Evaluation:
    if bmi is None:
        return _NO_DATA
    upper = 27.0 if age >= 65 else 24.9
    ref = _range(18.5, upper)
    if bmi < 18.5:
        return 60.0, [Finding("bmi", "concerning", "moderate",
                              f"BMI {bmi:.1f} is underweight", bmi, ref)]
    if bmi <= upper:
        return 100.0, [Finding("bmi", "normal", "low",
                               f"BMI {bmi:.1f} is in the healthy range", bmi, ref)]
    if bmi <= 29.9:
        return 70.0, [Finding("bmi", "warning", "moderate",
                              f"BMI {bmi:.1f} is in the overweight range", bmi, ref)]
    return 50.0, [Finding("bmi", "concerning", "high",
                          f"BMI {bmi:.1f} is in the obese range", bmi, ref)]


def evaluate_body_fat(body_fat_pct: float | None) -> Evaluation:
    if body_fat_pct is None:
        return _NO_DATA
    ref = "<= 25%"
    if body_fat_pct <= 25:
        return 100.0, [Finding("body_fat", "normal", "low",
                               f"Body fat {body_fat_pct:.0f}% is healthy", body_fat_pct, ref)]
    if body_fat_pct <= 30:
        return 75.0, [Finding("body_fat", "warning", "low",
                              f"Body fat {body_fat_pct:.0f}% is slightly high", body_fat_pct, ref)]
    return 60.0, [Finding("body_fat", "concerning", "moderate",
                          f"Body fat {body_fat_pct:.0f}% is high", body_fat_pct, ref)]


def evaluate_nutrition(water_liters: float | None, sodium_mg: float | None) -> Evaluation:
    if water_liters is None and sodium_mg is None:
        return _NO_DATA
    score = NEUTRAL_SCORE
    findings: list[Finding] = []
    if water_liters is not None and water_liters < 1.5:
        score = min(score, 75.0)
        findings.append(Finding("water", "warning", "low",
                                f"Water intake {water_liters:.1f} L is low", water_liters, ">= 1.5 L"))
    if sodium_mg is not None and sodium_mg > 2300:
        score = min(score, 70.0)
        findings.append(Finding("sodium", "warning", "moderate",
                                f"Sodium intake {sodium_mg:.0f} mg exceeds the daily limit",
                                sodium_mg, "<= 2300 mg"))
    return score, findings
