"""Sample data for development without a connected device.

Values describe a moderately active 42-year-old with slightly short sleep
and mildly elevated sodium intake.
"""

from __future__ import annotations

from typing import Any


def get_mock_snapshot_data() -> dict[str, Any]:
    return {
        "resting_heart_rate": 64,
        "average_heart_rate": 78,
        "hrv": 38,
        "systolic": 124,
        "diastolic": 79,
        "sleep_hours": 6.6,
        "sleep_efficiency": 0.87,
        "deep_sleep_pct": 16,
        "rem_sleep_pct": 21,
        "steps": 8400,
        "exercise_minutes": 25,
        "active_calories": 420,
        "workouts": 3,
        "weight_kg": 78.5,
        "height_cm": 178,
        "body_fat_pct": 22,
        "water_liters": 1.8,
        "sodium_mg": 2650,
    }


def get_mock_profile_data() -> dict[str, Any]:
    return {
        "age": 42,
        "gender": "male",
        "weight_kg": 78.5,
        "height_cm": 178,
        "goals": ["improve_sleep", "lower_resting_hr"],
        "exercise_frequency": "3x_week",
        "exercise_habits": ["running", "cycling"],
        "dietary_preferences": ["mediterranean"],
        "chronic_conditions": [],
        "has_wearable": True,
        "daily_checkins": False,
        "share_data_with_ai": True,
        "language": "en",
    }
