"""Tests for single-metric guideline evaluations."""

from __future__ import annotations

import pytest

from vitalroute.domains.health.domain_logic import guidelines as g


class TestMissingData:
    @pytest.mark.parametrize(
        "evaluation",
        [
            g.evaluate_resting_heart_rate(None, 40),
            g.evaluate_hrv(None, 40),
            g.evaluate_blood_pressure(120, None),
            g.evaluate_sleep_duration(None, 40),
            g.evaluate_sleep_efficiency(None),
            g.evaluate_sleep_stages(None, None),
            g.evaluate_steps(None, 40),
            g.evaluate_exercise(None),
            g.evaluate_calories(400, None, 178, 40),
            g.evaluate_bmi(None, 40),
            g.evaluate_body_fat(None),
            g.evaluate_nutrition(None, None),
        ],
    )
    def test_missing_metric_is_neutral(self, evaluation):
        assert evaluation == (100.0, [])


class TestRestingHeartRate:
    def test_elevated_at_forty(self):
        score, findings = g.evaluate_resting_heart_rate(95, 40, "male")
        assert score <= 70
        assert findings[0].kind == "warning"
        assert findings[0].severity == "moderate"

    def test_far_above_range_is_high_severity(self):
        score, findings = g.evaluate_resting_heart_rate(120, 40)
        assert score == 40.0
        assert findings[0].severity == "high"

    def test_below_range(self):
        score, findings = g.evaluate_resting_heart_rate(50, 40)
        assert score == 60.0
        assert findings[0].kind == "concerning"

    def test_within_range(self):
        score, findings = g.evaluate_resting_heart_rate(65, 40)
        assert score == 100.0
        assert findings[0].kind == "normal"

    def test_range_narrows_with_age_but_has_a_floor(self):
        young = g.resting_heart_rate_range(30)
        old = g.resting_heart_rate_range(60)
        very_old = g.resting_heart_rate_range(200)
        assert young == (60.0, 90.0)
        assert old[1] < young[1]
        assert very_old == pytest.approx((48.0, 72.0))


class TestHRV:
    def test_low_hrv_is_concerning(self):
        # Expected for a 40-year-old man is 30 ms.
        score, findings = g.evaluate_hrv(15, 40, "male")
        assert score == 60.0
        assert findings[0].kind == "concerning"

    def test_high_hrv_is_excellent(self):
        score, findings = g.evaluate_hrv(45, 40, "male")
        assert score == 100.0
        assert findings[0].kind == "excellent"

    def test_expected_hrv_floor(self):
        assert g.expected_hrv(90, "female") == 20.0


class TestBloodPressure:
    @pytest.mark.parametrize(
        ("systolic", "diastolic", "score", "kind"),
        [
            (185, 95, 20.0, "concerning"),
            (150, 85, 40.0, "concerning"),
            (135, 85, 65.0, "warning"),
            (125, 75, 80.0, "warning"),
            (115, 75, 100.0, "normal"),
        ],
    )
    def test_bands(self, systolic, diastolic, score, kind):
        got_score, findings = g.evaluate_blood_pressure(systolic, diastolic)
        assert got_score == score
        assert findings[0].kind == kind

    def test_diastolic_alone_can_trigger_crisis(self):
        score, findings = g.evaluate_blood_pressure(150, 125)
        assert score == 20.0
        assert findings[0].severity == "high"


class TestSleep:
    def test_well_below_minimum(self):
        score, findings = g.evaluate_sleep_duration(5.5, 40)
        assert score == 50.0
        assert findings[0].kind == "concerning"

    def test_slightly_short(self):
        assert g.evaluate_sleep_duration(6.5, 40)[0] == 75.0

    def test_oversleeping(self):
        assert g.evaluate_sleep_duration(12, 40)[0] == 75.0

    def test_efficiency_bands(self):
        assert g.evaluate_sleep_efficiency(92)[1][0].kind == "excellent"
        assert g.evaluate_sleep_efficiency(80)[0] == 75.0
        assert g.evaluate_sleep_efficiency(70)[0] == 50.0

    def test_stages_take_the_worst_penalty(self):
        score, findings = g.evaluate_sleep_stages(8, 12)
        assert score == 60.0
        assert {f.metric for f in findings} == {"deep_sleep", "rem_sleep"}

    def test_healthy_stages(self):
        score, findings = g.evaluate_sleep_stages(18, 22)
        assert score == 100.0
        assert findings[0].kind == "normal"


class TestActivity:
    def test_steps_well_below_target(self):
        score, findings = g.evaluate_steps(3000, 30)
        assert score == 50.0
        assert findings[0].kind == "concerning"

    def test_steps_somewhat_below_target(self):
        assert g.evaluate_steps(8000, 30)[0] == 75.0

    def test_step_target_drops_with_age(self):
        assert g.daily_step_target(30) == 10000
        assert g.daily_step_target(55) == 8000
        assert g.daily_step_target(70) == 7000
        assert g.evaluate_steps(7000, 70)[0] == 100.0

    def test_exercise_is_judged_weekly(self):
        assert g.evaluate_exercise(25)[0] == 100.0   # 175 min/week
        assert g.evaluate_exercise(15)[0] == 70.0    # 105 min/week
        assert g.evaluate_exercise(10)[0] == 50.0    # 70 min/week

    def test_bmr_mifflin_st_jeor(self):
        assert g.basal_metabolic_rate(72, 178, 40, "male") == pytest.approx(1637.5)
        assert g.basal_metabolic_rate(60, 165, 30, "female") == pytest.approx(1320.25)

    def test_calories_relative_to_bmr(self):
        assert g.evaluate_calories(500, 72, 178, 40, "male")[1][0].kind == "excellent"
        assert g.evaluate_calories(200, 72, 178, 40, "male")[0] == 70.0


class TestMetabolic:
    def test_obese_bmi(self):
        score, findings = g.evaluate_bmi(32, 45)
        assert score == 50.0
        assert findings[0].kind == "concerning"
        assert findings[0].severity == "high"

    def test_overweight_bmi(self):
        assert g.evaluate_bmi(27, 45)[0] == 70.0

    def test_older_adults_have_a_wider_healthy_band(self):
        assert g.evaluate_bmi(26, 70)[0] == 100.0

    def test_underweight(self):
        assert g.evaluate_bmi(17, 30)[0] == 60.0

    def test_nutrition_takes_the_minimum(self):
        score, findings = g.evaluate_nutrition(1.0, 2500)
        assert score == 70.0
        assert {f.metric for f in findings} == {"water", "sodium"}

    def test_body_fat_bands(self):
        assert g.evaluate_body_fat(20)[0] == 100.0
        assert g.evaluate_body_fat(28)[0] == 75.0
        assert g.evaluate_body_fat(35)[0] == 60.0
