"""Tests for the local evidence analyzer."""

from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import FIXED_NOW, make_profile, make_snapshot

from vitalroute.domains.health.domain_logic.health_models import (
    CATEGORIES,
    CATEGORY_WEIGHTS,
    HealthSnapshot,
)
from vitalroute.domains.health.domain_logic.local_analyzer import (
    LocalHealthAnalyzer,
    data_quality_score,
    overall_score,
    recency_factor,
)
from vitalroute.domains.health.orchestration.errors import InsufficientDataError


@pytest.fixture
def analyzer() -> LocalHealthAnalyzer:
    return LocalHealthAnalyzer()


class TestOverallScore:
    def test_healthy_snapshot_scores_full_marks(self, analyzer):
        insights = analyzer.analyze(make_snapshot(), make_profile(), now=FIXED_NOW)
        assert insights.overall_score == 100.0
        assert insights.risk_factors == []
        assert all(insights.categories[c].score == 100.0 for c in CATEGORIES)

    def test_overall_is_the_weighted_category_sum(self, analyzer):
        snapshot = make_snapshot(resting_heart_rate=95, steps=3000)
        insights = analyzer.analyze(snapshot, make_profile(), now=FIXED_NOW)

        assert insights.categories["cardiovascular"].score == 70.0
        assert insights.categories["activity"].score == 50.0
        expected = sum(CATEGORY_WEIGHTS[c] * insights.categories[c].score for c in CATEGORIES)
        assert insights.overall_score == pytest.approx(expected)
        assert insights.overall_score == pytest.approx(78.5)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"systolic": 200, "diastolic": 130, "resting_heart_rate": 130},
            {"sleep_hours": 3, "sleep_efficiency": 0.5, "deep_sleep_pct": 5},
            {"steps": 100, "exercise_minutes": 0, "active_calories": 10},
            {"bmi": 45, "body_fat_pct": 45, "water_liters": 0.2, "sodium_mg": 6000},
        ],
    )
    def test_scores_stay_in_bounds(self, analyzer, overrides):
        insights = analyzer.analyze(make_snapshot(**overrides), make_profile(), now=FIXED_NOW)
        assert 0.0 <= insights.overall_score <= 100.0
        for c in CATEGORIES:
            assert 0.0 <= insights.categories[c].score <= 100.0

    def test_overall_score_helper_uses_every_category(self, analyzer):
        insights = analyzer.analyze(make_snapshot(), make_profile(), now=FIXED_NOW)
        assert overall_score(insights.categories) == pytest.approx(100.0)


class TestSparseInput:
    def test_empty_snapshot_raises(self, analyzer):
        with pytest.raises(InsufficientDataError):
            analyzer.analyze(HealthSnapshot(timestamp=FIXED_NOW), make_profile())

    def test_missing_categories_are_neutral(self, analyzer):
        snapshot = HealthSnapshot(steps=3000, timestamp=FIXED_NOW)
        insights = analyzer.analyze(snapshot, make_profile(), now=FIXED_NOW)
        assert insights.categories["sleep"].score == 100.0
        assert insights.categories["sleep"].findings == []
        assert insights.categories["activity"].score == 50.0

    def test_sparse_input_lowers_confidence(self, analyzer):
        full = analyzer.analyze(make_snapshot(), make_profile(), now=FIXED_NOW)
        sparse = analyzer.analyze(HealthSnapshot(steps=3000, timestamp=FIXED_NOW), make_profile())
        assert sparse.confidence < full.confidence

    def test_bmi_is_derived_from_profile_measurements(self, analyzer):
        snapshot = HealthSnapshot(steps=10000, timestamp=FIXED_NOW)
        profile = make_profile(weight_kg=110, height_cm=175)
        insights = analyzer.analyze(snapshot, profile, now=FIXED_NOW)
        assert insights.categories["metabolic"].score == 50.0


class TestRisksAndRecommendations:
    def test_risks_attach_to_their_category(self, analyzer):
        snapshot = make_snapshot(resting_heart_rate=95, steps=3000)
        insights = analyzer.analyze(snapshot, make_profile(), now=FIXED_NOW)
        assert [r.severity for r in insights.risk_factors] == ["high", "moderate"]
        assert len(insights.categories["cardiovascular"].risk_factors) == 2

    def test_obese_bmi_yields_high_metabolic_risk(self, analyzer):
        insights = analyzer.analyze(make_snapshot(bmi=32), make_profile(age=45), now=FIXED_NOW)
        assert insights.categories["metabolic"].score == 50.0
        assert any(
            r.category == "metabolic" and r.severity == "high" for r in insights.risk_factors
        )

    def test_immediate_recommendation_targets_weakest_category(self, analyzer):
        insights = analyzer.analyze(make_snapshot(sleep_hours=5), make_profile(), now=FIXED_NOW)
        first = insights.recommendations[0]
        assert first.category == "sleep"
        assert first.priority == "high"


class TestKeyInsights:
    def test_english(self, analyzer):
        insights = analyzer.analyze(make_snapshot(), make_profile(), now=FIXED_NOW)
        assert insights.key_insights == ["Your overall health indicators are in excellent shape."]

    def test_japanese(self, analyzer):
        insights = analyzer.analyze(make_snapshot(), make_profile(), "ja", now=FIXED_NOW)
        assert insights.key_insights == ["全体的な健康指標は非常に良好です。"]

    def test_unknown_language_falls_back_to_english(self, analyzer):
        insights = analyzer.analyze(make_snapshot(), make_profile(), "xx", now=FIXED_NOW)
        assert insights.key_insights[0].startswith("Your overall")

    def test_weak_category_and_risks_are_called_out(self, analyzer):
        snapshot = make_snapshot(resting_heart_rate=95, steps=3000)
        insights = analyzer.analyze(snapshot, make_profile(), now=FIXED_NOW)
        assert len(insights.key_insights) == 3
        assert "activity" in insights.key_insights[1]
        assert insights.key_insights[2].startswith("2 risk pattern")


class TestDataQuality:
    def test_full_and_fresh(self):
        assert data_quality_score(make_snapshot(), FIXED_NOW) == 1.0

    def test_partial_families(self):
        snapshot = HealthSnapshot(steps=5000, timestamp=FIXED_NOW)
        assert data_quality_score(snapshot, FIXED_NOW) == 0.25

    def test_discounted_by_age(self):
        later = FIXED_NOW + timedelta(hours=30)
        assert data_quality_score(make_snapshot(), later) == 0.6

    @pytest.mark.parametrize(
        ("hours", "factor"),
        [(0.5, 1.0), (3, 0.9), (12, 0.8), (48, 0.6), (100, 0.4)],
    )
    def test_recency_buckets(self, hours, factor):
        assert recency_factor(FIXED_NOW, FIXED_NOW + timedelta(hours=hours)) == factor


class TestQuickAssessment:
    def test_score_averages_available_signals(self, analyzer):
        quick = analyzer.quick_assessment(make_snapshot())
        # efficiency 90, steps capped at 100, hrv 40
        assert quick.score == pytest.approx(76.67)

    def test_short_sleep_is_the_focus(self, analyzer):
        quick = analyzer.quick_assessment(make_snapshot(sleep_hours=5, steps=3000))
        assert quick.focus == "sleep"
        assert quick.tips

    def test_low_steps_focus(self, analyzer):
        assert analyzer.quick_assessment(make_snapshot(steps=3000)).focus == "activity"

    def test_default_focus_is_nutrition(self, analyzer):
        assert analyzer.quick_assessment(make_snapshot()).focus == "nutrition"

    def test_no_signals_scores_fifty(self, analyzer):
        quick = analyzer.quick_assessment(HealthSnapshot(bmi=22, timestamp=FIXED_NOW))
        assert quick.score == 50.0
