"""
Tests for the indicator-style calculator facade.

Run with: pytest tests/test_calculator.py -v
"""

import numpy as np
import pytest

from prep_analytics.cache import AnalyticsCache
from prep_analytics.calculator import GapAnalyticsCalculator
from prep_analytics.models import TimeSeriesPoint
from prep_analytics.settings import AnalyticsSettings


INDICATOR_KEYS = {"value", "trend", "chart_data", "details"}


class TestCohortIndicators:
    """Cluster, heatmap and intensity indicators."""

    def test_gap_clusters_scenario(self, scenario_entities):
        calc = GapAnalyticsCalculator(scenario_entities)
        result = calc.gap_clusters()
        assert set(result) == INDICATOR_KEYS
        assert result["value"] == 1
        cluster = result["chart_data"]["clusters"][0]
        assert cluster["member_ids"] == ["1", "2"]
        assert [g["topic"] for g in cluster["common_gaps"]] == ["Gap1", "Gap2", "Gap3"]
        assert result["chart_data"]["unclustered"] == ["3"]

    def test_accepts_raw_records(self, cohort_records):
        calc = GapAnalyticsCalculator(cohort_records)
        assert [e.id for e in calc.entities] == ["s1", "s2", "s3"]
        assert calc.gap_clusters()["value"] == 1

    def test_topic_heatmap_bands(self, cohort_records):
        result = GapAnalyticsCalculator(cohort_records).topic_heatmap()
        top = result["chart_data"]["topics"][0]
        assert top["topic"] == "Renal Clearance"
        assert top["band"] == "Critical"
        assert result["value"] == 5

    def test_cohort_summary(self, cohort_records):
        result = GapAnalyticsCalculator(cohort_records).cohort_summary()
        assert result["chart_data"]["critical_gaps"] == 2
        assert 0 <= result["value"] <= 100

    def test_avg_gap_intensity_trend(self, cohort_records):
        prev = [dict(r, topic_gap_sentences=[{"topic": "X", "gap_intensity": 1.0}]) for r in cohort_records]
        result = GapAnalyticsCalculator(cohort_records, prev_entities=prev).avg_gap_intensity()
        assert result["trend"] is not None
        assert result["trend"] < 0

    def test_critical_gaps(self, cohort_records):
        result = GapAnalyticsCalculator(cohort_records).critical_gaps()
        assert result["value"] == 2
        assert set(result["chart_data"]["labels"]) == {"Action Potential", "Renal Clearance"}

    def test_learner_rollups_sorted_by_weighted_intensity(self, cohort_records):
        result = GapAnalyticsCalculator(cohort_records).learner_rollups()
        rows = result["chart_data"]["rows"]
        assert result["value"] == 3
        assert [r["entity_id"] for r in rows] == ["s1", "s2", "s3"]
        # weights follow intensity, so the weighted mean is sum(i^2) / sum(i)
        assert rows[0]["intensity_weighted"] == pytest.approx(0.7)
        assert "Arjun" in result["details"]

    def test_empty_cohort_is_neutral(self):
        calc = GapAnalyticsCalculator([])
        assert calc.gap_clusters()["value"] == 0
        assert calc.topic_heatmap()["value"] == 0
        assert calc.avg_gap_intensity()["value"] == 0
        assert calc.critical_gaps()["value"] == 0
        assert calc.gap_network()["value"] == 0


class TestTrendAndSync:
    """Progress trend and peer sync indicators."""

    def test_progress_trend_numbers(self):
        result = GapAnalyticsCalculator([]).progress_trend([1, 3, 5, 7])
        assert result["value"] == pytest.approx(2.0)
        assert result["chart_data"]["intercept"] == pytest.approx(1.0)
        assert result["chart_data"]["strength"] == "Strong"
        assert result["chart_data"]["fit"] == pytest.approx([1, 3, 5, 7])

    def test_progress_trend_dated_records(self):
        records = [
            {"date": "2024-01-02", "value": 60},
            {"date": "2024-01-01", "value": 50},
            {"date": "2024-01-03", "value": 70},
        ]
        result = GapAnalyticsCalculator([]).progress_trend(records)
        assert result["value"] == pytest.approx(10.0)
        assert result["chart_data"]["y"] == [50.0, 60.0, 70.0]

    def test_progress_trend_points_and_empty(self):
        calc = GapAnalyticsCalculator([])
        assert calc.progress_trend([TimeSeriesPoint(0, 5.0)])["chart_data"]["intercept"] == 5.0
        assert calc.progress_trend([])["value"] == 0

    def test_progress_trend_chart_matches_fit_after_dropping_nan(self):
        result = GapAnalyticsCalculator([]).progress_trend([1, float("nan"), 3, 4])
        chart = result["chart_data"]
        assert chart["y"] == [1.0, 3.0, 4.0]
        assert chart["x"] == [0, 1, 2]
        assert len(chart["fit"]) == 3
        assert result["value"] == pytest.approx(1.5)
        assert chart["fit"] == pytest.approx([7 / 6, 8 / 3, 25 / 6])

    def test_progress_trend_orders_points_by_index(self):
        points = [TimeSeriesPoint(2, 30.0), TimeSeriesPoint(0, 10.0), TimeSeriesPoint(1, 20.0)]
        result = GapAnalyticsCalculator([]).progress_trend(points)
        assert result["chart_data"]["y"] == [10.0, 20.0, 30.0]
        assert result["value"] == pytest.approx(10.0)

    def test_progress_trend_weekly_periods(self):
        result = GapAnalyticsCalculator([]).progress_trend(list(range(14)), period=7)
        assert result["chart_data"]["y"] == pytest.approx([3.0, 10.0])
        assert result["value"] == pytest.approx(7.0)

    def test_time_accuracy_tradeoff(self):
        records = [
            {"topic": "A", "hours_spent": 1, "accuracy": 80},
            {"topic": "B", "hours_spent": 2, "accuracy": 70},
            {"topic": "C", "hours_spent": 3, "accuracy": 60},
            {"topic": "D", "hours_spent": 4, "accuracy": 50},
            {"topic": "E", "hours_spent": None, "accuracy": 10},
        ]
        result = GapAnalyticsCalculator([]).time_accuracy_tradeoff(records)
        assert result["value"] == pytest.approx(-1.0)
        assert result["chart_data"]["strength"] == "Strong"
        assert "negative" in result["details"]

    def test_peer_sync(self, cohort_records):
        result = GapAnalyticsCalculator(cohort_records).peer_sync("s1", "s2")
        assert result["value"] == pytest.approx(85.7)
        assert result["chart_data"]["label"] == "Excellent"
        assert result["chart_data"]["leader"] == "s2"

    def test_peer_sync_unknown_learner(self, cohort_records):
        result = GapAnalyticsCalculator(cohort_records).peer_sync("s1", "nobody")
        assert result["value"] == 0
        assert "nobody" in result["details"]


class TestGapNetwork:
    """Laid-out gap network."""

    def test_gap_network_nodes_and_edges(self, cohort_records):
        result = GapAnalyticsCalculator(cohort_records).gap_network(primary_id="s1")
        nodes = result["chart_data"]["nodes"]
        assert len(nodes) == 5
        assert all(np.isfinite(n["x"]) and np.isfinite(n["y"]) for n in nodes)
        primary = {n["id"] for n in nodes if n["is_primary_user_gap"]}
        assert primary == {"Action Potential", "Cardiac Cycle", "Enzyme Kinetics"}
        for edge in result["chart_data"]["edges"]:
            assert edge["tier"] in {"strong", "medium", "weak"}
            assert 1.0 <= edge["thickness"] <= 8.0

    def test_gap_network_with_rng_is_not_cached(self, cohort_records):
        cache = AnalyticsCache()
        calc = GapAnalyticsCalculator(cohort_records, cache=cache)
        calc.gap_network(rng=np.random.default_rng(3))
        assert cache.stats()["total_keys"] == 0


class TestCaching:
    """Results are memoized per input snapshot."""

    def test_same_snapshot_hits_cache(self, cohort_records):
        cache = AnalyticsCache()
        first = GapAnalyticsCalculator(cohort_records, cache=cache).gap_clusters()
        second = GapAnalyticsCalculator(cohort_records, cache=cache).gap_clusters()
        assert first is second

    def test_changed_snapshot_misses_cache(self, cohort_records):
        cache = AnalyticsCache()
        first = GapAnalyticsCalculator(cohort_records, cache=cache).gap_clusters()
        changed = cohort_records[:2]
        second = GapAnalyticsCalculator(changed, cache=cache).gap_clusters()
        assert first is not second

    def test_threshold_is_part_of_the_key(self, scenario_entities):
        cache = AnalyticsCache()
        calc = GapAnalyticsCalculator(scenario_entities, cache=cache)
        assert calc.gap_clusters(min_shared=3)["value"] == 1
        assert calc.gap_clusters(min_shared=4)["value"] == 0

    def test_settings_are_part_of_the_key(self, cohort_records):
        """Calculators sharing a cache but not settings never share results."""
        cache = AnalyticsCache()
        base = GapAnalyticsCalculator(cohort_records, cache=cache).topic_heatmap()
        scaled = GapAnalyticsCalculator(
            cohort_records, settings=AnalyticsSettings(topic_minutes_factor=1.0), cache=cache
        ).topic_heatmap()
        uncached = GapAnalyticsCalculator(
            cohort_records, settings=AnalyticsSettings(topic_minutes_factor=1.0)
        ).topic_heatmap()
        base_minutes = base["chart_data"]["topics"][0]["students"][0]["minutes_spent"]
        scaled_minutes = scaled["chart_data"]["topics"][0]["students"][0]["minutes_spent"]
        assert scaled_minutes == pytest.approx(base_minutes * 10)
        assert scaled == uncached
