"""Unit tests for the performance window analyzer."""

import pytest

from riskcal.calibration.analyzer import (
    PerformanceAnalyzer,
    compute_health_score,
    predictions_to_frame,
)
from riskcal.calibration.bins import BinCalibrationTracker
from riskcal.config import CalibrationConfig


@pytest.fixture
def analyzer():
    return PerformanceAnalyzer(CalibrationConfig())


class TestAnalyzeWindow:
    """Tests for PerformanceAnalyzer.analyze_window."""

    def test_no_settled_predictions_has_zero_win_rate(self, analyzer, now):
        """No division by zero when wins = losses = 0."""
        window = analyzer.analyze_window("alpha", [], 7, now)

        assert window.sample_size == 0
        assert window.wins == 0
        assert window.losses == 0
        assert window.win_rate == 0
        assert window.health_score == 50.0
        assert window.streak == 0
        assert window.recent_results == ""

    def test_pushes_count_toward_sample_but_not_win_rate(self, analyzer, make_batch, now):
        window = analyzer.analyze_window("alpha", make_batch("alpha", "PP"), 7, now)

        assert window.sample_size == 2
        assert window.pushes == 2
        assert window.win_rate == 0
        assert window.wins + window.losses <= window.sample_size

    def test_counts_and_win_rate(self, analyzer, make_batch, now):
        window = analyzer.analyze_window("alpha", make_batch("alpha", "WWWLP-"), 7, now)

        assert window.sample_size == 5
        assert window.wins == 3
        assert window.losses == 1
        assert window.win_rate == pytest.approx(0.75)
        assert window.settled == 4

    def test_window_excludes_old_other_and_pending(self, analyzer, make_prediction, now):
        predictions = [
            make_prediction("alpha", outcome="won", hours_ago=2),
            make_prediction("alpha", outcome="lost", hours_ago=24 * 8),
            make_prediction("beta", outcome="lost", hours_ago=2),
            make_prediction("alpha", outcome="pending"),
        ]
        window = analyzer.analyze_window("alpha", predictions, 7, now)

        assert window.sample_size == 1
        assert window.wins == 1

    def test_streak_and_recent_results(self, analyzer, make_batch, now):
        """Most recent results come first; the trailing three losses give -3."""
        window = analyzer.analyze_window("alpha", make_batch("alpha", "WWLLL"), 7, now)

        assert window.streak == -3
        assert window.recent_results == "LLLWW"

    def test_recent_results_capped_at_ten(self, analyzer, make_batch, now):
        window = analyzer.analyze_window("alpha", make_batch("alpha", "L" + "W" * 12), 7, now)

        assert window.recent_results == "W" * 10
        assert window.streak == 12

    def test_health_rises_with_win_rate(self, analyzer, make_batch, now):
        strong = analyzer.analyze_window("alpha", make_batch("alpha", "W" * 20 + "L" * 10), 7, now)
        weak = analyzer.analyze_window("alpha", make_batch("alpha", "W" * 10 + "L" * 20), 7, now)

        assert strong.health_score > 50 > weak.health_score

    def test_confidence_correlation(self, analyzer, make_prediction, now):
        predictions = (
            [make_prediction(confidence=80, outcome="won", hours_ago=h) for h in range(1, 6)]
            + [make_prediction(confidence=55, outcome="lost", hours_ago=h) for h in range(6, 11)]
        )
        window = analyzer.analyze_window("alpha", predictions, 7, now)
        assert window.confidence_correlation == pytest.approx(1.0)

    def test_constant_confidence_has_zero_correlation(self, analyzer, make_batch, now):
        window = analyzer.analyze_window("alpha", make_batch("alpha", "WLWL"), 7, now)
        assert window.confidence_correlation == 0.0

    def test_calibration_error_uses_bins(self, analyzer, make_batch, now):
        predictions = make_batch("alpha", "WLWLWLWLWL", confidence=70)
        bins = BinCalibrationTracker()
        bins.rebuild(predictions)

        window = analyzer.analyze_window("alpha", predictions, 7, now, bins)

        # Stated 70%, observed 50%
        assert window.calibration_error == pytest.approx(0.2)
        assert window.health_score < 50

    def test_calibration_error_falls_back_to_global_bins(self, analyzer, make_batch, now):
        history = make_batch("beta", "WLWLWLWLWL", confidence=70)
        bins = BinCalibrationTracker()
        bins.rebuild(history)

        window = analyzer.analyze_window("alpha", make_batch("alpha", "WW", confidence=72), 7, now, bins)
        assert window.calibration_error == pytest.approx(0.22)

    def test_analyze_all(self, analyzer, make_batch, now):
        predictions = make_batch("alpha", "WW") + make_batch("beta", "L")
        windows = analyzer.analyze_all(["alpha", "beta", "gamma"], predictions, 7, now)

        assert set(windows) == {"alpha", "beta", "gamma"}
        assert windows["gamma"].sample_size == 0


class TestHealthScore:
    """Tests for compute_health_score."""

    def test_neutral_without_settled(self):
        assert compute_health_score(0.0, 0, 0.0) == 50.0

    def test_full_sample_full_bonus(self):
        # 10 points over break-even at 3x the minimum sample
        assert compute_health_score(0.624, 30, 0.0) == pytest.approx(85.0)

    def test_small_sample_is_trusted_less(self):
        assert compute_health_score(0.624, 15, 0.0) == pytest.approx(67.5)

    def test_calibration_error_penalty(self):
        assert compute_health_score(0.624, 30, 0.20) == pytest.approx(70.0)
        assert compute_health_score(0.624, 30, 0.50) == pytest.approx(70.0)

    def test_bounded(self):
        assert 0 <= compute_health_score(0.0, 1000, 1.0) <= 100
        assert 0 <= compute_health_score(1.0, 1000, 0.0) <= 100

    def test_tunable_constants(self):
        config = CalibrationConfig(win_rate_points=45.0)
        assert compute_health_score(0.624, 30, 0.0, config) == pytest.approx(95.0)


def test_predictions_to_frame_hit_column(make_batch):
    df = predictions_to_frame(make_batch("alpha", "WLP"))
    assert list(df['hit'].dropna()) == [1.0, 0.0]
    assert df['hit'].isna().sum() == 1
