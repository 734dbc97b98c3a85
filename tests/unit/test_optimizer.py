"""Unit tests for the weight adjuster."""

import pytest

from riskcal.calibration.analyzer import AlgorithmPerformanceWindow
from riskcal.calibration.bins import BinCalibrationTracker
from riskcal.calibration.optimizer import ModelWeight, WeightAdjuster
from riskcal.config import CalibrationConfig
from riskcal.constants import (
    RECOMMEND_BOOST,
    RECOMMEND_DECREASE,
    RECOMMEND_INSUFFICIENT,
    RECOMMEND_PAUSE,
)


def make_window(algorithm_id, sample_size=30, win_rate=0.55, health=55.0, streak=0):
    wins = int(round(sample_size * win_rate))
    return AlgorithmPerformanceWindow(
        algorithm_id=algorithm_id,
        window_days=7,
        sample_size=sample_size,
        wins=wins,
        losses=sample_size - wins,
        win_rate=win_rate,
        avg_confidence=62.0,
        health_score=health,
        streak=streak,
    )


def prior(algorithm_id, weight, multiplier=1.0, threshold=55.0):
    return ModelWeight(
        algorithm_id=algorithm_id,
        base_weight=weight,
        adjusted_weight=weight,
        confidence_multiplier=multiplier,
        min_confidence_threshold=threshold,
    )


class TestWeights:
    """Tests for weight normalization and limits."""

    def test_weights_sum_to_one(self):
        adjuster = WeightAdjuster(base_weights={"a": 0.3, "b": 0.3, "c": 0.4})
        result = adjuster.adjust([
            make_window("a", health=80),
            make_window("b", health=30),
            make_window("c", sample_size=4),
        ])
        assert result.total_weight == pytest.approx(1.0)
        assert all(w.adjusted_weight >= 0 for w in result.weights.values())

    def test_insufficient_samples_keep_base_weight(self):
        adjuster = WeightAdjuster(base_weights={"a": 0.6, "b": 0.4})
        result = adjuster.adjust([
            make_window("a", sample_size=9, health=90),
            make_window("b", sample_size=2, health=10),
        ])

        assert result.weights["a"].adjusted_weight == pytest.approx(0.6)
        assert result.weights["b"].adjusted_weight == pytest.approx(0.4)
        assert "Insufficient data" in result.weights["a"].adjustment_reason
        assert result.actions == []

    def test_change_limited_by_max_delta(self):
        adjuster = WeightAdjuster(base_weights={"a": 0.5, "b": 0.5})
        result = adjuster.adjust(
            [make_window("a", health=100), make_window("b", sample_size=3)],
            previous={"a": prior("a", 0.5), "b": prior("b", 0.5)},
        )

        # 0.5 * 100/50 = 1.0 wanted, limited to 0.5 + 0.1 before normalizing
        assert result.weights["a"].adjusted_weight == pytest.approx(0.6 / 1.1)
        assert result.weights["b"].adjusted_weight == pytest.approx(0.5 / 1.1)
        assert "change limited" in result.weights["a"].adjustment_reason

    def test_equal_split_without_base_weights(self):
        adjuster = WeightAdjuster()
        result = adjuster.adjust([make_window("a", sample_size=1), make_window("b", sample_size=1)])
        assert result.weights["a"].base_weight == pytest.approx(0.5)
        assert result.weights["a"].adjusted_weight == pytest.approx(0.5)

    def test_weight_floor(self):
        config = CalibrationConfig(max_weight_delta=1.0)
        adjuster = WeightAdjuster(config, base_weights={"a": 0.5, "b": 0.5})
        result = adjuster.adjust([make_window("a", health=0.0, win_rate=0.5), make_window("b", health=50)])

        # a's raw weight is floored at min_weight before normalizing
        assert result.weights["a"].adjusted_weight == pytest.approx(0.05 / 0.55)

    def test_empty_input(self):
        result = WeightAdjuster().adjust([])
        assert result.weights == {}
        assert result.recommendations == []

    def test_weight_actions_reported(self):
        adjuster = WeightAdjuster(base_weights={"a": 0.5, "b": 0.5})
        result = adjuster.adjust([make_window("a", health=80), make_window("b", health=40)])
        kinds = {(a.algorithm_id, a.action) for a in result.actions}

        assert ("a", "weight_increased") in kinds
        assert ("b", "weight_decreased") in kinds


class TestPause:

    def test_long_losing_streak_pauses(self):
        adjuster = WeightAdjuster(base_weights={"a": 0.5, "b": 0.5})
        result = adjuster.adjust([
            make_window("a", sample_size=20, win_rate=0.45, health=40, streak=-8),
            make_window("b"),
        ])

        assert result.weights["a"].paused is True
        assert result.weights["b"].paused is False
        recommendations = {r.algorithm_id: r for r in result.recommendations}
        assert recommendations["a"].kind == RECOMMEND_PAUSE
        assert recommendations["a"].severity == 'critical'

    def test_low_win_rate_needs_double_sample(self):
        adjuster = WeightAdjuster()
        small = adjuster.adjust([make_window("a", sample_size=15, win_rate=0.3, health=30)])
        large = adjuster.adjust([make_window("a", sample_size=20, win_rate=0.3, health=30)])

        assert small.weights["a"].paused is False
        assert large.weights["a"].paused is True


class TestConfidenceMultiplier:
    """Tests for the bin-driven confidence multiplier."""

    def test_overconfident_bin_damps(self, make_batch):
        bins = BinCalibrationTracker()
        bins.rebuild(make_batch("a", "WLWLWLWLWL", confidence=75))
        result = WeightAdjuster().adjust([make_window("a", sample_size=10)], bins=bins)

        assert result.weights["a"].confidence_multiplier == pytest.approx(0.7333)
        assert any(a.action == 'confidence_multiplier_adjusted' for a in result.actions)

    def test_two_underconfident_bins_boost_to_cap(self, make_batch):
        bins = BinCalibrationTracker()
        bins.rebuild(
            make_batch("a", "WWWWWWWWWL", confidence=55)
            + make_batch("a", "WWWWWWWWWW", confidence=65)
        )
        result = WeightAdjuster().adjust([make_window("a", sample_size=20)], bins=bins)
        assert result.weights["a"].confidence_multiplier == pytest.approx(1.15)

    def test_single_underconfident_bin_is_neutral(self, make_batch):
        bins = BinCalibrationTracker()
        bins.rebuild(make_batch("a", "WWWWWWWWWL", confidence=55))
        result = WeightAdjuster().adjust([make_window("a", sample_size=10)], bins=bins)
        assert result.weights["a"].confidence_multiplier == 1.0

    def test_insufficient_sample_is_neutral(self, make_batch):
        bins = BinCalibrationTracker()
        bins.rebuild(make_batch("a", "WLWLWLWLWL", confidence=75))
        result = WeightAdjuster().adjust([make_window("a", sample_size=5)], bins=bins)
        assert result.weights["a"].confidence_multiplier == 1.0

    def test_multiplier_within_bounds(self, make_batch):
        bins = BinCalibrationTracker()
        bins.rebuild(make_batch("a", "LLLLLLLLLL", confidence=95))
        result = WeightAdjuster().adjust([make_window("a", sample_size=10)], bins=bins)
        assert 0.70 <= result.weights["a"].confidence_multiplier <= 1.15


class TestThreshold:

    def test_weak_algorithm_raised_strong_lowered(self):
        adjuster = WeightAdjuster()
        result = adjuster.adjust([
            make_window("weak", health=20, win_rate=0.45),
            make_window("strong", health=80, win_rate=0.60),
        ])

        assert result.weights["weak"].min_confidence_threshold == 70.0
        assert result.weights["strong"].min_confidence_threshold == 50.0

    def test_threshold_ceiling(self):
        config = CalibrationConfig(threshold_raise_rate=5.0)
        result = WeightAdjuster(config).adjust([
            make_window("weak", health=10, win_rate=0.40),
            make_window("strong", health=90, win_rate=0.60),
        ])
        assert result.weights["weak"].min_confidence_threshold == 90.0

    def test_insufficient_sample_keeps_base_threshold(self):
        result = WeightAdjuster().adjust([make_window("a", sample_size=3, health=10)])
        assert result.weights["a"].min_confidence_threshold == 55.0


class TestRecommendations:

    def test_kinds(self):
        adjuster = WeightAdjuster()
        result = adjuster.adjust([
            make_window("few", sample_size=3),
            make_window("weak", health=35, win_rate=0.45),
            make_window("strong", health=75, win_rate=0.60),
        ])
        kinds = {r.algorithm_id: r.kind for r in result.recommendations}

        assert kinds == {
            "few": RECOMMEND_INSUFFICIENT,
            "weak": RECOMMEND_DECREASE,
            "strong": RECOMMEND_BOOST,
        }


def test_model_weight_round_trip():
    weight = ModelWeight("a", 0.5, 0.45, 0.9, 60.0, "Health 40.0 vs neutral 50", paused=True)
    assert ModelWeight.from_dict(weight.to_dict()) == weight
