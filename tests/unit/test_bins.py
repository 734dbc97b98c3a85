"""Unit tests for confidence-decile calibration bins."""

import pytest

from riskcal.calibration.bins import (
    BinCalibrationTracker,
    CalibrationBin,
    bin_for_confidence,
    damped_adjustment,
)
from riskcal.config import CalibrationConfig


class TestBinForConfidence:

    @pytest.mark.parametrize("confidence,expected", [
        (50, 50),
        (59.9, 50),
        (60, 60),
        (72, 70),
        (89.99, 80),
        (90, 90),
        (100, 90),
        (42, 50),
        (0, 50),
    ])
    def test_bucket(self, confidence, expected):
        assert bin_for_confidence(confidence) == expected


class TestCalibrationBin:

    def test_empty_bin_defaults(self):
        b = CalibrationBin(bin=60)
        assert b.observed_win_rate == 0.0
        assert b.stated_win_rate == pytest.approx(0.65)
        assert b.calibration_gap == 0.0
        assert b.label == "60-69%"
        assert CalibrationBin(bin=90).label == "90-100%"

    def test_flags_need_minimum_samples(self):
        config = CalibrationConfig()
        b = CalibrationBin(bin=70)
        for _ in range(4):
            b.record(False, 75)
        # Gap is -0.75, but only four samples
        assert not b.is_overconfident(config)
        assert b.adjustment_factor(config) == 1.0

        b.record(False, 75)
        assert b.is_overconfident(config)

    def test_within_tolerance_is_neither(self):
        config = CalibrationConfig()
        b = CalibrationBin(bin=60)
        for won in [True] * 6 + [False] * 4:
            b.record(won, 63)
        assert not b.is_overconfident(config)
        assert not b.is_underconfident(config)
        assert b.adjustment_factor(config) == 1.0


class TestDampedAdjustment:
    """Tests for damped_adjustment."""

    def test_overconfident_floor(self):
        config = CalibrationConfig()
        assert damped_adjustment(0.1, True, False, config) == pytest.approx(0.70)

    def test_underconfident_ceiling(self):
        config = CalibrationConfig()
        assert damped_adjustment(1.3, False, True, config) == pytest.approx(1.15)
        assert damped_adjustment(1.2, False, True, config) == pytest.approx(1.10)

    def test_neutral(self):
        assert damped_adjustment(0.5, False, False, CalibrationConfig()) == 1.0


class TestBinCalibrationTracker:
    """Tests for BinCalibrationTracker."""

    def test_observed_win_rate_in_decile(self, make_prediction):
        predictions = (
            [make_prediction(confidence=72, outcome="won") for _ in range(73)]
            + [make_prediction(confidence=72, outcome="lost") for _ in range(27)]
        )
        tracker = BinCalibrationTracker()
        assert tracker.rebuild(predictions) == 100

        assert tracker.observed_win_rate(72) == pytest.approx(0.73)
        assert tracker.observed_win_rate(79) == pytest.approx(0.73)
        assert tracker.get_bin(70).sample_count == 100

    def test_pushes_and_pending_ignored(self, make_batch):
        tracker = BinCalibrationTracker()
        counted = tracker.rebuild(make_batch("alpha", "WPL--P"))

        assert counted == 2
        assert tracker.total_samples() == 2
        assert tracker.total_samples("alpha") == 2

    def test_rebuild_replaces_previous_counts(self, make_batch):
        predictions = make_batch("alpha", "WWLWL")
        tracker = BinCalibrationTracker()
        tracker.rebuild(predictions)
        first = tracker.summary()
        tracker.rebuild(predictions)

        assert tracker.summary() == first
        assert tracker.total_samples() == 5

    def test_per_algorithm_bins(self, make_batch):
        tracker = BinCalibrationTracker()
        tracker.rebuild(make_batch("alpha", "WWW") + make_batch("beta", "LL"))

        assert tracker.algorithms() == ["alpha", "beta"]
        assert tracker.observed_win_rate(60, "alpha") == 1.0
        assert tracker.observed_win_rate(60, "beta") == 0.0
        assert tracker.observed_win_rate(60) == pytest.approx(0.6)
        assert tracker.total_samples("gamma") == 0

    def test_overconfident_bin_shrinks_confidence(self, make_batch):
        tracker = BinCalibrationTracker()
        tracker.rebuild(make_batch("alpha", "WLWLWLWLWL", confidence=75))

        calibration_bin = tracker.get_bin(75, "alpha")
        assert calibration_bin.calibration_gap == pytest.approx(-0.25)
        assert calibration_bin.adjustment_factor(tracker.config) == pytest.approx(0.7333, abs=1e-4)
        assert tracker.calibrate(75, "alpha") == 55.0

    def test_calibrate_falls_back_to_global(self, make_batch):
        tracker = BinCalibrationTracker()
        tracker.rebuild(make_batch("beta", "WLWLWLWLWL", confidence=75) + make_batch("alpha", "W", confidence=75))

        # alpha has a single sample in the bin; global has 11
        assert tracker.calibrate(75, "alpha") < 75

    def test_calibrate_unchanged_without_samples(self):
        tracker = BinCalibrationTracker()
        assert tracker.calibrate(68.0, "alpha") == 68.0

    def test_summary_shape(self, make_batch):
        tracker = BinCalibrationTracker()
        tracker.rebuild(make_batch("alpha", "WLWLWLWLWL", confidence=75))
        summary = tracker.summary("alpha")

        assert summary['total_samples'] == 10
        assert len(summary['bins']) == 5
        assert summary['bins'][2]['is_overconfident'] is True
        assert summary['is_calibrated'] is True

    def test_reset(self, make_batch):
        tracker = BinCalibrationTracker()
        tracker.rebuild(make_batch("alpha", "WL"))
        tracker.reset()
        assert tracker.total_samples() == 0
        assert tracker.algorithms() == []
