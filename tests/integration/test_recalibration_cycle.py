"""
Integration tests for the recalibration cycle.

Runs the orchestrator end to end against an in-memory prediction source:
fetch, bin rebuild, window analysis, weight adjustment and publish.
"""

import time
from datetime import timedelta

import pytest

from riskcal.calibration.orchestrator import RecalibrationOrchestrator, resolved_input_digest
from riskcal.calibration.weight_store import WeightCache
from riskcal.exceptions import DataFetchError
from riskcal.storage.predictions import InMemoryPredictionSource, PredictionSource


class FailingSource(PredictionSource):
    def fetch(self, start, end):
        raise DataFetchError("predictions.db", "database is locked")


@pytest.fixture
def history(make_batch):
    return (
        make_batch("alpha", "WWLWWWLWWLWWWLWWLWWW", confidence=64)
        + make_batch("beta", "LLWLLWLLLWLWLLWLLLWL", confidence=66)
        + make_batch("beta", "--")
    )


@pytest.fixture
def source(history):
    return InMemoryPredictionSource(history)


@pytest.fixture
def orchestrator(source, metrics, now):
    return RecalibrationOrchestrator(
        source,
        WeightCache({"alpha": 0.5, "beta": 0.5}),
        base_weights={"alpha": 0.5, "beta": 0.5},
        metrics=metrics,
        clock=lambda: now,
    )


class TestRunCycle:
    """Tests for one recalibration cycle."""

    def test_publishes_normalized_weights(self, orchestrator, metrics):
        result = orchestrator.run_cycle()

        assert result is not None
        assert set(result.weights) == {"alpha", "beta"}
        assert sum(w.adjusted_weight for w in result.weights.values()) == pytest.approx(1.0)
        assert result.weights["alpha"].adjusted_weight > result.weights["beta"].adjusted_weight
        assert orchestrator.cache.has_published
        assert orchestrator.cache.get_weight("alpha") == result.weights["alpha"]
        assert metrics.counter("recalibration.cycles") == 1
        assert metrics.counter("recalibration.published") == 1
        assert "recalibration.duration_ms" in metrics.snapshot()["timings"]

    def test_windows_and_health(self, orchestrator):
        result = orchestrator.run_cycle()

        alpha = result.windows["alpha"]
        beta = result.windows["beta"]
        assert alpha.sample_size == 20
        assert beta.sample_size == 20
        assert alpha.health_score > 50 > beta.health_score
        assert result.overall_health == pytest.approx(
            round((alpha.health_score + beta.health_score) / 2, 2)
        )
        assert result.prediction_count == 42

    def test_repeated_cycle_is_idempotent(self, orchestrator):
        first = orchestrator.run_cycle()
        second = orchestrator.run_cycle()

        assert second.weights == first.weights
        assert second.input_digest == first.input_digest

    def test_idempotent_after_input_change(self, orchestrator, source, make_prediction):
        orchestrator.run_cycle()
        for hours in (0.5, 0.6, 0.7):
            source.add(make_prediction("alpha", confidence=64, outcome="won", hours_ago=hours))

        changed = orchestrator.run_cycle()
        repeated = orchestrator.run_cycle()

        assert repeated.weights == changed.weights
        assert repeated.input_digest == changed.input_digest

    def test_pending_predictions_do_not_change_digest(self, orchestrator, source, make_prediction):
        first = orchestrator.run_cycle()
        source.add(make_prediction("alpha", outcome="pending"))
        second = orchestrator.run_cycle()

        assert second.input_digest == first.input_digest
        assert second.weights == first.weights

    def test_failure_keeps_previous_weights(self, orchestrator, metrics, now):
        orchestrator.run_cycle()
        published = orchestrator.cache.snapshot()

        orchestrator.source = FailingSource()
        assert orchestrator.run_cycle(now + timedelta(minutes=15)) is None

        assert orchestrator.cache.snapshot() is published
        assert metrics.counter("recalibration.failures") == 1
        assert metrics.counter("recalibration.cycles") == 2

    def test_compute_failure_keeps_previous_bins(self, orchestrator, source, make_batch, monkeypatch, now):
        orchestrator.run_cycle()
        bins = orchestrator.bins
        published = orchestrator.cache.snapshot()

        def broken_adjust(*args, **kwargs):
            raise RuntimeError("adjuster crashed")

        for record in make_batch("alpha", "LLLLL", confidence=64, start_hours_ago=0.1):
            source.add(record)
        monkeypatch.setattr(orchestrator.adjuster, "adjust", broken_adjust)

        assert orchestrator.run_cycle(now + timedelta(minutes=15)) is None
        assert orchestrator.bins is bins
        assert orchestrator.bins.total_samples("alpha") == 20
        assert orchestrator.cache.snapshot() is published

    def test_failure_before_first_publish(self, metrics, now):
        orchestrator = RecalibrationOrchestrator(FailingSource(), WeightCache(), metrics=metrics, clock=lambda: now)

        assert orchestrator.run_cycle() is None
        assert not orchestrator.cache.has_published
        assert orchestrator.cache.get_weight("alpha").confidence_multiplier == 1.0

    def test_base_weight_algorithm_without_data(self, source, metrics, now):
        orchestrator = RecalibrationOrchestrator(
            source,
            WeightCache(),
            base_weights={"alpha": 0.4, "beta": 0.4, "gamma": 0.2},
            metrics=metrics,
            clock=lambda: now,
        )
        result = orchestrator.run_cycle()

        assert result.windows["gamma"].sample_size == 0
        assert result.windows["gamma"].health_score == 50.0
        assert result.weights["gamma"].confidence_multiplier == 1.0
        assert sum(w.adjusted_weight for w in result.weights.values()) == pytest.approx(1.0)

    def test_old_predictions_only_feed_bins(self, make_batch, metrics, now):
        old = make_batch("alpha", "LLLLLLLLLL", confidence=75, start_hours_ago=24 * 20)
        orchestrator = RecalibrationOrchestrator(
            InMemoryPredictionSource(old), WeightCache(), metrics=metrics, clock=lambda: now,
        )
        result = orchestrator.run_cycle()

        assert result.windows["alpha"].sample_size == 0
        assert orchestrator.bins.total_samples("alpha") == 10

    def test_persists_weights(self, source, metrics, now, tmp_path):
        path = tmp_path / "weights" / "model_weights.json"
        orchestrator = RecalibrationOrchestrator(
            source, WeightCache(), metrics=metrics, weights_path=path, clock=lambda: now,
        )
        result = orchestrator.run_cycle()

        restored = WeightCache()
        assert restored.load(path)
        assert restored.weights() == result.weights
        assert restored.snapshot().input_digest == result.input_digest


class TestLoop:

    def test_start_and_stop(self, orchestrator, metrics):
        orchestrator.interval_seconds = 3600
        orchestrator.start()
        try:
            deadline = time.monotonic() + 5
            while metrics.counter("recalibration.published") == 0 and time.monotonic() < deadline:
                time.sleep(0.01)
            assert orchestrator.is_running
        finally:
            orchestrator.stop(timeout=5)

        assert metrics.counter("recalibration.published") == 1
        assert not orchestrator.is_running


def test_digest_ignores_order(history):
    assert resolved_input_digest(history) == resolved_input_digest(list(reversed(history)))
