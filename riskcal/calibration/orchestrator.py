"""
Recalibration Orchestrator
==========================
Periodic job that turns resolved predictions into published weights.

One cycle:
1. Fetch predictions for the long-term window
2. Rebuild the calibration bins from all of them
3. Compute the short-term performance window per algorithm
4. Run the weight adjuster
5. Publish the new weight set to the cache in one atomic swap

A failed fetch or computation aborts the cycle and leaves the cache
untouched; the next scheduled cycle retries.

Usage:
    from riskcal.calibration.orchestrator import RecalibrationOrchestrator

    orchestrator = RecalibrationOrchestrator(source, cache, config)
    orchestrator.run_cycle()          # one cycle
    orchestrator.start()              # background loop
"""

import hashlib
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Union

from riskcal.calibration.analyzer import AlgorithmPerformanceWindow, PerformanceAnalyzer
from riskcal.calibration.bins import BinCalibrationTracker
from riskcal.calibration.optimizer import (
    ModelWeight,
    RecalibrationAction,
    Recommendation,
    WeightAdjuster,
)
from riskcal.calibration.weight_store import WeightCache, WeightSnapshot
from riskcal.config import CalibrationConfig
from riskcal.ops.metrics import MetricsRecorder, get_metrics_recorder
from riskcal.schema import PredictionRecord
from riskcal.storage.predictions import PredictionSource

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 900


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolved_input_digest(predictions: Iterable[PredictionRecord]) -> str:
    """Fingerprint of the resolved predictions a cycle is computed from."""
    rows = sorted(
        (p.id, p.outcome.value, p.resolved_at.isoformat() if p.resolved_at else "")
        for p in predictions
        if p.outcome.is_resolved
    )
    digest = hashlib.sha256()
    for row in rows:
        digest.update("|".join(row).encode("utf-8"))
        digest.update(b"\n")
    return digest.hexdigest()


@dataclass
class RecalibrationResult:
    published_at: datetime
    weights: Dict[str, ModelWeight]
    windows: Dict[str, AlgorithmPerformanceWindow]
    overall_health: float
    input_digest: str
    prediction_count: int
    actions: List[RecalibrationAction] = field(default_factory=list)
    recommendations: List[Recommendation] = field(default_factory=list)
    duration_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            'published_at': self.published_at.isoformat(),
            'overall_health': self.overall_health,
            'prediction_count': self.prediction_count,
            'input_digest': self.input_digest,
            'duration_ms': round(self.duration_ms, 2),
            'weights': {k: w.to_dict() for k, w in self.weights.items()},
            'windows': {k: w.to_dict() for k, w in self.windows.items()},
            'actions': [a.to_dict() for a in self.actions],
            'recommendations': [r.to_dict() for r in self.recommendations],
        }


class RecalibrationOrchestrator:
    """
    Owns the recalibration cycle and the weight cache it publishes to.

    Only ``run_cycle`` mutates shared state, and only through
    ``WeightCache.publish``. Cycles never overlap: a cycle requested while
    another is running waits for it.
    """

    def __init__(
        self,
        source: PredictionSource,
        cache: WeightCache,
        config: Optional[CalibrationConfig] = None,
        base_weights: Optional[Mapping[str, float]] = None,
        bins: Optional[BinCalibrationTracker] = None,
        metrics: Optional[MetricsRecorder] = None,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        weights_path: Optional[Union[str, Path]] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.source = source
        self.cache = cache
        self.config = (config or CalibrationConfig()).validate()
        self.base_weights: Dict[str, float] = dict(base_weights or {})
        self.bins = bins or BinCalibrationTracker(self.config)
        self.analyzer = PerformanceAnalyzer(self.config)
        self.adjuster = WeightAdjuster(self.config, self.base_weights)
        self.metrics = metrics or get_metrics_recorder()
        self.interval_seconds = interval_seconds
        self.weights_path = Path(weights_path) if weights_path else None
        self._clock = clock

        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_result: Optional[RecalibrationResult] = None

    # -------------------------------------------------------------------------
    # One cycle
    # -------------------------------------------------------------------------

    def run_cycle(self, now: Optional[datetime] = None) -> Optional[RecalibrationResult]:
        """
        Run one recalibration cycle.

        Returns:
            The published result, or None if the cycle failed (cache untouched)
        """
        with self._cycle_lock:
            self.metrics.increment("recalibration.cycles")
            started = time.perf_counter()
            now = now or self._clock()
            try:
                result = self._compute(now)
            except Exception as e:
                self.metrics.increment("recalibration.failures")
                logger.error(f"Recalibration cycle failed, keeping previous weights: {e}", exc_info=True)
                return None

            result.duration_ms = (time.perf_counter() - started) * 1000
            self.metrics.timing("recalibration.duration_ms", result.duration_ms)
            self.metrics.increment("recalibration.published")
            self.last_result = result
            self._log_result(result)
            self._persist()
            return result

    def _compute(self, now: datetime) -> RecalibrationResult:
        start = now - timedelta(days=self.config.long_term_days)
        predictions = self.source.fetch(start, now)

        # Rebuilt off to the side; swapped in only once the cycle publishes
        bins = BinCalibrationTracker(self.bins.config)
        bins.rebuild(predictions)

        algorithm_ids = sorted(set(self.base_weights) | {p.algorithm_id for p in predictions})
        windows = self.analyzer.analyze_all(
            algorithm_ids,
            predictions,
            self.config.short_term_days,
            now,
            bins,
        )

        digest = resolved_input_digest(predictions)
        anchor = self._anchor_for(digest)
        adjustment = self.adjuster.adjust(windows.values(), previous=anchor, bins=bins)

        overall = (
            round(sum(w.health_score for w in windows.values()) / len(windows), 2)
            if windows else self.config.neutral_health
        )

        # Everything above may raise; nothing below does before the swap
        self.cache.publish(WeightSnapshot(
            weights=adjustment.weights,
            published_at=now,
            overall_health=overall,
            input_digest=digest,
            anchor=anchor,
        ))
        self.bins = bins

        return RecalibrationResult(
            published_at=now,
            weights=dict(adjustment.weights),
            windows=windows,
            overall_health=overall,
            input_digest=digest,
            prediction_count=len(predictions),
            actions=adjustment.actions,
            recommendations=adjustment.recommendations,
        )

    def _anchor_for(self, digest: str) -> Dict[str, ModelWeight]:
        """
        Weights the delta limit is measured against.

        When the resolved input is unchanged since the last publish, the
        same anchor as that cycle is reused so the output repeats exactly.
        """
        previous = self.cache.snapshot()
        if previous is None:
            return {}
        if previous.input_digest == digest:
            logger.debug("Resolved input unchanged since last publish; reusing anchor weights")
            return dict(previous.anchor)
        return dict(previous.weights)

    def _log_result(self, result: RecalibrationResult) -> None:
        logger.info(
            f"Published weights for {len(result.weights)} algorithms from "
            f"{result.prediction_count} predictions (overall health {result.overall_health:.1f})"
        )
        for algo, weight in sorted(result.weights.items()):
            logger.info(
                f"  {algo}: weight={weight.adjusted_weight:.4f} "
                f"multiplier={weight.confidence_multiplier:.3f} "
                f"threshold={weight.min_confidence_threshold:.1f}"
            )

    def _persist(self) -> None:
        if self.weights_path is None:
            return
        try:
            self.cache.save(self.weights_path)
        except OSError as e:
            logger.error(f"Could not save published weights to {self.weights_path}: {e}")

    # -------------------------------------------------------------------------
    # Background loop
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Run a cycle now and then every ``interval_seconds`` on a daemon thread."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop,
            name="riskcal-recalibration",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"Recalibration loop started (interval {self.interval_seconds}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None
        logger.info("Recalibration loop stopped")

    def run_forever(self) -> None:
        """Blocking variant of the loop, for the CLI."""
        self._stop_event.clear()
        self._loop()

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_cycle()
            self._stop_event.wait(self.interval_seconds)
