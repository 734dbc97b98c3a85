"""
Bin Calibration Tracker
=======================
Empirical win rate per confidence decile (50-59, 60-69, ... 90-100).

Bins answer "when an algorithm says 72%, how often is it actually right".
They are rebuilt from the full fetched history each cycle, both globally
and per algorithm. Only won/lost predictions count; pushes and pending
predictions carry no win/loss signal.

Usage:
    from riskcal.calibration.bins import BinCalibrationTracker

    tracker = BinCalibrationTracker()
    tracker.rebuild(predictions)
    tracker.observed_win_rate(72)          # global 70-79 bin
    tracker.calibrate(72, "sharp_model")   # rescaled confidence
"""

import logging
import math
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from riskcal.config import CalibrationConfig
from riskcal.constants import CONFIDENCE_BIN_WIDTH, MAX_BIN, STANDARD_BINS
from riskcal.schema import Outcome, PredictionRecord

logger = logging.getLogger(__name__)


def bin_for_confidence(confidence: float) -> int:
    """Bucket a 0-100 confidence into its decile.

    Confidences below 50 fold into the 50 bin and 100 folds into 90, so
    every prediction lands in one of the standard bins.
    """
    bucket = int(math.floor(float(confidence) / CONFIDENCE_BIN_WIDTH)) * CONFIDENCE_BIN_WIDTH
    return max(STANDARD_BINS[0], min(MAX_BIN, bucket))


def damped_adjustment(
    ratio: float,
    overconfident: bool,
    underconfident: bool,
    config: CalibrationConfig,
) -> float:
    """Shrink or boost factor for an observed/stated ratio.

    Overconfidence moves most of the way toward the ratio; underconfidence
    only half way, and both stop at the configured multiplier bounds.
    """
    if overconfident:
        factor = 1.0 - (1.0 - ratio) * config.overconfidence_damping
        return max(config.min_multiplier, factor)
    if underconfident:
        factor = 1.0 + (ratio - 1.0) * config.underconfidence_damping
        return min(config.max_multiplier, factor)
    return 1.0


@dataclass
class CalibrationBin:
    """Running counts for one confidence decile."""
    bin: int
    sample_count: int = 0
    wins: int = 0
    confidence_sum: float = 0.0

    @property
    def label(self) -> str:
        upper = 100 if self.bin == MAX_BIN else self.bin + CONFIDENCE_BIN_WIDTH - 1
        return f"{self.bin}-{upper}%"

    @property
    def observed_win_rate(self) -> float:
        if self.sample_count == 0:
            return 0.0
        return self.wins / self.sample_count

    @property
    def stated_win_rate(self) -> float:
        """Mean stated confidence of the bin's predictions, as a probability."""
        if self.sample_count == 0:
            return (self.bin + CONFIDENCE_BIN_WIDTH / 2) / 100
        return self.confidence_sum / self.sample_count / 100

    @property
    def calibration_gap(self) -> float:
        """Observed minus stated; negative means the algorithm is overconfident."""
        if self.sample_count == 0:
            return 0.0
        return self.observed_win_rate - self.stated_win_rate

    def record(self, won: bool, confidence: float) -> None:
        self.sample_count += 1
        self.confidence_sum += float(confidence)
        if won:
            self.wins += 1

    def is_overconfident(self, config: CalibrationConfig) -> bool:
        return self.sample_count >= config.min_bin_samples and self.calibration_gap < -config.bin_tolerance

    def is_underconfident(self, config: CalibrationConfig) -> bool:
        return self.sample_count >= config.min_bin_samples and self.calibration_gap > config.bin_tolerance

    def adjustment_factor(self, config: CalibrationConfig) -> float:
        if self.sample_count < config.min_bin_samples or self.stated_win_rate <= 0:
            return 1.0
        ratio = self.observed_win_rate / self.stated_win_rate
        return damped_adjustment(
            ratio,
            self.is_overconfident(config),
            self.is_underconfident(config),
            config,
        )

    def to_dict(self, config: Optional[CalibrationConfig] = None) -> dict:
        config = config or CalibrationConfig()
        return {
            'bin': self.bin,
            'label': self.label,
            'sample_count': self.sample_count,
            'wins': self.wins,
            'observed_win_rate': round(self.observed_win_rate, 4),
            'stated_win_rate': round(self.stated_win_rate, 4),
            'calibration_gap': round(self.calibration_gap, 4),
            'adjustment_factor': round(self.adjustment_factor(config), 4),
            'is_overconfident': self.is_overconfident(config),
            'is_underconfident': self.is_underconfident(config),
        }


def _empty_bins() -> Dict[int, CalibrationBin]:
    return {b: CalibrationBin(bin=b) for b in STANDARD_BINS}


class BinCalibrationTracker:
    """
    Global and per-algorithm calibration bins.

    ``rebuild`` is the per-cycle entry point: it recomputes every bin from
    the batch and swaps the result in under a lock, so a concurrent reader
    sees either the previous bins or the new ones.
    """

    def __init__(self, config: Optional[CalibrationConfig] = None):
        self.config = config or CalibrationConfig()
        self._lock = threading.Lock()
        self._global: Dict[int, CalibrationBin] = _empty_bins()
        self._by_algorithm: Dict[str, Dict[int, CalibrationBin]] = {}

    def reset(self) -> None:
        with self._lock:
            self._global = _empty_bins()
            self._by_algorithm = {}

    def record(self, prediction: PredictionRecord) -> bool:
        """Add one prediction to the running counts. Returns False when it has no win/loss signal."""
        with self._lock:
            return self._record_into(prediction, self._global, self._by_algorithm)

    def rebuild(self, predictions: Iterable[PredictionRecord]) -> int:
        """Recompute all bins from a full batch. Returns the number of predictions counted."""
        global_bins = _empty_bins()
        by_algorithm: Dict[str, Dict[int, CalibrationBin]] = {}
        counted = 0
        for prediction in predictions:
            if self._record_into(prediction, global_bins, by_algorithm):
                counted += 1

        with self._lock:
            self._global = global_bins
            self._by_algorithm = by_algorithm

        logger.debug(f"Rebuilt calibration bins from {counted} settled predictions "
                     f"across {len(by_algorithm)} algorithms")
        return counted

    @staticmethod
    def _record_into(
        prediction: PredictionRecord,
        global_bins: Dict[int, CalibrationBin],
        by_algorithm: Dict[str, Dict[int, CalibrationBin]],
    ) -> bool:
        if not prediction.outcome.is_settled:
            return False
        key = bin_for_confidence(prediction.confidence)
        won = prediction.outcome is Outcome.WON
        global_bins[key].record(won, prediction.confidence)
        algo_bins = by_algorithm.setdefault(prediction.algorithm_id, _empty_bins())
        algo_bins[key].record(won, prediction.confidence)
        return True

    def _bins_for(self, algorithm_id: Optional[str]) -> Dict[int, CalibrationBin]:
        with self._lock:
            if algorithm_id is None:
                return self._global
            return self._by_algorithm.get(algorithm_id) or _empty_bins()

    def bins(self, algorithm_id: Optional[str] = None) -> List[CalibrationBin]:
        """Bins in ascending order; global when ``algorithm_id`` is None."""
        source = self._bins_for(algorithm_id)
        return [source[b] for b in STANDARD_BINS]

    def algorithms(self) -> List[str]:
        with self._lock:
            return sorted(self._by_algorithm)

    def total_samples(self, algorithm_id: Optional[str] = None) -> int:
        return sum(b.sample_count for b in self.bins(algorithm_id))

    def get_bin(self, confidence: float, algorithm_id: Optional[str] = None) -> CalibrationBin:
        return self._bins_for(algorithm_id)[bin_for_confidence(confidence)]

    def observed_win_rate(self, confidence: float, algorithm_id: Optional[str] = None) -> float:
        return self.get_bin(confidence, algorithm_id).observed_win_rate

    def calibrate(self, confidence: float, algorithm_id: Optional[str] = None) -> float:
        """Rescale a stated confidence by its bin's adjustment factor.

        Falls back to the global bin when the algorithm has too few samples
        in that bin, and leaves the confidence unchanged when neither has.
        """
        candidate = self.get_bin(confidence, algorithm_id)
        if candidate.sample_count < self.config.min_bin_samples and algorithm_id is not None:
            candidate = self.get_bin(confidence)
        factor = candidate.adjustment_factor(self.config)
        return round(max(0.0, min(100.0, float(confidence) * factor)), 1)

    def summary(self, algorithm_id: Optional[str] = None) -> dict:
        bins = self.bins(algorithm_id)
        problematic = [
            b for b in bins
            if b.is_overconfident(self.config) or b.is_underconfident(self.config)
        ]
        weighted = [b for b in bins if b.sample_count >= self.config.min_bin_samples]
        total = sum(b.sample_count for b in weighted)
        overall = (
            sum(b.adjustment_factor(self.config) * b.sample_count for b in weighted) / total
            if total else 1.0
        )
        return {
            'algorithm_id': algorithm_id,
            'total_samples': sum(b.sample_count for b in bins),
            'overall_adjustment_factor': round(overall, 4),
            'is_calibrated': len(problematic) <= math.ceil(len(bins) * 0.3),
            'bins': [b.to_dict(self.config) for b in bins],
        }
