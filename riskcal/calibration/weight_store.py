"""
Published Weights Cache
=======================
Read-mostly cache of the ModelWeight set produced by the last successful
recalibration cycle, with JSON persistence so the last good weights survive
restarts.

Readers always see one complete snapshot: publishing builds an immutable
replacement and swaps the reference under a lock; entries are never
mutated in place.

Usage:
    from riskcal.calibration.weight_store import WeightCache

    cache = WeightCache()
    cache.load(Path(".cache/model_weights.json"))
    weight = cache.get_weight("sharp_model")
    adjusted = cache.apply_confidence_calibration(68.0, "sharp_model")
"""

import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Union

from riskcal.calibration.optimizer import ModelWeight
from riskcal.constants import DEFAULT_MIN_CONFIDENCE_THRESHOLD, NEUTRAL_CONFIDENCE_MULTIPLIER
from riskcal.schema import PredictionRecord

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = "1.0"


@dataclass(frozen=True)
class WeightSnapshot:
    """One complete published weight set.

    ``anchor`` holds the weights the per-cycle delta limit was measured
    against and ``input_digest`` fingerprints the resolved predictions that
    produced this set; the orchestrator uses both to keep repeated cycles
    over unchanged input idempotent.
    """
    weights: Mapping[str, ModelWeight]
    published_at: datetime
    overall_health: float = 50.0
    input_digest: Optional[str] = None
    anchor: Mapping[str, ModelWeight] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'version': SNAPSHOT_VERSION,
            'published_at': self.published_at.isoformat(),
            'overall_health': self.overall_health,
            'input_digest': self.input_digest,
            'weights': {k: w.to_dict() for k, w in self.weights.items()},
            'anchor': {k: w.to_dict() for k, w in self.anchor.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WeightSnapshot":
        return cls(
            weights=MappingProxyType({
                k: ModelWeight.from_dict(v) for k, v in data.get('weights', {}).items()
            }),
            published_at=datetime.fromisoformat(data['published_at']),
            overall_health=float(data.get('overall_health', 50.0)),
            input_digest=data.get('input_digest'),
            anchor=MappingProxyType({
                k: ModelWeight.from_dict(v) for k, v in data.get('anchor', {}).items()
            }),
        )


@dataclass(frozen=True)
class CalibratedConfidence:
    """A raw confidence after the published multiplier has been applied."""
    algorithm_id: str
    raw_confidence: float
    adjusted_confidence: float
    confidence_multiplier: float
    min_confidence_threshold: float
    meets_threshold: bool
    weight: float
    paused: bool


@dataclass(frozen=True)
class ConsensusResult:
    side: Optional[str]
    confidence: float
    agreement: float  # share of participating weight backing ``side``
    contributions: Dict[str, float] = field(default_factory=dict)


class WeightCache:
    """
    Process-wide holder of the last-published ModelWeight set.

    Owned by the recalibration orchestrator, injected into prediction
    serving code. ``get_weight`` never fails: before the first publish it
    returns a neutral default.
    """

    def __init__(
        self,
        default_base_weights: Optional[Mapping[str, float]] = None,
        default_threshold: float = DEFAULT_MIN_CONFIDENCE_THRESHOLD,
    ):
        self._defaults: Dict[str, float] = dict(default_base_weights or {})
        self._default_threshold = default_threshold
        self._snapshot: Optional[WeightSnapshot] = None
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Publish / read
    # -------------------------------------------------------------------------

    def publish(self, snapshot: WeightSnapshot) -> None:
        frozen = WeightSnapshot(
            weights=MappingProxyType(dict(snapshot.weights)),
            published_at=snapshot.published_at,
            overall_health=snapshot.overall_health,
            input_digest=snapshot.input_digest,
            anchor=MappingProxyType(dict(snapshot.anchor)),
        )
        with self._lock:
            self._snapshot = frozen

    def snapshot(self) -> Optional[WeightSnapshot]:
        with self._lock:
            return self._snapshot

    def weights(self) -> Dict[str, ModelWeight]:
        current = self.snapshot()
        return dict(current.weights) if current else {}

    @property
    def has_published(self) -> bool:
        return self.snapshot() is not None

    def default_weight(self, algorithm_id: str) -> ModelWeight:
        if algorithm_id in self._defaults:
            base = self._defaults[algorithm_id]
        elif self._defaults:
            base = 1.0 / len(self._defaults)
        else:
            base = 1.0
        return ModelWeight(
            algorithm_id=algorithm_id,
            base_weight=base,
            adjusted_weight=base,
            confidence_multiplier=NEUTRAL_CONFIDENCE_MULTIPLIER,
            min_confidence_threshold=self._default_threshold,
            adjustment_reason="No recalibration published",
        )

    def get_weight(self, algorithm_id: str) -> ModelWeight:
        current = self.snapshot()
        if current is not None and algorithm_id in current.weights:
            return current.weights[algorithm_id]
        return self.default_weight(algorithm_id)

    def is_stale(self, max_age: timedelta, now: Optional[datetime] = None) -> bool:
        current = self.snapshot()
        if current is None:
            return True
        now = now or datetime.now(current.published_at.tzinfo)
        return now - current.published_at > max_age

    # -------------------------------------------------------------------------
    # Applying weights
    # -------------------------------------------------------------------------

    def apply_confidence_calibration(self, raw_confidence: float, algorithm_id: str) -> CalibratedConfidence:
        """Scale a stated confidence by the algorithm's published multiplier."""
        weight = self.get_weight(algorithm_id)
        adjusted = max(0.0, min(100.0, float(raw_confidence) * weight.confidence_multiplier))
        adjusted = round(adjusted, 1)
        return CalibratedConfidence(
            algorithm_id=algorithm_id,
            raw_confidence=float(raw_confidence),
            adjusted_confidence=adjusted,
            confidence_multiplier=weight.confidence_multiplier,
            min_confidence_threshold=weight.min_confidence_threshold,
            meets_threshold=adjusted >= weight.min_confidence_threshold and not weight.paused,
            weight=weight.adjusted_weight,
            paused=weight.paused,
        )

    def calibrated_probability(self, raw_confidence: float, algorithm_id: str) -> float:
        """Post-calibration win probability (0-1) to hand to the stake sizer."""
        return self.apply_confidence_calibration(raw_confidence, algorithm_id).adjusted_confidence / 100

    def weighted_consensus(self, predictions: Iterable[PredictionRecord]) -> ConsensusResult:
        """
        Blend several algorithms' picks on one event.

        Each non-paused algorithm votes for its side with its published
        weight. The winning side's confidence is the weight-averaged
        calibrated confidence of the algorithms backing it.
        """
        side_weight: Dict[str, float] = {}
        side_confidence: Dict[str, float] = {}
        contributions: Dict[str, float] = {}

        for prediction in predictions:
            calibrated = self.apply_confidence_calibration(prediction.confidence, prediction.algorithm_id)
            if calibrated.paused or calibrated.weight <= 0:
                continue
            side = prediction.predicted_side
            side_weight[side] = side_weight.get(side, 0.0) + calibrated.weight
            side_confidence[side] = side_confidence.get(side, 0.0) + calibrated.weight * calibrated.adjusted_confidence
            contributions[prediction.algorithm_id] = calibrated.weight

        total = sum(side_weight.values())
        if total <= 0:
            return ConsensusResult(side=None, confidence=0.0, agreement=0.0)

        best = max(sorted(side_weight), key=lambda s: side_weight[s])
        return ConsensusResult(
            side=best,
            confidence=round(side_confidence[best] / side_weight[best], 1),
            agreement=round(side_weight[best] / total, 4),
            contributions=contributions,
        )

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def save(self, path: Union[str, Path]) -> bool:
        """
        Write the current snapshot to JSON.

        Returns:
            True if saved, False when nothing has been published yet
        """
        current = self.snapshot()
        if current is None:
            return False
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        with open(tmp_path, 'w') as f:
            json.dump(current.to_dict(), f, indent=2)
        os.replace(tmp_path, path)
        logger.info(f"Saved published weights to {path}")
        return True

    def load(self, path: Union[str, Path]) -> bool:
        """
        Publish a snapshot previously written by ``save``.

        Returns:
            True if a snapshot was loaded, False if the file is missing or invalid
        """
        path = Path(path)
        if not path.exists():
            logger.debug(f"No published weights file at {path}")
            return False
        try:
            with open(path, 'r') as f:
                data = json.load(f)
            snapshot = WeightSnapshot.from_dict(data)
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in weights file: {e}")
            return False
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Malformed weights file {path}: {e}")
            return False
        self.publish(snapshot)
        logger.info(f"Loaded published weights from {path}")
        return True

    def summary(self) -> List[dict]:
        return [w.to_dict() for _, w in sorted(self.weights().items())]
