"""
Weight Adjuster
===============
Turns per-algorithm performance windows into blend weights, confidence
multipliers and minimum-confidence thresholds.

The adjuster:
1. Leaves algorithms below the minimum sample size at their base weight
2. Scales the base weight by health relative to neutral
3. Limits each per-cycle move to +/- max_weight_delta from the previous weight
4. Normalizes all weights to sum to 1
5. Derives a confidence multiplier from the algorithm's calibration bins
6. Raises or lowers the minimum-confidence threshold within fixed bounds

Every change is reported as a RecalibrationAction and every algorithm gets
a Recommendation, so a cycle can be explained after the fact.

Usage:
    from riskcal.calibration.optimizer import WeightAdjuster

    adjuster = WeightAdjuster(config, base_weights={"sharp": 0.5, "value": 0.5})
    result = adjuster.adjust(windows, previous=cache.weights(), bins=tracker)
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from riskcal.calibration.analyzer import AlgorithmPerformanceWindow
from riskcal.calibration.bins import BinCalibrationTracker, damped_adjustment
from riskcal.config import CalibrationConfig
from riskcal.constants import (
    NEUTRAL_CONFIDENCE_MULTIPLIER,
    PAUSE_STREAK,
    PAUSE_WIN_RATE,
    RECOMMEND_BOOST,
    RECOMMEND_DECREASE,
    RECOMMEND_INSUFFICIENT,
    RECOMMEND_NO_CHANGE,
    RECOMMEND_PAUSE,
)

logger = logging.getLogger(__name__)

# Moves smaller than this are not reported as actions
_CHANGE_EPSILON = 1e-4


@dataclass(frozen=True)
class ModelWeight:
    """Published trust parameters for one algorithm."""
    algorithm_id: str
    base_weight: float
    adjusted_weight: float
    confidence_multiplier: float = NEUTRAL_CONFIDENCE_MULTIPLIER
    min_confidence_threshold: float = 55.0
    adjustment_reason: str = ""
    paused: bool = False

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ModelWeight":
        return cls(
            algorithm_id=str(data['algorithm_id']),
            base_weight=float(data['base_weight']),
            adjusted_weight=float(data['adjusted_weight']),
            confidence_multiplier=float(data.get('confidence_multiplier', NEUTRAL_CONFIDENCE_MULTIPLIER)),
            min_confidence_threshold=float(data.get('min_confidence_threshold', 55.0)),
            adjustment_reason=str(data.get('adjustment_reason', "")),
            paused=bool(data.get('paused', False)),
        )


@dataclass(frozen=True)
class RecalibrationAction:
    """Machine-readable record of one parameter change."""
    algorithm_id: str
    action: str
    previous_value: float
    new_value: float
    reason: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Recommendation:
    """Human-readable verdict for one algorithm."""
    kind: str
    algorithm_id: str
    severity: str
    message: str
    suggested_action: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class AdjustmentResult:
    weights: Dict[str, ModelWeight] = field(default_factory=dict)
    actions: List[RecalibrationAction] = field(default_factory=list)
    recommendations: List[Recommendation] = field(default_factory=list)

    @property
    def total_weight(self) -> float:
        return sum(w.adjusted_weight for w in self.weights.values())


class WeightAdjuster:
    """
    Recalibrates per-algorithm trust from performance windows.

    Safety features:
    - Minimum sample size before any weight moves
    - Per-cycle delta limit against the previous weight
    - Weight floor so no algorithm is starved to zero
    - Multiplier and threshold bounds
    """

    def __init__(
        self,
        config: Optional[CalibrationConfig] = None,
        base_weights: Optional[Mapping[str, float]] = None,
    ):
        self.config = config or CalibrationConfig()
        self.base_weights: Dict[str, float] = dict(base_weights or {})

    def base_weight_for(self, algorithm_id: str, algorithm_count: int) -> float:
        if algorithm_id in self.base_weights:
            return float(self.base_weights[algorithm_id])
        if self.config.default_base_weight is not None:
            return float(self.config.default_base_weight)
        return 1.0 / max(1, algorithm_count)

    def adjust(
        self,
        windows: Iterable[AlgorithmPerformanceWindow],
        previous: Optional[Mapping[str, ModelWeight]] = None,
        bins: Optional[BinCalibrationTracker] = None,
    ) -> AdjustmentResult:
        """
        Produce a fresh, normalized weight set.

        Args:
            windows: One short-term window per algorithm
            previous: Weights the delta limit is measured against; base
                      weights are used for algorithms missing from it
            bins: Calibration bins for the confidence multiplier

        Returns:
            AdjustmentResult whose weights sum to 1 for any non-empty input
        """
        windows = sorted(windows, key=lambda w: w.algorithm_id)
        previous = previous or {}
        result = AdjustmentResult()
        if not windows:
            return result

        count = len(windows)
        qualified = [w for w in windows if w.sample_size >= self.config.min_sample_size]
        average_health = (
            sum(w.health_score for w in qualified) / len(qualified)
            if qualified else self.config.neutral_health
        )

        raw: Dict[str, Tuple[float, str, bool]] = {}
        for window in windows:
            base = self.base_weight_for(window.algorithm_id, count)
            prior = previous.get(window.algorithm_id)
            anchor = prior.adjusted_weight if prior is not None else base
            raw[window.algorithm_id] = self._raw_weight(window, base, anchor)

        total = sum(weight for weight, _, _ in raw.values())

        for window in windows:
            algo = window.algorithm_id
            base = self.base_weight_for(algo, count)
            weight, reason, paused = raw[algo]
            normalized = weight / total if total > 0 else 1.0 / count

            multiplier = self._confidence_multiplier(window, bins)
            threshold = self._min_confidence_threshold(window, average_health)

            model_weight = ModelWeight(
                algorithm_id=algo,
                base_weight=round(base, 6),
                adjusted_weight=normalized,
                confidence_multiplier=multiplier,
                min_confidence_threshold=threshold,
                adjustment_reason=reason,
                paused=paused,
            )
            result.weights[algo] = model_weight
            result.actions.extend(self._actions(model_weight, previous.get(algo), base))
            result.recommendations.append(self._recommendation(window))

        return result

    def _is_pause_candidate(self, window: AlgorithmPerformanceWindow) -> bool:
        cold = window.streak <= PAUSE_STREAK
        sinking = (
            window.settled >= 2 * self.config.min_sample_size
            and window.win_rate < PAUSE_WIN_RATE
        )
        return cold or sinking

    def _raw_weight(
        self,
        window: AlgorithmPerformanceWindow,
        base: float,
        anchor: float,
    ) -> Tuple[float, str, bool]:
        """Un-normalized weight, the reason for it, and whether the algorithm is paused."""
        config = self.config
        if window.sample_size < config.min_sample_size:
            return base, (
                f"Insufficient data ({window.sample_size} < {config.min_sample_size} resolved)"
            ), False

        paused = self._is_pause_candidate(window)
        if paused:
            target = config.min_weight
            reason = f"Paused: {window.win_rate:.1%} win rate, streak {window.streak}"
        else:
            target = max(config.min_weight, base * window.health_score / config.neutral_health)
            reason = f"Health {window.health_score:.1f} vs neutral {config.neutral_health:.0f}"

        low, high = anchor - config.max_weight_delta, anchor + config.max_weight_delta
        clamped = max(low, min(high, target))
        if clamped != target:
            logger.debug(
                f"{window.algorithm_id}: weight {target:.4f} clamped to {clamped:.4f} "
                f"(previous {anchor:.4f}, max delta {config.max_weight_delta})"
            )
            reason += " (change limited)"
        return max(config.min_weight, clamped), reason, paused

    def _confidence_multiplier(
        self,
        window: AlgorithmPerformanceWindow,
        bins: Optional[BinCalibrationTracker],
    ) -> float:
        """
        Damp confidence when any well-sampled bin is overconfident; boost it
        only when at least two bins are underconfident.
        """
        config = self.config
        if bins is None or window.sample_size < config.min_sample_size:
            return NEUTRAL_CONFIDENCE_MULTIPLIER

        sampled = [
            b for b in bins.bins(window.algorithm_id)
            if b.sample_count >= config.min_bin_samples
        ]
        over = [b for b in sampled if b.is_overconfident(config)]
        under = [b for b in sampled if b.is_underconfident(config)]

        if over:
            flagged, is_over = over, True
        elif len(under) >= 2:
            flagged, is_over = under, False
        else:
            return NEUTRAL_CONFIDENCE_MULTIPLIER

        observed = sum(b.wins for b in flagged)
        stated = sum(b.stated_win_rate * b.sample_count for b in flagged)
        if stated <= 0:
            return NEUTRAL_CONFIDENCE_MULTIPLIER
        ratio = observed / stated
        multiplier = damped_adjustment(ratio, is_over, not is_over, config)
        return round(multiplier, 4)

    def _min_confidence_threshold(
        self,
        window: AlgorithmPerformanceWindow,
        average_health: float,
    ) -> float:
        config = self.config
        threshold = config.base_confidence_threshold
        if window.sample_size >= config.min_sample_size:
            if window.health_score < average_health:
                threshold += (average_health - window.health_score) * config.threshold_raise_rate
            elif (
                window.health_score >= config.strong_health
                and window.win_rate >= config.breakeven_win_rate
            ):
                threshold -= (window.health_score - config.neutral_health) * config.threshold_lower_rate
        return round(max(config.threshold_floor, min(config.threshold_ceiling, threshold)), 1)

    def _actions(
        self,
        weight: ModelWeight,
        prior: Optional[ModelWeight],
        base: float,
    ) -> List[RecalibrationAction]:
        actions = []
        prev_weight = prior.adjusted_weight if prior is not None else base
        if abs(weight.adjusted_weight - prev_weight) > _CHANGE_EPSILON:
            actions.append(RecalibrationAction(
                algorithm_id=weight.algorithm_id,
                action='weight_increased' if weight.adjusted_weight > prev_weight else 'weight_decreased',
                previous_value=round(prev_weight, 6),
                new_value=round(weight.adjusted_weight, 6),
                reason=weight.adjustment_reason,
            ))

        prev_multiplier = prior.confidence_multiplier if prior is not None else NEUTRAL_CONFIDENCE_MULTIPLIER
        if abs(weight.confidence_multiplier - prev_multiplier) > _CHANGE_EPSILON:
            actions.append(RecalibrationAction(
                algorithm_id=weight.algorithm_id,
                action='confidence_multiplier_adjusted',
                previous_value=prev_multiplier,
                new_value=weight.confidence_multiplier,
                reason='Observed bin win rates differ from stated confidence',
            ))

        prev_threshold = (
            prior.min_confidence_threshold if prior is not None
            else self.config.base_confidence_threshold
        )
        if abs(weight.min_confidence_threshold - prev_threshold) > _CHANGE_EPSILON:
            actions.append(RecalibrationAction(
                algorithm_id=weight.algorithm_id,
                action='threshold_adjusted',
                previous_value=prev_threshold,
                new_value=weight.min_confidence_threshold,
                reason='Health relative to the other algorithms changed',
            ))
        return actions

    def _recommendation(self, window: AlgorithmPerformanceWindow) -> Recommendation:
        config = self.config
        algo = window.algorithm_id
        if window.sample_size < config.min_sample_size:
            return Recommendation(
                kind=RECOMMEND_INSUFFICIENT,
                algorithm_id=algo,
                severity='low',
                message=f"{algo} has {window.sample_size} resolved predictions in {window.window_days} days",
                suggested_action=f"Keep base weight until {config.min_sample_size} are resolved",
            )
        if self._is_pause_candidate(window):
            return Recommendation(
                kind=RECOMMEND_PAUSE,
                algorithm_id=algo,
                severity='critical',
                message=(
                    f"{algo} is severely underperforming: {window.win_rate:.1%} win rate, "
                    f"streak {window.streak}"
                ),
                suggested_action='Pause this algorithm until performance recovers',
            )
        if window.health_score < config.neutral_health:
            severity = 'high' if window.win_rate < config.breakeven_win_rate - config.win_rate_scale else 'medium'
            return Recommendation(
                kind=RECOMMEND_DECREASE,
                algorithm_id=algo,
                severity=severity,
                message=f"{algo} health {window.health_score:.1f} is below neutral",
                suggested_action='Reduce weight and raise the minimum confidence threshold',
            )
        if window.health_score >= config.strong_health:
            return Recommendation(
                kind=RECOMMEND_BOOST,
                algorithm_id=algo,
                severity='low',
                message=f"{algo} health {window.health_score:.1f} with {window.win_rate:.1%} win rate",
                suggested_action='Increase weight for this algorithm',
            )
        return Recommendation(
            kind=RECOMMEND_NO_CHANGE,
            algorithm_id=algo,
            severity='low',
            message=f"{algo} is performing as expected",
            suggested_action='No adjustment needed',
        )
