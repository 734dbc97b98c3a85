"""
Performance Window Analyzer
===========================
Per-algorithm performance over a rolling time window.

Calculates:
- Win rate over settled predictions (pushes and pending excluded)
- Signed current streak and the last ten settled results
- Correlation between stated confidence and outcome
- Calibration error against the observed bin win rates
- A bounded 0-100 health score

Usage:
    from riskcal.calibration.analyzer import PerformanceAnalyzer

    analyzer = PerformanceAnalyzer(config)
    window = analyzer.analyze_window("sharp_model", predictions, 7, now, bins)
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from riskcal.calibration.bins import BinCalibrationTracker
from riskcal.config import CalibrationConfig
from riskcal.schema import Outcome, PredictionRecord, signed_streak

logger = logging.getLogger(__name__)

RECENT_RESULTS_LENGTH = 10

_FRAME_COLUMNS = ['id', 'algorithm_id', 'confidence', 'outcome', 'resolved_at', 'hit']


@dataclass
class AlgorithmPerformanceWindow:
    """
    Derived performance of one algorithm over one window.

    Recomputed every cycle from the source predictions; never persisted as
    authoritative state. ``wins + losses <= sample_size`` always holds,
    because ``sample_size`` counts every resolved prediction including
    pushes.

    ``streak`` is a single signed integer: the sign is the direction
    (positive = consecutive wins, negative = consecutive losses) and the
    magnitude is the length. 0 means no settled prediction.
    """
    algorithm_id: str
    window_days: int
    sample_size: int
    wins: int
    losses: int
    win_rate: float
    avg_confidence: float
    health_score: float
    pushes: int = 0
    streak: int = 0
    recent_results: str = ""  # most recent first, 'W'/'L'
    confidence_correlation: float = 0.0
    calibration_error: float = 0.0

    @property
    def settled(self) -> int:
        return self.wins + self.losses

    def to_dict(self) -> dict:
        return asdict(self)


def compute_health_score(
    win_rate: float,
    settled: int,
    calibration_error: float,
    config: Optional[CalibrationConfig] = None,
) -> float:
    """
    Bounded health score in [0, 100].

    Starts at the neutral value and moves by the win-rate bonus minus the
    calibration penalty, scaled by a sample factor that rises linearly to 1
    at three times the minimum sample size. An algorithm with no settled
    predictions sits exactly at neutral.
    """
    config = config or CalibrationConfig()
    if settled <= 0:
        return float(config.neutral_health)

    sample_factor = min(1.0, settled / (3 * config.min_sample_size))

    distance = (win_rate - config.breakeven_win_rate) / config.win_rate_scale
    win_component = max(-1.0, min(1.0, distance)) * config.win_rate_points

    calibration_penalty = min(1.0, calibration_error / config.calibration_error_scale) * config.calibration_points

    score = config.neutral_health + sample_factor * (win_component - calibration_penalty)
    return round(max(0.0, min(100.0, score)), 2)


def predictions_to_frame(predictions: Iterable[PredictionRecord]) -> pd.DataFrame:
    """One row per prediction; ``hit`` is 1/0 for won/lost and NaN otherwise."""
    rows = []
    for p in predictions:
        if p.outcome is Outcome.WON:
            hit = 1.0
        elif p.outcome is Outcome.LOST:
            hit = 0.0
        else:
            hit = np.nan
        rows.append({
            'id': p.id,
            'algorithm_id': p.algorithm_id,
            'confidence': float(p.confidence),
            'outcome': p.outcome.value,
            'resolved_at': p.resolved_at,
            'hit': hit,
        })
    return pd.DataFrame(rows, columns=_FRAME_COLUMNS)


class PerformanceAnalyzer:
    """
    Computes AlgorithmPerformanceWindow values.

    Pure: every result is a function of the predictions, the window end
    and the bins passed in.
    """

    def __init__(self, config: Optional[CalibrationConfig] = None):
        self.config = config or CalibrationConfig()

    def analyze_window(
        self,
        algorithm_id: str,
        predictions: Iterable[PredictionRecord],
        window_days: int,
        now: datetime,
        bins: Optional[BinCalibrationTracker] = None,
    ) -> AlgorithmPerformanceWindow:
        """
        Analyze one algorithm over ``[now - window_days, now]``.

        Predictions from other algorithms, pending predictions and
        predictions resolved outside the window are ignored.
        """
        start = now - timedelta(days=window_days)
        in_window = [
            p for p in predictions
            if p.algorithm_id == algorithm_id
            and p.outcome.is_resolved
            and p.resolved_at is not None
            and start <= p.resolved_at <= now
        ]
        df = predictions_to_frame(in_window)

        sample_size = len(df)
        hits = df['hit'].dropna()
        wins = int(hits.sum()) if len(hits) > 0 else 0
        losses = len(hits) - wins
        pushes = sample_size - len(hits)
        win_rate = wins / len(hits) if len(hits) > 0 else 0.0
        avg_confidence = float(df['confidence'].mean()) if sample_size > 0 else 0.0

        ordered = sorted(in_window, key=lambda p: p.resolved_at, reverse=True)
        streak = signed_streak(p.outcome for p in ordered)
        recent = [p for p in ordered if p.outcome.is_settled][:RECENT_RESULTS_LENGTH]
        recent_results = "".join('W' if p.outcome is Outcome.WON else 'L' for p in recent)

        correlation = self._confidence_correlation(df)
        calibration_error = self._calibration_error(df, algorithm_id, bins)

        health = compute_health_score(win_rate, len(hits), calibration_error, self.config)

        return AlgorithmPerformanceWindow(
            algorithm_id=algorithm_id,
            window_days=window_days,
            sample_size=sample_size,
            wins=wins,
            losses=losses,
            win_rate=round(win_rate, 4),
            avg_confidence=round(avg_confidence, 2),
            health_score=health,
            pushes=pushes,
            streak=streak,
            recent_results=recent_results,
            confidence_correlation=correlation,
            calibration_error=calibration_error,
        )

    def analyze_all(
        self,
        algorithm_ids: Iterable[str],
        predictions: List[PredictionRecord],
        window_days: int,
        now: datetime,
        bins: Optional[BinCalibrationTracker] = None,
    ) -> Dict[str, AlgorithmPerformanceWindow]:
        return {
            algo: self.analyze_window(algo, predictions, window_days, now, bins)
            for algo in algorithm_ids
        }

    @staticmethod
    def _confidence_correlation(df: pd.DataFrame) -> float:
        """Pearson correlation of stated confidence with hit; 0 when undefined."""
        settled = df[['confidence', 'hit']].dropna()
        if len(settled) < 2:
            return 0.0
        if settled['confidence'].nunique() < 2 or settled['hit'].nunique() < 2:
            return 0.0
        corr = settled['confidence'].corr(settled['hit'])
        if corr is None or np.isnan(corr):
            return 0.0
        return round(float(corr), 4)

    @staticmethod
    def _calibration_error(
        df: pd.DataFrame,
        algorithm_id: str,
        bins: Optional[BinCalibrationTracker],
    ) -> float:
        """
        Mean |stated confidence - observed bin win rate| over the window.

        Uses the algorithm's own bins when it has any history and the global
        bins otherwise. Predictions whose bin is empty are skipped.
        """
        if bins is None:
            return 0.0
        settled = df[df['hit'].notna()]
        if settled.empty:
            return 0.0

        scope = algorithm_id if bins.total_samples(algorithm_id) > 0 else None
        errors = []
        for confidence in settled['confidence']:
            calibration_bin = bins.get_bin(confidence, scope)
            if calibration_bin.sample_count == 0:
                continue
            errors.append(abs(confidence / 100 - calibration_bin.observed_win_rate))
        if not errors:
            return 0.0
        return round(float(np.mean(errors)), 4)
