"""
Calibration Module
==================
Adaptive trust for prediction algorithms.

This module provides tools to:
- Measure each algorithm over rolling windows (win rate, streak, health)
- Track empirical win rates per confidence decile
- Recalibrate blend weights, confidence multipliers and thresholds
- Publish the result atomically to a cache read by prediction serving

Usage:
    from riskcal.calibration import RecalibrationOrchestrator, WeightCache
    from riskcal.storage import SqlitePredictionSource

    cache = WeightCache()
    orchestrator = RecalibrationOrchestrator(SqlitePredictionSource("data/predictions.db"), cache)
    orchestrator.run_cycle()

    # In prediction serving code
    probability = cache.calibrated_probability(68.0, "sharp_model")

CLI:
    riskcal recalibrate            # one cycle
    riskcal recalibrate --loop     # every 15 minutes
    riskcal show-weights
"""

from riskcal.calibration.analyzer import (
    AlgorithmPerformanceWindow,
    PerformanceAnalyzer,
    compute_health_score,
)
from riskcal.calibration.bins import BinCalibrationTracker, CalibrationBin
from riskcal.calibration.optimizer import (
    AdjustmentResult,
    ModelWeight,
    RecalibrationAction,
    Recommendation,
    WeightAdjuster,
)
from riskcal.calibration.weight_store import WeightCache, WeightSnapshot
from riskcal.calibration.orchestrator import RecalibrationOrchestrator, RecalibrationResult

__all__ = [
    # Analyzer
    'AlgorithmPerformanceWindow',
    'PerformanceAnalyzer',
    'compute_health_score',

    # Bins
    'BinCalibrationTracker',
    'CalibrationBin',

    # Adjuster
    'AdjustmentResult',
    'ModelWeight',
    'RecalibrationAction',
    'Recommendation',
    'WeightAdjuster',

    # Cache and orchestration
    'WeightCache',
    'WeightSnapshot',
    'RecalibrationOrchestrator',
    'RecalibrationResult',
]
