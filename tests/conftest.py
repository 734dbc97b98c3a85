"""
Pytest configuration and shared fixtures for calibration and staking tests.
"""

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from riskcal.ops.metrics import InMemoryMetricsRecorder
from riskcal.schema import BetRecord, Outcome, PredictionRecord

FIXED_NOW = datetime(2026, 3, 15, 18, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    """Fixed clock so windows and guardrail days are deterministic."""
    return FIXED_NOW


@pytest.fixture
def metrics():
    return InMemoryMetricsRecorder()


@pytest.fixture
def make_prediction(now):
    """Factory for resolved (or pending) predictions relative to ``now``."""
    counter = itertools.count(1)

    def _make(
        algorithm_id="alpha",
        confidence=60.0,
        outcome="won",
        hours_ago=1.0,
        side="home",
        prediction_id=None,
    ):
        outcome = Outcome.parse(outcome)
        resolved_at = now - timedelta(hours=hours_ago)
        return PredictionRecord(
            id=prediction_id or f"p{next(counter)}",
            algorithm_id=algorithm_id,
            predicted_side=side,
            confidence=confidence,
            predicted_at=resolved_at - timedelta(hours=3),
            resolved_at=None if outcome is Outcome.PENDING else resolved_at,
            outcome=outcome,
        )

    return _make


@pytest.fixture
def make_bet(now):
    """Factory for bets; settled ``minutes_ago`` before ``now``."""
    counter = itertools.count(1)

    def _make(outcome="lost", stake=10.0, minutes_ago=60.0, placed_minutes_before=30.0):
        outcome = Outcome.parse(outcome)
        settled_at = now - timedelta(minutes=minutes_ago)
        return BetRecord(
            id=f"b{next(counter)}",
            stake=stake,
            placed_at=settled_at - timedelta(minutes=placed_minutes_before),
            outcome=outcome,
            settled_at=settled_at if outcome.is_resolved else None,
        )

    return _make


@pytest.fixture
def make_batch(make_prediction):
    """Predictions for a result string such as "WWLP", oldest first, one hour apart."""
    mapping = {"W": "won", "L": "lost", "P": "push", "-": "pending"}

    def _make(algorithm_id, results, confidence=60.0, start_hours_ago=1.0):
        total = len(results)
        return [
            make_prediction(
                algorithm_id=algorithm_id,
                confidence=confidence,
                outcome=mapping[code],
                hours_ago=start_hours_ago + (total - 1 - i),
            )
            for i, code in enumerate(results)
        ]

    return _make
