"""Shared record types for predictions and bets."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional


class Outcome(str, Enum):
    WON = "won"
    LOST = "lost"
    PUSH = "push"
    PENDING = "pending"

    @classmethod
    def parse(cls, value) -> "Outcome":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        aliases = {"win": "won", "w": "won", "loss": "lost", "l": "lost", "": "pending"}
        return cls(aliases.get(text, text))

    @property
    def is_settled(self) -> bool:
        """True for won/lost; pushes and pending bets carry no win/loss signal."""
        return self in (Outcome.WON, Outcome.LOST)

    @property
    def is_resolved(self) -> bool:
        return self is not Outcome.PENDING


@dataclass(frozen=True)
class PredictionRecord:
    """A prediction emitted by one algorithm.

    Written by the prediction-serving collaborator and read-only here.
    ``confidence`` is on a 0-100 scale.
    """
    id: str
    algorithm_id: str
    predicted_side: str
    confidence: float
    predicted_at: datetime
    resolved_at: Optional[datetime] = None
    outcome: Outcome = Outcome.PENDING

    def resolve(self, outcome: Outcome, resolved_at: datetime) -> "PredictionRecord":
        """Return the resolved copy of a pending prediction."""
        if self.outcome is not Outcome.PENDING:
            raise ValueError(f"Prediction {self.id} is already resolved")
        return replace(self, outcome=Outcome.parse(outcome), resolved_at=resolved_at)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "algorithm_id": self.algorithm_id,
            "predicted_side": self.predicted_side,
            "confidence": float(self.confidence),
            "predicted_at": self.predicted_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "outcome": self.outcome.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PredictionRecord":
        resolved_at = data.get("resolved_at")
        return cls(
            id=str(data["id"]),
            algorithm_id=str(data["algorithm_id"]),
            predicted_side=str(data.get("predicted_side") or ""),
            confidence=float(data.get("confidence") or 0.0),
            predicted_at=_parse_datetime(data["predicted_at"]),
            resolved_at=_parse_datetime(resolved_at) if resolved_at else None,
            outcome=Outcome.parse(data.get("outcome")),
        )


@dataclass(frozen=True)
class BetRecord:
    """A stake recorded by the user, as seen by the guardrail evaluator."""
    id: str
    stake: float
    placed_at: datetime
    outcome: Outcome = Outcome.PENDING
    settled_at: Optional[datetime] = None
    league: Optional[str] = None
    side: Optional[str] = None  # home, away, over, under
    selection: Optional[str] = None  # e.g. "Lakers Spread -3.5"
    title: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.outcome is Outcome.PENDING

    @classmethod
    def from_dict(cls, data: dict) -> "BetRecord":
        settled_at = data.get("settled_at")
        return cls(
            id=str(data["id"]),
            stake=float(data.get("stake") or 0.0),
            placed_at=_parse_datetime(data["placed_at"]),
            outcome=Outcome.parse(data.get("outcome") or data.get("status")),
            settled_at=_parse_datetime(settled_at) if settled_at else None,
            league=data.get("league"),
            side=data.get("side") or data.get("bet_type"),
            selection=data.get("selection"),
            title=data.get("title") or data.get("match_title"),
        )


def _parse_datetime(value) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def signed_streak(outcomes: Iterable[Outcome]) -> int:
    """Current streak from a most-recent-first sequence of outcomes.

    The sign gives the direction (positive = consecutive wins, negative =
    consecutive losses) and the magnitude gives the length. Pushes and
    pending outcomes are skipped; 0 means no settled outcome.
    """
    streak = 0
    first: Optional[Outcome] = None
    for outcome in outcomes:
        if not outcome.is_settled:
            continue
        if first is None:
            first = outcome
        if outcome is not first:
            break
        streak += 1
    if first is Outcome.LOST:
        return -streak
    return streak
