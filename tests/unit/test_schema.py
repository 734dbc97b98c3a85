"""Unit tests for shared record types."""

from datetime import datetime, timezone

import pytest

from riskcal.schema import BetRecord, Outcome, PredictionRecord, signed_streak


W, L, P, PENDING = Outcome.WON, Outcome.LOST, Outcome.PUSH, Outcome.PENDING


class TestOutcome:
    """Tests for Outcome parsing and flags."""

    @pytest.mark.parametrize("raw,expected", [
        ("won", Outcome.WON),
        ("WIN", Outcome.WON),
        ("l", Outcome.LOST),
        ("push", Outcome.PUSH),
        (None, Outcome.PENDING),
        ("", Outcome.PENDING),
    ])
    def test_parse_aliases(self, raw, expected):
        assert Outcome.parse(raw) is expected

    def test_parse_unknown_raises(self):
        with pytest.raises(ValueError):
            Outcome.parse("void")

    def test_settled_excludes_push_and_pending(self):
        assert W.is_settled and L.is_settled
        assert not P.is_settled
        assert not PENDING.is_settled
        assert P.is_resolved
        assert not PENDING.is_resolved


class TestSignedStreak:
    """The sign is the direction, the magnitude is the length."""

    def test_win_streak_is_positive(self):
        assert signed_streak([W, W, W, L]) == 3

    def test_loss_streak_is_negative(self):
        assert signed_streak([L, L, W, W]) == -2

    def test_pushes_and_pending_are_skipped(self):
        assert signed_streak([PENDING, L, P, L, W]) == -2

    def test_no_settled_outcomes_is_zero(self):
        assert signed_streak([]) == 0
        assert signed_streak([P, PENDING]) == 0


class TestPredictionRecord:

    def _record(self, **overrides):
        data = dict(
            id="p1",
            algorithm_id="alpha",
            predicted_side="home",
            confidence=64.0,
            predicted_at=datetime(2026, 3, 1, 12, tzinfo=timezone.utc),
        )
        data.update(overrides)
        return PredictionRecord(**data)

    def test_resolve_once(self):
        resolved_at = datetime(2026, 3, 1, 15, tzinfo=timezone.utc)
        record = self._record().resolve("won", resolved_at)
        assert record.outcome is Outcome.WON
        assert record.resolved_at == resolved_at

        with pytest.raises(ValueError):
            record.resolve("lost", resolved_at)

    def test_dict_round_trip(self):
        record = self._record().resolve(Outcome.LOST, datetime(2026, 3, 2, tzinfo=timezone.utc))
        assert PredictionRecord.from_dict(record.to_dict()) == record


class TestBetRecord:

    def test_from_dict_accepts_status_key(self):
        bet = BetRecord.from_dict({
            'id': 7,
            'stake': '25.5',
            'placed_at': '2026-03-01T10:00:00+00:00',
            'status': 'lost',
            'settled_at': '2026-03-01T12:00:00+00:00',
        })
        assert bet.id == "7"
        assert bet.stake == 25.5
        assert bet.outcome is Outcome.LOST
        assert bet.settled_at.hour == 12
