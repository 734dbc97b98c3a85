"""Tests for the riskcal command line."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from riskcal.cli import main
from riskcal.storage.predictions import SqlitePredictionSource


@pytest.fixture(autouse=True)
def isolated_paths(tmp_path, monkeypatch):
    monkeypatch.setenv("RISKCAL_WEIGHTS_PATH", str(tmp_path / "model_weights.json"))
    monkeypatch.setenv("RISKCAL_STATE_PATH", str(tmp_path / "guardrail_state.json"))
    monkeypatch.setenv("RISKCAL_PREDICTIONS_DB", str(tmp_path / "predictions.db"))
    return tmp_path


class TestStakeCommand:

    def test_json_output(self, capsys):
        assert main(["--json", "stake", "--bankroll", "1000", "--prob", "0.55"]) == 0
        payload = json.loads(capsys.readouterr().out)

        assert payload["stake"] == 13.87
        assert payload["is_positive_edge"] is True

    def test_confidence_and_american_odds(self, capsys):
        """Without published weights the multiplier is neutral, so 45 stays 0.45."""
        code = main([
            "stake", "--bankroll", "1000", "--confidence", "45", "--algorithm", "alpha", "--american", "-110",
        ])
        assert code == 0
        out = capsys.readouterr().out

        assert "STAKE RECOMMENDATION" in out
        assert "floor stake only" in out

    def test_confidence_requires_algorithm(self, capsys):
        assert main(["stake", "--bankroll", "1000", "--confidence", "60"]) == 2
        assert "--algorithm" in capsys.readouterr().err

    def test_missing_probability_is_config_error(self, capsys):
        assert main(["stake", "--bankroll", "1000"]) == 2
        assert "Error" in capsys.readouterr().err

    def test_invalid_bankroll(self):
        assert main(["stake", "--bankroll", "0", "--prob", "0.55"]) == 2


class TestSimulationCommands:

    def test_simulate_json(self, capsys):
        code = main([
            "--json", "simulate", "--bankroll", "1000", "--win-rate", "0.55",
            "--bets", "10", "--trials", "20", "--seed", "1",
        ])
        payload = json.loads(capsys.readouterr().out)

        assert code == 0
        assert list(payload) == ["bull", "realistic", "bear"]
        assert len(payload["realistic"]["projected_bankroll_path"]) == 11

    def test_simulate_table(self, capsys):
        assert main(["simulate", "--bankroll", "500", "--win-rate", "0.5", "--bets", "5", "--trials", "10"]) == 0
        assert "BANKROLL SIMULATION" in capsys.readouterr().out

    def test_risk_of_ruin(self, capsys):
        code = main(["risk-of-ruin", "--bankroll", "1000", "--unit-size", "25", "--win-rate", "0.45"])
        assert code == 0
        assert "Risk of ruin: 100.0000%" in capsys.readouterr().out


class TestWeightCommands:

    def test_show_weights_before_recalibration(self, capsys):
        assert main(["show-weights"]) == 1
        assert "No published weights" in capsys.readouterr().out

    def test_recalibrate_then_show(self, capsys, isolated_paths):
        SqlitePredictionSource(isolated_paths / "predictions.db").ensure_schema()

        code = main(["recalibrate", "--base-weight", "alpha=0.6", "--base-weight", "beta=0.4"])
        assert code == 0
        assert "RECALIBRATION" in capsys.readouterr().out
        assert (isolated_paths / "model_weights.json").exists()

        assert main(["--json", "show-weights"]) == 0
        snapshot = json.loads(capsys.readouterr().out)
        assert snapshot["weights"]["alpha"]["adjusted_weight"] == pytest.approx(0.6)
        assert snapshot["weights"]["beta"]["adjusted_weight"] == pytest.approx(0.4)

    def test_recalibrate_without_database_fails(self, capsys):
        assert main(["recalibrate"]) == 1
        assert "previous weights kept" in capsys.readouterr().err

    def test_bad_base_weight(self):
        assert main(["recalibrate", "--base-weight", "alpha"]) == 2


class TestGuardrailsCommand:

    def test_allowed(self, capsys):
        assert main(["guardrails", "--bankroll", "1000", "--stake", "20"]) == 0
        assert "allowed" in capsys.readouterr().out

    def test_oversized_stake_blocked(self, capsys):
        assert main(["--json", "guardrails", "--bankroll", "1000", "--stake", "100"]) == 1
        payload = json.loads(capsys.readouterr().out)

        assert payload["blocked"] is True
        max_bet = next(g for g in payload["guardrails"] if g["id"] == "max_bet")
        assert max_bet["is_triggered"] is True

    def test_state_persisted(self, isolated_paths):
        main(["guardrails", "--bankroll", "1000"])
        state = json.loads((isolated_paths / "guardrail_state.json").read_text())
        assert "betting_session_start" in state

        assert main(["guardrails", "--bankroll", "1000", "--end-session"]) == 0
        state = json.loads((isolated_paths / "guardrail_state.json").read_text())
        assert "betting_session_start" not in state

    def test_recent_loss_in_history_starts_cool_down(self, capsys, isolated_paths):
        settled = datetime.now(timezone.utc) - timedelta(minutes=5)
        bets_path = isolated_paths / "bets.json"
        bets_path.write_text(json.dumps([{
            "id": "b1",
            "stake": 10.0,
            "placed_at": (settled - timedelta(minutes=30)).isoformat(),
            "settled_at": settled.isoformat(),
            "outcome": "lost",
        }]))

        code = main([
            "--json", "guardrails", "--bankroll", "1000", "--stake", "10", "--bets", str(bets_path),
        ])
        payload = json.loads(capsys.readouterr().out)

        assert code == 1
        assert payload["blocked"] is True
        cool_down = next(g for g in payload["guardrails"] if g["id"] == "cool_down")
        assert cool_down["is_triggered"] is True
        assert 0 <= cool_down["current_value"] < 30


class TestExposureCommand:

    def _write_bets(self, path):
        path.write_text(json.dumps([
            {"id": "b1", "stake": 120.0, "placed_at": "2026-03-15T18:00:00+00:00",
             "league": "NBA", "bet_type": "home", "selection": "Lakers Spread -3.5"},
            {"id": "b2", "stake": 90.0, "placed_at": "2026-03-15T18:00:00+00:00",
             "league": "NFL", "bet_type": "away", "status": "won"},
        ]))
        return path

    def test_json_output(self, capsys, isolated_paths):
        bets_path = self._write_bets(isolated_paths / "bets.json")

        assert main(["--json", "exposure", "--bankroll", "1000", "--bets", str(bets_path)]) == 0
        payload = json.loads(capsys.readouterr().out)

        assert payload["open_bets_count"] == 1
        assert payload["total_exposure"] == 120.0
        assert payload["by_market"] == {"Spread": {"amount": 120.0, "count": 1, "percentage": 12.0}}
        assert payload["risk_level"] == "high"

    def test_table_output(self, capsys, isolated_paths):
        bets_path = self._write_bets(isolated_paths / "bets.json")

        assert main(["exposure", "--bankroll", "1000", "--bets", str(bets_path)]) == 0
        out = capsys.readouterr().out

        assert "OPEN-BET EXPOSURE" in out
        assert "[DANGER] Largest bet is 12.0% of bankroll" in out
