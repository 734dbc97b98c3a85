"""CLI entry points."""

from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional, Sequence
import argparse
import json
import logging
import sys
import uuid

from riskcal.calibration.orchestrator import RecalibrationOrchestrator
from riskcal.calibration.weight_store import WeightCache
from riskcal.config import Config
from riskcal.constants import SCENARIOS, STANDARD_DECIMAL_ODDS
from riskcal.exceptions import ConfigurationError, RiskCalError
from riskcal.guardrails.evaluator import GuardrailEngine
from riskcal.guardrails.exposure import calculate_risk_exposure
from riskcal.guardrails.state import GuardrailStateStore
from riskcal.ops.logging import configure_logging
from riskcal.ops.metrics import get_metrics_recorder
from riskcal.schema import BetRecord
from riskcal.staking.kelly import recommend_stake
from riskcal.staking.simulator import risk_of_ruin, run_monte_carlo
from riskcal.storage.kv import JsonFileKeyValueStore
from riskcal.storage.predictions import SqlitePredictionSource
from riskcal.utils.odds import american_to_decimal

logger = logging.getLogger(__name__)


def print_header(title: str) -> None:
    print("\n" + "=" * 60)
    print(f"  {title}")
    print("=" * 60)


def _parse_base_weights(pairs: Optional[List[str]]) -> Dict[str, float]:
    weights: Dict[str, float] = {}
    for pair in pairs or []:
        if "=" not in pair:
            raise ConfigurationError("base_weight", f"expected ALGORITHM=WEIGHT, got {pair!r}")
        algo, value = pair.split("=", 1)
        try:
            weights[algo.strip()] = float(value)
        except ValueError as e:
            raise ConfigurationError("base_weight", f"invalid weight in {pair!r}") from e
    return weights


def _load_cache(config: Config) -> WeightCache:
    cache = WeightCache()
    cache.load(Path(config.weights_path))
    return cache


def _resolve_odds(decimal_odds: Optional[float], american: Optional[int]) -> float:
    if american is not None:
        return american_to_decimal(american)
    return decimal_odds if decimal_odds is not None else STANDARD_DECIMAL_ODDS


def run_recalibrate(
    config_path: Optional[str] = None,
    loop: bool = False,
    base_weights: Optional[List[str]] = None,
    as_json: bool = False,
) -> int:
    config = Config.load(config_path)
    cache = _load_cache(config)
    orchestrator = RecalibrationOrchestrator(
        SqlitePredictionSource(config.predictions_db_path),
        cache,
        config.calibration,
        base_weights=_parse_base_weights(base_weights),
        interval_seconds=config.recalibration_interval_seconds,
        weights_path=config.weights_path,
    )

    if loop:
        try:
            orchestrator.run_forever()
        except KeyboardInterrupt:
            logger.info("Interrupted; stopping recalibration loop")
        return 0

    result = orchestrator.run_cycle()
    if result is None:
        print("Recalibration failed; previous weights kept. See log for details.", file=sys.stderr)
        return 1

    if as_json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
        return 0

    print_header("RECALIBRATION")
    print(f"  Predictions:     {result.prediction_count}")
    print(f"  Overall health:  {result.overall_health:.1f}")
    print()
    print(f"  {'Algorithm':<24} {'Weight':>8} {'Mult':>7} {'Thresh':>7} {'Health':>7}")
    for algo, weight in sorted(result.weights.items()):
        window = result.windows[algo]
        print(
            f"  {algo:<24} {weight.adjusted_weight:>8.4f} {weight.confidence_multiplier:>7.3f} "
            f"{weight.min_confidence_threshold:>7.1f} {window.health_score:>7.1f}"
        )
    if result.recommendations:
        print("\nRecommendations:")
        for rec in result.recommendations:
            print(f"  [{rec.severity}] {rec.kind}: {rec.message}")
    return 0


def run_show_weights(config_path: Optional[str] = None, as_json: bool = False) -> int:
    config = Config.load(config_path)
    cache = _load_cache(config)
    snapshot = cache.snapshot()
    if snapshot is None:
        print(f"No published weights at {config.weights_path}. Run 'riskcal recalibrate' first.")
        return 1

    if as_json:
        print(json.dumps(snapshot.to_dict(), indent=2))
        return 0

    print_header("PUBLISHED WEIGHTS")
    print(f"  Published at:    {snapshot.published_at.isoformat()}")
    print(f"  Overall health:  {snapshot.overall_health:.1f}")
    print()
    for algo, weight in sorted(snapshot.weights.items()):
        flag = " (paused)" if weight.paused else ""
        print(
            f"  {algo:<24} weight={weight.adjusted_weight:.4f} "
            f"mult={weight.confidence_multiplier:.3f} "
            f"threshold={weight.min_confidence_threshold:.1f}{flag}"
        )
    return 0


def run_stake(
    bankroll: float,
    prob_win: Optional[float],
    confidence: Optional[float],
    algorithm: Optional[str],
    decimal_odds: Optional[float],
    american: Optional[int],
    kelly_fraction: Optional[float],
    config_path: Optional[str] = None,
    as_json: bool = False,
) -> int:
    config = Config.load(config_path)
    odds = _resolve_odds(decimal_odds, american)

    if prob_win is None:
        if confidence is None:
            raise ConfigurationError("prob_win", "pass --prob or --confidence")
        if not algorithm:
            raise ConfigurationError(
                "algorithm",
                "--confidence needs --algorithm so the published multiplier is applied; "
                "pass --prob for an already calibrated probability",
            )
        prob_win = _load_cache(config).calibrated_probability(confidence, algorithm)

    rec = recommend_stake(bankroll, prob_win, odds, kelly_fraction, config.staking)
    if as_json:
        print(json.dumps(rec.to_dict(), indent=2))
        return 0

    print_header("STAKE RECOMMENDATION")
    print(f"  Win probability: {prob_win:.3f} at {odds:.2f}")
    print(f"  Edge:            {rec.edge:+.2%}")
    print(f"  Full Kelly:      {rec.full_kelly:.2%}")
    print(f"  Stake:           {rec.stake:.2f} ({rec.stake_fraction:.2%} of bankroll)")
    print(f"  Risk level:      {rec.risk_level}")
    if rec.is_floor_stake:
        print("  No positive edge: floor stake only")
    return 0


def run_simulate(
    bankroll: float,
    win_rate: float,
    decimal_odds: Optional[float],
    num_bets: int,
    kelly_fraction: float,
    trials: Optional[int],
    seed: Optional[int],
    workers: Optional[int],
    config_path: Optional[str] = None,
    as_json: bool = False,
) -> int:
    config = Config.load(config_path)
    sim_config = config.simulation
    if workers is not None:
        sim_config = replace(sim_config, workers=workers)

    scenarios = run_monte_carlo(
        bankroll,
        win_rate,
        _resolve_odds(decimal_odds, None),
        num_bets,
        kelly_fraction=kelly_fraction,
        trials=trials,
        config=sim_config,
        staking=config.staking,
        seed=seed,
    )

    if as_json:
        print(json.dumps({k: v.to_dict() for k, v in scenarios.items()}, indent=2))
        return 0

    print_header("BANKROLL SIMULATION")
    print(f"  {'Scenario':<10} {'Win%':>6} {'Profit':>8} {'Ruin':>8} {'MaxDD':>8} {'Sharpe':>8} {'Growth':>9}")
    for name in SCENARIOS:
        sim = scenarios[name]
        print(
            f"  {name:<10} {sim.win_rate:>6.1%} {sim.probability_of_profit:>8.1%} "
            f"{sim.probability_of_ruin:>8.1%} {sim.max_drawdown:>8.1%} "
            f"{sim.sharpe_ratio:>8.2f} {sim.expected_growth_pct:>8.1f}%"
        )
    return 0


def run_risk_of_ruin(bankroll: float, unit_size: float, win_rate: float, decimal_odds: Optional[float]) -> int:
    value = risk_of_ruin(bankroll, unit_size, win_rate, _resolve_odds(decimal_odds, None))
    print(f"Risk of ruin: {value:.4%}")
    return 0


def _load_bets(bets_path: Optional[str]) -> List[BetRecord]:
    if not bets_path:
        return []
    rows = json.loads(Path(bets_path).read_text(encoding="utf-8"))
    return [BetRecord.from_dict(row) for row in rows]


def run_guardrails(
    bankroll: float,
    proposed_stake: Optional[float],
    bets_path: Optional[str],
    config_path: Optional[str] = None,
    clear_lockout: bool = False,
    end_session: bool = False,
    as_json: bool = False,
) -> int:
    config = Config.load(config_path)
    state = GuardrailStateStore(JsonFileKeyValueStore(config.state_path))
    engine = GuardrailEngine(state, config.guardrails)

    if clear_lockout:
        engine.clear_lockout()
        print("Lockout cleared.")
    if end_session:
        engine.end_session()
        print("Session ended.")
        return 0

    bets = _load_bets(bets_path)
    decision = engine.check_stake(bets, bankroll, proposed_stake)
    if as_json:
        print(json.dumps({
            'blocked': decision.blocked,
            'reason': decision.reason,
            'lockout': decision.lockout.to_dict(),
            'guardrails': [r.to_dict() for r in decision.results],
        }, indent=2))
    else:
        print_header("GUARDRAILS")
        for result in decision.results:
            status = "TRIGGERED" if result.is_triggered else "ok"
            enabled = "" if result.enabled else " (disabled)"
            print(
                f"  {result.id:<14} {status:<10} {result.current_value:>10.2f} / "
                f"{result.threshold:<8g} {result.action}{enabled}"
            )
        print()
        print(f"  Decision: {'BLOCKED - ' + decision.reason if decision.blocked else 'allowed'}")
    return 1 if decision.blocked else 0


def run_exposure(
    bankroll: float,
    bets_path: str,
    config_path: Optional[str] = None,
    as_json: bool = False,
) -> int:
    config = Config.load(config_path)
    exposure = calculate_risk_exposure(_load_bets(bets_path), bankroll, config.exposure)
    if as_json:
        print(json.dumps(exposure.to_dict(), indent=2))
        return 0

    print_header("OPEN-BET EXPOSURE")
    print(f"  Open bets: {exposure.open_bets_count}")
    print(f"  Total:     {exposure.total_exposure:.2f} ({exposure.exposure_percent:.1f}% of bankroll)")
    for title, group in (("League", exposure.by_league), ("Side", exposure.by_side), ("Market", exposure.by_market)):
        for key, bucket in group.items():
            print(f"  {title:<7} {key:<12} {bucket.amount:>10.2f} {bucket.count:>4} {bucket.percentage:>6.1f}%")
    for warning in exposure.warnings:
        print(f"  [{warning.severity.upper()}] {warning.message}")
    print()
    print(f"  Risk level: {exposure.risk_level}")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="riskcal", description="Calibration and staking risk tools")
    parser.add_argument("--config", dest="config_path", default=None, help="Path to .env or JSON config")
    parser.add_argument("--json", dest="as_json", action="store_true", help="Emit JSON instead of tables")
    subparsers = parser.add_subparsers(dest="command", required=True)

    recal = subparsers.add_parser("recalibrate", help="Run a recalibration cycle")
    recal.add_argument("--loop", action="store_true", help="Keep running on the configured interval")
    recal.add_argument(
        "--base-weight",
        dest="base_weights",
        action="append",
        metavar="ALGORITHM=WEIGHT",
        help="Base blend weight for an algorithm (repeatable)",
    )

    subparsers.add_parser("show-weights", help="Show the last published weights")

    stake = subparsers.add_parser("stake", help="Fractional Kelly stake for one bet")
    stake.add_argument("--bankroll", type=float, required=True)
    prob = stake.add_mutually_exclusive_group()
    prob.add_argument("--prob", dest="prob_win", type=float, help="Calibrated win probability (0-1), used as given")
    prob.add_argument("--confidence", type=float, help="Stated confidence (0-100); requires --algorithm")
    stake.add_argument("--algorithm", help="Algorithm whose published multiplier calibrates --confidence")
    odds = stake.add_mutually_exclusive_group()
    odds.add_argument("--odds", dest="decimal_odds", type=float, help="Decimal odds (default 1.91)")
    odds.add_argument("--american", type=int, help="American odds, e.g. -110")
    stake.add_argument("--kelly-fraction", type=float, default=None)

    sim = subparsers.add_parser("simulate", help="Monte Carlo bankroll scenarios")
    sim.add_argument("--bankroll", type=float, required=True)
    sim.add_argument("--win-rate", type=float, required=True)
    sim.add_argument("--odds", dest="decimal_odds", type=float, default=None)
    sim.add_argument("--bets", dest="num_bets", type=int, default=100)
    sim.add_argument("--kelly-fraction", type=float, default=0.25)
    sim.add_argument("--trials", type=int, default=None)
    sim.add_argument("--seed", type=int, default=None)
    sim.add_argument("--workers", type=int, default=None)

    ror = subparsers.add_parser("risk-of-ruin", help="Closed-form risk of ruin")
    ror.add_argument("--bankroll", type=float, required=True)
    ror.add_argument("--unit-size", type=float, required=True)
    ror.add_argument("--win-rate", type=float, required=True)
    ror.add_argument("--odds", dest="decimal_odds", type=float, default=None)

    guard = subparsers.add_parser("guardrails", help="Check guardrails for a proposed stake")
    guard.add_argument("--bankroll", type=float, required=True)
    guard.add_argument("--stake", dest="proposed_stake", type=float, default=None)
    guard.add_argument("--bets", dest="bets_path", default=None, help="JSON file with recent bets")
    guard.add_argument("--clear-lockout", action="store_true")
    guard.add_argument("--end-session", action="store_true")

    exp = subparsers.add_parser("exposure", help="Money at risk in open bets")
    exp.add_argument("--bankroll", type=float, required=True)
    exp.add_argument("--bets", dest="bets_path", required=True, help="JSON file with bets; pending ones count")

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging(run_id=uuid.uuid4().hex[:8])

    try:
        if args.command == "recalibrate":
            code = run_recalibrate(args.config_path, args.loop, args.base_weights, args.as_json)
        elif args.command == "show-weights":
            code = run_show_weights(args.config_path, args.as_json)
        elif args.command == "stake":
            code = run_stake(
                bankroll=args.bankroll,
                prob_win=args.prob_win,
                confidence=args.confidence,
                algorithm=args.algorithm,
                decimal_odds=args.decimal_odds,
                american=args.american,
                kelly_fraction=args.kelly_fraction,
                config_path=args.config_path,
                as_json=args.as_json,
            )
        elif args.command == "simulate":
            code = run_simulate(
                bankroll=args.bankroll,
                win_rate=args.win_rate,
                decimal_odds=args.decimal_odds,
                num_bets=args.num_bets,
                kelly_fraction=args.kelly_fraction,
                trials=args.trials,
                seed=args.seed,
                workers=args.workers,
                config_path=args.config_path,
                as_json=args.as_json,
            )
        elif args.command == "risk-of-ruin":
            code = run_risk_of_ruin(args.bankroll, args.unit_size, args.win_rate, args.decimal_odds)
        elif args.command == "guardrails":
            code = run_guardrails(
                bankroll=args.bankroll,
                proposed_stake=args.proposed_stake,
                bets_path=args.bets_path,
                config_path=args.config_path,
                clear_lockout=args.clear_lockout,
                end_session=args.end_session,
                as_json=args.as_json,
            )
        elif args.command == "exposure":
            code = run_exposure(args.bankroll, args.bets_path, args.config_path, args.as_json)
        else:
            parser.error(f"unknown command {args.command}")
            code = 2
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except RiskCalError as e:
        logger.error(str(e))
        return 1

    metrics = get_metrics_recorder().snapshot()
    if metrics["counters"]:
        logger.debug(f"Metrics: {metrics}")
    return code


if __name__ == "__main__":
    raise SystemExit(main())
