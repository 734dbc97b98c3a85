"""
Bankroll Risk Simulator
=======================
Monte Carlo projection of bankroll paths under fractional Kelly staking.

Each trial:
- Draws ``num_bets`` Bernoulli outcomes at the assumed win rate
- Re-sizes every stake against the current simulated bankroll
- Tracks the running peak and maximum drawdown
- Stops as ruined once the bankroll falls below the ruin threshold
  (10% of the starting bankroll by default)

Every trial has its own random stream spawned from one SeedSequence, so
splitting trials across worker processes changes no result.

Also provides the closed-form gambler's-ruin estimate for quick checks, and
a bankroll health score built on it from the current drawdown.

Usage:
    from riskcal.staking.simulator import bankroll_risk, run_monte_carlo, risk_of_ruin

    scenarios = run_monte_carlo(1000, 0.55, 1.91, num_bets=100)
    scenarios["bear"].probability_of_ruin
    risk_of_ruin(1000, 25, 0.55, 1.91)
    bankroll_risk(875, 1000, [1100, 900], unit_size=25).health_score
"""

import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field, asdict
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from riskcal.config import SimulationConfig, StakingConfig
from riskcal.constants import SCENARIO_BEAR, SCENARIO_BULL, SCENARIO_REALISTIC
from riskcal.exceptions import ConfigurationError
from riskcal.staking.kelly import applied_stake_fraction, validate_stake_inputs

logger = logging.getLogger(__name__)


@dataclass
class BankrollSimulation:
    """Aggregated Monte Carlo result for one scenario. Never persisted."""
    scenario: str
    projected_bankroll_path: List[float]  # median per bet index, starting bankroll first
    win_rate: float
    avg_odds: float
    num_bets: int
    probability_of_profit: float
    probability_of_ruin: float
    max_drawdown: float  # mean of per-trial max drawdowns, as a fraction
    sharpe_ratio: float
    expected_growth_pct: float
    trials: int = 0
    kelly_fraction: float = 0.25
    starting_bankroll: float = 0.0
    final_bankroll_percentiles: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class _TrialBatch:
    paths: np.ndarray  # (trials, num_bets + 1)
    max_drawdowns: np.ndarray
    ruined: np.ndarray


# =============================================================================
# VALIDATION
# =============================================================================

def validate_simulation_inputs(
    bankroll: float,
    win_rate: float,
    avg_odds: float,
    num_bets: int,
    kelly_fraction: float,
    trials: int,
) -> None:
    validate_stake_inputs(bankroll, win_rate, avg_odds, kelly_fraction)
    if num_bets is None or int(num_bets) != num_bets or num_bets < 0:
        raise ConfigurationError("num_bets", f"must be a non-negative integer, got {num_bets}")
    if trials is None or int(trials) != trials or trials <= 0:
        raise ConfigurationError("trials", f"must be a positive integer, got {trials}")


# =============================================================================
# TRIALS
# =============================================================================

def _simulate_trials(args: Tuple) -> _TrialBatch:
    """
    Run a contiguous block of trials.

    Module-level so it can be shipped to worker processes. Outcomes for
    each trial come only from that trial's own SeedSequence.
    """
    seeds, bankroll, win_rate, avg_odds, num_bets, stake_fraction, precision, ruin_level = args
    n = len(seeds)

    uniforms = np.empty((n, num_bets))
    for i, seed in enumerate(seeds):
        uniforms[i] = np.random.default_rng(seed).random(num_bets)
    wins = uniforms < win_rate

    paths = np.empty((n, num_bets + 1))
    paths[:, 0] = bankroll
    current = np.full(n, float(bankroll))
    peak = current.copy()
    max_drawdowns = np.zeros(n)
    ruined = np.zeros(n, dtype=bool)
    net_odds = avg_odds - 1

    for bet in range(num_bets):
        active = ~ruined
        stakes = np.round(current * stake_fraction, precision)
        delta = np.where(wins[:, bet], stakes * net_odds, -stakes)
        current = np.where(active, current + delta, current)

        peak = np.maximum(peak, current)
        drawdown = np.where(peak > 0, (peak - current) / peak, 0.0)
        max_drawdowns = np.maximum(max_drawdowns, drawdown)

        ruined = ruined | (active & (current < ruin_level))
        # Ruined trials keep their last value for the remaining indices
        paths[:, bet + 1] = current

    return _TrialBatch(paths=paths, max_drawdowns=max_drawdowns, ruined=ruined)


def _chunks(items: List, parts: int) -> List[List]:
    size = -(-len(items) // parts)
    return [items[i:i + size] for i in range(0, len(items), size)]


def simulate_scenario(
    scenario: str,
    bankroll: float,
    win_rate: float,
    avg_odds: float,
    num_bets: int,
    kelly_fraction: float = 0.25,
    trials: Optional[int] = None,
    config: Optional[SimulationConfig] = None,
    staking: Optional[StakingConfig] = None,
    seed: Optional[int] = None,
) -> BankrollSimulation:
    """
    Monte Carlo run for one win rate.

    Args:
        scenario: Label stored on the result
        bankroll: Starting bankroll (> 0)
        win_rate: Assumed win probability in [0, 1]
        avg_odds: Assumed average decimal odds (>= 1.0)
        num_bets: Sequential bets per trial (>= 0)
        kelly_fraction: Damping factor in (0, 1]
        trials: Monte Carlo trials; defaults to config
        config: Simulation settings (ruin threshold, workers, seed)
        staking: Caps and rounding used to size each simulated stake
        seed: Overrides ``config.seed``; None draws fresh entropy

    Returns:
        BankrollSimulation with the median path and aggregate risk figures

    Runs that share a seed are comparable across win rates; see
    ``constant_stake_fraction`` for when ruin is monotone in the win rate.
    """
    config = (config or SimulationConfig()).validate()
    staking = (staking or StakingConfig()).validate()
    trials = config.trials if trials is None else trials
    seed = config.seed if seed is None else seed
    validate_simulation_inputs(bankroll, win_rate, avg_odds, num_bets, kelly_fraction, trials)
    num_bets = int(num_bets)
    trials = int(trials)

    stake_fraction = applied_stake_fraction(win_rate, avg_odds, kelly_fraction, staking)
    ruin_level = bankroll * config.ruin_threshold
    seeds = np.random.SeedSequence(seed).spawn(trials)

    def task(block):
        return (block, bankroll, win_rate, avg_odds, num_bets,
                stake_fraction, staking.unit_precision, ruin_level)

    workers = min(config.workers, trials)
    if workers > 1:
        blocks = _chunks(seeds, workers)
        with ProcessPoolExecutor(max_workers=workers) as executor:
            batches = list(executor.map(_simulate_trials, [task(b) for b in blocks]))
    else:
        batches = [_simulate_trials(task(seeds))]

    paths = np.vstack([b.paths for b in batches])
    max_drawdowns = np.concatenate([b.max_drawdowns for b in batches])
    ruined = np.concatenate([b.ruined for b in batches])

    finals = paths[:, -1]
    returns = (finals - bankroll) / bankroll
    std = float(np.std(returns))
    sharpe = float(np.mean(returns)) / std if std > 0 else 0.0

    result = BankrollSimulation(
        scenario=scenario,
        projected_bankroll_path=[round(float(v), 2) for v in np.median(paths, axis=0)],
        win_rate=round(win_rate, 4),
        avg_odds=avg_odds,
        num_bets=num_bets,
        probability_of_profit=float(np.mean(finals > bankroll)),
        probability_of_ruin=float(np.mean(ruined)),
        max_drawdown=round(float(np.mean(max_drawdowns)), 6),
        sharpe_ratio=round(sharpe, 6),
        expected_growth_pct=round(float(np.mean(returns)) * 100, 4),
        trials=trials,
        kelly_fraction=kelly_fraction,
        starting_bankroll=bankroll,
        final_bankroll_percentiles={
            'p5': round(float(np.percentile(finals, 5)), 2),
            'p50': round(float(np.percentile(finals, 50)), 2),
            'p95': round(float(np.percentile(finals, 95)), 2),
        },
    )
    logger.debug(
        f"{scenario}: win_rate={win_rate:.3f} ruin={result.probability_of_ruin:.2%} "
        f"profit={result.probability_of_profit:.2%} over {trials} trials"
    )
    return result


# =============================================================================
# SCENARIOS
# =============================================================================

def scenario_win_rates(win_rate: float, config: Optional[SimulationConfig] = None) -> Dict[str, float]:
    """
    Win rates for the bull, realistic and bear scenarios.

    Bull and bear shift by the offset, but the shift never pushes past the
    ceiling or floor unless the realistic rate is already beyond it, so
    bull >= realistic >= bear always holds.
    """
    config = config or SimulationConfig()
    offset = config.scenario_offset
    bull = min(win_rate + offset, max(config.scenario_win_rate_ceiling, win_rate))
    bear = max(win_rate - offset, min(config.scenario_win_rate_floor, win_rate))
    return {
        SCENARIO_BULL: bull,
        SCENARIO_REALISTIC: win_rate,
        SCENARIO_BEAR: bear,
    }


def constant_stake_fraction(
    win_rates: Iterable[float],
    avg_odds: float,
    kelly_fraction: float,
    staking: Optional[StakingConfig] = None,
) -> Optional[float]:
    """
    The applied stake fraction shared by every rate in ``win_rates``, or None.

    Runs with the same seed draw the same uniforms per trial, so at a higher
    win rate a trial wins a superset of the bets it wins at a lower one.
    With one stake fraction for every rate, probability_of_ruin is then
    non-increasing in the win rate (up to stake rounding). One fraction
    applies when every rate is at or below break-even (floor stakes), or when
    every rate's Kelly stake reaches ``max_stake_fraction``. A floor equal to
    the cap also covers rates with a small edge only if their Kelly stake
    reaches the cap too.

    Outside that range the stake grows with the edge, and the larger stake
    can make ruin more likely at a higher win rate: at odds 2.0 with full
    Kelly and no cap, 0.75 ruins more often than 0.55 over 30 bets.
    """
    staking = staking or StakingConfig()
    fractions = {applied_stake_fraction(p, avg_odds, kelly_fraction, staking) for p in win_rates}
    if len(fractions) != 1:
        return None
    return fractions.pop()


def run_monte_carlo(
    bankroll: float,
    win_rate: float,
    avg_odds: float,
    num_bets: int,
    kelly_fraction: float = 0.25,
    trials: Optional[int] = None,
    config: Optional[SimulationConfig] = None,
    staking: Optional[StakingConfig] = None,
    seed: Optional[int] = None,
) -> Dict[str, BankrollSimulation]:
    """
    Run the three named scenarios independently.

    All three use the same seed, so their differences come from the win
    rate alone rather than from sampling noise.
    """
    config = (config or SimulationConfig()).validate()
    trials = config.trials if trials is None else trials
    validate_simulation_inputs(bankroll, win_rate, avg_odds, num_bets, kelly_fraction, trials)
    if seed is None:
        seed = config.seed
    if seed is None:
        # One fresh seed shared by the scenarios
        seed = int(np.random.SeedSequence().generate_state(1)[0])

    results = {}
    for scenario, rate in scenario_win_rates(win_rate, config).items():
        results[scenario] = simulate_scenario(
            scenario,
            bankroll,
            rate,
            avg_odds,
            num_bets,
            kelly_fraction=kelly_fraction,
            trials=trials,
            config=config,
            staking=staking,
            seed=seed,
        )
    return results


# =============================================================================
# CLOSED FORM
# =============================================================================

def risk_of_ruin(bankroll: float, unit_size: float, win_rate: float, avg_odds: float) -> float:
    """
    Gambler's-ruin approximation (q/p)^(bankroll/unit_size).

    Returns 1.0 whenever the edge p * odds - 1 is not positive; otherwise
    the estimate clamped to [0, 1].
    """
    if bankroll is None or not bankroll > 0:
        raise ConfigurationError("bankroll", f"must be positive, got {bankroll}")
    if unit_size is None or not unit_size > 0:
        raise ConfigurationError("unit_size", f"must be positive, got {unit_size}")
    if win_rate is None or not 0 <= win_rate <= 1:
        raise ConfigurationError("win_rate", f"must be in [0, 1], got {win_rate}")
    if avg_odds is None or not avg_odds >= 1:
        raise ConfigurationError("avg_odds", f"must be >= 1.0, got {avg_odds}")

    if win_rate * avg_odds - 1 <= 0:
        return 1.0
    if win_rate >= 1:
        return 0.0
    ratio = (1 - win_rate) / win_rate
    if ratio >= 1:
        return 1.0
    value = ratio ** (bankroll / unit_size)
    return float(min(1.0, max(0.0, value)))


# =============================================================================
# BANKROLL HEALTH
# =============================================================================

# Long-run assumptions behind the ruin term of the health score
_HEALTH_WIN_RATE = 0.54
_HEALTH_AVG_ODDS = 1.9
_DAILY_GROWTH_RATE = 0.01
_DRAWDOWN_PENALTY = 50.0
_RUIN_PENALTY = 30.0


@dataclass(frozen=True)
class BankrollRisk:
    risk_of_ruin: float
    current_drawdown: float  # fraction below the peak
    max_drawdown: float
    days_to_recovery: int
    health_score: float  # 0-100

    def to_dict(self) -> dict:
        return asdict(self)


def bankroll_risk(
    current_bankroll: float,
    starting_bankroll: float,
    history: Iterable[float],
    unit_size: float,
    win_rate: float = _HEALTH_WIN_RATE,
    avg_odds: float = _HEALTH_AVG_ODDS,
    daily_growth_rate: float = _DAILY_GROWTH_RATE,
) -> BankrollRisk:
    """
    Drawdown and health of a real bankroll.

    Args:
        current_bankroll: Bankroll now (> 0)
        starting_bankroll: Bankroll at the start of tracking (> 0)
        history: Recorded bankroll values, oldest first
        unit_size: Typical stake, for the closed-form risk of ruin
        win_rate: Assumed long-run win rate for the ruin term
        avg_odds: Assumed average decimal odds for the ruin term
        daily_growth_rate: Expected growth per day, for days to recovery

    Returns:
        BankrollRisk. The health score starts at 100 and loses 50 points per
        unit of current drawdown and 30 per unit of risk of ruin.
    """
    if starting_bankroll is None or not starting_bankroll > 0:
        raise ConfigurationError("starting_bankroll", f"must be positive, got {starting_bankroll}")
    if daily_growth_rate is None or not daily_growth_rate > 0:
        raise ConfigurationError("daily_growth_rate", f"must be positive, got {daily_growth_rate}")
    ruin = risk_of_ruin(current_bankroll, unit_size, win_rate, avg_odds)

    values = np.asarray([float(starting_bankroll)] + [float(v) for v in history])
    peaks = np.maximum.accumulate(values)
    max_drawdown = float(np.max((peaks - values) / peaks))

    peak = max(float(peaks[-1]), float(current_bankroll))
    current_drawdown = (peak - current_bankroll) / peak
    max_drawdown = max(max_drawdown, current_drawdown)

    days = 0
    if current_drawdown > 0:
        days = int(np.ceil(np.log(peak / current_bankroll) / np.log(1 + daily_growth_rate)))

    health = 100 - current_drawdown * _DRAWDOWN_PENALTY - ruin * _RUIN_PENALTY
    return BankrollRisk(
        risk_of_ruin=ruin,
        current_drawdown=round(current_drawdown, 6),
        max_drawdown=round(max_drawdown, 6),
        days_to_recovery=days,
        health_score=round(min(100.0, max(0.0, health)), 2),
    )
