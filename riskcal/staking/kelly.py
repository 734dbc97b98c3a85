"""
Stake Sizer
===========
Fractional Kelly stake sizing.

Kelly formula on decimal odds b (stake included in the return):
    edge       e = p * b - 1
    full Kelly f = e / (b - 1)
    stake        = bankroll * f * kelly_fraction

A proposition with no positive edge gets the floor stake, never a Kelly
stake. Stakes are capped at ``max_stake_fraction`` of the bankroll and
rounded to ``unit_precision`` decimals.

Callers must pass the post-calibration probability (see
``WeightCache.calibrated_probability``), not the raw stated confidence.
"""

import logging
import math
from dataclasses import dataclass, asdict
from typing import Optional

from riskcal.config import StakingConfig
from riskcal.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Applied-fraction cut-offs for the risk level label
_LOW_RISK_FRACTION = 0.02
_MEDIUM_RISK_FRACTION = 0.05


@dataclass(frozen=True)
class StakeRecommendation:
    stake: float
    stake_fraction: float  # stake / bankroll after caps
    edge: float
    full_kelly: float
    kelly_fraction: float
    expected_growth: float  # expected log growth per bet at the applied fraction
    is_positive_edge: bool
    is_floor_stake: bool
    risk_level: str  # low, medium, high

    def to_dict(self) -> dict:
        return asdict(self)


def validate_stake_inputs(
    bankroll: float,
    prob_win: float,
    decimal_odds: float,
    kelly_fraction: float,
) -> None:
    """Reject invalid call-boundary inputs before any sizing work."""
    if bankroll is None or not bankroll > 0:
        raise ConfigurationError("bankroll", f"must be positive, got {bankroll}")
    if prob_win is None or not 0 <= prob_win <= 1:
        raise ConfigurationError("prob_win", f"must be in [0, 1], got {prob_win}")
    if decimal_odds is None or not decimal_odds >= 1:
        raise ConfigurationError("decimal_odds", f"must be >= 1.0, got {decimal_odds}")
    if kelly_fraction is None or not 0 < kelly_fraction <= 1:
        raise ConfigurationError("kelly_fraction", f"must be in (0, 1], got {kelly_fraction}")


def kelly_edge(prob_win: float, decimal_odds: float) -> float:
    return prob_win * decimal_odds - 1


def kelly_stake_fraction(prob_win: float, decimal_odds: float) -> float:
    """
    Full Kelly fraction of bankroll.

    Returns:
        f* = (p * b - 1) / (b - 1), or 0.0 when the edge is not positive
    """
    edge = kelly_edge(prob_win, decimal_odds)
    if edge <= 0 or decimal_odds <= 1:
        return 0.0
    return edge / (decimal_odds - 1)


def applied_stake_fraction(
    prob_win: float,
    decimal_odds: float,
    kelly_fraction: float,
    config: StakingConfig,
) -> float:
    """Share of bankroll staked after the floor and cap. Inputs are not validated."""
    if kelly_edge(prob_win, decimal_odds) <= 0:
        fraction = config.floor_stake_fraction
    else:
        fraction = kelly_stake_fraction(prob_win, decimal_odds) * kelly_fraction
    return min(fraction, config.max_stake_fraction)


def _sized_stake(
    bankroll: float,
    prob_win: float,
    decimal_odds: float,
    kelly_fraction: float,
    config: StakingConfig,
) -> float:
    fraction = applied_stake_fraction(prob_win, decimal_odds, kelly_fraction, config)
    return round(bankroll * fraction, config.unit_precision)


def fractional_kelly_stake(
    bankroll: float,
    prob_win: float,
    decimal_odds: float,
    kelly_fraction: Optional[float] = None,
    config: Optional[StakingConfig] = None,
) -> float:
    """
    Recommended stake in currency units.

    Args:
        bankroll: Current bankroll (> 0)
        prob_win: Post-calibration win probability in [0, 1]
        decimal_odds: Decimal odds (>= 1.0), e.g. 1.91 for -110
        kelly_fraction: Damping factor in (0, 1]; defaults to config
        config: Staking caps and rounding

    Returns:
        Stake rounded to the configured unit precision
    """
    config = config or StakingConfig()
    kelly_fraction = config.kelly_fraction if kelly_fraction is None else kelly_fraction
    validate_stake_inputs(bankroll, prob_win, decimal_odds, kelly_fraction)
    return _sized_stake(bankroll, prob_win, decimal_odds, kelly_fraction, config)


def expected_log_growth(prob_win: float, decimal_odds: float, fraction: float) -> float:
    """Expected log growth per bet when staking ``fraction`` of bankroll."""
    if fraction <= 0:
        return 0.0
    if fraction >= 1:
        return -math.inf
    net = decimal_odds - 1
    return prob_win * math.log(1 + net * fraction) + (1 - prob_win) * math.log(1 - fraction)


def recommend_stake(
    bankroll: float,
    prob_win: float,
    decimal_odds: float,
    kelly_fraction: Optional[float] = None,
    config: Optional[StakingConfig] = None,
) -> StakeRecommendation:
    """Stake plus the numbers behind it, for display and audit."""
    config = config or StakingConfig()
    kelly_fraction = config.kelly_fraction if kelly_fraction is None else kelly_fraction
    validate_stake_inputs(bankroll, prob_win, decimal_odds, kelly_fraction)

    edge = kelly_edge(prob_win, decimal_odds)
    full = kelly_stake_fraction(prob_win, decimal_odds)
    stake = _sized_stake(bankroll, prob_win, decimal_odds, kelly_fraction, config)
    applied = stake / bankroll

    if applied < _LOW_RISK_FRACTION:
        risk_level = 'low'
    elif applied < _MEDIUM_RISK_FRACTION:
        risk_level = 'medium'
    else:
        risk_level = 'high'

    if edge <= 0:
        logger.debug(f"No edge at p={prob_win:.3f}, odds={decimal_odds:.2f}; floor stake {stake}")

    return StakeRecommendation(
        stake=stake,
        stake_fraction=round(applied, 6),
        edge=round(edge, 6),
        full_kelly=round(full, 6),
        kelly_fraction=kelly_fraction,
        expected_growth=round(expected_log_growth(prob_win, decimal_odds, applied), 6),
        is_positive_edge=edge > 0,
        is_floor_stake=edge <= 0,
        risk_level=risk_level,
    )
