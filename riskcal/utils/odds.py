"""
Odds conversion and betting math utilities.

Provides:
- Odds format conversions (American, Decimal, Implied Probability)
- Break-even win rate for a price
- Expected value per unit staked
"""

import logging

from riskcal.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


# =============================================================================
# ODDS CONVERSIONS
# =============================================================================

def american_to_decimal(odds: int) -> float:
    """
    Convert American odds to decimal odds.

    Examples:
        +150 -> 2.50 (risk $100 to win $150, total return $250)
        -110 -> 1.91 (risk $110 to win $100, total return $210)

    Args:
        odds: American odds (positive or negative integer, never 0)

    Returns:
        Decimal odds (always > 1.0)
    """
    if odds == 0:
        raise ConfigurationError("odds", "American odds cannot be 0")
    if odds > 0:
        return (odds / 100) + 1
    return (100 / abs(odds)) + 1


def decimal_to_american(decimal_odds: float) -> int:
    """Convert decimal odds back to the nearest American price."""
    if decimal_odds <= 1:
        raise ConfigurationError("decimal_odds", "must be greater than 1.0")
    if decimal_odds >= 2:
        return int(round((decimal_odds - 1) * 100))
    return int(round(-100 / (decimal_odds - 1)))


def american_to_implied_prob(odds: int) -> float:
    """
    Convert American odds to implied probability.

    Note: This includes the vig/juice.

    Examples:
        -110 -> 0.524 (52.4% implied)
        +100 -> 0.500 (50.0% implied)
    """
    if odds > 0:
        return 100 / (odds + 100)
    return abs(odds) / (abs(odds) + 100)


def decimal_to_implied_prob(decimal_odds: float) -> float:
    if decimal_odds <= 0:
        raise ConfigurationError("decimal_odds", "must be positive")
    return 1 / decimal_odds


def breakeven_win_rate(decimal_odds: float) -> float:
    """
    Win rate needed to break even at the given decimal odds.

    This is simply the implied probability; a bettor must win more often
    than this to be profitable. 1.91 gives the familiar 52.4%.
    """
    return decimal_to_implied_prob(decimal_odds)


# =============================================================================
# EXPECTED VALUE
# =============================================================================

def expected_value(prob_win: float, decimal_odds: float) -> float:
    """
    Expected profit per unit staked.

    EV = p * (b - 1) - (1 - p), which reduces to p * b - 1, the same edge
    the stake sizer uses.
    """
    return prob_win * (decimal_odds - 1) - (1 - prob_win)


def calculate_edge(prob_win: float, decimal_odds: float) -> float:
    """
    Our estimated probability minus the probability implied by the price.

    A positive edge means the price undervalues the outcome.
    """
    return prob_win - decimal_to_implied_prob(decimal_odds)
