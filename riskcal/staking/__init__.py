"""
Staking Module
==============
Stake sizing and bankroll risk projection.

Usage:
    from riskcal.staking import recommend_stake, run_monte_carlo, risk_of_ruin

    rec = recommend_stake(bankroll=1000, prob_win=0.56, decimal_odds=1.91)
    scenarios = run_monte_carlo(1000, 0.55, 1.91, num_bets=100, seed=7)
    quick = risk_of_ruin(1000, unit_size=25, win_rate=0.55, avg_odds=1.91)
"""

from riskcal.staking.kelly import (
    StakeRecommendation,
    fractional_kelly_stake,
    kelly_stake_fraction,
    recommend_stake,
)
from riskcal.staking.simulator import (
    BankrollRisk,
    BankrollSimulation,
    bankroll_risk,
    constant_stake_fraction,
    risk_of_ruin,
    run_monte_carlo,
    scenario_win_rates,
    simulate_scenario,
)

__all__ = [
    'StakeRecommendation',
    'fractional_kelly_stake',
    'kelly_stake_fraction',
    'recommend_stake',
    'BankrollRisk',
    'BankrollSimulation',
    'bankroll_risk',
    'constant_stake_fraction',
    'risk_of_ruin',
    'run_monte_carlo',
    'scenario_win_rates',
    'simulate_scenario',
]
