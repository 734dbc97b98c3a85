"""Utility helpers."""

from riskcal.utils.odds import (
    american_to_decimal,
    american_to_implied_prob,
    decimal_to_american,
    decimal_to_implied_prob,
    breakeven_win_rate,
    expected_value,
    calculate_edge,
)

__all__ = [
    "american_to_decimal",
    "american_to_implied_prob",
    "decimal_to_american",
    "decimal_to_implied_prob",
    "breakeven_win_rate",
    "expected_value",
    "calculate_edge",
]
