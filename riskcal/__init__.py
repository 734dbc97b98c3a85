"""Adaptive calibration and risk-managed staking engine."""

__all__ = [
    "cli",
    "config",
    "constants",
    "exceptions",
    "schema",
    "calibration",
    "staking",
    "guardrails",
    "storage",
    "ops",
    "utils",
]

__version__ = "0.1.0"
