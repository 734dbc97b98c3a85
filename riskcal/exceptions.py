"""
Custom exceptions for the calibration and staking engine.

Only genuine faults raise. "No signal" conditions (empty history, zero
bets) degrade to neutral values, and a guardrail block is a decision value,
not an exception.

Usage:
    from riskcal.exceptions import ConfigurationError, DataFetchError

    try:
        stake = fractional_kelly_stake(bankroll=0, ...)
    except ConfigurationError as e:
        print(f"Rejected: {e}")
"""


class RiskCalError(Exception):
    """
    Base exception for all engine errors.

    All custom exceptions inherit from this, allowing:
        except RiskCalError:
            # Catch any engine error
    """
    pass


# =============================================================================
# DATA ERRORS
# =============================================================================

class DataFetchError(RiskCalError):
    """
    Error fetching prediction records from the external source.

    Raised when:
    - The prediction store is unreachable or the query fails
    - Rows cannot be decoded into prediction records
    """

    def __init__(self, source: str, message: str = None, original_error: Exception = None):
        self.source = source
        self.original_error = original_error
        msg = f"Error fetching from {source}"
        if message:
            msg += f": {message}"
        if original_error:
            msg += f" (caused by: {type(original_error).__name__}: {original_error})"
        super().__init__(msg)


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================

class ConfigurationError(RiskCalError):
    """
    Invalid configuration or call-boundary input.

    Raised when:
    - Kelly fraction is not in (0, 1]
    - Bankroll or unit size is not positive
    - Win probability is outside [0, 1] or odds are below 1.0
    - A config file is missing or malformed
    """

    def __init__(self, setting: str, message: str):
        self.setting = setting
        super().__init__(f"Configuration error ({setting}): {message}")
