"""Constants shared across calibration, staking and guardrails."""

# Win rate needed to break even at standard -110 pricing
BREAKEVEN_WIN_RATE = 0.524
STANDARD_DECIMAL_ODDS = 1.91

# Confidence deciles tracked by the bin calibration tracker
CONFIDENCE_BIN_WIDTH = 10
STANDARD_BINS = (50, 60, 70, 80, 90)
MAX_BIN = 90

# Neutral trust parameters used before any recalibration has run
NEUTRAL_CONFIDENCE_MULTIPLIER = 1.0
DEFAULT_MIN_CONFIDENCE_THRESHOLD = 55.0

# Recommendation kinds produced by the weight adjuster
RECOMMEND_PAUSE = "pause_algorithm"
RECOMMEND_DECREASE = "decrease_confidence"
RECOMMEND_BOOST = "boost_algorithm"
RECOMMEND_INSUFFICIENT = "insufficient_data"
RECOMMEND_NO_CHANGE = "no_change"

# Severe underperformance triggers a pause recommendation
PAUSE_WIN_RATE = 0.35
PAUSE_STREAK = -8

# Bankroll simulation scenarios
SCENARIO_BULL = "bull"
SCENARIO_REALISTIC = "realistic"
SCENARIO_BEAR = "bear"
SCENARIOS = (SCENARIO_BULL, SCENARIO_REALISTIC, SCENARIO_BEAR)

# Guardrail identifiers, in evaluation order
GUARDRAIL_LOSS_STREAK = "loss_streak"
GUARDRAIL_MAX_BET = "max_bet"
GUARDRAIL_DAILY_LOSS = "daily_loss"
GUARDRAIL_SESSION_TIME = "session_time"
GUARDRAIL_COOL_DOWN = "cool_down"

ACTION_WARN = "warn"
ACTION_BLOCK = "block"

# Durable guardrail state keys
LOCKOUT_KEY = "betting_lockout"
SESSION_START_KEY = "betting_session_start"
LAST_LOSS_KEY = "last_loss_timestamp"
