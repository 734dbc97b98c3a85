"""Configuration for calibration, staking, simulation, guardrails and exposure."""

from dataclasses import dataclass, asdict, field, replace
from datetime import timezone, tzinfo
from pathlib import Path
from typing import Optional, Dict
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import json
import os

from riskcal.constants import BREAKEVEN_WIN_RATE, DEFAULT_MIN_CONFIDENCE_THRESHOLD
from riskcal.exceptions import ConfigurationError


# Calibration windows
_DEFAULT_SHORT_TERM_DAYS = 7
_DEFAULT_MEDIUM_TERM_DAYS = 30
_DEFAULT_LONG_TERM_DAYS = 90
_DEFAULT_MIN_SAMPLE_SIZE = 10
_DEFAULT_MAX_WEIGHT_DELTA = 0.10

# Health score shape
_DEFAULT_NEUTRAL_HEALTH = 50.0
_DEFAULT_WIN_RATE_POINTS = 35.0
_DEFAULT_WIN_RATE_SCALE = 0.10  # win rate 10 points over break-even earns the full bonus
_DEFAULT_CALIBRATION_POINTS = 15.0
_DEFAULT_CALIBRATION_ERROR_SCALE = 0.20

# Weight and threshold bounds
_DEFAULT_MIN_WEIGHT = 0.05
_DEFAULT_THRESHOLD_FLOOR = 50.0
_DEFAULT_THRESHOLD_CEILING = 90.0
_DEFAULT_THRESHOLD_RAISE_RATE = 0.5
_DEFAULT_THRESHOLD_LOWER_RATE = 0.25
_DEFAULT_STRONG_HEALTH = 65.0

# Confidence multiplier
_DEFAULT_MIN_BIN_SAMPLES = 5
_DEFAULT_BIN_TOLERANCE = 0.05
_DEFAULT_MIN_MULTIPLIER = 0.70
_DEFAULT_MAX_MULTIPLIER = 1.15
_DEFAULT_OVERCONFIDENCE_DAMPING = 0.8
_DEFAULT_UNDERCONFIDENCE_DAMPING = 0.5

# Staking
_DEFAULT_KELLY_FRACTION = 0.25  # Quarter Kelly
_DEFAULT_MAX_STAKE_FRACTION = 0.05
_DEFAULT_FLOOR_STAKE_FRACTION = 0.01
_DEFAULT_UNIT_PRECISION = 2

# Simulation
_DEFAULT_TRIALS = 1000
_DEFAULT_RUIN_THRESHOLD = 0.10
_DEFAULT_SCENARIO_OFFSET = 0.05
_DEFAULT_SCENARIO_WIN_RATE_FLOOR = 0.40
_DEFAULT_SCENARIO_WIN_RATE_CEILING = 0.70

# Guardrails
_DEFAULT_MAX_LOSS_STREAK = 5
_DEFAULT_LOCKOUT_HOURS = 24.0
_DEFAULT_MAX_SINGLE_BET_PERCENT = 5.0
_DEFAULT_DAILY_LOSS_LIMIT = 100.0
_DEFAULT_SESSION_TIME_LIMIT = 180.0  # minutes
_DEFAULT_COOL_DOWN_MINUTES = 30.0
_DEFAULT_DAY_TIMEZONE = "UTC"  # calendar day used by the daily loss limit

# Open-bet exposure, as % of bankroll
_DEFAULT_MAX_LEAGUE_EXPOSURE_PERCENT = 30.0
_DEFAULT_MAX_TOTAL_EXPOSURE_PERCENT = 25.0
_DEFAULT_CRITICAL_EXPOSURE_PERCENT = 40.0
_DEFAULT_MODERATE_EXPOSURE_PERCENT = 15.0

# Runtime
_DEFAULT_RECALIBRATION_INTERVAL = 900  # 15 minutes
_DEFAULT_PREDICTIONS_DB = "data/predictions.db"
_DEFAULT_STATE_PATH = ".cache/guardrail_state.json"
_DEFAULT_WEIGHTS_PATH = ".cache/model_weights.json"


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def _coerce_float(value: Optional[str], default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _coerce_int(value: Optional[str], default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _coerce_optional_int(value: Optional[str]) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _coerce_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _parse_env_file(path: Path) -> Dict[str, str]:
    data: Dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        data[key.strip()] = _strip_quotes(value.strip())
    return data


def _load_config_data(path: Path) -> Dict[str, str]:
    if not path.exists():
        raise ConfigurationError(str(path), "config file not found")
    if path.suffix.lower() == ".json":
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigurationError(str(path), f"invalid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise ConfigurationError(str(path), "expected a JSON object")
        return {str(k): str(v) for k, v in payload.items()}
    return _parse_env_file(path)


def _require(condition: bool, setting: str, message: str) -> None:
    if not condition:
        raise ConfigurationError(setting, message)


@dataclass(frozen=True)
class CalibrationConfig:
    """Immutable per-cycle recalibration settings.

    The short-term window drives the recalibration decision; the long-term
    window only bounds how far back predictions are fetched. Every constant
    below shapes a rule (diminishing sample trust, clamped deltas,
    calibration-error penalty) and is tunable.
    """
    short_term_days: int = _DEFAULT_SHORT_TERM_DAYS
    medium_term_days: int = _DEFAULT_MEDIUM_TERM_DAYS
    long_term_days: int = _DEFAULT_LONG_TERM_DAYS
    min_sample_size: int = _DEFAULT_MIN_SAMPLE_SIZE
    max_weight_delta: float = _DEFAULT_MAX_WEIGHT_DELTA

    breakeven_win_rate: float = BREAKEVEN_WIN_RATE
    neutral_health: float = _DEFAULT_NEUTRAL_HEALTH
    win_rate_points: float = _DEFAULT_WIN_RATE_POINTS
    win_rate_scale: float = _DEFAULT_WIN_RATE_SCALE
    calibration_points: float = _DEFAULT_CALIBRATION_POINTS
    calibration_error_scale: float = _DEFAULT_CALIBRATION_ERROR_SCALE

    min_weight: float = _DEFAULT_MIN_WEIGHT
    base_confidence_threshold: float = DEFAULT_MIN_CONFIDENCE_THRESHOLD
    threshold_floor: float = _DEFAULT_THRESHOLD_FLOOR
    threshold_ceiling: float = _DEFAULT_THRESHOLD_CEILING
    threshold_raise_rate: float = _DEFAULT_THRESHOLD_RAISE_RATE
    threshold_lower_rate: float = _DEFAULT_THRESHOLD_LOWER_RATE
    strong_health: float = _DEFAULT_STRONG_HEALTH

    min_bin_samples: int = _DEFAULT_MIN_BIN_SAMPLES
    bin_tolerance: float = _DEFAULT_BIN_TOLERANCE
    min_multiplier: float = _DEFAULT_MIN_MULTIPLIER
    max_multiplier: float = _DEFAULT_MAX_MULTIPLIER
    overconfidence_damping: float = _DEFAULT_OVERCONFIDENCE_DAMPING
    underconfidence_damping: float = _DEFAULT_UNDERCONFIDENCE_DAMPING

    # None means an equal split across the algorithms in a cycle
    default_base_weight: Optional[float] = None

    def validate(self) -> "CalibrationConfig":
        _require(self.short_term_days > 0, "short_term_days", "must be positive")
        _require(
            self.short_term_days <= self.medium_term_days <= self.long_term_days,
            "long_term_days",
            "windows must satisfy short <= medium <= long",
        )
        _require(self.min_sample_size > 0, "min_sample_size", "must be positive")
        _require(0 < self.max_weight_delta <= 1, "max_weight_delta", "must be in (0, 1]")
        _require(0 < self.min_weight < 1, "min_weight", "must be in (0, 1)")
        _require(
            50 <= self.threshold_floor <= self.threshold_ceiling <= 90,
            "threshold_floor",
            "thresholds must satisfy 50 <= floor <= ceiling <= 90",
        )
        _require(
            0 < self.min_multiplier <= 1 <= self.max_multiplier,
            "min_multiplier",
            "multiplier bounds must bracket 1.0 and stay positive",
        )
        return self


@dataclass(frozen=True)
class StakingConfig:
    kelly_fraction: float = _DEFAULT_KELLY_FRACTION
    max_stake_fraction: float = _DEFAULT_MAX_STAKE_FRACTION
    floor_stake_fraction: float = _DEFAULT_FLOOR_STAKE_FRACTION
    unit_precision: int = _DEFAULT_UNIT_PRECISION

    def validate(self) -> "StakingConfig":
        _require(0 < self.kelly_fraction <= 1, "kelly_fraction", "must be in (0, 1]")
        _require(0 < self.max_stake_fraction <= 1, "max_stake_fraction", "must be in (0, 1]")
        _require(
            0 <= self.floor_stake_fraction <= self.max_stake_fraction,
            "floor_stake_fraction",
            "must be between 0 and max_stake_fraction",
        )
        _require(self.unit_precision >= 0, "unit_precision", "must not be negative")
        return self


@dataclass(frozen=True)
class SimulationConfig:
    trials: int = _DEFAULT_TRIALS
    ruin_threshold: float = _DEFAULT_RUIN_THRESHOLD
    scenario_offset: float = _DEFAULT_SCENARIO_OFFSET
    scenario_win_rate_floor: float = _DEFAULT_SCENARIO_WIN_RATE_FLOOR
    scenario_win_rate_ceiling: float = _DEFAULT_SCENARIO_WIN_RATE_CEILING
    seed: Optional[int] = None
    workers: int = 1

    def validate(self) -> "SimulationConfig":
        _require(self.trials > 0, "trials", "must be positive")
        _require(0 <= self.ruin_threshold < 1, "ruin_threshold", "must be in [0, 1)")
        _require(self.scenario_offset >= 0, "scenario_offset", "must not be negative")
        _require(
            0 <= self.scenario_win_rate_floor <= self.scenario_win_rate_ceiling <= 1,
            "scenario_win_rate_floor",
            "scenario bounds must satisfy 0 <= floor <= ceiling <= 1",
        )
        _require(self.workers >= 1, "workers", "must be at least 1")
        return self


@dataclass(frozen=True)
class GuardrailsConfig:
    max_loss_streak: int = _DEFAULT_MAX_LOSS_STREAK
    lockout_hours: float = _DEFAULT_LOCKOUT_HOURS
    max_single_bet_percent: float = _DEFAULT_MAX_SINGLE_BET_PERCENT
    daily_loss_limit: float = _DEFAULT_DAILY_LOSS_LIMIT
    session_time_limit: float = _DEFAULT_SESSION_TIME_LIMIT
    cool_down_minutes: float = _DEFAULT_COOL_DOWN_MINUTES
    enable_auto_lockout: bool = True
    enable_bet_size_limits: bool = True
    day_timezone: str = _DEFAULT_DAY_TIMEZONE

    def zone(self) -> tzinfo:
        """Time zone whose calendar day bounds "today" for the daily loss limit."""
        if self.day_timezone.upper() == "UTC":
            return timezone.utc
        try:
            return ZoneInfo(self.day_timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError("day_timezone", f"unknown time zone {self.day_timezone!r}") from e

    def validate(self) -> "GuardrailsConfig":
        _require(self.max_loss_streak > 0, "max_loss_streak", "must be positive")
        _require(self.lockout_hours >= 0, "lockout_hours", "must not be negative")
        _require(self.max_single_bet_percent > 0, "max_single_bet_percent", "must be positive")
        _require(self.daily_loss_limit >= 0, "daily_loss_limit", "must not be negative")
        _require(self.session_time_limit > 0, "session_time_limit", "must be positive")
        _require(self.cool_down_minutes >= 0, "cool_down_minutes", "must not be negative")
        self.zone()
        return self


@dataclass(frozen=True)
class ExposureConfig:
    """Limits on money at risk in open bets.

    A limit exceeded by more than its danger factor is reported as danger
    rather than warning.
    """
    max_league_exposure_percent: float = _DEFAULT_MAX_LEAGUE_EXPOSURE_PERCENT
    max_single_bet_percent: float = _DEFAULT_MAX_SINGLE_BET_PERCENT
    max_total_exposure_percent: float = _DEFAULT_MAX_TOTAL_EXPOSURE_PERCENT
    league_danger_factor: float = 1.5
    single_bet_danger_factor: float = 2.0
    total_danger_factor: float = 1.5
    critical_exposure_percent: float = _DEFAULT_CRITICAL_EXPOSURE_PERCENT
    moderate_exposure_percent: float = _DEFAULT_MODERATE_EXPOSURE_PERCENT

    def validate(self) -> "ExposureConfig":
        _require(self.max_league_exposure_percent > 0, "max_league_exposure_percent", "must be positive")
        _require(self.max_single_bet_percent > 0, "max_single_bet_percent", "must be positive")
        _require(self.max_total_exposure_percent > 0, "max_total_exposure_percent", "must be positive")
        _require(
            min(self.league_danger_factor, self.single_bet_danger_factor, self.total_danger_factor) >= 1,
            "league_danger_factor",
            "danger factors must be at least 1",
        )
        _require(
            0 <= self.moderate_exposure_percent <= self.critical_exposure_percent,
            "moderate_exposure_percent",
            "must satisfy 0 <= moderate <= critical",
        )
        return self


@dataclass
class Config:
    calibration: CalibrationConfig = field(default_factory=CalibrationConfig)
    staking: StakingConfig = field(default_factory=StakingConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    guardrails: GuardrailsConfig = field(default_factory=GuardrailsConfig)
    exposure: ExposureConfig = field(default_factory=ExposureConfig)
    predictions_db_path: str = _DEFAULT_PREDICTIONS_DB
    state_path: str = _DEFAULT_STATE_PATH
    weights_path: str = _DEFAULT_WEIGHTS_PATH
    recalibration_interval_seconds: int = _DEFAULT_RECALIBRATION_INTERVAL

    def validate(self) -> "Config":
        self.calibration.validate()
        self.staking.validate()
        self.simulation.validate()
        self.guardrails.validate()
        self.exposure.validate()
        _require(
            self.recalibration_interval_seconds > 0,
            "recalibration_interval_seconds",
            "must be positive",
        )
        return self

    @classmethod
    def from_env(cls) -> "Config":
        return cls._from_mapping(os.environ, cls())

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "Config":
        env_config = cls.from_env()
        if not config_path:
            return env_config
        file_data = _load_config_data(Path(config_path))
        return cls._from_mapping(file_data, env_config)

    @classmethod
    def _from_mapping(cls, data, base: "Config") -> "Config":
        cal = base.calibration
        calibration = replace(
            cal,
            short_term_days=_coerce_int(data.get("RISKCAL_SHORT_TERM_DAYS"), cal.short_term_days),
            medium_term_days=_coerce_int(data.get("RISKCAL_MEDIUM_TERM_DAYS"), cal.medium_term_days),
            long_term_days=_coerce_int(data.get("RISKCAL_LONG_TERM_DAYS"), cal.long_term_days),
            min_sample_size=_coerce_int(data.get("RISKCAL_MIN_SAMPLE_SIZE"), cal.min_sample_size),
            max_weight_delta=_coerce_float(data.get("RISKCAL_MAX_WEIGHT_DELTA"), cal.max_weight_delta),
            breakeven_win_rate=_coerce_float(
                data.get("RISKCAL_BREAKEVEN_WIN_RATE"),
                cal.breakeven_win_rate,
            ),
        )
        stk = base.staking
        staking = replace(
            stk,
            kelly_fraction=_coerce_float(data.get("RISKCAL_KELLY_FRACTION"), stk.kelly_fraction),
            max_stake_fraction=_coerce_float(
                data.get("RISKCAL_MAX_STAKE_FRACTION"),
                stk.max_stake_fraction,
            ),
            floor_stake_fraction=_coerce_float(
                data.get("RISKCAL_FLOOR_STAKE_FRACTION"),
                stk.floor_stake_fraction,
            ),
            unit_precision=_coerce_int(data.get("RISKCAL_UNIT_PRECISION"), stk.unit_precision),
        )
        sim = base.simulation
        seed = data.get("RISKCAL_SIMULATION_SEED")
        simulation = replace(
            sim,
            trials=_coerce_int(data.get("RISKCAL_SIMULATION_TRIALS"), sim.trials),
            ruin_threshold=_coerce_float(data.get("RISKCAL_RUIN_THRESHOLD"), sim.ruin_threshold),
            scenario_offset=_coerce_float(data.get("RISKCAL_SCENARIO_OFFSET"), sim.scenario_offset),
            seed=_coerce_optional_int(seed) if seed not in (None, "") else sim.seed,
            workers=_coerce_int(data.get("RISKCAL_SIMULATION_WORKERS"), sim.workers),
        )
        grd = base.guardrails
        guardrails = replace(
            grd,
            max_loss_streak=_coerce_int(data.get("RISKCAL_MAX_LOSS_STREAK"), grd.max_loss_streak),
            lockout_hours=_coerce_float(data.get("RISKCAL_LOCKOUT_HOURS"), grd.lockout_hours),
            max_single_bet_percent=_coerce_float(
                data.get("RISKCAL_MAX_SINGLE_BET_PERCENT"),
                grd.max_single_bet_percent,
            ),
            daily_loss_limit=_coerce_float(data.get("RISKCAL_DAILY_LOSS_LIMIT"), grd.daily_loss_limit),
            session_time_limit=_coerce_float(
                data.get("RISKCAL_SESSION_TIME_LIMIT"),
                grd.session_time_limit,
            ),
            cool_down_minutes=_coerce_float(data.get("RISKCAL_COOL_DOWN_MINUTES"), grd.cool_down_minutes),
            enable_auto_lockout=_coerce_bool(
                data.get("RISKCAL_ENABLE_AUTO_LOCKOUT"),
                grd.enable_auto_lockout,
            ),
            enable_bet_size_limits=_coerce_bool(
                data.get("RISKCAL_ENABLE_BET_SIZE_LIMITS"),
                grd.enable_bet_size_limits,
            ),
            day_timezone=data.get("RISKCAL_GUARDRAIL_TIMEZONE") or grd.day_timezone,
        )
        exp = base.exposure
        exposure = replace(
            exp,
            max_league_exposure_percent=_coerce_float(
                data.get("RISKCAL_MAX_LEAGUE_EXPOSURE_PERCENT"),
                exp.max_league_exposure_percent,
            ),
            max_single_bet_percent=_coerce_float(
                data.get("RISKCAL_MAX_SINGLE_BET_PERCENT"),
                exp.max_single_bet_percent,
            ),
            max_total_exposure_percent=_coerce_float(
                data.get("RISKCAL_MAX_TOTAL_EXPOSURE_PERCENT"),
                exp.max_total_exposure_percent,
            ),
        )
        return cls(
            calibration=calibration,
            staking=staking,
            simulation=simulation,
            guardrails=guardrails,
            exposure=exposure,
            predictions_db_path=data.get("RISKCAL_PREDICTIONS_DB", base.predictions_db_path),
            state_path=data.get("RISKCAL_STATE_PATH", base.state_path),
            weights_path=data.get("RISKCAL_WEIGHTS_PATH", base.weights_path),
            recalibration_interval_seconds=_coerce_int(
                data.get("RISKCAL_RECALIBRATION_INTERVAL"),
                base.recalibration_interval_seconds,
            ),
        ).validate()

    def to_dict(self) -> Dict[str, str]:
        flat: Dict[str, str] = {}
        for section, values in asdict(self).items():
            if isinstance(values, dict):
                for key, value in values.items():
                    flat[f"{section}.{key}"] = str(value)
            else:
                flat[section] = str(values)
        return flat
