"""
Guardrail Evaluator
===================
Behavioral limits checked before a stake is accepted.

Guardrails, always evaluated in this order and never short-circuited:
1. loss_streak   - consecutive settled losses     -> block (and lockout)
2. max_bet       - stake as % of bankroll          -> block
3. daily_loss    - today's losing stakes           -> block
4. session_time  - minutes in the current session  -> warn only
5. cool_down     - minutes since the last loss     -> block

A block is a decision value, not an exception: callers branch on
``GuardrailDecision.blocked``.

Usage:
    from riskcal.guardrails import GuardrailEngine, GuardrailStateStore
    from riskcal.storage import JsonFileKeyValueStore

    engine = GuardrailEngine(GuardrailStateStore(JsonFileKeyValueStore(path)))
    decision = engine.check_stake(bets, bankroll=1000, proposed_stake=40)
    if decision.blocked:
        print(decision.reason)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Iterable, List, Optional

from riskcal.config import GuardrailsConfig
from riskcal.constants import (
    ACTION_BLOCK,
    ACTION_WARN,
    GUARDRAIL_COOL_DOWN,
    GUARDRAIL_DAILY_LOSS,
    GUARDRAIL_LOSS_STREAK,
    GUARDRAIL_MAX_BET,
    GUARDRAIL_SESSION_TIME,
)
from riskcal.exceptions import ConfigurationError
from riskcal.guardrails.state import GuardrailStateStore, LockoutState
from riskcal.ops.metrics import MetricsRecorder, get_metrics_recorder
from riskcal.schema import BetRecord, Outcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GuardrailResult:
    id: str
    enabled: bool
    threshold: float
    current_value: float
    action: str  # warn or block, fixed per guardrail
    is_triggered: bool
    description: str = ""

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'enabled': self.enabled,
            'threshold': self.threshold,
            'current_value': self.current_value,
            'action': self.action,
            'is_triggered': self.is_triggered,
            'description': self.description,
        }


@dataclass(frozen=True)
class GuardrailDecision:
    blocked: bool
    reason: str = ""
    results: List[GuardrailResult] = field(default_factory=list)
    lockout: LockoutState = field(default_factory=LockoutState.unlocked)

    @property
    def warnings(self) -> List[GuardrailResult]:
        return [r for r in self.results if r.enabled and r.is_triggered and r.action == ACTION_WARN]


def current_loss_streak(bets: Iterable[BetRecord]) -> int:
    """Consecutive losses counting back from the most recently settled bet.

    Only won/lost bets count; pushes and pending bets are skipped.
    """
    settled = [b for b in bets if b.outcome.is_settled]
    settled.sort(key=lambda b: b.settled_at or b.placed_at, reverse=True)
    streak = 0
    for bet in settled:
        if bet.outcome is not Outcome.LOST:
            break
        streak += 1
    return streak


def latest_loss_at(bets: Iterable[BetRecord]) -> Optional[datetime]:
    """Settlement time of the most recent lost bet, or None."""
    stamps = [b.settled_at for b in bets if b.outcome is Outcome.LOST and b.settled_at is not None]
    return max(stamps) if stamps else None


def _same_day(stamp: datetime, now: datetime, zone: Optional[tzinfo] = None) -> bool:
    if stamp.tzinfo is not None and now.tzinfo is not None:
        zone = zone or now.tzinfo
        stamp = stamp.astimezone(zone)
        now = now.astimezone(zone)
    return stamp.date() == now.date()


def todays_losses(bets: Iterable[BetRecord], now: datetime, zone: Optional[tzinfo] = None) -> float:
    """Sum of stakes lost on bets placed on ``now``'s calendar day.

    The day is taken in ``zone`` when given, otherwise in ``now``'s own zone.
    """
    return sum(b.stake for b in bets if b.outcome is Outcome.LOST and _same_day(b.placed_at, now, zone))


def evaluate_guardrails(
    bets: Iterable[BetRecord],
    bankroll: float,
    proposed_stake: Optional[float],
    session_minutes: float,
    minutes_since_last_loss: Optional[float],
    now: datetime,
    config: Optional[GuardrailsConfig] = None,
) -> List[GuardrailResult]:
    """
    Evaluate every guardrail against already-fetched history.

    Args:
        bets: Recent bet history
        bankroll: Current bankroll (> 0)
        proposed_stake: Stake about to be placed, or None for a status check
        session_minutes: Elapsed minutes in the current session
        minutes_since_last_loss: None when no loss has been recorded
        now: Evaluation time; "today" is its calendar day in config.day_timezone
        config: Thresholds

    Returns:
        One GuardrailResult per guardrail, in fixed order
    """
    config = config or GuardrailsConfig()
    if bankroll is None or not bankroll > 0:
        raise ConfigurationError("bankroll", f"must be positive, got {bankroll}")
    if proposed_stake is not None and proposed_stake < 0:
        raise ConfigurationError("proposed_stake", f"must not be negative, got {proposed_stake}")

    bets = list(bets)
    results = []

    streak = current_loss_streak(bets)
    results.append(GuardrailResult(
        id=GUARDRAIL_LOSS_STREAK,
        enabled=config.enable_auto_lockout,
        threshold=config.max_loss_streak,
        current_value=streak,
        action=ACTION_BLOCK,
        is_triggered=streak >= config.max_loss_streak,
        description=f"Lock betting after {config.max_loss_streak} consecutive losses",
    ))

    bet_percent = (proposed_stake / bankroll) * 100 if proposed_stake else 0.0
    results.append(GuardrailResult(
        id=GUARDRAIL_MAX_BET,
        enabled=config.enable_bet_size_limits,
        threshold=config.max_single_bet_percent,
        current_value=round(bet_percent, 4),
        action=ACTION_BLOCK,
        is_triggered=bet_percent > config.max_single_bet_percent,
        description=f"No single bet above {config.max_single_bet_percent:g}% of bankroll",
    ))

    lost_today = todays_losses(bets, now, config.zone())
    results.append(GuardrailResult(
        id=GUARDRAIL_DAILY_LOSS,
        enabled=True,
        threshold=config.daily_loss_limit,
        current_value=round(lost_today, 2),
        action=ACTION_BLOCK,
        is_triggered=lost_today >= config.daily_loss_limit,
        description=f"Stop after losing ${config.daily_loss_limit:g} in a day",
    ))

    results.append(GuardrailResult(
        id=GUARDRAIL_SESSION_TIME,
        enabled=True,
        threshold=config.session_time_limit,
        current_value=round(session_minutes, 2),
        action=ACTION_WARN,
        is_triggered=session_minutes >= config.session_time_limit,
        description=f"Take a break after {config.session_time_limit:g} minutes",
    ))

    in_cool_down = (
        minutes_since_last_loss is not None
        and minutes_since_last_loss < config.cool_down_minutes
    )
    results.append(GuardrailResult(
        id=GUARDRAIL_COOL_DOWN,
        enabled=config.cool_down_minutes > 0,
        threshold=config.cool_down_minutes,
        current_value=round(minutes_since_last_loss, 2) if minutes_since_last_loss is not None else -1.0,
        action=ACTION_BLOCK,
        is_triggered=in_cool_down,
        description=f"Wait {config.cool_down_minutes:g} minutes after a loss",
    ))

    return results


def should_block(results: Iterable[GuardrailResult]) -> GuardrailDecision:
    """OR of every enabled, triggered guardrail whose action is block."""
    results = list(results)
    blocking = [r for r in results if r.enabled and r.is_triggered and r.action == ACTION_BLOCK]
    if not blocking:
        return GuardrailDecision(blocked=False, results=results)
    return GuardrailDecision(
        blocked=True,
        reason="; ".join(r.description for r in blocking),
        results=results,
    )


class GuardrailEngine:
    """
    Stateful stake-approval gate.

    Wraps the pure evaluator with the durable state it needs: the session
    clock, the last loss, and the lockout a loss streak creates. A lockout
    blocks every stake until it expires or is cleared.
    """

    def __init__(
        self,
        state: GuardrailStateStore,
        config: Optional[GuardrailsConfig] = None,
        metrics: Optional[MetricsRecorder] = None,
    ):
        self.state = state
        self.config = (config or GuardrailsConfig()).validate()
        self.metrics = metrics or get_metrics_recorder()

    def evaluate(
        self,
        bets: Iterable[BetRecord],
        bankroll: float,
        proposed_stake: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> List[GuardrailResult]:
        now = now or self.state.now()
        return evaluate_guardrails(
            bets,
            bankroll,
            proposed_stake,
            session_minutes=self.state.session_minutes(now),
            minutes_since_last_loss=self.state.minutes_since_last_loss(now),
            now=now,
            config=self.config,
        )

    def check_stake(
        self,
        bets: Iterable[BetRecord],
        bankroll: float,
        proposed_stake: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> GuardrailDecision:
        """Evaluate guardrails for a proposed stake and apply lockout rules.

        Losses in ``bets`` feed the cool-down clock, so callers do not have
        to report every settlement through ``record_settlement`` first.
        """
        now = now or self.state.now()
        bets = list(bets)
        self.state.start_session(now)
        last_loss = latest_loss_at(bets)
        if last_loss is not None:
            self.state.record_loss(last_loss)

        results = self.evaluate(bets, bankroll, proposed_stake, now)
        decision = should_block(results)
        lockout = self.state.lockout_state(now)

        streak = next(r for r in results if r.id == GUARDRAIL_LOSS_STREAK)
        if streak.enabled and streak.is_triggered and not lockout.is_locked:
            lockout = self.state.trigger_lockout(
                f"{int(streak.current_value)} consecutive losses",
                self.config.lockout_hours,
                now,
            )
            self.metrics.increment("guardrails.lockouts")

        reasons = [decision.reason] if decision.reason else []
        if lockout.is_locked:
            reasons.insert(0, f"Locked out for {lockout.remaining_minutes} more minutes ({lockout.reason})")

        blocked = decision.blocked or lockout.is_locked
        if blocked:
            self.metrics.increment("guardrails.blocked")
            logger.warning(f"Stake blocked: {'; '.join(reasons)}")

        return GuardrailDecision(
            blocked=blocked,
            reason="; ".join(reasons),
            results=results,
            lockout=lockout,
        )

    def record_settlement(self, bet: BetRecord) -> None:
        """Feed a settled bet back so the cool-down clock sees losses."""
        if bet.outcome is Outcome.LOST:
            self.state.record_loss(bet.settled_at or self.state.now())

    def record_loss(self, at: Optional[datetime] = None) -> None:
        self.state.record_loss(at)

    def start_session(self, now: Optional[datetime] = None) -> datetime:
        return self.state.start_session(now)

    def end_session(self) -> None:
        self.state.end_session()

    def trigger_lockout(self, reason: str, now: Optional[datetime] = None) -> LockoutState:
        self.metrics.increment("guardrails.lockouts")
        return self.state.trigger_lockout(reason, self.config.lockout_hours, now)

    def clear_lockout(self) -> None:
        self.state.clear_lockout()

    def lockout_state(self, now: Optional[datetime] = None) -> LockoutState:
        return self.state.lockout_state(now)
