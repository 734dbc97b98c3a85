"""
Durable guardrail state: lockout record, session start, last loss.

Values live in a KeyValueStore under fixed keys and timestamps are stored
as ISO-8601 strings with microsecond precision. Lockouts expire lazily:
an expired record is removed the next time it is read, and no timer runs.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from riskcal.constants import LAST_LOSS_KEY, LOCKOUT_KEY, SESSION_START_KEY
from riskcal.storage.kv import KeyValueStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LockoutState:
    is_locked: bool
    reason: str = ""
    locked_at: Optional[datetime] = None
    unlocks_at: Optional[datetime] = None
    remaining_minutes: int = 0

    @classmethod
    def unlocked(cls) -> "LockoutState":
        return cls(is_locked=False)

    def to_dict(self) -> dict:
        return {
            'is_locked': self.is_locked,
            'reason': self.reason,
            'locked_at': self.locked_at.isoformat() if self.locked_at else None,
            'unlocks_at': self.unlocks_at.isoformat() if self.unlocks_at else None,
            'remaining_minutes': self.remaining_minutes,
        }


class GuardrailStateStore:
    """Typed access to the guardrail keys of a KeyValueStore."""

    def __init__(self, store: KeyValueStore, clock: Callable[[], datetime] = _utcnow):
        self.store = store
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def _get_datetime(self, key: str) -> Optional[datetime]:
        raw = self.store.get(key)
        if not raw:
            return None
        try:
            return datetime.fromisoformat(str(raw))
        except ValueError:
            logger.warning(f"Discarding unreadable timestamp under {key!r}: {raw!r}")
            self.store.delete(key)
            return None

    # -------------------------------------------------------------------------
    # Lockout
    # -------------------------------------------------------------------------

    def trigger_lockout(self, reason: str, duration_hours: float, now: Optional[datetime] = None) -> LockoutState:
        locked_at = now or self.now()
        unlocks_at = locked_at + timedelta(hours=duration_hours)
        self.store.set(LOCKOUT_KEY, {
            'reason': reason,
            'locked_at': locked_at.isoformat(),
            'unlocks_at': unlocks_at.isoformat(),
        })
        logger.warning(f"Betting locked until {unlocks_at.isoformat()}: {reason}")
        return self.lockout_state(locked_at)

    def clear_lockout(self) -> None:
        self.store.delete(LOCKOUT_KEY)

    def lockout_state(self, now: Optional[datetime] = None) -> LockoutState:
        record = self.store.get(LOCKOUT_KEY)
        if not record:
            return LockoutState.unlocked()
        now = now or self.now()
        try:
            locked_at = datetime.fromisoformat(record['locked_at'])
            unlocks_at = datetime.fromisoformat(record['unlocks_at'])
            reason = str(record.get('reason', ''))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding malformed lockout record: {e}")
            self.store.delete(LOCKOUT_KEY)
            return LockoutState.unlocked()

        if now >= unlocks_at:
            self.store.delete(LOCKOUT_KEY)
            return LockoutState.unlocked()

        remaining = (unlocks_at - now).total_seconds() / 60
        return LockoutState(
            is_locked=True,
            reason=reason,
            locked_at=locked_at,
            unlocks_at=unlocks_at,
            remaining_minutes=int(math.ceil(remaining)),
        )

    # -------------------------------------------------------------------------
    # Losses
    # -------------------------------------------------------------------------

    def record_loss(self, at: Optional[datetime] = None) -> None:
        at = at or self.now()
        previous = self.last_loss_at()
        if previous is not None and previous > at:
            return
        self.store.set(LAST_LOSS_KEY, at.isoformat())

    def last_loss_at(self) -> Optional[datetime]:
        return self._get_datetime(LAST_LOSS_KEY)

    def minutes_since_last_loss(self, now: Optional[datetime] = None) -> Optional[float]:
        last = self.last_loss_at()
        if last is None:
            return None
        now = now or self.now()
        return max(0.0, (now - last).total_seconds() / 60)

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    def start_session(self, now: Optional[datetime] = None) -> datetime:
        """Start a session unless one is already running; returns its start."""
        existing = self._get_datetime(SESSION_START_KEY)
        if existing is not None:
            return existing
        started = now or self.now()
        self.store.set(SESSION_START_KEY, started.isoformat())
        return started

    def end_session(self) -> None:
        self.store.delete(SESSION_START_KEY)

    def session_started_at(self) -> Optional[datetime]:
        return self._get_datetime(SESSION_START_KEY)

    def session_minutes(self, now: Optional[datetime] = None) -> float:
        started = self.session_started_at()
        if started is None:
            return 0.0
        now = now or self.now()
        return max(0.0, (now - started).total_seconds() / 60)
