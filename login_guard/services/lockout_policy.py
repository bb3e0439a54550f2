"""
Lockout Policy - maps an attempt record to a throttling decision

Pure functions, no I/O. The rhythm is deliberate and must not be smoothed
into a generic backoff:

    failures  tier   lockout    is_locked
    1, 2      none   -          false      (delay only)
    3         soft   1 minute   false
    4         none   -          false      (delay only)
    5         soft   5 minutes  false
    6+        hard   30 minutes true

Delays for non-blocking attempts (count >= 2):
    ip     min((count - 1) * 1000, 3000) ms
    email  min((count - 1) * 2000, 5000) ms

Records whose last_attempt is older than the 15 minute window are treated
as absent. An active lockout is honoured even past the window, so the
30 minute hard lock is not cut short at 15 minutes.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from login_guard.services.attempt_store import AttemptKind, AttemptRecord

WINDOW = timedelta(minutes=15)

SOFT_LOCKOUTS = {
    3: timedelta(minutes=1),
    5: timedelta(minutes=5),
}
HARD_LOCK_THRESHOLD = 6
HARD_LOCK_DURATION = timedelta(minutes=30)

# (ms per failure beyond the first, cap in ms)
DELAY_RULES = {
    AttemptKind.IP: (1000, 3000),
    AttemptKind.EMAIL: (2000, 5000),
}


class LockoutTier(str, Enum):
    """Outcome tier for a single key"""
    NONE = "none"
    SOFT = "soft"
    HARD = "hard"


class StoreAction(str, Enum):
    """Corrective write the caller should issue for this record"""
    NONE = "none"
    DELETE = "delete"
    SET_LOCKOUT = "set_lockout"
    CLEAR_LOCKOUT = "clear_lockout"


@dataclass(frozen=True)
class PolicyDecision:
    """Result of evaluating one attempt record"""
    tier: LockoutTier = LockoutTier.NONE
    lockout_until: Optional[datetime] = None
    is_locked: bool = False
    delay_ms: int = 0
    action: StoreAction = StoreAction.NONE

    @property
    def is_limited(self) -> bool:
        return self.tier != LockoutTier.NONE


def lockout_duration(attempt_count: int) -> Optional[timedelta]:
    """Lockout owed for a failure count, or None for non-blocking counts"""
    if attempt_count >= HARD_LOCK_THRESHOLD:
        return HARD_LOCK_DURATION
    return SOFT_LOCKOUTS.get(attempt_count)


def throttle_delay_ms(attempt_count: int, kind: AttemptKind) -> int:
    """Deliberate latency for a non-blocked attempt"""
    if attempt_count < 2:
        return 0
    step, cap = DELAY_RULES[kind]
    return min((attempt_count - 1) * step, cap)


def has_expired(record: AttemptRecord, now: datetime, window: timedelta = WINDOW) -> bool:
    """True when the record should be treated as absent (and deleted).

    That is the case once its hard lock has run out, or once it has fallen
    out of the sliding window with no lockout still running.
    """
    if record.lockout_until is not None and now < record.lockout_until:
        return False
    if record.is_locked and record.lockout_until is not None:
        return True
    return now - record.last_attempt > window


def _lockout_served(record: AttemptRecord) -> bool:
    """Whether the lockout for the most recent failure was already applied.

    Lockout writes (set and clear) stamp updated_at, while a recorded
    failure sets updated_at == last_attempt. So a lockout_until or an
    updated_at later than last_attempt means this count has had its lockout,
    and the first evaluation after the failure applies it however late
    that evaluation comes.
    """
    if record.lockout_until is not None and record.lockout_until > record.last_attempt:
        return True
    return record.updated_at is not None and record.updated_at > record.last_attempt


def evaluate(
    record: Optional[AttemptRecord],
    now: datetime,
    kind: AttemptKind,
    window: timedelta = WINDOW,
) -> PolicyDecision:
    """Evaluate one IP or email record at time `now`.

    Args:
        record: Stored attempt record, or None if there is none
        now: Current time (timezone-aware, same zone as the record)
        kind: Which collection the record came from (selects the delay rule)
        window: Sliding window anchored at last_attempt

    Returns:
        PolicyDecision with the tier, lockout and the corrective store action
    """
    if record is None:
        return PolicyDecision()

    lockout_until = record.lockout_until

    if lockout_until is not None and now < lockout_until:
        tier = LockoutTier.HARD if record.is_locked else LockoutTier.SOFT
        return PolicyDecision(tier=tier, lockout_until=lockout_until, is_locked=record.is_locked)

    if has_expired(record, now, window):
        return PolicyDecision(action=StoreAction.DELETE)

    count = record.attempt_count
    duration = lockout_duration(count)
    if duration is not None and not _lockout_served(record):
        is_hard = count >= HARD_LOCK_THRESHOLD
        return PolicyDecision(
            tier=LockoutTier.HARD if is_hard else LockoutTier.SOFT,
            lockout_until=now + duration,
            is_locked=is_hard,
            action=StoreAction.SET_LOCKOUT,
        )

    stale_lockout = lockout_until is not None or record.is_locked
    return PolicyDecision(
        delay_ms=throttle_delay_ms(count, kind),
        action=StoreAction.CLEAR_LOCKOUT if stale_lockout else StoreAction.NONE,
    )
