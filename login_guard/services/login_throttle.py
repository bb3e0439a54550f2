"""
Dual-key login throttle to slow down and stop brute-force attacks.

Failed attempts are tracked independently per client IP and per target
email. Each key is evaluated by the lockout policy and the two verdicts are
merged: a request is blocked if either key is locked out, and the injected
delay is the larger of the two.

Login flow:
    ip = extract_client_ip(request.headers)
    check = await check_rate_limit(ip, email)
    if check.is_blocked:
        return 429, format_rate_limit_message(check)
    await asyncio.sleep(check.max_delay_ms / 1000)
    if credentials_ok:
        await reset_login_attempts(ip, email)
    else:
        await record_failed_attempt(ip, email)

Store failures never reach the caller: checks fail open, recorder and
resetter writes are logged and dropped. Corrective writes discovered during
a check (new lockout, cleared lockout, expired record) run as background
tasks; RateLimiter.drain() awaits them.

Recording is read-then-write per key, not an atomic increment. Two
concurrent failures for one key can be counted once.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Set

from login_guard.services.attempt_store import (
    AttemptKind,
    AttemptRecord,
    AttemptStore,
    get_store,
)
from login_guard.services.lockout_policy import (
    WINDOW,
    PolicyDecision,
    StoreAction,
    evaluate,
    has_expired,
)
from login_guard.services.rate_limit_messages import (
    format_rate_limit_message,
    get_remaining_attempts_message,
)
from login_guard.utils.client_ip import extract_client_ip
from login_guard.utils.structured_logger import log_with_context, mask_email

logger = logging.getLogger(__name__)

# Remaining-attempt budgets reported for keys with no record (and on fail-open)
DEFAULT_IP_ATTEMPTS = 5
DEFAULT_EMAIL_ATTEMPTS = 3

Clock = Callable[[], datetime]

__all__ = [
    "RateLimitResult",
    "RateLimitCheck",
    "RateLimiter",
    "AttemptRecorder",
    "AttemptResetter",
    "LoginThrottle",
    "get_login_throttle",
    "set_login_throttle",
    "extract_client_ip",
    "check_rate_limit",
    "record_failed_attempt",
    "reset_login_attempts",
    "format_rate_limit_message",
    "get_remaining_attempts_message",
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _log_key(kind: AttemptKind, key: str) -> str:
    return mask_email(key) if kind == AttemptKind.EMAIL else key


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class RateLimitResult:
    """Verdict for one key (IP or email)"""
    is_limited: bool = False
    remaining_attempts: int = 0
    lockout_until: Optional[datetime] = None
    next_attempt_allowed: Optional[datetime] = None
    delay_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_limited": self.is_limited,
            "remaining_attempts": self.remaining_attempts,
            "lockout_until": _iso(self.lockout_until),
            "next_attempt_allowed": _iso(self.next_attempt_allowed),
            "delay_ms": self.delay_ms,
        }


@dataclass
class RateLimitCheck:
    """Aggregate verdict for an (ip, email) pair"""
    ip_limited: RateLimitResult = field(default_factory=RateLimitResult)
    email_limited: RateLimitResult = field(default_factory=RateLimitResult)
    is_blocked: bool = False
    max_delay_ms: int = 0

    @classmethod
    def combine(cls, ip_limited: RateLimitResult, email_limited: RateLimitResult) -> "RateLimitCheck":
        return cls(
            ip_limited=ip_limited,
            email_limited=email_limited,
            is_blocked=ip_limited.is_limited or email_limited.is_limited,
            max_delay_ms=max(ip_limited.delay_ms, email_limited.delay_ms),
        )

    @classmethod
    def fail_open(cls) -> "RateLimitCheck":
        """Decision used when the store cannot be read"""
        return cls(
            ip_limited=RateLimitResult(remaining_attempts=DEFAULT_IP_ATTEMPTS),
            email_limited=RateLimitResult(remaining_attempts=DEFAULT_EMAIL_ATTEMPTS),
            is_blocked=False,
            max_delay_ms=0,
        )

    @property
    def lockout_until(self) -> Optional[datetime]:
        """Later lockout of the limited keys, if any"""
        candidates = [
            result.lockout_until
            for result in (self.ip_limited, self.email_limited)
            if result.is_limited and result.lockout_until
        ]
        return max(candidates) if candidates else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ip_limited": self.ip_limited.to_dict(),
            "email_limited": self.email_limited.to_dict(),
            "is_blocked": self.is_blocked,
            "max_delay_ms": self.max_delay_ms,
            "lockout_until": _iso(self.lockout_until),
        }


class RateLimiter:
    """Evaluates both attempt records and merges them into one decision"""

    def __init__(
        self,
        store: AttemptStore,
        clock: Optional[Clock] = None,
        window: timedelta = WINDOW,
        background_writes: bool = True,
    ):
        """
        Args:
            store: Attempt store holding both collections
            clock: Returns the current aware datetime (defaults to UTC now)
            window: Sliding window for attempt records
            background_writes: Run corrective writes as fire-and-forget tasks.
                When False they are awaited before check() returns.
        """
        self.store = store
        self.clock = clock or utcnow
        self.window = window
        self.background_writes = background_writes
        self._pending: Set[asyncio.Task] = set()

    async def check(self, ip: str, email: str) -> RateLimitCheck:
        """Decide whether a login attempt for (ip, email) may proceed"""
        try:
            now = self.clock()
            ip_record, email_record = await asyncio.gather(
                asyncio.to_thread(self.store.get, AttemptKind.IP, ip),
                asyncio.to_thread(self.store.get, AttemptKind.EMAIL, email),
            )

            ip_decision = evaluate(ip_record, now, AttemptKind.IP, self.window)
            email_decision = evaluate(email_record, now, AttemptKind.EMAIL, self.window)

            await self._apply(AttemptKind.IP, ip, ip_decision, now)
            await self._apply(AttemptKind.EMAIL, email, email_decision, now)

            return RateLimitCheck.combine(
                self._to_result(ip_record, ip_decision, DEFAULT_IP_ATTEMPTS),
                self._to_result(email_record, email_decision, DEFAULT_EMAIL_ATTEMPTS),
            )
        except Exception as e:
            # Fail open: availability of login wins over enforcement during outages
            logger.error(f"Rate limit check failed, allowing request: {e}", exc_info=True)
            return RateLimitCheck.fail_open()

    def _to_result(
        self,
        record: Optional[AttemptRecord],
        decision: PolicyDecision,
        default_attempts: int,
    ) -> RateLimitResult:
        if decision.is_limited:
            return RateLimitResult(
                is_limited=True,
                remaining_attempts=0,
                lockout_until=decision.lockout_until,
                next_attempt_allowed=decision.lockout_until,
            )
        if record is not None and decision.action != StoreAction.DELETE:
            # Known offender: never hint how many tries are left
            return RateLimitResult(remaining_attempts=0, delay_ms=decision.delay_ms)
        return RateLimitResult(remaining_attempts=default_attempts)

    async def _apply(self, kind: AttemptKind, key: str, decision: PolicyDecision, now: datetime) -> None:
        """Issue the corrective write a decision calls for"""
        if decision.action == StoreAction.NONE:
            return

        if decision.action == StoreAction.DELETE:
            description = f"reset of expired {kind.value} record"
            operation = lambda: self.store.delete(kind, key)
        elif decision.action == StoreAction.SET_LOCKOUT:
            log_with_context(
                logger,
                logging.WARNING,
                f"{decision.tier.value.capitalize()} lockout applied to {kind.value} {_log_key(kind, key)}",
                key_kind=kind.value,
                tier=decision.tier.value,
                lockout_until=decision.lockout_until.isoformat(),
            )
            description = f"{kind.value} lockout write"
            operation = lambda: self.store.update_lockout(
                kind, key, decision.is_locked, decision.lockout_until, now
            )
        else:
            description = f"clear of stale {kind.value} lockout"
            operation = lambda: self.store.update_lockout(kind, key, False, None, now)

        if self.background_writes:
            task = asyncio.create_task(self._write(description, operation))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        else:
            await self._write(description, operation)

    async def _write(self, description: str, operation: Callable[[], None]) -> None:
        try:
            await asyncio.to_thread(operation)
        except Exception as e:
            logger.error(f"Background {description} failed: {e}", exc_info=True)

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for every outstanding background write"""
        while self._pending:
            await asyncio.gather(*list(self._pending))


class AttemptRecorder:
    """Counts a failed authentication against both the IP and the email"""

    def __init__(self, store: AttemptStore, clock: Optional[Clock] = None, window: timedelta = WINDOW):
        self.store = store
        self.clock = clock or utcnow
        self.window = window

    async def record(self, ip: str, email: str) -> None:
        # Independent: one key failing must not stop the other
        await asyncio.gather(
            self._record_one(AttemptKind.IP, ip),
            self._record_one(AttemptKind.EMAIL, email),
        )

    async def _record_one(self, kind: AttemptKind, key: str) -> None:
        try:
            record = await asyncio.to_thread(self.increment, kind, key)
            logger.info(
                f"Failed login recorded for {kind.value} {_log_key(kind, key)} "
                f"(attempt {record.attempt_count})"
            )
        except Exception as e:
            logger.error(f"Failed to record login attempt for {kind.value}: {e}", exc_info=True)

    def increment(self, kind: AttemptKind, key: str) -> AttemptRecord:
        """Read-then-write increment; expired records start over at 1"""
        now = self.clock()
        existing = self.store.get(kind, key)
        if existing is None or has_expired(existing, now, self.window):
            record = AttemptRecord.first_failure(key, now)
        else:
            record = existing.with_failure(now)
        self.store.upsert(kind, record)
        return record


class AttemptResetter:
    """Clears both records after a successful authentication"""

    def __init__(self, store: AttemptStore):
        self.store = store

    async def reset(self, ip: str, email: str) -> None:
        await asyncio.gather(
            self._reset_one(AttemptKind.IP, ip),
            self._reset_one(AttemptKind.EMAIL, email),
        )

    async def _reset_one(self, kind: AttemptKind, key: str) -> None:
        try:
            await asyncio.to_thread(self.store.delete, kind, key)
        except Exception as e:
            logger.error(f"Failed to reset login attempts for {kind.value}: {e}", exc_info=True)


class LoginThrottle:
    """Limiter, recorder and resetter sharing one store and clock"""

    def __init__(
        self,
        store: AttemptStore,
        clock: Optional[Clock] = None,
        window: timedelta = WINDOW,
        background_writes: bool = True,
    ):
        self.store = store
        self.limiter = RateLimiter(store, clock=clock, window=window, background_writes=background_writes)
        self.recorder = AttemptRecorder(store, clock=clock, window=window)
        self.resetter = AttemptResetter(store)

    async def check(self, ip: str, email: str) -> RateLimitCheck:
        return await self.limiter.check(ip, email)

    async def record_failure(self, ip: str, email: str) -> None:
        await self.recorder.record(ip, email)

    async def reset(self, ip: str, email: str) -> None:
        await self.resetter.reset(ip, email)

    async def drain(self) -> None:
        await self.limiter.drain()


# Global throttle instance
_throttle: Optional[LoginThrottle] = None


def get_login_throttle() -> LoginThrottle:
    """Get or create the process-wide throttle over the configured store"""
    global _throttle
    if _throttle is None:
        from config.loader import get_config
        window = timedelta(minutes=get_config().window_minutes)
        _throttle = LoginThrottle(get_store(), window=window)
    return _throttle


def set_login_throttle(throttle: Optional[LoginThrottle]) -> None:
    """Replace the process-wide throttle (None resets to lazy creation)"""
    global _throttle
    _throttle = throttle


def _resolve_throttle(operation: str) -> Optional[LoginThrottle]:
    """Process-wide throttle, or None if config or store construction fails"""
    try:
        return get_login_throttle()
    except Exception as e:
        logger.error(f"Login throttle unavailable, skipping {operation}: {e}", exc_info=True)
        return None


async def check_rate_limit(ip: str, email: str) -> RateLimitCheck:
    """Check both keys before verifying credentials. Never raises."""
    throttle = _resolve_throttle("rate limit check")
    if throttle is None:
        return RateLimitCheck.fail_open()
    return await throttle.check(ip, email)


async def record_failed_attempt(ip: str, email: str) -> None:
    """Record a failed login for both keys. Never raises."""
    throttle = _resolve_throttle("failed attempt recording")
    if throttle is not None:
        await throttle.record_failure(ip, email)


async def reset_login_attempts(ip: str, email: str) -> None:
    """Forget both keys after a successful login. Never raises."""
    throttle = _resolve_throttle("login attempt reset")
    if throttle is not None:
        await throttle.reset(ip, email)
