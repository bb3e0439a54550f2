"""
User-facing copy derived from a rate limit check.

Only blocked checks produce text. A check that is merely throttled returns
an empty message so an attacker never learns how close they are to a
lockout.
"""

import math
from datetime import datetime, timezone
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from login_guard.services.login_throttle import RateLimitCheck

HARD_LOCK_MINUTES = 30

LOCKED_MESSAGE = "Account locked due to too many attempts. Please try again in {minutes} minutes."
DISABLED_MESSAGE = "Account temporarily disabled. Please try again in {minutes} minutes."
DISABLED_ONE_MINUTE = "Account temporarily disabled. Please try again in 1 minute."
DISABLED_UNDER_A_MINUTE = "Account temporarily disabled. Please try again in less than a minute."
DISABLED_NO_TIME = "Account temporarily disabled. Please try again later."


def minutes_until(lockout_until: datetime, now: Optional[datetime] = None) -> int:
    """Whole minutes left on a lockout, rounded up"""
    now = now or datetime.now(timezone.utc)
    return math.ceil((lockout_until - now).total_seconds() / 60)


def format_rate_limit_message(check: "RateLimitCheck", now: Optional[datetime] = None) -> str:
    """
    Message to show for a blocked login.

    Args:
        check: Result of check_rate_limit
        now: Reference time (defaults to UTC now)

    Returns:
        Lockout message, or "" when the check is not blocked
    """
    if not check.is_blocked:
        return ""

    lockout_until = check.lockout_until
    if lockout_until is None:
        return DISABLED_NO_TIME

    minutes_left = minutes_until(lockout_until, now)
    if minutes_left < 1:
        return DISABLED_UNDER_A_MINUTE
    if minutes_left == 1:
        return DISABLED_ONE_MINUTE
    if minutes_left >= HARD_LOCK_MINUTES:
        return LOCKED_MESSAGE.format(minutes=minutes_left)
    return DISABLED_MESSAGE.format(minutes=minutes_left)


def get_remaining_attempts_message(check: "RateLimitCheck") -> str:
    """Informational copy based on the tighter of the two attempt budgets"""
    min_attempts = min(
        check.ip_limited.remaining_attempts,
        check.email_limited.remaining_attempts,
    )

    if min_attempts <= 0:
        return "No attempts remaining. Please wait before trying again."

    if min_attempts == 1:
        return "1 attempt remaining before temporary lockout."

    return f"{min_attempts} attempts remaining before temporary lockout."
