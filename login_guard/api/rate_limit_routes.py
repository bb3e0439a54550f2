"""
Rate Limit Admin Routes - Inspect and maintain login attempt records

Endpoints for:
- Recent IP / email attempt records with a lockout summary
- Checking whether a given email (and optional IP) is currently blocked
- Removing expired attempt records

These endpoints require admin authentication (X-Admin-Token header).
"""

import asyncio
import logging
from typing import List

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from config.loader import get_config
from login_guard.services.attempt_store import AttemptKind, AttemptRecord, StoreUnavailable
from login_guard.services.login_throttle import (
    LoginThrottle,
    format_rate_limit_message,
    get_login_throttle,
)
from login_guard.utils.client_ip import LOOPBACK_FALLBACK
from login_guard.utils.error_handler import safe_error_response
from login_guard.utils.response_models import (
    AttemptRecordModel,
    CleanupResponse,
    RateLimitCheckRequest,
    RateLimitCheckResponse,
    RateLimitStatusData,
    RateLimitStatusResponse,
    RateLimitSummary,
)

logger = logging.getLogger(__name__)

rate_limit_router = APIRouter(prefix="/api/v1/admin/rate-limits", tags=["Rate Limits"])


# ==================== Dependencies ====================

def verify_admin_token(x_admin_token: str = Header(None, alias="X-Admin-Token")) -> bool:
    """Verify admin authentication token"""
    admin_token = get_config().admin_token

    if not admin_token:
        # If no admin token configured, allow access (dev mode)
        logger.warning("No ADMIN_API_TOKEN configured - rate limit admin endpoints are unprotected")
        return True

    if x_admin_token != admin_token:
        raise HTTPException(status_code=401, detail="Invalid admin token")

    return True


def get_throttle() -> LoginThrottle:
    """Process-wide throttle (overridden in tests)"""
    return get_login_throttle()


def _to_model(record: AttemptRecord) -> AttemptRecordModel:
    return AttemptRecordModel(
        key=record.key,
        attempt_count=record.attempt_count,
        first_attempt=record.first_attempt.isoformat() if record.first_attempt else None,
        last_attempt=record.last_attempt.isoformat() if record.last_attempt else None,
        is_locked=record.is_locked,
        lockout_until=record.lockout_until.isoformat() if record.lockout_until else None,
        updated_at=record.updated_at.isoformat() if record.updated_at else None,
    )


def _status_code_for(exception: Exception) -> int:
    return 503 if isinstance(exception, StoreUnavailable) else 500


# ==================== Endpoints ====================

@rate_limit_router.get("", response_model=RateLimitStatusResponse)
async def get_rate_limit_status(
    limit: int = Query(100, ge=1, le=1000),
    admin_verified: bool = Depends(verify_admin_token),
    throttle: LoginThrottle = Depends(get_throttle),
):
    """
    Most recent attempt records for both keys, newest first.

    The summary counts records and hard-locked records per collection.
    """
    store = throttle.store
    try:
        ip_records, email_records = await asyncio.gather(
            asyncio.to_thread(store.list_recent, AttemptKind.IP, limit),
            asyncio.to_thread(store.list_recent, AttemptKind.EMAIL, limit),
        )
    except Exception as e:
        raise safe_error_response(_status_code_for(e), "fetching rate limit statistics", e, logger)

    summary = RateLimitSummary(
        total_ip_attempts=len(ip_records),
        total_email_attempts=len(email_records),
        locked_ips=sum(1 for r in ip_records if r.is_locked),
        locked_emails=sum(1 for r in email_records if r.is_locked),
    )

    return RateLimitStatusResponse(
        data=RateLimitStatusData(
            ip_attempts=[_to_model(r) for r in ip_records],
            email_attempts=[_to_model(r) for r in email_records],
            summary=summary,
        )
    )


@rate_limit_router.post("/check", response_model=RateLimitCheckResponse)
async def check_rate_limit_status(
    request: RateLimitCheckRequest,
    admin_verified: bool = Depends(verify_admin_token),
    throttle: LoginThrottle = Depends(get_throttle),
):
    """
    Check whether logins for an email are currently blocked.

    Without an explicit IP the loopback key is used, so the answer reflects
    the email record (plus whatever is recorded against 127.0.0.1).
    """
    check = await throttle.check(request.ip or LOOPBACK_FALLBACK, request.email)

    if check.is_blocked:
        lockout_until = check.lockout_until
        return RateLimitCheckResponse(
            is_blocked=True,
            message=format_rate_limit_message(check, now=throttle.limiter.clock()),
            lockout_until=lockout_until.isoformat() if lockout_until else None,
        )

    return RateLimitCheckResponse(is_blocked=False, message="No rate limiting active")


@rate_limit_router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_rate_limits(
    admin_verified: bool = Depends(verify_admin_token),
    throttle: LoginThrottle = Depends(get_throttle),
):
    """
    Delete attempt records that fell out of the window and carry no running lockout.

    Safe to call from a scheduler; records that still matter are never touched.
    """
    store = throttle.store
    now = throttle.limiter.clock()
    cutoff = now - throttle.limiter.window

    try:
        removed: List[int] = await asyncio.gather(
            asyncio.to_thread(store.delete_stale, AttemptKind.IP, cutoff, now),
            asyncio.to_thread(store.delete_stale, AttemptKind.EMAIL, cutoff, now),
        )
    except Exception as e:
        raise safe_error_response(_status_code_for(e), "cleaning up login attempts", e, logger)

    logger.info(f"Rate limit cleanup removed {removed[0]} IP and {removed[1]} email records")
    return CleanupResponse(
        removed_ip_records=removed[0],
        removed_email_records=removed[1],
        message="Old login attempts cleaned up successfully",
    )
