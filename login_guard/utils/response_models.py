"""
Response Models for the rate limit admin API.

Every endpoint answers with the standard envelope:
- success: boolean indicating operation success
- data: the actual response payload
- message: optional message for context
- error: error details when success=False
"""

from typing import Optional, List
from pydantic import BaseModel, Field


class AttemptRecordModel(BaseModel):
    """One row of login_attempts_ip / login_attempts_email."""
    key: str
    attempt_count: int
    first_attempt: Optional[str] = None
    last_attempt: Optional[str] = None
    is_locked: bool = False
    lockout_until: Optional[str] = None
    updated_at: Optional[str] = None


class RateLimitSummary(BaseModel):
    total_ip_attempts: int = 0
    total_email_attempts: int = 0
    locked_ips: int = 0
    locked_emails: int = 0


class RateLimitStatusData(BaseModel):
    ip_attempts: List[AttemptRecordModel] = Field(default_factory=list)
    email_attempts: List[AttemptRecordModel] = Field(default_factory=list)
    summary: RateLimitSummary = Field(default_factory=RateLimitSummary)


class RateLimitStatusResponse(BaseModel):
    success: bool = True
    data: RateLimitStatusData


class RateLimitCheckRequest(BaseModel):
    """Ask whether an email (optionally from a given IP) is currently blocked."""
    email: str = Field(..., min_length=1, max_length=320)
    ip: Optional[str] = Field(None, max_length=64)


class RateLimitCheckResponse(BaseModel):
    is_blocked: bool
    message: str
    lockout_until: Optional[str] = None


class CleanupResponse(BaseModel):
    success: bool = True
    removed_ip_records: int = 0
    removed_email_records: int = 0
    message: str


def error_response(error: str, detail: str = None, code: str = None) -> dict:
    """Create a standard error response dict."""
    response = {"success": False, "error": error}
    if detail:
        response["detail"] = detail
    if code:
        response["code"] = code
    return response
