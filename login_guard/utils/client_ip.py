"""
Client IP extraction for attempt tracking.

Precedence:
1. CF-Connecting-IP  (Cloudflare)
2. X-Real-IP         (nginx and most reverse proxies)
3. X-Forwarded-For   (first hop in the chain)
4. 127.0.0.1         (local development fallback)

Values are not validated. Whatever the proxy sent becomes the attempt key,
so a malformed header still gets throttled as its own opaque key.
"""

from typing import Mapping, Optional

LOOPBACK_FALLBACK = "127.0.0.1"


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup that works for dicts and Starlette Headers"""
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    if value is None and isinstance(headers, dict):
        lowered = name.lower()
        for key, candidate in headers.items():
            if key.lower() == lowered:
                value = candidate
                break
    return value or None


def extract_client_ip(headers: Mapping[str, str]) -> str:
    """Best-effort client IP from request headers.

    Args:
        headers: Request headers (dict, Starlette Headers, or any mapping)

    Returns:
        The client IP string, or 127.0.0.1 if no proxy header is present
    """
    cf_connecting_ip = _header(headers, "CF-Connecting-IP")
    if cf_connecting_ip:
        return cf_connecting_ip

    real_ip = _header(headers, "X-Real-IP")
    if real_ip:
        return real_ip

    forwarded_for = _header(headers, "X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    return LOOPBACK_FALLBACK
