"""
Error Handler Utility - Secure Error Response Generation

Admin endpoints expose attempt records, so their failures must not leak
store internals (table names, PostgREST filters, credentials in URLs).
Full details are logged; callers get a generic message.

Usage:
    from login_guard.utils.error_handler import safe_error_response

    try:
        records = store.list_recent(AttemptKind.IP)
    except StoreUnavailable as e:
        raise safe_error_response(503, "listing attempt records", e, logger)
"""

import logging
from fastapi import HTTPException


def safe_error_response(
    status_code: int,
    operation: str,
    exception: Exception,
    logger: logging.Logger
) -> HTTPException:
    """
    Create a safe HTTPException that doesn't expose internal details.

    Args:
        status_code: HTTP status code (e.g., 500, 503)
        operation: What failed, phrased for "while <operation>"
        exception: The caught exception
        logger: Logger instance for recording the error

    Returns:
        HTTPException with sanitized error message
    """
    logger.error(f"{operation} failed: {exception}", exc_info=True)

    if status_code == 503:
        detail = f"The attempt store is unavailable while {operation}. Please try again later."
    elif status_code >= 500:
        detail = f"An internal error occurred while {operation}. Please try again later."
    else:
        detail = f"Error while {operation}. Please check your request and try again."

    return HTTPException(status_code=status_code, detail=detail)
