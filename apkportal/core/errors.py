"""
Classification of errors raised by the Supabase SDK.

PostgREST raises APIError with a Postgres/PostgREST `code`, gotrue raises
AuthApiError with only a message, and connectivity failures surface as httpx
transport errors (sometimes re-wrapped, so messages are matched too).
"""

from typing import Optional

import httpx

NETWORK_ERROR_MARKERS = (
    "failed to fetch",
    "networkerror",
    "network error",
    "connection refused",
    "connection reset",
    "connection error",
    "name or service not known",
    "temporary failure in name resolution",
    "nodename nor servname",
    "timed out",
    "all connection attempts failed",
    "server disconnected",
)

MISSING_RELATION_CODE = "42P01"
MISSING_FUNCTION_CODE = "42883"
UNIQUE_VIOLATION_CODE = "23505"

# Rejections of the data itself; retrying the same row fails the same way
PERMANENT_ERROR_CODES = (
    "22P02",  # invalid_text_representation, e.g. a malformed uuid
    "23502",  # not_null_violation
    "23503",  # foreign_key_violation
    "23514",  # check_violation
)


def error_message(exc: BaseException) -> str:
    message = getattr(exc, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(exc)


def error_code(exc: BaseException) -> Optional[str]:
    code = getattr(exc, "code", None)
    if code is None:
        return None
    return str(code)


def is_network_error(exc: BaseException) -> bool:
    if isinstance(exc, (httpx.TransportError, ConnectionError, TimeoutError)):
        return True
    cause = exc.__cause__ or exc.__context__
    if cause is not None and cause is not exc and isinstance(cause, (httpx.TransportError, ConnectionError)):
        return True
    message = error_message(exc).lower()
    return any(marker in message for marker in NETWORK_ERROR_MARKERS)


def is_missing_relation(exc: BaseException) -> bool:
    if error_code(exc) == MISSING_RELATION_CODE:
        return True
    message = error_message(exc).lower()
    return "relation" in message and "does not exist" in message


def is_missing_function(exc: BaseException) -> bool:
    if error_code(exc) == MISSING_FUNCTION_CODE:
        return True
    message = error_message(exc).lower()
    return "function" in message and "does not exist" in message


def is_already_registered(exc: BaseException) -> bool:
    message = error_message(exc).lower()
    return "already registered" in message or "already exists" in message


def is_invalid_credentials(exc: BaseException) -> bool:
    message = error_message(exc).lower()
    return "invalid login credentials" in message or "invalid credentials" in message


def is_email_not_confirmed(exc: BaseException) -> bool:
    return "email not confirmed" in error_message(exc).lower()


def is_unique_violation(exc: BaseException) -> bool:
    return error_code(exc) == UNIQUE_VIOLATION_CODE


def is_permanent_error(exc: BaseException) -> bool:
    """True for errors where the backend answered and rejected the row"""
    return error_code(exc) in PERMANENT_ERROR_CODES


def is_already_exists(exc: BaseException) -> bool:
    """Storage refused to replace an existing object"""
    if isinstance(exc, FileExistsError):
        return True
    message = error_message(exc).lower()
    return "already exists" in message or "duplicate" in message
