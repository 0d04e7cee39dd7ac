"""
Secure logging utilities to prevent log injection and sensitive data exposure.

This module provides functions to sanitize data before logging, preventing:
- Log injection attacks (CWE-117, CWE-93)
- Sensitive data exposure in logs (tokens, passwords, email addresses)
- Provider error text leaking to end users

Security References:
- OWASP Logging Cheat Sheet: https://cheatsheetseries.owasp.org/cheatsheets/Logging_Cheat_Sheet.html

For Developers:
    Deep-link URLs are attacker-controlled. Anything derived from one
    (host, path, parameter names) must go through sanitize_for_log()
    before it is placed in a log record, and only in development builds.
"""

import re
from typing import Any

# Maximum length for logged user input to prevent log flooding
MAX_LOG_INPUT_LENGTH = 200

REDACTED = "***REDACTED***"

# Sensitive field name fragments that should never be logged
SENSITIVE_FIELDS = {
    "email",
    "password",
    "secret",
    "token",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "credentials",
}

# User-friendly messages for common identity provider error patterns.
# Keys are matched exactly first, then as substrings, then against error codes.
ERROR_MESSAGES: dict[str, str] = {
    # Network errors
    "Failed to fetch": "Unable to connect to the server. Please check your internet connection.",
    "network_error": "Unable to connect to the server. Please check your internet connection.",
    "NetworkError": "Network connection lost. Please try again.",
    # Auth errors
    "Invalid login credentials": "Invalid email or password. Please try again.",
    "Email not confirmed": "Please confirm your email address before signing in.",
    "User already registered": "An account with this email already exists.",
    "Password should be at least 6 characters": "Password must be at least 6 characters long.",
    # Database errors
    "PGRST": "Database error occurred. Please try again later.",
    "permission denied": "You do not have permission to perform this action.",
    # Rate limiting
    "rate_limit_exceeded": "Too many attempts. Please wait a moment and try again.",
}

DEFAULT_ERROR_MESSAGE = "An unexpected error occurred. Please try again."


def sanitize_for_log(value: Any, max_length: int = MAX_LOG_INPUT_LENGTH) -> str:
    """
    Sanitize a value for safe logging by removing CRLF and limiting length.

    Prevents log injection attacks by removing carriage return, line feed, and
    other control characters that could be used to inject false log entries.

    Args:
        value: Value to sanitize (will be converted to string)
        max_length: Maximum length of output (default: 200)

    Returns:
        Sanitized string safe for logging

    Example:
        >>> sanitize_for_log("todoapp://auth/callback\\n[FAKE] ok")
        'todoapp://auth/callback [FAKE] ok'
    """
    text = str(value)

    # Remove CRLF characters to prevent log injection
    text = text.replace("\r", " ").replace("\n", " ").replace("\t", " ")

    # Remove other control characters
    text = re.sub(r"[\x00-\x1f\x7f-\x9f]", " ", text)

    if len(text) > max_length:
        text = text[:max_length] + "..."

    return text


def get_safe_error_info(exception: BaseException) -> dict[str, str]:
    """
    Extract safe information from an exception for logging.

    Returns only the exception type, NOT the message, to prevent:
    - Logging user-controlled data that could inject log entries
    - Exposing tokens or email addresses embedded in provider errors

    Example:
        >>> get_safe_error_info(ValueError("user input here"))
        {'error_type': 'ValueError'}
    """
    return {"error_type": type(exception).__name__}


def is_sensitive_key(key: str) -> bool:
    """Check whether a context key names sensitive data (case-insensitive)."""
    lowered = key.lower().replace("-", "_")
    compact = lowered.replace("_", "")
    return any(
        sensitive in lowered or sensitive.replace("_", "") in compact
        for sensitive in SENSITIVE_FIELDS
    )


def redact_sensitive_fields(data: dict[str, Any]) -> dict[str, Any]:
    """
    Redact sensitive fields from a dictionary before logging.

    Args:
        data: Dictionary that may contain sensitive fields

    Returns:
        New dictionary with sensitive fields replaced with '***REDACTED***'

    Example:
        >>> redact_sensitive_fields({"context": "sign_in", "accessToken": "abc"})
        {'context': 'sign_in', 'accessToken': '***REDACTED***'}
    """
    result = {}
    for key, value in data.items():
        if is_sensitive_key(key):
            result[key] = REDACTED
        elif isinstance(value, dict):
            result[key] = redact_sensitive_fields(value)
        else:
            result[key] = value
    return result


def strip_sensitive_fields(data: dict[str, Any]) -> dict[str, Any]:
    """Remove sensitive fields entirely (used for external tracking sinks)."""
    result = {}
    for key, value in data.items():
        if is_sensitive_key(key):
            continue
        if isinstance(value, dict):
            result[key] = strip_sensitive_fields(value)
        else:
            result[key] = value
    return result


def sanitize_error(error: Any) -> dict[str, str | None]:
    """
    Normalize an error-like value into message/name/code.

    Accepts exceptions (including ProviderError with .code/.error),
    plain strings, and dict payloads returned by HTTP APIs.
    """
    if isinstance(error, BaseException):
        return {
            "message": str(getattr(error, "message", None) or error),
            "name": type(error).__name__,
            "code": getattr(error, "code", None) or getattr(error, "error", None),
        }

    if isinstance(error, str):
        return {"message": error, "name": None, "code": None}

    if isinstance(error, dict):
        return {
            "message": error.get("message") or error.get("msg") or "Unknown error",
            "name": error.get("name"),
            "code": error.get("code") or error.get("error_code"),
        }

    return {"message": "Unknown error occurred", "name": None, "code": None}


def get_user_friendly_message(error: Any) -> str:
    """
    Convert a technical error into a message safe to show users.

    Lookup order: exact message match, substring match, error code match,
    then a generic default. Never returns the raw error text.
    """
    sanitized = sanitize_error(error)
    message = sanitized["message"] or ""

    if message in ERROR_MESSAGES:
        return ERROR_MESSAGES[message]

    for pattern, friendly in ERROR_MESSAGES.items():
        if pattern in message:
            return friendly

    code = sanitized["code"]
    if code and code in ERROR_MESSAGES:
        return ERROR_MESSAGES[code]

    return DEFAULT_ERROR_MESSAGE


def mask_email(email: str | None) -> str | None:
    """Mask an email address for logging (first character and domain only)."""
    if not email or "@" not in email:
        return None
    local, domain = email.rsplit("@", 1)
    return f"{local[:1]}***@{sanitize_for_log(domain, max_length=64)}"
