"""Deep-link validation reason codes.

Closed set of failure categories for deep-link and state-token checks.
The string values cross the logging/telemetry boundary and must stay stable.

Reason codes are never shown to users. Every code maps to one of a small
set of generic messages that reveal nothing about which check failed.
"""

from __future__ import annotations

from enum import StrEnum


class ReasonCode(StrEnum):
    """Why a deep link or its state token was rejected."""

    INVALID_URL_FORMAT = "INVALID_URL_FORMAT"
    INVALID_SCHEME = "INVALID_SCHEME"
    INVALID_HOST = "INVALID_HOST"
    INVALID_PATH = "INVALID_PATH"
    INVALID_QUERY_PARAM = "INVALID_QUERY_PARAM"
    DUPLICATE_PARAM = "DUPLICATE_PARAM"
    FRAGMENT_NOT_ALLOWED = "FRAGMENT_NOT_ALLOWED"
    URL_TOO_LONG = "URL_TOO_LONG"
    INVALID_TYPE_PARAM = "INVALID_TYPE_PARAM"
    MISSING_STATE_TOKEN = "MISSING_STATE_TOKEN"
    INVALID_STATE_TOKEN = "INVALID_STATE_TOKEN"


# Generic user-facing messages
INVALID_REQUEST_MESSAGE = "Invalid authentication request. Please request a new link."
EXPIRED_REQUEST_MESSAGE = (
    "Invalid or expired authentication request. Please request a new link."
)
INVALID_RESET_LINK_MESSAGE = "Invalid password reset link. Please request a new link."
PROCESSING_FAILED_MESSAGE = "Failed to process authentication link."

USER_MESSAGES: frozenset[str] = frozenset(
    {
        INVALID_REQUEST_MESSAGE,
        EXPIRED_REQUEST_MESSAGE,
        INVALID_RESET_LINK_MESSAGE,
        PROCESSING_FAILED_MESSAGE,
    }
)

REASON_CODE_MESSAGES: dict[ReasonCode, str] = {
    ReasonCode.INVALID_URL_FORMAT: INVALID_REQUEST_MESSAGE,
    ReasonCode.INVALID_SCHEME: INVALID_REQUEST_MESSAGE,
    ReasonCode.INVALID_HOST: INVALID_REQUEST_MESSAGE,
    ReasonCode.INVALID_PATH: INVALID_REQUEST_MESSAGE,
    ReasonCode.INVALID_QUERY_PARAM: INVALID_REQUEST_MESSAGE,
    ReasonCode.DUPLICATE_PARAM: INVALID_REQUEST_MESSAGE,
    ReasonCode.FRAGMENT_NOT_ALLOWED: INVALID_REQUEST_MESSAGE,
    ReasonCode.URL_TOO_LONG: INVALID_REQUEST_MESSAGE,
    ReasonCode.MISSING_STATE_TOKEN: INVALID_REQUEST_MESSAGE,
    ReasonCode.INVALID_STATE_TOKEN: EXPIRED_REQUEST_MESSAGE,
    ReasonCode.INVALID_TYPE_PARAM: INVALID_RESET_LINK_MESSAGE,
}


def user_message_for(code: ReasonCode | None) -> str:
    """Return the generic message shown to the user for a reason code.

    Args:
        code: The reason code, or None for unclassified failures.

    Returns:
        One of the fixed generic messages. Never includes the code itself.
    """
    if code is None:
        return INVALID_REQUEST_MESSAGE
    return REASON_CODE_MESSAGES[code]
