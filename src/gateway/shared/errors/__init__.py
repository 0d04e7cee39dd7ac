"""Shared error types for the deep-link gateway."""

from src.gateway.shared.errors.provider_errors import (
    ConfigurationError,
    ProviderError,
    RateLimitExceeded,
)
from src.gateway.shared.errors.reason_codes import (
    EXPIRED_REQUEST_MESSAGE,
    INVALID_REQUEST_MESSAGE,
    INVALID_RESET_LINK_MESSAGE,
    PROCESSING_FAILED_MESSAGE,
    REASON_CODE_MESSAGES,
    USER_MESSAGES,
    ReasonCode,
    user_message_for,
)

__all__ = [
    # Reason codes
    "ReasonCode",
    "REASON_CODE_MESSAGES",
    "USER_MESSAGES",
    "INVALID_REQUEST_MESSAGE",
    "EXPIRED_REQUEST_MESSAGE",
    "INVALID_RESET_LINK_MESSAGE",
    "PROCESSING_FAILED_MESSAGE",
    "user_message_for",
    # Boundary errors
    "ConfigurationError",
    "ProviderError",
    "RateLimitExceeded",
]
