"""Shared middleware for credential flows."""

from src.gateway.shared.middleware.rate_limit import (
    RateLimitConfig,
    RateLimiter,
    RateLimitExceeded,
    RateLimitResult,
    format_time_remaining,
)

__all__ = [
    "RateLimitConfig",
    "RateLimitExceeded",
    "RateLimitResult",
    "RateLimiter",
    "format_time_remaining",
]
