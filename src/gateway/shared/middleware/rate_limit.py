"""Identifier-based rate limiting for credential submissions.

Protects sign-in and sign-up against brute force. Attempts are counted per
normalized identifier (lower-cased email) inside a sliding window; once the
window fills, the identifier is blocked with exponential backoff.

For On-Call Engineers:
    Entries live in process memory only. A restart clears every lockout.
    A user reporting "Too many attempts" will be unblocked after at most
    max_block_duration_ms (2 hours by default).

Backoff:
    block = min(block_duration_ms * 2**lockout_count, max_block_duration_ms)
    lockout_count survives an elapsed window and is only cleared by a
    successful attempt, reset(), or the 24 h staleness sweep.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from datetime import UTC, datetime

from pydantic import BaseModel

from src.gateway.shared.errors import ConfigurationError, RateLimitExceeded
from src.gateway.shared.redacting_logger import LogPolicy, RedactingLogger

__all__ = [
    "RateLimitConfig",
    "RateLimitEntry",
    "RateLimitExceeded",
    "RateLimitResult",
    "RateLimiter",
    "format_time_remaining",
]

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS


@dataclass(frozen=True)
class RateLimitConfig:
    """Rate limiting thresholds. All durations are milliseconds."""

    max_attempts: int = 5
    window_ms: int = 15 * MINUTE_MS
    block_duration_ms: int = 30 * MINUTE_MS
    max_block_duration_ms: int = 2 * HOUR_MS
    stale_after_ms: int = 24 * HOUR_MS
    sweep_interval_ms: int = HOUR_MS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        if self.window_ms <= 0 or self.block_duration_ms <= 0:
            raise ConfigurationError("window_ms and block_duration_ms must be positive")
        if self.max_block_duration_ms < self.block_duration_ms:
            raise ConfigurationError(
                "max_block_duration_ms must be >= block_duration_ms"
            )


class RateLimitEntry(BaseModel):
    """Attempt history for one identifier."""

    attempt_count: int
    window_start_epoch_ms: int
    blocked_until_epoch_ms: int | None = None
    lockout_count: int = 0


class RateLimitResult(BaseModel):
    """Result of rate limit check."""

    allowed: bool
    retry_after_ms: int | None = None


def _now_ms() -> int:
    return int(datetime.now(UTC).timestamp() * 1000)


class RateLimiter:
    """In-memory rate limiter with exponential lockout backoff.

    Every public method holds the instance lock, so check/record pairs from
    concurrent submissions observe a consistent entry. Lockouts and sweeps
    are logged through the injected RedactingLogger and never carry the
    identifier.
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        log: RedactingLogger | None = None,
    ) -> None:
        self.config = config or RateLimitConfig()
        self.log = log or RedactingLogger(LogPolicy.REDACTING)
        self._entries: dict[str, RateLimitEntry] = {}
        self._lock = threading.RLock()
        self._last_sweep_ms = _now_ms()

    def _calculate_block_duration(self, lockout_count: int) -> int:
        duration = self.config.block_duration_ms * (2**lockout_count)
        return min(duration, self.config.max_block_duration_ms)

    def _window_elapsed(self, entry: RateLimitEntry, now: int) -> bool:
        return now - entry.window_start_epoch_ms > self.config.window_ms

    def check_limit(self, key: str) -> RateLimitResult:
        """Check whether another attempt is allowed for key.

        Moves the entry into a block when the window is full.
        """
        with self._lock:
            self.maybe_sweep()
            now = _now_ms()
            entry = self._entries.get(key)

            if entry is None:
                return RateLimitResult(allowed=True)

            if entry.blocked_until_epoch_ms is not None:
                if now < entry.blocked_until_epoch_ms:
                    return RateLimitResult(
                        allowed=False,
                        retry_after_ms=entry.blocked_until_epoch_ms - now,
                    )
                entry.blocked_until_epoch_ms = None

            # Entry is kept so lockout_count still drives the next backoff.
            if self._window_elapsed(entry, now):
                return RateLimitResult(allowed=True)

            if entry.attempt_count >= self.config.max_attempts:
                block_ms = self._calculate_block_duration(entry.lockout_count)
                entry.blocked_until_epoch_ms = now + block_ms
                entry.lockout_count += 1
                self.log.warn(
                    "Rate limit lockout",
                    {"lockout_count": entry.lockout_count, "block_ms": block_ms},
                )
                return RateLimitResult(allowed=False, retry_after_ms=block_ms)

            return RateLimitResult(allowed=True)

    def enforce(self, key: str) -> None:
        """Raise RateLimitExceeded if key is not currently allowed."""
        result = self.check_limit(key)
        if not result.allowed:
            raise RateLimitExceeded(retry_after_ms=result.retry_after_ms or 0)

    def record_attempt(self, key: str, success: bool) -> None:
        """Record an attempt. Success clears all history for key."""
        with self._lock:
            self.maybe_sweep()
            if success:
                self._entries.pop(key, None)
                return

            now = _now_ms()
            entry = self._entries.get(key)

            if entry is None:
                self._entries[key] = RateLimitEntry(
                    attempt_count=1, window_start_epoch_ms=now
                )
            elif self._window_elapsed(entry, now):
                entry.attempt_count = 1
                entry.window_start_epoch_ms = now
            else:
                entry.attempt_count += 1

    def get_remaining_attempts(self, key: str) -> int:
        with self._lock:
            now = _now_ms()
            entry = self._entries.get(key)
            if entry is None:
                return self.config.max_attempts
            if (
                entry.blocked_until_epoch_ms is not None
                and now < entry.blocked_until_epoch_ms
            ):
                return 0
            if self._window_elapsed(entry, now):
                return self.config.max_attempts
            return max(0, self.config.max_attempts - entry.attempt_count)

    def reset(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def sweep_stale_entries(self) -> int:
        """Remove entries whose window started more than stale_after_ms ago.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = _now_ms()
            stale = [
                key
                for key, entry in self._entries.items()
                if now - entry.window_start_epoch_ms > self.config.stale_after_ms
            ]
            for key in stale:
                del self._entries[key]
            self._last_sweep_ms = now

        if stale:
            self.log.debug("Swept stale rate limit entries", {"removed": len(stale)})
        return len(stale)

    def maybe_sweep(self) -> int:
        """Run the staleness sweep at most once per sweep_interval_ms."""
        with self._lock:
            if _now_ms() - self._last_sweep_ms < self.config.sweep_interval_ms:
                return 0
            return self.sweep_stale_entries()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def format_time_remaining(ms: int) -> str:
    """Render a retry delay for users, rounding up.

    Example:
        >>> format_time_remaining(90_000)
        '2 minutes'
    """
    minutes = math.ceil(ms / MINUTE_MS)
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    hours = math.ceil(minutes / 60)
    return f"{hours} hour{'s' if hours != 1 else ''}"
