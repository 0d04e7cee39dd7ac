"""Session timeout utilities.

Decides whether an established session should be refreshed, based on
provider expiry, idle time, and absolute session age.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

from pydantic import BaseModel

DEFAULT_SESSION_LIFETIME_MS = 60 * 60 * 1000  # 1 hour when provider omits expiry


@dataclass(frozen=True)
class SessionTimeoutConfig:
    """Session timeout thresholds in milliseconds."""

    idle_timeout_ms: int = 30 * 60 * 1000  # 30 minutes
    max_session_ms: int = 24 * 60 * 60 * 1000  # 24 hours
    warning_before_ms: int = 5 * 60 * 1000  # 5 minutes


SESSION_TIMEOUT_DEFAULTS = SessionTimeoutConfig()


class SessionExpiryInfo(BaseModel):
    expires_at_ms: int
    is_expired: bool


class RefreshDecision(BaseModel):
    should_refresh: bool
    reason: str | None = None


def _now_ms() -> int:
    return int(datetime.now(UTC).timestamp() * 1000)


def calculate_session_expiry(expires_at_epoch_s: int | None) -> SessionExpiryInfo:
    """Calculate session expiry from the provider's expires_at (seconds).

    Sessions without an expiry are assumed to last one hour from now.
    """
    now = _now_ms()
    if expires_at_epoch_s:
        expires_at_ms = expires_at_epoch_s * 1000
    else:
        expires_at_ms = now + DEFAULT_SESSION_LIFETIME_MS
    return SessionExpiryInfo(
        expires_at_ms=expires_at_ms, is_expired=expires_at_ms < now
    )


def should_refresh_session(
    expires_at_epoch_s: int | None,
    last_activity_ms: int,
    session_start_ms: int,
    config: SessionTimeoutConfig = SESSION_TIMEOUT_DEFAULTS,
) -> RefreshDecision:
    """Determine whether a session should be refreshed.

    Expired, idle, and over-age sessions are never refreshed; the user
    must sign in again. Live sessions are refreshed once they enter the
    warning window before expiry.
    """
    now = _now_ms()
    expiry = calculate_session_expiry(expires_at_epoch_s)

    if expiry.is_expired:
        return RefreshDecision(should_refresh=False, reason="Session already expired")

    if now - last_activity_ms > config.idle_timeout_ms:
        return RefreshDecision(should_refresh=False, reason="Idle timeout exceeded")

    if now - session_start_ms > config.max_session_ms:
        return RefreshDecision(
            should_refresh=False, reason="Maximum session lifetime exceeded"
        )

    if expiry.expires_at_ms - now < config.warning_before_ms:
        return RefreshDecision(should_refresh=True, reason="Session expiring soon")

    return RefreshDecision(should_refresh=False)
