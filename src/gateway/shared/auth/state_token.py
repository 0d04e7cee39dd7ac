"""CSRF state-token management for deep-link auth callbacks.

A state token binds an emailed auth link to the flow that requested it.
The token travels in the link's ?state= parameter and must match the
value stored when the flow started.

Slot semantics:
- Single slot: storing a new token overwrites (and so invalidates) any
  previous unconsumed token
- Single use: a successful validate() deletes the slot with a conditional
  delete, so two processes sharing one table cannot both consume it
- Scoped: with an installation id the slot key is
  "auth_state_token#<installation id>", so installs sharing a table do not
  overwrite each other
- TTL: tokens older than STATE_TOKEN_TTL_SECONDS are treated as absent
- A failed validate() leaves the slot untouched

Security considerations:
- Tokens use secrets.token_urlsafe() (256 bits, URL-safe, unpadded)
- Comparison uses hmac.compare_digest to avoid timing leaks
- Compare-and-consume runs under a lock within one process; across
  processes the store's delete_if() only removes the slot while it still
  holds the matched value

Diagnostics go through the injected RedactingLogger, so the release log
policy applies here as it does in the callback handler.
"""

from __future__ import annotations

import hmac
import secrets
import threading
from datetime import UTC, datetime

from pydantic import BaseModel

from src.gateway.shared.logging_utils import get_safe_error_info
from src.gateway.shared.redacting_logger import LogPolicy, RedactingLogger
from src.gateway.shared.storage import KeyValueStore

STATE_TOKEN_BYTES = 32  # 256 bits of entropy
STATE_TOKEN_TTL_SECONDS = 300  # 5 minutes
STATE_TOKEN_STORAGE_KEY = "auth_state_token"


def _now_ms() -> int:
    return int(datetime.now(UTC).timestamp() * 1000)


class StateToken(BaseModel):
    """Stored CSRF state token."""

    value: str
    issued_at_epoch_ms: int

    def age_ms(self, now_ms: int | None = None) -> int:
        return (now_ms if now_ms is not None else _now_ms()) - self.issued_at_epoch_ms

    def is_expired(self, ttl_seconds: int, now_ms: int | None = None) -> bool:
        return self.age_ms(now_ms) > ttl_seconds * 1000


def storage_key_for(installation_id: str | None = None) -> str:
    """Slot key for an installation, or the unscoped key for a local store."""
    if not installation_id:
        return STATE_TOKEN_STORAGE_KEY
    return f"{STATE_TOKEN_STORAGE_KEY}#{installation_id}"


def generate_state_token() -> str:
    """Generate a cryptographically secure state token.

    Returns:
        43-character URL-safe string (32 bytes = 256 bits of entropy)
    """
    return secrets.token_urlsafe(STATE_TOKEN_BYTES)


class StateTokenManager:
    """Single-slot, single-use CSRF state token store.

    Args:
        store: Key-value persistence for the slot
        ttl_seconds: Maximum token age accepted by validate()
        installation_id: Scopes the slot key when the store is shared
        log: Diagnostics sink (defaults to a REDACTING logger)
    """

    def __init__(
        self,
        store: KeyValueStore,
        ttl_seconds: int = STATE_TOKEN_TTL_SECONDS,
        installation_id: str | None = None,
        log: RedactingLogger | None = None,
    ) -> None:
        self._store = store
        self.ttl_seconds = ttl_seconds
        self.storage_key = storage_key_for(installation_id)
        self.log = log or RedactingLogger(LogPolicy.REDACTING)
        self._lock = threading.Lock()

    def generate(self) -> str:
        return generate_state_token()

    def store(self, token: str) -> StateToken:
        """Persist token with the current time, replacing any previous token."""
        state = StateToken(value=token, issued_at_epoch_ms=_now_ms())
        with self._lock:
            self._store.put(self.storage_key, state.model_dump())
        self.log.debug("State token stored", {"ttl_seconds": self.ttl_seconds})
        return state

    def issue(self) -> str:
        """Generate and store a new token, returning its value."""
        token = self.generate()
        self.store(token)
        return token

    def _load(self) -> StateToken | None:
        item = self._store.get(self.storage_key)
        if not item:
            return None
        return StateToken.model_validate(item)

    def current(self) -> StateToken | None:
        """Return the live token, or None if absent or expired."""
        try:
            state = self._load()
        except Exception as e:
            self.log.error("Failed to read state token", get_safe_error_info(e))
            return None
        if state is None or state.is_expired(self.ttl_seconds):
            return None
        return state

    def validate(self, presented: str | None) -> bool:
        """Check a presented token and consume it on success.

        Returns:
            True iff a token is stored, matches, is within the TTL, and this
            call was the one that deleted it. The slot is deleted only when
            True is returned.
        """
        if not presented or not isinstance(presented, str):
            return False

        with self._lock:
            try:
                state = self._load()
            except Exception as e:
                self.log.error("Failed to read state token", get_safe_error_info(e))
                return False

            if state is None:
                self.log.debug("State token validation failed: no token stored")
                return False

            if not hmac.compare_digest(
                state.value.encode("utf-8"), presented.encode("utf-8")
            ):
                self.log.debug("State token validation failed: mismatch")
                return False

            if state.is_expired(self.ttl_seconds):
                self.log.debug("State token validation failed: expired")
                return False

            try:
                consumed = self._store.delete_if(self.storage_key, "value", state.value)
            except Exception as e:
                # A token that cannot be consumed must not be accepted.
                self.log.error("Failed to consume state token", get_safe_error_info(e))
                return False

        if not consumed:
            self.log.warn("State token already consumed elsewhere")
            return False
        return True

    def clear(self) -> None:
        """Delete the stored token, if any."""
        with self._lock:
            self._store.delete(self.storage_key)
