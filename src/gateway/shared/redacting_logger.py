"""Environment-aware logger for authentication diagnostics.

The policy is chosen once at startup and injected, so the redaction rules
live in one place instead of behind scattered environment checks.

VERBOSE (developer builds):
    Everything is emitted to the local sink, including reason-code detail.

REDACTING (release builds):
    - debug() is a no-op
    - info() reaches the tracking sink only when it carries context
    - warn()/error() strip sensitive keys and any "detail" before forwarding
    - error() forwards the exception type, never its message

Which logger to use:
    Components that see user or link input (callback handler, auth
    service, state tokens, rate limiter) take a RedactingLogger. Startup
    and transport modules (config, app, storage, session_provider) log
    through module loggers and only emit fixed, non-sensitive fields.

For On-Call Engineers:
    Release logs carry reason codes (e.g. "INVALID_HOST") but never the
    offending host, path, or token. Reproduce with a developer build to
    see the detail string.
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Any

from src.gateway.shared.logging_utils import (
    get_safe_error_info,
    sanitize_for_log,
    strip_sensitive_fields,
)

# Context keys that may echo attacker-supplied input
DETAIL_KEYS = frozenset({"detail", "details"})

VERBOSE_ENVIRONMENTS = frozenset({"local", "dev", "development", "test"})

# LogRecord attributes that logging refuses to overwrite via extra=
_RESERVED_RECORD_KEYS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime"}


def _as_extra(context: dict[str, Any] | None) -> dict[str, Any]:
    """Copy context into an extra= dict, prefixing keys that clash with LogRecord."""
    if not context:
        return {}
    return {
        (f"ctx_{key}" if key in _RESERVED_RECORD_KEYS else key): value
        for key, value in context.items()
    }


class LogPolicy(StrEnum):
    """How much diagnostic detail may leave the process."""

    VERBOSE = "verbose"
    REDACTING = "redacting"

    @classmethod
    def for_environment(cls, environment: str | None) -> LogPolicy:
        """Select the policy for a deployment environment name.

        Unknown environments get REDACTING.
        """
        if environment and environment.strip().lower() in VERBOSE_ENVIRONMENTS:
            return cls.VERBOSE
        return cls.REDACTING


class RedactingLogger:
    """Logger facade applying a LogPolicy to every record.

    Args:
        policy: VERBOSE or REDACTING
        logger: Local sink (defaults to the "src.gateway" logger)
        tracker: External tracking sink (defaults to "src.gateway.tracking")
    """

    def __init__(
        self,
        policy: LogPolicy,
        logger: logging.Logger | None = None,
        tracker: logging.Logger | None = None,
    ) -> None:
        self.policy = policy
        self._local = logger or logging.getLogger("src.gateway")
        self._tracker = tracker or logging.getLogger("src.gateway.tracking")

    @property
    def is_verbose(self) -> bool:
        return self.policy is LogPolicy.VERBOSE

    def _redact(self, context: dict[str, Any] | None) -> dict[str, Any]:
        if not context:
            return {}
        cleaned = {k: v for k, v in context.items() if k not in DETAIL_KEYS}
        return strip_sensitive_fields(cleaned)

    def debug(self, message: str, context: dict[str, Any] | None = None) -> None:
        if self.is_verbose:
            self._local.debug(message, extra=_as_extra(context))

    def info(self, message: str, context: dict[str, Any] | None = None) -> None:
        if self.is_verbose:
            self._local.info(message, extra=_as_extra(context))
        elif context:
            self._tracker.info(message, extra=_as_extra(self._redact(context)))

    def warn(self, message: str, context: dict[str, Any] | None = None) -> None:
        if self.is_verbose:
            self._local.warning(message, extra=_as_extra(context))
        else:
            self._tracker.warning(message, extra=_as_extra(self._redact(context)))

    def error(
        self,
        error: BaseException | str,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Log a failure.

        In VERBOSE mode the full error text is emitted. In REDACTING mode
        only the error type and sanitized context are forwarded; string
        errors are treated as fixed, developer-authored event names.
        """
        if self.is_verbose:
            if isinstance(error, BaseException):
                self._local.error(
                    sanitize_for_log(f"{type(error).__name__}: {error}"),
                    extra=_as_extra(context),
                )
            else:
                self._local.error(error, extra=_as_extra(context))
            return

        extra = self._redact(context)
        if isinstance(error, BaseException):
            extra.update(get_safe_error_info(error))
            self._tracker.error("Unhandled error", extra=_as_extra(extra))
        else:
            self._tracker.error(error, extra=_as_extra(extra))
