"""Authentication callback handler for deep links.

Runs one pass of the callback state machine per delivered URL:

    IDLE -> VALIDATING_URL -> VALIDATING_STATE
         -> {EMAIL_CONFIRMATION | PASSWORD_RECOVERY}
         -> SESSION_ESTABLISHING -> {COMPLETE | FAILED}

Ordering is fixed: URL structure, then state token, then the recovery
type check, then the session provider. A malformed URL therefore never
consumes a legitimate single-use state token, and the provider only ever
sees token pairs from links that passed every gate.

For On-Call Engineers:
    Users see only generic "please request a new link" messages. The
    reason code is in the logs; the offending value (host, path, type)
    is only logged by developer builds.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from enum import StrEnum

from pydantic import BaseModel, Field

from src.gateway.desktop.session_provider import SessionHandle, SessionProvider
from src.gateway.shared.auth.deep_link import (
    ACCESS_TOKEN_PARAM,
    CALLBACK_PATH,
    RECOVERY_TYPE,
    REFRESH_TOKEN_PARAM,
    STATE_PARAM,
    TYPE_PARAM,
    parse_deep_link,
    validate_deep_link_url,
)
from src.gateway.shared.auth.state_token import StateTokenManager
from src.gateway.shared.errors import (
    INVALID_REQUEST_MESSAGE,
    PROCESSING_FAILED_MESSAGE,
    ProviderError,
    ReasonCode,
    user_message_for,
)
from src.gateway.shared.logging_utils import (
    get_user_friendly_message,
    sanitize_for_log,
)
from src.gateway.shared.redacting_logger import RedactingLogger


class CallbackState(StrEnum):
    IDLE = "idle"
    VALIDATING_URL = "validating_url"
    VALIDATING_STATE = "validating_state"
    EMAIL_CONFIRMATION = "email_confirmation"
    PASSWORD_RECOVERY = "password_recovery"
    SESSION_ESTABLISHING = "session_establishing"
    COMPLETE = "complete"
    FAILED = "failed"


TERMINAL_STATES = frozenset({CallbackState.COMPLETE, CallbackState.FAILED})


class CallbackFlow(StrEnum):
    EMAIL_CONFIRMATION = "email_confirmation"
    PASSWORD_RECOVERY = "password_recovery"


class CallbackOutcome(BaseModel):
    """Result of one pass through the callback state machine."""

    state: CallbackState
    visited: list[CallbackState] = Field(default_factory=list)
    flow: CallbackFlow | None = None
    reason_code: ReasonCode | None = None
    user_message: str | None = None
    session: SessionHandle | None = None
    awaiting_new_password: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state is CallbackState.COMPLETE


class _CallbackRun:
    """Tracks the states visited by a single pass."""

    def __init__(self, log: RedactingLogger) -> None:
        self.log = log
        self.visited: list[CallbackState] = [CallbackState.IDLE]
        self.flow: CallbackFlow | None = None

    @property
    def state(self) -> CallbackState:
        return self.visited[-1]

    def to(self, state: CallbackState) -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"Callback already finished in state {self.state}")
        self.visited.append(state)
        self.log.debug("Callback transition", {"callback_state": str(state)})

    def fail(
        self,
        reason_code: ReasonCode | None,
        user_message: str,
    ) -> CallbackOutcome:
        self.to(CallbackState.FAILED)
        return CallbackOutcome(
            state=CallbackState.FAILED,
            visited=list(self.visited),
            flow=self.flow,
            reason_code=reason_code,
            user_message=user_message,
        )


class AuthCallbackHandler:
    """Validates auth deep links and establishes the resulting session.

    Args:
        state_tokens: CSRF state-token slot shared with the auth service
        session_provider: Identity provider receiving the token pair
        log: Policy-aware logger
        notify: Optional callback that shows a failure message to the user
    """

    def __init__(
        self,
        state_tokens: StateTokenManager,
        session_provider: SessionProvider,
        log: RedactingLogger,
        notify: Callable[[str], None] | None = None,
    ) -> None:
        self.state_tokens = state_tokens
        self.session_provider = session_provider
        self.log = log
        self.notify = notify
        self._awaiting_new_password = False

    @property
    def awaiting_new_password(self) -> bool:
        """True after a recovery link established a session."""
        return self._awaiting_new_password

    def finish_password_recovery(self) -> None:
        self._awaiting_new_password = False

    def _reject(
        self,
        run: _CallbackRun,
        reason_code: ReasonCode,
        event: str,
        detail: str | None = None,
    ) -> CallbackOutcome:
        context: dict[str, str] = {"code": str(reason_code)}
        if detail is not None:
            context["detail"] = detail
        self.log.error(event, context)
        return run.fail(reason_code, user_message_for(reason_code))

    def handle_url(self, url: str) -> CallbackOutcome:
        """Run one pass of the callback state machine for a raw URL.

        Never retries. Provider errors become FAILED outcomes; anything
        else unexpected propagates to on_url_opened().
        """
        run = _CallbackRun(self.log)

        run.to(CallbackState.VALIDATING_URL)
        validation = validate_deep_link_url(url)
        if not validation.is_valid:
            return self._reject(
                run,
                validation.reason_code,
                "Deep link validation failed",
                detail=validation.detail,
            )

        link = parse_deep_link(url)

        run.to(CallbackState.VALIDATING_STATE)
        state = link.get(STATE_PARAM)
        if not state:
            return self._reject(
                run, ReasonCode.MISSING_STATE_TOKEN, "State token missing"
            )

        if not self.state_tokens.validate(state):
            return self._reject(
                run, ReasonCode.INVALID_STATE_TOKEN, "State token validation failed"
            )

        if link.path == CALLBACK_PATH:
            run.flow = CallbackFlow.EMAIL_CONFIRMATION
            run.to(CallbackState.EMAIL_CONFIRMATION)
        else:
            run.flow = CallbackFlow.PASSWORD_RECOVERY
            run.to(CallbackState.PASSWORD_RECOVERY)
            link_type = link.get(TYPE_PARAM)
            # Exact match only
            if link_type != RECOVERY_TYPE:
                return self._reject(
                    run,
                    ReasonCode.INVALID_TYPE_PARAM,
                    "Invalid type parameter for password reset",
                    detail=f"type={sanitize_for_log(link_type)}",
                )

        access_token = link.get(ACCESS_TOKEN_PARAM)
        refresh_token = link.get(REFRESH_TOKEN_PARAM)
        if not access_token or not refresh_token:
            self.log.warn(
                "Auth callback missing session tokens",
                {"flow": str(run.flow)},
            )
            return run.fail(None, INVALID_REQUEST_MESSAGE)

        run.to(CallbackState.SESSION_ESTABLISHING)
        try:
            session = self.session_provider.set_session(access_token, refresh_token)
        except ProviderError as e:
            self.log.error(e, {"context": f"{run.flow}_callback"})
            return run.fail(None, get_user_friendly_message(e))

        run.to(CallbackState.COMPLETE)
        recovering = run.flow is CallbackFlow.PASSWORD_RECOVERY
        if recovering:
            self._awaiting_new_password = True

        self.log.info("Auth callback completed", {"flow": str(run.flow)})
        return CallbackOutcome(
            state=CallbackState.COMPLETE,
            visited=list(run.visited),
            flow=run.flow,
            session=session,
            awaiting_new_password=recovering,
        )

    def on_url_opened(self, urls: Sequence[str]) -> CallbackOutcome | None:
        """Deep-link transport entry point. Only the first URL is processed.

        Returns:
            The outcome of the pass, or None if no URL was delivered
        """
        if not urls:
            return None

        try:
            outcome = self.handle_url(urls[0])
        except Exception as e:
            self.log.error(e, {"context": "deep_link_parsing"})
            outcome = CallbackOutcome(
                state=CallbackState.FAILED,
                visited=[CallbackState.IDLE, CallbackState.FAILED],
                user_message=PROCESSING_FAILED_MESSAGE,
            )

        if not outcome.succeeded and self.notify is not None:
            self.notify(outcome.user_message)

        return outcome
