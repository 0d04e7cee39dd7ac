"""Credential flows for the desktop app.

Handles:
- Password sign-in and sign-up behind the per-email rate limiter
- Password-reset email requests
- Setting a new password after a recovery link

Sign-up and reset requests issue a fresh CSRF state token and embed it in
the redirect URL, so the callback handler can bind the emailed link to
this installation. Issuing a token replaces any earlier unconsumed one.

For On-Call Engineers:
    "Too many login attempts" means the email hit the rate limiter.
    Lockouts are per lower-cased email and clear after the block expires
    or on the next successful sign-in.
"""

import re

from pydantic import BaseModel

from src.gateway.desktop.session_provider import SessionProvider
from src.gateway.shared.auth.deep_link import (
    CALLBACK_PATH,
    PASSWORD_RESET_PATH,
    build_redirect_url,
)
from src.gateway.shared.auth.state_token import StateTokenManager
from src.gateway.shared.errors import ProviderError
from src.gateway.shared.logging_utils import get_user_friendly_message, mask_email
from src.gateway.shared.middleware.rate_limit import (
    RateLimiter,
    format_time_remaining,
)
from src.gateway.shared.redacting_logger import RedactingLogger

MIN_PASSWORD_LENGTH = 6
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# User-facing messages
INVALID_EMAIL_MESSAGE = "Please enter a valid email address"
PASSWORD_TOO_SHORT_MESSAGE = (
    f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
)
EMAIL_NOT_CONFIRMED_MESSAGE = (
    "Please verify your email before signing in. "
    "Check your inbox for the confirmation link."
)
INVALID_CREDENTIALS_MESSAGE = "Invalid email or password. Please try again."
ALREADY_REGISTERED_MESSAGE = "This email is already registered. Please sign in instead."
CONFIRMATION_SENT_MESSAGE = (
    "Check your email for the confirmation link. "
    "Click the link to verify your account."
)
RESET_EMAIL_SENT_MESSAGE = "Check your email for a password reset link."
PASSWORD_UPDATED_MESSAGE = "Password updated successfully!"
DEFAULT_LOCKOUT_TEXT = "30 minutes"


class AuthResult(BaseModel):
    """Outcome of a credential flow, safe to show to the user."""

    success: bool
    message: str | None = None
    rate_limited: bool = False
    retry_after_ms: int | None = None
    needs_email_confirmation: bool = False
    remaining_attempts: int | None = None
    state_token: str | None = None


def normalize_identifier(email: str) -> str:
    """Rate-limit key for an email address."""
    return email.strip().lower()


def is_valid_email(email: str | None) -> bool:
    """Basic email format validation."""
    return bool(email) and EMAIL_PATTERN.match(email) is not None


class AuthService:
    """Sign-in, sign-up and password recovery flows.

    Args:
        rate_limiter: Per-email attempt limiter
        state_tokens: CSRF state-token slot shared with the callback handler
        session_provider: Identity provider
        log: Policy-aware logger
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        state_tokens: StateTokenManager,
        session_provider: SessionProvider,
        log: RedactingLogger,
    ) -> None:
        self.rate_limiter = rate_limiter
        self.state_tokens = state_tokens
        self.session_provider = session_provider
        self.log = log

    def _validate_credentials(self, email: str, password: str) -> AuthResult | None:
        if not is_valid_email(email):
            return AuthResult(success=False, message=INVALID_EMAIL_MESSAGE)
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            return AuthResult(success=False, message=PASSWORD_TOO_SHORT_MESSAGE)
        return None

    def _rate_limited(self, key: str, action: str) -> AuthResult | None:
        check = self.rate_limiter.check_limit(key)
        if check.allowed:
            return None

        time_remaining = (
            format_time_remaining(check.retry_after_ms)
            if check.retry_after_ms
            else DEFAULT_LOCKOUT_TEXT
        )
        self.log.info(
            "Credential attempt blocked by rate limiter",
            {"action": action, "retry_after_ms": check.retry_after_ms},
        )
        return AuthResult(
            success=False,
            message=(
                f"Too many {action} attempts. "
                f"Please try again in {time_remaining}."
            ),
            rate_limited=True,
            retry_after_ms=check.retry_after_ms,
            remaining_attempts=0,
        )

    def sign_in(self, email: str, password: str) -> AuthResult:
        """Sign in with email and password.

        Returns:
            AuthResult; on failure, message is a friendly sentence and
            remaining_attempts reflects the recorded failure
        """
        invalid = self._validate_credentials(email, password)
        if invalid:
            return invalid

        key = normalize_identifier(email)
        blocked = self._rate_limited(key, "login")
        if blocked:
            return blocked

        try:
            self.session_provider.sign_in(key, password)
        except ProviderError as e:
            self.rate_limiter.record_attempt(key, success=False)
            self.log.error(e, {"context": "sign_in", "email": email})

            if "not confirmed" in e.message:
                message = EMAIL_NOT_CONFIRMED_MESSAGE
            elif "Invalid login credentials" in e.message:
                message = INVALID_CREDENTIALS_MESSAGE
            else:
                message = get_user_friendly_message(e)

            return AuthResult(
                success=False,
                message=message,
                remaining_attempts=self.rate_limiter.get_remaining_attempts(key),
            )

        self.rate_limiter.record_attempt(key, success=True)
        self.log.info("Sign in succeeded", {"email": mask_email(key)})
        return AuthResult(
            success=True,
            remaining_attempts=self.rate_limiter.config.max_attempts,
        )

    def sign_up(self, email: str, password: str) -> AuthResult:
        """Register a new account.

        A state token is issued before the provider call and embedded in
        the confirmation link's redirect URL.
        """
        invalid = self._validate_credentials(email, password)
        if invalid:
            return invalid

        key = normalize_identifier(email)
        blocked = self._rate_limited(key, "sign up")
        if blocked:
            return blocked

        state_token = self.state_tokens.issue()
        redirect_to = build_redirect_url(CALLBACK_PATH, state_token)

        try:
            result = self.session_provider.sign_up(key, password, redirect_to)
        except ProviderError as e:
            self.rate_limiter.record_attempt(key, success=False)
            self.log.error(e, {"context": "sign_up", "email": email})

            if "already registered" in e.message:
                message = ALREADY_REGISTERED_MESSAGE
            else:
                message = get_user_friendly_message(e)

            return AuthResult(
                success=False,
                message=message,
                remaining_attempts=self.rate_limiter.get_remaining_attempts(key),
            )

        self.rate_limiter.record_attempt(key, success=True)

        if result.session is None:
            return AuthResult(
                success=True,
                message=CONFIRMATION_SENT_MESSAGE,
                needs_email_confirmation=True,
                state_token=state_token,
            )

        # Email confirmation disabled: the account is already signed in
        return AuthResult(success=True, state_token=state_token)

    def request_password_reset(self, email: str) -> AuthResult:
        """Email a password-reset link bound to a fresh state token."""
        if not is_valid_email(email):
            return AuthResult(success=False, message=INVALID_EMAIL_MESSAGE)

        state_token = self.state_tokens.issue()
        redirect_to = build_redirect_url(PASSWORD_RESET_PATH, state_token)

        try:
            self.session_provider.reset_password_for_email(
                normalize_identifier(email), redirect_to
            )
        except ProviderError as e:
            self.log.error(e, {"context": "reset_password_email"})
            return AuthResult(success=False, message=get_user_friendly_message(e))

        return AuthResult(
            success=True,
            message=RESET_EMAIL_SENT_MESSAGE,
            state_token=state_token,
        )

    def update_password(self, new_password: str) -> AuthResult:
        """Set a new password for the session established by a recovery link."""
        if not new_password or len(new_password) < MIN_PASSWORD_LENGTH:
            return AuthResult(success=False, message=PASSWORD_TOO_SHORT_MESSAGE)

        try:
            self.session_provider.update_password(new_password)
        except ProviderError as e:
            self.log.error(e, {"context": "update_password"})
            return AuthResult(success=False, message=get_user_friendly_message(e))

        return AuthResult(success=True, message=PASSWORD_UPDATED_MESSAGE)

    def sign_out(self) -> None:
        self.session_provider.sign_out()

    def remaining_attempts(self, email: str) -> int:
        return self.rate_limiter.get_remaining_attempts(normalize_identifier(email))
