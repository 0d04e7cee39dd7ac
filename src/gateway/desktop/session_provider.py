"""Identity provider adapter for the desktop auth flows.

Handles:
- Session establishment from a deep-link token pair (set_session)
- Password sign-in and sign-up
- Password-reset emails and password updates
- Sign-out

SupabaseSessionProvider talks to a GoTrue-compatible REST API. The
orchestrator and auth service depend only on the SessionProvider protocol,
so tests and other identity services can substitute their own.

For On-Call Engineers:
    Common issues:
    1. set_session fails with "invalid_token": the emailed link's tokens
       were already used or have expired; the user must request a new link
    2. sign_up never sends email: check the redirect URL is listed under
       the project's allowed redirect URLs (todoapp://auth/callback and
       todoapp://auth/password-reset)
    3. "network_error": the identity service is unreachable

Security Notes:
    - Token values are never logged, only error types and status codes
    - The anon key is a public client key but is still kept out of logs
"""

import logging
import os
import re
import threading
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from pydantic import BaseModel

from src.gateway.shared.errors import ConfigurationError, ProviderError
from src.gateway.shared.logging_utils import get_safe_error_info

logger = logging.getLogger(__name__)

SUPABASE_URL_PATTERN = re.compile(r"^https://[a-z0-9-]+\.supabase\.(co|in)$")
HTTP_TIMEOUT_SECONDS = 10.0


class SessionHandle(BaseModel):
    """An accepted session returned by the identity provider."""

    access_token: str
    refresh_token: str
    user_id: str | None = None
    email: str | None = None
    expires_at_epoch_s: int | None = None


class SignUpResult(BaseModel):
    """Outcome of a successful sign-up request.

    session is None when the provider requires email confirmation.
    """

    user_id: str | None = None
    session: SessionHandle | None = None


class SessionProvider(Protocol):
    """Operations the gateway needs from an identity provider.

    Every method raises ProviderError on rejection or transport failure.
    """

    def set_session(self, access_token: str, refresh_token: str) -> SessionHandle: ...

    def sign_in(self, email: str, password: str) -> SessionHandle: ...

    def sign_up(self, email: str, password: str, redirect_to: str) -> SignUpResult: ...

    def reset_password_for_email(self, email: str, redirect_to: str) -> None: ...

    def update_password(self, new_password: str) -> None: ...

    def sign_out(self) -> None: ...


@dataclass
class SupabaseConfig:
    """Identity service configuration from environment."""

    url: str
    anon_key: str

    def __post_init__(self):
        self.url = (self.url or "").strip().rstrip("/")
        self.anon_key = (self.anon_key or "").strip()
        self._validate()

    def _validate(self):
        """
        Raises:
            ConfigurationError: If the URL or key is missing or malformed
        """
        if not self.url or not self.anon_key:
            raise ConfigurationError("SUPABASE_URL and SUPABASE_ANON_KEY are required")

        if not SUPABASE_URL_PATTERN.match(self.url):
            raise ConfigurationError(
                f"Invalid SUPABASE_URL format: {self.url!r}. "
                "Expected format: https://your-project-ref.supabase.co"
            )

        # Anon keys are JWTs
        if not self.anon_key.startswith("eyJ") or len(self.anon_key.split(".")) != 3:
            raise ConfigurationError(
                "Invalid SUPABASE_ANON_KEY format. Expected a JWT."
            )

    @classmethod
    def from_env(cls) -> "SupabaseConfig":
        """Create config from environment variables."""
        return cls(
            url=os.environ.get("SUPABASE_URL", ""),
            anon_key=os.environ.get("SUPABASE_ANON_KEY", ""),
        )

    @property
    def auth_url(self) -> str:
        """GoTrue base URL."""
        return f"{self.url}/auth/v1"


def _error_from_response(response: httpx.Response, default_error: str) -> ProviderError:
    """Build a ProviderError from a GoTrue error body."""
    try:
        data = response.json() if response.text else {}
    except ValueError:
        data = {}
    if not isinstance(data, dict):
        data = {}

    error = data.get("error_code") or data.get("error") or default_error
    message = (
        data.get("msg")
        or data.get("error_description")
        or data.get("message")
        or "Authentication request failed"
    )
    return ProviderError(
        error=str(error),
        message=str(message),
        status_code=response.status_code,
        code=data.get("error_code") or data.get("code"),
    )


def _session_from_payload(data: dict[str, Any]) -> SessionHandle:
    user = data.get("user") or {}
    return SessionHandle(
        access_token=data["access_token"],
        refresh_token=data["refresh_token"],
        user_id=user.get("id"),
        email=user.get("email"),
        expires_at_epoch_s=data.get("expires_at"),
    )


class SupabaseSessionProvider:
    """SessionProvider over the GoTrue REST API.

    Holds the current session so update_password() and sign_out() can
    authenticate as the user established by set_session() or sign_in().

    Args:
        config: Identity service URL and anon key
    """

    def __init__(self, config: SupabaseConfig) -> None:
        self.config = config
        self._session: SessionHandle | None = None
        self._lock = threading.Lock()

    @property
    def current_session(self) -> SessionHandle | None:
        with self._lock:
            return self._session

    def _set_current(self, session: SessionHandle | None) -> None:
        with self._lock:
            self._session = session

    def _headers(self, access_token: str | None = None) -> dict[str, str]:
        headers = {
            "apikey": self.config.anon_key,
            "Content-Type": "application/json",
        }
        headers["Authorization"] = f"Bearer {access_token or self.config.anon_key}"
        return headers

    def _send(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
        access_token: str | None = None,
    ) -> httpx.Response:
        """Send one request, mapping transport failures to ProviderError."""
        try:
            with httpx.Client(timeout=HTTP_TIMEOUT_SECONDS) as client:
                return client.request(
                    method,
                    f"{self.config.auth_url}{path}",
                    params=params,
                    json=json,
                    headers=self._headers(access_token),
                )
        except httpx.HTTPError as e:
            logger.error(
                f"HTTP error during {operation}",
                extra=get_safe_error_info(e),
            )
            raise ProviderError(
                "network_error", "Failed to connect to authentication server"
            ) from e

    def _refresh(self, refresh_token: str) -> SessionHandle:
        response = self._send(
            "POST",
            "/token",
            "token refresh",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        if response.status_code != 200:
            raise _error_from_response(response, "invalid_refresh_token")
        return _session_from_payload(response.json())

    def set_session(self, access_token: str, refresh_token: str) -> SessionHandle:
        """Accept a token pair delivered by an auth link.

        The access token is verified against /user. An expired access token
        falls back to a refresh with the paired refresh token.

        Raises:
            ProviderError: If the pair is rejected
        """
        response = self._send(
            "GET", "/user", "session verification", access_token=access_token
        )

        if response.status_code == 401:
            logger.debug("Access token rejected, attempting refresh")
            session = self._refresh(refresh_token)
        elif response.status_code != 200:
            raise _error_from_response(response, "invalid_token")
        else:
            user = response.json()
            session = SessionHandle(
                access_token=access_token,
                refresh_token=refresh_token,
                user_id=user.get("id"),
                email=user.get("email"),
            )

        self._set_current(session)
        logger.info("Session established", extra={"has_user_id": bool(session.user_id)})
        return session

    def sign_in(self, email: str, password: str) -> SessionHandle:
        response = self._send(
            "POST",
            "/token",
            "sign in",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        if response.status_code != 200:
            error = _error_from_response(response, "invalid_credentials")
            logger.warning(
                "Sign in rejected",
                extra={"error": error.error, "status": response.status_code},
            )
            raise error

        session = _session_from_payload(response.json())
        self._set_current(session)
        return session

    def sign_up(self, email: str, password: str, redirect_to: str) -> SignUpResult:
        response = self._send(
            "POST",
            "/signup",
            "sign up",
            params={"redirect_to": redirect_to},
            json={"email": email, "password": password},
        )
        if response.status_code not in (200, 201):
            error = _error_from_response(response, "signup_failed")
            logger.warning(
                "Sign up rejected",
                extra={"error": error.error, "status": response.status_code},
            )
            raise error

        data = response.json()
        if data.get("access_token"):
            session = _session_from_payload(data)
            self._set_current(session)
            return SignUpResult(user_id=session.user_id, session=session)

        # Confirmation required: body is the user object itself
        user = data.get("user") or data
        return SignUpResult(user_id=user.get("id"))

    def reset_password_for_email(self, email: str, redirect_to: str) -> None:
        response = self._send(
            "POST",
            "/recover",
            "password reset request",
            params={"redirect_to": redirect_to},
            json={"email": email},
        )
        if response.status_code != 200:
            raise _error_from_response(response, "recover_failed")

    def update_password(self, new_password: str) -> None:
        """Set a new password for the current session's user.

        Raises:
            ProviderError: If no session is established or the update fails
        """
        session = self.current_session
        if session is None:
            raise ProviderError("session_missing", "Auth session missing!")

        response = self._send(
            "PUT",
            "/user",
            "password update",
            json={"password": new_password},
            access_token=session.access_token,
        )
        if response.status_code != 200:
            raise _error_from_response(response, "update_failed")

    def sign_out(self) -> None:
        session = self.current_session
        self._set_current(None)
        if session is None:
            return

        try:
            self._send(
                "POST", "/logout", "sign out", access_token=session.access_token
            )
        except ProviderError as e:
            # Local session is already cleared; server-side revocation is best effort.
            logger.warning("Sign out request failed", extra=get_safe_error_info(e))
