"""Unit tests for the Supabase session provider.

httpx.Client is patched; responses are real httpx.Response objects so
status codes and JSON bodies behave exactly as on the wire.
"""

from unittest.mock import MagicMock, patch

import httpx
import pytest

from src.gateway.desktop.session_provider import (
    SupabaseConfig,
    SupabaseSessionProvider,
    _error_from_response,
)
from src.gateway.shared.errors import ConfigurationError, ProviderError
from tests.conftest import TEST_SUPABASE_ANON_KEY, TEST_SUPABASE_URL

CLIENT_PATH = "src.gateway.desktop.session_provider.httpx.Client"
AUTH_URL = f"{TEST_SUPABASE_URL}/auth/v1"


def session_payload(access="new-access", refresh="new-refresh"):
    return {
        "access_token": access,
        "refresh_token": refresh,
        "expires_at": 1767272400,
        "user": {"id": "user-123", "email": "user@example.com"},
    }


@pytest.fixture
def provider():
    return SupabaseSessionProvider(
        SupabaseConfig(url=TEST_SUPABASE_URL, anon_key=TEST_SUPABASE_ANON_KEY)
    )


@pytest.fixture
def http():
    """Patched httpx client; set http.request.return_value / side_effect."""
    with patch(CLIENT_PATH) as mock_client_class:
        mock_client = MagicMock()
        mock_client.__enter__ = MagicMock(return_value=mock_client)
        mock_client.__exit__ = MagicMock(return_value=False)
        mock_client_class.return_value = mock_client
        yield mock_client


def sent(http, index=0):
    """(method, url, kwargs) of the index-th request."""
    call = http.request.call_args_list[index]
    method, url = call.args
    return method, url, call.kwargs


class TestSupabaseConfig:
    def test_valid(self):
        config = SupabaseConfig(url=TEST_SUPABASE_URL, anon_key=TEST_SUPABASE_ANON_KEY)
        assert config.auth_url == AUTH_URL

    def test_strips_whitespace_and_trailing_slash(self):
        config = SupabaseConfig(
            url=f"  {TEST_SUPABASE_URL}/ ", anon_key=f" {TEST_SUPABASE_ANON_KEY} "
        )
        assert config.url == TEST_SUPABASE_URL
        assert config.anon_key == TEST_SUPABASE_ANON_KEY

    @pytest.mark.parametrize("url,key", [("", TEST_SUPABASE_ANON_KEY), (None, None)])
    def test_missing_values(self, url, key):
        with pytest.raises(ConfigurationError, match="required"):
            SupabaseConfig(url=url, anon_key=key)

    @pytest.mark.parametrize(
        "url",
        [
            "http://abcdefghijklmnop.supabase.co",
            "https://example.com",
            "https://ABC.supabase.co",
            "https://abc.supabase.co/path",
        ],
    )
    def test_invalid_url(self, url):
        with pytest.raises(ConfigurationError, match="SUPABASE_URL"):
            SupabaseConfig(url=url, anon_key=TEST_SUPABASE_ANON_KEY)

    @pytest.mark.parametrize("key", ["not-a-jwt", "eyJonly.two", "abc.def.ghi"])
    def test_invalid_key(self, key):
        with pytest.raises(ConfigurationError, match="SUPABASE_ANON_KEY"):
            SupabaseConfig(url=TEST_SUPABASE_URL, anon_key=key)

    def test_key_not_echoed(self):
        with pytest.raises(ConfigurationError) as exc_info:
            SupabaseConfig(url=TEST_SUPABASE_URL, anon_key="secret-looking-value")
        assert "secret-looking-value" not in str(exc_info.value)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", TEST_SUPABASE_URL)
        monkeypatch.setenv("SUPABASE_ANON_KEY", TEST_SUPABASE_ANON_KEY)
        assert SupabaseConfig.from_env().url == TEST_SUPABASE_URL


class TestErrorFromResponse:
    def test_gotrue_body(self):
        response = httpx.Response(
            400,
            json={"error_code": "invalid_credentials", "msg": "Invalid login credentials"},
        )
        error = _error_from_response(response, "fallback")
        assert error.error == "invalid_credentials"
        assert error.message == "Invalid login credentials"
        assert error.status_code == 400
        assert error.code == "invalid_credentials"

    def test_oauth_style_body(self):
        response = httpx.Response(
            400, json={"error": "invalid_grant", "error_description": "Token expired"}
        )
        error = _error_from_response(response, "fallback")
        assert error.error == "invalid_grant"
        assert error.message == "Token expired"

    def test_non_json_body(self):
        error = _error_from_response(httpx.Response(502, text="<html>"), "fallback")
        assert error.error == "fallback"
        assert error.message == "Authentication request failed"
        assert error.status_code == 502


class TestSetSession:
    def test_valid_pair(self, provider, http):
        http.request.return_value = httpx.Response(
            200, json={"id": "user-123", "email": "user@example.com"}
        )

        session = provider.set_session("access-abc", "refresh-xyz")

        assert session.access_token == "access-abc"
        assert session.refresh_token == "refresh-xyz"
        assert session.user_id == "user-123"
        assert provider.current_session == session
        method, url, kwargs = sent(http)
        assert (method, url) == ("GET", f"{AUTH_URL}/user")
        assert kwargs["headers"]["Authorization"] == "Bearer access-abc"
        assert kwargs["headers"]["apikey"] == TEST_SUPABASE_ANON_KEY

    def test_expired_access_token_refreshes(self, provider, http):
        http.request.side_effect = [
            httpx.Response(401, json={"msg": "JWT expired"}),
            httpx.Response(200, json=session_payload()),
        ]

        session = provider.set_session("stale-access", "refresh-xyz")

        assert session.access_token == "new-access"
        assert session.expires_at_epoch_s == 1767272400
        method, url, kwargs = sent(http, 1)
        assert (method, url) == ("POST", f"{AUTH_URL}/token")
        assert kwargs["params"] == {"grant_type": "refresh_token"}
        assert kwargs["json"] == {"refresh_token": "refresh-xyz"}

    def test_refresh_rejected(self, provider, http):
        http.request.side_effect = [
            httpx.Response(401, json={}),
            httpx.Response(
                400,
                json={"error_code": "refresh_token_not_found", "msg": "Invalid Refresh Token"},
            ),
        ]

        with pytest.raises(ProviderError) as exc_info:
            provider.set_session("stale", "used-refresh")

        assert exc_info.value.error == "refresh_token_not_found"
        assert provider.current_session is None

    def test_other_status_is_invalid_token(self, provider, http):
        http.request.return_value = httpx.Response(403, json={})

        with pytest.raises(ProviderError) as exc_info:
            provider.set_session("a", "b")

        assert exc_info.value.error == "invalid_token"
        assert exc_info.value.status_code == 403

    def test_network_failure(self, provider, http, caplog):
        http.request.side_effect = httpx.ConnectError("Connection refused")

        with pytest.raises(ProviderError) as exc_info:
            provider.set_session("a", "b")

        assert exc_info.value.error == "network_error"
        assert "HTTP error during session verification" in caplog.text


class TestSignIn:
    def test_success(self, provider, http):
        http.request.return_value = httpx.Response(200, json=session_payload())

        session = provider.sign_in("user@example.com", "pw123456")

        assert session.user_id == "user-123"
        assert provider.current_session == session
        method, url, kwargs = sent(http)
        assert (method, url) == ("POST", f"{AUTH_URL}/token")
        assert kwargs["params"] == {"grant_type": "password"}
        assert kwargs["headers"]["Authorization"] == f"Bearer {TEST_SUPABASE_ANON_KEY}"

    def test_rejected(self, provider, http, caplog):
        http.request.return_value = httpx.Response(
            400,
            json={"error_code": "invalid_credentials", "msg": "Invalid login credentials"},
        )

        with pytest.raises(ProviderError, match="Invalid login credentials"):
            provider.sign_in("user@example.com", "wrong-pw")

        assert "Sign in rejected" in caplog.text
        assert "wrong-pw" not in caplog.text


class TestSignUp:
    def test_confirmation_required(self, provider, http):
        http.request.return_value = httpx.Response(
            200, json={"id": "user-123", "email": "user@example.com"}
        )

        result = provider.sign_up(
            "user@example.com", "pw123456", "todoapp://auth/callback?state=s"
        )

        assert result.user_id == "user-123"
        assert result.session is None
        assert provider.current_session is None
        _, url, kwargs = sent(http)
        assert url == f"{AUTH_URL}/signup"
        assert kwargs["params"] == {"redirect_to": "todoapp://auth/callback?state=s"}

    def test_auto_confirmed(self, provider, http):
        http.request.return_value = httpx.Response(201, json=session_payload())

        result = provider.sign_up("user@example.com", "pw123456", "todoapp://auth/callback")

        assert result.session is not None
        assert provider.current_session == result.session

    def test_already_registered(self, provider, http):
        http.request.return_value = httpx.Response(
            422, json={"error_code": "user_already_exists", "msg": "User already registered"}
        )

        with pytest.raises(ProviderError, match="already registered"):
            provider.sign_up("user@example.com", "pw123456", "todoapp://auth/callback")


class TestPasswordOperations:
    def test_reset_password_for_email(self, provider, http):
        http.request.return_value = httpx.Response(200, json={})

        provider.reset_password_for_email(
            "user@example.com", "todoapp://auth/password-reset?state=s"
        )

        method, url, kwargs = sent(http)
        assert (method, url) == ("POST", f"{AUTH_URL}/recover")
        assert kwargs["json"] == {"email": "user@example.com"}

    def test_reset_rejected(self, provider, http):
        http.request.return_value = httpx.Response(429, json={"msg": "rate limited"})

        with pytest.raises(ProviderError) as exc_info:
            provider.reset_password_for_email("user@example.com", "x")

        assert exc_info.value.status_code == 429

    def test_update_password_requires_session(self, provider, http):
        with pytest.raises(ProviderError, match="Auth session missing"):
            provider.update_password("new-password")
        http.request.assert_not_called()

    def test_update_password_uses_session_token(self, provider, http):
        http.request.side_effect = [
            httpx.Response(200, json={"id": "user-123"}),
            httpx.Response(200, json={"id": "user-123"}),
        ]
        provider.set_session("access-abc", "refresh-xyz")

        provider.update_password("new-password")

        method, url, kwargs = sent(http, 1)
        assert (method, url) == ("PUT", f"{AUTH_URL}/user")
        assert kwargs["json"] == {"password": "new-password"}
        assert kwargs["headers"]["Authorization"] == "Bearer access-abc"


class TestSignOut:
    def test_without_session_is_local_only(self, provider, http):
        provider.sign_out()
        http.request.assert_not_called()

    def test_revokes_and_clears(self, provider, http):
        http.request.side_effect = [
            httpx.Response(200, json={"id": "user-123"}),
            httpx.Response(204),
        ]
        provider.set_session("access-abc", "refresh-xyz")

        provider.sign_out()

        assert provider.current_session is None
        method, url, _ = sent(http, 1)
        assert (method, url) == ("POST", f"{AUTH_URL}/logout")

    def test_network_failure_still_clears(self, provider, http, caplog):
        http.request.side_effect = [
            httpx.Response(200, json={"id": "user-123"}),
            httpx.ConnectError("Connection refused"),
        ]
        provider.set_session("access-abc", "refresh-xyz")

        provider.sign_out()

        assert provider.current_session is None
        assert "Sign out request failed" in caplog.text
