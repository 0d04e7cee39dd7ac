"""Composition root for the deep-link authentication gateway.

build_gateway() constructs every stateful component exactly once and wires
them together. Nothing in the gateway is a module-level singleton, so
tests build a fresh Gateway per case.

For On-Call Engineers:
    Startup failures raise ConfigurationError naming the bad variable.
    See src/gateway/shared/config.py for the full variable list.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from src.gateway.desktop.auth_service import AuthResult, AuthService
from src.gateway.desktop.callback import AuthCallbackHandler
from src.gateway.desktop.session_provider import (
    SessionProvider,
    SupabaseConfig,
    SupabaseSessionProvider,
)
from src.gateway.shared.auth.state_token import StateTokenManager
from src.gateway.shared.config import GatewayConfig, get_config
from src.gateway.shared.errors import ConfigurationError
from src.gateway.shared.middleware.rate_limit import RateLimitConfig, RateLimiter
from src.gateway.shared.redacting_logger import RedactingLogger
from src.gateway.shared.storage import (
    DynamoDBKeyValueStore,
    InMemoryKeyValueStore,
    KeyValueStore,
)

logger = logging.getLogger(__name__)


@dataclass
class Gateway:
    """Wired gateway components sharing one state-token slot."""

    config: GatewayConfig
    log: RedactingLogger
    state_tokens: StateTokenManager
    rate_limiter: RateLimiter
    session_provider: SessionProvider
    auth: AuthService
    callbacks: AuthCallbackHandler

    def submit_new_password(self, new_password: str) -> AuthResult:
        """Complete a password recovery started by a recovery link."""
        if not self.callbacks.awaiting_new_password:
            return AuthResult(
                success=False,
                message="Please open the password reset link from your email first.",
            )
        result = self.auth.update_password(new_password)
        if result.success:
            self.callbacks.finish_password_recovery()
        return result


def build_store(config: GatewayConfig) -> KeyValueStore:
    if config.state_token_table:
        return DynamoDBKeyValueStore(
            config.state_token_table, region_name=config.aws_region
        )
    return InMemoryKeyValueStore()


def build_rate_limiter(
    config: GatewayConfig, log: RedactingLogger | None = None
) -> RateLimiter:
    return RateLimiter(
        RateLimitConfig(
            max_attempts=config.rate_limit_max_attempts,
            window_ms=config.rate_limit_window_seconds * 1000,
            block_duration_ms=config.rate_limit_block_seconds * 1000,
            max_block_duration_ms=config.rate_limit_max_block_seconds * 1000,
        ),
        log=log,
    )


def build_gateway(
    config: GatewayConfig | None = None,
    *,
    session_provider: SessionProvider | None = None,
    store: KeyValueStore | None = None,
    notify: Callable[[str], None] | None = None,
) -> Gateway:
    """Build a Gateway from configuration.

    Args:
        config: Gateway configuration (defaults to get_config())
        session_provider: Overrides the Supabase provider built from config
        store: Overrides the state-token store built from config
        notify: Shows callback failure messages to the user

    Raises:
        ConfigurationError: If no session provider is given and the
            Supabase settings are missing or malformed
    """
    config = config or get_config()
    log = RedactingLogger(config.log_policy)

    if session_provider is None:
        if not config.supabase_url:
            raise ConfigurationError(
                "SUPABASE_URL and SUPABASE_ANON_KEY are required"
            )
        session_provider = SupabaseSessionProvider(
            SupabaseConfig(url=config.supabase_url, anon_key=config.supabase_anon_key)
        )

    state_tokens = StateTokenManager(
        store if store is not None else build_store(config),
        ttl_seconds=config.state_token_ttl_seconds,
        installation_id=config.installation_id,
        log=log,
    )
    rate_limiter = build_rate_limiter(config, log)

    gateway = Gateway(
        config=config,
        log=log,
        state_tokens=state_tokens,
        rate_limiter=rate_limiter,
        session_provider=session_provider,
        auth=AuthService(rate_limiter, state_tokens, session_provider, log),
        callbacks=AuthCallbackHandler(
            state_tokens, session_provider, log, notify=notify
        ),
    )

    logger.info(
        "Gateway built",
        extra={
            "environment": config.environment,
            "log_policy": str(config.log_policy),
        },
    )
    return gateway
