"""
Gateway Configuration
=====================

Parses and validates configuration from environment variables.

For On-Call Engineers:
    Environment variables:
    - ENVIRONMENT: Deployment environment (default: dev). Anything other
      than local/dev/development/test enables redacted logging.
    - STATE_TOKEN_TABLE: Optional DynamoDB table for the state-token slot.
      When unset, tokens are kept in process memory.
    - INSTALLATION_ID: Required with STATE_TOKEN_TABLE. Scopes the state-token
      slot so installs sharing a table keep separate tokens.
    - STATE_TOKEN_TTL_SECONDS: State token lifetime (default: 300)
    - RATE_LIMIT_MAX_ATTEMPTS: Failures allowed per window (default: 5)
    - RATE_LIMIT_WINDOW_SECONDS: Attempt window (default: 900)
    - RATE_LIMIT_BLOCK_SECONDS: First lockout duration (default: 1800)
    - RATE_LIMIT_MAX_BLOCK_SECONDS: Lockout cap (default: 7200)
    - SUPABASE_URL / SUPABASE_ANON_KEY: Identity service credentials

    If startup fails with ConfigurationError, the message names the
    offending variable. Values are never echoed for credentials.

For Developers:
    - Use get_config() to load all configuration
    - Deep-link scheme, host, paths and parameter allowlists are compiled
      constants in src.gateway.shared.auth.deep_link and are deliberately
      not configurable here
"""

import logging
import os
from dataclasses import dataclass

from src.gateway.shared.errors import ConfigurationError
from src.gateway.shared.redacting_logger import LogPolicy

logger = logging.getLogger(__name__)

DEFAULT_ENVIRONMENT = "dev"
DEFAULT_STATE_TOKEN_TTL_SECONDS = 300
DEFAULT_RATE_LIMIT_MAX_ATTEMPTS = 5
DEFAULT_RATE_LIMIT_WINDOW_SECONDS = 15 * 60
DEFAULT_RATE_LIMIT_BLOCK_SECONDS = 30 * 60
DEFAULT_RATE_LIMIT_MAX_BLOCK_SECONDS = 2 * 60 * 60


@dataclass
class GatewayConfig:
    """
    Configuration for the deep-link authentication gateway.

    All fields are validated on instantiation.
    """

    environment: str = DEFAULT_ENVIRONMENT
    state_token_table: str | None = None
    installation_id: str | None = None
    state_token_ttl_seconds: int = DEFAULT_STATE_TOKEN_TTL_SECONDS
    rate_limit_max_attempts: int = DEFAULT_RATE_LIMIT_MAX_ATTEMPTS
    rate_limit_window_seconds: int = DEFAULT_RATE_LIMIT_WINDOW_SECONDS
    rate_limit_block_seconds: int = DEFAULT_RATE_LIMIT_BLOCK_SECONDS
    rate_limit_max_block_seconds: int = DEFAULT_RATE_LIMIT_MAX_BLOCK_SECONDS
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    aws_region: str | None = None

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate()

    def _validate(self):
        """
        Validate all configuration values.

        Raises:
            ConfigurationError: If any validation fails
        """
        if not self.environment:
            raise ConfigurationError("ENVIRONMENT must not be empty")

        if self.state_token_table and not self.installation_id:
            raise ConfigurationError(
                "INSTALLATION_ID is required when STATE_TOKEN_TABLE is set"
            )

        if self.state_token_ttl_seconds <= 0:
            raise ConfigurationError("STATE_TOKEN_TTL_SECONDS must be positive")

        if self.rate_limit_max_attempts < 1:
            raise ConfigurationError("RATE_LIMIT_MAX_ATTEMPTS must be at least 1")

        if self.rate_limit_window_seconds <= 0:
            raise ConfigurationError("RATE_LIMIT_WINDOW_SECONDS must be positive")

        if self.rate_limit_block_seconds <= 0:
            raise ConfigurationError("RATE_LIMIT_BLOCK_SECONDS must be positive")

        if self.rate_limit_max_block_seconds < self.rate_limit_block_seconds:
            raise ConfigurationError(
                "RATE_LIMIT_MAX_BLOCK_SECONDS must be >= RATE_LIMIT_BLOCK_SECONDS"
            )

        if bool(self.supabase_url) != bool(self.supabase_anon_key):
            raise ConfigurationError(
                "SUPABASE_URL and SUPABASE_ANON_KEY must be set together"
            )

    @property
    def log_policy(self) -> LogPolicy:
        return LogPolicy.for_environment(self.environment)


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


def get_config() -> GatewayConfig:
    """
    Load and validate configuration from environment variables.

    Returns:
        GatewayConfig with all settings

    Raises:
        ConfigurationError: If a variable is malformed or out of range
    """
    config = GatewayConfig(
        environment=os.environ.get("ENVIRONMENT", DEFAULT_ENVIRONMENT),
        state_token_table=os.environ.get("STATE_TOKEN_TABLE") or None,
        installation_id=os.environ.get("INSTALLATION_ID") or None,
        state_token_ttl_seconds=_int_env(
            "STATE_TOKEN_TTL_SECONDS", DEFAULT_STATE_TOKEN_TTL_SECONDS
        ),
        rate_limit_max_attempts=_int_env(
            "RATE_LIMIT_MAX_ATTEMPTS", DEFAULT_RATE_LIMIT_MAX_ATTEMPTS
        ),
        rate_limit_window_seconds=_int_env(
            "RATE_LIMIT_WINDOW_SECONDS", DEFAULT_RATE_LIMIT_WINDOW_SECONDS
        ),
        rate_limit_block_seconds=_int_env(
            "RATE_LIMIT_BLOCK_SECONDS", DEFAULT_RATE_LIMIT_BLOCK_SECONDS
        ),
        rate_limit_max_block_seconds=_int_env(
            "RATE_LIMIT_MAX_BLOCK_SECONDS", DEFAULT_RATE_LIMIT_MAX_BLOCK_SECONDS
        ),
        supabase_url=os.environ.get("SUPABASE_URL") or None,
        supabase_anon_key=os.environ.get("SUPABASE_ANON_KEY") or None,
        aws_region=os.environ.get("AWS_DEFAULT_REGION")
        or os.environ.get("AWS_REGION"),
    )

    logger.info(
        "Gateway configuration loaded",
        extra={
            "environment": config.environment,
            "log_policy": str(config.log_policy),
            "persistent_state_tokens": config.state_token_table is not None,
        },
    )

    return config
