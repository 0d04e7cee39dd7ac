"""Deep-link authentication primitives."""

from src.gateway.shared.auth.deep_link import (
    ALLOWED_DEEP_LINK_PATHS,
    ALLOWED_QUERY_PARAMS,
    DEEP_LINK_CHECKS,
    MAX_URL_LENGTH,
    ParsedDeepLink,
    ValidationResult,
    build_redirect_url,
    parse_deep_link,
    validate_deep_link_url,
)
from src.gateway.shared.auth.state_token import (
    StateToken,
    StateTokenManager,
    generate_state_token,
)

__all__ = [
    "ALLOWED_DEEP_LINK_PATHS",
    "ALLOWED_QUERY_PARAMS",
    "DEEP_LINK_CHECKS",
    "MAX_URL_LENGTH",
    "ParsedDeepLink",
    "ValidationResult",
    "build_redirect_url",
    "parse_deep_link",
    "validate_deep_link_url",
    "StateToken",
    "StateTokenManager",
    "generate_state_token",
]
