"""Deep-link URL validation for authentication callbacks.

The OS routes any todoapp:// URL to the desktop app, so every URL arriving
here is attacker-controllable. validate_deep_link_url() classifies a raw
string as valid or rejected with exactly one ReasonCode.

Checks run in a fixed order (DEEP_LINK_CHECKS) and the first failure wins.
The order is part of the security contract: it keeps rejections
deterministic and discloses as little as possible about later checks.

Security considerations:
- Scheme is compared case-insensitively, host case-sensitively
- Paths are compared byte-for-byte: no decoding, no "..", no trailing "/"
- Allowlists are compiled in and never read from the caller
- The validator is total: parse failures become INVALID_URL_FORMAT
- Any string with a scheme reaches the ordered checks, so "javascript:..."
  is INVALID_SCHEME and "todoapp:auth/callback" (no "//") is INVALID_HOST
"""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import NamedTuple
from urllib.parse import parse_qsl, urlencode, urlsplit

from pydantic import BaseModel, ConfigDict

from src.gateway.shared.errors.reason_codes import ReasonCode
from src.gateway.shared.logging_utils import sanitize_for_log

DEEP_LINK_SCHEME = "todoapp"
DEEP_LINK_HOST = "auth"

CALLBACK_PATH = "/callback"
PASSWORD_RESET_PATH = "/password-reset"
ALLOWED_DEEP_LINK_PATHS: tuple[str, ...] = (CALLBACK_PATH, PASSWORD_RESET_PATH)

ACCESS_TOKEN_PARAM = "access_token"
REFRESH_TOKEN_PARAM = "refresh_token"
TYPE_PARAM = "type"
TOKEN_HASH_PARAM = "token_hash"
STATE_PARAM = "state"
ALLOWED_QUERY_PARAMS: tuple[str, ...] = (
    ACCESS_TOKEN_PARAM,
    REFRESH_TOKEN_PARAM,
    TYPE_PARAM,
    TOKEN_HASH_PARAM,
    STATE_PARAM,
)

RECOVERY_TYPE = "recovery"

MAX_URL_LENGTH = 2048  # inclusive

# Whitespace and C0/C1 control characters are never legitimate in a deep link
_FORBIDDEN_CHARS = re.compile(r"[\s\x00-\x1f\x7f-\x9f]")


class ValidationResult(BaseModel):
    """Outcome of validating one deep-link URL.

    detail may echo attacker input (host, path, parameter name). It is a
    developer diagnostic only and must not reach users or release logs.
    """

    model_config = ConfigDict(frozen=True)

    is_valid: bool
    reason_code: ReasonCode | None = None
    detail: str | None = None

    @classmethod
    def ok(cls) -> ValidationResult:
        return cls(is_valid=True)

    @classmethod
    def reject(cls, code: ReasonCode, detail: str) -> ValidationResult:
        return cls(is_valid=False, reason_code=code, detail=detail)


class ParsedDeepLink(NamedTuple):
    """Raw components of a deep link. Nothing is normalized except the scheme."""

    raw: str
    scheme: str
    authority: str
    path: str
    params: list[tuple[str, str]]
    fragment: str

    def get(self, name: str) -> str | None:
        """Return the first value of a query parameter, or None if absent."""
        for key, value in self.params:
            if key == name:
                return value
        return None

    def param_names(self) -> list[str]:
        return [key for key, _ in self.params]


class DeepLinkParseError(ValueError):
    """The string could not be parsed as a structured URL."""

    pass


def parse_deep_link(url: str) -> ParsedDeepLink:
    """Split a URL into scheme, authority, path, query parameters and fragment.

    Raises:
        DeepLinkParseError: If the value is not a string, contains
            whitespace/control characters, or has no scheme.
    """
    if not isinstance(url, str):
        raise DeepLinkParseError("URL must be a string")

    if _FORBIDDEN_CHARS.search(url):
        raise DeepLinkParseError("URL contains whitespace or control characters")

    try:
        parts = urlsplit(url)
        params = parse_qsl(parts.query, keep_blank_values=True)
    except ValueError as e:
        raise DeepLinkParseError("URL could not be parsed") from e

    # Without "//" the authority is empty, so the host check rejects it.
    if not parts.scheme:
        raise DeepLinkParseError("URL has no scheme")

    return ParsedDeepLink(
        raw=url,
        scheme=parts.scheme,
        authority=parts.netloc,
        path=parts.path,
        params=params,
        fragment=parts.fragment,
    )


# =============================================================================
# Ordered checks
# =============================================================================
# Each check returns a detail string on failure, None on success.

_Check = Callable[[ParsedDeepLink], str | None]


def _check_scheme(link: ParsedDeepLink) -> str | None:
    if link.scheme.lower() != DEEP_LINK_SCHEME:
        return f"Invalid scheme: {link.scheme}. Expected: {DEEP_LINK_SCHEME}"
    return None


def _check_host(link: ParsedDeepLink) -> str | None:
    if link.authority != DEEP_LINK_HOST:
        return f"Invalid host: {link.authority}. Expected: {DEEP_LINK_HOST}"
    return None


def _check_path(link: ParsedDeepLink) -> str | None:
    if link.path not in ALLOWED_DEEP_LINK_PATHS:
        return (
            f"Path not allowed: {link.path}. "
            f"Allowed paths: {', '.join(ALLOWED_DEEP_LINK_PATHS)}"
        )
    return None


def _check_query_params(link: ParsedDeepLink) -> str | None:
    for name in link.param_names():
        if name not in ALLOWED_QUERY_PARAMS:
            return f"Query parameter not allowed: {name}"
    return None


def _check_duplicates(link: ParsedDeepLink) -> str | None:
    seen: set[str] = set()
    for name in link.param_names():
        if name in seen:
            return f"Duplicate query parameter: {name}"
        seen.add(name)
    return None


def _check_fragment(link: ParsedDeepLink) -> str | None:
    if link.fragment:
        return "URL fragments are not allowed"
    return None


class DeepLinkCheck(NamedTuple):
    name: str
    check: _Check
    reason_code: ReasonCode


# Order matters: see module docstring.
DEEP_LINK_CHECKS: tuple[DeepLinkCheck, ...] = (
    DeepLinkCheck("scheme", _check_scheme, ReasonCode.INVALID_SCHEME),
    DeepLinkCheck("host", _check_host, ReasonCode.INVALID_HOST),
    DeepLinkCheck("path", _check_path, ReasonCode.INVALID_PATH),
    DeepLinkCheck("query_params", _check_query_params, ReasonCode.INVALID_QUERY_PARAM),
    DeepLinkCheck("duplicate_params", _check_duplicates, ReasonCode.DUPLICATE_PARAM),
    DeepLinkCheck("fragment", _check_fragment, ReasonCode.FRAGMENT_NOT_ALLOWED),
)


def validate_deep_link_url(url: str) -> ValidationResult:
    """Validate an incoming deep-link URL against the fixed allowlists.

    Order: length, parse, scheme, host, path, query names, duplicates,
    fragment. Never raises.

    Args:
        url: Raw URL string delivered by the OS deep-link transport

    Returns:
        ValidationResult with is_valid, and reason_code/detail on rejection

    Example:
        >>> validate_deep_link_url("todoapp://auth/admin").reason_code
        <ReasonCode.INVALID_PATH: 'INVALID_PATH'>
    """
    if isinstance(url, str) and len(url) > MAX_URL_LENGTH:
        return ValidationResult.reject(
            ReasonCode.URL_TOO_LONG,
            f"URL exceeds maximum length of {MAX_URL_LENGTH} characters",
        )

    try:
        link = parse_deep_link(url)
    except DeepLinkParseError as e:
        return ValidationResult.reject(ReasonCode.INVALID_URL_FORMAT, str(e))

    for entry in DEEP_LINK_CHECKS:
        detail = entry.check(link)
        if detail is not None:
            return ValidationResult.reject(entry.reason_code, sanitize_for_log(detail))

    return ValidationResult.ok()


def build_redirect_url(path: str, state_token: str) -> str:
    """Build the deep link an emailed auth link should redirect to.

    Example:
        >>> build_redirect_url(CALLBACK_PATH, "abc")
        'todoapp://auth/callback?state=abc'
    """
    if path not in ALLOWED_DEEP_LINK_PATHS:
        raise ValueError(f"Path not allowed: {path}")
    query = urlencode({STATE_PARAM: state_token})
    return f"{DEEP_LINK_SCHEME}://{DEEP_LINK_HOST}{path}?{query}"
