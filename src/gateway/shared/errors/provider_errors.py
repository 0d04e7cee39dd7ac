"""Error types raised at the identity provider and rate-limit boundaries.

ProviderError is opaque to the gateway: its message comes from the
identity service and may echo user input, so it is only ever logged
through get_safe_error_info() or mapped to a friendly sentence.
"""


class ProviderError(Exception):
    """Identity provider rejected a request or could not be reached."""

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
    ):
        self.error = error
        self.message = message
        self.status_code = status_code
        self.code = code
        super().__init__(message)


class RateLimitExceeded(Exception):
    """Raised when an identifier is currently locked out."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after_ms: int = 0,
    ):
        self.message = message
        self.retry_after_ms = retry_after_ms
        super().__init__(self.message)


class ConfigurationError(Exception):
    """Raised when gateway configuration is invalid."""

    pass
