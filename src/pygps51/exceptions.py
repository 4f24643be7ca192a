"""Custom exception hierarchy for pygps51."""

from __future__ import annotations


class Gps51Error(Exception):
    """Base exception for all pygps51 errors."""


class Gps51ConfigError(Gps51Error):
    """Invalid or missing configuration."""


class Gps51TransportError(Gps51Error):
    """HTTP-level failure (network, non-200, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        action: str = "",
    ) -> None:
        self.status_code = status_code
        self.action = action
        super().__init__(message)


class Gps51TransportExhaustedError(Gps51TransportError):
    """Transport kept failing after every automatic retry.

    The last underlying :class:`Gps51TransportError` is chained as
    ``__cause__``.
    """


class Gps51ApiError(Gps51Error):
    """API returned a non-zero ``status`` (application-level error)."""

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        action: str = "",
    ) -> None:
        self.code = code
        self.action = action
        super().__init__(message)


class Gps51AuthenticationError(Gps51ApiError):
    """Login rejected or token no longer accepted."""


class Gps51TokenMissingError(Gps51AuthenticationError):
    """No stored token; an operator login is required."""


class Gps51TokenExpiredError(Gps51AuthenticationError):
    """The stored token is past its expiry time."""


class Gps51RequestError(Gps51ApiError):
    """Upstream rejected the request itself. Never retried."""


class Gps51RateLimitError(Gps51ApiError):
    """Rate limited by the upstream API.

    Raised after all automatic retries were spent on rate-limit codes
    (``8902``, ``9903``, ``9904``), or immediately for a login call.
    ``backoff_until`` is the epoch-millisecond end of the backoff window
    published to the shared state.
    """

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        action: str = "",
        backoff_until: int | None = None,
    ) -> None:
        self.backoff_until = backoff_until
        super().__init__(message, code=code, action=action)
