"""Client configuration for pygps51."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pygps51 import _constants as c
from pygps51.exceptions import Gps51ConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env_key: str, value: str, cast: type[int] | type[float]) -> int | float:
    try:
        return cast(value)
    except ValueError as exc:
        raise Gps51ConfigError(f"{env_key} must be a number, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class RateLimitPolicy:
    """Pacing and retry limits for upstream calls.

    All durations are milliseconds. The upstream budget is shared by every
    running job instance, so these values describe one instance's share of
    a global ceiling rather than a private allowance.
    """

    max_burst_calls: int = c.MAX_BURST_CALLS
    burst_window_ms: int = c.BURST_WINDOW_MS
    min_delay_ms: int = c.MIN_DELAY_MS
    max_retries: int = c.MAX_RETRIES
    initial_retry_delay_ms: int = c.INITIAL_RETRY_DELAY_MS
    max_retry_delay_ms: int = c.MAX_RETRY_DELAY_MS
    backoff_multiplier: float = c.BACKOFF_MULTIPLIER
    rate_limit_codes: frozenset[int] = c.RATE_LIMIT_ERROR_CODES
    auth_error_codes: frozenset[int] = c.AUTH_ERROR_CODES
    state_key: str = c.RATE_LIMIT_STATE_KEY

    def backoff_delay_ms(self, attempt: int) -> int:
        """Exponential delay for zero-based *attempt*, capped."""
        delay = self.initial_retry_delay_ms * self.backoff_multiplier**attempt
        return int(min(delay, self.max_retry_delay_ms))


@dataclasses.dataclass(frozen=True)
class Gps51Config:
    """Client configuration.

    Parameters
    ----------
    username : str
        GPS51 account name. Only needed for :meth:`Gps51Client.login`.
    password : str
        GPS51 account password (plaintext; hashed before sending).
    api_url : str
        OpenAPI endpoint.
    proxy_url : str or None
        Optional relay. When set, every call is posted to the relay as
        ``{"targetUrl", "method", "data"}`` instead of hitting ``api_url``
        directly.
    server_id : str
        Server identifier used when a credential does not carry one.
    request_timeout : float
        Total HTTP timeout per call, seconds.
    offline_threshold_ms : int
        A vehicle whose last update is older than this is offline.
    vendor_utc_offset_hours : int
        UTC offset of naive ``yyyy-MM-dd HH:mm:ss`` strings from the vendor.
    token_ttl : float
        Lifetime assigned to tokens obtained via login, seconds. The
        vendor does not report one.
    api_trace_enabled : bool
        Log redacted request and response bodies at DEBUG level.
    rate_limit : RateLimitPolicy
        Pacing and retry limits.
    """

    username: str = ""
    password: str = ""
    api_url: str = c.API_URL
    proxy_url: str | None = None
    server_id: str = c.DEFAULT_SERVER_ID
    request_timeout: float = 30.0
    offline_threshold_ms: int = c.DEFAULT_OFFLINE_THRESHOLD_MS
    vendor_utc_offset_hours: int = c.VENDOR_UTC_OFFSET_HOURS
    token_ttl: float = 24 * 3600
    api_trace_enabled: bool = False
    rate_limit: RateLimitPolicy = dataclasses.field(default_factory=RateLimitPolicy)

    @classmethod
    def from_env(cls, **overrides: Any) -> Gps51Config:
        """Create configuration from environment variables.

        Reads ``GPS51_USERNAME``, ``GPS51_PASSWORD`` and the optional
        ``GPS51_*`` variables below. Explicit keyword arguments override
        environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        Gps51Config
            Populated configuration.

        Raises
        ------
        Gps51ConfigError
            If a numeric variable cannot be parsed.
        """
        env = os.environ

        policy_kwargs: dict[str, Any] = {}
        _ENV_POLICY_MAP: dict[str, tuple[str, type[int] | type[float]]] = {
            "GPS51_MAX_BURST_CALLS": ("max_burst_calls", int),
            "GPS51_BURST_WINDOW_MS": ("burst_window_ms", int),
            "GPS51_MIN_DELAY_MS": ("min_delay_ms", int),
            "GPS51_MAX_RETRIES": ("max_retries", int),
            "GPS51_INITIAL_RETRY_DELAY_MS": ("initial_retry_delay_ms", int),
            "GPS51_MAX_RETRY_DELAY_MS": ("max_retry_delay_ms", int),
            "GPS51_BACKOFF_MULTIPLIER": ("backoff_multiplier", float),
        }
        for env_key, (field_name, cast) in _ENV_POLICY_MAP.items():
            val = env.get(env_key)
            if val is not None:
                policy_kwargs[field_name] = _env_number(env_key, val, cast)

        policy_overrides = overrides.pop("rate_limit", None)
        if isinstance(policy_overrides, dict):
            policy_kwargs.update(policy_overrides)
        elif isinstance(policy_overrides, RateLimitPolicy):
            policy_kwargs = dataclasses.asdict(policy_overrides)

        _ENV_CONFIG_MAP = {
            "GPS51_USERNAME": "username",
            "GPS51_PASSWORD": "password",
            "GPS51_API_URL": "api_url",
            "GPS51_PROXY_URL": "proxy_url",
            "GPS51_SERVER_ID": "server_id",
        }
        config_kwargs: dict[str, Any] = {"rate_limit": RateLimitPolicy(**policy_kwargs)}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val:
                config_kwargs[field_name] = val

        _ENV_NUMERIC_MAP: dict[str, tuple[str, type[int] | type[float]]] = {
            "GPS51_REQUEST_TIMEOUT": ("request_timeout", float),
            "GPS51_OFFLINE_THRESHOLD_MS": ("offline_threshold_ms", int),
            "GPS51_VENDOR_UTC_OFFSET": ("vendor_utc_offset_hours", int),
            "GPS51_TOKEN_TTL": ("token_ttl", float),
        }
        for env_key, (field_name, cast) in _ENV_NUMERIC_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_number(env_key, val, cast)

        if "api_trace_enabled" not in overrides:
            config_kwargs["api_trace_enabled"] = _env_bool(env.get("GPS51_API_TRACE_ENABLED"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
