"""High-level async client for the GPS51 OpenAPI."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

import aiohttp

from pygps51._constants import STATUS_OK
from pygps51._hashing import md5_hex
from pygps51._ratelimit import RateLimiter
from pygps51._transport import HttpTransport, Transport
from pygps51.config import Gps51Config
from pygps51.credentials import Credentials
from pygps51.exceptions import (
    Gps51ApiError,
    Gps51AuthenticationError,
    Gps51ConfigError,
    Gps51Error,
    Gps51RateLimitError,
    Gps51RequestError,
    Gps51TransportError,
    Gps51TransportExhaustedError,
)
from pygps51.ingestion.normalize import format_vendor_time, safe_int
from pygps51.models.raw import RawPing
from pygps51.storage import KeyValueStore

_logger = logging.getLogger(__name__)


def _status_of(result: Mapping[str, Any]) -> int:
    # A payload without a status field is a bare success body.
    status = safe_int(result.get("status"))
    return STATUS_OK if status is None else status


def _records(result: Mapping[str, Any]) -> list[dict[str, Any]]:
    records = result.get("records")
    if records is None and isinstance(result.get("data"), Mapping):
        records = result["data"].get("records")
    if not isinstance(records, list):
        return []
    return [r for r in records if isinstance(r, dict)]


class Gps51Client:
    """Async client for the GPS51 OpenAPI.

    Every call goes through a :class:`RateLimiter` whose backoff window is
    shared with other instances through ``rate_limit_store``.

    Usage::

        async with Gps51Client(config) as client:
            credentials = await client.login()
            pings = await client.fetch_last_positions(credentials, ["860000000000001"])
    """

    def __init__(
        self,
        config: Gps51Config,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
        rate_limit_store: KeyValueStore | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._transport = transport
        self._owns_transport = transport is None
        self._limiter = rate_limiter or RateLimiter(config.rate_limit, rate_limit_store)

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> Gps51Client:
        if self._owns_transport:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._transport = HttpTransport(self._config, self._http_session)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        if self._owns_transport:
            self._transport = None

    @property
    def config(self) -> Gps51Config:
        return self._config

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise Gps51Error("Client is not open; use 'async with Gps51Client(...)'")
        return self._transport

    # ------------------------------------------------------------------
    # Core call path
    # ------------------------------------------------------------------

    def _raise_for_status(self, action: str, result: Mapping[str, Any]) -> None:
        status = _status_of(result)
        if status == STATUS_OK:
            return
        cause = result.get("cause") or result.get("message") or "Unknown error"
        if status in self._config.rate_limit.auth_error_codes:
            raise Gps51AuthenticationError(
                f"GPS51 rejected the token for {action}: {cause} (status: {status})",
                code=status,
                action=action,
            )
        raise Gps51RequestError(
            f"GPS51 {action} error: {cause} (status: {status})",
            code=status,
            action=action,
        )

    async def call(
        self,
        action: str,
        credentials: Credentials,
        payload: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Invoke one OpenAPI action with pacing and bounded retries.

        Rate-limit codes are retried with a backoff published to the shared
        state; transport failures are retried with a local backoff only.
        Authentication and request errors are raised immediately.

        Raises
        ------
        Gps51RateLimitError
            Every attempt was answered with a rate-limit code.
        Gps51TransportExhaustedError
            Every attempt failed at the transport level.
        Gps51AuthenticationError
            The token was rejected.
        Gps51RequestError
            Any other non-zero upstream status.
        """
        transport = self._require_transport()
        policy = self._limiter.policy
        query = {"token": credentials.token, "serverid": credentials.serverid}
        body = dict(payload or {})
        last_error: Gps51Error | None = None

        for attempt in range(policy.max_retries + 1):
            retrying = attempt < policy.max_retries
            await self._limiter.acquire()
            _logger.debug("Calling %s (attempt %d/%d)", action, attempt + 1, policy.max_retries + 1)

            try:
                result = await transport.post_action(action, query, body)
            except Gps51TransportError as exc:
                last_error = exc
                if retrying:
                    delay = policy.backoff_delay_ms(attempt)
                    _logger.warning("Network error on %s, retrying in %dms: %s", action, delay, exc)
                    await self._limiter.sleep_ms(delay)
                continue

            status = _status_of(result)
            if status in policy.rate_limit_codes:
                delay = await self._limiter.record_rate_limit(attempt, status)
                last_error = Gps51RateLimitError(
                    f"GPS51 rate limit error on {action} after {policy.max_retries} retries: "
                    f"{result.get('cause') or 'Unknown'} (status: {status})",
                    code=status,
                    action=action,
                    backoff_until=self._limiter.backoff_until,
                )
                if retrying:
                    await self._limiter.sleep_ms(delay)
                continue

            await self._limiter.record_success()
            self._raise_for_status(action, result)
            return result

        if isinstance(last_error, Gps51ApiError):
            raise last_error
        raise Gps51TransportExhaustedError(
            f"GPS51 {action} failed after {policy.max_retries} retries: {last_error}",
            status_code=getattr(last_error, "status_code", None),
            action=action,
        ) from last_error

    async def login(self, username: str | None = None, password: str | None = None) -> Credentials:
        """Obtain a token.

        Paced like every other call but never retried: on a rate-limit code
        the backoff is published and :class:`Gps51RateLimitError` raised so
        the caller can decide when to try again.
        """
        username = username if username is not None else self._config.username
        password = password if password is not None else self._config.password
        if not username or not password:
            raise Gps51ConfigError("GPS51 username and password are required for login")

        transport = self._require_transport()
        await self._limiter.acquire()
        _logger.debug("Calling login for %s", username)
        result = await transport.post_action(
            "login",
            {},
            {"type": "USER", "from": "web", "username": username, "password": md5_hex(password)},
        )

        status = _status_of(result)
        if status in self._limiter.policy.rate_limit_codes:
            delay = await self._limiter.record_rate_limit(0, status)
            raise Gps51RateLimitError(
                f"GPS51 rate limit error during login: {result.get('cause') or 'Unknown'} (status: {status}). "
                f"Retry after {round(delay / 1000)} seconds.",
                code=status,
                action="login",
                backoff_until=self._limiter.backoff_until,
            )
        await self._limiter.record_success()

        token = result.get("token")
        if status != STATUS_OK or not token:
            raise Gps51AuthenticationError(
                f"GPS51 login failed: {result.get('cause') or 'invalid username or password'} (status: {status})",
                code=status,
                action="login",
            )

        _logger.info("GPS51 login successful for %s", username)
        return Credentials(
            token=str(token),
            serverid=str(result.get("serverid") or self._config.server_id),
            username=username,
            expires_at=datetime.now(UTC) + timedelta(seconds=self._config.token_ttl),
        )

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def list_devices(self, credentials: Credentials) -> list[str]:
        """Device ids visible to the account (``querymonitorlist``)."""
        result = await self.call("querymonitorlist", credentials, {"username": credentials.username})
        groups = result.get("groups") or []
        device_ids: list[str] = []
        for group in groups:
            for device in (group or {}).get("devices") or []:
                device_id = device.get("deviceid") if isinstance(device, dict) else None
                if device_id:
                    device_ids.append(str(device_id))
        return device_ids

    async def fetch_last_positions(
        self,
        credentials: Credentials,
        device_ids: Sequence[str],
        last_query_time: int = 0,
    ) -> list[RawPing]:
        """Latest position report per device (``lastposition``)."""
        result = await self.call(
            "lastposition",
            credentials,
            {"deviceids": list(device_ids), "lastquerypositiontime": last_query_time},
        )
        return [RawPing.model_validate(record) for record in _records(result)]

    async def query_trips(
        self,
        credentials: Credentials,
        device_id: str,
        begin: datetime,
        end: datetime,
    ) -> list[dict[str, Any]]:
        """Vendor-detected trips between *begin* and *end* (``querytrips``)."""
        offset = self._config.vendor_utc_offset_hours
        result = await self.call(
            "querytrips",
            credentials,
            {
                "deviceid": device_id,
                "begintime": format_vendor_time(begin, offset),
                "endtime": format_vendor_time(end, offset),
                "timezone": offset,
            },
        )
        return _records(result)

    async def query_tracks(
        self,
        credentials: Credentials,
        device_id: str,
        begin: datetime,
        end: datetime,
    ) -> list[RawPing]:
        """Position history between *begin* and *end* (``querytrack``)."""
        offset = self._config.vendor_utc_offset_hours
        result = await self.call(
            "querytrack",
            credentials,
            {
                "deviceid": device_id,
                "starttime": format_vendor_time(begin, offset),
                "endtime": format_vendor_time(end, offset),
                "coordsys": "wgs84",
            },
        )
        pings: list[RawPing] = []
        for record in _records(result):
            record.setdefault("deviceid", device_id)
            pings.append(RawPing.model_validate(record))
        return pings
