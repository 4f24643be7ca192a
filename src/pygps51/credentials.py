"""Upstream credentials and where they come from."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from pygps51._constants import DEFAULT_SERVER_ID, TOKEN_KEY
from pygps51.exceptions import Gps51TokenExpiredError, Gps51TokenMissingError
from pygps51.storage import KeyValueStore

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Credentials(BaseModel):
    """Token plus server id accepted by the OpenAPI.

    Parameters
    ----------
    token : str
        Session token from ``login``.
    serverid : str
        Server the account lives on.
    username : str
        Account the token belongs to, informational.
    expires_at : datetime or None
        When the token stops being valid, if known.
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    token: str = Field(min_length=1)
    serverid: str = DEFAULT_SERVER_ID
    username: str = ""
    expires_at: datetime | None = None

    @field_validator("expires_at")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or _utcnow()) >= self.expires_at


class CredentialSource(Protocol):
    """Opaque provider of a currently valid token."""

    async def get_valid_token(self) -> Credentials:
        ...


class StaticCredentialSource:
    """Always hands out the same credentials."""

    def __init__(self, credentials: Credentials) -> None:
        self._credentials = credentials

    async def get_valid_token(self) -> Credentials:
        if self._credentials.is_expired():
            raise Gps51TokenExpiredError("GPS token expired. Admin login required.")
        return self._credentials


class StoredCredentialSource:
    """Reads the token record written by an operator login.

    The record is stored as JSON under ``key``::

        {"value": "<token>", "expires_at": "<iso8601>",
         "metadata": {"username": "...", "serverid": "..."}}
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        key: str = TOKEN_KEY,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._key = key
        self._clock = clock

    async def get_valid_token(self) -> Credentials:
        raw = await self._store.get(self._key)
        if not raw:
            raise Gps51TokenMissingError("No GPS token found. Admin login required.")
        try:
            record: dict[str, Any] = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise Gps51TokenMissingError("Stored GPS token record is not valid JSON.") from exc
        if not isinstance(record, dict) or not record.get("value"):
            raise Gps51TokenMissingError("No GPS token found. Admin login required.")

        metadata = record.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}
        try:
            credentials = Credentials(
                token=str(record["value"]),
                serverid=str(metadata.get("serverid") or DEFAULT_SERVER_ID),
                username=str(metadata.get("username") or ""),
                expires_at=record.get("expires_at"),
            )
        except ValidationError as exc:
            raise Gps51TokenMissingError("Stored GPS token record is malformed. Admin login required.") from exc
        if credentials.is_expired(self._clock()):
            _logger.warning("Stored GPS token for %s expired at %s", credentials.username, credentials.expires_at)
            raise Gps51TokenExpiredError("GPS token expired. Admin login required.")
        return credentials

    async def save(self, credentials: Credentials) -> None:
        """Write *credentials* in the record format read above."""
        record = {
            "value": credentials.token,
            "expires_at": credentials.expires_at.isoformat() if credentials.expires_at else None,
            "metadata": {"username": credentials.username, "serverid": credentials.serverid},
        }
        await self._store.set(self._key, json.dumps(record))
