"""HTTP transport for the GPS51 OpenAPI, direct or through a relay."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol
from urllib.parse import urlencode

import aiohttp

from pygps51._constants import USER_AGENT
from pygps51._redact import redact_for_log, redact_url
from pygps51.config import Gps51Config
from pygps51.exceptions import Gps51TransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by the client.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`HttpTransport`) concrete.
    """

    async def post_action(
        self,
        action: str,
        query: Mapping[str, str],
        payload: Mapping[str, Any],
    ) -> dict[str, Any]:
        ...


class HttpTransport:
    """POST one OpenAPI action and return the decoded JSON object.

    With ``config.proxy_url`` set, the request is wrapped as
    ``{"targetUrl": <openapi url>, "method": "POST", "data": <payload>}``
    and sent to the relay, which forwards it from a whitelisted address.
    """

    def __init__(self, config: Gps51Config, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session

    def build_url(self, action: str, query: Mapping[str, str]) -> str:
        return f"{self._config.api_url}?{urlencode({'action': action, **query})}"

    async def post_action(
        self,
        action: str,
        query: Mapping[str, str],
        payload: Mapping[str, Any],
    ) -> dict[str, Any]:
        target_url = self.build_url(action, query)
        if self._config.proxy_url:
            url = self._config.proxy_url
            body: Mapping[str, Any] = {"targetUrl": target_url, "method": "POST", "data": dict(payload)}
        else:
            url = target_url
            body = payload

        headers = {
            "content-type": "application/json; charset=UTF-8",
            "user-agent": USER_AGENT,
        }
        timeout = aiohttp.ClientTimeout(total=self._config.request_timeout)

        _logger.debug("POST %s action=%s", redact_url(url), action)
        if self._config.api_trace_enabled:
            _logger.debug("Request body for %s: %s", action, redact_for_log(body))

        try:
            async with self._http.post(url, json=dict(body), headers=headers, timeout=timeout) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise Gps51TransportError(
                        f"HTTP {resp.status} from {action}: {text[:200]}",
                        status_code=resp.status,
                        action=action,
                    )
        except Gps51TransportError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise Gps51TransportError(
                f"Request to {action} failed: {exc!r}",
                action=action,
            ) from exc

        try:
            result = json.loads(text)
        except json.JSONDecodeError as exc:
            raise Gps51TransportError(
                f"Invalid JSON from {action}: {text[:200]}",
                status_code=200,
                action=action,
            ) from exc

        if not isinstance(result, dict):
            raise Gps51TransportError(
                f"Expected a JSON object from {action}, got {type(result).__name__}",
                status_code=200,
                action=action,
            )

        if self._config.api_trace_enabled:
            _logger.debug("Response for %s: %s", action, redact_for_log(result))
        return result
