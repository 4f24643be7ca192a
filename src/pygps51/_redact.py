"""Helpers for safe debug logging.

GPS51 calls carry the account password hash and a session token, both in
request bodies and in the query string (including the ``targetUrl`` of a
proxied call). Everything logged at DEBUG level goes through
:func:`redact_for_log` first.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel

REDACTED = "<redacted>"
_MAX_DEPTH = 20

#: Compared case-insensitively against mapping keys.
SENSITIVE_KEYS: frozenset[str] = frozenset({"password", "token", "accesstoken", "authorization", "cookie"})

_CREDENTIAL_PARAM = re.compile(r"(?i)\b(token|password)=[^&\s\"']*")


def redact_url(url: str) -> str:
    """Mask ``token=`` and ``password=`` query parameters in *url*."""
    return _CREDENTIAL_PARAM.sub(lambda m: f"{m.group(1)}={REDACTED}", url)


def _redact_text(text: str, max_string: int) -> str:
    text = redact_url(text)
    if len(text) <= max_string:
        return text
    return f"{text[:max_string]}…<truncated {len(text) - max_string} chars>"


def _redact_mapping(value: Mapping[Any, Any], max_string: int, depth: int) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, item in value.items():
        name = str(key)
        if name.lower() in SENSITIVE_KEYS:
            out[name] = REDACTED if item not in (None, "") else item
        else:
            out[name] = redact_for_log(item, max_string=max_string, _depth=depth + 1)
    return out


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a copy of *value* that is safe to log.

    Mappings have their sensitive keys masked at any depth, strings have
    credential query parameters masked and are truncated to *max_string*
    characters, and pydantic models are dumped first. Scalars pass through.
    """
    if _depth > _MAX_DEPTH:
        return "<max-depth>"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return _redact_text(value, max_string)
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", exclude={"raw"})
    if isinstance(value, Mapping):
        return _redact_mapping(value, max_string, _depth)
    if isinstance(value, Sequence):
        return [redact_for_log(item, max_string=max_string, _depth=_depth + 1) for item in value]
    return repr(value)
