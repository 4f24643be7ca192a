"""Hash helpers for GPS51 login."""

from __future__ import annotations

import hashlib


def md5_hex(value: str) -> str:
    """Compute MD5 of a UTF-8 string, returning lowercase hex.

    GPS51 expects the login password as this digest, never in plaintext.
    """
    return hashlib.md5(value.encode("utf-8")).hexdigest()
