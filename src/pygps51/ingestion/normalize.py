"""Normalization helpers.

Centralizes tolerant parsing and placeholder handling for vendor payloads.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from pygps51._constants import MAX_FUTURE_SKEW_S, VENDOR_UTC_OFFSET_HOURS

_PLACEHOLDERS = frozenset({"", "--", "null", "NaN", "nan"})
_EPOCH_FLOOR = datetime(2000, 1, 1, tzinfo=UTC)
_VENDOR_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y/%m/%d %H:%M:%S")


def safe_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str) and value.strip() in _PLACEHOLDERS:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(result):
        return None
    return result


def safe_int(value: Any) -> int | None:
    parsed = safe_float(value)
    if parsed is None:
        return None
    return int(parsed)


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text and text not in _PLACEHOLDERS else None


def round_half_up(value: float, digits: int = 0) -> float:
    """Round like a calculator, not like :func:`round` (banker's rounding).

    Values too large to quantize at *digits* come back unchanged.
    """
    if not math.isfinite(value):
        return value
    quantum = Decimal(1).scaleb(-digits)
    try:
        return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))
    except InvalidOperation:
        return value


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def epoch_to_datetime(value: float) -> datetime | None:
    """Interpret an epoch number by magnitude band.

    - ``< 1e11`` seconds
    - ``< 1e14`` milliseconds
    - ``< 1e17`` microseconds
    """
    if value <= 0:
        return None
    if value < 1e11:
        seconds = value
    elif value < 1e14:
        seconds = value / 1e3
    elif value < 1e17:
        seconds = value / 1e6
    else:
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None


def _parse_string(text: str, utc_offset_hours: int) -> datetime | None:
    vendor_tz = timezone(timedelta(hours=utc_offset_hours))
    for fmt in _VENDOR_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=vendor_tz).astimezone(UTC)
        except ValueError:
            continue
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def is_plausible(moment: datetime, now: datetime) -> bool:
    """Between 2000-01-01 and a few minutes into the future."""
    return _EPOCH_FLOOR <= moment <= now + timedelta(seconds=MAX_FUTURE_SKEW_S)


def parse_vendor_timestamp(
    value: Any,
    *,
    now: datetime,
    utc_offset_hours: int = VENDOR_UTC_OFFSET_HOURS,
) -> datetime | None:
    """Parse any timestamp shape the vendor emits into an aware UTC datetime.

    Accepts epoch numbers (or numeric strings) in seconds, milliseconds or
    microseconds, ISO-8601 strings, and naive ``yyyy-MM-dd HH:mm:ss``
    strings which are taken to be vendor local time. Returns ``None`` when
    the value is missing, unparseable or implausible relative to *now*.
    """
    if value is None or isinstance(value, bool):
        return None

    parsed: datetime | None
    if isinstance(value, datetime):
        parsed = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    elif isinstance(value, (int, float)):
        number = safe_float(value)
        parsed = epoch_to_datetime(number) if number is not None else None
    elif isinstance(value, str):
        text = value.strip()
        if text in _PLACEHOLDERS:
            return None
        number = safe_float(text)
        parsed = epoch_to_datetime(number) if number is not None else _parse_string(text, utc_offset_hours)
    else:
        return None

    if parsed is None or not is_plausible(parsed, now):
        return None
    return parsed


def format_vendor_time(moment: datetime, utc_offset_hours: int = VENDOR_UTC_OFFSET_HOURS) -> str:
    """Render *moment* as the vendor's naive local ``yyyy-MM-dd HH:mm:ss``."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    local = moment.astimezone(timezone(timedelta(hours=utc_offset_hours)))
    return local.strftime("%Y-%m-%d %H:%M:%S")
