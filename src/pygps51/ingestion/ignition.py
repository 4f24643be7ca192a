"""Layered ignition (ACC) detection.

Each detector looks at one kind of evidence and either returns a verdict or
``None`` to defer to the next one. Vendor-asserted evidence (status bitmask,
status text) comes first; motion is the last resort because an idling
vehicle has its ignition on at zero speed.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable

from pygps51 import _constants as c
from pygps51.models.raw import RawPing
from pygps51.models.state import DetectionMethod, IgnitionDetection

_logger = logging.getLogger(__name__)

Detector = Callable[[RawPing, float], IgnitionDetection | None]

_LOCALIZED_ON = re.compile(r"ACC开", re.IGNORECASE)
_LOCALIZED_OFF = re.compile(r"ACC关", re.IGNORECASE)
_ON_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"ACC\s*ON\b", re.IGNORECASE),
    re.compile(r"ACC:ON", re.IGNORECASE),
    re.compile(r"ACC_ON", re.IGNORECASE),
    re.compile(r"\bACC\s*=\s*ON\b", re.IGNORECASE),
)
_OFF_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"ACC\s*OFF\b", re.IGNORECASE),
    re.compile(r"ACC:OFF", re.IGNORECASE),
    re.compile(r"ACC_OFF", re.IGNORECASE),
    re.compile(r"\bACC\s*=\s*OFF\b", re.IGNORECASE),
)


def split_status(status: int) -> tuple[int, int]:
    """Split a 32-bit status into its JT808 base and GPS51 extended halves."""
    status32 = status & 0xFFFFFFFF
    return status32 & 0xFFFF, status32 >> 16


def status_bit_confidence(status: int, speed_kmh: float) -> float:
    base, extended = split_status(status)
    confidence = 0.0
    if base & 0x01:
        confidence += c.IGNITION_BASE_BIT_WEIGHT
    if extended & 0x01:
        confidence += c.IGNITION_EXTENDED_BIT_WEIGHT
    if speed_kmh > c.SPEED_NOISE_FLOOR_KMH:
        confidence += c.IGNITION_SPEED_WEIGHT
    return round(min(confidence, 1.0), 2)


def detect_from_status_bits(raw: RawPing, speed_kmh: float) -> IgnitionDetection | None:
    """ACC is bit 0 of either 16-bit half of the status bitmask."""
    if raw.status is None or raw.status < 0:
        return None

    confidence = status_bit_confidence(raw.status, speed_kmh)
    if confidence >= c.IGNITION_CONFIDENCE_GATE:
        return IgnitionDetection(
            ignition_on=True,
            confidence=confidence,
            method=DetectionMethod.STATUS_BIT,
            signals={"status_bit": True},
        )

    if confidence > 0:
        base, extended = split_status(raw.status)
        _logger.warning(
            "Low confidence ACC detection (%.2f) for %s: status=%d base=0x%x ext=0x%x speed=%.1fkm/h",
            confidence,
            raw.device_id,
            raw.status & 0xFFFFFFFF,
            base,
            extended,
            speed_kmh,
        )
    return None


def parse_status_text(text: str) -> bool | None:
    """Return the ACC state spelled out in *text*, ``None`` if it says nothing.

    OFF markers win over ON markers when both are present.
    """
    if _LOCALIZED_OFF.search(text):
        return False
    if _LOCALIZED_ON.search(text):
        return True
    if any(pattern.search(text) for pattern in _OFF_PATTERNS):
        return False
    if any(pattern.search(text) for pattern in _ON_PATTERNS):
        return True
    return None


def detect_from_status_text(raw: RawPing, speed_kmh: float) -> IgnitionDetection | None:
    if not raw.status_text:
        return None
    verdict = parse_status_text(raw.status_text)
    if verdict is None:
        return None
    return IgnitionDetection(
        ignition_on=verdict,
        confidence=c.IGNITION_STRING_CONFIDENCE,
        method=DetectionMethod.STRING_PARSE,
        signals={"strstatus_match": verdict},
    )


def detect_from_motion(raw: RawPing, speed_kmh: float) -> IgnitionDetection:
    """Infer ignition from speed and the moving flag. Always returns a verdict."""
    speed_based = speed_kmh > c.IGNITION_MOTION_SPEED_KMH
    moving_based = raw.moving == 1 and speed_kmh > c.SPEED_NOISE_FLOOR_KMH
    signals = {"speed_based": speed_based, "moving_status": moving_based}

    score = 0.0
    if speed_based:
        score += c.IGNITION_MOTION_SPEED_WEIGHT
    if moving_based:
        score += c.IGNITION_MOVING_FLAG_WEIGHT

    if speed_based and moving_based and score >= c.IGNITION_MULTI_SIGNAL_THRESHOLD:
        return IgnitionDetection(
            ignition_on=True,
            confidence=c.IGNITION_MULTI_SIGNAL_CONFIDENCE,
            method=DetectionMethod.MULTI_SIGNAL,
            signals=signals,
        )
    if speed_based or moving_based:
        return IgnitionDetection(
            ignition_on=True,
            confidence=c.IGNITION_SINGLE_SIGNAL_CONFIDENCE,
            method=DetectionMethod.SPEED_INFERENCE,
            signals=signals,
        )
    return IgnitionDetection(
        ignition_on=False,
        confidence=0.0,
        method=DetectionMethod.UNKNOWN,
        signals=signals,
    )


def ignition_reading(raw: RawPing) -> bool | None:
    """Vendor-asserted ACC state of one ping, ``None`` when it carries none.

    Unlike :func:`detect_ignition` this reports OFF for a status bitmask
    whose base ACC bit is clear, which is what trip segmentation needs to
    close an ignition run.
    """
    has_status = raw.status is not None and raw.status >= 0
    if raw.status is not None and raw.status >= 0:
        base, _ = split_status(raw.status)
        if base & 0x01:
            return True
    if raw.status_text:
        verdict = parse_status_text(raw.status_text)
        if verdict is not None:
            return verdict
    return False if has_status else None


DETECTORS: tuple[Detector, ...] = (
    detect_from_status_bits,
    detect_from_status_text,
    detect_from_motion,
)


def detect_ignition(
    raw: RawPing,
    speed_kmh: float,
    detectors: tuple[Detector, ...] = DETECTORS,
) -> IgnitionDetection:
    """Run *detectors* in order and return the first verdict.

    Evidence from deferring detectors is merged into the returned
    ``signals`` so the record shows everything that was looked at.
    """
    evidence: dict[str, bool] = {}
    if raw.status is not None and raw.status >= 0:
        evidence["status_bit"] = False
    for detector in detectors:
        result = detector(raw, speed_kmh)
        if result is not None:
            return result.model_copy(update={"signals": {**evidence, **result.signals}})
    return IgnitionDetection(
        ignition_on=False,
        confidence=0.0,
        method=DetectionMethod.UNKNOWN,
        signals=evidence,
    )
