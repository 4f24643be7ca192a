"""Base model for GPS51 API payloads.

Every raw GPS51 model inherits from :class:`Gps51BaseModel` which
provides:

* A ``model_validator(mode="before")`` that strips vendor placeholder
  values (``""``, ``"--"``, ``"null"``, NaN) so that ``AliasChoices``
  falls through to the next alternate key instead of picking an empty one.
* A ``raw`` dict that captures the original payload.
"""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Placeholder strings the GPS51 API uses for "not available".
_SENTINELS = frozenset({"", "--", "null", "NaN", "nan"})


class Gps51BaseModel(BaseModel):
    """Base for GPS51 API payload models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    raw: dict[str, Any] = Field(default_factory=dict)
    """Original API payload dict."""

    @staticmethod
    def _clean_dict(values: dict[str, Any]) -> dict[str, Any]:
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and value.strip() in _SENTINELS:
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value
        return cleaned

    @model_validator(mode="before")
    @classmethod
    def _clean_vendor_values(cls, values: Any) -> Any:
        """Strip placeholder values and stash the raw payload."""
        if not isinstance(values, dict):
            return values
        original = dict(values)
        cleaned = Gps51BaseModel._clean_dict(original)
        if "raw" not in values:
            cleaned["raw"] = original
        return cleaned
