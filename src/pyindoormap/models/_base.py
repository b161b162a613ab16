"""Base model for platform payloads and widget configuration.

Every pyindoormap model inherits from :class:`IndoorMapBaseModel` which
provides:

* ``alias_generator=to_camel`` so camelCase platform keys map
  automatically to snake_case fields.
* A ``model_validator(mode="before")`` that drops ``None``/NaN values so
  the field default is used.
* A ``raw`` dict that captures the original payload (excluded from dumps).
"""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class IndoorMapBaseModel(BaseModel):
    """Base for platform payload and configuration models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    raw: dict[str, Any] = Field(default_factory=dict, exclude=True, repr=False)
    """Original payload dict."""

    @staticmethod
    def _clean_dict(values: dict[str, Any]) -> dict[str, Any]:
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value
        return cleaned

    @model_validator(mode="before")
    @classmethod
    def _clean_values(cls, values: Any) -> Any:
        """Drop empty values and stash the raw payload."""
        if not isinstance(values, dict):
            return values
        original = dict(values)
        cleaned = IndoorMapBaseModel._clean_dict(original)
        # Only auto-stash raw when not explicitly provided.
        if "raw" not in values:
            cleaned["raw"] = original
        return cleaned
