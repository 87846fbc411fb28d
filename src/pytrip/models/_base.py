"""Base models shared by every pytrip data shape.

Every pytrip model inherits from :class:`TripBaseModel` which provides:

* ``alias_generator=to_camel`` so camelCase wire keys map
  automatically to snake_case fields (``populate_by_name`` keeps the
  snake_case names usable from Python).
* A ``model_validator(mode="before")`` that drops ``None`` and NaN
  values so the field default is used instead of failing validation.

Models that the lifecycle mutates in place inherit from
:class:`MutableTripModel` instead, which is not frozen and forbids
unknown keys so persisted records never silently lose fields.
"""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel


def _clean_dict(values: dict[str, Any]) -> dict[str, Any]:
    cleaned: dict[str, Any] = {}
    for key, value in values.items():
        if value is None:
            continue
        if isinstance(value, float) and math.isnan(value):
            continue
        cleaned[key] = value
    return cleaned


class TripBaseModel(BaseModel):
    """Immutable base for value objects and wire payloads."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_empty_values(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        return _clean_dict(values)

    def to_wire(self) -> dict[str, Any]:
        """Dump with camelCase keys, omitting unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class MutableTripModel(BaseModel):
    """Mutable base for state owned by the trip lifecycle."""

    model_config = ConfigDict(
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )
