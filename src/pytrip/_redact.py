"""Helpers for safe debug logging of service traffic.

Requests to the accounting service carry a bearer token, and trip payloads
carry precise positions. Both are masked before anything reaches a DEBUG
log.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

_SECRET_KEYS: frozenset[str] = frozenset(
    {
        "authorization",
        "authtoken",
        "auth_token",
        "token",
        "accesstoken",
        "refreshtoken",
        "password",
        "cookie",
        "apikey",
        "api_key",
    }
)

# Positions are reduced to ~1 km precision rather than hidden entirely.
_COORDINATE_KEYS: frozenset[str] = frozenset({"latitude", "longitude", "lat", "lng", "lon"})

_MAX_DEPTH = 20


def redact_for_log(value: Any, *, max_string: int = 256, max_items: int = 50, _depth: int = 0) -> Any:
    """Return a copy of *value* with secrets masked and coordinates coarsened."""
    if _depth > _MAX_DEPTH:
        return "<max-depth>"

    if value is None or isinstance(value, (bool, int, float)):
        return value

    if isinstance(value, str):
        return value if len(value) <= max_string else f"{value[:max_string]}...<truncated>"

    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        out: dict[str, Any] = {}
        for raw_key, item in value.items():
            key = str(raw_key)
            lowered = key.lower()
            if lowered in _SECRET_KEYS:
                out[key] = "<redacted>"
            elif lowered in _COORDINATE_KEYS and isinstance(item, (int, float)) and not isinstance(item, bool):
                out[key] = round(float(item), 2)
            else:
                out[key] = redact_for_log(item, max_string=max_string, max_items=max_items, _depth=_depth + 1)
        return out

    if isinstance(value, Sequence):
        items = [
            redact_for_log(item, max_string=max_string, max_items=max_items, _depth=_depth + 1)
            for item in list(value)[:max_items]
        ]
        if len(value) > max_items:
            items.append(f"<+{len(value) - max_items} more>")
        return items

    return repr(value)
