"""Lenient coercion of untyped AI and snapshot values.

Unusable values become ``None`` (or an empty container) instead of raising.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any

_TRUE_VALUES = {"true", "yes", "y", "1"}
_FALSE_VALUES = {"false", "no", "n", "0", "", "none", "null"}


def coerce_number(value: Any) -> float | None:
    """Finite float from numbers or numeric strings, else ``None``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", "").lstrip("$")
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def coerce_text(value: Any) -> str | None:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        parts = [str(item) for item in value if item is not None]
        return "; ".join(parts) if parts else None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def coerce_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_VALUES
    return False


def is_flag_like(value: Any) -> bool:
    """Whether ``value`` reads unambiguously as a boolean."""
    if value is None or isinstance(value, (bool, int, float)):
        return True
    return isinstance(value, str) and value.strip().lower() in _TRUE_VALUES | _FALSE_VALUES


def coerce_label(value: Any, allowed: frozenset[str]) -> str | None:
    """Lower-cased label if it is one of ``allowed``."""
    if not isinstance(value, str):
        return None
    label = value.strip().lower()
    return label if label in allowed else None


def coerce_text_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item is not None]
    return []


def coerce_number_list(value: Any) -> list[float]:
    """Keep only finite numeric entries."""
    if not isinstance(value, (list, tuple)):
        return []
    numbers = (coerce_number(item) for item in value)
    return [n for n in numbers if n is not None]


def coerce_mapping(value: Any) -> dict[str, Any] | None:
    if isinstance(value, Mapping):
        return dict(value)
    return None
