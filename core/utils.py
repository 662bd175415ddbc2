"""
Shared utilities: timestamp formatting, unit conversion, reading validity,
and read-only views for published results.

Single source of truth for helpers used by the analyzer, the aggregator
and the report exporter.
"""

import math
from collections.abc import Mapping
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Optional

from core.constants import SENTINEL_MAGNITUDE


def format_absolute_time(unix_sec: Optional[float]) -> Optional[str]:
    """Convert device-clock epoch seconds to a UTC datetime string."""
    if unix_sec is None:
        return None
    dt = datetime.fromtimestamp(unix_sec, tz=timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]  # millisecond precision


def fahrenheit_to_celsius(temp_f: Optional[float]) -> Optional[float]:
    if temp_f is None:
        return None
    return (temp_f - 32.0) * 5.0 / 9.0


def is_valid_reading(value: Optional[float],
                     sentinel: float = SENTINEL_MAGNITUDE) -> bool:
    """False for absent, non-finite, or sentinel-magnitude values."""
    if value is None:
        return False
    if math.isnan(value) or math.isinf(value):
        return False
    return abs(value) <= sentinel


def freeze(value):
    """Read-only deep view: mappings become MappingProxyType, lists become tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    return value


def thaw(value):
    """Plain JSON-ready copy of a frozen value (dicts and lists)."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [thaw(v) for v in value]
    return value
