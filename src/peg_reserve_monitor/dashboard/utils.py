"""Utility helpers for dashboard serialization."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import fields, is_dataclass
from datetime import datetime
from enum import Enum
from fractions import Fraction
from typing import Any


def to_serializable(value: Any) -> Any:
    """Recursively convert dataclasses, enums, fractions and datetimes into JSON-friendly values.

    Dataclasses are walked field by field because several records hold
    read-only mapping proxies, which ``dataclasses.asdict`` cannot copy.
    """

    if is_dataclass(value) and not isinstance(value, type):
        return {item.name: to_serializable(getattr(value, item.name)) for item in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Fraction):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(to_serializable(key)): to_serializable(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_serializable(item) for item in value]
    return value


__all__ = ["to_serializable"]
