"""Serializable trace payload values.

Trace inputs and outputs are restricted to a small recursive set of kinds so
that the wire format stays well defined: ``None``, ``str``, ``int``,
``float``, ``bool``, ordered lists and string-keyed dicts of the same.
"""

from __future__ import annotations

import dataclasses
import math
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Union

from pydantic import BaseModel

TraceValue = Union[None, str, int, float, bool, List["TraceValue"], Dict[str, "TraceValue"]]

_CYCLE = "<cycle>"


def to_trace_value(obj: Any) -> TraceValue:
    """Normalise an arbitrary payload into a ``TraceValue``."""
    return _convert(obj, set())


def _convert(obj: Any, seen: set) -> TraceValue:
    if obj is None or isinstance(obj, (str, bool, int)):
        return obj
    if isinstance(obj, float):
        return obj if math.isfinite(obj) else str(obj)
    if isinstance(obj, Enum):
        return _convert(obj.value, seen)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, bytes):
        return obj.decode("utf-8", errors="replace")
    if isinstance(obj, BaseException):
        return {"error": str(obj) or obj.__class__.__name__, "type": obj.__class__.__name__}

    marker = id(obj)
    if marker in seen:
        return _CYCLE
    seen = seen | {marker}

    if isinstance(obj, BaseModel):
        return _convert(obj.model_dump(), seen)
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: _convert(getattr(obj, f.name), seen) for f in dataclasses.fields(obj)}
    if isinstance(obj, dict):
        return {str(k): _convert(v, seen) for k, v in obj.items()}
    if isinstance(obj, (set, frozenset)):
        return [_convert(v, seen) for v in sorted(obj, key=repr)]
    if isinstance(obj, (list, tuple)):
        return [_convert(v, seen) for v in obj]
    return repr(obj)


def lookup(obj: Any, key: str, default: Any = None) -> Any:
    """Read ``key`` from a mapping or attribute ``key`` from an object."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def utc_now() -> datetime:
    """Current UTC time as a naive datetime, matching the DuckDB TIMESTAMP columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
