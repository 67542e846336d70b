"""Type-preserving JSON serialization for snapshot state payloads.

Plain JSON loses two things operator state relies on: tuples (broadcast
entries are (key, value) pairs) and datetimes. Both are written as
collision-safe envelopes keyed by ``__statecheck_type__`` and
``__statecheck_value__``. A user dict that happens to contain the reserved
type key is itself wrapped in an ``escaped_dict`` envelope, so it can never
be mistaken for a real envelope on the way back.

NaN and Infinity are rejected: a snapshot that cannot be compared for
equality cannot be verified.
"""

from __future__ import annotations

import json
import math
from datetime import UTC, datetime
from typing import Any

_ENVELOPE_TYPE_KEY = "__statecheck_type__"
_ENVELOPE_VALUE_KEY = "__statecheck_value__"


def _reject_nan_infinity(obj: Any) -> None:
    """Recursively check for NaN/Infinity.

    Raises:
        ValueError: If NaN or Infinity found
    """
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            raise ValueError(f"Cannot serialize non-finite float: {obj}")
    elif isinstance(obj, dict):
        for v in obj.values():
            _reject_nan_infinity(v)
    elif isinstance(obj, list | tuple):
        for v in obj:
            _reject_nan_infinity(v)


def _encode(obj: Any) -> Any:
    """Wrap tuples, datetimes and reserved-key dicts in envelopes."""
    if isinstance(obj, datetime):
        if obj.tzinfo is None:
            obj = obj.replace(tzinfo=UTC)
        return {_ENVELOPE_TYPE_KEY: "datetime", _ENVELOPE_VALUE_KEY: obj.isoformat()}
    if isinstance(obj, tuple):
        return {_ENVELOPE_TYPE_KEY: "tuple", _ENVELOPE_VALUE_KEY: [_encode(v) for v in obj]}
    if isinstance(obj, list):
        return [_encode(v) for v in obj]
    if isinstance(obj, dict):
        for k in obj:
            if not isinstance(k, str):
                raise TypeError(f"State dict keys must be str, got {type(k).__name__}; store maps as (key, value) pairs")
        encoded = {k: _encode(v) for k, v in obj.items()}
        if _ENVELOPE_TYPE_KEY in encoded:
            return {_ENVELOPE_TYPE_KEY: "escaped_dict", _ENVELOPE_VALUE_KEY: encoded}
        return encoded
    return obj


def _decode(obj: Any) -> Any:
    if isinstance(obj, list):
        return [_decode(v) for v in obj]
    if isinstance(obj, dict):
        if _ENVELOPE_TYPE_KEY in obj and _ENVELOPE_VALUE_KEY in obj and len(obj) == 2:
            envelope_type = obj[_ENVELOPE_TYPE_KEY]
            envelope_value = obj[_ENVELOPE_VALUE_KEY]
            if envelope_type == "datetime" and isinstance(envelope_value, str):
                return datetime.fromisoformat(envelope_value)
            if envelope_type == "tuple" and isinstance(envelope_value, list):
                return tuple(_decode(v) for v in envelope_value)
            if envelope_type == "escaped_dict" and isinstance(envelope_value, dict):
                return {k: _decode(v) for k, v in envelope_value.items()}
        return {k: _decode(v) for k, v in obj.items()}
    return obj


def state_dumps(obj: Any) -> str:
    """Serialize a state payload to JSON with type preservation.

    Raises:
        ValueError: If data contains NaN or Infinity
        TypeError: If data contains non-serializable types
    """
    _reject_nan_infinity(obj)
    return json.dumps(_encode(obj), allow_nan=False, separators=(",", ":"))


def state_loads(s: str) -> Any:
    """Deserialize a payload written by state_dumps().

    Raises:
        json.JSONDecodeError: If string is not valid JSON
    """
    return _decode(json.loads(s))
