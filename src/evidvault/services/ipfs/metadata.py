"""Coerce free-form metadata into values Pinata accepts as keyvalues.

Pinata rejects nested or boolean keyvalues, so every value is reduced to a
string or a number before submission:

    =====================  =================================
    input                  output
    =====================  =================================
    str                    unchanged
    int, float             unchanged (NaN/inf -> str)
    bool                   "true" / "false"
    None                   key dropped
    dict, list, tuple      compact JSON string
    datetime, date         ISO-8601 string
    anything else          str(value)
    =====================  =================================
"""

import json
import math
from datetime import date, datetime
from typing import Any, Mapping

MetadataValue = str | int | float


def coerce_metadata_value(value: Any) -> MetadataValue | None:
    """Coerce a single value following the table above."""
    if value is None:
        return None
    # bool is an int subclass, check it first
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), sort_keys=True, default=str)
    return str(value)


def sanitize_metadata(metadata: Mapping[Any, Any] | None) -> dict[str, MetadataValue]:
    """Return a copy of metadata with string keys and string/number values."""
    if not metadata:
        return {}
    sanitized: dict[str, MetadataValue] = {}
    for key, value in metadata.items():
        coerced = coerce_metadata_value(value)
        if coerced is not None:
            sanitized[str(key)] = coerced
    return sanitized
