"""
mother_registry.flatten: Flatten nested JSON into one-level records.

The remote registry stores one level of key/value pairs below each subject,
so nested payloads are folded into joined key paths:

    >>> flatten({"a": {"b": {"c": 1}}})
    {'a:b:c': 1}

``normalize_values`` then maps the flat values onto the registry's value
domain (a string or a list of strings).
"""

from __future__ import annotations

import json
import math
from decimal import Decimal
from typing import Any, Union

KEY_DELIMITER = ":"

JsonValue = Union[dict, list, str, int, float, bool, None]
FlatRecord = dict[str, Any]
Record = dict[str, Union[str, list[str]]]


def to_json(value: Any) -> str:
    """Compact JSON text, matching what the registry stores for nested values."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def flatten(value: JsonValue, prefix: str = "") -> FlatRecord:
    """Fold a JSON object into ``{joined:key:path: leaf}``.

    Objects are descended into. Lists are kept as lists, with object or list
    elements replaced by their JSON text. Anything that is not an object at
    the top level yields an empty mapping. Input must be acyclic.
    """
    result: FlatRecord = {}
    _flatten_into(value, prefix, result)
    return result


def _flatten_into(value: JsonValue, prefix: str, result: FlatRecord) -> None:
    if not isinstance(value, dict):
        return
    for key, item in value.items():
        new_key = f"{prefix}{KEY_DELIMITER}{key}" if prefix else str(key)
        if isinstance(item, dict):
            _flatten_into(item, new_key, result)
        elif isinstance(item, list):
            result[new_key] = [
                to_json(element) if isinstance(element, (dict, list)) else element
                for element in item
            ]
        else:
            result[new_key] = item


def format_number(value: float) -> str:
    """Shortest round-trip text in JavaScript's number notation.

    Records written by JavaScript clients must re-serialize identically, so
    ``1e-7`` is ``"1e-7"``, ``1e21`` is ``"1e+21"`` and ``2.0`` is ``"2"``.
    """
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value == 0:
        return "0"

    sign, digit_tuple, exponent = Decimal(repr(value)).as_tuple()
    digits = "".join(map(str, digit_tuple)).rstrip("0")
    exponent += len(digit_tuple) - len(digits)
    k = len(digits)
    n = k + exponent  # decimal point position relative to the digit string
    prefix = "-" if sign else ""

    if k <= n <= 21:
        return prefix + digits + "0" * (n - k)
    if 0 < n <= 21:
        return prefix + digits[:n] + "." + digits[n:]
    if -6 < n <= 0:
        return prefix + "0." + "0" * -n + digits

    e = n - 1
    mantissa = digits if k == 1 else digits[0] + "." + digits[1:]
    return f"{prefix}{mantissa}e{'+' if e >= 0 else '-'}{abs(e)}"


def stringify_scalar(value: Any) -> str:
    """Canonical text for a JSON scalar (``True`` -> ``"true"``, ``2.0`` -> ``"2"``)."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return format_number(value)
    return to_json(value)


def normalize_values(flat: FlatRecord) -> Record:
    """Coerce every value of a flat record to ``str`` or ``list[str]``.

    ``None`` values are dropped (the key is omitted). Inside lists ``None``
    becomes the empty string.
    """
    out: Record = {}
    for key, value in flat.items():
        if value is None:
            continue
        if isinstance(value, list):
            out[key] = ["" if item is None else stringify_scalar(item) for item in value]
        else:
            out[key] = stringify_scalar(value)
    return out
