# Copyright © 2025-26 l5yth & contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Utilities for converting station packets between JSON and Python values.

Station firmware emits CamelCase JSON objects. The helpers below parse raw
payloads, coerce individual fields into strictly typed values and render
decoded records back into the exact wire representation so a saved session
can be replayed through the regular decoding path.
"""

from __future__ import annotations

import dataclasses
import json
import math
from collections.abc import Mapping

JSON_NAME = "json"
"""Dataclass field metadata key holding the wire name of a record field."""


class FieldError(ValueError):
    """Raised when a single JSON field cannot be coerced."""

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"{name}: {reason}")
        self.name = name
        self.reason = reason


def _load_json_object(payload) -> dict:
    """Return the JSON object encoded in ``payload``.

    Parameters:
        payload: Raw ``bytes``/``bytearray`` in UTF-8 or an already decoded
            ``str``.

    Returns:
        The decoded mapping.

    Raises:
        ValueError: When ``payload`` is not valid UTF-8, not valid JSON, nests
            deeper than the interpreter can decode or does not encode a JSON
            object.
    """

    if isinstance(payload, (bytes, bytearray)):
        payload = bytes(payload).decode("utf-8")
    if not isinstance(payload, str):
        raise ValueError(f"unsupported payload type {type(payload).__name__}")
    try:
        decoded = json.loads(payload)
    except RecursionError as exc:
        raise ValueError("payload nests too deeply") from exc
    if not isinstance(decoded, dict):
        raise ValueError("payload is not a JSON object")
    return decoded


def _field(obj: Mapping, name: str, *, required: bool):
    """Return ``obj[name]`` or ``None`` when absent and not ``required``."""

    if name in obj:
        value = obj[name]
        if value is None:
            raise FieldError(name, "null is not allowed")
        return value
    if required:
        raise FieldError(name, "missing")
    return None


def _coerce_int(name: str, value) -> int:
    """Strict conversion of a JSON value to an integer.

    Integral floats and decimal strings are accepted, booleans and
    fractional numbers are rejected.
    """

    if isinstance(value, bool):
        raise FieldError(name, "boolean where a number is expected")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return int(value)
        raise FieldError(name, f"non-integral number {value!r}")
    if isinstance(value, str):
        stripped = value.strip()
        try:
            return int(stripped, 10)
        except ValueError:
            raise FieldError(name, f"invalid integer string {value!r}") from None
    raise FieldError(name, f"expected a number, got {type(value).__name__}")


def _get_uint(obj: Mapping, name: str, *, required: bool = False) -> int:
    """Return an unsigned integer field, defaulting to ``0`` when absent."""

    value = _field(obj, name, required=required)
    if value is None:
        return 0
    number = _coerce_int(name, value)
    if number < 0:
        raise FieldError(name, f"negative value {number} for unsigned field")
    return number


def _get_int(obj: Mapping, name: str, *, required: bool = False) -> int:
    """Return a signed integer field, defaulting to ``0`` when absent."""

    value = _field(obj, name, required=required)
    if value is None:
        return 0
    return _coerce_int(name, value)


def _get_float(obj: Mapping, name: str, *, required: bool = False) -> float:
    """Return a floating point field, defaulting to ``0.0`` when absent."""

    value = _field(obj, name, required=required)
    if value is None:
        return 0.0
    if isinstance(value, bool):
        raise FieldError(name, "boolean where a number is expected")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            raise FieldError(name, f"invalid number string {value!r}") from None
    raise FieldError(name, f"expected a number, got {type(value).__name__}")


def _get_str(obj: Mapping, name: str, *, required: bool = False) -> str:
    """Return a string field, defaulting to ``""`` when absent."""

    value = _field(obj, name, required=required)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise FieldError(name, f"expected a string, got {type(value).__name__}")
    return value


def record_to_json(record) -> dict:
    """Return the wire representation of a decoded record.

    Parameters:
        record: Dataclass instance whose fields carry :data:`JSON_NAME`
            metadata.

    Returns:
        Mapping from CamelCase wire names to field values, in declaration
        order.
    """

    return {
        field.metadata[JSON_NAME]: getattr(record, field.name)
        for field in dataclasses.fields(record)
        if JSON_NAME in field.metadata
    }


def record_to_line(record) -> str:
    """Serialise ``record`` into a single compact JSON line."""

    return json.dumps(record_to_json(record), ensure_ascii=False)


__all__ = [
    "FieldError",
    "JSON_NAME",
    "record_to_json",
    "record_to_line",
]
