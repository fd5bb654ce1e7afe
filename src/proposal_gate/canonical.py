from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from pathlib import PurePath
from typing import Any

import rfc8785
from pydantic import BaseModel

_PASSTHROUGH_TYPES = (bool, int, float, str, type(None))


def _to_json_primitive(value: Any) -> bool | int | float | str | None | list[Any] | dict[str, Any]:
    """Recursively convert models, enums, dates and paths into JSON primitives.

    Raises:
        TypeError: If value contains a type with no JSON representation.
    """
    if isinstance(value, _PASSTHROUGH_TYPES):
        return value

    if isinstance(value, BaseModel):
        return _to_json_primitive(value.model_dump(mode="json"))

    if isinstance(value, dict):
        return {str(k): _to_json_primitive(v) for k, v in value.items()}

    if isinstance(value, (list, tuple)):
        return [_to_json_primitive(item) for item in value]

    if isinstance(value, Enum):
        return _to_json_primitive(value.value)

    if isinstance(value, (datetime, date)):
        return value.isoformat()

    if isinstance(value, PurePath):
        return value.as_posix()

    raise TypeError(
        f"Cannot serialize type {type(value).__name__} to canonical JSON. "
        f"Convert to a JSON-compatible type first."
    )


def to_canonical_json(value: Any) -> str:
    """Serialize a value to deterministic JSON per RFC 8785.

    Used for proposal fingerprints and audit log lines so identical content
    always yields identical bytes.

    Raises:
        TypeError: If value contains an unsupported type.
        rfc8785.CanonicalizationError: If rfc8785 rejects the normalized value.
    """
    return rfc8785.dumps(_to_json_primitive(value)).decode("utf-8")
