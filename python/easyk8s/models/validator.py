"""
easyk8s/models/validator.py

Typed views over loosely-typed data: tofu `output -json` values and
`kubectl ... -o json` documents. Both helpers go through pydantic's
TypeAdapter and report every problem as ValueError, so callers only need one
except clause for "the tool printed something we cannot use".
"""

import json
from typing import Any, Type, TypeVar

from pydantic import TypeAdapter, ValidationError

T = TypeVar("T")


def validate_type(obj: Any, expected_type: Type[T]) -> T:
    """Validate `obj` against `expected_type` (a model, List[str], Dict[...], ...).

    Raises:
        ValueError: If `obj` does not conform.
    """
    try:
        return TypeAdapter(expected_type).validate_python(obj)
    except ValidationError as exc:
        raise ValueError(f"expected {expected_type}, got {obj!r:.200}: {exc}") from exc


def parse_json_as(text: str, expected_type: Type[T]) -> T:
    """Decode `text` as JSON, then validate it like validate_type.

    Raises:
        ValueError: If the text is not JSON or does not match the type.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid JSON output: {exc}") from exc
    return validate_type(data, expected_type)
