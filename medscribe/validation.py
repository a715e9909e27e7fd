"""
Shape checks for model replies.

Each stage declares its reply shape as an annotated dataclass in ``schemas``;
``validate_response`` runs it through a pydantic ``TypeAdapter`` and turns any
``ValidationError`` into a ``SchemaViolation`` naming every bad field.
"""
from __future__ import annotations

import json
from functools import lru_cache
from typing import Any, Dict, List, Type, TypeVar

from pydantic import TypeAdapter, ValidationError

from .errors import ResponseParseError, SchemaViolation

T = TypeVar("T")


@lru_cache(maxsize=None)
def _adapter(response_type: type) -> TypeAdapter:
    # Building an adapter compiles a core schema; keep one per shape
    return TypeAdapter(response_type)


def _describe(err: Dict[str, Any]) -> Dict[str, str]:
    path = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
    kind = err.get("type", "")
    if kind == "missing":
        reason = "missing required field"
    elif kind == "literal_error":
        reason = f"not an allowed value ({err.get('msg', '')})"
    elif kind in ("greater_than_equal", "less_than_equal"):
        reason = f"out of range ({err.get('msg', '')})"
    else:
        reason = err.get("msg", kind)
    return {"field": path, "reason": reason, "type": kind}


def validate_response(obj: Any, response_type: Type[T]) -> T:
    """Return ``obj`` typed as ``response_type`` or raise ``SchemaViolation``."""
    try:
        return _adapter(response_type).validate_python(obj)
    except ValidationError as e:
        errors: List[Dict[str, str]] = [_describe(err) for err in e.errors()]
        raise SchemaViolation(obj=obj, errors=errors, shape=response_type.__name__) from e


def parse_json_object(raw_text: str) -> Dict[str, Any]:
    try:
        obj = json.loads(raw_text)
    except json.JSONDecodeError as e:
        raise ResponseParseError(raw_text, str(e)) from e
    if not isinstance(obj, dict):
        raise ResponseParseError(raw_text, f"expected a JSON object, got {type(obj).__name__}")
    return obj
