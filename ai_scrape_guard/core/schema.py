"""
Schema description for prompts.

Turns a caller-supplied schema into the text embedded in the system
instruction. Pydantic models are reduced to a simple field -> type mapping.
"""

import json
import typing
from typing import Any, Dict

from pydantic import BaseModel


def is_typed_schema(schema: Any) -> bool:
    """True when *schema* is a pydantic model class."""
    return isinstance(schema, type) and issubclass(schema, BaseModel)


def _type_name(annotation: Any) -> Any:
    if is_typed_schema(annotation):
        return _model_to_simple_schema(annotation)
    origin = typing.get_origin(annotation)
    if origin is list:
        args = typing.get_args(annotation)
        inner = _type_name(args[0]) if args else "Any"
        if isinstance(inner, dict):
            return [inner]
        return f"list[{inner}]"
    return getattr(annotation, "__name__", str(annotation))


def _model_to_simple_schema(model: type) -> Dict[str, Any]:
    return {
        name: _type_name(field.annotation)
        for name, field in model.model_fields.items()
    }


def describe_schema(schema: Any) -> str:
    """Return the prompt text describing *schema*.

    Args:
        schema: A dict or list (JSON-serialised), a string (used as-is),
            or a pydantic model class

    Returns:
        Schema text for the system instruction

    Raises:
        TypeError: If the schema is of any other type
    """
    if isinstance(schema, (dict, list)):
        return json.dumps(schema)
    if isinstance(schema, str):
        return schema
    if is_typed_schema(schema):
        return json.dumps(_model_to_simple_schema(schema))
    raise TypeError(f"Invalid schema: {schema!r}")
