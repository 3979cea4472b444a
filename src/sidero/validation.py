"""Argument validation against a tool's declared ``inputSchema``.

Pure functions with no subprocess, filesystem or network access, so a rejected
request never allocates anything.  Implements the JSON-Schema subset the tool
schemas use, plus the ``x-operand`` extension for strings that are placed on
the engine's command line.
"""

from __future__ import annotations

import re
from typing import Any

from mcp.types import Tool

from sidero.errors import ValidationError

_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "object": (dict,),
    "array": (list,),
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
}


def check_operand(value: str, field: str) -> str:
    """Reject a caller-controlled command-line value that could act as a flag.

    Returns *value* unchanged when it is safe.
    """
    if not value.strip():
        raise ValidationError(field, "must not be empty")
    if value.startswith("-"):
        raise ValidationError(field, "must not start with '-'")
    if "\x00" in value:
        raise ValidationError(field, "must not contain NUL characters")
    return value


def _type_ok(value: Any, expected: str) -> bool:
    if expected in ("integer", "number") and isinstance(value, bool):
        return False
    if expected == "integer" and isinstance(value, float):
        return value.is_integer()
    return isinstance(value, _JSON_TYPES[expected])


def _check(value: Any, schema: dict[str, Any], field: str) -> Any:
    if "oneOf" in schema:
        # Branches are distinguished by type; the first branch of the value's
        # type decides, so its errors are reported as-is.
        branches = schema["oneOf"]
        for branch in branches:
            if "type" not in branch or _type_ok(value, branch["type"]):
                return _check(value, branch, field)
        allowed = " or ".join(b["type"] for b in branches)
        raise ValidationError(field, f"must be of type {allowed}")

    expected = schema.get("type")
    if expected is not None and not _type_ok(value, expected):
        raise ValidationError(field, f"must be of type {expected}")

    if "enum" in schema and value not in schema["enum"]:
        raise ValidationError(field, f"must be one of {schema['enum']}")

    if isinstance(value, str):
        if "minLength" in schema and len(value) < schema["minLength"]:
            raise ValidationError(field, f"must be at least {schema['minLength']} characters")
        if "maxLength" in schema and len(value) > schema["maxLength"]:
            raise ValidationError(field, f"must be at most {schema['maxLength']} characters")
        if "pattern" in schema and not re.fullmatch(schema["pattern"], value):
            raise ValidationError(field, f"must match {schema['pattern']!r}")
        if schema.get("x-operand"):
            check_operand(value, field)
        return value

    if isinstance(value, bool):
        return value

    if isinstance(value, int | float):
        if "minimum" in schema and value < schema["minimum"]:
            raise ValidationError(field, f"must be >= {schema['minimum']}")
        if "maximum" in schema and value > schema["maximum"]:
            raise ValidationError(field, f"must be <= {schema['maximum']}")
        return int(value) if expected == "integer" else value

    if isinstance(value, list):
        if "minItems" in schema and len(value) < schema["minItems"]:
            raise ValidationError(field, f"must contain at least {schema['minItems']} item(s)")
        if "maxItems" in schema and len(value) > schema["maxItems"]:
            raise ValidationError(field, f"must contain at most {schema['maxItems']} item(s)")
        items = schema.get("items")
        if items is None:
            return list(value)
        return [_check(item, items, f"{field}[{i}]") for i, item in enumerate(value)]

    if isinstance(value, dict):
        return _check_object(value, schema, field)

    return value


def _check_object(value: dict[str, Any], schema: dict[str, Any], prefix: str) -> dict[str, Any]:
    properties: dict[str, Any] = schema.get("properties", {})
    required: list[str] = schema.get("required", [])

    def _name(key: str) -> str:
        return f"{prefix}.{key}" if prefix else key

    if schema.get("additionalProperties") is False:
        for key in value:
            if key not in properties:
                raise ValidationError(_name(key), "unknown argument")

    out: dict[str, Any] = {}
    for key, sub in properties.items():
        raw = value.get(key)
        if raw is None:
            if key in required:
                raise ValidationError(_name(key), "is required")
            if "default" in sub:
                out[key] = sub["default"]
            continue
        out[key] = _check(raw, sub, _name(key))
    for key, raw in value.items():
        if key not in properties and raw is not None:
            out[key] = raw
    return out


def validate_arguments(tool: Tool, raw: Any) -> dict[str, Any]:
    """Validate *raw* against ``tool.inputSchema`` and return typed arguments.

    Missing optional properties with a ``default`` are filled in; ``null``
    optional properties are dropped.

    Raises ValidationError naming the first offending field.
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValidationError("arguments", "must be an object")
    return _check_object(raw, tool.inputSchema, "")
