"""
Argument validation against a tool's JSON schema.

Only the subset of JSON schema that function tools generate is checked:
required properties, primitive types and enums.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from conductor.errors import ToolArgumentError

_TYPE_CHECKS: dict[str, tuple[tuple[type, ...], str]] = {
    "string": ((str,), "a string"),
    "integer": ((int,), "an integer"),
    "number": ((int, float), "a number"),
    "boolean": ((bool,), "a boolean"),
    "object": ((Mapping,), "an object"),
    "array": ((list, tuple), "an array"),
}


def _matches_type(value: Any, json_type: str) -> bool:
    accepted, _ = _TYPE_CHECKS[json_type]
    # bool is an int subclass but never a valid integer/number argument
    if json_type in ("integer", "number") and isinstance(value, bool):
        return False
    return isinstance(value, accepted)


def check_arguments(
    schema: Mapping[str, Any],
    arguments: Mapping[str, Any],
) -> tuple[bool, str | None]:
    """
    Validate arguments against schema.

    Args:
        schema: JSON schema object with ``properties`` and ``required``.
        arguments: Arguments the model supplied.

    Returns:
        Tuple of (is_valid, error_message).
    """
    for param in schema.get("required", []):
        if param not in arguments:
            return False, f"Missing required parameter: {param}"

    properties = schema.get("properties", {})
    for param, value in arguments.items():
        prop_schema = properties.get(param)
        if not prop_schema:
            continue

        json_type = prop_schema.get("type")
        if isinstance(json_type, str) and json_type in _TYPE_CHECKS:
            if value is not None and not _matches_type(value, json_type):
                _, label = _TYPE_CHECKS[json_type]
                return False, f"Parameter {param} must be {label}"

        if "enum" in prop_schema and value not in prop_schema["enum"]:
            return False, f"Parameter {param} must be one of: {prop_schema['enum']}"

    return True, None


def validate_arguments(
    schema: Mapping[str, Any],
    arguments: Mapping[str, Any],
    tool_name: str | None = None,
) -> None:
    """Raise ToolArgumentError if arguments do not satisfy the schema."""
    valid, error = check_arguments(schema, arguments)
    if not valid:
        raise ToolArgumentError(error or "Invalid arguments", tool_name=tool_name)
