"""
Function tools with auto-schema generation.

This module provides a decorator that converts regular Python functions
into tools with a JSON schema generated from type hints and docstring.

Usage:
    @function_tool
    def add(a: int, b: int) -> int:
        '''Add two numbers.

        Args:
            a: First operand.
            b: Second operand.
        '''
        return a + b
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import types
from collections.abc import Callable
from typing import Any, Literal, Union, get_args, get_origin, get_type_hints

import structlog

from conductor.errors import ToolExecutionError
from conductor.tools.base import Tool

logger = structlog.get_logger(__name__)

# Type mapping from Python types to JSON Schema types
PYTHON_TO_JSON_TYPE: dict[type, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    tuple: "array",
    dict: "object",
    type(None): "null",
}


def _get_json_type(python_type: Any) -> dict[str, Any]:
    """Convert a Python type hint to a JSON Schema type definition."""
    if python_type in PYTHON_TO_JSON_TYPE:
        return {"type": PYTHON_TO_JSON_TYPE[python_type]}

    origin = get_origin(python_type)
    args = get_args(python_type)

    # Optional[X] / X | None
    if origin is Union or origin is types.UnionType:
        non_none = [a for a in args if a is not type(None)]
        if len(non_none) == 1:
            return _get_json_type(non_none[0])
        return {"anyOf": [_get_json_type(a) for a in non_none]}

    if origin is Literal:
        schema = _get_json_type(type(args[0])) if args else {}
        schema["enum"] = list(args)
        return schema

    if origin in (list, tuple):
        if args:
            return {"type": "array", "items": _get_json_type(args[0])}
        return {"type": "array"}

    if origin is dict:
        return {"type": "object"}

    # Default to string for unknown types
    return {"type": "string"}


def _extract_docstring_parts(docstring: str) -> tuple[str, dict[str, str]]:
    """
    Extract description and parameter descriptions from a Google-style docstring.

    Returns:
        Tuple of (main_description, {param_name: param_description})
    """
    if not docstring:
        return "", {}

    description_lines: list[str] = []
    param_descriptions: dict[str, str] = {}
    in_params = False
    current_param: str | None = None

    for line in docstring.strip().split("\n"):
        stripped = line.strip()

        if stripped.lower() in ("args:", "arguments:", "parameters:", "params:"):
            in_params = True
            continue

        if stripped.lower().startswith(("returns:", "return:", "raises:", "example:", "examples:")):
            in_params = False
            current_param = None
            continue

        if in_params:
            if ":" in stripped and not line.startswith(" " * 8):
                name, _, text = stripped.partition(":")
                # "name (type): text"
                name = name.split("(")[0].strip()
                param_descriptions[name] = text.strip()
                current_param = name
            elif current_param and stripped:
                param_descriptions[current_param] += " " + stripped
        elif stripped:
            description_lines.append(stripped)

    return " ".join(description_lines), param_descriptions


def _generate_schema_from_function(
    func: Callable[..., Any],
    param_descriptions: dict[str, str],
) -> dict[str, Any]:
    """Generate a JSON Schema object from a function signature."""
    sig = inspect.signature(func)
    try:
        hints = get_type_hints(func)
    except (NameError, TypeError):
        hints = {}

    properties: dict[str, Any] = {}
    required: list[str] = []

    for name, param in sig.parameters.items():
        if name in ("self", "cls"):
            continue
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue

        prop = _get_json_type(hints.get(name, str))
        if name in param_descriptions:
            prop["description"] = param_descriptions[name]

        if param.default is inspect.Parameter.empty:
            required.append(name)
        elif param.default is not None:
            prop["default"] = param.default

        properties[name] = prop

    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


class FunctionTool(Tool):
    """
    Tool implementation that wraps a function.

    Async functions are awaited; sync functions run in the default executor
    so they never block the event loop.
    """

    def __init__(
        self,
        func: Callable[..., Any],
        *,
        name: str | None = None,
        description: str | None = None,
        parameters: dict[str, Any] | None = None,
        timeout: float | None = None,
        already_wrapped: bool = False,
    ) -> None:
        super().__init__(already_wrapped=already_wrapped)
        self._func = func
        self._name = name or func.__name__
        self._description = description or ""
        self._parameters = parameters or {"type": "object", "properties": {}}
        self._timeout = timeout
        self._is_async = inspect.iscoroutinefunction(func)

        logger.debug(
            "function_tool_created",
            name=self._name,
            is_async=self._is_async,
            already_wrapped=already_wrapped,
        )

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def parameters(self) -> dict[str, Any]:
        return self._parameters

    @property
    def func(self) -> Callable[..., Any]:
        return self._func

    async def _invoke(self, **kwargs: Any) -> Any:
        if self._is_async:
            return await self._func(**kwargs)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self._func, **kwargs))

    async def call(self, **kwargs: Any) -> Any:
        """Execute the wrapped function."""
        if self._timeout is None:
            return await self._invoke(**kwargs)
        try:
            return await asyncio.wait_for(self._invoke(**kwargs), timeout=self._timeout)
        except TimeoutError as e:
            raise ToolExecutionError(
                f"Tool execution timed out after {self._timeout}s",
                tool_name=self._name,
            ) from e


def function_tool(
    func: Callable[..., Any] | None = None,
    *,
    name: str | None = None,
    description: str | None = None,
    timeout: float | None = None,
    already_wrapped: bool = False,
) -> Any:
    """
    Decorator to create a tool from a function with automatic schema generation.

    May be used bare (``@function_tool``) or with options
    (``@function_tool(name="lookup")``).

    Args:
        func: The function, when used without parentheses.
        name: Override the tool name (defaults to function name).
        description: Override the description (defaults to docstring).
        timeout: Optional execution timeout in seconds.
        already_wrapped: Mark the tool as wrapped by an outer layer.

    Returns:
        A FunctionTool, or a decorator producing one.
    """

    def decorator(fn: Callable[..., Any]) -> FunctionTool:
        main_description, param_descriptions = _extract_docstring_parts(inspect.getdoc(fn) or "")
        tool = FunctionTool(
            fn,
            name=name or fn.__name__,
            description=description or main_description or f"Tool: {fn.__name__}",
            parameters=_generate_schema_from_function(fn, param_descriptions),
            timeout=timeout,
            already_wrapped=already_wrapped,
        )
        tool.__doc__ = fn.__doc__
        return tool

    if func is not None:
        return decorator(func)
    return decorator
