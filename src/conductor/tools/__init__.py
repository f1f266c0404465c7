"""
Conductor tools module.

Tool interface, function tools and the execution interceptor.
"""

from conductor.tools.base import Tool, ToolDefinition
from conductor.tools.executor import (
    METADATA_KEY,
    ExecutionMetadata,
    ToolExecutionConfig,
    ToolExecutor,
    intercepts,
    merge_metadata,
)
from conductor.tools.function import FunctionTool, function_tool
from conductor.tools.validation import check_arguments, validate_arguments

__all__ = [
    "METADATA_KEY",
    "ExecutionMetadata",
    "FunctionTool",
    "Tool",
    "ToolDefinition",
    "ToolExecutionConfig",
    "ToolExecutor",
    "check_arguments",
    "function_tool",
    "intercepts",
    "merge_metadata",
    "validate_arguments",
]
