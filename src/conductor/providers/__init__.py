"""
Conductor providers module.

The Provider interface plus wrappers and a scripted backend.
"""

from conductor.providers.base import Provider
from conductor.providers.retry import RetryingProvider, compute_delay
from conductor.providers.scripted import (
    RecordedRequest,
    ScriptedProvider,
    text_response,
    tool_call_response,
)

__all__ = [
    "Provider",
    "RecordedRequest",
    "RetryingProvider",
    "ScriptedProvider",
    "compute_delay",
    "text_response",
    "tool_call_response",
]
