"""
Conductor Observability Package.

Hook listeners that turn run events into metrics.
"""

from conductor.observability.metrics import MetricsHooks, ToolMetrics

__all__ = [
    "MetricsHooks",
    "ToolMetrics",
]
