"""Per-run state handed to hooks, guardrails and handoff callbacks."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from conductor.items import Usage


def new_run_id() -> str:
    return f"run_{uuid.uuid4().hex}"


def new_trace_id() -> str:
    return f"trace_{uuid.uuid4().hex}"


@dataclass
class RunContext:
    """Wrapper around the user context plus the run's bookkeeping."""

    context: Any = None
    """The user context object from RunConfig."""

    usage: Usage = field(default_factory=Usage)
    """Token usage accumulated so far."""

    run_id: str = field(default_factory=new_run_id)
    trace_id: str = field(default_factory=new_trace_id)
    group_id: str | None = None
    workflow_name: str = "Agent workflow"
    metadata: dict[str, Any] = field(default_factory=dict)

    turn: int = 0
    """Model round-trips completed so far."""
