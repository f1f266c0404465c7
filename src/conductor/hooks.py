"""
Lifecycle hooks for Conductor runs.

The runner synthesizes a typed event for each lifecycle point and hands it
to a HookDispatcher. Listeners are either plain callbacks or objects with
``on_*`` methods (see RunHooks). A failing listener is logged and skipped;
dispatch never raises into the run.

Usage:
    dispatcher = HookDispatcher()

    @dispatcher.on(HookEvent.TOOL_END)
    def record(event: ToolEndEvent) -> None:
        print(event.tool_name, event.result)

    class Audit(RunHooks):
        async def on_handoff(self, event: HandoffEvent) -> None:
            ...

    dispatcher.register(Audit())
"""

from __future__ import annotations

import asyncio
import inspect
import traceback
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from enum import Enum
from typing import Any, ClassVar

import structlog

logger = structlog.get_logger(__name__)

# Fields that reference live objects rather than data
OPAQUE_FIELDS = frozenset({"context", "agent", "tool", "from_agent", "to_agent"})

TRACEBACK_LINES = 5


class HookEvent(str, Enum):
    """Lifecycle points the runner reports."""

    START = "on_start"
    AGENT_START = "on_agent_start"
    LLM_START = "on_llm_start"
    LLM_END = "on_llm_end"
    TOOL_START = "on_tool_start"
    TOOL_END = "on_tool_end"
    HANDOFF = "on_handoff"
    STREAM_CHUNK = "on_stream_chunk"
    ERROR = "on_error"
    END = "on_end"


def _now() -> str:
    return datetime.now(UTC).isoformat()


# =============================================================================
# EVENTS
# =============================================================================

@dataclass(kw_only=True)
class HookPayload:
    """Fields shared by every hook event."""

    event: ClassVar[HookEvent]

    context: Any = None
    agent: Any = None
    timestamp: str = field(default_factory=_now)

    def payload(self) -> dict[str, Any]:
        """All fields as a dict (values are not copied)."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def loggable_payload(self) -> dict[str, Any]:
        """Payload without live object references, for log lines."""
        data = {}
        for key, value in self.payload().items():
            if key in OPAQUE_FIELDS:
                continue
            data[key] = repr(value) if isinstance(value, BaseException) else value
        if self.agent is not None:
            data["agent_name"] = getattr(self.agent, "name", None)
        return data


@dataclass(kw_only=True)
class RunStartEvent(HookPayload):
    event: ClassVar[HookEvent] = HookEvent.START

    input: Any = None


@dataclass(kw_only=True)
class AgentStartEvent(HookPayload):
    event: ClassVar[HookEvent] = HookEvent.AGENT_START

    turn: int = 0


@dataclass(kw_only=True)
class LLMStartEvent(HookPayload):
    event: ClassVar[HookEvent] = HookEvent.LLM_START

    turn: int = 0
    message_count: int = 0
    tool_names: list[str] = field(default_factory=list)


@dataclass(kw_only=True)
class LLMEndEvent(HookPayload):
    event: ClassVar[HookEvent] = HookEvent.LLM_END

    turn: int = 0
    response: Any = None


@dataclass(kw_only=True)
class ToolStartEvent(HookPayload):
    event: ClassVar[HookEvent] = HookEvent.TOOL_START

    tool: Any = None
    tool_name: str = ""
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(kw_only=True)
class ToolEndEvent(HookPayload):
    event: ClassVar[HookEvent] = HookEvent.TOOL_END

    tool: Any = None
    tool_name: str = ""
    result: Any = None
    duration_ms: float | None = None


@dataclass(kw_only=True)
class HandoffEvent(HookPayload):
    event: ClassVar[HookEvent] = HookEvent.HANDOFF

    from_agent: Any = None
    to_agent: Any = None

    def loggable_payload(self) -> dict[str, Any]:
        data = super().loggable_payload()
        data["from_agent_name"] = getattr(self.from_agent, "name", None)
        data["to_agent_name"] = getattr(self.to_agent, "name", None)
        return data


@dataclass(kw_only=True)
class StreamChunkEvent(HookPayload):
    event: ClassVar[HookEvent] = HookEvent.STREAM_CHUNK

    delta: str = ""


@dataclass(kw_only=True)
class ErrorEvent(HookPayload):
    event: ClassVar[HookEvent] = HookEvent.ERROR

    error: BaseException | None = None
    stage: str = ""


@dataclass(kw_only=True)
class RunEndEvent(HookPayload):
    event: ClassVar[HookEvent] = HookEvent.END

    result: Any = None


EVENT_TYPES: dict[HookEvent, type[HookPayload]] = {
    cls.event: cls
    for cls in (
        RunStartEvent,
        AgentStartEvent,
        LLMStartEvent,
        LLMEndEvent,
        ToolStartEvent,
        ToolEndEvent,
        HandoffEvent,
        StreamChunkEvent,
        ErrorEvent,
        RunEndEvent,
    )
}


# =============================================================================
# LISTENERS
# =============================================================================

class RunHooks:
    """
    Receiver with one no-op method per lifecycle event.

    Subclass and override the methods you care about; they may be sync or
    async and receive the typed event.
    """

    async def on_start(self, event: RunStartEvent) -> None:
        pass

    async def on_agent_start(self, event: AgentStartEvent) -> None:
        pass

    async def on_llm_start(self, event: LLMStartEvent) -> None:
        pass

    async def on_llm_end(self, event: LLMEndEvent) -> None:
        pass

    async def on_tool_start(self, event: ToolStartEvent) -> None:
        pass

    async def on_tool_end(self, event: ToolEndEvent) -> None:
        pass

    async def on_handoff(self, event: HandoffEvent) -> None:
        pass

    async def on_stream_chunk(self, event: StreamChunkEvent) -> None:
        pass

    async def on_error(self, event: ErrorEvent) -> None:
        pass

    async def on_end(self, event: RunEndEvent) -> None:
        pass


class HookListener(ABC):
    """A registered receiver of hook events."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def handles(self, event_name: HookEvent) -> bool:
        ...

    @abstractmethod
    def invoke(self, event: HookPayload) -> Any:
        """Deliver the event; may return an awaitable."""
        ...


class CallbackListener(HookListener):
    """A callable ``fn(event)``, optionally bound to one event name."""

    def __init__(self, fn: Callable[[HookPayload], Any], event: HookEvent | str | None = None) -> None:
        self.fn = fn
        self.event = HookEvent(event) if event is not None else None

    @property
    def name(self) -> str:
        return getattr(self.fn, "__qualname__", repr(self.fn))

    def handles(self, event_name: HookEvent) -> bool:
        return self.event is None or self.event is event_name

    def invoke(self, event: HookPayload) -> Any:
        return self.fn(event)


class MethodListener(HookListener):
    """An object whose ``on_*`` method named after the event is called."""

    def __init__(self, receiver: Any, method: str | None = None) -> None:
        self.receiver = receiver
        self.method = method

    @property
    def name(self) -> str:
        suffix = f".{self.method}" if self.method else ""
        return f"{type(self.receiver).__name__}{suffix}"

    def _method_name(self, event_name: HookEvent) -> str:
        return self.method or event_name.value

    def handles(self, event_name: HookEvent) -> bool:
        if self.method is not None and self.method != event_name.value:
            return False
        return callable(getattr(self.receiver, self._method_name(event_name), None))

    def invoke(self, event: HookPayload) -> Any:
        return getattr(self.receiver, self._method_name(event.event))(event)


# =============================================================================
# DISPATCHER
# =============================================================================

class HookDispatcher:
    """
    Dispatches hook events to registered listeners in registration order.

    A listener exception is logged with the event name, the loggable
    payload, the error class and a short traceback; later listeners still run.
    """

    def __init__(self, listeners: Iterable[Any] = ()) -> None:
        self._listeners: list[HookListener] = []
        for listener in listeners:
            self.register(listener)

    @classmethod
    def coerce(cls, hooks: Any) -> HookDispatcher:
        """Build a dispatcher from None, a dispatcher, a receiver, a callable or a list."""
        if isinstance(hooks, HookDispatcher):
            return hooks
        if hooks is None:
            return cls()
        if isinstance(hooks, (list, tuple)):
            return cls(hooks)
        return cls([hooks])

    def register(self, target: Any, event: HookEvent | str | None = None) -> HookListener:
        """
        Register a listener.

        Args:
            target: A HookListener, a RunHooks-style receiver, or a callable.
            event: Restrict a callable (or a receiver) to one event.

        Returns:
            The registered listener.
        """
        if isinstance(target, HookListener):
            listener = target
        elif isinstance(target, RunHooks) or (not callable(target) and target is not None):
            listener = MethodListener(target, HookEvent(event).value if event else None)
        elif callable(target):
            listener = CallbackListener(target, event)
        else:
            raise TypeError(f"Cannot register {target!r} as a hook listener")

        self._listeners.append(listener)
        logger.debug("hook_listener_registered", listener=listener.name)
        return listener

    def on(self, event: HookEvent | str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator registering a callback for one event."""

        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.register(fn, event)
            return fn

        return decorator

    def unregister(self, listener: HookListener) -> bool:
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    @property
    def listeners(self) -> list[HookListener]:
        return list(self._listeners)

    def extend(self, other: HookDispatcher) -> HookDispatcher:
        """A new dispatcher with this dispatcher's listeners followed by ``other``'s."""
        return HookDispatcher([*self._listeners, *other.listeners])

    def listeners_for(self, event_name: HookEvent | str) -> list[HookListener]:
        name = HookEvent(event_name)
        return [listener for listener in self._listeners if listener.handles(name)]

    def _build(self, event_name: HookEvent | str, event: HookPayload | None, data: dict[str, Any]) -> HookPayload:
        name = HookEvent(event_name)
        if event is None:
            return EVENT_TYPES[name](**data)
        if event.event is not name:
            raise ValueError(f"Event {type(event).__name__} cannot be fired as {name.value}")
        return event

    def _log_failure(self, listener: HookListener, event: HookPayload, error: Exception) -> None:
        frames = traceback.format_tb(error.__traceback__)[-TRACEBACK_LINES:]
        logger.error(
            "hook_listener_failed",
            hook=event.event.value,
            listener=listener.name,
            error_type=type(error).__name__,
            error=str(error),
            data=event.loggable_payload(),
            traceback="".join(frames),
        )

    async def fire(
        self,
        event_name: HookEvent | str,
        event: HookPayload | None = None,
        **data: Any,
    ) -> Any:
        """
        Deliver an event to every listener that handles it.

        Either pass a built event or the fields to build one from.

        Returns:
            The result of the last listener that completed, or None.
        """
        payload = self._build(event_name, event, data)
        result = None
        for listener in self.listeners_for(payload.event):
            try:
                outcome = listener.invoke(payload)
                if inspect.isawaitable(outcome):
                    outcome = await outcome
                result = outcome
            except Exception as e:
                self._log_failure(listener, payload, e)
        return result

    def fire_sync(
        self,
        event_name: HookEvent | str,
        event: HookPayload | None = None,
        **data: Any,
    ) -> Any:
        """
        Synchronous variant of fire for code without a running loop.

        Async listeners are driven to completion with asyncio.run.
        """
        payload = self._build(event_name, event, data)
        result = None
        for listener in self.listeners_for(payload.event):
            try:
                outcome = listener.invoke(payload)
                if inspect.iscoroutine(outcome):
                    outcome = asyncio.run(outcome)
                result = outcome
            except Exception as e:
                self._log_failure(listener, payload, e)
        return result

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)

    def __bool__(self) -> bool:
        return True
