"""
Streaming sessions on top of an AgentPool.

A StreamingSession sends messages to an agent graph through the pool and
reports progress as session events. Each message becomes its own streamed
run identified by a stream id; callbacks run on pool worker threads.

Usage:
    session = StreamingSession(pool, agent)

    @session.on("chunk")
    def show(payload):
        print(payload["delta"], end="")

    session.start()
    stream_id = session.send("Tell me a story")
"""

from __future__ import annotations

import threading
import uuid
from collections import defaultdict
from collections.abc import Callable
from enum import Enum
from typing import Any

import structlog

from conductor.agent import Agent, AgentGraph
from conductor.errors import PoolClosed, PoolSaturated
from conductor.hooks import HandoffEvent, HookDispatcher, HookEvent, HookPayload, StreamChunkEvent
from conductor.pool import AgentPool, RunHandle, TaskStatus
from conductor.run_config import RunConfig

logger = structlog.get_logger(__name__)

SessionCallback = Callable[[dict[str, Any]], Any]


class SessionEvent(str, Enum):
    """Events a StreamingSession emits."""

    STREAM_START = "stream_start"
    CHUNK = "chunk"
    STREAM_END = "stream_end"
    ERROR = "error"
    TOOL_START = "tool_start"
    TOOL_END = "tool_end"
    HANDOFF = "handoff"


# Runner hooks forwarded as session events
_FORWARDED = {
    HookEvent.STREAM_CHUNK: SessionEvent.CHUNK,
    HookEvent.TOOL_START: SessionEvent.TOOL_START,
    HookEvent.TOOL_END: SessionEvent.TOOL_END,
    HookEvent.HANDOFF: SessionEvent.HANDOFF,
}


class StreamingSession:
    """Streams runs of one agent graph through a pool."""

    def __init__(
        self,
        pool: AgentPool,
        agents: Agent | AgentGraph,
        config: RunConfig | None = None,
    ) -> None:
        self.pool = pool
        self.graph = AgentGraph.coerce(agents)
        self.config = (config or RunConfig()).with_overrides(stream=True)
        self.session_id = f"session_{uuid.uuid4().hex[:16]}"
        self._callbacks: dict[SessionEvent, list[SessionCallback]] = defaultdict(list)
        self._streams: dict[str, RunHandle] = {}
        self._active = False
        self._lock = threading.Lock()
        self._stats = {"messages_sent": 0, "streams_completed": 0, "streams_failed": 0, "chunks": 0}

    # -------------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------------

    def on(self, event: SessionEvent | str, callback: SessionCallback | None = None) -> Any:
        """
        Register a callback for a session event.

        Usable as ``session.on("chunk", fn)`` or as a decorator
        ``@session.on("chunk")``.
        """
        name = SessionEvent(event)

        def register(fn: SessionCallback) -> SessionCallback:
            with self._lock:
                self._callbacks[name].append(fn)
            return fn

        if callback is not None:
            return register(callback)
        return register

    def _emit(self, event: SessionEvent, **payload: Any) -> None:
        payload.setdefault("session_id", self.session_id)
        with self._lock:
            callbacks = list(self._callbacks.get(event, ()))
        for callback in callbacks:
            try:
                callback(payload)
            except Exception as e:
                logger.error(
                    "session_callback_failed",
                    session_event=event.value,
                    stream_id=payload.get("stream_id"),
                    error_type=type(e).__name__,
                    error=str(e),
                )

    def _forwarding_hooks(self, stream_id: str) -> HookDispatcher:
        dispatcher = HookDispatcher()

        def forward(event: HookPayload) -> None:
            session_event = _FORWARDED[event.event]
            if isinstance(event, StreamChunkEvent):
                with self._lock:
                    self._stats["chunks"] += 1
                self._emit(session_event, stream_id=stream_id, delta=event.delta)
            elif isinstance(event, HandoffEvent):
                self._emit(
                    session_event,
                    stream_id=stream_id,
                    from_agent=event.from_agent.name,
                    to_agent=event.to_agent.name,
                )
            else:
                self._emit(session_event, stream_id=stream_id, **event.loggable_payload())

        for hook_event in _FORWARDED:
            dispatcher.register(forward, hook_event)
        return dispatcher

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> StreamingSession:
        self._active = True
        logger.info("streaming_session_started", session_id=self.session_id, agent=self.graph.entry.name)
        return self

    def stop(self) -> None:
        """Deactivate the session and cancel streams still in flight."""
        self._active = False
        with self._lock:
            handles = list(self._streams.values())
        for handle in handles:
            handle.cancel()
        logger.info("streaming_session_stopped", session_id=self.session_id, **self.stats())

    def send(self, message: str) -> str:
        """
        Start a streamed run for ``message``.

        Returns:
            The stream id carried by every event of this run.

        Raises:
            RuntimeError: If the session is not active.
            PoolSaturated: If the pool rejects the run.
            PoolClosed: If the pool has been shut down.

        A run the pool does not accept still gets an error event for its
        stream id before the exception propagates.
        """
        if not self._active:
            raise RuntimeError("Streaming session is not active")

        stream_id = f"stream_{uuid.uuid4().hex[:16]}"
        self._emit(SessionEvent.STREAM_START, stream_id=stream_id, message=message)

        try:
            handle = self.pool.submit(message, self.graph, self.config, hooks=self._forwarding_hooks(stream_id))
        except (PoolSaturated, PoolClosed) as e:
            with self._lock:
                self._stats["streams_failed"] += 1
            self._emit(
                SessionEvent.ERROR,
                stream_id=stream_id,
                error=e,
                error_type=type(e).__name__,
                status="rejected",
            )
            raise
        with self._lock:
            self._streams[stream_id] = handle
            self._stats["messages_sent"] += 1
        handle.add_done_callback(lambda h: self._finished(stream_id, h))
        return stream_id

    def _finished(self, stream_id: str, handle: RunHandle) -> None:
        with self._lock:
            self._streams.pop(stream_id, None)

        if handle.status is TaskStatus.COMPLETED:
            result = handle.result()
            with self._lock:
                self._stats["streams_completed"] += 1
            self._emit(
                SessionEvent.STREAM_END,
                stream_id=stream_id,
                final_output=result.final_output,
                last_agent=result.last_agent.name,
                result=result,
            )
        else:
            error = handle.exception()
            with self._lock:
                self._stats["streams_failed"] += 1
            self._emit(
                SessionEvent.ERROR,
                stream_id=stream_id,
                error=error,
                error_type=type(error).__name__,
                status=handle.status.value,
            )

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                **self._stats,
                "active": self._active,
                "active_streams": len(self._streams),
            }

    def __enter__(self) -> StreamingSession:
        return self.start()

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()
