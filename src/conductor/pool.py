"""
Running many sessions concurrently.

Two regimes are offered:

- AgentPool: a thread pool where each task runs its own Runner on its own
  event loop. Submissions beyond ``workers + backlog`` either block or are
  rejected with PoolSaturated.
- run_concurrently: many runs multiplexed on the current event loop,
  bounded by a semaphore.

Usage:
    with AgentPool(provider, workers=4) as pool:
        handle = pool.submit("Summarize the report", agent)
        result = handle.result(timeout=30)
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import threading
import uuid
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

from conductor.agent import Agent, AgentGraph
from conductor.config.settings import BacklogPolicy, ConductorSettings, get_settings
from conductor.errors import PoolClosed, PoolSaturated, RunCancelled
from conductor.hooks import HookDispatcher
from conductor.items import Message
from conductor.providers.base import Provider
from conductor.result import RunResult
from conductor.run_config import RunConfig
from conductor.runner import Runner

logger = structlog.get_logger(__name__)


class TaskStatus(str, Enum):
    """Lifecycle of a pooled run."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RunHandle:
    """
    Handle to a run submitted to an AgentPool.

    Cancelling a queued run prevents it from starting; cancelling a running
    one asks its runner to stop at the next boundary.
    """

    def __init__(self, task_id: str, agent_name: str) -> None:
        self.task_id = task_id
        self.agent_name = agent_name
        self._future: concurrent.futures.Future[RunResult] | None = None
        self._runner: Runner | None = None
        self._cancel_requested = False
        self._lock = threading.Lock()

    def _attach(self, future: concurrent.futures.Future[RunResult]) -> None:
        self._future = future

    def _start(self, runner: Runner) -> bool:
        """Called by the worker; False if the run was cancelled meanwhile."""
        with self._lock:
            if self._cancel_requested:
                return False
            self._runner = runner
            return True

    @property
    def future(self) -> concurrent.futures.Future[RunResult]:
        if self._future is None:
            raise RuntimeError(f"Task {self.task_id} has not been scheduled")
        return self._future

    @property
    def status(self) -> TaskStatus:
        future = self.future
        if future.cancelled():
            return TaskStatus.CANCELLED
        if not future.done():
            with self._lock:
                return TaskStatus.RUNNING if self._runner is not None else TaskStatus.QUEUED
        error = future.exception()
        if error is None:
            return TaskStatus.COMPLETED
        if isinstance(error, RunCancelled):
            return TaskStatus.CANCELLED
        return TaskStatus.FAILED

    def done(self) -> bool:
        return self.future.done()

    def cancel(self) -> bool:
        """
        Cancel the run.

        Returns:
            False if the run had already finished, True otherwise.
        """
        with self._lock:
            if self.future.done():
                return False
            self._cancel_requested = True
            runner = self._runner
        if self.future.cancel():
            logger.info("pool_task_cancelled", task_id=self.task_id, status="queued")
            return True
        if runner is not None:
            runner.stop()
            logger.info("pool_task_cancelled", task_id=self.task_id, status="running")
        return True

    def result(self, timeout: float | None = None) -> RunResult:
        """
        Wait for the run and return its result.

        Raises:
            TimeoutError: If the run is not done within ``timeout``.
            RunCancelled: If the run was cancelled.
            Exception: Whatever the run raised.
        """
        try:
            return self.future.result(timeout)
        except concurrent.futures.CancelledError:
            raise RunCancelled(f"Task {self.task_id} was cancelled") from None

    def exception(self, timeout: float | None = None) -> BaseException | None:
        try:
            return self.future.exception(timeout)
        except concurrent.futures.CancelledError:
            return RunCancelled(f"Task {self.task_id} was cancelled")

    def add_done_callback(self, fn: Callable[[RunHandle], Any]) -> None:
        """Call ``fn(handle)`` when the run finishes (immediately if it has)."""
        self.future.add_done_callback(lambda _: fn(self))

    def __repr__(self) -> str:
        return f"<RunHandle {self.task_id} agent={self.agent_name!r} status={self.status.value}>"


class AgentPool:
    """
    Thread pool running independent sessions.

    Each task gets a fresh Runner and its own event loop, so agents and
    tools are shared read-only while all per-run state stays in the task.
    """

    def __init__(
        self,
        provider: Provider,
        *,
        workers: int | None = None,
        backlog: int | None = None,
        on_full: BacklogPolicy | str | None = None,
        hooks: Any = None,
        settings: ConductorSettings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        pool_settings = self.settings.pool
        self.provider = provider
        self.workers = workers if workers is not None else pool_settings.workers
        self.backlog = backlog if backlog is not None else pool_settings.backlog
        self.on_full = BacklogPolicy(on_full) if on_full is not None else pool_settings.on_full
        if self.workers < 1:
            raise ValueError("workers must be at least 1")
        if self.backlog < 0:
            raise ValueError("backlog must be non-negative")

        self.hooks = HookDispatcher.coerce(hooks)
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=self.workers,
            thread_name_prefix="conductor-pool",
        )
        self._slots = threading.BoundedSemaphore(self.capacity)
        self._lock = threading.Lock()
        self._handles: dict[str, RunHandle] = {}
        self._closed = False
        self._stats = {"submitted": 0, "completed": 0, "failed": 0, "cancelled": 0, "rejected": 0}

        logger.info(
            "agent_pool_started",
            workers=self.workers,
            backlog=self.backlog,
            on_full=self.on_full.value,
        )

    @property
    def capacity(self) -> int:
        return self.workers + self.backlog

    @property
    def closed(self) -> bool:
        return self._closed

    def _acquire_slot(self) -> None:
        if self.on_full is BacklogPolicy.REJECT:
            if not self._slots.acquire(blocking=False):
                with self._lock:
                    self._stats["rejected"] += 1
                logger.warning("agent_pool_saturated", capacity=self.capacity)
                raise PoolSaturated(self.capacity)
        else:
            self._slots.acquire()

    def submit(
        self,
        input: str | Sequence[Message],
        agents: Agent | AgentGraph,
        config: RunConfig | None = None,
        *,
        hooks: Any = None,
    ) -> RunHandle:
        """
        Schedule a run without waiting for it.

        Args:
            input: User text or transcript.
            agents: Entry agent or graph.
            config: Per-run settings.
            hooks: Extra listeners for this run, after the pool's own.

        Raises:
            PoolClosed: If the pool has been shut down.
            PoolSaturated: If the backlog is full and the pool rejects work.
        """
        if self._closed:
            raise PoolClosed("Agent pool is shut down")

        graph = AgentGraph.coerce(agents)
        handle = RunHandle(f"task_{uuid.uuid4().hex[:16]}", graph.entry.name)
        dispatcher = self.hooks.extend(HookDispatcher.coerce(hooks)) if hooks is not None else self.hooks
        self._acquire_slot()

        try:
            future = self._executor.submit(self._execute, handle, input, graph, config, dispatcher)
        except RuntimeError as e:
            self._slots.release()
            raise PoolClosed("Agent pool is shut down") from e

        handle._attach(future)
        with self._lock:
            self._handles[handle.task_id] = handle
            self._stats["submitted"] += 1
        future.add_done_callback(lambda _: self._finished(handle))

        logger.debug("pool_task_submitted", task_id=handle.task_id, agent=handle.agent_name)
        return handle

    def _execute(
        self,
        handle: RunHandle,
        input: str | Sequence[Message],
        graph: AgentGraph,
        config: RunConfig | None,
        hooks: HookDispatcher,
    ) -> RunResult:
        runner = Runner(self.provider, hooks=hooks, settings=self.settings)
        if not handle._start(runner):
            raise RunCancelled(f"Task {handle.task_id} was cancelled before it started")
        logger.debug("pool_task_started", task_id=handle.task_id, agent=handle.agent_name)
        return asyncio.run(runner.run(input, graph, config))

    def _finished(self, handle: RunHandle) -> None:
        self._slots.release()
        status = handle.status
        key = {
            TaskStatus.COMPLETED: "completed",
            TaskStatus.FAILED: "failed",
            TaskStatus.CANCELLED: "cancelled",
        }[status]
        with self._lock:
            self._stats[key] += 1
            self._handles.pop(handle.task_id, None)
        logger.debug("pool_task_finished", task_id=handle.task_id, status=status.value)

    def run(
        self,
        input: str | Sequence[Message],
        agents: Agent | AgentGraph,
        config: RunConfig | None = None,
        *,
        timeout: float | None = None,
    ) -> RunResult:
        """Submit a run and block until it finishes."""
        return self.submit(input, agents, config).result(timeout)

    def submit_many(
        self,
        agents: Iterable[Agent | AgentGraph],
        input: str | Sequence[Message],
        config: RunConfig | None = None,
    ) -> list[RunHandle]:
        """Send the same input to several agents."""
        return [self.submit(input, agent, config) for agent in agents]

    def get(self, task_id: str) -> RunHandle | None:
        """Look up an unfinished task."""
        with self._lock:
            return self._handles.get(task_id)

    def cancel(self, task_id: str) -> bool:
        handle = self.get(task_id)
        return handle.cancel() if handle is not None else False

    @staticmethod
    def wait(
        handles: Iterable[RunHandle],
        timeout: float | None = None,
    ) -> tuple[list[RunHandle], list[RunHandle]]:
        """
        Wait for handles to finish.

        Returns:
            Tuple of (done, not_done) handles, in input order.
        """
        handles = list(handles)
        concurrent.futures.wait([h.future for h in handles], timeout=timeout)
        done = [h for h in handles if h.done()]
        pending = [h for h in handles if not h.done()]
        return done, pending

    def stats(self) -> dict[str, Any]:
        with self._lock:
            handles = list(self._handles.values())
            counters = dict(self._stats)
        statuses = [h.status for h in handles]
        return {
            **counters,
            "running": statuses.count(TaskStatus.RUNNING),
            "queued": statuses.count(TaskStatus.QUEUED),
            "workers": self.workers,
            "backlog": self.backlog,
            "capacity": self.capacity,
            "closed": self._closed,
        }

    def shutdown(self, wait: bool = True, cancel_pending: bool = False) -> None:
        """
        Stop accepting work.

        Args:
            wait: Block until submitted runs finish.
            cancel_pending: Cancel queued runs and stop running ones.
        """
        self._closed = True
        if cancel_pending:
            with self._lock:
                handles = list(self._handles.values())
            for handle in handles:
                handle.cancel()
        self._executor.shutdown(wait=wait, cancel_futures=cancel_pending)
        logger.info("agent_pool_shutdown", **self.stats())

    def __enter__(self) -> AgentPool:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown(wait=True)


# =============================================================================
# ASYNCIO REGIME
# =============================================================================

@dataclass(frozen=True)
class RunJob:
    """One run for run_concurrently."""

    input: str | Sequence[Message]
    agents: Agent | AgentGraph
    config: RunConfig | None = None


async def run_concurrently(
    runner_factory: Callable[[], Runner],
    jobs: Iterable[RunJob | tuple[Any, ...]],
    max_concurrent: int = 10,
) -> list[RunResult | BaseException]:
    """
    Run many jobs on the current event loop.

    Args:
        runner_factory: Builds a Runner per job.
        jobs: RunJob values or ``(input, agents[, config])`` tuples.
        max_concurrent: Maximum runs in flight.

    Returns:
        Results or raised exceptions, in job order.
    """
    if max_concurrent < 1:
        raise ValueError("max_concurrent must be at least 1")

    semaphore = asyncio.Semaphore(max_concurrent)
    normalized = [job if isinstance(job, RunJob) else RunJob(*job) for job in jobs]

    logger.info("starting_concurrent_runs", jobs=len(normalized), max_concurrent=max_concurrent)

    async def _run_with_semaphore(job: RunJob) -> RunResult:
        async with semaphore:
            return await runner_factory().run(job.input, job.agents, job.config)

    return await asyncio.gather(
        *(_run_with_semaphore(job) for job in normalized),
        return_exceptions=True,
    )
