"""
Capacity-limited task pool runner.

TaskPoolRunner pulls tasks from a TaskSource, acquires a unit from a
CapacitySource before starting each one, runs them concurrently and streams a
progress envelope per outcome in completion order. One task failing never
affects the others; a failing source stops further pulls but lets in-flight
tasks finish and report before the failure is raised.
"""

import asyncio
import inspect
import logging
import time
from datetime import datetime
from typing import Any, AsyncIterator, List, Optional, Set

from capacity import CapacitySource
from models import (
    ErrorEnvelope,
    FinalEnvelope,
    IntermediateEnvelope,
    ProgressEnvelope,
    RunSummary
)

from .sources import TaskItem, TaskSource
from .tasks import PoolTask


logger = logging.getLogger(__name__)

_NOTHING = object()


class RunnerError(Exception):
    """Base exception for runner-level (not per-task) failures."""
    pass


class TaskSourceError(RunnerError):
    """Raised when the task source fails to produce the next task."""
    pass


class TaskFailedError(RunnerError):
    """Raised by runners created with raise_on_error=True on the first task failure."""

    def __init__(self, task_id: str, error: BaseException):
        super().__init__(f"Task '{task_id}' failed: {error}")
        self.task_id = task_id
        self.error = error


class RunnerStateError(RunnerError):
    """Raised when a runner is started a second time."""
    pass


class TaskPoolRunner:
    """
    Runs tasks from ``source`` with concurrency bounded by ``capacity``.

    Usage:
        runner = TaskPoolRunner("ingest", ListTaskSource(tasks), capacity)
        async for envelope in runner.run_tasks():
            ...
        print(runner.summary.failed)

    A runner is single-use: once run_tasks() has been called, a new
    runner/source pair is needed to run again.
    """

    def __init__(
        self,
        label: str,
        source: TaskSource,
        capacity: CapacitySource,
        raise_on_error: bool = False,
        logger_instance: Optional[logging.Logger] = None
    ):
        self.label = label
        self.source = source
        self.capacity = capacity
        self.raise_on_error = raise_on_error
        self.logger = logger_instance or logger

        self.summary = RunSummary(label=label)
        self._started = False
        self._in_flight: Set[asyncio.Task] = set()
        self._anonymous = 0

    @property
    def in_flight(self) -> int:
        """Number of tasks currently executing."""
        return len(self._in_flight)

    def run_tasks(self) -> AsyncIterator[ProgressEnvelope]:
        """
        Start the pool and return the stream of progress envelopes.

        Envelopes arrive in completion order. Stopping iteration early
        abandons the stream: tasks already running finish and release their
        capacity, but no new tasks are pulled.

        Raises:
            RunnerStateError: if this runner was already started
        """
        if self._started:
            raise RunnerStateError(f"Task pool '{self.label}' has already been run")
        self._started = True
        return self._run()

    async def collect(self) -> List[ProgressEnvelope]:
        """Run to completion and return every envelope in the order emitted."""
        return [envelope async for envelope in self.run_tasks()]

    async def _run(self) -> AsyncIterator[ProgressEnvelope]:
        events: asyncio.Queue = asyncio.Queue()
        step: Optional[asyncio.Task] = None
        exhausted = False
        failure: Optional[RunnerError] = None

        execution_start = time.time()
        self.summary.started_at = datetime.now()
        self.logger.info(
            f"Task pool '{self.label}' started",
            extra={"pool": self.label, "capacity": self.capacity.name}
        )

        try:
            while True:
                if step is None and not exhausted and failure is None:
                    if self.source.is_exhausted:
                        exhausted = True
                    else:
                        step = asyncio.ensure_future(self._next_task())

                if step is None and not self._in_flight and events.empty():
                    break

                getter = asyncio.ensure_future(events.get())
                pending = {getter, *self._in_flight}
                if step is not None:
                    pending.add(step)
                try:
                    await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                finally:
                    if not getter.done():
                        getter.cancel()

                if step is not None and step.done():
                    finished, step = step, None
                    try:
                        item = finished.result()
                    except Exception as e:
                        exhausted = True
                        failure = self._source_failure(e)
                    else:
                        if item is None:
                            exhausted = True
                        else:
                            self._launch(item, events)

                ready = []
                if getter.done() and not getter.cancelled():
                    ready.append(getter.result())
                while not events.empty():
                    ready.append(events.get_nowait())

                for envelope in ready:
                    self._record(envelope)
                    yield envelope
                    if (
                        self.raise_on_error
                        and failure is None
                        and isinstance(envelope, ErrorEnvelope)
                    ):
                        failure = TaskFailedError(envelope.task_id, envelope.error)
                        failure.__cause__ = envelope.error
                        if step is not None:
                            self._abandon(step)
                            step = None

            if failure is not None:
                raise failure

        finally:
            if step is not None:
                self._abandon(step)
            self.summary.finished_at = datetime.now()
            self.summary.execution_time_ms = (time.time() - execution_start) * 1000
            self.logger.info(
                f"Task pool '{self.label}' finished: {self.summary.succeeded} succeeded, "
                f"{self.summary.failed} failed",
                extra={
                    "pool": self.label,
                    "submitted": self.summary.submitted,
                    "execution_time_ms": self.summary.execution_time_ms,
                    "status": self.summary.status
                }
            )

    async def _next_task(self) -> Optional[PoolTask]:
        """Wait for the source, take a capacity unit, then pull the task it is for."""
        await self.source.wait_ready()
        if self.source.is_exhausted:
            return None

        await self.capacity.acquire()
        try:
            item = await self.source.pull()
            task = self._as_pool_task(item) if item is not None else None
        except BaseException:
            self.capacity.release()
            raise

        if task is None:
            self.capacity.release()
        return task

    def _abandon(self, step: asyncio.Task) -> None:
        """Drop a pending acquire/pull step without leaking its capacity unit."""
        if not step.done():
            step.cancel()
            return
        if step.cancelled() or step.exception() is not None:
            return
        if step.result() is not None:
            self.capacity.release()

    def _as_pool_task(self, item: TaskItem) -> PoolTask:
        if isinstance(item, PoolTask):
            return item
        if callable(item):
            self._anonymous += 1
            return PoolTask(key=f"{self.label}:{self._anonymous}", runner=item)
        raise TypeError(f"Task source yielded a non-callable {type(item).__name__}")

    def _launch(self, task: PoolTask, events: asyncio.Queue) -> None:
        self.summary.submitted += 1
        execution = asyncio.ensure_future(self._execute(task, events))
        self._in_flight.add(execution)
        execution.add_done_callback(self._in_flight.discard)
        self.logger.debug(f"Task '{task.key}' started in pool '{self.label}' ({len(self._in_flight)} in flight)")

    async def _execute(self, task: PoolTask, events: asyncio.Queue) -> None:
        try:
            value = await self._invoke(task, events)
        except Exception as e:
            envelope = ErrorEnvelope(task.key, e)
            self.logger.warning(
                f"Task '{task.key}' in pool '{self.label}' failed: {e}",
                extra={"pool": self.label, "task_id": task.key, "error_type": type(e).__name__}
            )
        else:
            envelope = FinalEnvelope(task.key, value)
        finally:
            self.capacity.release()
        events.put_nowait(envelope)

    async def _invoke(self, task: PoolTask, events: asyncio.Queue) -> Any:
        outcome = task.runner()
        if inspect.isawaitable(outcome):
            return await outcome
        if hasattr(outcome, "__anext__"):
            return await self._stream(task, outcome, events)
        return outcome

    async def _stream(self, task: PoolTask, stream: Any, events: asyncio.Queue) -> Any:
        # The last value a streaming task yields is its final value.
        last = _NOTHING
        async for value in stream:
            if last is not _NOTHING:
                events.put_nowait(IntermediateEnvelope(task.key, last))
            last = value
        return None if last is _NOTHING else last

    def _source_failure(self, error: Exception) -> TaskSourceError:
        self.summary.source_error = f"{type(error).__name__}: {error}"
        self.logger.error(
            f"Task source for pool '{self.label}' failed, draining {len(self._in_flight)} in-flight task(s): {error}",
            exc_info=True,
            extra={"pool": self.label}
        )
        failure = TaskSourceError(f"Task source for pool '{self.label}' failed: {error}")
        failure.__cause__ = error
        return failure

    def _record(self, envelope: ProgressEnvelope) -> None:
        if isinstance(envelope, FinalEnvelope):
            self.summary.succeeded += 1
        elif isinstance(envelope, ErrorEnvelope):
            self.summary.failed += 1
            self.summary.errors[envelope.task_id] = envelope.error_detail
        elif isinstance(envelope, IntermediateEnvelope):
            self.summary.intermediate += 1
