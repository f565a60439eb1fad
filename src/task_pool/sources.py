"""
Pull-based task sources consumed by TaskPoolRunner.

A source hands out one task per pull() and returns None once exhausted. The
runner only pulls after it holds a capacity unit for the task, so lazily
produced tasks (and any side effects of producing them) are materialised no
earlier than the runner can start them.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterable, Callable, Iterable, List, Optional, Union

from .tasks import PoolTask


TaskItem = Union[PoolTask, Callable[[], Any]]


class TaskSource(ABC):
    """Abstract interface for task sources."""

    @abstractmethod
    async def pull(self) -> Optional[TaskItem]:
        """Consume and return the next task, or None when exhausted."""
        pass

    @abstractmethod
    def peek(self) -> bool:
        """Whether another task may be pulled, without consuming it."""
        pass

    @property
    @abstractmethod
    def is_exhausted(self) -> bool:
        """True once it is known that pull() will return None."""
        pass

    async def wait_ready(self) -> None:
        """Suspend until a pull would not block, or the source is exhausted."""
        return None


class ListTaskSource(TaskSource):
    """A fixed, pre-built list of tasks."""

    def __init__(self, tasks: Iterable[TaskItem]):
        self._tasks: List[TaskItem] = list(tasks)
        self._index = 0

    def __len__(self) -> int:
        return len(self._tasks)

    @property
    def pending(self) -> int:
        """Number of tasks not yet pulled."""
        return len(self._tasks) - self._index

    def peek(self) -> bool:
        return self._index < len(self._tasks)

    @property
    def is_exhausted(self) -> bool:
        return self._index >= len(self._tasks)

    async def pull(self) -> Optional[TaskItem]:
        if self.is_exhausted:
            return None
        task = self._tasks[self._index]
        self._index += 1
        return task


class IteratorTaskSource(TaskSource):
    """
    Lazily pulls tasks from a sync or async iterable (typically a generator).

    The iterator is only advanced by pull(). peek() cannot look ahead without
    producing the next task, so it reports True until exhaustion has been
    observed. An exception raised by the iterator propagates out of pull()
    and marks the source exhausted.
    """

    def __init__(self, iterable: Union[Iterable[TaskItem], AsyncIterable[TaskItem]]):
        self._iter = None
        self._aiter = None
        if hasattr(iterable, "__aiter__"):
            self._aiter = iterable.__aiter__()
        elif hasattr(iterable, "__iter__"):
            self._iter = iter(iterable)
        else:
            raise TypeError(f"Expected an iterable or async iterable, got {type(iterable).__name__}")
        self._exhausted = False
        self.pulled = 0

    def peek(self) -> bool:
        return not self._exhausted

    @property
    def is_exhausted(self) -> bool:
        return self._exhausted

    async def pull(self) -> Optional[TaskItem]:
        if self._exhausted:
            return None

        try:
            if self._aiter is not None:
                task = await self._aiter.__anext__()
            else:
                task = next(self._iter)
        except (StopIteration, StopAsyncIteration):
            self._exhausted = True
            return None
        except BaseException:
            self._exhausted = True
            raise

        if task is None:
            self._exhausted = True
            raise TypeError("Task sources must not yield None")

        self.pulled += 1
        return task


class QueueTaskSource(TaskSource):
    """
    Push/pull bridge: producers put() tasks, the runner pulls them.

    The source stays open until close() is called; while it is open and
    empty, wait_ready() and pull() suspend instead of reporting exhaustion.
    """

    def __init__(self):
        self._items: List[Any] = []
        self._closed = False
        self._ready = asyncio.Event()

    @property
    def pending(self) -> int:
        return len(self._items)

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, task: TaskItem) -> None:
        if self._closed:
            raise RuntimeError("Cannot put tasks into a closed source")
        self._items.append(task)
        self._ready.set()

    def close(self) -> None:
        """Signal that no more tasks will arrive; pending tasks still drain."""
        self._closed = True
        self._ready.set()

    def peek(self) -> bool:
        return bool(self._items)

    @property
    def is_exhausted(self) -> bool:
        return self._closed and not self._items

    async def wait_ready(self) -> None:
        await self._ready.wait()

    async def pull(self) -> Optional[TaskItem]:
        while not self._items:
            if self._closed:
                return None
            self._ready.clear()
            await self._ready.wait()

        task = self._pop()
        if not self._items and not self._closed:
            self._ready.clear()
        return task

    def _pop(self) -> TaskItem:
        return self._items.pop(0)


@dataclass
class _PriorityEntry:
    task: TaskItem
    priority: float
    enqueued_at: float
    seq: int


class PriorityTaskSource(QueueTaskSource):
    """
    Queue source that pulls the highest effective priority first.

    Effective priority is the base priority plus an aging boost of
    ``aging_rate`` per millisecond waited, capped at ``max_age_boost``, so
    low-priority tasks cannot starve indefinitely. Ties are served FIFO.
    """

    def __init__(
        self,
        aging_rate: float = 0.0,
        max_age_boost: float = 0.0,
        clock: Callable[[], float] = time.monotonic
    ):
        super().__init__()
        if aging_rate < 0 or max_age_boost < 0:
            raise ValueError("aging_rate and max_age_boost must be non-negative")
        self.aging_rate = aging_rate
        self.max_age_boost = max_age_boost
        self._clock = clock
        self._seq = 0

    def put(self, task: TaskItem, priority: float = 0.0) -> None:
        if self._closed:
            raise RuntimeError("Cannot put tasks into a closed source")
        self._seq += 1
        self._items.append(_PriorityEntry(task, priority, self._clock(), self._seq))
        self._ready.set()

    def effective_priority(self, entry: _PriorityEntry, now: Optional[float] = None) -> float:
        now = self._clock() if now is None else now
        waited_ms = max(0.0, (now - entry.enqueued_at) * 1000)
        return entry.priority + min(self.max_age_boost, self.aging_rate * waited_ms)

    def _pop(self) -> TaskItem:
        now = self._clock()
        best = max(
            range(len(self._items)),
            key=lambda i: (self.effective_priority(self._items[i], now), -self._items[i].seq)
        )
        return self._items.pop(best).task
