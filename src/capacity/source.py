"""
Hierarchical capacity sources.

A CapacitySource is a concurrency budget of ``total_units`` slots. Sources can
be chained: a child created with ``parent=`` only grants a unit when the same
unit is also available at every ancestor, and releasing returns it at every
level. One mechanism therefore enforces a per-job ceiling and a process-wide
ceiling at the same time.

All bookkeeping runs synchronously on the event loop between suspension
points, so a grant across the whole chain is atomic. Sources must only be
used from a single event loop.
"""

import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Deque, Dict, Iterator, Optional

from .metrics import CapacityMetrics


logger = logging.getLogger(__name__)


class CapacityError(ValueError):
    """Raised on capacity misuse: invalid limits or an unbalanced release."""
    pass


@dataclass(eq=False)
class _Waiter:
    """A suspended acquire() call, queued at the root of its chain."""
    origin: "CapacitySource"
    future: asyncio.Future


class CapacitySource:
    """
    Concurrency budget with optional parent chaining.

    Invariant at every node: ``available_units + in_flight == total_units``,
    where ``in_flight`` counts units held by acquisitions made at this node
    or at any descendant.

    Waiters are queued at the root of the chain (the only node that sees
    every acquisition that can contend for its units) and served FIFO among
    those whose whole chain can currently be granted, so a waiter blocked by
    its own local limit never holds up a sibling behind it.
    """

    def __init__(
        self,
        total_units: int,
        parent: Optional["CapacitySource"] = None,
        name: Optional[str] = None,
        enable_metrics: bool = True
    ):
        if isinstance(total_units, bool) or not isinstance(total_units, int):
            raise CapacityError(f"total_units must be an integer, got {total_units!r}")
        if total_units < 1:
            raise CapacityError(f"total_units must be >= 1, got {total_units}")
        if parent is not None and not isinstance(parent, CapacitySource):
            raise CapacityError(f"parent must be a CapacitySource, got {type(parent).__name__}")

        self.total_units = total_units
        self.parent = parent
        self.name = name or self.__class__.__name__
        self.metrics = CapacityMetrics() if enable_metrics else None

        self._available = total_units
        self._in_flight = 0
        self._leased = 0
        self._waiters: Deque[_Waiter] = deque()

    def __repr__(self) -> str:
        parent = self.parent.name if self.parent else None
        return (
            f"{self.__class__.__name__}(name={self.name!r}, total={self.total_units}, "
            f"available={self._available}, parent={parent!r})"
        )

    # Introspection

    @property
    def available_units(self) -> int:
        return self._available

    @property
    def in_flight(self) -> int:
        """Units currently held through this node, including by descendants."""
        return self._in_flight

    @property
    def leased(self) -> int:
        """Units acquired directly at this node and not yet released."""
        return self._leased

    @property
    def root(self) -> "CapacitySource":
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    @property
    def waiting(self) -> int:
        """Number of acquire() calls at this node currently suspended."""
        return sum(
            1 for w in self.root._waiters
            if w.origin is self and not w.future.done()
        )

    def chain(self) -> Iterator["CapacitySource"]:
        """This node followed by each ancestor up to the root."""
        node: Optional[CapacitySource] = self
        while node is not None:
            yield node
            node = node.parent

    def snapshot(self) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "total_units": self.total_units,
            "available_units": self._available,
            "in_flight": self._in_flight,
            "waiting": self.waiting,
        }
        if self.metrics:
            data["metrics"] = self.metrics.snapshot(self._in_flight, self.total_units)
        return data

    # Core operations

    def peek(self) -> bool:
        """True iff a unit is available here and at every ancestor. Never mutates."""
        if self._available <= 0:
            return False
        return self.parent.peek() if self.parent is not None else True

    def try_acquire(self) -> bool:
        """Take a unit without waiting; False if any level is exhausted."""
        if self._can_grant():
            self._take()
            return True
        if self.metrics:
            self.metrics.acquire_rejected += 1
        return False

    async def acquire(self) -> None:
        """
        Take one unit at this node and at every ancestor.

        Suspends until all levels can grant at once. The grant is
        all-or-nothing: no level is debited while the caller waits.
        """
        if self._can_grant():
            self._take()
            return

        root = self.root
        waiter = _Waiter(self, asyncio.get_running_loop().create_future())
        root._waiters.append(waiter)
        if self.metrics:
            self.metrics.acquire_waited += 1
        logger.debug(f"Capacity '{self.name}' exhausted along chain, waiting (queue={len(root._waiters)})")

        try:
            await waiter.future
        except asyncio.CancelledError:
            if waiter.future.done() and not waiter.future.cancelled():
                # Granted just before the cancellation landed; hand it back.
                self.release()
            else:
                try:
                    root._waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    def release(self) -> None:
        """Return one unit at this node and every ancestor, then wake waiters."""
        if self._leased <= 0:
            raise CapacityError(
                f"release() on capacity '{self.name}' without a matching acquire()"
            )
        self._leased -= 1
        for node in self.chain():
            node._give()
        self.root._dispatch()

    @asynccontextmanager
    async def lease(self):
        """
        Hold one unit for the duration of the block.

        Usage:
            async with capacity.lease():
                await do_work()
        """
        await self.acquire()
        try:
            yield self
        finally:
            self.release()

    # Internals

    def _can_grant(self) -> bool:
        return all(node._available > 0 for node in self.chain())

    def _take(self) -> None:
        for node in self.chain():
            node._available -= 1
            node._in_flight += 1
            if node.metrics:
                node.metrics.record_grant(node._in_flight)
        self._leased += 1

    def _give(self) -> None:
        self._in_flight -= 1
        self._available += 1
        if self.metrics:
            self.metrics.releases += 1

    def _dispatch(self) -> None:
        """Grant every queued waiter whose chain now has room, oldest first."""
        remaining: Deque[_Waiter] = deque()
        granted = 0
        for waiter in self._waiters:
            if waiter.future.done():
                continue
            if waiter.origin._can_grant():
                waiter.origin._take()
                waiter.future.set_result(None)
                granted += 1
            else:
                remaining.append(waiter)
        self._waiters = remaining
        if granted:
            logger.debug(f"Capacity '{self.name}' granted {granted} waiter(s), {len(remaining)} still queued")
