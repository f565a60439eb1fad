"""
Quota capacity: units that are consumed rather than borrowed.

Useful for rate limits and usage budgets ("10 requests per window"). A task
still acquires and releases as usual, but the release does not give the unit
back at the quota node; capacity only returns through reset() or refill(),
either called directly or driven by a periodic timer. Ancestors of a quota
node are ordinary sources and get their units back on release.

Note that a quota bounds how many acquisitions may start per window, not how
many run at once: after a reset, tasks from the previous window may still be
in flight.
"""

import asyncio
import logging
from typing import Callable, Optional

from .source import CapacityError, CapacitySource


logger = logging.getLogger(__name__)


class QuotaCapacitySource(CapacitySource):
    """CapacitySource whose units are replenished by reset/refill, not release."""

    def __init__(
        self,
        total_units: int,
        parent: Optional[CapacitySource] = None,
        name: Optional[str] = None,
        enable_metrics: bool = True
    ):
        super().__init__(total_units, parent=parent, name=name, enable_metrics=enable_metrics)
        self._timer: Optional[asyncio.Task] = None

    def _give(self) -> None:
        self._in_flight -= 1
        if self.metrics:
            self.metrics.releases += 1

    def reset(self) -> None:
        """Restore the full quota and wake any waiters that now fit."""
        self._available = self.total_units
        logger.debug(f"Quota '{self.name}' reset to {self.total_units}")
        self.root._dispatch()

    def refill(self, units: int) -> None:
        """Add ``units`` back, capped at ``total_units``."""
        if units < 1:
            raise CapacityError(f"refill units must be >= 1, got {units}")
        self._available = min(self.total_units, self._available + units)
        logger.debug(f"Quota '{self.name}' refilled to {self._available}/{self.total_units}")
        self.root._dispatch()

    def start_periodic_reset(self, interval: float) -> None:
        """Call reset() every ``interval`` seconds until stop_timer()."""
        self._start_timer(interval, self.reset)

    def start_periodic_refill(self, interval: float, units: int) -> None:
        """Call refill(units) every ``interval`` seconds until stop_timer()."""
        if units < 1:
            raise CapacityError(f"refill units must be >= 1, got {units}")
        self._start_timer(interval, lambda: self.refill(units))

    def stop_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    @property
    def timer_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def _start_timer(self, interval: float, action: Callable[[], None]) -> None:
        if interval <= 0:
            raise CapacityError(f"timer interval must be positive, got {interval}")
        self.stop_timer()
        self._timer = asyncio.get_running_loop().create_task(self._tick(interval, action))

    async def _tick(self, interval: float, action: Callable[[], None]) -> None:
        while True:
            await asyncio.sleep(interval)
            action()
