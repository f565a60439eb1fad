"""
Runnable units: identity-keyed work with a persisted state machine.

A unit moves PENDING -> RUNNING -> COMPLETED | FAILED exactly once. Every
transition is written to the identity store the unit is bound to, so a unit
that reached a terminal state is never executed again, in this process or
(with a durable store) the next one.
"""

import asyncio
import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from database import IdentityStore
from models import UnitRecord, UnitState
from task_pool import PoolTask

from .identity import IdentityError, RegistryError


logger = logging.getLogger(__name__)

_NOTHING = object()

_TRANSITIONS = {
    UnitState.PENDING: {UnitState.RUNNING},
    UnitState.RUNNING: {UnitState.COMPLETED, UnitState.FAILED},
    UnitState.COMPLETED: set(),
    UnitState.FAILED: set(),
}


class InvalidTransitionError(RegistryError):
    """Raised when a unit is asked to make an illegal state transition."""

    def __init__(self, identity: str, current: UnitState, target: UnitState):
        super().__init__(f"Unit '{identity}' cannot move from {current.value} to {target.value}")
        self.identity = identity
        self.current = current
        self.target = target


class UnitFailedError(RegistryError):
    """Raised when running or awaiting a unit whose execution failed."""

    def __init__(self, identity: str, error: Optional[str]):
        super().__init__(f"Unit '{identity}' failed: {error}")
        self.identity = identity
        self.error = error


async def call_thunk(thunk: Callable[[], Any]) -> Any:
    """Invoke a zero-argument callable; coroutines are awaited and async generators drained to their last value."""
    outcome = thunk()
    if inspect.isawaitable(outcome):
        return await outcome
    if hasattr(outcome, "__anext__"):
        last = None
        async for value in outcome:
            last = value
        return last
    return outcome


class RunnableUnit:
    """
    A single identity-keyed piece of work.

    run() executes the thunk the first time it is called and returns the
    stored outcome on every later call. Calls made while the first execution
    is still running attach to it instead of starting another.
    """

    def __init__(self, identity: str, thunk: Optional[Callable[[], Any]] = None, payload: Any = None):
        if not isinstance(identity, str) or not identity.strip():
            raise IdentityError("Unit identity must be a non-empty string")

        self.identity = identity
        self.thunk = thunk
        self.payload = payload

        self.state = UnitState.PENDING
        self.result: Any = None
        self.error: Optional[str] = None
        self.updated_at = datetime.now(timezone.utc)

        self._store: Optional[IdentityStore] = None
        self._settled: Optional[asyncio.Future] = None

    def __repr__(self) -> str:
        return f"RunnableUnit(identity={self.identity!r}, state={self.state.value})"

    @classmethod
    def from_record(cls, record: UnitRecord, thunk: Optional[Callable[[], Any]] = None,
                    payload: Any = None) -> "RunnableUnit":
        """Rebuild a unit from its persisted record."""
        unit = cls(record.identity, thunk=thunk, payload=payload)
        unit.state = record.state
        unit.result = record.result
        unit.error = record.error
        unit.updated_at = record.updated_at
        return unit

    def to_record(self) -> UnitRecord:
        return UnitRecord(
            identity=self.identity,
            state=self.state,
            result=self.result,
            error=self.error,
            updated_at=self.updated_at
        )

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def _bind(self, store: IdentityStore) -> None:
        self._store = store

    def _move_to(self, target: UnitState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.identity, self.state, target)
        self.state = target
        self.updated_at = datetime.now(timezone.utc)

    async def _persist(self) -> None:
        if self._store is not None:
            await self._store.put(self.identity, self.to_record())

    def _completion(self) -> asyncio.Future:
        if self._settled is None:
            self._settled = asyncio.get_running_loop().create_future()
        return self._settled

    def _settle(self) -> None:
        if self._settled is not None and not self._settled.done():
            self._settled.set_result(None)

    def _outcome(self) -> Any:
        if self.state is UnitState.COMPLETED:
            return self.result
        raise UnitFailedError(self.identity, self.error)

    async def run(self) -> Any:
        """
        Execute the unit, or return the outcome of the execution it already had.

        Returns:
            The thunk's result

        Raises:
            UnitFailedError: if the unit is already FAILED
            Exception: the thunk's own exception on the execution that fails
        """
        if self.state.is_terminal:
            return self._outcome()
        if self.state is UnitState.RUNNING:
            return await self.wait()
        if self.thunk is None:
            raise RegistryError(f"Unit '{self.identity}' has no thunk to run")

        # The state flips before the first await so concurrent callers attach.
        self._move_to(UnitState.RUNNING)
        self._completion()
        logger.debug(f"Unit '{self.identity}' running")

        try:
            await self._persist()
            value = await call_thunk(self.thunk)
        except asyncio.CancelledError:
            # Not persisted: a durable store keeps RUNNING and the next process re-runs it.
            self.error = "CancelledError: execution was cancelled"
            self._move_to(UnitState.FAILED)
            self._settle()
            raise
        except Exception as e:
            self.error = f"{type(e).__name__}: {e}"
            self._move_to(UnitState.FAILED)
            self._settle()
            logger.warning(f"Unit '{self.identity}' failed: {e}", extra={"identity": self.identity})
            await self._persist()
            raise

        self.result = value
        self._move_to(UnitState.COMPLETED)
        self._settle()
        logger.debug(f"Unit '{self.identity}' completed")
        await self._persist()
        return value

    async def wait(self) -> Any:
        """Wait for the unit to reach a terminal state and return its outcome."""
        if not self.state.is_terminal:
            await asyncio.shield(self._completion())
        return self._outcome()

    def as_task(self) -> PoolTask:
        """Wrap the unit for a task pool; the pool reports it under its identity."""
        return PoolTask(key=self.identity, runner=self.run, payload=self.payload)
