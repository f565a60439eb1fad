"""
Idempotent task registry.

Maps identities to runnable units so that the same work, requested any number
of times and from any number of concurrent jobs, is built and executed once.
Terminal records found in the identity store are restored without calling
the builder, which is what makes a restarted job skip work it already did.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from database import IdentityStore, InMemoryIdentityStore
from models import TaskDescriptor, UnitState

from .identity import IdentityError, RegistryError
from .unit import RunnableUnit


logger = logging.getLogger(__name__)

UnitBuilder = Callable[[], Union[RunnableUnit, Awaitable[RunnableUnit]]]


class IdempotentTaskRegistry:
    """
    Identity-keyed registry of runnable units.

    Usage:
        registry = IdempotentTaskRegistry()
        unit = await registry.resolve_or_create(identity, lambda: RunnableUnit(identity, thunk))
        result = await unit.run()

    resolve_or_create() returns the same unit object for the same identity
    for the registry's lifetime, and calls ``build`` at most once per
    identity even when callers race.
    """

    def __init__(self, store: Optional[IdentityStore] = None, logger_instance: Optional[logging.Logger] = None):
        self.store = store if store is not None else InMemoryIdentityStore()
        self.logger = logger_instance or logger

        self._units: Dict[str, RunnableUnit] = {}
        self._resolving: Dict[str, asyncio.Future] = {}
        self.restored = 0
        self.built = 0

    def __len__(self) -> int:
        return len(self._units)

    def __contains__(self, identity: str) -> bool:
        return identity in self._units

    def get(self, identity: str) -> Optional[RunnableUnit]:
        """Get a unit already resolved in this registry."""
        return self._units.get(identity)

    def identities(self) -> List[str]:
        return list(self._units.keys())

    def get_stats(self) -> Dict[str, Any]:
        by_state = {state.value: 0 for state in UnitState}
        for unit in self._units.values():
            by_state[unit.state.value] += 1
        return {
            "total_units": len(self._units),
            "built": self.built,
            "restored": self.restored,
            "by_state": by_state
        }

    async def resolve_or_create(self, identity: str, build: UnitBuilder) -> RunnableUnit:
        """
        Return the unit for ``identity``, building it only if nothing is known about it.

        Lookup order is this registry, then the identity store, then
        ``build``. A store record in a terminal state is restored as-is; a
        record left RUNNING or PENDING by an interrupted process is rebuilt
        and starts over from PENDING.

        Raises:
            IdentityError: if the identity is empty or ``build`` returns a unit for another identity
        """
        if not isinstance(identity, str) or not identity.strip():
            raise IdentityError("Identity must be a non-empty string")

        unit = self._units.get(identity)
        if unit is not None:
            return unit

        pending = self._resolving.get(identity)
        while pending is not None:
            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                if not pending.cancelled():
                    raise
            # The resolving caller was cancelled; take over the resolution.
            unit = self._units.get(identity)
            if unit is not None:
                return unit
            pending = self._resolving.get(identity)

        resolution = asyncio.get_running_loop().create_future()
        self._resolving[identity] = resolution
        try:
            unit = await self._load_or_build(identity, build)
        except asyncio.CancelledError:
            # Waiters see a cancelled resolution and retry on their own.
            resolution.cancel()
            raise
        except Exception as e:
            resolution.set_exception(e)
            # Retrieved here so unattended failures are not reported as never retrieved.
            resolution.exception()
            raise
        else:
            resolution.set_result(unit)
            return unit
        finally:
            self._resolving.pop(identity, None)

    async def resolve(self, descriptor: TaskDescriptor) -> RunnableUnit:
        """Resolve a task descriptor, building a unit from its thunk when needed."""
        return await self.resolve_or_create(
            descriptor.identity,
            lambda: RunnableUnit(descriptor.identity, descriptor.thunk, descriptor.payload)
        )

    async def _load_or_build(self, identity: str, build: UnitBuilder) -> RunnableUnit:
        record = await self.store.get(identity)

        if record is not None and record.state.is_terminal:
            unit = RunnableUnit.from_record(record)
            self.restored += 1
            self.logger.info(
                f"Unit '{identity}' restored from store as {record.state.value}",
                extra={"identity": identity, "state": record.state.value}
            )
        else:
            if record is not None:
                self.logger.warning(
                    f"Unit '{identity}' was left {record.state.value} by an interrupted run, rebuilding",
                    extra={"identity": identity, "state": record.state.value}
                )
            unit = await self._build(identity, build)
            self.built += 1

        unit._bind(self.store)
        if unit.state is UnitState.PENDING:
            await self.store.put(identity, unit.to_record())
        self._units[identity] = unit
        return unit

    async def _build(self, identity: str, build: UnitBuilder) -> RunnableUnit:
        unit = build()
        if inspect.isawaitable(unit):
            unit = await unit

        if not isinstance(unit, RunnableUnit):
            raise TypeError(f"Unit builder for '{identity}' returned {type(unit).__name__}, expected RunnableUnit")
        if unit.identity != identity:
            raise IdentityError(f"Unit builder for '{identity}' returned a unit for '{unit.identity}'")
        if unit.state is not UnitState.PENDING:
            raise RegistryError(f"Unit builder for '{identity}' returned a unit in state {unit.state.value}")
        return unit
