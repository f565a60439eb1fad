"""
Identity stores for runnable unit records.

The task registry delegates to an IdentityStore so that units which already
completed (possibly in an earlier process) are found again by identity instead
of being re-run. InMemoryIdentityStore covers single-process use;
PostgresIdentityStore makes records durable across restarts.
"""

import asyncio
import fnmatch
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from models import UnitRecord, UnitState

from .connection import DatabasePool, get_database_pool


logger = logging.getLogger(__name__)


class IdentityStore(ABC):
    """Abstract key-value interface from identity to unit record."""

    @abstractmethod
    async def get(self, identity: str) -> Optional[UnitRecord]:
        """Get the record for an identity, or None if absent."""
        pass

    @abstractmethod
    async def put(self, identity: str, record: UnitRecord) -> None:
        """Insert or replace the record for an identity."""
        pass

    @abstractmethod
    async def delete(self, identity: str) -> bool:
        """Delete a record. Returns True if it existed."""
        pass

    @abstractmethod
    async def keys(self, pattern: Optional[str] = None) -> List[str]:
        """Get all identities, optionally matching a * wildcard pattern."""
        pass


class InMemoryIdentityStore(IdentityStore):
    """
    In-memory identity store.

    Records live as long as the store object; nothing expires, since a
    registry must keep terminal states for its whole lifetime.
    """

    def __init__(self):
        self._records: Dict[str, UnitRecord] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    async def get(self, identity: str) -> Optional[UnitRecord]:
        async with self._lock:
            record = self._records.get(identity)
            return record.model_copy() if record is not None else None

    async def put(self, identity: str, record: UnitRecord) -> None:
        async with self._lock:
            self._records[identity] = record.model_copy()

    async def delete(self, identity: str) -> bool:
        async with self._lock:
            return self._records.pop(identity, None) is not None

    async def keys(self, pattern: Optional[str] = None) -> List[str]:
        async with self._lock:
            all_keys = list(self._records.keys())
        if pattern is None:
            return all_keys
        return [key for key in all_keys if fnmatch.fnmatch(key, pattern)]

    async def clear(self) -> None:
        async with self._lock:
            self._records.clear()

    async def get_stats(self) -> Dict[str, Any]:
        """Record counts by unit state."""
        async with self._lock:
            by_state = {state.value: 0 for state in UnitState}
            for record in self._records.values():
                by_state[record.state.value] += 1
            return {"total_records": len(self._records), "by_state": by_state}


def encode_record(record: UnitRecord) -> str:
    """Serialise a record to JSON; results that JSON cannot represent are stringified."""
    return json.dumps(
        {
            "identity": record.identity,
            "state": record.state.value,
            "result": record.result,
            "error": record.error,
            "updated_at": record.updated_at.isoformat(),
        },
        default=str,
    )


def decode_record(data: Any) -> UnitRecord:
    if isinstance(data, (str, bytes)):
        data = json.loads(data)
    return UnitRecord.model_validate(data)


class PostgresIdentityStore(IdentityStore):
    """
    PostgreSQL-backed identity store.

    One row per identity in ``table`` with the record as JSONB. Call
    initialize() once to create the table if it does not exist.
    """

    def __init__(self, pool: DatabasePool, table: str = "task_units"):
        if not table.replace("_", "").isalnum():
            raise ValueError(f"Invalid table name: {table!r}")
        self.pool = pool
        self.table = table

    async def initialize(self) -> None:
        await self.pool.execute_command(
            f"""
            CREATE TABLE IF NOT EXISTS {self.table} (
                identity TEXT PRIMARY KEY,
                state TEXT NOT NULL,
                record JSONB NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            """
        )
        logger.info(f"Identity store table '{self.table}' ready")

    async def get(self, identity: str) -> Optional[UnitRecord]:
        row = await self.pool.execute_query_one(
            f"SELECT record FROM {self.table} WHERE identity = $1",
            identity
        )
        if row is None:
            return None
        return decode_record(row["record"])

    async def put(self, identity: str, record: UnitRecord) -> None:
        await self.pool.execute_command(
            f"""
            INSERT INTO {self.table} (identity, state, record, updated_at)
            VALUES ($1, $2, $3::jsonb, $4)
            ON CONFLICT (identity) DO UPDATE
            SET state = EXCLUDED.state, record = EXCLUDED.record, updated_at = EXCLUDED.updated_at
            """,
            identity,
            record.state.value,
            encode_record(record),
            record.updated_at
        )

    async def delete(self, identity: str) -> bool:
        status = await self.pool.execute_command(
            f"DELETE FROM {self.table} WHERE identity = $1",
            identity
        )
        return status.endswith(" 1")

    async def keys(self, pattern: Optional[str] = None) -> List[str]:
        if pattern is None:
            rows = await self.pool.execute_query(f"SELECT identity FROM {self.table}")
        else:
            like = pattern.replace("%", r"\%").replace("_", r"\_").replace("*", "%")
            rows = await self.pool.execute_query(
                f"SELECT identity FROM {self.table} WHERE identity LIKE $1",
                like
            )
        return [row["identity"] for row in rows]


async def create_identity_store(config=None) -> IdentityStore:
    """
    Create the identity store selected by StoreConfig.

    The postgres backend uses the global database pool and makes sure the
    store table exists.
    """
    from hierarchical_tasks.config import StoreConfig

    config = config or StoreConfig()
    if config.backend == "memory":
        return InMemoryIdentityStore()

    store = PostgresIdentityStore(await get_database_pool(config), table=config.table)
    await store.initialize()
    return store
