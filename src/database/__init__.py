"""
Persistence layer for hierarchical tasks.

Provides the identity store interface used by the task registry, an
in-memory implementation, and an async PostgreSQL implementation with
connection pooling.
"""

from .connection import (
    DatabaseConfig,
    DatabasePool,
    DatabaseConnectionError,
    get_database_pool,
    close_database_pool,
    create_database_config_from_url
)

from .store import (
    IdentityStore,
    InMemoryIdentityStore,
    PostgresIdentityStore,
    encode_record,
    decode_record,
    create_identity_store
)

__all__ = [
    # Connection
    'DatabaseConfig',
    'DatabasePool',
    'DatabaseConnectionError',
    'get_database_pool',
    'close_database_pool',
    'create_database_config_from_url',

    # Identity stores
    'IdentityStore',
    'InMemoryIdentityStore',
    'PostgresIdentityStore',
    'encode_record',
    'decode_record',
    'create_identity_store',
]
