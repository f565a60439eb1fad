"""
Idempotent task registry.

Deterministic identities, identity-keyed runnable units that execute at most
once, and the registry that resolves identities to units through an identity
store so interrupted jobs can resume.
"""

from .identity import (
    RegistryError,
    IdentityError,
    slugify,
    canonical_json,
    content_hash,
    make_identity
)
from .unit import (
    RunnableUnit,
    InvalidTransitionError,
    UnitFailedError,
    call_thunk
)
from .registry import IdempotentTaskRegistry

__all__ = [
    # Identities
    'slugify',
    'canonical_json',
    'content_hash',
    'make_identity',

    # Units and registry
    'RunnableUnit',
    'IdempotentTaskRegistry',
    'call_thunk',

    # Errors
    'RegistryError',
    'IdentityError',
    'InvalidTransitionError',
    'UnitFailedError',
]
