"""
Capacity control for hierarchical task execution.

Provides chained concurrency budgets (local ceilings under a process-wide
ceiling), quota-style consumable budgets, and acquire/release metrics.
"""

from .metrics import CapacityMetrics
from .source import CapacityError, CapacitySource
from .quota import QuotaCapacitySource
from .provider import (
    get_global_capacity,
    set_global_capacity,
    reset_global_capacity
)

__all__ = [
    'CapacityError',
    'CapacityMetrics',
    'CapacitySource',
    'QuotaCapacitySource',
    'get_global_capacity',
    'set_global_capacity',
    'reset_global_capacity',
]
