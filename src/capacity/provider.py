"""
Process-wide capacity ceiling.

The global source is a service injected at process start: hosts call
set_global_capacity() during startup (or let get_global_capacity() build one
from CapacityConfig), and tests swap in an isolated instance per test with
set_global_capacity()/reset_global_capacity().
"""

import logging
from typing import Optional

from .source import CapacitySource


logger = logging.getLogger(__name__)

# Global capacity instance - initialized once per application
_global_capacity: Optional[CapacitySource] = None


def get_global_capacity() -> CapacitySource:
    """Get the global capacity source, creating it from configuration if needed."""
    global _global_capacity

    if _global_capacity is None:
        from hierarchical_tasks.config import CapacityConfig

        config = CapacityConfig()
        _global_capacity = CapacitySource(config.global_units, name="global")
        logger.info(f"Global capacity initialized with {config.global_units} units")

    return _global_capacity


def set_global_capacity(source: CapacitySource) -> CapacitySource:
    """Install ``source`` as the process-wide ceiling and return the previous one."""
    global _global_capacity

    if source.parent is not None:
        raise ValueError("The global capacity source must be a root (no parent)")
    previous = _global_capacity
    _global_capacity = source
    return previous


def reset_global_capacity() -> None:
    """Forget the global capacity source; the next get builds a fresh one."""
    global _global_capacity
    _global_capacity = None
