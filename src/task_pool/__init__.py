"""
Bounded-concurrency task pool.

Provides pull-based task sources (fixed lists, lazy generators, push queues,
aging priority queues) and the runner that executes them under a capacity
source while streaming progress envelopes in completion order.
"""

from .tasks import PoolTask
from .sources import (
    TaskSource,
    ListTaskSource,
    IteratorTaskSource,
    QueueTaskSource,
    PriorityTaskSource
)
from .runner import (
    TaskPoolRunner,
    RunnerError,
    TaskSourceError,
    TaskFailedError,
    RunnerStateError
)

__all__ = [
    # Tasks and sources
    'PoolTask',
    'TaskSource',
    'ListTaskSource',
    'IteratorTaskSource',
    'QueueTaskSource',
    'PriorityTaskSource',

    # Runner
    'TaskPoolRunner',
    'RunnerError',
    'TaskSourceError',
    'TaskFailedError',
    'RunnerStateError',
]
