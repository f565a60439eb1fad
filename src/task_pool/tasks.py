"""The unit handed from a task source to the pool runner."""

from dataclasses import dataclass
from typing import Any, Callable


@dataclass
class PoolTask:
    """
    A keyed, zero-argument unit of work.

    ``runner`` may be a plain callable, a coroutine function, or an async
    generator function. For async generators every yielded value except the
    last is reported as intermediate progress and the last one is the final
    value.
    """
    key: str
    runner: Callable[[], Any]
    payload: Any = None
