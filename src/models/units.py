"""
Models describing units of work and their persisted state.

TaskDescriptor is what a caller builds when enumerating work. UnitRecord is
the serialisable snapshot of a RunnableUnit that identity stores persist.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field, field_validator


class UnitState(Enum):
    """Lifecycle state of a runnable unit."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (UnitState.COMPLETED, UnitState.FAILED)


@dataclass
class TaskDescriptor:
    """
    A caller-side description of one unit of work.

    ``identity`` must be derived from the semantic inputs of the work only
    (see ``registry.identity.make_identity``); ``thunk`` is the zero-argument
    callable that performs it.
    """
    identity: str
    thunk: Callable[[], Any]
    payload: Any = None


class UnitRecord(BaseModel):
    """Persisted snapshot of a runnable unit, keyed by identity."""
    identity: str
    state: UnitState = UnitState.PENDING
    result: Optional[Any] = None
    error: Optional[str] = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("identity")
    @classmethod
    def validate_identity(cls, v):
        if not v or not v.strip():
            raise ValueError("identity must be a non-empty string")
        return v
