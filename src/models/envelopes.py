"""
Progress envelopes emitted by the task pool runner.

An envelope is a closed tagged variant: exactly one of FinalEnvelope,
ErrorEnvelope or IntermediateEnvelope. Callers should match on the concrete
class (or on ``kind``) and handle every case.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class EnvelopeKind(Enum):
    """Discriminator shared by all envelope variants."""
    FINAL = "final"
    ERROR = "error"
    INTERMEDIATE = "intermediate"


@dataclass(frozen=True)
class FinalEnvelope:
    """A task finished successfully with ``value``."""
    task_id: str
    value: Any
    kind: EnvelopeKind = field(default=EnvelopeKind.FINAL, init=False)


@dataclass(frozen=True)
class ErrorEnvelope:
    """A task failed; ``error`` is the exception its thunk raised."""
    task_id: str
    error: BaseException
    kind: EnvelopeKind = field(default=EnvelopeKind.ERROR, init=False)

    @property
    def error_detail(self) -> str:
        return f"{type(self.error).__name__}: {self.error}"


@dataclass(frozen=True)
class IntermediateEnvelope:
    """A streaming task reported progress before finishing."""
    task_id: str
    value: Any
    kind: EnvelopeKind = field(default=EnvelopeKind.INTERMEDIATE, init=False)


ProgressEnvelope = Union[FinalEnvelope, ErrorEnvelope, IntermediateEnvelope]


def is_terminal(envelope: ProgressEnvelope) -> bool:
    """True for the envelope that closes out a task (Final or Error)."""
    return envelope.kind is not EnvelopeKind.INTERMEDIATE
