"""
Core data models for the hierarchical task executor.

This package contains:
- Progress envelope variants streamed by the task pool runner
- Unit descriptors, states and persisted records
- Aggregate run and job result schemas
"""

from .envelopes import (
    EnvelopeKind,
    FinalEnvelope,
    ErrorEnvelope,
    IntermediateEnvelope,
    ProgressEnvelope,
    is_terminal
)
from .units import TaskDescriptor, UnitRecord, UnitState
from .results import JobResult, RunSummary

__all__ = [
    # Envelopes
    "EnvelopeKind",
    "FinalEnvelope",
    "ErrorEnvelope",
    "IntermediateEnvelope",
    "ProgressEnvelope",
    "is_terminal",

    # Units
    "TaskDescriptor",
    "UnitRecord",
    "UnitState",

    # Results
    "JobResult",
    "RunSummary",
]
