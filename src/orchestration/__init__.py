"""
Orchestration package for running jobs of identity-keyed work.

This package provides:
- JobOrchestrator for running descriptor collections as task pool jobs
- Per-job local capacity chained to the process-wide ceiling
- Concurrent execution of several jobs under the shared ceiling
"""

from .job import JobOrchestrator, OrchestrationConfig

__all__ = [
    "JobOrchestrator",
    "OrchestrationConfig"
]
