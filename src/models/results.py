"""
Aggregate result models for pool runs and orchestrated jobs.

These give callers partial-success semantics ("N of M succeeded") instead of
a single boolean.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


def _status(succeeded: int, failed: int) -> str:
    if succeeded == 0 and failed == 0:
        return "empty"
    if failed == 0:
        return "completed"
    if succeeded == 0:
        return "failed"
    return "partial"


class RunSummary(BaseModel):
    """Counters maintained by a TaskPoolRunner while it streams envelopes."""

    label: str
    submitted: int = 0
    succeeded: int = 0
    failed: int = 0
    intermediate: int = 0
    errors: Dict[str, str] = Field(default_factory=dict)
    source_error: Optional[str] = None

    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    execution_time_ms: float = 0.0

    @property
    def completed(self) -> int:
        return self.succeeded + self.failed

    @property
    def status(self) -> str:
        if self.source_error is not None:
            return "failed" if self.succeeded == 0 else "partial"
        return _status(self.succeeded, self.failed)


class JobResult(BaseModel):
    """Outcome of one orchestrated job."""

    label: str
    success: bool
    status: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0

    results: Dict[str, Any] = Field(default_factory=dict)
    errors: Dict[str, str] = Field(default_factory=dict)

    execution_time_ms: float = 0.0
    start_time: datetime
    end_time: datetime

    @classmethod
    def from_summary(
        cls,
        summary: RunSummary,
        results: Dict[str, Any],
        start_time: datetime,
        end_time: datetime
    ) -> "JobResult":
        errors = dict(summary.errors)
        if summary.source_error is not None:
            errors["<source>"] = summary.source_error
        return cls(
            label=summary.label,
            success=summary.failed == 0 and summary.source_error is None,
            status=summary.status,
            total=summary.completed,
            succeeded=summary.succeeded,
            failed=summary.failed,
            results=results,
            errors=errors,
            execution_time_ms=summary.execution_time_ms,
            start_time=start_time,
            end_time=end_time,
        )
