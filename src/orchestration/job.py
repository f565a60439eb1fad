"""
Job orchestrator for running identity-keyed work under hierarchical capacity.

A job is a labelled collection of task descriptors. Each job gets its own
local capacity source chained to the process-wide one, so concurrent jobs
share the global ceiling while each stays within its own limit. Descriptors
are resolved through the idempotent registry only when the runner has
capacity for them, which keeps work lazy and lets restarted jobs skip units
that already completed.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, AsyncIterable, AsyncIterator, Dict, Iterable, Mapping, Optional, Union

from pydantic import BaseModel, Field, field_validator

from capacity import CapacitySource, get_global_capacity
from hierarchical_tasks.config import CapacityConfig
from models import FinalEnvelope, JobResult, ProgressEnvelope, TaskDescriptor
from registry import IdempotentTaskRegistry
from task_pool import IteratorTaskSource, PoolTask, RunnerError, TaskPoolRunner


logger = logging.getLogger(__name__)

Descriptors = Union[Iterable[TaskDescriptor], AsyncIterable[TaskDescriptor]]


class OrchestrationConfig(BaseModel):
    """Configuration for job orchestration."""

    # Per-job ceiling, seeded from TASKS_DEFAULT_LOCAL_UNITS
    default_max_concurrency: int = Field(
        default_factory=lambda: CapacityConfig().default_local_units,
        validate_default=True
    )

    # Failure handling
    raise_on_error: bool = False

    @field_validator('default_max_concurrency')
    @classmethod
    def validate_concurrency_limits(cls, v):
        if v < 1 or v > 50:
            raise ValueError("Concurrency limits must be between 1 and 50")
        return v


class JobOrchestrator:
    """
    Runs jobs of task descriptors through the registry and a task pool.

    Usage:
        orchestrator = JobOrchestrator()
        result = await orchestrator.execute_job("reports", descriptors, max_concurrency=2)
        print(result.status, result.results)
    """

    def __init__(
        self,
        registry: Optional[IdempotentTaskRegistry] = None,
        global_capacity: Optional[CapacitySource] = None,
        config: Optional[OrchestrationConfig] = None,
        logger_instance: Optional[logging.Logger] = None
    ):
        self.registry = registry if registry is not None else IdempotentTaskRegistry()
        self.global_capacity = global_capacity if global_capacity is not None else get_global_capacity()
        self.config = config or OrchestrationConfig()
        self.logger = logger_instance or logger

    def create_runner(
        self,
        label: str,
        descriptors: Descriptors,
        max_concurrency: Optional[int] = None
    ) -> TaskPoolRunner:
        """Build the runner for one job: a fresh local capacity under the global one and a lazy source."""
        local_capacity = CapacitySource(
            max_concurrency if max_concurrency is not None else self.config.default_max_concurrency,
            parent=self.global_capacity,
            name=f"{label}-local"
        )
        return TaskPoolRunner(
            label,
            IteratorTaskSource(self._resolve_lazily(descriptors)),
            local_capacity,
            raise_on_error=self.config.raise_on_error,
            logger_instance=self.logger
        )

    def run_job(
        self,
        label: str,
        descriptors: Descriptors,
        max_concurrency: Optional[int] = None
    ) -> AsyncIterator[ProgressEnvelope]:
        """Stream the progress envelopes of one job in completion order."""
        return self.create_runner(label, descriptors, max_concurrency).run_tasks()

    async def execute_job(
        self,
        label: str,
        descriptors: Descriptors,
        max_concurrency: Optional[int] = None
    ) -> JobResult:
        """
        Run one job to completion.

        Task failures are reported in the result rather than raised, as are
        failures of the descriptor source, whose in-flight work is drained
        first.

        Returns:
            JobResult with per-identity results and errors
        """
        start_time = datetime.now()
        execution_start = time.time()
        runner = self.create_runner(label, descriptors, max_concurrency)
        results: Dict[str, Any] = {}

        try:
            async for envelope in runner.run_tasks():
                if isinstance(envelope, FinalEnvelope):
                    results[envelope.task_id] = envelope.value
        except RunnerError as e:
            self.logger.error(f"Job '{label}' stopped early: {e}", extra={"job": label})
        except Exception as e:
            self.logger.error(f"Job '{label}' failed: {e}", exc_info=True, extra={"job": label})
            return JobResult(
                label=label,
                success=False,
                status="failed",
                total=runner.summary.completed,
                succeeded=runner.summary.succeeded,
                failed=runner.summary.failed,
                results=results,
                errors={"<job>": f"{type(e).__name__}: {e}"},
                execution_time_ms=(time.time() - execution_start) * 1000,
                start_time=start_time,
                end_time=datetime.now()
            )

        result = JobResult.from_summary(runner.summary, results, start_time, datetime.now())
        self.logger.info(
            f"Job '{label}' completed: {result.succeeded}/{result.total} succeeded",
            extra={
                "job": label,
                "status": result.status,
                "execution_time_ms": result.execution_time_ms
            }
        )
        return result

    async def execute_jobs(
        self,
        jobs: Mapping[str, Descriptors],
        max_concurrency: Optional[int] = None
    ) -> Dict[str, JobResult]:
        """Run several jobs concurrently under the shared global ceiling."""
        labels = list(jobs.keys())
        results = await asyncio.gather(
            *(self.execute_job(label, jobs[label], max_concurrency) for label in labels)
        )
        return dict(zip(labels, results))

    async def _resolve_lazily(self, descriptors: Descriptors) -> AsyncIterator[PoolTask]:
        if hasattr(descriptors, "__aiter__"):
            async for descriptor in descriptors:
                unit = await self.registry.resolve(descriptor)
                yield unit.as_task()
        else:
            for descriptor in descriptors:
                unit = await self.registry.resolve(descriptor)
                yield unit.as_task()
