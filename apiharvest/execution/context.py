"""
Execution Context.

Run-scoped state passed to every step of one pipeline execution:
identifiers, runtime parameters, outputs of executed steps, timings and
the cancellation signal. Nothing here is shared between executions.

ForEach items run in a forked context: the fork shares the cancellation
signal, logger and metrics, and gets its own copy of the step outputs so
concurrent items cannot see each other's data.
"""

from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from apiharvest.errors import ExecutionCancelledError
from apiharvest.observability import ExecutionLogger, ExecutionMetrics, get_metrics


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


_NO_ITEM: Any = object()


@dataclass
class ExecutionContext:
    """
    Request-scoped context for one execution.

    Provides:
    - Unique execution id for tracing
    - Runtime parameters ($.input) and step outputs ($.steps)
    - Current ForEach item ($.item, $.index) inside forks
    - Cancellation signal checked before every step
    """

    # Execution identification
    execution_id: UUID = field(default_factory=uuid4)
    started_at: datetime = field(default_factory=_utc_now)
    tenant_id: str = ""
    collector_id: str = ""
    pipeline_id: str = ""
    dry_run: bool = False

    # Caller input
    runtime_parameters: dict[str, Any] = field(default_factory=dict)

    # Cancellation
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    # Data flow
    step_outputs: dict[str, Any] = field(default_factory=dict)
    item: Any = _NO_ITEM
    index: int | None = None

    # Audit trail
    step_timings: dict[str, float] = field(default_factory=dict)

    # Observability
    metrics: ExecutionMetrics = field(default_factory=get_metrics)
    log: ExecutionLogger | None = None

    def __post_init__(self) -> None:
        if self.log is None:
            self.log = ExecutionLogger(
                execution_id=str(self.execution_id), pipeline_id=self.pipeline_id
            )

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds since the execution started."""
        delta = datetime.now(timezone.utc) - self.started_at
        return delta.total_seconds() * 1000

    # Cancellation

    @property
    def is_cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        """Signal cancellation; no further steps are scheduled."""
        self.cancel_event.set()

    def check_cancelled(self, step_id: str | None = None) -> None:
        if self.cancel_event.is_set():
            raise ExecutionCancelledError(str(self.execution_id), step_id=step_id)

    # Data flow

    def record_output(self, step_id: str, output: Any) -> None:
        self.step_outputs[step_id] = output

    def record_timing(self, step_id: str, duration_ms: float) -> None:
        self.step_timings[step_id] = duration_ms

    def scope(self, current: Any) -> dict[str, Any]:
        """The data reference expressions are evaluated against."""
        scope: dict[str, Any] = {
            "prev": current,
            "input": self.runtime_parameters,
            "steps": self.step_outputs,
        }
        if self.item is not _NO_ITEM:
            scope["item"] = self.item
            scope["index"] = self.index
        return scope

    def fork(self, item: Any, index: int) -> ExecutionContext:
        """
        Create an isolated copy for one ForEach item.

        Shares the cancellation signal, logger and metrics; copies the
        mutable data-flow state.
        """
        return ExecutionContext(
            execution_id=self.execution_id,
            started_at=self.started_at,
            tenant_id=self.tenant_id,
            collector_id=self.collector_id,
            pipeline_id=self.pipeline_id,
            dry_run=self.dry_run,
            runtime_parameters=self.runtime_parameters,  # Read-only
            cancel_event=self.cancel_event,  # Shared signal
            step_outputs=copy.copy(self.step_outputs),
            item=item,
            index=index,
            step_timings={},
            metrics=self.metrics,
            log=self.log,
        )

    def to_audit_dict(self) -> dict[str, Any]:
        """Audit record for storage."""
        return {
            "execution_id": str(self.execution_id),
            "tenant_id": self.tenant_id,
            "collector_id": self.collector_id,
            "pipeline_id": self.pipeline_id,
            "started_at": self.started_at.isoformat(),
            "duration_ms": self.elapsed_ms,
            "dry_run": self.dry_run,
            "cancelled": self.is_cancelled,
            "step_timings": self.step_timings,
        }
