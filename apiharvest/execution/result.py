"""
Execution results.

ExecutionResult is what the coordinator returns for every call, success
or not. Its step_results mirror the step forest: each StepResult holds
its children's results, and Retry/ForEach steps additionally hold one
list of child results per attempt or per item in `iterations`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class StepStatus(str, Enum):
    """Outcome of one step."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass
class StepResult:
    """Diagnostics of one executed (or skipped) step."""

    step_id: str
    name: str
    step_type: str
    status: StepStatus = StepStatus.PENDING
    duration_ms: float = 0.0
    attempts: int = 0
    item_count: int | None = None
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    children: list[StepResult] = field(default_factory=list)
    iterations: list[list[StepResult]] = field(default_factory=list)

    @property
    def executed(self) -> bool:
        return self.status in (StepStatus.SUCCEEDED, StepStatus.FAILED)

    def walk(self):
        """This result and every nested result, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()
        for iteration in self.iterations:
            for child in iteration:
                yield from child.walk()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "step_id": self.step_id,
            "name": self.name,
            "step_type": self.step_type,
            "status": self.status.value,
            "duration_ms": round(self.duration_ms, 2),
            "attempts": self.attempts,
            "item_count": self.item_count,
            "error": self.error,
            "children": [c.to_dict() for c in self.children],
        }
        if self.details:
            data["details"] = self.details
        if self.iterations:
            data["iterations"] = [[c.to_dict() for c in it] for it in self.iterations]
        return data


@dataclass
class ExecutionResult:
    """
    Result of one coordinator execution.

    Failures are reported here (success=False, error_type set) rather
    than raised.
    """

    execution_id: str
    collector_id: str
    pipeline_id: str
    started_at: datetime
    success: bool = False
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    error_type: str | None = None
    completed_at: datetime | None = None
    records_processed: int = 0
    step_results: list[StepResult] = field(default_factory=list)

    @property
    def duration_ms(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds() * 1000

    @property
    def output(self) -> Any:
        return self.details.get("output")

    def find_step(self, step_id: str) -> StepResult | None:
        for root in self.step_results:
            for result in root.walk():
                if result.step_id == step_id:
                    return result
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "collector_id": self.collector_id,
            "pipeline_id": self.pipeline_id,
            "success": self.success,
            "message": self.message,
            "details": self.details,
            "error_type": self.error_type,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "records_processed": self.records_processed,
            "step_results": [r.to_dict() for r in self.step_results],
        }
