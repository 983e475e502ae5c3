"""
Observability for apiharvest.

Executions report through two channels:

    - JSONLogger / ExecutionLogger: one JSON object per event, written
      through stdlib logging so handlers and levels still apply
    - ExecutionMetrics: process-local counters plus bounded duration samples
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

logger = logging.getLogger(__name__)


# =============================================================================
# Structured Logging
# =============================================================================


class StructuredLogger(Protocol):
    def debug(self, message: str, **context: Any) -> None: ...

    def info(self, message: str, **context: Any) -> None: ...

    def warning(self, message: str, **context: Any) -> None: ...

    def error(self, message: str, **context: Any) -> None: ...


@dataclass
class JSONLogger:
    """
    Emit each event as a single JSON line on a named stdlib logger.

    Fields are merged in this order, later wins: timestamp/level/message,
    bound `extra_context`, per-call keywords, then `execution_id`.

        {"timestamp": "2026-01-02T10:30:00+00:00", "level": "info",
         "message": "Execution started", "pipeline_id": "daily-users",
         "execution_id": "abc-123"}
    """

    name: str = "apiharvest"
    execution_id: str | None = None
    extra_context: dict[str, Any] = field(default_factory=dict)

    @property
    def target(self) -> logging.Logger:
        return logging.getLogger(self.name)

    def emit(self, levelno: int, message: str, **context: Any) -> None:
        target = self.target
        if not target.isEnabledFor(levelno):
            return
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": logging.getLevelName(levelno).lower(),
            "message": message,
        }
        payload.update(self.extra_context)
        payload.update(context)
        if self.execution_id:
            payload["execution_id"] = self.execution_id
        target.log(levelno, json.dumps(payload, default=str))

    def debug(self, message: str, **context: Any) -> None:
        self.emit(logging.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self.emit(logging.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self.emit(logging.WARNING, message, **context)

    def error(self, message: str, **context: Any) -> None:
        self.emit(logging.ERROR, message, **context)

    def with_context(self, **extra: Any) -> JSONLogger:
        """Copy of this logger with `extra` bound to every event."""
        merged = dict(self.extra_context)
        merged.update(extra)
        return JSONLogger(name=self.name, execution_id=self.execution_id, extra_context=merged)


# =============================================================================
# Execution Events
# =============================================================================


def _ms(value: float) -> float:
    return round(value, 2)


@dataclass
class ExecutionLogger:
    """Named lifecycle events for one execution, on `apiharvest.execution`."""

    execution_id: str
    pipeline_id: str = ""
    inner: StructuredLogger | None = None

    def __post_init__(self) -> None:
        if self.inner is not None:
            return
        bound = {"pipeline_id": self.pipeline_id} if self.pipeline_id else {}
        self.inner = JSONLogger(
            name="apiharvest.execution",
            execution_id=self.execution_id,
            extra_context=bound,
        )

    def execution_started(self, collector_id: str, step_count: int, dry_run: bool = False) -> None:
        self.inner.info(
            "Execution started", collector_id=collector_id, step_count=step_count, dry_run=dry_run
        )

    def execution_completed(
        self,
        success: bool,
        duration_ms: float,
        records_processed: int,
        error: str | None = None,
    ) -> None:
        fields = {
            "success": success,
            "duration_ms": _ms(duration_ms),
            "records_processed": records_processed,
        }
        if success:
            self.inner.info("Execution completed", **fields)
        else:
            self.inner.error("Execution failed", error=error, **fields)

    def step_started(self, step_id: str, step_type: str) -> None:
        self.inner.debug("Step started", step_id=step_id, step_type=step_type)

    def step_completed(self, step_id: str, step_type: str, duration_ms: float) -> None:
        self.inner.debug(
            "Step completed", step_id=step_id, step_type=step_type, duration_ms=_ms(duration_ms)
        )

    def step_failed(self, step_id: str, step_type: str, error: str) -> None:
        self.inner.error("Step failed", step_id=step_id, step_type=step_type, error=error)

    def step_skipped(self, step_id: str, step_type: str) -> None:
        self.inner.debug("Step skipped", step_id=step_id, step_type=step_type)

    def retry_attempt(
        self, step_id: str, attempt: int, max_attempts: int, error: str, delay_ms: float
    ) -> None:
        self.inner.warning(
            "Retry attempt",
            step_id=step_id,
            attempt=attempt,
            max_attempts=max_attempts,
            error=error,
            delay_ms=_ms(delay_ms),
        )


# =============================================================================
# Metrics
# =============================================================================


def _percentile(samples: list[float], fraction: float) -> float | None:
    """Linearly interpolated percentile; None for no samples."""
    if not samples:
        return None
    ordered = sorted(samples)
    position = (len(ordered) - 1) * fraction
    low = int(position)
    high = min(low + 1, len(ordered) - 1)
    return ordered[low] + (position - low) * (ordered[high] - ordered[low])


@dataclass
class ExecutionMetrics:
    """
    In-process execution counters.

    Duration samples keep only the newest `sample_limit` values per series.
    """

    executions_total: int = 0
    executions_success: int = 0
    executions_failed: int = 0
    steps_executed: int = 0
    steps_failed: int = 0
    steps_skipped: int = 0
    retries_total: int = 0

    execution_durations_ms: list[float] = field(default_factory=list)
    step_durations_ms: dict[str, list[float]] = field(default_factory=dict)

    sample_limit: int = 1000

    def _sample(self, series: list[float], value: float) -> None:
        series.append(value)
        overflow = len(series) - self.sample_limit
        if overflow > 0:
            del series[:overflow]

    def record_execution(self, success: bool, duration_ms: float) -> None:
        self.executions_total += 1
        if success:
            self.executions_success += 1
        else:
            self.executions_failed += 1
        self._sample(self.execution_durations_ms, duration_ms)

    def record_step(self, step_type: str, duration_ms: float, success: bool = True) -> None:
        self.steps_executed += 1
        self.steps_failed += 0 if success else 1
        self._sample(self.step_durations_ms.setdefault(step_type, []), duration_ms)

    def record_skip(self) -> None:
        self.steps_skipped += 1

    def record_retry(self) -> None:
        self.retries_total += 1

    def get_stats(self) -> dict[str, Any]:
        """Snapshot of counters and duration percentiles."""
        total = self.executions_total
        durations = self.execution_durations_ms
        return {
            "executions": {
                "total": total,
                "success": self.executions_success,
                "failed": self.executions_failed,
                "success_rate": self.executions_success / total if total else None,
            },
            "duration_ms": {
                label: _percentile(durations, fraction)
                for label, fraction in (("p50", 0.5), ("p95", 0.95), ("p99", 0.99))
            },
            "steps": {
                "executed": self.steps_executed,
                "failed": self.steps_failed,
                "skipped": self.steps_skipped,
                "by_type_p50": {
                    kind: _percentile(series, 0.5)
                    for kind, series in self.step_durations_ms.items()
                },
            },
            "retries_total": self.retries_total,
        }

    def reset(self) -> None:
        """Zero every counter and drop all samples, in place."""
        for name in (
            "executions_total",
            "executions_success",
            "executions_failed",
            "steps_executed",
            "steps_failed",
            "steps_skipped",
            "retries_total",
        ):
            setattr(self, name, 0)
        self.execution_durations_ms.clear()
        self.step_durations_ms.clear()


_global_metrics = ExecutionMetrics()


def get_metrics() -> ExecutionMetrics:
    """Process-wide metrics shared by coordinators that are not given their own."""
    return _global_metrics


def reset_metrics() -> None:
    _global_metrics.reset()


__all__ = [
    "StructuredLogger",
    "JSONLogger",
    "ExecutionLogger",
    "ExecutionMetrics",
    "get_metrics",
    "reset_metrics",
]
