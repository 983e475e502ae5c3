"""
Step Executor.

Evaluates a StepTree depth first:

- Siblings run in ascending order; each sibling's input is the previous
  sibling's effective output.
- A disabled step is skipped with its whole subtree; its input passes
  through unchanged.
- An enabled step runs its handler, then its child forest with the
  handler's output as input (Retry and ForEach drive their children
  themselves). The subtree's output is the step's effective output.
- A failing step aborts its remaining siblings and propagates as a
  StepExecutionError naming the step.
- Cancellation is checked before every step is scheduled.

Example:
    executor = StepExecutor(tree, environment)
    results: list[StepResult] = []
    output = await executor.run(initial_input, ctx, results)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from apiharvest.catalog.pipeline import StepType
from apiharvest.errors import ExecutionCancelledError, StepExecutionError

from .result import StepResult, StepStatus
from .steps import StepEnvironment, StepHandler, StepRun, default_handlers

if TYPE_CHECKING:
    from .context import ExecutionContext
    from .tree import StepNode, StepTree

logger = logging.getLogger(__name__)


class StepExecutor:
    """Runs the steps of one tree; holds no per-execution state."""

    def __init__(
        self,
        tree: StepTree,
        environment: StepEnvironment,
        *,
        handlers: Mapping[StepType | str, StepHandler] | None = None,
    ):
        self.tree = tree
        self.environment = environment
        self.handlers = default_handlers()
        for key, handler in (handlers or {}).items():
            self.handlers[StepType.parse(key)] = handler

    async def run(
        self,
        value: Any,
        ctx: ExecutionContext,
        results: list[StepResult],
    ) -> Any:
        """Run the root forest; returns the final output."""
        return await self.run_forest(self.tree.roots, value, ctx, results)

    async def run_forest(
        self,
        indices: Iterable[int],
        value: Any,
        ctx: ExecutionContext,
        results: list[StepResult],
    ) -> Any:
        """Run sibling steps in order, threading the value through them."""
        current = value
        for index in indices:
            node = self.tree.node(index)
            ctx.check_cancelled(node.id)
            result = StepResult(step_id=node.id, name=node.name, step_type=node.type.value)
            results.append(result)
            current = await self.run_step(node, current, ctx, result)
        return current

    async def run_step(
        self,
        node: StepNode,
        value: Any,
        ctx: ExecutionContext,
        result: StepResult,
    ) -> Any:
        step_type = node.type.value

        if not node.enabled:
            result.status = StepStatus.SKIPPED
            ctx.metrics.record_skip()
            if ctx.log is not None:
                ctx.log.step_skipped(node.id, step_type)
            return value

        handler = self.handlers.get(node.type)
        if handler is None:
            raise StepExecutionError(node.id, step_type, "No handler registered for step type")

        if ctx.log is not None:
            ctx.log.step_started(node.id, step_type)

        start_time = time.perf_counter()
        run = StepRun(
            node=node,
            context=ctx,
            environment=self.environment,
            executor=self,
            result=result,
        )

        try:
            result.attempts = max(result.attempts, 1)
            output = await handler.run(value, run)
            if node.children and not node.type.owns_children:
                output = await self.run_forest(node.children, output, ctx, result.children)
        except ExecutionCancelledError:
            result.status = StepStatus.CANCELLED
            self._finish(node, ctx, result, start_time)
            raise
        except StepExecutionError as e:
            result.status = StepStatus.FAILED
            result.error = result.error or e.message
            self._finish(node, ctx, result, start_time)
            raise
        except Exception as e:
            result.status = StepStatus.FAILED
            result.error = str(e)
            self._finish(node, ctx, result, start_time)
            logger.error(f"[step:{node.id}] {step_type} error: {e}", exc_info=True)
            if ctx.log is not None:
                ctx.log.step_failed(node.id, step_type, str(e))
            raise StepExecutionError(node.id, step_type, str(e), cause=e) from e

        result.status = StepStatus.SUCCEEDED
        duration_ms = self._finish(node, ctx, result, start_time)
        ctx.record_output(node.id, output)
        if ctx.log is not None:
            ctx.log.step_completed(node.id, step_type, duration_ms)
        return output

    def _finish(
        self,
        node: StepNode,
        ctx: ExecutionContext,
        result: StepResult,
        start_time: float,
    ) -> float:
        duration_ms = (time.perf_counter() - start_time) * 1000
        result.duration_ms = duration_ms
        ctx.record_timing(node.id, duration_ms)
        if result.status != StepStatus.CANCELLED:
            ctx.metrics.record_step(
                node.type.value, duration_ms, success=result.status == StepStatus.SUCCEEDED
            )
        return duration_ms

    def __repr__(self) -> str:
        return f"StepExecutor(steps={len(self.tree)})"


def count_executed_roots(results: Iterable[StepResult]) -> int:
    """One unit per root-level step that actually ran."""
    return sum(1 for r in results if r.executed)
