"""
Retry and ForEach steps.

Both drive their own child forest instead of letting the executor run it
after them. Child results are recorded per attempt (Retry) or per item
(ForEach) in StepResult.iterations.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any

from apiharvest.catalog.pipeline import ForEachConfig, RetryConfig
from apiharvest.errors import ExecutionCancelledError
from apiharvest.execution.retry import RetryPolicy, backoff_from_config, with_retry

from .api import extract_items
from .base import StepHandler, StepRun

logger = logging.getLogger(__name__)


class RetryHandler(StepHandler):
    """
    Re-drive the child subtree with the same input until it succeeds.

    Each attempt gets a fresh deep copy of the input. Attempts run one
    after another; when they are exhausted the last error propagates.
    """

    async def run(self, value: Any, run: StepRun) -> Any:
        config: RetryConfig = run.config
        ctx = run.context
        node = run.node

        if not node.children:
            logger.warning(f"[{run.label}] Retry step has no children, passing input through")
            return value

        max_attempts = config.max_attempts or run.environment.settings.retry_default_attempts
        policy = RetryPolicy(
            max_attempts=max_attempts,
            backoff=backoff_from_config(config),
            give_up_on=(ExecutionCancelledError,),
        )

        async def attempt() -> Any:
            ctx.check_cancelled(node.id)
            results: list = []
            run.result.iterations.append(results)
            return await run.executor.run_forest(node.children, copy.deepcopy(value), ctx, results)

        def on_retry(attempt_number: int, error: Exception, delay: float) -> None:
            ctx.metrics.record_retry()
            if ctx.log is not None:
                ctx.log.retry_attempt(
                    node.id, attempt_number, max_attempts, str(error), delay * 1000
                )

        outcome = await with_retry(
            attempt, policy, operation_name=f"[{run.label}]", on_retry=on_retry
        )
        run.result.attempts = outcome.attempts
        run.result.details["total_delay_s"] = round(outcome.total_delay, 3)

        if not outcome.success:
            raise outcome.final_error
        return outcome.result


class ForEachHandler(StepHandler):
    """
    Run the child forest once per item.

    Every item runs in a forked context ($.item, $.index) on a deep copy
    of the item. Outputs are returned in item order regardless of
    completion order.
    """

    async def run(self, value: Any, run: StepRun) -> Any:
        config: ForEachConfig = run.config
        ctx = run.context
        node = run.node

        items = extract_items(value, config.items_path)
        if not node.children:
            run.result.item_count = len(items)
            return items

        concurrency = config.concurrency or run.environment.settings.foreach_concurrency
        semaphore = asyncio.Semaphore(max(1, concurrency))
        iteration_results: list[list] = [[] for _ in items]
        run.result.iterations = iteration_results

        async def run_item(index: int, item: Any) -> Any:
            async with semaphore:
                ctx.check_cancelled(node.id)
                item_ctx = ctx.fork(item, index)
                return await run.executor.run_forest(
                    node.children, copy.deepcopy(item), item_ctx, iteration_results[index]
                )

        logger.info(f"[{run.label}] Processing {len(items)} items (concurrency={concurrency})")

        outcomes: list[Any] = []
        if concurrency <= 1:
            for index, item in enumerate(items):
                try:
                    outcomes.append(await run_item(index, item))
                except ExecutionCancelledError:
                    raise
                except Exception as e:
                    if not config.continue_on_error:
                        raise
                    outcomes.append(e)
        else:
            outcomes = await asyncio.gather(
                *(run_item(i, item) for i, item in enumerate(items)),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, (asyncio.CancelledError, ExecutionCancelledError)):
                    raise outcome
            if not config.continue_on_error:
                for outcome in outcomes:
                    if isinstance(outcome, BaseException):
                        raise outcome

        outputs: list[Any] = []
        failed: list[dict[str, Any]] = []
        for index, outcome in enumerate(outcomes):
            if isinstance(outcome, BaseException):
                failed.append({"index": index, "error": str(outcome)})
                logger.warning(f"[{run.label}] Item {index} failed: {outcome}")
                continue
            if config.flatten and isinstance(outcome, list):
                outputs.extend(outcome)
            else:
                outputs.append(outcome)

        if failed:
            run.result.details["failed_items"] = failed
        run.result.item_count = len(outputs)
        return outputs
