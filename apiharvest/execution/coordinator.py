"""
Execution Coordinator.

Entry point for running a pipeline:

    coordinator = ExecutionCoordinator(loader, HttpFunctionInvoker())
    result = await coordinator.execute("tenant-1", "collector-1", "daily-users")
    if not result.success:
        print(result.error_type, result.message)

execute() never raises for execution problems. Lookup failures, invalid
step trees, unresolvable parameters and step failures all come back as
an ExecutionResult with success=False and error_type set. Only real task
cancellation (asyncio.CancelledError) propagates.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from apiharvest.config.settings import HarvestSettings, get_settings
from apiharvest.errors import (
    DomainError,
    FunctionNotFoundError,
    HarvestError,
    MissingParameterError,
    PipelineNotFoundError,
    StepConfigurationError,
    StepExecutionError,
)
from apiharvest.observability import ExecutionMetrics, get_metrics
from apiharvest.storage.sinks import default_sinks, merge_sinks

from .context import ExecutionContext
from .executor import StepExecutor, count_executed_roots
from .resolver import ParameterResolver
from .result import ExecutionResult, StepResult
from .steps import StepEnvironment
from .steps.api import runtime_overrides
from .tree import StepTree

if TYPE_CHECKING:
    from apiharvest.catalog.catalog import FunctionCatalog
    from apiharvest.catalog.loaders import DefinitionLoader
    from apiharvest.catalog.pipeline import PipelineDefinition, StepType
    from apiharvest.catalog.schemas import FunctionDefinition
    from apiharvest.storage.sinks import RecordSink
    from apiharvest.transport.http import FunctionInvoker

    from .steps import StepHandler

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Pipeline executed successfully"
DRY_RUN_MESSAGE = "Dry run completed"


class ExecutionCoordinator:
    """
    Loads definitions, resolves parameters and runs the step tree.

    The coordinator is stateless between calls: every execute() builds
    its own context, tree and step results, so concurrent executions
    never share mutable state.
    """

    def __init__(
        self,
        loader: DefinitionLoader,
        invoker: FunctionInvoker,
        *,
        sinks: dict[str, RecordSink] | None = None,
        resolver: ParameterResolver | None = None,
        metrics: ExecutionMetrics | None = None,
        settings: HarvestSettings | None = None,
        handlers: Mapping[StepType | str, StepHandler] | None = None,
    ):
        self._loader = loader
        self._invoker = invoker
        self._settings = settings or get_settings()
        self._sinks = merge_sinks(default_sinks(self._settings.storage_dir), sinks)
        self._resolver = resolver or ParameterResolver()
        self._metrics = metrics or get_metrics()
        self._handlers = handlers

    @property
    def sinks(self) -> dict[str, RecordSink]:
        return self._sinks

    async def execute(
        self,
        tenant_id: str,
        collector_id: str,
        pipeline_id: str,
        parameters: dict[str, Any] | None = None,
        dry_run: bool = False,
        *,
        cancel_event: asyncio.Event | None = None,
        initial_input: Any = None,
    ) -> ExecutionResult:
        """
        Execute a pipeline.

        Args:
            tenant_id: Tenant owning the definitions
            collector_id: Collector the pipeline belongs to
            pipeline_id: Pipeline to run
            parameters: Runtime parameters; override configured values and
                are available to mappings as $.input
            dry_run: Resolve parameters and describe the call without
                running any step
            cancel_event: Set it to stop the execution before its next step
            initial_input: Input of the first root step (defaults to a copy
                of the runtime parameters)

        Returns:
            ExecutionResult, successful or not
        """
        runtime = dict(parameters or {})
        ctx = ExecutionContext(
            tenant_id=tenant_id,
            collector_id=collector_id,
            pipeline_id=pipeline_id,
            dry_run=dry_run,
            runtime_parameters=runtime,
            cancel_event=cancel_event or asyncio.Event(),
            metrics=self._metrics,
        )
        result = ExecutionResult(
            execution_id=str(ctx.execution_id),
            collector_id=collector_id,
            pipeline_id=pipeline_id,
            started_at=ctx.started_at,
        )
        step_results: list[StepResult] = []

        logger.info(
            f"[coordinator] Executing pipeline {pipeline_id} "
            f"(execution_id={str(ctx.execution_id)[:8]}..., dry_run={dry_run})"
        )

        try:
            pipeline, catalog, function = await self._load(tenant_id, collector_id, pipeline_id)
            tree = StepTree.build(pipeline.steps)
            if ctx.log is not None:
                ctx.log.execution_started(collector_id, len(tree), dry_run=dry_run)

            value = copy.deepcopy(runtime) if initial_input is None else initial_input

            resolved = self._resolver.resolve(
                function,
                static=pipeline.static_parameters,
                mappings=pipeline.parameter_mappings,
                scope=ctx.scope(value),
                overrides=runtime_overrides(function, runtime),
                defer_unresolved=True,
            )

            if dry_run:
                result.success = True
                result.message = DRY_RUN_MESSAGE
                result.details = {
                    "dry_run": True,
                    "function": function.describe(),
                    "resolved_parameters": resolved.to_dict(),
                    "deferred": list(resolved.deferred),
                    "step_count": len(tree),
                }
                return result

            environment = StepEnvironment(
                pipeline=pipeline,
                function=function,
                catalog=catalog,
                invoker=self._invoker,
                resolver=self._resolver,
                settings=self._settings,
                sinks=self._sinks,
                base_url=pipeline.base_url or catalog.base_url,
            )
            executor = StepExecutor(tree, environment, handlers=self._handlers)
            output = await executor.run(value, ctx, step_results)

            result.success = True
            result.message = SUCCESS_MESSAGE
            result.details = {"output": output, "step_timings": dict(ctx.step_timings)}

        except asyncio.CancelledError:
            logger.warning(f"[coordinator] Execution {ctx.execution_id} task cancelled")
            raise
        except Exception as e:
            result.success = False
            result.message = f"Pipeline execution failed: {e}"
            result.error_type = type(e).__name__
            result.details = _error_details(e)
            if isinstance(e, HarvestError):
                logger.warning(f"[coordinator] {result.message}")
            else:
                logger.error(f"[coordinator] Unexpected error: {e}", exc_info=True)

        finally:
            result.completed_at = datetime.now(timezone.utc)
            result.step_results = step_results
            result.records_processed = count_executed_roots(step_results)
            duration_ms = result.duration_ms or 0.0
            if not dry_run:
                self._metrics.record_execution(result.success, duration_ms)
            if ctx.log is not None:
                ctx.log.execution_completed(
                    success=result.success,
                    duration_ms=duration_ms,
                    records_processed=result.records_processed,
                    error=None if result.success else result.message,
                )

        return result

    async def _load(
        self,
        tenant_id: str,
        collector_id: str,
        pipeline_id: str,
    ) -> tuple[PipelineDefinition, FunctionCatalog, FunctionDefinition]:
        pipeline = await self._loader.get_pipeline(tenant_id, collector_id, pipeline_id)
        if pipeline is None:
            raise PipelineNotFoundError(pipeline_id, collector_id=collector_id)

        if not pipeline.enabled:
            raise DomainError(f"Pipeline '{pipeline_id}' is not enabled")

        catalog = await self._loader.get_catalog(tenant_id, pipeline.data_source_id)
        if catalog is None:
            raise FunctionNotFoundError(pipeline.function_id, catalog_id=pipeline.data_source_id)

        function = catalog.get(pipeline.function_id)
        return pipeline, catalog, function


def _error_details(error: Exception) -> dict[str, Any]:
    details: dict[str, Any] = {"error": str(error)}
    if isinstance(error, StepExecutionError):
        details.update(
            step_id=error.step_id, step_type=error.step_type, reason=error.reason
        )
    elif isinstance(error, MissingParameterError):
        details.update(parameter=error.parameter, function=error.function_name)
    elif isinstance(error, FunctionNotFoundError):
        details.update(function_id=error.function_id)
    elif isinstance(error, PipelineNotFoundError):
        details.update(pipeline_id=error.pipeline_id)
    elif isinstance(error, StepConfigurationError) and error.step_id:
        details.update(step_id=error.step_id)
    return details
