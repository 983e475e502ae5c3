"""
Step handler abstraction.

Each of the nine step types has one stateless StepHandler. The executor
calls handler.run(value, run) with the step's input value and a StepRun
carrying everything else the step may need:

    run.node         the StepNode (id, type, typed config, children)
    run.context      the ExecutionContext (scope, cancellation, logger)
    run.environment  collaborators shared by the whole execution
    run.executor     used by Retry/ForEach to drive their children
    run.result       the StepResult being filled in for this step

Handlers return the step's output. Raising fails the step; the executor
wraps the error into a StepExecutionError naming the step.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from apiharvest.catalog.catalog import FunctionCatalog
    from apiharvest.catalog.pipeline import PipelineDefinition
    from apiharvest.catalog.schemas import FunctionDefinition
    from apiharvest.config.settings import HarvestSettings
    from apiharvest.execution.context import ExecutionContext
    from apiharvest.execution.executor import StepExecutor
    from apiharvest.execution.resolver import ParameterResolver
    from apiharvest.execution.result import StepResult
    from apiharvest.execution.tree import StepNode
    from apiharvest.storage.sinks import RecordSink
    from apiharvest.transport.http import FunctionInvoker

logger = logging.getLogger(__name__)


@dataclass
class StepEnvironment:
    """Collaborators shared by every step of one execution."""

    pipeline: PipelineDefinition
    function: FunctionDefinition
    catalog: FunctionCatalog
    invoker: FunctionInvoker
    resolver: ParameterResolver
    settings: HarvestSettings
    sinks: dict[str, RecordSink] = field(default_factory=dict)
    base_url: str | None = None


@dataclass
class StepRun:
    """One invocation of a handler."""

    node: StepNode
    context: ExecutionContext
    environment: StepEnvironment
    executor: StepExecutor
    result: StepResult

    @property
    def config(self) -> Any:
        return self.node.config

    @property
    def label(self) -> str:
        return f"step:{self.node.id}"


class StepHandler(ABC):
    """
    Base class for step behaviours.

    Subclasses must implement run(). Handlers keep no per-execution state
    so one instance serves concurrent executions.
    """

    @abstractmethod
    async def run(self, value: Any, run: StepRun) -> Any:
        """
        Apply the step to its input.

        Args:
            value: Output of the previous step (or the pipeline input)
            run: Node, context and collaborators for this invocation

        Returns:
            The step's output
        """
        ...

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"
