"""
Parameter resolution and hierarchical pipeline execution.

Usage:
    from apiharvest.execution import ExecutionCoordinator

    coordinator = ExecutionCoordinator(loader, invoker)
    result = await coordinator.execute("tenant", "collector", "pipeline")
"""

from .context import ExecutionContext
from .coordinator import ExecutionCoordinator
from .executor import StepExecutor, count_executed_roots
from .references import UNRESOLVED, evaluate_reference, get_path, parse_path, set_path
from .resolver import ParameterResolver, ParameterSource, ResolvedParameters
from .result import ExecutionResult, StepResult, StepStatus
from .retry import (
    BackoffStrategy,
    ConstantBackoff,
    ExponentialBackoff,
    LinearBackoff,
    NoBackoff,
    RetryPolicy,
    RetryResult,
    backoff_from_config,
    with_retry,
)
from .steps import StepEnvironment, StepHandler, StepRun, default_handlers
from .tree import StepNode, StepTree

__all__ = [
    # Coordinator
    "ExecutionCoordinator",
    "ExecutionContext",
    "ExecutionResult",
    "StepResult",
    "StepStatus",
    # Executor
    "StepExecutor",
    "StepTree",
    "StepNode",
    "StepEnvironment",
    "StepHandler",
    "StepRun",
    "default_handlers",
    "count_executed_roots",
    # Resolver
    "ParameterResolver",
    "ParameterSource",
    "ResolvedParameters",
    # References
    "UNRESOLVED",
    "evaluate_reference",
    "get_path",
    "parse_path",
    "set_path",
    # Retry
    "BackoffStrategy",
    "NoBackoff",
    "ConstantBackoff",
    "LinearBackoff",
    "ExponentialBackoff",
    "RetryPolicy",
    "RetryResult",
    "backoff_from_config",
    "with_retry",
]
