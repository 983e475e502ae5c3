"""
Error taxonomy for apiharvest.

Every error raised by the library derives from HarvestError, so callers
can catch the whole family in one place. Errors carry the structured
attributes needed to build a diagnostic (parameter name, step id, the
offending document fragment) alongside a readable message.

Hierarchy:
    HarvestError
    ├── FormatError              malformed schema input
    ├── UnsupportedSchemaError   recognised but unsupported version or shape
    ├── IntrospectionError       GraphQL endpoint could not be introspected
    ├── FunctionNotFoundError    unknown function id
    ├── PipelineNotFoundError    unknown pipeline id
    ├── MissingParameterError    required parameter has no value
    ├── InvocationError          outbound call failed at the transport
    ├── StepExecutionError       a processing step failed
    ├── ExecutionCancelledError  cancellation observed between steps
    └── DomainError              policy violation (disabled pipeline, ...)
        ├── DuplicateFunctionError
        └── StepConfigurationError
"""

from __future__ import annotations

from typing import Any


class HarvestError(Exception):
    """Base exception for all apiharvest errors."""

    def __init__(self, message: str = ""):
        self.message = message
        super().__init__(message)

    def with_context(self, detail: str) -> HarvestError:
        """Prefix the message with extra context and return self."""
        self.message = f"{detail}: {self.message}" if self.message else detail
        self.args = (self.message,)
        return self


# =============================================================================
# Import errors
# =============================================================================


class FormatError(HarvestError):
    """Raised when a schema document cannot be decoded or is structurally invalid."""

    def __init__(self, message: str, *, fragment: Any = None):
        self.fragment = fragment
        super().__init__(message)


class UnsupportedSchemaError(HarvestError):
    """Raised for a recognised schema family at a version or shape we do not handle."""

    def __init__(self, message: str, *, version: str | None = None):
        self.version = version
        super().__init__(message)


class IntrospectionError(HarvestError):
    """Raised when a GraphQL introspection request fails."""

    def __init__(
        self,
        message: str,
        *,
        endpoint: str = "",
        status_code: int | None = None,
    ):
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(message)


# =============================================================================
# Lookup errors
# =============================================================================


class FunctionNotFoundError(HarvestError):
    """Raised when a function id is not present in a catalog."""

    def __init__(self, function_id: str, *, catalog_id: str | None = None):
        self.function_id = function_id
        self.catalog_id = catalog_id
        where = f" in catalog '{catalog_id}'" if catalog_id else ""
        super().__init__(f"Function '{function_id}' not found{where}")


class PipelineNotFoundError(HarvestError):
    """Raised when a pipeline cannot be loaded."""

    def __init__(self, pipeline_id: str, *, collector_id: str | None = None):
        self.pipeline_id = pipeline_id
        self.collector_id = collector_id
        where = f" for collector '{collector_id}'" if collector_id else ""
        super().__init__(f"Pipeline '{pipeline_id}' not found{where}")


# =============================================================================
# Execution errors
# =============================================================================


class MissingParameterError(HarvestError):
    """Raised when a required parameter has no value after resolution."""

    def __init__(self, parameter: str, function_name: str):
        self.parameter = parameter
        self.function_name = function_name
        super().__init__(
            f"Required parameter '{parameter}' of function '{function_name}' has no value"
        )


class InvocationError(HarvestError):
    """Raised by a function invoker when the outbound call fails."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
    ):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class StepExecutionError(HarvestError):
    """Raised when a processing step fails; identifies the failing step."""

    def __init__(
        self,
        step_id: str,
        step_type: str,
        message: str,
        *,
        cause: BaseException | None = None,
    ):
        self.step_id = step_id
        self.step_type = step_type
        self.cause = cause
        super().__init__(f"Step '{step_id}' ({step_type}) failed: {message}")
        self.reason = message


class ExecutionCancelledError(HarvestError):
    """Raised when an execution observes its cancellation signal."""

    def __init__(self, execution_id: str, *, step_id: str | None = None):
        self.execution_id = execution_id
        self.step_id = step_id
        before = f" before step '{step_id}'" if step_id else ""
        super().__init__(f"Execution {execution_id} cancelled{before}")


# =============================================================================
# Domain errors
# =============================================================================


class DomainError(HarvestError):
    """Raised when an operation violates a policy rule."""

    pass


class DuplicateFunctionError(DomainError):
    """Raised when a catalog already holds a function with the same id."""

    def __init__(self, function_id: str, *, catalog_id: str | None = None):
        self.function_id = function_id
        self.catalog_id = catalog_id
        where = f" in catalog '{catalog_id}'" if catalog_id else ""
        super().__init__(f"Function '{function_id}' already exists{where}")


class StepConfigurationError(DomainError):
    """Raised when a step tree or a step's configuration is invalid."""

    def __init__(self, message: str, *, step_id: str | None = None):
        self.step_id = step_id
        super().__init__(f"Step '{step_id}': {message}" if step_id else message)


__all__ = [
    "HarvestError",
    "FormatError",
    "UnsupportedSchemaError",
    "IntrospectionError",
    "FunctionNotFoundError",
    "PipelineNotFoundError",
    "MissingParameterError",
    "InvocationError",
    "StepExecutionError",
    "ExecutionCancelledError",
    "DomainError",
    "DuplicateFunctionError",
    "StepConfigurationError",
]
