"""
apiharvest - normalize API descriptions and run collection pipelines over them.

apiharvest has two halves:

- **Schema normalization**: OpenAPI 3.x / Swagger 2.0, GraphQL introspection
  and WSDL/SOAP documents become protocol-neutral FunctionDefinitions
- **Pipeline execution**: a pipeline binds one function to a tree of
  processing steps (API calls, pagination, retry, fan-out, filtering,
  reshaping, storage) that an ExecutionCoordinator runs

Quick Start:
    >>> from apiharvest import FunctionCatalog, import_schema
    >>> result = import_schema("openapi", document)
    >>> catalog = FunctionCatalog.from_import("petstore", result)
    >>>
    >>> from apiharvest import ExecutionCoordinator, HttpFunctionInvoker
    >>> coordinator = ExecutionCoordinator(loader, HttpFunctionInvoker())
    >>> outcome = await coordinator.execute("tenant", "collector", "pipeline")
"""

__version__ = "0.1.0"

from apiharvest.catalog import (
    FunctionCatalog,
    FunctionDefinition,
    FunctionParameter,
    PipelineDefinition,
    ProcessingStepDefinition,
    StepType,
)
from apiharvest.errors import HarvestError
from apiharvest.execution import ExecutionCoordinator, ExecutionResult, ParameterResolver
from apiharvest.importers import (
    GraphQLImporter,
    ImportResult,
    OpenAPIImporter,
    WSDLImporter,
    import_schema,
)
from apiharvest.transport import HttpFunctionInvoker

__all__ = [
    "__version__",
    # Function model
    "FunctionCatalog",
    "FunctionDefinition",
    "FunctionParameter",
    # Importers
    "ImportResult",
    "OpenAPIImporter",
    "GraphQLImporter",
    "WSDLImporter",
    "import_schema",
    # Pipelines
    "PipelineDefinition",
    "ProcessingStepDefinition",
    "StepType",
    "ParameterResolver",
    "ExecutionCoordinator",
    "ExecutionResult",
    "HttpFunctionInvoker",
    # Errors
    "HarvestError",
]
