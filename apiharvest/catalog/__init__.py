"""
Function model, catalog and pipeline definitions.

Usage:
    from apiharvest.catalog import FunctionCatalog, FunctionDefinition, PipelineDefinition
"""

from .catalog import FunctionCatalog
from .loaders import DefinitionLoader, FileDefinitionLoader, MemoryDefinitionLoader
from .pipeline import (
    STEP_CONFIG_MODELS,
    ApiCallConfig,
    FieldSelectorConfig,
    FilterCondition,
    FilterConfig,
    ForEachConfig,
    PaginationConfig,
    PipelineDefinition,
    ProcessingStepDefinition,
    RetryConfig,
    StepConfig,
    StepType,
    StoreDatabaseConfig,
    StoreDiskConfig,
    TransformConfig,
    decode_step_config,
)
from .schemas import (
    PARAMETER_LOCATIONS,
    FunctionDefinition,
    FunctionParameter,
    RequestBody,
    ResponseDescriptor,
    ResponseStatus,
    ValidationRules,
)

__all__ = [
    # Function model
    "FunctionDefinition",
    "FunctionParameter",
    "RequestBody",
    "ResponseDescriptor",
    "ResponseStatus",
    "ValidationRules",
    "PARAMETER_LOCATIONS",
    # Catalog
    "FunctionCatalog",
    # Loaders
    "DefinitionLoader",
    "FileDefinitionLoader",
    "MemoryDefinitionLoader",
    # Pipelines
    "PipelineDefinition",
    "ProcessingStepDefinition",
    "StepType",
    "StepConfig",
    "ApiCallConfig",
    "PaginationConfig",
    "RetryConfig",
    "FilterCondition",
    "FilterConfig",
    "ForEachConfig",
    "TransformConfig",
    "FieldSelectorConfig",
    "StoreDatabaseConfig",
    "StoreDiskConfig",
    "STEP_CONFIG_MODELS",
    "decode_step_config",
]
