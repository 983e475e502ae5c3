"""
Step handlers, one per StepType.

Usage:
    from apiharvest.execution.steps import default_handlers

    handlers = default_handlers()
    handlers[StepType.FILTER] = MyFilterHandler()
"""

from apiharvest.catalog.pipeline import StepType

from .api import ApiCallHandler, PaginationHandler, extract_items, invoke_function
from .base import StepEnvironment, StepHandler, StepRun
from .control import ForEachHandler, RetryHandler
from .shaping import (
    FieldSelectorHandler,
    FilterHandler,
    TransformHandler,
    matches,
    select_fields,
    transform_item,
)
from .store import StoreDatabaseHandler, StoreDiskHandler


def default_handlers() -> dict[StepType, StepHandler]:
    """A fresh handler registry covering all nine step types."""
    return {
        StepType.API_CALL: ApiCallHandler(),
        StepType.PAGINATION: PaginationHandler(),
        StepType.RETRY: RetryHandler(),
        StepType.FILTER: FilterHandler(),
        StepType.FOR_EACH: ForEachHandler(),
        StepType.TRANSFORM: TransformHandler(),
        StepType.FIELD_SELECTOR: FieldSelectorHandler(),
        StepType.STORE_DATABASE: StoreDatabaseHandler(),
        StepType.STORE_DISK: StoreDiskHandler(),
    }


__all__ = [
    "ApiCallHandler",
    "FieldSelectorHandler",
    "FilterHandler",
    "ForEachHandler",
    "PaginationHandler",
    "RetryHandler",
    "StepEnvironment",
    "StepHandler",
    "StepRun",
    "StoreDatabaseHandler",
    "StoreDiskHandler",
    "TransformHandler",
    "default_handlers",
    "extract_items",
    "invoke_function",
    "matches",
    "select_fields",
    "transform_item",
]
