"""
Pipeline and Processing Step Schema.

A pipeline binds one catalog function to a forest of processing steps:

    PipelineDefinition
    ├── function_id            -> FunctionDefinition in the data source catalog
    ├── static_parameters      name -> literal
    ├── parameter_mappings     name -> reference expression ("$.prev.id")
    └── steps                  ordered forest of ProcessingStepDefinition

Each step has one of nine types. Its `config` is stored as an untyped
mapping (or JSON text) and decoded into the typed model for its type when
the step tree is built, see STEP_CONFIG_MODELS and decode_step_config().

Step definitions can be authored nested (`children`) or flat with a
`parent_id` per step; apiharvest.execution.tree accepts both.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, Field, ValidationError, field_validator

from apiharvest.errors import StepConfigurationError


def _new_id() -> str:
    return str(uuid4())


# =============================================================================
# Step Types
# =============================================================================


class StepType(str, Enum):
    """The nine processing step behaviours."""

    API_CALL = "ApiCall"
    PAGINATION = "Pagination"
    RETRY = "Retry"
    FILTER = "Filter"
    FOR_EACH = "ForEach"
    TRANSFORM = "Transform"
    FIELD_SELECTOR = "FieldSelector"
    STORE_DATABASE = "StoreDatabase"
    STORE_DISK = "StoreDisk"

    @classmethod
    def parse(cls, raw: Any) -> StepType:
        """
        Accept the enum value ("ApiCall"), kebab form ("api-call"), snake
        form ("api_call"), or the stored integer ordinal (0..8).
        """
        if isinstance(raw, StepType):
            return raw

        if isinstance(raw, int) and not isinstance(raw, bool):
            members = list(cls)
            if 0 <= raw < len(members):
                return members[raw]
            raise StepConfigurationError(f"Unknown step type ordinal: {raw}")

        if isinstance(raw, str):
            text = raw.strip()
            try:
                ordinal = int(text)
            except ValueError:
                ordinal = None
            if ordinal is not None:
                return cls.parse(ordinal)
            key = text.replace("-", "").replace("_", "").lower()
            for member in cls:
                if member.value.lower() == key:
                    return member

        raise StepConfigurationError(f"Unknown step type: {raw!r}")

    @property
    def owns_children(self) -> bool:
        """Retry and ForEach drive their own children."""
        return self in (StepType.RETRY, StepType.FOR_EACH)


# =============================================================================
# Typed Step Configurations
# =============================================================================


class StepConfig(BaseModel):
    """Base for typed step configurations."""

    class Config:
        extra = "forbid"


class ApiCallConfig(StepConfig):
    """
    Invoke the pipeline's bound function.

    `parameters` and `parameter_mappings` are layered over the pipeline's
    own static parameters and mappings. `function_id` calls a different
    function of the same catalog.
    """

    function_id: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    parameter_mappings: dict[str, str] = Field(default_factory=dict)
    response_path: str | None = None
    options: dict[str, Any] = Field(default_factory=dict)


class PaginationConfig(ApiCallConfig):
    """
    Fetch pages of the bound function until exhausted.

    Strategies:
        offset: sends offset_param/page_size_param, offset grows by page size
        page:   sends page_param/page_size_param, page grows by one
        cursor: sends cursor_param taken from cursor_path of the last page
    """

    strategy: Literal["offset", "page", "cursor"] = "offset"
    page_size: int = Field(default=100, ge=1)
    page_size_param: str | None = "limit"
    offset_param: str = "offset"
    page_param: str = "page"
    start_page: int = 1
    cursor_param: str = "cursor"
    cursor_path: str = "next_cursor"
    items_path: str | None = None
    max_pages: int = Field(default=100, ge=1)


class RetryConfig(StepConfig):
    """Re-drive the child subtree with backoff between attempts."""

    max_attempts: int | None = Field(default=None, ge=1)
    backoff: Literal["none", "constant", "linear", "exponential"] = "exponential"
    delay: float = Field(default=1.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1)
    increment: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=60.0, ge=0)
    jitter: bool = False


FilterOperator = Literal[
    "eq", "ne", "gt", "gte", "lt", "lte",
    "contains", "in", "not_in", "exists", "not_exists", "regex",
]


class FilterCondition(BaseModel):
    """One predicate over a field of an item."""

    field: str
    operator: FilterOperator = "eq"
    value: Any = None

    class Config:
        extra = "forbid"


class FilterConfig(StepConfig):
    """Keep items matching all (or any) conditions."""

    conditions: list[FilterCondition] = Field(default_factory=list)
    match: Literal["all", "any"] = "all"
    items_path: str | None = None


class ForEachConfig(StepConfig):
    """
    Run the child subtree once per item.

    Outputs are merged in item order; `flatten` concatenates per-item
    outputs that are lists.
    """

    items_path: str | None = None
    concurrency: int | None = Field(default=None, ge=1)
    continue_on_error: bool = False
    flatten: bool = False


class TransformConfig(StepConfig):
    """
    Reshape each item.

    mappings: target field -> source path within the item ("$" is the
    item itself), or {"value": literal} for a constant.
    """

    mappings: dict[str, Any] = Field(default_factory=dict)
    include_unmapped: bool = False


class FieldSelectorConfig(StepConfig):
    """Project a subset of (dotted) fields."""

    fields: list[str] = Field(default_factory=list)
    flatten: bool = False


class StoreDatabaseConfig(StepConfig):
    """Hand the payload to a database sink."""

    table: str
    sink: str = "database"
    mode: Literal["append", "replace"] = "append"


class StoreDiskConfig(StepConfig):
    """Write the payload to a file under the storage directory."""

    path: str
    format: Literal["json", "jsonl"] = "json"
    append: bool = False
    sink: str = "disk"


STEP_CONFIG_MODELS: dict[StepType, type[StepConfig]] = {
    StepType.API_CALL: ApiCallConfig,
    StepType.PAGINATION: PaginationConfig,
    StepType.RETRY: RetryConfig,
    StepType.FILTER: FilterConfig,
    StepType.FOR_EACH: ForEachConfig,
    StepType.TRANSFORM: TransformConfig,
    StepType.FIELD_SELECTOR: FieldSelectorConfig,
    StepType.STORE_DATABASE: StoreDatabaseConfig,
    StepType.STORE_DISK: StoreDiskConfig,
}


def decode_step_config(
    step_type: StepType,
    raw: dict[str, Any] | None,
    *,
    step_id: str | None = None,
) -> StepConfig:
    """Decode a raw config mapping into the typed model for step_type."""
    model = STEP_CONFIG_MODELS[step_type]
    try:
        return model.model_validate(raw or {})
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in e.errors()
        )
        raise StepConfigurationError(
            f"Invalid {step_type.value} config: {errors}", step_id=step_id
        ) from e


# =============================================================================
# Persistence Shapes
# =============================================================================


class ProcessingStepDefinition(BaseModel):
    """
    One authored processing step.

    Example:
        {
            "id": "fetch",
            "name": "Fetch users",
            "type": "api-call",
            "order": 0,
            "config": {"response_path": "data"},
            "children": [
                {"id": "active", "type": "Filter", "order": 0,
                 "config": {"conditions": [{"field": "active", "value": true}]}}
            ]
        }
    """

    id: str = Field(default_factory=_new_id)
    name: str = ""
    type: StepType
    order: int = 0
    enabled: bool = True
    config: dict[str, Any] = Field(default_factory=dict)
    parent_id: str | None = None
    children: list[ProcessingStepDefinition] = Field(default_factory=list)

    class Config:
        populate_by_name = True

    @field_validator("type", mode="before")
    @classmethod
    def _parse_type(cls, value: Any) -> StepType:
        try:
            return StepType.parse(value)
        except StepConfigurationError as e:
            raise ValueError(str(e)) from e

    @field_validator("config", mode="before")
    @classmethod
    def _parse_config(cls, value: Any) -> Any:
        if value is None or value == "":
            return {}
        if isinstance(value, (str, bytes)):
            return json.loads(value)
        return value


class PipelineDefinition(BaseModel):
    """A bound function reference plus a step forest and parameter configuration."""

    id: str = Field(default_factory=_new_id)
    name: str = ""
    description: str = ""
    collector_id: str = ""
    data_source_id: str = ""
    function_id: str = Field(..., description="Bound FunctionDefinition id")
    enabled: bool = True
    base_url: str | None = Field(default=None, description="Overrides the catalog base URL")
    static_parameters: dict[str, Any] = Field(default_factory=dict)
    parameter_mappings: dict[str, str] = Field(default_factory=dict)
    steps: list[ProcessingStepDefinition] = Field(default_factory=list)

    class Config:
        populate_by_name = True
