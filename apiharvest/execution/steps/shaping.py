"""
Filter, Transform and FieldSelector steps.

All three work element-wise when their input is a list. Field paths use
the dotted/indexed syntax of apiharvest.execution.references and are
read relative to the item.
"""

from __future__ import annotations

import copy
import logging
import re
from collections.abc import Mapping
from typing import Any

from apiharvest.catalog.pipeline import (
    FieldSelectorConfig,
    FilterCondition,
    FilterConfig,
    TransformConfig,
)
from apiharvest.execution.references import UNRESOLVED, get_path, set_path

from .base import StepHandler, StepRun

logger = logging.getLogger(__name__)


# =============================================================================
# Filter
# =============================================================================


def _compare(op: str, actual: Any, expected: Any) -> bool:
    try:
        if op == "gt":
            return actual > expected
        if op == "gte":
            return actual >= expected
        if op == "lt":
            return actual < expected
        if op == "lte":
            return actual <= expected
    except TypeError:
        return False
    raise ValueError(f"Unknown comparison operator: {op}")


def matches(item: Any, condition: FilterCondition) -> bool:
    """Evaluate one condition against an item. Missing fields read as None."""
    raw = get_path(item, condition.field)
    op = condition.operator
    expected = condition.value

    if op == "exists":
        return raw is not UNRESOLVED and raw is not None
    if op == "not_exists":
        return raw is UNRESOLVED or raw is None

    actual = None if raw is UNRESOLVED else raw

    if op == "eq":
        return actual == expected
    if op == "ne":
        return actual != expected
    if op in ("gt", "gte", "lt", "lte"):
        return _compare(op, actual, expected)
    if op == "contains":
        if isinstance(actual, str):
            return isinstance(expected, str) and expected in actual
        if isinstance(actual, (list, tuple, set, Mapping)):
            return expected in actual
        return False
    if op in ("in", "not_in"):
        try:
            found = actual in expected
        except TypeError:
            found = False
        return found if op == "in" else not found
    if op == "regex":
        if actual is None:
            return False
        try:
            return re.search(str(expected), str(actual)) is not None
        except re.error as e:
            raise ValueError(f"Invalid regex for field '{condition.field}': {e}") from e

    raise ValueError(f"Unknown filter operator: {op}")


def item_passes(item: Any, config: FilterConfig) -> bool:
    if not config.conditions:
        return True
    results = (matches(item, c) for c in config.conditions)
    return all(results) if config.match == "all" else any(results)


class FilterHandler(StepHandler):
    """Keep list items matching the conditions; a single mapping is kept or becomes None."""

    async def run(self, value: Any, run: StepRun) -> Any:
        config: FilterConfig = run.config
        target = value
        if config.items_path:
            target = get_path(value, config.items_path)
            if target is UNRESOLVED:
                raise ValueError(f"Input has no value at '{config.items_path}'")

        if target is None:
            return None

        if isinstance(target, (list, tuple)):
            kept = [item for item in target if item_passes(item, config)]
            run.result.item_count = len(kept)
            run.result.details["dropped"] = len(target) - len(kept)
            logger.debug(f"[{run.label}] Kept {len(kept)}/{len(target)} items")
            return kept

        passed = item_passes(target, config)
        run.result.item_count = 1 if passed else 0
        return target if passed else None


# =============================================================================
# Transform
# =============================================================================


def transform_item(item: Any, config: TransformConfig) -> Any:
    """Apply mappings to one item; non-mapping items pass through."""
    if not isinstance(item, Mapping):
        return item

    output: dict[str, Any] = copy.deepcopy(dict(item)) if config.include_unmapped else {}
    for target, source in config.mappings.items():
        if isinstance(source, Mapping) and "value" in source:
            value = source["value"]
        elif isinstance(source, str):
            value = get_path(item, source)
            if value is UNRESOLVED:
                value = None
        else:
            value = source
        set_path(output, target, value)
    return output


class TransformHandler(StepHandler):
    """Reshape items through field mappings."""

    async def run(self, value: Any, run: StepRun) -> Any:
        config: TransformConfig = run.config
        if isinstance(value, (list, tuple)):
            run.result.item_count = len(value)
            return [transform_item(item, config) for item in value]
        return transform_item(value, config)


# =============================================================================
# FieldSelector
# =============================================================================


def select_fields(item: Any, fields: list[str], *, flatten: bool = False) -> Any:
    """
    Project fields out of one item.

    Nested paths keep their nesting ({"a": {"b": 1}}) unless flatten is
    set, which keys the output by the dotted path ({"a.b": 1}). Missing
    fields are omitted.
    """
    if not isinstance(item, Mapping):
        return item

    output: dict[str, Any] = {}
    for path in fields:
        value = get_path(item, path)
        if value is UNRESOLVED:
            continue
        if flatten:
            output[path] = value
        else:
            set_path(output, path, value)
    return output


class FieldSelectorHandler(StepHandler):
    """Keep only the configured fields."""

    async def run(self, value: Any, run: StepRun) -> Any:
        config: FieldSelectorConfig = run.config
        if isinstance(value, (list, tuple)):
            run.result.item_count = len(value)
            return [select_fields(item, config.fields, flatten=config.flatten) for item in value]
        return select_fields(value, config.fields, flatten=config.flatten)
