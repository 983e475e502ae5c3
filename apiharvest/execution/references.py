"""
Reference expressions and data paths.

A reference expression reads a value out of the execution scope:

    $.prev.id                  output of the previous step
    $.steps.fetch.items[0].id  output of the step with id "fetch"
    $.input.since              runtime parameter "since"
    $.item.name / $.index      current ForEach item and its position

Mapping values without a leading "$" are read relative to `$.prev`, so
"data.id" and "$.prev.data.id" are equivalent.

The same dotted/indexed path syntax addresses fields inside payload items
for Filter, Transform, FieldSelector and items_path settings. A missing
segment yields UNRESOLVED rather than raising.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

_TOKEN = re.compile(r"\[(-?\d+)\]|([^.\[\]]+)")


class _Unresolved:
    """Sentinel for a path that does not exist in the data."""

    _instance: _Unresolved | None = None

    def __new__(cls) -> _Unresolved:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNRESOLVED"


UNRESOLVED: Any = _Unresolved()


def parse_path(path: str) -> list[str | int]:
    """Split "a.b[0].c" into ["a", "b", 0, "c"]."""
    tokens: list[str | int] = []
    for match in _TOKEN.finditer(path):
        index, key = match.groups()
        tokens.append(int(index) if index is not None else key)
    return tokens


def _strip_root(path: str) -> str:
    path = path.strip()
    if path == "$":
        return ""
    if path.startswith("$."):
        return path[2:]
    if path.startswith("$["):
        return path[1:]
    return path


def get_path(data: Any, path: str | None, default: Any = UNRESOLVED) -> Any:
    """
    Read a value at a dotted/indexed path.

    An empty path or "$" returns data itself. Numeric keys also index
    lists ("items.0.id").
    """
    if not path:
        return data

    current = data
    for token in parse_path(_strip_root(path)):
        if isinstance(token, str) and isinstance(current, Mapping):
            if token not in current:
                return default
            current = current[token]
            continue

        if isinstance(current, (list, tuple)):
            if isinstance(token, str):
                if not token.lstrip("-").isdigit():
                    return default
                token = int(token)
            if not -len(current) <= token < len(current):
                return default
            current = current[token]
            continue

        return default

    return current


def set_path(target: dict[str, Any], path: str, value: Any) -> None:
    """Write value at a dotted path, creating intermediate objects."""
    keys = [str(t) for t in parse_path(_strip_root(path))]
    if not keys:
        raise ValueError("Cannot set an empty path")

    current = target
    for key in keys[:-1]:
        nested = current.get(key)
        if not isinstance(nested, dict):
            nested = {}
            current[key] = nested
        current = nested
    current[keys[-1]] = value


def is_reference(expression: Any) -> bool:
    """True for "$", "$.x" and "$[n]" expressions."""
    return isinstance(expression, str) and (
        expression.strip() == "$" or expression.startswith("$.") or expression.startswith("$[")
    )


def evaluate_reference(expression: str, scope: Mapping[str, Any]) -> Any:
    """
    Evaluate a mapping expression against the execution scope.

    Returns UNRESOLVED when any segment is missing.
    """
    if is_reference(expression):
        return get_path(scope, expression)
    return get_path(scope.get("prev"), expression)
