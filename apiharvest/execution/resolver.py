"""
Parameter Resolver.

Merges the layers of parameter configuration into the concrete values of
one function call. Precedence, highest wins:

    runtime override  >  mapped value  >  static parameter  >  declared default

Example:
    resolver = ParameterResolver()
    resolved = resolver.resolve(
        function,
        static={"limit": 50},
        mappings={"id": "$.prev.id"},
        scope={"prev": {"id": "abc"}},
        overrides={"limit": 10},
    )
    resolved.values      # {"limit": 10, "id": "abc"}
    resolved.query       # {"limit": 10}
    resolved.path        # {"id": "abc"}

Mappings are evaluated now, against the scope passed in. Names the
function does not declare are kept and travel in the body.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from apiharvest.catalog.schemas import PARAMETER_LOCATIONS, FunctionDefinition
from apiharvest.errors import MissingParameterError

from .references import UNRESOLVED, evaluate_reference

logger = logging.getLogger(__name__)


class ParameterSource(str, Enum):
    """Which layer supplied a value."""

    DEFAULT = "default"
    STATIC = "static"
    MAPPING = "mapping"
    OVERRIDE = "override"


@dataclass
class ResolvedParameters:
    """Concrete parameter values for one call, addressable by location."""

    function: FunctionDefinition
    values: dict[str, Any] = field(default_factory=dict)
    sources: dict[str, ParameterSource] = field(default_factory=dict)
    deferred: list[str] = field(default_factory=list)
    violations: dict[str, list[str]] = field(default_factory=dict)
    placement: dict[str, str] = field(default_factory=dict)

    def location_of(self, name: str) -> str:
        """Declared location; undeclared names use `placement`, else the body."""
        param = self.function.get_parameter(name)
        if param is not None:
            return param.location
        return self.placement.get(name, "body")

    def by_location(self) -> dict[str, dict[str, Any]]:
        grouped: dict[str, dict[str, Any]] = {loc: {} for loc in PARAMETER_LOCATIONS}
        for name, value in self.values.items():
            grouped[self.location_of(name)][name] = value
        return grouped

    @property
    def path(self) -> dict[str, Any]:
        return self.by_location()["path"]

    @property
    def query(self) -> dict[str, Any]:
        return self.by_location()["query"]

    @property
    def header(self) -> dict[str, Any]:
        return self.by_location()["header"]

    @property
    def body(self) -> dict[str, Any]:
        return self.by_location()["body"]

    def to_dict(self) -> dict[str, Any]:
        return {
            "values": dict(self.values),
            "by_location": self.by_location(),
            "sources": {k: v.value for k, v in self.sources.items()},
            "deferred": list(self.deferred),
            "violations": dict(self.violations),
        }


class ParameterResolver:
    """Stateless; one instance can serve any number of concurrent executions."""

    def resolve(
        self,
        function: FunctionDefinition,
        *,
        static: Mapping[str, Any] | None = None,
        mappings: Mapping[str, str] | None = None,
        scope: Mapping[str, Any] | None = None,
        overrides: Mapping[str, Any] | None = None,
        defer_unresolved: bool = False,
    ) -> ResolvedParameters:
        """
        Resolve call parameters for a function.

        Layers apply lowest first: defaults, static, mappings, overrides.
        A None value in any layer leaves the lower layers in place.

        Args:
            function: Target function (parameter declarations)
            static: Literal values from configuration
            mappings: name -> reference expression
            scope: Data the mappings are evaluated against
            overrides: Caller-supplied runtime values
            defer_unresolved: Report required parameters whose mapping cannot
                be evaluated yet in `deferred` instead of failing

        Raises:
            MissingParameterError: A required parameter has no value
        """
        resolved = ResolvedParameters(function=function)
        values = resolved.values
        sources = resolved.sources

        for param in function.parameters:
            if param.default is not None:
                values[param.name] = param.default
                sources[param.name] = ParameterSource.DEFAULT

        for name, value in (static or {}).items():
            if value is None:
                continue
            values[name] = value
            sources[name] = ParameterSource.STATIC

        pending: set[str] = set()
        for name, expression in (mappings or {}).items():
            value = evaluate_reference(expression, scope or {})
            if value is UNRESOLVED:
                pending.add(name)
                logger.debug(f"[resolver] Mapping {name}={expression} did not resolve")
                continue
            if value is None:
                continue
            values[name] = value
            sources[name] = ParameterSource.MAPPING

        for name, value in (overrides or {}).items():
            if value is None:
                continue
            values[name] = value
            sources[name] = ParameterSource.OVERRIDE

        for param in function.parameters:
            if not param.required or param.name in values:
                continue
            if defer_unresolved and param.name in pending:
                resolved.deferred.append(param.name)
                continue
            raise MissingParameterError(param.name, function.name)

        for name, value in values.items():
            param = function.get_parameter(name)
            if param is None:
                continue
            problems = param.validation.check(value)
            if problems:
                resolved.violations[name] = problems
                logger.warning(
                    f"[resolver] {function.name}.{name} violates declared rules: {'; '.join(problems)}"
                )

        return resolved
