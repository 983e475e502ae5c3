"""
Function Catalog.

The typed, owned collection of FunctionDefinitions belonging to one data
source. The catalog guarantees id uniqueness only; keeping pipelines from
pointing at removed functions is the owner's job.

Usage:
    result = OpenAPIImporter().parse(document)
    catalog = FunctionCatalog.from_import("petstore", result)

    fn = catalog.get(function_id)          # raises FunctionNotFoundError
    fn = catalog.find_by_name("getPet")    # None when absent
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from typing import TYPE_CHECKING, Any

from apiharvest.errors import DuplicateFunctionError, FunctionNotFoundError

from .schemas import FunctionDefinition

if TYPE_CHECKING:
    from apiharvest.importers.base import ImportResult

logger = logging.getLogger(__name__)


class FunctionCatalog:
    """Functions of one data source, keyed by id in insertion order."""

    def __init__(
        self,
        data_source_id: str,
        functions: Iterable[FunctionDefinition] = (),
        *,
        base_url: str | None = None,
        protocol: str = "rest",
        metadata: dict[str, Any] | None = None,
    ):
        self.data_source_id = data_source_id
        self.base_url = base_url
        self.protocol = protocol
        self.metadata: dict[str, Any] = metadata or {}
        self._functions: dict[str, FunctionDefinition] = {}
        self.extend(functions)

    @classmethod
    def from_import(
        cls,
        data_source_id: str,
        result: ImportResult,
        *,
        base_url: str | None = None,
    ) -> FunctionCatalog:
        """Build a catalog from an importer result."""
        metadata = dict(result.metadata)
        return cls(
            data_source_id,
            result.functions,
            base_url=base_url or metadata.get("base_url") or metadata.get("endpoint_url")
            or metadata.get("endpoint"),
            protocol=result.source_type,
            metadata=metadata,
        )

    # =========================================================================
    # Mutation
    # =========================================================================

    def add(self, function: FunctionDefinition) -> None:
        """Add a function; rejects a duplicate id."""
        if function.id in self._functions:
            raise DuplicateFunctionError(function.id, catalog_id=self.data_source_id)
        self._functions[function.id] = function

    def extend(self, functions: Iterable[FunctionDefinition]) -> None:
        for function in functions:
            self.add(function)

    def update(self, function: FunctionDefinition) -> FunctionDefinition:
        """Replace an existing function by id and return the previous entry."""
        previous = self.get(function.id)
        self._functions[function.id] = function
        logger.info(f"[catalog:{self.data_source_id}] Updated function {function.name}")
        return previous

    def remove(self, function_id: str) -> FunctionDefinition:
        """Remove and return a function."""
        try:
            function = self._functions.pop(function_id)
        except KeyError:
            raise FunctionNotFoundError(function_id, catalog_id=self.data_source_id) from None
        logger.info(f"[catalog:{self.data_source_id}] Removed function {function.name}")
        return function

    # =========================================================================
    # Lookup
    # =========================================================================

    def get(self, function_id: str) -> FunctionDefinition:
        try:
            return self._functions[function_id]
        except KeyError:
            raise FunctionNotFoundError(function_id, catalog_id=self.data_source_id) from None

    def find(self, function_id: str) -> FunctionDefinition | None:
        return self._functions.get(function_id)

    def find_by_name(self, name: str) -> FunctionDefinition | None:
        for function in self._functions.values():
            if function.name == name:
                return function
        return None

    def ids(self) -> list[str]:
        return list(self._functions)

    def __len__(self) -> int:
        return len(self._functions)

    def __iter__(self) -> Iterator[FunctionDefinition]:
        return iter(self._functions.values())

    def __contains__(self, function_id: object) -> bool:
        return function_id in self._functions

    # =========================================================================
    # Persistence
    # =========================================================================

    def to_dict(self) -> dict[str, Any]:
        return {
            "data_source_id": self.data_source_id,
            "base_url": self.base_url,
            "protocol": self.protocol,
            "metadata": self.metadata,
            "functions": [f.model_dump(mode="json", by_alias=True) for f in self],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FunctionCatalog:
        return cls(
            data["data_source_id"],
            (FunctionDefinition.model_validate(f) for f in data.get("functions", [])),
            base_url=data.get("base_url"),
            protocol=data.get("protocol", "rest"),
            metadata=data.get("metadata") or {},
        )

    def __repr__(self) -> str:
        return (
            f"FunctionCatalog(data_source_id={self.data_source_id!r}, "
            f"protocol={self.protocol!r}, functions={len(self)})"
        )
