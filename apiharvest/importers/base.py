"""
Schema Importer base types.

All importers share one contract:

    parse(raw) -> ImportResult(functions, metadata, warnings)

Whole-document problems raise FormatError (cannot decode) or
UnsupportedSchemaError (recognised family, unsupported version or shape)
and never yield a partial result. Problems confined to one element
(an operation, a parameter, an argument, a message part) omit that
element and are reported in ImportResult.warnings.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from apiharvest.catalog.schemas import FunctionDefinition

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ImportWarning:
    """An element that was skipped during import, and why."""

    element: str
    message: str

    def __str__(self) -> str:
        return f"{self.element}: {self.message}"


@dataclass
class ImportResult:
    """Functions and metadata produced by one importer run."""

    source_type: str
    functions: list[FunctionDefinition] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    warnings: list[ImportWarning] = field(default_factory=list)

    @property
    def function_names(self) -> list[str]:
        return [f.name for f in self.functions]

    def get_function(self, name: str) -> FunctionDefinition | None:
        for function in self.functions:
            if function.name == name:
                return function
        return None

    def warn(self, element: str, message: str) -> None:
        """Record a skipped element."""
        self.warnings.append(ImportWarning(element=element, message=message))
        logger.warning(f"[{self.source_type}_importer] Skipped {element}: {message}")


class SchemaImporter(ABC):
    """
    Base class for schema importers.

    Subclasses set `source_type` and implement parse().
    """

    source_type: str = ""

    @abstractmethod
    def parse(self, raw: Any) -> ImportResult:
        """
        Parse a schema document.

        Raises:
            FormatError: The input cannot be decoded
            UnsupportedSchemaError: The input is not a supported version or shape
        """
        ...

    def _new_result(self) -> ImportResult:
        return ImportResult(source_type=self.source_type)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(source_type={self.source_type!r})"
