"""
Schema Importers.

Each importer turns one kind of API description into FunctionDefinitions:

    - OpenAPIImporter: OpenAPI 3.x / Swagger 2.0 (JSON or YAML)
    - GraphQLImporter: GraphQL introspection (async, over HTTP)
    - WSDLImporter: WSDL 1.1 / SOAP

Usage:
    from apiharvest.importers import import_schema

    result = import_schema("openapi", document_text)
    catalog = FunctionCatalog.from_import("petstore", result)
"""

from __future__ import annotations

from typing import Any

from .base import ImportResult, ImportWarning, SchemaImporter
from .graphql import GraphQLImporter, unwrap_type
from .openapi import OpenAPIImporter, synthesize_operation_id
from .wsdl import WSDLImporter, map_xsd_type

_IMPORTERS: dict[str, type[SchemaImporter]] = {
    "openapi": OpenAPIImporter,
    "swagger": OpenAPIImporter,
    "graphql": GraphQLImporter,
    "wsdl": WSDLImporter,
    "soap": WSDLImporter,
}


def get_importer(source_type: str, **kwargs: Any) -> SchemaImporter:
    """Create the importer registered for a source type."""
    try:
        importer_cls = _IMPORTERS[source_type.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown source type: {source_type}. Available: {sorted(_IMPORTERS)}"
        ) from None
    return importer_cls(**kwargs)


def import_schema(source_type: str, raw: Any, **kwargs: Any) -> ImportResult:
    """Parse a document with the importer for source_type."""
    return get_importer(source_type, **kwargs).parse(raw)


__all__ = [
    "ImportResult",
    "ImportWarning",
    "SchemaImporter",
    "OpenAPIImporter",
    "GraphQLImporter",
    "WSDLImporter",
    "get_importer",
    "import_schema",
    "map_xsd_type",
    "synthesize_operation_id",
    "unwrap_type",
]
