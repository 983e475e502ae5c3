"""
GraphQL Importer.

Introspects a GraphQL endpoint and emits one FunctionDefinition per field
of the query, mutation and subscription root types.

Usage:
    importer = GraphQLImporter(headers={"Authorization": "Bearer ..."})
    result = await importer.import_endpoint("https://api.example.com/graphql")

    # Or from an introspection result you already have
    result = importer.parse(introspection_json)

Type unwrapping:
    NON_NULL is transparent, LIST renders as [T]:

        NON_NULL(LIST(NON_NULL(String)))  ->  "[String]", required=True
        LIST(Int)                          ->  "[Int]",    required=False

    Wrapper chains longer than max_type_depth, or wrappers without an
    ofType, drop the affected argument or field with a warning.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

import httpx

from apiharvest.catalog.schemas import FunctionDefinition, FunctionParameter, ResponseDescriptor
from apiharvest.config import get_settings
from apiharvest.errors import FormatError, IntrospectionError

from .base import ImportResult, SchemaImporter

logger = logging.getLogger(__name__)

OPERATION_TYPES = ("query", "mutation", "subscription")

NAMED_KINDS = frozenset({"SCALAR", "OBJECT", "INTERFACE", "UNION", "ENUM", "INPUT_OBJECT"})

INTROSPECTION_QUERY = """
query IntrospectionQuery {
  __schema {
    queryType { name }
    mutationType { name }
    subscriptionType { name }
    types { ...FullType }
    directives {
      name
      description
      locations
      args { ...InputValue }
    }
  }
}

fragment FullType on __Type {
  kind
  name
  description
  fields(includeDeprecated: true) {
    name
    description
    args { ...InputValue }
    type { ...TypeRef }
    isDeprecated
    deprecationReason
  }
  inputFields { ...InputValue }
  interfaces { ...TypeRef }
  enumValues(includeDeprecated: true) {
    name
    description
    isDeprecated
    deprecationReason
  }
  possibleTypes { ...TypeRef }
}

fragment InputValue on __InputValue {
  name
  description
  type { ...TypeRef }
  defaultValue
}

fragment TypeRef on __Type {
  kind
  name
  ofType {
    kind
    name
    ofType {
      kind
      name
      ofType {
        kind
        name
        ofType {
          kind
          name
          ofType {
            kind
            name
            ofType {
              kind
              name
              ofType {
                kind
                name
              }
            }
          }
        }
      }
    }
  }
}
"""


class TypeUnwrapError(ValueError):
    """A type reference chain is malformed or too deep."""


def unwrap_type(type_ref: Any, max_depth: int = 32) -> str:
    """
    Flatten a NON_NULL/LIST wrapper chain into a type name.

    Raises:
        TypeUnwrapError: More than max_depth wrappers, or a wrapper
            without an ofType
    """
    list_depth = 0
    current = type_ref

    for _ in range(max_depth + 1):
        if not isinstance(current, Mapping):
            raise TypeUnwrapError("type reference is not an object")

        kind = current.get("kind")
        if kind in ("NON_NULL", "LIST"):
            if kind == "LIST":
                list_depth += 1
            current = current.get("ofType")
            if current is None:
                raise TypeUnwrapError(f"{kind} wrapper without ofType")
            continue

        name = (current.get("name") if kind in NAMED_KINDS else None) or "Unknown"
        return "[" * list_depth + name + "]" * list_depth

    raise TypeUnwrapError(f"type wrapper chain exceeds {max_depth} levels")


def is_non_null(type_ref: Any) -> bool:
    """True when the outermost wrapper is NON_NULL."""
    return isinstance(type_ref, Mapping) and type_ref.get("kind") == "NON_NULL"


class GraphQLImporter(SchemaImporter):
    """
    Importer for GraphQL endpoints.

    HTTP client lifecycle follows the usual pattern: pass a shared
    httpx.AsyncClient (caller closes it), or let the importer create and
    close one per introspection.
    """

    source_type = "graphql"

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        *,
        timeout: float | None = None,
        headers: dict[str, str] | None = None,
        max_type_depth: int | None = None,
    ):
        settings = get_settings()
        self._shared_client = http_client
        self._timeout = timeout if timeout is not None else settings.http_timeout
        self._headers = headers or {}
        self._max_type_depth = max_type_depth or settings.graphql_max_type_depth

    async def import_endpoint(self, endpoint: str) -> ImportResult:
        """Introspect an endpoint and parse the result."""
        document = await self.introspect(endpoint)
        result = self.parse(document)
        result.metadata["endpoint"] = endpoint
        return result

    async def introspect(self, endpoint: str) -> dict[str, Any]:
        """
        POST the introspection query to an endpoint.

        Raises:
            IntrospectionError: Transport failure or non-success status
            FormatError: The response body is not JSON
        """
        if self._shared_client is not None:
            client = self._shared_client
            close_after = False
        else:
            client = httpx.AsyncClient(timeout=self._timeout)
            close_after = True

        try:
            logger.info(f"[graphql_importer] Introspecting {endpoint}")
            response = await client.post(
                endpoint,
                json={"query": INTROSPECTION_QUERY, "operationName": "IntrospectionQuery"},
                headers={"Content-Type": "application/json", **self._headers},
            )
        except httpx.TimeoutException as e:
            logger.error(f"[graphql_importer] Timeout after {self._timeout}s: {endpoint}")
            raise IntrospectionError(
                f"Introspection timed out after {self._timeout}s", endpoint=endpoint
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"[graphql_importer] Request to {endpoint} failed: {e}")
            raise IntrospectionError(f"Introspection request failed: {e}", endpoint=endpoint) from e
        finally:
            if close_after:
                await client.aclose()

        if not response.is_success:
            logger.warning(
                f"[graphql_importer] Introspection of {endpoint} returned {response.status_code}"
            )
            raise IntrospectionError(
                f"GraphQL introspection failed with status {response.status_code}",
                endpoint=endpoint,
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise FormatError(
                f"Introspection response is not JSON: {e}", fragment=response.text[:200]
            ) from e

    def parse(self, raw: Any) -> ImportResult:
        schema = self._extract_schema(raw)
        result = self._new_result()

        types: dict[str, Mapping[str, Any]] = {}
        for type_def in schema.get("types") or []:
            if isinstance(type_def, Mapping) and type_def.get("name"):
                types[str(type_def["name"])] = type_def

        root_names: dict[str, str | None] = {}
        for operation_type in OPERATION_TYPES:
            root = schema.get(f"{operation_type}Type")
            root_name = root.get("name") if isinstance(root, Mapping) else None
            root_names[operation_type] = root_name
            if not root_name:
                continue

            root_type = types.get(root_name)
            if root_type is None:
                result.warn(f"{operation_type} type {root_name}", "not present in schema types")
                continue

            for field in root_type.get("fields") or []:
                function = self._parse_field(field, operation_type, result)
                if function is not None:
                    result.functions.append(function)

        result.metadata = {
            "query_type": root_names["query"],
            "mutation_type": root_names["mutation"],
            "subscription_type": root_names["subscription"],
            "types": {
                name: {"kind": t.get("kind"), "description": t.get("description")}
                for name, t in types.items()
                if not name.startswith("__")
            },
        }

        logger.info(
            f"[graphql_importer] Imported {len(result.functions)} operations "
            f"({len(result.warnings)} warnings)"
        )
        return result

    def _extract_schema(self, raw: Any) -> Mapping[str, Any]:
        if isinstance(raw, (str, bytes)):
            try:
                raw = json.loads(raw)
            except ValueError as e:
                raise FormatError(f"Introspection result is not JSON: {e}") from e

        if not isinstance(raw, Mapping):
            raise FormatError("Introspection result must be an object")

        data = raw.get("data", raw)
        if data is None and raw.get("errors"):
            messages = "; ".join(
                str(err.get("message", err)) if isinstance(err, Mapping) else str(err)
                for err in raw["errors"]
            )
            raise IntrospectionError(f"Introspection returned errors: {messages}")

        schema = data.get("__schema") if isinstance(data, Mapping) else None
        if not isinstance(schema, Mapping):
            raise FormatError("Introspection result has no __schema", fragment=str(raw)[:200])
        return schema

    def _parse_field(
        self,
        field: Any,
        operation_type: str,
        result: ImportResult,
    ) -> FunctionDefinition | None:
        if not isinstance(field, Mapping) or not field.get("name"):
            result.warn(f"{operation_type} field", "field without a name")
            return None

        name = str(field["name"])
        element = f"{operation_type} {name}"

        try:
            return_type = unwrap_type(field.get("type"), self._max_type_depth)
        except TypeUnwrapError as e:
            result.warn(element, f"return type: {e}")
            return None

        parameters: list[FunctionParameter] = []
        for arg in field.get("args") or []:
            parameter = self._parse_argument(arg, element, result)
            if parameter is not None:
                parameters.append(parameter)

        deprecated = bool(field.get("isDeprecated", False))

        return FunctionDefinition(
            name=name,
            description=field.get("description") or f"GraphQL {operation_type}: {name}",
            method="POST",
            path="/graphql",
            parameters=parameters,
            response=ResponseDescriptor(expected_format="application/json"),
            requires_auth=True,
            deprecated=deprecated,
            deprecation_message=field.get("deprecationReason") if deprecated else None,
            protocol={
                "protocol": "graphql",
                "operationType": operation_type,
                "fieldName": name,
                "returnType": return_type,
            },
        )

    def _parse_argument(
        self,
        arg: Any,
        element: str,
        result: ImportResult,
    ) -> FunctionParameter | None:
        if not isinstance(arg, Mapping) or not arg.get("name"):
            result.warn(f"{element} argument", "argument without a name")
            return None

        name = str(arg["name"])
        type_ref = arg.get("type")
        try:
            type_name = unwrap_type(type_ref, self._max_type_depth) if type_ref else "string"
        except TypeUnwrapError as e:
            result.warn(f"{element} argument {name}", str(e))
            return None

        return FunctionParameter(
            name=name,
            type=type_name,
            location="body",
            required=is_non_null(type_ref),
            default=arg.get("defaultValue"),
            description=arg.get("description") or "",
            schema={"graphqlType": _render_type(type_ref, self._max_type_depth)} if type_ref else None,
        )


def _render_type(type_ref: Mapping[str, Any], max_depth: int) -> str:
    """GraphQL SDL notation (e.g. [String!]!), used for variable declarations."""
    suffix: list[str] = []
    prefix = ""
    current: Any = type_ref
    for _ in range(max_depth + 1):
        kind = current.get("kind")
        if kind == "NON_NULL":
            suffix.insert(0, "!")
        elif kind == "LIST":
            prefix += "["
            suffix.insert(0, "]")
        else:
            return prefix + str(current.get("name") or "String") + "".join(suffix)
        current = current.get("ofType")
    raise TypeUnwrapError(f"type wrapper chain exceeds {max_depth} levels")
