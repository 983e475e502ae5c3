"""
OpenAPI / Swagger Importer.

Turns an OpenAPI 3.x or Swagger 2.0 document into one FunctionDefinition
per path + HTTP verb.

Usage:
    importer = OpenAPIImporter()
    result = importer.parse(document_text)     # JSON or YAML text, or a dict

    for fn in result.functions:
        print(fn.method, fn.path, [p.name for p in fn.parameters])

    result.metadata["base_url"]    # servers[0].url or scheme://host/basePath

Parsing rules:
    - Version comes from the `openapi` (3.x) or `swagger` (2.0) key
    - operationId falls back to lower(method) + path with "/" -> "_" and
      braces removed: GET /pets/{petId} -> get_pets_petId
    - Every {token} of the path is a required string path parameter, even
      when the document does not declare it
    - Path-item parameters are shared; operation parameters override them
    - Local $ref pointers are resolved; reference cycles are left as $ref
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from typing import Any

import yaml

from apiharvest.catalog.schemas import (
    FunctionDefinition,
    FunctionParameter,
    RequestBody,
    ResponseDescriptor,
    ResponseStatus,
    ValidationRules,
)
from apiharvest.errors import FormatError, UnsupportedSchemaError

from .base import ImportResult, SchemaImporter

logger = logging.getLogger(__name__)

HTTP_METHODS = ("get", "put", "post", "delete", "options", "head", "patch", "trace")

DEPRECATION_MESSAGE = "This operation is deprecated"

_PATH_TOKEN = re.compile(r"\{([^{}/]+)\}")

_LOCATIONS = {
    "path": "path",
    "query": "query",
    "header": "header",
    "body": "body",
    "formData": "body",
}


class OpenAPIImporter(SchemaImporter):
    """Importer for OpenAPI 3.x and Swagger 2.0 documents."""

    source_type = "openapi"

    def parse(self, raw: Any) -> ImportResult:
        document = load_document(raw)
        version = detect_version(document)
        is_v3 = version.startswith("3")

        paths = _expect(document, "paths", Mapping) or {}
        _expect(document, "info", Mapping)
        _expect(document, "tags", list)
        if is_v3:
            _expect(document, "servers", list)
            components = _expect(document, "components", Mapping) or {}
            _expect(components, "securitySchemes", Mapping, owner="components")
            _expect(components, "schemas", Mapping, owner="components")
        else:
            _expect(document, "securityDefinitions", Mapping)
            _expect(document, "definitions", Mapping)

        result = self._new_result()
        result.metadata = self._parse_metadata(document, version, is_v3)

        resolver = _RefResolver(document)
        context = _DocumentContext(
            is_v3=is_v3,
            security=document.get("security"),
            consumes=_first(document.get("consumes")),
            produces=_first(document.get("produces")),
        )

        for path, path_item in paths.items():
            if not isinstance(path_item, Mapping):
                result.warn(f"path {path}", "path item is not a mapping")
                continue

            shared = path_item.get("parameters") or []

            for key, operation in path_item.items():
                method = str(key).lower()
                if method not in HTTP_METHODS:
                    continue

                element = f"{method.upper()} {path}"
                if not isinstance(operation, Mapping):
                    result.warn(element, "operation is not a mapping")
                    continue

                try:
                    function = self._parse_operation(
                        str(path), method, operation, shared, resolver, context, result
                    )
                except (AttributeError, KeyError, TypeError, ValueError) as e:
                    result.warn(element, f"{type(e).__name__}: {e}")
                    continue

                result.functions.append(function)

        logger.info(
            f"[openapi_importer] Imported {len(result.functions)} operations from "
            f"'{result.metadata['title']}' (spec {version}, {len(result.warnings)} warnings)"
        )
        return result

    # =========================================================================
    # Document level
    # =========================================================================

    def _parse_metadata(
        self,
        document: Mapping[str, Any],
        version: str,
        is_v3: bool,
    ) -> dict[str, Any]:
        info = document.get("info") or {}
        if is_v3:
            components = document.get("components") or {}
            raw_schemes = components.get("securitySchemes") or {}
            schemas = components.get("schemas") or {}
        else:
            raw_schemes = document.get("securityDefinitions") or {}
            schemas = document.get("definitions") or {}

        security_schemes: dict[str, dict[str, Any]] = {}
        for name, scheme in raw_schemes.items():
            if not isinstance(scheme, Mapping):
                continue
            security_schemes[name] = {
                k: scheme[k]
                for k in ("type", "scheme", "in", "name", "bearerFormat", "flow", "flows")
                if k in scheme
            }

        return {
            "title": info.get("title") or "API",
            "version": str(info.get("version") or "1.0.0"),
            "description": info.get("description") or "",
            "spec_version": version,
            "base_url": _base_url(document, is_v3),
            "security_schemes": security_schemes,
            "components": dict(schemas),
            "tags": [t.get("name") for t in document.get("tags") or [] if isinstance(t, Mapping)],
        }

    # =========================================================================
    # Operation level
    # =========================================================================

    def _parse_operation(
        self,
        path: str,
        method: str,
        operation: Mapping[str, Any],
        shared_parameters: list[Any],
        resolver: _RefResolver,
        context: _DocumentContext,
        result: ImportResult,
    ) -> FunctionDefinition:
        """
        Build one FunctionDefinition from an operation object.

        An operation without its own `security` inherits the document-level
        requirement, so a top-level `security: []` also turns auth off for
        it. Only an explicit empty list disables auth; a missing one keeps
        `requires_auth` true.
        """
        element = f"{method.upper()} {path}"
        name = operation.get("operationId") or synthesize_operation_id(method, path)

        # Operation parameters override path-item parameters of the same name+location
        merged: dict[tuple[str, str], Mapping[str, Any]] = {}
        for raw in [*shared_parameters, *(operation.get("parameters") or [])]:
            param = resolver.resolve(raw)
            if not isinstance(param, Mapping) or "name" not in param:
                result.warn(f"{element} parameter", "parameter without a name")
                continue
            merged[(str(param["name"]), str(param.get("in", "query")))] = param

        parameters: list[FunctionParameter] = []
        request_body: RequestBody | None = None

        for (param_name, location), param in merged.items():
            if location == "body" and not context.is_v3:
                request_body = RequestBody(
                    content_type=_first(operation.get("consumes")) or context.consumes
                    or "application/json",
                    required=bool(param.get("required", False)),
                    description=param.get("description") or "",
                    schema=resolver.resolve(param.get("schema")),
                )
                continue

            parsed = self._parse_parameter(param, location, context.is_v3, resolver)
            if parsed is None:
                result.warn(f"{element} parameter {param_name}", f"unsupported location '{location}'")
                continue
            parameters.append(parsed)

        declared_path = {p.name for p in parameters if p.location == "path"}
        for token in _PATH_TOKEN.findall(path):
            if token not in declared_path:
                parameters.append(
                    FunctionParameter(
                        name=token,
                        type="string",
                        location="path",
                        required=True,
                        description=f"Path parameter: {token}",
                    )
                )
                declared_path.add(token)

        if context.is_v3 and operation.get("requestBody") is not None:
            request_body = self._parse_request_body(resolver.resolve(operation["requestBody"]), resolver)

        security = operation.get("security", context.security)
        scopes: list[str] = []
        for requirement in security or []:
            for scheme_scopes in (requirement or {}).values():
                for scope in scheme_scopes or []:
                    if scope not in scopes:
                        scopes.append(scope)

        deprecated = bool(operation.get("deprecated", False))

        return FunctionDefinition(
            name=str(name),
            description=operation.get("summary") or operation.get("description") or "",
            method=method.upper(),
            path=path,
            parameters=parameters,
            request_body=request_body,
            response=self._parse_responses(operation, resolver, context),
            requires_auth=not (isinstance(security, list) and len(security) == 0),
            scopes=scopes,
            deprecated=deprecated,
            deprecation_message=DEPRECATION_MESSAGE if deprecated else None,
            tags=[str(t) for t in operation.get("tags") or []],
        )

    def _parse_parameter(
        self,
        param: Mapping[str, Any],
        location: str,
        is_v3: bool,
        resolver: _RefResolver,
    ) -> FunctionParameter | None:
        target = _LOCATIONS.get(location)
        if target is None:
            return None

        # 3.x keeps type information under `schema`, 2.0 on the parameter itself
        source = resolver.resolve(param.get("schema") or {}) if is_v3 else param
        if not isinstance(source, Mapping):
            source = {}

        return FunctionParameter(
            name=str(param["name"]),
            type=_schema_type(source),
            location=target,
            required=True if target == "path" else bool(param.get("required", False)),
            default=source.get("default"),
            description=param.get("description") or "",
            validation=ValidationRules(
                pattern=source.get("pattern"),
                minimum=source.get("minimum"),
                maximum=source.get("maximum"),
                min_length=source.get("minLength"),
                max_length=source.get("maxLength"),
                allowed_values=source.get("enum"),
            ),
            schema=dict(source) if is_v3 and source else None,
        )

    def _parse_request_body(
        self,
        body: Mapping[str, Any],
        resolver: _RefResolver,
    ) -> RequestBody:
        content = body.get("content") or {}
        content_type, media = _pick_content(content)
        return RequestBody(
            content_type=content_type or "application/json",
            required=bool(body.get("required", False)),
            description=body.get("description") or "",
            schema=resolver.resolve(media.get("schema")) if media else None,
        )

    def _parse_responses(
        self,
        operation: Mapping[str, Any],
        resolver: _RefResolver,
        context: _DocumentContext,
    ) -> ResponseDescriptor:
        descriptor = ResponseDescriptor(
            expected_format=_first(operation.get("produces")) or context.produces
            or "application/json",
        )

        for status, raw in (operation.get("responses") or {}).items():
            response = resolver.resolve(raw)
            if not isinstance(response, Mapping):
                continue

            content_type: str | None = None
            if context.is_v3:
                content_type, media = _pick_content(response.get("content") or {})
                schema = resolver.resolve(media.get("schema")) if media else None
            else:
                schema = resolver.resolve(response.get("schema"))

            status = str(status)
            descriptor.status_codes[status] = ResponseStatus(
                description=response.get("description") or "",
                schema=schema,
            )

            if descriptor.schema_ is None and status.startswith("2") and schema is not None:
                descriptor.schema_ = schema
                if content_type:
                    descriptor.expected_format = content_type

        return descriptor


# =============================================================================
# Helper Functions
# =============================================================================


class _DocumentContext:
    """Document-wide defaults that operations inherit."""

    __slots__ = ("is_v3", "security", "consumes", "produces")

    def __init__(
        self,
        *,
        is_v3: bool,
        security: Any,
        consumes: str | None,
        produces: str | None,
    ):
        self.is_v3 = is_v3
        self.security = security
        self.consumes = consumes
        self.produces = produces


class _RefResolver:
    """
    Local $ref resolver for OpenAPI documents.

    Handles pointers like:
    - #/components/schemas/Pet
    - #/definitions/Pet
    - #/components/parameters/limit

    A pointer that is already being resolved further up the stack is left
    as {"$ref": ...}, so self-referencing schemas terminate.
    """

    def __init__(self, document: Mapping[str, Any]):
        self._document = document
        self._cache: dict[str, Any] = {}
        self._resolving: set[str] = set()

    def resolve(self, obj: Any) -> Any:
        """Resolve $ref in an object."""
        if isinstance(obj, list):
            return [self.resolve(v) for v in obj]

        if not isinstance(obj, Mapping):
            return obj

        if "$ref" not in obj:
            return {k: self.resolve(v) for k, v in obj.items()}

        ref = obj["$ref"]
        if not isinstance(ref, str) or not ref.startswith("#/"):
            logger.warning(f"[ref_resolver] Unsupported $ref: {ref}")
            return dict(obj)

        if ref in self._cache:
            return self._cache[ref]

        if ref in self._resolving:
            return {"$ref": ref}

        target = self._lookup(ref)
        if target is None:
            logger.warning(f"[ref_resolver] Could not resolve: {ref}")
            return dict(obj)

        self._resolving.add(ref)
        try:
            resolved = self.resolve(target)
        finally:
            self._resolving.discard(ref)

        self._cache[ref] = resolved
        return resolved

    def _lookup(self, ref: str) -> Any:
        current: Any = self._document
        for part in ref[2:].split("/"):
            part = part.replace("~1", "/").replace("~0", "~")
            if isinstance(current, Mapping) and part in current:
                current = current[part]
            else:
                return None
        return current


def load_document(raw: Any) -> dict[str, Any]:
    """Decode JSON or YAML text (or accept a mapping) into a document dict."""
    if isinstance(raw, Mapping):
        return dict(raw)

    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FormatError(f"Document is not UTF-8 text: {e}") from e

    if not isinstance(raw, str):
        raise FormatError(f"Unsupported document input: {type(raw).__name__}")

    text = raw.strip()
    if not text:
        raise FormatError("Document is empty")

    try:
        document = json.loads(text)
    except json.JSONDecodeError:
        try:
            document = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise FormatError(f"Document is neither valid JSON nor YAML: {e}", fragment=text[:200]) from e

    if not isinstance(document, dict):
        raise FormatError("Document root must be an object", fragment=text[:200])

    return document


def detect_version(document: Mapping[str, Any]) -> str:
    """Return the declared version, or raise UnsupportedSchemaError."""
    if "openapi" in document:
        version = str(document["openapi"])
        if version.startswith("3"):
            return version
        raise UnsupportedSchemaError(f"Unsupported OpenAPI version: {version}", version=version)

    if "swagger" in document:
        version = str(document["swagger"])
        if version.startswith("2"):
            return version
        raise UnsupportedSchemaError(f"Unsupported Swagger version: {version}", version=version)

    raise UnsupportedSchemaError("Document declares neither 'openapi' nor 'swagger'")


def synthesize_operation_id(method: str, path: str) -> str:
    """
    Build an operation id from method and path.

    Examples:
        GET /pets -> get_pets
        GET /pets/{petId} -> get_pets_petId
    """
    return method.lower() + path.replace("/", "_").replace("{", "").replace("}", "")


def _expect(
    container: Mapping[str, Any], key: str, kind: type, owner: str | None = None
) -> Any:
    """Return container[key] when absent or of `kind`, else raise FormatError."""
    value = container.get(key)
    if value is None or isinstance(value, kind):
        return value
    label = f"{owner}.{key}" if owner else key
    noun = "a mapping" if kind is Mapping else f"a {kind.__name__}"
    raise FormatError(f"'{label}' must be {noun}", fragment=value)


def _base_url(document: Mapping[str, Any], is_v3: bool) -> str | None:
    if is_v3:
        servers = document.get("servers") or []
        if not servers or not isinstance(servers[0], Mapping):
            return None
        url = servers[0].get("url")
        if not url:
            return None
        url = str(url)
        variables = servers[0].get("variables")
        if not isinstance(variables, Mapping):
            return url
        for var, variable in variables.items():
            if isinstance(variable, Mapping) and "default" in variable:
                url = url.replace(f"{{{var}}}", str(variable["default"]))
        return url

    host = document.get("host")
    if not host:
        return None
    scheme = _first(document.get("schemes")) or "https"
    return f"{scheme}://{host}{document.get('basePath') or ''}"


def _schema_type(schema: Mapping[str, Any]) -> str:
    declared = schema.get("type")
    if isinstance(declared, list):
        declared = next((t for t in declared if t != "null"), None)
    if declared:
        return str(declared)
    if "properties" in schema:
        return "object"
    if "items" in schema:
        return "array"
    return "string"


def _pick_content(content: Mapping[str, Any]) -> tuple[str | None, Mapping[str, Any] | None]:
    """Prefer application/json, else the first declared content type."""
    if not content:
        return None, None
    if "application/json" in content:
        return "application/json", content["application/json"] or {}
    content_type = next(iter(content))
    return content_type, content[content_type] or {}


def _first(values: Any) -> str | None:
    if isinstance(values, list) and values:
        return str(values[0])
    return None
