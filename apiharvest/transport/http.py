"""
Function invocation over HTTP.

The executor never talks to the network directly. ApiCall and Pagination
steps hand a FunctionCall to a FunctionInvoker; HttpFunctionInvoker is
the default implementation on top of httpx.

    REST     path/query/header parameters placed by location, body as JSON
             (or form data when the function declares a form body)
    GraphQL  POST {"query", "variables"} to the endpoint; returns data[field]
    SOAP     POST a SOAP 1.1 envelope with the SOAPAction header; returns text

Lifecycle:
    Pass a shared httpx.AsyncClient for connection pooling (the caller
    closes it); otherwise a client is created and closed per call.

    async with httpx.AsyncClient() as client:
        invoker = HttpFunctionInvoker("https://api.example.com", http_client=client)
        data = await invoker.invoke(call)
"""

from __future__ import annotations

import base64
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable
from urllib.parse import quote
from xml.sax.saxutils import escape, quoteattr

import httpx

from apiharvest.errors import InvocationError

if TYPE_CHECKING:
    from apiharvest.catalog.schemas import FunctionDefinition
    from apiharvest.execution.resolver import ResolvedParameters

logger = logging.getLogger(__name__)

SOAP_ENVELOPE_NS = "http://schemas.xmlsoap.org/soap/envelope/"

_FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


@dataclass(frozen=True)
class FunctionCall:
    """Everything needed to perform one call of a catalog function."""

    function: FunctionDefinition
    parameters: ResolvedParameters
    base_url: str | None = None
    timeout: float | None = None
    options: Mapping[str, Any] = field(default_factory=dict)


@runtime_checkable
class FunctionInvoker(Protocol):
    """Performs the physical call of a function."""

    async def invoke(self, call: FunctionCall) -> Any:
        """
        Call the function and return the decoded response payload.

        Raises:
            InvocationError: The call failed at the transport or HTTP level
        """
        ...


class HttpFunctionInvoker:
    """FunctionInvoker backed by httpx."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        auth: dict[str, str] | None = None,
        default_headers: dict[str, str] | None = None,
        timeout: float = 30.0,
    ):
        """
        Initialize the invoker.

        Args:
            base_url: Used when the call carries no base URL
            http_client: Optional shared HTTP client (caller manages lifecycle)
            auth: Authentication config:
                - api_key: Bearer token
                - x_api_key: X-API-Key header
                - basic_user/basic_pass: Basic auth
            default_headers: Headers to include in all requests
            timeout: Default request timeout in seconds
        """
        self._base_url = base_url
        self._shared_client = http_client
        self._auth = auth or {}
        self._default_headers = default_headers or {}
        self._timeout = timeout

    async def invoke(self, call: FunctionCall) -> Any:
        function = call.function
        base_url = call.base_url or self._base_url
        if not base_url:
            raise InvocationError(f"No base URL configured for function '{function.name}'")

        protocol = function.protocol_type
        if protocol == "graphql":
            request = self._build_graphql_request(call, base_url)
        elif protocol == "soap":
            request = self._build_soap_request(call, base_url)
        else:
            request = self._build_rest_request(call, base_url)

        timeout = call.timeout or self._timeout
        if self._shared_client is not None:
            client = self._shared_client
            close_after = False
        else:
            client = httpx.AsyncClient(timeout=timeout)
            close_after = True

        try:
            logger.info(f"[invoker:{function.name}] {request['method']} {request['url']}")
            response = await client.request(**request, timeout=timeout)
        except httpx.TimeoutException as e:
            logger.error(f"[invoker:{function.name}] Timeout after {timeout}s")
            raise InvocationError(f"Request timed out after {timeout}s") from e
        except httpx.ConnectError as e:
            logger.error(f"[invoker:{function.name}] Connection error: {e}")
            raise InvocationError(f"Connection failed: {e}") from e
        except httpx.HTTPError as e:
            logger.error(f"[invoker:{function.name}] Request failed: {e}")
            raise InvocationError(f"Request failed: {e}") from e
        finally:
            if close_after:
                await client.aclose()

        logger.info(f"[invoker:{function.name}] Response: {response.status_code}")

        if response.status_code >= 400:
            error_text = response.text[:500]
            logger.warning(f"[invoker:{function.name}] Error {response.status_code}: {error_text}")
            raise InvocationError(
                f"API error {response.status_code}: {error_text}",
                status_code=response.status_code,
                body=error_text,
            )

        if protocol == "soap":
            return response.text
        payload = _decode(response)
        if protocol == "graphql":
            return self._unwrap_graphql(function, payload)
        return payload

    # =========================================================================
    # Request builders
    # =========================================================================

    def _base_headers(self) -> dict[str, str]:
        headers = {**self._default_headers}
        self._add_auth_headers(headers)
        return headers

    def _add_auth_headers(self, headers: dict[str, str]) -> None:
        if "api_key" in self._auth:
            headers["Authorization"] = f"Bearer {self._auth['api_key']}"

        if "x_api_key" in self._auth:
            headers["X-API-Key"] = self._auth["x_api_key"]

        if "basic_user" in self._auth and "basic_pass" in self._auth:
            credentials = f"{self._auth['basic_user']}:{self._auth['basic_pass']}"
            encoded = base64.b64encode(credentials.encode()).decode()
            headers["Authorization"] = f"Basic {encoded}"

    def _build_rest_request(self, call: FunctionCall, base_url: str) -> dict[str, Any]:
        function = call.function
        grouped = call.parameters.by_location()

        path = function.path
        for name, value in grouped["path"].items():
            path = path.replace(f"{{{name}}}", quote(str(value), safe=""))

        if "{" in path:
            missing = re.findall(r"\{([^}]+)\}", path)
            logger.warning(f"[invoker:{function.name}] Missing path params: {missing}")

        headers = self._base_headers()
        headers.update({k: str(v) for k, v in grouped["header"].items()})

        request: dict[str, Any] = {
            "method": function.method.upper(),
            "url": f"{base_url.rstrip('/')}{path}",
            "params": grouped["query"] or None,
            "headers": headers,
        }

        body = grouped["body"]
        if body:
            content_type = function.request_body.content_type if function.request_body else ""
            if content_type in _FORM_CONTENT_TYPES:
                request["data"] = body
            else:
                request["json"] = body
        return request

    def _build_graphql_request(self, call: FunctionCall, base_url: str) -> dict[str, Any]:
        arguments = {**call.parameters.body, **call.parameters.query}
        query = call.options.get("query")
        if query:
            variables = arguments
        else:
            query, variables = build_graphql_query(
                call.function, arguments, call.options.get("selection")
            )

        headers = self._base_headers()
        headers.update({k: str(v) for k, v in call.parameters.header.items()})
        return {
            "method": "POST",
            "url": base_url,
            "json": {"query": query, "variables": variables},
            "headers": headers,
        }

    def _build_soap_request(self, call: FunctionCall, base_url: str) -> dict[str, Any]:
        function = call.function
        action = str(function.protocol.get("soapAction") or function.name)

        headers = self._base_headers()
        headers.update({k: str(v) for k, v in call.parameters.header.items()})
        headers["Content-Type"] = "text/xml; charset=utf-8"
        headers["SOAPAction"] = f'"{action}"'

        return {
            "method": "POST",
            "url": base_url,
            "content": build_soap_envelope(function, call.parameters.body).encode("utf-8"),
            "headers": headers,
        }

    def _unwrap_graphql(self, function: FunctionDefinition, payload: Any) -> Any:
        if not isinstance(payload, Mapping):
            return payload

        data = payload.get("data")
        errors = payload.get("errors")
        if errors and not data:
            messages = "; ".join(
                str(e.get("message", e)) if isinstance(e, Mapping) else str(e) for e in errors
            )
            raise InvocationError(f"GraphQL errors: {messages}", body=str(errors)[:500])
        if errors:
            logger.warning(f"[invoker:{function.name}] Partial GraphQL errors: {errors}")

        field_name = function.protocol.get("fieldName") or function.name
        if isinstance(data, Mapping) and field_name in data:
            return data[field_name]
        return data


# =============================================================================
# Helper Functions
# =============================================================================


def build_graphql_query(
    function: FunctionDefinition,
    arguments: Mapping[str, Any],
    selection: str | None = None,
) -> tuple[str, dict[str, Any]]:
    """
    Build a single-field GraphQL operation with variables.

    Example:
        query ($id: ID!) { pet(id: $id) { name } }
    """
    operation_type = function.protocol.get("operationType", "query")
    field_name = function.protocol.get("fieldName") or function.name

    declarations: list[str] = []
    field_args: list[str] = []
    variables: dict[str, Any] = {}

    for name, value in arguments.items():
        param = function.get_parameter(name)
        if param is None:
            logger.debug(f"[invoker:{function.name}] Ignoring undeclared GraphQL argument {name}")
            continue
        gql_type = (param.schema_ or {}).get("graphqlType") or (
            param.type + ("!" if param.required else "")
        )
        declarations.append(f"${name}: {gql_type}")
        field_args.append(f"{name}: ${name}")
        variables[name] = value

    header = f"{operation_type} ({', '.join(declarations)})" if declarations else operation_type
    call = f"{field_name}({', '.join(field_args)})" if field_args else field_name
    body = f"{call} {{ {selection} }}" if selection else call
    return f"{header} {{ {body} }}", variables


def build_soap_envelope(function: FunctionDefinition, arguments: Mapping[str, Any]) -> str:
    """Build a SOAP 1.1 request envelope for a WSDL operation."""
    namespace = function.protocol.get("namespace") or ""
    parts = "".join(
        f"<tns:{name}>{escape(_xml_text(value))}</tns:{name}>" for name, value in arguments.items()
    )
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        f'<soap:Envelope xmlns:soap="{SOAP_ENVELOPE_NS}" xmlns:tns={quoteattr(namespace)}>'
        "<soap:Body>"
        f"<tns:{function.name}>{parts}</tns:{function.name}>"
        "</soap:Body>"
        "</soap:Envelope>"
    )


def _xml_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
