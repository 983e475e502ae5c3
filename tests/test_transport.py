"""
Tests for HttpFunctionInvoker and the request builders.

Tests cover:
- REST request assembly (path, query, header, body placement)
- Authentication headers
- GraphQL query building and response unwrapping
- SOAP envelopes
- Error mapping to InvocationError
"""

from unittest.mock import AsyncMock

import httpx
import pytest

from apiharvest.catalog import FunctionDefinition, FunctionParameter
from apiharvest.catalog.schemas import RequestBody
from apiharvest.errors import InvocationError
from apiharvest.execution import ParameterResolver
from apiharvest.transport import (
    FunctionCall,
    FunctionInvoker,
    HttpFunctionInvoker,
    build_graphql_query,
    build_soap_envelope,
)


def make_call(function, values=None, base_url="https://api.example.com", **kwargs):
    resolved = ParameterResolver().resolve(function, static=values or {})
    return FunctionCall(function=function, parameters=resolved, base_url=base_url, **kwargs)


def mock_client(response=None, **kwargs):
    client = AsyncMock()
    client.request = AsyncMock(return_value=response, **kwargs)
    return client


@pytest.fixture
def update_item():
    return FunctionDefinition(
        name="updateItem",
        method="put",
        path="/items/{itemId}",
        parameters=[
            FunctionParameter(name="itemId", location="path", required=True),
            FunctionParameter(name="dryRun", location="query"),
            FunctionParameter(name="X-Request-Id", location="header"),
            FunctionParameter(name="name", location="body"),
        ],
    )


@pytest.fixture
def get_user_gql():
    return FunctionDefinition(
        name="user",
        method="POST",
        parameters=[
            FunctionParameter(
                name="id", type="string", required=True, location="body", schema={"graphqlType": "ID!"}
            ),
            FunctionParameter(name="first", type="integer", location="body"),
        ],
        protocol={"protocol": "graphql", "operationType": "query", "fieldName": "user"},
    )


@pytest.fixture
def get_weather_soap():
    return FunctionDefinition(
        name="GetWeather",
        method="POST",
        parameters=[FunctionParameter(name="City", location="body", required=True)],
        protocol={
            "protocol": "soap",
            "soapAction": "http://example.com/GetWeather",
            "namespace": "http://example.com/weather",
        },
    )


# =============================================================================
# REST Tests
# =============================================================================


class TestRestInvocation:
    """Tests for REST calls."""

    def test_satisfies_protocol(self):
        assert isinstance(HttpFunctionInvoker(), FunctionInvoker)

    @pytest.mark.asyncio
    async def test_parameters_placed_by_location(self, update_item):
        client = mock_client(httpx.Response(200, json={"ok": True}))
        invoker = HttpFunctionInvoker(http_client=client)

        result = await invoker.invoke(
            make_call(
                update_item,
                {"itemId": "a/b", "dryRun": True, "X-Request-Id": "r1", "name": "Widget"},
            )
        )

        assert result == {"ok": True}
        kwargs = client.request.call_args.kwargs
        assert kwargs["method"] == "PUT"
        assert kwargs["url"] == "https://api.example.com/items/a%2Fb"
        assert kwargs["params"] == {"dryRun": True}
        assert kwargs["headers"]["X-Request-Id"] == "r1"
        assert kwargs["json"] == {"name": "Widget"}

    @pytest.mark.asyncio
    async def test_form_body(self):
        fn = FunctionDefinition(
            name="login",
            method="POST",
            path="/login",
            request_body=RequestBody(content_type="application/x-www-form-urlencoded"),
            parameters=[FunctionParameter(name="user", location="body")],
        )
        client = mock_client(httpx.Response(204))

        result = await HttpFunctionInvoker(http_client=client).invoke(make_call(fn, {"user": "ann"}))

        assert result is None
        assert client.request.call_args.kwargs["data"] == {"user": "ann"}

    @pytest.mark.asyncio
    async def test_invoker_base_url_fallback(self, update_item):
        client = mock_client(httpx.Response(200, text="plain"))
        invoker = HttpFunctionInvoker("https://fallback.example.com/", http_client=client)

        result = await invoker.invoke(make_call(update_item, {"itemId": "1"}, base_url=None))

        assert result == "plain"
        assert client.request.call_args.kwargs["url"] == "https://fallback.example.com/items/1"

    @pytest.mark.asyncio
    async def test_no_base_url(self, update_item):
        with pytest.raises(InvocationError, match="No base URL"):
            await HttpFunctionInvoker().invoke(make_call(update_item, {"itemId": "1"}, base_url=None))

    @pytest.mark.asyncio
    async def test_timeout_from_call(self, update_item):
        client = mock_client(httpx.Response(200, json={}))
        await HttpFunctionInvoker(http_client=client, timeout=30.0).invoke(
            make_call(update_item, {"itemId": "1"}, timeout=5.0)
        )
        assert client.request.call_args.kwargs["timeout"] == 5.0

    @pytest.mark.asyncio
    async def test_own_client_with_mock_transport(self, update_item, monkeypatch):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"id": "1"})

        real_client = httpx.AsyncClient
        monkeypatch.setattr(
            httpx, "AsyncClient", lambda **kw: real_client(transport=httpx.MockTransport(handler), **kw)
        )

        result = await HttpFunctionInvoker().invoke(make_call(update_item, {"itemId": "1"}))

        assert result == {"id": "1"}
        assert str(seen[0].url) == "https://api.example.com/items/1"


class TestAuth:
    """Tests for authentication headers."""

    @pytest.mark.parametrize(
        "auth, header, expected",
        [
            ({"api_key": "tok"}, "Authorization", "Bearer tok"),
            ({"x_api_key": "key"}, "X-API-Key", "key"),
            ({"basic_user": "ann", "basic_pass": "pw"}, "Authorization", "Basic YW5uOnB3"),
        ],
    )
    @pytest.mark.asyncio
    async def test_auth_headers(self, update_item, auth, header, expected):
        client = mock_client(httpx.Response(200, json={}))
        invoker = HttpFunctionInvoker(http_client=client, auth=auth, default_headers={"X-App": "h"})

        await invoker.invoke(make_call(update_item, {"itemId": "1"}))

        headers = client.request.call_args.kwargs["headers"]
        assert headers[header] == expected
        assert headers["X-App"] == "h"


class TestErrors:
    """Transport failures surface as InvocationError."""

    @pytest.mark.asyncio
    async def test_http_error_status(self, update_item):
        client = mock_client(httpx.Response(404, text="Item not found"))

        with pytest.raises(InvocationError) as exc_info:
            await HttpFunctionInvoker(http_client=client).invoke(make_call(update_item, {"itemId": "1"}))

        assert exc_info.value.status_code == 404
        assert exc_info.value.body == "Item not found"
        assert "404" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout(self, update_item):
        client = mock_client(side_effect=httpx.TimeoutException("Timeout"))

        with pytest.raises(InvocationError, match="timed out"):
            await HttpFunctionInvoker(http_client=client).invoke(make_call(update_item, {"itemId": "1"}))

    @pytest.mark.asyncio
    async def test_connect_error(self, update_item):
        client = mock_client(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(InvocationError, match="Connection failed"):
            await HttpFunctionInvoker(http_client=client).invoke(make_call(update_item, {"itemId": "1"}))


# =============================================================================
# GraphQL Tests
# =============================================================================


class TestGraphQL:
    """Tests for GraphQL calls."""

    def test_build_query(self, get_user_gql):
        query, variables = build_graphql_query(
            get_user_gql, {"id": "u1", "first": 3, "extra": 1}, "name email"
        )

        assert query == "query ($id: ID!, $first: integer) { user(id: $id, first: $first) { name email } }"
        assert variables == {"id": "u1", "first": 3}

    def test_build_query_without_arguments(self):
        fn = FunctionDefinition(name="me", protocol={"protocol": "graphql", "operationType": "query"})
        query, variables = build_graphql_query(fn, {})
        assert query == "query { me }"
        assert variables == {}

    @pytest.mark.asyncio
    async def test_unwraps_field(self, get_user_gql):
        client = mock_client(httpx.Response(200, json={"data": {"user": {"name": "Ann"}}}))

        result = await HttpFunctionInvoker(http_client=client).invoke(
            make_call(get_user_gql, {"id": "u1"}, base_url="https://api.example.com/graphql",
                      options={"selection": "name"})
        )

        assert result == {"name": "Ann"}
        kwargs = client.request.call_args.kwargs
        assert kwargs["method"] == "POST"
        assert kwargs["url"] == "https://api.example.com/graphql"
        assert kwargs["json"]["variables"] == {"id": "u1"}
        assert "user(id: $id) { name }" in kwargs["json"]["query"]

    @pytest.mark.asyncio
    async def test_explicit_query_option(self, get_user_gql):
        client = mock_client(httpx.Response(200, json={"data": {"user": None}}))

        await HttpFunctionInvoker(http_client=client).invoke(
            make_call(get_user_gql, {"id": "u1"}, options={"query": "query Q($id: ID!) { user(id: $id) { id } }"})
        )

        assert client.request.call_args.kwargs["json"]["query"].startswith("query Q")

    @pytest.mark.asyncio
    async def test_errors_without_data(self, get_user_gql):
        client = mock_client(httpx.Response(200, json={"errors": [{"message": "not allowed"}]}))

        with pytest.raises(InvocationError, match="not allowed"):
            await HttpFunctionInvoker(http_client=client).invoke(make_call(get_user_gql, {"id": "u1"}))

    @pytest.mark.asyncio
    async def test_partial_errors_keep_data(self, get_user_gql):
        payload = {"data": {"user": {"id": "u1"}}, "errors": [{"message": "field hidden"}]}
        client = mock_client(httpx.Response(200, json=payload))

        result = await HttpFunctionInvoker(http_client=client).invoke(make_call(get_user_gql, {"id": "u1"}))

        assert result == {"id": "u1"}


# =============================================================================
# SOAP Tests
# =============================================================================


class TestSoap:
    """Tests for SOAP calls."""

    def test_envelope(self, get_weather_soap):
        envelope = build_soap_envelope(get_weather_soap, {"City": "Fish & Chips", "Metric": True})

        assert '<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/"' in envelope
        assert 'xmlns:tns="http://example.com/weather"' in envelope
        assert "<tns:GetWeather><tns:City>Fish &amp; Chips</tns:City><tns:Metric>true</tns:Metric></tns:GetWeather>" in envelope

    @pytest.mark.asyncio
    async def test_posts_envelope_with_action(self, get_weather_soap):
        client = mock_client(httpx.Response(200, text="<soap:Envelope/>"))

        result = await HttpFunctionInvoker(http_client=client).invoke(
            make_call(get_weather_soap, {"City": "Oslo"}, base_url="https://soap.example.com/weather")
        )

        assert result == "<soap:Envelope/>"
        kwargs = client.request.call_args.kwargs
        assert kwargs["url"] == "https://soap.example.com/weather"
        assert kwargs["headers"]["SOAPAction"] == '"http://example.com/GetWeather"'
        assert kwargs["headers"]["Content-Type"] == "text/xml; charset=utf-8"
        assert b"<tns:City>Oslo</tns:City>" in kwargs["content"]
