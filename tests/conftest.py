"""
Pytest configuration and fixtures for apiharvest tests.
"""

import sys
from pathlib import Path

import pytest

# Add the repository root to path for imports
# This allows `from apiharvest.catalog import ...` to work
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from apiharvest.config import reset_settings  # noqa: E402
from apiharvest.observability import reset_metrics  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_globals():
    """Every test starts with default settings and empty metrics."""
    reset_settings()
    reset_metrics()
    yield
    reset_settings()
    reset_metrics()


# =============================================================================
# OpenAPI documents
# =============================================================================


@pytest.fixture
def petstore_v3():
    """OpenAPI 3.0 document with refs, shared parameters and security."""
    return {
        "openapi": "3.0.3",
        "info": {"title": "Petstore", "version": "1.2.0", "description": "Pets"},
        "servers": [
            {
                "url": "https://{region}.petstore.example.com/v1",
                "variables": {"region": {"default": "eu"}},
            }
        ],
        "security": [{"oauth": ["pets:read"]}],
        "tags": [{"name": "pets"}],
        "paths": {
            "/pets": {
                "get": {
                    "operationId": "listPets",
                    "summary": "List pets",
                    "tags": ["pets"],
                    "parameters": [
                        {"$ref": "#/components/parameters/limit"},
                        {
                            "name": "status",
                            "in": "query",
                            "schema": {"type": "string", "enum": ["available", "sold"]},
                        },
                    ],
                    "responses": {
                        "200": {
                            "description": "A list of pets",
                            "content": {
                                "application/json": {
                                    "schema": {
                                        "type": "array",
                                        "items": {"$ref": "#/components/schemas/Pet"},
                                    }
                                }
                            },
                        },
                        "default": {"description": "Unexpected error"},
                    },
                },
                "post": {
                    "operationId": "createPet",
                    "security": [{"oauth": ["pets:write"]}],
                    "requestBody": {
                        "required": True,
                        "content": {
                            "application/xml": {"schema": {"type": "object"}},
                            "application/json": {
                                "schema": {"$ref": "#/components/schemas/Pet"}
                            },
                        },
                    },
                    "responses": {"201": {"description": "Created"}},
                },
            },
            "/pets/{petId}": {
                "parameters": [
                    {
                        "name": "petId",
                        "in": "path",
                        "required": True,
                        "schema": {"type": "string"},
                        "description": "shared",
                    }
                ],
                "summary": "A single pet",
                "get": {
                    "operationId": "getPet",
                    "description": "Fetch one pet",
                    "parameters": [
                        {
                            "name": "petId",
                            "in": "path",
                            "required": True,
                            "schema": {"type": "integer"},
                            "description": "The pet id",
                        },
                        {"name": "X-Trace", "in": "header", "schema": {"type": "string"}},
                    ],
                    "responses": {
                        "200": {
                            "description": "The pet",
                            "content": {
                                "application/json": {
                                    "schema": {"$ref": "#/components/schemas/Pet"}
                                }
                            },
                        },
                        "404": {"description": "Not found"},
                    },
                },
                "delete": {
                    "deprecated": True,
                    "security": [],
                    "responses": {"204": {"description": "Deleted"}},
                },
            },
            "/owners/{ownerId}/pets/{petId}": {
                "get": {
                    "operationId": "getOwnerPet",
                    "responses": {"200": {"description": "ok"}},
                }
            },
        },
        "components": {
            "parameters": {
                "limit": {
                    "name": "limit",
                    "in": "query",
                    "schema": {"type": "integer", "default": 20, "minimum": 1, "maximum": 100},
                }
            },
            "schemas": {
                "Pet": {
                    "type": "object",
                    "properties": {
                        "id": {"type": "integer"},
                        "name": {"type": "string"},
                        "owner": {"$ref": "#/components/schemas/Owner"},
                    },
                },
                "Owner": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string"},
                        "pets": {
                            "type": "array",
                            "items": {"$ref": "#/components/schemas/Pet"},
                        },
                    },
                },
            },
            "securitySchemes": {
                "oauth": {"type": "oauth2", "flows": {}},
            },
        },
    }


@pytest.fixture
def petstore_v2():
    """Swagger 2.0 document with a body parameter."""
    return {
        "swagger": "2.0",
        "info": {"title": "Legacy Petstore", "version": "1.0"},
        "host": "legacy.example.com",
        "basePath": "/api",
        "consumes": ["application/json"],
        "produces": ["application/json"],
        "paths": {
            "/pets": {
                "post": {
                    "operationId": "addPet",
                    "parameters": [
                        {
                            "name": "pet",
                            "in": "body",
                            "required": True,
                            "schema": {"$ref": "#/definitions/Pet"},
                        }
                    ],
                    "responses": {
                        "200": {"description": "ok", "schema": {"$ref": "#/definitions/Pet"}}
                    },
                },
                "get": {
                    "parameters": [
                        {"name": "tags", "in": "query", "type": "array", "items": {"type": "string"}},
                        {"name": "limit", "in": "query", "type": "integer", "default": 10},
                    ],
                    "responses": {"200": {"description": "ok"}},
                },
            }
        },
        "definitions": {
            "Pet": {"type": "object", "properties": {"name": {"type": "string"}}},
        },
    }


# =============================================================================
# GraphQL introspection
# =============================================================================


def _named(kind, name):
    return {"kind": kind, "name": name, "ofType": None}


def _non_null(inner):
    return {"kind": "NON_NULL", "name": None, "ofType": inner}


def _list_of(inner):
    return {"kind": "LIST", "name": None, "ofType": inner}


@pytest.fixture
def graphql_introspection():
    """Introspection result with query and mutation roots."""
    return {
        "data": {
            "__schema": {
                "queryType": {"name": "Query"},
                "mutationType": {"name": "Mutation"},
                "subscriptionType": None,
                "types": [
                    {
                        "kind": "OBJECT",
                        "name": "Query",
                        "fields": [
                            {
                                "name": "user",
                                "description": "Fetch a user",
                                "args": [
                                    {
                                        "name": "id",
                                        "type": _non_null(_named("SCALAR", "ID")),
                                        "defaultValue": None,
                                    }
                                ],
                                "type": _named("OBJECT", "User"),
                                "isDeprecated": False,
                            },
                            {
                                "name": "users",
                                "args": [
                                    {
                                        "name": "tags",
                                        "type": _non_null(
                                            _list_of(_non_null(_named("SCALAR", "String")))
                                        ),
                                    },
                                    {
                                        "name": "first",
                                        "type": _named("SCALAR", "Int"),
                                        "defaultValue": "10",
                                    },
                                ],
                                "type": _non_null(_list_of(_named("OBJECT", "User"))),
                                "isDeprecated": True,
                                "deprecationReason": "Use search",
                            },
                        ],
                    },
                    {
                        "kind": "OBJECT",
                        "name": "Mutation",
                        "fields": [
                            {
                                "name": "createUser",
                                "args": [
                                    {
                                        "name": "input",
                                        "type": _non_null(_named("INPUT_OBJECT", "UserInput")),
                                    }
                                ],
                                "type": _named("OBJECT", "User"),
                            }
                        ],
                    },
                    {"kind": "OBJECT", "name": "User", "fields": []},
                    {"kind": "INPUT_OBJECT", "name": "UserInput", "inputFields": []},
                    {"kind": "SCALAR", "name": "String"},
                    {"kind": "OBJECT", "name": "__Schema", "fields": []},
                ],
            }
        }
    }


@pytest.fixture
def graphql_type_builders():
    """Helpers for building NON_NULL/LIST chains in tests."""
    return {"named": _named, "non_null": _non_null, "list_of": _list_of}


# =============================================================================
# WSDL
# =============================================================================


WEATHER_WSDL = """<?xml version="1.0" encoding="UTF-8"?>
<wsdl:definitions name="WeatherService"
    targetNamespace="http://example.com/weather"
    xmlns:wsdl="http://schemas.xmlsoap.org/wsdl/"
    xmlns:soap="http://schemas.xmlsoap.org/wsdl/soap/"
    xmlns:soap12="http://schemas.xmlsoap.org/wsdl/soap12/"
    xmlns:tns="http://example.com/weather"
    xmlns:xsd="http://www.w3.org/2001/XMLSchema">
  <wsdl:message name="GetWeatherRequest">
    <wsdl:part name="city" type="xsd:string"/>
    <wsdl:part name="days" type="xsd:int"/>
    <wsdl:part name="metric" type="xsd:boolean"/>
    <wsdl:part name="threshold" type="xsd:double"/>
  </wsdl:message>
  <wsdl:message name="GetWeatherResponse">
    <wsdl:part name="forecast" element="tns:Forecast"/>
  </wsdl:message>
  <wsdl:message name="PingRequest">
    <wsdl:part name="payload" element="tns:PingPayload"/>
  </wsdl:message>
  <wsdl:message name="PingResponse"/>
  <wsdl:portType name="WeatherPortType">
    <wsdl:operation name="GetWeather">
      <wsdl:documentation>Forecast for a city</wsdl:documentation>
      <wsdl:input message="tns:GetWeatherRequest"/>
      <wsdl:output message="tns:GetWeatherResponse"/>
    </wsdl:operation>
    <wsdl:operation name="Ping">
      <wsdl:input message="tns:PingRequest"/>
      <wsdl:output message="tns:PingResponse"/>
    </wsdl:operation>
  </wsdl:portType>
  <wsdl:binding name="WeatherSoap12" type="tns:WeatherPortType">
    <soap12:binding transport="http://schemas.xmlsoap.org/soap/http" style="document"/>
    <wsdl:operation name="GetWeather">
      <soap12:operation soapAction="http://example.com/weather/GetWeather12"/>
    </wsdl:operation>
  </wsdl:binding>
  <wsdl:binding name="WeatherSoap" type="tns:WeatherPortType">
    <soap:binding transport="http://schemas.xmlsoap.org/soap/http" style="document"/>
    <wsdl:operation name="GetWeather">
      <soap:operation soapAction="http://example.com/weather/GetWeather"/>
    </wsdl:operation>
  </wsdl:binding>
  <wsdl:service name="WeatherService">
    <wsdl:port name="WeatherPort" binding="tns:WeatherSoap">
      <soap:address location="https://soap.example.com/weather"/>
    </wsdl:port>
  </wsdl:service>
</wsdl:definitions>
"""


@pytest.fixture
def weather_wsdl():
    return WEATHER_WSDL
