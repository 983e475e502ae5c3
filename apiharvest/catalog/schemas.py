"""
Function Model.

JSON-serializable description of one callable API operation, regardless
of whether it came from an OpenAPI document, a GraphQL schema or a WSDL
file. Importers produce these; the executor consumes them.

Usage:
    fn = FunctionDefinition(
        name="getPet",
        method="GET",
        path="/pets/{petId}",
        parameters=[
            FunctionParameter(name="petId", location="path", required=True),
        ],
    )

    fn.path_parameters()        # [FunctionParameter(name="petId", ...)]
    fn.protocol_type            # "rest"

Protocol bag:
    GraphQL functions carry {"protocol": "graphql", "operationType", "fieldName",
    "returnType"}; SOAP functions carry {"protocol": "soap", "soapAction",
    "inputMessage", "outputMessage", "namespace"}.
"""

from __future__ import annotations

import re
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, Field

ParameterLocation = Literal["path", "query", "header", "body"]

PARAMETER_LOCATIONS: tuple[str, ...] = ("path", "query", "header", "body")


def _new_id() -> str:
    return str(uuid4())


class ValidationRules(BaseModel):
    """Declared constraints on a parameter value."""

    pattern: str | None = None
    minimum: float | None = None
    maximum: float | None = None
    min_length: int | None = None
    max_length: int | None = None
    allowed_values: list[Any] | None = None

    class Config:
        populate_by_name = True

    def is_empty(self) -> bool:
        return all(v is None for v in self.model_dump().values())

    def check(self, value: Any) -> list[str]:
        """
        Return the rule violations for a value.

        Rules that do not apply to the value's type are ignored.
        """
        violations: list[str] = []
        if value is None:
            return violations

        if self.allowed_values is not None and value not in self.allowed_values:
            violations.append(f"{value!r} is not one of {self.allowed_values}")

        if isinstance(value, (int, float)) and not isinstance(value, bool):
            if self.minimum is not None and value < self.minimum:
                violations.append(f"{value} is less than minimum {self.minimum}")
            if self.maximum is not None and value > self.maximum:
                violations.append(f"{value} is greater than maximum {self.maximum}")

        if isinstance(value, (str, list)):
            if self.min_length is not None and len(value) < self.min_length:
                violations.append(f"length {len(value)} is below {self.min_length}")
            if self.max_length is not None and len(value) > self.max_length:
                violations.append(f"length {len(value)} is above {self.max_length}")

        if isinstance(value, str) and self.pattern:
            try:
                if re.search(self.pattern, value) is None:
                    violations.append(f"{value!r} does not match pattern {self.pattern!r}")
            except re.error:
                violations.append(f"invalid pattern {self.pattern!r}")

        return violations


class FunctionParameter(BaseModel):
    """
    Single parameter of a function.

    Attributes:
        name: Parameter name as the remote API expects it
        type: string, integer, number, boolean, array, object, or a
            protocol type name (GraphQL input type, XSD element)
        location: Where the value travels in the request
        required: Whether a value must be present at call time
        default: Value used when nothing else supplies one
        validation: Declared constraints
    """

    name: str = Field(..., description="Parameter name")
    type: str = Field(default="string", description="Declared type")
    location: ParameterLocation = Field(default="query", description="Request location")
    required: bool = Field(default=False, description="Is required")
    default: Any = Field(default=None, description="Default value")
    description: str = Field(default="", description="Parameter description")
    validation: ValidationRules = Field(default_factory=ValidationRules)
    schema_: dict[str, Any] | None = Field(default=None, alias="schema")

    class Config:
        populate_by_name = True


class RequestBody(BaseModel):
    """Request body descriptor."""

    content_type: str = "application/json"
    required: bool = False
    description: str = ""
    schema_: dict[str, Any] | None = Field(default=None, alias="schema")

    class Config:
        populate_by_name = True


class ResponseStatus(BaseModel):
    """Metadata of one declared response status code."""

    description: str = ""
    schema_: dict[str, Any] | None = Field(default=None, alias="schema")

    class Config:
        populate_by_name = True


class ResponseDescriptor(BaseModel):
    """Expected response shape plus every declared status code."""

    expected_format: str = "application/json"
    schema_: dict[str, Any] | None = Field(default=None, alias="schema")
    status_codes: dict[str, ResponseStatus] = Field(default_factory=dict)

    class Config:
        populate_by_name = True


class FunctionDefinition(BaseModel):
    """
    Normalized description of one callable API operation.

    Owned by exactly one FunctionCatalog. The id is unique within that
    catalog; name is the source operation id (operationId, GraphQL field
    name, SOAP operation name).
    """

    id: str = Field(default_factory=_new_id, description="Unique id within the catalog")
    name: str = Field(..., description="Operation name")
    description: str = Field(default="", description="Human-readable description")
    method: str = Field(default="GET", description="HTTP method")
    path: str = Field(default="/", description="Path template")
    parameters: list[FunctionParameter] = Field(default_factory=list)
    request_body: RequestBody | None = None
    response: ResponseDescriptor = Field(default_factory=ResponseDescriptor)
    requires_auth: bool = True
    scopes: list[str] = Field(default_factory=list)
    timeout_seconds: float | None = None
    deprecated: bool = False
    deprecation_message: str | None = None
    tags: list[str] = Field(default_factory=list)
    protocol: dict[str, Any] = Field(
        default_factory=dict, description="Protocol-specific attributes"
    )

    class Config:
        populate_by_name = True

    @property
    def protocol_type(self) -> str:
        """rest, graphql or soap."""
        return str(self.protocol.get("protocol", "rest")).lower()

    def get_parameter(self, name: str) -> FunctionParameter | None:
        for param in self.parameters:
            if param.name == name:
                return param
        return None

    def parameters_in(self, location: str) -> list[FunctionParameter]:
        return [p for p in self.parameters if p.location == location]

    def path_parameters(self) -> list[FunctionParameter]:
        return self.parameters_in("path")

    def required_parameters(self) -> list[FunctionParameter]:
        return [p for p in self.parameters if p.required]

    def describe(self) -> dict[str, Any]:
        """Compact descriptor used in dry-run results and logs."""
        return {
            "id": self.id,
            "name": self.name,
            "method": self.method,
            "path": self.path,
            "protocol": self.protocol_type,
            "parameters": [
                {
                    "name": p.name,
                    "type": p.type,
                    "location": p.location,
                    "required": p.required,
                }
                for p in self.parameters
            ],
            "requires_auth": self.requires_auth,
            "deprecated": self.deprecated,
        }
