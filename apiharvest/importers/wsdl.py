"""
WSDL / SOAP Importer.

Turns a WSDL 1.1 document into one FunctionDefinition per portType
operation.

Usage:
    result = WSDLImporter().parse(wsdl_text)

    result.metadata["endpoint_url"]       # soap:address location
    fn = result.get_function("GetWeather")
    fn.protocol["soapAction"]             # from the matching binding operation

Notes:
    - The WSDL namespace is the root's `wsdl` prefix binding, or the
      root's own namespace when the root is <definitions>
    - SOAP action lookup scans every binding for an operation of the same
      name and takes the first soapAction found (SOAP 1.1 before 1.2)
    - Message parts become required body parameters; `element` parts are
      typed by the element's local name, `type` parts through XSD_TYPES
"""

from __future__ import annotations

import io
import logging
import xml.etree.ElementTree as ET
from typing import Any

from apiharvest.catalog.schemas import (
    FunctionDefinition,
    FunctionParameter,
    RequestBody,
    ResponseDescriptor,
)
from apiharvest.errors import FormatError, UnsupportedSchemaError

from .base import ImportResult, SchemaImporter

logger = logging.getLogger(__name__)

SOAP11_NS = "http://schemas.xmlsoap.org/wsdl/soap/"
SOAP12_NS = "http://schemas.xmlsoap.org/wsdl/soap12/"

DEFAULT_SERVICE_NAME = "SOAP Service"

XSD_TYPES = {
    "string": "string",
    "int": "integer",
    "integer": "integer",
    "long": "integer",
    "short": "integer",
    "byte": "integer",
    "decimal": "number",
    "float": "number",
    "double": "number",
    "boolean": "boolean",
    "bool": "boolean",
}

_SOAP_ENVELOPE_SCHEMA = {"soapEnvelope": True}


def map_xsd_type(type_name: str) -> str:
    """Map an XSD type name (prefix allowed) to a parameter type."""
    return XSD_TYPES.get(_strip_prefix(type_name).lower(), "string")


class WSDLImporter(SchemaImporter):
    """Importer for WSDL 1.1 documents."""

    source_type = "wsdl"

    def parse(self, raw: Any) -> ImportResult:
        root, prefixes = _parse_xml(raw)
        wsdl_ns = _resolve_wsdl_namespace(root, prefixes)
        doc = _WsdlDocument(root, wsdl_ns)

        result = self._new_result()
        result.metadata = {
            "service_name": doc.service_name(),
            "target_namespace": doc.target_namespace,
            "endpoint_url": doc.endpoint_url(),
            "wsdl_namespace": wsdl_ns,
            "messages": {
                name: {"parts": [p.get("name") for p in doc.parts(msg) if p.get("name")]}
                for name, msg in doc.messages.items()
            },
            "port_types": doc.port_types(),
            "bindings": doc.bindings(),
        }

        for port_type in root.iter(doc.q("portType")):
            for operation in port_type.iter(doc.q("operation")):
                function = self._parse_operation(operation, doc, result)
                if function is not None:
                    result.functions.append(function)

        logger.info(
            f"[wsdl_importer] Imported {len(result.functions)} operations from "
            f"'{result.metadata['service_name']}' ({len(result.warnings)} warnings)"
        )
        return result

    def _parse_operation(
        self,
        operation: ET.Element,
        doc: _WsdlDocument,
        result: ImportResult,
    ) -> FunctionDefinition | None:
        name = operation.get("name")
        if not name:
            result.warn("portType operation", "operation without a name")
            return None

        element = f"operation {name}"
        documentation = operation.find(doc.q("documentation"))
        description = (documentation.text or "").strip() if documentation is not None else ""

        input_el = operation.find(doc.q("input"))
        output_el = operation.find(doc.q("output"))
        input_message = input_el.get("message", "") if input_el is not None else ""
        output_message = output_el.get("message", "") if output_el is not None else ""

        parameters: list[FunctionParameter] = []
        if input_message:
            message = doc.messages.get(_strip_prefix(input_message))
            if message is None:
                result.warn(element, f"input message '{input_message}' not found")
            else:
                for part in doc.parts(message):
                    parameter = self._parse_part(part, element, result)
                    if parameter is not None:
                        parameters.append(parameter)

        return FunctionDefinition(
            name=name,
            description=description or f"SOAP operation: {name}",
            method="POST",
            path="/soap",
            parameters=parameters,
            request_body=RequestBody(
                content_type="text/xml", required=True, schema=dict(_SOAP_ENVELOPE_SCHEMA)
            ),
            response=ResponseDescriptor(
                expected_format="text/xml", schema=dict(_SOAP_ENVELOPE_SCHEMA)
            ),
            requires_auth=True,
            protocol={
                "protocol": "soap",
                "soapAction": doc.soap_action(name) or name,
                "inputMessage": input_message,
                "outputMessage": output_message,
                "namespace": doc.target_namespace or "",
            },
        )

    def _parse_part(
        self,
        part: ET.Element,
        element: str,
        result: ImportResult,
    ) -> FunctionParameter | None:
        part_name = part.get("name")
        if not part_name:
            result.warn(f"{element} part", "message part without a name")
            return None

        if part.get("element"):
            part_type = _strip_prefix(part.get("element", ""))
        elif part.get("type"):
            part_type = map_xsd_type(part.get("type", ""))
        else:
            part_type = "string"

        return FunctionParameter(
            name=part_name,
            type=part_type,
            location="body",
            required=True,
            description=f"SOAP parameter: {part_name}",
        )


# =============================================================================
# Helper Functions
# =============================================================================


class _WsdlDocument:
    """Namespace-aware lookups over a parsed WSDL tree."""

    def __init__(self, root: ET.Element, wsdl_ns: str | None):
        self.root = root
        self.wsdl_ns = wsdl_ns
        self.target_namespace = root.get("targetNamespace")
        self.messages: dict[str, ET.Element] = {}
        for message in root.iter(self.q("message")):
            msg_name = message.get("name")
            if msg_name and msg_name not in self.messages:
                self.messages[msg_name] = message

    def q(self, local: str) -> str:
        return f"{{{self.wsdl_ns}}}{local}" if self.wsdl_ns else local

    def parts(self, message: ET.Element) -> list[ET.Element]:
        return list(message.iter(self.q("part")))

    def service_name(self) -> str:
        service = next(self.root.iter(self.q("service")), None)
        if service is not None and service.get("name"):
            return service.get("name", DEFAULT_SERVICE_NAME)
        return DEFAULT_SERVICE_NAME

    def endpoint_url(self) -> str | None:
        for ns in (SOAP11_NS, SOAP12_NS):
            for address in self.root.iter(f"{{{ns}}}address"):
                location = address.get("location")
                if location:
                    return location
        return None

    def soap_action(self, operation_name: str) -> str | None:
        """First soapAction of a binding operation with this name."""
        for binding in self.root.iter(self.q("binding")):
            for operation in binding.iter(self.q("operation")):
                if operation.get("name") != operation_name:
                    continue
                for ns in (SOAP11_NS, SOAP12_NS):
                    soap_op = operation.find(f"{{{ns}}}operation")
                    if soap_op is not None and "soapAction" in soap_op.attrib:
                        return soap_op.get("soapAction")
        return None

    def port_types(self) -> dict[str, dict[str, Any]]:
        port_types: dict[str, dict[str, Any]] = {}
        for port_type in self.root.iter(self.q("portType")):
            name = port_type.get("name")
            if name:
                port_types[name] = {
                    "operations": [
                        op.get("name") for op in port_type.iter(self.q("operation")) if op.get("name")
                    ]
                }
        return port_types

    def bindings(self) -> dict[str, dict[str, Any]]:
        bindings: dict[str, dict[str, Any]] = {}
        for binding in self.root.iter(self.q("binding")):
            name = binding.get("name")
            if not name:
                continue
            soap_binding = binding.find(f"{{{SOAP11_NS}}}binding")
            if soap_binding is None:
                soap_binding = binding.find(f"{{{SOAP12_NS}}}binding")
            bindings[name] = {
                "type": binding.get("type", ""),
                "transport": soap_binding.get("transport", "") if soap_binding is not None else "",
                "style": soap_binding.get("style", "") if soap_binding is not None else "",
            }
        return bindings


def _parse_xml(raw: Any) -> tuple[ET.Element, dict[str, str]]:
    """Parse XML and return the root plus the prefixes declared on it."""
    if isinstance(raw, str):
        data = raw.encode("utf-8")
    elif isinstance(raw, bytes):
        data = raw
    else:
        raise FormatError(f"Unsupported WSDL input: {type(raw).__name__}")

    if not data.strip():
        raise FormatError("WSDL document is empty")

    root: ET.Element | None = None
    root_prefixes: dict[str, str] = {}
    try:
        for event, item in ET.iterparse(io.BytesIO(data), events=("start-ns", "start")):
            if root is not None:
                continue
            if event == "start-ns":
                prefix, uri = item
                root_prefixes[prefix] = uri
            else:
                root = item
    except ET.ParseError as e:
        raise FormatError(f"Malformed WSDL XML: {e}", fragment=data[:200].decode("utf-8", "replace")) from e

    if root is None:
        raise FormatError("WSDL document has no root element")
    return root, root_prefixes


def _resolve_wsdl_namespace(root: ET.Element, prefixes: dict[str, str]) -> str | None:
    namespace, local = _split_tag(root.tag)
    if local == "description":
        raise UnsupportedSchemaError("WSDL 2.0 <description> documents are not supported", version="2.0")

    if "wsdl" in prefixes:
        return prefixes["wsdl"]
    if local == "definitions":
        return namespace
    raise UnsupportedSchemaError(f"Root element <{local}> is not a WSDL <definitions> element")


def _split_tag(tag: str) -> tuple[str | None, str]:
    if tag.startswith("{"):
        namespace, _, local = tag[1:].partition("}")
        return namespace, local
    return None, tag


def _strip_prefix(qname: str) -> str:
    return qname.split(":", 1)[1] if ":" in qname else qname
