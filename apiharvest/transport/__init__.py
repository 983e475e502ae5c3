"""
Outbound function invocation.

Usage:
    from apiharvest.transport import HttpFunctionInvoker

    invoker = HttpFunctionInvoker(auth={"api_key": "..."})
"""

from .http import (
    FunctionCall,
    FunctionInvoker,
    HttpFunctionInvoker,
    build_graphql_query,
    build_soap_envelope,
)

__all__ = [
    "FunctionCall",
    "FunctionInvoker",
    "HttpFunctionInvoker",
    "build_graphql_query",
    "build_soap_envelope",
]
