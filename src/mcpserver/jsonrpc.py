"""
JSON-RPC 2.0 Protocol Implementation for MCP

This module implements the JSON-RPC 2.0 message format required by the
Model Context Protocol specification, together with the fixed error code
table used by the server and the MCPError exception every pipeline stage
raises to short-circuit a request.

Reference: https://www.jsonrpc.org/specification
MCP Spec: https://spec.modelcontextprotocol.io/specification/2025-06-18/basic/
"""

import json
from typing import Any, Dict, List, Optional, Union, Literal

from pydantic import BaseModel

# JSON-RPC version constant
JSONRPC_VERSION = "2.0"

# Standard JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Server-specific error codes
RATE_LIMIT_EXCEEDED = -32002
CONTENT_TYPE_ERROR = -32050
TIMEOUT_ERROR = -32070

# HTTP status used by the HTTP transport for each code
HTTP_STATUS: Dict[int, int] = {
    PARSE_ERROR: 400,
    INVALID_REQUEST: 400,
    RATE_LIMIT_EXCEEDED: 429,
    CONTENT_TYPE_ERROR: 415,
}

RequestId = Union[str, int, float, None]


class MCPError(Exception):
    """
    A JSON-RPC error raised inside the request pipeline.

    The engine turns it into an error envelope; it never reaches the client
    as a raw exception.
    """

    def __init__(
        self,
        code: int,
        message: str,
        data: Optional[Any] = None,
        http_status: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
        request_id: RequestId = None,
    ):
        super().__init__(message)
        self.request_id = request_id
        self.code = code
        self.message = message
        self.data = data
        self.http_status = http_status or HTTP_STATUS.get(code, 200)
        self.headers = headers or {}

    def to_error(self) -> "JSONRPCError":
        return JSONRPCError(code=self.code, message=self.message, data=self.data)


class JSONRPCError(BaseModel):
    """JSON-RPC 2.0 error object."""

    code: int
    message: str
    data: Optional[Any] = None


class JSONRPCResponse(BaseModel):
    """JSON-RPC 2.0 response message (success)."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: RequestId
    result: Any


class JSONRPCErrorResponse(BaseModel):
    """JSON-RPC 2.0 response message (error)."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: RequestId
    error: JSONRPCError


class JSONRPCNotification(BaseModel):
    """JSON-RPC 2.0 notification message (no response expected)."""

    jsonrpc: Literal["2.0"] = "2.0"
    method: str
    params: Optional[Dict[str, Any]] = None


class MCPMethods:
    """Standard MCP method names."""

    # Core protocol
    INITIALIZE = "initialize"
    INITIALIZED = "notifications/initialized"
    PING = "ping"

    # Tools
    TOOLS_LIST = "tools/list"
    TOOLS_CALL = "tools/call"
    TOOLS_LIST_CHANGED = "notifications/tools/list_changed"

    # Resources
    RESOURCES_LIST = "resources/list"
    RESOURCES_READ = "resources/read"
    RESOURCES_LIST_CHANGED = "notifications/resources/list_changed"

    # Prompts
    PROMPTS_LIST = "prompts/list"
    PROMPTS_GET = "prompts/get"
    PROMPTS_LIST_CHANGED = "notifications/prompts/list_changed"

    # Cancellation
    CANCEL = "notifications/cancelled"


class MCPImplementation(BaseModel):
    """MCP implementation info."""

    name: str
    version: str


class MCPCapabilities(BaseModel):
    """MCP server capabilities."""

    experimental: Optional[Dict[str, Any]] = None
    logging: Optional[Dict[str, Any]] = None
    tools: Optional[Dict[str, Any]] = None
    resources: Optional[Dict[str, Any]] = None
    prompts: Optional[Dict[str, Any]] = None


class MCPInitializeResult(BaseModel):
    """Result for initialize response."""

    protocolVersion: str
    capabilities: MCPCapabilities
    serverInfo: MCPImplementation
    instructions: Optional[str] = None


class MCPListParams(BaseModel):
    """Parameters for the */list requests."""

    cursor: Optional[str] = None


class MCPToolsCallParams(BaseModel):
    """Parameters for tools/call request."""

    name: str
    arguments: Optional[Dict[str, Any]] = None


class MCPResourcesReadParams(BaseModel):
    """Parameters for resources/read request."""

    uri: str


class MCPPromptsGetParams(BaseModel):
    """Parameters for prompts/get request."""

    name: str
    arguments: Optional[Dict[str, Any]] = None


class MCPContentTypes:
    """Standard MCP content types."""

    TEXT = "text"


class JSONRPCHandler:
    """Builders for JSON-RPC envelopes."""

    @staticmethod
    def create_response(id: RequestId, result: Any) -> JSONRPCResponse:
        """Create a JSON-RPC success response."""
        return JSONRPCResponse(id=id, result=result)

    @staticmethod
    def create_error_response(
        id: RequestId, code: int, message: str, data: Optional[Any] = None
    ) -> JSONRPCErrorResponse:
        """Create a JSON-RPC error response."""
        error = JSONRPCError(code=code, message=message, data=data)
        return JSONRPCErrorResponse(id=id, error=error)

    @staticmethod
    def create_notification(
        method: str, params: Optional[Dict[str, Any]] = None
    ) -> JSONRPCNotification:
        """Create a JSON-RPC notification."""
        return JSONRPCNotification(method=method, params=params)

    @staticmethod
    def dump(message: BaseModel) -> Dict[str, Any]:
        """
        Serialize a message for the wire.

        `data` is dropped from errors when unset and `params` from
        notifications; `id` and `result` are always kept, even when null.
        """
        payload = message.model_dump()
        if isinstance(message, JSONRPCErrorResponse) and payload["error"].get("data") is None:
            payload["error"].pop("data", None)
        if isinstance(message, JSONRPCNotification) and payload.get("params") is None:
            payload.pop("params", None)
        return payload

    @staticmethod
    def is_batch(data: Any) -> bool:
        """Check if the data represents a JSON-RPC batch."""
        return isinstance(data, list)


def json_safe(value: Any) -> Any:
    """
    Copy of a handler result made of JSON-native values only.

    Unknown types are rendered with str(). Raises ValueError for NaN or
    infinity and TypeError for dict keys JSON cannot represent.
    """
    return json.loads(json.dumps(value, default=str, allow_nan=False))


def error_payload(id: RequestId, error: MCPError) -> Dict[str, Any]:
    """Serialized error envelope for an MCPError."""
    return JSONRPCHandler.dump(
        JSONRPCHandler.create_error_response(id, error.code, error.message, error.data)
    )


def batch_payload(replies: List[Dict[str, Any]]) -> Optional[List[Dict[str, Any]]]:
    """A batch with nothing to answer (all notifications) produces no response."""
    return replies or None
