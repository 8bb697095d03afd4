"""
Request Normalizer

Turns a transport payload (HTTP body + headers, a stdio line, or an already
decoded object from an in-process caller) into CanonicalRequest records.
Parse and envelope failures are raised as MCPError so the engine can answer
them before routing.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from common.logging import get_logger
from .access_control import header
from .jsonrpc import (
    CONTENT_TYPE_ERROR,
    INVALID_REQUEST,
    JSONRPC_VERSION,
    PARSE_ERROR,
    MCPError,
    RequestId,
)

logger = get_logger(__name__)

Payload = Union[str, bytes, bytearray, Dict[str, Any], list]

JSON_CONTENT_TYPES = ("application/json", "application/json-rpc")


class Transport(str, Enum):
    """Where a request came from."""

    HTTP = "http"
    STDIO = "stdio"
    DIRECT = "direct"


@dataclass
class CanonicalRequest:
    """Transport-agnostic JSON-RPC request."""

    method: str
    id: RequestId = None
    params: Optional[Dict[str, Any]] = None
    is_notification: bool = False
    jsonrpc: str = JSONRPC_VERSION
    transport: Transport = Transport.DIRECT
    client_id: str = "anonymous"
    headers: Dict[str, str] = field(default_factory=dict)

    def request_data(self) -> Dict[str, Any]:
        """Request description handed to API-key validators."""
        return {
            "method": self.method,
            "params": self.params or {},
            "transport": self.transport.value,
            "clientId": self.client_id,
            "headers": {k: v for k, v in self.headers.items() if k.lower() != "authorization"},
        }


def _is_valid_id(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    return value is None or isinstance(value, (str, int, float))


def client_identifier(
    transport: Transport,
    headers: Optional[Mapping[str, str]] = None,
    remote_addr: Optional[str] = None,
) -> str:
    """Key used by the rate limiter for the sender of a request."""
    if transport == Transport.STDIO:
        return "stdio"

    forwarded = header(headers, "X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = header(headers, "X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if remote_addr:
        return remote_addr

    return "local" if transport == Transport.DIRECT else "anonymous"


class RequestNormalizer:
    """Parses and validates inbound JSON-RPC payloads."""

    def __init__(self, max_body_size: int = 0):
        self.max_body_size = max_body_size

    def check_content_type(self, headers: Optional[Mapping[str, str]]) -> None:
        """Reject HTTP bodies that declare a non-JSON content type."""
        content_type = header(headers, "Content-Type")
        if not content_type:
            return
        media_type = content_type.split(";")[0].strip().lower()
        if media_type not in JSON_CONTENT_TYPES:
            raise MCPError(
                CONTENT_TYPE_ERROR,
                "Unsupported content type, expected application/json",
                data={"contentType": content_type},
            )

    def parse(self, payload: Payload) -> Any:
        """
        Decode a raw payload into a JSON value.

        Raises:
            MCPError: INVALID_REQUEST for an oversized body, PARSE_ERROR for invalid JSON
        """
        if isinstance(payload, (dict, list)):
            return payload

        if isinstance(payload, (bytes, bytearray)):
            size = len(payload)
        else:
            size = len(payload.encode("utf-8"))

        if self.max_body_size and size > self.max_body_size:
            raise MCPError(
                INVALID_REQUEST,
                "Request body too large",
                data={"size": size, "maxSize": self.max_body_size},
                http_status=413,
            )

        try:
            if isinstance(payload, (bytes, bytearray)):
                payload = payload.decode("utf-8")
            return json.loads(payload)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.debug(event="parse_error", error=str(e))
            raise MCPError(PARSE_ERROR, "Parse error", data=str(e))

    def normalize(
        self,
        message: Any,
        transport: Transport = Transport.DIRECT,
        headers: Optional[Mapping[str, str]] = None,
        client_id: str = "anonymous",
    ) -> CanonicalRequest:
        """
        Validate one JSON-RPC envelope.

        Raises:
            MCPError: INVALID_REQUEST, carrying the request id when it is usable
        """
        if not isinstance(message, dict):
            raise MCPError(INVALID_REQUEST, "Invalid Request: expected a JSON object")

        request_id = message.get("id")
        if not _is_valid_id(request_id):
            raise MCPError(INVALID_REQUEST, "Invalid Request: id must be a string, number or null")

        def invalid(reason: str) -> MCPError:
            return MCPError(INVALID_REQUEST, f"Invalid Request: {reason}", request_id=request_id)

        if message.get("jsonrpc") != JSONRPC_VERSION:
            raise invalid("jsonrpc must be exactly '2.0'")

        method = message.get("method")
        if not isinstance(method, str) or not method:
            raise invalid("method must be a non-empty string")

        params = message.get("params")
        if params is not None and not isinstance(params, dict):
            raise invalid("params must be an object")

        return CanonicalRequest(
            method=method,
            id=request_id,
            params=params,
            is_notification="id" not in message,
            transport=transport,
            client_id=client_id,
            headers=dict(headers or {}),
        )
