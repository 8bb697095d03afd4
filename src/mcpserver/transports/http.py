"""
HTTP Transport for MCP

Maps one HTTP exchange onto the protocol engine. The adapter is framework
neutral (HTTPTransport.process takes a method, raw body and headers); the
FastAPI router at the bottom of the module is how the server is actually
mounted.

Routes:
    POST    /mcp/{server_name}   JSON-RPC request or batch
    GET     /mcp/{server_name}   server info
    OPTIONS /mcp/{server_name}   CORS preflight
    GET     /health              health of every named server
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse, Response

from common.logging import TimedLogger, get_logger
from ..access_control import SECURITY_HEADERS, header
from ..jsonrpc import INVALID_REQUEST, MCPError, error_payload
from ..normalizer import Payload, Transport
from ..server import MCP_PROTOCOL_VERSION, MCPServer

logger = get_logger(__name__)

ServerLookup = Callable[[str], Optional[MCPServer]]


@dataclass
class HTTPResult:
    """Status, JSON body (None for an empty body) and headers for one HTTP response."""

    status_code: int
    body: Optional[Any] = None
    headers: Dict[str, str] = field(default_factory=dict)


class HTTPTransport:
    """Routes HTTP exchanges to named MCP servers."""

    def __init__(self, server_lookup: Optional[ServerLookup] = None):
        self._lookup = server_lookup or MCPServer.find_instance

    async def process(
        self,
        server_name: str,
        method: str,
        body: Payload,
        headers: Optional[Mapping[str, str]] = None,
        remote_addr: Optional[str] = None,
    ) -> HTTPResult:
        headers = dict(headers or {})
        method = method.upper()

        server = self._lookup(server_name)
        if server is None:
            logger.warning(event="unknown_mcp_server", server=server_name)
            error = MCPError(INVALID_REQUEST, f"Unknown MCP server '{server_name}'")
            return HTTPResult(400, error_payload(None, error), dict(SECURITY_HEADERS))

        origin = header(headers, "Origin")

        if method == "OPTIONS":
            return HTTPResult(204, None, {**SECURITY_HEADERS, **server.cors.preflight_headers(origin)})

        if method == "GET":
            info = {
                **server.server_info(),
                "protocolVersion": MCP_PROTOCOL_VERSION,
                "capabilities": server.capabilities().model_dump(exclude_none=True),
            }
            return HTTPResult(200, info, {**SECURITY_HEADERS, **server.cors.response_headers(origin)})

        if method != "POST":
            error = MCPError(INVALID_REQUEST, f"HTTP method {method} not allowed")
            return HTTPResult(
                405,
                error_payload(None, error),
                {**SECURITY_HEADERS, **server.cors.response_headers(origin), "Allow": "POST, GET, OPTIONS"},
            )

        result = await server.dispatch(
            body, transport=Transport.HTTP, headers=headers, remote_addr=remote_addr
        )
        return HTTPResult(result.status_code, result.response, {**SECURITY_HEADERS, **result.headers})


def to_response(result: HTTPResult) -> Response:
    """Render an HTTPResult as a FastAPI response."""
    if result.body is None:
        return Response(status_code=result.status_code, headers=result.headers)
    return JSONResponse(content=result.body, status_code=result.status_code, headers=result.headers)


def create_mcp_router(transport: Optional[HTTPTransport] = None, prefix: str = "/mcp") -> APIRouter:
    """FastAPI router exposing every named MCP server under {prefix}/{server_name}."""
    router = APIRouter(prefix=prefix)
    transport = transport or HTTPTransport()

    @router.api_route("/{server_name}", methods=["GET", "POST", "OPTIONS"])
    async def handle_mcp(server_name: str, request: Request) -> Response:
        """JSON-RPC endpoint; the raw body is validated by the engine, not by FastAPI."""
        body = await request.body() if request.method == "POST" else b""
        remote_addr = request.client.host if request.client else None
        with TimedLogger(logger, "http_request", server=server_name, method=request.method):
            result = await transport.process(
                server_name, request.method, body, request.headers, remote_addr
            )
        return to_response(result)

    return router


def create_http_app(transport: Optional[HTTPTransport] = None) -> FastAPI:
    """Create the FastAPI application serving all named MCP servers."""
    app = FastAPI(title="MCP Capability Server", version="0.1.0")
    app.include_router(create_mcp_router(transport))

    @app.get("/health")
    async def health_check() -> JSONResponse:
        """Health check endpoint."""
        try:
            servers = {}
            for name in MCPServer.get_instance_names():
                server = MCPServer.find_instance(name)
                if server is not None:
                    servers[name] = await server.health_check()

            return JSONResponse(
                content={"status": "healthy", "servers": servers},
                headers=dict(SECURITY_HEADERS),
            )
        except Exception as e:
            logger.error(event="health_check_failed", error=str(e))
            return JSONResponse(
                content={"status": "unhealthy", "error": str(e)},
                status_code=503,
                headers=dict(SECURITY_HEADERS),
            )

    return app
