"""Shared fixtures for the MCP server test suite."""

import pytest

from common.config import MCPSettings
from mcpserver.server import MCPServer


@pytest.fixture(autouse=True)
def clean_instances():
    """Every test starts without named server instances."""
    MCPServer.clear_all_instances()
    yield
    MCPServer.clear_all_instances()


@pytest.fixture
def settings() -> MCPSettings:
    return MCPSettings(request_timeout=5.0)


@pytest.fixture
def server(settings: MCPSettings) -> MCPServer:
    """Fresh server with an echo tool, a resource and a prompt."""
    server = MCPServer.get_instance("test", settings=settings)
    server.register_tool(
        name="echo",
        description="Echo a message",
        handler=lambda args: f"Echo: {args['message']}",
        parameters=[{"name": "message", "required": True}],
    )
    server.register_resource(
        uri="config://app",
        name="App config",
        handler=lambda: "debug=true",
    )
    server.register_prompt(
        name="greet",
        description="Greeting prompt",
        arguments=[{"name": "name", "required": True}],
        handler=lambda args: [{"role": "user", "content": f"Say hello to {args['name']}"}],
    )
    return server


def rpc(method: str, params=None, id=1) -> dict:
    """Build a JSON-RPC request envelope."""
    message = {"jsonrpc": "2.0", "id": id, "method": method}
    if params is not None:
        message["params"] = params
    return message
