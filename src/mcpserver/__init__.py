"""
Model Context Protocol (MCP) capability server.

Exposes registered tools, resources and prompts to MCP clients over
JSON-RPC 2.0, with HTTP and stdio transports.
"""

from .definitions import PromptArgument, PromptDefinition, ResourceDefinition, ToolDefinition, ToolParameter
from .jsonrpc import MCPError
from .normalizer import Transport
from .registry import DuplicateNameError
from .server import MCPServer, get_mcp_server

__all__ = [
    "DuplicateNameError",
    "MCPError",
    "MCPServer",
    "PromptArgument",
    "PromptDefinition",
    "ResourceDefinition",
    "ToolDefinition",
    "ToolParameter",
    "Transport",
    "get_mcp_server",
]
