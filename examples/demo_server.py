#!/usr/bin/env python3
"""
Demo MCP server

Registers a few tools, a resource and a prompt, then serves them with the
regular entry point, so every main.py flag works:

Usage:
    python examples/demo_server.py --transport http --port 8000
    python examples/demo_server.py --transport stdio
"""

import asyncio
import platform
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add src to Python path for local testing
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from main import main  # noqa: E402
from mcpserver import MCPServer, ToolParameter  # noqa: E402
from mcpserver.definitions import ToolParameterType  # noqa: E402


def echo(arguments):
    return f"Echo: {arguments['message']}"


def add(arguments):
    return {"sum": arguments["a"] + arguments["b"]}


async def slow(arguments):
    await asyncio.sleep(arguments.get("seconds", 1))
    return "done"


def system_info():
    return {
        "python": platform.python_version(),
        "platform": platform.platform(),
        "time": datetime.now(timezone.utc).isoformat(),
    }


def code_review(arguments):
    language = arguments.get("language", "python")
    return [
        {"role": "user", "content": f"Review this {language} code:\n\n{arguments['code']}"},
    ]


def register_demo_capabilities(server: MCPServer) -> None:
    (
        server.set_description("Demo MCP server")
        .register_tool(
            name="echo",
            description="Echo a message back",
            handler=echo,
            parameters=[ToolParameter(name="message", required=True, description="Text to echo")],
        )
        .register_tool(
            name="add",
            description="Add two numbers",
            handler=add,
            parameters=[
                ToolParameter(name="a", type=ToolParameterType.NUMBER, required=True),
                ToolParameter(name="b", type=ToolParameterType.NUMBER, required=True),
            ],
        )
        .register_tool(
            name="slow",
            description="Sleep for a while before answering",
            handler=slow,
            input_schema={
                "type": "object",
                "properties": {"seconds": {"type": "number", "minimum": 0, "maximum": 60}},
            },
        )
        .register_resource(
            uri="system://info",
            name="System info",
            description="Interpreter and platform details",
            mime_type="application/json",
            handler=system_info,
        )
        .register_prompt(
            name="code_review",
            description="Ask for a code review",
            arguments=[
                {"name": "code", "description": "Code to review", "required": True},
                {"name": "language", "description": "Programming language"},
            ],
            handler=code_review,
        )
    )


if __name__ == "__main__":
    main(setup=register_demo_capabilities)
