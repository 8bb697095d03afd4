"""
Main application entry point for the MCP capability server.

Runs one named MCP server over HTTP (FastAPI + uvicorn) or stdio.
Capabilities are registered by the embedding application through the
`setup` callback; see examples/demo_server.py.
"""

# Standard library imports
import argparse
import asyncio
import sys
from pathlib import Path
from typing import Callable, List, Optional

# Third-party imports
import uvicorn
from dotenv import load_dotenv

# Local imports
from common.config import Config, load_config
from common.logging import get_logger, log_startup_message, setup_logging
from mcpserver.server import MCPServer, configure_defaults, get_mcp_server
from mcpserver.transports.http import create_http_app
from mcpserver.transports.stdio import run_stdio_server

# Load environment variables from .env file at module level
load_dotenv()

logger = get_logger(__name__)

ServerSetup = Callable[[MCPServer], None]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="MCP Capability Server")
    parser.add_argument(
        "--transport", choices=["http", "stdio"], default="http", help="Transport to serve on"
    )
    parser.add_argument("--config", type=Path, help="Path to config.yaml")
    parser.add_argument("--port", type=int, help="Override the port to run on")
    parser.add_argument("--host", type=str, help="Override the host to run on")
    parser.add_argument("--server-name", default="default", help="Name of the MCP server instance")
    return parser.parse_args(argv)


def build_server(config: Config, name: str, setup: Optional[ServerSetup] = None) -> MCPServer:
    """Create the named server from config and let the application register capabilities."""
    configure_defaults(config.mcp)
    server = get_mcp_server(name)
    if setup is not None:
        setup(server)

    log_startup_message(
        "mcp_server_ready",
        server=name,
        tools=server.get_tool_count(),
        resources=server.get_resource_count(),
        prompts=server.get_prompt_count(),
    )
    return server


def main(argv: Optional[List[str]] = None, setup: Optional[ServerSetup] = None) -> None:
    """Main entry point."""
    try:
        args = parse_args(argv)

        config = load_config(args.config)

        # Logs go to stderr; stdout is reserved for the stdio transport
        setup_logging(config)

        server = build_server(config, args.server_name, setup)

        if args.transport == "stdio":
            asyncio.run(run_stdio_server(server))
            return

        host = args.host or config.gateway.host
        port = args.port or config.gateway.port

        logger.info(event="starting_server", host=host, port=port, server=server.name)

        # Run uvicorn synchronously (it creates its own event loop)
        uvicorn.run(
            create_http_app(),
            host=host,
            port=port,
            log_config=None,  # Use our custom logging setup
            access_log=False,  # Disable default access logs
        )

    except KeyboardInterrupt:
        logger.info(event="application_shutdown", reason="Keyboard interrupt")
    except Exception as e:
        logger.critical(event="application_crashed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)
    finally:
        MCPServer.clear_all_instances()


if __name__ == "__main__":
    main()
