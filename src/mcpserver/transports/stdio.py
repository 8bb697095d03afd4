"""
Standard I/O Transport for MCP

Enables MCP clients to spawn the server as a subprocess and talk to it over
stdin/stdout: one JSON-RPC message per line in, one per line out. Protocol
traffic owns stdout; logs must go to stderr.

Reference: https://modelcontextprotocol.io/specification/2025-06-18/basic/transports
"""

import asyncio
import json
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional, Set, TextIO

from common.logging import get_logger
from ..jsonrpc import INTERNAL_ERROR, JSONRPCHandler, JSONRPCNotification, MCPError, error_payload
from ..normalizer import Transport
from ..server import MCPServer

logger = get_logger(__name__)


class StdioTransport:
    """
    Standard I/O transport for MCP communication.

    Each line is dispatched as its own task, so a slow handler does not hold
    up the requests behind it; responses may therefore come back out of
    order. Whole lines are written under a lock and never interleave.
    """

    def __init__(
        self,
        server: MCPServer,
        reader: Optional[Callable[[], str]] = None,
        writer: Optional[TextIO] = None,
    ):
        self.server = server
        self._reader = reader or sys.stdin.readline
        self._writer = writer or sys.stdout
        self._write_lock = threading.Lock()
        # Separate threads so a blocked readline never delays a write
        self._read_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="stdio-read")
        self._write_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="stdio-write")
        self._tasks: Set[asyncio.Task] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.running = False

    async def run(self) -> None:
        """Read requests until EOF, then wait for in-flight requests to finish."""
        if self.running:
            return

        self._loop = asyncio.get_running_loop()
        self.running = True
        self.server.add_notification_listener(self._on_notification)
        logger.info(event="stdio_transport_started", server=self.server.name)

        try:
            while self.running:
                line = await self._loop.run_in_executor(self._read_executor, self._reader)
                if not line:
                    logger.info(event="stdio_eof", server=self.server.name)
                    break

                line = line.strip()
                if not line:
                    continue

                self._spawn(self._handle_line(line))

            while self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
        finally:
            self.running = False
            self.server.remove_notification_listener(self._on_notification)
            self._read_executor.shutdown(wait=False)
            self._write_executor.shutdown(wait=True)
            logger.info(event="stdio_transport_stopped", server=self.server.name)

    def stop(self) -> None:
        """Stop reading after the current line."""
        self.running = False

    def _spawn(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _handle_line(self, line: str) -> None:
        try:
            result = await self.server.dispatch(line, transport=Transport.STDIO)
            response = result.response
        except Exception as e:
            logger.error(event="stdio_message_error", error=str(e))
            response = error_payload(None, MCPError(INTERNAL_ERROR, "Internal error", data=str(e)))

        if response is not None:
            await self._write(response)

    async def send_notification(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Send a server-initiated notification to the client."""
        notification = JSONRPCHandler.create_notification(method, params)
        await self._write(JSONRPCHandler.dump(notification))

    def _on_notification(self, notification: JSONRPCNotification) -> None:
        # Registry changes can happen on any thread
        if self._loop is None or not self.running:
            return
        payload = JSONRPCHandler.dump(notification)
        self._loop.call_soon_threadsafe(self._spawn, self._write(payload))

    async def _write(self, payload: Any) -> None:
        message = json.dumps(payload, separators=(",", ":"), default=str)
        try:
            await asyncio.get_running_loop().run_in_executor(
                self._write_executor, self._write_line, message
            )
        except Exception as e:
            logger.error(event="stdout_write_error", error=str(e))

    def _write_line(self, message: str) -> None:
        with self._write_lock:
            self._writer.write(message + "\n")
            self._writer.flush()


async def run_stdio_server(server: MCPServer) -> None:
    """Serve one MCP server over stdin/stdout until EOF."""
    await StdioTransport(server).run()
