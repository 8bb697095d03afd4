#!/usr/bin/env python3
"""
HTTP client walkthrough

Talks to a running demo server the way any MCP client would: initialize,
list and call tools, read a resource, render a prompt.

Usage:
    python examples/demo_server.py --port 8000 &
    python examples/http_client_demo.py
"""

import asyncio
import json
from typing import Any, Dict, Optional

import httpx

BASE_URL = "http://127.0.0.1:8000/mcp/default"


class MCPHttpClient:
    """Minimal JSON-RPC client for the HTTP transport."""

    def __init__(self, base_url: str = BASE_URL):
        self.base_url = base_url
        self._next_id = 0

    async def request(
        self, client: httpx.AsyncClient, method: str, params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        self._next_id += 1
        payload: Dict[str, Any] = {"jsonrpc": "2.0", "id": self._next_id, "method": method}
        if params is not None:
            payload["params"] = params
        response = await client.post(self.base_url, json=payload)
        return response.json()


async def main() -> None:
    mcp = MCPHttpClient()
    async with httpx.AsyncClient(timeout=10.0) as client:
        steps = [
            ("initialize", {"protocolVersion": "2025-06-18", "clientInfo": {"name": "demo", "version": "1.0"}}),
            ("tools/list", None),
            ("tools/call", {"name": "echo", "arguments": {"message": "Hello"}}),
            ("tools/call", {"name": "add", "arguments": {"a": 2, "b": 3}}),
            ("resources/read", {"uri": "system://info"}),
            ("prompts/get", {"name": "code_review", "arguments": {"code": "print('hi')"}}),
        ]
        for method, params in steps:
            print(f"--> {method}")
            print(json.dumps(await mcp.request(client, method, params), indent=2))

        stats = await client.get(BASE_URL)
        print("--> server info")
        print(json.dumps(stats.json(), indent=2))


if __name__ == "__main__":
    asyncio.run(main())
