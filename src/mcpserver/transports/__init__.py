"""Transport adapters (HTTP, stdio) for the MCP protocol engine."""
