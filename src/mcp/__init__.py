"""
MCP (Model Context Protocol) Module.

Exposes the WispHub customer-care services as MCP tools using the official
`mcp` SDK, plus a protocol-level client for calling them.

### MCP Server
For Claude Desktop / other MCP hosts, run in stdio mode:
    python run_servers.py mcp --transport stdio

Over streamable HTTP:
    python run_servers.py mcp --transport http --port 8080

The server needs WISPHUB_API_KEY (environment or .env file).

### MCP Client
    from src.mcp import get_mcp_client

    client = get_mcp_client()
    result = client.get_client("12345")
"""

from .mcp_server import (
    # MCP Server
    mcp as fastmcp_server,
    run_server,
    run_http_server,
)

# MCP Client (protocol-compliant)
from .mcp_client import MCPClient, MCPError, MCPToolError, get_mcp_client, DEFAULT_MCP_URL

__all__ = [
    # MCP Server
    "fastmcp_server",
    "run_server",
    "run_http_server",
    # MCP Client
    "MCPClient",
    "MCPError",
    "MCPToolError",
    "get_mcp_client",
    "DEFAULT_MCP_URL",
]
