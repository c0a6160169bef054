"""
MCP Client for the WispHub customer-care server (or any MCP server).

Uses the official MCP Python SDK over the streamable HTTP transport and
exposes a synchronous API on top of it:
- ``list_tools`` / ``call_tool`` for generic tool discovery and invocation
- one convenience method per WispHub tool

Tool results are the JSON dictionaries the server returns; a failed
WispHub operation is still a normal result with ``success: false``.
Only protocol failures raise.
"""

import asyncio
import concurrent.futures
import json
import os
from typing import Any, Dict, List, Optional

from mcp import ClientSession
from mcp.client.streamable_http import streamablehttp_client
from mcp.shared.exceptions import McpError


# MCP_SERVER_URL overrides the local default
DEFAULT_MCP_URL = os.environ.get("MCP_SERVER_URL", "http://localhost:8080/mcp")


def _drop_none(arguments: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in arguments.items() if value is not None}


class MCPClient:
    """
    Synchronous MCP client for the streamable HTTP transport.

    Every call opens a short-lived session, so the client is safe to share.
    """

    def __init__(self, base_url: str = DEFAULT_MCP_URL):
        # accept both "http://host:port" and "http://host:port/mcp"
        self.url = base_url.rstrip("/")
        if not self.url.endswith("/mcp"):
            self.url = f"{self.url}/mcp"
        self._tools_cache: Optional[List[Dict[str, Any]]] = None

    @property
    def base_url(self) -> str:
        return self.url.rsplit("/mcp", 1)[0]

    async def _run_session(self, callback):
        """Run ``callback(session)`` within an initialized MCP session."""
        async with streamablehttp_client(self.url) as (read_stream, write_stream, _):
            async with ClientSession(read_stream, write_stream) as session:
                await session.initialize()
                return await callback(session)

    def _run_sync(self, coro):
        """Block on ``coro``, also when called from inside a running event loop."""
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(coro)
        # Already inside an event loop: run in a worker thread
        with concurrent.futures.ThreadPoolExecutor() as pool:
            return pool.submit(asyncio.run, coro).result()

    async def _list_tools_async(self) -> List[Dict[str, Any]]:
        async def get_tools(session: ClientSession):
            result = await session.list_tools()
            return [tool_definition(tool) for tool in result.tools]
        return await self._run_session(get_tools)

    async def _call_tool_async(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        async def call(session: ClientSession):
            try:
                result = await session.call_tool(name, arguments or {})
            except McpError as exc:
                raise MCPError({
                    "code": exc.error.code,
                    "message": exc.error.message,
                    "data": exc.error.data,
                })
            return parse_tool_result(name, result)

        return await self._run_session(call)

    def list_tools(self, use_cache: bool = True) -> List[Dict[str, Any]]:
        """Tool definitions (name, description, inputSchema); cached after the first call."""
        if use_cache and self._tools_cache is not None:
            return self._tools_cache

        tools = self._run_sync(self._list_tools_async())
        self._tools_cache = tools
        return tools

    def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        """
        Invoke ``name`` and return its decoded result dictionary.

        Raises:
            MCPToolError: The server reported ``isError: true`` (e.g. schema validation)
            MCPError: Protocol-level JSON-RPC error
        """
        return self._run_sync(self._call_tool_async(name, arguments))

    # Convenience methods for the WispHub tools

    def search_clients(
        self,
        status: Optional[str] = None,
        zone: Optional[str] = None,
        plan: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Dict[str, Any]:
        return self.call_tool("search_clients", _drop_none({
            "status": status,
            "zone": zone,
            "plan": plan,
            "search": search,
            "limit": limit,
            "offset": offset,
        }))

    def get_client(self, identifier: Any) -> Dict[str, Any]:
        """Get one client by service id, email or name."""
        return self.call_tool("get_client", {"identifier": str(identifier)})

    def get_client_balance(self, service_id: int) -> Dict[str, Any]:
        return self.call_tool("get_client_balance", {"service_id": service_id})

    def update_client(self, service_id: int, **fields: Any) -> Dict[str, Any]:
        """Update client fields (email, phone, address, locality, city, notes, ...)."""
        return self.call_tool("update_client", _drop_none({"service_id": service_id, **fields}))

    def change_service_status(self, service_id: int, new_status: str, reason: str) -> Dict[str, Any]:
        return self.call_tool("change_service_status", {
            "service_id": service_id,
            "new_status": new_status,
            "reason": reason,
        })

    def create_ticket(
        self,
        service_id: int,
        subject: str,
        description: str,
        priority: str = "normal",
    ) -> Dict[str, Any]:
        """Create a new support ticket."""
        return self.call_tool("create_ticket", {
            "service_id": service_id,
            "subject": subject,
            "description": description,
            "priority": priority,
        })

    def list_client_tickets(self, service_id: int) -> Dict[str, Any]:
        return self.call_tool("list_client_tickets", {"service_id": service_id})

    def update_ticket(
        self,
        ticket_id: int,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        technician: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        return self.call_tool("update_ticket", _drop_none({
            "ticket_id": ticket_id,
            "status": status,
            "priority": priority,
            "technician": technician,
            "notes": notes,
        }))

    def get_server_stats(self) -> Dict[str, Any]:
        return self.call_tool("get_server_stats")


def tool_definition(tool: Any) -> Dict[str, Any]:
    return {
        "name": tool.name,
        "description": tool.description or "",
        "inputSchema": getattr(tool, "inputSchema", None) or {},
    }


def parse_tool_result(name: str, result: Any) -> Any:
    """
    Extract the payload of a ``tools/call`` result.

    Raises:
        MCPToolError: If the result is flagged ``isError``
    """
    content = result.content
    if result.isError:
        message = content[0].text if content and hasattr(content[0], "text") else "Tool execution failed"
        raise MCPToolError(name, message)

    structured = getattr(result, "structuredContent", None)
    if isinstance(structured, dict):
        # FastMCP wraps non-object return types as {"result": ...}
        if set(structured) == {"result"}:
            return structured["result"]
        return structured

    if not content:
        return result
    text = getattr(content[0], "text", None)
    if text is None:
        return content[0]
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


class MCPError(Exception):
    """JSON-RPC error from the server (unknown tool, malformed request)."""

    def __init__(self, error: Dict[str, Any]):
        if isinstance(error, dict):
            self.code = error.get("code", -1)
            self.message = error.get("message", "Unknown error")
            self.data = error.get("data")
        else:
            self.code = -1
            self.message = str(error)
            self.data = None
        super().__init__(f"MCP Error {self.code}: {self.message}")


class MCPToolError(Exception):
    """
    A ``tools/call`` result flagged ``isError``.

    For WispHub tools this means the arguments failed schema validation and
    the call never reached the service layer; service failures come back as
    ordinary results with ``success: false``.
    """

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        self.message = message
        super().__init__(f"Tool '{tool_name}' failed: {message}")


_client: Optional[MCPClient] = None


def get_mcp_client(base_url: str = DEFAULT_MCP_URL) -> MCPClient:
    """Shared client for ``base_url``; replaced when the URL changes."""
    global _client
    if _client is None or _client.url != base_url:
        _client = MCPClient(base_url)
    return _client
