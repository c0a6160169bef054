"""
MCP Server implementation using official MCP Python SDK (FastMCP).
Exposes WispHub customer-care operations as tools via Model Context Protocol.

Tools:
- search_clients / get_client / get_client_balance: cached reads
- update_client / change_service_status / update_ticket: verified writes
  (each write is followed by a re-read and a per-field comparison)
- create_ticket / list_client_tickets: support tickets
- get_server_stats: cache statistics and health

Every tool returns a JSON dictionary with at least ``success`` and
``timestamp``; failures add ``error``, ``error_kind`` and ``suggestions``.

Transports: stdio (Claude Desktop and other MCP hosts) and streamable HTTP.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, Literal, Optional

from mcp.server.fastmcp import FastMCP
from pydantic import Field

from src.services import BalanceService, ClientService, TicketService
from src.wisphub.config import ServerConfig, load_config
from src.wisphub.http_client import WispHubClient

logger = logging.getLogger(__name__)

ClientStatusName = Literal["active", "suspended", "cancelled"]
TicketStatusName = Literal["new", "in_progress", "resolved", "closed"]
PriorityName = Literal["low", "normal", "high", "very_high"]
ServiceId = Annotated[int, Field(ge=1, description="WispHub service id (id_servicio)")]


@dataclass
class ServiceContext:
    """Shared client and services for one server process."""
    config: ServerConfig
    client: WispHubClient
    clients: ClientService
    tickets: TicketService
    balances: BalanceService
    started_at: str

    def close(self) -> None:
        self.client.close()


def build_context(config: Optional[ServerConfig] = None, **client_kwargs) -> ServiceContext:
    """Create the shared WispHub client and the domain services around it."""
    config = config or load_config()
    client = WispHubClient.from_config(config, **client_kwargs)
    return ServiceContext(
        config=config,
        client=client,
        clients=ClientService(client, config),
        tickets=TicketService(client, config),
        balances=BalanceService(client, config),
        started_at=datetime.now(timezone.utc).isoformat(),
    )


_context: Optional[ServiceContext] = None


def _get_services() -> ServiceContext:
    """Return the process-wide service context, creating it on first use."""
    global _context
    if _context is None:
        _context = build_context()
        logger.info(
            "WispHub services ready",
            extra={"base_url": _context.config.base_url, "retry_attempts": _context.config.retry_attempts},
        )
    return _context


def _reset_services() -> None:
    global _context
    if _context is not None:
        _context.close()
    _context = None


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[ServiceContext]:
    """Expose the shared service context to each MCP session."""
    # Sessions share one client (and cache); it is closed when the transport stops
    yield _get_services()


# Create the MCP server with FastMCP
mcp = FastMCP(
    "WispHubCustomerCare",
    lifespan=app_lifespan,
    instructions="""
    WispHub customer-care tools for an ISP support desk:
    - Client lookup (by service id, email or name) and search
    - Balances and overdue invoices
    - Support ticket creation, listing and updates
    - Client contact updates and service status changes

    Write tools verify each change by re-reading the record. Check the
    `verification` and `warnings` keys: WispHub is known to ignore some
    contact-field writes and to revert service status changes.
    """
)


@mcp.tool()
def search_clients(
    status: Optional[ClientStatusName] = None,
    zone: Annotated[Optional[str], Field(description="Zone name or id")] = None,
    plan: Annotated[Optional[str], Field(description="Internet plan name")] = None,
    search: Annotated[Optional[str], Field(max_length=200, description="Free-text search")] = None,
    limit: Annotated[int, Field(ge=1, le=100)] = 20,
    offset: Annotated[int, Field(ge=0)] = 0,
) -> Dict[str, Any]:
    """
    Search clients with optional filters.

    Args:
        status: Filter by 'active', 'suspended' or 'cancelled'
        zone: Filter by zone
        plan: Filter by internet plan
        search: Name, username or address fragment (accents ignored)
        limit: Maximum number of results (default: 20)
        offset: Number of results to skip

    Returns:
        List of clients with count
    """
    return _get_services().clients.search_clients(
        status=status, zone=zone, plan=plan, search=search, limit=limit, offset=offset
    ).to_dict()


@mcp.tool()
def get_client(
    identifier: Annotated[str, Field(min_length=1, description="Service id, email or name")],
) -> Dict[str, Any]:
    """
    Get one client by service id, email address or name.

    Retries a few times because WispHub sometimes answers lookups for
    existing clients with an empty result. A client that is still not
    found is reported as success with ``data: null``.

    Args:
        identifier: Numeric service id, email address, or name to search

    Returns:
        Client data (or null) with the per-attempt trace in ``debug``
    """
    return _get_services().clients.get_client(identifier).to_dict()


@mcp.tool()
def get_client_balance(service_id: ServiceId) -> Dict[str, Any]:
    """
    Get the balance and pending invoices of a client's service.

    Args:
        service_id: WispHub service id

    Returns:
        Balance, account tier and pending invoices
    """
    return _get_services().balances.get_balance(service_id).to_dict()


@mcp.tool()
def update_client(
    service_id: ServiceId,
    email: Annotated[Optional[str], Field(max_length=254)] = None,
    phone: Annotated[Optional[str], Field(max_length=50)] = None,
    address: Annotated[Optional[str], Field(max_length=500)] = None,
    locality: Optional[str] = None,
    city: Optional[str] = None,
    notes: Annotated[Optional[str], Field(description="Client comments")] = None,
    sms_notifications: Optional[bool] = None,
    push_notifications: Optional[bool] = None,
) -> Dict[str, Any]:
    """
    Update client information and verify what WispHub actually stored.

    Args:
        service_id: WispHub service id
        email: New email (optional)
        phone: New phone (optional)
        address: New address (optional)
        locality: New locality (optional)
        city: New city (optional)
        notes: New comments (optional)
        sms_notifications: Enable/disable SMS notifications (optional)
        push_notifications: Enable/disable push notifications (optional)

    Returns:
        Re-read client data plus a per-field verification report
    """
    return _get_services().clients.update_client(
        service_id,
        email=email,
        phone=phone,
        address=address,
        locality=locality,
        city=city,
        notes=notes,
        sms_notifications=sms_notifications,
        push_notifications=push_notifications,
    ).to_dict()


@mcp.tool()
def change_service_status(
    service_id: ServiceId,
    new_status: ClientStatusName,
    reason: Annotated[str, Field(min_length=1, max_length=500, description="Why the status changes")],
) -> Dict[str, Any]:
    """
    Activate, suspend or cancel a client's service.

    Args:
        service_id: WispHub service id
        new_status: 'active', 'suspended' or 'cancelled'
        reason: Reason for the change (required)

    Returns:
        Re-read client data plus a verification report
    """
    return _get_services().clients.change_service_status(service_id, new_status, reason).to_dict()


@mcp.tool()
def create_ticket(
    service_id: ServiceId,
    subject: Annotated[str, Field(min_length=1, max_length=255)],
    description: Annotated[str, Field(min_length=1)],
    priority: PriorityName = "normal",
) -> Dict[str, Any]:
    """
    Create a new support ticket for a client's service.

    Args:
        service_id: WispHub service id
        subject: Short subject of the issue
        description: Description of the issue
        priority: 'low', 'normal', 'high' or 'very_high' (default: normal)

    Returns:
        Created ticket data with success status
    """
    return _get_services().tickets.create_ticket(service_id, subject, description, priority).to_dict()


@mcp.tool()
def list_client_tickets(service_id: ServiceId) -> Dict[str, Any]:
    """
    List the support tickets of a client's service.

    Args:
        service_id: WispHub service id

    Returns:
        List of tickets with count
    """
    return _get_services().tickets.list_client_tickets(service_id).to_dict()


@mcp.tool()
def update_ticket(
    ticket_id: Annotated[int, Field(ge=1)],
    status: Optional[TicketStatusName] = None,
    priority: Optional[PriorityName] = None,
    technician: Annotated[Optional[str], Field(description="Technician id or email")] = None,
    notes: Annotated[Optional[str], Field(max_length=2000)] = None,
) -> Dict[str, Any]:
    """
    Update a support ticket and verify the change.

    At least one of status, priority, technician or notes is required.
    Notes are appended to the ticket description with a timestamp.

    Args:
        ticket_id: Ticket id
        status: New status (optional)
        priority: New priority (optional)
        technician: Numeric technician id or technician email (optional)
        notes: Text to append to the description (optional)

    Returns:
        Re-read ticket data plus a verification report
    """
    return _get_services().tickets.update_ticket(
        ticket_id, status=status, priority=priority, technician=technician, notes=notes
    ).to_dict()


@mcp.tool()
def get_server_stats() -> Dict[str, Any]:
    """
    Get server health and cache statistics.

    Returns:
        Cache hit/miss counters, configuration summary and uptime start
    """
    context = _get_services()
    return {
        "success": True,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": {
            "status": "healthy",
            "started_at": context.started_at,
            "base_url": context.config.base_url,
            "retry_attempts": context.config.retry_attempts,
            "strict_verification": context.config.strict_verification,
            "cache": context.client.cache_stats().to_dict(),
        },
    }


def run_server():
    """Run the MCP server with stdio transport (default for MCP)."""
    try:
        mcp.run(transport="stdio")
    finally:
        _reset_services()


def run_http_server(host: str = "0.0.0.0", port: int = 8080):
    """Run the MCP server with streamable HTTP transport."""
    import uvicorn
    # FastMCP.run() doesn't accept host/port directly for streamable-http
    app = mcp.streamable_http_app()
    try:
        uvicorn.run(app, host=host, port=port)
    finally:
        _reset_services()


if __name__ == "__main__":
    # Run with stdio transport by default
    run_server()
