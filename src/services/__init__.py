"""
Domain services for the WispHub customer-care tools.

Each service method returns a ``ToolResult`` and never raises.
"""

from .base_service import BaseService, ToolResult
from .balance_service import BalanceService
from .client_service import ClientService
from .ticket_service import TicketService

__all__ = [
    "BaseService",
    "ToolResult",
    "BalanceService",
    "ClientService",
    "TicketService",
]
