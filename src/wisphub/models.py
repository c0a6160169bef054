"""
Canonical domain records returned by the services.

Upstream encodings (Spanish status strings, integer ticket codes) never
appear here; ``transform`` converts them at the boundary.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional


class ClientStatus(str, Enum):
    """Service account status."""
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class TicketStatus(str, Enum):
    """Support ticket status. OPEN is the fallback for unknown upstream codes."""
    NEW = "new"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"
    OPEN = "open"


class TicketPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    VERY_HIGH = "very_high"


class AccountTier(str, Enum):
    """Severity derived from days overdue (thresholds 0 and 30)."""
    CURRENT = "current"
    OVERDUE = "overdue"
    SEVERELY_OVERDUE = "severely_overdue"


def _serialize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_serialize(v) for v in value]
    return value


class Record:
    """Mixin giving dataclass records a JSON-friendly ``to_dict``."""

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))


@dataclass
class WifiRouter(Record):
    model: str = ""
    ip: str = ""
    mac: str = ""
    ssid: str = ""


@dataclass
class NetworkConfig(Record):
    ip: str = ""
    local_ip: str = ""
    mac: str = ""
    lan_interface: str = ""
    router_name: str = ""
    wifi: WifiRouter = field(default_factory=WifiRouter)


@dataclass
class Technician(Record):
    id: int = 0
    name: str = ""


@dataclass
class ClientRecord(Record):
    """One subscriber service as exposed to MCP clients."""
    service_id: int
    username: str = ""
    full_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    locality: str = ""
    city: str = ""
    zone_id: int = 0
    zone_name: str = ""
    plan: str = ""
    plan_price: str = ""
    plan_price_value: float = 0.0
    status: ClientStatus = ClientStatus.CANCELLED
    invoice_status: str = ""
    installed_at: str = ""
    cutoff_at: str = ""
    last_changed_at: str = ""
    balance: str = ""
    balance_value: float = 0.0
    network: NetworkConfig = field(default_factory=NetworkConfig)
    technician: Technician = field(default_factory=Technician)
    notes: str = ""
    coordinates: str = ""
    sms_notifications: bool = False
    push_notifications: bool = False


@dataclass
class TicketRecord(Record):
    ticket_id: int
    service_id: int = 0
    subject: str = ""
    description: str = ""
    status: TicketStatus = TicketStatus.OPEN
    priority: TicketPriority = TicketPriority.NORMAL
    technician: str = ""
    created_at: str = ""
    closed_at: Optional[str] = None


@dataclass
class PendingInvoice(Record):
    invoice_id: int
    amount: str
    amount_value: float
    due_date: str
    days_overdue: int
    tier: AccountTier


@dataclass
class BalanceSnapshot(Record):
    """Point-in-time financial state of a service; never persisted."""
    service_id: int
    balance: str
    balance_value: float
    last_payment_at: str
    account_tier: AccountTier
    pending_count: int
    total_owed: str
    pending_invoices: List[PendingInvoice] = field(default_factory=list)
