"""
Normalization between WispHub API payloads and the canonical records.

WispHub is inconsistent about response shapes (bare object, bare array,
Django REST Framework page), field names (``saldo`` vs ``saldo_actual``,
``monto`` vs ``total``) and enum encodings (Spanish strings for client
status, integer codes or text labels for tickets). Everything in this module
is a pure function; nothing here performs I/O.
"""

import json
import math
import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Union

from .errors import ValidationError
from .models import (
    AccountTier,
    BalanceSnapshot,
    ClientRecord,
    ClientStatus,
    NetworkConfig,
    PendingInvoice,
    Technician,
    TicketPriority,
    TicketRecord,
    TicketStatus,
    WifiRouter,
)


# Response shapes


@dataclass
class Single:
    """A bare object response (direct lookup by id)."""
    record: Dict[str, Any]


@dataclass
class Many:
    """A bare JSON array response."""
    records: List[Any] = field(default_factory=list)


@dataclass
class Page:
    """A paginated envelope: ``{count, next, previous, results}``."""
    results: List[Any]
    count: Optional[int] = None
    next: Optional[str] = None
    previous: Optional[str] = None


RawResponse = Union[Single, Many, Page]


def classify_response(raw: Any) -> RawResponse:
    """Resolve a decoded JSON body into one of the three known shapes."""
    if isinstance(raw, list):
        return Many(list(raw))
    if isinstance(raw, dict):
        results = raw.get("results")
        if isinstance(results, list):
            return Page(
                results=list(results),
                count=raw.get("count"),
                next=raw.get("next"),
                previous=raw.get("previous"),
            )
        return Single(raw)
    return Many([])


def unwrap_collection(raw: Any) -> List[Any]:
    """Return the records of any response shape as a list (zero, one or many)."""
    shape = classify_response(raw)
    if isinstance(shape, Page):
        return shape.results
    if isinstance(shape, Single):
        return [shape.record]
    return shape.records


def first_record(raw: Any) -> Optional[Dict[str, Any]]:
    """Return the single record a response carries, or the first of a collection."""
    records = unwrap_collection(raw)
    for record in records:
        if isinstance(record, dict):
            return record
    return None


# Enum mappings

CLIENT_STATUS_FROM_API: Dict[str, ClientStatus] = {
    "Activo": ClientStatus.ACTIVE,
    "Suspendido": ClientStatus.SUSPENDED,
    "Cancelado": ClientStatus.CANCELLED,
    "Cortado": ClientStatus.SUSPENDED,
    "Inactivo": ClientStatus.CANCELLED,
}

CLIENT_STATUS_TO_API: Dict[ClientStatus, str] = {
    ClientStatus.ACTIVE: "Activo",
    ClientStatus.SUSPENDED: "Suspendido",
    ClientStatus.CANCELLED: "Cancelado",
}

TICKET_STATUS_FROM_API: Dict[int, TicketStatus] = {
    1: TicketStatus.NEW,
    2: TicketStatus.IN_PROGRESS,
    3: TicketStatus.RESOLVED,
    4: TicketStatus.CLOSED,
}

TICKET_STATUS_TO_API: Dict[TicketStatus, int] = {
    TicketStatus.NEW: 1,
    TicketStatus.IN_PROGRESS: 2,
    TicketStatus.RESOLVED: 3,
    TicketStatus.CLOSED: 4,
    TicketStatus.OPEN: 1,
}

PRIORITY_FROM_API: Dict[int, TicketPriority] = {
    1: TicketPriority.LOW,
    2: TicketPriority.NORMAL,
    3: TicketPriority.HIGH,
    4: TicketPriority.VERY_HIGH,
}

PRIORITY_TO_API: Dict[TicketPriority, int] = {
    TicketPriority.LOW: 1,
    TicketPriority.NORMAL: 2,
    TicketPriority.HIGH: 3,
    TicketPriority.VERY_HIGH: 4,
}

# Ticket GETs sometimes return display labels instead of codes
TICKET_STATUS_LABELS: Dict[str, int] = {
    "nuevo": 1,
    "en progreso": 2,
    "resuelto": 3,
    "cerrado": 4,
}

PRIORITY_LABELS: Dict[str, int] = {
    "baja": 1,
    "normal": 2,
    "alta": 3,
    "muy alta": 4,
}


def api_string_to_status(value: Any) -> ClientStatus:
    """Map an upstream status string; unknown values become CANCELLED."""
    if not isinstance(value, str):
        return ClientStatus.CANCELLED
    text = value.strip()
    return CLIENT_STATUS_FROM_API.get(text) or CLIENT_STATUS_FROM_API.get(
        text.capitalize(), ClientStatus.CANCELLED
    )


def status_to_api_string(status: Union[ClientStatus, str]) -> str:
    return CLIENT_STATUS_TO_API[ClientStatus(status)]


def _coerce_code(value: Any, labels: Dict[str, int]) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return int(text)
        return labels.get(text.lower().replace("_", " "))
    return None


def ticket_status_code(value: Any) -> Optional[int]:
    """Upstream ticket status (int, numeric string or label) as an integer code."""
    return _coerce_code(value, TICKET_STATUS_LABELS)


def priority_code(value: Any) -> Optional[int]:
    """Upstream priority (int, numeric string or label) as an integer code."""
    return _coerce_code(value, PRIORITY_LABELS)


def api_code_to_ticket_status(value: Any) -> TicketStatus:
    return TICKET_STATUS_FROM_API.get(ticket_status_code(value), TicketStatus.OPEN)


def ticket_status_to_api_code(status: Union[TicketStatus, str]) -> int:
    return TICKET_STATUS_TO_API[TicketStatus(status)]


def api_code_to_priority(value: Any) -> TicketPriority:
    return PRIORITY_FROM_API.get(priority_code(value), TicketPriority.NORMAL)


def priority_to_api_code(priority: Union[TicketPriority, str]) -> int:
    return PRIORITY_TO_API[TicketPriority(priority)]


# Scalars: numbers, money, dates

CURRENCY_SYMBOLS = {
    "MXN": "$",
    "USD": "$",
    "COP": "$",
    "CLP": "$",
    "ARS": "$",
    "EUR": "€",
    "PEN": "S/",
    "GTQ": "Q",
}


def to_number(value: Any) -> float:
    """Parse a numeric or numeric-as-string field; junk becomes 0.0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip().replace(",", ""))
    except ValueError:
        return 0.0


def to_int(value: Any) -> int:
    try:
        return int(to_number(value))
    except (OverflowError, ValueError):
        return 0


def format_money(amount: Any, currency: str = "MXN") -> str:
    """Format an amount with two decimals and the currency symbol: ``$1,234.50``."""
    try:
        value = Decimal(str(to_number(amount))).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        value = Decimal("0.00")
    symbol = CURRENCY_SYMBOLS.get(currency.upper(), currency.upper() + " ")
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol}{abs(value):,.2f}"


def parse_money(text: str) -> float:
    """Inverse of ``format_money``."""
    cleaned = re.sub(r"[^0-9.\-]", "", text or "")
    try:
        return float(cleaned)
    except ValueError:
        return 0.0


API_DATE_FORMATS = (
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y",
)

API_DATETIME_FORMAT = "%d/%m/%Y %H:%M:%S"


def parse_api_date(value: Any) -> Optional[datetime]:
    """Parse ``DD/MM/YYYY[ HH:MM[:SS]]`` or ISO-8601; None when unparseable."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    for fmt in API_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None


def date_api_to_iso(value: Any) -> str:
    parsed = parse_api_date(value)
    return parsed.isoformat() if parsed else ""


def date_iso_to_api(value: Union[str, datetime]) -> str:
    """Render a datetime (or ISO string) in the upstream ``DD/MM/YYYY HH:MM`` form."""
    parsed = value if isinstance(value, datetime) else parse_api_date(value)
    if parsed is None:
        raise ValidationError(f"Invalid date: {value!r}")
    return parsed.strftime("%d/%m/%Y %H:%M")


# Helpers


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _nested(raw: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = raw.get(key)
    return value if isinstance(value, dict) else {}


def _first_present(raw: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def is_valid_service_id(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value > 0
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip()) > 0
    return False


def ensure_service_id(value: Any) -> int:
    """Return ``value`` as a positive int or raise ValidationError."""
    if not is_valid_service_id(value):
        raise ValidationError(f"Invalid service id: {value!r} (must be a positive integer)")
    return int(value)


def technician_ref(value: Any, prefer_email: bool = False) -> str:
    """
    Reduce a ticket ``tecnico`` value to a comparable reference.

    WispHub accepts an id or an email on write but may echo the technician
    back as an object (``{"id": 7, "nombre": ..., "email": ...}``).
    """
    if isinstance(value, dict):
        keys = ("email", "id") if prefer_email else ("id", "email")
        value = _first_present(value, *keys)
    if value is None or isinstance(value, bool):
        return ""
    return str(value).strip().lower()


def prepare_search_query(search: str) -> str:
    """Trim, lowercase and strip accents."""
    decomposed = unicodedata.normalize("NFD", search.strip().lower())
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


# Keyword -> predefined WispHub ticket subject. Order matters: first match wins.
DEFAULT_SUBJECTS = [
    ("no internet", "No Tiene Internet"),
    ("sin internet", "No Tiene Internet"),
    ("intermitente", "Internet Intermitente"),
    ("cortes", "Internet Intermitente"),
    ("desconexion", "Internet Intermitente"),
    ("lento", "Internet Lento"),
    ("velocidad", "Internet Lento"),
    ("conexion", "No Tiene Internet"),
    ("internet", "Internet Lento"),
    ("antena", "Antena Desalineada"),
    ("router", "No Responde el Router Wifi"),
    ("wifi", "No Responde el Router Wifi"),
    ("cable", "Cable UTP Dañado"),
    ("poe", "PoE Dañado"),
    ("conector", "Conector Dañado"),
    ("fibra", "Cable Fibra Dañado"),
    ("jumper", "Jumper Dañado"),
    ("domicilio", "Cambio de Domicilio"),
    ("mudanza", "Cambio de Domicilio"),
    ("cambio", "Cambio de Domicilio"),
    ("reconexion", "Reconexion"),
    ("reactivar", "Reconexion"),
    ("cancelacion", "Cancelación"),
    ("cancelar", "Cancelación"),
    ("baja", "Desconexión"),
    ("recoleccion", "Recolección De Equipos"),
]


def default_subject_for(subject: str) -> str:
    """Map a free-text subject onto one of WispHub's predefined subjects."""
    normalized = prepare_search_query(subject or "")
    for keyword, default in DEFAULT_SUBJECTS:
        if keyword in normalized:
            return default
    return "Otro Asunto"


# Records


def normalize_client(raw: Dict[str, Any], currency: str = "MXN") -> ClientRecord:
    """Build a ClientRecord from a raw ``/api/clientes/`` object."""
    zone = _nested(raw, "zona")
    plan = _nested(raw, "plan_internet")
    router = _nested(raw, "router")
    technician = _nested(raw, "tecnico")
    price = to_number(raw.get("precio_plan"))
    balance = to_number(raw.get("saldo"))

    return ClientRecord(
        service_id=to_int(raw.get("id_servicio")),
        username=_text(raw.get("usuario")),
        full_name=_text(raw.get("nombre")).strip(),
        email=_text(raw.get("email")),
        phone=_text(raw.get("telefono")),
        address=_text(raw.get("direccion")),
        locality=_text(raw.get("localidad")),
        city=_text(raw.get("ciudad")),
        zone_id=to_int(zone.get("id")),
        zone_name=_text(zone.get("nombre")),
        plan=_text(plan.get("nombre")),
        plan_price=format_money(price, currency),
        plan_price_value=price,
        status=api_string_to_status(raw.get("estado")),
        invoice_status=_text(raw.get("estado_facturas")),
        installed_at=date_api_to_iso(raw.get("fecha_instalacion")),
        cutoff_at=date_api_to_iso(raw.get("fecha_corte")),
        last_changed_at=date_api_to_iso(raw.get("ultimo_cambio")),
        balance=format_money(balance, currency),
        balance_value=balance,
        network=NetworkConfig(
            ip=_text(raw.get("ip")),
            local_ip=_text(raw.get("ip_local")),
            mac=_text(raw.get("mac_cpe")),
            lan_interface=_text(raw.get("interfaz_lan")),
            router_name=_text(router.get("nombre")),
            wifi=WifiRouter(
                model=_text(raw.get("modelo_router_wifi")),
                ip=_text(raw.get("ip_router_wifi")),
                mac=_text(raw.get("mac_router_wifi")),
                ssid=_text(raw.get("ssid_router_wifi")),
            ),
        ),
        technician=Technician(
            id=to_int(technician.get("id")),
            name=_text(technician.get("nombre")),
        ),
        notes=_text(raw.get("comentarios")),
        coordinates=_text(raw.get("coordenadas")),
        sms_notifications=bool(raw.get("notificacion_sms")),
        push_notifications=bool(raw.get("notificaciones_push")),
    )


def normalize_ticket(raw: Dict[str, Any]) -> TicketRecord:
    """Build a TicketRecord from a raw ``/api/tickets/`` object."""
    service = raw.get("servicio")
    if isinstance(service, dict):
        service = _first_present(service, "id_servicio", "id")

    technician = raw.get("tecnico")
    if isinstance(technician, dict):
        technician = _first_present(technician, "nombre", "email", "id")

    closed = _first_present(raw, "fecha_cierre", "fecha_fin")

    return TicketRecord(
        ticket_id=to_int(_first_present(raw, "id", "id_ticket")),
        service_id=to_int(service),
        subject=_text(raw.get("asunto")),
        description=_text(raw.get("descripcion")),
        status=api_code_to_ticket_status(raw.get("estado")),
        priority=api_code_to_priority(raw.get("prioridad")),
        technician=_text(technician),
        created_at=date_api_to_iso(raw.get("fecha_creacion")),
        closed_at=(date_api_to_iso(closed) or None) if closed else None,
    )


def tier_for_days(days_overdue: int) -> AccountTier:
    if days_overdue <= 0:
        return AccountTier.CURRENT
    if days_overdue <= 30:
        return AccountTier.OVERDUE
    return AccountTier.SEVERELY_OVERDUE


def days_overdue_since(due: Optional[datetime], now: Optional[datetime] = None) -> int:
    """``max(0, ceil(now - due))`` in days; 0 when the due date is unknown."""
    if due is None:
        return 0
    now = now or datetime.now(due.tzinfo)
    if (now.tzinfo is None) != (due.tzinfo is None):
        now = now.replace(tzinfo=due.tzinfo)
    elapsed_days = (now - due).total_seconds() / 86400
    return max(0, math.ceil(elapsed_days))


def normalize_balance(
    raw: Dict[str, Any],
    currency: str = "MXN",
    now: Optional[datetime] = None,
) -> BalanceSnapshot:
    """
    Build a BalanceSnapshot from a raw ``/api/clientes/{id}/saldo/`` object.

    Accepts ``facturas_pendientes`` or ``facturas`` for the invoice list,
    ``saldo_actual`` or ``saldo`` for the balance, and ``monto`` or ``total``
    per invoice. Missing ``dias_vencido`` is derived from the due date.
    """
    raw_invoices = _first_present(raw, "facturas_pendientes", "facturas") or []
    if not isinstance(raw_invoices, list):
        raw_invoices = unwrap_collection(raw_invoices)

    invoices: List[PendingInvoice] = []
    for item in raw_invoices:
        if not isinstance(item, dict):
            continue
        amount = to_number(_first_present(item, "monto", "total"))
        due_raw = item.get("fecha_vencimiento")
        supplied_days = item.get("dias_vencido")
        if supplied_days is None or supplied_days == "":
            days = days_overdue_since(parse_api_date(due_raw), now)
        else:
            days = max(0, to_int(supplied_days))
        invoices.append(PendingInvoice(
            invoice_id=to_int(_first_present(item, "id_factura", "id")),
            amount=format_money(amount, currency),
            amount_value=amount,
            due_date=date_api_to_iso(due_raw),
            days_overdue=days,
            tier=tier_for_days(days),
        ))

    max_days = max((invoice.days_overdue for invoice in invoices), default=0)
    balance = to_number(_first_present(raw, "saldo_actual", "saldo"))

    return BalanceSnapshot(
        service_id=to_int(raw.get("id_servicio")),
        balance=format_money(balance, currency),
        balance_value=balance,
        last_payment_at=date_api_to_iso(raw.get("fecha_ultimo_pago")),
        account_tier=tier_for_days(max_days),
        pending_count=len(invoices),
        total_owed=format_money(sum(invoice.amount_value for invoice in invoices), currency),
        pending_invoices=invoices,
    )


def dump(value: Any, limit: int = 500) -> str:
    """Compact JSON rendering for log and error messages."""
    try:
        text = json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        text = str(value)
    return text if len(text) <= limit else text[:limit] + "..."
