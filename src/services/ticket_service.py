"""
Support ticket operations: create, list per client, update.

Ticket updates are a fetch-merge-PUT: WispHub's ticket PUT replaces the
whole record and rejects several fields it returns on GET, so the current
ticket is cleaned up before the requested changes are applied.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from src.wisphub.config import TicketDefaults
from src.wisphub.errors import NotFoundError, ValidationError, WispHubError
from src.wisphub.models import TicketPriority, TicketStatus
from src.wisphub.transform import (
    API_DATETIME_FORMAT,
    default_subject_for,
    ensure_service_id,
    first_record,
    normalize_ticket,
    priority_code,
    priority_to_api_code,
    technician_ref,
    ticket_status_code,
    ticket_status_to_api_code,
    unwrap_collection,
)

from .base_service import BaseService, ToolResult

TICKETS_PATH = "/api/tickets/"

# razon_falla is mandatory whenever estado changes
FAILURE_REASON_BY_STATUS = {
    TicketStatus.NEW: "Otro",
    TicketStatus.OPEN: "Otro",
    TicketStatus.IN_PROGRESS: "Internet Intermitente",
    TicketStatus.RESOLVED: "Otro",
    TicketStatus.CLOSED: "Otro",
}

NOTES_MARKER = "--- ACTUALIZACIÓN {stamp} ---"

VERIFIED_TICKET_FIELDS = ("estado", "prioridad", "tecnico", "descripcion")


def ticket_path(ticket_id: int) -> str:
    return f"{TICKETS_PATH}{ticket_id}/"


def _enum_value(enum_cls, value: Any, name: str):
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {name} {value!r}; expected one of: {allowed}")


def build_ticket_changes(
    status: Optional[TicketStatus] = None,
    priority: Optional[TicketPriority] = None,
    technician: Optional[str] = None,
) -> Dict[str, Any]:
    """Upstream fields for the requested changes (notes are handled separately)."""
    changes: Dict[str, Any] = {}
    if status is not None:
        changes["estado"] = ticket_status_to_api_code(status)
        changes["razon_falla"] = FAILURE_REASON_BY_STATUS[status]
    if priority is not None:
        changes["prioridad"] = priority_to_api_code(priority)
    if technician is not None:
        technician = technician.strip()
        if technician.isdigit():
            changes["tecnico"] = technician
            changes["email_tecnico"] = ""
        elif "@" in technician:
            changes["tecnico"] = technician
            changes["email_tecnico"] = technician
        elif technician:
            raise ValidationError("technician must be a numeric technician id or an email address")
    return changes


def merge_ticket_update(
    current: Dict[str, Any],
    ticket_id: int,
    changes: Dict[str, Any],
    notes: Optional[str] = None,
    status: Optional[TicketStatus] = None,
    defaults: Optional[TicketDefaults] = None,
    denylist: Optional[List[str]] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Build the PUT body from the current upstream ticket and the changes.

    Args:
        current: Raw ticket as returned by GET
        ticket_id: Ticket id, echoed as ``id_ticket``
        changes: Output of ``build_ticket_changes``
        notes: Text appended to ``descripcion`` under a timestamped marker
        status: Target status, drives ``fecha_inicio``/``fecha_fin``/``finalizado_por``
        defaults: Ticket bookkeeping defaults
        denylist: Fields WispHub rejects on PUT
        now: Timestamp for markers and dates

    Returns:
        Complete body for ``PUT /api/tickets/{id}/``
    """
    defaults = defaults or TicketDefaults()
    now = now or datetime.now()
    merged = dict(current)

    code = priority_code(merged.get("prioridad"))
    merged["prioridad"] = code if code is not None else 2
    code = ticket_status_code(merged.get("estado"))
    merged["estado"] = code if code is not None else 1

    if merged.get("asunto"):
        merged["asuntos_default"] = default_subject_for(merged["asunto"])
    merged["origen_reporte"] = defaults.report_origin

    technician = merged.get("tecnico")
    if technician is None or (isinstance(technician, str) and not technician.strip()):
        merged.pop("tecnico", None)
        merged.pop("email_tecnico", None)
    elif isinstance(technician, dict):
        merged["tecnico"] = technician.get("id") or technician.get("email") or ""
        if not merged["tecnico"]:
            merged.pop("tecnico")

    if notes:
        marker = NOTES_MARKER.format(stamp=now.strftime("%d/%m/%Y %H:%M"))
        merged["descripcion"] = f"{merged.get('descripcion') or ''}\n\n{marker}\n{notes}"

    if status is not None:
        stamp = now.strftime(API_DATETIME_FORMAT)
        started = status in (TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED, TicketStatus.CLOSED)
        if started and not merged.get("fecha_inicio"):
            merged["fecha_inicio"] = stamp
        if status in (TicketStatus.RESOLVED, TicketStatus.CLOSED):
            merged["fecha_fin"] = stamp
            if defaults.finished_by:
                merged["finalizado_por"] = defaults.finished_by

    for name in denylist or []:
        merged.pop(name, None)

    merged.update(changes)
    merged["id_ticket"] = ticket_id
    return merged


class TicketService(BaseService):
    """Operations on WispHub support tickets."""

    def create_ticket(
        self,
        service_id: Any,
        subject: str,
        description: str,
        priority: str = TicketPriority.NORMAL.value,
    ) -> ToolResult:
        return self._run(
            "create_ticket",
            {"service_id": service_id, "subject": subject, "description": description, "priority": priority},
            lambda: self._create_ticket(service_id, subject, description, priority),
            "Error creating ticket",
        )

    def _create_ticket(self, service_id, subject, description, priority) -> ToolResult:
        service_id = ensure_service_id(service_id)
        subject = self._require_text(subject, "subject", max_length=255)
        description = self._require_text(description, "description")
        level = _enum_value(TicketPriority, priority, "priority")
        defaults = self.config.tickets

        payload: Dict[str, Any] = {
            "servicio": service_id,
            "asunto": subject,
            "descripcion": description,
            "prioridad": priority_to_api_code(level),
            "estado": ticket_status_to_api_code(TicketStatus.NEW),
            "asuntos_default": default_subject_for(subject),
            "departamentos_default": defaults.department,
            "departamento": defaults.department,
            "origen_reporte": defaults.report_origin,
        }
        if defaults.technician:
            payload["tecnico"] = defaults.technician

        response = self.client.post(TICKETS_PATH, payload)
        raw = first_record(response)
        if raw is None:
            raise WispHubError("WispHub accepted the ticket but returned no ticket data")
        self.client.invalidate(TICKETS_PATH, {"servicio": service_id})

        ticket = normalize_ticket(raw)
        if not ticket.service_id:
            ticket.service_id = service_id
        return ToolResult.ok(ticket, debug={"sent_to_api": payload, "api_response": response})

    def list_client_tickets(self, service_id: Any) -> ToolResult:
        return self._run(
            "list_client_tickets",
            {"service_id": service_id},
            lambda: self._list_client_tickets(service_id),
            "Error listing tickets",
        )

    def _list_client_tickets(self, service_id: Any) -> ToolResult:
        service_id = ensure_service_id(service_id)
        response = self.client.get(
            TICKETS_PATH, {"servicio": service_id}, cache_ttl=self.config.cache.tickets
        )
        tickets = [normalize_ticket(raw) for raw in unwrap_collection(response) if isinstance(raw, dict)]
        return ToolResult.ok(tickets, debug={"service_id": service_id})

    def update_ticket(
        self,
        ticket_id: Any,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        technician: Optional[str] = None,
        notes: Optional[str] = None,
        now: Callable[[], datetime] = datetime.now,
    ) -> ToolResult:
        return self._run(
            "update_ticket",
            {"ticket_id": ticket_id, "status": status, "priority": priority, "technician": technician, "notes": notes},
            lambda: self._update_ticket(ticket_id, status, priority, technician, notes, now()),
            "Error updating ticket",
        )

    def _update_ticket(self, ticket_id, status, priority, technician, notes, now: datetime) -> ToolResult:
        ticket_id = _ticket_id(ticket_id)
        target = _enum_value(TicketStatus, status, "status") if status else None
        level = _enum_value(TicketPriority, priority, "priority") if priority else None
        notes = notes.strip() if notes else None

        changes = build_ticket_changes(target, level, technician)
        if not changes and not notes:
            raise ValidationError("At least one field required: status, priority, technician, notes")

        current = first_record(self.client.get(ticket_path(ticket_id)))
        if current is None:
            raise NotFoundError(f"Ticket {ticket_id} not found")

        payload = merge_ticket_update(
            current,
            ticket_id,
            changes,
            notes=notes,
            status=target,
            defaults=self.config.tickets,
            denylist=self.config.ticket_write_denylist,
            now=now,
        )
        fields = [name for name in VERIFIED_TICKET_FIELDS if name in changes]
        if notes:
            fields.append("descripcion")

        canonical: Dict[str, Callable[[Any], Any]] = {"estado": ticket_status_code, "prioridad": priority_code}
        if "tecnico" in changes:
            by_email = "@" in str(changes["tecnico"])
            canonical["tecnico"] = lambda value: technician_ref(value, prefer_email=by_email)

        service = normalize_ticket(current).service_id
        try:
            outcome = self.verifier.run(
                ticket_id,
                payload,
                write=lambda body: self.client.put(ticket_path(ticket_id), body),
                reread=lambda: self.client.get(ticket_path(ticket_id)),
                normalize=normalize_ticket,
                fields=fields,
                canonical=canonical,
            )
        finally:
            # a strict-mode mismatch still follows an acknowledged write
            if service:
                self.client.invalidate(TICKETS_PATH, {"servicio": service})

        warnings = []
        if outcome.report.mismatched_fields:
            warnings.append("WispHub did not persist: " + ", ".join(outcome.report.mismatched_fields))
        if not outcome.report.verified:
            warnings.append(f"Update sent but could not be verified: {outcome.report.error}")

        return ToolResult.ok(
            outcome.entity,
            warnings=warnings,
            verification=outcome.report.to_dict(),
            debug=outcome.debug(),
        )


def _ticket_id(value: Any) -> int:
    try:
        return ensure_service_id(value)
    except ValidationError:
        raise ValidationError(f"Invalid ticket id: {value!r} (must be a positive integer)")

