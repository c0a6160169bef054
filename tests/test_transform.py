"""
Tests for the data normalizer: response shapes, enum mappings, money,
dates and record normalization.
"""

import os
import sys
from datetime import datetime

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.wisphub.errors import ValidationError
from src.wisphub.models import AccountTier, ClientStatus, TicketPriority, TicketStatus
from src.wisphub.transform import (
    Many,
    Page,
    Single,
    api_code_to_priority,
    api_code_to_ticket_status,
    api_string_to_status,
    classify_response,
    date_api_to_iso,
    date_iso_to_api,
    days_overdue_since,
    default_subject_for,
    ensure_service_id,
    first_record,
    format_money,
    is_valid_service_id,
    normalize_balance,
    normalize_client,
    normalize_ticket,
    parse_money,
    prepare_search_query,
    priority_code,
    priority_to_api_code,
    status_to_api_string,
    technician_ref,
    ticket_status_code,
    ticket_status_to_api_code,
    tier_for_days,
    unwrap_collection,
)


SAMPLE_CLIENT = {
    "id_servicio": 1234,
    "usuario": "jperez@isp",
    "nombre": "Juan Pérez ",
    "email": "juan@example.com",
    "telefono": "5551234567",
    "direccion": "Calle 1 #23",
    "localidad": "Centro",
    "ciudad": "Oaxaca",
    "zona": {"id": 3, "nombre": "Norte"},
    "plan_internet": {"id": 9, "nombre": "20 Mbps"},
    "precio_plan": "350.00",
    "estado": "Activo",
    "estado_facturas": "Pagadas",
    "fecha_instalacion": "15/01/2023",
    "fecha_corte": "05/02/2024 00:00",
    "ultimo_cambio": "not a date",
    "saldo": "-1250.5",
    "ip": "10.0.0.2",
    "router": {"nombre": "MK-Norte"},
    "ssid_router_wifi": "Perez-Home",
    "tecnico": {"id": 4, "nombre": "Luis"},
    "comentarios": "Cliente preferente",
    "notificacion_sms": True,
}


class TestResponseShapes:
    """Single / Many / Page resolution."""

    def test_classify(self):
        assert isinstance(classify_response({"id": 1}), Single)
        assert isinstance(classify_response([{"id": 1}]), Many)
        page = classify_response({"count": 2, "next": None, "previous": None, "results": [{}, {}]})
        assert isinstance(page, Page)
        assert page.count == 2

    def test_unwrap_page(self):
        raw = {"count": 2, "next": None, "previous": None, "results": [{"id": 1}, {"id": 2}]}
        assert unwrap_collection(raw) == [{"id": 1}, {"id": 2}]

    def test_unwrap_array(self):
        assert unwrap_collection([{"id": 1}]) == [{"id": 1}]

    def test_unwrap_object(self):
        assert unwrap_collection({"id": 1}) == [{"id": 1}]

    @pytest.mark.parametrize("raw", [None, "text", 42])
    def test_unwrap_unknown_is_empty(self, raw):
        assert unwrap_collection(raw) == []

    def test_first_record(self):
        assert first_record({"results": []}) is None
        assert first_record([{"id": 5}, {"id": 6}]) == {"id": 5}
        assert first_record({"id": 7}) == {"id": 7}


class TestEnumMappings:
    """Forward and reverse enum maps."""

    @pytest.mark.parametrize("status", list(ClientStatus))
    def test_client_status_round_trip(self, status):
        assert api_string_to_status(status_to_api_string(status)) == status

    @pytest.mark.parametrize("status", [
        TicketStatus.NEW, TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED, TicketStatus.CLOSED,
    ])
    def test_ticket_status_round_trip(self, status):
        assert api_code_to_ticket_status(ticket_status_to_api_code(status)) == status

    @pytest.mark.parametrize("priority", list(TicketPriority))
    def test_priority_round_trip(self, priority):
        assert api_code_to_priority(priority_to_api_code(priority)) == priority

    @pytest.mark.parametrize("raw", ["Desconocido", "", None, 3, "ACTIVO?"])
    def test_unknown_client_status_is_cancelled(self, raw):
        assert api_string_to_status(raw) == ClientStatus.CANCELLED

    def test_client_status_aliases(self):
        assert api_string_to_status("Cortado") == ClientStatus.SUSPENDED
        assert api_string_to_status("Inactivo") == ClientStatus.CANCELLED
        assert api_string_to_status(" activo ") == ClientStatus.ACTIVE

    def test_unknown_ticket_code_is_open(self):
        assert api_code_to_ticket_status(99) == TicketStatus.OPEN
        assert ticket_status_to_api_code(TicketStatus.OPEN) == 1

    def test_unknown_priority_is_normal(self):
        assert api_code_to_priority("urgent?") == TicketPriority.NORMAL

    def test_text_labels_accepted(self):
        assert ticket_status_code("En Progreso") == 2
        assert ticket_status_code("3") == 3
        assert priority_code("Muy Alta") == 4
        assert priority_code("Alta") == 3
        assert priority_code(True) is None


class TestMoney:
    def test_format_money(self):
        assert format_money(1234.5) == "$1,234.50"

    def test_format_money_rounds_half_up(self):
        assert format_money(0.125) == "$0.13"

    def test_format_negative(self):
        assert format_money(-1250.5) == "-$1,250.50"

    def test_format_numeric_string(self):
        assert format_money("350") == "$350.00"

    def test_other_currency_symbol(self):
        assert format_money(10, "PEN") == "S/10.00"

    @pytest.mark.parametrize("amount", [0, 1234.5, 99.99, -42.1, 1_000_000])
    def test_parse_inverts_format(self, amount):
        assert parse_money(format_money(amount)) == pytest.approx(amount)


class TestDates:
    def test_api_date_to_iso(self):
        assert date_api_to_iso("15/01/2023") == "2023-01-15T00:00:00"
        assert date_api_to_iso("05/02/2024 13:45") == "2024-02-05T13:45:00"
        assert date_api_to_iso("05/02/2024 13:45:10") == "2024-02-05T13:45:10"

    def test_iso_input_accepted(self):
        assert date_api_to_iso("2024-02-05T13:45:00") == "2024-02-05T13:45:00"

    @pytest.mark.parametrize("raw", ["not a date", "", None, "32/13/2024"])
    def test_unparseable_is_empty(self, raw):
        assert date_api_to_iso(raw) == ""

    def test_iso_to_api(self):
        assert date_iso_to_api("2024-02-05T13:45:00") == "05/02/2024 13:45"
        assert date_iso_to_api(datetime(2024, 2, 5, 8, 0)) == "05/02/2024 08:00"

    def test_iso_to_api_rejects_junk(self):
        with pytest.raises(ValidationError):
            date_iso_to_api("yesterday")


class TestValidation:
    @pytest.mark.parametrize("value", [1, "42", " 7 "])
    def test_valid_ids(self, value):
        assert is_valid_service_id(value)

    @pytest.mark.parametrize("value", [0, -3, "abc", "", None, True, 1.5, "12a"])
    def test_invalid_ids(self, value):
        assert not is_valid_service_id(value)
        with pytest.raises(ValidationError):
            ensure_service_id(value)

    def test_prepare_search_query(self):
        assert prepare_search_query("  José PÉREZ Núñez ") == "jose perez nunez"

    @pytest.mark.parametrize("subject, expected", [
        ("Cliente sin internet desde ayer", "No Tiene Internet"),
        ("Internet muy lento", "Internet Lento"),
        ("Conexión intermitente", "Internet Intermitente"),
        ("Router no enciende", "No Responde el Router Wifi"),
        ("Mudanza a nuevo domicilio", "Cambio de Domicilio"),
        ("Pregunta general", "Otro Asunto"),
    ])
    def test_default_subject(self, subject, expected):
        assert default_subject_for(subject) == expected


class TestNormalizeClient:
    def test_fields(self):
        client = normalize_client(SAMPLE_CLIENT)

        assert client.service_id == 1234
        assert client.full_name == "Juan Pérez"
        assert client.status == ClientStatus.ACTIVE
        assert client.zone_id == 3
        assert client.zone_name == "Norte"
        assert client.plan == "20 Mbps"
        assert client.plan_price == "$350.00"
        assert client.plan_price_value == 350.0
        assert client.balance == "-$1,250.50"
        assert client.balance_value == -1250.5
        assert client.installed_at == "2023-01-15T00:00:00"
        assert client.last_changed_at == ""
        assert client.network.router_name == "MK-Norte"
        assert client.network.wifi.ssid == "Perez-Home"
        assert client.technician.name == "Luis"
        assert client.sms_notifications is True
        assert client.push_notifications is False

    def test_minimal_record(self):
        client = normalize_client({"id_servicio": "9", "estado": "???"})

        assert client.service_id == 9
        assert client.status == ClientStatus.CANCELLED
        assert client.balance == "$0.00"
        assert client.network.wifi.model == ""

    def test_to_dict_serializes_enums(self):
        data = normalize_client(SAMPLE_CLIENT).to_dict()

        assert data["status"] == "active"
        assert data["network"]["wifi"]["ssid"] == "Perez-Home"


class TestNormalizeTicket:
    def test_codes(self):
        ticket = normalize_ticket({
            "id": 55,
            "servicio": 1234,
            "asunto": "Sin internet",
            "estado": 2,
            "prioridad": 3,
            "tecnico": "tech@isp.com",
            "fecha_creacion": "01/03/2024 09:00",
        })

        assert ticket.ticket_id == 55
        assert ticket.service_id == 1234
        assert ticket.status == TicketStatus.IN_PROGRESS
        assert ticket.priority == TicketPriority.HIGH
        assert ticket.created_at == "2024-03-01T09:00:00"
        assert ticket.closed_at is None

    def test_labels_and_nested_objects(self):
        ticket = normalize_ticket({
            "id_ticket": 56,
            "servicio": {"id_servicio": 77},
            "estado": "Cerrado",
            "prioridad": "Baja",
            "tecnico": {"id": 4, "nombre": "Luis"},
            "fecha_fin": "02/03/2024 10:30:00",
        })

        assert ticket.ticket_id == 56
        assert ticket.service_id == 77
        assert ticket.status == TicketStatus.CLOSED
        assert ticket.priority == TicketPriority.LOW
        assert ticket.technician == "Luis"
        assert ticket.closed_at == "2024-03-02T10:30:00"

    def test_unknown_status_is_open(self):
        assert normalize_ticket({"id": 1, "estado": 12}).status == TicketStatus.OPEN

    def test_technician_ref(self):
        echoed = {"id": 7, "nombre": "Ana", "email": "Ana@isp.com"}

        assert technician_ref(echoed) == "7"
        assert technician_ref(echoed, prefer_email=True) == "ana@isp.com"
        assert technician_ref({"id": 7, "nombre": "Ana"}, prefer_email=True) == "7"
        assert technician_ref(" 7 ") == "7"
        assert technician_ref(None) == ""


class TestBalance:
    """Days overdue and account tiers."""

    NOW = datetime(2024, 3, 1, 12, 0)

    @pytest.mark.parametrize("days, tier", [
        (-5, AccountTier.CURRENT),
        (0, AccountTier.CURRENT),
        (1, AccountTier.OVERDUE),
        (30, AccountTier.OVERDUE),
        (31, AccountTier.SEVERELY_OVERDUE),
    ])
    def test_tier_thresholds(self, days, tier):
        assert tier_for_days(days) == tier

    def test_days_overdue_rounds_up(self):
        due = datetime(2024, 2, 29, 18, 0)
        assert days_overdue_since(due, self.NOW) == 1

    def test_days_overdue_never_negative(self):
        assert days_overdue_since(datetime(2024, 4, 1), self.NOW) == 0
        assert days_overdue_since(None, self.NOW) == 0

    def test_account_tier_uses_max_days(self):
        snapshot = normalize_balance({
            "id_servicio": 1234,
            "saldo_actual": "-700",
            "fecha_ultimo_pago": "01/01/2024",
            "facturas_pendientes": [
                {"id_factura": 1, "monto": "500", "fecha_vencimiento": "21/01/2024", "dias_vencido": 40},
                {"id_factura": 2, "total": 200, "fecha_vencimiento": "20/02/2024", "dias_vencido": 10},
            ],
        }, now=self.NOW)

        assert snapshot.account_tier == AccountTier.SEVERELY_OVERDUE
        assert [inv.tier for inv in snapshot.pending_invoices] == [
            AccountTier.SEVERELY_OVERDUE, AccountTier.OVERDUE,
        ]
        assert snapshot.pending_count == 2
        assert snapshot.total_owed == "$700.00"
        assert snapshot.balance == "-$700.00"
        assert snapshot.last_payment_at == "2024-01-01T00:00:00"

    def test_overdue_tier_for_ten_days(self):
        snapshot = normalize_balance({
            "facturas": [{"id": 3, "monto": 100, "dias_vencido": 10}],
        }, now=self.NOW)

        assert snapshot.account_tier == AccountTier.OVERDUE

    def test_no_invoices_is_current(self):
        snapshot = normalize_balance({"id_servicio": 5, "saldo": 0}, now=self.NOW)

        assert snapshot.account_tier == AccountTier.CURRENT
        assert snapshot.pending_invoices == []
        assert snapshot.total_owed == "$0.00"

    def test_days_computed_when_missing(self):
        snapshot = normalize_balance({
            "facturas_pendientes": [{"id_factura": 9, "monto": 50, "fecha_vencimiento": "20/02/2024"}],
        }, now=self.NOW)

        invoice = snapshot.pending_invoices[0]
        assert invoice.days_overdue == 11
        assert invoice.tier == AccountTier.OVERDUE
        assert invoice.due_date == "2024-02-20T00:00:00"

    def test_supplied_days_are_kept(self):
        snapshot = normalize_balance({
            "facturas_pendientes": [{"id_factura": 9, "monto": 50, "fecha_vencimiento": "20/02/2024", "dias_vencido": 0}],
        }, now=self.NOW)

        assert snapshot.pending_invoices[0].days_overdue == 0
