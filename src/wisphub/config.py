"""
Server configuration loaded from environment variables (and a ``.env`` file).
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from .errors import ValidationError

DEFAULT_BASE_URL = "https://api.wisphub.net"

# Fields the ticket PUT endpoint rejects when echoed back. Found by trial
# against the live API, so it is kept overridable.
DEFAULT_TICKET_WRITE_DENYLIST = [
    "tickets_mensual",
    "tickets_anual",
    "vencimiento",
    "archivo_ticket",
    "respuestas",
]

DEFAULT_CLIENT_UPDATE_ENDPOINTS = [
    "/api/clientes/{id}/",
    "/api/clients/{id}/",
    "/api/usuarios/{id}/",
    "/api/contactos/{id}/",
]


@dataclass
class CacheTTLs:
    """Per-resource read cache lifetimes in milliseconds."""
    clients: int = 300_000
    tickets: int = 300_000
    balances: int = 60_000


@dataclass
class TicketDefaults:
    """Bookkeeping values WispHub requires on ticket writes."""
    department: str = "Soporte Técnico"
    technician: str = ""
    finished_by: str = ""
    report_origin: str = "portal_cliente"


@dataclass
class ServerConfig:
    """Configuration consumed by the HTTP client and the domain services."""
    api_key: str = ""
    base_url: str = DEFAULT_BASE_URL
    timeout: float = 30.0
    retry_attempts: int = 3
    client_lookup_attempts: int = 3
    currency: str = "MXN"
    strict_verification: bool = False
    cache: CacheTTLs = field(default_factory=CacheTTLs)
    tickets: TicketDefaults = field(default_factory=TicketDefaults)
    ticket_write_denylist: List[str] = field(
        default_factory=lambda: list(DEFAULT_TICKET_WRITE_DENYLIST)
    )
    client_update_endpoints: List[str] = field(
        default_factory=lambda: list(DEFAULT_CLIENT_UPDATE_ENDPOINTS)
    )

    def validate(self) -> None:
        """Raise ValidationError if required settings are missing."""
        if not self.api_key:
            raise ValidationError("WISPHUB_API_KEY environment variable is required")
        if not self.base_url:
            raise ValidationError("WISPHUB_BASE_URL environment variable is required")
        if self.retry_attempts < 0:
            raise ValidationError("WISPHUB_RETRY_ATTEMPTS must be >= 0")
        if self.client_lookup_attempts < 1:
            raise ValidationError("WISPHUB_CLIENT_LOOKUP_ATTEMPTS must be >= 1")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValidationError(f"{name} must be a number, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.environ.get(name)
    if raw is None:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def load_config(env_file: Optional[str] = None, validate: bool = True) -> ServerConfig:
    """
    Build a ServerConfig from the environment.

    Args:
        env_file: Optional path to a ``.env`` file (defaults to dotenv lookup)
        validate: Whether to raise on missing required settings

    Returns:
        Populated ServerConfig
    """
    load_dotenv(env_file)

    config = ServerConfig(
        api_key=os.environ.get("WISPHUB_API_KEY", ""),
        base_url=os.environ.get("WISPHUB_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
        timeout=_env_float("WISPHUB_TIMEOUT", 30.0),
        retry_attempts=_env_int("WISPHUB_RETRY_ATTEMPTS", 3),
        client_lookup_attempts=_env_int("WISPHUB_CLIENT_LOOKUP_ATTEMPTS", 3),
        currency=os.environ.get("WISPHUB_CURRENCY", "MXN"),
        strict_verification=_env_bool("WISPHUB_STRICT_VERIFICATION", False),
        cache=CacheTTLs(
            clients=_env_int("WISPHUB_CACHE_CLIENTS_MS", 300_000),
            tickets=_env_int("WISPHUB_CACHE_TICKETS_MS", 300_000),
            balances=_env_int("WISPHUB_CACHE_BALANCES_MS", 60_000),
        ),
        tickets=TicketDefaults(
            department=os.environ.get("WISPHUB_DEFAULT_DEPARTMENT", "Soporte Técnico"),
            technician=os.environ.get("WISPHUB_DEFAULT_TECHNICIAN", ""),
            finished_by=os.environ.get("WISPHUB_FINISHED_BY", ""),
            report_origin=os.environ.get("WISPHUB_REPORT_ORIGIN", "portal_cliente"),
        ),
        ticket_write_denylist=_env_list(
            "WISPHUB_TICKET_WRITE_DENYLIST", DEFAULT_TICKET_WRITE_DENYLIST
        ),
        client_update_endpoints=_env_list(
            "WISPHUB_CLIENT_UPDATE_ENDPOINTS", DEFAULT_CLIENT_UPDATE_ENDPOINTS
        ),
    )

    if validate:
        config.validate()
    return config
