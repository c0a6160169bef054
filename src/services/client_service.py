"""
Client (service account) operations: search, lookup, update, status change.
"""

import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from src.wisphub.errors import ApiError, NotFoundError, ValidationError, WispHubError
from src.wisphub.models import ClientRecord, ClientStatus
from src.wisphub.transform import (
    api_string_to_status,
    ensure_service_id,
    first_record,
    normalize_client,
    prepare_search_query,
    status_to_api_string,
    unwrap_collection,
)
from src.wisphub.verification import try_in_order

from .base_service import BaseService, ToolResult

logger = logging.getLogger(__name__)

CLIENTS_PATH = "/api/clientes/"

# Tool argument -> upstream field
CLIENT_UPDATE_FIELDS = {
    "email": "email",
    "phone": "telefono",
    "address": "direccion",
    "locality": "localidad",
    "city": "ciudad",
    "notes": "comentarios",
    "sms_notifications": "notificacion_sms",
    "push_notifications": "notificaciones_push",
}

# WispHub acknowledges writes to these but does not persist them
UNRELIABLE_CONTACT_FIELDS = ("email", "telefono", "direccion", "localidad", "ciudad")

STATUS_REVERT_NOTE = (
    "WispHub is known to revert service status changes to 'Activo'; "
    "check the verification report and use the admin panel if the change did not stick"
)


def client_path(service_id: int) -> str:
    return f"{CLIENTS_PATH}{service_id}/"


class ClientService(BaseService):
    """Operations on WispHub client records."""

    def search_clients(
        self,
        status: Optional[str] = None,
        zone: Optional[str] = None,
        plan: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> ToolResult:
        args = {"status": status, "zone": zone, "plan": plan, "search": search, "limit": limit, "offset": offset}
        return self._run(
            "search_clients",
            args,
            lambda: self._search_clients(status, zone, plan, search, limit, offset),
            "Error searching clients",
        )

    def _search_clients(self, status, zone, plan, search, limit, offset) -> ToolResult:
        if not 1 <= limit <= 100:
            raise ValidationError("limit must be between 1 and 100")
        if offset < 0:
            raise ValidationError("offset must be >= 0")

        params: Dict[str, Any] = {"limit": limit, "offset": offset}
        if status:
            params["estado"] = status_to_api_string(_client_status(status))
        if zone:
            params["zona"] = zone.strip()
        if plan:
            params["plan"] = plan.strip()
        if search and search.strip():
            params["search"] = prepare_search_query(search)

        response = self.client.get(CLIENTS_PATH, params, cache_ttl=self.config.cache.clients)
        clients = [
            normalize_client(raw, self.config.currency)
            for raw in unwrap_collection(response)
            if isinstance(raw, dict)
        ]
        total = response.get("count") if isinstance(response, dict) else None
        return ToolResult.ok(
            clients,
            debug={"params": params, "total": total if total is not None else len(clients)},
        )

    # Bounded-retry lookup

    def get_client(self, identifier: Any, max_attempts: Optional[int] = None) -> ToolResult:
        """
        Fetch one client by service id, email or free-text search.

        Retries up to ``max_attempts`` times (config default) because WispHub
        intermittently answers lookups for existing clients with nothing.
        Only the first attempt may be served from cache.
        """
        return self._run(
            "get_client",
            {"identifier": identifier, "max_attempts": max_attempts},
            lambda: self._get_client(identifier, max_attempts),
            "Error getting client",
        )

    def _get_client(self, identifier: Any, max_attempts: Optional[int]) -> ToolResult:
        record, trace = self.lookup_client(identifier, max_attempts)
        debug = {
            "attempts": trace,
            "total_attempts": len(trace),
            "successful_attempt": next(
                (entry["attempt"] for entry in trace if entry["has_data"]), None
            ),
        }
        if record is None:
            debug["no_data_found"] = True
            return ToolResult.ok(None, debug=debug)
        return ToolResult.ok(normalize_client(record, self.config.currency), debug=debug)

    def lookup_client(
        self, identifier: Any, max_attempts: Optional[int] = None
    ) -> Tuple[Optional[Dict[str, Any]], List[Dict[str, Any]]]:
        """
        Run the bounded-retry read and return ``(raw_record, attempt_trace)``.

        Raises the last error only when every attempt failed; attempts that
        succeed with no data end in ``(None, trace)``.
        """
        path, params = _lookup_request(identifier)
        attempts_allowed = max_attempts or self.config.client_lookup_attempts
        if attempts_allowed < 1:
            raise ValidationError("max_attempts must be >= 1")

        trace: List[Dict[str, Any]] = []
        last_error: Optional[WispHubError] = None
        any_success = False

        for attempt in range(1, attempts_allowed + 1):
            use_cache = attempt == 1
            started = time.monotonic()
            entry: Dict[str, Any] = {
                "attempt": attempt,
                "endpoint": path,
                "params": params,
                "used_cache": use_cache,
            }
            try:
                response = self.client.get(
                    path, params, cache_ttl=self.config.cache.clients if use_cache else None
                )
            except ApiError as exc:
                if exc.status != 404:
                    last_error = exc
                    self._record_failure(entry, started, exc, trace)
                    self._backoff(attempt, attempts_allowed)
                    continue
                # A 404 on a direct lookup means "no such record" for this attempt
                response = None
            except WispHubError as exc:
                last_error = exc
                self._record_failure(entry, started, exc, trace)
                self._backoff(attempt, attempts_allowed)
                continue

            record = first_record(response)
            any_success = True
            entry.update({
                "success": True,
                "has_data": record is not None,
                "duration_ms": int((time.monotonic() - started) * 1000),
                "error": None,
            })
            trace.append(entry)
            if record is not None:
                logger.info("Client found", extra={"identifier": identifier, "attempt": attempt})
                return record, trace
            logger.info("Client lookup returned no data", extra={"identifier": identifier, "attempt": attempt})
            self._backoff(attempt, attempts_allowed)

        if not any_success and last_error is not None:
            last_error.context["attempts"] = trace
            raise last_error
        return None, trace

    def _record_failure(
        self, entry: Dict[str, Any], started: float, exc: WispHubError, trace: List[Dict[str, Any]]
    ) -> None:
        entry.update({
            "success": False,
            "has_data": False,
            "duration_ms": int((time.monotonic() - started) * 1000),
            "error": str(exc),
        })
        trace.append(entry)
        logger.warning("Client lookup attempt failed", extra={"attempt": entry["attempt"], "error": str(exc)})

    def _backoff(self, attempt: int, attempts_allowed: int) -> None:
        if attempt < attempts_allowed:
            self._sleep(attempt * 1.0)

    # Writes

    def update_client(
        self,
        service_id: Any,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        address: Optional[str] = None,
        locality: Optional[str] = None,
        city: Optional[str] = None,
        notes: Optional[str] = None,
        sms_notifications: Optional[bool] = None,
        push_notifications: Optional[bool] = None,
    ) -> ToolResult:
        changes = {
            "email": email,
            "phone": phone,
            "address": address,
            "locality": locality,
            "city": city,
            "notes": notes,
            "sms_notifications": sms_notifications,
            "push_notifications": push_notifications,
        }
        return self._run(
            "update_client",
            {"service_id": service_id, **changes},
            lambda: self._update_client(service_id, changes),
            "Error updating client",
        )

    def _update_client(self, service_id: Any, changes: Dict[str, Any]) -> ToolResult:
        service_id = ensure_service_id(service_id)
        payload = build_client_update(changes)
        if not payload:
            raise ValidationError(
                "At least one field required: " + ", ".join(CLIENT_UPDATE_FIELDS)
            )

        attempts: List[Dict[str, Any]] = []

        def write(body: Dict[str, Any]) -> Any:
            candidates = [
                (template, _put_candidate(self.client, template.format(id=service_id), body))
                for template in self.config.client_update_endpoints
            ]
            response, log = try_in_order(candidates)
            attempts.extend(attempt.to_dict() for attempt in log)
            return response

        try:
            outcome = self.verifier.run(
                service_id,
                payload,
                write=write,
                reread=lambda: self.client.get(client_path(service_id)),
                normalize=lambda raw: normalize_client(raw, self.config.currency),
            )
        finally:
            # some fields may have persisted even when strict mode raises
            self.client.invalidate(client_path(service_id))

        warnings = []
        contact = [name for name in payload if name in UNRELIABLE_CONTACT_FIELDS]
        if contact:
            warnings.append(
                f"Contact fields ({', '.join(contact)}) are known not to persist through the "
                "WispHub API; confirm them in the admin panel"
            )
        if outcome.report.mismatched_fields:
            warnings.append(
                "WispHub did not persist: " + ", ".join(outcome.report.mismatched_fields)
            )
        if not outcome.report.verified:
            warnings.append(f"Update sent but could not be verified: {outcome.report.error}")

        debug = outcome.debug()
        debug["endpoint_attempts"] = attempts
        return ToolResult.ok(
            outcome.entity,
            warnings=warnings,
            verification=outcome.report.to_dict(),
            debug=debug,
        )

    def change_service_status(self, service_id: Any, new_status: str, reason: Optional[str]) -> ToolResult:
        return self._run(
            "change_service_status",
            {"service_id": service_id, "new_status": new_status, "reason": reason},
            lambda: self._change_service_status(service_id, new_status, reason),
            "Error changing service status",
        )

    def _change_service_status(self, service_id: Any, new_status: str, reason: Optional[str]) -> ToolResult:
        service_id = ensure_service_id(service_id)
        target = _client_status(new_status)
        reason = self._require_text(reason, "reason")

        current_raw = first_record(self.client.get(client_path(service_id)))
        if current_raw is None:
            raise NotFoundError(f"Client with service id {service_id} not found")
        current = normalize_client(current_raw, self.config.currency)

        if current.status == target:
            return ToolResult.ok(
                current,
                warnings=[f"Service {service_id} is already {target.value}; nothing changed"],
                debug={"previous_status": current.status.value, "requested_status": target.value, "changed": False},
            )

        payload = {"estado": status_to_api_string(target), "comentarios": reason}
        try:
            outcome = self.verifier.run(
                service_id,
                payload,
                write=lambda body: self.client.patch(client_path(service_id), body),
                reread=lambda: self.client.get(client_path(service_id)),
                normalize=lambda raw: normalize_client(raw, self.config.currency),
                canonical={"estado": api_string_to_status},
            )
        finally:
            self.client.invalidate(client_path(service_id))

        entity: Optional[ClientRecord] = outcome.entity
        changed = entity is not None and entity.status == target
        warnings = [STATUS_REVERT_NOTE]
        if outcome.report.verified and not changed:
            warnings.insert(0, f"Status change to {target.value} was not persisted by WispHub")

        debug = outcome.debug()
        debug.update({
            "previous_status": current.status.value,
            "requested_status": target.value,
            "changed": changed,
        })
        return ToolResult.ok(
            entity,
            warnings=warnings,
            verification=outcome.report.to_dict(),
            debug=debug,
        )


def build_client_update(changes: Dict[str, Any]) -> Dict[str, Any]:
    """Map provided tool arguments onto upstream field names, trimming strings."""
    payload: Dict[str, Any] = {}
    for name, upstream in CLIENT_UPDATE_FIELDS.items():
        value = changes.get(name)
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        payload[upstream] = value
    return payload


def _put_candidate(client, path: str, body: Dict[str, Any]):
    return lambda: client.put(path, body)


def _client_status(value: Any) -> ClientStatus:
    try:
        return ClientStatus(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(status.value for status in ClientStatus)
        raise ValidationError(f"Invalid status {value!r}; expected one of: {allowed}")


def _lookup_request(identifier: Any) -> Tuple[str, Optional[Dict[str, Any]]]:
    """Pick endpoint and params for a client identifier."""
    if isinstance(identifier, bool) or identifier is None:
        raise ValidationError("Client identifier is required")
    text = str(identifier).strip()
    if not text:
        raise ValidationError("Client identifier is required")
    if text.isdigit():
        return client_path(ensure_service_id(text)), None
    if "@" in text:
        return CLIENTS_PATH, {"email": text}
    return CLIENTS_PATH, {"search": prepare_search_query(text)}
