"""
Balance lookups for a client's service.
"""

from typing import Any

from src.wisphub.errors import NotFoundError
from src.wisphub.transform import ensure_service_id, first_record, normalize_balance

from .base_service import BaseService, ToolResult


def balance_path(service_id: int) -> str:
    return f"/api/clientes/{service_id}/saldo/"


class BalanceService(BaseService):
    """Read-only balance snapshots, cached for a short time."""

    def get_balance(self, service_id: Any) -> ToolResult:
        return self._run(
            "get_client_balance",
            {"service_id": service_id},
            lambda: self._get_balance(service_id),
            "Error getting balance",
        )

    def _get_balance(self, service_id: Any) -> ToolResult:
        service_id = ensure_service_id(service_id)
        path = balance_path(service_id)
        response = self.client.get(path, cache_ttl=self.config.cache.balances)

        raw = first_record(response)
        if raw is None:
            raise NotFoundError(f"No balance information for service {service_id}")

        snapshot = normalize_balance(raw, self.config.currency)
        if not snapshot.service_id:
            snapshot.service_id = service_id
        return ToolResult.ok(snapshot, debug={"endpoint": path})
