"""
Base class for the WispHub domain services.

Every public operation runs inside ``BaseService._run``, which logs the
operation and turns any raised error into a failure ``ToolResult``.
Callers never see an exception, only a result value.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from src.wisphub.config import ServerConfig
from src.wisphub.errors import ValidationError, WispHubError, error_kind, suggestions_for
from src.wisphub.http_client import WispHubClient
from src.wisphub.logging_config import sanitize_args
from src.wisphub.verification import WriteVerifier

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _serialize(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, list):
        return [_serialize(item) for item in value]
    if isinstance(value, dict):
        return {key: _serialize(item) for key, item in value.items()}
    return value


@dataclass
class ToolResult:
    """Uniform result of a domain operation."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    verification: Optional[Dict[str, Any]] = None
    timestamp: str = field(default_factory=_now_iso)
    debug: Optional[Dict[str, Any]] = None

    @classmethod
    def ok(cls, data: Any = None, **kwargs) -> "ToolResult":
        return cls(success=True, data=data, **kwargs)

    @classmethod
    def failure(cls, error: str, kind: str, debug: Optional[Dict[str, Any]] = None) -> "ToolResult":
        return cls(
            success=False,
            error=error,
            error_kind=kind,
            suggestions=suggestions_for(kind),
            debug=debug,
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success, "timestamp": self.timestamp}
        if self.success:
            result["data"] = _serialize(self.data)
            if isinstance(self.data, list):
                result["count"] = len(self.data)
        else:
            result["error"] = self.error
            result["error_kind"] = self.error_kind
            result["suggestions"] = self.suggestions
        if self.warnings:
            result["warnings"] = self.warnings
        if self.verification is not None:
            result["verification"] = self.verification
        if self.debug is not None:
            result["debug"] = _serialize(self.debug)
        return result


class BaseService:
    """
    Shared plumbing for domain services.

    Args:
        client: HTTP access layer, shared between services
        config: Server configuration
        sleep: Delay function for service-level backoff (tests pass a recorder)
    """

    def __init__(
        self,
        client: WispHubClient,
        config: ServerConfig,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.config = config
        self._sleep = sleep
        self.verifier = WriteVerifier(strict=config.strict_verification)

    def _run(
        self,
        operation: str,
        args: Dict[str, Any],
        action: Callable[[], ToolResult],
        error_prefix: str,
    ) -> ToolResult:
        """Run ``action`` with logging, converting any error into a failure result."""
        request_id = uuid.uuid4().hex[:12]
        started = time.monotonic()
        logger.info(
            f"Operation {operation} started",
            extra={"operation": operation, "request_id": request_id, "tool_args": sanitize_args(args)},
        )

        try:
            result = action()
        except WispHubError as exc:
            duration_ms = int((time.monotonic() - started) * 1000)
            log = logger.warning if isinstance(exc, ValidationError) else logger.error
            log(
                f"Operation {operation} failed",
                extra={
                    "operation": operation,
                    "request_id": request_id,
                    "duration_ms": duration_ms,
                    "error": str(exc),
                    "error_kind": exc.kind,
                },
            )
            debug = {"context": exc.context} if exc.context else None
            return ToolResult.failure(f"{error_prefix}: {exc}", exc.kind, debug=debug)
        except Exception as exc:
            duration_ms = int((time.monotonic() - started) * 1000)
            logger.exception(
                f"Operation {operation} crashed",
                extra={"operation": operation, "request_id": request_id, "duration_ms": duration_ms},
            )
            return ToolResult.failure(f"{error_prefix}: {exc}", error_kind(exc))

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Operation {operation} completed",
            extra={
                "operation": operation,
                "request_id": request_id,
                "duration_ms": duration_ms,
                "success": result.success,
            },
        )
        return result

    @staticmethod
    def _require_text(value: Optional[str], name: str, max_length: Optional[int] = None) -> str:
        text = (value or "").strip()
        if not text:
            raise ValidationError(f"{name} is required")
        if max_length is not None and len(text) > max_length:
            raise ValidationError(f"{name} must be at most {max_length} characters")
        return text
