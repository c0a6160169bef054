"""
Logging setup for the MCP server.

Logs go to stderr: with the stdio transport, stdout carries the MCP
JSON-RPC stream and must stay clean.
"""

import logging
import os
import sys
from typing import Any, Dict, Optional

# Attributes present on every LogRecord; anything else came in through extra=
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

SENSITIVE_KEYS = ("password", "token", "key", "secret")


class KeyValueFormatter(logging.Formatter):
    """Append ``extra=`` metadata to the message as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extras = {
            key: value for key, value in record.__dict__.items()
            if key not in _RESERVED and not key.startswith("_")
        }
        if not extras:
            return base
        pairs = " ".join(f"{key}={value!r}" for key, value in sorted(extras.items()))
        return f"{base} | {pairs}"


def configure_logging(level: Optional[str] = None) -> None:
    """Install a stderr handler on the root logger (idempotent)."""
    level_name = (level or os.environ.get("WISPHUB_LOG_LEVEL", "INFO")).upper()
    root = logging.getLogger()

    for handler in root.handlers:
        if getattr(handler, "_wisphub", False):
            root.setLevel(level_name)
            return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(KeyValueFormatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s"
    ))
    handler._wisphub = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(level_name)

    # httpx logs every request at INFO; our client already does that at DEBUG
    logging.getLogger("httpx").setLevel(logging.WARNING)


def sanitize_args(args: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of ``args`` with sensitive values redacted for logging."""
    return {
        key: "[REDACTED]" if any(s in key.lower() for s in SENSITIVE_KEYS) else value
        for key, value in args.items()
    }
