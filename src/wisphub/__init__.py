"""
WispHub API integration.

Reliability layer around the WispHub REST API:
- ``http_client``: auth, cache-aside reads, retry with backoff
- ``transform``: response shapes and enum encodings -> canonical records
- ``verification``: write, re-read and compare for every mutation
"""

from .cache import CacheStats, TTLCache
from .config import ServerConfig, load_config
from .errors import (
    ApiError,
    NetworkError,
    NotFoundError,
    RequestTimeoutError,
    ValidationError,
    VerificationMismatchError,
    WispHubError,
    suggestions_for,
)
from .http_client import WispHubClient
from .logging_config import configure_logging
from .verification import VerificationReport, WriteVerifier, try_in_order

__all__ = [
    # Cache
    "CacheStats",
    "TTLCache",
    # Config
    "ServerConfig",
    "load_config",
    "configure_logging",
    # Errors
    "ApiError",
    "NetworkError",
    "NotFoundError",
    "RequestTimeoutError",
    "ValidationError",
    "VerificationMismatchError",
    "WispHubError",
    "suggestions_for",
    # HTTP
    "WispHubClient",
    # Verification
    "VerificationReport",
    "WriteVerifier",
    "try_in_order",
]
