"""
Error taxonomy for the WispHub integration.

Every error carries a stable ``kind`` string so that callers (and the MCP
shell) can branch on the category without parsing messages.
"""

from typing import Any, Dict, List, Optional


class WispHubError(Exception):
    """Base class for all errors raised by the WispHub integration."""

    kind = "unknown_error"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)


class ValidationError(WispHubError):
    """Bad input caught before any network call."""

    kind = "validation_error"


class NetworkError(WispHubError):
    """No response was obtained from the upstream API."""

    kind = "network_error"

    def __init__(self, message: str, url: Optional[str] = None):
        self.url = url
        super().__init__(f"Network error: {message}", {"url": url})


class RequestTimeoutError(WispHubError):
    """The upstream API did not answer within the configured timeout."""

    kind = "timeout_error"

    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None):
        self.url = url
        self.timeout = timeout
        super().__init__(
            f"Request timeout - WispHub API did not respond within {timeout}s",
            {"url": url, "timeout": timeout},
        )


class ApiError(WispHubError):
    """
    The upstream API answered with a non-2xx status.

    The kind is refined from the status code so that a bad credential,
    a missing record and an upstream outage can be told apart.
    """

    def __init__(self, status: int, message: str, url: Optional[str] = None, body: Any = None):
        self.status = status
        self.url = url
        self.body = body
        super().__init__(
            f"WispHub API Error ({status}): {message}",
            {"status": status, "url": url},
        )
        self.api_message = message

    @property
    def kind(self) -> str:  # type: ignore[override]
        if self.status in (401, 403):
            return "auth_error"
        if self.status == 404:
            return "not_found"
        if self.status == 429:
            return "rate_limited"
        if self.status >= 500:
            return "server_error"
        return "api_error"


class NotFoundError(WispHubError):
    """A lookup that expects exactly one record found none."""

    kind = "not_found"


class VerificationMismatchError(WispHubError):
    """Raised only when strict verification is enabled and a write did not persist."""

    kind = "verification_mismatch"

    def __init__(self, entity_id: Any, fields: List[str]):
        self.entity_id = entity_id
        self.fields = fields
        super().__init__(
            f"Upstream did not persist fields {', '.join(fields)} for {entity_id}",
            {"entity_id": entity_id, "fields": fields},
        )


SUGGESTIONS: Dict[str, List[str]] = {
    "validation_error": [
        "Check that every required parameter is present",
        "Check parameter types (numbers, strings, enums)",
    ],
    "network_error": [
        "Check network connectivity to the WispHub API",
        "Confirm the WispHub API is up",
        "Try again in a few minutes",
    ],
    "timeout_error": [
        "Try again",
        "Consider raising WISPHUB_TIMEOUT",
    ],
    "auth_error": [
        "Check that WISPHUB_API_KEY is set correctly",
        "Confirm the API key has not expired or been revoked",
    ],
    "not_found": [
        "Check that the id is correct",
        "Try searching by email or name instead",
    ],
    "rate_limited": [
        "Wait before retrying",
        "Reduce request frequency",
    ],
    "server_error": [
        "Try again in a few minutes",
        "Report the problem if it persists",
    ],
    "verification_mismatch": [
        "Apply the change manually in the WispHub admin panel",
    ],
}


def suggestions_for(kind: str) -> List[str]:
    """Return user-facing guidance for an error kind."""
    return list(SUGGESTIONS.get(kind, ["Try again", "Contact support if the problem persists"]))


def error_kind(error: BaseException) -> str:
    """Machine-readable category for any exception."""
    if isinstance(error, WispHubError):
        return error.kind
    return "unknown_error"
