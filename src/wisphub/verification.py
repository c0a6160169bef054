"""
Write-then-verify protocol for mutating WispHub operations.

WispHub acknowledges some writes it never persists (contact fields on
clients, status changes on services). Every mutation therefore goes:

    IDLE -> SENDING -> SENT -> VERIFYING -> VERIFIED | VERIFICATION_FAILED

After the write is acknowledged, the entity is re-read (never from cache)
and each sent field is compared with what the API now reports. Mismatches
are returned as data; only the write itself can fail the operation.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from .errors import ValidationError, VerificationMismatchError, WispHubError, error_kind
from .models import Record
from .transform import first_record

logger = logging.getLogger(__name__)

T = TypeVar("T")


class VerificationState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    SENT = "sent"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    VERIFICATION_FAILED = "verification_failed"


@dataclass
class FieldCheck(Record):
    """Sent value vs. value observed on re-read for one field."""
    field: str
    sent: Any
    observed: Any
    matched: bool


@dataclass
class VerificationReport(Record):
    entity_id: Any
    state: VerificationState = VerificationState.IDLE
    checks: List[FieldCheck] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def verified(self) -> bool:
        return self.state == VerificationState.VERIFIED

    @property
    def mismatched_fields(self) -> List[str]:
        return [check.field for check in self.checks if not check.matched]

    @property
    def all_matched(self) -> bool:
        return self.verified and not self.mismatched_fields

    def check_for(self, name: str) -> Optional[FieldCheck]:
        for check in self.checks:
            if check.field == name:
                return check
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["verified"] = self.verified
        data["mismatched_fields"] = self.mismatched_fields
        data["all_matched"] = self.all_matched
        return data


@dataclass
class VerifiedWrite:
    """Outcome of one protocol run."""
    entity: Any
    report: VerificationReport
    sent: Dict[str, Any]
    write_response: Any = None
    observed: Optional[Dict[str, Any]] = None

    def debug(self) -> Dict[str, Any]:
        return {
            "sent_to_api": self.sent,
            "api_response": self.write_response,
            "verified_raw": self.observed,
            "verification": self.report.to_dict(),
        }


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "si", "sí", "on")
    return bool(value)


def values_match(sent: Any, observed: Any) -> bool:
    """Loose equality tolerant of the API echoing numbers/booleans as strings."""
    if isinstance(sent, bool) or isinstance(observed, bool):
        return _as_bool(sent) == _as_bool(observed)
    if isinstance(sent, (int, float)) or isinstance(observed, (int, float)):
        try:
            return float(sent) == float(observed)
        except (TypeError, ValueError):
            return False
    sent_text = "" if sent is None else str(sent).strip()
    observed_text = "" if observed is None else str(observed).strip()
    return sent_text == observed_text


def compare_fields(
    sent: Dict[str, Any],
    observed: Dict[str, Any],
    fields: Optional[Sequence[str]] = None,
    canonical: Optional[Dict[str, Callable[[Any], Any]]] = None,
) -> List[FieldCheck]:
    """Build one FieldCheck per compared field."""
    canonical = canonical or {}
    checks = []
    for name in fields if fields is not None else list(sent):
        sent_value = sent.get(name)
        observed_value = observed.get(name)
        to_canonical = canonical.get(name)
        if to_canonical is not None:
            matched = to_canonical(sent_value) == to_canonical(observed_value)
        else:
            matched = values_match(sent_value, observed_value)
        checks.append(FieldCheck(name, sent_value, observed_value, matched))
    return checks


class WriteVerifier:
    """
    Runs the write/re-read/compare sequence.

    Args:
        strict: Raise VerificationMismatchError when a verified re-read shows
            unpersisted fields. Off by default: mismatches are informational.
    """

    def __init__(self, strict: bool = False):
        self.strict = strict

    def run(
        self,
        entity_id: Any,
        payload: Dict[str, Any],
        write: Callable[[Dict[str, Any]], Any],
        reread: Callable[[], Any],
        normalize: Callable[[Dict[str, Any]], Any],
        fields: Optional[Sequence[str]] = None,
        canonical: Optional[Dict[str, Callable[[Any], Any]]] = None,
    ) -> VerifiedWrite:
        """
        Execute the protocol for one entity.

        Args:
            entity_id: Id used for logging and the report
            payload: Body to send; only fields the caller provided
            write: Sends the payload, returns the decoded response
            reread: Fetches the entity again, bypassing the cache
            normalize: Raw record -> canonical record
            fields: Subset of payload keys to compare (default: all)
            canonical: Per-field converters applied to both sides before comparing

        Returns:
            VerifiedWrite holding the re-read entity and the comparison report

        Raises:
            ValidationError: empty payload
            WispHubError: the write itself failed
        """
        report = VerificationReport(entity_id=entity_id)

        if not payload:
            raise ValidationError("At least one field required for update")

        self._transition(report, VerificationState.SENDING)
        write_response = write(payload)
        self._transition(report, VerificationState.SENT)

        self._transition(report, VerificationState.VERIFYING)
        try:
            observed = first_record(reread())
        except WispHubError as exc:
            logger.warning(
                "Write verification failed",
                extra={"entity_id": entity_id, "error": str(exc), "error_kind": error_kind(exc)},
            )
            return self._fallback(report, payload, write_response, normalize, str(exc))

        if observed is None:
            return self._fallback(
                report, payload, write_response, normalize, "Re-read returned no record"
            )

        report.checks = compare_fields(payload, observed, fields, canonical)
        self._transition(report, VerificationState.VERIFIED)

        if report.mismatched_fields:
            logger.warning(
                "Upstream did not persist some fields",
                extra={"entity_id": entity_id, "fields": report.mismatched_fields},
            )
            if self.strict:
                raise VerificationMismatchError(entity_id, report.mismatched_fields)

        return VerifiedWrite(
            entity=normalize(observed),
            report=report,
            sent=payload,
            write_response=write_response,
            observed=observed,
        )

    def _fallback(
        self,
        report: VerificationReport,
        payload: Dict[str, Any],
        write_response: Any,
        normalize: Callable[[Dict[str, Any]], Any],
        reason: str,
    ) -> VerifiedWrite:
        report.error = reason
        self._transition(report, VerificationState.VERIFICATION_FAILED)
        raw = first_record(write_response)
        return VerifiedWrite(
            entity=normalize(raw) if raw is not None else None,
            report=report,
            sent=payload,
            write_response=write_response,
        )

    @staticmethod
    def _transition(report: VerificationReport, state: VerificationState) -> None:
        logger.debug(
            "Verification state change",
            extra={"entity_id": report.entity_id, "from_state": report.state.value, "to_state": state.value},
        )
        report.state = state


# Ordered fallback


@dataclass
class Attempt(Record):
    """Outcome of one candidate in ``try_in_order``."""
    name: str
    success: bool
    duration_ms: int
    error: Optional[str] = None
    error_kind: Optional[str] = None


def try_in_order(candidates: Sequence[Tuple[str, Callable[[], T]]]) -> Tuple[T, List[Attempt]]:
    """
    Call each candidate in turn until one succeeds.

    Args:
        candidates: ``(name, callable)`` pairs, tried in order

    Returns:
        ``(result, attempts)`` for the first successful candidate

    Raises:
        WispHubError: the last candidate's error, with the attempt log in
            ``error.context["attempts"]``
    """
    attempts: List[Attempt] = []
    last_error: Optional[WispHubError] = None

    for name, call in candidates:
        started = time.monotonic()
        try:
            result = call()
        except WispHubError as exc:
            duration_ms = int((time.monotonic() - started) * 1000)
            attempts.append(Attempt(name, False, duration_ms, str(exc), exc.kind))
            logger.warning("Candidate failed", extra={"candidate": name, "error": str(exc)})
            last_error = exc
            continue

        duration_ms = int((time.monotonic() - started) * 1000)
        attempts.append(Attempt(name, True, duration_ms))
        logger.info("Candidate succeeded", extra={"candidate": name})
        return result, attempts

    if last_error is None:
        raise ValidationError("No candidates to try")
    last_error.context["attempts"] = [attempt.to_dict() for attempt in attempts]
    raise last_error
