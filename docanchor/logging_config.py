"""
Logging setup and audit events for docanchor.

Every line is a JSON object when structured output is on, tagged with
the request id of the HTTP call that produced it. Audit events never
carry document bytes, key material or full signatures; content hashes
are truncated to a diagnostic prefix.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Optional

from .util import hash_prefix

request_id_var: ContextVar[str] = ContextVar('docanchor_request_id', default='')

_SEVERITY_LEVELS = {
    "low": logging.INFO,
    "medium": logging.WARNING,
    "high": logging.ERROR,
    "critical": logging.CRITICAL,
}


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, with audit fields merged in at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%S', time.gmtime(record.created))
            + ".%03dZ" % record.msecs,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        current = request_id_var.get()
        if current:
            entry["request_id"] = current

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        entry.update(getattr(record, 'extra_fields', None) or {})
        return json.dumps(entry, default=str)


class AuditLogger:
    """
    Emits named audit events on the ``docanchor.audit`` logger.

    Covers anchor requests and their state transitions, verification
    outcomes, rejected signatures and degraded dependencies.
    """

    def __init__(self, name: str = "docanchor.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **fields) -> None:
        if not self._logger.isEnabledFor(level):
            return
        summary = fields.pop("message", "")
        record = self._logger.makeRecord(
            self._logger.name, level, "", 0, f"{event_type}: {summary}", (), None
        )
        record.extra_fields = {"event_type": event_type, "request_id": request_id_var.get(), **fields}
        self._logger.handle(record)

    def anchor_request(self, content_hash: str, identity: str, organization_id: Optional[str]) -> None:
        self._log(
            logging.INFO,
            "ANCHOR_REQUEST",
            content_hash=hash_prefix(content_hash),
            identity=identity,
            organization_id=organization_id,
            message="Anchor requested"
        )

    def anchor_state(self, content_hash: str, state: str, reason: Optional[str] = None) -> None:
        level = logging.WARNING if state == "FAILED" else logging.DEBUG
        self._log(
            level,
            "ANCHOR_STATE",
            content_hash=hash_prefix(content_hash),
            state=state,
            reason=reason,
            message=f"Anchor state {state}" + (f" ({reason})" if reason else "")
        )

    def anchor_decision(
        self,
        content_hash: str,
        decision: str,
        transaction_id: Optional[str] = None,
        consensus_timestamp: Optional[str] = None
    ) -> None:
        self._log(
            logging.INFO,
            "ANCHOR_DECISION",
            content_hash=hash_prefix(content_hash),
            decision=decision,
            transaction_id=transaction_id,
            consensus_timestamp=consensus_timestamp,
            message=f"Anchor decision: {decision}"
        )

    def signature_check_failed(self, identity: str, reason: str, content_hash: Optional[bytes] = None) -> None:
        self._log(
            logging.WARNING,
            "SIGNATURE_CHECK_FAILED",
            identity=identity,
            reason=reason,
            content_hash=hash_prefix(content_hash),
            message=f"Signature could not be verified: {reason}"
        )

    def verify_outcome(self, content_hash: str, outcome: str, reason: Optional[str] = None) -> None:
        self._log(
            logging.INFO,
            "VERIFY_OUTCOME",
            content_hash=hash_prefix(content_hash),
            outcome=outcome,
            reason=reason,
            message=f"Verification outcome: {outcome}"
        )

    def mirror_inconsistency(self, content_hash: str, topic_id: str) -> None:
        """Proof is indexed but its payload is not visible in the mirror."""
        self._log(
            logging.WARNING,
            "MIRROR_INCONSISTENCY",
            content_hash=hash_prefix(content_hash),
            topic_id=topic_id,
            message="Proof indexed but payload not found in mirror"
        )

    def dependency_failure(self, dependency: str, error: str) -> None:
        self._log(
            logging.ERROR,
            "DEPENDENCY_FAILURE",
            dependency=dependency,
            error=error,
            message=f"{dependency} unavailable"
        )

    def trust_registry_degraded(self, identity: str, error: str) -> None:
        self._log(
            logging.WARNING,
            "TRUST_REGISTRY_DEGRADED",
            identity=identity,
            error=error,
            message="Trust registry check failed, reporting untrusted"
        )

    def security_event(self, event: str, severity: str = "medium", **details) -> None:
        self._log(
            _SEVERITY_LEVELS.get(severity, logging.WARNING),
            "SECURITY_EVENT",
            security_event=event,
            severity=severity,
            message=f"Security event: {event}",
            **details
        )

    def rate_limit_exceeded(self, client_id: str, endpoint: str) -> None:
        self._log(
            logging.WARNING,
            "RATE_LIMIT_EXCEEDED",
            client_id=client_id,
            endpoint=endpoint,
            message=f"{client_id} throttled on {endpoint}"
        )


def configure_logging(level: str = "INFO", json_format: bool = True, log_file: Optional[str] = None) -> None:
    """
    Replace the root handlers with stdout (and optionally a file).

    ``level`` is a standard level name. Plain text output is meant for
    local development only.
    """
    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter('%(asctime)s %(levelname)-7s %(name)s: %(message)s')

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id to the current context, generating one if none is given."""
    request_id = request_id or uuid.uuid4().hex
    request_id_var.set(request_id)
    return request_id


audit_log = AuditLogger()
