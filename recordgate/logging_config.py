"""
Logging configuration for the record gateway.

Structured JSON logging for the update audit trail. Every line carries the
request id of the HTTP request it belongs to, so one update can be followed
from UPDATE_RECEIVED to its terminal event.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .util import mask_sensitive

request_id_var: ContextVar[str] = ContextVar('request_id', default='')

SEVERITY_LEVELS = {
    "low": logging.INFO,
    "medium": logging.WARNING,
    "high": logging.ERROR,
    "critical": logging.CRITICAL,
}

# Client libraries that log every RPC round trip at DEBUG/INFO
NOISY_LOGGERS = ("web3", "urllib3", "botocore")


class RequestIdFilter(logging.Filter):
    """Stamp the current request id onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        request_id = getattr(record, "request_id", "") or request_id_var.get()
        if request_id:
            entry["request_id"] = request_id
        entry.update(getattr(record, "audit", {}))
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class AuditLogger:
    """
    Logger for update lifecycle events.

    Every submitted update produces UPDATE_RECEIVED followed by exactly one
    of UPDATE_APPLIED or UPDATE_REJECTED.
    """

    def __init__(self, name: str = "recordgate.audit"):
        self._logger = logging.getLogger(name)

    def _emit(self, level: int, event_type: str, message: str, **fields) -> None:
        if self._logger.isEnabledFor(level):
            fields["event_type"] = event_type
            self._logger.log(level, "%s: %s", event_type, message, extra={"audit": fields})

    def update_received(self, name: str, sender: str, inception_time: int, signature: str = "") -> None:
        self._emit(
            logging.INFO, "UPDATE_RECEIVED", f"update for {name}",
            name=name,
            sender=sender,
            inception_time=inception_time,
            signature=mask_sensitive(signature, 8) if signature else "",
        )

    def update_rejected(self, name: str, sender: str, stage: str, reason: str, detail: str = "") -> None:
        """detail is operator-only and never returned to clients."""
        self._emit(
            logging.WARNING, "UPDATE_REJECTED", f"{name} rejected at {stage}: {reason}",
            name=name,
            sender=sender,
            stage=stage,
            reason=reason,
            detail=detail,
        )

    def update_applied(self, name: str, sender: str, status: str,
                       authorized_as: str, replayed: bool = False,
                       reference: Optional[str] = None) -> None:
        self._emit(
            logging.INFO, "UPDATE_APPLIED", f"{name} applied ({status})",
            name=name,
            sender=sender,
            status=status,
            authorized_as=authorized_as,
            replayed=replayed,
            reference=reference,
        )

    def security_event(self, event: str, severity: str = "medium", **details) -> None:
        self._emit(
            SEVERITY_LEVELS.get(severity, logging.WARNING), "SECURITY_EVENT", event,
            security_event=event,
            severity=severity,
            **details
        )

    def rate_limit_exceeded(self, client_id: str, endpoint: str) -> None:
        self._emit(
            logging.WARNING, "RATE_LIMIT_EXCEEDED", f"{client_id} on {endpoint}",
            client_id=client_id,
            endpoint=endpoint,
        )


def configure_logging(level: str = "INFO", json_format: bool = True, log_file: Optional[str] = None) -> None:
    """
    Replace the root handlers with a stdout handler (and optionally a file).

    Args:
        level: Root log level name
        json_format: JSON lines; plain text otherwise
        log_file: Optional extra log file
    """
    if json_format:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter('%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s')

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(RequestIdFilter())
        root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.WARNING))


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set the request id for the current context, generating one if None."""
    request_id = request_id or uuid.uuid4().hex
    request_id_var.set(request_id)
    return request_id


audit_log = AuditLogger()
