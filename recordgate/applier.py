"""
Update application.

Writes an authorized update through the node's backend and keeps the
gateway's view of the stored record. Writes to the same (node, context)
are serialized; different keys proceed in parallel.

Semantics:
- Last-writer-wins by inception time. An update older than the stored
  record is Superseded.
- Idempotent: re-applying the exact update that is already stored
  returns the stored result and never touches the backend.
- Chain writes go out through a relayer and stay PENDING until confirm()
  observes the transaction receipt.
"""

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Tuple

from . import db
from .backends import WriteStatus
from .dispatcher import BackendDispatcher
from .errors import ApplyError, BackendRefusal, Reason, TransientBackendError
from .metadata import MetadataDescriptor
from .retry import NO_RETRY, RetryPolicy, call_with_retry
from .util import from_hex, to_hex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredRecord:
    """The current record of one (node, context)."""
    node: bytes
    context: bytes
    payload: bytes
    last_updated: int
    status: WriteStatus
    reference: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node": to_hex(self.node),
            "context": to_hex(self.context),
            "data": to_hex(self.payload),
            "lastUpdated": self.last_updated,
            "status": self.status.value,
            "reference": self.reference,
        }


@dataclass(frozen=True)
class CommitResult:
    """Outcome of a successful apply."""
    record: StoredRecord
    replayed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        out = self.record.to_dict()
        out["replayed"] = self.replayed
        return out


# ============================================================
# Record stores
# ============================================================

class RecordStore(ABC):
    """Persistence for StoredRecord, one per (node, context)."""

    @abstractmethod
    def get(self, node: bytes, context: bytes) -> Optional[StoredRecord]:
        pass

    @abstractmethod
    def put(self, record: StoredRecord) -> None:
        pass


class InMemoryRecordStore(RecordStore):
    """In-memory record store for development/testing."""

    def __init__(self):
        self._records: Dict[Tuple[bytes, bytes], StoredRecord] = {}
        self._lock = threading.Lock()

    def get(self, node: bytes, context: bytes) -> Optional[StoredRecord]:
        with self._lock:
            return self._records.get((bytes(node), bytes(context)))

    def put(self, record: StoredRecord) -> None:
        with self._lock:
            self._records[(record.node, record.context)] = record


class SqliteRecordStore(RecordStore):
    """Record store backed by the gateway database."""

    def get(self, node: bytes, context: bytes) -> Optional[StoredRecord]:
        row = db.get_record(to_hex(node), to_hex(context))
        if row is None:
            return None
        return StoredRecord(
            node=from_hex(row["node"]),
            context=from_hex(row["context"]),
            payload=from_hex(row["payload"]),
            last_updated=int(row["last_updated"]),
            status=WriteStatus(row["status"]),
            reference=row["reference"],
        )

    def put(self, record: StoredRecord) -> None:
        db.upsert_record(
            to_hex(record.node),
            to_hex(record.context),
            to_hex(record.payload),
            record.last_updated,
            record.status.value,
            record.reference,
        )


# ============================================================
# Applier
# ============================================================

class UpdateApplier:
    """
    Apply authorized updates to their backends.

    Usage:
        applier = UpdateApplier(dispatcher, InMemoryRecordStore())
        result = applier.apply(descriptor, node, context, payload, inception_time)
    """

    def __init__(
        self,
        dispatcher: BackendDispatcher,
        store: Optional[RecordStore] = None,
        retry: RetryPolicy = NO_RETRY
    ):
        self.dispatcher = dispatcher
        self.store = store if store is not None else InMemoryRecordStore()
        self.retry = retry
        # (node, context) -> [lock, number of threads holding or waiting on it]
        self._key_locks: Dict[Tuple[bytes, bytes], list] = {}
        self._key_locks_guard = threading.Lock()

    @contextmanager
    def _locked(self, node: bytes, context: bytes):
        """Serialize work on one (node, context) without blocking other keys."""
        key = (node, context)
        with self._key_locks_guard:
            slot = self._key_locks.setdefault(key, [threading.Lock(), 0])
            slot[1] += 1
        try:
            with slot[0]:
                yield
        finally:
            with self._key_locks_guard:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._key_locks[key]

    def apply(
        self,
        descriptor: MetadataDescriptor,
        node: bytes,
        context: bytes,
        payload: bytes,
        inception_time: int
    ) -> CommitResult:
        """
        Write payload as the record of (node, context).

        Raises:
            ApplyError{Superseded}: a newer update is already stored
            ApplyError{BackendRejected}: the backend refused the write
            ApplyError{Timeout}: the backend stayed unreachable through all retries
            DispatchError: no backend client for the descriptor
        """
        node, context, payload = bytes(node), bytes(context), bytes(payload)
        inception_time = int(inception_time)

        with self._locked(node, context):
            current = self.store.get(node, context)
            if current is not None:
                if current.last_updated == inception_time and current.payload == payload:
                    logger.info("update for %s already applied at %d", to_hex(node), inception_time)
                    return CommitResult(current, replayed=True)
                if inception_time < current.last_updated:
                    raise ApplyError(
                        Reason.SUPERSEDED,
                        f"stored record of {to_hex(node)} is newer ({current.last_updated} > {inception_time})"
                    )

            client = self.dispatcher.dispatch(descriptor)
            try:
                receipt = call_with_retry(self.retry, client.apply, node, context, payload, inception_time)
            except TransientBackendError as e:
                raise ApplyError(Reason.TIMEOUT, str(e)) from e
            except BackendRefusal as e:
                raise ApplyError(Reason.BACKEND_REJECTED, str(e)) from e
            if receipt.status == WriteStatus.FAILED:
                raise ApplyError(Reason.BACKEND_REJECTED, f"backend reported failed write {receipt.reference}")

            record = StoredRecord(
                node=node,
                context=context,
                payload=payload,
                last_updated=inception_time,
                status=receipt.status,
                reference=receipt.reference,
            )
            self.store.put(record)
            return CommitResult(record)

    def confirm(self, descriptor: MetadataDescriptor, node: bytes, context: bytes) -> StoredRecord:
        """
        Refresh the write status of a pending record from its backend.

        Raises:
            ApplyError{NotFound}: nothing stored for (node, context)
            ApplyError{BackendRejected | Timeout}: status lookup failed
        """
        node, context = bytes(node), bytes(context)
        with self._locked(node, context):
            current = self.store.get(node, context)
            if current is None:
                raise ApplyError(Reason.NOT_FOUND, f"no record stored for {to_hex(node)}")
            if current.status != WriteStatus.PENDING:
                return current

            client = self.dispatcher.dispatch(descriptor)
            try:
                status = call_with_retry(self.retry, client.write_status, current.reference)
            except TransientBackendError as e:
                raise ApplyError(Reason.TIMEOUT, str(e)) from e
            except BackendRefusal as e:
                raise ApplyError(Reason.BACKEND_REJECTED, str(e)) from e

            if status == current.status:
                return current
            updated = replace(current, status=status)
            self.store.put(updated)
            logger.info("write %s for %s is now %s", current.reference, to_hex(node), status.value)
            return updated

    def get_record(self, node: bytes, context: bytes) -> Optional[StoredRecord]:
        return self.store.get(bytes(node), bytes(context))
