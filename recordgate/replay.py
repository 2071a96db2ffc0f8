"""
Replay protection for signed updates.

A request is admitted once: its (sender, payload_hash, inception_time)
tuple must be fresh (inception time within the freshness window of now)
and never seen before. Admitted tuples are kept until they would be stale
anyway, so the admitted set stays bounded by the request rate times the
window.
"""

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from . import db
from .errors import Reason, ReplayError
from .signing import normalize_principal

DEFAULT_WINDOW_SECONDS = 300


@dataclass(frozen=True)
class Admission:
    """Proof that a request tuple was admitted exactly once."""
    sender: str
    payload_hash: str
    inception_time: int
    expires_at: int

    @property
    def key(self) -> str:
        return tuple_key(self.sender, self.payload_hash, self.inception_time)


def tuple_key(sender: str, payload_hash: str, inception_time: int) -> str:
    return f"{sender}|{payload_hash}|{int(inception_time)}"


class ReplayStore(ABC):
    """
    Abstract interface for the admitted-tuple set.

    Implementations must check and record in one atomic step, so that two
    racing requests with the same tuple admit exactly once.
    """

    @abstractmethod
    def check_and_record(self, key: str, expires_at: int, now: int) -> bool:
        """
        Record key until expires_at.

        Returns:
            True if the key was recorded (first admission)
            False if the key is already present
        """

    @abstractmethod
    def cleanup_expired(self, now: int) -> int:
        """Remove keys expired before now. Returns count removed."""


class InMemoryReplayStore(ReplayStore):
    """
    In-memory admitted set for development/testing.

    Not persistent across restarts and not shared between processes.
    Use SqliteReplayStore when either matters.
    """

    def __init__(self):
        self._admitted: Dict[str, int] = {}
        self._lock = threading.Lock()

    def check_and_record(self, key: str, expires_at: int, now: int) -> bool:
        with self._lock:
            self._sweep(now)
            if key in self._admitted:
                return False
            self._admitted[key] = expires_at
            return True

    def cleanup_expired(self, now: int) -> int:
        with self._lock:
            return self._sweep(now)

    def _sweep(self, now: int) -> int:
        # caller holds _lock
        expired = [k for k, exp in self._admitted.items() if exp < now]
        for k in expired:
            del self._admitted[k]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._admitted)


class SqliteReplayStore(ReplayStore):
    """Admitted set in the gateway database; the primary key makes insert atomic."""

    def check_and_record(self, key: str, expires_at: int, now: int) -> bool:
        return db.insert_admission(key, expires_at, now)

    def cleanup_expired(self, now: int) -> int:
        return db.delete_expired_admissions(now)


class ReplayGuard:
    """
    Admit each signed update at most once, and only while fresh.

    Usage:
        guard = ReplayGuard(window_seconds=300)
        admission = guard.admit(sender, payload_hash, inception_time)
    """

    def __init__(
        self,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        store: Optional[ReplayStore] = None,
        clock: Callable[[], float] = time.time
    ):
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.window_seconds = int(window_seconds)
        self.store = store if store is not None else InMemoryReplayStore()
        self.clock = clock

    def admit(self, sender: str, payload_hash: str, inception_time: int) -> Admission:
        """
        Admit a request tuple.

        Raises:
            ReplayError{Stale}: inception time outside now +/- window
            ReplayError{Duplicate}: tuple already admitted
        """
        now = int(self.clock())
        inception_time = int(inception_time)
        if abs(now - inception_time) > self.window_seconds:
            raise ReplayError(
                Reason.STALE,
                f"inception time {inception_time} is {now - inception_time}s from now "
                f"(window {self.window_seconds}s)"
            )

        admission = Admission(
            sender=normalize_principal(sender),
            payload_hash=payload_hash,
            inception_time=inception_time,
            expires_at=inception_time + self.window_seconds,
        )
        if not self.store.check_and_record(admission.key, admission.expires_at, now):
            raise ReplayError(Reason.DUPLICATE, f"update {admission.key} already admitted")
        return admission

    def cleanup(self) -> int:
        """Drop admissions that can no longer collide with a fresh request."""
        return self.store.cleanup_expired(int(self.clock()))
