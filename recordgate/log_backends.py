"""
Where the update log lives.

The default keeps the hash chain in the gateway's SQLite database. The S3
backend writes every entry as its own object under COMPLIANCE-mode Object
Lock, so entries cannot be rewritten or deleted before their retention date
even by the bucket owner. Both chain entries the same way, see
hashing.chain_entry_hash.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

from . import config
from .db import append_update_log
from .hashing import chain_entry_hash, sha256_hex


class UpdateLogBackend:
    """Append-only, tamper-evident log of applied updates."""

    def write_entry(self, name: str, node: str, sender: str, payload_hash: str,
                    inception_time: int, entry_json: str) -> Optional[str]:
        """Append an entry. Returns its entry hash, or None if it was already logged."""
        raise NotImplementedError


class SqliteHashChainLog(UpdateLogBackend):
    def write_entry(self, name: str, node: str, sender: str, payload_hash: str,
                    inception_time: int, entry_json: str) -> Optional[str]:
        return append_update_log(name, node, sender, payload_hash, inception_time, entry_json)


class S3ObjectLockLog(UpdateLogBackend):
    """
    One locked object per entry. The bucket must have Object Lock enabled.

    The chain head is held in memory, so one gateway process should own a
    prefix.
    """

    def __init__(self, bucket: str, prefix: str, retention_days: int, legal_hold: str = "OFF", client=None):
        self.bucket = bucket
        self.prefix = prefix.rstrip("/") + "/"
        self.retention = timedelta(days=int(retention_days))
        self.legal_hold = legal_hold
        self._client = client
        self._head: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def client(self):
        if self._client is None:
            try:
                import boto3
            except ImportError as e:
                raise RuntimeError("S3 update log needs boto3: pip install recordgate[aws]") from e
            self._client = boto3.client("s3")
        return self._client

    def write_entry(self, name: str, node: str, sender: str, payload_hash: str,
                    inception_time: int, entry_json: str) -> Optional[str]:
        client = self.client
        with self._lock:
            prev = self._head
            entry_hash = chain_entry_hash(prev, sha256_hex(entry_json))
            client.put_object(
                Bucket=self.bucket,
                Key=f"{self.prefix}{inception_time}-{node}-{entry_hash}.json",
                Body=entry_json.encode("utf-8"),
                ContentType="application/json",
                Metadata={"prev-entry-hash": prev or "", "entry-hash": entry_hash, "sender": sender},
                ObjectLockMode="COMPLIANCE",
                ObjectLockRetainUntilDate=datetime.now(timezone.utc) + self.retention,
                ObjectLockLegalHoldStatus=self.legal_hold,
            )
            self._head = entry_hash
        return entry_hash


def get_log_backend() -> UpdateLogBackend:
    if config.LOG_BACKEND == "s3_object_lock":
        return S3ObjectLockLog(
            bucket=config.S3_BUCKET,
            prefix=config.S3_PREFIX,
            retention_days=config.S3_RETENTION_DAYS,
            legal_hold=config.S3_LEGAL_HOLD,
        )
    return SqliteHashChainLog()
