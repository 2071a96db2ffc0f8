"""
SQLite persistence for the record gateway.

Three tables: the stored record of each (node, context), the replay
admissions that are still inside their freshness window, and the
hash-chained log of applied updates. Each thread gets its own connection.
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import config
from .hashing import chain_entry_hash, sha256_hex

DB_PATH = Path(config.DB_PATH)
TABLES = ("records", "admissions", "update_log")

SCHEMA = """
CREATE TABLE IF NOT EXISTS records (
    node TEXT NOT NULL,
    context TEXT NOT NULL,
    payload TEXT NOT NULL,
    last_updated INTEGER NOT NULL,
    status TEXT NOT NULL,
    reference TEXT,
    PRIMARY KEY (node, context)
);

CREATE TABLE IF NOT EXISTS admissions (
    tuple_key TEXT PRIMARY KEY,
    expires_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_admissions_expires ON admissions(expires_at);

CREATE TABLE IF NOT EXISTS update_log (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    node TEXT NOT NULL,
    sender TEXT NOT NULL,
    payload_hash TEXT NOT NULL,
    inception_time INTEGER NOT NULL,
    prev_entry_hash TEXT,
    entry_hash TEXT NOT NULL,
    entry_json TEXT NOT NULL,
    UNIQUE (sender, payload_hash, inception_time)
);
CREATE INDEX IF NOT EXISTS idx_update_log_node ON update_log(node);
"""

_local = threading.local()

# Appends read the chain head and write the next link; only one at a time
_log_lock = threading.Lock()


def _open(path: Path) -> sqlite3.Connection:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), check_same_thread=False, timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    return conn


def _get_connection() -> sqlite3.Connection:
    """This thread's connection to DB_PATH, reopened if DB_PATH was repointed."""
    held = getattr(_local, "held", None)
    if held is not None and held[0] == DB_PATH:
        return held[1]
    if held is not None:
        held[1].close()
    conn = _open(DB_PATH)
    _local.held = (DB_PATH, conn)
    return conn


@contextmanager
def _transaction():
    conn = _get_connection()
    with conn:
        yield conn


def init_db() -> None:
    """Create tables and indexes if they are missing."""
    conn = _get_connection()
    conn.executescript(SCHEMA)
    conn.commit()


# ============================================================
# Replay admissions
# ============================================================

def insert_admission(tuple_key: str, expires_at: int, now: int) -> bool:
    """
    Admit a tuple unless it is already admitted and unexpired.
    Expired admissions are swept in the same transaction.
    """
    try:
        with _transaction() as conn:
            conn.execute("DELETE FROM admissions WHERE expires_at < ?", (now,))
            conn.execute("INSERT INTO admissions(tuple_key, expires_at) VALUES(?,?)", (tuple_key, expires_at))
    except sqlite3.IntegrityError:
        return False
    return True


def delete_expired_admissions(now: int) -> int:
    """Remove expired admissions. Returns the number removed."""
    with _transaction() as conn:
        cur = conn.execute("DELETE FROM admissions WHERE expires_at < ?", (now,))
        return cur.rowcount


# ============================================================
# Stored records
# ============================================================

def get_record(node: str, context: str) -> Optional[Dict[str, Any]]:
    """Fetch the stored record of (node, context) as a dict, hex-encoded keys."""
    conn = _get_connection()
    cur = conn.execute(
        "SELECT node, context, payload, last_updated, status, reference "
        "FROM records WHERE node=? AND context=?",
        (node, context)
    )
    row = cur.fetchone()
    return dict(row) if row else None


def upsert_record(node: str, context: str, payload: str, last_updated: int,
                  status: str, reference: Optional[str]) -> None:
    """Insert or overwrite the stored record of (node, context)."""
    with _transaction() as conn:
        conn.execute(
            "INSERT INTO records(node, context, payload, last_updated, status, reference) "
            "VALUES(?,?,?,?,?,?) "
            "ON CONFLICT(node, context) DO UPDATE SET payload=excluded.payload, "
            "last_updated=excluded.last_updated, status=excluded.status, reference=excluded.reference",
            (node, context, payload, last_updated, status, reference)
        )


# ============================================================
# Update log
# ============================================================

def latest_entry_hash() -> Optional[str]:
    """Get the hash of the most recent log entry for chain linking."""
    conn = _get_connection()
    cur = conn.execute("SELECT entry_hash FROM update_log ORDER BY seq DESC LIMIT 1")
    row = cur.fetchone()
    return row["entry_hash"] if row else None


def append_update_log(
    name: str,
    node: str,
    sender: str,
    payload_hash: str,
    inception_time: int,
    entry_json: str
) -> Optional[str]:
    """
    Append an applied update to the log, linked to the previous entry.

    Returns the new entry hash, or None if the (sender, payload_hash,
    inception_time) tuple is already logged.
    """
    with _log_lock:
        try:
            with _transaction() as conn:
                prev = latest_entry_hash()
                entry_hash = chain_entry_hash(prev, sha256_hex(entry_json))
                conn.execute(
                    "INSERT INTO update_log(name, node, sender, payload_hash, inception_time, "
                    "prev_entry_hash, entry_hash, entry_json) VALUES(?,?,?,?,?,?,?,?)",
                    (name, node, sender, payload_hash, inception_time, prev, entry_hash, entry_json)
                )
        except sqlite3.IntegrityError:
            return None
    return entry_hash


def export_update_log_full() -> List[Dict[str, Any]]:
    """Export the complete update log in append order."""
    conn = _get_connection()
    cur = conn.execute(
        "SELECT seq, name, node, sender, payload_hash, inception_time, "
        "prev_entry_hash, entry_hash, entry_json FROM update_log ORDER BY seq ASC"
    )
    return [dict(row) for row in cur.fetchall()]


def get_db_stats() -> Dict[str, int]:
    """Row counts per table, for /health."""
    conn = _get_connection()
    return {
        f"{table}_count": conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        for table in TABLES
    }


def reset_db() -> None:
    """Empty every table, keeping the schema. Used between tests."""
    with _transaction() as conn:
        for table in TABLES:
            conn.execute(f"DELETE FROM {table}")
