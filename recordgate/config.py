"""
Configuration module for the record gateway.

Settings come from RECORDGATE_* environment variables; the chain registry
and static metadata come from JSON files that are reloaded when they change.
"""

import json
import os
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("RECORDGATE_ENV", "dev")  # dev|stage|prod

# Origin chain (registry + resolvers)
ORIGIN_RPC_URL = os.getenv("RECORDGATE_ORIGIN_RPC_URL", "http://127.0.0.1:8545")
REGISTRY_ADDRESS = os.getenv("RECORDGATE_REGISTRY_ADDRESS", "0x00000000000C2E074eC69A0dFb2997BA6C7d2e1e")

# Paths
CHAINS_PATH = os.getenv("RECORDGATE_CHAINS_PATH", "config/chains.json")
STATIC_METADATA_PATH = os.getenv("RECORDGATE_STATIC_METADATA_PATH", "config/static_metadata.json")
DB_PATH = os.getenv("RECORDGATE_DB_PATH", "data/recordgate.db")

# Replay protection
FRESHNESS_WINDOW_SECONDS = int(os.getenv("RECORDGATE_FRESHNESS_WINDOW", "300"))
REPLAY_STORE = os.getenv("RECORDGATE_REPLAY_STORE", "sqlite")  # memory|sqlite

# Descriptor cache
DESCRIPTOR_TTL_SECONDS = float(os.getenv("RECORDGATE_DESCRIPTOR_TTL", "60"))
DESCRIPTOR_CACHE_SIZE = int(os.getenv("RECORDGATE_DESCRIPTOR_CACHE_SIZE", "1024"))

# Per-stage timeouts (seconds)
RESOLUTION_TIMEOUT = float(os.getenv("RECORDGATE_RESOLUTION_TIMEOUT", "5"))
AUTHORIZATION_TIMEOUT = float(os.getenv("RECORDGATE_AUTHORIZATION_TIMEOUT", "5"))
APPLY_TIMEOUT = float(os.getenv("RECORDGATE_APPLY_TIMEOUT", "10"))

# Retry with exponential backoff
RETRY_ATTEMPTS = int(os.getenv("RECORDGATE_RETRY_ATTEMPTS", "3"))
RETRY_BASE_DELAY = float(os.getenv("RECORDGATE_RETRY_BASE_DELAY", "0.25"))
RETRY_MAX_DELAY = float(os.getenv("RECORDGATE_RETRY_MAX_DELAY", "4"))

# Rate limit (update submissions per minute per client)
UPDATE_RPM = int(os.getenv("RECORDGATE_UPDATE_RPM", "120"))

# Audit log backend
LOG_BACKEND = os.getenv("RECORDGATE_LOG_BACKEND", "sqlite_hash_chain")  # sqlite_hash_chain|s3_object_lock
S3_BUCKET = os.getenv("RECORDGATE_S3_BUCKET", "")
S3_PREFIX = os.getenv("RECORDGATE_S3_PREFIX", "recordgate/update-log/")
S3_RETENTION_DAYS = int(os.getenv("RECORDGATE_S3_RETENTION_DAYS", "365"))
S3_LEGAL_HOLD = os.getenv("RECORDGATE_S3_LEGAL_HOLD", "OFF")

# Logging
LOG_LEVEL = os.getenv("RECORDGATE_LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("RECORDGATE_LOG_JSON", "1").lower() in ("1", "true", "yes")

# Cache TTL for JSON config files (seconds)
CONFIG_CACHE_TTL = int(os.getenv("CONFIG_CACHE_TTL", "60"))


# ============================================================
# Cached Configuration Loaders
# ============================================================

class CachedConfig:
    """
    JSON file cache keyed by path.

    An entry is reused until it is older than the TTL or the file's mtime
    moves, so edits to chains.json are picked up without a restart.
    """

    def __init__(self, ttl_seconds: int = 60):
        self._ttl = ttl_seconds
        self._entries: Dict[str, Tuple[float, float, Any]] = {}
        self._lock = threading.Lock()

    def get_json(self, path: str) -> Any:
        mtime = os.path.getmtime(path)
        with self._lock:
            cached = self._entries.get(path)
            if cached:
                loaded_at, seen_mtime, data = cached
                if seen_mtime == mtime and time.time() - loaded_at <= self._ttl:
                    return data
            data = json.loads(Path(path).read_text(encoding="utf-8"))
            self._entries[path] = (time.time(), mtime, data)
            return data


_config_cache = CachedConfig(ttl_seconds=CONFIG_CACHE_TTL)


def load_json_cached(path: str) -> Any:
    """Load JSON file with caching."""
    return _config_cache.get_json(path)


def load_chains(path: Optional[str] = None) -> Dict[str, Dict[str, str]]:
    """
    Load the chain registry: {"<chainLabel>": {"rpc_url": ..., "relayer_url": ...}}.
    A missing file means no chain backends are reachable.
    """
    path = path or CHAINS_PATH
    if not Path(path).exists():
        return {}
    return load_json_cached(path)


def load_static_metadata(path: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Load static metadata entries exported from metadata-changed events.
    A missing file means every name is resolved dynamically.
    """
    path = path or STATIC_METADATA_PATH
    if not Path(path).exists():
        return []
    return load_json_cached(path)


# ============================================================
# Validation
# ============================================================

def validate_config() -> Dict[str, bool]:
    """
    Validate configuration that must hold before serving.
    Returns dict of check -> ok.
    """
    checks = {
        "chains_file": Path(CHAINS_PATH).exists(),
        "freshness_window_positive": FRESHNESS_WINDOW_SECONDS > 0,
        "timeouts_positive": min(RESOLUTION_TIMEOUT, AUTHORIZATION_TIMEOUT, APPLY_TIMEOUT) > 0,
        "replay_store_known": REPLAY_STORE in ("memory", "sqlite"),
    }
    if LOG_BACKEND == "s3_object_lock":
        checks["s3_bucket"] = bool(S3_BUCKET)
    return checks


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"


def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("RECORDGATE_DEBUG", "").lower() in ("1", "true", "yes")
