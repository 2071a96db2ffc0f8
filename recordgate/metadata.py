"""
Metadata resolution.

For each name the origin chain says which backend holds the name's mutable
records, and under which context. This module turns the resolver's raw
metadata tuple into a typed MetadataDescriptor, caches descriptors for a
short TTL, and keeps static (event-published) metadata separate from the
dynamic per-name resolver call.
"""

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Dict, Iterable, Optional, Tuple, Union

from .errors import Reason, ResolutionError, TransientBackendError
from .hashing import namehash, normalize_name
from .retry import NO_RETRY, RetryPolicy, call_with_retry
from .util import from_hex, to_hex

logger = logging.getLogger(__name__)

STARK_PRIME = 2 ** 251 + 17 * 2 ** 192 + 1


class StorageKind(IntEnum):
    """Backend class holding a name's records. Values are fixed on the wire."""
    EVM = 0
    NON_CHAIN = 1
    STARKNET_LIKE = 2


@dataclass(frozen=True)
class MetadataDescriptor:
    """Where and under which context a name's records live."""
    chain_label: str
    coin_type: int
    graphql_url: str
    storage_kind: StorageKind
    backend_location: bytes
    context: bytes

    @classmethod
    def from_tuple(cls, raw: Union[Tuple, list]) -> "MetadataDescriptor":
        """
        Build a descriptor from the resolver's metadata tuple
        (chainLabel, coinType, graphqlUrl, storageKind, backendLocation, context).

        Raises:
            ResolutionError{Malformed}: wrong shape or broken invariant
            ResolutionError{UnknownBackend}: storage kind outside {0, 1, 2}
        """
        if not isinstance(raw, (tuple, list)) or len(raw) != 6:
            raise ResolutionError(Reason.MALFORMED, "metadata must be a 6-tuple")
        chain_label, coin_type, graphql_url, kind, location, context = raw

        if isinstance(kind, bool) or not isinstance(kind, int):
            raise ResolutionError(Reason.MALFORMED, f"storage kind must be an integer, got {type(kind).__name__}")
        try:
            storage_kind = StorageKind(kind)
        except ValueError:
            raise ResolutionError(Reason.UNKNOWN_BACKEND, f"unknown storage kind {kind}")

        if not isinstance(chain_label, str):
            raise ResolutionError(Reason.MALFORMED, "chain label must be a string")
        if isinstance(coin_type, bool) or not isinstance(coin_type, int) or coin_type < 0:
            raise ResolutionError(Reason.MALFORMED, "coin type must be a non-negative integer")
        if not isinstance(graphql_url, str):
            raise ResolutionError(Reason.MALFORMED, "graphql url must be a string")
        if not isinstance(location, (bytes, bytearray)) or not isinstance(context, (bytes, bytearray)):
            raise ResolutionError(Reason.MALFORMED, "backend location and context must be bytes")

        descriptor = cls(
            chain_label=chain_label,
            coin_type=coin_type,
            graphql_url=graphql_url,
            storage_kind=storage_kind,
            backend_location=bytes(location),
            context=bytes(context),
        )
        descriptor.validate()
        return descriptor

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetadataDescriptor":
        """Build from the JSON shape used by static metadata files and the API."""
        try:
            raw = (
                data["chainLabel"],
                int(data.get("coinType", 0)),
                data.get("graphqlUrl", ""),
                int(data["storageKind"]),
                _location_bytes(int(data["storageKind"]), data["backendLocation"]),
                from_hex(data.get("context", "0x")),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ResolutionError(Reason.MALFORMED, f"invalid metadata entry: {e}") from e
        return cls.from_tuple(raw)

    def validate(self) -> None:
        """Check that backend_location means what storage_kind says it means."""
        loc = self.backend_location
        if self.storage_kind == StorageKind.EVM:
            if len(loc) != 20:
                raise ResolutionError(Reason.MALFORMED, f"EVM backend location must be 20 bytes, got {len(loc)}")
        elif self.storage_kind == StorageKind.NON_CHAIN:
            try:
                url = loc.decode("utf-8")
            except UnicodeDecodeError:
                raise ResolutionError(Reason.MALFORMED, "non-chain backend location is not UTF-8")
            if not url.startswith(("http://", "https://")):
                raise ResolutionError(Reason.MALFORMED, "non-chain backend location must be an http(s) URL")
        elif self.storage_kind == StorageKind.STARKNET_LIKE:
            if not 1 <= len(loc) <= 32 or int.from_bytes(loc, "big") >= STARK_PRIME:
                raise ResolutionError(Reason.MALFORMED, "Starknet backend location must be a felt")

    @property
    def backend_url(self) -> str:
        """URL of a non-chain storage service."""
        if self.storage_kind != StorageKind.NON_CHAIN:
            raise ValueError(f"{self.storage_kind.name} backend has no URL")
        return self.backend_location.decode("utf-8").rstrip("/")

    @property
    def contract_address(self) -> str:
        """0x-hex contract address of a chain backend."""
        if self.storage_kind == StorageKind.NON_CHAIN:
            raise ValueError("non-chain backend has no contract address")
        return to_hex(self.backend_location)

    def to_dict(self) -> Dict[str, Any]:
        if self.storage_kind == StorageKind.NON_CHAIN:
            location = self.backend_url
        else:
            location = self.contract_address
        return {
            "chainLabel": self.chain_label,
            "coinType": self.coin_type,
            "graphqlUrl": self.graphql_url,
            "storageKind": int(self.storage_kind),
            "storageKindName": self.storage_kind.name,
            "backendLocation": location,
            "context": to_hex(self.context),
        }


def _location_bytes(kind: int, value: str) -> bytes:
    if kind == StorageKind.NON_CHAIN and not value.startswith("0x"):
        return value.encode("utf-8")
    return from_hex(value)


# ============================================================
# Metadata sources
# ============================================================

@dataclass(frozen=True)
class StaticMetadata:
    """Metadata published once (metadata-changed event) for a name."""
    descriptor: MetadataDescriptor


@dataclass(frozen=True)
class DynamicMetadata:
    """Metadata answered per call by the name's resolver."""
    name: str


MetadataSource = Union[StaticMetadata, DynamicMetadata]


# ============================================================
# Descriptor cache
# ============================================================

class DescriptorCache:
    """
    Bounded, thread-safe TTL cache of descriptors keyed by node.

    Entries carry their own expiry; the least recently used entry is
    evicted when the cache is full.
    """

    def __init__(self, ttl_seconds: float = 60, max_entries: int = 1024,
                 clock: Callable[[], float] = time.time):
        self._ttl = ttl_seconds
        self._max = max(1, max_entries)
        self._clock = clock
        self._entries: "OrderedDict[bytes, Tuple[MetadataDescriptor, float]]" = OrderedDict()
        self._lock = threading.RLock()

    def get(self, node: bytes) -> Optional[MetadataDescriptor]:
        with self._lock:
            entry = self._entries.get(node)
            if entry is None:
                return None
            descriptor, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[node]
                return None
            self._entries.move_to_end(node)
            return descriptor

    def put(self, node: bytes, descriptor: MetadataDescriptor) -> None:
        if self._ttl <= 0:
            return
        with self._lock:
            self._entries[node] = (descriptor, self._clock() + self._ttl)
            self._entries.move_to_end(node)
            while len(self._entries) > self._max:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("descriptor cache full, evicted %s", to_hex(evicted))

    def invalidate(self, node: Optional[bytes] = None) -> None:
        """Invalidate one node, or everything."""
        with self._lock:
            if node is None:
                self._entries.clear()
            else:
                self._entries.pop(node, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# ============================================================
# Resolver
# ============================================================

class MetadataResolver:
    """
    Resolve a name to its MetadataDescriptor.

    Static metadata (registered from metadata-changed events) takes the
    name out of dynamic resolution entirely; every other name goes through
    the origin chain's resolver and the descriptor cache.
    """

    def __init__(
        self,
        origin,
        cache: Optional[DescriptorCache] = None,
        static: Optional[Dict[str, MetadataDescriptor]] = None,
        retry: RetryPolicy = NO_RETRY
    ):
        self.origin = origin
        self.cache = cache if cache is not None else DescriptorCache()
        self.retry = retry
        self._static: Dict[bytes, MetadataDescriptor] = {}
        self._lock = threading.RLock()
        for name, descriptor in (static or {}).items():
            self.register_static(name, descriptor)

    def register_static(self, name: str, descriptor: MetadataDescriptor) -> None:
        """Pin a name to static metadata."""
        descriptor.validate()
        node = namehash(name)
        with self._lock:
            self._static[node] = descriptor
        self.cache.invalidate(node)

    def load_static(self, entries: Iterable[Dict[str, Any]]) -> int:
        """
        Register static metadata from metadata-changed event exports.

        Each entry is {"name": ..., <descriptor fields>}.
        Returns the number of entries registered.
        """
        count = 0
        for entry in entries:
            self.register_static(entry["name"], MetadataDescriptor.from_dict(entry))
            count += 1
        return count

    def source_for(self, name: str) -> MetadataSource:
        name = self._normalize(name)
        with self._lock:
            descriptor = self._static.get(namehash(name))
        if descriptor is not None:
            return StaticMetadata(descriptor)
        return DynamicMetadata(name)

    def resolve(self, name: str) -> MetadataDescriptor:
        """
        Resolve name to its descriptor.

        Raises:
            ResolutionError{NotFound | UpstreamUnavailable | Malformed | UnknownBackend}
        """
        source = self.source_for(name)
        if isinstance(source, StaticMetadata):
            return source.descriptor

        node = namehash(source.name)
        cached = self.cache.get(node)
        if cached is not None:
            return cached

        try:
            raw = call_with_retry(self.retry, self.origin.metadata, source.name)
        except TransientBackendError as e:
            raise ResolutionError(Reason.UPSTREAM_UNAVAILABLE, str(e)) from e
        if raw is None:
            raise ResolutionError(Reason.NOT_FOUND, f"no metadata resolver for {source.name}")

        descriptor = MetadataDescriptor.from_tuple(raw)
        self.cache.put(node, descriptor)
        return descriptor

    def invalidate(self, name: Optional[str] = None) -> None:
        """Drop cached metadata for a name, or for every name."""
        self.cache.invalidate(None if name is None else namehash(self._normalize(name)))

    @staticmethod
    def _normalize(name: str) -> str:
        try:
            return normalize_name(name)
        except ValueError as e:
            raise ResolutionError(Reason.MALFORMED, str(e)) from e
