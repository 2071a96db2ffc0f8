"""
Name hashing and content hashing.

- namehash / dns_encode follow the ENS name encoding (EIP-137, ENSIP-10):
  a name maps to a 32-byte node by folding keccak256 over its labels.
- Payload and log hashes use SHA-256 with lowercase hexadecimal output.
"""

import hashlib
from typing import List, Union

from eth_utils import keccak


EMPTY_NODE = b"\x00" * 32


def normalize_name(name: str) -> str:
    """Lowercase and strip a name; reject empty labels."""
    if not isinstance(name, str):
        raise ValueError("name must be a string")
    name = name.strip().lower().rstrip(".")
    if not name:
        return ""
    labels = name.split(".")
    if any(not label for label in labels):
        raise ValueError(f"empty label in name: {name!r}")
    return name


def labels_of(name: str) -> List[str]:
    name = normalize_name(name)
    return name.split(".") if name else []


def namehash(name: str) -> bytes:
    """
    Compute the 32-byte node of a hierarchical name.

        namehash("")      = 0x00..00
        namehash(l + "." + rest) = keccak256(namehash(rest) + keccak256(l))
    """
    node = EMPTY_NODE
    for label in reversed(labels_of(name)):
        node = keccak(node + keccak(text=label))
    return node


def dns_encode(name: str) -> bytes:
    """DNS wire-format encoding used by wildcard-aware resolvers."""
    out = bytearray()
    for label in labels_of(name):
        raw = label.encode("utf-8")
        if len(raw) > 255:
            raise ValueError(f"label too long: {label[:16]}...")
        out.append(len(raw))
        out.extend(raw)
    out.append(0)
    return bytes(out)


def parent_names(name: str) -> List[str]:
    """Return the name followed by each ancestor, closest first ("" last)."""
    labels = labels_of(name)
    return [".".join(labels[i:]) for i in range(len(labels) + 1)]


def sha256_hex(data: Union[bytes, str]) -> str:
    """Compute SHA-256 hash and return as hex string."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()


def payload_hash(payload: bytes) -> str:
    """Hash of an update payload, used as the replay key component."""
    return sha256_hex(bytes(payload))


def chain_entry_hash(prev_entry_hash: Union[str, None], entry_content_hash: str) -> str:
    """
    Link a log entry to its predecessor.

    entry_hash = SHA-256(prev_entry_hash || content_hash), with the empty
    string standing in for the predecessor of the first entry.
    """
    data = (prev_entry_hash or "").encode("utf-8") + entry_content_hash.encode("utf-8")
    return sha256_hex(data)
