"""
Canonical JSON encoding and the signed-update message format.

Semantically identical values produce identical bytes:
- Object keys sorted lexicographically (Unicode code point order)
- No whitespace between tokens
- UTF-8 encoding, no BOM
- bytes rendered as lowercase 0x-prefixed hex
- Arrays preserve order

The message a sender signs is the canonical encoding of

    {"data": "0x..", "inceptionDate": <int>, "sender": "<trimmed, lowercased sender>"}

so wallets and servers agree byte for byte on what was signed.
"""

import json
from typing import Any


def canonicalize(obj: Any) -> bytes:
    """Convert an object to canonical JSON bytes."""
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
        default=_encode_extra,
    ).encode("utf-8")


def canonicalize_str(obj: Any) -> str:
    return canonicalize(obj).decode("utf-8")


def update_message(payload: bytes, sender: str, inception_time: int) -> bytes:
    """
    Build the canonical message covered by an update signature.

    Raises:
        ValueError: if any component cannot be encoded
    """
    if not isinstance(payload, (bytes, bytearray)):
        raise ValueError("payload must be bytes")
    if not isinstance(sender, str) or not sender.strip():
        raise ValueError("sender must be a non-empty string")
    if isinstance(inception_time, bool) or not isinstance(inception_time, int):
        raise ValueError("inception time must be an integer")
    return canonicalize({
        "data": bytes(payload),
        "inceptionDate": inception_time,
        "sender": sender.strip().lower(),
    })


def _encode_extra(value: Any) -> str:
    # json only falls back here for types it cannot encode itself
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    raise ValueError(f"cannot canonicalize {type(value).__name__}")
