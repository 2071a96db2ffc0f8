"""
Utility functions: hex encoding, time, and log masking.
"""

import time


def now_epoch() -> int:
    """Get current Unix timestamp as integer."""
    return int(time.time())


def to_hex(b: bytes) -> str:
    """Encode bytes as lowercase 0x-prefixed hex."""
    return "0x" + bytes(b).hex()


def from_hex(s: str) -> bytes:
    """
    Decode 0x-prefixed (or bare) hex into bytes.

    Raises:
        ValueError: if the string is not valid hex
    """
    if not isinstance(s, str):
        raise ValueError("hex value must be a string")
    if s[:2] in ("0x", "0X"):
        s = s[2:]
    if len(s) % 2:
        raise ValueError("hex value has odd length")
    return bytes.fromhex(s)


def mask_sensitive(value: str, visible_chars: int = 6) -> str:
    """
    Mask a sensitive value, showing only the last N characters.
    Useful for logging signatures.
    """
    if len(value) <= visible_chars:
        return '*' * len(value)
    return '*' * (len(value) - visible_chars) + value[-visible_chars:]
