"""
Security module for the record gateway.

Input validation for submitted updates and client identification helpers.
"""

import re
from typing import Any, Dict, Optional

from .hashing import normalize_name
from .signing import ED25519_PATTERN, EVM_ADDRESS_PATTERN

# ============================================================
# Input Validation
# ============================================================

HEX_PATTERN = re.compile(r'^(0x)?([a-fA-F0-9]{2})*$')
MAX_NAME_LENGTH = 253
MAX_PAYLOAD_BYTES = 64 * 1024
MAX_CONTEXT_BYTES = 1024


class ValidationError(Exception):
    """Raised when input validation fails."""
    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


def validate_hex(value: str, field_name: str, max_bytes: Optional[int] = None,
                 expected_bytes: Optional[int] = None) -> str:
    """
    Validate a 0x-prefixed (or bare) even-length hex string.

    Returns:
        The lowercased hex string with 0x prefix

    Raises:
        ValidationError: If validation fails
    """
    if not isinstance(value, str):
        raise ValidationError(field_name, "must be a string")

    value = value.strip().lower()
    if not HEX_PATTERN.match(value):
        raise ValidationError(field_name, "must be even-length hexadecimal")
    if not value.startswith("0x"):
        value = "0x" + value

    size = (len(value) - 2) // 2
    if max_bytes is not None and size > max_bytes:
        raise ValidationError(field_name, f"must not exceed {max_bytes} bytes")
    if expected_bytes is not None and size != expected_bytes:
        raise ValidationError(field_name, f"must be {expected_bytes} bytes")
    return value


def validate_sender(value: str) -> str:
    """Validate a sender: EVM address or ed25519:<64 hex>."""
    if not isinstance(value, str):
        raise ValidationError("sender", "must be a string")
    value = value.strip()
    if not (EVM_ADDRESS_PATTERN.match(value) or ED25519_PATTERN.match(value)):
        raise ValidationError("sender", "must be a 0x address or ed25519:<public key hex>")
    return value


def validate_name(value: str) -> str:
    """Validate and normalize a hierarchical name."""
    if not isinstance(value, str):
        raise ValidationError("name", "must be a string")
    if len(value) > MAX_NAME_LENGTH:
        raise ValidationError("name", f"must not exceed {MAX_NAME_LENGTH} characters")
    try:
        name = normalize_name(value)
    except ValueError as e:
        raise ValidationError("name", str(e))
    if not name:
        raise ValidationError("name", "cannot be empty")
    return name


# Inception times outside 2020-01-01 .. 2100-01-01 are treated as garbage
EARLIEST_INCEPTION = 1577836800
LATEST_INCEPTION = 4102444800


def validate_epoch_timestamp(value: Any, field_name: str) -> int:
    """Accept an integer number of seconds since the epoch, nothing else."""
    if isinstance(value, bool) or not isinstance(value, int):
        if not (isinstance(value, float) and value.is_integer()):
            raise ValidationError(field_name, "must be an integer timestamp")
    ts = int(value)
    if not EARLIEST_INCEPTION <= ts <= LATEST_INCEPTION:
        raise ValidationError(field_name, "must be a valid Unix timestamp")
    return ts


# ============================================================
# Client identity
# ============================================================

def extract_client_id(headers: Dict[str, str], remote: Optional[str] = None) -> str:
    """
    Key a request to a rate-limit bucket.

    An API key prefix wins over the first X-Forwarded-For hop, which wins
    over the socket peer; requests with none of these share one bucket.
    """
    if headers.get("x-api-key"):
        return "api:" + headers["x-api-key"][:8]
    hops = [h.strip() for h in headers.get("x-forwarded-for", "").split(",") if h.strip()]
    peer = hops[0] if hops else remote
    return f"ip:{peer}" if peer else "anonymous"
