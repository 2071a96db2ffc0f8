"""
Error taxonomy for the record gateway.

Every stage of the update pipeline fails with exactly one of the errors
below. Each error carries a stable reason code (what clients see) and an
internal detail string (what operators see in logs). Retryable reasons are
retried inside the failing component before they surface.
"""

from enum import Enum
from typing import Optional


class Reason(str, Enum):
    """Stable reason codes returned to clients."""
    # Resolution
    NOT_FOUND = "NotFound"
    UPSTREAM_UNAVAILABLE = "UpstreamUnavailable"
    MALFORMED = "Malformed"
    UNKNOWN_BACKEND = "UnknownBackend"
    CONTEXT_MISMATCH = "ContextMismatch"
    # Dispatch
    UNSUPPORTED_BACKEND = "UnsupportedBackend"
    UNKNOWN_CHAIN = "UnknownChain"
    # Authorization
    BACKEND_UNREACHABLE = "BackendUnreachable"
    DENIED = "Denied"
    # Signature
    MISMATCH = "Mismatch"
    # Replay
    STALE = "Stale"
    DUPLICATE = "Duplicate"
    # Apply
    BACKEND_REJECTED = "BackendRejected"
    TIMEOUT = "Timeout"
    SUPERSEDED = "Superseded"
    # Gateway
    INTERNAL_ERROR = "InternalError"


RETRYABLE_REASONS = frozenset({
    Reason.UPSTREAM_UNAVAILABLE,
    Reason.BACKEND_UNREACHABLE,
    Reason.TIMEOUT,
})


class GatewayError(Exception):
    """Base class for all stage failures."""

    def __init__(self, reason: Reason, detail: Optional[str] = None):
        self.reason = reason
        self.detail = detail or reason.value
        super().__init__(f"{type(self).__name__}{{{reason.value}}}: {self.detail}")

    @property
    def retryable(self) -> bool:
        return self.reason in RETRYABLE_REASONS


class ResolutionError(GatewayError):
    """Raised by the metadata resolver."""


class DispatchError(GatewayError):
    """Raised when no backend client can be built for a descriptor."""


class AuthorizationError(GatewayError):
    """Raised when the sender may not mutate the node."""


class SignatureError(GatewayError):
    """Raised when a request signature is undecodable or does not match."""


class ReplayError(GatewayError):
    """Raised for stale or already admitted requests."""


class ApplyError(GatewayError):
    """Raised when the backend write does not go through."""


# ============================================================
# Backend client failures
# ============================================================
#
# Backend clients know nothing about stages. They raise one of these two
# and the calling component maps them onto its own taxonomy.

class BackendCallError(Exception):
    """Base class for errors raised by backend clients."""


class TransientBackendError(BackendCallError):
    """Network failure, timeout or 5xx. Worth retrying."""


class BackendRefusal(BackendCallError):
    """The backend answered and said no (revert, 4xx, RPC error)."""
