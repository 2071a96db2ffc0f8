"""
recordgate: Signed Offchain Record Update & Authorization Gateway

Version: 0.1.0

Names registered on an origin chain can keep their mutable records
elsewhere: on another EVM chain, on a Starknet-like chain, or in a plain
HTTP storage service. The origin chain's resolver says which, and under
which context. recordgate accepts signed record updates for such names
over an untrusted channel and applies them only when

    the signature verifies to the claimed sender
    AND the request is fresh and has never been seen before
    AND the sender owns the node or holds a delegate approval for it

Every request ends in exactly one terminal outcome: Applied, or
Rejected{stage, reason} naming the first stage that failed.

Usage:
    from recordgate import (
        AuthorizationEngine,
        BackendDispatcher,
        MetadataResolver,
        ReplayGuard,
        RequestGateway,
        SignatureVerifier,
        UpdateApplier,
        UpdateRequest,
    )

    dispatcher = BackendDispatcher.default(chains)
    gateway = RequestGateway(
        SignatureVerifier(),
        ReplayGuard(window_seconds=300),
        MetadataResolver(origin),
        AuthorizationEngine(origin, dispatcher),
        UpdateApplier(dispatcher),
    )
    outcome = gateway.handle("alice.example.eth", UpdateRequest(...))
    print(outcome.to_dict())
"""

__version__ = "0.1.0"

from .applier import CommitResult, StoredRecord, UpdateApplier
from .authorization import AuthorizationDecision, AuthorizationEngine, DecisionReason
from .backends import BackendClient, WriteReceipt, WriteStatus
from .dispatcher import BackendDispatcher, ChainEndpoint
from .errors import (
    ApplyError,
    AuthorizationError,
    DispatchError,
    GatewayError,
    Reason,
    ReplayError,
    ResolutionError,
    SignatureError,
)
from .gateway import GatewayOutcome, GatewayState, RequestGateway, UpdateRequest
from .hashing import dns_encode, namehash
from .metadata import MetadataDescriptor, MetadataResolver, StorageKind
from .replay import ReplayGuard
from .signing import SignatureVerifier, sign_update

__all__ = [
    "__version__",
    "ApplyError",
    "AuthorizationDecision",
    "AuthorizationEngine",
    "AuthorizationError",
    "BackendClient",
    "BackendDispatcher",
    "ChainEndpoint",
    "CommitResult",
    "DecisionReason",
    "DispatchError",
    "GatewayError",
    "GatewayOutcome",
    "GatewayState",
    "MetadataDescriptor",
    "MetadataResolver",
    "Reason",
    "ReplayError",
    "ReplayGuard",
    "RequestGateway",
    "ResolutionError",
    "SignatureError",
    "SignatureVerifier",
    "StorageKind",
    "StoredRecord",
    "UpdateApplier",
    "UpdateRequest",
    "WriteReceipt",
    "WriteStatus",
    "dns_encode",
    "namehash",
    "sign_update",
]
