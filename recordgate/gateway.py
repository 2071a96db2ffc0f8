"""
Request gateway.

Drives one signed update through the full pipeline:

    Received
        ↓ signature verifies to the claimed sender
    SignatureChecked
        ↓ fresh and never admitted before
    ReplayChecked
        ↓ name resolves to a descriptor (and the claimed context matches)
    ResolutionDone
        ↓ sender owns the node or holds a delegate approval
    Authorized
        ↓ backend accepted the write
    Applied

Every transition either advances or terminates the request with
Rejected{stage, reason}, where stage is the state that could not be
reached. The machine is strictly linear, so every rejection is attributable
to exactly one stage. Nothing is written to a backend unless every earlier
stage passed.

Any unexpected error fails closed: the request is rejected with
InternalError at the stage that was being attempted.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .applier import CommitResult, UpdateApplier
from .authorization import AuthorizationDecision, AuthorizationEngine
from .canonicalization import canonicalize_str
from .errors import RETRYABLE_REASONS, GatewayError, Reason, ResolutionError
from .hashing import namehash, payload_hash
from .log_backends import UpdateLogBackend
from .logging_config import audit_log
from .metadata import MetadataDescriptor, MetadataResolver
from .replay import ReplayGuard
from .signing import SignatureVerifier
from .util import to_hex

logger = logging.getLogger(__name__)


class GatewayState(str, Enum):
    RECEIVED = "Received"
    SIGNATURE_CHECKED = "SignatureChecked"
    REPLAY_CHECKED = "ReplayChecked"
    RESOLUTION_DONE = "ResolutionDone"
    AUTHORIZED = "Authorized"
    APPLIED = "Applied"


class OutcomeStatus(str, Enum):
    APPLIED = "Applied"
    REJECTED = "Rejected"


@dataclass(frozen=True)
class UpdateRequest:
    """
    A signed update as received. Immutable; lives for one request.

    context None means "the context the name's metadata assigns". node None
    means "the node of the name the request was posted to".
    """
    payload: bytes
    sender: str
    inception_time: int
    signature: bytes
    context: Optional[bytes] = None
    node: Optional[bytes] = None


@dataclass
class GatewayOutcome:
    """Terminal result of one request."""
    status: OutcomeStatus
    stage: GatewayState
    reason: Optional[Reason] = None
    commit: Optional[CommitResult] = None
    decision: Optional[AuthorizationDecision] = None
    detail: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.status == OutcomeStatus.APPLIED

    @property
    def retryable(self) -> bool:
        return self.reason in RETRYABLE_REASONS

    def to_dict(self) -> Dict[str, Any]:
        """Client-facing view. Internal detail is never included."""
        out: Dict[str, Any] = {"status": self.status.value, "stage": self.stage.value}
        if self.reason is not None:
            out["reason"] = self.reason.value
        if self.commit is not None:
            out["commit"] = self.commit.to_dict()
        return out


class RequestGateway:
    """
    The single entry point for signed record updates.

    Usage:
        gateway = RequestGateway(verifier, replay_guard, resolver, authorizer, applier)
        outcome = gateway.handle("alice.example.eth", request)
        if outcome.applied:
            ...
    """

    def __init__(
        self,
        verifier: SignatureVerifier,
        replay_guard: ReplayGuard,
        resolver: MetadataResolver,
        authorizer: AuthorizationEngine,
        applier: UpdateApplier,
        update_log: Optional[UpdateLogBackend] = None
    ):
        self.verifier = verifier
        self.replay_guard = replay_guard
        self.resolver = resolver
        self.authorizer = authorizer
        self.applier = applier
        self.update_log = update_log

    def handle(self, name: str, request: UpdateRequest) -> GatewayOutcome:
        """
        Run request through every stage and return its terminal outcome.

        Never raises for request-level failures; every failure is reported
        as a Rejected outcome.
        """
        signature = request.signature if isinstance(request.signature, (bytes, bytearray)) else b""
        audit_log.update_received(name, request.sender, request.inception_time, to_hex(signature))
        target = GatewayState.SIGNATURE_CHECKED
        try:
            principal = self.verifier.verify(
                request.payload, request.sender, request.inception_time, request.signature
            )

            target = GatewayState.REPLAY_CHECKED
            self.replay_guard.admit(principal, payload_hash(request.payload), request.inception_time)

            target = GatewayState.RESOLUTION_DONE
            descriptor, node, context = self._resolve(name, request)

            target = GatewayState.AUTHORIZED
            decision = self.authorizer.require(descriptor, node, principal, context)

            target = GatewayState.APPLIED
            commit = self.applier.apply(descriptor, node, context, request.payload, request.inception_time)
            if not commit.replayed:
                self._log_applied(name, node, principal, request, commit)

        except GatewayError as e:
            return self._reject(name, request, target, e.reason, e.detail)
        except Exception as e:
            logger.exception("unexpected failure handling update for %s at %s", name, target.value)
            return self._reject(name, request, target, Reason.INTERNAL_ERROR, f"{type(e).__name__}: {e}")

        audit_log.update_applied(
            name, principal, commit.record.status.value, decision.reason.value,
            replayed=commit.replayed, reference=commit.record.reference
        )
        return GatewayOutcome(
            status=OutcomeStatus.APPLIED,
            stage=GatewayState.APPLIED,
            commit=commit,
            decision=decision,
        )

    def _resolve(self, name: str, request: UpdateRequest):
        try:
            node = namehash(name)
        except ValueError as e:
            raise ResolutionError(Reason.MALFORMED, str(e)) from e
        if request.node is not None and bytes(request.node) != node:
            raise ResolutionError(Reason.MALFORMED, f"request node {to_hex(request.node)} is not the node of {name}")

        descriptor: MetadataDescriptor = self.resolver.resolve(name)
        if request.context is not None and bytes(request.context) != descriptor.context:
            raise ResolutionError(
                Reason.CONTEXT_MISMATCH,
                f"request context {to_hex(request.context)} is not {to_hex(descriptor.context)}"
            )
        return descriptor, node, descriptor.context

    def _log_applied(self, name: str, node: bytes, principal: str,
                     request: UpdateRequest, commit: CommitResult) -> None:
        if self.update_log is None:
            return
        entry = {
            "name": name,
            "node": to_hex(node),
            "context": to_hex(commit.record.context),
            "sender": principal,
            "inceptionDate": request.inception_time,
            "payloadHash": payload_hash(request.payload),
            "signature": to_hex(request.signature),
            "status": commit.record.status.value,
            "reference": commit.record.reference,
        }
        self.update_log.write_entry(
            name, to_hex(node), principal, entry["payloadHash"],
            request.inception_time, canonicalize_str(entry)
        )

    def _reject(self, name: str, request: UpdateRequest, stage: GatewayState,
                reason: Reason, detail: Optional[str]) -> GatewayOutcome:
        audit_log.update_rejected(name, request.sender, stage.value, reason.value, detail or "")
        if reason in (Reason.MISMATCH, Reason.DUPLICATE):
            audit_log.security_event(
                "signature_mismatch" if reason == Reason.MISMATCH else "replayed_update",
                severity="medium",
                name=name,
                sender=request.sender,
            )
        return GatewayOutcome(
            status=OutcomeStatus.REJECTED,
            stage=stage,
            reason=reason,
            detail=detail,
        )

