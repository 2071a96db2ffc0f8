"""
Authorization: may this principal mutate this node's records?

A principal is authorized when it is the node's owner on the origin chain
OR the node's backend reports a delegate approval for it under the
descriptor's context. Both checks are evaluated fresh on every request;
revocation on either side takes effect immediately.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .dispatcher import BackendDispatcher
from .errors import AuthorizationError, BackendRefusal, Reason, TransientBackendError
from .metadata import MetadataDescriptor
from .origin import OriginChain
from .retry import NO_RETRY, RetryPolicy, call_with_retry
from .signing import normalize_principal
from .util import to_hex

logger = logging.getLogger(__name__)


class DecisionReason(str, Enum):
    OWNER = "Owner"
    DELEGATE = "Delegate"
    DENIED = "Denied"


@dataclass(frozen=True)
class AuthorizationDecision:
    """Derived per request; never stored."""
    allowed: bool
    reason: DecisionReason

    def to_dict(self):
        return {"allowed": self.allowed, "reason": self.reason.value}


class AuthorizationEngine:
    """
    Evaluate owner-or-delegate authorization uniformly across backends.

    Usage:
        engine = AuthorizationEngine(origin, dispatcher)
        decision = engine.authorize(descriptor, node, principal)
    """

    def __init__(self, origin: OriginChain, dispatcher: BackendDispatcher, retry: RetryPolicy = NO_RETRY):
        self.origin = origin
        self.dispatcher = dispatcher
        self.retry = retry

    def authorize(self, descriptor: MetadataDescriptor, node: bytes, principal: str,
                  context: Optional[bytes] = None) -> AuthorizationDecision:
        """
        Decide whether principal may mutate node under the descriptor's context.

        Args:
            descriptor: Resolved metadata for the node's name
            node: 32-byte node id
            principal: Sender principal (any accepted scheme)
            context: Context to check; defaults to descriptor.context

        Returns:
            AuthorizationDecision (allowed with Owner/Delegate, or Denied)

        Raises:
            AuthorizationError{BackendUnreachable}: neither check could
                authorize and at least one could not be evaluated
            DispatchError: no backend client for the descriptor
        """
        principal = normalize_principal(principal)
        context = descriptor.context if context is None else context
        unreachable = []

        try:
            owner = call_with_retry(self.retry, self.origin.owner, node)
        except TransientBackendError as e:
            owner = None
            unreachable.append(f"owner lookup: {e}")
        if owner is not None and owner.lower() == principal:
            return AuthorizationDecision(True, DecisionReason.OWNER)

        client = self.dispatcher.dispatch(descriptor)
        try:
            approved = call_with_retry(self.retry, client.is_approved_for, context, node, principal)
        except TransientBackendError as e:
            approved = False
            unreachable.append(f"approval check: {e}")
        except BackendRefusal as e:
            logger.info("approval check refused for %s on %s: %s", principal, to_hex(node), e)
            approved = False
        if approved:
            return AuthorizationDecision(True, DecisionReason.DELEGATE)

        if unreachable:
            raise AuthorizationError(Reason.BACKEND_UNREACHABLE, "; ".join(unreachable))
        return AuthorizationDecision(False, DecisionReason.DENIED)

    def require(self, descriptor: MetadataDescriptor, node: bytes, principal: str,
                context: Optional[bytes] = None) -> AuthorizationDecision:
        """Like authorize(), but a denial raises AuthorizationError{Denied}."""
        decision = self.authorize(descriptor, node, principal, context)
        if not decision.allowed:
            raise AuthorizationError(Reason.DENIED, f"{principal} may not update {to_hex(node)}")
        return decision
