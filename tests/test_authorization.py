"""
Authorization tests: owner OR delegate, evaluated fresh on every request.
"""

import unittest

from recordgate.authorization import AuthorizationEngine, DecisionReason
from recordgate.dispatcher import BackendDispatcher
from recordgate.errors import AuthorizationError, DispatchError, Reason
from recordgate.metadata import MetadataDescriptor

from fakes import (
    CONTEXT,
    DELEGATE,
    ED25519_SENDER,
    FAST_RETRY,
    NODE,
    NON_CHAIN_METADATA,
    OWNER,
    STRANGER,
    FakeBackend,
    FakeOriginChain,
    single_backend_dispatcher,
)


class TestAuthorizationEngine(unittest.TestCase):

    def setUp(self):
        self.origin = FakeOriginChain()
        self.origin.owners[NODE] = OWNER
        self.backend = FakeBackend()
        self.backend.approve(CONTEXT, NODE, DELEGATE)
        self.engine = AuthorizationEngine(self.origin, single_backend_dispatcher(self.backend), retry=FAST_RETRY)
        self.descriptor = MetadataDescriptor.from_tuple(NON_CHAIN_METADATA)

    def test_owner_is_authorized(self):
        decision = self.engine.authorize(self.descriptor, NODE, OWNER)
        self.assertTrue(decision.allowed)
        self.assertEqual(decision.reason, DecisionReason.OWNER)
        self.assertEqual(self.backend.approval_calls, 0)

    def test_owner_match_ignores_case(self):
        self.assertTrue(self.engine.authorize(self.descriptor, NODE, OWNER.lower()).allowed)

    def test_delegate_is_authorized(self):
        decision = self.engine.authorize(self.descriptor, NODE, DELEGATE)
        self.assertTrue(decision.allowed)
        self.assertEqual(decision.reason, DecisionReason.DELEGATE)

    def test_stranger_is_denied(self):
        decision = self.engine.authorize(self.descriptor, NODE, STRANGER)
        self.assertFalse(decision.allowed)
        self.assertEqual(decision.reason, DecisionReason.DENIED)
        self.assertEqual(decision.to_dict(), {"allowed": False, "reason": "Denied"})

    def test_require_raises_denied(self):
        with self.assertRaises(AuthorizationError) as ctx:
            self.engine.require(self.descriptor, NODE, STRANGER)
        self.assertEqual(ctx.exception.reason, Reason.DENIED)

    def test_approval_is_per_context(self):
        decision = self.engine.authorize(self.descriptor, NODE, DELEGATE, context=b"\x01")
        self.assertFalse(decision.allowed)

    def test_revocation_takes_effect_immediately(self):
        self.assertTrue(self.engine.authorize(self.descriptor, NODE, DELEGATE).allowed)
        self.backend.revoke(CONTEXT, NODE, DELEGATE)
        self.assertFalse(self.engine.authorize(self.descriptor, NODE, DELEGATE).allowed)

    def test_ownership_transfer_takes_effect_immediately(self):
        self.origin.owners[NODE] = STRANGER
        self.assertEqual(self.engine.authorize(self.descriptor, NODE, STRANGER).reason, DecisionReason.OWNER)
        self.assertFalse(self.engine.authorize(self.descriptor, NODE, OWNER).allowed)

    def test_delegate_authorized_while_owner_lookup_unreachable(self):
        self.origin.owner_unreachable = True
        self.assertEqual(self.engine.authorize(self.descriptor, NODE, DELEGATE).reason, DecisionReason.DELEGATE)

    def test_unreachable_owner_lookup_is_not_denied(self):
        self.origin.owner_unreachable = True
        with self.assertRaises(AuthorizationError) as ctx:
            self.engine.authorize(self.descriptor, NODE, STRANGER)
        self.assertEqual(ctx.exception.reason, Reason.BACKEND_UNREACHABLE)
        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(len(self.origin.owner_calls), 3)

    def test_unreachable_backend_is_not_denied(self):
        self.backend.approval_unreachable = True
        with self.assertRaises(AuthorizationError) as ctx:
            self.engine.authorize(self.descriptor, NODE, STRANGER)
        self.assertEqual(ctx.exception.reason, Reason.BACKEND_UNREACHABLE)
        self.assertEqual(self.backend.approval_calls, 3)

    def test_owner_authorized_while_backend_unreachable(self):
        self.backend.approval_unreachable = True
        self.assertTrue(self.engine.authorize(self.descriptor, NODE, OWNER).allowed)

    def test_refused_approval_check_counts_as_not_approved(self):
        self.backend.approval_refused = True
        self.assertFalse(self.engine.authorize(self.descriptor, NODE, DELEGATE).allowed)
        self.assertEqual(self.backend.approval_calls, 1)

    def test_ed25519_delegate(self):
        self.backend.approve(CONTEXT, NODE, ED25519_SENDER)
        decision = self.engine.authorize(self.descriptor, NODE, ED25519_SENDER.upper().replace("ED25519", "ed25519"))
        self.assertEqual(decision.reason, DecisionReason.DELEGATE)

    def test_no_backend_for_descriptor(self):
        engine = AuthorizationEngine(self.origin, BackendDispatcher())
        with self.assertRaises(DispatchError):
            engine.authorize(self.descriptor, NODE, STRANGER)


if __name__ == "__main__":
    unittest.main(verbosity=2)
