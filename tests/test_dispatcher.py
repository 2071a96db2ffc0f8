import unittest

from recordgate.backends import EvmBackend, NonChainBackend, StarknetBackend
from recordgate.dispatcher import BackendDispatcher, BackendTimeouts, ChainEndpoint
from recordgate.errors import DispatchError, Reason
from recordgate.metadata import MetadataDescriptor, StorageKind

from fakes import EVM_METADATA, NON_CHAIN_METADATA, SERVICE_URL, STARKNET_METADATA, FakeBackend, FakeSession

CHAINS = {
    "base": ChainEndpoint("https://base.example/rpc", "https://relay.example/tx"),
    "starknet": ChainEndpoint("https://starknet.example/rpc"),
}


class TestBackendDispatcher(unittest.TestCase):

    def setUp(self):
        self.session = FakeSession()
        self.dispatcher = BackendDispatcher.default(CHAINS, BackendTimeouts(approval=2.0, apply=8.0), self.session)

    def test_non_chain_client(self):
        client = self.dispatcher.dispatch(MetadataDescriptor.from_tuple(NON_CHAIN_METADATA))
        self.assertIsInstance(client, NonChainBackend)
        self.assertEqual(client.base_url, SERVICE_URL)
        self.assertEqual(client.approval_timeout, 2.0)
        self.assertEqual(client.apply_timeout, 8.0)
        self.assertIs(client.session, self.session)

    def test_evm_client(self):
        client = self.dispatcher.dispatch(MetadataDescriptor.from_tuple(EVM_METADATA))
        self.assertIsInstance(client, EvmBackend)
        self.assertEqual(client.chain_label, "base")
        self.assertIsNotNone(client.relayer)
        self.assertEqual(client.relayer.timeout, 8.0)

    def test_starknet_client_without_relayer(self):
        client = self.dispatcher.dispatch(MetadataDescriptor.from_tuple(STARKNET_METADATA))
        self.assertIsInstance(client, StarknetBackend)
        self.assertIsNone(client.relayer)
        self.assertEqual(client.rpc_url, "https://starknet.example/rpc")

    def test_unknown_chain(self):
        raw = ("optimism",) + EVM_METADATA[1:]
        with self.assertRaises(DispatchError) as ctx:
            self.dispatcher.dispatch(MetadataDescriptor.from_tuple(raw))
        self.assertEqual(ctx.exception.reason, Reason.UNKNOWN_CHAIN)

    def test_unregistered_kind(self):
        dispatcher = BackendDispatcher()
        with self.assertRaises(DispatchError) as ctx:
            dispatcher.dispatch(MetadataDescriptor.from_tuple(NON_CHAIN_METADATA))
        self.assertEqual(ctx.exception.reason, Reason.UNSUPPORTED_BACKEND)

    def test_registered_factory_wins(self):
        backend = FakeBackend()
        self.dispatcher.register(StorageKind.NON_CHAIN, lambda descriptor: backend)
        self.assertIs(self.dispatcher.dispatch(MetadataDescriptor.from_tuple(NON_CHAIN_METADATA)), backend)


if __name__ == "__main__":
    unittest.main(verbosity=2)
