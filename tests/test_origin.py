"""
Origin chain reads over stand-in web3 contract objects.
"""

import unittest
from types import SimpleNamespace

import requests
from web3.exceptions import ContractLogicError

from recordgate.errors import TransientBackendError
from recordgate.hashing import dns_encode, namehash
from recordgate.origin import ZERO_ADDRESS, Web3OriginChain

from fakes import NAME, NODE, NON_CHAIN_METADATA, OWNER

RESOLVER = "0x" + "aa" * 20


class Call:
    def __init__(self, result):
        self.result = result

    def call(self):
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class FakeRegistry:
    def __init__(self):
        self.resolvers = {}
        self.owners = {}
        self.error = None
        self.functions = SimpleNamespace(resolver=self._resolver, owner=self._owner)

    def _resolver(self, node):
        return Call(self.error or self.resolvers.get(node, ZERO_ADDRESS))

    def _owner(self, node):
        return Call(self.error or self.owners.get(node, ZERO_ADDRESS))


class FakeResolver:
    def __init__(self, answers):
        self.answers = answers
        self.functions = SimpleNamespace(metadata=self._metadata)

    def _metadata(self, dns_name):
        return Call(self.answers.get(dns_name, ContractLogicError("execution reverted")))


class TestWeb3OriginChain(unittest.TestCase):

    def setUp(self):
        self.registry = FakeRegistry()
        self.resolver = FakeResolver({dns_encode(NAME): list(NON_CHAIN_METADATA)})
        self.created = []

        def factory(address):
            self.created.append(address)
            return self.resolver

        self.origin = Web3OriginChain(self.registry, factory)

    def test_exact_resolver(self):
        self.registry.resolvers[NODE] = RESOLVER
        self.assertEqual(self.origin.metadata(NAME), NON_CHAIN_METADATA)
        self.assertEqual(self.created, [RESOLVER])

    def test_wildcard_resolver_on_ancestor(self):
        self.registry.resolvers[namehash("example.eth")] = RESOLVER
        self.assertEqual(self.origin.find_resolver(NAME), RESOLVER)
        self.assertEqual(self.origin.metadata(NAME), NON_CHAIN_METADATA)

    def test_no_resolver(self):
        self.assertIsNone(self.origin.metadata(NAME))

    def test_resolver_without_metadata(self):
        self.registry.resolvers[namehash("eth")] = RESOLVER
        self.assertIsNone(self.origin.metadata("bob.eth"))

    def test_owner(self):
        self.registry.owners[NODE] = OWNER
        self.assertEqual(self.origin.owner(NODE), OWNER.lower())
        self.assertIsNone(self.origin.owner(namehash("nobody.eth")))

    def test_unreachable_chain(self):
        self.registry.error = requests.exceptions.ConnectionError("refused")
        with self.assertRaises(TransientBackendError):
            self.origin.owner(NODE)
        with self.assertRaises(TransientBackendError):
            self.origin.metadata(NAME)


if __name__ == "__main__":
    unittest.main(verbosity=2)
