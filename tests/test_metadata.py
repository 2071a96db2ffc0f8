"""
Metadata resolution tests: tuple mapping, caching, static vs dynamic
metadata and upstream failures.
"""

import unittest

from recordgate.errors import Reason, ResolutionError
from recordgate.metadata import (
    STARK_PRIME,
    DescriptorCache,
    DynamicMetadata,
    MetadataDescriptor,
    MetadataResolver,
    StaticMetadata,
    StorageKind,
)

from fakes import (
    CONTEXT,
    EVM_METADATA,
    FAST_RETRY,
    NAME,
    NODE,
    NON_CHAIN_METADATA,
    SERVICE_URL,
    STARKNET_METADATA,
    FakeClock,
    FakeOriginChain,
)


class TestDescriptorMapping(unittest.TestCase):

    def test_non_chain(self):
        descriptor = MetadataDescriptor.from_tuple(NON_CHAIN_METADATA)
        self.assertEqual(descriptor.storage_kind, StorageKind.NON_CHAIN)
        self.assertEqual(descriptor.backend_url, SERVICE_URL)
        self.assertEqual(descriptor.context, CONTEXT)

    def test_evm(self):
        descriptor = MetadataDescriptor.from_tuple(EVM_METADATA)
        self.assertEqual(descriptor.storage_kind, StorageKind.EVM)
        self.assertEqual(descriptor.contract_address, "0x" + "ab" * 20)

    def test_starknet(self):
        descriptor = MetadataDescriptor.from_tuple(STARKNET_METADATA)
        self.assertEqual(descriptor.storage_kind, StorageKind.STARKNET_LIKE)

    def test_unknown_kind(self):
        raw = ("x", 60, "", 7, b"https://svc.example", b"")
        with self.assertRaises(ResolutionError) as ctx:
            MetadataDescriptor.from_tuple(raw)
        self.assertEqual(ctx.exception.reason, Reason.UNKNOWN_BACKEND)

    def test_wrong_shape(self):
        with self.assertRaises(ResolutionError) as ctx:
            MetadataDescriptor.from_tuple(NON_CHAIN_METADATA[:5])
        self.assertEqual(ctx.exception.reason, Reason.MALFORMED)

    def test_location_must_match_kind(self):
        cases = [
            ("base", 60, "", 0, b"\x01" * 19, b""),
            ("offchain", 60, "", 1, b"ftp://svc.example", b""),
            ("offchain", 60, "", 1, b"\xff\xfe", b""),
            ("starknet", 0, "", 2, STARK_PRIME.to_bytes(32, "big"), b""),
            ("starknet", 0, "", 2, b"", b""),
        ]
        for raw in cases:
            with self.assertRaises(ResolutionError, msg=repr(raw)) as ctx:
                MetadataDescriptor.from_tuple(raw)
            self.assertEqual(ctx.exception.reason, Reason.MALFORMED)

    def test_dict_round_trip(self):
        descriptor = MetadataDescriptor.from_tuple(NON_CHAIN_METADATA)
        self.assertEqual(MetadataDescriptor.from_dict(descriptor.to_dict()), descriptor)


class TestDescriptorCache(unittest.TestCase):

    def test_ttl_expiry(self):
        clock = FakeClock()
        cache = DescriptorCache(ttl_seconds=60, clock=clock)
        descriptor = MetadataDescriptor.from_tuple(NON_CHAIN_METADATA)
        cache.put(NODE, descriptor)
        clock.advance(59)
        self.assertIs(cache.get(NODE), descriptor)
        clock.advance(1)
        self.assertIsNone(cache.get(NODE))

    def test_lru_eviction(self):
        cache = DescriptorCache(ttl_seconds=60, max_entries=2)
        descriptor = MetadataDescriptor.from_tuple(NON_CHAIN_METADATA)
        cache.put(b"a", descriptor)
        cache.put(b"b", descriptor)
        cache.get(b"a")
        cache.put(b"c", descriptor)
        self.assertIsNotNone(cache.get(b"a"))
        self.assertIsNone(cache.get(b"b"))
        self.assertEqual(len(cache), 2)


class TestMetadataResolver(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.origin = FakeOriginChain()
        self.origin.metadata_by_name[NAME] = NON_CHAIN_METADATA
        self.resolver = MetadataResolver(
            self.origin, cache=DescriptorCache(60, clock=self.clock), retry=FAST_RETRY
        )

    def test_keeps_given_empty_cache(self):
        cache = DescriptorCache(ttl_seconds=0)
        resolver = MetadataResolver(self.origin, cache=cache)
        self.assertIs(resolver.cache, cache)

    def test_zero_ttl_disables_caching(self):
        resolver = MetadataResolver(self.origin, cache=DescriptorCache(ttl_seconds=0, clock=self.clock))
        resolver.resolve(NAME)
        resolver.resolve(NAME)
        self.assertEqual(self.origin.metadata_calls, [NAME, NAME])

    def test_resolves_and_caches(self):
        first = self.resolver.resolve(NAME)
        second = self.resolver.resolve(NAME.upper())
        self.assertEqual(first, second)
        self.assertEqual(self.origin.metadata_calls, [NAME])

    def test_cache_expires(self):
        self.resolver.resolve(NAME)
        self.clock.advance(61)
        self.resolver.resolve(NAME)
        self.assertEqual(len(self.origin.metadata_calls), 2)

    def test_invalidate(self):
        self.resolver.resolve(NAME)
        self.origin.metadata_by_name[NAME] = EVM_METADATA
        self.resolver.invalidate(NAME)
        self.assertEqual(self.resolver.resolve(NAME).storage_kind, StorageKind.EVM)

    def test_not_found(self):
        with self.assertRaises(ResolutionError) as ctx:
            self.resolver.resolve("nobody.example.eth")
        self.assertEqual(ctx.exception.reason, Reason.NOT_FOUND)

    def test_transient_failures_retried(self):
        self.origin.metadata_failures = 2
        self.assertEqual(self.resolver.resolve(NAME).backend_url, SERVICE_URL)
        self.assertEqual(len(self.origin.metadata_calls), 3)

    def test_upstream_unavailable_after_retries(self):
        self.origin.metadata_failures = 10
        with self.assertRaises(ResolutionError) as ctx:
            self.resolver.resolve(NAME)
        self.assertEqual(ctx.exception.reason, Reason.UPSTREAM_UNAVAILABLE)
        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(len(self.origin.metadata_calls), 3)

    def test_malformed_name(self):
        with self.assertRaises(ResolutionError) as ctx:
            self.resolver.resolve("alice..eth")
        self.assertEqual(ctx.exception.reason, Reason.MALFORMED)

    def test_static_metadata_wins(self):
        static = MetadataDescriptor.from_tuple(EVM_METADATA)
        self.resolver.register_static(NAME, static)
        self.assertIsInstance(self.resolver.source_for(NAME), StaticMetadata)
        self.assertEqual(self.resolver.resolve(NAME), static)
        self.assertEqual(self.origin.metadata_calls, [])

    def test_other_names_stay_dynamic(self):
        self.resolver.register_static(NAME, MetadataDescriptor.from_tuple(EVM_METADATA))
        self.assertEqual(self.resolver.source_for("bob.example.eth"), DynamicMetadata("bob.example.eth"))

    def test_load_static_entries(self):
        count = self.resolver.load_static([{
            "name": "bob.example.eth",
            "chainLabel": "offchain",
            "coinType": 60,
            "graphqlUrl": "",
            "storageKind": 1,
            "backendLocation": "https://bob.example/records",
            "context": "0x01",
        }])
        self.assertEqual(count, 1)
        descriptor = self.resolver.resolve("bob.example.eth")
        self.assertEqual(descriptor.backend_url, "https://bob.example/records")
        self.assertEqual(descriptor.context, b"\x01")


if __name__ == "__main__":
    unittest.main(verbosity=2)
