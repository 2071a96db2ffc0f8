"""
Read-only access to the origin chain.

The origin chain holds the canonical name registry: who owns a node, and
which resolver answers for it. The gateway never writes to it.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Tuple

import requests
from web3 import Web3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError, TimeExhausted

from .errors import TransientBackendError
from .hashing import dns_encode, namehash, parent_names

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "00" * 20

REGISTRY_ABI = [
    {
        "name": "owner",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "node", "type": "bytes32"}],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "name": "resolver",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "node", "type": "bytes32"}],
        "outputs": [{"name": "", "type": "address"}],
    },
]

METADATA_RESOLVER_ABI = [
    {
        "name": "metadata",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "name", "type": "bytes"}],
        "outputs": [
            {"name": "chainLabel", "type": "string"},
            {"name": "coinType", "type": "uint256"},
            {"name": "graphqlUrl", "type": "string"},
            {"name": "storageType", "type": "uint8"},
            {"name": "storageLocation", "type": "bytes"},
            {"name": "context", "type": "bytes"},
        ],
    },
]

TRANSIENT_ERRORS = (requests.exceptions.RequestException, TimeExhausted, ConnectionError, TimeoutError)


class OriginChain(ABC):
    """Read interface to the origin-chain registry and resolvers."""

    @abstractmethod
    def metadata(self, name: str) -> Optional[Tuple]:
        """
        Return the raw metadata tuple for a name, or None if no resolver
        (or no metadata accessor) answers for it.

        Raises:
            TransientBackendError: the chain could not be reached
        """

    @abstractmethod
    def owner(self, node: bytes) -> Optional[str]:
        """
        Return the lowercase 0x owner address of a node, or None if unowned.

        Raises:
            TransientBackendError: the chain could not be reached
        """


class Web3OriginChain(OriginChain):
    """
    Origin chain reached over JSON-RPC with web3.

    Resolver discovery walks from the full name towards the root and uses
    the closest ancestor that has a resolver set, so wildcard resolvers
    answer for names below them.
    """

    def __init__(self, registry, resolver_factory: Callable[[str], Any]):
        self._registry = registry
        self._resolver_factory = resolver_factory

    @classmethod
    def connect(cls, rpc_url: str, registry_address: str, timeout: float = 5.0) -> "Web3OriginChain":
        w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        registry = w3.eth.contract(address=Web3.to_checksum_address(registry_address), abi=REGISTRY_ABI)

        def resolver_factory(address: str):
            return w3.eth.contract(address=Web3.to_checksum_address(address), abi=METADATA_RESOLVER_ABI)

        return cls(registry, resolver_factory)

    def find_resolver(self, name: str) -> Optional[str]:
        """Address of the closest resolver for name, or None."""
        for candidate in parent_names(name):
            address = self._call(self._registry.functions.resolver(namehash(candidate)))
            if address and address.lower() != ZERO_ADDRESS:
                return address
        return None

    def metadata(self, name: str) -> Optional[Tuple]:
        address = self.find_resolver(name)
        if address is None:
            return None
        resolver = self._resolver_factory(address)
        try:
            raw = self._call(resolver.functions.metadata(dns_encode(name)))
        except (ContractLogicError, BadFunctionCallOutput) as e:
            logger.info("resolver %s has no metadata for %s: %s", address, name, e)
            return None
        return tuple(raw)

    def owner(self, node: bytes) -> Optional[str]:
        address = self._call(self._registry.functions.owner(node))
        if not address or address.lower() == ZERO_ADDRESS:
            return None
        return address.lower()

    @staticmethod
    def _call(fn):
        try:
            return fn.call()
        except TRANSIENT_ERRORS as e:
            raise TransientBackendError(f"origin chain unreachable: {e}") from e
