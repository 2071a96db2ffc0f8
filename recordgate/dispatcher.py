"""
Backend dispatch.

Maps a descriptor's storage kind to a factory that wires the descriptor's
backend location into a concrete client. This registry is the only place
that looks at the storage-kind discriminant; adding a backend means
registering a factory.
"""

import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .backends import BackendClient, EvmBackend, HttpRelayer, NonChainBackend, StarknetBackend
from .errors import DispatchError, Reason
from .metadata import MetadataDescriptor, StorageKind

BackendFactory = Callable[[MetadataDescriptor], BackendClient]


@dataclass(frozen=True)
class ChainEndpoint:
    """How to reach one chain: read RPC plus optional write relayer."""
    rpc_url: str
    relayer_url: Optional[str] = None


@dataclass(frozen=True)
class BackendTimeouts:
    approval: float = 5.0
    apply: float = 10.0


class BackendDispatcher:
    """
    Select and build the backend client for a descriptor.

    Usage:
        dispatcher = BackendDispatcher.default(chains={"base": ChainEndpoint("https://...")})
        client = dispatcher.dispatch(descriptor)
    """

    def __init__(self):
        self._factories: Dict[StorageKind, BackendFactory] = {}
        self._lock = threading.RLock()

    def register(self, kind: StorageKind, factory: BackendFactory) -> None:
        with self._lock:
            self._factories[kind] = factory

    def dispatch(self, descriptor: MetadataDescriptor) -> BackendClient:
        """
        Raises:
            DispatchError{UnsupportedBackend}: no factory for the storage kind
            DispatchError{UnknownChain}: chain backend on an unconfigured chain
        """
        with self._lock:
            factory = self._factories.get(descriptor.storage_kind)
        if factory is None:
            raise DispatchError(
                Reason.UNSUPPORTED_BACKEND,
                f"no client registered for {descriptor.storage_kind.name}"
            )
        return factory(descriptor)

    @classmethod
    def default(
        cls,
        chains: Optional[Dict[str, ChainEndpoint]] = None,
        timeouts: BackendTimeouts = BackendTimeouts(),
        session=None
    ) -> "BackendDispatcher":
        """Dispatcher with the three built-in backend kinds."""
        chains = dict(chains or {})
        dispatcher = cls()

        def endpoint_for(descriptor: MetadataDescriptor) -> ChainEndpoint:
            endpoint = chains.get(descriptor.chain_label)
            if endpoint is None:
                raise DispatchError(Reason.UNKNOWN_CHAIN, f"no RPC endpoint for chain {descriptor.chain_label!r}")
            return endpoint

        def relayer_for(endpoint: ChainEndpoint) -> Optional[HttpRelayer]:
            if not endpoint.relayer_url:
                return None
            return HttpRelayer(endpoint.relayer_url, session=session, timeout=timeouts.apply)

        def evm(descriptor: MetadataDescriptor) -> BackendClient:
            endpoint = endpoint_for(descriptor)
            return EvmBackend.connect(
                endpoint.rpc_url,
                descriptor.contract_address,
                descriptor.chain_label,
                relayer=relayer_for(endpoint),
                timeout=timeouts.approval,
            )

        def non_chain(descriptor: MetadataDescriptor) -> BackendClient:
            return NonChainBackend(
                descriptor.backend_url,
                session=session,
                approval_timeout=timeouts.approval,
                apply_timeout=timeouts.apply,
            )

        def starknet(descriptor: MetadataDescriptor) -> BackendClient:
            endpoint = endpoint_for(descriptor)
            return StarknetBackend(
                endpoint.rpc_url,
                descriptor.contract_address,
                descriptor.chain_label,
                relayer=relayer_for(endpoint),
                session=session,
                timeout=timeouts.approval,
            )

        dispatcher.register(StorageKind.EVM, evm)
        dispatcher.register(StorageKind.NON_CHAIN, non_chain)
        dispatcher.register(StorageKind.STARKNET_LIKE, starknet)
        return dispatcher
