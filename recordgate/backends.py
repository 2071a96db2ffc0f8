"""
Backend clients.

Every backend kind implements the same capability set:

    is_approved_for(context, node, principal) -> bool
    apply(node, context, payload, inception_time) -> WriteReceipt
    write_status(reference) -> WriteStatus

Chain backends (EVM, Starknet-like) never sign or submit transactions
themselves; writes are handed to a relayer and reported as PENDING until
the transaction receipt is observed.

Clients raise TransientBackendError for anything worth retrying and
BackendRefusal when the backend answered with a definite no.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import requests
from eth_utils import keccak
from web3 import Web3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError, TimeExhausted, TransactionNotFound

from .errors import BackendRefusal, TransientBackendError
from .metadata import STARK_PRIME, StorageKind
from .signing import PrincipalScheme, parse_principal
from .util import to_hex

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}

EVM_APPROVAL_ABI = [
    {
        "name": "isApprovedFor",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "context", "type": "bytes"},
            {"name": "node", "type": "bytes32"},
            {"name": "delegate", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
]


class WriteStatus(str, Enum):
    """Where a backend write stands."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class WriteReceipt:
    """What a backend said about a write."""
    status: WriteStatus
    reference: Optional[str] = None


class BackendClient(ABC):
    """Capability set shared by all backend kinds."""

    kind: StorageKind

    @abstractmethod
    def is_approved_for(self, context: bytes, node: bytes, principal: str) -> bool:
        """Whether principal holds delegate approval for (context, node)."""

    @abstractmethod
    def apply(self, node: bytes, context: bytes, payload: bytes, inception_time: int) -> WriteReceipt:
        """Write payload as the record of (node, context)."""

    def write_status(self, reference: Optional[str]) -> WriteStatus:
        """Current status of an earlier write. Synchronous backends confirm immediately."""
        return WriteStatus.CONFIRMED


# ============================================================
# HTTP helpers
# ============================================================

def _http(session, method: str, url: str, timeout: float, **kwargs):
    try:
        response = getattr(session, method)(url, timeout=timeout, **kwargs)
    except requests.exceptions.RequestException as e:
        raise TransientBackendError(f"{method.upper()} {url} failed: {e}") from e
    if response.status_code in RETRYABLE_STATUS_CODES:
        raise TransientBackendError(f"{method.upper()} {url} returned {response.status_code}")
    if response.status_code >= 400:
        raise BackendRefusal(f"{method.upper()} {url} returned {response.status_code}")
    return response


def _json(response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError as e:
        raise BackendRefusal(f"backend returned invalid JSON: {e}") from e
    if not isinstance(body, dict):
        raise BackendRefusal("backend returned a non-object JSON body")
    return body


class HttpRelayer:
    """
    Hands chain writes to an external relayer service.

    POST {url} {"chain", "target", "node", "context", "data", "inceptionDate"}
    -> {"txHash": "0x.."}
    """

    def __init__(self, url: str, session=None, timeout: float = 10.0):
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout

    def submit(self, chain_label: str, target: str, node: bytes, context: bytes,
               payload: bytes, inception_time: int) -> str:
        response = _http(self.session, "post", self.url, self.timeout, json={
            "chain": chain_label,
            "target": target,
            "node": to_hex(node),
            "context": to_hex(context),
            "data": to_hex(payload),
            "inceptionDate": inception_time,
        })
        tx_hash = _json(response).get("txHash")
        if not isinstance(tx_hash, str) or not tx_hash:
            raise BackendRefusal("relayer accepted the write without a transaction hash")
        return tx_hash


# ============================================================
# Non-chain HTTP storage service
# ============================================================

class NonChainBackend(BackendClient):
    """
    HTTP storage service client.

    POST {url}/approvals        {"context", "node", "principal"} -> {"approved": bool}
    POST {url}/records          {"node", "context", "data", "inceptionDate"}
                                200/201 stored, 202 accepted (pending)
    GET  {url}/records/status/{id} -> {"status": "pending" | "confirmed" | "failed"}
    """

    kind = StorageKind.NON_CHAIN

    def __init__(self, base_url: str, session=None, approval_timeout: float = 5.0, apply_timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.approval_timeout = approval_timeout
        self.apply_timeout = apply_timeout

    def is_approved_for(self, context: bytes, node: bytes, principal: str) -> bool:
        response = _http(self.session, "post", f"{self.base_url}/approvals", self.approval_timeout, json={
            "context": to_hex(context),
            "node": to_hex(node),
            "principal": principal,
        })
        return _json(response).get("approved") is True

    def apply(self, node: bytes, context: bytes, payload: bytes, inception_time: int) -> WriteReceipt:
        response = _http(self.session, "post", f"{self.base_url}/records", self.apply_timeout, json={
            "node": to_hex(node),
            "context": to_hex(context),
            "data": to_hex(payload),
            "inceptionDate": inception_time,
        })
        reference = None
        if response.content:
            reference = _json(response).get("id")
        if response.status_code == 202:
            if not reference:
                raise BackendRefusal("storage service accepted the write without an id to track")
            return WriteReceipt(WriteStatus.PENDING, str(reference))
        return WriteReceipt(WriteStatus.CONFIRMED, None if reference is None else str(reference))

    def write_status(self, reference: Optional[str]) -> WriteStatus:
        if not reference:
            return WriteStatus.CONFIRMED
        response = _http(self.session, "get", f"{self.base_url}/records/status/{reference}", self.apply_timeout)
        try:
            return WriteStatus(_json(response).get("status"))
        except ValueError as e:
            raise BackendRefusal(f"unknown write status: {e}") from e


# ============================================================
# EVM contract backend
# ============================================================

class EvmBackend(BackendClient):
    """Records held by a contract on an EVM chain."""

    kind = StorageKind.EVM

    def __init__(self, contract, chain_label: str, relayer: Optional[HttpRelayer] = None, w3=None):
        self.contract = contract
        self.chain_label = chain_label
        self.relayer = relayer
        self.w3 = w3

    @classmethod
    def connect(cls, rpc_url: str, address: str, chain_label: str,
                relayer: Optional[HttpRelayer] = None, timeout: float = 5.0) -> "EvmBackend":
        w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        contract = w3.eth.contract(address=Web3.to_checksum_address(address), abi=EVM_APPROVAL_ABI)
        return cls(contract, chain_label, relayer=relayer, w3=w3)

    def is_approved_for(self, context: bytes, node: bytes, principal: str) -> bool:
        parsed = parse_principal(principal)
        if parsed.scheme != PrincipalScheme.EVM:
            return False
        delegate = Web3.to_checksum_address(parsed.id)
        try:
            return bool(self.contract.functions.isApprovedFor(context, node, delegate).call())
        except (ContractLogicError, BadFunctionCallOutput) as e:
            raise BackendRefusal(f"isApprovedFor reverted: {e}") from e
        except (requests.exceptions.RequestException, TimeExhausted, ConnectionError, TimeoutError) as e:
            raise TransientBackendError(f"{self.chain_label} unreachable: {e}") from e

    def apply(self, node: bytes, context: bytes, payload: bytes, inception_time: int) -> WriteReceipt:
        if self.relayer is None:
            raise BackendRefusal(f"no relayer configured for {self.chain_label}")
        tx_hash = self.relayer.submit(self.chain_label, self.contract.address, node, context, payload, inception_time)
        return WriteReceipt(WriteStatus.PENDING, tx_hash)

    def write_status(self, reference: Optional[str]) -> WriteStatus:
        if not reference or self.w3 is None:
            return WriteStatus.PENDING
        try:
            receipt = self.w3.eth.get_transaction_receipt(reference)
        except TransactionNotFound:
            return WriteStatus.PENDING
        except (requests.exceptions.RequestException, TimeExhausted, ConnectionError, TimeoutError) as e:
            raise TransientBackendError(f"{self.chain_label} unreachable: {e}") from e
        return WriteStatus.CONFIRMED if receipt["status"] == 1 else WriteStatus.FAILED


# ============================================================
# Starknet-like backend
# ============================================================

def starknet_selector(name: str) -> int:
    """Entry point selector: keccak256 of the name truncated to 250 bits."""
    return int.from_bytes(keccak(text=name), "big") & (2 ** 250 - 1)


def byte_array_calldata(data: bytes) -> List[int]:
    """Serialize bytes as a Cairo ByteArray: full 31-byte words, pending word, pending length."""
    full = len(data) // 31
    words = [int.from_bytes(data[i * 31:(i + 1) * 31], "big") for i in range(full)]
    pending = data[full * 31:]
    return [full] + words + [int.from_bytes(pending, "big") if pending else 0, len(pending)]


def u256_calldata(value: bytes) -> List[int]:
    n = int.from_bytes(value, "big")
    return [n & (2 ** 128 - 1), n >> 128]


class StarknetBackend(BackendClient):
    """Records held by a contract on a Starknet-like chain, reached via JSON-RPC."""

    kind = StorageKind.STARKNET_LIKE

    TXN_HASH_NOT_FOUND = 29

    def __init__(self, rpc_url: str, contract_address: str, chain_label: str,
                 relayer: Optional[HttpRelayer] = None, session=None, timeout: float = 5.0):
        self.rpc_url = rpc_url
        # felts go on the wire without leading zeros
        self.contract_address = hex(int(contract_address, 16))
        self.chain_label = chain_label
        self.relayer = relayer
        self.session = session or requests.Session()
        self.timeout = timeout

    def _rpc(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        response = _http(self.session, "post", self.rpc_url, self.timeout, json={
            "jsonrpc": "2.0", "id": 1, "method": method, "params": params,
        })
        return _json(response)

    def is_approved_for(self, context: bytes, node: bytes, principal: str) -> bool:
        delegate = int.from_bytes(parse_principal(principal).raw, "big")
        if delegate >= STARK_PRIME:
            return False
        calldata = byte_array_calldata(context) + u256_calldata(node) + [delegate]
        body = self._rpc("starknet_call", {
            "request": {
                "contract_address": self.contract_address,
                "entry_point_selector": hex(starknet_selector("is_approved_for")),
                "calldata": [hex(x) for x in calldata],
            },
            "block_id": "latest",
        })
        if "error" in body:
            raise BackendRefusal(f"starknet_call failed: {body['error']}")
        result = body.get("result") or []
        try:
            return bool(result) and int(result[0], 16) != 0
        except (TypeError, ValueError) as e:
            raise BackendRefusal(f"unexpected starknet_call result: {result}") from e

    def apply(self, node: bytes, context: bytes, payload: bytes, inception_time: int) -> WriteReceipt:
        if self.relayer is None:
            raise BackendRefusal(f"no relayer configured for {self.chain_label}")
        tx_hash = self.relayer.submit(self.chain_label, self.contract_address, node, context, payload, inception_time)
        return WriteReceipt(WriteStatus.PENDING, tx_hash)

    def write_status(self, reference: Optional[str]) -> WriteStatus:
        if not reference:
            return WriteStatus.PENDING
        body = self._rpc("starknet_getTransactionReceipt", {"transaction_hash": reference})
        if "error" in body:
            error = body["error"] if isinstance(body["error"], dict) else {}
            if error.get("code") == self.TXN_HASH_NOT_FOUND:
                return WriteStatus.PENDING
            raise BackendRefusal(f"starknet_getTransactionReceipt failed: {body['error']}")
        receipt = body.get("result") or {}
        if receipt.get("execution_status") == "REVERTED":
            return WriteStatus.FAILED
        if receipt.get("finality_status") in ("ACCEPTED_ON_L2", "ACCEPTED_ON_L1"):
            return WriteStatus.CONFIRMED
        return WriteStatus.PENDING
