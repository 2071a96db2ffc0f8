"""
Signed update verification.

A request carries a detached signature over the canonical update message
(see canonicalization.update_message). Two principal schemes are accepted:

- EVM address ("0x" + 40 hex): the message is signed as an EIP-191
  personal_sign message with secp256k1. The signer is recovered from the
  65-byte signature and must equal the claimed sender.
- Ed25519 key ("ed25519:" + 64 hex): the sender names its own public key and
  the 64-byte detached signature must verify under it.

Verification is a pure function: no I/O, no shared state.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from eth_account import Account
from eth_account.messages import encode_defunct
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .canonicalization import update_message
from .errors import Reason, SignatureError
from .util import from_hex, to_hex

EVM_ADDRESS_PATTERN = re.compile(r'^0x[0-9a-fA-F]{40}$')
ED25519_PATTERN = re.compile(r'^ed25519:(0x)?[0-9a-fA-F]{64}$')

EVM_SIGNATURE_LENGTH = 65
ED25519_SIGNATURE_LENGTH = 64
EVM_RECOVERY_IDS = frozenset({0, 1, 27, 28})


class PrincipalScheme(str, Enum):
    EVM = "evm"
    ED25519 = "ed25519"


@dataclass(frozen=True)
class Principal:
    """A parsed sender identity."""
    scheme: PrincipalScheme
    raw: bytes

    @property
    def id(self) -> str:
        """Normalized principal identifier (lowercase)."""
        if self.scheme == PrincipalScheme.EVM:
            return to_hex(self.raw)
        return "ed25519:" + self.raw.hex()

    def __str__(self) -> str:
        return self.id


def parse_principal(sender: str) -> Principal:
    """
    Parse a sender string into a Principal.

    Raises:
        SignatureError{Malformed}: if the sender matches no scheme
    """
    if not isinstance(sender, str):
        raise SignatureError(Reason.MALFORMED, "sender must be a string")
    sender = sender.strip()
    if EVM_ADDRESS_PATTERN.match(sender):
        return Principal(PrincipalScheme.EVM, from_hex(sender))
    if ED25519_PATTERN.match(sender):
        return Principal(PrincipalScheme.ED25519, from_hex(sender.split(":", 1)[1]))
    raise SignatureError(Reason.MALFORMED, f"unrecognized sender format: {sender[:12]}")


def normalize_principal(sender: str) -> str:
    """Canonical lowercase form of a sender; used for replay keys and owner checks."""
    return parse_principal(sender).id


class SignatureVerifier:
    """
    Recovers the signing principal of an update and checks it is the sender.

    Usage:
        verifier = SignatureVerifier()
        principal = verifier.verify(payload, sender, inception_time, signature)
    """

    def verify(self, payload: bytes, sender: str, inception_time: int, signature: bytes) -> str:
        """
        Verify a detached update signature.

        Returns:
            The normalized principal id of the sender

        Raises:
            SignatureError{Malformed}: encoding/decoding failure
            SignatureError{Mismatch}: the signature does not belong to sender
        """
        principal = parse_principal(sender)
        try:
            message = update_message(payload, sender, inception_time)
        except ValueError as e:
            raise SignatureError(Reason.MALFORMED, str(e)) from e

        if not isinstance(signature, (bytes, bytearray)):
            raise SignatureError(Reason.MALFORMED, "signature must be bytes")
        signature = bytes(signature)

        if principal.scheme == PrincipalScheme.EVM:
            self._verify_evm(principal, message, signature)
        else:
            self._verify_ed25519(principal, message, signature)
        return principal.id

    def _verify_evm(self, principal: Principal, message: bytes, signature: bytes) -> None:
        if len(signature) != EVM_SIGNATURE_LENGTH:
            raise SignatureError(
                Reason.MALFORMED,
                f"EVM signature must be {EVM_SIGNATURE_LENGTH} bytes, got {len(signature)}"
            )
        # Only plain recovery ids; chain-encoded v values would alias 27/28.
        if signature[-1] not in EVM_RECOVERY_IDS:
            raise SignatureError(Reason.MISMATCH, f"unexpected recovery id {signature[-1]}")
        try:
            recovered = Account.recover_message(encode_defunct(primitive=message), signature=signature)
        except Exception as e:
            # Out-of-range r/s/v after tampering; the signature is not the sender's.
            raise SignatureError(Reason.MISMATCH, f"signature recovery failed: {e}") from e
        if recovered.lower() != principal.id:
            raise SignatureError(Reason.MISMATCH, f"recovered {recovered.lower()}, expected {principal.id}")

    def _verify_ed25519(self, principal: Principal, message: bytes, signature: bytes) -> None:
        if len(signature) != ED25519_SIGNATURE_LENGTH:
            raise SignatureError(
                Reason.MALFORMED,
                f"Ed25519 signature must be {ED25519_SIGNATURE_LENGTH} bytes, got {len(signature)}"
            )
        try:
            key = VerifyKey(principal.raw)
        except Exception as e:
            raise SignatureError(Reason.MALFORMED, f"invalid Ed25519 key: {e}") from e
        try:
            key.verify(message, signature)
        except BadSignatureError as e:
            raise SignatureError(Reason.MISMATCH, "Ed25519 signature does not verify") from e


# ============================================================
# Submitter-side helpers
# ============================================================

def generate_key(scheme: PrincipalScheme = PrincipalScheme.EVM) -> Tuple[str, str]:
    """
    Generate a signing key.

    Returns:
        Tuple of (private_key_hex, sender)
    """
    if scheme == PrincipalScheme.EVM:
        account = Account.create()
        return to_hex(bytes(account.key)), account.address
    sk = SigningKey.generate()
    return to_hex(bytes(sk)), "ed25519:" + bytes(sk.verify_key).hex()


def sender_for_key(private_key_hex: str, scheme: PrincipalScheme = PrincipalScheme.EVM) -> str:
    """Derive the sender string for a private key."""
    if scheme == PrincipalScheme.EVM:
        return Account.from_key(from_hex(private_key_hex)).address
    return "ed25519:" + bytes(SigningKey(from_hex(private_key_hex)).verify_key).hex()


def sign_update(
    private_key_hex: str,
    payload: bytes,
    sender: str,
    inception_time: int,
    scheme: Optional[PrincipalScheme] = None
) -> bytes:
    """
    Produce the detached signature a client submits with an update.

    The scheme defaults to the one implied by the sender format.
    """
    scheme = scheme or parse_principal(sender).scheme
    message = update_message(payload, sender, inception_time)
    if scheme == PrincipalScheme.EVM:
        signed = Account.sign_message(encode_defunct(primitive=message), private_key=from_hex(private_key_hex))
        return bytes(signed.signature)
    return SigningKey(from_hex(private_key_hex)).sign(message).signature
