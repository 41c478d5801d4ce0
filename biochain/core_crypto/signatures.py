"""
Transaction Signatures

ECDSA (P-256, SHA-256) signing and verification for transactions, plus the
address scheme used by the ledger:

    address = "0x" + first 40 hex chars of SHA-256(uncompressed public point)

The ledger core never holds private keys. It consumes a SignatureVerifier
(address -> public key lookup + verification). KeyRegistry is the in-process
implementation; Wallet plays the wallet collaborator that owns a key pair
and signs transaction hashes.

Signatures are DER-encoded and carried on transactions as hex strings.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from .hashing import sha256_hex


logger = logging.getLogger(__name__)

CURVE = ec.SECP256R1()  # P-256
ADDRESS_HEX_CHARS = 40


# ============================================================================
# Keys and Addresses
# ============================================================================

def public_key_bytes(public_key: ec.EllipticCurvePublicKey) -> bytes:
    """Uncompressed X9.62 point encoding of a public key."""
    return public_key.public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint
    )


def derive_address(public_key: ec.EllipticCurvePublicKey) -> str:
    """Ledger address for a public key."""
    return "0x" + sha256_hex(public_key_bytes(public_key))[:ADDRESS_HEX_CHARS]


def load_public_key(data: bytes) -> ec.EllipticCurvePublicKey:
    """Decode an uncompressed P-256 point."""
    return ec.EllipticCurvePublicKey.from_encoded_point(CURVE, data)


@dataclass
class KeyPair:
    """ECDSA key pair container."""
    private_key: Optional[ec.EllipticCurvePrivateKey]
    public_key: ec.EllipticCurvePublicKey

    @classmethod
    def generate(cls) -> 'KeyPair':
        """Generate a new P-256 key pair."""
        private_key = ec.generate_private_key(CURVE)
        return cls(private_key, private_key.public_key())

    @classmethod
    def from_public_bytes(cls, data: bytes) -> 'KeyPair':
        """Public-only key pair (cannot sign)."""
        return cls(None, load_public_key(data))

    def public_bytes(self) -> bytes:
        return public_key_bytes(self.public_key)

    @property
    def address(self) -> str:
        return derive_address(self.public_key)


# ============================================================================
# Signing / Verification
# ============================================================================

class ECDSASigner:
    """
    ECDSA signatures over transaction hashes.

    The message signed is the UTF-8 encoding of the hex transaction hash,
    so a signature authorizes exactly one hash.
    """

    def __init__(self, key_pair: KeyPair):
        self._key_pair = key_pair

    def sign(self, message: bytes) -> bytes:
        """
        Sign a message.

        Raises:
            ValueError: If the key pair has no private key
        """
        if self._key_pair.private_key is None:
            raise ValueError("Private key required for signing")
        return self._key_pair.private_key.sign(message, ec.ECDSA(hashes.SHA256()))

    @staticmethod
    def verify(message: bytes, signature: bytes,
               public_key: ec.EllipticCurvePublicKey) -> bool:
        """True if signature is a valid ECDSA signature of message."""
        try:
            public_key.verify(signature, message, ec.ECDSA(hashes.SHA256()))
            return True
        except InvalidSignature:
            return False


def decode_signature(signature_hex: Optional[str]) -> Optional[bytes]:
    """Hex signature to bytes; None if missing or malformed."""
    if not signature_hex:
        return None
    try:
        return bytes.fromhex(signature_hex)
    except (TypeError, ValueError):
        return None


class SignatureVerifier:
    """
    Capability consumed by the ledger to check transaction signatures.

    Implementations map an address to its public key and verify that the
    signature authorizes the given transaction hash.
    """

    def verify(self, address: str, tx_hash: str, signature_hex: Optional[str]) -> bool:
        raise NotImplementedError


class KeyRegistry(SignatureVerifier):
    """
    In-memory address -> public key directory.

    The wallet collaborator registers each wallet's public key; the
    registry rejects keys whose derived address does not match.
    """

    def __init__(self):
        self._keys: Dict[str, ec.EllipticCurvePublicKey] = {}

    def register(self, public_key: ec.EllipticCurvePublicKey) -> str:
        """Register a public key and return its address."""
        address = derive_address(public_key)
        self._keys[address] = public_key
        logger.debug("Registered public key for %s", address)
        return address

    def register_bytes(self, address: str, public_bytes: bytes) -> None:
        """
        Register an encoded public key for a claimed address.

        Raises:
            ValueError: If the key does not hash to the claimed address
        """
        public_key = load_public_key(public_bytes)
        if derive_address(public_key) != address:
            raise ValueError(f"Public key does not match address {address}")
        self._keys[address] = public_key

    def public_key_for(self, address: str) -> Optional[ec.EllipticCurvePublicKey]:
        return self._keys.get(address)

    def __contains__(self, address: str) -> bool:
        return address in self._keys

    def verify(self, address: str, tx_hash: str, signature_hex: Optional[str]) -> bool:
        public_key = self._keys.get(address)
        if public_key is None:
            logger.warning("No public key registered for %s", address)
            return False
        signature = decode_signature(signature_hex)
        if signature is None:
            return False
        return ECDSASigner.verify(tx_hash.encode('utf-8'), signature, public_key)


class Wallet:
    """
    Minimal wallet collaborator: owns a key pair and signs transactions.

    Example:
        >>> alice = Wallet.create(registry)
        >>> tx = alice.build_transaction(bob.address, Decimal("5"))
        >>> ledger.submit_transaction(tx)
    """

    def __init__(self, key_pair: KeyPair):
        self._key_pair = key_pair
        self._signer = ECDSASigner(key_pair)

    @classmethod
    def create(cls, registry: Optional[KeyRegistry] = None) -> 'Wallet':
        """Generate a wallet and optionally register its public key."""
        wallet = cls(KeyPair.generate())
        if registry is not None:
            registry.register(wallet.public_key)
        return wallet

    @property
    def address(self) -> str:
        return self._key_pair.address

    @property
    def public_key(self) -> ec.EllipticCurvePublicKey:
        return self._key_pair.public_key

    def sign_hash(self, tx_hash: str) -> str:
        """Sign a transaction hash, returning the hex signature."""
        return self._signer.sign(tx_hash.encode('utf-8')).hex()

    def sign(self, tx):
        """Attach a signature over tx.hash to the transaction and return it."""
        tx.signature = self.sign_hash(tx.hash)
        return tx

    def build_transaction(self, recipient_address: str, amount, fee=0,
                          memo: Optional[str] = None, timestamp: Optional[int] = None):
        """Create and sign a transaction from this wallet."""
        # Deferred: blockchain.models imports core_crypto.
        from ..blockchain.models import Transaction
        tx = Transaction.create(
            sender_address=self.address,
            recipient_address=recipient_address,
            amount=amount,
            fee=fee,
            memo=memo,
            timestamp=timestamp,
        )
        return self.sign(tx)
