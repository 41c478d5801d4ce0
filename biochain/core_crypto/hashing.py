"""
Content Hashing

Deterministic SHA-256 digests for transactions and block headers.

Canonical encoding:
- Every field is rendered to text and UTF-8 encoded
- Each encoded field is prefixed with its length (4 bytes, big-endian)
- Decimals are normalized so 10 and 10.00 encode identically
- None encodes as the empty string

Transaction hash = SHA-256(encoding of sender, recipient, amount, fee,
timestamp, memo). The signature is never part of the hash.

Block hash = SHA-256(SHA-256(encoding of index, previous_hash, timestamp,
nonce, difficulty, merkle_root, miner_address)), double hashed like Bitcoin.

All digests are returned as 64-character lowercase hex strings.
"""

import hashlib
import re
import struct
from decimal import Decimal
from typing import Any


DIGEST_HEX_LENGTH = 64
_HEX_DIGEST_RE = re.compile(r'[0-9a-f]{%d}' % DIGEST_HEX_LENGTH)


def sha256_hex(data: bytes) -> str:
    """Single SHA-256 as hex."""
    return hashlib.sha256(data).hexdigest()


def double_sha256_hex(data: bytes) -> str:
    """SHA-256 applied twice, as hex."""
    return hashlib.sha256(hashlib.sha256(data).digest()).hexdigest()


def canonical_decimal(value: Any) -> str:
    """
    Render a monetary value in canonical fixed-point form.

    Decimal("10.00") -> "10", Decimal("0.50") -> "0.5", Decimal("0") -> "0"
    """
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    normalized = value.normalize()
    if normalized == 0:
        return "0"
    return format(normalized, 'f')


def encode_field(value: Any) -> bytes:
    """Length-prefixed UTF-8 encoding of one field."""
    if value is None:
        text = ""
    elif isinstance(value, Decimal):
        text = canonical_decimal(value)
    else:
        text = str(value)
    raw = text.encode('utf-8')
    return struct.pack('>I', len(raw)) + raw


def encode_fields(*values: Any) -> bytes:
    """Concatenate the canonical encodings of several fields."""
    return b''.join(encode_field(v) for v in values)


# ============================================================================
# Transactions
# ============================================================================

def hash_transaction_fields(
    sender_address: str,
    recipient_address: str,
    amount: Decimal,
    fee: Decimal,
    timestamp: int,
    memo: Any = None
) -> str:
    """Digest over the authenticated transaction fields."""
    return sha256_hex(encode_fields(
        sender_address,
        recipient_address,
        canonical_decimal(amount),
        canonical_decimal(fee),
        int(timestamp),
        memo,
    ))


def hash_transaction(tx) -> str:
    """Compute the hash of a Transaction (signature excluded)."""
    return hash_transaction_fields(
        tx.sender_address,
        tx.recipient_address,
        tx.amount,
        tx.fee,
        tx.timestamp,
        tx.memo,
    )


# ============================================================================
# Blocks
# ============================================================================

def block_header_prefix(index: int, previous_hash: str, timestamp: int) -> bytes:
    """Encoded header fields that precede the nonce."""
    return encode_fields(int(index), previous_hash, int(timestamp))


def block_header_suffix(difficulty: int, merkle_root: str, miner_address: str) -> bytes:
    """Encoded header fields that follow the nonce."""
    return encode_fields(int(difficulty), merkle_root, miner_address)


def hash_block_header(
    index: int,
    previous_hash: str,
    timestamp: int,
    nonce: int,
    difficulty: int,
    merkle_root: str,
    miner_address: str
) -> str:
    """Compute the block hash from individual header fields."""
    header = (
        block_header_prefix(index, previous_hash, timestamp) +
        encode_field(int(nonce)) +
        block_header_suffix(difficulty, merkle_root, miner_address)
    )
    return double_sha256_hex(header)


def hash_block(block) -> str:
    """Compute the hash of a Block from its header fields."""
    return hash_block_header(
        block.index,
        block.previous_hash,
        block.timestamp,
        block.nonce,
        block.difficulty,
        block.merkle_root,
        block.miner_address,
    )


class HeaderHasher:
    """
    Incremental block hasher for the nonce search.

    The fields before and after the nonce never change while mining, so
    the SHA-256 state over the prefix is computed once and copied for
    each nonce. Produces exactly the same digest as hash_block_header.
    """

    def __init__(
        self,
        index: int,
        previous_hash: str,
        timestamp: int,
        difficulty: int,
        merkle_root: str,
        miner_address: str
    ):
        self._prefix_state = hashlib.sha256(
            block_header_prefix(index, previous_hash, timestamp)
        )
        self._suffix = block_header_suffix(difficulty, merkle_root, miner_address)

    def hash_with_nonce(self, nonce: int) -> str:
        """Double SHA-256 of the header with the given nonce."""
        state = self._prefix_state.copy()
        state.update(encode_field(int(nonce)))
        state.update(self._suffix)
        return hashlib.sha256(state.digest()).hexdigest()


def is_hex_digest(value: Any) -> bool:
    """True if value is a 64-character lowercase hex digest."""
    return isinstance(value, str) and _HEX_DIGEST_RE.fullmatch(value) is not None
