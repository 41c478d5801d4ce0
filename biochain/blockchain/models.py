"""
Ledger Data Model

- Transaction: signed value transfer, PENDING -> CONFIRMED (or FAILED)
- Block: immutable once mined (frozen dataclass)
- ChainStatus: snapshot reported to the API layer

Monetary values are Decimal throughout; ints, floats and strings are
converted through str() so 0.1 stays 0.1.
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..core_crypto.hashing import hash_block, hash_transaction


def to_decimal(value: Any) -> Decimal:
    """Convert an amount to Decimal without binary float artifacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def now_ms() -> int:
    """Current wall-clock time in milliseconds."""
    return int(time.time() * 1000)


class TransactionStatus(Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


class ConsensusType(Enum):
    POW = "POW"
    POS = "POS"
    HYBRID = "HYBRID"


# ============================================================================
# Transaction
# ============================================================================

@dataclass
class Transaction:
    """
    A signed transfer of `amount` from sender to recipient.

    The hash covers sender, recipient, amount, fee, timestamp and memo;
    the signature authorizes that hash. Only `status` and
    `confirmation_count` change after creation.
    """
    hash: str
    sender_address: str
    recipient_address: str
    amount: Decimal
    fee: Decimal = Decimal("0")
    signature: Optional[str] = None
    timestamp: int = 0
    status: TransactionStatus = TransactionStatus.PENDING
    confirmation_count: int = 0
    memo: Optional[str] = None

    def __post_init__(self):
        self.amount = to_decimal(self.amount)
        self.fee = to_decimal(self.fee if self.fee is not None else 0)

    @classmethod
    def create(
        cls,
        sender_address: str,
        recipient_address: str,
        amount: Any,
        fee: Any = 0,
        memo: Optional[str] = None,
        timestamp: Optional[int] = None,
        signature: Optional[str] = None
    ) -> 'Transaction':
        """Build an unsigned transaction with its hash computed."""
        tx = cls(
            hash="",
            sender_address=sender_address,
            recipient_address=recipient_address,
            amount=amount,
            fee=fee,
            signature=signature,
            timestamp=now_ms() if timestamp is None else int(timestamp),
            memo=memo,
        )
        tx.hash = tx.compute_hash()
        return tx

    def compute_hash(self) -> str:
        return hash_transaction(self)

    def has_valid_hash(self) -> bool:
        return self.hash == self.compute_hash()

    @property
    def total_debit(self) -> Decimal:
        """Amount plus fee, what the sender pays."""
        return self.amount + self.fee

    @property
    def is_confirmed(self) -> bool:
        return self.status == TransactionStatus.CONFIRMED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'hash': self.hash,
            'sender_address': self.sender_address,
            'recipient_address': self.recipient_address,
            'amount': str(self.amount),
            'fee': str(self.fee),
            'signature': self.signature,
            'timestamp': self.timestamp,
            'status': self.status.value,
            'confirmation_count': self.confirmation_count,
            'memo': self.memo,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        return cls(
            hash=data['hash'],
            sender_address=data['sender_address'],
            recipient_address=data['recipient_address'],
            amount=Decimal(data['amount']),
            fee=Decimal(data.get('fee', '0')),
            signature=data.get('signature'),
            timestamp=data['timestamp'],
            status=TransactionStatus(data.get('status', 'PENDING')),
            confirmation_count=data.get('confirmation_count', 0),
            memo=data.get('memo'),
        )

    def __str__(self) -> str:
        return (
            f"Tx {self.hash[:12]}... {self.sender_address[:10]} -> "
            f"{self.recipient_address[:10]} {self.amount} (fee {self.fee}) [{self.status.value}]"
        )


# ============================================================================
# Block Structure (Immutable)
# ============================================================================

@dataclass(frozen=True)
class Block:
    """
    Immutable block.

    frozen=True: header fields cannot be reassigned after mining. The
    transaction tuple is owned by the block; transactions are moved in
    from the pool, not copied.
    """
    index: int
    previous_hash: str
    hash: str
    timestamp: int
    nonce: int
    difficulty: int
    merkle_root: str
    miner_address: str
    transactions: Tuple[Transaction, ...] = field(default_factory=tuple)

    def compute_hash(self) -> str:
        return hash_block(self)

    @property
    def transaction_hashes(self) -> List[str]:
        return [tx.hash for tx in self.transactions]

    @property
    def total_fees(self) -> Decimal:
        return sum((tx.fee for tx in self.transactions), Decimal("0"))

    def to_dict(self) -> Dict[str, Any]:
        """Convert block to dictionary for serialization."""
        return {
            'index': self.index,
            'previous_hash': self.previous_hash,
            'hash': self.hash,
            'timestamp': self.timestamp,
            'nonce': self.nonce,
            'difficulty': self.difficulty,
            'merkle_root': self.merkle_root,
            'miner_address': self.miner_address,
            'transactions': [tx.to_dict() for tx in self.transactions],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Block':
        """Create block from dictionary."""
        return cls(
            index=data['index'],
            previous_hash=data['previous_hash'],
            hash=data['hash'],
            timestamp=data['timestamp'],
            nonce=data['nonce'],
            difficulty=data['difficulty'],
            merkle_root=data['merkle_root'],
            miner_address=data['miner_address'],
            transactions=tuple(Transaction.from_dict(t) for t in data.get('transactions', [])),
        )

    def __str__(self) -> str:
        return (
            f"Block #{self.index}\n"
            f"  Hash: {self.hash[:16]}...\n"
            f"  Prev: {self.previous_hash[:16]}...\n"
            f"  Merkle: {self.merkle_root[:16]}...\n"
            f"  Nonce: {self.nonce}  Difficulty: {self.difficulty}\n"
            f"  Transactions: {len(self.transactions)}"
        )


@dataclass(frozen=True)
class ChainStatus:
    """Chain summary exposed to the API layer."""
    chain_id: str
    height: int
    latest_hash: str
    difficulty: int
    consensus_type: ConsensusType
    is_valid: bool
    pending_transactions: int = 0
    total_transactions: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'chain_id': self.chain_id,
            'height': self.height,
            'latest_hash': self.latest_hash,
            'difficulty': self.difficulty,
            'consensus_type': self.consensus_type.value,
            'is_valid': self.is_valid,
            'pending_transactions': self.pending_transactions,
            'total_transactions': self.total_transactions,
        }
