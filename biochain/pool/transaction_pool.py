"""
Transaction Pool

Bounded set of pending, validated-but-unconfirmed transactions.

Admission checks (first failure wins):
1. amount > 0 and fee >= 0            REJECTED_INVALID_AMOUNT
2. stated hash matches the fields      REJECTED_HASH_MISMATCH
3. not already pooled or confirmed     REJECTED_DUPLICATE
4. signature verifies for the sender   REJECTED_BAD_SIGNATURE
5. pool below max_size                 REJECTED_POOL_FULL
6. amount + fee <= confirmed balance
   minus the sender's pending debits   REJECTED_INSUFFICIENT_FUNDS

Block selection orders by fee descending, then timestamp ascending. A
selected batch is reserved until it is removed (confirmed) or released
(mining cancelled or failed), so it cannot be selected twice.

The pool never touches balances; it only reads them.
"""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Set

from ..blockchain.models import Transaction, now_ms
from ..config import POOL_MAX_SIZE
from ..core_crypto.signatures import SignatureVerifier
from ..errors import PoolCapacityError, RejectReason, ValidationError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmitResult:
    """Outcome of a pool admission."""
    accepted: bool
    reason: Optional[RejectReason] = None
    message: str = ""

    def __bool__(self) -> bool:
        return self.accepted

    @classmethod
    def ok(cls, message: str = "Accepted") -> 'SubmitResult':
        return cls(True, None, message)

    @classmethod
    def reject(cls, reason: RejectReason, message: str) -> 'SubmitResult':
        return cls(False, reason, message)

    def raise_if_rejected(self) -> None:
        """
        Raises:
            PoolCapacityError: If the pool was full
            ValidationError: For any other rejection, carrying the reason
        """
        if self.accepted:
            return
        if self.reason == RejectReason.POOL_FULL:
            raise PoolCapacityError(self.message)
        raise ValidationError(self.message, [self.reason])


@dataclass
class _PoolEntry:
    tx: Transaction
    received_at: int


def _priority(tx: Transaction):
    return (-tx.fee, tx.timestamp)


class TransactionPool:
    """
    Fee-priority pending transaction pool.

    Example:
        >>> pool = TransactionPool(100, registry, ledger.balance_of)
        >>> pool.submit(tx).accepted
        True
        >>> batch = pool.select_for_block(10)
    """

    def __init__(
        self,
        max_size: int = POOL_MAX_SIZE,
        verifier: Optional[SignatureVerifier] = None,
        balance_of: Optional[Callable[[str], Decimal]] = None,
        is_confirmed: Optional[Callable[[str], bool]] = None,
        clock: Callable[[], int] = now_ms
    ):
        """
        Args:
            max_size: Capacity (transactions)
            verifier: Signature capability; signatures unchecked when None
            balance_of: Confirmed balance lookup; zero for everyone when None
            is_confirmed: Replay guard against already-confirmed hashes
            clock: Millisecond clock used for TTL bookkeeping
        """
        if max_size <= 0:
            raise ValueError("Max size must be greater than 0")
        self.max_size = max_size
        self._verifier = verifier
        self._balance_of = balance_of or (lambda address: Decimal("0"))
        self._is_confirmed = is_confirmed or (lambda tx_hash: False)
        self._clock = clock

        self._entries: Dict[str, _PoolEntry] = {}
        self._reserved: Set[str] = set()
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def submit(self, tx: Transaction) -> SubmitResult:
        """Validate and admit a transaction."""
        with self._lock:
            result = self._check(tx)
            if not result.accepted:
                logger.warning("Rejected %s: %s", tx.hash[:16], result.message)
                return result
            self._entries[tx.hash] = _PoolEntry(tx, self._clock())
            logger.debug("Admitted %s (fee %s), pool size %d",
                         tx.hash[:16], tx.fee, len(self._entries))
            return result

    def _check(self, tx: Transaction) -> SubmitResult:
        if tx.amount <= 0:
            return SubmitResult.reject(RejectReason.INVALID_AMOUNT,
                                       f"Amount must be positive, got {tx.amount}")
        if tx.fee < 0:
            return SubmitResult.reject(RejectReason.INVALID_AMOUNT,
                                       f"Fee cannot be negative, got {tx.fee}")
        if not tx.has_valid_hash():
            return SubmitResult.reject(RejectReason.HASH_MISMATCH,
                                       "Transaction hash does not match its fields")
        if tx.hash in self._entries:
            return SubmitResult.reject(RejectReason.DUPLICATE,
                                       "Transaction already in pool")
        if self._is_confirmed(tx.hash):
            return SubmitResult.reject(RejectReason.DUPLICATE,
                                       "Transaction already confirmed")
        if self._verifier is not None and not self._verifier.verify(
                tx.sender_address, tx.hash, tx.signature):
            return SubmitResult.reject(RejectReason.BAD_SIGNATURE,
                                       f"Signature does not verify for {tx.sender_address}")
        if len(self._entries) >= self.max_size:
            return SubmitResult.reject(
                RejectReason.POOL_FULL,
                f"Transaction pool is full. Current size: {len(self._entries)}, "
                f"Max size: {self.max_size}"
            )
        available = self.available_balance(tx.sender_address)
        if tx.total_debit > available:
            return SubmitResult.reject(
                RejectReason.INSUFFICIENT_FUNDS,
                f"Insufficient balance: need {tx.total_debit}, available {available}"
            )
        return SubmitResult.ok()

    # ------------------------------------------------------------------
    # Balances seen through the pool
    # ------------------------------------------------------------------

    def pending_debits(self, address: str) -> Decimal:
        """Sum of amount + fee over the address's pooled transactions."""
        with self._lock:
            return sum(
                (e.tx.total_debit for e in self._entries.values()
                 if e.tx.sender_address == address),
                Decimal("0")
            )

    def available_balance(self, address: str) -> Decimal:
        """Confirmed balance minus pending debits."""
        return Decimal(self._balance_of(address)) - self.pending_debits(address)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def _ordered(self, include_reserved: bool) -> List[Transaction]:
        txs = [
            e.tx for h, e in self._entries.items()
            if include_reserved or h not in self._reserved
        ]
        txs.sort(key=_priority)
        return txs

    def select_for_block(self, max_count: int) -> List[Transaction]:
        """
        Reserve and return up to max_count transactions in priority order.

        Reserved transactions stay PENDING and in the pool; they are skipped
        by later selections until remove() or release().
        """
        if max_count <= 0:
            return []
        with self._lock:
            batch = self._ordered(include_reserved=False)[:max_count]
            self._reserved.update(tx.hash for tx in batch)
            return batch

    def peek(self, limit: Optional[int] = None) -> List[Transaction]:
        """Priority-ordered view of every pending transaction, no reservation."""
        with self._lock:
            txs = self._ordered(include_reserved=True)
            return txs if limit is None else txs[:max(limit, 0)]

    def release(self, tx_hashes: Iterable[str]) -> int:
        """Return reserved transactions to the selectable set."""
        with self._lock:
            released = 0
            for tx_hash in tx_hashes:
                if tx_hash in self._reserved:
                    self._reserved.discard(tx_hash)
                    released += 1
            return released

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def remove(self, tx_hashes: Iterable[str]) -> List[Transaction]:
        """Drop transactions (typically just confirmed) from the pool."""
        with self._lock:
            removed = []
            for tx_hash in tx_hashes:
                entry = self._entries.pop(tx_hash, None)
                self._reserved.discard(tx_hash)
                if entry is not None:
                    removed.append(entry.tx)
            return removed

    def evict_expired(self, older_than: int, now: Optional[int] = None) -> List[Transaction]:
        """
        Drop unreserved entries admitted more than `older_than` ms ago.

        Returns:
            The evicted transactions
        """
        now = self._clock() if now is None else now
        cutoff = now - older_than
        with self._lock:
            expired = [
                h for h, e in self._entries.items()
                if e.received_at < cutoff and h not in self._reserved
            ]
            evicted = self.remove(expired)
        if evicted:
            logger.info("Evicted %d expired transactions", len(evicted))
        return evicted

    def prune_unfunded(self) -> List[Transaction]:
        """
        Evict entries their sender can no longer afford.

        A block from another producer can spend funds that local pending
        transactions relied on. Each sender's unreserved entries are kept in
        priority order while they fit the confirmed balance; the rest go.
        """
        with self._lock:
            by_sender: Dict[str, List[Transaction]] = defaultdict(list)
            for entry in self._entries.values():
                by_sender[entry.tx.sender_address].append(entry.tx)

            unfunded = []
            for sender, txs in by_sender.items():
                remaining = Decimal(self._balance_of(sender))
                remaining -= sum((tx.total_debit for tx in txs if tx.hash in self._reserved),
                                 Decimal("0"))
                for tx in sorted(txs, key=_priority):
                    if tx.hash in self._reserved:
                        continue
                    if tx.total_debit <= remaining:
                        remaining -= tx.total_debit
                    else:
                        unfunded.append(tx.hash)
            evicted = self.remove(unfunded)
        if evicted:
            logger.warning("Pruned %d unfunded transactions", len(evicted))
        return evicted

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def current_size(self) -> int:
        with self._lock:
            return len(self._entries)

    def is_full(self) -> bool:
        return self.current_size >= self.max_size

    def contains(self, tx_hash: str) -> bool:
        with self._lock:
            return tx_hash in self._entries

    __contains__ = contains

    def get(self, tx_hash: str) -> Optional[Transaction]:
        with self._lock:
            entry = self._entries.get(tx_hash)
            return entry.tx if entry else None

    def is_reserved(self, tx_hash: str) -> bool:
        with self._lock:
            return tx_hash in self._reserved

    def stats(self) -> Dict[str, object]:
        """Pool status summary."""
        with self._lock:
            size = len(self._entries)
            return {
                'current_size': size,
                'max_size': self.max_size,
                'reserved': len(self._reserved),
                'total_fees': str(sum((e.tx.fee for e in self._entries.values()), Decimal("0"))),
                'utilization': size / self.max_size,
            }

    def __len__(self) -> int:
        return self.current_size
