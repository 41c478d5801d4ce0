"""
Ledger Facade

Single entry point the API, sync and persistence layers talk to. Wires
together the chain, pool, validator, mining engine and consensus
coordinator, and owns the confirmed wallet balances.

Commit path for every block (local or external), serialized by one lock:

    validate -> store.append_block -> chain.append -> balances ->
    CONFIRMED + confirmation counts -> pool.remove -> prune_unfunded ->
    staking accrual (POS/HYBRID) -> store.save_state -> event

Balances are read without the ledger lock; the pool calls balance_of while
holding its own lock, and the commit path takes the ledger lock before the
pool lock. Balances are debited before pool entries are removed, so a
concurrent reader only ever sees a conservative view.
"""

import logging
import threading
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from ..blockchain.chain import Blockchain
from ..blockchain.models import (
    Block,
    ChainStatus,
    Transaction,
    TransactionStatus,
    now_ms,
    to_decimal,
)
from ..blockchain.validator import ChainValidator, ValidationResult
from ..config import LedgerConfig
from ..consensus.coordinator import ConsensusCoordinator, WithdrawalResult
from ..consensus.stake import Stake
from ..core_crypto.signatures import KeyRegistry, SignatureVerifier
from ..errors import (
    ChainIntegrityError,
    ConsensusStateError,
    RejectReason,
    ValidationCode,
    ValidationError,
)
from ..integration.event_logger import EventLogger, LedgerEventType
from ..mining.engine import (
    MiningCancelled,
    MiningEngine,
    MiningFailed,
    MiningHandle,
    MiningOutcome,
    MiningSuccess,
)
from ..pool.transaction_pool import SubmitResult, TransactionPool
from .store import InMemoryStore, LedgerStore


logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass
class ImportResult:
    """Outcome of importing a batch of blocks from a peer."""
    imported: int = 0
    skipped: int = 0
    failed_index: Optional[int] = None
    result: ValidationResult = field(default_factory=ValidationResult)

    @property
    def complete(self) -> bool:
        return self.failed_index is None


@dataclass
class _MiningJob:
    """Pool reservation held by one search."""
    tx_hashes: List[str]
    released: bool = False


class Ledger:
    """
    Ledger facade for one chain.

    Example:
        >>> registry = KeyRegistry()
        >>> alice, bob = Wallet.create(registry), Wallet.create(registry)
        >>> ledger = Ledger(config, registry, initial_balances={alice.address: 100})
        >>> ledger.submit_transaction(alice.build_transaction(bob.address, 10, fee=1))
        SubmitResult(accepted=True, reason=None, message='Accepted')
        >>> outcome = ledger.mine_next_block(miner.address)
        >>> ledger.balance_of(bob.address)
        Decimal('10')
    """

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        verifier: Optional[SignatureVerifier] = None,
        store: Optional[LedgerStore] = None,
        initial_balances: Optional[Mapping[str, object]] = None,
        clock: Callable[[], int] = now_ms,
        rng=None
    ):
        """
        Args:
            config: Chain configuration
            verifier: Signature capability (an empty KeyRegistry by default)
            store: Persistence capability (InMemoryStore by default)
            initial_balances: Balances for a fresh chain; ignored when the
                store already holds a chain
            clock: Millisecond clock
            rng: Random source for proof-of-stake producer selection

        Raises:
            ChainIntegrityError: If the stored chain does not validate
        """
        self.config = config or LedgerConfig()
        self.verifier = verifier if verifier is not None else KeyRegistry()
        self.store = store if store is not None else InMemoryStore()
        self._clock = clock
        self._lock = threading.RLock()
        self._mining_lock = threading.Lock()
        self._release_lock = threading.Lock()
        self._job: Optional[_MiningJob] = None
        self._integrity_failed = False
        self._confirmed_txs: List[Transaction] = []

        self.events = EventLogger(self.config.chain_id, clock=clock)
        self.validator = ChainValidator(self.config, self.verifier, clock)
        self.consensus = ConsensusCoordinator(self.config.consensus, self.config.mining, rng)

        stored = self.store.load_blocks()
        if stored:
            self.chain = self._load_chain(stored)
        else:
            self.chain = Blockchain(self.config)
            self.store.append_block(self.chain.genesis)
            self._balances: Dict[str, Decimal] = {
                address: to_decimal(amount)
                for address, amount in (initial_balances or {}).items()
            }
            self._persist_state()

        self.pool = TransactionPool(
            max_size=self.config.pool.max_size,
            verifier=self.verifier,
            balance_of=self.balance_of,
            is_confirmed=self.chain.is_confirmed,
            clock=clock,
        )
        self.engine = MiningEngine(self.chain, self.config.mining, clock)
        logger.info("Ledger %s ready at height %d (%s)", self.config.chain_id,
                    self.chain.current_height, self.chain.consensus_type.value)

    def _load_chain(self, blocks: List[Block]) -> Blockchain:
        result = self.validator.validate_chain(blocks)
        if not result.valid:
            logger.critical("Stored chain %s failed validation: %s",
                            self.config.chain_id, result.messages)
            raise ChainIntegrityError("Stored chain failed validation", result.errors)

        chain = Blockchain(self.config, blocks)
        for block in blocks:
            for tx in block.transactions:
                tx.status = TransactionStatus.CONFIRMED
                tx.confirmation_count = chain.current_height - block.index
                self._confirmed_txs.append(tx)

        self._balances, stakes = self.store.load_state()
        self.consensus.restore(stakes)
        return chain

    def _persist_state(self) -> None:
        self.store.save_state(dict(self._balances), self.consensus.stakes())

    def _check_integrity(self) -> None:
        if self._integrity_failed:
            raise ChainIntegrityError(
                f"Chain {self.config.chain_id} failed full validation; refusing to extend"
            )

    # ========================================================================
    # Balances
    # ========================================================================

    def balance_of(self, address: str) -> Decimal:
        """Confirmed balance."""
        return self._balances.get(address, ZERO)

    def available_balance(self, address: str) -> Decimal:
        """Confirmed balance minus pending debits."""
        return self.pool.available_balance(address)

    def _credit(self, address: str, amount: Decimal) -> None:
        if amount:
            self._balances[address] = self._balances.get(address, ZERO) + amount

    # ========================================================================
    # Transactions
    # ========================================================================

    def submit_transaction(self, tx: Transaction) -> SubmitResult:
        """
        Admit a signed transaction to the pool.

        Rejected transactions are marked FAILED, except duplicates, which
        leave the original's status untouched.
        """
        result = self.pool.submit(tx)
        if result.accepted:
            tx.status = TransactionStatus.PENDING
            self.events.log_transaction(tx.hash, True)
        else:
            if result.reason != RejectReason.DUPLICATE:
                tx.status = TransactionStatus.FAILED
            self.events.log_transaction(tx.hash, False, result.reason.value)
        return result

    def get_pending_transactions(self, limit: Optional[int] = None) -> List[Transaction]:
        """Pending transactions in block-selection order."""
        return self.pool.peek(limit)

    def evict_expired_transactions(self, now: Optional[int] = None) -> List[Transaction]:
        """Drop pool entries older than the configured TTL."""
        evicted = self.pool.evict_expired(self.config.pool.ttl, now)
        self._fail(evicted, "expired")
        return evicted

    def _fail(self, txs: List[Transaction], why: str) -> None:
        for tx in txs:
            tx.status = TransactionStatus.FAILED
        if txs:
            self.events.emit(LedgerEventType.TRANSACTIONS_EVICTED,
                             reason=why, tx_hashes=[tx.hash for tx in txs])

    # ========================================================================
    # Mining
    # ========================================================================

    def _producer_for(self, miner_address: Optional[str]) -> str:
        if not self.consensus.uses_mining:
            if miner_address is None:
                return self.consensus.select_block_producer()
            if not self.consensus.is_eligible(miner_address):
                raise ConsensusStateError(f"{miner_address} is not an eligible validator")
            return miner_address
        if miner_address is None:
            raise ValueError("A miner address is required for proof-of-work blocks")
        return miner_address

    def start_mining(self, miner_address: Optional[str] = None) -> MiningHandle:
        """
        Start producing the next block in the background.

        Supersedes any search in flight. Under POS the producer is drawn
        from eligible stakers when no address is given.

        Raises:
            ChainIntegrityError: If the chain has failed full validation
            ConsensusStateError: If no eligible producer exists (POS)
        """
        self._check_integrity()
        producer = self._producer_for(miner_address)

        # A search that already found its block commits under the ledger lock;
        # waiting for it keeps its transactions out of the next selection.
        with self._mining_lock, self._lock:
            if self._job is not None and self.engine.cancel_current():
                self._release(self._job)

            txs = self.pool.select_for_block(self.config.mining.max_transactions_per_block)
            job = _MiningJob([tx.hash for tx in txs])
            self._job = job
            handle = self.engine.start_mining(
                txs, producer, on_complete=lambda outcome: self._on_mined(job, outcome)
            )

        self.events.emit(LedgerEventType.MINING_STARTED, index=handle.block_index,
                         transactions=len(txs), miner=producer)
        return handle

    def mine_next_block(self, miner_address: Optional[str] = None) -> MiningOutcome:
        """
        Produce, validate and append the next block.

        Returns:
            MiningSuccess, MiningFailed or MiningCancelled
        """
        return self.start_mining(miner_address).result()

    def _release(self, job: _MiningJob) -> None:
        with self._release_lock:
            if job.released:
                return
            job.released = True
            self.pool.release(job.tx_hashes)

    def _on_mined(self, job: _MiningJob, outcome: MiningOutcome) -> Optional[MiningOutcome]:
        """Runs on the mining worker before the handle resolves."""
        if not isinstance(outcome, MiningSuccess):
            self._release(job)
            if isinstance(outcome, MiningCancelled):
                self.events.emit(LedgerEventType.MINING_CANCELLED, reason=outcome.reason)
            else:
                self.events.emit(LedgerEventType.MINING_FAILED, reason=outcome.reason)
            return None

        block = outcome.block
        with self._lock:
            if job.released:
                reason = "Superseded by a newer mining request"
                self.events.emit(LedgerEventType.MINING_CANCELLED, reason=reason)
                return MiningCancelled(reason, outcome.attempts)
            if block.previous_hash != self.chain.tip.hash:
                self._release(job)
                reason = f"Superseded by block #{self.chain.current_height}"
                logger.info("Discarding mined block #%d: %s", block.index, reason)
                self.events.emit(LedgerEventType.MINING_CANCELLED, reason=reason)
                return MiningCancelled(reason, outcome.attempts)

            try:
                result = self._commit(block)
            except ChainIntegrityError:
                self._release(job)
                raise
            if not result.valid:
                self._release(job)
                reason = "Mined block rejected: " + "; ".join(result.messages)
                self.events.emit(LedgerEventType.MINING_FAILED, reason=reason)
                return MiningFailed(reason, outcome.attempts)
        return MiningSuccess(block, outcome.duration_ms,
                             self.consensus.block_reward(block.index), outcome.attempts)

    # ========================================================================
    # Appending
    # ========================================================================

    def append_block(self, block: Block) -> ValidationResult:
        """
        Validate and append an externally produced block.

        Any local search is cancelled before the append.

        Raises:
            ChainIntegrityError: If the chain has failed full validation
        """
        self.engine.cancel_current()
        with self._lock:
            return self._commit(block)

    def _commit(self, block: Block) -> ValidationResult:
        self._check_integrity()
        result = self.validator.validate_block(
            block,
            self.chain.tip,
            confirmed_hashes=self.chain.confirmed_hashes(),
            expected_difficulty=self.chain.difficulty,
            balance_of=self.balance_of,
        )
        if not self.consensus.uses_mining and not self.consensus.is_eligible(block.miner_address):
            result.add(ValidationCode.PRODUCER_NOT_ELIGIBLE,
                       f"{block.miner_address} holds no eligible stake", block.index)
        if not result.valid:
            self.events.log_block_rejected(block.index, [c.value for c in result.codes])
            return result

        self.store.append_block(block)
        self.chain.append(block)

        for tx in self._confirmed_txs:
            tx.confirmation_count += 1
        for tx in block.transactions:
            self._balances[tx.sender_address] = self.balance_of(tx.sender_address) - tx.total_debit
            self._credit(tx.recipient_address, tx.amount)
            tx.status = TransactionStatus.CONFIRMED
            tx.confirmation_count = 0
            self._confirmed_txs.append(tx)

        reward = self.consensus.block_reward(block.index)
        self._credit(block.miner_address, reward + block.total_fees)

        self.pool.remove(block.transaction_hashes)
        self._fail(self.pool.prune_unfunded(), "unfunded")

        if self.consensus.uses_staking:
            self._accrue(self._clock())
        self._persist_state()

        logger.info("Appended block #%d %s... (%d txs, reward %s)",
                    block.index, block.hash[:16], len(block.transactions), reward)
        self.events.log_block(block.index, block.hash, len(block.transactions),
                              block.miner_address, str(reward))
        return result

    def import_blocks(self, blocks: Iterable[Block]) -> ImportResult:
        """
        Sync a batch of blocks from a peer, in order.

        Blocks already on the chain (same index and hash) are skipped;
        import stops at the first block that fails validation.
        """
        outcome = ImportResult()
        for block in blocks:
            existing = self.chain.get_block(block.index)
            if existing is not None and existing.hash == block.hash:
                outcome.skipped += 1
                continue
            result = self.append_block(block)
            if not result.valid:
                outcome.failed_index = block.index
                outcome.result = result
                logger.warning("Import stopped at block #%d", block.index)
                break
            outcome.imported += 1
        return outcome

    def get_blocks(self, start: int = 0, end: Optional[int] = None) -> List[Block]:
        """Blocks with start <= index < end, for syncing peers."""
        return self.chain.blocks_range(start, end)

    # ========================================================================
    # Chain status
    # ========================================================================

    def validate_full_chain(self, raise_on_failure: bool = False) -> ValidationResult:
        """
        Re-validate every block from genesis.

        A failure marks the chain invalid and blocks further appends.

        Raises:
            ChainIntegrityError: On failure, when raise_on_failure is set
        """
        with self._lock:
            result = self.validator.validate_chain(self.chain.blocks)
            self.chain.is_valid = result.valid
            if result.valid:
                self.events.emit(LedgerEventType.CHAIN_VALIDATED, height=self.chain.current_height)
                return result

            self._integrity_failed = True
        logger.critical("Chain %s failed full validation: %s",
                        self.config.chain_id, "; ".join(result.messages))
        self.events.log_integrity_failure(result.messages)
        if raise_on_failure:
            raise ChainIntegrityError("Full chain validation failed", result.errors)
        return result

    def get_chain_status(self) -> ChainStatus:
        tip = self.chain.tip
        return ChainStatus(
            chain_id=self.config.chain_id,
            height=self.chain.current_height,
            latest_hash=tip.hash,
            difficulty=self.chain.difficulty,
            consensus_type=self.chain.consensus_type,
            is_valid=self.chain.is_valid,
            pending_transactions=self.pool.current_size,
            total_transactions=self.chain.total_transactions,
        )

    # ========================================================================
    # Staking
    # ========================================================================

    def stake(self, address: str, amount, lock_duration: int = 0) -> Stake:
        """
        Lock funds into a new stake position.

        Raises:
            ValidationError: Below the minimum stake or not enough available funds
        """
        amount = to_decimal(amount)
        with self._lock:
            available = self.available_balance(address)
            if amount > available:
                raise ValidationError(
                    f"Insufficient balance to stake {amount}: available {available}",
                    [ValidationCode.INSUFFICIENT_FUNDS],
                )
            stake = self.consensus.create_stake(address, amount, lock_duration, self._clock())
            self._balances[address] = self.balance_of(address) - amount
            self._persist_state()
        self.events.emit(LedgerEventType.STAKE_CREATED, stake_id=stake.stake_id,
                         address=address, amount=str(amount), locked_until=stake.locked_until)
        return stake

    def unstake(self, stake_id: str) -> WithdrawalResult:
        """
        Withdraw a stake; principal plus rewards return to the wallet.

        Raises:
            ConsensusStateError: Unknown or already withdrawn stake
        """
        with self._lock:
            result = self.consensus.request_withdrawal(stake_id, self._clock())
            if result.unlocked:
                self._credit(result.stake.wallet_address, result.amount)
                self._persist_state()
        if result.unlocked:
            self.events.emit(LedgerEventType.STAKE_WITHDRAWN, stake_id=stake_id,
                             amount=str(result.amount))
        return result

    def accrue_staking_rewards(self, now: Optional[int] = None) -> List[Stake]:
        """Unlock expired stakes and credit accrued staking rewards."""
        with self._lock:
            updated = self._accrue(self._clock() if now is None else now)
            self._persist_state()
        return updated

    def _accrue(self, now: int) -> List[Stake]:
        self.consensus.unlock_expired(now)
        updated = self.consensus.accrue_staking_rewards(now)
        if updated:
            self.events.emit(LedgerEventType.REWARDS_ACCRUED, stakes=len(updated))
        return updated

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def close(self) -> None:
        """Stop mining and release the store."""
        self.engine.shutdown(wait=True)
        self.store.close()

    def __enter__(self) -> 'Ledger':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
