"""
Mining Engine

Proof-of-work nonce search on a dedicated worker thread.

State machine per engine (one engine per chain):

    IDLE -> SEARCHING -> (FOUND | CANCELLED) -> IDLE

At most one search is active. Starting a new search cancels the one in
flight (last requester wins). Cancellation is cooperative: the search
loop polls a CancellationToken every `cancel_check_interval` nonces, so a
cancelled search never leaves a half-built block behind.

Outcomes are values, not exceptions:
- MiningSuccess(block, duration_ms, reward)
- MiningFailed(reason)      nonce budget exhausted
- MiningCancelled(reason)   superseded or cancelled by the caller
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional, Sequence, Tuple, Union

from ..blockchain.models import Block, Transaction, now_ms
from ..config import MiningConfig
from ..core_crypto.hashing import HeaderHasher
from ..core_crypto.merkle import merkle_root
from ..errors import MiningCancelledError, MiningFailure
from .difficulty import ProofOfWork, compute_reward


logger = logging.getLogger(__name__)


class MiningState(Enum):
    IDLE = "IDLE"
    SEARCHING = "SEARCHING"
    FOUND = "FOUND"
    CANCELLED = "CANCELLED"


class CancellationToken:
    """Cooperative cancellation flag shared with the search loop."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


# ============================================================================
# Outcomes
# ============================================================================

@dataclass(frozen=True)
class MiningSuccess:
    block: Block
    duration_ms: int
    reward: Decimal
    attempts: int = 0

    @property
    def success(self) -> bool:
        return True


@dataclass(frozen=True)
class MiningFailed:
    reason: str
    attempts: int = 0

    @property
    def success(self) -> bool:
        return False

    def to_exception(self) -> MiningFailure:
        return MiningFailure(self.reason)


@dataclass(frozen=True)
class MiningCancelled:
    reason: str = "Mining cancelled"
    attempts: int = 0

    @property
    def success(self) -> bool:
        return False

    def to_exception(self) -> MiningCancelledError:
        return MiningCancelledError(self.reason)


MiningOutcome = Union[MiningSuccess, MiningFailed, MiningCancelled]

# May return a replacement outcome (e.g. the found block went stale).
CompletionCallback = Callable[[MiningOutcome], Optional[MiningOutcome]]


@dataclass(frozen=True)
class BlockTemplate:
    """Candidate header fields fixed for the duration of one search."""
    index: int
    previous_hash: str
    timestamp: int
    difficulty: int
    merkle_root: str
    miner_address: str
    transactions: Tuple[Transaction, ...] = field(default_factory=tuple)

    def with_proof(self, nonce: int, block_hash: str) -> Block:
        return Block(
            index=self.index,
            previous_hash=self.previous_hash,
            hash=block_hash,
            timestamp=self.timestamp,
            nonce=nonce,
            difficulty=self.difficulty,
            merkle_root=self.merkle_root,
            miner_address=self.miner_address,
            transactions=self.transactions,
        )


class MiningHandle:
    """
    Handle to an in-flight search.

    Example:
        >>> handle = engine.start_mining(txs, miner)
        >>> outcome = handle.result()
    """

    def __init__(self, future: Future, token: CancellationToken, template: BlockTemplate):
        self._future = future
        self._token = token
        self.template = template

    @property
    def block_index(self) -> int:
        return self.template.index

    @property
    def transactions(self) -> Tuple[Transaction, ...]:
        return self.template.transactions

    def cancel(self) -> None:
        """Request cancellation; the worker stops at its next check."""
        self._token.cancel()

    @property
    def cancelled(self) -> bool:
        return self._token.cancelled

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> MiningOutcome:
        """Wait for the outcome (re-raises errors from completion callbacks)."""
        return self._future.result(timeout)

    def block(self, timeout: Optional[float] = None) -> Block:
        """
        Wait for the mined block.

        Raises:
            MiningCancelledError: If the search was cancelled or superseded
            MiningFailure: If no block was produced
        """
        outcome = self.result(timeout)
        if isinstance(outcome, MiningSuccess):
            return outcome.block
        raise outcome.to_exception()


# ============================================================================
# Engine
# ============================================================================

class MiningEngine:
    """
    Proof-of-work block producer for one chain.

    The chain is read for its tip and scheduled difficulty when a search
    starts; the engine never appends. The completion callback runs on the
    worker before the handle resolves, so the caller can commit (or release
    reservations) before anyone waiting on result() wakes up.
    """

    def __init__(self, chain, config: Optional[MiningConfig] = None,
                 clock: Callable[[], int] = now_ms):
        """
        Args:
            chain: Object exposing `tip` (Block) and `difficulty` (int)
            config: Mining parameters
            clock: Millisecond clock for candidate timestamps
        """
        self.chain = chain
        self.config = config or MiningConfig()
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="miner")
        self._lock = threading.Lock()
        self._current: Optional[MiningHandle] = None
        self._state = MiningState.IDLE
        self._closed = False

    @property
    def state(self) -> MiningState:
        return self._state

    @property
    def current(self) -> Optional[MiningHandle]:
        return self._current

    def reward_for(self, block_index: int) -> Decimal:
        return compute_reward(block_index, self.config.base_reward, self.config.halving_interval)

    def build_template(self, transactions: Sequence[Transaction],
                       miner_address: str) -> BlockTemplate:
        """Candidate on top of the current tip, nonce not yet chosen."""
        tip = self.chain.tip
        txs = tuple(transactions)
        return BlockTemplate(
            index=tip.index + 1,
            previous_hash=tip.hash,
            timestamp=max(self._clock(), tip.timestamp),
            difficulty=self.chain.difficulty,
            merkle_root=merkle_root([tx.hash for tx in txs]),
            miner_address=miner_address,
            transactions=txs,
        )

    def start_mining(
        self,
        transactions: Sequence[Transaction],
        miner_address: str,
        on_complete: Optional[CompletionCallback] = None
    ) -> MiningHandle:
        """
        Begin a nonce search on the worker thread.

        Any search already in flight is cancelled first.

        Args:
            transactions: Ordered block contents (already reserved in the pool)
            miner_address: Reward recipient
            on_complete: Called on the worker with the outcome; a returned
                outcome replaces it

        Returns:
            MiningHandle for waiting on or cancelling the search
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("Mining engine has been shut down")
            if self._current is not None and not self._current.done():
                logger.info("Superseding search for block #%d", self._current.block_index)
                self._current.cancel()

            template = self.build_template(transactions, miner_address)
            token = CancellationToken()
            future: Future = Future()
            handle = MiningHandle(future, token, template)
            self._current = handle
            self._state = MiningState.SEARCHING
            self._executor.submit(self._run, handle, future, token, on_complete)

        logger.info("Mining block #%d at difficulty %d with %d transactions",
                    template.index, template.difficulty, len(template.transactions))
        return handle

    def mine(self, transactions: Sequence[Transaction], miner_address: str,
             on_complete: Optional[CompletionCallback] = None) -> MiningOutcome:
        """Blocking convenience wrapper around start_mining()."""
        return self.start_mining(transactions, miner_address, on_complete).result()

    def cancel_current(self) -> bool:
        """Cancel the in-flight search, if any. Returns True if one was running."""
        with self._lock:
            handle = self._current
        if handle is None or handle.done():
            return False
        handle.cancel()
        return True

    def shutdown(self, wait: bool = True) -> None:
        """Cancel any search and stop the worker."""
        with self._lock:
            self._closed = True
        self.cancel_current()
        self._executor.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _run(self, handle: MiningHandle, future: Future, token: CancellationToken,
             on_complete: Optional[CompletionCallback]) -> None:
        try:
            outcome = self.search(handle.template, token)
            if on_complete is not None:
                outcome = on_complete(outcome) or outcome
            self._finish(handle, outcome)
        except Exception as exc:
            self._finish(handle, None)
            future.set_exception(exc)
            return
        self._set_idle(handle)
        future.set_result(outcome)

    def _finish(self, handle: MiningHandle, outcome: Optional[MiningOutcome]) -> None:
        with self._lock:
            if self._current is not handle:
                return
            if isinstance(outcome, MiningSuccess):
                self._state = MiningState.FOUND
            elif isinstance(outcome, MiningCancelled):
                self._state = MiningState.CANCELLED
            else:
                self._state = MiningState.IDLE

    def _set_idle(self, handle: MiningHandle) -> None:
        with self._lock:
            if self._current is handle:
                self._state = MiningState.IDLE

    def search(self, template: BlockTemplate,
               token: Optional[CancellationToken] = None) -> MiningOutcome:
        """Run the nonce search synchronously on the calling thread."""
        return search_nonce(template, self.config, token)


def search_nonce(template: BlockTemplate, config: Optional[MiningConfig] = None,
                 token: Optional[CancellationToken] = None) -> MiningOutcome:
    """
    Find a nonce that makes the template's hash meet its difficulty.

    Nonces run from 0 to max_nonce - 1. The token is polled before the
    first hash and then every cancel_check_interval nonces.
    """
    config = config or MiningConfig()
    token = token or CancellationToken()
    check_interval = config.cancel_check_interval
    max_nonce = config.max_nonce
    target = ProofOfWork(template.difficulty).target
    hasher = HeaderHasher(
        template.index,
        template.previous_hash,
        template.timestamp,
        template.difficulty,
        template.merkle_root,
        template.miner_address,
    )

    start = time.monotonic()
    for nonce in range(max_nonce):
        if nonce % check_interval == 0:
            if token.cancelled:
                logger.info("Search for block #%d cancelled after %d attempts",
                            template.index, nonce)
                return MiningCancelled("Mining cancelled", attempts=nonce)
            if nonce:
                logger.debug("Block #%d: %d nonces tried", template.index, nonce)

        block_hash = hasher.hash_with_nonce(nonce)
        if int(block_hash, 16) < target:
            duration_ms = int((time.monotonic() - start) * 1000)
            block = template.with_proof(nonce, block_hash)
            logger.info("Found block #%d nonce=%d hash=%s... in %d ms",
                        block.index, nonce, block_hash[:16], duration_ms)
            reward = compute_reward(block.index, config.base_reward, config.halving_interval)
            return MiningSuccess(block, duration_ms, reward, attempts=nonce + 1)

    logger.warning("Nonce budget of %d exhausted for block #%d", max_nonce, template.index)
    return MiningFailed(
        f"Failed to find valid nonce after {max_nonce} attempts",
        attempts=max_nonce,
    )


def mine_block(template: BlockTemplate, config: Optional[MiningConfig] = None) -> Block:
    """
    Mine a template synchronously.

    Raises:
        MiningFailure: If the nonce budget is exhausted
    """
    outcome = search_nonce(template, config)
    if isinstance(outcome, MiningSuccess):
        return outcome.block
    raise outcome.to_exception()
