"""
Chain Validator

Verifies a candidate block against its predecessor and a full chain
against the fixed genesis parameters. Checks run in a fixed order and
every violated rule is collected, so callers get complete diagnostics
rather than the first failure only.

Validation is advisory: nothing here mutates chain, pool or balances.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import AbstractSet, Callable, Dict, List, Optional, Sequence

from ..config import LedgerConfig
from ..core_crypto.hashing import hash_block
from ..core_crypto.merkle import merkle_root
from ..core_crypto.signatures import SignatureVerifier
from ..errors import ValidationCode, ValidationError
from ..mining.difficulty import hash_meets_difficulty, next_difficulty
from .chain import create_genesis_block
from .models import Block, ConsensusType, now_ms


logger = logging.getLogger(__name__)

BalanceLookup = Callable[[str], Decimal]


@dataclass(frozen=True)
class ValidationIssue:
    """One violated rule."""
    code: ValidationCode
    message: str
    block_index: Optional[int] = None

    def __str__(self) -> str:
        where = f"block #{self.block_index}: " if self.block_index is not None else ""
        return f"{self.code.value}: {where}{self.message}"


@dataclass
class ValidationResult:
    """Valid iff no issues were recorded."""
    errors: List[ValidationIssue] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def __bool__(self) -> bool:
        return self.valid

    @property
    def codes(self) -> List[ValidationCode]:
        return [issue.code for issue in self.errors]

    @property
    def messages(self) -> List[str]:
        return [str(issue) for issue in self.errors]

    def add(self, code: ValidationCode, message: str, block_index: Optional[int] = None) -> None:
        self.errors.append(ValidationIssue(code, message, block_index))

    def extend(self, other: 'ValidationResult') -> None:
        self.errors.extend(other.errors)

    def raise_if_invalid(self) -> None:
        """
        Raises:
            ValidationError: Carrying every issue, if any were recorded
        """
        if self.errors:
            raise ValidationError("; ".join(self.messages), self.errors)


class ChainValidator:
    """
    Stateless block and chain checks.

    Example:
        >>> validator = ChainValidator(config, registry)
        >>> result = validator.validate_block(candidate, chain.tip)
        >>> result.valid
        True
    """

    def __init__(self, config: Optional[LedgerConfig] = None,
                 verifier: Optional[SignatureVerifier] = None,
                 clock: Callable[[], int] = now_ms):
        """
        Args:
            config: Chain configuration (genesis parameters, difficulty schedule)
            verifier: Signature capability; signature checks are skipped
                when None
            clock: Millisecond clock bounding how far ahead a block may be stamped
        """
        self.config = config or LedgerConfig()
        self.verifier = verifier
        self._clock = clock
        self.consensus_type = ConsensusType(self.config.consensus.consensus_type)

    # ------------------------------------------------------------------
    # Single block
    # ------------------------------------------------------------------

    def validate_block(
        self,
        candidate: Block,
        predecessor: Block,
        confirmed_hashes: Optional[AbstractSet[str]] = None,
        expected_difficulty: Optional[int] = None,
        balance_of: Optional[BalanceLookup] = None
    ) -> ValidationResult:
        """
        Validate a candidate block against its predecessor.

        Args:
            candidate: Block to check
            predecessor: Block it claims to extend
            confirmed_hashes: Transaction hashes already in the chain
            expected_difficulty: Scheduled difficulty; skipped when None
            balance_of: Confirmed balance lookup; skipped when None

        Returns:
            ValidationResult listing every violated rule
        """
        result = ValidationResult()
        idx = candidate.index

        if candidate.previous_hash != predecessor.hash:
            result.add(ValidationCode.PREVIOUS_HASH_MISMATCH,
                       f"previous_hash {candidate.previous_hash[:16]}... does not match "
                       f"predecessor hash {predecessor.hash[:16]}...", idx)

        if candidate.index != predecessor.index + 1:
            result.add(ValidationCode.INDEX_MISMATCH,
                       f"expected index {predecessor.index + 1}, got {candidate.index}", idx)

        if candidate.timestamp < predecessor.timestamp:
            result.add(ValidationCode.INVALID_TIMESTAMP,
                       "timestamp precedes predecessor", idx)
        latest = self._clock() + self.config.mining.max_future_drift
        if candidate.timestamp > latest:
            result.add(ValidationCode.INVALID_TIMESTAMP,
                       f"timestamp {candidate.timestamp} is more than "
                       f"{self.config.mining.max_future_drift} ms in the future", idx)

        computed = hash_block(candidate)
        if computed != candidate.hash:
            result.add(ValidationCode.HASH_MISMATCH,
                       f"stated hash {candidate.hash[:16]}... but header hashes to "
                       f"{computed[:16]}...", idx)

        if not hash_meets_difficulty(computed, candidate.difficulty):
            result.add(ValidationCode.DIFFICULTY_NOT_MET,
                       f"hash does not have {candidate.difficulty} leading zero hex digits", idx)

        if expected_difficulty is not None and candidate.difficulty != expected_difficulty:
            result.add(ValidationCode.DIFFICULTY_MISMATCH,
                       f"difficulty {candidate.difficulty}, schedule requires "
                       f"{expected_difficulty}", idx)

        self._check_transactions(candidate, result)

        if merkle_root(candidate.transaction_hashes) != candidate.merkle_root:
            result.add(ValidationCode.MERKLE_ROOT_MISMATCH,
                       "merkle root does not match transactions", idx)

        if self.verifier is not None:
            for tx in candidate.transactions:
                if not self.verifier.verify(tx.sender_address, tx.hash, tx.signature):
                    result.add(ValidationCode.BAD_SIGNATURE,
                               f"signature on {tx.hash[:16]}... does not verify", idx)

        self._check_duplicates(candidate, confirmed_hashes or frozenset(), result)

        if balance_of is not None:
            self._check_funds(candidate, balance_of, result)

        if not result.valid:
            logger.warning("Block #%d rejected: %s", idx, ", ".join(c.value for c in result.codes))
        return result

    def _check_transactions(self, block: Block, result: ValidationResult) -> None:
        for tx in block.transactions:
            if not tx.has_valid_hash():
                result.add(ValidationCode.TX_HASH_MISMATCH,
                           f"transaction {tx.hash[:16]}... does not hash to its stated digest",
                           block.index)
            if tx.amount <= 0 or tx.fee < 0:
                result.add(ValidationCode.INVALID_AMOUNT,
                           f"transaction {tx.hash[:16]}... has amount {tx.amount}, fee {tx.fee}",
                           block.index)

    def _check_duplicates(self, block: Block, confirmed: AbstractSet[str],
                          result: ValidationResult) -> None:
        seen = set()
        for tx in block.transactions:
            if tx.hash in seen:
                result.add(ValidationCode.DUPLICATE_TRANSACTION,
                           f"transaction {tx.hash[:16]}... repeated within block", block.index)
            elif tx.hash in confirmed:
                result.add(ValidationCode.DUPLICATE_TRANSACTION,
                           f"transaction {tx.hash[:16]}... already confirmed", block.index)
            seen.add(tx.hash)

    def _check_funds(self, block: Block, balance_of: BalanceLookup,
                     result: ValidationResult) -> None:
        """Replay the block's transfers in order against confirmed balances."""
        running: Dict[str, Decimal] = {}
        credited: Dict[str, Decimal] = defaultdict(Decimal)

        def balance(address: str) -> Decimal:
            if address not in running:
                running[address] = Decimal(balance_of(address))
            return running[address] + credited[address]

        for tx in block.transactions:
            if balance(tx.sender_address) < tx.total_debit:
                result.add(ValidationCode.INSUFFICIENT_FUNDS,
                           f"{tx.sender_address} cannot cover {tx.total_debit}", block.index)
                continue
            credited[tx.sender_address] -= tx.total_debit
            credited[tx.recipient_address] += tx.amount

    # ------------------------------------------------------------------
    # Genesis and full chain
    # ------------------------------------------------------------------

    def validate_genesis(self, block: Block) -> ValidationResult:
        """Compare a block against the fixed genesis parameters."""
        result = ValidationResult()
        expected = create_genesis_block(self.config)
        for name in ('index', 'previous_hash', 'timestamp', 'nonce', 'difficulty',
                     'merkle_root', 'miner_address'):
            if getattr(block, name) != getattr(expected, name):
                result.add(ValidationCode.INVALID_GENESIS,
                           f"genesis {name} is {getattr(block, name)!r}, expected "
                           f"{getattr(expected, name)!r}", 0)
        if block.transactions:
            result.add(ValidationCode.INVALID_GENESIS, "genesis carries transactions", 0)
        if hash_block(block) != block.hash:
            result.add(ValidationCode.HASH_MISMATCH, "genesis hash does not match header", 0)
        return result

    def expected_difficulty(self, blocks: Sequence[Block], count: Optional[int] = None) -> int:
        """Difficulty the schedule requires of the block after the first `count` blocks."""
        if self.consensus_type == ConsensusType.POS:
            return 0
        return next_difficulty(blocks, self.config.mining, count)

    def validate_chain(self, blocks: Sequence[Block]) -> ValidationResult:
        """
        Validate a whole chain, genesis first.

        Folds validate_block across consecutive pairs while replaying the
        difficulty schedule and the set of confirmed transaction hashes.
        """
        result = ValidationResult()
        blocks = list(blocks)
        if not blocks:
            result.add(ValidationCode.EMPTY_CHAIN, "chain has no blocks")
            return result

        result.extend(self.validate_genesis(blocks[0]))

        confirmed = set()
        for i in range(1, len(blocks)):
            block_result = self.validate_block(
                blocks[i],
                blocks[i - 1],
                confirmed_hashes=confirmed,
                expected_difficulty=self.expected_difficulty(blocks, i),
            )
            result.extend(block_result)
            confirmed.update(blocks[i].transaction_hashes)

        if result.valid:
            logger.debug("Chain of %d blocks validated", len(blocks))
        return result
