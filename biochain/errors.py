"""
Ledger Error Taxonomy

Every failure raised by the ledger core derives from LedgerError.
Rejections that are returned rather than raised (pool admission, block
validation, stake withdrawal) use the reason-code enums defined here, so
callers always get a machine-readable code plus a human-readable message.

Recoverable:
- MiningFailure / MiningCancelledError (retry with fresh chain state)
- PoolCapacityError (retry later or raise the fee)
- ConsensusStateError (user-correctable, e.g. stake still locked)

Fatal for a chain instance:
- ChainIntegrityError (full-chain validation failed)
"""

from enum import Enum
from typing import List, Optional


# ============================================================================
# Reason Codes
# ============================================================================

class RejectReason(Enum):
    """Why the transaction pool refused a transaction."""

    POOL_FULL = "REJECTED_POOL_FULL"
    DUPLICATE = "REJECTED_DUPLICATE"
    BAD_SIGNATURE = "REJECTED_BAD_SIGNATURE"
    INSUFFICIENT_FUNDS = "REJECTED_INSUFFICIENT_FUNDS"
    INVALID_AMOUNT = "REJECTED_INVALID_AMOUNT"
    HASH_MISMATCH = "REJECTED_HASH_MISMATCH"


class ValidationCode(Enum):
    """Rules checked by the chain validator."""

    PREVIOUS_HASH_MISMATCH = "PREVIOUS_HASH_MISMATCH"
    INDEX_MISMATCH = "INDEX_MISMATCH"
    INVALID_TIMESTAMP = "INVALID_TIMESTAMP"
    HASH_MISMATCH = "HASH_MISMATCH"
    DIFFICULTY_NOT_MET = "DIFFICULTY_NOT_MET"
    DIFFICULTY_MISMATCH = "DIFFICULTY_MISMATCH"
    TX_HASH_MISMATCH = "TX_HASH_MISMATCH"
    MERKLE_ROOT_MISMATCH = "MERKLE_ROOT_MISMATCH"
    BAD_SIGNATURE = "BAD_SIGNATURE"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    DUPLICATE_TRANSACTION = "DUPLICATE_TRANSACTION"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    INVALID_GENESIS = "INVALID_GENESIS"
    EMPTY_CHAIN = "EMPTY_CHAIN"
    PRODUCER_NOT_ELIGIBLE = "PRODUCER_NOT_ELIGIBLE"


# ============================================================================
# Exceptions
# ============================================================================

class LedgerError(Exception):
    """Base class for all ledger core errors."""

    code = "LEDGER_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(LedgerError):
    """Raised when a transaction or block violates a ledger rule."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, errors: Optional[List] = None):
        super().__init__(message)
        self.errors = list(errors or [])


class MiningFailure(LedgerError):
    """The nonce search exhausted its attempt budget."""

    code = "MINING_FAILED"


class MiningCancelledError(LedgerError):
    """The nonce search was cancelled before a proof was found."""

    code = "MINING_CANCELLED"


class PoolCapacityError(LedgerError):
    """The transaction pool is at capacity."""

    code = RejectReason.POOL_FULL.value


class ConsensusStateError(LedgerError):
    """A stake operation is not allowed in the stake's current state."""

    code = "CONSENSUS_STATE_ERROR"


class ChainIntegrityError(LedgerError):
    """Full-chain validation failed; the chain instance must not be extended."""

    code = "CHAIN_INTEGRITY_ERROR"

    def __init__(self, message: str, errors: Optional[List] = None):
        super().__init__(message)
        self.errors = list(errors or [])
