# Blockchain Module
"""
Blockchain data model and chain aggregate:
- Immutable blocks (frozen dataclass)
- Transactions with PENDING / CONFIRMED / FAILED lifecycle
- Genesis from fixed parameters
- Full chain validation with accumulated diagnostics
"""

from .models import Block, ChainStatus, ConsensusType, Transaction, TransactionStatus
from .chain import Blockchain, create_genesis_block
from .validator import ChainValidator, ValidationIssue, ValidationResult

__all__ = [
    'Block',
    'Blockchain',
    'ChainStatus',
    'ChainValidator',
    'ConsensusType',
    'Transaction',
    'TransactionStatus',
    'ValidationIssue',
    'ValidationResult',
    'create_genesis_block',
]
