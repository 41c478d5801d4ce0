"""
Blockchain Aggregate

Owns the append-only block sequence for one chain id:
- Genesis block built from fixed parameters (not mined)
- Current height, tip and difficulty schedule
- Index of confirmed transaction hashes (replay guard)
- Range export for syncing peers and Merkle inclusion proofs

The aggregate does not validate; callers run the ChainValidator first and
append only what passed. Appends are serialized by the Ledger facade.
"""

import json
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from ..config import LedgerConfig
from ..core_crypto.hashing import hash_block_header
from ..core_crypto.merkle import EMPTY_MERKLE_ROOT, MerkleTree, ProofStep
from ..mining.difficulty import next_difficulty
from .models import Block, ConsensusType, Transaction


logger = logging.getLogger(__name__)


def create_genesis_block(config: LedgerConfig) -> Block:
    """
    Build block 0 from the fixed genesis parameters.

    Genesis carries no transactions and is not mined: nonce is 0 and the
    hash is computed directly. Proof-of-stake chains use difficulty 0.
    """
    genesis = config.genesis
    consensus_type = ConsensusType(config.consensus.consensus_type)
    difficulty = 0 if consensus_type == ConsensusType.POS else config.mining.initial_difficulty
    block_hash = hash_block_header(
        0,
        genesis.previous_hash,
        genesis.timestamp,
        0,
        difficulty,
        EMPTY_MERKLE_ROOT,
        genesis.miner_address,
    )
    return Block(
        index=0,
        previous_hash=genesis.previous_hash,
        hash=block_hash,
        timestamp=genesis.timestamp,
        nonce=0,
        difficulty=difficulty,
        merkle_root=EMPTY_MERKLE_ROOT,
        miner_address=genesis.miner_address,
        transactions=(),
    )


class Blockchain:
    """
    Append-only chain of immutable blocks.

    Example:
        >>> chain = Blockchain(LedgerConfig())
        >>> chain.current_height
        0
        >>> chain.tip.previous_hash == "0" * 64
        True
    """

    def __init__(self, config: Optional[LedgerConfig] = None,
                 blocks: Optional[Sequence[Block]] = None):
        """
        Args:
            config: Chain configuration (defaults to LedgerConfig())
            blocks: Existing block sequence to adopt, genesis first. When
                omitted a fresh chain is started from the genesis block.
        """
        self.config = config or LedgerConfig()
        self.chain_id = self.config.chain_id
        self.consensus_type = ConsensusType(self.config.consensus.consensus_type)
        self.is_valid = True

        self._blocks: List[Block] = []
        self._by_hash: Dict[str, Block] = {}
        self._confirmed: Dict[str, Tuple[int, int]] = {}  # tx hash -> (block, position)
        self._difficulty = self.config.mining.initial_difficulty

        for block in (blocks if blocks else [create_genesis_block(self.config)]):
            self._adopt(block)

    def _adopt(self, block: Block) -> None:
        self._blocks.append(block)
        self._by_hash[block.hash] = block
        for position, tx in enumerate(block.transactions):
            self._confirmed[tx.hash] = (block.index, position)
        self._difficulty = self.expected_difficulty()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def blocks(self) -> List[Block]:
        """Copy of the block sequence."""
        return list(self._blocks)

    @property
    def current_height(self) -> int:
        """Index of the latest block."""
        return self._blocks[-1].index

    @property
    def length(self) -> int:
        return len(self._blocks)

    @property
    def tip(self) -> Block:
        return self._blocks[-1]

    @property
    def genesis(self) -> Block:
        return self._blocks[0]

    @property
    def difficulty(self) -> int:
        """Difficulty required of the next block."""
        return self._difficulty

    @property
    def total_transactions(self) -> int:
        return len(self._confirmed)

    def expected_difficulty(self) -> int:
        """Difficulty schedule for the block after the current tip."""
        if self.consensus_type == ConsensusType.POS:
            return 0
        return next_difficulty(self._blocks, self.config.mining)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def append(self, block: Block) -> None:
        """
        Append an already validated block.

        Raises:
            ValueError: If the block does not extend the current tip
        """
        if block.index != self.tip.index + 1 or block.previous_hash != self.tip.hash:
            raise ValueError(
                f"Block #{block.index} does not extend tip #{self.tip.index}"
            )
        self._adopt(block)
        logger.debug("Chain %s height now %d (next difficulty %d)",
                     self.chain_id, self.current_height, self._difficulty)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_block(self, index: int) -> Optional[Block]:
        if 0 <= index < len(self._blocks):
            return self._blocks[index]
        return None

    def get_block_by_hash(self, block_hash: str) -> Optional[Block]:
        return self._by_hash.get(block_hash)

    def blocks_range(self, start: int, end: Optional[int] = None) -> List[Block]:
        """Blocks with start <= index < end (end defaults to the tip + 1)."""
        start = max(start, 0)
        stop = len(self._blocks) if end is None else min(end, len(self._blocks))
        return self._blocks[start:stop]

    def is_confirmed(self, tx_hash: str) -> bool:
        return tx_hash in self._confirmed

    def confirmed_hashes(self) -> frozenset:
        return frozenset(self._confirmed)

    def find_transaction(self, tx_hash: str) -> Optional[Tuple[Block, Transaction]]:
        """Locate a confirmed transaction and its containing block."""
        location = self._confirmed.get(tx_hash)
        if location is None:
            return None
        block = self._blocks[location[0]]
        return block, block.transactions[location[1]]

    def get_transaction_proof(self, tx_hash: str) -> Optional[Tuple[int, List[ProofStep]]]:
        """
        Merkle inclusion proof for a confirmed transaction.

        Returns:
            (block_index, proof) or None if the transaction is unknown
        """
        location = self._confirmed.get(tx_hash)
        if location is None:
            return None
        block_index, position = location
        tree = MerkleTree()
        tree.build(self._blocks[block_index].transaction_hashes)
        return block_index, tree.get_proof(position)

    def verify_transaction(self, tx_hash: str, block_index: int,
                           proof: List[ProofStep]) -> bool:
        """Check a Merkle proof against a block's stated root."""
        block = self.get_block(block_index)
        if block is None:
            return False
        return MerkleTree.verify_proof(tx_hash, proof, block.merkle_root)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_json(self) -> str:
        """Serialize blockchain to JSON."""
        return json.dumps({
            'chain_id': self.chain_id,
            'consensus_type': self.consensus_type.value,
            'difficulty': self._difficulty,
            'chain': [block.to_dict() for block in self._blocks],
        }, indent=2)

    @classmethod
    def from_json(cls, json_str: str, config: Optional[LedgerConfig] = None) -> 'Blockchain':
        """
        Deserialize blockchain from JSON.

        The snapshot is adopted as-is; run ChainValidator.validate_chain on
        the result before trusting it.
        """
        data = json.loads(json_str)
        config = config or LedgerConfig()
        if data.get('chain_id', config.chain_id) != config.chain_id:
            raise ValueError(
                f"Snapshot is for chain {data['chain_id']}, not {config.chain_id}"
            )
        blocks = [Block.from_dict(block_data) for block_data in data['chain']]
        return cls(config, blocks)

    def __len__(self) -> int:
        return len(self._blocks)

    def __iter__(self):
        return iter(list(self._blocks))
