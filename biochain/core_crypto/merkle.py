"""
Merkle Tree over Transaction Hashes

A Merkle tree (hash tree) where:
- Leaf nodes are hashes of transaction hashes
- Non-leaf nodes are hashes of their children
- The root hash summarizes the ordered transaction set

Features:
- Domain separation (0x00 leaf prefix, 0x01 internal prefix)
- Odd node duplication at every level
- Fixed digest for the empty set
- Inclusion proof generation and verification

The root is order sensitive: reordering transactions changes it.
"""

from typing import List, Optional, Sequence, Tuple

from .hashing import sha256_hex


EMPTY_MERKLE_ROOT = sha256_hex(b'')

ProofStep = Tuple[str, str]  # (sibling hash, 'left' | 'right')


class MerkleTree:
    """
    Merkle tree built from an ordered sequence of hex transaction hashes.

    Example:
        >>> tree = MerkleTree()
        >>> root = tree.build([h1, h2, h3])
        >>> proof = tree.get_proof(1)
        >>> MerkleTree.verify_proof(h2, proof, root)
        True
    """

    def __init__(self):
        self._leaves: List[str] = []
        self._layers: List[List[str]] = []
        self._root: Optional[str] = None

    @staticmethod
    def hash_leaf(tx_hash: str) -> str:
        """Hash a leaf with the 0x00 prefix."""
        return sha256_hex(b'\x00' + tx_hash.encode('utf-8'))

    @staticmethod
    def hash_internal(left: str, right: str) -> str:
        """Hash two children with the 0x01 prefix."""
        return sha256_hex(b'\x01' + bytes.fromhex(left) + bytes.fromhex(right))

    def build(self, tx_hashes: Sequence[str]) -> str:
        """
        Build the tree and return its root.

        Args:
            tx_hashes: Ordered transaction hashes (hex)

        Returns:
            Root digest (hex); EMPTY_MERKLE_ROOT when there are no leaves
        """
        self._leaves = list(tx_hashes)
        if not self._leaves:
            self._layers = []
            self._root = EMPTY_MERKLE_ROOT
            return self._root

        current_layer = [self.hash_leaf(h) for h in self._leaves]
        self._layers = [current_layer]

        while len(current_layer) > 1:
            if len(current_layer) % 2 == 1:
                current_layer = current_layer + [current_layer[-1]]
            current_layer = [
                self.hash_internal(current_layer[i], current_layer[i + 1])
                for i in range(0, len(current_layer), 2)
            ]
            self._layers.append(current_layer)

        self._root = current_layer[0]
        return self._root

    @property
    def root(self) -> Optional[str]:
        """Root digest, or None before build()."""
        return self._root

    @property
    def leaf_count(self) -> int:
        return len(self._leaves)

    @property
    def height(self) -> int:
        """Number of layers, leaves included."""
        return len(self._layers)

    def get_proof(self, index: int) -> List[ProofStep]:
        """
        Generate the authentication path for a leaf.

        Args:
            index: Position of the transaction in the block

        Returns:
            List of (sibling_hash, position) from leaf to root, where
            position says which side the sibling is on

        Raises:
            ValueError: If the tree is empty or index is out of range
        """
        if not self._layers:
            raise ValueError("Tree has not been built or has no leaves")
        if index < 0 or index >= len(self._leaves):
            raise ValueError(f"Index {index} out of range [0, {len(self._leaves) - 1}]")

        proof: List[ProofStep] = []
        current_index = index
        for layer in self._layers[:-1]:
            padded = layer + [layer[-1]] if len(layer) % 2 == 1 else layer
            if current_index % 2 == 0:
                proof.append((padded[current_index + 1], 'right'))
            else:
                proof.append((padded[current_index - 1], 'left'))
            current_index //= 2
        return proof

    @staticmethod
    def verify_proof(tx_hash: str, proof: Sequence[ProofStep], root: str) -> bool:
        """Check that tx_hash is included under root via proof."""
        try:
            current = MerkleTree.hash_leaf(tx_hash)
            for sibling, position in proof:
                if position == 'left':
                    current = MerkleTree.hash_internal(sibling, current)
                else:
                    current = MerkleTree.hash_internal(current, sibling)
        except ValueError:
            return False
        return current == root

    def __repr__(self) -> str:
        if self._root is None:
            return "MerkleTree(empty)"
        return f"MerkleTree(leaves={self.leaf_count}, height={self.height}, root={self._root[:16]}...)"


def merkle_root(tx_hashes: Sequence[str]) -> str:
    """Root digest over an ordered sequence of transaction hashes."""
    return MerkleTree().build(tx_hashes)
