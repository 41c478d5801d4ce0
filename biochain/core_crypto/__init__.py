# Core Cryptography Module
"""
Core cryptographic building blocks:
- SHA-256 content hashing (transactions, block headers)
- Merkle trees with inclusion proofs
- ECDSA P-256 transaction signatures and addresses
"""

from .hashing import hash_block, hash_block_header, hash_transaction, sha256_hex
from .merkle import EMPTY_MERKLE_ROOT, MerkleTree, merkle_root
from .signatures import KeyPair, KeyRegistry, SignatureVerifier, Wallet, derive_address

__all__ = [
    'hash_block',
    'hash_block_header',
    'hash_transaction',
    'sha256_hex',
    'EMPTY_MERKLE_ROOT',
    'MerkleTree',
    'merkle_root',
    'KeyPair',
    'KeyRegistry',
    'SignatureVerifier',
    'Wallet',
    'derive_address',
]
