# BioChain Ledger Core
"""
Ledger core of a single-chain blockchain:
- Hashing and Merkle trees
- Fee-priority transaction pool
- Chain validation
- Proof-of-work mining with retargeting and halving
- POW / POS / HYBRID consensus with staking
"""

__version__ = "1.0.0"
