# Mining Module
"""
Proof of Work mining:
- Leading-zero hex digit difficulty target
- Difficulty retargeting and reward halving
- Cancellable nonce search on a worker thread
"""

from .difficulty import (
    ProofOfWork,
    compute_reward,
    estimate_attempts,
    hash_meets_difficulty,
    next_difficulty,
    retarget_difficulty,
)
from .engine import (
    BlockTemplate,
    CancellationToken,
    MiningCancelled,
    MiningEngine,
    MiningFailed,
    MiningHandle,
    MiningState,
    MiningSuccess,
    mine_block,
)

__all__ = [
    'ProofOfWork',
    'compute_reward',
    'estimate_attempts',
    'hash_meets_difficulty',
    'next_difficulty',
    'retarget_difficulty',
    'BlockTemplate',
    'CancellationToken',
    'MiningCancelled',
    'MiningEngine',
    'MiningFailed',
    'MiningHandle',
    'MiningState',
    'MiningSuccess',
    'mine_block',
]
