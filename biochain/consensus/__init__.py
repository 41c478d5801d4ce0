# Consensus Module
"""
POW / POS / HYBRID policy, stake positions and staking rewards.
"""

from .stake import Stake, StakeStatus
from .coordinator import ConsensusCoordinator, WithdrawalResult

__all__ = ['ConsensusCoordinator', 'Stake', 'StakeStatus', 'WithdrawalResult']
