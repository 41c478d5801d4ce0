"""
Stake positions for proof-of-stake producer selection and reward accrual.
"""

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from ..blockchain.models import to_decimal


class StakeStatus(Enum):
    ACTIVE = "ACTIVE"
    LOCKED = "LOCKED"
    WITHDRAWN = "WITHDRAWN"


def new_stake_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Stake:
    """
    One stake position, created by a single stake() call.

    rewards_earned only grows while the stake is ACTIVE or LOCKED; a
    WITHDRAWN stake is frozen.
    """
    wallet_address: str
    staked_amount: Decimal
    locked_until: Optional[int] = None  # ms; None means never locked
    status: StakeStatus = StakeStatus.ACTIVE
    rewards_earned: Decimal = Decimal("0")
    stake_weight: Decimal = Decimal("1.0")
    last_reward_time: int = 0
    created_at: int = 0
    stake_id: str = field(default_factory=new_stake_id)

    def __post_init__(self):
        self.staked_amount = to_decimal(self.staked_amount)
        self.rewards_earned = to_decimal(self.rewards_earned)
        self.stake_weight = to_decimal(self.stake_weight)

    def is_locked(self, now: int) -> bool:
        """True while locked_until is strictly in the future."""
        return self.locked_until is not None and now < self.locked_until

    @property
    def is_withdrawn(self) -> bool:
        return self.status == StakeStatus.WITHDRAWN

    @property
    def accrues(self) -> bool:
        return self.status in (StakeStatus.ACTIVE, StakeStatus.LOCKED)

    @property
    def weight(self) -> Decimal:
        """Selection weight: staked amount times stake weight."""
        return self.staked_amount * self.stake_weight

    @property
    def total_value(self) -> Decimal:
        return self.staked_amount + self.rewards_earned

    def to_dict(self) -> Dict[str, Any]:
        return {
            'stake_id': self.stake_id,
            'wallet_address': self.wallet_address,
            'staked_amount': str(self.staked_amount),
            'locked_until': self.locked_until,
            'status': self.status.value,
            'rewards_earned': str(self.rewards_earned),
            'stake_weight': str(self.stake_weight),
            'last_reward_time': self.last_reward_time,
            'created_at': self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Stake':
        return cls(
            stake_id=data['stake_id'],
            wallet_address=data['wallet_address'],
            staked_amount=Decimal(data['staked_amount']),
            locked_until=data.get('locked_until'),
            status=StakeStatus(data.get('status', 'ACTIVE')),
            rewards_earned=Decimal(data.get('rewards_earned', '0')),
            stake_weight=Decimal(data.get('stake_weight', '1.0')),
            last_reward_time=data.get('last_reward_time', 0),
            created_at=data.get('created_at', 0),
        )
