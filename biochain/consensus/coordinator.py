"""
Consensus Coordinator

Policy by consensus type:

| Mode   | Block producer                           | Reward                        |
|--------|------------------------------------------|-------------------------------|
| POW    | first miner to find a nonce              | halving block reward          |
| POS    | stake-weighted random pick among stakers | staking accrual only          |
| HYBRID | mining engine                            | block reward + staking accrual|

Staking rewards accrue per whole accrual interval elapsed since a stake's
last_reward_time, pro-rated from the annual rate:

    reward = staked_amount * rate * stake_weight * credited_ms / YEAR_MS

Because the basis is elapsed time (not a call counter) a repeated call in
the same interval credits nothing.
"""

import logging
import secrets
import threading
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from ..blockchain.models import ConsensusType, to_decimal
from ..config import ConsensusConfig, MiningConfig
from ..errors import ConsensusStateError, ValidationError
from ..mining.difficulty import compute_reward
from .stake import Stake, StakeStatus


logger = logging.getLogger(__name__)

YEAR_MS = 365 * 24 * 3600 * 1000


@dataclass(frozen=True)
class WithdrawalResult:
    """Unlocked (amount paid out) or StillLocked."""
    unlocked: bool
    stake: Stake
    amount: Decimal = Decimal("0")
    message: str = ""

    def __bool__(self) -> bool:
        return self.unlocked

    @property
    def still_locked(self) -> bool:
        return not self.unlocked


class ConsensusCoordinator:
    """
    Owns stake positions and the producer/reward policy.

    Example:
        >>> coordinator = ConsensusCoordinator(ConsensusConfig(consensus_type="POS"))
        >>> stake = coordinator.create_stake(addr, Decimal("5000"), 0, now=0)
        >>> coordinator.select_block_producer()
        '0x...'
    """

    def __init__(self, config: Optional[ConsensusConfig] = None,
                 mining: Optional[MiningConfig] = None, rng=None):
        """
        Args:
            config: Consensus mode and staking economics
            mining: Reward schedule for POW/HYBRID block rewards
            rng: random.Random-compatible source (SystemRandom by default)
        """
        self.config = config or ConsensusConfig()
        self.mining = mining or MiningConfig()
        self.consensus_type = ConsensusType(self.config.consensus_type)
        self._rng = rng or secrets.SystemRandom()
        self._stakes: Dict[str, Stake] = {}
        self._lock = threading.RLock()

    @property
    def uses_mining(self) -> bool:
        return self.consensus_type in (ConsensusType.POW, ConsensusType.HYBRID)

    @property
    def uses_staking(self) -> bool:
        return self.consensus_type in (ConsensusType.POS, ConsensusType.HYBRID)

    def block_reward(self, block_index: int) -> Decimal:
        """Reward paid to a block's producer (zero under POS)."""
        if not self.uses_mining:
            return Decimal("0")
        return compute_reward(block_index, self.mining.base_reward, self.mining.halving_interval)

    # ------------------------------------------------------------------
    # Stakes
    # ------------------------------------------------------------------

    def create_stake(self, wallet_address: str, amount, lock_duration: int, now: int) -> Stake:
        """
        Open a stake position.

        Args:
            wallet_address: Staker
            amount: Principal (>= min_stake_amount)
            lock_duration: Milliseconds the stake stays LOCKED; 0 for none
            now: Creation time (ms)

        Raises:
            ValidationError: Amount below the minimum or negative lock
        """
        amount = to_decimal(amount)
        if amount < self.config.min_stake_amount:
            raise ValidationError(
                f"Minimum stake amount is {self.config.min_stake_amount}, got {amount}"
            )
        if lock_duration < 0:
            raise ValidationError("Lock duration cannot be negative")

        locked = lock_duration > 0
        stake = Stake(
            wallet_address=wallet_address,
            staked_amount=amount,
            locked_until=now + lock_duration if locked else None,
            status=StakeStatus.LOCKED if locked else StakeStatus.ACTIVE,
            last_reward_time=now,
            created_at=now,
        )
        with self._lock:
            self._stakes[stake.stake_id] = stake
        logger.info("Stake %s created: %s staked %s (%s)",
                    stake.stake_id[:8], wallet_address, amount, stake.status.value)
        return stake

    def restore(self, stakes: Iterable[Stake]) -> None:
        """Adopt previously persisted stakes."""
        with self._lock:
            for stake in stakes:
                self._stakes[stake.stake_id] = stake

    def get_stake(self, stake_id: str) -> Optional[Stake]:
        with self._lock:
            return self._stakes.get(stake_id)

    def stakes(self) -> List[Stake]:
        with self._lock:
            return list(self._stakes.values())

    def stakes_for(self, wallet_address: str) -> List[Stake]:
        with self._lock:
            return [s for s in self._stakes.values() if s.wallet_address == wallet_address]

    def active_stakes(self) -> List[Stake]:
        with self._lock:
            return [s for s in self._stakes.values() if s.accrues]

    def total_staked(self, wallet_address: Optional[str] = None) -> Decimal:
        stakes = self.active_stakes()
        if wallet_address is not None:
            stakes = [s for s in stakes if s.wallet_address == wallet_address]
        return sum((s.staked_amount for s in stakes), Decimal("0"))

    def unlock_expired(self, now: int) -> List[Stake]:
        """Move LOCKED stakes whose lock has passed to ACTIVE."""
        unlocked = []
        with self._lock:
            for stake in self._stakes.values():
                if stake.status == StakeStatus.LOCKED and not stake.is_locked(now):
                    stake.status = StakeStatus.ACTIVE
                    unlocked.append(stake)
        if unlocked:
            logger.info("Unlocked %d expired stakes", len(unlocked))
        return unlocked

    # ------------------------------------------------------------------
    # Rewards
    # ------------------------------------------------------------------

    def _accrue(self, stake: Stake, now: int) -> Decimal:
        if not stake.accrues:
            return Decimal("0")
        elapsed = now - stake.last_reward_time
        if elapsed <= 0:
            return Decimal("0")

        interval = self.config.accrual_interval
        credited_ms = elapsed - elapsed % interval if interval > 0 else elapsed
        if credited_ms <= 0:
            return Decimal("0")

        reward = (stake.staked_amount * self.config.staking_reward_rate
                  * stake.stake_weight * Decimal(credited_ms) / Decimal(YEAR_MS))
        stake.rewards_earned += reward
        stake.last_reward_time += credited_ms
        return reward

    def accrue_staking_rewards(self, now: int) -> List[Stake]:
        """
        Credit every ACTIVE/LOCKED stake for the whole intervals elapsed.

        Returns:
            The stakes that were credited
        """
        updated = []
        total = Decimal("0")
        with self._lock:
            for stake in self._stakes.values():
                reward = self._accrue(stake, now)
                if reward > 0:
                    updated.append(stake)
                    total += reward
        if updated:
            logger.info("Accrued %s staking rewards across %d stakes", total, len(updated))
        return updated

    # ------------------------------------------------------------------
    # Withdrawal
    # ------------------------------------------------------------------

    def request_withdrawal(self, stake_id: str, now: int) -> WithdrawalResult:
        """
        Withdraw a stake: principal plus rewards, or StillLocked.

        Raises:
            ConsensusStateError: Unknown stake or already withdrawn
        """
        with self._lock:
            stake = self._stakes.get(stake_id)
            if stake is None:
                raise ConsensusStateError(f"Stake not found: {stake_id}")
            if stake.is_withdrawn:
                raise ConsensusStateError(f"Stake {stake_id} already withdrawn")
            if stake.is_locked(now):
                logger.warning("Withdrawal refused, stake %s locked until %d",
                               stake_id[:8], stake.locked_until)
                return WithdrawalResult(
                    False, stake, message=f"Stake is locked until {stake.locked_until}"
                )

            self._accrue(stake, now)
            stake.status = StakeStatus.WITHDRAWN
            amount = stake.total_value

        logger.info("Stake %s withdrawn: %s returned to %s",
                    stake_id[:8], amount, stake.wallet_address)
        return WithdrawalResult(True, stake, amount, "Stake withdrawn")

    # ------------------------------------------------------------------
    # Producer selection
    # ------------------------------------------------------------------

    def eligible_stakes(self) -> List[Stake]:
        return [s for s in self.active_stakes()
                if s.staked_amount >= self.config.min_stake_amount]

    def is_eligible(self, wallet_address: str) -> bool:
        return any(s.wallet_address == wallet_address for s in self.eligible_stakes())

    def validator_probability(self, wallet_address: str) -> Decimal:
        """Share of total selection weight held by an address."""
        eligible = self.eligible_stakes()
        total = sum((s.weight for s in eligible), Decimal("0"))
        if total == 0:
            return Decimal("0")
        mine = sum((s.weight for s in eligible if s.wallet_address == wallet_address),
                   Decimal("0"))
        return mine / total

    def select_block_producer(self) -> str:
        """
        Weighted-random pick among eligible stakers.

        Raises:
            ConsensusStateError: No eligible stakers
        """
        eligible = sorted(self.eligible_stakes(), key=lambda s: (s.created_at, s.stake_id))
        total = sum((s.weight for s in eligible), Decimal("0"))
        if not eligible or total <= 0:
            raise ConsensusStateError("No eligible validators available")

        point = Decimal(str(self._rng.random())) * total
        cumulative = Decimal("0")
        for stake in eligible:
            cumulative += stake.weight
            if point < cumulative:
                logger.debug("Selected validator %s", stake.wallet_address)
                return stake.wallet_address
        return eligible[-1].wallet_address
