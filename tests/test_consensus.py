"""
Unit tests for the Consensus Coordinator and stake positions.

Tests:
- Stake creation and lock semantics
- Reward accrual per whole interval
- Withdrawal
- Stake-weighted producer selection
"""

from decimal import Decimal

import pytest

from biochain.config import ConsensusConfig
from biochain.consensus.coordinator import YEAR_MS, ConsensusCoordinator
from biochain.consensus.stake import Stake, StakeStatus
from biochain.errors import ConsensusStateError, ValidationError


DAY_MS = 86400 * 1000
ALICE = "0x" + "a" * 40
BOB = "0x" + "b" * 40


class FixedRandom:
    """random.Random stand-in returning a preset value."""

    def __init__(self, value: float):
        self.value = value

    def random(self) -> float:
        return self.value


def coordinator_for(consensus_type="POS", rng=None, **overrides):
    return ConsensusCoordinator(ConsensusConfig(consensus_type=consensus_type, **overrides),
                                rng=rng)


@pytest.fixture
def coordinator():
    return coordinator_for()


class TestStakeLifecycle:
    """Tests for create_stake(), locks and withdrawal."""

    def test_create_unlocked(self, coordinator):
        stake = coordinator.create_stake(ALICE, 1000, 0, now=0)
        assert stake.status == StakeStatus.ACTIVE
        assert stake.locked_until is None
        assert coordinator.get_stake(stake.stake_id) is stake
        assert coordinator.total_staked(ALICE) == Decimal("1000")

    def test_create_locked(self, coordinator):
        stake = coordinator.create_stake(ALICE, 1000, 500, now=100)
        assert stake.status == StakeStatus.LOCKED
        assert stake.locked_until == 600

    def test_below_minimum(self, coordinator):
        with pytest.raises(ValidationError):
            coordinator.create_stake(ALICE, Decimal("999.99"), 0, now=0)

    def test_negative_lock(self, coordinator):
        with pytest.raises(ValidationError):
            coordinator.create_stake(ALICE, 1000, -1, now=0)

    def test_lock_is_strictly_future(self):
        stake = Stake(ALICE, Decimal("1000"), locked_until=600)
        assert stake.is_locked(599)
        assert not stake.is_locked(600)
        assert not Stake(ALICE, Decimal("1000")).is_locked(0)

    def test_withdraw_locked_stake(self, coordinator):
        stake = coordinator.create_stake(ALICE, 1000, 500, now=0)
        result = coordinator.request_withdrawal(stake.stake_id, now=499)
        assert result.still_locked
        assert not result
        assert stake.status == StakeStatus.LOCKED

        result = coordinator.request_withdrawal(stake.stake_id, now=500)
        assert result.unlocked
        assert result.amount == Decimal("1000")
        assert stake.status == StakeStatus.WITHDRAWN

    def test_withdraw_twice(self, coordinator):
        stake = coordinator.create_stake(ALICE, 1000, 0, now=0)
        coordinator.request_withdrawal(stake.stake_id, now=0)
        with pytest.raises(ConsensusStateError):
            coordinator.request_withdrawal(stake.stake_id, now=0)

    def test_withdraw_unknown(self, coordinator):
        with pytest.raises(ConsensusStateError):
            coordinator.request_withdrawal("missing", now=0)

    def test_unlock_expired(self, coordinator):
        stake = coordinator.create_stake(ALICE, 1000, 500, now=0)
        assert coordinator.unlock_expired(499) == []
        assert coordinator.unlock_expired(500) == [stake]
        assert stake.status == StakeStatus.ACTIVE

    def test_round_trip(self, coordinator):
        stake = coordinator.create_stake(ALICE, 1500, 10, now=5)
        assert Stake.from_dict(stake.to_dict()) == stake


class TestRewardAccrual:
    """Tests for accrue_staking_rewards()."""

    def test_one_year(self, coordinator):
        """1000 staked at 5% for a year earns 50."""
        stake = coordinator.create_stake(ALICE, 1000, 0, now=0)
        assert coordinator.accrue_staking_rewards(YEAR_MS) == [stake]
        assert stake.rewards_earned == Decimal("50")
        assert stake.last_reward_time == YEAR_MS

    def test_repeat_call_is_idempotent(self, coordinator):
        stake = coordinator.create_stake(ALICE, 1000, 0, now=0)
        coordinator.accrue_staking_rewards(DAY_MS)
        earned = stake.rewards_earned
        assert coordinator.accrue_staking_rewards(DAY_MS) == []
        assert stake.rewards_earned == earned

    def test_partial_interval_carries_over(self, coordinator):
        """Time short of a whole interval is credited later, not lost."""
        stake = coordinator.create_stake(ALICE, 1000, 0, now=0)
        coordinator.accrue_staking_rewards(DAY_MS + DAY_MS // 2)
        assert stake.last_reward_time == DAY_MS
        coordinator.accrue_staking_rewards(2 * DAY_MS)
        assert stake.last_reward_time == 2 * DAY_MS
        expected = Decimal("1000") * Decimal("0.05") * Decimal(2 * DAY_MS) / Decimal(YEAR_MS)
        assert stake.rewards_earned == pytest.approx(expected)

    def test_under_one_interval_earns_nothing(self, coordinator):
        coordinator.create_stake(ALICE, 1000, 0, now=0)
        assert coordinator.accrue_staking_rewards(DAY_MS - 1) == []

    def test_locked_stakes_accrue(self, coordinator):
        stake = coordinator.create_stake(ALICE, 1000, YEAR_MS * 2, now=0)
        coordinator.accrue_staking_rewards(YEAR_MS)
        assert stake.rewards_earned == Decimal("50")

    def test_withdrawn_stake_frozen(self, coordinator):
        stake = coordinator.create_stake(ALICE, 1000, 0, now=0)
        result = coordinator.request_withdrawal(stake.stake_id, now=YEAR_MS)
        assert result.amount == Decimal("1050")
        coordinator.accrue_staking_rewards(YEAR_MS * 2)
        assert stake.rewards_earned == Decimal("50")

    def test_stake_weight_scales_reward(self, coordinator):
        stake = coordinator.create_stake(ALICE, 1000, 0, now=0)
        stake.stake_weight = Decimal("2")
        coordinator.accrue_staking_rewards(YEAR_MS)
        assert stake.rewards_earned == Decimal("100")


class TestProducerSelection:
    """Tests for select_block_producer() and reward policy."""

    def test_no_stakers(self, coordinator):
        with pytest.raises(ConsensusStateError):
            coordinator.select_block_producer()

    def test_weighted_pick(self):
        """Alice holds 3/4 of the weight: points below 0.75 select her."""
        for value, expected in ((0.0, ALICE), (0.74, ALICE), (0.75, BOB), (0.99, BOB)):
            rng = FixedRandom(value)
            coordinator = coordinator_for(rng=rng)
            coordinator.create_stake(ALICE, 3000, 0, now=0)
            coordinator.create_stake(BOB, 1000, 0, now=1)
            assert coordinator.select_block_producer() == expected

    def test_probability(self):
        coordinator = coordinator_for()
        coordinator.create_stake(ALICE, 3000, 0, now=0)
        coordinator.create_stake(BOB, 1000, 0, now=1)
        assert coordinator.validator_probability(ALICE) == Decimal("0.75")
        assert coordinator.validator_probability("0xnobody") == Decimal("0")

    def test_withdrawn_not_eligible(self, coordinator):
        stake = coordinator.create_stake(ALICE, 1000, 0, now=0)
        assert coordinator.is_eligible(ALICE)
        coordinator.request_withdrawal(stake.stake_id, now=0)
        assert not coordinator.is_eligible(ALICE)
        with pytest.raises(ConsensusStateError):
            coordinator.select_block_producer()

    def test_block_reward_by_mode(self):
        assert coordinator_for("POS").block_reward(1) == Decimal("0")
        assert coordinator_for("POW").block_reward(1) == Decimal("50")
        assert coordinator_for("HYBRID").block_reward(1) == Decimal("50")

    def test_mode_flags(self):
        pow_mode, pos_mode, hybrid = (coordinator_for(t) for t in ("POW", "POS", "HYBRID"))
        assert pow_mode.uses_mining and not pow_mode.uses_staking
        assert pos_mode.uses_staking and not pos_mode.uses_mining
        assert hybrid.uses_mining and hybrid.uses_staking
