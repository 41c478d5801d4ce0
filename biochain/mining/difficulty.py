"""
Proof of Work Target, Difficulty Retargeting and Block Reward

Difficulty is measured in leading zero HEX DIGITS of the block hash.
The predicate is evaluated numerically:

    int(hash, 16) < 2 ** (256 - 4 * difficulty)

which is exactly "the first `difficulty` hex digits are 0". Difficulty 0
accepts every hash (used by proof-of-stake blocks).

Retargeting compares the average interval between recent blocks with the
target block time and moves difficulty by at most one unit per retarget.
The reward halves every `halving_interval` blocks and bottoms out at zero.
"""

from decimal import Decimal, ROUND_DOWN
from typing import Optional, Sequence

from ..config import (
    BASE_REWARD,
    HALVING_INTERVAL,
    MAX_DIFFICULTY,
    MIN_DIFFICULTY,
    RETARGET_TOLERANCE,
    MiningConfig,
)


HASH_BITS = 256
BITS_PER_HEX_DIGIT = 4
REWARD_QUANTUM = Decimal("0.00000001")


class ProofOfWork:
    """
    Proof of Work target for a given difficulty.

    Higher difficulty = smaller target = more attempts on average
    (16 ** difficulty expected hashes).
    """

    def __init__(self, difficulty: int):
        """
        Args:
            difficulty: Required leading zero hex digits (0-64)
        """
        if not 0 <= difficulty <= HASH_BITS // BITS_PER_HEX_DIGIT:
            raise ValueError("Difficulty must be between 0 and 64")
        self.difficulty = difficulty
        self._target = self.calculate_target(difficulty)

    @staticmethod
    def calculate_target(difficulty: int) -> int:
        """A valid hash must be strictly less than this value."""
        return 2 ** (HASH_BITS - BITS_PER_HEX_DIGIT * difficulty)

    @property
    def target(self) -> int:
        return self._target

    @property
    def target_hex(self) -> str:
        """Target as a 64-char hex string (saturated at all f's for difficulty 0)."""
        return format(min(self._target, 2 ** HASH_BITS - 1), '064x')

    def hash_meets_target(self, hash_hex: str) -> bool:
        """Check a hex digest against the target; malformed digests fail."""
        try:
            return int(hash_hex, 16) < self._target
        except (TypeError, ValueError):
            return False

    @staticmethod
    def count_leading_zeros(hash_hex: str) -> int:
        """Number of leading zero hex digits."""
        return len(hash_hex) - len(hash_hex.lstrip('0'))

    def expected_attempts(self) -> int:
        return 16 ** self.difficulty


def hash_meets_difficulty(hash_hex: str, difficulty: int) -> bool:
    """Difficulty predicate for a block hash."""
    if difficulty < 0:
        return False
    return ProofOfWork(min(difficulty, 64)).hash_meets_target(hash_hex)


def estimate_attempts(difficulty: int) -> int:
    """Expected number of hashes to satisfy a difficulty."""
    return 16 ** difficulty


# ============================================================================
# Reward Schedule
# ============================================================================

def compute_reward(
    block_index: int,
    base_reward: Decimal = BASE_REWARD,
    halving_interval: int = HALVING_INTERVAL
) -> Decimal:
    """
    Block reward with halving.

    reward = base_reward / 2 ** floor(block_index / halving_interval),
    truncated to 8 decimal places. Once the halved value drops below
    0.00000001 the reward is zero for good.

    Examples:
        compute_reward(0) == 50
        compute_reward(210000) == 25
        compute_reward(630000) == 6.25
    """
    if block_index < 0:
        raise ValueError("Block index cannot be negative")
    if halving_interval <= 0:
        raise ValueError("Halving interval must be positive")
    base = Decimal(str(base_reward))
    if base <= 0:
        return Decimal("0")

    halvings = block_index // halving_interval
    reward = (base / (Decimal(2) ** halvings)).quantize(REWARD_QUANTUM, rounding=ROUND_DOWN)
    return max(reward, Decimal("0"))


# ============================================================================
# Difficulty Retargeting
# ============================================================================

def average_interval(timestamps: Sequence[int]) -> Optional[float]:
    """Mean gap between consecutive timestamps, or None if fewer than two."""
    if len(timestamps) < 2:
        return None
    return (timestamps[-1] - timestamps[0]) / (len(timestamps) - 1)


def retarget_difficulty(
    recent_timestamps: Sequence[int],
    target_block_time: int,
    current_difficulty: int,
    min_difficulty: int = MIN_DIFFICULTY,
    max_difficulty: int = MAX_DIFFICULTY,
    tolerance: float = RETARGET_TOLERANCE
) -> int:
    """
    Compute the difficulty for the next retarget period.

    An average interval at or below target / tolerance raises difficulty by one;
    at or above target * tolerance lowers it by one. Strictly inside that band the
    difficulty is unchanged. The result is clamped to [min, max].

    Args:
        recent_timestamps: Timestamps (ms) of the last N blocks, oldest first
        target_block_time: Desired interval between blocks (ms)
        current_difficulty: Difficulty in force now
        min_difficulty: Lower bound
        max_difficulty: Upper bound
        tolerance: Width of the dead band (>= 1)

    Returns:
        New difficulty, within one unit of current_difficulty
    """
    average = average_interval(recent_timestamps)
    if average is None:
        return max(min_difficulty, min(current_difficulty, max_difficulty))

    if average <= target_block_time / tolerance:
        new_difficulty = current_difficulty + 1
    elif average >= target_block_time * tolerance:
        new_difficulty = current_difficulty - 1
    else:
        new_difficulty = current_difficulty

    return max(min_difficulty, min(new_difficulty, max_difficulty))


def next_difficulty(blocks: Sequence, config: MiningConfig,
                    count: Optional[int] = None) -> int:
    """
    Difficulty required for the block that would follow `blocks`.

    Retargets whenever the next index is a multiple of the retarget window,
    using the timestamps of the last `retarget_window + 1` non-genesis
    blocks. Genesis has a fixed historical timestamp and is excluded.
    When `count` is given only the first `count` blocks are considered,
    so a caller folding over a chain does not have to copy prefixes.
    """
    next_index = len(blocks) if count is None else count
    if next_index == 0:
        return config.initial_difficulty

    current = blocks[next_index - 1].difficulty
    if next_index % config.retarget_window != 0:
        return current

    start = max(1, next_index - (config.retarget_window + 1))
    timestamps = [blocks[i].timestamp for i in range(start, next_index)]
    if len(timestamps) < 2:
        return current

    return retarget_difficulty(
        timestamps,
        config.target_block_time,
        current,
        config.min_difficulty,
        config.max_difficulty,
        config.retarget_tolerance,
    )
