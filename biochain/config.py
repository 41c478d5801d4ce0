"""
Ledger Configuration

Immutable configuration threaded into the mining engine, consensus
coordinator, transaction pool and ledger facade at construction time.
Nothing here is process-wide mutable state: build a LedgerConfig (or load
one from JSON) and hand it to the Ledger.

Defaults mirror the production network:
- Initial difficulty 4 leading hex zeros, bounded to [1, 10]
- 50 coin block reward halving every 210,000 blocks
- 10 minute target block time, retargeted every 10 blocks
- 5% annual staking rate, minimum stake of 1000
"""

import json
from dataclasses import dataclass, field, fields, replace
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union


# ============================================================================
# Constants
# ============================================================================

GENESIS_PREV_HASH = "0" * 64
GENESIS_TIMESTAMP = 1609459200000  # Jan 1, 2021 (ms)
GENESIS_MINER_ADDRESS = "0x" + "0" * 40

DEFAULT_CHAIN_ID = "biochain-main-001"
DEFAULT_DIFFICULTY = 4
MIN_DIFFICULTY = 1
MAX_DIFFICULTY = 10
MAX_NONCE = 2 ** 32
BASE_REWARD = Decimal("50")
HALVING_INTERVAL = 210000
TARGET_BLOCK_TIME_MS = 600000
RETARGET_WINDOW = 10
RETARGET_TOLERANCE = 2.0
CANCEL_CHECK_INTERVAL = 1000
MAX_FUTURE_DRIFT_MS = 2 * 3600 * 1000

CONSENSUS_TYPE = "POW"
MIN_STAKE_AMOUNT = Decimal("1000")
STAKING_REWARD_RATE = Decimal("0.05")  # annualized
ACCRUAL_INTERVAL_MS = 86400 * 1000  # daily

POOL_MAX_SIZE = 1000
POOL_TTL_MS = 3 * 3600 * 1000
MAX_TRANSACTIONS_PER_BLOCK = 100


# ============================================================================
# Config Sections
# ============================================================================

@dataclass(frozen=True)
class GenesisConfig:
    """Fixed parameters of block 0."""
    previous_hash: str = GENESIS_PREV_HASH
    timestamp: int = GENESIS_TIMESTAMP
    miner_address: str = GENESIS_MINER_ADDRESS


@dataclass(frozen=True)
class MiningConfig:
    """Proof-of-work and reward schedule."""
    initial_difficulty: int = DEFAULT_DIFFICULTY
    min_difficulty: int = MIN_DIFFICULTY
    max_difficulty: int = MAX_DIFFICULTY
    base_reward: Decimal = BASE_REWARD
    halving_interval: int = HALVING_INTERVAL
    target_block_time: int = TARGET_BLOCK_TIME_MS
    retarget_window: int = RETARGET_WINDOW
    retarget_tolerance: float = RETARGET_TOLERANCE
    max_nonce: int = MAX_NONCE
    cancel_check_interval: int = CANCEL_CHECK_INTERVAL
    max_transactions_per_block: int = MAX_TRANSACTIONS_PER_BLOCK
    max_future_drift: int = MAX_FUTURE_DRIFT_MS

    def __post_init__(self):
        if not 0 <= self.min_difficulty <= self.max_difficulty <= 64:
            raise ValueError("Difficulty bounds must satisfy 0 <= min <= max <= 64")
        if not self.min_difficulty <= self.initial_difficulty <= self.max_difficulty:
            raise ValueError("Initial difficulty must lie within [min, max]")
        if self.halving_interval <= 0:
            raise ValueError("Halving interval must be positive")
        if self.retarget_window < 1:
            raise ValueError("Retarget window must be at least 1 block")
        if self.retarget_tolerance < 1:
            raise ValueError("Retarget tolerance must be >= 1")
        if self.cancel_check_interval < 1:
            raise ValueError("Cancel check interval must be positive")
        if self.max_future_drift < 0:
            raise ValueError("Max future drift cannot be negative")


@dataclass(frozen=True)
class ConsensusConfig:
    """Consensus mode and staking economics."""
    consensus_type: str = CONSENSUS_TYPE
    min_stake_amount: Decimal = MIN_STAKE_AMOUNT
    staking_reward_rate: Decimal = STAKING_REWARD_RATE
    accrual_interval: int = ACCRUAL_INTERVAL_MS

    def __post_init__(self):
        if self.consensus_type not in ("POW", "POS", "HYBRID"):
            raise ValueError(f"Unknown consensus type: {self.consensus_type}")
        if self.staking_reward_rate < 0:
            raise ValueError("Staking reward rate cannot be negative")


@dataclass(frozen=True)
class PoolConfig:
    """Transaction pool limits."""
    max_size: int = POOL_MAX_SIZE
    ttl: int = POOL_TTL_MS

    def __post_init__(self):
        if self.max_size <= 0:
            raise ValueError("Max size must be greater than 0")


@dataclass(frozen=True)
class LedgerConfig:
    """Top-level configuration for one chain."""
    chain_id: str = DEFAULT_CHAIN_ID
    chain_name: str = "BioChain"
    genesis: GenesisConfig = field(default_factory=GenesisConfig)
    mining: MiningConfig = field(default_factory=MiningConfig)
    consensus: ConsensusConfig = field(default_factory=ConsensusConfig)
    pool: PoolConfig = field(default_factory=PoolConfig)

    def with_overrides(self, **kwargs) -> 'LedgerConfig':
        """Return a copy with top-level fields replaced."""
        return replace(self, **kwargs)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'LedgerConfig':
        """
        Build a config from a nested mapping (e.g. parsed JSON).

        Unknown keys raise ValueError so typos do not silently fall back
        to defaults. Monetary values are parsed as Decimal from strings.
        """
        sections = {
            'genesis': GenesisConfig,
            'mining': MiningConfig,
            'consensus': ConsensusConfig,
            'pool': PoolConfig,
        }
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            if key in sections:
                kwargs[key] = _build_section(sections[key], value)
            elif key in ('chain_id', 'chain_name'):
                kwargs[key] = value
            else:
                raise ValueError(f"Unknown config key: {key}")
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible mapping."""
        def section(obj) -> Dict[str, Any]:
            return {
                f.name: str(getattr(obj, f.name))
                if isinstance(getattr(obj, f.name), Decimal)
                else getattr(obj, f.name)
                for f in fields(obj)
            }
        return {
            'chain_id': self.chain_id,
            'chain_name': self.chain_name,
            'genesis': section(self.genesis),
            'mining': section(self.mining),
            'consensus': section(self.consensus),
            'pool': section(self.pool),
        }


def _build_section(section_cls, values: Mapping[str, Any]):
    """Instantiate a config section, coercing Decimal-typed fields."""
    known = {f.name: f for f in fields(section_cls)}
    kwargs = {}
    for key, value in values.items():
        if key not in known:
            raise ValueError(f"Unknown {section_cls.__name__} key: {key}")
        if known[key].type in (Decimal, 'Decimal'):
            value = Decimal(str(value))
        kwargs[key] = value
    return section_cls(**kwargs)


def load_config(path: Union[str, Path], overrides: Optional[Mapping[str, Any]] = None) -> LedgerConfig:
    """
    Load a LedgerConfig from a JSON file.

    Args:
        path: Path to a JSON document shaped like LedgerConfig.to_dict()
        overrides: Optional top-level keys merged over the file contents

    Returns:
        Parsed configuration
    """
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    if overrides:
        data.update(overrides)
    return LedgerConfig.from_dict(data)
