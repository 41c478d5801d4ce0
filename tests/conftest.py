"""
Test configuration and fixtures
"""
from decimal import Decimal

import pytest

from biochain.config import LedgerConfig, MiningConfig
from biochain.core_crypto.signatures import KeyRegistry, Wallet
from biochain.ledger.facade import Ledger


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def fast_config(**overrides) -> LedgerConfig:
    """Difficulty 1 so blocks mine in a few dozen hashes."""
    mining = MiningConfig(
        initial_difficulty=1,
        min_difficulty=1,
        max_difficulty=3,
        cancel_check_interval=10,
    )
    return LedgerConfig(mining=mining, **overrides)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    return KeyRegistry()


@pytest.fixture
def alice(registry):
    return Wallet.create(registry)


@pytest.fixture
def bob(registry):
    return Wallet.create(registry)


@pytest.fixture
def miner(registry):
    return Wallet.create(registry)


@pytest.fixture
def config():
    return fast_config()


@pytest.fixture
def ledger(config, registry, alice, clock):
    ledger = Ledger(config, registry, initial_balances={alice.address: Decimal("100")}, clock=clock)
    yield ledger
    ledger.close()
