"""
Unit tests for configuration loading and the ledger event logger.
"""

import json
import logging
from decimal import Decimal

import pytest

from biochain.config import ConsensusConfig, LedgerConfig, MiningConfig, load_config
from biochain.integration.event_logger import EventLogger, LedgerEvent, LedgerEventType

from .conftest import FakeClock


class TestLedgerConfig:
    """Tests for LedgerConfig and load_config()."""

    def test_defaults(self):
        config = LedgerConfig()
        assert config.mining.initial_difficulty == 4
        assert config.mining.base_reward == Decimal("50")
        assert config.mining.halving_interval == 210000
        assert config.consensus.consensus_type == "POW"
        assert config.consensus.min_stake_amount == Decimal("1000")
        assert config.pool.max_size == 1000

    def test_dict_round_trip(self):
        config = LedgerConfig(chain_id="test-chain",
                              consensus=ConsensusConfig(consensus_type="HYBRID"))
        assert LedgerConfig.from_dict(config.to_dict()) == config

    def test_to_dict_is_json_serializable(self):
        data = json.loads(json.dumps(LedgerConfig().to_dict()))
        assert data['consensus']['staking_reward_rate'] == "0.05"

    def test_unknown_keys_rejected(self):
        with pytest.raises(ValueError):
            LedgerConfig.from_dict({'chain_idd': "typo"})
        with pytest.raises(ValueError):
            LedgerConfig.from_dict({'mining': {'difficulty': 3}})

    def test_load_config(self, tmp_path):
        path = tmp_path / "ledger.json"
        path.write_text(json.dumps({
            'chain_id': "file-chain",
            'mining': {'initial_difficulty': 2, 'base_reward': "12.5"},
        }))
        config = load_config(path, overrides={'chain_name': "Override"})
        assert config.chain_id == "file-chain"
        assert config.chain_name == "Override"
        assert config.mining.initial_difficulty == 2
        assert config.mining.base_reward == Decimal("12.5")

    @pytest.mark.parametrize("kwargs", [
        {'initial_difficulty': 11},
        {'min_difficulty': 5, 'max_difficulty': 4},
        {'halving_interval': 0},
        {'retarget_window': 0},
        {'retarget_tolerance': 0.5},
        {'cancel_check_interval': 0},
        {'max_future_drift': -1},
    ])
    def test_invalid_mining_config(self, kwargs):
        with pytest.raises(ValueError):
            MiningConfig(**kwargs)

    def test_invalid_consensus_type(self):
        with pytest.raises(ValueError):
            ConsensusConfig(consensus_type="PROOF_OF_AUTHORITY")

    def test_frozen(self):
        config = LedgerConfig()
        with pytest.raises(AttributeError):
            config.chain_id = "other"


class TestEventLogger:
    """Tests for EventLogger."""

    def test_emit_and_query(self):
        events = EventLogger("chain-1", clock=FakeClock(42))
        events.log_transaction("ab" * 32, True)
        events.log_transaction("cd" * 32, False, "REJECTED_DUPLICATE")
        events.log_block(1, "ef" * 32, 2, "0xminer", "50")

        assert len(events) == 3
        rejected = events.get_events_by_type(LedgerEventType.TRANSACTION_REJECTED)
        assert rejected[0].details['reason'] == "REJECTED_DUPLICATE"
        assert events.get_recent_events(1)[0].event_type == LedgerEventType.BLOCK_APPENDED
        assert all(e.timestamp == 42 and e.chain_id == "chain-1" for e in events.get_all_events())

    def test_callbacks(self):
        events = EventLogger("chain-1")
        received = []
        events.add_callback(received.append)
        events.emit(LedgerEventType.CHAIN_VALIDATED, height=3)
        events.remove_callback(received.append)
        events.emit(LedgerEventType.CHAIN_VALIDATED, height=4)
        assert [e.details['height'] for e in received] == [3]

    def test_failing_callback_is_logged(self, caplog):
        events = EventLogger("chain-1")
        received = []

        def broken(event):
            raise RuntimeError("subscriber down")

        events.add_callback(broken)
        events.add_callback(received.append)
        with caplog.at_level(logging.ERROR, logger="biochain.integration.event_logger"):
            events.emit(LedgerEventType.MINING_STARTED, index=1)
        assert len(received) == 1
        assert "subscriber down" in caplog.text

    def test_bounded_history(self):
        events = EventLogger("chain-1", history_size=3)
        for i in range(5):
            events.emit(LedgerEventType.BLOCK_APPENDED, index=i)
        assert [e.details['index'] for e in events.get_all_events()] == [2, 3, 4]

    def test_json_export(self):
        events = EventLogger("chain-1", clock=FakeClock(7))
        event = events.log_integrity_failure(["HASH_MISMATCH: block #1"])
        assert LedgerEvent.from_json(event.to_json()) == event
        exported = json.loads(events.export_log())
        assert exported[0]['type'] == "chain_integrity_failure"
