"""
Unit tests for the Chain Validator and the Blockchain aggregate.

Tests:
- Block checks (linkage, hashes, difficulty, transactions, funds)
- Genesis and full-chain validation
- Chain snapshots and Merkle inclusion proofs
"""

from dataclasses import replace
from decimal import Decimal

import pytest

from biochain.blockchain.chain import Blockchain, create_genesis_block
from biochain.blockchain.models import Transaction
from biochain.blockchain.validator import ChainValidator
from biochain.core_crypto.hashing import hash_block_header
from biochain.core_crypto.merkle import merkle_root
from biochain.errors import ValidationCode, ValidationError
from biochain.mining.engine import BlockTemplate, mine_block

from .conftest import FakeClock, fast_config


MINER = "0x" + "m" * 40


def _mine(predecessor, transactions=(), difficulty=1, timestamp=None, config=None,
          miner=MINER):
    """Mine a block on top of `predecessor` outside any ledger."""
    txs = tuple(transactions)
    template = BlockTemplate(
        index=predecessor.index + 1,
        previous_hash=predecessor.hash,
        timestamp=predecessor.timestamp + 1000 if timestamp is None else timestamp,
        difficulty=difficulty,
        merkle_root=merkle_root([tx.hash for tx in txs]),
        miner_address=miner,
        transactions=txs,
    )
    return mine_block(template, (config or fast_config()).mining)


@pytest.fixture
def validator(config, registry):
    return ChainValidator(config, registry)


@pytest.fixture
def genesis(config):
    return create_genesis_block(config)


@pytest.fixture
def funded(alice):
    balances = {alice.address: Decimal("100")}
    return lambda address: balances.get(address, Decimal("0"))


class TestBlockValidation:
    """Tests for validate_block()."""

    def test_valid_block(self, validator, genesis, alice, bob, funded):
        tx = alice.build_transaction(bob.address, 10, fee=1)
        block = _mine(genesis, [tx])
        result = validator.validate_block(block, genesis, expected_difficulty=1,
                                          balance_of=funded)
        assert result.valid, result.messages
        assert bool(result)

    def test_empty_block_valid(self, validator, genesis):
        block = _mine(genesis)
        assert validator.validate_block(block, genesis).valid

    def test_tampered_header_detected(self, validator, genesis):
        """Changing a header field without re-mining breaks the stated hash."""
        block = _mine(genesis)
        tampered = replace(block, nonce=block.nonce + 1)
        assert ValidationCode.HASH_MISMATCH in validator.validate_block(tampered, genesis).codes

    def test_previous_hash_mismatch(self, validator, genesis):
        block = _mine(genesis)
        other = replace(genesis, hash="f" * 64)
        result = validator.validate_block(block, other)
        assert ValidationCode.PREVIOUS_HASH_MISMATCH in result.codes

    def test_index_mismatch(self, validator, genesis):
        first = _mine(genesis)
        second = _mine(first)
        result = validator.validate_block(second, genesis)
        assert ValidationCode.INDEX_MISMATCH in result.codes

    def test_timestamp_before_predecessor(self, validator, genesis):
        block = _mine(genesis, timestamp=genesis.timestamp - 1)
        result = validator.validate_block(block, genesis)
        assert result.codes == [ValidationCode.INVALID_TIMESTAMP]

    def test_timestamp_too_far_ahead(self, config, registry, genesis):
        validator = ChainValidator(config, registry, FakeClock(genesis.timestamp))
        drift = config.mining.max_future_drift
        at_limit = _mine(genesis, timestamp=genesis.timestamp + drift)
        assert validator.validate_block(at_limit, genesis).valid

        beyond = _mine(genesis, timestamp=genesis.timestamp + drift + 1)
        result = validator.validate_block(beyond, genesis)
        assert result.codes == [ValidationCode.INVALID_TIMESTAMP]

    def test_difficulty_not_met(self, validator, genesis):
        """A correctly hashed header that misses the target."""
        nonce = 0
        while True:
            block_hash = hash_block_header(1, genesis.hash, genesis.timestamp + 1, nonce, 1,
                                           merkle_root([]), MINER)
            if not block_hash.startswith("0"):
                break
            nonce += 1
        block = replace(_mine(genesis), timestamp=genesis.timestamp + 1, nonce=nonce,
                        hash=block_hash)
        result = validator.validate_block(block, genesis)
        assert result.codes == [ValidationCode.DIFFICULTY_NOT_MET]

    def test_difficulty_mismatch(self, validator, genesis):
        block = _mine(genesis, difficulty=2)
        result = validator.validate_block(block, genesis, expected_difficulty=1)
        assert result.codes == [ValidationCode.DIFFICULTY_MISMATCH]

    def test_tampered_transaction(self, validator, genesis, alice, bob):
        """Altering a transaction after mining breaks its stated hash."""
        tx = alice.build_transaction(bob.address, 10)
        block = _mine(genesis, [tx])
        forged = replace(tx, amount=Decimal("99"))
        tampered = replace(block, transactions=(forged,))
        codes = validator.validate_block(tampered, genesis).codes
        assert ValidationCode.TX_HASH_MISMATCH in codes

    def test_merkle_root_mismatch(self, validator, genesis, alice, bob):
        """Swapping in another valid transaction no longer matches the root."""
        tx = alice.build_transaction(bob.address, 10)
        other = alice.build_transaction(bob.address, 11)
        block = _mine(genesis, [tx])
        tampered = replace(block, transactions=(other,))
        assert ValidationCode.MERKLE_ROOT_MISMATCH in validator.validate_block(
            tampered, genesis).codes

    def test_invalid_amount(self, validator, genesis, alice, bob):
        tx = alice.build_transaction(bob.address, 0)
        block = _mine(genesis, [tx])
        assert validator.validate_block(block, genesis).codes == [ValidationCode.INVALID_AMOUNT]

    def test_bad_signature(self, validator, genesis, alice, bob):
        tx = Transaction.create(alice.address, bob.address, 5)
        tx.signature = bob.sign_hash(tx.hash)
        block = _mine(genesis, [tx])
        assert validator.validate_block(block, genesis).codes == [ValidationCode.BAD_SIGNATURE]

    def test_signatures_skipped_without_verifier(self, config, genesis, alice, bob):
        tx = Transaction.create(alice.address, bob.address, 5)
        block = _mine(genesis, [tx])
        assert ChainValidator(config).validate_block(block, genesis).valid

    def test_duplicate_within_block(self, validator, genesis, alice, bob):
        tx = alice.build_transaction(bob.address, 5)
        block = _mine(genesis, [tx, tx])
        codes = validator.validate_block(block, genesis).codes
        assert codes == [ValidationCode.DUPLICATE_TRANSACTION]

    def test_already_confirmed(self, validator, genesis, alice, bob):
        tx = alice.build_transaction(bob.address, 5)
        block = _mine(genesis, [tx])
        result = validator.validate_block(block, genesis, confirmed_hashes={tx.hash})
        assert result.codes == [ValidationCode.DUPLICATE_TRANSACTION]

    def test_insufficient_funds(self, validator, genesis, alice, bob, funded):
        """Transfers are replayed in order against confirmed balances."""
        first = alice.build_transaction(bob.address, 60, fee=1)
        second = alice.build_transaction(bob.address, 59, fee=1)
        block = _mine(genesis, [first, second])
        result = validator.validate_block(block, genesis, balance_of=funded)
        assert result.codes == [ValidationCode.INSUFFICIENT_FUNDS]

    def test_received_funds_can_be_spent_in_same_block(self, validator, genesis,
                                                       alice, bob, funded):
        pay = alice.build_transaction(bob.address, 50)
        forward = bob.build_transaction(alice.address, 20)
        block = _mine(genesis, [pay, forward])
        assert validator.validate_block(block, genesis, balance_of=funded).valid

    def test_collects_every_issue(self, validator, genesis):
        block = _mine(genesis)
        tampered = replace(block, index=5, previous_hash="a" * 64)
        codes = validator.validate_block(tampered, genesis).codes
        assert ValidationCode.PREVIOUS_HASH_MISMATCH in codes
        assert ValidationCode.INDEX_MISMATCH in codes
        assert ValidationCode.HASH_MISMATCH in codes

    def test_raise_if_invalid(self, validator, genesis):
        block = replace(_mine(genesis), previous_hash="a" * 64)
        result = validator.validate_block(block, genesis)
        with pytest.raises(ValidationError) as exc_info:
            result.raise_if_invalid()
        assert exc_info.value.errors == result.errors


class TestChainValidation:
    """Tests for validate_genesis() and validate_chain()."""

    def _chain(self, genesis, length=3):
        blocks = [genesis]
        for _ in range(length):
            blocks.append(_mine(blocks[-1]))
        return blocks

    def test_genesis_is_deterministic(self, config):
        assert create_genesis_block(config) == create_genesis_block(config)
        assert create_genesis_block(config).hash == Blockchain(config).genesis.hash

    def test_pos_genesis_has_zero_difficulty(self):
        config = fast_config()
        pos = config.with_overrides(consensus=replace(config.consensus, consensus_type="POS"))
        assert create_genesis_block(pos).difficulty == 0

    def test_valid_chain(self, validator, genesis):
        assert validator.validate_chain(self._chain(genesis)).valid

    def test_empty_chain(self, validator):
        assert validator.validate_chain([]).codes == [ValidationCode.EMPTY_CHAIN]

    def test_tampered_genesis(self, validator, genesis):
        blocks = self._chain(genesis, 1)
        blocks[0] = replace(genesis, timestamp=genesis.timestamp + 1)
        assert ValidationCode.INVALID_GENESIS in validator.validate_chain(blocks).codes

    def test_tampered_middle_block(self, validator, genesis):
        blocks = self._chain(genesis)
        blocks[2] = replace(blocks[2], timestamp=blocks[2].timestamp + 5)
        result = validator.validate_chain(blocks)
        assert not result.valid
        assert ValidationCode.HASH_MISMATCH in result.codes
        assert {issue.block_index for issue in result.errors} == {2}

    def test_replay_across_blocks(self, validator, genesis, alice, bob):
        tx = alice.build_transaction(bob.address, 5)
        first = _mine(genesis, [tx])
        second = _mine(first, [tx])
        result = validator.validate_chain([genesis, first, second])
        assert result.codes == [ValidationCode.DUPLICATE_TRANSACTION]

    def test_difficulty_schedule_enforced(self, validator, genesis):
        blocks = [genesis, _mine(genesis, difficulty=2)]
        assert validator.validate_chain(blocks).codes == [ValidationCode.DIFFICULTY_MISMATCH]


class TestBlockchain:
    """Tests for the Blockchain aggregate."""

    def test_starts_at_genesis(self, config):
        chain = Blockchain(config)
        assert chain.current_height == 0
        assert len(chain) == 1
        assert chain.tip.previous_hash == "0" * 64
        assert chain.difficulty == 1

    def test_append_requires_extension(self, config, genesis):
        chain = Blockchain(config)
        block = _mine(genesis)
        chain.append(block)
        assert chain.tip is block
        with pytest.raises(ValueError):
            chain.append(block)

    def test_confirmed_index(self, config, genesis, alice, bob):
        tx = alice.build_transaction(bob.address, 5)
        chain = Blockchain(config)
        block = _mine(genesis, [tx])
        chain.append(block)
        assert chain.is_confirmed(tx.hash)
        assert chain.find_transaction(tx.hash) == (block, tx)
        assert chain.total_transactions == 1
        assert chain.get_block_by_hash(block.hash) is block

    def test_blocks_range(self, config, genesis):
        chain = Blockchain(config)
        for _ in range(3):
            chain.append(_mine(chain.tip))
        assert [b.index for b in chain.blocks_range(1, 3)] == [1, 2]
        assert [b.index for b in chain.blocks_range(2)] == [2, 3]
        assert chain.get_block(10) is None

    def test_merkle_proof(self, config, genesis, alice, bob):
        txs = [alice.build_transaction(bob.address, i + 1) for i in range(3)]
        chain = Blockchain(config)
        chain.append(_mine(genesis, txs))
        block_index, proof = chain.get_transaction_proof(txs[2].hash)
        assert block_index == 1
        assert chain.verify_transaction(txs[2].hash, block_index, proof)
        assert not chain.verify_transaction(txs[0].hash, block_index, proof)
        assert not chain.verify_transaction(txs[2].hash, 0, proof)
        assert chain.get_transaction_proof("f" * 64) is None

    def test_json_snapshot(self, config, genesis, alice, bob):
        chain = Blockchain(config)
        chain.append(_mine(genesis, [alice.build_transaction(bob.address, 5)]))
        restored = Blockchain.from_json(chain.to_json(), config)
        assert [b.hash for b in restored] == [b.hash for b in chain]
        assert ChainValidator(config).validate_chain(restored.blocks).valid

    def test_json_snapshot_wrong_chain(self, config):
        snapshot = Blockchain(config).to_json()
        with pytest.raises(ValueError):
            Blockchain.from_json(snapshot, config.with_overrides(chain_id="other"))
