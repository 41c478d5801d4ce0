"""
BioChain - Main Entry Point
Walks a small ledger through submit, mine, stake and validate.
"""

import argparse
import logging
from decimal import Decimal

from .blockchain.models import ConsensusType
from .config import ConsensusConfig, LedgerConfig, MiningConfig, load_config
from .core_crypto.signatures import KeyRegistry, Wallet
from .ledger.facade import Ledger
from .mining.engine import MiningSuccess


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="BioChain ledger demo")
    parser.add_argument("--config", help="JSON config file (LedgerConfig.to_dict() shape)")
    parser.add_argument("--difficulty", type=int, default=2,
                        help="initial difficulty when no config file is given")
    parser.add_argument("--consensus", choices=[c.value for c in ConsensusType], default="HYBRID")
    parser.add_argument("--blocks", type=int, default=3, help="blocks to mine")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser


def main(argv=None):
    """Main entry point for the BioChain demo."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

    if args.config:
        config = load_config(args.config)
    else:
        config = LedgerConfig(
            mining=MiningConfig(initial_difficulty=args.difficulty, min_difficulty=1),
            consensus=ConsensusConfig(consensus_type=args.consensus),
        )

    registry = KeyRegistry()
    alice = Wallet.create(registry)
    bob = Wallet.create(registry)
    miner = Wallet.create(registry)

    print("=" * 50)
    print(f"Welcome to {config.chain_name} ({config.chain_id})")
    print("=" * 50)

    with Ledger(config, registry, initial_balances={alice.address: Decimal("5000")}) as ledger:
        for i in range(args.blocks):
            tx = alice.build_transaction(bob.address, Decimal("10") + i, fee=Decimal("0.5"))
            result = ledger.submit_transaction(tx)
            print(f"\nSubmitted {tx.hash[:16]}...: {result.message}")
            result.raise_if_rejected()

            outcome = ledger.mine_next_block(miner.address)
            if isinstance(outcome, MiningSuccess):
                print(outcome.block)
                print(f"  Reward: {outcome.reward}  ({outcome.duration_ms} ms)")
            else:
                print(f"  Mining ended without a block: {outcome.reason}")

        if ledger.consensus.uses_staking:
            stake = ledger.stake(alice.address, config.consensus.min_stake_amount)
            print(f"\nStaked {stake.staked_amount} as {stake.stake_id[:8]}")
            print(f"  Unstake: {ledger.unstake(stake.stake_id).message}")

        result = ledger.validate_full_chain()
        status = ledger.get_chain_status()
        print("\n" + "=" * 50)
        print(f"Height: {status.height}  Difficulty: {status.difficulty}  Valid: {result.valid}")
        for name, wallet in (("alice", alice), ("bob", bob), ("miner", miner)):
            print(f"  {name:6s} {wallet.address}  {ledger.balance_of(wallet.address)}")
        print("=" * 50)
    return 0 if result.valid else 1


if __name__ == "__main__":
    raise SystemExit(main())
