"""
Persistence capability consumed by the Ledger.

The ledger reports an append as successful only after the store has
durably recorded the block. Balances and stakes are saved as one state
snapshot after each committed change.

- InMemoryStore: process-local, for tests and ephemeral nodes
- JsonFileStore: blocks as JSON lines (fsync per append) plus an
  atomically replaced state.json
"""

import json
import logging
import os
import threading
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterable, List, Tuple, Union

from ..blockchain.models import Block
from ..consensus.stake import Stake


logger = logging.getLogger(__name__)

LedgerState = Tuple[Dict[str, Decimal], List[Stake]]


class LedgerStore:
    """Durable append of blocks and snapshot of balances/stakes."""

    def append_block(self, block: Block) -> None:
        raise NotImplementedError

    def load_blocks(self) -> List[Block]:
        raise NotImplementedError

    def save_state(self, balances: Dict[str, Decimal], stakes: Iterable[Stake]) -> None:
        raise NotImplementedError

    def load_state(self) -> LedgerState:
        raise NotImplementedError

    def close(self) -> None:
        """Release resources (no-op by default)."""


class InMemoryStore(LedgerStore):
    """Keeps everything in process memory."""

    def __init__(self):
        self._blocks: List[Block] = []
        self._state: Dict[str, object] = {'balances': {}, 'stakes': []}
        self._lock = threading.Lock()

    def append_block(self, block: Block) -> None:
        with self._lock:
            self._blocks.append(block)

    def load_blocks(self) -> List[Block]:
        with self._lock:
            return list(self._blocks)

    def save_state(self, balances: Dict[str, Decimal], stakes: Iterable[Stake]) -> None:
        with self._lock:
            self._state = {
                'balances': {a: str(v) for a, v in balances.items()},
                'stakes': [s.to_dict() for s in stakes],
            }

    def load_state(self) -> LedgerState:
        with self._lock:
            return _decode_state(self._state)


class JsonFileStore(LedgerStore):
    """
    File-backed store rooted at a directory.

    Layout:
        <root>/blocks.jsonl   one block per line, appended with fsync
        <root>/state.json     balances and stakes, written via os.replace
    """

    BLOCKS_FILE = "blocks.jsonl"
    STATE_FILE = "state.json"

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.blocks_path = self.root / self.BLOCKS_FILE
        self.state_path = self.root / self.STATE_FILE
        self._lock = threading.Lock()

    def append_block(self, block: Block) -> None:
        line = json.dumps(block.to_dict(), separators=(',', ':'))
        with self._lock:
            with open(self.blocks_path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
                f.flush()
                os.fsync(f.fileno())
        logger.debug("Persisted block #%d to %s", block.index, self.blocks_path)

    def load_blocks(self) -> List[Block]:
        if not self.blocks_path.exists():
            return []
        blocks = []
        with self._lock:
            with open(self.blocks_path, "r", encoding="utf-8") as f:
                for line_no, line in enumerate(f, 1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        blocks.append(Block.from_dict(json.loads(line)))
                    except (json.JSONDecodeError, KeyError) as exc:
                        raise ValueError(
                            f"Corrupt block record at {self.blocks_path}:{line_no}"
                        ) from exc
        return blocks

    def save_state(self, balances: Dict[str, Decimal], stakes: Iterable[Stake]) -> None:
        payload = {
            'balances': {a: str(v) for a, v in balances.items()},
            'stakes': [s.to_dict() for s in stakes],
        }
        tmp = self.state_path.with_suffix(".json.tmp")
        with self._lock:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.state_path)

    def load_state(self) -> LedgerState:
        if not self.state_path.exists():
            return {}, []
        with self._lock:
            with open(self.state_path, "r", encoding="utf-8") as f:
                return _decode_state(json.load(f))


def _decode_state(data) -> LedgerState:
    balances = {a: Decimal(v) for a, v in data.get('balances', {}).items()}
    stakes = [Stake.from_dict(s) for s in data.get('stakes', [])]
    return balances, stakes
