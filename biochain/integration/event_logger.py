"""
Ledger Event Logger

Records ledger lifecycle events and fans them out to registered
callbacks (API push, metrics, audit sinks).

Features:
- Block appended / rejected events
- Transaction accepted / rejected events
- Mining cancelled / failed events
- Stake created / withdrawn and reward accrual events
- Chain integrity failures
- Bounded in-memory history for inspection

Author: BioChain Project
"""

import json
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from ..blockchain.models import now_ms


logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 1000


# ============================================================================
# Event Types
# ============================================================================

class LedgerEventType(Enum):
    """Types of ledger events that can be logged."""

    # Transaction events
    TRANSACTION_ACCEPTED = "transaction_accepted"
    TRANSACTION_REJECTED = "transaction_rejected"
    TRANSACTIONS_EVICTED = "transactions_evicted"

    # Block events
    BLOCK_APPENDED = "block_appended"
    BLOCK_REJECTED = "block_rejected"

    # Mining events
    MINING_STARTED = "mining_started"
    MINING_CANCELLED = "mining_cancelled"
    MINING_FAILED = "mining_failed"

    # Staking events
    STAKE_CREATED = "stake_created"
    STAKE_WITHDRAWN = "stake_withdrawn"
    REWARDS_ACCRUED = "rewards_accrued"

    # Chain events
    CHAIN_VALIDATED = "chain_validated"
    CHAIN_INTEGRITY_FAILURE = "chain_integrity_failure"


# ============================================================================
# Event Structure
# ============================================================================

@dataclass
class LedgerEvent:
    """A single ledger event."""
    event_type: LedgerEventType
    chain_id: str
    timestamp: int  # ms
    details: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        """Compact JSON representation."""
        return json.dumps({
            'type': self.event_type.value,
            'chain': self.chain_id,
            'time': self.timestamp,
            'details': self.details,
        }, separators=(',', ':'), default=str)

    @classmethod
    def from_json(cls, data: str) -> 'LedgerEvent':
        parsed = json.loads(data)
        return cls(
            event_type=LedgerEventType(parsed['type']),
            chain_id=parsed['chain'],
            timestamp=parsed['time'],
            details=parsed.get('details', {}),
        )

    def __str__(self) -> str:
        dt = datetime.fromtimestamp(self.timestamp / 1000, tz=timezone.utc)
        return f"[{dt.strftime('%Y-%m-%d %H:%M:%S')}] {self.event_type.value} | {self.chain_id}"


EventCallback = Callable[[LedgerEvent], None]


# ============================================================================
# Event Logger
# ============================================================================

class EventLogger:
    """
    Event sink for one ledger.

    A failing callback is logged with its traceback and does not stop
    delivery to the remaining callbacks.
    """

    def __init__(self, chain_id: str, history_size: int = DEFAULT_HISTORY_SIZE,
                 clock: Callable[[], int] = now_ms):
        """
        Args:
            chain_id: Chain the events belong to
            history_size: Number of recent events retained
            clock: Millisecond clock for event timestamps
        """
        self.chain_id = chain_id
        self._clock = clock
        self._history: Deque[LedgerEvent] = deque(maxlen=history_size)
        self._callbacks: List[EventCallback] = []
        self._lock = threading.Lock()

    def add_callback(self, callback: EventCallback) -> None:
        """Add a callback to be notified of new events."""
        with self._lock:
            self._callbacks.append(callback)

    def remove_callback(self, callback: EventCallback) -> None:
        """Remove a callback."""
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def emit(self, event_type: LedgerEventType, **details: Any) -> LedgerEvent:
        """Record an event and notify callbacks."""
        event = LedgerEvent(event_type, self.chain_id, self._clock(), details)
        with self._lock:
            self._history.append(event)
            callbacks = list(self._callbacks)

        logger.debug("Event %s %s", event_type.value, details)
        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                logger.exception("Event callback %r failed for %s", callback, event_type.value)
        return event

    # ========================================================================
    # Typed helpers
    # ========================================================================

    def log_transaction(self, tx_hash: str, accepted: bool,
                        reason: Optional[str] = None) -> LedgerEvent:
        if accepted:
            return self.emit(LedgerEventType.TRANSACTION_ACCEPTED, tx_hash=tx_hash)
        return self.emit(LedgerEventType.TRANSACTION_REJECTED, tx_hash=tx_hash, reason=reason)

    def log_block(self, index: int, block_hash: str, transactions: int,
                  miner: str, reward: str) -> LedgerEvent:
        return self.emit(
            LedgerEventType.BLOCK_APPENDED,
            index=index,
            hash=block_hash,
            transactions=transactions,
            miner=miner,
            reward=reward,
        )

    def log_block_rejected(self, index: int, codes: List[str]) -> LedgerEvent:
        return self.emit(LedgerEventType.BLOCK_REJECTED, index=index, codes=codes)

    def log_integrity_failure(self, errors: List[str]) -> LedgerEvent:
        return self.emit(LedgerEventType.CHAIN_INTEGRITY_FAILURE, errors=errors)

    # ========================================================================
    # Retrieval
    # ========================================================================

    def get_all_events(self) -> List[LedgerEvent]:
        with self._lock:
            return list(self._history)

    def get_events_by_type(self, event_type: LedgerEventType) -> List[LedgerEvent]:
        """Get all retained events of a specific type."""
        return [e for e in self.get_all_events() if e.event_type == event_type]

    def get_recent_events(self, count: int = 10) -> List[LedgerEvent]:
        """Get the most recent events."""
        events = self.get_all_events()
        return events[-count:] if len(events) > count else events

    def export_log(self) -> str:
        """Export retained events as a JSON array."""
        return "[" + ",".join(e.to_json() for e in self.get_all_events()) + "]"

    def __len__(self) -> int:
        with self._lock:
            return len(self._history)
