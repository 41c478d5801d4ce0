# Integration Module
"""
Ledger event logging and callback fan-out.
"""

from .event_logger import EventLogger, LedgerEvent, LedgerEventType

__all__ = [
    'EventLogger',
    'LedgerEvent',
    'LedgerEventType',
]
