# Ledger Module
"""
Ledger facade and persistence capability.
"""

from .store import InMemoryStore, JsonFileStore, LedgerStore
from .facade import ImportResult, Ledger

__all__ = ['ImportResult', 'InMemoryStore', 'JsonFileStore', 'Ledger', 'LedgerStore']
