"""Ledger store interface and implementations."""

from .base import LedgerStore
from .memory import InMemoryLedgerStore

__all__ = ["LedgerStore", "InMemoryLedgerStore"]
