"""Transactional persistence for the lead engine."""

from leadledger.storage.base import MarketStorage, MarketTransaction
from leadledger.storage.memory import InMemoryMarketStorage
from leadledger.storage.sqlite import SQLiteMarketStorage

__all__ = [
    "MarketStorage",
    "MarketTransaction",
    "InMemoryMarketStorage",
    "SQLiteMarketStorage",
]
