"""Storage layer for the memory bank."""

from memorybank.storage.bank import MemoryBank, BankConfig
from memorybank.storage.vector_cache import VectorCache, VectorCacheConfig
from memorybank.storage.base import StateStore
from memorybank.storage.json_store import JsonStateStore, StoreConfig

__all__ = [
    # Per-identity state
    "MemoryBank",
    "BankConfig",
    "VectorCache",
    "VectorCacheConfig",
    # Persistence
    "StateStore",
    "JsonStateStore",
    "StoreConfig",
]
