"""Abstract base class for per-identity state persistence."""

from abc import ABC, abstractmethod

from memorybank.storage.bank import MemoryBank
from memorybank.storage.vector_cache import VectorCache


class StateStore(ABC):
    """Durable load/save of one identity's bank and vector cache.

    Callers must hold the identity's concurrency-gate permit around a
    load/save cycle; stores don't lock anything themselves.
    """

    @abstractmethod
    async def load(self, identity: str) -> tuple[MemoryBank, VectorCache]:
        """Load state, falling back to empty state if missing or corrupt."""
        pass

    @abstractmethod
    async def save(self, identity: str, bank: MemoryBank, cache: VectorCache) -> None:
        """Prune, trim and persist state.

        Storage failures propagate: there is no safe recovery for a failed
        durable write.
        """
        pass

    @abstractmethod
    async def delete(self, identity: str) -> bool:
        """Remove all persisted state for an identity."""
        pass

    @abstractmethod
    async def exists(self, identity: str) -> bool:
        pass
