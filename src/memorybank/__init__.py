"""Memory Bank - tiered, per-identity fact memory for conversational agents.

Facts about a user are kept in one of three tiers (core, sticky, ephemeral),
reinforced when mentioned again, expired by TTL and evicted by priority.
Recall surfaces a bounded, ranked set of facts for the next prompt.

Usage:
    from memorybank import MemoryService, MemoryConfig, MemoryCandidate

    service = MemoryService(MemoryConfig.from_env())

    async with service.session("anon:1234") as session:
        # Facts for the prompt
        context = await service.prepare_context(session, "how was my week?")

        # Store facts proposed by the extraction model
        await service.ingest(session, [MemoryCandidate("people", "My daughter is named Mia", 0.95)])
"""

from memorybank.models import (
    Category,
    Emotion,
    MemoryCandidate,
    MemoryItem,
    Permanence,
)
from memorybank.concurrency import ConcurrencyGate, GateConfig, Semaphore
from memorybank.memory_manager import MemoryConfig, MemoryService, MemorySession
from memorybank.operators import (
    Embedder,
    EmbeddingProvider,
    FactExtractor,
    PermanencePolicy,
    RecallEngine,
)
from memorybank.storage import JsonStateStore, MemoryBank, StateStore, VectorCache

__all__ = [
    # Models
    "Category",
    "Emotion",
    "MemoryCandidate",
    "MemoryItem",
    "Permanence",
    # Components
    "MemoryBank",
    "VectorCache",
    "RecallEngine",
    "PermanencePolicy",
    "ConcurrencyGate",
    "GateConfig",
    "Semaphore",
    "StateStore",
    "JsonStateStore",
    "Embedder",
    "EmbeddingProvider",
    "FactExtractor",
    # Main API
    "MemoryService",
    "MemoryConfig",
    "MemorySession",
]
