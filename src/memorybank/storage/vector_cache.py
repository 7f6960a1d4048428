"""VectorCache - Per-identity embedding cache keyed by memory key.

A pure cache: anything in it can be recomputed, and a missing entry is only
a miss. Entries are not tied to item lifetimes; they leave only when the
cache is trimmed to its cap.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from memorybank.models import MemoryItem
from memorybank.operators.encoder import coerce_vector

if TYPE_CHECKING:
    from memorybank.operators.encoder import EmbeddingProvider

logger = logging.getLogger(__name__)


@dataclass
class VectorCacheConfig:
    """Configuration for the embedding cache."""
    max_entries: int = 2000


class VectorCache:
    """Mapping of memory key -> embedding vector."""

    def __init__(
        self,
        by_key: dict[str, list[float]] | None = None,
        config: VectorCacheConfig | None = None,
    ):
        self.config = config or VectorCacheConfig()
        self._by_key: dict[str, list[float]] = {}
        for key, vector in (by_key or {}).items():
            self.put(key, vector)

    def __len__(self) -> int:
        return len(self._by_key)

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def keys(self) -> list[str]:
        return list(self._by_key)

    def get(self, key: str) -> list[float] | None:
        return self._by_key.get(key)

    def put(self, key: str, vector: Any) -> None:
        """Store a vector. Empty or non-numeric vectors are ignored."""
        if not key:
            return
        clean = coerce_vector(vector)
        if clean is None:
            return
        self._by_key[key] = clean

    async def ensure_embedding(
        self,
        item: MemoryItem,
        embedder: EmbeddingProvider | None,
    ) -> list[float] | None:
        """Return the item's vector, embedding and caching it on a miss.

        Returns None when the provider can't produce one; the caller should
        skip similarity ranking for this item.
        """
        cached = self.get(item.key)
        if cached is not None:
            return cached
        if embedder is None:
            return None

        try:
            vector = coerce_vector(await embedder.embed(item.embedding_text()))
        except Exception as e:
            # Providers shouldn't raise, but a third-party one might
            logger.warning("Embedding failed for %s: %s", item.key, e)
            return None

        if vector is None:
            return None
        self._by_key[item.key] = vector
        return vector

    def trim(self) -> list[str]:
        """Evict the lexicographically lowest keys until within the cap.

        Returns the evicted keys.
        """
        overflow = len(self._by_key) - self.config.max_entries
        if overflow <= 0:
            return []
        evicted = sorted(self._by_key)[:overflow]
        for key in evicted:
            del self._by_key[key]
        logger.debug("Trimmed %d cached vectors", len(evicted))
        return evicted

    def to_dict(self) -> dict[str, Any]:
        return {"by_key": dict(self._by_key)}

    @classmethod
    def from_dict(cls, data: dict[str, Any], config: VectorCacheConfig | None = None) -> VectorCache:
        by_key = data.get("by_key")
        if not isinstance(by_key, dict):
            by_key = {}
        return cls({str(k): v for k, v in by_key.items()}, config=config)

    def get_stats(self) -> dict[str, Any]:
        dims = {len(v) for v in self._by_key.values()}
        return {
            "count": len(self._by_key),
            "capacity": self.config.max_entries,
            "usage_percent": len(self._by_key) / self.config.max_entries * 100 if self.config.max_entries else 0.0,
            "dimensions": sorted(dims),
        }
