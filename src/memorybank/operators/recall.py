"""RecallEngine - Picks the facts worth surfacing for the next turn.

Three-tier merge:
1. Confident core facts (always first, never crowded out by similarity)
2. Facts ranked by cosine similarity to the query
3. Fallback by keep-priority (tier, confidence, times seen)

Results are deduplicated by key and by rendered text, and bounded.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from memorybank.models import MemoryItem, Permanence, clamp01, normalize_text, priority_key
from memorybank.operators.encoder import coerce_vector

if TYPE_CHECKING:
    from memorybank.operators.encoder import EmbeddingProvider
    from memorybank.storage.bank import MemoryBank
    from memorybank.storage.vector_cache import VectorCache

logger = logging.getLogger(__name__)


@dataclass
class RecallConfig:
    """Configuration for recall."""
    max_lines: int = 12
    core_min_confidence: float = 0.9
    max_core_lines: int = 4
    embed_sample_size: int = 120    # Bounds embedding work per recall
    sample_per_line: int = 5


def dot(a: list[float], b: list[float]) -> float:
    """Dot product over the shorter of the two vectors."""
    return sum(x * y for x, y in zip(a, b))


def norm(a: list[float]) -> float:
    """Euclidean norm, with a zero norm replaced by 1."""
    return math.sqrt(sum(x * x for x in a)) or 1.0


def cosine_similarity(a: list[float], b: list[float]) -> float:
    return dot(a, b) / (norm(a) * norm(b))


def dedupe_lines(lines: list[str], limit: int) -> list[str]:
    """Drop blank lines and lines equal after whitespace/case folding."""
    seen: set[str] = set()
    out: list[str] = []
    for line in lines:
        text = str(line).strip()
        if not text:
            continue
        folded = normalize_text(text)
        if folded in seen:
            continue
        seen.add(folded)
        out.append(text)
        if len(out) >= limit:
            break
    return out


class RecallEngine:
    """Ranks a bank's facts against a query.

    Deterministic for identical inputs: every sort is stable and nothing is
    randomized. Provider failures only remove the similarity tier.
    """

    def __init__(
        self,
        embedder: EmbeddingProvider | None = None,
        config: RecallConfig | None = None,
    ):
        self.embedder = embedder
        self.config = config or RecallConfig()

    async def recall(
        self,
        bank: MemoryBank,
        cache: VectorCache,
        query_text: str,
        max_lines: int | None = None,
        now: float | None = None,
    ) -> list[str]:
        """Return up to ``max_lines`` fact lines, most relevant first."""
        picked = await self.recall_items(bank, cache, query_text, max_lines, now)
        limit = self._limit(max_lines)
        return dedupe_lines([item.render() for item in picked], limit)

    async def recall_items(
        self,
        bank: MemoryBank,
        cache: VectorCache,
        query_text: str,
        max_lines: int | None = None,
        now: float | None = None,
    ) -> list[MemoryItem]:
        """Like recall(), but returns the picked items instead of lines."""
        limit = self._limit(max_lines)
        if now is None:
            now = time.time()

        valid = bank.valid_items(now)
        if not valid or limit <= 0:
            return []

        query_vector = await self._embed_query(query_text)

        core_sure = self._core_sure(valid)
        ranked: list[MemoryItem] = []
        if query_vector is not None:
            ranked = await self._rank_by_similarity(valid, cache, query_vector, limit)
        fallback = sorted(valid, key=priority_key, reverse=True)

        picked: list[MemoryItem] = []
        seen_keys: set[str] = set()
        for tier in (core_sure, ranked, fallback):
            for item in tier:
                if len(picked) >= limit:
                    break
                if not item.key or item.key in seen_keys:
                    continue
                seen_keys.add(item.key)
                picked.append(item)

        logger.debug(
            "Recall picked %d (core=%d ranked=%d valid=%d)",
            len(picked), len(core_sure), len(ranked), len(valid),
        )
        return picked

    def format_context(self, lines: list[str]) -> str:
        """Join recalled lines into a prompt block."""
        return "\n".join(lines)

    def _limit(self, max_lines: int | None) -> int:
        return self.config.max_lines if max_lines is None else max(0, int(max_lines))

    async def _embed_query(self, query_text: str) -> list[float] | None:
        if self.embedder is None or not str(query_text or "").strip():
            return None
        try:
            return coerce_vector(await self.embedder.embed(query_text))
        except Exception as e:
            logger.warning("Query embedding failed: %s", e)
            return None

    def _core_sure(self, valid: list[MemoryItem]) -> list[MemoryItem]:
        """High-confidence core facts, surfaced regardless of similarity."""
        core = [
            m for m in valid
            if m.permanence is Permanence.CORE
            and clamp01(m.confidence) >= self.config.core_min_confidence
        ]
        core.sort(key=lambda m: clamp01(m.confidence), reverse=True)
        return core[:self.config.max_core_lines]

    async def _rank_by_similarity(
        self,
        valid: list[MemoryItem],
        cache: VectorCache,
        query_vector: list[float],
        limit: int,
    ) -> list[MemoryItem]:
        sample_size = max(self.config.embed_sample_size, limit * self.config.sample_per_line)
        sample = sorted(valid, key=lambda m: (m.tier_rank, m.last_seen or 0.0), reverse=True)
        sample = sample[:sample_size]

        scored: list[tuple[MemoryItem, float]] = []
        for item in sample:
            vector = await cache.ensure_embedding(item, self.embedder)
            if vector is None:
                continue
            scored.append((item, cosine_similarity(query_vector, vector)))

        scored.sort(key=lambda pair: pair[1], reverse=True)
        return [item for item, _ in scored]
