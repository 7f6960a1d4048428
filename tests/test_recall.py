"""Tests for the recall engine."""

import pytest

from memorybank.models import Category, MemoryItem, Permanence
from memorybank.operators.recall import (
    RecallConfig,
    RecallEngine,
    cosine_similarity,
    dedupe_lines,
)
from memorybank.storage.bank import MemoryBank
from memorybank.storage.vector_cache import VectorCache

NOW = 1_700_000_000.0
DAY = 86400.0


def core_item(content: str, confidence: float) -> MemoryItem:
    return MemoryItem(
        key=f"identity::{content.lower()}",
        category=Category.IDENTITY,
        content=content,
        permanence=Permanence.CORE,
        confidence=confidence,
        last_seen=NOW,
    )


class TestCosineSimilarity:
    """Tests for the similarity function."""

    def test_identical_and_orthogonal(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)
        assert cosine_similarity([1.0, 0.0], [0.0, 3.0]) == 0.0

    def test_zero_vector(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
        assert cosine_similarity([], []) == 0.0

    def test_dimension_mismatch_uses_shorter(self):
        # Dot product over the first two dimensions only
        sim = cosine_similarity([1.0, 0.0], [1.0, 0.0, 5.0])
        assert sim == pytest.approx(1.0 / 26 ** 0.5)

    def test_dedupe_lines(self):
        lines = ["- I love Jazz", "-  i love   jazz ", "", "- Other"]
        assert dedupe_lines(lines, 10) == ["- I love Jazz", "- Other"]
        assert dedupe_lines(lines, 1) == ["- I love Jazz"]


class TestRecallEngine:
    """Tests for three-tier recall."""

    @pytest.fixture
    def bank(self):
        bank = MemoryBank()
        bank.merge("people", "My daughter Mia loves jazz", 0.95, now=NOW)
        bank.merge("preferences", "Prefers tea over coffee", 0.8, now=NOW)
        bank.merge("habits", "Goes running on Sundays", 0.7, now=NOW)
        bank.merge("other", "Had coffee with an old friend", 0.6, now=NOW)
        bank.merge("goals", "Wants to sleep earlier", 0.75, now=NOW)
        bank.prune(NOW)
        return bank

    @pytest.mark.asyncio
    async def test_empty_bank(self, embedder):
        engine = RecallEngine(embedder)
        assert await engine.recall(MemoryBank(), VectorCache(), "anything", now=NOW) == []
        assert embedder.calls == []

    @pytest.mark.asyncio
    async def test_core_sure_first_then_similarity(self, bank, embedder):
        engine = RecallEngine(embedder)

        lines = await engine.recall(bank, VectorCache(), "running", max_lines=3, now=NOW)

        assert lines == [
            "- My daughter Mia loves jazz",
            "- Goes running on Sundays",
            # Second best by similarity: all remaining score 0, kept in sample order
            "- Prefers tea over coffee",
        ]

    @pytest.mark.asyncio
    async def test_similarity_ranking(self, bank, embedder):
        engine = RecallEngine(embedder)

        lines = await engine.recall(bank, VectorCache(), "coffee", max_lines=12, now=NOW)

        assert lines[0] == "- My daughter Mia loves jazz"
        assert set(lines[1:3]) == {"- Prefers tea over coffee", "- Had coffee with an old friend"}
        assert len(lines) == 5

    @pytest.mark.asyncio
    async def test_core_sure_capped_and_sorted(self, embedder):
        items = [core_item(f"Core fact {i}", 0.90 + i / 100) for i in range(6)]
        items.append(MemoryItem(
            key="other::coffee addict",
            content="Coffee addict",
            permanence=Permanence.EPHEMERAL,
            confidence=0.5,
            last_seen=NOW,
            expires_at=NOW + DAY,
        ))
        bank = MemoryBank(items)
        engine = RecallEngine(embedder)

        lines = await engine.recall(bank, VectorCache(), "coffee", max_lines=5, now=NOW)

        assert lines == [
            "- Core fact 5",
            "- Core fact 4",
            "- Core fact 3",
            "- Core fact 2",
            "- Coffee addict",
        ]

    @pytest.mark.asyncio
    async def test_low_confidence_core_not_forced(self, embedder):
        bank = MemoryBank([core_item("Unsure core", 0.5)])
        bank.merge("other", "Drinks coffee", 0.6, now=NOW)
        engine = RecallEngine(embedder)

        lines = await engine.recall(bank, VectorCache(), "coffee", max_lines=1, now=NOW)

        assert lines == ["- Drinks coffee"]

    @pytest.mark.asyncio
    async def test_query_embedding_failure_falls_back(self, bank, failing_embedder):
        engine = RecallEngine(failing_embedder)

        lines = await engine.recall(bank, VectorCache(), "coffee", now=NOW)

        assert lines == [
            "- My daughter Mia loves jazz",
            "- Prefers tea over coffee",
            "- Wants to sleep earlier",
            "- Goes running on Sundays",
            "- Had coffee with an old friend",
        ]
        # Only the query was attempted
        assert failing_embedder.calls == 1

    @pytest.mark.asyncio
    async def test_no_embedder_falls_back(self, bank):
        engine = RecallEngine(None)

        lines = await engine.recall(bank, VectorCache(), "coffee", max_lines=2, now=NOW)

        assert lines == ["- My daughter Mia loves jazz", "- Prefers tea over coffee"]

    @pytest.mark.asyncio
    async def test_item_embedding_failure_skips_ranking(self, bank, embedder_factory):
        embedder = embedder_factory("old friend")
        engine = RecallEngine(embedder)

        items = await engine.recall_items(bank, VectorCache(), "coffee", now=NOW)

        contents = [m.content for m in items]
        # Not ranked by similarity, but still reachable through the fallback
        assert contents[1] == "Prefers tea over coffee"
        assert contents[-1] == "Had coffee with an old friend"

    @pytest.mark.asyncio
    async def test_expired_items_excluded(self, embedder):
        bank = MemoryBank()
        bank.merge("other", "Old coffee habit", 0.9, now=NOW - 30 * DAY)
        bank.merge("other", "Fresh tea habit", 0.5, now=NOW)
        engine = RecallEngine(embedder)

        lines = await engine.recall(bank, VectorCache(), "coffee", now=NOW)

        assert lines == ["- Fresh tea habit"]

    @pytest.mark.asyncio
    async def test_duplicate_rendered_text_removed(self, embedder):
        bank = MemoryBank()
        bank.merge("preferences", "I love jazz", 0.8, now=NOW)
        bank.merge("other", "I  love JAZZ", 0.8, now=NOW)
        engine = RecallEngine(embedder)

        lines = await engine.recall(bank, VectorCache(), "jazz", now=NOW)

        assert len(bank) == 2
        assert len(lines) == 1

    @pytest.mark.asyncio
    async def test_bound_and_distinct(self, embedder):
        bank = MemoryBank()
        for i in range(40):
            bank.merge("other", f"Coffee note number {i}", 0.5 + i / 100, now=NOW)
        engine = RecallEngine(embedder)

        items = await engine.recall_items(bank, VectorCache(), "coffee", max_lines=7, now=NOW)
        lines = await engine.recall(bank, VectorCache(), "coffee", max_lines=7, now=NOW)

        assert len(items) == 7
        assert len({m.key for m in items}) == 7
        assert len(lines) == 7

    @pytest.mark.asyncio
    async def test_deterministic(self, bank, embedder):
        engine = RecallEngine(embedder)
        cache = VectorCache()

        first = await engine.recall(bank, cache, "tea and jazz", now=NOW)
        second = await engine.recall(bank, cache, "tea and jazz", now=NOW)

        assert first == second

    @pytest.mark.asyncio
    async def test_embeddings_cached(self, bank, embedder):
        engine = RecallEngine(embedder)
        cache = VectorCache()

        await engine.recall(bank, cache, "coffee", now=NOW)
        assert len(cache) == len(bank)
        calls_after_first = len(embedder.calls)

        await engine.recall(bank, cache, "tea", now=NOW)

        # Second recall only embeds the query
        assert len(embedder.calls) == calls_after_first + 1
        assert cache.get("people::my daughter mia loves jazz") is not None

    @pytest.mark.asyncio
    async def test_sample_bounds_embedding_work(self, embedder):
        bank = MemoryBank()
        for i in range(10):
            bank.merge("other", f"Plain fact {i}", 0.5, now=NOW + i)
        engine = RecallEngine(embedder, RecallConfig(embed_sample_size=3, sample_per_line=1))

        await engine.recall(bank, VectorCache(), "coffee", max_lines=2, now=NOW + 10)

        # One query embedding plus the three most recent items
        assert embedder.calls[0] == "coffee"
        assert embedder.calls[1:] == ["other: Plain fact 9", "other: Plain fact 8", "other: Plain fact 7"]

    @pytest.mark.asyncio
    async def test_zero_lines(self, bank, embedder):
        engine = RecallEngine(embedder)
        assert await engine.recall(bank, VectorCache(), "coffee", max_lines=0, now=NOW) == []

    def test_format_context(self):
        engine = RecallEngine(None)
        assert engine.format_context(["- a", "- b"]) == "- a\n- b"
