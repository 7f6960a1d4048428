"""Tests for the MemoryService request cycle."""

import asyncio
import time

import pytest

from memorybank.memory_manager import MemoryConfig, MemoryService
from memorybank.models import MemoryCandidate, Permanence
from memorybank.operators.extractor import FactExtractor
from memorybank.storage.json_store import JsonStateStore, StoreConfig


def make_service(tmp_path, embedder, reply='{"store": false}'):
    calls = []

    async def complete(messages):
        calls.append(messages)
        if isinstance(reply, Exception):
            raise reply
        return reply

    service = MemoryService(
        MemoryConfig(store_config=StoreConfig(data_dir=str(tmp_path))),
        embedder=embedder,
        extractor=FactExtractor(complete=complete),
    )
    service.completion_calls = calls
    return service


class TestSession:
    """Tests for the load -> work -> save cycle."""

    @pytest.mark.asyncio
    async def test_state_persists_between_sessions(self, tmp_path, embedder):
        service = make_service(tmp_path, embedder)

        async with service.session("anon:1") as session:
            await service.ingest(session, [MemoryCandidate("people", "My daughter Mia loves jazz", 0.95)])

        async with service.session("anon:1") as session:
            assert len(session.bank) == 1
            context = await service.prepare_context(session, "jazz")

        assert context == "- My daughter Mia loves jazz"

    @pytest.mark.asyncio
    async def test_identities_are_isolated(self, tmp_path, embedder):
        service = make_service(tmp_path, embedder)

        async with service.session("anon:1") as session:
            await service.ingest(session, [MemoryCandidate("goals", "Learn python", 0.9)])

        async with service.session("anon:2") as session:
            assert len(session.bank) == 0

    @pytest.mark.asyncio
    async def test_embed_on_merge_skips_ephemeral(self, tmp_path, embedder):
        service = make_service(tmp_path, embedder)

        async with service.session("anon:1") as session:
            merged = await service.ingest(session, [
                MemoryCandidate("goals", "Sleep eight hours", 0.9),
                MemoryCandidate("other", "Had coffee today", 0.9),
            ])

            assert [m.permanence for m in merged] == [Permanence.STICKY, Permanence.EPHEMERAL]
            assert embedder.calls == ["goals: Sleep eight hours"]
            assert merged[0].key in session.cache
            assert merged[1].key not in session.cache

    @pytest.mark.asyncio
    async def test_failure_inside_session_skips_save(self, tmp_path, embedder):
        service = make_service(tmp_path, embedder)

        with pytest.raises(RuntimeError):
            async with service.session("anon:1") as session:
                await service.ingest(session, [MemoryCandidate("goals", "Learn python", 0.9)])
                raise RuntimeError("reply generation failed")

        assert await service.store.exists("anon:1") is False
        assert service.gate.get_stats()["global_in_use"] == 0

        # The identity is not stuck
        async with service.session("anon:1") as session:
            assert len(session.bank) == 0

    @pytest.mark.asyncio
    async def test_concurrent_sessions_do_not_lose_updates(self, tmp_path, embedder):
        service = make_service(tmp_path, embedder)
        candidate = MemoryCandidate("goals", "Run a marathon", 0.8)

        async def request():
            async with service.session("anon:1") as session:
                await asyncio.sleep(0.01)
                await service.ingest(session, [candidate])

        await asyncio.gather(request(), request())

        bank, _ = await service.load("anon:1")
        assert len(bank) == 1
        assert bank.items()[0].times_seen == 2

    @pytest.mark.asyncio
    async def test_recall_with_embedding_outage(self, tmp_path, failing_embedder):
        service = make_service(tmp_path, failing_embedder)

        async with service.session("anon:1") as session:
            await service.ingest(session, [
                MemoryCandidate("identity", "Is a nurse", 0.95),
                MemoryCandidate("habits", "Walks the dog", 0.7),
            ])
            context = await service.prepare_context(session, "what should I do today?")

        assert context.splitlines() == ["- Is a nurse", "- Walks the dog"]


class TestCapture:
    """Tests for message capture through the extractor."""

    @pytest.mark.asyncio
    async def test_capture_merges_candidate(self, tmp_path, embedder):
        reply = '{"store": true, "category": "people", "content": "Has a son named Leo", "confidence": 0.9}'
        service = make_service(tmp_path, embedder, reply)
        now = time.time()

        async with service.session("anon:1") as session:
            item = await service.capture(session, "My son Leo starts school", now=now)
            assert session.merged == [item]

        assert item.content == "Has a son named Leo"
        assert item.permanence is Permanence.CORE

        bank, _ = await service.load("anon:1")
        assert bank.last_capture_at == now
        assert len(bank) == 1

    @pytest.mark.asyncio
    async def test_capture_cooldown(self, tmp_path, embedder):
        reply = '{"store": true, "category": "habits", "content": "Swims weekly", "confidence": 0.9}'
        service = make_service(tmp_path, embedder, reply)
        now = time.time()

        async with service.session("anon:1") as session:
            assert await service.capture(session, "I swim on Fridays", now=now) is not None
            assert await service.capture(session, "I swim on Fridays", now=now + 5) is None
            assert await service.capture(session, "I swim on Fridays", now=now + 25) is not None

        assert len(service.completion_calls) == 2

    @pytest.mark.asyncio
    async def test_failed_call_leaves_cooldown_unarmed(self, tmp_path, embedder):
        service = make_service(tmp_path, embedder, RuntimeError("quota"))

        async with service.session("anon:1") as session:
            assert await service.capture(session, "My daughter is Mia", now=1000.0) is None
            assert session.bank.last_capture_at == 0.0

            # The next message is not held back by the failed attempt
            assert await service.capture(session, "My daughter is Mia", now=1001.0) is None

        assert len(service.completion_calls) == 2
        bank, _ = await service.load("anon:1")
        assert bank.last_capture_at == 0.0

    @pytest.mark.asyncio
    async def test_cooldown_survives_reload(self, tmp_path, embedder):
        service = make_service(tmp_path, embedder)
        now = time.time()

        async with service.session("anon:1") as session:
            assert await service.capture(session, "Nice weather", now=now) is None

        async with service.session("anon:1") as session:
            assert await service.capture(session, "Still nice", now=now + 1) is None

        assert len(service.completion_calls) == 1

    @pytest.mark.asyncio
    async def test_empty_message_ignored(self, tmp_path, embedder):
        service = make_service(tmp_path, embedder)

        async with service.session("anon:1") as session:
            assert await service.capture(session, "  ") is None
            assert session.bank.last_capture_at == 0.0

        assert service.completion_calls == []


class TestStatsAndConfig:
    """Tests for statistics and environment configuration."""

    @pytest.mark.asyncio
    async def test_get_stats(self, tmp_path, embedder):
        service = make_service(tmp_path, embedder)
        async with service.session("anon:1") as session:
            await service.ingest(session, [MemoryCandidate("values", "Values honesty", 0.9)])

        stats = await service.get_stats("anon:1")

        assert stats["bank"]["count"] == 1
        assert stats["bank"]["by_tier"]["core"] == 1
        assert stats["vectors"]["count"] == 1
        assert stats["gate"]["global_in_use"] == 0
        assert "bank" not in await service.get_stats()

    def test_config_from_env(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("DATA_DIR", str(tmp_path / "state"))
        monkeypatch.setenv("MAX_MEM_ITEMS", "50")
        monkeypatch.setenv("MAX_RECALL_LINES", "4")
        monkeypatch.setenv("USER_CONCURRENCY", "2")
        monkeypatch.setenv("QUICK_CAPTURE_COOLDOWN_MS", "5000")
        monkeypatch.delenv("VECTOR_DIR", raising=False)

        config = MemoryConfig.from_env()

        assert config.bank_config.max_items == 50
        assert config.recall_config.max_lines == 4
        assert config.gate_config.identity_limit == 2
        assert config.extractor_config.cooldown_seconds == 5.0
        assert config.store_config.vector_dir == str(tmp_path / "state" / "vectors")

    def test_store_built_from_config(self, tmp_path, embedder):
        service = make_service(tmp_path, embedder)
        assert isinstance(service.store, JsonStateStore)
        assert service.store.data_dir == tmp_path
