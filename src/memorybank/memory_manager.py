"""MemoryService - Main entry point for the memory bank.

Runs the per-request cycle for one identity:

    admit (gate) -> load -> prune -> recall -> merge candidates -> save -> release

and exposes each step on its own for callers that drive the cycle
themselves (while holding the identity's permit).
"""

from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Iterable

from dotenv import load_dotenv

from memorybank.concurrency import ConcurrencyGate, GateConfig
from memorybank.models import MemoryCandidate, MemoryItem, Permanence
from memorybank.operators import (
    Embedder,
    EmbeddingProvider,
    EncoderConfig,
    ExtractorConfig,
    FactExtractor,
    PermanencePolicy,
    PolicyConfig,
    RecallConfig,
    RecallEngine,
)
from memorybank.storage import (
    BankConfig,
    JsonStateStore,
    MemoryBank,
    StateStore,
    StoreConfig,
    VectorCache,
    VectorCacheConfig,
)

logger = logging.getLogger(__name__)


@dataclass
class MemoryConfig:
    """Master configuration for the memory bank."""
    bank_config: BankConfig | None = None
    policy_config: PolicyConfig | None = None
    cache_config: VectorCacheConfig | None = None
    recall_config: RecallConfig | None = None
    gate_config: GateConfig | None = None
    store_config: StoreConfig | None = None
    encoder_config: EncoderConfig | None = None
    extractor_config: ExtractorConfig | None = None

    # Warm the vector cache for sticky/core facts as they are merged
    embed_on_merge: bool = True

    @classmethod
    def from_env(cls) -> MemoryConfig:
        """Load configuration from environment variables (and .env)."""
        load_dotenv()

        data_dir = os.getenv("DATA_DIR", os.path.join(os.getcwd(), "data"))
        cooldown_ms = float(os.getenv("QUICK_CAPTURE_COOLDOWN_MS", "20000"))

        return cls(
            bank_config=BankConfig(
                max_items=int(os.getenv("MAX_MEM_ITEMS", "350")),
            ),
            cache_config=VectorCacheConfig(
                max_entries=int(os.getenv("MAX_VECTOR_ITEMS", "2000")),
            ),
            recall_config=RecallConfig(
                max_lines=int(os.getenv("MAX_RECALL_LINES", "12")),
                embed_sample_size=int(os.getenv("MAX_EMBED_ITEMS", "120")),
            ),
            gate_config=GateConfig(
                global_limit=int(os.getenv("GLOBAL_CONCURRENCY", "10")),
                identity_limit=int(os.getenv("USER_CONCURRENCY", "1")),
            ),
            store_config=StoreConfig(
                data_dir=data_dir,
                vector_dir=os.getenv("VECTOR_DIR") or os.path.join(data_dir, "vectors"),
            ),
            encoder_config=EncoderConfig(
                embedding_model=os.getenv("EMBED_MODEL", "bge-m3:latest"),
                ollama_host=os.getenv("OLLAMA_HOST") or None,
            ),
            extractor_config=ExtractorConfig(
                model=os.getenv("CHAT_MODEL", "gpt-4o-mini"),
                cooldown_seconds=cooldown_ms / 1000.0,
            ),
        )


@dataclass
class MemorySession:
    """One identity's loaded state, valid while its permit is held."""
    identity: str
    bank: MemoryBank
    cache: VectorCache
    merged: list[MemoryItem] = field(default_factory=list)
    pruned: list[MemoryItem] = field(default_factory=list)


class MemoryService:
    """High-level API over bank, cache, recall, store and gate.

    Usage:
        service = MemoryService(MemoryConfig.from_env())

        async with service.session("anon:abc") as session:
            context = await service.prepare_context(session, user_message)
            # ... generate the reply with `context` ...
            await service.capture(session, user_message)
    """

    def __init__(
        self,
        config: MemoryConfig | None = None,
        store: StateStore | None = None,
        embedder: EmbeddingProvider | None = None,
        gate: ConcurrencyGate | None = None,
        extractor: FactExtractor | None = None,
    ):
        self.config = config or MemoryConfig()

        self.policy = PermanencePolicy(self.config.policy_config or PolicyConfig())
        self.embedder = embedder if embedder is not None else Embedder(
            self.config.encoder_config or EncoderConfig()
        )
        self.store = store or JsonStateStore(
            self.config.store_config or StoreConfig(),
            bank_config=self.config.bank_config or BankConfig(),
            cache_config=self.config.cache_config or VectorCacheConfig(),
            policy=self.policy,
        )
        self.gate = gate or ConcurrencyGate(self.config.gate_config or GateConfig())
        self.recall_engine = RecallEngine(self.embedder, self.config.recall_config or RecallConfig())
        self.extractor = extractor or FactExtractor(self.config.extractor_config or ExtractorConfig())

    # ==================== Session ====================

    @asynccontextmanager
    async def session(self, identity: str) -> AsyncIterator[MemorySession]:
        """Hold the identity's permit, load and prune its state, save on success.

        If the block raises, nothing is saved and the permits are still
        released.
        """
        async with self.gate.hold(identity):
            bank, cache = await self.load(identity)
            pruned = self.prune(bank)
            session = MemorySession(identity=identity, bank=bank, cache=cache, pruned=pruned)
            yield session
            await self.save(identity, bank, cache)
            if session.merged:
                logger.info("Saved %d merged memories for %s", len(session.merged), identity)

    # ==================== Core API ====================

    async def load(self, identity: str) -> tuple[MemoryBank, VectorCache]:
        return await self.store.load(identity)

    def prune(self, bank: MemoryBank, now: float | None = None) -> list[MemoryItem]:
        return bank.prune(now)

    async def recall(
        self,
        bank: MemoryBank,
        cache: VectorCache,
        query: str,
        max_lines: int | None = None,
        now: float | None = None,
    ) -> list[str]:
        return await self.recall_engine.recall(bank, cache, query, max_lines, now)

    async def merge(
        self,
        bank: MemoryBank,
        cache: VectorCache,
        candidate: MemoryCandidate,
        now: float | None = None,
    ) -> MemoryItem | None:
        """Merge a candidate and warm its embedding if it is worth keeping."""
        item = bank.merge(
            candidate.category,
            candidate.content,
            candidate.confidence,
            candidate.emotion,
            candidate.intensity,
            now=now,
        )
        if item is None:
            return None

        if self.config.embed_on_merge and item.permanence is not Permanence.EPHEMERAL:
            await cache.ensure_embedding(item, self.embedder)
        return item

    async def save(self, identity: str, bank: MemoryBank, cache: VectorCache) -> None:
        await self.store.save(identity, bank, cache)

    # ==================== Conversation helpers ====================

    async def prepare_context(
        self,
        session: MemorySession,
        query: str,
        max_lines: int | None = None,
    ) -> str:
        """Recall lines for ``query`` and join them into a prompt block."""
        lines = await self.recall(session.bank, session.cache, query, max_lines)
        return self.recall_engine.format_context(lines)

    async def ingest(
        self,
        session: MemorySession,
        candidates: Iterable[MemoryCandidate],
        now: float | None = None,
    ) -> list[MemoryItem]:
        """Merge externally extracted candidates into the session's bank."""
        merged = []
        for candidate in candidates:
            item = await self.merge(session.bank, session.cache, candidate, now)
            if item is not None:
                merged.append(item)
        session.merged.extend(merged)
        return merged

    async def capture(
        self,
        session: MemorySession,
        message: str,
        now: float | None = None,
    ) -> MemoryItem | None:
        """Ask the extraction model for a fact in ``message`` and merge it.

        Rate-limited per identity by the extractor's cooldown, which starts
        once the model has answered. A failed call leaves it unarmed.
        """
        if now is None:
            now = time.time()
        if not str(message or "").strip():
            return None
        if self.extractor.cooldown_active(session.bank.last_capture_at, now):
            return None

        reply = await self.extractor.ask(message)
        if reply is None:
            return None
        session.bank.last_capture_at = now

        candidate = self.extractor.parse_response(reply)
        if candidate is None:
            return None

        merged = await self.ingest(session, [candidate], now)
        return merged[0] if merged else None

    # ==================== Statistics ====================

    async def get_stats(self, identity: str | None = None) -> dict[str, Any]:
        """Gate statistics, plus the identity's state if one is given.

        Reading an identity's state takes its permit.
        """
        result: dict[str, Any] = {"gate": self.gate.get_stats()}
        if identity is None:
            return result

        async with self.gate.hold(identity):
            bank, cache = await self.load(identity)
        result["bank"] = bank.get_stats()
        result["vectors"] = cache.get_stats()
        return result
