"""Shared fixtures for memory bank tests.

No network: embeddings come from a keyword-count embedder and the
extraction model is replaced by canned completions.
"""

import pytest

from memorybank.operators.encoder import EmbeddingProvider

VOCAB = ("coffee", "tea", "running", "daughter", "jazz", "work", "sleep", "python")


class KeywordEmbedder(EmbeddingProvider):
    """Deterministic embedder: one dimension per vocabulary word."""

    def __init__(self, fail_on: tuple[str, ...] = ()):
        self.calls: list[str] = []
        self.fail_on = fail_on

    async def embed(self, text: str) -> list[float] | None:
        self.calls.append(text)
        lowered = text.lower()
        if any(marker in lowered for marker in self.fail_on):
            return None
        return [float(lowered.count(word)) for word in VOCAB]


class FailingEmbedder(EmbeddingProvider):
    """Embedder whose provider is down."""

    def __init__(self):
        self.calls = 0

    async def embed(self, text: str) -> list[float] | None:
        self.calls += 1
        return None


@pytest.fixture
def embedder():
    return KeywordEmbedder()


@pytest.fixture
def failing_embedder():
    return FailingEmbedder()


@pytest.fixture
def embedder_factory():
    """Build keyword embedders that fail for texts containing given markers."""
    def make(*fail_on: str) -> KeywordEmbedder:
        return KeywordEmbedder(fail_on=fail_on)
    return make
