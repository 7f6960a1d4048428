"""Embedder - Turns fact and query text into vectors.

Uses the Ollama Python library for embedding generation. Every failure is
reported as ``None`` so that callers can degrade to non-semantic recall.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable

import ollama

logger = logging.getLogger(__name__)


@dataclass
class EncoderConfig:
    """Configuration for the embedding provider."""
    embedding_model: str = "bge-m3:latest"
    ollama_host: str | None = None  # None = default localhost:11434
    ollama_timeout: float = 30.0
    max_content_length: int = 8000


class EmbeddingProvider(ABC):
    """Contract for anything that can embed text.

    Implementations must not raise: any failure returns None.
    """

    @abstractmethod
    async def embed(self, text: str) -> list[float] | None:
        """Embed a single text."""
        pass


def coerce_vector(value: object) -> list[float] | None:
    """Return a non-empty list of floats, or None if ``value`` isn't one."""
    if not isinstance(value, (list, tuple)) or not value:
        return None
    try:
        return [float(x) for x in value]
    except (TypeError, ValueError):
        return None


class Embedder(EmbeddingProvider):
    """Ollama-backed embedding provider.

    An async callback can be set to replace Ollama entirely (useful for
    hosted embedding APIs and for tests).
    """

    def __init__(self, config: EncoderConfig | None = None):
        self.config = config or EncoderConfig()
        self._client: ollama.AsyncClient | None = None
        self._embed_callback: Callable[[str], Awaitable[list[float] | None]] | None = None

    def set_embed_callback(self, callback: Callable[[str], Awaitable[list[float] | None]]) -> None:
        """Set external embedding callback (overrides Ollama)."""
        self._embed_callback = callback

    def _get_client(self) -> ollama.AsyncClient:
        if self._client is None:
            self._client = ollama.AsyncClient(
                host=self.config.ollama_host,
                timeout=self.config.ollama_timeout,
            )
        return self._client

    async def embed(self, text: str) -> list[float] | None:
        content = str(text or "").strip()[:self.config.max_content_length]
        if not content:
            return None

        if self._embed_callback:
            try:
                return coerce_vector(await self._embed_callback(content))
            except Exception as e:
                logger.warning("Embedding callback failed: %s", e)
                return None

        return await self._ollama_embed(content)

    async def _ollama_embed(self, content: str) -> list[float] | None:
        try:
            response = await self._get_client().embed(
                model=self.config.embedding_model,
                input=content,
            )
        except Exception as e:
            logger.warning("Ollama embedding error: %s", e)
            return None

        if response and "embeddings" in response and response["embeddings"]:
            return coerce_vector(response["embeddings"][0])
        return None

    def get_provider_info(self) -> dict:
        return {
            "provider": "callback" if self._embed_callback else "ollama",
            "model": self.config.embedding_model,
            "host": self.config.ollama_host or "localhost:11434",
        }
