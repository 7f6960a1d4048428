"""Operators for the memory bank: retention policy, embedding, recall, capture."""

from memorybank.operators.policy import PermanencePolicy, PolicyConfig
from memorybank.operators.encoder import (
    Embedder,
    EmbeddingProvider,
    EncoderConfig,
)
from memorybank.operators.recall import RecallEngine, RecallConfig, cosine_similarity
from memorybank.operators.extractor import FactExtractor, ExtractorConfig

__all__ = [
    "PermanencePolicy",
    "PolicyConfig",
    "Embedder",
    "EmbeddingProvider",
    "EncoderConfig",
    "RecallEngine",
    "RecallConfig",
    "cosine_similarity",
    "FactExtractor",
    "ExtractorConfig",
]
