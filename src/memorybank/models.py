"""Core data models for the memory bank."""

from __future__ import annotations

import json
import math
import re
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Permanence(str, Enum):
    """Retention tier of a fact."""
    CORE = "core"             # Never expires
    STICKY = "sticky"         # Long TTL
    EPHEMERAL = "ephemeral"   # Short TTL

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]

    @classmethod
    def parse(cls, value: Any) -> Permanence:
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.EPHEMERAL


_TIER_RANK = {
    Permanence.CORE: 3,
    Permanence.STICKY: 2,
    Permanence.EPHEMERAL: 1,
}


class Category(str, Enum):
    """What a fact is about."""
    PEOPLE = "people"
    GOALS = "goals"
    HABITS = "habits"
    PREFERENCES = "preferences"
    VALUES = "values"
    IDENTITY = "identity"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> Category:
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.OTHER


class Emotion(str, Enum):
    """Emotional tag attached to a fact."""
    NEUTRAL = "neutral"
    CALM = "calm"
    HOPEFUL = "hopeful"
    MOTIVATED = "motivated"
    GRATEFUL = "grateful"
    JOYFUL = "joyful"
    PROUD = "proud"
    TIRED = "tired"
    STRESSED = "stressed"
    ANXIOUS = "anxious"
    SAD = "sad"
    LONELY = "lonely"
    FRUSTRATED = "frustrated"
    ANGRY = "angry"
    CONFUSED = "confused"

    @classmethod
    def parse(cls, value: Any) -> Emotion:
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.NEUTRAL


_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: Any) -> str:
    """Trim, collapse whitespace and lower-case."""
    return _WHITESPACE.sub(" ", str(text or "").strip()).lower()


def make_key(category: Category | str, content: str) -> str:
    """Stable identity of a fact within a bank."""
    cat = category.value if isinstance(category, Category) else str(category)
    return f"{cat}::{normalize_text(content)}"


def clamp01(value: Any) -> float:
    try:
        x = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(x):
        return 0.0
    return max(0.0, min(1.0, x))


def clamp_int(value: Any, low: int, high: int) -> int:
    try:
        x = float(value)
    except (TypeError, ValueError):
        return low
    if not math.isfinite(x):
        return low
    # Half-up rounding, not banker's rounding
    return max(low, min(high, int(math.floor(x + 0.5))))


def _optional_float(value: Any) -> float | None:
    """Finite float, or None for missing, non-numeric, NaN and infinite values."""
    if value is None:
        return None
    try:
        x = float(value)
    except (TypeError, ValueError):
        return None
    return x if math.isfinite(x) else None


@dataclass
class MemoryItem:
    """A single retained fact about a user.

    Identity is the ``key`` (category plus normalized content), so repeated
    mentions of the same fact collapse into one item that gets reinforced.
    """
    key: str
    category: Category = Category.OTHER
    content: str = ""
    permanence: Permanence = Permanence.EPHEMERAL
    confidence: float = 0.0
    times_seen: int = 1
    created_at: float = field(default_factory=time.time)
    last_seen: float = field(default_factory=time.time)
    expires_at: float | None = None   # None = never expires
    emotion: Emotion = Emotion.NEUTRAL
    intensity: int = 1

    @property
    def tier_rank(self) -> int:
        return self.permanence.rank

    def is_expired(self, now: float | None = None) -> bool:
        """Core items never expire, whatever ``expires_at`` says."""
        if self.permanence is Permanence.CORE or self.expires_at is None:
            return False
        if now is None:
            now = time.time()
        return self.expires_at <= now

    def embedding_text(self) -> str:
        return f"{self.category.value}: {self.content}"

    def render(self) -> str:
        return f"- {self.content}"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for storage."""
        return {
            "key": self.key,
            "category": self.category.value,
            "content": self.content,
            "permanence": self.permanence.value,
            "confidence": self.confidence,
            "times_seen": self.times_seen,
            "created_at": self.created_at,
            "last_seen": self.last_seen,
            "expires_at": self.expires_at,
            "emotion": self.emotion.value,
            "intensity": self.intensity,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemoryItem:
        """Deserialize from dictionary, repairing out-of-range fields."""
        category = Category.parse(data.get("category"))
        content = str(data.get("content") or "").strip()
        permanence = Permanence.parse(data.get("permanence"))
        now = time.time()
        created_at = _optional_float(data.get("created_at")) or now
        expires_at = _optional_float(data.get("expires_at"))
        if permanence is Permanence.CORE:
            expires_at = None
        return cls(
            key=str(data.get("key") or make_key(category, content)),
            category=category,
            content=content,
            permanence=permanence,
            confidence=clamp01(data.get("confidence", 0.0)),
            times_seen=clamp_int(data.get("times_seen"), 1, sys.maxsize),
            created_at=created_at,
            last_seen=_optional_float(data.get("last_seen")) or created_at,
            expires_at=expires_at,
            emotion=Emotion.parse(data.get("emotion")),
            intensity=clamp_int(data.get("intensity", 1), 1, 3),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, json_str: str) -> MemoryItem:
        return cls.from_dict(json.loads(json_str))


def priority_key(item: MemoryItem) -> tuple[int, float, int]:
    """Keep-priority of an item: tier, then confidence, then times seen.

    Sort with reverse=True to get the most important items first. Pruning
    evicts from the tail of that order.
    """
    return (item.tier_rank, clamp01(item.confidence), item.times_seen or 0)


@dataclass
class MemoryCandidate:
    """A fact proposed for storage by the extraction model.

    Values are kept raw here; range repair happens on merge.
    """
    category: Any = "other"
    content: str = ""
    confidence: Any = 0.85
    emotion: Any = "neutral"
    intensity: Any = 1

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemoryCandidate:
        return cls(
            category=data.get("category", "other"),
            content=str(data.get("content") or ""),
            confidence=data.get("confidence", 0.85),
            emotion=data.get("emotion", "neutral"),
            intensity=data.get("intensity", 1),
        )
