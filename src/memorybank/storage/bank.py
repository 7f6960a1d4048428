"""MemoryBank - Per-identity collection of retained facts.

Holds at most one item per key. Items are reinforced on re-observation,
expire by TTL (except core) and are evicted lowest-priority first when the
bank grows past its cap.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Iterator

from memorybank.models import (
    Category,
    Emotion,
    MemoryItem,
    Permanence,
    clamp01,
    clamp_int,
    make_key,
    priority_key,
)
from memorybank.operators.policy import PermanencePolicy

logger = logging.getLogger(__name__)


@dataclass
class BankConfig:
    """Configuration for a memory bank."""
    max_items: int = 350    # Cap enforced by prune()


class MemoryBank:
    """Ordered set of MemoryItems owned by a single identity.

    Order is only meaningful right after prune(), which sorts by
    (tier, confidence, times_seen) descending.
    """

    def __init__(
        self,
        items: list[MemoryItem] | None = None,
        config: BankConfig | None = None,
        policy: PermanencePolicy | None = None,
        last_capture_at: float = 0.0,
    ):
        self.config = config or BankConfig()
        self.policy = policy or PermanencePolicy()
        self.last_capture_at = last_capture_at
        self._items: dict[str, MemoryItem] = {}
        for item in items or []:
            # Later duplicates of a key lose to the first one
            self._items.setdefault(item.key, item)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __iter__(self) -> Iterator[MemoryItem]:
        return iter(list(self._items.values()))

    def items(self) -> list[MemoryItem]:
        return list(self._items.values())

    def get(self, key: str) -> MemoryItem | None:
        return self._items.get(key)

    def is_valid(self, item: MemoryItem, now: float | None = None) -> bool:
        """Has content and is either core or not yet expired."""
        return bool(item.content) and not item.is_expired(now)

    def valid_items(self, now: float | None = None) -> list[MemoryItem]:
        if now is None:
            now = time.time()
        return [m for m in self._items.values() if self.is_valid(m, now)]

    # ==================== Mutation ====================

    def merge(
        self,
        category: Any,
        content: Any,
        confidence: Any = 0.85,
        emotion: Any = "neutral",
        intensity: Any = 1,
        now: float | None = None,
    ) -> MemoryItem | None:
        """Insert a new fact or reinforce the existing one with the same key.

        Out-of-range inputs are repaired, not rejected. Returns None only
        when the content is empty.
        """
        text = str(content or "").strip()
        if not text:
            return None
        if now is None:
            now = time.time()

        cat = Category.parse(category)
        conf = clamp01(confidence)
        emo = Emotion.parse(emotion)
        inten = clamp_int(intensity, 1, 3)
        key = make_key(cat, text)

        item = self._items.get(key)
        if item is None:
            permanence = self.policy.initial_permanence(cat, text)
            item = MemoryItem(
                key=key,
                category=cat,
                content=text,
                permanence=permanence,
                confidence=conf,
                times_seen=1,
                created_at=now,
                last_seen=now,
                expires_at=self.policy.expires_at(permanence, now),
                emotion=emo,
                intensity=inten,
            )
            self._items[key] = item
            logger.debug("New %s memory %s", permanence.value, key)
            return item

        item.times_seen = (item.times_seen or 0) + 1
        item.last_seen = now
        item.confidence = self.policy.reinforce_confidence(clamp01(item.confidence), conf)
        promoted = self.policy.promote(item.permanence, item.times_seen)
        if promoted is not item.permanence:
            logger.debug("Promoted %s: %s -> %s", key, item.permanence.value, promoted.value)
        item.permanence = promoted
        item.expires_at = self.policy.expires_at(item.permanence, now)

        # Neutral tags always yield; a strong tag only yields to one at least as strong
        if item.emotion is Emotion.NEUTRAL:
            item.emotion = emo
            item.intensity = inten
        elif emo is not Emotion.NEUTRAL and inten >= (item.intensity or 1):
            item.emotion = emo
            item.intensity = inten

        return item

    def prune(self, now: float | None = None) -> list[MemoryItem]:
        """Drop expired/empty items, reorder by priority and cap the size.

        Returns the removed items.
        """
        if now is None:
            now = time.time()

        kept: list[MemoryItem] = []
        removed: list[MemoryItem] = []
        for item in self._items.values():
            if self.is_valid(item, now):
                kept.append(item)
            else:
                removed.append(item)

        kept.sort(key=priority_key, reverse=True)
        if len(kept) > self.config.max_items:
            removed.extend(kept[self.config.max_items:])
            kept = kept[:self.config.max_items]

        self._items = {item.key: item for item in kept}

        if removed:
            logger.debug("Pruned %d memories, %d remain", len(removed), len(kept))
        return removed

    # ==================== Serialization ====================

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self._items.values()],
            "meta": {"last_capture_at": self.last_capture_at},
        }

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        config: BankConfig | None = None,
        policy: PermanencePolicy | None = None,
    ) -> MemoryBank:
        """Build a bank from its stored form, skipping malformed items."""
        raw_items = data.get("items")
        if not isinstance(raw_items, list):
            raw_items = []

        items = []
        for raw in raw_items:
            if not isinstance(raw, dict):
                continue
            try:
                item = MemoryItem.from_dict(raw)
            except (TypeError, ValueError, OverflowError) as e:
                logger.warning("Skipping malformed memory item: %s", e)
                continue
            if item.permanence is not Permanence.CORE and item.expires_at is None:
                # Unusable stored expiry: re-anchor at the last observation
                item.expires_at = (policy or PermanencePolicy()).expires_at(item.permanence, item.last_seen)
            items.append(item)

        meta = data.get("meta") if isinstance(data.get("meta"), dict) else {}
        try:
            last_capture_at = float(meta.get("last_capture_at") or 0.0)
        except (TypeError, ValueError):
            last_capture_at = 0.0
        if not math.isfinite(last_capture_at):
            last_capture_at = 0.0

        return cls(items, config=config, policy=policy, last_capture_at=last_capture_at)

    # ==================== Statistics ====================

    def get_stats(self, now: float | None = None) -> dict[str, Any]:
        """Get statistics about the bank."""
        items = list(self._items.values())
        by_tier = {p.value: 0 for p in Permanence}
        for item in items:
            by_tier[item.permanence.value] += 1

        if not items:
            return {
                "count": 0,
                "capacity": self.config.max_items,
                "usage_percent": 0.0,
                "by_tier": by_tier,
                "expired": 0,
                "avg_confidence": 0.0,
            }

        confidences = [clamp01(m.confidence) for m in items]
        return {
            "count": len(items),
            "capacity": self.config.max_items,
            "usage_percent": len(items) / self.config.max_items * 100,
            "by_tier": by_tier,
            "expired": sum(1 for m in items if not self.is_valid(m, now)),
            "avg_confidence": sum(confidences) / len(confidences),
        }
