"""PermanencePolicy - Decides how long a fact is kept and how sure we are of it.

Covers the initial tier of a new fact, promotion on repeated mentions,
TTL per tier and the confidence creep applied on re-observation.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from memorybank.models import Category, Permanence, normalize_text

DAY_SECONDS = 86400.0


@dataclass
class PolicyConfig:
    """Configuration for retention behavior."""
    sticky_ttl_days: float = 180.0
    ephemeral_ttl_days: float = 14.0

    # Promotion thresholds on times_seen
    sticky_after: int = 2
    core_after: int = 4

    # Confidence creep on re-observation
    confidence_step: float = 0.05
    confidence_ceiling: float = 0.98

    core_categories: frozenset[Category] = frozenset(
        {Category.IDENTITY, Category.VALUES, Category.PEOPLE}
    )
    sticky_categories: frozenset[Category] = frozenset(
        {Category.GOALS, Category.HABITS, Category.PREFERENCES}
    )
    family_phrases: tuple[str, ...] = field(
        default_factory=lambda: ("my daughter", "my son", "my wife", "my husband")
    )
    goal_phrases: tuple[str, ...] = field(
        default_factory=lambda: ("working on", "my goal")
    )


class PermanencePolicy:
    """Tier and TTL rules for memory items.

    All rules are cheap string and integer checks; nothing here calls a model.
    """

    def __init__(self, config: PolicyConfig | None = None):
        self.config = config or PolicyConfig()

    def initial_permanence(self, category: Category, content: str) -> Permanence:
        """Pick the tier for a fact seen for the first time."""
        if category in self.config.core_categories:
            return Permanence.CORE
        if category in self.config.sticky_categories:
            return Permanence.STICKY

        text = normalize_text(content)
        if any(phrase in text for phrase in self.config.family_phrases):
            return Permanence.CORE
        if any(phrase in text for phrase in self.config.goal_phrases):
            return Permanence.STICKY

        return Permanence.EPHEMERAL

    def promote(self, permanence: Permanence, times_seen: int) -> Permanence:
        """Upgrade a tier based on how often the fact was seen. Never demotes."""
        if permanence is Permanence.CORE:
            return permanence
        if times_seen >= self.config.core_after:
            return Permanence.CORE
        if times_seen >= self.config.sticky_after:
            return Permanence.STICKY
        return permanence

    def ttl_seconds(self, permanence: Permanence) -> float | None:
        if permanence is Permanence.CORE:
            return None
        if permanence is Permanence.STICKY:
            return self.config.sticky_ttl_days * DAY_SECONDS
        return self.config.ephemeral_ttl_days * DAY_SECONDS

    def expires_at(self, permanence: Permanence, last_seen: float) -> float | None:
        """Expiry is always anchored at the last observation."""
        ttl = self.ttl_seconds(permanence)
        return None if ttl is None else last_seen + ttl

    def reinforce_confidence(self, old: float, new: float) -> float:
        """Confidence after seeing a fact again.

        Creeps up by a small step even when the new observation is weaker,
        stops at the ceiling, and never drops below the stored value.
        """
        crept = min(
            self.config.confidence_ceiling,
            max(old, new, old + self.config.confidence_step),
        )
        return max(old, crept)
