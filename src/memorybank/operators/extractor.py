"""LLM-driven fact capture.

Asks a chat model whether a user message contains a durable fact about the
user and turns its JSON answer into a MemoryCandidate. The model only
proposes; structural validation and range repair happen here and in
MemoryBank.merge.
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from litellm import acompletion

from memorybank.models import MemoryCandidate, clamp01

logger = logging.getLogger(__name__)


CAPTURE_PROMPT = """You decide whether a user's message contains a durable fact about the user worth remembering.

Store only stable, personal facts: people in their life, goals, habits, preferences, values, identity.
Do not store small talk, questions, or passing moods.

Return JSON only, no prose:
{{
  "store": true or false,
  "category": "people|goals|habits|preferences|values|identity|other",
  "content": "one short factual sentence about the user",
  "confidence": 0.0 to 1.0,
  "emotion": "neutral|calm|hopeful|motivated|grateful|joyful|proud|tired|stressed|anxious|sad|lonely|frustrated|angry|confused",
  "intensity": 1 to 3
}}

Message:
{message}"""


CompletionFn = Callable[[list[dict[str, str]]], Awaitable[str]]


@dataclass
class ExtractorConfig:
    """Configuration for fact capture."""
    model: str = "gpt-4o-mini"
    temperature: float = 0.0
    max_tokens: int = 140
    max_message_chars: int = 600
    min_confidence: float = 0.6
    default_confidence: float = 0.85
    cooldown_seconds: float = 20.0


class FactExtractor:
    """Extracts memory candidates from user messages.

    Uses LiteLLM by default; a completion callable can be injected instead.
    Never raises: model or parse failures yield no candidates.
    """

    def __init__(
        self,
        config: ExtractorConfig | None = None,
        complete: CompletionFn | None = None,
    ):
        self.config = config or ExtractorConfig()
        self._complete = complete or self._litellm_complete

    async def _litellm_complete(self, messages: list[dict[str, str]]) -> str:
        response = await acompletion(
            model=self.config.model,
            messages=messages,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
        )
        return response.choices[0].message.content or ""

    def cooldown_active(self, last_capture_at: float, now: float | None = None) -> bool:
        if now is None:
            now = time.time()
        return now - (last_capture_at or 0.0) < self.config.cooldown_seconds

    async def ask(self, message: str) -> str | None:
        """Send the capture prompt for ``message`` and return the raw reply.

        Returns None when there is nothing to ask or the call failed, and a
        string (possibly empty) whenever the model answered.
        """
        text = str(message or "").strip()[:self.config.max_message_chars]
        if not text:
            return None

        prompt = CAPTURE_PROMPT.format(message=text)
        try:
            raw = await self._complete([{"role": "user", "content": prompt}])
        except Exception as e:
            logger.warning("Fact capture call failed: %s", e)
            return None
        return raw or ""

    async def extract(self, message: str) -> MemoryCandidate | None:
        """Ask the model for a candidate fact in ``message``."""
        reply = await self.ask(message)
        if reply is None:
            return None
        return self.parse_response(reply)

    def parse_response(self, response: str) -> MemoryCandidate | None:
        """Parse the model's JSON answer into a candidate, or None."""
        data = _load_json_object(response)
        if data is None or data.get("store") is not True:
            return None

        content = data.get("content")
        if not isinstance(content, str) or not content.strip():
            return None

        candidate = MemoryCandidate(
            category=str(data.get("category") or "other").strip().lower(),
            content=content.strip(),
            confidence=clamp01(data.get("confidence", self.config.default_confidence)),
            emotion=data.get("emotion", "neutral"),
            intensity=data.get("intensity", 1),
        )
        if candidate.confidence < self.config.min_confidence:
            logger.debug("Dropping low-confidence candidate (%.2f)", candidate.confidence)
            return None
        return candidate


def _load_json_object(response: str) -> dict[str, Any] | None:
    """Pull a JSON object out of a reply, tolerating markdown fences."""
    match = re.search(r"```(?:json)?\s*(.*?)\s*```", response, re.DOTALL)
    json_str = match.group(1) if match else response.strip()
    try:
        data = json.loads(json_str)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None
