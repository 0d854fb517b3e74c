"""Fallback intent guessers.

Used only after commands, patterns and anaphora have all failed. Each
guesser returns its own calibrated confidence; the deterministic rules
always score 1.0, so a guess never outranks a real match.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterable, Mapping, Optional, Protocol

from atlas.llm.base import LLMClient, LLMClientError, LLMMessage
from atlas.nlu.types import SOURCE_FALLBACK, SOURCE_LLM, Intent

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"[a-z0-9']+")


class IntentGuesser(Protocol):
    def guess(self, text: str) -> Optional[Intent]:
        ...


class KeywordGuesser:
    """Scores intents by keyword hits.

    score = base
          + prefix_bonus  (first word is a keyword)
          + 0.05 per extra hit, up to multi_hit_cap
          + short_bonus   (4 words or fewer)
    capped at ``ceiling``.
    """

    def __init__(
        self,
        keywords: Mapping[str, Iterable[str]],
        *,
        base: float = 0.35,
        prefix_bonus: float = 0.1,
        multi_hit_cap: float = 0.15,
        short_bonus: float = 0.05,
        ceiling: float = 0.7,
    ):
        self._keywords = {intent: frozenset(words) for intent, words in keywords.items()}
        self.base = base
        self.prefix_bonus = prefix_bonus
        self.multi_hit_cap = multi_hit_cap
        self.short_bonus = short_bonus
        self.ceiling = ceiling

    def score(self, intent: str, words: list[str]) -> float:
        vocab = self._keywords.get(intent, frozenset())
        hits = [w for w in words if w in vocab]
        if not hits:
            return 0.0
        score = self.base
        if words[0] in vocab:
            score += self.prefix_bonus
        score += min(self.multi_hit_cap, 0.05 * (len(hits) - 1))
        if len(words) <= 4:
            score += self.short_bonus
        return round(min(score, self.ceiling), 4)

    def guess(self, text: str) -> Optional[Intent]:
        words = _WORD_RE.findall(text.lower())
        if not words:
            return None
        best_name: Optional[str] = None
        best_score = 0.0
        for name in self._keywords:
            s = self.score(name, words)
            if s > best_score:
                best_name, best_score = name, s
        if best_name is None:
            return None
        logger.debug("[Guesser] keyword guess %s=%.2f for %r", best_name, best_score, text)
        return Intent(name=best_name, confidence=best_score, source=SOURCE_FALLBACK)


SYSTEM_PROMPT = """You classify desktop assistant commands.
Reply with one JSON object and nothing else:
{"intent": "<one of the allowed intents>", "confidence": <0.0-1.0>, "entities": {"<key>": "<value>"}}
Entity keys: app, target, source, destination, folder, query, platform, location, action, count, software, message.
Use "conversation" when the user is just chatting or asking a question.
Allowed intents: """


class LLMIntentGuesser:
    """Asks an LLM for an intent when the keyword guess is weak.

    Backend errors and unparseable replies count as "no guess".
    """

    def __init__(
        self,
        client: LLMClient,
        intents: Iterable[str],
        *,
        fallback: Optional[IntentGuesser] = None,
        consult_below: float = 0.8,
        max_confidence: float = 0.9,
    ):
        self.client = client
        self.intents = tuple(sorted(set(intents) | {"conversation"}))
        self.fallback = fallback
        self.consult_below = consult_below
        self.max_confidence = max_confidence

    def guess(self, text: str) -> Optional[Intent]:
        local = self.fallback.guess(text) if self.fallback else None
        if local is not None and local.confidence >= self.consult_below:
            return local

        remote = self._ask(text)
        if remote is None:
            return local
        if local is None or remote.confidence > local.confidence:
            return remote
        return local

    def _ask(self, text: str) -> Optional[Intent]:
        messages = [
            LLMMessage(role="system", content=SYSTEM_PROMPT + ", ".join(self.intents)),
            LLMMessage(role="user", content=text),
        ]
        try:
            response = self.client.chat(messages, temperature=0.0, max_tokens=200)
        except LLMClientError as e:
            logger.warning("[Guesser] LLM unavailable, skipping: %s", e)
            return None

        data = extract_json(response)
        if not data:
            logger.debug("[Guesser] no JSON in LLM reply: %r", response[:200])
            return None

        name = str(data.get("intent") or "").strip().lower().replace(" ", "_")
        if name not in self.intents:
            logger.debug("[Guesser] LLM proposed unknown intent %r", name)
            return None
        try:
            confidence = float(data.get("confidence", 0.5))
        except (TypeError, ValueError):
            confidence = 0.5
        confidence = max(0.0, min(confidence, self.max_confidence))
        entities = data.get("entities") or {}
        if not isinstance(entities, dict):
            entities = {}
        entities = {str(k): str(v) for k, v in entities.items() if v not in (None, "")}
        if name == "conversation":
            entities.setdefault("message", text)
        return Intent(name=name, entities=entities, confidence=confidence, source=SOURCE_LLM)


def extract_json(text: str) -> Optional[dict[str, Any]]:
    """Extract the first JSON object from an LLM reply (fences tolerated)."""
    text = (text or "").strip()
    if text.startswith("```"):
        text = re.sub(r"^```[a-zA-Z]*\s*|\s*```$", "", text)
    try:
        data = json.loads(text)
        return data if isinstance(data, dict) else None
    except json.JSONDecodeError:
        pass

    for pattern in (r"\{[^{}]*\{[^{}]*\}[^{}]*\}", r"\{[^{}]*\}"):
        for match in re.findall(pattern, text, re.DOTALL):
            try:
                data = json.loads(match)
            except json.JSONDecodeError:
                continue
            if isinstance(data, dict):
                return data
    return None
