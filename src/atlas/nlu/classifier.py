"""
Rule-first intent classification.

Stages, in order:
1. Zero-argument commands ("pause", "next", "mute") - exact or prefix+filler
2. Parametrized patterns ("play <query> on <platform>")
3. Anaphora resolution for pronoun arguments ("close that")
4. Fallback guesser with its own calibrated confidence

Classification is pure: it reads the ContextStore but never writes to it,
and the same utterance with the same context yields the same Intent.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from atlas.nlu.anaphora import AnaphoraResolver
from atlas.nlu.guessers import IntentGuesser, KeywordGuesser
from atlas.nlu.normalizer import Normalizer
from atlas.nlu.rules import (
    ANAPHORA_WORDS,
    FILLER_WORDS,
    NUMBER_WORDS,
    NUMERIC_MAX,
    POLITE_PREFIXES,
    POLITE_SUFFIXES,
    CommandRule,
    PatternRule,
    RuleTable,
    default_rule_table,
)
from atlas.nlu.types import (
    CONVERSATION_INTENT,
    SOURCE_COMMAND,
    SOURCE_FALLBACK,
    SOURCE_PATTERN,
    UNKNOWN_INTENT,
    EntityKind,
    Intent,
)

if TYPE_CHECKING:
    from atlas.memory.context_store import ContextStore

logger = logging.getLogger(__name__)

_SPACE_RE = re.compile(r"\s+")


@dataclass
class ClassifierConfig:
    """Classifier tuning knobs."""

    max_undo_count: int = 20
    anaphora_decay: float = 0.85
    anaphora_lookback: int = 5
    known_app_confidence: float = 0.9
    conversation_confidence: float = 0.5
    # Inclusive (low, high) clamps for numeric entities.
    numeric_limits: dict[str, tuple[int, int]] = field(default_factory=lambda: {
        "ordinal": (1, 1000),
        "level": (0, 100),
    })

    def limits_for(self, key: str) -> tuple[int, Optional[int]]:
        if key == "count":
            return 1, self.max_undo_count
        low, high = self.numeric_limits.get(key, (0, None))
        return low, high


class IntentClassifier:
    """Maps an utterance plus context to an Intent."""

    def __init__(
        self,
        rules: Optional[RuleTable] = None,
        *,
        normalizer: Optional[Normalizer] = None,
        guesser: Optional[IntentGuesser] = None,
        config: Optional[ClassifierConfig] = None,
    ):
        self.rules = rules or default_rule_table()
        self.normalizer = normalizer or Normalizer()
        self.config = config or ClassifierConfig()
        self.guesser = guesser if guesser is not None else KeywordGuesser(self.rules.keywords)
        self.resolver = AnaphoraResolver(
            decay=self.config.anaphora_decay,
            lookback=self.config.anaphora_lookback,
        )

    def classify(self, utterance: str, context: Optional[ContextStore] = None) -> Intent:
        text = self._strip_polite(self.normalizer.strip(utterance))
        typed = self._strip_polite(self.normalizer.clean(utterance))
        canonical = text.lower()
        if not canonical:
            return Intent(name=UNKNOWN_INTENT, confidence=0.0, source=SOURCE_FALLBACK)

        command = self._match_command(canonical)
        if command is not None:
            return self._from_command(command, context)

        for rule in self.rules.patterns:
            m = rule.match(text)
            if m is None:
                continue
            if typed != text and rule.preserve_case:
                # Paths and names come from what was typed, not the rewritten text.
                m = rule.match(typed) or m
            intent = self._from_pattern(rule, m, text, context)
            if intent is not None:
                logger.debug("[Classifier] %r matched %s -> %s", canonical, rule.name, intent.name)
                return intent

        if canonical in self.rules.known_apps:
            return Intent(
                name="open_app",
                entities={"app": canonical},
                confidence=self.config.known_app_confidence,
                source=SOURCE_PATTERN,
            )

        guess = self.guesser.guess(canonical) if self.guesser is not None else None
        if guess is not None:
            return guess

        logger.debug("[Classifier] no rule for %r, treating as conversation", canonical)
        return Intent(
            name=CONVERSATION_INTENT,
            entities={"message": text},
            confidence=self.config.conversation_confidence,
            source=SOURCE_FALLBACK,
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _match_command(self, canonical: str) -> Optional[CommandRule]:
        rule = self.rules.command_for(canonical)
        if rule is not None:
            return rule
        words = canonical.split(" ")
        for i in range(len(words) - 1, 0, -1):
            if all(w in FILLER_WORDS for w in words[i:]):
                rule = self.rules.command_for(" ".join(words[:i]))
                if rule is not None:
                    return rule
            else:
                break
        return None

    def _from_command(self, rule: CommandRule, context: Optional[ContextStore]) -> Intent:
        if rule.intent == "repeat":
            return self.resolver.resolve_repeat(rule.entities.get("mode", "last"), context)

        entities: dict[str, str] = {}
        for key, value in rule.entities.items():
            if key in ("count", "ordinal", "level"):
                number = self._parse_number(key, value)
                if number is None:
                    continue
                value = str(number)
            entities[key] = value
        return Intent(
            name=rule.intent,
            entities=entities,
            confidence=1.0,
            is_anaphoric=rule.is_anaphoric,
            missing_capability=rule.missing_capability,
            source=SOURCE_COMMAND,
        )

    def _from_pattern(
        self,
        rule: PatternRule,
        m: re.Match[str],
        text: str,
        context: Optional[ContextStore],
    ) -> Optional[Intent]:
        entities = dict(rule.entities)
        anaphoric: dict[str, tuple[EntityKind, ...]] = {}

        for group, raw in m.groupdict().items():
            if raw is None:
                continue
            value = _SPACE_RE.sub(" ", raw).strip()
            if not value:
                continue
            if group not in rule.preserve_case:
                value = value.lower()
            mapping = rule.value_maps.get(group)
            if mapping:
                value = mapping.get(value.lower(), value)

            if group in rule.numeric:
                number = self._parse_number(group, value)
                if number is None:
                    # Unmatched numeric text is absent, not zero.
                    continue
                value = str(number)
            elif group in rule.anaphora and value.lower() in ANAPHORA_WORDS:
                anaphoric[group] = rule.anaphora[group]
            entities[group] = value

        if rule.capture_text:
            entities[rule.capture_text] = text

        if anaphoric:
            return self.resolver.resolve_entities(rule.intent, entities, anaphoric, context)

        return Intent(
            name=rule.intent,
            entities=entities,
            confidence=1.0,
            missing_capability=rule.missing_capability,
            source=SOURCE_PATTERN,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _parse_number(self, key: str, raw: str) -> Optional[int]:
        low, high = self.config.limits_for(key)
        raw = raw.strip().lower()
        if raw == NUMERIC_MAX:
            return high
        if raw.isdigit():
            number = int(raw)
        elif raw in NUMBER_WORDS:
            number = NUMBER_WORDS[raw]
        else:
            return None
        if high is not None:
            number = min(number, high)
        return max(number, low)

    @staticmethod
    def _strip_polite(text: str) -> str:
        changed = True
        while changed and text:
            changed = False
            lower = text.lower()
            for prefix in POLITE_PREFIXES:
                if lower.startswith(prefix) and lower[len(prefix):len(prefix) + 1] in (" ", ","):
                    text = text[len(prefix) + 1:].lstrip(" ,")
                    changed = True
                    break
            lower = text.lower()
            for suffix in POLITE_SUFFIXES:
                if lower.endswith(" " + suffix):
                    text = text[: -(len(suffix) + 1)].rstrip(" ,")
                    changed = True
                    break
        return text
