"""Anaphora resolution against recent context entries.

"close that" after "open chrome" becomes close_app(app=chrome); "try again"
re-issues the last failed turn. Resolved intents keep the pattern's
confidence scaled by ``decay ** age`` where age 0 is the newest entry.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Mapping, Optional

from atlas.nlu.types import SOURCE_ANAPHORA, EntityKind, Intent

if TYPE_CHECKING:
    from atlas.memory.context_store import ContextEntry, ContextStore

logger = logging.getLogger(__name__)

# Confidence for an anaphor that nothing in context can satisfy.
UNRESOLVED_CONFIDENCE = 0.3

# Turns that are never worth repeating.
_NOT_REPEATABLE = frozenset({
    "repeat", "undo", "undo_item", "undo_history", "help", "greeting", "feedback",
    "confirmation_reply", "cancel", "unknown",
})


class AnaphoraResolver:
    def __init__(self, decay: float = 0.85, lookback: int = 5):
        if not 0.0 < decay <= 1.0:
            raise ValueError("decay must be in (0, 1]")
        self.decay = decay
        self.lookback = max(1, lookback)

    def scale(self, confidence: float, age: int) -> float:
        return round(confidence * (self.decay ** age), 6)

    def resolve_entities(
        self,
        intent_name: str,
        entities: Mapping[str, str],
        anaphoric_groups: Mapping[str, tuple[EntityKind, ...]],
        context: Optional[ContextStore],
        *,
        base_confidence: float = 1.0,
    ) -> Intent:
        """Substitute pronoun entities; drop the ones that cannot be resolved."""
        resolved = dict(entities)
        oldest_age = 0
        unresolved = False
        for group, kinds in anaphoric_groups.items():
            hit = context.find_reference(kinds, lookback=self.lookback) if context else None
            if hit is None:
                logger.debug("[Anaphora] no %s in context for %r", "/".join(k.value for k in kinds), group)
                resolved.pop(group, None)
                unresolved = True
                continue
            value, age = hit
            logger.debug("[Anaphora] %s: %r -> %r (age %d)", intent_name, entities.get(group), value, age)
            resolved[group] = value
            oldest_age = max(oldest_age, age)

        confidence = UNRESOLVED_CONFIDENCE if unresolved else self.scale(base_confidence, oldest_age)
        return Intent(
            name=intent_name,
            entities=resolved,
            confidence=confidence,
            is_anaphoric=True,
            source=SOURCE_ANAPHORA,
        )

    def resolve_repeat(self, mode: str, context: Optional[ContextStore]) -> Intent:
        """Re-issue a previous turn's intent ("again", "try again")."""
        want_failed = mode == "failed"

        def matches(entry: ContextEntry) -> bool:
            if entry.resolved_intent.name in _NOT_REPEATABLE:
                return False
            return entry.failed if want_failed else True

        hit = context.find_entry(matches, lookback=self.lookback) if context else None
        if hit is None and want_failed and context is not None:
            # Nothing failed recently: "try again" falls back to the last action.
            hit = context.find_entry(
                lambda e: e.resolved_intent.name not in _NOT_REPEATABLE,
                lookback=self.lookback,
            )
        if hit is None:
            return Intent(
                name="repeat",
                entities={"mode": mode},
                confidence=UNRESOLVED_CONFIDENCE,
                is_anaphoric=True,
                source=SOURCE_ANAPHORA,
            )

        entry, age = hit
        previous = entry.resolved_intent
        logger.debug("[Anaphora] repeating %s from %d turn(s) ago", previous.name, age)
        return Intent(
            name=previous.name,
            entities=dict(previous.entities),
            confidence=self.scale(previous.confidence, age),
            is_anaphoric=True,
            missing_capability=previous.missing_capability,
            source=SOURCE_ANAPHORA,
        )
