"""
NLU type definitions.

- Intent: structured interpretation of one utterance
- ConfidenceLevel: coarse buckets over the numeric confidence score
- EntityKind: which context bucket an entity resolves against
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional


class ConfidenceLevel(Enum):
    """Confidence levels for intent classification."""

    CERTAIN = "certain"        # 1.0 - deterministic rule match
    HIGH = "high"              # 0.85-1.0 - recent anaphora, strong guess
    MEDIUM = "medium"          # 0.60-0.85
    LOW = "low"                # 0.50-0.60 - may need clarification
    VERY_LOW = "very_low"      # below 0.50

    @classmethod
    def from_score(cls, score: float) -> "ConfidenceLevel":
        if score >= 1.0:
            return cls.CERTAIN
        elif score >= 0.85:
            return cls.HIGH
        elif score >= 0.60:
            return cls.MEDIUM
        elif score >= 0.50:
            return cls.LOW
        return cls.VERY_LOW


class EntityKind(str, Enum):
    """Context buckets used for anaphora resolution."""

    APP = "apps"
    FILE = "files"
    FOLDER = "folders"
    QUERY = "queries"


# Classifier stage that produced an intent.
SOURCE_COMMAND = "command"
SOURCE_PATTERN = "pattern"
SOURCE_ANAPHORA = "anaphora"
SOURCE_FALLBACK = "fallback"
SOURCE_LLM = "llm"

TARGET_KEYS = ("target", "app", "source", "folder", "query", "software", "location")


@dataclass(frozen=True)
class Intent:
    """Immutable result of classifying one utterance."""

    name: str
    entities: Mapping[str, str] = field(default_factory=dict)
    confidence: float = 1.0
    is_anaphoric: bool = False
    missing_capability: Optional[str] = None
    source: str = SOURCE_COMMAND

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("intent name must be non-empty")
        if not 0.0 <= float(self.confidence) <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")
        clean = {str(k): str(v) for k, v in dict(self.entities).items()}
        object.__setattr__(self, "entities", MappingProxyType(clean))
        object.__setattr__(self, "confidence", float(self.confidence))

    @property
    def level(self) -> ConfidenceLevel:
        return ConfidenceLevel.from_score(self.confidence)

    def entity(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.entities.get(key, default)

    @property
    def target(self) -> Optional[str]:
        """The object the intent acts on, whatever its entity key."""
        for key in TARGET_KEYS:
            value = self.entities.get(key)
            if value:
                return value
        return None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "name": self.name,
            "entities": dict(self.entities),
            "confidence": round(self.confidence, 4),
            "is_anaphoric": self.is_anaphoric,
            "source": self.source,
        }
        if self.missing_capability:
            out["missing_capability"] = self.missing_capability
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Intent":
        return cls(
            name=str(data.get("name") or "unknown"),
            entities=dict(data.get("entities") or {}),
            confidence=float(data.get("confidence", 1.0)),
            is_anaphoric=bool(data.get("is_anaphoric", False)),
            missing_capability=data.get("missing_capability"),
            source=str(data.get("source") or SOURCE_COMMAND),
        )


UNKNOWN_INTENT = "unknown"
CONVERSATION_INTENT = "conversation"
