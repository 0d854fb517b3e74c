"""Fast path: literal matchers that skip the Planner.

Reserved for ultra-common commands whose tools never need confirmation.
The Executor checks that at construction (``UnsafeFastPathError``).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from atlas.nlu.types import SOURCE_COMMAND, Intent


@dataclass(frozen=True)
class FastPathRule:
    pattern: str
    intent: str
    tool: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    compiled: Any = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "compiled", re.compile(self.pattern))


@dataclass(frozen=True)
class FastPathMatch:
    rule: FastPathRule
    intent: Intent

    @property
    def tool(self) -> str:
        return self.rule.tool

    @property
    def parameters(self) -> dict[str, Any]:
        return dict(self.rule.parameters)


# Order matters: first match wins.
DEFAULT_FAST_PATH: tuple[FastPathRule, ...] = (
    FastPathRule(r"(?:pause|stop)(?: (?:the )?(?:music|playback|song))?", "media_control", "media.control",
                 {"action": "pause"}),
    FastPathRule(r"(?:resume|unpause|play)(?: (?:the )?(?:music|playback))?", "media_control", "media.control",
                 {"action": "play"}),
    FastPathRule(r"(?:next|skip)(?: (?:song|track))?", "media_control", "media.control", {"action": "next"}),
    FastPathRule(r"(?:previous|back)(?: (?:song|track))?", "media_control", "media.control",
                 {"action": "previous"}),
    FastPathRule(r"mute", "volume_control", "system.volume", {"action": "mute"}),
    FastPathRule(r"unmute", "volume_control", "system.volume", {"action": "unmute"}),
    FastPathRule(r"volume up|louder", "volume_control", "system.volume", {"action": "up"}),
    FastPathRule(r"volume down|quieter", "volume_control", "system.volume", {"action": "down"}),
)


class FastPath:
    def __init__(self, rules: tuple[FastPathRule, ...] = DEFAULT_FAST_PATH):
        self.rules = tuple(rules)

    def match(self, canonical: str) -> Optional[FastPathMatch]:
        for rule in self.rules:
            if rule.compiled.fullmatch(canonical):
                intent = Intent(
                    name=rule.intent,
                    entities={k: str(v) for k, v in rule.parameters.items()},
                    confidence=1.0,
                    source=SOURCE_COMMAND,
                )
                return FastPathMatch(rule=rule, intent=intent)
        return None
