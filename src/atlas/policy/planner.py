"""
Planner: Intent -> Decision.

Pure function of the intent, the static RiskTable and the ConfidencePolicy.
It never consults conversation state, so the same Intent always yields the
same Decision.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from atlas.nlu.types import Intent
from atlas.policy.risk import Q_GENERIC, ConfidencePolicy, RiskLevel, RiskRule, RiskTable

logger = logging.getLogger(__name__)

_INT_PARAMS = frozenset({"count", "ordinal", "level"})

CAPABILITIES: tuple[str, ...] = (
    "Media: \"pause\", \"next\", \"play <song> on spotify\", \"volume 40\"",
    "Apps: \"open chrome\", \"close that\"",
    "Files: \"create file notes.txt\", \"move a.txt to archive\", \"rename a.txt to b.txt\", \"delete <path>\"",
    "Web: \"search for <query>\", \"weather in <city>\"",
    "System: \"lock\", \"sleep\", \"shut down\", \"take a screenshot\"",
    "History: \"undo\", \"undo 3\", \"undo history\", \"try again\"",
)


class DecisionAction(str, Enum):
    EXECUTE = "execute"
    ASK_CLARIFICATION = "ask_clarification"
    GUIDE = "guide"
    CONFIRM_DESTRUCTIVE = "confirm_destructive"


@dataclass(frozen=True)
class Decision:
    """What to do with one intent. Consumed once, never persisted."""

    action: DecisionAction
    intent_name: str
    tool_name: Optional[str] = None
    parameters: Mapping[str, Any] = field(default_factory=dict)
    risk_level: RiskLevel = RiskLevel.NONE
    requires_confirmation: bool = False
    confirmations_required: int = 0
    clarification_question: Optional[str] = None
    summary: str = ""
    message: Optional[str] = None
    guidance: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))
        if self.requires_confirmation != (self.confirmations_required > 0):
            raise ValueError("requires_confirmation must match confirmations_required")

    @property
    def is_executable(self) -> bool:
        return self.action in (DecisionAction.EXECUTE, DecisionAction.CONFIRM_DESTRUCTIVE)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "intent": self.intent_name,
            "tool": self.tool_name,
            "parameters": dict(self.parameters),
            "risk_level": str(self.risk_level),
            "requires_confirmation": self.requires_confirmation,
            "confirmations_required": self.confirmations_required,
            "clarification_question": self.clarification_question,
            "summary": self.summary,
        }


class Planner:
    def __init__(
        self,
        table: Optional[RiskTable] = None,
        policy: Optional[ConfidencePolicy] = None,
    ):
        self.table = table or RiskTable()
        self.policy = policy or ConfidencePolicy()

    def plan(self, intent: Intent) -> Decision:
        rule = self.table.get(intent.name)
        if rule is None:
            logger.debug("[Planner] no rule for intent %s", intent.name)
            return Decision(
                action=DecisionAction.GUIDE,
                intent_name=intent.name,
                message=f"I don't know how to {intent.name.replace('_', ' ')} yet.",
                summary=intent.name.replace("_", " "),
            )

        risk = rule.risk_for(intent.entities)
        summary = rule.describe(intent.entities)

        if intent.confidence < self.policy.threshold_for(risk) or rule.intent == "unknown":
            return self._clarify(intent, rule, risk, summary)

        capability = intent.missing_capability or rule.capability
        if capability:
            logger.info("[Planner] missing capability %s for %s", capability, intent.name)
            return Decision(
                action=DecisionAction.GUIDE,
                intent_name=intent.name,
                risk_level=risk,
                summary=summary,
                message=f"I can't {summary} yet: no {capability} tool is installed.",
                guidance=rule.build_plan,
            )

        if rule.tool is None:
            return self._guide(intent, rule, risk, summary)

        missing = [key for key in rule.required if not intent.entities.get(key)]
        if missing:
            return Decision(
                action=DecisionAction.ASK_CLARIFICATION,
                intent_name=intent.name,
                risk_level=risk,
                summary=summary,
                clarification_question=rule.clarify or Q_GENERIC,
            )

        confirmations = self.policy.confirmations_for(risk)
        decision = Decision(
            action=DecisionAction.CONFIRM_DESTRUCTIVE if confirmations else DecisionAction.EXECUTE,
            intent_name=intent.name,
            tool_name=rule.tool,
            parameters=_coerce(intent.entities),
            risk_level=risk,
            requires_confirmation=confirmations > 0,
            confirmations_required=confirmations,
            summary=summary,
        )
        logger.debug(
            "[Planner] %s -> %s (%s, %d confirmation(s))",
            intent.name, rule.tool, risk, confirmations,
        )
        return decision

    def _clarify(self, intent: Intent, rule: RiskRule, risk: RiskLevel, summary: str) -> Decision:
        has_args = any(intent.entities.get(k) for k in rule.required)
        if has_args and rule.tool is not None:
            question = (
                f"I think you want me to {summary}, but I'm not sure. "
                f"Could you say that more specifically?"
            )
        else:
            question = rule.clarify or Q_GENERIC
        logger.debug("[Planner] clarifying %s (confidence %.2f)", intent.name, intent.confidence)
        return Decision(
            action=DecisionAction.ASK_CLARIFICATION,
            intent_name=intent.name,
            risk_level=risk,
            summary=summary,
            clarification_question=question,
        )

    def _guide(self, intent: Intent, rule: RiskRule, risk: RiskLevel, summary: str) -> Decision:
        guidance: tuple[str, ...] = ()
        if rule.guide == "capabilities":
            message = "Here's what I can do:"
            guidance = CAPABILITIES
        elif rule.guide == "feedback":
            if intent.entities.get("sentiment") == "negative":
                message = "Sorry about that. Tell me what went wrong, or say \"try again\"."
            else:
                message = "Glad that worked!"
        else:
            message = rule.guide or rule.clarify or Q_GENERIC
        return Decision(
            action=DecisionAction.GUIDE,
            intent_name=intent.name,
            risk_level=risk,
            summary=summary,
            message=message,
            guidance=guidance,
        )


def _coerce(entities: Mapping[str, str]) -> dict[str, Any]:
    params: dict[str, Any] = {}
    for key, value in entities.items():
        if key in _INT_PARAMS and value.isdigit():
            params[key] = int(value)
        else:
            params[key] = value
    return params
