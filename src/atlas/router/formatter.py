"""Renders decisions and outcomes as user-facing text."""

from __future__ import annotations

import time
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterable, Optional

from atlas.agent.tool_base import FailureReason, Outcome
from atlas.policy.planner import Decision, DecisionAction
from atlas.policy.risk import RiskLevel
from atlas.tools.files import resolve_path

if TYPE_CHECKING:
    from atlas.history.undo import ActionRecord

REPROMPT = "Please confirm with \"yes\" or \"no\"."

RISK_NOTES: dict[RiskLevel, str] = {
    RiskLevel.MEDIUM: "This changes files or settings.",
    RiskLevel.HIGH: "This affects the whole system and unsaved work may be lost.",
    RiskLevel.CRITICAL: "This cannot be undone.",
}

# (needles, lead) pairs checked in order against a lower-cased failure message.
_ERROR_LEADS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("not found", "no such file", "does not exist", "doesn't exist"), "I couldn't find that."),
    (("permission", "access denied", "access is denied", "not permitted"), "I don't have permission to do that."),
    (("timed out", "timeout", "took longer"), "That took too long and was stopped."),
    (("network", "connection", "could not reach", "unreachable"), "I couldn't reach the network service."),
)

_PATH_PARAMS = ("target", "source", "destination", "folder")


def relative_time(timestamp: float, now: Optional[float] = None) -> str:
    delta = max(0.0, (time.time() if now is None else now) - timestamp)
    if delta < 5:
        return "just now"
    if delta < 60:
        return f"{int(delta)}s ago"
    if delta < 3600:
        return f"{int(delta // 60)}m ago"
    if delta < 86400:
        return f"{int(delta // 3600)}h ago"
    return f"{int(delta // 86400)}d ago"


def full_path(value: str, root: Optional[str | Path] = None) -> str:
    return str(resolve_path(value, root))


def _sentence(text: str) -> str:
    text = text.strip()
    return text[:1].upper() + text[1:] if text else text


class ResponseFormatter:
    """Text for every reply the pipeline produces.

    ``path_resolver`` must be the one the file tools use, so the final
    delete prompt names exactly the path that will be removed.
    """

    def __init__(self, path_resolver: Optional[Callable[[str], Path]] = None):
        self.path_resolver = path_resolver or resolve_path

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def render(self, decision: Decision) -> str:
        if decision.action == DecisionAction.ASK_CLARIFICATION:
            return decision.clarification_question or "Could you tell me more about what you'd like to do?"
        if decision.action == DecisionAction.GUIDE:
            return self.guidance(decision.message or "", decision.guidance)
        if decision.action == DecisionAction.CONFIRM_DESTRUCTIVE:
            return self.confirmation_prompt(decision, stage=1)
        return f"On it: {decision.summary}."

    def guidance(self, message: str, steps: Iterable[str] = ()) -> str:
        lines = [message] if message else []
        lines.extend(f"{i}. {step}" for i, step in enumerate(steps, start=1))
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    def confirmation_prompt(self, decision: Decision, stage: int = 1) -> str:
        if stage >= 2:
            return self.final_confirmation_prompt(decision)
        note = RISK_NOTES.get(decision.risk_level, "")
        parts = [f"{_sentence(decision.summary)}?"]
        if note:
            parts.append(note)
        parts.append("Reply \"yes\" or \"no\".")
        return " ".join(parts)

    def final_confirmation_prompt(self, decision: Decision) -> str:
        paths = [
            str(self.path_resolver(str(decision.parameters[key])))
            for key in _PATH_PARAMS
            if decision.parameters.get(key)
        ]
        lines = [f"Final check: this will permanently {decision.summary}."]
        if paths:
            lines.append("Affected:")
            lines.extend(f"  - {p}" for p in paths)
        lines.append("It will not go to the recycle bin and cannot be recovered.")
        lines.append("Reply \"yes\" to go ahead or \"no\" to keep it.")
        return "\n".join(lines)

    def reprompt(self) -> str:
        return REPROMPT

    def cancelled(self, decision: Decision) -> str:
        return f"Okay, cancelled. I won't {decision.summary}."

    def expired(self, decision: Decision) -> str:
        return f"Your earlier request to {decision.summary} timed out, so I didn't do it."

    def pending_conflict(self, pending: Decision) -> str:
        return (
            f"Please resolve the previous confirmation first: {pending.summary}? "
            f"Reply \"yes\" or \"no\"."
        )

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def outcome(self, outcome: Outcome) -> str:
        if outcome.success:
            return outcome.message or "Done."
        if outcome.cancelled:
            return "Cancelled." if outcome.message in ("", "Cancelled.") else f"Cancelled. {outcome.message}"
        if outcome.failure_reason in (FailureReason.TOOL_ERROR, FailureReason.TIMEOUT):
            return self.error(outcome.message)
        return outcome.message or "That didn't work."

    def error(self, message: str) -> str:
        lowered = (message or "").lower()
        lead = "That didn't work."
        for needles, text in _ERROR_LEADS:
            if any(n in lowered for n in needles):
                lead = text
                break
        if not message or message == lead:
            return lead
        return f"{lead} ({message})"

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def undo_history(self, records: list["ActionRecord"], now: Optional[float] = None) -> str:
        if not records:
            return "There's nothing in the undo history yet."
        lines = ["Recent actions (most recent first):"]
        for i, rec in enumerate(records, start=1):
            suffix = "" if rec.is_reversible else " [can't undo]"
            lines.append(f"{i}. {rec.description} ({relative_time(rec.timestamp, now)}){suffix}")
        return "\n".join(lines)
