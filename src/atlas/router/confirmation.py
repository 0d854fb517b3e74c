"""
Confirmation gate.

States: IDLE -> AWAITING_CONFIRMATION -> (confirmed | denied | timed out) -> IDLE

While awaiting, the next turn is read only as a yes/no answer. Anything
else re-prompts. Critical decisions need two "yes" answers, and the
second prompt is the stronger final check. An expired confirmation is
discarded, never executed.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

from atlas.nlu.types import Intent
from atlas.policy.planner import Decision
from atlas.router.formatter import ResponseFormatter

if TYPE_CHECKING:
    from atlas.logs.logger import JsonlLogger

logger = logging.getLogger(__name__)

YES_WORDS = frozenset({
    "yes", "y", "yeah", "yep", "yup", "confirm", "confirmed", "ok", "okay", "sure",
    "do it", "go ahead", "proceed", "yes please", "no problem",
})
NO_WORDS = frozenset({
    "no", "n", "nope", "nah", "cancel", "stop", "nevermind", "never mind", "abort",
    "don't", "dont", "no thanks", "don't do it", "dont do it",
})

_CLEAN_RE = re.compile(r"[^\w\s']+")
_LONGEST_PHRASE = max(len(p.split()) for p in YES_WORDS | NO_WORDS)


def _phrases(words: list[str]) -> list[str]:
    """Group words into known yes/no phrases, longest match first."""
    out: list[str] = []
    i = 0
    while i < len(words):
        for n in range(min(_LONGEST_PHRASE, len(words) - i), 0, -1):
            chunk = " ".join(words[i:i + n])
            if n == 1 or chunk in YES_WORDS or chunk in NO_WORDS:
                out.append(chunk)
                i += n
                break
    return out


def parse_reply(text: str) -> Optional[bool]:
    """True for yes, False for no, None when the reply is neither."""
    cleaned = " ".join(_CLEAN_RE.sub(" ", (text or "").lower()).split())
    if not cleaned:
        return None
    if cleaned in YES_WORDS:
        return True
    if cleaned in NO_WORDS:
        return False
    lead, *rest = _phrases(cleaned.split(" "))
    # "yes, delete it" counts; "yes no" or "yes, never mind" does not.
    if lead in YES_WORDS and not any(p in NO_WORDS for p in rest):
        return True
    if lead in NO_WORDS and not any(p in YES_WORDS for p in rest):
        return False
    return None


class GateState(str, Enum):
    IDLE = "idle"
    AWAITING_CONFIRMATION = "awaiting_confirmation"


class GateEvent(str, Enum):
    REQUESTED = "requested"
    REJECTED = "rejected"          # another confirmation is still pending
    CONFIRMED = "confirmed"
    DENIED = "denied"
    NEXT_STAGE = "next_stage"      # first of two confirmations received
    REPROMPT = "reprompt"          # reply was neither yes nor no
    TIMED_OUT = "timed_out"
    NOTHING_PENDING = "nothing_pending"


@dataclass(frozen=True)
class PendingConfirmation:
    intent: Intent
    decision: Decision
    raw_input: str
    created_at: float
    expires_at: float
    confirmations: int = 0

    @property
    def stage(self) -> int:
        return self.confirmations + 1


@dataclass(frozen=True)
class GateResult:
    event: GateEvent
    text: str = ""
    decision: Optional[Decision] = None
    intent: Optional[Intent] = None
    raw_input: str = ""
    confirmations: int = 0

    @property
    def confirmed(self) -> bool:
        return self.event == GateEvent.CONFIRMED


class ConfirmationGate:
    """Holds at most one pending confirmation per conversation."""

    def __init__(
        self,
        formatter: Optional[ResponseFormatter] = None,
        *,
        timeout_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        audit: Optional["JsonlLogger"] = None,
    ):
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self.formatter = formatter or ResponseFormatter()
        self.timeout_seconds = float(timeout_seconds)
        self._clock = clock
        self._audit = audit
        self._pending: Optional[PendingConfirmation] = None
        self._expired_notice: Optional[str] = None

    @property
    def state(self) -> GateState:
        self._expire_if_due()
        return GateState.AWAITING_CONFIRMATION if self._pending else GateState.IDLE

    @property
    def pending(self) -> Optional[PendingConfirmation]:
        self._expire_if_due()
        return self._pending

    def is_awaiting_confirmation(self) -> bool:
        return self.state == GateState.AWAITING_CONFIRMATION

    def take_expiry_notice(self) -> Optional[str]:
        """One-shot message about a confirmation that timed out."""
        self._expire_if_due()
        notice, self._expired_notice = self._expired_notice, None
        return notice

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def request(self, intent: Intent, decision: Decision, raw_input: str = "") -> GateResult:
        """IDLE -> AWAITING_CONFIRMATION, or REJECTED if one is pending."""
        if not decision.requires_confirmation:
            raise ValueError(f"decision for {decision.intent_name} does not need confirmation")
        self._expire_if_due()

        if self._pending is not None:
            logger.info(
                "[Gate] rejecting %s: %s still pending",
                decision.intent_name, self._pending.decision.intent_name,
            )
            return GateResult(
                event=GateEvent.REJECTED,
                text=self.formatter.pending_conflict(self._pending.decision),
                decision=decision,
                intent=intent,
                raw_input=raw_input,
            )

        now = self._clock()
        self._pending = PendingConfirmation(
            intent=intent,
            decision=decision,
            raw_input=raw_input,
            created_at=now,
            expires_at=now + self.timeout_seconds,
        )
        self._expired_notice = None
        logger.info(
            "[Gate] awaiting confirmation for %s (%s, %d needed)",
            decision.intent_name, decision.risk_level, decision.confirmations_required,
        )
        self._log("requested", decision, stage=1)
        return GateResult(
            event=GateEvent.REQUESTED,
            text=self.formatter.confirmation_prompt(decision, stage=1),
            decision=decision,
            intent=intent,
            raw_input=raw_input,
        )

    def reply(self, text: str) -> GateResult:
        """Consume the user's answer to the pending confirmation."""
        if self._expire_if_due():
            return GateResult(event=GateEvent.TIMED_OUT, text=self.take_expiry_notice() or "")

        pending = self._pending
        if pending is None:
            return GateResult(event=GateEvent.NOTHING_PENDING)

        answer = parse_reply(text)
        if answer is None:
            # A reply, even an unclear one, counts as activity.
            self._pending = replace(pending, expires_at=self._clock() + self.timeout_seconds)
            logger.debug("[Gate] ambiguous reply %r, re-prompting", text)
            return GateResult(
                event=GateEvent.REPROMPT,
                text=self.formatter.reprompt(),
                decision=pending.decision,
                intent=pending.intent,
                raw_input=pending.raw_input,
                confirmations=pending.confirmations,
            )

        if answer is False:
            self._pending = None
            logger.info("[Gate] %s denied", pending.decision.intent_name)
            self._log("denied", pending.decision, stage=pending.stage)
            return GateResult(
                event=GateEvent.DENIED,
                text=self.formatter.cancelled(pending.decision),
                decision=pending.decision,
                intent=pending.intent,
                raw_input=pending.raw_input,
                confirmations=pending.confirmations,
            )

        received = pending.confirmations + 1
        if received < pending.decision.confirmations_required:
            self._pending = replace(
                pending,
                confirmations=received,
                expires_at=self._clock() + self.timeout_seconds,
            )
            logger.info("[Gate] %s: stage %d confirmed, asking again", pending.decision.intent_name, received)
            self._log("stage_confirmed", pending.decision, stage=received)
            return GateResult(
                event=GateEvent.NEXT_STAGE,
                text=self.formatter.confirmation_prompt(pending.decision, stage=received + 1),
                decision=pending.decision,
                intent=pending.intent,
                raw_input=pending.raw_input,
                confirmations=received,
            )

        self._pending = None
        logger.info("[Gate] %s confirmed", pending.decision.intent_name)
        self._log("confirmed", pending.decision, stage=received)
        return GateResult(
            event=GateEvent.CONFIRMED,
            decision=pending.decision,
            intent=pending.intent,
            raw_input=pending.raw_input,
            confirmations=received,
        )

    def cancel(self) -> Optional[PendingConfirmation]:
        """Drop the pending confirmation without a reply."""
        pending, self._pending = self._pending, None
        if pending is not None:
            logger.info("[Gate] %s cancelled", pending.decision.intent_name)
            self._log("cancelled", pending.decision, stage=pending.stage)
        return pending

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _expire_if_due(self) -> bool:
        pending = self._pending
        if pending is None or self._clock() < pending.expires_at:
            return False
        self._pending = None
        self._expired_notice = self.formatter.expired(pending.decision)
        logger.info("[Gate] confirmation for %s timed out", pending.decision.intent_name)
        self._log("timed_out", pending.decision, stage=pending.stage)
        return True

    def _log(self, what: str, decision: Decision, *, stage: int) -> None:
        if self._audit is None:
            return
        self._audit.log_confirmation(
            what,
            intent=decision.intent_name,
            tool=decision.tool_name,
            risk_level=str(decision.risk_level),
            stage=stage,
            params=dict(decision.parameters),
        )
