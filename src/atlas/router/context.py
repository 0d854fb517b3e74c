"""Per-conversation state passed explicitly through the pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from atlas.agent.tool_base import CancellationToken
from atlas.history.undo import UndoManager
from atlas.memory.context_store import ContextStore
from atlas.router.confirmation import ConfirmationGate

logger = logging.getLogger(__name__)


@dataclass
class ConversationContext:
    """Everything one conversation owns.

    The ContextStore, the confirmation slot and the undo list each have a
    single owner object; this class only holds the references so that two
    conversations never share them.
    """

    store: ContextStore = field(default_factory=ContextStore)
    gate: ConfirmationGate = field(default_factory=ConfirmationGate)
    undo: UndoManager = field(default_factory=UndoManager)
    inflight: Optional[CancellationToken] = None

    def begin_call(self, parent: Optional[CancellationToken] = None) -> CancellationToken:
        token = parent.child() if parent is not None else CancellationToken()
        self.inflight = token
        return token

    def end_call(self, token: CancellationToken) -> None:
        if self.inflight is token:
            self.inflight = None
        token.detach()

    def cancel_inflight(self, reason: str = "stop") -> bool:
        """Cancel the running tool call, if any. Safe to call repeatedly."""
        token = self.inflight
        if token is None:
            return False
        cancelled = token.cancel(reason)
        if cancelled:
            logger.info("[Conversation] in-flight call cancelled (%s)", reason)
        return cancelled

    def save(self) -> None:
        self.store.save()
        self.undo.save()

    def load(self) -> None:
        entries = self.store.load()
        records = self.undo.load()
        if entries or records:
            logger.info("[Conversation] restored %d turns, %d undo records", entries, records)
