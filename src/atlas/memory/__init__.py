"""Conversation memory: the bounded log of completed turns."""

from atlas.memory.context_store import ContextEntry, ContextStore

__all__ = ["ContextEntry", "ContextStore"]
