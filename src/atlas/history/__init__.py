"""Action history and undo."""

from atlas.history.undo import ActionRecord, UndoManager, summarize_undo

__all__ = ["ActionRecord", "UndoManager", "summarize_undo"]
