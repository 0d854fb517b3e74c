"""Undo and history exposed as tools so they flow through the Executor.

Their outcomes never set ``mutated_state``; undoing is not itself undoable.
"""

from __future__ import annotations

from typing import Any, Mapping

from atlas.agent.tool_base import (
    NULL_PROGRESS,
    CancellationToken,
    FailureReason,
    Outcome,
    ProgressReporter,
    Tool,
)
from atlas.history.undo import UndoManager, summarize_undo
from atlas.router.formatter import ResponseFormatter


class UndoTool(Tool):
    name = "history.undo"
    description = "Undo the last action, or the last N actions."

    def __init__(self, undo: UndoManager):
        self.undo = undo

    async def execute(
        self,
        parameters: Mapping[str, Any],
        cancel: CancellationToken,
        progress: ProgressReporter = NULL_PROGRESS,
    ) -> Outcome:
        count = int(parameters.get("count") or 1)
        if count <= 1:
            return await self.undo.undo_last()
        return summarize_undo(await self.undo.undo_n(count), count)


class UndoItemTool(Tool):
    name = "history.undo_item"
    description = "Undo one entry of the undo history by number."
    required_params = ("ordinal",)

    def __init__(self, undo: UndoManager):
        self.undo = undo

    async def execute(
        self,
        parameters: Mapping[str, Any],
        cancel: CancellationToken,
        progress: ProgressReporter = NULL_PROGRESS,
    ) -> Outcome:
        try:
            ordinal = int(parameters["ordinal"])
        except (TypeError, ValueError):
            return Outcome.fail("Which entry should I undo?", FailureReason.INVALID_PARAMETERS)
        return await self.undo.undo_item(ordinal)


class HistoryListTool(Tool):
    name = "history.list"
    description = "List recent actions."

    def __init__(self, undo: UndoManager, formatter: ResponseFormatter, limit: int = 10):
        self.undo = undo
        self.formatter = formatter
        self.limit = limit

    async def execute(
        self,
        parameters: Mapping[str, Any],
        cancel: CancellationToken,
        progress: ProgressReporter = NULL_PROGRESS,
    ) -> Outcome:
        records = self.undo.list_recent(self.limit)
        return Outcome.ok(self.formatter.undo_history(records), data=[r.to_dict() for r in records])
