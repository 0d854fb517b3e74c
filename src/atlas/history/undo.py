"""
Undo bookkeeping.

Every tool call that changed something outside the process leaves an
ActionRecord here. Records are kept most-recent-first, bounded by
``retention``; a record disappears once it has been reversed.
"""

from __future__ import annotations

import inspect
import json
import logging
import os
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Optional

from atlas.agent.tool_base import FailureReason, Outcome, ReverseProcedure

if TYPE_CHECKING:
    from atlas.logs.logger import JsonlLogger

logger = logging.getLogger(__name__)

HISTORY_VERSION = 1


@dataclass(frozen=True)
class ActionRecord:
    """Enough information to reverse one tool call."""

    id: str
    timestamp: float
    kind: str
    target: Optional[str]
    description: str
    reverse_procedure: Optional[ReverseProcedure] = field(default=None, compare=False, repr=False)
    is_reversible: bool = False
    user_command: str = ""

    def __post_init__(self) -> None:
        if self.is_reversible and self.reverse_procedure is None:
            raise ValueError("a reversible record needs a reverse procedure")

    @classmethod
    def create(
        cls,
        kind: str,
        description: str,
        *,
        target: Optional[str] = None,
        reverse_procedure: Optional[ReverseProcedure] = None,
        user_command: str = "",
        timestamp: Optional[float] = None,
    ) -> "ActionRecord":
        return cls(
            id=uuid.uuid4().hex[:12],
            timestamp=time.time() if timestamp is None else timestamp,
            kind=kind,
            target=target,
            description=description,
            reverse_procedure=reverse_procedure,
            is_reversible=reverse_procedure is not None,
            user_command=user_command,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "kind": self.kind,
            "target": self.target,
            "description": self.description,
            "reversible": self.is_reversible,
            "user_command": self.user_command,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ActionRecord":
        # Reverse procedures are in-process callables and do not survive a restart.
        return cls(
            id=str(data.get("id") or uuid.uuid4().hex[:12]),
            timestamp=float(data["timestamp"]),
            kind=str(data.get("kind") or "unknown"),
            target=data.get("target"),
            description=str(data.get("description") or data.get("kind") or "action"),
            user_command=str(data.get("user_command") or ""),
        )


class UndoManager:
    """Bounded most-recent-first list of ActionRecords.

    The record list is only touched under ``_lock``; reverse procedures run
    outside it, with the record taken off the list while it is reversed so
    two undo requests can never reverse the same action.
    """

    def __init__(
        self,
        retention: int = 50,
        *,
        persist_path: Optional[str | Path] = None,
        audit: Optional["JsonlLogger"] = None,
    ):
        if retention < 1:
            raise ValueError("retention must be >= 1")
        self.retention = retention
        self._records: list[ActionRecord] = []
        self._lock = threading.Lock()
        self._persist_path = Path(persist_path) if persist_path else None
        self._audit = audit

    def __len__(self) -> int:
        return len(self._records)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record(self, record: ActionRecord) -> None:
        with self._lock:
            self._records.insert(0, record)
            dropped = self._records[self.retention:]
            del self._records[self.retention:]
        for old in dropped:
            logger.debug("[Undo] retention exceeded, dropping %s", old.description)
        logger.info(
            "[Undo] recorded %s%s",
            record.description, "" if record.is_reversible else " (not reversible)",
        )

    def list_recent(self, n: int = 10) -> list[ActionRecord]:
        with self._lock:
            return list(self._records[: max(0, n)])

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    # ------------------------------------------------------------------
    # Undo
    # ------------------------------------------------------------------

    async def undo_last(self) -> Outcome:
        """Reverse the newest reversible record.

        Non-reversible records in front of it stay in the history and are
        named in the result.
        """
        skipped: list[ActionRecord] = []
        target: Optional[ActionRecord] = None
        with self._lock:
            for rec in self._records:
                if rec.is_reversible:
                    target = rec
                    break
                skipped.append(rec)
            if target is not None:
                self._records.remove(target)

        if target is None:
            if skipped:
                return Outcome.fail(
                    f"Cannot undo \"{skipped[0].description}\": that action can't be reversed.",
                    FailureReason.NOT_REVERSIBLE,
                    target=skipped[0].target,
                )
            return Outcome.fail("There's nothing to undo.", FailureReason.NOTHING_TO_UNDO)

        outcome = await self._reverse(target)
        if skipped:
            names = ", ".join(f"\"{r.description}\"" for r in skipped)
            outcome.message = f"Cannot undo {names} (skipped). {outcome.message}"
        return outcome

    async def undo_n(self, count: int) -> list[Outcome]:
        """Reverse up to ``count`` records newest to oldest.

        Stops at the first record that cannot be reversed or whose reversal
        fails; that record stays in the history.
        """
        outcomes: list[Outcome] = []
        for _ in range(max(1, int(count))):
            with self._lock:
                if not self._records:
                    break
                rec = self._records[0]
                if rec.is_reversible:
                    self._records.pop(0)
            if not rec.is_reversible:
                outcomes.append(Outcome.fail(
                    f"Cannot undo \"{rec.description}\": that action can't be reversed.",
                    FailureReason.NOT_REVERSIBLE,
                    target=rec.target,
                ))
                break
            outcome = await self._reverse(rec)
            outcomes.append(outcome)
            if not outcome.success:
                break
        if not outcomes:
            outcomes.append(Outcome.fail("There's nothing to undo.", FailureReason.NOTHING_TO_UNDO))
        return outcomes

    async def undo_item(self, ordinal: int) -> Outcome:
        """Reverse the record at 1-based ``ordinal`` in ``list_recent`` order."""
        with self._lock:
            if not 1 <= ordinal <= len(self._records):
                return Outcome.fail(
                    f"There's no entry #{ordinal} in the undo history.",
                    FailureReason.NOTHING_TO_UNDO,
                )
            rec = self._records[ordinal - 1]
            if not rec.is_reversible:
                return Outcome.fail(
                    f"Cannot undo \"{rec.description}\": that action can't be reversed.",
                    FailureReason.NOT_REVERSIBLE,
                    target=rec.target,
                )
            self._records.remove(rec)
        return await self._reverse(rec)

    async def _reverse(self, rec: ActionRecord) -> Outcome:
        assert rec.reverse_procedure is not None
        logger.info("[Undo] reversing %s", rec.description)
        try:
            result = rec.reverse_procedure()
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.warning("[Undo] reversing %s failed", rec.description, exc_info=True)
            result = Outcome.fail(f"Undo of \"{rec.description}\" failed: {e}")

        if result is None:
            result = Outcome.ok(f"Undid: {rec.description}.")
        elif not isinstance(result, Outcome):
            result = Outcome.ok(str(result) or f"Undid: {rec.description}.")

        if result.success:
            outcome = Outcome.ok(result.message or f"Undid: {rec.description}.", target=rec.target)
        else:
            # Keep the record so the user can retry or inspect it.
            self._reinsert(rec)
            message = result.message
            if rec.description not in message:
                message = f"Undo of \"{rec.description}\" failed: {message}"
            outcome = Outcome.fail(message, result.failure_reason or FailureReason.TOOL_ERROR, target=rec.target)

        if self._audit is not None:
            self._audit.log_undo(rec.description, outcome.success, kind=rec.kind, target=rec.target)
        return outcome

    def _reinsert(self, rec: ActionRecord) -> None:
        with self._lock:
            idx = 0
            while idx < len(self._records) and self._records[idx].timestamp > rec.timestamp:
                idx += 1
            self._records.insert(idx, rec)
            del self._records[self.retention:]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: Optional[str | Path] = None) -> Optional[Path]:
        target = Path(path) if path else self._persist_path
        if target is None:
            return None
        payload = {
            "version": HISTORY_VERSION,
            "records": [r.to_dict() for r in self.list_recent(self.retention)],
        }
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(target.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp, target)
        return target

    def load(self, path: Optional[str | Path] = None) -> int:
        """Load history saved by ``save``; loaded records are not reversible."""
        source = Path(path) if path else self._persist_path
        if source is None or not source.exists():
            return 0
        try:
            data = json.loads(source.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("[Undo] could not read %s: %s", source, e)
            return 0

        loaded: list[ActionRecord] = []
        for raw in (data.get("records") if isinstance(data, dict) else data) or []:
            try:
                loaded.append(ActionRecord.from_dict(raw))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.debug("[Undo] skipping persisted record: %s", e)
        loaded.sort(key=lambda r: r.timestamp, reverse=True)
        with self._lock:
            self._records.extend(loaded)
            self._records.sort(key=lambda r: r.timestamp, reverse=True)
            del self._records[self.retention:]
        return len(loaded)


def summarize_undo(outcomes: list[Outcome], requested: int) -> Outcome:
    """Fold ``undo_n`` results into one user-facing Outcome."""
    succeeded = [o for o in outcomes if o.success]
    failed = [o for o in outcomes if not o.success]
    if not succeeded:
        return failed[0] if failed else Outcome.fail("There's nothing to undo.", FailureReason.NOTHING_TO_UNDO)

    noun = "action" if len(succeeded) == 1 else "actions"
    lines = [o.message for o in succeeded]
    if failed:
        head = f"Undid {len(succeeded)} of {requested} {noun}; stopped: {failed[0].message}"
    elif len(succeeded) < requested:
        head = f"Undid {len(succeeded)} {noun} (that's everything in the history)."
    else:
        head = f"Undid {len(succeeded)} {noun}."
    return Outcome(
        success=not failed,
        message="\n".join([head] + lines),
        failure_reason=failed[0].failure_reason if failed else None,
        data={"succeeded": len(succeeded), "requested": requested},
    )
