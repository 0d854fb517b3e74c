"""
Context store for completed turns.

Maintains an append-only, size-bounded log of ContextEntry records:
- One entry per completed turn, never edited afterwards
- Strict time ordering
- FIFO eviction past ``max_entries``
- Optional JSON persistence (unknown fields ignored on load)
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Any, Callable, Iterable, Mapping, Optional

from atlas.nlu.types import EntityKind, Intent

logger = logging.getLogger(__name__)

STORE_VERSION = 1

# Intents whose target/source entities are folders rather than files.
_FOLDER_INTENTS = frozenset({"create_folder", "organize_files", "open_folder"})


def _is_file_like(value: str) -> bool:
    return bool(PurePath(value.replace("\\", "/")).suffix)


@dataclass(frozen=True)
class ContextEntry:
    """A single completed turn."""

    id: str
    timestamp: float
    raw_input: str
    resolved_intent: Intent
    outcome_summary: Optional[str] = None
    outcome_success: Optional[bool] = None
    referenced_files: tuple[str, ...] = ()
    referenced_folders: tuple[str, ...] = ()
    referenced_apps: tuple[str, ...] = ()

    def references(self, kind: EntityKind) -> tuple[str, ...]:
        if kind is EntityKind.APP:
            return self.referenced_apps
        if kind is EntityKind.FILE:
            return self.referenced_files
        if kind is EntityKind.FOLDER:
            return self.referenced_folders
        query = self.resolved_intent.entities.get("query")
        return (query,) if query else ()

    @property
    def failed(self) -> bool:
        return self.outcome_success is False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "raw_input": self.raw_input,
            "intent": self.resolved_intent.to_dict(),
            "outcome_summary": self.outcome_summary,
            "outcome_success": self.outcome_success,
            "files": list(self.referenced_files),
            "folders": list(self.referenced_folders),
            "apps": list(self.referenced_apps),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ContextEntry":
        return cls(
            id=str(data.get("id") or uuid.uuid4().hex),
            timestamp=float(data["timestamp"]),
            raw_input=str(data.get("raw_input") or ""),
            resolved_intent=Intent.from_dict(data.get("intent") or {}),
            outcome_summary=data.get("outcome_summary"),
            outcome_success=data.get("outcome_success"),
            referenced_files=tuple(data.get("files") or ()),
            referenced_folders=tuple(data.get("folders") or ()),
            referenced_apps=tuple(data.get("apps") or ()),
        )


def extract_references(intent: Intent) -> tuple[tuple[str, ...], tuple[str, ...], tuple[str, ...]]:
    """Split an intent's entities into (files, folders, apps)."""
    files: list[str] = []
    folders: list[str] = []
    apps: list[str] = []
    entities = intent.entities

    if entities.get("app"):
        apps.append(entities["app"])
    for key in ("source", "target"):
        value = entities.get(key)
        if not value:
            continue
        if intent.name in _FOLDER_INTENTS or not _is_file_like(value):
            folders.append(value)
        else:
            files.append(value)
    for key in ("folder", "destination"):
        if entities.get(key):
            folders.append(entities[key])
    if entities.get("new_name"):
        files.append(entities["new_name"])
    return tuple(files), tuple(folders), tuple(apps)


class ContextStore:
    """Append-only log of completed turns with FIFO eviction.

    Only this class mutates its entries; readers get tuples/lists of the
    immutable ContextEntry objects.
    """

    def __init__(
        self,
        max_entries: int = 150,
        *,
        clock: Callable[[], float] = time.time,
        persist_path: Optional[str | Path] = None,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._max_entries = max_entries
        self._clock = clock
        self._persist_path = Path(persist_path) if persist_path else None
        self._entries: deque[ContextEntry] = deque(maxlen=max_entries)
        self._lock = threading.RLock()

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record(
        self,
        raw_input: str,
        intent: Intent,
        *,
        outcome_summary: Optional[str] = None,
        outcome_success: Optional[bool] = None,
    ) -> ContextEntry:
        """Create and append the entry for a completed turn."""
        files, folders, apps = extract_references(intent)
        with self._lock:
            ts = self._clock()
            if self._entries and ts <= self._entries[-1].timestamp:
                # Clock did not advance (coarse timer or fake clock).
                ts = self._entries[-1].timestamp + 1e-6
            entry = ContextEntry(
                id=uuid.uuid4().hex,
                timestamp=ts,
                raw_input=raw_input,
                resolved_intent=intent,
                outcome_summary=outcome_summary,
                outcome_success=outcome_success,
                referenced_files=files,
                referenced_folders=folders,
                referenced_apps=apps,
            )
            self._append_locked(entry)
        logger.debug("[ContextStore] recorded %s (%s)", intent.name, entry.id[:8])
        return entry

    def append(self, entry: ContextEntry) -> None:
        """Append an existing entry; it must be newer than the last one."""
        with self._lock:
            self._append_locked(entry)

    def _append_locked(self, entry: ContextEntry) -> None:
        if self._entries and entry.timestamp <= self._entries[-1].timestamp:
            raise ValueError(
                f"context entries must be strictly time-ordered "
                f"({entry.timestamp} <= {self._entries[-1].timestamp})"
            )
        if len(self._entries) == self._max_entries:
            logger.debug("[ContextStore] evicting oldest entry %s", self._entries[0].id[:8])
        self._entries.append(entry)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def entries(self) -> tuple[ContextEntry, ...]:
        """All entries, oldest first."""
        with self._lock:
            return tuple(self._entries)

    def recent(self, n: Optional[int] = None) -> list[ContextEntry]:
        """Most recent entries, newest first."""
        with self._lock:
            items = list(reversed(self._entries))
        return items if n is None else items[: max(0, n)]

    def last(self) -> Optional[ContextEntry]:
        with self._lock:
            return self._entries[-1] if self._entries else None

    def find_reference(
        self, kinds: Iterable[EntityKind], *, lookback: int = 5
    ) -> Optional[tuple[str, int]]:
        """Most recent entity of any of ``kinds`` as (value, age in turns)."""
        kinds = tuple(kinds)
        for age, entry in enumerate(self.recent(lookback)):
            for kind in kinds:
                refs = entry.references(kind)
                if refs:
                    return refs[-1], age
        return None

    def find_entry(
        self, predicate: Callable[[ContextEntry], bool], *, lookback: int = 5
    ) -> Optional[tuple[ContextEntry, int]]:
        for age, entry in enumerate(self.recent(lookback)):
            if predicate(entry):
                return entry, age
        return None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: Optional[str | Path] = None) -> Optional[Path]:
        target = Path(path) if path else self._persist_path
        if target is None:
            return None
        payload = {
            "version": STORE_VERSION,
            "entries": [e.to_dict() for e in self.entries()],
        }
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(target.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp, target)
        logger.debug("[ContextStore] saved %d entries to %s", len(payload["entries"]), target)
        return target

    def load(self, path: Optional[str | Path] = None) -> int:
        """Append entries from disk; returns how many were loaded.

        Malformed or out-of-order entries are skipped.
        """
        source = Path(path) if path else self._persist_path
        if source is None or not source.exists():
            return 0
        try:
            data = json.loads(source.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("[ContextStore] could not read %s: %s", source, e)
            return 0

        raw_entries = data.get("entries") if isinstance(data, dict) else data
        loaded = 0
        for raw in raw_entries or []:
            try:
                entry = ContextEntry.from_dict(raw)
                self.append(entry)
                loaded += 1
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.debug("[ContextStore] skipping persisted entry: %s", e)
        logger.debug("[ContextStore] loaded %d entries from %s", loaded, source)
        return loaded
