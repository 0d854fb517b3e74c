"""Tests for the ContextStore turn log."""

from __future__ import annotations

import json

import pytest

from atlas.memory.context_store import ContextEntry, ContextStore, extract_references
from atlas.nlu.types import EntityKind, Intent


def _intent(name: str = "open_app", **entities: str) -> Intent:
    return Intent(name, entities)


class TestAppend:
    def test_record_appends_in_order(self, clock):
        store = ContextStore(clock=clock)
        store.record("open chrome", _intent(app="chrome"))
        clock.advance(1)
        store.record("pause", _intent("media_control", action="pause"))
        entries = store.entries()
        assert [e.raw_input for e in entries] == ["open chrome", "pause"]
        assert entries[0].timestamp < entries[1].timestamp

    def test_same_clock_reading_still_strictly_ordered(self, clock):
        store = ContextStore(clock=clock)
        a = store.record("a", _intent(app="a"))
        b = store.record("b", _intent(app="b"))
        assert b.timestamp > a.timestamp

    def test_append_rejects_older_entry(self, clock):
        store = ContextStore(clock=clock)
        store.record("open chrome", _intent(app="chrome"))
        stale = ContextEntry(id="x", timestamp=1.0, raw_input="old", resolved_intent=_intent(app="x"))
        with pytest.raises(ValueError):
            store.append(stale)

    def test_fifo_eviction(self, clock):
        store = ContextStore(max_entries=3, clock=clock)
        for i in range(5):
            clock.advance(1)
            store.record(f"turn {i}", _intent(app=f"app{i}"))
        assert len(store) == 3
        assert [e.raw_input for e in store.entries()] == ["turn 2", "turn 3", "turn 4"]

    def test_max_entries_must_be_positive(self):
        with pytest.raises(ValueError):
            ContextStore(max_entries=0)

    def test_entries_are_immutable(self, clock):
        store = ContextStore(clock=clock)
        entry = store.record("open chrome", _intent(app="chrome"))
        with pytest.raises(AttributeError):
            entry.raw_input = "changed"  # type: ignore[misc]


class TestReads:
    def test_recent_is_newest_first(self, clock):
        store = ContextStore(clock=clock)
        for name in ("a", "b", "c"):
            store.record(name, _intent(app=name))
        assert [e.raw_input for e in store.recent(2)] == ["c", "b"]
        assert store.last().raw_input == "c"

    def test_find_reference_returns_age(self, clock):
        store = ContextStore(clock=clock)
        store.record("open chrome", _intent(app="chrome"))
        store.record("pause", _intent("media_control", action="pause"))
        assert store.find_reference([EntityKind.APP]) == ("chrome", 1)
        assert store.find_reference([EntityKind.FILE]) is None

    def test_find_entry(self, clock):
        store = ContextStore(clock=clock)
        store.record("open spotify", _intent(app="spotify"), outcome_success=False)
        store.record("pause", _intent("media_control", action="pause"), outcome_success=True)
        entry, age = store.find_entry(lambda e: e.failed)
        assert entry.raw_input == "open spotify"
        assert age == 1


class TestReferences:
    def test_files_and_folders(self):
        files, folders, apps = extract_references(
            _intent("move_file", source="notes.txt", destination="Documents")
        )
        assert files == ("notes.txt",)
        assert folders == ("Documents",)
        assert apps == ()

    def test_folder_intents_treat_target_as_folder(self):
        _, folders, _ = extract_references(_intent("create_folder", target="reports.2024"))
        assert folders == ("reports.2024",)

    def test_query_bucket(self, clock):
        store = ContextStore(clock=clock)
        entry = store.record("play jazz", _intent("play_music", query="jazz"))
        assert entry.references(EntityKind.QUERY) == ("jazz",)


class TestPersistence:
    def test_save_and_load(self, tmp_path, clock):
        path = tmp_path / "context.json"
        store = ContextStore(clock=clock, persist_path=path)
        store.record("open chrome", _intent(app="chrome"), outcome_summary="Opened Chrome.", outcome_success=True)
        store.save()

        restored = ContextStore(persist_path=path)
        assert restored.load() == 1
        entry = restored.last()
        assert entry.raw_input == "open chrome"
        assert entry.resolved_intent.entities["app"] == "chrome"
        assert entry.outcome_success is True
        assert entry.referenced_apps == ("chrome",)

    def test_unknown_fields_are_ignored(self, tmp_path):
        path = tmp_path / "context.json"
        path.write_text(json.dumps({
            "version": 99,
            "future": True,
            "entries": [{
                "id": "abc",
                "timestamp": 5.0,
                "raw_input": "pause",
                "intent": {"name": "media_control", "entities": {"action": "pause"}, "mood": "x"},
                "sentiment": "happy",
            }],
        }), encoding="utf-8")
        store = ContextStore(persist_path=path)
        assert store.load() == 1
        assert store.last().resolved_intent.name == "media_control"

    def test_malformed_entries_are_skipped(self, tmp_path):
        path = tmp_path / "context.json"
        path.write_text(json.dumps({"entries": [{"raw_input": "no timestamp"}, {"timestamp": 2.0}]}),
                        encoding="utf-8")
        store = ContextStore(persist_path=path)
        assert store.load() == 1

    def test_missing_file_loads_nothing(self, tmp_path):
        assert ContextStore(persist_path=tmp_path / "nope.json").load() == 0

    def test_corrupt_file_loads_nothing(self, tmp_path):
        path = tmp_path / "context.json"
        path.write_text("{not json", encoding="utf-8")
        assert ContextStore(persist_path=path).load() == 0
