"""Tests for rule-first intent classification and anaphora resolution."""

from __future__ import annotations

import pytest

from atlas.memory.context_store import ContextStore
from atlas.nlu.classifier import ClassifierConfig, IntentClassifier
from atlas.nlu.rules import RuleTable
from atlas.nlu.types import (
    SOURCE_ANAPHORA,
    SOURCE_COMMAND,
    SOURCE_FALLBACK,
    SOURCE_PATTERN,
    ConfidenceLevel,
    Intent,
)
from atlas.errors import RuleTableError


@pytest.fixture
def classifier() -> IntentClassifier:
    return IntentClassifier()


@pytest.fixture
def store(clock) -> ContextStore:
    return ContextStore(clock=clock)


class TestCommands:
    def test_zero_argument_command(self, classifier):
        intent = classifier.classify("pause")
        assert intent.name == "media_control"
        assert intent.entities == {"action": "pause"}
        assert intent.confidence == 1.0
        assert intent.source == SOURCE_COMMAND

    def test_command_with_filler_words(self, classifier):
        assert classifier.classify("next song now").entities["action"] == "next"

    def test_polite_wrapping_is_ignored(self, classifier):
        intent = classifier.classify("Hey Atlas, pause please")
        assert intent.name == "media_control"
        assert intent.entities["action"] == "pause"

    def test_typo_is_corrected_before_matching(self, classifier):
        assert classifier.classify("pasue").name == "media_control"

    def test_determinism(self, classifier, store):
        store.record("open chrome", Intent("open_app", {"app": "chrome"}))
        first = classifier.classify("close that", store)
        second = classifier.classify("close that", store)
        assert first == second


class TestPatterns:
    def test_play_on_platform(self, classifier):
        intent = classifier.classify("play despacito on spotify")
        assert intent.name == "play_music"
        assert intent.entities == {"query": "despacito", "platform": "spotify"}
        assert intent.source == SOURCE_PATTERN

    def test_open_app(self, classifier):
        intent = classifier.classify("could you open chrome please")
        assert intent.name == "open_app"
        assert intent.entities["app"] == "chrome"

    def test_path_keeps_case(self, classifier):
        intent = classifier.classify(r"delete C:\temp\Report.pdf")
        assert intent.name == "delete_file"
        assert intent.entities["target"] == r"C:\temp\Report.pdf"

    def test_slang_words_inside_paths_are_kept(self, classifier):
        assert classifier.classify("delete /tmp/kill.txt").entities["target"] == "/tmp/kill.txt"
        intent = classifier.classify("nuke ~/Blast/shh.log")
        assert intent.name == "delete_file"
        assert intent.entities["target"] == "~/Blast/shh.log"

    def test_bare_file_name_is_taken_as_typed(self, classifier):
        intent = classifier.classify("delete kill")
        assert intent.name == "delete_file"
        assert intent.entities["target"] == "kill"
        intent = classifier.classify("move nuke.txt to archive")
        assert intent.entities == {"source": "nuke.txt", "destination": "archive"}

    def test_move_has_source_and_destination(self, classifier):
        intent = classifier.classify("move notes.txt to Documents")
        assert intent.name == "move_file"
        assert intent.entities == {"source": "notes.txt", "destination": "Documents"}

    def test_volume_level_is_clamped(self, classifier):
        intent = classifier.classify("set volume to 150")
        assert intent.name == "volume_control"
        assert intent.entities["level"] == "100"
        assert intent.entities["action"] == "set"

    def test_missing_capability_is_carried(self, classifier):
        intent = classifier.classify("remind me to call mom")
        assert intent.name == "set_reminder"
        assert intent.missing_capability == "reminders"

    def test_code_help_captures_the_whole_request(self, classifier):
        intent = classifier.classify("write a python function to reverse a list")
        assert intent.name == "code_help"
        assert intent.entities["topic"] == "code"
        assert intent.entities["message"] == "write a python function to reverse a list"

    def test_run_a_scan_is_not_an_app(self, classifier):
        intent = classifier.classify("run a quick virus scan")
        assert intent.name == "security_scan"
        assert intent.entities["mode"] == "quick"
        assert classifier.classify("run spotify").name == "open_app"

    def test_bare_known_app_name(self, classifier):
        intent = classifier.classify("spotify")
        assert intent.name == "open_app"
        assert intent.confidence == pytest.approx(0.9)


class TestUndoCounts:
    def test_plain_undo_is_one(self, classifier):
        intent = classifier.classify("undo")
        assert intent.name == "undo"
        assert intent.entities["count"] == "1"

    def test_number_word(self, classifier):
        assert classifier.classify("undo three").entities["count"] == "3"

    def test_count_clamped_to_max(self, classifier):
        assert classifier.classify("undo 50").entities["count"] == "20"

    def test_custom_max(self):
        c = IntentClassifier(config=ClassifierConfig(max_undo_count=5))
        assert c.classify("undo 9 actions").entities["count"] == "5"

    def test_undo_all_means_max(self, classifier):
        assert classifier.classify("undo all").entities["count"] == "20"

    def test_unparseable_count_is_absent_not_zero(self, classifier):
        intent = classifier.classify("undo xyz")
        assert intent.name == "undo"
        assert "count" not in intent.entities

    def test_undo_item(self, classifier):
        intent = classifier.classify("undo #2")
        assert intent.name == "undo_item"
        assert intent.entities["ordinal"] == "2"

    def test_undo_history_is_a_command(self, classifier):
        assert classifier.classify("undo history").name == "undo_history"


class TestAnaphora:
    def test_close_that_after_open_chrome(self, classifier, store):
        store.record("open chrome", classifier.classify("open chrome", store))
        intent = classifier.classify("close that", store)
        assert intent.name == "close_app"
        assert intent.entities["app"] == "chrome"
        assert intent.is_anaphoric
        assert intent.source == SOURCE_ANAPHORA
        assert intent.confidence == 1.0

    def test_confidence_decays_with_age(self, classifier, store):
        store.record("open chrome", Intent("open_app", {"app": "chrome"}))
        store.record("pause", Intent("media_control", {"action": "pause"}))
        store.record("next", Intent("media_control", {"action": "next"}))
        intent = classifier.classify("close that", store)
        assert intent.entities["app"] == "chrome"
        assert intent.confidence == pytest.approx(0.85 ** 2)

    def test_unresolved_pronoun_is_low_confidence(self, classifier, store):
        intent = classifier.classify("close that", store)
        assert intent.name == "close_app"
        assert "app" not in intent.entities
        assert intent.confidence == pytest.approx(0.3)
        assert intent.level == ConfidenceLevel.VERY_LOW

    def test_reference_outside_lookback_is_ignored(self, store):
        c = IntentClassifier(config=ClassifierConfig(anaphora_lookback=2))
        store.record("open chrome", Intent("open_app", {"app": "chrome"}))
        store.record("pause", Intent("media_control", {"action": "pause"}))
        store.record("next", Intent("media_control", {"action": "next"}))
        assert "app" not in c.classify("close it", store).entities

    def test_delete_that_file(self, classifier, store):
        store.record("create file notes.txt", classifier.classify("create file notes.txt", store))
        intent = classifier.classify("delete that", store)
        assert intent.name == "delete_file"
        assert intent.entities["target"] == "notes.txt"


class TestRepeat:
    def test_again_repeats_last_turn(self, classifier, store):
        store.record("play jazz", Intent("play_music", {"query": "jazz"}), outcome_success=True)
        intent = classifier.classify("again", store)
        assert intent.name == "play_music"
        assert intent.entities["query"] == "jazz"
        assert intent.is_anaphoric

    def test_try_again_prefers_the_failed_turn(self, classifier, store):
        store.record("open spotify", Intent("open_app", {"app": "spotify"}), outcome_success=False)
        store.record("pause", Intent("media_control", {"action": "pause"}), outcome_success=True)
        intent = classifier.classify("try again", store)
        assert intent.name == "open_app"
        assert intent.entities["app"] == "spotify"
        assert intent.confidence == pytest.approx(0.85)

    def test_nothing_to_repeat(self, classifier, store):
        intent = classifier.classify("again", store)
        assert intent.name == "repeat"
        assert intent.confidence == pytest.approx(0.3)

    def test_undo_is_never_repeated(self, classifier, store):
        store.record("undo", Intent("undo", {"count": "1"}))
        assert classifier.classify("again", store).name == "repeat"


class TestFallback:
    def test_keyword_guess_is_below_rule_confidence(self, classifier):
        intent = classifier.classify("i need a louder sound")
        assert intent.name == "volume_control"
        assert intent.source == SOURCE_FALLBACK
        assert intent.confidence == pytest.approx(0.4)

    def test_no_match_is_conversation(self, classifier):
        intent = classifier.classify("blorf zzz")
        assert intent.name == "conversation"
        assert intent.entities["message"] == "blorf zzz"
        assert intent.confidence == pytest.approx(0.5)

    def test_empty_input_is_unknown(self, classifier):
        intent = classifier.classify("   ")
        assert intent.name == "unknown"
        assert intent.confidence == 0.0


class TestUserRules:
    def test_yaml_rules_take_precedence(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(
            "commands:\n"
            "  - intent: screenshot\n"
            "    phrases: [snap]\n"
            "patterns:\n"
            "  - name: notes\n"
            "    pattern: 'notes about (?P<query>.+)'\n"
            "    intent: find_files\n",
            encoding="utf-8",
        )
        c = IntentClassifier(RuleTable.from_yaml(path))
        assert c.classify("snap").name == "screenshot"
        intent = c.classify("notes about taxes")
        assert intent.name == "find_files"
        assert intent.entities["query"] == "taxes"
        # Defaults still apply.
        assert c.classify("pause").name == "media_control"

    def test_bad_pattern_is_rejected(self):
        with pytest.raises(RuleTableError):
            RuleTable.from_mapping({"patterns": [{"intent": "x", "pattern": "("}]})

    def test_command_needs_phrases(self):
        with pytest.raises(RuleTableError):
            RuleTable.from_mapping({"commands": [{"intent": "x"}]})
