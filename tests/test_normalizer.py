"""Tests for utterance normalization."""

from __future__ import annotations

import pytest

from atlas.nlu.normalizer import Normalizer


@pytest.fixture
def normalizer() -> Normalizer:
    return Normalizer()


class TestWhitespaceAndPunctuation:
    def test_collapses_whitespace(self, normalizer):
        assert normalizer.normalize("  open    chrome  ") == "open chrome"

    def test_strips_trailing_punctuation(self, normalizer):
        assert normalizer.normalize("pause!!") == "pause"
        assert normalizer.normalize("what's the weather?") == "what's the weather"

    def test_strips_leading_punctuation(self, normalizer):
        assert normalizer.normalize("... next") == "next"

    def test_empty_and_none(self, normalizer):
        assert normalizer.normalize("") == ""
        assert normalizer.normalize(None) == ""
        assert normalizer.normalize(" ?! ") == ""


class TestCase:
    def test_normalize_lowercases(self, normalizer):
        assert normalizer.normalize("Open Chrome") == "open chrome"

    def test_strip_keeps_case_for_paths(self, normalizer):
        assert normalizer.strip(r"delete C:\Temp\Report.pdf") == r"delete C:\Temp\Report.pdf"


class TestTyposAndSlang:
    def test_typo_correction(self, normalizer):
        assert normalizer.normalize("wether in paris") == "weather in paris"

    def test_typo_correction_can_be_disabled(self):
        n = Normalizer(correct_typos=False)
        assert n.normalize("wether") == "wether"

    def test_custom_typo_table(self):
        n = Normalizer(typos={"chorme": "chrome"}, slang={})
        assert n.normalize("open chorme") == "open chrome"

    def test_custom_slang_longest_phrase_wins(self):
        n = Normalizer(typos={}, slang={"crank": "louder", "crank it up": "volume up"})
        assert n.normalize("crank it up") == "volume up"

    def test_slang_never_rewrites_inside_paths(self, normalizer):
        assert normalizer.strip("nuke /tmp/kill.txt") == "delete /tmp/kill.txt"
        assert normalizer.strip(r"move C:\shh\notes.txt to blast.log") == r"move C:\shh\notes.txt to blast.log"

    def test_clean_leaves_words_as_typed(self, normalizer):
        assert normalizer.clean("  kill   chorme!! ") == "kill chorme"


class TestContextMarkup:
    def test_strips_prior_turn_transcript(self, normalizer):
        raw = "[Context: previous turns]\nAssistant: Hello\nUser: pause the music"
        assert normalizer.normalize(raw) == "pause the music"

    def test_strips_bare_context_block(self, normalizer):
        assert normalizer.normalize("[Context: user likes jazz] next") == "next"
