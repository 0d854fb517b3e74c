"""Tests for user-facing response text."""

from __future__ import annotations

import pytest

from atlas.agent.tool_base import FailureReason, Outcome
from atlas.history.undo import ActionRecord
from atlas.nlu.types import Intent
from atlas.policy.planner import Planner
from atlas.router.formatter import ResponseFormatter, full_path, relative_time
from atlas.tools.files import FileTools


@pytest.fixture
def formatter() -> ResponseFormatter:
    return ResponseFormatter()


def _plan(name: str, **entities: str):
    return Planner().plan(Intent(name, entities))


class TestDecisions:
    def test_clarification(self, formatter):
        assert formatter.render(_plan("play_music")) == "What would you like me to play?"

    def test_guidance_is_numbered(self, formatter):
        text = formatter.render(_plan("send_email"))
        lines = text.splitlines()
        assert "email" in lines[0]
        assert lines[1].startswith("1. ")
        assert lines[2].startswith("2. ")

    def test_confirmation_prompt_names_the_action_and_risk(self, formatter):
        text = formatter.render(_plan("power_control", action="shutdown"))
        assert text.startswith("Shutdown the computer?")
        assert "unsaved work" in text

    def test_final_confirmation_lists_full_paths(self, formatter):
        decision = _plan("delete_file", target="/tmp/report.pdf")
        text = formatter.confirmation_prompt(decision, stage=2)
        assert "Final check" in text
        assert "  - /tmp/report.pdf" in text
        assert "cannot be recovered" in text

    def test_relative_path_is_expanded(self, formatter):
        decision = _plan("delete_file", target="report.pdf")
        text = formatter.final_confirmation_prompt(decision)
        assert full_path("report.pdf") in text

    def test_paths_use_the_file_tools_resolver(self, tmp_path):
        files = FileTools(root=tmp_path)
        formatter = ResponseFormatter(path_resolver=files.resolve)
        text = formatter.final_confirmation_prompt(_plan("delete_file", target="documents"))
        assert f"  - {tmp_path / 'Documents'}" in text


class TestOutcomes:
    def test_success(self, formatter):
        assert formatter.outcome(Outcome.ok("Opened Chrome.")) == "Opened Chrome."

    def test_failure_keeps_tool_message(self, formatter):
        text = formatter.outcome(Outcome.fail("File not found: /tmp/x"))
        assert text == "I couldn't find that. (File not found: /tmp/x)"

    def test_permission(self, formatter):
        assert formatter.error("Permission denied").startswith("I don't have permission")

    def test_unknown_failure(self, formatter):
        assert formatter.error("exit code 3") == "That didn't work. (exit code 3)"

    def test_not_reversible_is_verbatim(self, formatter):
        message = "Cannot undo \"Deleted x\": that action can't be reversed."
        assert formatter.outcome(Outcome.fail(message, FailureReason.NOT_REVERSIBLE)) == message

    def test_cancelled(self, formatter):
        assert formatter.outcome(Outcome.for_cancellation()) == "Cancelled."
        assert formatter.outcome(Outcome.for_cancellation("Scan stopped after 3 of 9 files.")) == \
            "Cancelled. Scan stopped after 3 of 9 files."


class TestHistory:
    def test_empty(self, formatter):
        assert "nothing" in formatter.undo_history([])

    def test_lists_newest_first_with_age(self, formatter):
        records = [
            ActionRecord.create("file.create", "Created notes.txt", reverse_procedure=lambda: None, timestamp=990.0),
            ActionRecord.create("file.delete", "Deleted old.txt", timestamp=400.0),
        ]
        text = formatter.undo_history(records, now=1000.0)
        lines = text.splitlines()
        assert lines[1] == "1. Created notes.txt (10s ago)"
        assert lines[2] == "2. Deleted old.txt (10m ago) [can't undo]"


class TestRelativeTime:
    @pytest.mark.parametrize("delta,expected", [
        (1, "just now"),
        (30, "30s ago"),
        (120, "2m ago"),
        (7200, "2h ago"),
        (172800, "2d ago"),
    ])
    def test_buckets(self, delta, expected):
        assert relative_time(1000.0, now=1000.0 + delta) == expected
