"""Tests for file system tools and their reverse procedures."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from atlas.agent.registry import ToolRegistry
from atlas.agent.tool_base import NULL_PROGRESS, CancellationRequested, CancellationToken, FailureReason
from atlas.tools.files import FileTools, register_file_tools


@pytest.fixture
def files(tmp_path) -> FileTools:
    return FileTools(root=tmp_path)


def _signals():
    return {"cancel": CancellationToken(), "progress": NULL_PROGRESS}


class TestResolve:
    def test_relative_to_root(self, files, tmp_path):
        assert files.resolve("notes.txt") == tmp_path / "notes.txt"

    def test_known_folder(self, files, tmp_path):
        assert files.resolve("Downloads") == tmp_path / "Downloads"
        assert files.resolve("home") == tmp_path

    def test_absolute_path_is_kept(self, files, tmp_path):
        other = tmp_path / "x" / "y.txt"
        assert files.resolve(str(other)) == other


class TestCreate:
    def test_create_and_reverse(self, files, tmp_path):
        outcome = files.create_file(target="notes.txt")
        assert outcome.success and outcome.mutated_state
        assert (tmp_path / "notes.txt").exists()

        assert outcome.reverse_procedure().success
        assert not (tmp_path / "notes.txt").exists()

    def test_reverse_keeps_edited_file(self, files, tmp_path):
        outcome = files.create_file(target="notes.txt")
        (tmp_path / "notes.txt").write_text("important", encoding="utf-8")
        assert not outcome.reverse_procedure().success
        assert (tmp_path / "notes.txt").exists()

    def test_existing_file(self, files, tmp_path):
        (tmp_path / "notes.txt").touch()
        assert not files.create_file(target="notes.txt").success

    def test_folder_and_reverse(self, files, tmp_path):
        outcome = files.make_folder(target="reports")
        assert (tmp_path / "reports").is_dir()
        assert outcome.reverse_procedure().success
        assert not (tmp_path / "reports").exists()


class TestMoveRenameCopy:
    def test_move_into_folder_and_back(self, files, tmp_path):
        (tmp_path / "a.txt").write_text("a", encoding="utf-8")
        (tmp_path / "archive").mkdir()
        outcome = files.move(source="a.txt", destination="archive")
        assert outcome.success
        assert (tmp_path / "archive" / "a.txt").exists()
        assert not (tmp_path / "a.txt").exists()

        assert outcome.reverse_procedure().success
        assert (tmp_path / "a.txt").read_text(encoding="utf-8") == "a"

    def test_move_missing_source(self, files):
        outcome = files.move(source="nope.txt", destination="archive")
        assert not outcome.success
        assert "File not found" in outcome.message

    def test_rename_and_back(self, files, tmp_path):
        (tmp_path / "a.txt").touch()
        outcome = files.rename(source="a.txt", new_name="b.txt")
        assert (tmp_path / "b.txt").exists()
        outcome.reverse_procedure()
        assert (tmp_path / "a.txt").exists()
        assert not (tmp_path / "b.txt").exists()

    def test_rename_rejects_paths(self, files, tmp_path):
        (tmp_path / "a.txt").touch()
        outcome = files.rename(source="a.txt", new_name="sub/b.txt")
        assert outcome.failure_reason == FailureReason.INVALID_PARAMETERS

    def test_copy_and_remove_copy(self, files, tmp_path):
        (tmp_path / "a.txt").write_text("a", encoding="utf-8")
        outcome = files.copy(source="a.txt", destination="backup.txt")
        assert (tmp_path / "backup.txt").read_text(encoding="utf-8") == "a"
        outcome.reverse_procedure()
        assert not (tmp_path / "backup.txt").exists()
        assert (tmp_path / "a.txt").exists()


class TestDelete:
    def test_delete_has_no_reverse(self, files, tmp_path):
        (tmp_path / "report.pdf").touch()
        outcome = files.delete(target="report.pdf")
        assert outcome.success
        assert outcome.mutated_state
        assert outcome.reverse_procedure is None
        assert not (tmp_path / "report.pdf").exists()

    def test_delete_missing(self, files):
        assert not files.delete(target="ghost.pdf").success


class TestFindAndOrganize:
    def test_find(self, files, tmp_path):
        (tmp_path / "docs").mkdir()
        (tmp_path / "docs" / "tax-2024.pdf").touch()
        (tmp_path / "other.txt").touch()
        outcome = files.find(query="tax", **_signals())
        assert outcome.success
        assert outcome.data == [str(tmp_path / "docs" / "tax-2024.pdf")]

    def test_find_nothing(self, files):
        outcome = files.find(query="zzz", **_signals())
        assert outcome.data == []

    def test_find_stops_when_cancelled(self, files):
        signals = _signals()
        signals["cancel"].cancel()
        with pytest.raises(CancellationRequested):
            files.find(query="tax", **signals)

    def test_organize_and_put_back(self, files, tmp_path):
        folder = tmp_path / "Downloads"
        folder.mkdir()
        for name in ("photo.jpg", "song.mp3", "notes.txt", "mystery.xyz"):
            (folder / name).touch()

        outcome = files.organize(target="downloads", **_signals())
        assert outcome.success
        assert (folder / "Images" / "photo.jpg").exists()
        assert (folder / "Audio" / "song.mp3").exists()
        assert (folder / "Documents" / "notes.txt").exists()
        assert (folder / "mystery.xyz").exists()

        assert outcome.reverse_procedure().success
        assert sorted(p.name for p in folder.iterdir()) == ["mystery.xyz", "notes.txt", "photo.jpg", "song.mp3"]

    def test_organize_cancelled_before_start(self, files, tmp_path):
        folder = tmp_path / "Downloads"
        folder.mkdir()
        (folder / "photo.jpg").touch()
        signals = _signals()
        signals["cancel"].cancel()
        assert files.organize(target="downloads", **signals).cancelled


class TestOpen:
    def test_open_uses_xdg_open(self, files, tmp_path):
        (tmp_path / "a.txt").touch()
        with patch("atlas.tools.files.shutil.which", return_value="/usr/bin/xdg-open"), \
                patch("atlas.tools.files.subprocess.Popen") as popen:
            outcome = files.open_path(target="a.txt")
        assert outcome.success
        assert popen.call_args[0][0] == ["/usr/bin/xdg-open", str(tmp_path / "a.txt")]

    def test_open_missing(self, files):
        assert not files.open_path(folder="nowhere").success


class TestRegistration:
    @pytest.mark.asyncio
    async def test_registered_tools_run_through_the_tool_interface(self, files, tmp_path):
        registry = ToolRegistry()
        assert register_file_tools(registry, files) == 9
        tool = registry.get("file.create")
        outcome = await tool.execute({"target": "x.txt"}, CancellationToken())
        assert outcome.success
        assert (tmp_path / "x.txt").exists()
        assert registry.get("files.organize").required_params == ("target",)
