"""Tests for the heuristic security scan tool."""

from __future__ import annotations

from pathlib import Path

import pytest

from atlas.agent.tool_base import CancellationToken, FailureReason, ProgressReporter
from atlas.tools.security import SecurityScanTool, classify_file


class TestClassify:
    @pytest.mark.parametrize("name,expected", [
        ("invoice.pdf.exe", "disguised executable (.pdf.exe)"),
        ("setup.exe", "Windows executable or script"),
        ("Run.BAT", "Windows executable or script"),
        ("notes.txt", None),
        ("archive.tar.gz", None),
        ("Makefile", None),
    ])
    def test_names(self, name, expected):
        assert classify_file(Path(name)) == expected


@pytest.fixture
def downloads(tmp_path) -> Path:
    root = tmp_path / "Downloads"
    (root / "sub").mkdir(parents=True)
    (root / "photo.jpg").touch()
    (root / "invoice.pdf.exe").touch()
    (root / "sub" / "setup.msi").touch()
    (root / ".cache").mkdir()
    (root / ".cache" / "hidden.exe").touch()
    return root


class TestScan:
    @pytest.mark.asyncio
    async def test_quick_scan_reports_findings(self, downloads, tmp_path):
        tool = SecurityScanTool(quick_root=downloads, full_root=tmp_path)
        outcome = await tool.execute({"mode": "quick"}, CancellationToken())
        assert outcome.success
        assert outcome.message.startswith(f"Scanned 3 files in {downloads}. 2 look suspicious:")
        assert sorted(outcome.data) == sorted([
            str(downloads / "invoice.pdf.exe"),
            str(downloads / "sub" / "setup.msi"),
        ])

    @pytest.mark.asyncio
    async def test_clean_folder(self, tmp_path):
        (tmp_path / "a.txt").touch()
        outcome = await SecurityScanTool(quick_root=tmp_path).execute({}, CancellationToken())
        assert outcome.message == f"Scanned 1 files in {tmp_path}. Nothing suspicious found."
        assert outcome.data == []

    @pytest.mark.asyncio
    async def test_missing_folder(self, tmp_path):
        tool = SecurityScanTool(quick_root=tmp_path / "nope")
        assert not (await tool.execute({"mode": "quick"}, CancellationToken())).success

    @pytest.mark.asyncio
    async def test_progress_events(self, downloads):
        events = []
        progress = ProgressReporter("security.scan", [events.append])
        await SecurityScanTool(quick_root=downloads).execute({}, CancellationToken(), progress)
        phases = [e.phase for e in events]
        assert phases[0] == "listing"
        assert phases[-1] == "done"
        assert "scanning" in phases
        assert events[-1].percent == 100.0
        assert events[-1].items == 3

    @pytest.mark.asyncio
    async def test_cancelled_before_first_file(self, downloads):
        token = CancellationToken()
        token.cancel()
        outcome = await SecurityScanTool(quick_root=downloads).execute({}, token)
        assert outcome.failure_reason == FailureReason.CANCELLED
        assert outcome.message == "Scan stopped after 0 of 3 files."
