"""Heuristic file scan: flags risky executables and disguised extensions.

Not an antivirus. It walks a folder tree, reports progress as it goes and
stops between files when cancelled.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional

from atlas.agent.tool_base import (
    NULL_PROGRESS,
    CancellationToken,
    Outcome,
    ProgressReporter,
    Tool,
)

logger = logging.getLogger(__name__)

RISKY_EXTENSIONS = frozenset({
    ".exe", ".scr", ".bat", ".cmd", ".com", ".pif", ".vbs", ".js", ".jar", ".msi", ".ps1", ".hta",
})
DECOY_EXTENSIONS = frozenset({".pdf", ".doc", ".docx", ".jpg", ".png", ".txt", ".xls", ".xlsx", ".mp3", ".zip"})

_YIELD_EVERY = 100


def classify_file(path: Path) -> Optional[str]:
    """Reason a file looks suspicious, or None."""
    suffixes = [s.lower() for s in path.suffixes]
    if not suffixes:
        return None
    last = suffixes[-1]
    if last in RISKY_EXTENSIONS and len(suffixes) >= 2 and suffixes[-2] in DECOY_EXTENSIONS:
        return f"disguised executable ({''.join(suffixes[-2:])})"
    if last in RISKY_EXTENSIONS:
        return "Windows executable or script"
    return None


class SecurityScanTool(Tool):
    name = "security.scan"
    description = "Scan a folder for suspicious files."
    timeout = 600.0

    def __init__(self, quick_root: Optional[Path] = None, full_root: Optional[Path] = None):
        self.quick_root = quick_root or Path.home() / "Downloads"
        self.full_root = full_root or Path.home()

    async def execute(
        self,
        parameters: Mapping[str, Any],
        cancel: CancellationToken,
        progress: ProgressReporter = NULL_PROGRESS,
    ) -> Outcome:
        mode = str(parameters.get("mode") or "quick")
        root = self.quick_root if mode == "quick" else self.full_root
        if not root.is_dir():
            return Outcome.fail(f"Folder not found: {root}")

        progress.report("listing", percent=0.0, message=str(root))
        files = await asyncio.to_thread(self._list_files, root)
        total = len(files)
        findings: list[tuple[Path, str]] = []

        for i, path in enumerate(files, start=1):
            if cancel.cancelled:
                logger.info("[Scan] cancelled after %d of %d files", i - 1, total)
                return Outcome.for_cancellation(f"Scan stopped after {i - 1} of {total} files.")
            reason = classify_file(path)
            if reason:
                findings.append((path, reason))
            if i % _YIELD_EVERY == 0 or i == total:
                progress.report("scanning", percent=100.0 * i / total, items=i)
                await asyncio.sleep(0)

        progress.report("done", percent=100.0, items=total)
        if not findings:
            return Outcome.ok(f"Scanned {total} files in {root}. Nothing suspicious found.", data=[])
        lines = [f"Scanned {total} files in {root}. {len(findings)} look suspicious:"]
        lines.extend(f"  {p} ({why})" for p, why in findings[:20])
        return Outcome.ok("\n".join(lines), data=[str(p) for p, _ in findings])

    @staticmethod
    def _list_files(root: Path) -> list[Path]:
        out: list[Path] = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            out.extend(Path(dirpath) / name for name in filenames)
        return out
