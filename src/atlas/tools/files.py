"""File system tools.

Relative paths resolve against ``root`` (the home directory by default).
State-changing tools return a reverse procedure except ``file.delete``,
which is permanent.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Any, Optional

from atlas.agent.registry import ToolRegistry
from atlas.agent.tool_base import (
    CancellationToken,
    FailureReason,
    Outcome,
    ProgressReporter,
)

logger = logging.getLogger(__name__)

KNOWN_FOLDERS = {
    "home": "",
    "desktop": "Desktop",
    "documents": "Documents",
    "downloads": "Downloads",
    "music": "Music",
    "pictures": "Pictures",
    "videos": "Videos",
}

# Extension -> folder used by files.organize.
FILE_TYPES: dict[str, str] = {
    **dict.fromkeys((".jpg", ".jpeg", ".png", ".gif", ".bmp", ".svg", ".webp", ".heic"), "Images"),
    **dict.fromkeys((".mp4", ".mkv", ".avi", ".mov", ".webm"), "Videos"),
    **dict.fromkeys((".mp3", ".flac", ".wav", ".ogg", ".m4a"), "Audio"),
    **dict.fromkeys((".pdf", ".doc", ".docx", ".odt", ".txt", ".md", ".rtf"), "Documents"),
    **dict.fromkeys((".xls", ".xlsx", ".ods", ".csv"), "Spreadsheets"),
    **dict.fromkeys((".zip", ".tar", ".gz", ".7z", ".rar", ".xz"), "Archives"),
    **dict.fromkeys((".py", ".js", ".ts", ".c", ".cpp", ".go", ".rs", ".java", ".sh"), "Code"),
}

_MAX_FIND_RESULTS = 50


def resolve_path(value: str, root: Optional[str | Path] = None) -> Path:
    """Where a spoken path points: known folder names, then ~, then ``root``."""
    base = Path(root).expanduser() if root else Path.home()
    key = value.strip().lower()
    if key in KNOWN_FOLDERS:
        return base / KNOWN_FOLDERS[key]
    p = Path(value.strip()).expanduser()
    return p if p.is_absolute() else base / p


class FileTools:
    """Path-resolving file operations bound to one root directory."""

    def __init__(self, root: Optional[str | Path] = None):
        self.root = Path(root).expanduser() if root else Path.home()

    # ── helpers ──────────────────────────────────────────────────────

    def resolve(self, value: str) -> Path:
        return resolve_path(value, self.root)

    @staticmethod
    def _missing(path: Path) -> Outcome:
        return Outcome.fail(f"File not found: {path}", FailureReason.TOOL_ERROR)

    # ── create / mkdir ───────────────────────────────────────────────

    def create_file(self, *, target: str = "", **_: Any) -> Outcome:
        path = self.resolve(target)
        if path.exists():
            return Outcome.fail(f"{path} already exists.")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch()

        def reverse() -> Outcome:
            if path.exists() and path.stat().st_size == 0:
                path.unlink()
                return Outcome.ok(f"Removed {path.name}.")
            return Outcome.fail(f"{path.name} has changed since it was created; leaving it in place.")

        return Outcome.ok(
            f"Created {path}.",
            mutated_state=True,
            reverse_procedure=reverse,
            description=f"Created {path.name}",
            target=str(path),
        )

    def make_folder(self, *, target: str = "", **_: Any) -> Outcome:
        path = self.resolve(target)
        if path.exists():
            return Outcome.fail(f"{path} already exists.")
        path.mkdir(parents=True)

        def reverse() -> Outcome:
            try:
                path.rmdir()
            except OSError:
                return Outcome.fail(f"{path.name} is no longer empty; leaving it in place.")
            return Outcome.ok(f"Removed the folder {path.name}.")

        return Outcome.ok(
            f"Created the folder {path}.",
            mutated_state=True,
            reverse_procedure=reverse,
            description=f"Created folder {path.name}",
            target=str(path),
        )

    # ── move / rename / copy ─────────────────────────────────────────

    def move(self, *, source: str = "", destination: str = "", **_: Any) -> Outcome:
        src = self.resolve(source)
        if not src.exists():
            return self._missing(src)
        dest = self.resolve(destination)
        if dest.is_dir():
            dest = dest / src.name
        if dest.exists():
            return Outcome.fail(f"{dest} already exists.")
        dest.parent.mkdir(parents=True, exist_ok=True)
        final = Path(shutil.move(str(src), str(dest)))

        def reverse() -> Outcome:
            if src.exists():
                return Outcome.fail(f"Something else is now at {src}.")
            shutil.move(str(final), str(src))
            return Outcome.ok(f"Moved {src.name} back to {src.parent}.")

        return Outcome.ok(
            f"Moved {src.name} to {final.parent}.",
            mutated_state=True,
            reverse_procedure=reverse,
            description=f"Moved {src.name} to {final.parent.name or final.parent}",
            target=str(final),
        )

    def rename(self, *, source: str = "", new_name: str = "", **_: Any) -> Outcome:
        src = self.resolve(source)
        if not src.exists():
            return self._missing(src)
        if os.sep in new_name or "/" in new_name:
            return Outcome.fail("The new name can't contain a path.", FailureReason.INVALID_PARAMETERS)
        dest = src.with_name(new_name)
        if dest.exists():
            return Outcome.fail(f"{dest} already exists.")
        src.rename(dest)

        def reverse() -> Outcome:
            if src.exists():
                return Outcome.fail(f"Something else is now called {src.name}.")
            dest.rename(src)
            return Outcome.ok(f"Renamed {dest.name} back to {src.name}.")

        return Outcome.ok(
            f"Renamed {src.name} to {dest.name}.",
            mutated_state=True,
            reverse_procedure=reverse,
            description=f"Renamed {src.name} to {dest.name}",
            target=str(dest),
        )

    def copy(self, *, source: str = "", destination: str = "", **_: Any) -> Outcome:
        src = self.resolve(source)
        if not src.exists():
            return self._missing(src)
        dest = self.resolve(destination)
        if dest.is_dir():
            dest = dest / src.name
        if dest.exists():
            return Outcome.fail(f"{dest} already exists.")
        dest.parent.mkdir(parents=True, exist_ok=True)
        if src.is_dir():
            shutil.copytree(src, dest)
        else:
            shutil.copy2(src, dest)

        def reverse() -> Outcome:
            if not dest.exists():
                return Outcome.ok(f"The copy of {src.name} is already gone.")
            if dest.is_dir():
                shutil.rmtree(dest)
            else:
                dest.unlink()
            return Outcome.ok(f"Removed the copy of {src.name}.")

        return Outcome.ok(
            f"Copied {src.name} to {dest.parent}.",
            mutated_state=True,
            reverse_procedure=reverse,
            description=f"Copied {src.name} to {dest.parent.name or dest.parent}",
            target=str(dest),
        )

    # ── delete ───────────────────────────────────────────────────────

    def delete(self, *, target: str = "", **_: Any) -> Outcome:
        path = self.resolve(target)
        if not path.exists():
            return self._missing(path)
        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink()
        logger.info("[Files] permanently deleted %s", path)
        return Outcome.ok(
            f"Deleted {path}.",
            mutated_state=True,
            description=f"Deleted {path.name}",
            target=str(path),
        )

    # ── read-only ────────────────────────────────────────────────────

    def open_path(self, *, target: str = "", folder: str = "", **_: Any) -> Outcome:
        path = self.resolve(target or folder)
        if not path.exists():
            return self._missing(path)
        opener = shutil.which("xdg-open")
        if opener is None:
            return Outcome.fail("xdg-open is not installed.")
        subprocess.Popen(
            [opener, str(path)],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
        return Outcome.ok(f"Opened {path}.", target=str(path))

    def find(
        self,
        *,
        query: str = "",
        cancel: CancellationToken,
        progress: ProgressReporter,
        **_: Any,
    ) -> Outcome:
        pattern = query if any(c in query for c in "*?[") else f"*{query}*"
        matches: list[str] = []
        scanned = 0
        for dirpath, dirnames, filenames in os.walk(self.root):
            cancel.raise_if_cancelled()
            dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            for name in filenames:
                if fnmatch.fnmatch(name.lower(), pattern.lower()):
                    matches.append(os.path.join(dirpath, name))
            scanned += 1
            if scanned % 200 == 0:
                progress.report("searching", items=scanned)
            if len(matches) >= _MAX_FIND_RESULTS:
                break
        if not matches:
            return Outcome.ok(f"No files matching \"{query}\" under {self.root}.", data=[])
        lines = [f"Found {len(matches)} file(s) matching \"{query}\":"]
        lines.extend(f"  {m}" for m in matches[:10])
        if len(matches) > 10:
            lines.append(f"  ... and {len(matches) - 10} more")
        return Outcome.ok("\n".join(lines), data=matches)

    # ── organize ─────────────────────────────────────────────────────

    def organize(
        self,
        *,
        target: str = "",
        cancel: CancellationToken,
        progress: ProgressReporter,
        **_: Any,
    ) -> Outcome:
        folder = self.resolve(target)
        if not folder.is_dir():
            return self._missing(folder)
        files = sorted(p for p in folder.iterdir() if p.is_file() and not p.name.startswith("."))
        moved: list[tuple[Path, Path]] = []
        for i, path in enumerate(files, start=1):
            if cancel.cancelled:
                break
            bucket = FILE_TYPES.get(path.suffix.lower())
            if bucket is None:
                continue
            dest = folder / bucket / path.name
            if dest.exists():
                continue
            dest.parent.mkdir(exist_ok=True)
            path.rename(dest)
            moved.append((path, dest))
            progress.report("organizing", percent=100.0 * i / len(files), items=i)

        if not moved:
            if cancel.cancelled:
                return Outcome.for_cancellation()
            return Outcome.ok(f"Nothing to organize in {folder.name}.")

        def reverse() -> Outcome:
            failed = 0
            for original, dest in reversed(moved):
                if original.exists() or not dest.exists():
                    failed += 1
                    continue
                dest.rename(original)
            for bucket in {dest.parent for _, dest in moved}:
                try:
                    bucket.rmdir()
                except OSError:
                    pass
            if failed:
                return Outcome.fail(
                    f"Put back {len(moved) - failed} of {len(moved)} files; {failed} had changed."
                )
            return Outcome.ok(f"Put {len(moved)} files back in {folder.name}.")

        suffix = " (stopped early)" if cancel.cancelled else ""
        return Outcome.ok(
            f"Organized {len(moved)} files in {folder.name} by type{suffix}.",
            mutated_state=True,
            reverse_procedure=reverse,
            description=f"Organized {len(moved)} files in {folder.name}",
            target=str(folder),
        )


def register_file_tools(registry: ToolRegistry, tools: Optional[FileTools] = None) -> int:
    tools = tools or FileTools()
    registry.register_function("file.create", tools.create_file, required=("target",))
    registry.register_function("file.mkdir", tools.make_folder, required=("target",))
    registry.register_function("file.move", tools.move, required=("source", "destination"))
    registry.register_function("file.rename", tools.rename, required=("source", "new_name"))
    registry.register_function("file.copy", tools.copy, required=("source", "destination"))
    registry.register_function("file.delete", tools.delete, required=("target",))
    registry.register_function("files.open", tools.open_path)
    registry.register_function("files.find", tools.find, required=("query",), pass_signals=True)
    registry.register_function("files.organize", tools.organize, required=("target",), pass_signals=True)
    return 9
