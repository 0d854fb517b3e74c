"""Desktop control through standard Linux utilities.

playerctl (MPRIS media), pactl (PulseAudio/PipeWire volume), xdg-open,
pkill, systemctl and loginctl. A missing utility is a failed Outcome, not
an exception.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from typing import Any, Optional
from urllib.parse import quote_plus

from atlas.agent.registry import ToolRegistry
from atlas.agent.tool_base import FailureReason, Outcome

logger = logging.getLogger(__name__)

# Spoken name -> candidate executables, first found wins.
APP_COMMANDS: dict[str, tuple[str, ...]] = {
    "chrome": ("google-chrome", "chromium", "chromium-browser"),
    "firefox": ("firefox",),
    "brave": ("brave-browser", "brave"),
    "spotify": ("spotify",),
    "discord": ("discord",),
    "slack": ("slack",),
    "telegram": ("telegram-desktop", "telegram"),
    "zoom": ("zoom",),
    "vlc": ("vlc",),
    "vscode": ("code", "code-insiders"),
    "code": ("code", "code-insiders"),
    "terminal": ("gnome-terminal", "konsole", "xfce4-terminal", "alacritty", "kitty"),
    "files": ("nautilus", "nemo", "thunar", "dolphin"),
    "calculator": ("gnome-calculator", "kcalc", "galculator"),
    "settings": ("gnome-control-center", "systemsettings"),
    "obsidian": ("obsidian",),
    "notion": ("notion-app", "notion"),
}

DENIED_APPS = frozenset({"sudo", "su", "pkexec", "rm", "dd", "mkfs", "fdisk", "parted"})

PLAY_URLS = {
    "youtube": "https://www.youtube.com/results?search_query={q}",
    "youtube music": "https://music.youtube.com/search?q={q}",
    "soundcloud": "https://soundcloud.com/search?q={q}",
    "spotify": "spotify:search:{q}",
}

_PLAYERCTL_ACTIONS = {"play": "play", "pause": "pause", "next": "next", "previous": "previous"}

_VOLUME_ARGS = {
    "mute": ("set-sink-mute", "@DEFAULT_SINK@", "1"),
    "unmute": ("set-sink-mute", "@DEFAULT_SINK@", "0"),
    "up": ("set-sink-volume", "@DEFAULT_SINK@", "+10%"),
    "down": ("set-sink-volume", "@DEFAULT_SINK@", "-10%"),
    "max": ("set-sink-volume", "@DEFAULT_SINK@", "100%"),
}

POWER_COMMANDS: dict[str, tuple[str, ...]] = {
    "shutdown": ("systemctl", "poweroff"),
    "restart": ("systemctl", "reboot"),
    "sleep": ("systemctl", "suspend"),
    "hibernate": ("systemctl", "hibernate"),
    "lock": ("loginctl", "lock-session"),
    "logoff": ("loginctl", "terminate-session", "self"),
}

SCREENSHOT_COMMANDS: tuple[tuple[str, ...], ...] = (
    ("gnome-screenshot",),
    ("spectacle", "-b", "-n"),
    ("flameshot", "full"),
    ("scrot",),
)


def _run(cmd: list[str], timeout: float = 5.0) -> subprocess.CompletedProcess:
    return subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)


def _call(cmd: list[str], what: str) -> Optional[Outcome]:
    """Run ``cmd``; None on success, a failed Outcome otherwise."""
    if shutil.which(cmd[0]) is None:
        return Outcome.fail(f"{cmd[0]} is not installed, so I can't {what}.")
    try:
        result = _run(cmd)
    except subprocess.TimeoutExpired:
        return Outcome.fail(f"{cmd[0]} timed out while trying to {what}.", FailureReason.TIMEOUT)
    except OSError as e:
        return Outcome.fail(f"Could not run {cmd[0]}: {e}")
    if result.returncode != 0:
        detail = (result.stderr or result.stdout or "").strip()
        return Outcome.fail(detail or f"{cmd[0]} exited with code {result.returncode}")
    return None


def _find_executable(app: str) -> Optional[str]:
    for cmd in APP_COMMANDS.get(app, ()):
        if shutil.which(cmd):
            return cmd
    if app not in DENIED_APPS and shutil.which(app):
        return app
    return None


# ── media ────────────────────────────────────────────────────────────

def media_control(*, action: str = "", **_: Any) -> Outcome:
    verb = _PLAYERCTL_ACTIONS.get(action)
    if verb is None:
        return Outcome.fail(f"Unknown media action: {action}", FailureReason.INVALID_PARAMETERS)
    failure = _call(["playerctl", verb], f"{action} playback")
    if failure is not None:
        return failure
    return Outcome.ok({"play": "Playing.", "pause": "Paused."}.get(action, f"Skipped to {action} track."))


def media_play(*, query: str = "", platform: str = "", **_: Any) -> Outcome:
    platform = (platform or "youtube").lower()
    template = PLAY_URLS.get(platform, PLAY_URLS["youtube"])
    url = template.format(q=quote_plus(query))
    failure = _call(["xdg-open", url], f"play {query}")
    if failure is not None:
        return failure
    return Outcome.ok(f"Playing {query} on {platform.title()}.", target=query)


def volume_control(*, action: str = "", level: Any = None, **_: Any) -> Outcome:
    if action == "set":
        if level is None:
            return Outcome.fail("What volume level?", FailureReason.INVALID_PARAMETERS)
        args: tuple[str, ...] = ("set-sink-volume", "@DEFAULT_SINK@", f"{int(level)}%")
    else:
        args = _VOLUME_ARGS.get(action, ())
        if not args:
            return Outcome.fail(f"Unknown volume action: {action}", FailureReason.INVALID_PARAMETERS)
    failure = _call(["pactl", *args], "change the volume")
    if failure is not None:
        return failure
    messages = {"mute": "Muted.", "unmute": "Unmuted.", "up": "Volume up.", "down": "Volume down.",
                "max": "Volume at maximum."}
    return Outcome.ok(messages.get(action, f"Volume set to {level}%."))


# ── apps ─────────────────────────────────────────────────────────────

def open_app(*, app: str = "", **_: Any) -> Outcome:
    name = app.strip().lower()
    if name in DENIED_APPS:
        return Outcome.fail(f"I won't open {app}.", FailureReason.INVALID_PARAMETERS)
    executable = _find_executable(name)
    if executable is None:
        return Outcome.fail(f"{app} was not found. Is it installed?")
    try:
        proc = subprocess.Popen(
            [executable],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as e:
        return Outcome.fail(f"Could not open {app}: {e}")

    def reverse() -> Outcome:
        if proc.poll() is not None:
            return Outcome.ok(f"{app.title()} is already closed.")
        proc.terminate()
        try:
            proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            proc.kill()
        return Outcome.ok(f"Closed {app.title()}.")

    logger.info("[Desktop] launched %s (pid %s)", executable, proc.pid)
    return Outcome.ok(
        f"Opened {app.title()}.",
        mutated_state=True,
        reverse_procedure=reverse,
        description=f"Opened {app}",
        target=name,
    )


def close_app(*, app: str = "", **_: Any) -> Outcome:
    name = app.strip().lower()
    executable = _find_executable(name) or name
    failure = _call(["pkill", "-TERM", "-f", executable], f"close {app}")
    if failure is not None:
        if failure.failure_reason == FailureReason.TOOL_ERROR and "not installed" not in failure.message:
            return Outcome.fail(f"{app.title()} is not running.")
        return failure
    # The closed session can't be restored, so there is no reverse procedure.
    return Outcome.ok(
        f"Closed {app.title()}.",
        mutated_state=True,
        description=f"Closed {app}",
        target=name,
    )


# ── system ───────────────────────────────────────────────────────────

def power_control(*, action: str = "", **_: Any) -> Outcome:
    cmd = POWER_COMMANDS.get(action)
    if cmd is None:
        return Outcome.fail(f"Unknown power action: {action}", FailureReason.INVALID_PARAMETERS)
    failure = _call(list(cmd), action)
    if failure is not None:
        return failure
    return Outcome.ok(f"{action.title()} requested.", target=action)


def screenshot(**_: Any) -> Outcome:
    for cmd in SCREENSHOT_COMMANDS:
        if shutil.which(cmd[0]):
            failure = _call(list(cmd), "take a screenshot")
            return failure or Outcome.ok("Screenshot saved.")
    return Outcome.fail("No screenshot utility is installed (gnome-screenshot, spectacle, flameshot, scrot).")


def register_desktop_tools(registry: ToolRegistry) -> int:
    registry.register_function("media.control", media_control, required=("action",), timeout=5.0)
    registry.register_function("media.play", media_play, required=("query",))
    registry.register_function("system.volume", volume_control, required=("action",), timeout=5.0)
    registry.register_function("app.open", open_app, required=("app",))
    registry.register_function("app.close", close_app, required=("app",))
    registry.register_function("system.power", power_control, required=("action",))
    registry.register_function("screen.capture", screenshot)
    return 7
