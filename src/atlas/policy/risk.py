"""Risk tiers and the static intent -> (tool, tier) table.

The Planner is a pure function of an Intent and this table; nothing here
changes after construction.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Any, Mapping, Optional

from atlas.errors import ConfigError

logger = logging.getLogger(__name__)


class RiskLevel(IntEnum):
    """How dangerous or irreversible an action is. Ordered."""

    NONE = 0      # read-only, instant
    LOW = 1       # mutates, trivially reversible
    MEDIUM = 2    # mutates, correctable
    HIGH = 3      # disruptive (shutdown, system paths)
    CRITICAL = 4  # permanent (delete)

    @classmethod
    def parse(cls, value: Any) -> "RiskLevel":
        if isinstance(value, RiskLevel):
            return value
        key = str(value).strip().upper()
        aliases = {"MED": "MEDIUM", "CRIT": "CRITICAL"}
        key = aliases.get(key, key)
        try:
            return cls[key]
        except KeyError as e:
            raise ValueError(f"unknown risk level: {value!r}") from e

    def __str__(self) -> str:
        return self.name


DEFAULT_THRESHOLDS: dict[RiskLevel, float] = {
    RiskLevel.NONE: 0.5,
    RiskLevel.LOW: 0.5,
    RiskLevel.MEDIUM: 0.6,
    RiskLevel.HIGH: 0.6,
    RiskLevel.CRITICAL: 0.6,
}


@dataclass(frozen=True)
class ConfidencePolicy:
    """Minimum intent confidence per risk tier, plus the confirmation bar."""

    thresholds: Mapping[RiskLevel, float] = field(default_factory=lambda: dict(DEFAULT_THRESHOLDS))
    confirmation_bar: RiskLevel = RiskLevel.MEDIUM

    def __post_init__(self) -> None:
        merged = dict(DEFAULT_THRESHOLDS)
        for tier, value in dict(self.thresholds).items():
            value = float(value)
            if not 0.0 <= value <= 1.0:
                raise ConfigError(f"confidence_thresholds.{tier}", "must be in [0, 1]")
            merged[RiskLevel.parse(tier)] = value
        object.__setattr__(self, "thresholds", merged)
        object.__setattr__(self, "confirmation_bar", RiskLevel.parse(self.confirmation_bar))

    def threshold_for(self, risk: RiskLevel) -> float:
        return self.thresholds[risk]

    def requires_confirmation(self, risk: RiskLevel) -> bool:
        return risk >= self.confirmation_bar

    def confirmations_for(self, risk: RiskLevel) -> int:
        if risk == RiskLevel.CRITICAL:
            return 2
        return 1 if self.requires_confirmation(risk) else 0


@dataclass(frozen=True)
class Escalation:
    """Raise the tier when an entity matches ``pattern``."""

    entity: str
    pattern: str
    risk: RiskLevel

    def applies(self, entities: Mapping[str, str]) -> bool:
        value = entities.get(self.entity)
        return bool(value) and re.search(self.pattern, value, re.IGNORECASE) is not None


@dataclass(frozen=True)
class RiskRule:
    """One row of the intent table.

    ``tool`` None means there is nothing to execute: either a capability
    gap (``capability`` set) or a conversational reply (``guide`` set).
    """

    intent: str
    tool: Optional[str]
    risk: RiskLevel = RiskLevel.NONE
    required: tuple[str, ...] = ()
    clarify: Optional[str] = None
    summary: str = ""
    entity_risks: Mapping[str, Mapping[str, RiskLevel]] = field(default_factory=dict)
    escalations: tuple[Escalation, ...] = ()
    guide: Optional[str] = None
    capability: Optional[str] = None
    build_plan: tuple[str, ...] = ()

    def risk_for(self, entities: Mapping[str, str]) -> RiskLevel:
        risk = self.risk
        for key, table in self.entity_risks.items():
            value = entities.get(key)
            if value is not None and value in table:
                risk = table[value]
        for esc in self.escalations:
            if esc.applies(entities):
                risk = max(risk, esc.risk)
        return risk

    def describe(self, entities: Mapping[str, str]) -> str:
        """Goal restatement, e.g. "open chrome"."""
        if not self.summary:
            return self.intent.replace("_", " ")
        return self.summary.format_map(_Blank(entities)).strip()


class _Blank(dict):
    def __init__(self, entities: Mapping[str, str]):
        super().__init__(entities)

    def __missing__(self, key: str) -> str:
        return "it"


_SYSTEM_PATHS = r"(system32|\\windows\\|program files|/etc/|/usr/|/bin/|/boot/)"
_EXECUTABLES = r"\.(exe|dll|sys|msi|so)$"
_SENSITIVE_APPS = r"^(explorer|system|antivirus|security|defender|systemd|gnome-shell|plasmashell)$"

Q_PLAY = "What would you like me to play?"
Q_APP = "Which app should I open?"
Q_FILE = "Which file or folder?"
Q_SEARCH = "What should I search for?"
Q_LOCATION = "For which location?"
Q_GENERIC = "Could you tell me more about what you'd like to do?"

_R = RiskLevel

DEFAULT_RULES: tuple[RiskRule, ...] = (
    RiskRule("media_control", "media.control", _R.NONE, ("action",), summary="{action} playback"),
    RiskRule("volume_control", "system.volume", _R.NONE, ("action",), summary="change the volume ({action})"),
    RiskRule("play_music", "media.play", _R.LOW, ("query",), Q_PLAY, summary="play {query}"),
    RiskRule("play_video", "media.play", _R.LOW, ("query",), Q_PLAY, summary="play the video {query}"),
    RiskRule("open_app", "app.open", _R.LOW, ("app",), Q_APP, summary="open {app}"),
    RiskRule(
        "close_app", "app.close", _R.LOW, ("app",), "Which app should I close?",
        summary="close {app}",
        escalations=(Escalation("app", _SENSITIVE_APPS, _R.MEDIUM),),
    ),
    RiskRule("open_folder", "files.open", _R.NONE, ("folder",), Q_FILE, summary="open the {folder} folder"),
    RiskRule("open_file", "files.open", _R.NONE, ("target",), Q_FILE, summary="open {target}"),
    RiskRule(
        "power_control", "system.power", _R.MEDIUM, ("action",),
        "Do you want to shut down, restart, sleep or lock?",
        summary="{action} the computer",
        entity_risks={"action": {
            "shutdown": _R.HIGH, "restart": _R.HIGH, "logoff": _R.MEDIUM,
            "sleep": _R.LOW, "hibernate": _R.LOW, "lock": _R.LOW,
        }},
    ),
    RiskRule("delete_file", "file.delete", _R.CRITICAL, ("target",), Q_FILE, summary="delete {target}"),
    RiskRule(
        "move_file", "file.move", _R.MEDIUM, ("source", "destination"), Q_FILE,
        summary="move {source} to {destination}",
        escalations=(
            Escalation("source", _SYSTEM_PATHS, _R.HIGH),
            Escalation("destination", _SYSTEM_PATHS, _R.HIGH),
            Escalation("source", _EXECUTABLES, _R.HIGH),
        ),
    ),
    RiskRule(
        "rename_file", "file.rename", _R.MEDIUM, ("source", "new_name"), Q_FILE,
        summary="rename {source} to {new_name}",
        escalations=(
            Escalation("source", _SYSTEM_PATHS, _R.HIGH),
            Escalation("source", _EXECUTABLES, _R.HIGH),
        ),
    ),
    RiskRule("copy_file", "file.copy", _R.LOW, ("source", "destination"), Q_FILE,
             summary="copy {source} to {destination}"),
    RiskRule("create_file", "file.create", _R.LOW, ("target",), "What should the file be called?",
             summary="create the file {target}"),
    RiskRule("create_folder", "file.mkdir", _R.LOW, ("target",), "What should the folder be called?",
             summary="create the folder {target}"),
    RiskRule("organize_files", "files.organize", _R.MEDIUM, ("target",), Q_FILE,
             summary="organize {target} by file type"),
    RiskRule("find_files", "files.find", _R.NONE, ("query",), "What should I look for?",
             summary="find {query}"),
    RiskRule("web_search", "web.search", _R.NONE, ("query",), Q_SEARCH, summary="search the web for {query}"),
    RiskRule("weather", "web.weather", _R.NONE, (), Q_LOCATION, summary="check the weather"),
    RiskRule("security_scan", "security.scan", _R.LOW, (), summary="run a security scan"),
    RiskRule("screenshot", "screen.capture", _R.LOW, (), summary="take a screenshot"),
    RiskRule("install_software", "software.install", _R.MEDIUM, ("software",), "What should I install?",
             summary="install {software}"),
    RiskRule("code_help", "chat.reply", _R.NONE, ("message",), summary="help with code"),
    RiskRule("conversation", "chat.reply", _R.NONE, ("message",), Q_GENERIC, summary="chat"),
    RiskRule("greeting", None, _R.NONE, guide="Hi! What can I do for you?"),
    RiskRule("undo", "history.undo", _R.LOW, summary="undo the last action"),
    RiskRule("undo_item", "history.undo_item", _R.LOW, ("ordinal",), "Which entry should I undo?",
             summary="undo entry {ordinal}"),
    RiskRule("undo_history", "history.list", _R.NONE, summary="list recent actions"),
    RiskRule("repeat", None, _R.NONE, clarify="There's nothing recent for me to repeat."),
    RiskRule("help", None, _R.NONE, guide="capabilities"),
    RiskRule("feedback", None, _R.NONE, guide="feedback"),
    RiskRule("confirmation_reply", None, _R.NONE, guide="Nothing is waiting for confirmation."),
    RiskRule("cancel", None, _R.NONE, guide="There's nothing to cancel."),
    RiskRule("unknown", None, _R.NONE, clarify=Q_GENERIC),
    RiskRule(
        "set_reminder", None, _R.LOW, capability="reminders",
        summary="set a reminder",
        build_plan=(
            "Add a scheduler that persists reminders to disk.",
            "Add a reminder tool that parses the time and message.",
            "Show a desktop notification when a reminder is due.",
        ),
    ),
    RiskRule(
        "send_email", None, _R.HIGH, capability="email",
        summary="send an email",
        build_plan=(
            "Connect an email account (IMAP/SMTP or a provider API).",
            "Add a drafting tool that always shows the draft before sending.",
        ),
    ),
)


class RiskTable:
    """Intent name -> RiskRule lookup."""

    def __init__(self, rules: tuple[RiskRule, ...] = DEFAULT_RULES):
        self._rules: dict[str, RiskRule] = {}
        for rule in rules:
            self._rules[rule.intent] = rule

    def get(self, intent: str) -> Optional[RiskRule]:
        return self._rules.get(intent)

    def intents(self) -> list[str]:
        return list(self._rules)

    def tools(self) -> dict[str, RiskLevel]:
        """Highest base tier seen for each tool name."""
        out: dict[str, RiskLevel] = {}
        for rule in self._rules.values():
            if rule.tool:
                out[rule.tool] = max(out.get(rule.tool, RiskLevel.NONE), rule.risk)
        return out

    def with_overrides(self, overrides: Mapping[str, Any]) -> "RiskTable":
        """Copy of the table with base tiers replaced (``{intent: TIER}``).

        CRITICAL rules (deleting files) cannot be lowered: they always take
        two confirmations.
        """
        rules = dict(self._rules)
        for intent, tier in (overrides or {}).items():
            rule = rules.get(intent)
            if rule is None:
                logger.debug("[RiskTable] override for unknown intent %r ignored", intent)
                continue
            try:
                risk = RiskLevel.parse(tier)
            except ValueError as e:
                raise ConfigError(f"risk_overrides.{intent}", str(e)) from e
            if rule.risk == RiskLevel.CRITICAL and risk < RiskLevel.CRITICAL:
                raise ConfigError(f"risk_overrides.{intent}", f"{intent} is CRITICAL and cannot be lowered")
            rules[intent] = replace(rule, risk=risk)
        return RiskTable(tuple(rules.values()))
