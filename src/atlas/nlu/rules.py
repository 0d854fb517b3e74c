"""Data-driven intent rule table.

Matching order is explicit and data-driven:

1. ``CommandRule`` - zero-argument phrases ("pause", "next", "mute"),
   matched exactly or as a prefix followed only by filler words.
2. ``PatternRule`` - ordered regexes with named argument groups
   ("play <query> on <platform>"). The first full match wins.

The table is loaded once (``default_rule_table`` or ``RuleTable.from_yaml``)
and then only read.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

import yaml

from atlas.errors import RuleTableError
from atlas.nlu.types import EntityKind

logger = logging.getLogger(__name__)


# =============================================================================
# Word maps applied by the normalizer
# =============================================================================

DEFAULT_TYPOS: dict[str, str] = {
    "paly": "play",
    "plya": "play",
    "pley": "play",
    "opne": "open",
    "oepn": "open",
    "clsoe": "close",
    "colse": "close",
    "delte": "delete",
    "deleet": "delete",
    "serach": "search",
    "seach": "search",
    "spotfy": "spotify",
    "spotifiy": "spotify",
    "yotube": "youtube",
    "youtbe": "youtube",
    "chorme": "chrome",
    "chrom": "chrome",
    "volumn": "volume",
    "voluem": "volume",
    "screensot": "screenshot",
    "screnshot": "screenshot",
    "wether": "weather",
    "weahter": "weather",
    "pasue": "pause",
    "puase": "pause",
    "udno": "undo",
}

DEFAULT_SLANG: dict[str, str] = {
    "put on": "play",
    "throw on": "play",
    "blast": "play",
    "fire up": "open",
    "boot up": "open",
    "pull up": "open",
    "kill": "close",
    "nuke": "delete",
    "get rid of": "delete",
    "shh": "mute",
    "shut up": "mute",
    "crank it up": "volume up",
    "turn it up": "volume up",
    "turn it down": "volume down",
    "look up": "search",
}

# Stripped from the front of an utterance before matching.
POLITE_PREFIXES: tuple[str, ...] = (
    "hey atlas",
    "ok atlas",
    "atlas",
    "please",
    "can you",
    "could you",
    "would you",
    "will you",
    "i want you to",
    "i want to",
    "i'd like to",
)

POLITE_SUFFIXES: tuple[str, ...] = ("please", "for me", "thanks", "thank you")

# Allowed after a zero-argument command ("pause please", "next song now").
FILLER_WORDS: frozenset[str] = frozenset({
    "please", "now", "thanks", "thank", "you", "for", "me", "atlas", "the", "music", "song", "track",
})

ANAPHORA_WORDS: frozenset[str] = frozenset({
    "that", "it", "this", "them", "that one", "this one", "the same one", "same one",
    "that app", "the same app", "that program", "that file", "the same file",
    "that folder", "the same folder", "same folder", "this folder", "there",
})

KNOWN_APPS: tuple[str, ...] = (
    "chrome", "firefox", "spotify", "discord", "vscode", "code", "slack", "steam",
    "telegram", "zoom", "teams", "obs", "vlc", "gimp", "thunderbird", "terminal",
    "calculator", "notepad", "explorer", "files", "settings",
)

INTENT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "media_control": ("pause", "resume", "skip", "track", "playback"),
    "play_music": ("play", "song", "music", "album", "playlist", "listen"),
    "volume_control": ("volume", "louder", "quieter", "mute", "sound"),
    "open_app": ("open", "launch", "start", "app", "application"),
    "close_app": ("close", "quit", "exit"),
    "power_control": ("shutdown", "restart", "reboot", "sleep", "hibernate"),
    "delete_file": ("delete", "remove", "erase", "trash"),
    "organize_files": ("organize", "organise", "tidy", "sort", "clean"),
    "find_files": ("find", "locate", "where"),
    "web_search": ("search", "google", "lookup"),
    "weather": ("weather", "forecast", "temperature", "rain"),
    "security_scan": ("scan", "virus", "malware", "threat"),
    "screenshot": ("screenshot", "capture"),
    "set_reminder": ("remind", "reminder", "alarm"),
    "install_software": ("install", "download", "setup"),
    "code_help": ("code", "python", "javascript", "script", "function", "bug", "compile"),
}

NUMBER_WORDS: dict[str, int] = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
}

# Value for numeric groups that means "as many as allowed".
NUMERIC_MAX = "all"


# =============================================================================
# Rule types
# =============================================================================


@dataclass(frozen=True)
class CommandRule:
    """Zero-argument command phrases mapped to one intent."""

    phrases: tuple[str, ...]
    intent: str
    entities: Mapping[str, str] = field(default_factory=dict)
    is_anaphoric: bool = False
    missing_capability: Optional[str] = None


@dataclass(frozen=True)
class PatternRule:
    """Regex with named groups; groups become entities.

    ``anaphora`` maps a group to the context buckets to search (in order)
    when the captured text is a pronoun. ``numeric`` groups are parsed and
    clamped by the classifier. ``preserve_case`` groups keep the user's
    casing (paths, file names).
    """

    name: str
    pattern: str
    intent: str
    entities: Mapping[str, str] = field(default_factory=dict)
    anaphora: Mapping[str, tuple[EntityKind, ...]] = field(default_factory=dict)
    numeric: tuple[str, ...] = ()
    preserve_case: tuple[str, ...] = ()
    value_maps: Mapping[str, Mapping[str, str]] = field(default_factory=dict)
    capture_text: Optional[str] = None
    missing_capability: Optional[str] = None
    compiled: Any = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        try:
            compiled = re.compile(self.pattern, re.IGNORECASE)
        except re.error as e:
            raise RuleTableError(f"rule {self.name!r}: bad pattern: {e}") from e
        object.__setattr__(self, "compiled", compiled)

    def match(self, text: str) -> Optional[re.Match[str]]:
        return self.compiled.fullmatch(text)


@dataclass
class RuleTable:
    """Ordered command and pattern rules plus fallback keywords."""

    commands: list[CommandRule] = field(default_factory=list)
    patterns: list[PatternRule] = field(default_factory=list)
    keywords: dict[str, tuple[str, ...]] = field(default_factory=dict)
    known_apps: tuple[str, ...] = KNOWN_APPS

    def __post_init__(self) -> None:
        self._phrase_index: dict[str, CommandRule] = {}
        for rule in self.commands:
            for phrase in rule.phrases:
                key = phrase.strip().lower()
                # First rule listing a phrase owns it.
                self._phrase_index.setdefault(key, rule)

    def command_for(self, phrase: str) -> Optional[CommandRule]:
        return self._phrase_index.get(phrase)

    def command_phrases(self) -> list[str]:
        return list(self._phrase_index)

    def extend(self, other: "RuleTable") -> "RuleTable":
        """Return a table where ``other``'s rules take precedence."""
        return RuleTable(
            commands=list(other.commands) + list(self.commands),
            patterns=list(other.patterns) + list(self.patterns),
            keywords={**self.keywords, **other.keywords},
            known_apps=tuple(dict.fromkeys(other.known_apps + self.known_apps)),
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RuleTable":
        commands = []
        for i, raw in enumerate(data.get("commands") or []):
            if not isinstance(raw, Mapping) or not raw.get("intent") or not raw.get("phrases"):
                raise RuleTableError(f"commands[{i}]: 'intent' and 'phrases' are required")
            commands.append(CommandRule(
                phrases=tuple(str(p).lower() for p in raw["phrases"]),
                intent=str(raw["intent"]),
                entities={str(k): str(v) for k, v in (raw.get("entities") or {}).items()},
                is_anaphoric=bool(raw.get("anaphoric", False)),
                missing_capability=raw.get("missing_capability"),
            ))

        patterns = []
        for i, raw in enumerate(data.get("patterns") or []):
            if not isinstance(raw, Mapping) or not raw.get("intent") or not raw.get("pattern"):
                raise RuleTableError(f"patterns[{i}]: 'intent' and 'pattern' are required")
            anaphora = {}
            for group, kinds in (raw.get("anaphora") or {}).items():
                if isinstance(kinds, str):
                    kinds = [kinds]
                try:
                    anaphora[str(group)] = tuple(EntityKind(k) for k in kinds)
                except ValueError as e:
                    raise RuleTableError(f"patterns[{i}]: {e}") from e
            patterns.append(PatternRule(
                name=str(raw.get("name") or f"user_{i}"),
                pattern=str(raw["pattern"]),
                intent=str(raw["intent"]),
                entities={str(k): str(v) for k, v in (raw.get("entities") or {}).items()},
                anaphora=anaphora,
                numeric=tuple(raw.get("numeric") or ()),
                preserve_case=tuple(raw.get("preserve_case") or ()),
                capture_text=raw.get("capture_text"),
                missing_capability=raw.get("missing_capability"),
            ))

        keywords = {
            str(intent): tuple(str(w).lower() for w in words)
            for intent, words in (data.get("keywords") or {}).items()
        }
        known_apps = tuple(str(a).lower() for a in (data.get("known_apps") or ()))
        return cls(commands=commands, patterns=patterns, keywords=keywords, known_apps=known_apps)

    @classmethod
    def from_yaml(cls, path: str | Path, *, base: Optional["RuleTable"] = None) -> "RuleTable":
        """Load user rules from YAML, layered over ``base`` (default table)."""
        p = Path(path)
        try:
            with open(p, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise RuleTableError(f"{p}: {e}") from e
        if not isinstance(data, Mapping):
            raise RuleTableError(f"{p}: top level must be a mapping")

        table = cls.from_mapping(data)
        logger.debug(
            "[Rules] loaded %d commands, %d patterns from %s",
            len(table.commands), len(table.patterns), p,
        )
        return (base or default_rule_table()).extend(table)


def _cmd(intent: str, phrases: Iterable[str], **entities: str) -> CommandRule:
    return CommandRule(phrases=tuple(phrases), intent=intent, entities=entities)


_APP = (EntityKind.APP,)
_FILE = (EntityKind.FILE, EntityKind.FOLDER)
_FOLDER = (EntityKind.FOLDER,)
_QUERY = (EntityKind.QUERY,)

_POWER_ACTIONS = {
    "shutdown": "shutdown", "shut down": "shutdown", "power off": "shutdown",
    "restart": "restart", "reboot": "restart",
    "sleep": "sleep", "hibernate": "hibernate", "lock": "lock",
    "log off": "logoff", "logoff": "logoff", "log out": "logoff", "sign out": "logoff",
}


def _default_commands() -> list[CommandRule]:
    return [
        _cmd("media_control", ("pause", "pause music", "pause playback", "stop", "stop music",
                               "stop playback", "stop the music"), action="pause"),
        _cmd("media_control", ("play", "resume", "continue", "unpause", "resume music",
                               "resume playback"), action="play"),
        _cmd("media_control", ("next", "skip", "next song", "next track", "skip song",
                               "skip track", "skip this", "skip this song"), action="next"),
        _cmd("media_control", ("previous", "back", "previous song", "previous track",
                               "last song", "go back a song"), action="previous"),
        _cmd("volume_control", ("mute", "mute sound", "mute volume"), action="mute"),
        _cmd("volume_control", ("unmute", "unmute sound"), action="unmute"),
        _cmd("volume_control", ("volume up", "louder", "turn up the volume", "increase volume",
                                "increase the volume"), action="up"),
        _cmd("volume_control", ("volume down", "quieter", "turn down the volume",
                                "decrease volume", "lower the volume", "lower volume"), action="down"),
        _cmd("volume_control", ("max volume", "full volume"), action="set", level="100"),
        _cmd("screenshot", ("screenshot", "take a screenshot", "take screenshot", "capture screen",
                            "capture the screen")),
        _cmd("power_control", ("lock", "lock screen", "lock the screen", "lock computer",
                               "lock my computer", "lock pc"), action="lock"),
        CommandRule(
            phrases=("undo that", "undo it", "undo this", "revert that", "undo what you did"),
            intent="undo",
            entities={"count": "1"},
            is_anaphoric=True,
        ),
        _cmd("undo", ("undo", "undo last", "undo the last one", "undo last action",
                      "undo the last action", "revert", "revert last"), count="1"),
        _cmd("undo", ("undo all", "undo everything", "revert everything"), count=NUMERIC_MAX),
        _cmd("undo_history", ("undo history", "show undo history", "what can i undo",
                              "recent actions", "show recent actions", "action history",
                              "history", "what did you do")),
        CommandRule(
            phrases=("again", "repeat", "repeat that", "do that again", "do it again",
                     "one more time", "same again"),
            intent="repeat",
            entities={"mode": "last"},
            is_anaphoric=True,
        ),
        CommandRule(
            phrases=("try again", "try that again", "retry", "fix it", "fix that"),
            intent="repeat",
            entities={"mode": "failed"},
            is_anaphoric=True,
        ),
        _cmd("help", ("help", "what can you do", "commands", "show commands", "what do you do")),
        _cmd("greeting", ("hi", "hello", "hey", "good morning", "good afternoon",
                          "good evening", "hey there", "hello there", "how are you")),
        _cmd("feedback", ("thanks", "thank you", "that worked", "it worked", "perfect",
                          "great", "nice", "awesome"), sentiment="positive"),
        _cmd("feedback", ("that didn't work", "it didn't work", "didn't work", "wrong",
                          "that's wrong", "not what i wanted", "that was wrong"),
             sentiment="negative"),
        _cmd("confirmation_reply", ("yes", "y", "yeah", "yep", "confirm", "ok", "okay", "sure",
                                    "do it", "go ahead"), answer="yes"),
        _cmd("confirmation_reply", ("no", "n", "nope"), answer="no"),
        _cmd("cancel", ("cancel", "nevermind", "never mind", "abort", "forget it")),
    ]


def _default_patterns() -> list[PatternRule]:
    return [
        PatternRule(
            name="undo_item",
            pattern=r"undo\s+(?:#\s*|number\s+|item\s+|entry\s+)(?P<ordinal>\S+)",
            intent="undo_item",
            numeric=("ordinal",),
        ),
        PatternRule(
            name="undo_count",
            pattern=r"undo\s+(?:the\s+)?(?:last\s+)?(?P<count>[\w-]+)"
                    r"(?:\s+(?:actions?|things?|steps?|changes?|times?))?",
            intent="undo",
            numeric=("count",),
        ),
        PatternRule(
            name="media_named",
            pattern=r"(?P<action>pause|resume|next|previous|skip)\s+(?:the\s+)?"
                    r"(?:music|song|track|video|playback)",
            intent="media_control",
            value_maps={"action": {"skip": "next", "resume": "play"}},
        ),
        PatternRule(
            name="volume_set",
            pattern=r"(?:set\s+(?:the\s+)?)?volume\s+(?:to\s+|at\s+)?(?P<level>\d+)\s*(?:%|percent)?",
            intent="volume_control",
            entities={"action": "set"},
            numeric=("level",),
        ),
        PatternRule(
            name="play_video",
            pattern=r"(?:watch|play\s+(?:the\s+)?video)\s+(?P<query>.+?)"
                    r"(?:\s+on\s+(?P<platform>youtube|netflix|twitch))?",
            intent="play_video",
            anaphora={"query": _QUERY},
        ),
        PatternRule(
            name="play_music",
            pattern=r"play\s+(?P<query>.+?)"
                    r"(?:\s+on\s+(?P<platform>spotify|youtube music|youtube|soundcloud|apple music|deezer))?",
            intent="play_music",
            anaphora={"query": _QUERY},
        ),
        PatternRule(
            name="security_scan",
            pattern=r"(?:run\s+(?:a\s+)?)?(?:(?P<mode>quick|full|deep)\s+)?(?:security\s+|virus\s+|malware\s+)?"
                    r"scan(?:\s+(?:my\s+|the\s+)?(?:computer|pc|system|laptop))?"
                    r"(?:\s+for\s+(?:viruses|malware|threats))?",
            intent="security_scan",
        ),
        PatternRule(
            name="open_known_folder",
            pattern=r"(?:open|show|go\s+to)\s+(?:the\s+|my\s+)?"
                    r"(?P<folder>downloads|documents|desktop|pictures|music|videos|home)(?:\s+folder)?",
            intent="open_folder",
        ),
        PatternRule(
            name="open_folder_anaphora",
            pattern=r"(?:open|show)\s+(?P<folder>(?:that|the\s+same|same|this)\s+folder)(?:\s+again)?",
            intent="open_folder",
            anaphora={"folder": _FOLDER},
        ),
        PatternRule(
            name="open_folder",
            pattern=r"open\s+(?:the\s+)?(?:folder|directory)\s+(?P<folder>.+)",
            intent="open_folder",
            anaphora={"folder": _FOLDER},
            preserve_case=("folder",),
        ),
        PatternRule(
            name="open_file_anaphora",
            pattern=r"open\s+(?P<target>(?:that|the\s+same|this)\s+file)(?:\s+again)?",
            intent="open_file",
            anaphora={"target": (EntityKind.FILE,)},
        ),
        PatternRule(
            name="open_file",
            pattern=r"open\s+(?:the\s+)?file\s+(?P<target>.+)",
            intent="open_file",
            anaphora={"target": (EntityKind.FILE,)},
            preserve_case=("target",),
        ),
        PatternRule(
            name="open_path",
            pattern=r"open\s+(?P<target>(?:[a-z]:[\\/]|~[\\/]|/|\.{1,2}[\\/])\S.*|\S+\.[a-z0-9]{1,5})",
            intent="open_file",
            preserve_case=("target",),
        ),
        PatternRule(
            name="open_app",
            pattern=r"(?:open|launch|start|run|switch\s+to)\s+(?:the\s+)?(?:app\s+|application\s+)?"
                    r"(?P<app>.+?)(?:\s+app|\s+again)?",
            intent="open_app",
            anaphora={"app": _APP},
        ),
        PatternRule(
            name="close_app",
            pattern=r"(?:close|quit|exit|stop|end|terminate)\s+(?:the\s+)?(?:app\s+)?(?P<app>.+?)(?:\s+app)?",
            intent="close_app",
            anaphora={"app": _APP},
        ),
        PatternRule(
            name="move_there",
            pattern=r"move\s+(?P<source>.+?)\s+(?:to\s+)?(?P<destination>there|the\s+same\s+folder)",
            intent="move_file",
            anaphora={"source": _FILE, "destination": _FOLDER},
            preserve_case=("source",),
        ),
        PatternRule(
            name="move_file",
            pattern=r"move\s+(?P<source>.+?)\s+(?:to|into)\s+(?P<destination>.+)",
            intent="move_file",
            anaphora={"source": _FILE, "destination": _FOLDER},
            preserve_case=("source", "destination"),
        ),
        PatternRule(
            name="copy_file",
            pattern=r"copy\s+(?P<source>.+?)\s+(?:to|into)\s+(?P<destination>.+)",
            intent="copy_file",
            anaphora={"source": _FILE, "destination": _FOLDER},
            preserve_case=("source", "destination"),
        ),
        PatternRule(
            name="rename_file",
            pattern=r"rename\s+(?P<source>.+?)\s+(?:to|as)\s+(?P<new_name>.+)",
            intent="rename_file",
            anaphora={"source": _FILE},
            preserve_case=("source", "new_name"),
        ),
        PatternRule(
            name="create_folder",
            pattern=r"(?:create|make)\s+(?:a\s+)?(?:new\s+)?(?:folder|directory)\s+"
                    r"(?:called\s+|named\s+)?(?P<target>.+)",
            intent="create_folder",
            preserve_case=("target",),
        ),
        PatternRule(
            name="create_file",
            pattern=r"(?:create|make)\s+(?:a\s+)?(?:new\s+)?file\s+(?:called\s+|named\s+)?(?P<target>.+)",
            intent="create_file",
            preserve_case=("target",),
        ),
        PatternRule(
            name="delete_file",
            pattern=r"(?:delete|remove|erase|trash)\s+(?:the\s+)?(?:file\s+|folder\s+)?(?P<target>.+)",
            intent="delete_file",
            anaphora={"target": _FILE},
            preserve_case=("target",),
        ),
        PatternRule(
            name="organize_files",
            pattern=r"(?:organize|organise|clean\s+up|tidy(?:\s+up)?|sort)\s+(?:my\s+|the\s+)?"
                    r"(?P<target>.+?)(?:\s+folder)?",
            intent="organize_files",
            anaphora={"target": _FOLDER},
            preserve_case=("target",),
        ),
        PatternRule(
            name="find_files",
            pattern=r"(?:find|locate|where\s+is|where's)\s+(?:my\s+|the\s+)?(?P<query>.+?)(?:\s+files?)?",
            intent="find_files",
            anaphora={"query": _QUERY},
        ),
        PatternRule(
            name="web_search",
            pattern=r"(?:search(?:\s+the\s+web)?(?:\s+for)?|google|lookup)\s+(?P<query>.+)",
            intent="web_search",
            anaphora={"query": _QUERY},
        ),
        PatternRule(
            name="weather",
            pattern=r"(?:what(?:'s|\s+is)\s+the\s+)?weather(?:\s+like)?"
                    r"(?:\s+(?:in|for|at)\s+(?P<location>.+?))?(?:\s+(?:today|tomorrow|now))?",
            intent="weather",
        ),
        PatternRule(
            name="power_control",
            pattern=r"(?P<action>shut\s*down|power\s+off|restart|reboot|sleep|hibernate|lock|log\s*off|log\s+out|sign\s+out)"
                    r"(?:\s+(?:the\s+|my\s+)?(?:computer|pc|system|laptop|screen|machine))?(?:\s+now)?",
            intent="power_control",
            value_maps={"action": _POWER_ACTIONS},
        ),
        PatternRule(
            name="set_reminder",
            pattern=r"(?:remind\s+me\s+(?:to\s+)?|set\s+(?:a\s+)?reminder\s+(?:to\s+|for\s+)?)(?P<message>.+)",
            intent="set_reminder",
            missing_capability="reminders",
        ),
        PatternRule(
            name="send_email",
            pattern=r"(?:send|write)\s+(?:an\s+)?e-?mail(?:\s+to\s+(?P<recipient>.+))?",
            intent="send_email",
            missing_capability="email",
        ),
        PatternRule(
            name="install_software",
            pattern=r"install\s+(?P<software>.+)",
            intent="install_software",
        ),
        PatternRule(
            name="code_help",
            pattern=r"(?:write|generate|explain|debug|fix)\s+(?:me\s+)?(?:some\s+|this\s+|the\s+|a\s+|my\s+)?"
                    r"(?:python|javascript|typescript|bash|c#|java|rust|go|sql|code|script|function|regex|bug)\b.*",
            intent="code_help",
            entities={"topic": "code"},
            capture_text="message",
        ),
    ]


def default_rule_table() -> RuleTable:
    return RuleTable(
        commands=_default_commands(),
        patterns=_default_patterns(),
        keywords=dict(INTENT_KEYWORDS),
        known_apps=KNOWN_APPS,
    )
