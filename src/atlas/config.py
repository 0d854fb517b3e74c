"""
Assistant configuration.

Layers, later wins:
1. Dataclass defaults
2. YAML file (``$ATLAS_CONFIG`` or ``~/.config/atlas/config.yaml``)
3. ``ATLAS_*`` environment variables

Example YAML:
    confirmation_timeout_seconds: 45
    confirmation_bar: HIGH
    confidence_thresholds:
      CRITICAL: 0.8
    risk_overrides:
      organize_files: LOW
    llm:
      model: llama3.2:3b
      use_for_intents: true
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

import yaml

from atlas.errors import ConfigError
from atlas.policy.risk import DEFAULT_THRESHOLDS, ConfidencePolicy, RiskLevel

logger = logging.getLogger(__name__)


def default_config_path() -> Path:
    config_home = os.environ.get("XDG_CONFIG_HOME") or (Path.home() / ".config")
    return Path(config_home) / "atlas" / "config.yaml"


def default_data_dir() -> str:
    data_home = os.environ.get("XDG_DATA_HOME") or (Path.home() / ".local" / "share")
    return str(Path(data_home) / "atlas")


@dataclass
class LLMSettings:
    """Chat backend (Ollama) settings."""

    enabled: bool = True
    base_url: str = ""
    model: str = ""
    timeout_seconds: float = 60.0
    use_for_intents: bool = False


@dataclass
class AssistantConfig:
    context_window: int = 150
    undo_retention: int = 50
    max_undo_count: int = 20
    confirmation_timeout_seconds: float = 60.0
    confirmation_bar: str = "MEDIUM"
    confidence_thresholds: dict[str, float] = field(
        default_factory=lambda: {tier.name: value for tier, value in DEFAULT_THRESHOLDS.items()}
    )
    anaphora_decay: float = 0.85
    anaphora_lookback: int = 5
    tool_timeout_seconds: float = 30.0
    fast_path_budget_ms: float = 250.0
    persist_state: bool = True
    data_dir: str = field(default_factory=default_data_dir)
    audit_log: Optional[str] = None
    rules_file: Optional[str] = None
    files_root: Optional[str] = None
    risk_overrides: dict[str, str] = field(default_factory=dict)
    llm: LLMSettings = field(default_factory=LLMSettings)

    @property
    def audit_path(self) -> Path:
        return Path(self.audit_log) if self.audit_log else Path(self.data_dir) / "audit.jsonl"

    @property
    def context_path(self) -> Path:
        return Path(self.data_dir) / "context.json"

    @property
    def history_path(self) -> Path:
        return Path(self.data_dir) / "undo_history.json"

    def confidence_policy(self) -> ConfidencePolicy:
        try:
            return ConfidencePolicy(
                thresholds={RiskLevel.parse(k): v for k, v in self.confidence_thresholds.items()},
                confirmation_bar=RiskLevel.parse(self.confirmation_bar),
            )
        except ValueError as e:
            raise ConfigError("confirmation_bar", str(e)) from e

    def validate(self) -> "AssistantConfig":
        for key in ("context_window", "undo_retention", "max_undo_count", "anaphora_lookback"):
            if getattr(self, key) < 1:
                raise ConfigError(key, "must be >= 1")
        for key in ("confirmation_timeout_seconds", "tool_timeout_seconds", "fast_path_budget_ms"):
            if getattr(self, key) <= 0:
                raise ConfigError(key, "must be positive")
        if not 0.0 < self.anaphora_decay <= 1.0:
            raise ConfigError("anaphora_decay", "must be in (0, 1]")
        self.confidence_policy()
        return self

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AssistantConfig":
        cfg = cls()
        known = {f.name: f for f in fields(cls)}
        for key, value in data.items():
            if key not in known:
                logger.debug("[Config] ignoring unknown key %r", key)
                continue
            if key == "llm":
                if not isinstance(value, Mapping):
                    raise ConfigError("llm", "must be a mapping")
                llm_known = {f.name for f in fields(LLMSettings)}
                cfg.llm = LLMSettings(**{k: v for k, v in value.items() if k in llm_known})
            elif key in ("confidence_thresholds", "risk_overrides"):
                if not isinstance(value, Mapping):
                    raise ConfigError(key, "must be a mapping")
                merged = dict(getattr(cfg, key))
                merged.update({str(k).upper() if key == "confidence_thresholds" else str(k): v
                               for k, v in value.items()})
                setattr(cfg, key, merged)
            else:
                setattr(cfg, key, _coerce(key, value, type(getattr(cfg, key))))
        return cfg


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _coerce(key: str, value: Any, kind: type) -> Any:
    if value is None:
        return None
    try:
        if kind is bool:
            return _parse_bool(value)
        if kind is int:
            return int(value)
        if kind is float:
            return float(value)
        return str(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(key, str(e)) from e


# env var -> (setter, parser)
_ENV: dict[str, tuple[str, Callable[[str], Any]]] = {
    "ATLAS_CONTEXT_WINDOW": ("context_window", int),
    "ATLAS_UNDO_RETENTION": ("undo_retention", int),
    "ATLAS_MAX_UNDO": ("max_undo_count", int),
    "ATLAS_CONFIRMATION_TIMEOUT": ("confirmation_timeout_seconds", float),
    "ATLAS_CONFIRMATION_BAR": ("confirmation_bar", str),
    "ATLAS_TOOL_TIMEOUT": ("tool_timeout_seconds", float),
    "ATLAS_PERSIST": ("persist_state", _parse_bool),
    "ATLAS_DATA_DIR": ("data_dir", str),
    "ATLAS_AUDIT_LOG": ("audit_log", str),
    "ATLAS_RULES_FILE": ("rules_file", str),
    "ATLAS_FILES_ROOT": ("files_root", str),
    "ATLAS_LLM_ENABLED": ("llm.enabled", _parse_bool),
    "ATLAS_OLLAMA_URL": ("llm.base_url", str),
    "ATLAS_OLLAMA_MODEL": ("llm.model", str),
    "ATLAS_LLM_INTENTS": ("llm.use_for_intents", _parse_bool),
}


def apply_env(cfg: AssistantConfig, env: Mapping[str, str]) -> AssistantConfig:
    for var, (attr, parse) in _ENV.items():
        raw = (env.get(var) or "").strip()
        if not raw:
            continue
        try:
            value = parse(raw)
        except ValueError as e:
            raise ConfigError(var, str(e)) from e
        target: Any = cfg
        if attr.startswith("llm."):
            target, attr = cfg.llm, attr.split(".", 1)[1]
        setattr(target, attr, value)
        logger.debug("[Config] %s overrides %s", var, attr)
    return cfg


def load_config(
    path: Optional[str | Path] = None,
    *,
    env: Optional[Mapping[str, str]] = None,
) -> AssistantConfig:
    """Load configuration from YAML (if present) plus environment overrides."""
    env = os.environ if env is None else env
    if path is None and env.get("ATLAS_CONFIG"):
        path = env["ATLAS_CONFIG"]
    p = Path(path) if path is not None else default_config_path()

    data: Mapping[str, Any] = {}
    if p.exists():
        try:
            with open(p, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(str(p), f"could not read config: {e}") from e
        if not isinstance(data, Mapping):
            raise ConfigError(str(p), "top level must be a mapping")
        logger.debug("[Config] loaded %s", p)
    elif path is not None:
        raise ConfigError(str(p), "config file not found")
    else:
        logger.debug("[Config] no config file at %s, using defaults", p)

    cfg = AssistantConfig.from_dict(data)
    return apply_env(cfg, env).validate()
