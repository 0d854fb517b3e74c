"""Exception hierarchy for programming and configuration errors.

Expected runtime conditions (tool missing, nothing to undo, cancellation)
are reported through ``Outcome`` values instead.
"""

from __future__ import annotations


class AtlasError(Exception):
    """Base class for atlas errors."""
    pass


class ConfigError(AtlasError):
    """Configuration file or environment value is invalid."""

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(f"{key}: {message}")


class RuleTableError(AtlasError):
    """Intent or risk rule table is malformed."""
    pass


class UnsafeFastPathError(AtlasError):
    """A fast-path rule points at a tool that needs confirmation."""
    pass


class DuplicateToolError(AtlasError):
    """A tool with the same name is already registered."""
    pass
