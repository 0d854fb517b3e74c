from __future__ import annotations

import logging
from typing import Any, Callable, Iterator, Optional

from atlas.agent.tool_base import FunctionTool, Tool
from atlas.errors import DuplicateToolError

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Name -> Tool mapping used by the Executor's general path."""

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool, *, replace: bool = False) -> Tool:
        if not tool.name:
            raise ValueError("tool must have a name")
        if tool.name in self._tools and not replace:
            raise DuplicateToolError(f"tool already registered: {tool.name}")
        self._tools[tool.name] = tool
        logger.debug("[Registry] registered %s", tool.name)
        return tool

    def register_function(self, name: str, function: Callable[..., Any], **kwargs: Any) -> Tool:
        return self.register(FunctionTool(name, function, **kwargs))

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return sorted(self._tools.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(list(self._tools.values()))

    def __len__(self) -> int:
        return len(self._tools)
