"""Registers every local tool with a ToolRegistry.

Usage
─────
    from atlas.tools.register_all import build_default_registry
    registry = build_default_registry(config, undo, llm)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from atlas.agent.registry import ToolRegistry
from atlas.history.undo import UndoManager
from atlas.llm.base import LLMClient
from atlas.router.formatter import ResponseFormatter
from atlas.tools.chat import ChatTool
from atlas.tools.desktop import register_desktop_tools
from atlas.tools.files import FileTools, register_file_tools
from atlas.tools.history import HistoryListTool, UndoItemTool, UndoTool
from atlas.tools.security import SecurityScanTool
from atlas.tools.web import register_web_tools

if TYPE_CHECKING:
    from atlas.config import AssistantConfig

logger = logging.getLogger(__name__)


def register_history_tools(
    registry: ToolRegistry,
    undo: UndoManager,
    formatter: Optional[ResponseFormatter] = None,
    *,
    replace: bool = False,
) -> int:
    registry.register(UndoTool(undo), replace=replace)
    registry.register(UndoItemTool(undo), replace=replace)
    registry.register(HistoryListTool(undo, formatter or ResponseFormatter()), replace=replace)
    return 3


def build_default_registry(
    config: Optional["AssistantConfig"],
    undo: UndoManager,
    llm: Optional[LLMClient] = None,
    *,
    formatter: Optional[ResponseFormatter] = None,
    files: Optional[FileTools] = None,
) -> ToolRegistry:
    """Registry with the file, desktop, web, scan, chat and history tools."""
    registry = ToolRegistry()
    count = 0
    count += register_file_tools(registry, files)
    count += register_desktop_tools(registry)
    count += register_web_tools(registry)
    registry.register(SecurityScanTool())
    count += 1
    chat_timeout = config.llm.timeout_seconds if config is not None else None
    registry.register(ChatTool(llm, timeout=chat_timeout))
    count += 1
    count += register_history_tools(registry, undo, formatter)
    logger.info("[Tools] %d tools registered", count)
    return registry
