"""Browser-backed tools: web search and weather."""

from __future__ import annotations

import logging
import webbrowser
from typing import Any
from urllib.parse import quote_plus

from atlas.agent.registry import ToolRegistry
from atlas.agent.tool_base import Outcome

logger = logging.getLogger(__name__)

SEARCH_URL = "https://duckduckgo.com/?q={q}"
WEATHER_URL = "https://wttr.in/{q}"


def _open(url: str) -> bool:
    logger.debug("[Web] opening %s", url)
    return webbrowser.open(url, new=2)


def web_search(*, query: str = "", **_: Any) -> Outcome:
    if not _open(SEARCH_URL.format(q=quote_plus(query))):
        return Outcome.fail("Could not open a web browser.")
    return Outcome.ok(f"Searching the web for \"{query}\".", target=query)


def weather(*, location: str = "", **_: Any) -> Outcome:
    if not _open(WEATHER_URL.format(q=quote_plus(location))):
        return Outcome.fail("Could not open a web browser.")
    where = f" in {location.title()}" if location else ""
    return Outcome.ok(f"Here's the weather{where}.", target=location or None)


def register_web_tools(registry: ToolRegistry) -> int:
    registry.register_function("web.search", web_search, required=("query",))
    registry.register_function("web.weather", weather)
    return 2
