from __future__ import annotations

import asyncio
from typing import Any, Mapping, Optional

import pytest

from atlas.agent.registry import ToolRegistry
from atlas.agent.tool_base import (
    NULL_PROGRESS,
    CancellationToken,
    Outcome,
    ProgressReporter,
    Tool,
)
from atlas.config import AssistantConfig
from atlas.policy.risk import RiskTable
from atlas.router.pipeline import build_assistant

# Tools that only read or play something; everything else reports a state change.
READ_ONLY_TOOLS = frozenset({
    "media.control", "media.play", "system.volume", "files.open", "files.find",
    "web.search", "web.weather", "chat.reply", "security.scan", "screen.capture",
    "system.power",
})
PERMANENT_TOOLS = frozenset({"file.delete", "app.close"})


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run tests marked with @pytest.mark.integration (needs a local Ollama).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("--run-integration"):
        return
    deselected = [item for item in items if item.get_closest_marker("integration")]
    if deselected:
        config.hook.pytest_deselected(items=deselected)
        items[:] = [item for item in items if not item.get_closest_marker("integration")]


class FakeClock:
    """Manually advanced clock for timeout tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingTool(Tool):
    """Tool double that records calls and, optionally, reversals."""

    def __init__(
        self,
        name: str,
        *,
        reversible: bool = True,
        mutates: bool = True,
        fail: Optional[str] = None,
        delay: float = 0.0,
        reversals: Optional[list[str]] = None,
    ):
        self.name = name
        self.reversible = reversible
        self.mutates = mutates
        self.fail = fail
        self.delay = delay
        self.calls: list[dict[str, Any]] = []
        self.reversals = reversals if reversals is not None else []

    async def execute(
        self,
        parameters: Mapping[str, Any],
        cancel: CancellationToken,
        progress: ProgressReporter = NULL_PROGRESS,
    ) -> Outcome:
        self.calls.append(dict(parameters))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail is not None:
            return Outcome.fail(self.fail)
        label = next(iter(parameters.values()), self.name) if parameters else self.name
        description = f"{self.name} {label}"

        reverse = None
        if self.mutates and self.reversible:
            def reverse() -> Outcome:
                self.reversals.append(description)
                return Outcome.ok(f"Reversed {description}.")

        return Outcome.ok(
            f"Ran {description}.",
            mutated_state=self.mutates,
            reverse_procedure=reverse,
            description=description,
        )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def reversals() -> list[str]:
    return []


@pytest.fixture
def registry(reversals: list[str]) -> ToolRegistry:
    """A RecordingTool for every tool the risk table names."""
    reg = ToolRegistry()
    for name in RiskTable().tools():
        if name.startswith("history.") or name == "software.install":
            continue
        reg.register(RecordingTool(
            name,
            mutates=name not in READ_ONLY_TOOLS,
            reversible=name not in PERMANENT_TOOLS,
            reversals=reversals,
        ))
    return reg


@pytest.fixture
def config(tmp_path) -> AssistantConfig:
    return AssistantConfig(persist_state=False, data_dir=str(tmp_path))


@pytest.fixture
def assistant(config: AssistantConfig, registry: ToolRegistry, clock: FakeClock):
    return build_assistant(config, registry=registry, clock=clock)


@pytest.fixture
def make_tool():
    """Factory for standalone RecordingTools."""
    return RecordingTool
