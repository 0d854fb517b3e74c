"""
Executor: two-tier dispatch.

1. Fast path - literal matchers for common, never-confirmed commands
2. General path - registry lookup of the Planner's tool

Every dispatch gets its own CancellationToken, a child of the caller's
token that also fires when the per-tool timeout elapses. Successful
state-changing calls are recorded with the UndoManager before returning.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Iterable, Mapping, Optional

from atlas.agent.fast_path import FastPath, FastPathMatch
from atlas.agent.registry import ToolRegistry
from atlas.agent.tool_base import (
    CancellationRequested,
    CancellationToken,
    FailureReason,
    Outcome,
    ProgressListener,
    ProgressReporter,
    Tool,
)
from atlas.errors import UnsafeFastPathError
from atlas.history.undo import ActionRecord, UndoManager
from atlas.logs.logger import JsonlLogger
from atlas.policy.planner import Decision, DecisionAction
from atlas.policy.risk import ConfidencePolicy, RiskLevel, RiskTable

logger = logging.getLogger(__name__)

_TARGET_PARAMS = ("target", "source", "app", "folder", "query", "software", "action")


class Executor:
    def __init__(
        self,
        registry: ToolRegistry,
        undo: Optional[UndoManager] = None,
        *,
        fast_path: Optional[FastPath] = None,
        risk_table: Optional[RiskTable] = None,
        policy: Optional[ConfidencePolicy] = None,
        audit: Optional[JsonlLogger] = None,
        tool_timeout: float = 30.0,
        fast_path_budget_ms: float = 250.0,
        progress_listeners: Iterable[ProgressListener] = (),
    ):
        self.registry = registry
        self.undo = undo
        self.fast_path = fast_path if fast_path is not None else FastPath()
        self.risk_table = risk_table or RiskTable()
        self.policy = policy or ConfidencePolicy()
        self.audit = audit
        self.tool_timeout = float(tool_timeout)
        self.fast_path_budget_ms = float(fast_path_budget_ms)
        self._listeners: list[ProgressListener] = list(progress_listeners)
        self._check_fast_path()

    def _check_fast_path(self) -> None:
        tool_risks = self.risk_table.tools()
        for rule in self.fast_path.rules:
            risk = tool_risks.get(rule.tool)
            if risk is None:
                raise UnsafeFastPathError(f"fast-path tool {rule.tool!r} has no risk tier")
            if self.policy.requires_confirmation(risk):
                raise UnsafeFastPathError(
                    f"fast-path tool {rule.tool!r} is {risk}, which needs confirmation"
                )

    # ------------------------------------------------------------------
    # Fast path
    # ------------------------------------------------------------------

    def match_fast_path(self, canonical: str) -> Optional[FastPathMatch]:
        return self.fast_path.match(canonical)

    async def dispatch_fast(
        self,
        match: FastPathMatch,
        cancel: Optional[CancellationToken] = None,
        *,
        user_command: str = "",
    ) -> Outcome:
        decision = Decision(
            action=DecisionAction.EXECUTE,
            intent_name=match.intent.name,
            tool_name=match.tool,
            parameters=match.parameters,
            risk_level=RiskLevel.NONE,
            summary=match.intent.name.replace("_", " "),
        )
        outcome = await self.dispatch(decision, cancel, user_command=user_command)
        if outcome.duration_ms > self.fast_path_budget_ms:
            logger.warning(
                "[Executor] fast path %s took %.0fms (budget %.0fms)",
                match.tool, outcome.duration_ms, self.fast_path_budget_ms,
            )
        return outcome

    # ------------------------------------------------------------------
    # General path
    # ------------------------------------------------------------------

    async def dispatch(
        self,
        decision: Decision,
        cancel: Optional[CancellationToken] = None,
        *,
        confirmations: int = 0,
        user_command: str = "",
        on_progress: Optional[ProgressListener] = None,
    ) -> Outcome:
        start = time.perf_counter()

        if not decision.is_executable or not decision.tool_name:
            return Outcome.fail("There's nothing to run for that.", FailureReason.INVALID_PARAMETERS)

        if confirmations < decision.confirmations_required:
            logger.warning(
                "[Executor] refusing %s: %d of %d confirmations",
                decision.tool_name, confirmations, decision.confirmations_required,
            )
            return Outcome.fail(
                f"\"{decision.summary}\" needs confirmation before it can run.",
                FailureReason.CONFIRMATION_REQUIRED,
            )

        tool = self.registry.get(decision.tool_name)
        if tool is None:
            logger.info("[Executor] no tool registered for %s", decision.tool_name)
            return Outcome.fail(
                f"I can't {decision.summary} on this machine: no {decision.tool_name} tool is installed.",
                FailureReason.TOOL_NOT_FOUND,
            )

        params = dict(decision.parameters)
        problem = tool.validate(params)
        if problem:
            return Outcome.fail(problem, FailureReason.INVALID_PARAMETERS)

        outcome = await self._run(tool, params, cancel, on_progress)
        outcome.duration_ms = (time.perf_counter() - start) * 1000

        if outcome.success and outcome.mutated_state and self.undo is not None:
            self.undo.record(self._action_record(decision, outcome, params, user_command))

        if outcome.success:
            logger.info("[Executor] %s ok in %.0fms", tool.name, outcome.duration_ms)
        elif outcome.cancelled:
            logger.info("[Executor] %s cancelled", tool.name)
        else:
            logger.warning("[Executor] %s failed (%s): %s", tool.name, outcome.failure_reason, outcome.message)

        if self.audit is not None:
            self.audit.log_tool_execution(
                tool_name=tool.name,
                risk_level=str(decision.risk_level),
                success=outcome.success,
                confirmed=confirmations > 0,
                error=None if outcome.success else outcome.message,
                params=params,
                duration_ms=round(outcome.duration_ms, 1),
            )
        return outcome

    async def _run(
        self,
        tool: Tool,
        params: Mapping[str, Any],
        cancel: Optional[CancellationToken],
        on_progress: Optional[ProgressListener],
    ) -> Outcome:
        loop = asyncio.get_running_loop()
        token = cancel.child() if cancel is not None else CancellationToken()
        timeout = tool.timeout or self.tool_timeout
        timer = loop.call_later(timeout, token.cancel, "timeout")
        reporter = ProgressReporter(tool.name, [*self._listeners, on_progress], loop)

        task = asyncio.ensure_future(tool.execute(params, token, reporter))
        waiter = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            token.cancel("caller cancelled")
            task.cancel()
            waiter.cancel()
            raise
        finally:
            timer.cancel()
            token.detach()

        if task in done:
            waiter.cancel()
            return self._collect(tool, task)

        # Cancelled or timed out before the tool finished.
        task.cancel()
        result: Optional[Outcome] = None
        try:
            result = await task
        except (asyncio.CancelledError, CancellationRequested):
            pass
        except Exception:
            logger.debug("[Executor] %s raised while cancelling", tool.name, exc_info=True)

        if isinstance(result, Outcome) and result.success:
            # Finished anyway; report it so a state change is not lost.
            return result
        if token.reason == "timeout":
            return Outcome.fail(
                f"{tool.name} took longer than {timeout:.0f}s and was stopped.",
                FailureReason.TIMEOUT,
            )
        return Outcome.for_cancellation()

    @staticmethod
    def _collect(tool: Tool, task: asyncio.Future) -> Outcome:
        try:
            result = task.result()
        except (asyncio.CancelledError, CancellationRequested):
            return Outcome.for_cancellation()
        except Exception as e:
            logger.warning("[Executor] %s raised", tool.name, exc_info=True)
            return Outcome.fail(str(e) or type(e).__name__, FailureReason.TOOL_ERROR)
        if not isinstance(result, Outcome):
            return Outcome.fail(f"{tool.name} returned no outcome.", FailureReason.TOOL_ERROR)
        return result

    @staticmethod
    def _action_record(
        decision: Decision,
        outcome: Outcome,
        params: Mapping[str, Any],
        user_command: str,
    ) -> ActionRecord:
        target = outcome.target
        if target is None:
            target = next((str(params[k]) for k in _TARGET_PARAMS if params.get(k)), None)
        return ActionRecord.create(
            kind=decision.tool_name or decision.intent_name,
            description=outcome.description or outcome.message or decision.summary,
            target=target,
            reverse_procedure=outcome.reverse_procedure,
            user_command=user_command,
        )
