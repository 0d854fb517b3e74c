"""
Assistant: one conversation turn end to end.

utterance -> expiry notice -> pending confirmation? -> fast path? ->
classify -> plan -> {gate | execute | clarify | guide} -> ContextStore -> text

``Assistant.handle`` is the only entry point. Turns must be awaited one at
a time; a reply to a pending confirmation is consumed by the gate and never
classified.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from atlas.agent.executor import Executor
from atlas.agent.fast_path import FastPath
from atlas.agent.registry import ToolRegistry
from atlas.agent.tool_base import CancellationToken, Outcome, ProgressListener
from atlas.config import AssistantConfig
from atlas.history.undo import UndoManager
from atlas.llm.base import LLMClient
from atlas.logs.logger import JsonlLogger
from atlas.memory.context_store import ContextStore
from atlas.nlu.classifier import ClassifierConfig, IntentClassifier
from atlas.nlu.guessers import KeywordGuesser, LLMIntentGuesser
from atlas.nlu.normalizer import Normalizer
from atlas.nlu.rules import RuleTable, default_rule_table
from atlas.nlu.types import Intent
from atlas.policy.planner import Decision, DecisionAction, Planner
from atlas.policy.risk import RiskTable
from atlas.router.confirmation import ConfirmationGate, GateEvent
from atlas.router.context import ConversationContext
from atlas.router.formatter import ResponseFormatter
from atlas.tools.files import FileTools

logger = logging.getLogger(__name__)


@dataclass
class Reply:
    """What one turn produced."""

    text: str
    intent: Optional[Intent] = None
    decision: Optional[Decision] = None
    outcome: Optional[Outcome] = None
    awaiting_confirmation: bool = False
    fast_path: bool = False

    @property
    def ok(self) -> bool:
        return self.outcome is None or self.outcome.success


class Assistant:
    def __init__(
        self,
        classifier: IntentClassifier,
        planner: Planner,
        executor: Executor,
        context: ConversationContext,
        *,
        formatter: Optional[ResponseFormatter] = None,
        audit: Optional[JsonlLogger] = None,
    ):
        self.classifier = classifier
        self.planner = planner
        self.executor = executor
        self.context = context
        self.formatter = formatter or ResponseFormatter()
        self.audit = audit

    @property
    def gate(self) -> ConfirmationGate:
        return self.context.gate

    @property
    def store(self) -> ContextStore:
        return self.context.store

    @property
    def undo(self) -> UndoManager:
        return self.context.undo

    # ------------------------------------------------------------------
    # Turn handling
    # ------------------------------------------------------------------

    async def handle(
        self,
        utterance: str,
        *,
        cancel: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressListener] = None,
    ) -> Reply:
        notice = self.gate.take_expiry_notice()
        reply = await self._handle(utterance, cancel, on_progress)
        if notice:
            reply.text = f"{notice}\n{reply.text}" if reply.text else notice
        self._log_turn(utterance, reply)
        return reply

    async def _handle(
        self,
        utterance: str,
        cancel: Optional[CancellationToken],
        on_progress: Optional[ProgressListener],
    ) -> Reply:
        if self.gate.is_awaiting_confirmation():
            reply = await self._answer_confirmation(utterance, cancel, on_progress)
            if reply is not None:
                return reply

        canonical = self.classifier.normalizer.normalize(utterance)
        match = self.executor.match_fast_path(canonical)
        if match is not None:
            logger.debug("[Assistant] fast path: %r -> %s", canonical, match.tool)
            token = self.context.begin_call(cancel)
            try:
                outcome = await self.executor.dispatch_fast(match, token, user_command=utterance)
            finally:
                self.context.end_call(token)
            self._remember(utterance, match.intent, outcome)
            return Reply(
                text=self.formatter.outcome(outcome),
                intent=match.intent,
                outcome=outcome,
                fast_path=True,
            )

        if isinstance(self.classifier.guesser, LLMIntentGuesser):
            # The LLM call blocks for seconds; keep the loop free for cancel.
            intent = await asyncio.to_thread(self.classifier.classify, utterance, self.store)
        else:
            intent = self.classifier.classify(utterance, self.store)
        decision = self.planner.plan(intent)
        logger.debug(
            "[Assistant] %r -> %s (%.2f) -> %s",
            utterance, intent.name, intent.confidence, decision.action.value,
        )

        if decision.action == DecisionAction.CONFIRM_DESTRUCTIVE:
            result = self.gate.request(intent, decision, utterance)
            return Reply(
                text=result.text,
                intent=intent,
                decision=decision,
                awaiting_confirmation=self.gate.is_awaiting_confirmation(),
            )

        if decision.action == DecisionAction.EXECUTE:
            outcome = await self._execute(decision, utterance, cancel, on_progress, confirmations=0)
            self._remember(utterance, intent, outcome)
            return Reply(
                text=self.formatter.outcome(outcome),
                intent=intent,
                decision=decision,
                outcome=outcome,
            )

        text = self.formatter.render(decision)
        self.store.record(utterance, intent, outcome_summary=text)
        return Reply(text=text, intent=intent, decision=decision)

    async def _answer_confirmation(
        self,
        utterance: str,
        cancel: Optional[CancellationToken],
        on_progress: Optional[ProgressListener],
    ) -> Optional[Reply]:
        """Consume a reply to the pending confirmation; None means classify normally."""
        result = self.gate.reply(utterance)

        if result.event in (GateEvent.REPROMPT, GateEvent.NEXT_STAGE):
            return Reply(
                text=result.text,
                intent=result.intent,
                decision=result.decision,
                awaiting_confirmation=True,
            )

        if result.event == GateEvent.DENIED:
            assert result.intent is not None
            self.store.record(result.raw_input, result.intent, outcome_summary=result.text)
            return Reply(text=result.text, intent=result.intent, decision=result.decision)

        if result.event == GateEvent.CONFIRMED:
            assert result.decision is not None and result.intent is not None
            outcome = await self._execute(
                result.decision,
                result.raw_input,
                cancel,
                on_progress,
                confirmations=result.confirmations,
            )
            self._remember(result.raw_input, result.intent, outcome)
            return Reply(
                text=self.formatter.outcome(outcome),
                intent=result.intent,
                decision=result.decision,
                outcome=outcome,
            )

        # TIMED_OUT / NOTHING_PENDING: the turn is an ordinary utterance.
        return None

    async def _execute(
        self,
        decision: Decision,
        user_command: str,
        cancel: Optional[CancellationToken],
        on_progress: Optional[ProgressListener],
        *,
        confirmations: int,
    ) -> Outcome:
        token = self.context.begin_call(cancel)
        try:
            return await self.executor.dispatch(
                decision,
                token,
                confirmations=confirmations,
                user_command=user_command,
                on_progress=on_progress,
            )
        finally:
            self.context.end_call(token)

    def cancel_inflight(self, reason: str = "stop") -> bool:
        return self.context.cancel_inflight(reason)

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _remember(self, raw_input: str, intent: Intent, outcome: Outcome) -> None:
        self.store.record(
            raw_input,
            intent,
            outcome_summary=outcome.message,
            outcome_success=outcome.success,
        )

    def _log_turn(self, utterance: str, reply: Reply) -> None:
        if self.audit is None:
            return
        self.audit.log(
            "turn",
            input=utterance,
            intent=reply.intent.name if reply.intent else None,
            confidence=round(reply.intent.confidence, 3) if reply.intent else None,
            action=reply.decision.action.value if reply.decision else ("fast_path" if reply.fast_path else None),
            success=reply.outcome.success if reply.outcome else None,
            awaiting_confirmation=reply.awaiting_confirmation,
        )

    def save(self) -> None:
        self.context.save()


# ----------------------------------------------------------------------
# Wiring
# ----------------------------------------------------------------------

def _build_llm(config: AssistantConfig) -> Optional[LLMClient]:
    if not config.llm.enabled:
        return None
    from atlas.llm.ollama_client import OllamaClient

    return OllamaClient(
        base_url=config.llm.base_url,
        model=config.llm.model,
        timeout_seconds=config.llm.timeout_seconds,
    )


def _load_rules(config: AssistantConfig) -> RuleTable:
    if config.rules_file:
        return RuleTable.from_yaml(config.rules_file, base=default_rule_table())
    return default_rule_table()


def build_assistant(
    config: Optional[AssistantConfig] = None,
    *,
    registry: Optional[ToolRegistry] = None,
    llm: Optional[LLMClient] = None,
    on_progress: Optional[ProgressListener] = None,
    fast_path: Optional[FastPath] = None,
    clock: Optional[Callable[[], float]] = None,
) -> Assistant:
    """Wire a ready-to-use Assistant from configuration.

    ``registry`` replaces the default local tools (tests pass recording
    tools here); its history tools are rebound to this conversation.
    """
    config = config or AssistantConfig()
    if llm is None and registry is None:
        llm = _build_llm(config)

    files = FileTools(config.files_root)
    formatter = ResponseFormatter(path_resolver=files.resolve)
    audit = JsonlLogger(str(config.audit_path)) if config.persist_state else None
    policy = config.confidence_policy()
    risk_table = RiskTable().with_overrides(config.risk_overrides)

    clock_kwargs = {} if clock is None else {"clock": clock}
    context = ConversationContext(
        store=ContextStore(
            config.context_window,
            persist_path=config.context_path if config.persist_state else None,
            **clock_kwargs,
        ),
        gate=ConfirmationGate(
            formatter,
            timeout_seconds=config.confirmation_timeout_seconds,
            audit=audit,
            **clock_kwargs,
        ),
        undo=UndoManager(
            config.undo_retention,
            persist_path=config.history_path if config.persist_state else None,
            audit=audit,
        ),
    )
    if config.persist_state:
        context.load()

    if registry is None:
        from atlas.tools.register_all import build_default_registry

        registry = build_default_registry(config, context.undo, llm, formatter=formatter, files=files)
    else:
        from atlas.tools.register_all import register_history_tools

        # History tools must point at this conversation's UndoManager.
        register_history_tools(registry, context.undo, formatter, replace=True)

    rules = _load_rules(config)
    guesser = KeywordGuesser(rules.keywords)
    if llm is not None and config.llm.use_for_intents:
        guesser = LLMIntentGuesser(llm, RiskTable().intents(), fallback=guesser)
    classifier = IntentClassifier(
        rules,
        normalizer=Normalizer(),
        guesser=guesser,
        config=ClassifierConfig(
            max_undo_count=config.max_undo_count,
            anaphora_decay=config.anaphora_decay,
            anaphora_lookback=config.anaphora_lookback,
        ),
    )

    executor = Executor(
        registry,
        context.undo,
        fast_path=fast_path,
        risk_table=risk_table,
        policy=policy,
        audit=audit,
        tool_timeout=config.tool_timeout_seconds,
        fast_path_budget_ms=config.fast_path_budget_ms,
        progress_listeners=[on_progress] if on_progress else (),
    )
    return Assistant(
        classifier,
        Planner(risk_table, policy),
        executor,
        context,
        formatter=formatter,
        audit=audit,
    )
