"""Conversational replies through the configured LLM backend."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Optional

from atlas.agent.tool_base import (
    NULL_PROGRESS,
    CancellationToken,
    FailureReason,
    Outcome,
    ProgressReporter,
    Tool,
)
from atlas.llm.base import LLMClient, LLMClientError, LLMMessage

logger = logging.getLogger(__name__)

CHAT_SYSTEM_PROMPT = (
    "You are Atlas, a concise desktop assistant. Answer in one to three short "
    "sentences. If the user asks you to do something on the computer that you "
    "cannot do, say so plainly."
)

CODE_SYSTEM_PROMPT = (
    "You are Atlas, a desktop assistant helping with programming. Answer with a "
    "short explanation and, when useful, a minimal code example."
)


class ChatTool(Tool):
    """``chat.reply``: one LLM round trip, abandoned if cancelled."""

    name = "chat.reply"
    description = "Reply conversationally using the language model."
    required_params = ("message",)

    def __init__(self, client: Optional[LLMClient], *, timeout: Optional[float] = None):
        self.client = client
        self.timeout = timeout

    async def execute(
        self,
        parameters: Mapping[str, Any],
        cancel: CancellationToken,
        progress: ProgressReporter = NULL_PROGRESS,
    ) -> Outcome:
        if self.client is None:
            return Outcome.fail(
                "I can only chat when a language model is configured (see the llm section of the config).",
                FailureReason.TOOL_NOT_FOUND,
            )
        message = str(parameters.get("message") or "")
        prompt = CODE_SYSTEM_PROMPT if parameters.get("topic") == "code" else CHAT_SYSTEM_PROMPT
        messages = [
            LLMMessage(role="system", content=prompt),
            LLMMessage(role="user", content=message),
        ]

        progress.report("thinking")
        cancel.raise_if_cancelled()
        try:
            reply = await asyncio.to_thread(self.client.chat, messages, temperature=0.4, max_tokens=400)
        except LLMClientError as e:
            logger.warning("[Chat] LLM call failed: %s", e)
            return Outcome.fail(str(e), FailureReason.TOOL_ERROR)

        if cancel.cancelled:
            return Outcome.for_cancellation()
        reply = (reply or "").strip()
        if not reply:
            return Outcome.fail("The language model returned an empty reply.")
        return Outcome.ok(reply)
