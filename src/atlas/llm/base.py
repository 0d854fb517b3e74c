"""LLM client interface.

One small abstraction so the chat tool and the intent guesser can be
tested with fakes and pointed at any backend.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class LLMMessage:
    """Standard message format for all LLM clients."""
    role: str  # "system" | "user" | "assistant"
    content: str


class LLMClientError(Exception):
    """Base exception for LLM client errors."""
    pass


class LLMConnectionError(LLMClientError):
    """Server connection failed."""
    pass


class LLMModelNotFoundError(LLMClientError):
    """Requested model not available."""
    pass


class LLMTimeoutError(LLMClientError):
    """Request timed out."""
    pass


class LLMInvalidResponseError(LLMClientError):
    """Response parsing failed."""
    pass


class LLMClient(ABC):
    """Abstract base class for LLM clients."""

    @abstractmethod
    def is_available(self, *, timeout_seconds: float = 1.5) -> bool:
        """Check if backend is reachable."""

    @abstractmethod
    def chat(
        self,
        messages: List[LLMMessage],
        *,
        temperature: float = 0.4,
        max_tokens: int = 512,
    ) -> str:
        """Chat completion (simple string response).

        Args:
            messages: Conversation history
            temperature: Sampling temperature (0.0 = deterministic)
            max_tokens: Max tokens to generate

        Returns:
            Generated text

        Raises:
            LLMConnectionError: Cannot reach backend
            LLMModelNotFoundError: Model not available
            LLMTimeoutError: Request timed out
            LLMInvalidResponseError: Response parsing failed
        """
