"""LLM backends used for casual conversation and intent guessing."""

from atlas.llm.base import (
    LLMClient,
    LLMClientError,
    LLMConnectionError,
    LLMInvalidResponseError,
    LLMMessage,
    LLMModelNotFoundError,
    LLMTimeoutError,
)
from atlas.llm.ollama_client import OllamaClient

__all__ = [
    "LLMClient",
    "LLMClientError",
    "LLMConnectionError",
    "LLMInvalidResponseError",
    "LLMMessage",
    "LLMModelNotFoundError",
    "LLMTimeoutError",
    "OllamaClient",
]
