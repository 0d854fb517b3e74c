from __future__ import annotations

import logging
import os
from typing import List

import requests

from atlas.llm.base import (
    LLMClient,
    LLMConnectionError,
    LLMInvalidResponseError,
    LLMMessage,
    LLMModelNotFoundError,
    LLMTimeoutError,
)

logger = logging.getLogger(__name__)

DEFAULT_URL = "http://127.0.0.1:11434"
DEFAULT_MODEL = "qwen2.5:3b-instruct"


class OllamaClient(LLMClient):
    """Chat client for a local Ollama server (``/api/chat``)."""

    def __init__(
        self,
        base_url: str = "",
        model: str = "",
        timeout_seconds: float = 60.0,
    ):
        env_url = (os.environ.get("ATLAS_OLLAMA_URL") or "").strip()
        env_model = (os.environ.get("ATLAS_OLLAMA_MODEL") or "").strip()

        base_url = (base_url or "").strip() or env_url or DEFAULT_URL
        model = (model or "").strip() or env_model or DEFAULT_MODEL

        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_seconds = float(timeout_seconds)

    def is_available(self, *, timeout_seconds: float = 1.5) -> bool:
        """Return True if Ollama is reachable."""
        try:
            r = requests.get(f"{self.base_url}/api/tags", timeout=float(timeout_seconds))
            return r.status_code == 200
        except requests.RequestException:
            return False

    def chat(
        self,
        messages: List[LLMMessage],
        *,
        temperature: float = 0.4,
        max_tokens: int = 512,
    ) -> str:
        payload = {
            "model": self.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "stream": False,
            "options": {
                "temperature": float(temperature),
                "num_predict": int(max_tokens),
            },
        }

        try:
            r = requests.post(
                f"{self.base_url}/api/chat",
                json=payload,
                timeout=self.timeout_seconds,
            )
        except requests.Timeout as e:
            raise LLMTimeoutError(f"Ollama timed out after {self.timeout_seconds:.0f}s") from e
        except requests.RequestException as e:
            raise LLMConnectionError(
                f"Could not reach Ollama at {self.base_url}. Start it with: ollama serve"
            ) from e

        # Prefer JSON error if present.
        if r.status_code >= 400:
            try:
                err_text = str((r.json() or {}).get("error") or "").strip()
            except ValueError:
                err_text = (r.text or "").strip()

            if "model" in err_text.lower() and "not found" in err_text.lower():
                raise LLMModelNotFoundError(
                    f"Ollama model not found: '{self.model}'. Install it: ollama pull {self.model}"
                )
            raise LLMInvalidResponseError(f"Ollama error ({r.status_code}): {err_text or 'unknown_error'}")

        try:
            data = r.json() or {}
        except ValueError as e:
            raise LLMInvalidResponseError("Ollama returned a non-JSON body") from e
        content = (data.get("message") or {}).get("content", "")
        logger.debug("[Ollama] %s replied with %d chars", self.model, len(content))
        return content.strip()
