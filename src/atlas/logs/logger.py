from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_SECRET_KEYS = ("password", "token", "api_key", "secret")


def _mask(params: dict[str, Any]) -> dict[str, Any]:
    return {
        k: ("***" if any(s in k.lower() for s in _SECRET_KEYS) else v)
        for k, v in params.items()
    }


@dataclass
class JsonlLogger:
    """Append-only JSONL audit trail.

    Writing is best effort: an I/O error is logged and the pipeline goes on.
    """

    path: str

    def log(self, event: str, **fields: Any) -> None:
        record: dict[str, Any] = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
            "event": event,
        }
        record.update(fields)

        p = Path(self.path)
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            with p.open("a", encoding="utf-8") as f:
                f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
        except OSError as e:
            logger.warning("[Audit] could not write %s: %s", p, e)

    def log_tool_execution(
        self,
        tool_name: str,
        risk_level: str,
        success: bool,
        confirmed: bool = False,
        error: str | None = None,
        params: dict[str, Any] | None = None,
        **extra_fields: Any,
    ) -> None:
        """Log tool execution with risk level and confirmation status."""
        fields: dict[str, Any] = {
            "tool": tool_name,
            "risk_level": risk_level,
            "success": success,
            "confirmed": confirmed,
        }
        if error:
            fields["error"] = error
        if params:
            fields["params"] = _mask(dict(params))
        fields.update(extra_fields)
        self.log("tool_execution", **fields)

    def log_confirmation(
        self,
        decision: str,
        *,
        intent: str,
        tool: str | None,
        risk_level: str,
        stage: int = 1,
        **extra_fields: Any,
    ) -> None:
        """Log a confirmation request or its resolution (granted/denied/timeout)."""
        self.log(
            "confirmation",
            decision=decision,
            intent=intent,
            tool=tool,
            risk_level=risk_level,
            stage=stage,
            **extra_fields,
        )

    def log_undo(self, description: str, success: bool, **extra_fields: Any) -> None:
        self.log("undo", description=description, success=success, **extra_fields)
