"""Confirmation, response formatting and per-conversation state.

The end-to-end pipeline lives in ``atlas.router.pipeline``.
"""

from atlas.router.confirmation import ConfirmationGate, GateEvent, GateState, parse_reply
from atlas.router.context import ConversationContext
from atlas.router.formatter import ResponseFormatter

__all__ = [
    "ConfirmationGate",
    "ConversationContext",
    "GateEvent",
    "GateState",
    "ResponseFormatter",
    "parse_reply",
]
