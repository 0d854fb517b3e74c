"""Utterance normalization.

Turns raw input (typed, transcribed, or wrapped by a UI in prior-turn
context markup) into a canonical string for rule matching.
"""

from __future__ import annotations

import logging
import re
from typing import Mapping, Optional

from atlas.nlu.rules import DEFAULT_SLANG, DEFAULT_TYPOS

logger = logging.getLogger(__name__)

_CONTEXT_BLOCK_RE = re.compile(r"\[context:.*?\]", re.IGNORECASE | re.DOTALL)
_USER_MARKER = "User:"
_WHITESPACE_RE = re.compile(r"\s+")
_TRAILING_PUNCT_RE = re.compile(r"[\s.!?,;]+$")
_LEADING_PUNCT_RE = re.compile(r"^[\s.!?,;]+")
_PHRASE_START = r"(?<![\w./\\~:-])"
_PHRASE_END = r"(?![\w/\\-]|\.\w)"


class Normalizer:
    """Strip markup, collapse whitespace, fix typos and slang.

    ``strip`` keeps the original case (file paths need it);
    ``normalize`` returns the lower-cased canonical form.
    """

    def __init__(
        self,
        typos: Optional[Mapping[str, str]] = None,
        slang: Optional[Mapping[str, str]] = None,
        *,
        correct_typos: bool = True,
    ):
        self._typos = {k.lower(): v for k, v in (DEFAULT_TYPOS if typos is None else typos).items()}
        self._correct_typos = correct_typos
        slang_map = DEFAULT_SLANG if slang is None else slang
        # Longest phrases first so "crank it up" wins over "crank". A phrase
        # never matches inside a path or file name ("/tmp/kill.txt").
        self._slang = [
            (re.compile(_PHRASE_START + re.escape(phrase) + _PHRASE_END, re.IGNORECASE), replacement)
            for phrase, replacement in sorted(slang_map.items(), key=lambda kv: -len(kv[0]))
        ]

    def clean(self, utterance: Optional[str]) -> str:
        """Markup, whitespace and punctuation only; words are left as typed."""
        text = utterance or ""
        if "[Context:" in text or _USER_MARKER in text:
            text = self._strip_context(text)

        text = _WHITESPACE_RE.sub(" ", text).strip()
        text = _TRAILING_PUNCT_RE.sub("", text)
        text = _LEADING_PUNCT_RE.sub("", text)
        return text

    def strip(self, utterance: Optional[str]) -> str:
        text = self.clean(utterance)
        if not text:
            return ""

        if self._correct_typos and self._typos:
            text = " ".join(self._typos.get(tok.lower(), tok) for tok in text.split(" "))
        for pattern, replacement in self._slang:
            text = pattern.sub(replacement, text)
        return text

    def normalize(self, utterance: Optional[str]) -> str:
        return self.strip(utterance).lower()

    @staticmethod
    def _strip_context(text: str) -> str:
        idx = text.rfind(_USER_MARKER)
        if idx >= 0:
            tail = text[idx + len(_USER_MARKER):]
            # Anything after the user line belongs to the transcript, not the request.
            tail = tail.split("\n", 1)[0]
            logger.debug("[Normalizer] stripped %d chars of context markup", idx)
            return tail
        return _CONTEXT_BLOCK_RE.sub(" ", text)
