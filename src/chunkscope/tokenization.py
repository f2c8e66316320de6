"""
Shared tokenization helpers for multilingual query and chunk matching.
"""
from __future__ import annotations

import re

_UNICODE_WORD_RE = re.compile(r"\w+", flags=re.UNICODE)
_PUNCTUATION_RE = re.compile(r"[^\w\s]", flags=re.UNICODE)
_NUMERIC_RE = re.compile(r"^\d+$")


def strip_punctuation(text: str) -> str:
    """Lowercases and replaces every non-word, non-space character with a space."""
    return _PUNCTUATION_RE.sub(" ", str(text or "").lower())


def is_numeric_token(token: str) -> bool:
    return bool(_NUMERIC_RE.match(token))


def tokenize_for_matching(text: str) -> list[str]:
    """
    Tokenizes text with Unicode-aware word boundaries.
    Keeps letters/numbers from non-Latin scripts and normalizes via casefold().
    Length and stop-word filtering belong to the caller.
    """
    out: list[str] = []
    for raw in _UNICODE_WORD_RE.findall(str(text or "").casefold()):
        token = raw.strip("_")
        if not token:
            continue
        if not any(ch.isalnum() for ch in token):
            continue
        out.append(token)
    return out
