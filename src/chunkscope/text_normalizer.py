"""
Text cleanup applied to extracted document text before table detection and splitting.
"""
from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass

_LIST_MARKER_RE = re.compile(r"^(\s*[-*•]\s+|\s*\d+\.\s+)")
_LIST_LINE_RES = (
    re.compile(r"^\s*[-*•]\s+"),
    re.compile(r"^\s*\d+\.\s+"),
    re.compile(r"^\s*[a-z]\)\s+"),
)
_WHITESPACE_RE = re.compile(r"\s+")
_BARE_NUMBER_RE = re.compile(r"^[0-9]+$")
_PAGE_NUMBER_RES = (
    re.compile(r"^[Pp]age\s+\d+$"),
    re.compile(r"^-\s*\d+\s*-$"),
    re.compile(r"^\d+\s*of\s*\d+$"),
)
_HEADER_FOOTER_RES = (
    re.compile(r"^Copyright\s+©"),
    re.compile(r"^©\s+\d{4}"),
    re.compile(r"All rights reserved"),
    re.compile(r"^Confidential"),
    re.compile(r"^Draft"),
    re.compile(r"^\d{1,2}/\d{1,2}/\d{2,4}$"),
)
_INVISIBLE_CHARS = ("\u00ad", "\u200b", "\u200c", "\u200d", "\ufeff")
_HYPHEN_BREAK_RE = re.compile(r"-\s*\n\s*")

REPEATED_HEADER_MIN_OCCURRENCES = 3
REPEATED_HEADER_MAX_LENGTH = 100


def is_list_line(line: str) -> bool:
    stripped = line.strip()
    return bool(stripped) and any(pattern.match(stripped) for pattern in _LIST_LINE_RES)


def is_page_number(line: str) -> bool:
    stripped = line.strip()
    if _BARE_NUMBER_RE.match(stripped):
        return int(stripped) < 10000
    return any(pattern.match(stripped) for pattern in _PAGE_NUMBER_RES)


def is_header_footer(line: str) -> bool:
    stripped = line.strip()
    if len(stripped) < 5:
        return False
    return any(pattern.search(stripped) for pattern in _HEADER_FOOTER_RES)


def is_only_special_chars(line: str) -> bool:
    stripped = line.strip()
    return bool(stripped) and not any(ch.isalnum() for ch in stripped)


@dataclass(frozen=True)
class NormalizerConfig:
    remove_excessive_whitespace: bool = True
    normalize_line_endings: bool = True
    strip_layout_artifacts: bool = True
    preserve_lists: bool = True
    max_consecutive_newlines: int = 2


class TextNormalizer:
    def __init__(self, config: NormalizerConfig | None = None):
        self.config = config or NormalizerConfig()
        limit = max(1, int(self.config.max_consecutive_newlines))
        self._newline_run_re = re.compile(r"\n{%d,}" % (limit + 1))
        self._newline_replacement = "\n" * limit

    def normalize(self, text: str) -> str:
        text = str(text or "")
        if self.config.normalize_line_endings:
            text = text.replace("\r\n", "\n").replace("\r", "\n")
        if self.config.strip_layout_artifacts:
            text = self._strip_artifacts(text)
        if self.config.remove_excessive_whitespace:
            text = self._collapse_whitespace(text)
        text = self._newline_run_re.sub(self._newline_replacement, text)
        text = self._cleanup_patterns(text)
        return text.strip()

    def _strip_artifacts(self, text: str) -> str:
        lines = text.split("\n")
        occurrences = Counter(line.strip() for line in lines)
        kept: list[str] = []
        last = len(lines) - 1
        for idx, raw in enumerate(lines):
            line = raw.strip()
            if not line:
                kept.append(line)
                continue
            if is_page_number(line) or is_header_footer(line) or is_only_special_chars(line):
                continue
            if 0 < idx < last and len(line) <= REPEATED_HEADER_MAX_LENGTH:
                # Occurrences elsewhere in the document, excluding this line.
                if occurrences[line] - 1 >= REPEATED_HEADER_MIN_OCCURRENCES:
                    continue
            kept.append(line)
        return "\n".join(kept)

    def _collapse_whitespace(self, text: str) -> str:
        lines = text.split("\n")
        for idx, line in enumerate(lines):
            line = line.replace("\t", " ")
            if self.config.preserve_lists and is_list_line(line):
                match = _LIST_MARKER_RE.match(line)
                if match:
                    rest = _WHITESPACE_RE.sub(" ", line[match.end():].lstrip(" "))
                    lines[idx] = match.group(0) + rest
                    continue
            lines[idx] = _WHITESPACE_RE.sub(" ", line).strip()
        return "\n".join(lines)

    @staticmethod
    def _cleanup_patterns(text: str) -> str:
        for ch in _INVISIBLE_CHARS:
            text = text.replace(ch, "")
        text = _HYPHEN_BREAK_RE.sub("", text)
        text = re.sub(r"\.{4,}", "...", text)
        text = re.sub(r"!{2,}", "!", text)
        text = re.sub(r"\?{2,}", "?", text)
        return text


def normalize_for_embedding(text: str) -> str:
    """Light cleanup for embedding input; keeps wording intact."""
    text = str(text or "").replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()
