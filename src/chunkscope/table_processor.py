"""
Detects comparison tables in extracted text and flattens them.

PDF extraction emits a table as one cell per line: a row header followed by
one value per column. Each detected table becomes a standalone segment of the
form

    COMPARISON TABLE: <title>

    This table compares: <col 1>, <col 2>, ...

    <row header>
      <col 1>: <value>
      ...

so plain substring and embedding search can still match structured data.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

MAX_TABLE_ROWS = 50
MIN_DETECTED_COLUMNS = 2
MAX_DETECTED_COLUMNS = 5
MIN_DETECTED_ROWS = 2

_NUMBER_RE = re.compile(r"\d+")
_RANGE_RE = re.compile(r"\d+-\d+")
_VERSUS_RE = re.compile(r"\svs\.?\s|\sversus\s")
_TITLE_OF_RE = re.compile(r"(comparison|table)\s+of\s+", flags=re.IGNORECASE)


@dataclass(frozen=True)
class TextSegment:
    text: str
    start_char: int
    end_char: int
    is_table: bool = False


def is_table_title(line: str) -> bool:
    lower = line.lower()
    if "comparison" in lower or "table" in lower or "overview" in lower:
        if "# Comparison" in line or "# comparison" in line:
            return True
        if _TITLE_OF_RE.search(line):
            return True
    if _RANGE_RE.search(line):
        return True
    return bool(_VERSUS_RE.search(lower))


def _clean_title(title_line: str) -> str:
    title = title_line
    idx = title_line.find("# Comparison")
    if idx >= 0:
        title = title_line[idx + 2:].strip()
    else:
        idx = title_line.lower().find("comparison of")
        if idx >= 0:
            title = title_line[idx:].strip()

    dash = title.find(" - ")
    if dash > 0:
        after = title[dash + 3:]
        if len(after) < 50 and not _RANGE_RE.search(after):
            title = title[:dash].strip()
    dash = title.find(" \u2013 ")
    if dash > 0:
        title = title[:dash].strip()
    return title.split("\n")[0].strip()


class TableProcessor:
    def process(self, text: str) -> list[TextSegment]:
        lines = text.split("\n")
        positions: list[int] = []
        offset = 0
        for line in lines:
            positions.append(offset)
            offset += len(line) + 1
        text_end = offset

        segments: list[TextSegment] = []
        text_start = 0
        i = 0
        while i < len(lines):
            if not is_table_title(lines[i].strip()):
                i += 1
                continue

            table_start = positions[i]
            if table_start > text_start:
                before = text[text_start:table_start]
                if before.strip():
                    segments.append(TextSegment(before, text_start, table_start, False))

            table_text, next_idx = self._process_table_section(lines, i)
            table_end = positions[next_idx] if next_idx < len(lines) else text_end
            segments.append(TextSegment(table_text, table_start, table_end, True))
            text_start = table_end
            i = next_idx

        if text_start < len(text):
            remaining = text[text_start:]
            if remaining.strip():
                segments.append(TextSegment(remaining, text_start, len(text), False))

        if not segments:
            segments.append(TextSegment(text, 0, len(text), False))
        return segments

    def _process_table_section(self, lines: list[str], start_idx: int) -> tuple[str, int]:
        """Returns (segment text, index of the first line after the table)."""
        title = _clean_title(lines[start_idx].strip())
        i = start_idx + 1

        column_count = self.extract_column_count(title)
        if column_count < MIN_DETECTED_COLUMNS:
            column_count = self.detect_column_count(lines, i)
        if column_count < MIN_DETECTED_COLUMNS:
            return lines[start_idx], start_idx + 1

        column_names = self.extract_column_names(title, column_count)
        parts = [
            f"COMPARISON TABLE: {title}\n\n",
            "This table compares: " + ", ".join(column_names) + "\n\n",
        ]

        rows = 0
        while i < len(lines) and rows < MAX_TABLE_ROWS:
            line = lines[i].strip()
            if not line or is_table_title(line):
                break

            lower = line.lower()
            if lower == "feature:" or (lower.endswith(":") and len(line) < 20):
                # Placeholder header row: skip it and its values.
                i += 1
                for _ in range(column_count):
                    if i < len(lines) and lines[i].strip():
                        i += 1
                    else:
                        break
                continue

            header = line
            i += 1
            values: list[str] = []
            while len(values) < column_count and i < len(lines):
                value = lines[i].strip()
                if not value or is_table_title(value):
                    break
                values.append(value)
                i += 1

            if len(values) != column_count:
                i -= len(values)
                break
            row = self.format_row(header, values, column_names)
            if row:
                parts.append(row + "\n")
                rows += 1

        if rows == 0:
            return lines[start_idx], start_idx + 1
        return "".join(parts), i

    @staticmethod
    def extract_column_count(title: str) -> int:
        numbers = _NUMBER_RE.findall(title)
        if len(numbers) >= 2:
            return len(numbers)
        if _VERSUS_RE.search(title.lower()):
            return 2
        return 0

    def detect_column_count(self, lines: list[str], start_idx: int) -> int:
        i = start_idx
        while i < len(lines) and not lines[i].strip():
            i += 1
        if i >= len(lines):
            return 0
        for count in range(MIN_DETECTED_COLUMNS, MAX_DETECTED_COLUMNS + 1):
            if self._looks_like_table(lines, i, count, MIN_DETECTED_ROWS):
                return count
        return 0

    @staticmethod
    def _looks_like_table(lines: list[str], start_idx: int, column_count: int, min_rows: int) -> bool:
        i = start_idx
        rows = 0
        while rows < min_rows and i < len(lines):
            if not lines[i].strip():
                i += 1
                continue
            if len(lines[i].strip()) < 3:
                return False
            i += 1
            values = 0
            while values < column_count and i < len(lines) and lines[i].strip():
                values += 1
                i += 1
            if values != column_count:
                return False
            rows += 1
        return rows >= min_rows

    @staticmethod
    def extract_column_names(title: str, column_count: int) -> list[str]:
        lower = title.lower()
        if "wifi" in lower or "wi-fi" in lower:
            numbers = _NUMBER_RE.findall(title)
            if len(numbers) >= column_count:
                return [f"Wi-Fi {number}" for number in numbers[:column_count]]
        return [f"Column {idx + 1}" for idx in range(column_count)]

    @staticmethod
    def format_row(header: str, values: list[str], column_names: list[str]) -> str:
        if header.strip().lower() == "feature:":
            return ""
        out = [f"\n{header.strip()}\n"]
        for idx, value in enumerate(values):
            clean = value.strip()
            if idx < len(column_names):
                name = column_names[idx]
                if clean.startswith(name + ":"):
                    clean = clean[len(name) + 1:].strip()
                out.append(f"  {name}: {clean}\n")
            else:
                out.append(f"  {clean}\n")
        return "".join(out)
