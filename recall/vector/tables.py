"""
Tabular chunking: CSV/TSV text or pre-parsed rows become grid chunks.

Every chunk repeats the header, splits only at row boundaries and ends with a
short per-column data summary so a chunk is readable on its own.
"""

import csv
import io
from typing import Iterable, List, Optional, Sequence

from ..util.logging import logger
from .types import Chunk

CANDIDATE_DELIMITERS = [",", ";", "\t", "|"]
MAX_SUMMARY_COLUMNS = 10
NUMERIC_SHARE = 0.8


def detect_delimiter(text: str) -> str:
    """Pick the candidate delimiter that occurs most often on the first line."""
    first_line = (text or "").split("\n", 1)[0]
    counts = {d: first_line.count(d) for d in CANDIDATE_DELIMITERS}
    best = max(CANDIDATE_DELIMITERS, key=lambda d: counts[d])
    return best if counts[best] > 0 else ","


def _escape_cell(value) -> str:
    if value is None:
        return ""
    return str(value).replace("|", "\\|").replace("\r", "").replace("\n", " ").strip()


def _as_number(value: str) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


class TableChunker:
    """Row-boundary chunker for tabular data."""

    def __init__(self, max_rows_per_chunk: int = 50, max_chars: Optional[int] = None, category_cap: int = 10):
        if max_rows_per_chunk < 1:
            raise ValueError("max_rows_per_chunk must be >= 1")
        self.max_rows_per_chunk = max_rows_per_chunk
        self.max_chars = max_chars
        self.category_cap = category_cap

    def chunk_csv(self, text: str, source_id: str, delimiter: Optional[str] = None) -> List[Chunk]:
        """Parse delimited text (delimiter sniffed when not given) and chunk the rows."""
        delimiter = delimiter or detect_delimiter(text)
        rows = list(csv.reader(io.StringIO(text), delimiter=delimiter))
        return self.chunk_rows(rows, source_id)

    def chunk_rows(self, rows: Iterable[Sequence], source_id: str, sheet_name: Optional[str] = None) -> List[Chunk]:
        """Chunk rows whose first non-empty row is the header."""
        rows = [list(row) for row in rows if any(_escape_cell(cell) for cell in row)]
        if not rows:
            return []

        header = [_escape_cell(cell) for cell in rows[0]]
        width = len(header)
        data = []
        for row in rows[1:]:
            cells = [_escape_cell(cell) for cell in row]
            # Pad short rows; extra cells beyond the header are dropped
            data.append((cells + [""] * width)[:width])

        groups = self._group_rows(header, data)
        texts = []
        start = 1
        for group in groups:
            texts.append(self._render(source_id, sheet_name, header, group, start, len(data)))
            start += len(group)

        total = len(texts)
        logger.debug(f"Table '{source_id}' split into {total} chunks ({len(data)} rows, {width} columns)")
        return [
            Chunk(
                source_id=source_id,
                index=i,
                total_siblings=total,
                text=text,
                byte_length=len(text.encode("utf-8")),
            )
            for i, text in enumerate(texts)
        ]

    def _group_rows(self, header: List[str], data: List[List[str]]) -> List[List[List[str]]]:
        if not data:
            return [[]]

        groups = []
        current = []
        for row in data:
            candidate = current + [row]
            too_many = len(candidate) > self.max_rows_per_chunk
            too_long = (self.max_chars is not None and current
                        and len(self._grid(header, candidate)) > self.max_chars)
            if too_many or too_long:
                groups.append(current)
                current = [row]
            else:
                current = candidate
        if current:
            groups.append(current)
        return groups

    def _render(self, source_id, sheet_name, header, rows, start, total_rows) -> str:
        end = start + len(rows) - 1 if rows else 0
        meta = f"Table: {source_id}"
        if sheet_name:
            meta += f" | Sheet: {sheet_name}"
        meta += f" | Rows {start if rows else 0}-{end} of {total_rows} | {len(header)} columns"

        parts = [meta, self._grid(header, rows)]
        summary = self._summary(header, rows)
        if summary:
            parts.append("Summary:\n" + summary)
        return "\n".join(parts)

    def _grid(self, header: List[str], rows: List[List[str]]) -> str:
        widths = [max([len(header[i])] + [len(row[i]) for row in rows] + [3]) for i in range(len(header))]

        def line(cells):
            return "| " + " | ".join(cell.ljust(widths[i]) for i, cell in enumerate(cells)) + " |"

        lines = [line(header), "|" + "|".join("-" * (w + 2) for w in widths) + "|"]
        lines.extend(line(row) for row in rows)
        return "\n".join(lines)

    def _summary(self, header: List[str], rows: List[List[str]]) -> str:
        lines = []
        for col, name in enumerate(header):
            if not name:
                continue
            values = [row[col] for row in rows if row[col] != ""]
            if not values:
                continue

            numbers = [n for n in (_as_number(v) for v in values) if n is not None]
            if len(numbers) > len(values) * NUMERIC_SHARE:
                mean = round(sum(numbers) / len(numbers), 2)
                lines.append(f"- {name}: range {_format_number(min(numbers))} to {_format_number(max(numbers))}, mean {mean}")
            else:
                distinct = list(dict.fromkeys(values))
                if len(distinct) <= self.category_cap:
                    lines.append(f"- {name}: {', '.join(distinct)}")
                else:
                    lines.append(f"- {name}: {len(distinct)} distinct values")

            if len(lines) >= MAX_SUMMARY_COLUMNS:
                break
        return "\n".join(lines)
