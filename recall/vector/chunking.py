"""
Document chunking for the retrieval path.

Bodies are packed first (each at most max_size characters), then every chunk
after the first is prefixed with the tail of the previous body. The prefix
including its joining space never exceeds overlap, so no chunk is longer than
max_size + overlap.
"""

import re
from typing import List, Optional, Sequence, Tuple

from ..util.logging import logger
from .types import Chunk

PARAGRAPH_SEPARATOR = "\n\n"

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[。！？.!?])\s*")
_CODE_BLOCK_RE = re.compile(r"(```.*?```)", re.DOTALL)
_WHITESPACE_RE = re.compile(r"\s+")


class DocumentChunker:
    """Splits text into ordered, size-bounded, overlapping chunks."""

    def __init__(self, max_size: int = 512, overlap: int = 50, separator: str = PARAGRAPH_SEPARATOR):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        if overlap < 0:
            raise ValueError("overlap cannot be negative")
        self.max_size = max_size
        self.overlap = overlap
        self.separator = separator

    def chunk(self, text: str, source_id: str = "") -> List[Chunk]:
        """Paragraph-first chunking; long paragraphs fall back to whitespace tokens."""
        bodies = self._pack(self._paragraphs(text), self.separator)
        return self._build(source_id, [(body, True) for body in bodies])

    def chunk_by_sentence(self, text: str, source_id: str = "") -> List[Chunk]:
        """Chunk on sentence boundaries (after 。！？.!?)."""
        sentences = [s.strip() for s in _SENTENCE_SPLIT_RE.split(text or "")]
        bodies = self._pack([s for s in sentences if s], " ")
        return self._build(source_id, [(body, True) for body in bodies])

    def chunk_by_code(self, text: str, source_id: str = "") -> List[Chunk]:
        """Keep fenced code blocks whole; prose between them is paragraph-chunked."""
        pieces = []
        for part in _CODE_BLOCK_RE.split(text or ""):
            if not part.strip():
                continue
            if part.startswith("```") and part.endswith("```") and len(part) >= 6:
                pieces.append((part, False))
            else:
                prose = self._pack(self._paragraphs(part), self.separator)
                # The first prose body after a code block carries no prefix
                pieces.extend((body, i > 0) for i, body in enumerate(prose))
        return self._build(source_id, pieces)

    def chunk_window(self, text: str, source_id: str = "") -> List[Chunk]:
        """
        Sliding window over whitespace-collapsed text.

        Windows prefer to end after the last sentence stop past half the window.
        Consecutive windows share up to `overlap` characters by position, so
        overlap_length is always 0 here.
        """
        flat = _WHITESPACE_RE.sub(" ", (text or "").strip())
        length = len(flat)
        if not flat:
            return []
        if length <= self.max_size:
            return self._build(source_id, [(flat, False)])

        windows = []
        start = 0
        while start < length:
            window = flat[start:start + self.max_size]
            if start + self.max_size < length:
                break_at = max(window.rfind("。"), window.rfind("."))
                if break_at > self.max_size * 0.5:
                    window = window[:break_at + 1]
            if window.strip():
                windows.append((window.strip(), False))
            start += max(1, len(window) - self.overlap)
        return self._build(source_id, windows)

    def _paragraphs(self, text: str) -> List[str]:
        return [p.strip() for p in (text or "").split(self.separator) if p.strip()]

    def _tokens(self, text: str) -> List[str]:
        tokens = []
        for token in text.split():
            if len(token) > self.max_size:
                tokens.extend(token[i:i + self.max_size] for i in range(0, len(token), self.max_size))
            else:
                tokens.append(token)
        return tokens

    def _pack(self, units: Sequence[str], joiner: str) -> List[str]:
        """Greedily pack units into bodies of at most max_size characters."""
        bodies = []
        current = ""
        for unit in units:
            if len(unit) > self.max_size:
                if current:
                    bodies.append(current)
                    current = ""
                bodies.extend(self._pack(self._tokens(unit), " "))
                continue

            if current and len(current) + len(joiner) + len(unit) > self.max_size:
                bodies.append(current)
                current = unit
            else:
                current = f"{current}{joiner}{unit}" if current else unit

        if current:
            bodies.append(current)
        return bodies

    def _overlap_prefix(self, previous: Optional[str]) -> str:
        if not previous or self.overlap < 2:
            return ""
        tail = previous[-(self.overlap - 1):].lstrip()
        return f"{tail} " if tail else ""

    def _build(self, source_id: str, pieces: List[Tuple[str, bool]]) -> List[Chunk]:
        total = len(pieces)
        chunks = []
        previous = None
        for index, (body, carries_overlap) in enumerate(pieces):
            prefix = self._overlap_prefix(previous) if carries_overlap else ""
            text = prefix + body
            chunks.append(Chunk(
                source_id=source_id,
                index=index,
                total_siblings=total,
                text=text,
                byte_length=len(text.encode("utf-8")),
                overlap_length=len(prefix),
            ))
            previous = body

        logger.debug(f"Chunked source '{source_id}' into {total} chunks")
        return chunks
