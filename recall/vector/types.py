"""
Record shapes for the document retrieval path.
Vectors are float32 numpy arrays; records are never mutated once persisted.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np


@dataclass
class Chunk:
    """A contiguous piece of a source document."""

    source_id: str
    """Identifier of the document this chunk came from"""

    index: int
    """Position among siblings, contiguous from 0"""

    total_siblings: int
    """Number of chunks produced from the same source"""

    text: str
    """Chunk text, including any overlap prefix"""

    byte_length: int
    """UTF-8 byte length of text"""

    overlap_length: int = 0
    """Leading characters of text carried over from the previous chunk"""

    @property
    def body(self) -> str:
        return self.text[self.overlap_length:]


@dataclass
class VectorRecord:
    """A persisted chunk with its embedding."""

    id: Optional[int]
    content_hash: str
    source_name: str
    chunk_index: int
    total_chunks: int
    text: str
    vector: np.ndarray
    dimension: int
    created_at: str
    metadata: Dict[str, object] = field(default_factory=dict)


@dataclass
class QueryResult:
    """Raw index hit: row id and similarity score."""

    id: int
    score: float


@dataclass
class SearchHit:
    """A ranked search result returned to callers."""

    text: str
    source_name: str
    chunk_index: int
    score: float
    content_hash: str


@dataclass
class IngestResult:
    status: str  # "exists" or "success"
    content_hash: str
    chunk_count: int
    total_chunks: int
    embedding_mode: str


@dataclass
class SourceInfo:
    content_hash: str
    source_name: str
    chunk_count: int
    first_ingested_at: str


@dataclass
class StoreStats:
    total_sources: int
    total_chunks: int
    total_characters: int
    embedding_mode: str
    backend: str
    dimensions: List[int] = field(default_factory=list)
