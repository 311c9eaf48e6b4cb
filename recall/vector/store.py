"""
Vector store: ingest documents, search chunks, list and delete sources.

The vectors table is canonical. Similarity indexes are caches kept per
(dimension, embedding mode) partition. They are synced lazily from the table
and rebuilt after deletes.
"""

import functools
import hashlib
import json
import threading
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from ..core.config import RecallConfig
from ..core.db import Database, now_iso
from ..core.errors import EmptyQueryError, InputError
from ..core.validation import IngestRequest, SearchRequest, validate_input
from ..util.logging import logger
from .chunking import DocumentChunker
from .embeddings import MODE_LOCAL, MODE_REMOTE, HashedBagOfWordsEmbedding, IEmbeddingProvider
from .extract import Extractor, extract_text, file_extension, is_table
from .faiss_store import FaissIndex
from .index import IVectorIndex, LinearScanIndex
from .tables import TableChunker
from .types import IngestResult, SearchHit, SourceInfo, StoreStats, VectorRecord

IndexFactory = Callable[[int], IVectorIndex]
Partition = Tuple[int, str]  # (dimension, embedding mode)


def _encode_vector(vector: np.ndarray) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


def _decode_vector(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32)


class VectorStore:
    """Backend-agnostic document store with similarity search and embedding fallback."""

    def __init__(self, db: Database, config: RecallConfig, remote: Optional[IEmbeddingProvider] = None,
                 local: Optional[IEmbeddingProvider] = None, index: Optional[IndexFactory] = None,
                 extractors: Optional[Dict[str, Extractor]] = None):
        self.db = db
        self.config = config
        self.remote = remote
        self.local = local or HashedBagOfWordsEmbedding(config.embedding_dimension)
        self.extractors = extractors or {}
        self.chunker = DocumentChunker(config.chunk_size, config.chunk_overlap)
        self.table_chunker = TableChunker(config.table_rows_per_chunk)
        self.degraded = False

        if index is not None:
            self._index_factory = index
            self.backend = getattr(index, "backend", "custom")
        else:
            self._index_factory, self.backend = self._default_index_factory()

        self._indexes: Dict[Partition, IVectorIndex] = {}
        self._loaded_until: Dict[Partition, int] = {}  # partition -> highest row id in the index
        self._index_lock = threading.Lock()
        self._hash_locks: Dict[str, threading.Lock] = {}
        self._hash_locks_guard = threading.Lock()

    def _default_index_factory(self) -> Tuple[IndexFactory, str]:
        if self.config.vector_backend == "faiss":
            try:
                import faiss  # noqa: F401
                return functools.partial(FaissIndex, m=self.config.hnsw_m, ef_search=self.config.hnsw_ef_search), "faiss"
            except ImportError:
                logger.warning("faiss-cpu not installed; using linear scan index")
        return LinearScanIndex, "scan"

    @property
    def embedding_mode(self) -> str:
        if self.remote is None or self.degraded:
            return MODE_LOCAL
        return MODE_REMOTE

    def _embed(self, text: str) -> Tuple[np.ndarray, str, str]:
        """Embed with the remote provider until it first fails, then locally for good."""
        if self.remote is not None and not self.degraded:
            try:
                return self.remote.embed_text(text), MODE_REMOTE, self.remote.name
            except Exception as e:
                self._degrade(e)
        return self.local.embed_text(text), MODE_LOCAL, self.local.name

    def _degrade(self, error: Exception):
        with self._index_lock:
            if self.degraded:
                return
            self.degraded = True
        logger.log_embedding_fallback(self.remote.name, str(error))

    def _lock_for(self, content_hash: str) -> threading.Lock:
        with self._hash_locks_guard:
            return self._hash_locks.setdefault(content_hash, threading.Lock())

    def ingest(self, raw_bytes: bytes, source_name: str) -> IngestResult:
        """
        Ingest a document. Identical bytes are stored once.

        Returns:
            IngestResult with status "exists" (nothing embedded) or "success"

        Raises:
            InputError: Empty document or name, unsupported format, or no extractable text
        """
        request = validate_input(IngestRequest, source_name=source_name, size=len(raw_bytes or b""))
        content_hash = hashlib.md5(raw_bytes).hexdigest()

        with self._lock_for(content_hash):
            with self.db.connect() as conn:
                row = conn.execute(
                    "SELECT COUNT(*) AS n, MAX(total_chunks) AS total FROM vectors WHERE content_hash = ?",
                    (content_hash,)
                ).fetchone()
            if row["n"]:
                logger.log_vector_operation("ingest", content_hash, {"source_name": request.source_name}, status="exists")
                return IngestResult("exists", content_hash, row["n"], row["total"], self.embedding_mode)

            text = extract_text(raw_bytes, request.source_name, self.extractors)
            if not text.strip():
                raise InputError(f"No text could be extracted from '{request.source_name}'")

            if is_table(request.source_name):
                delimiter = "\t" if file_extension(request.source_name) == "tsv" else None
                chunks = self.table_chunker.chunk_csv(text, request.source_name, delimiter)
            else:
                chunks = self.chunker.chunk(text, request.source_name)
            if not chunks:
                raise InputError(f"No text could be extracted from '{request.source_name}'")

            records = []
            created_at = now_iso()
            for chunk in chunks:
                try:
                    vector, mode, provider = self._embed(chunk.text)
                except Exception as e:
                    logger.log_vector_operation("embed_chunk", content_hash, {
                        "chunk_index": chunk.index, "error": str(e)
                    }, status="skipped")
                    continue
                metadata = {"mode": mode, "provider": provider, "byte_length": chunk.byte_length,
                            "overlap_length": chunk.overlap_length}
                records.append(VectorRecord(None, content_hash, request.source_name, chunk.index,
                                            chunk.total_siblings, chunk.text, vector, len(vector), created_at, metadata))

            stored = 0
            with self.db.connect() as conn:
                for record in records:
                    cursor = conn.execute("""
                        INSERT OR IGNORE INTO vectors
                        (content_hash, source_name, chunk_index, total_chunks, content, embedding, dimension, mode, metadata, created_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """, (record.content_hash, record.source_name, record.chunk_index, record.total_chunks, record.text,
                          _encode_vector(record.vector), record.dimension, record.metadata["mode"],
                          json.dumps(record.metadata), record.created_at))
                    stored += cursor.rowcount

        logger.log_vector_operation("ingest", content_hash, {
            "source_name": request.source_name,
            "chunks": len(chunks),
            "stored": stored,
            "embedding_mode": self.embedding_mode,
        })
        return IngestResult("success", content_hash, stored, len(chunks), self.embedding_mode)

    def search(self, query_text: str, top_k: Optional[int] = None,
               min_score: Optional[float] = None) -> List[SearchHit]:
        """
        Rank stored chunks against a query, best first.

        Only chunks embedded in the same mode and dimension as the query are
        compared. Hits scoring below `min_score` are dropped.
        """
        if query_text is None or not query_text.strip():
            raise EmptyQueryError("Search query cannot be empty")
        request = validate_input(SearchRequest, query=query_text, min_score=min_score,
                                 top_k=top_k if top_k is not None else self.config.default_top_k)

        vector, mode, _ = self._embed(request.query)
        with self._index_lock:
            hits = self._synced_index((len(vector), mode)).search(vector, request.top_k)
        if request.min_score is not None:
            hits = [hit for hit in hits if hit.score >= request.min_score]
        if not hits:
            return []

        ids = [hit.id for hit in hits]
        placeholders = ",".join("?" for _ in ids)
        with self.db.connect() as conn:
            rows = conn.execute(
                f"SELECT id, content, source_name, chunk_index, content_hash FROM vectors WHERE id IN ({placeholders})",
                ids
            ).fetchall()
        by_id = {row["id"]: row for row in rows}

        results = []
        for hit in hits:
            row = by_id.get(hit.id)
            if row is None:
                continue  # deleted since the index was synced
            results.append(SearchHit(
                text=row["content"],
                source_name=row["source_name"],
                chunk_index=row["chunk_index"],
                score=hit.score,
                content_hash=row["content_hash"],
            ))

        logger.debug(f"Search returned {len(results)} hits (mode={mode}, dimension={len(vector)})")
        return results

    def _synced_index(self, partition: Partition) -> IVectorIndex:
        """Bring the partition's index up to date with the table. Caller holds _index_lock."""
        dimension, mode = partition
        index = self._indexes.get(partition)
        if index is None:
            index = self._index_factory(dimension)
            self._indexes[partition] = index
            self._loaded_until[partition] = 0

        with self.db.connect() as conn:
            total = conn.execute(
                "SELECT COUNT(*) FROM vectors WHERE dimension = ? AND mode = ?", (dimension, mode)
            ).fetchone()[0]
            if total < index.count():
                # Rows were deleted elsewhere
                index.clear()
                self._loaded_until[partition] = 0
            rows = conn.execute(
                "SELECT id, embedding FROM vectors WHERE dimension = ? AND mode = ? AND id > ? ORDER BY id",
                (dimension, mode, self._loaded_until[partition])
            ).fetchall()

        if rows:
            index.add([row["id"] for row in rows], [_decode_vector(row["embedding"]) for row in rows])
            self._loaded_until[partition] = rows[-1]["id"]
        return index

    def list_sources(self) -> List[SourceInfo]:
        """One entry per ingested document, newest first."""
        with self.db.connect() as conn:
            rows = conn.execute("""
                SELECT content_hash, MIN(source_name) AS source_name, COUNT(*) AS chunk_count,
                       MIN(created_at) AS first_ingested_at
                FROM vectors
                GROUP BY content_hash
                ORDER BY first_ingested_at DESC, content_hash
            """).fetchall()
        return [SourceInfo(row["content_hash"], row["source_name"], row["chunk_count"], row["first_ingested_at"])
                for row in rows]

    def get_records(self, content_hash: str) -> List[VectorRecord]:
        """Stored chunks of one document in chunk order."""
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM vectors WHERE content_hash = ? ORDER BY chunk_index", (content_hash,)
            ).fetchall()
        return [
            VectorRecord(
                id=row["id"],
                content_hash=row["content_hash"],
                source_name=row["source_name"],
                chunk_index=row["chunk_index"],
                total_chunks=row["total_chunks"],
                text=row["content"],
                vector=_decode_vector(row["embedding"]),
                dimension=row["dimension"],
                created_at=row["created_at"],
                metadata=json.loads(row["metadata"] or "{}"),
            )
            for row in rows
        ]

    def delete(self, content_hash: str) -> int:
        """Delete every chunk of a document; returns the number removed (0 when unknown)."""
        with self.db.connect() as conn:
            partitions = [(row[0], row[1]) for row in conn.execute(
                "SELECT DISTINCT dimension, mode FROM vectors WHERE content_hash = ?", (content_hash,)
            ).fetchall()]
            removed = conn.execute("DELETE FROM vectors WHERE content_hash = ?", (content_hash,)).rowcount

        if removed:
            with self._index_lock:
                for partition in partitions:
                    self._indexes.pop(partition, None)
                    self._loaded_until.pop(partition, None)

        logger.log_vector_operation("delete", content_hash, {"removed": removed},
                                    status="success" if removed else "not_found")
        return removed

    def stats(self) -> StoreStats:
        with self.db.connect() as conn:
            row = conn.execute("""
                SELECT COUNT(DISTINCT content_hash) AS sources, COUNT(*) AS chunks,
                       COALESCE(SUM(LENGTH(content)), 0) AS characters
                FROM vectors
            """).fetchone()
            dimensions = [r[0] for r in conn.execute("SELECT DISTINCT dimension FROM vectors ORDER BY dimension")]

        return StoreStats(
            total_sources=row["sources"],
            total_chunks=row["chunks"],
            total_characters=row["characters"],
            embedding_mode=self.embedding_mode,
            backend=self.backend,
            dimensions=dimensions,
        )
