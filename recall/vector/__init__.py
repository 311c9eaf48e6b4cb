"""
Document retrieval path: chunking, embedding, similarity indexes and the vector store.
"""

# Package initialization for vector module
from .chunking import DocumentChunker
from .tables import TableChunker
from .embeddings import (IEmbeddingProvider, HashedBagOfWordsEmbedding, OllamaEmbedding,
                         OpenAICompatibleEmbedding, SentenceTransformerEmbedding, cosine_similarity, l2_normalize)
from .index import IVectorIndex, LinearScanIndex
from .faiss_store import FaissIndex
from .store import VectorStore
from .types import Chunk, VectorRecord, QueryResult, SearchHit, IngestResult, SourceInfo, StoreStats

__all__ = [
    'DocumentChunker',
    'TableChunker',
    'IEmbeddingProvider',
    'HashedBagOfWordsEmbedding',
    'OllamaEmbedding',
    'OpenAICompatibleEmbedding',
    'SentenceTransformerEmbedding',
    'cosine_similarity',
    'l2_normalize',
    'IVectorIndex',
    'LinearScanIndex',
    'FaissIndex',
    'VectorStore',
    'Chunk',
    'VectorRecord',
    'QueryResult',
    'SearchHit',
    'IngestResult',
    'SourceInfo',
    'StoreStats',
]
