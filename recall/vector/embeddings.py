"""
Embedding providers for the retrieval path.

HashedBagOfWordsEmbedding is the deterministic local provider; it needs no
network and no model files. The remote providers call an embedding service with
a bounded timeout and raise EmbeddingError on any failure or malformed vector.
"""

import re
import zlib
from abc import ABC, abstractmethod
from collections import Counter
from typing import Iterable, List, Optional

import numpy as np
import ollama
import requests

from ..core.errors import EmbeddingError

MODE_LOCAL = "local"
MODE_REMOTE = "remote"

STOPWORDS = frozenset([
    # English
    'the', 'a', 'an', 'is', 'are', 'was', 'were', 'be', 'been', 'being',
    'have', 'has', 'had', 'do', 'does', 'did', 'will', 'would', 'could',
    'should', 'may', 'might', 'must', 'shall', 'can', 'need', 'dare',
    'to', 'of', 'in', 'for', 'on', 'with', 'at', 'by', 'from', 'as',
    'into', 'through', 'during', 'before', 'after', 'above', 'below',
    'between', 'under', 'again', 'further', 'then', 'once', 'here',
    'there', 'when', 'where', 'why', 'how', 'all', 'each', 'few',
    'more', 'most', 'other', 'some', 'such', 'no', 'nor', 'not',
    'only', 'own', 'same', 'so', 'than', 'too', 'very', 'just',
    'and', 'but', 'if', 'or', 'because', 'until', 'while', 'about',
    'this', 'that', 'these', 'those', 'it', 'its',
    # Chinese
    '的', '了', '是', '在', '我', '有', '和', '就', '不', '人', '都',
    '一', '一个', '上', '也', '很', '到', '说', '要', '去', '你', '会',
    '着', '没有', '看', '好', '自己', '这', '那', '她', '他', '它',
    '们', '来', '为', '以', '及', '等', '或', '但', '与', '而', '从',
])

_NON_WORD_RE = re.compile(r"[^\w\s]|_")
_LATIN_TOKEN_RE = re.compile(r"[a-z][a-z0-9]+")
_CJK_RUN_RE = re.compile(r"[一-鿿]+")


def l2_normalize(vector) -> np.ndarray:
    """Scale to unit length; a zero vector stays zero."""
    vector = np.asarray(vector, dtype=np.float32)
    norm = np.linalg.norm(vector)
    if norm == 0:
        return vector
    return (vector / norm).astype(np.float32)


def cosine_similarity(a, b) -> float:
    """Cosine similarity; 0.0 when lengths differ or either vector is zero."""
    a = np.asarray(a, dtype=np.float32)
    b = np.asarray(b, dtype=np.float32)
    if a.shape != b.shape:
        return 0.0
    denom = float(np.linalg.norm(a)) * float(np.linalg.norm(b))
    if denom == 0:
        return 0.0
    return float(np.dot(a, b) / denom)


def _checked_vector(values, provider: str) -> np.ndarray:
    """Convert a remote response to float32, rejecting empty or non-finite vectors."""
    if values is None:
        raise EmbeddingError(f"{provider} returned no embedding")
    try:
        vector = np.asarray(values, dtype=np.float32)
    except (TypeError, ValueError) as e:
        raise EmbeddingError(f"{provider} returned a non-numeric embedding: {e}") from e
    if vector.ndim != 1 or vector.size == 0:
        raise EmbeddingError(f"{provider} returned an empty or malformed embedding")
    if not np.all(np.isfinite(vector)):
        raise EmbeddingError(f"{provider} returned non-finite values")
    return vector


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    mode: str = MODE_REMOTE

    @abstractmethod
    def embed_text(self, text: str) -> np.ndarray:
        """Generate embedding vector for given text."""
        pass

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        pass

    def embed_batch(self, texts: Iterable[str]) -> List[np.ndarray]:
        """Embed several texts; providers with a native batch call override this."""
        return [self.embed_text(text) for text in texts]

    @property
    def name(self) -> str:
        return type(self).__name__


class HashedBagOfWordsEmbedding(IEmbeddingProvider):
    """Deterministic hashed term-frequency embedding for mixed Latin/CJK text.

    Each term lands in two buckets (crc32 of the term, and the sum of that with
    crc32 of the reversed term) with a hash-derived sign, weighted by its term
    frequency. The result is L2-normalised.
    """

    mode = MODE_LOCAL

    def __init__(self, dimension: int = 512, secondary_weight: float = 0.5, sign_salt: str = "_sign"):
        if dimension < 1:
            raise ValueError("dimension must be >= 1")
        self.dimension = dimension
        self.secondary_weight = secondary_weight
        self.sign_salt = sign_salt

    def tokenize(self, text: str) -> List[str]:
        text = _NON_WORD_RE.sub(" ", (text or "").lower())

        tokens = _LATIN_TOKEN_RE.findall(text)
        for run in _CJK_RUN_RE.findall(text):
            tokens.extend(run)
            tokens.extend(run[i:i + 2] for i in range(len(run) - 1))

        return [t for t in tokens if t not in STOPWORDS]

    def _crc(self, term: str) -> int:
        return zlib.crc32(term.encode("utf-8"))

    def embed_text(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension, dtype=np.float32)
        tokens = self.tokenize(text)
        if not tokens:
            return vector

        total = len(tokens)
        for term, count in Counter(tokens).items():
            tf = count / total
            h1 = self._crc(term) % self.dimension
            h2 = self._crc(term[::-1]) % self.dimension
            sign = (self._crc(term + self.sign_salt) % 2) * 2 - 1
            vector[h1] += tf * sign
            vector[(h1 + h2) % self.dimension] += tf * self.secondary_weight * sign

        return l2_normalize(vector)

    def get_dimension(self) -> int:
        return self.dimension


class OllamaEmbedding(IEmbeddingProvider):
    """Embeddings from an Ollama server."""

    def __init__(self, model: str = "nomic-embed-text", host: Optional[str] = None, timeout: float = 30.0):
        self.model = model
        self.host = host
        self.timeout = timeout
        self._client = None
        self._dimension = None

    @property
    def client(self) -> ollama.Client:
        if self._client is None:
            self._client = ollama.Client(host=self.host, timeout=self.timeout)
        return self._client

    def embed_batch(self, texts: Iterable[str]) -> List[np.ndarray]:
        texts = list(texts)
        if not texts:
            return []
        try:
            response = self.client.embed(model=self.model, input=texts)
            embeddings = response["embeddings"]
        except Exception as e:
            raise EmbeddingError(f"Ollama embed call failed: {e}") from e

        if not embeddings or len(embeddings) != len(texts):
            raise EmbeddingError("Ollama returned an unexpected number of embeddings")
        vectors = [_checked_vector(values, "ollama") for values in embeddings]
        self._dimension = len(vectors[0])
        return vectors

    def embed_text(self, text: str) -> np.ndarray:
        return self.embed_batch([text])[0]

    def get_dimension(self) -> int:
        if self._dimension is None:
            self.embed_text("dimension probe")
        return self._dimension


class OpenAICompatibleEmbedding(IEmbeddingProvider):
    """Embeddings from any service exposing POST {base_url}/embeddings."""

    def __init__(self, api_key: Optional[str], base_url: str = "https://api.openai.com/v1",
                 model: str = "text-embedding-3-small", dimensions: Optional[int] = None, timeout: float = 30.0):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.dimensions = dimensions
        self.timeout = timeout

    def embed_batch(self, texts: Iterable[str]) -> List[np.ndarray]:
        texts = list(texts)
        if not texts:
            return []

        payload = {"model": self.model, "input": texts}
        if self.dimensions:
            payload["dimensions"] = self.dimensions
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = requests.post(f"{self.base_url}/embeddings", json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            data = response.json().get("data")
        except (requests.RequestException, ValueError) as e:
            raise EmbeddingError(f"Embedding request failed: {e}") from e

        if not isinstance(data, list) or len(data) != len(texts):
            raise EmbeddingError("Embedding response is missing data")
        ordered = sorted(data, key=lambda item: item.get("index", 0))
        return [_checked_vector(item.get("embedding"), "openai-compatible") for item in ordered]

    def embed_text(self, text: str) -> np.ndarray:
        return self.embed_batch([text])[0]

    def get_dimension(self) -> int:
        if self.dimensions:
            return self.dimensions
        return len(self.embed_text("dimension probe"))


class SentenceTransformerEmbedding(IEmbeddingProvider):
    """Sentence transformers embedding provider using pre-trained models.

    The model is loaded on first use; install the `models` extra to enable it.
    """

    def __init__(self, model_name: str = "all-mpnet-base-v2"):
        self.model_name = model_name
        self._model = None
        self._dimension = None

    @property
    def model(self):
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
                self._model = SentenceTransformer(self.model_name)
            except Exception as e:
                raise EmbeddingError(f"Cannot load sentence-transformers model '{self.model_name}': {e}") from e
        return self._model

    def embed_text(self, text: str) -> np.ndarray:
        try:
            embedding = self.model.encode(text, convert_to_tensor=False)
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"sentence-transformers encode failed: {e}") from e
        return _checked_vector(embedding, "sentence-transformers")

    def get_dimension(self) -> int:
        if self._dimension is None:
            self._dimension = len(self.embed_text("test"))
        return self._dimension


def build_remote_provider(config) -> Optional[IEmbeddingProvider]:
    """Remote provider selected by config.embed_provider, or None for local-only."""
    if config.embed_provider == "ollama":
        return OllamaEmbedding(model=config.embed_model, host=config.embed_host, timeout=config.embed_timeout_sec)
    if config.embed_provider == "openai":
        return OpenAICompatibleEmbedding(
            api_key=config.embed_api_key,
            base_url=config.embed_host or "https://api.openai.com/v1",
            model=config.embed_model,
            dimensions=config.embedding_dimension,
            timeout=config.embed_timeout_sec,
        )
    if config.embed_provider == "sentence_transformer":
        return SentenceTransformerEmbedding(config.embed_model)
    return None
