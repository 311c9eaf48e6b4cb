"""
Configuration for the retrieval and memory core.

A single immutable RecallConfig is built once (explicitly or from the environment)
and passed to every component at construction. Nothing reads the environment at
call time.
"""

import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

DEFAULT_PERSONA = (
    "You are a direct, friendly assistant with a good memory. "
    "Answer concisely, admit when you do not know something, and bring up what you "
    "remember about the user when it is relevant. If you made a promise or gave advice "
    "earlier, remember it and follow up."
)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class RecallConfig(BaseModel):
    """Immutable settings for one running instance."""

    model_config = ConfigDict(frozen=True)

    # Persistence
    db_path: str = "./data/recall.db"
    db_timeout_sec: float = 30.0

    # Chunking
    chunk_size: int = 512
    chunk_overlap: int = 50
    table_rows_per_chunk: int = 50

    # Embedding
    embedding_dimension: int = 512
    embed_provider: Literal["local", "ollama", "openai", "sentence_transformer"] = "local"
    embed_model: str = "nomic-embed-text"
    embed_host: Optional[str] = None
    embed_api_key: Optional[str] = None
    embed_timeout_sec: float = 30.0

    # Vector index
    vector_backend: Literal["scan", "faiss"] = "scan"
    hnsw_m: int = 32
    hnsw_ef_search: int = 64
    default_top_k: int = 5

    # Language model
    llm_model: str = "llama3.1:8b"
    llm_host: Optional[str] = None
    llm_timeout_sec: float = 60.0
    llm_temperature: float = 0.3

    # Memory tiers
    compression_threshold: int = 20
    summary_batch_size: int = 10
    fold_threshold: int = 10
    decay_rate: float = 0.95
    decay_after_days: int = 7
    importance_floor: float = 2.0
    mention_floor: int = 2
    min_fact_confidence: int = 60
    max_context_facts: int = 15
    max_context_summaries: int = 3
    working_memory_size: int = 20
    working_retention_hours: int = 24
    profile_min_facts: int = 5
    persona_prompt: str = DEFAULT_PERSONA

    # Background worker
    task_batch_size: int = 5
    task_max_attempts: int = 3
    task_lease_sec: int = 600
    poll_interval_sec: int = 5
    fold_sweep_interval_sec: int = 50
    profile_sweep_interval_sec: int = 250
    decay_interval_sec: int = 86400

    @field_validator('chunk_size', 'embedding_dimension', 'summary_batch_size', 'fold_threshold',
                     'compression_threshold', 'table_rows_per_chunk', 'task_batch_size', 'task_max_attempts')
    @classmethod
    def must_be_positive(cls, v):
        if v < 1:
            raise ValueError('must be >= 1')
        return v

    @field_validator('chunk_overlap')
    @classmethod
    def overlap_not_negative(cls, v):
        if v < 0:
            raise ValueError('chunk_overlap cannot be negative')
        return v

    @field_validator('decay_rate')
    @classmethod
    def decay_rate_in_range(cls, v):
        if not 0 < v <= 1:
            raise ValueError('decay_rate must be in (0, 1]')
        return v

    @field_validator('poll_interval_sec', 'fold_sweep_interval_sec', 'profile_sweep_interval_sec', 'decay_interval_sec',
                     'task_lease_sec')
    @classmethod
    def interval_at_least_one_second(cls, v):
        if v < 1:
            raise ValueError('interval must be >= 1 second')
        return v

    @model_validator(mode='after')
    def batch_fits_threshold(self):
        if self.summary_batch_size > self.compression_threshold:
            raise ValueError('summary_batch_size cannot exceed compression_threshold')
        return self

    @classmethod
    def from_env(cls, **overrides) -> "RecallConfig":
        """Build a config from RECALL_* environment variables, read once."""
        values = {
            "db_path": os.getenv("RECALL_DB_PATH", "./data/recall.db"),
            "chunk_size": int(os.getenv("RECALL_CHUNK_SIZE", "512")),
            "chunk_overlap": int(os.getenv("RECALL_CHUNK_OVERLAP", "50")),
            "embedding_dimension": int(os.getenv("RECALL_EMBED_DIM", "512")),
            "embed_provider": os.getenv("RECALL_EMBED_PROVIDER", "local"),  # local|ollama|openai|sentence_transformer
            "embed_model": os.getenv("RECALL_EMBED_MODEL", "nomic-embed-text"),
            "embed_host": os.getenv("RECALL_EMBED_HOST"),
            "embed_api_key": os.getenv("RECALL_EMBED_API_KEY"),
            "embed_timeout_sec": float(os.getenv("RECALL_EMBED_TIMEOUT_SEC", "30")),
            "vector_backend": os.getenv("RECALL_VECTOR_BACKEND", "scan"),  # scan|faiss
            "llm_model": os.getenv("RECALL_LLM_MODEL", "llama3.1:8b"),
            "llm_host": os.getenv("RECALL_LLM_HOST"),
            "compression_threshold": int(os.getenv("RECALL_COMPRESSION_THRESHOLD", "20")),
            "summary_batch_size": int(os.getenv("RECALL_SUMMARY_BATCH_SIZE", "10")),
            "decay_rate": float(os.getenv("RECALL_DECAY_RATE", "0.95")),
            "poll_interval_sec": int(os.getenv("RECALL_POLL_INTERVAL_SEC", "5")),
        }
        if _env_bool("RECALL_FAISS", "false"):
            values["vector_backend"] = "faiss"
        values.update(overrides)
        return cls(**values)

    def ensure_db_directory(self):
        """Ensure the database directory exists."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
