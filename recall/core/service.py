"""
Caller-facing facade over the vector store and the memory manager.

Document ingestion and search report input and upstream failures as an
unsuccessful OperationResult. Persistence failures always propagate.
"""

import threading
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from ..agents.llm import ILanguageModel, OllamaLanguageModel
from ..util.logging import logger
from ..vector.embeddings import IEmbeddingProvider, build_remote_provider
from ..vector.extract import Extractor
from ..vector.store import VectorStore
from ..vector.types import SourceInfo, StoreStats
from .config import RecallConfig
from .db import Database
from .errors import EmbeddingError, ExtractionError, InputError
from .heartbeat import Heartbeat, MemoryWorker
from .memory import MemoryManager
from .schema import SemanticFact, UserProfile, WorkingMemoryEntry
from .tasks import TaskQueue


@dataclass
class OperationResult:
    success: bool
    data: Any = None
    error: Optional[str] = None


class RecallService:
    """Wires the database, vector store, memory manager and background worker together."""

    def __init__(self, config: Optional[RecallConfig] = None, llm: Optional[ILanguageModel] = None,
                 remote_embedding: Optional[IEmbeddingProvider] = None, db: Optional[Database] = None,
                 extractors: Optional[Dict[str, Extractor]] = None):
        self.config = config or RecallConfig.from_env()
        if db is None:
            self.config.ensure_db_directory()
            db = Database(self.config.db_path, self.config.db_timeout_sec)
        self.db = db
        self.db.init_db()

        remote = remote_embedding if remote_embedding is not None else build_remote_provider(self.config)
        self.store = VectorStore(self.db, self.config, remote=remote, extractors=extractors)

        self.llm = llm or OllamaLanguageModel(self.config.llm_model, self.config.llm_host,
                                              self.config.llm_timeout_sec, self.config.llm_temperature)
        self.tasks = TaskQueue(self.db, self.config.task_max_attempts, self.config.task_lease_sec)
        self.memory = MemoryManager(self.db, self.llm, self.config, tasks=self.tasks, knowledge=self.store)
        self.worker = MemoryWorker(self.memory, self.tasks)

    # Documents

    def ingest_document(self, raw_bytes: bytes, source_name: str) -> OperationResult:
        try:
            result = self.store.ingest(raw_bytes, source_name)
        except (InputError, EmbeddingError, ExtractionError) as e:
            logger.warning(f"Ingest of '{source_name}' rejected: {e}")
            return OperationResult(success=False, error=str(e))
        return OperationResult(success=True, data=asdict(result))

    def search(self, query: str, top_k: Optional[int] = None, min_score: Optional[float] = None) -> OperationResult:
        try:
            hits = self.store.search(query, top_k, min_score)
        except (InputError, EmbeddingError) as e:
            return OperationResult(success=False, error=str(e))
        return OperationResult(success=True, data=[asdict(hit) for hit in hits])

    def list_sources(self) -> List[SourceInfo]:
        return self.store.list_sources()

    def delete_source(self, content_hash: str) -> int:
        return self.store.delete(content_hash)

    def get_stats(self) -> StoreStats:
        return self.store.stats()

    # Conversation memory

    def record_turn(self, session_id: str, user_id: str, role: str, text: str) -> WorkingMemoryEntry:
        return self.memory.record_turn(session_id, user_id, role, text)

    def build_context(self, user_id: str, session_id: str, query: Optional[str] = None) -> List[Dict[str, str]]:
        return self.memory.build_context(user_id, session_id, query)

    def get_facts(self, user_id: str, include_inactive: bool = False) -> List[SemanticFact]:
        return self.memory.get_facts(user_id, include_inactive)

    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        return self.memory.get_profile(user_id)

    # Background work

    def run_worker(self, shutdown_event: threading.Event, heartbeat: Optional[Heartbeat] = None):
        """Block running the memory worker on a heartbeat until shutdown_event is set."""
        heartbeat = heartbeat or Heartbeat()
        self.worker.register(heartbeat)
        heartbeat.start(shutdown_event)
