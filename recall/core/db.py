"""
SQLite persistence for vector records and the memory tiers.
The database file is the only shared mutable resource; every operation opens its own connection.
"""

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Generator, Optional

from .errors import PersistenceError

REQUIRED_TABLES = ['vectors', 'working_memory', 'episodic_summaries', 'semantic_facts', 'user_profiles', 'memory_tasks']

SCHEMA = [
    '''
    CREATE TABLE IF NOT EXISTS vectors (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        content_hash TEXT NOT NULL,
        source_name TEXT NOT NULL,
        chunk_index INTEGER NOT NULL,
        total_chunks INTEGER NOT NULL,
        content TEXT NOT NULL,
        embedding BLOB NOT NULL,
        dimension INTEGER NOT NULL,
        mode TEXT NOT NULL,          -- 'remote' or 'local'; vectors are only compared within a mode
        metadata TEXT,
        created_at TEXT NOT NULL,
        UNIQUE (content_hash, chunk_index)
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_vectors_hash ON vectors(content_hash)',
    'CREATE INDEX IF NOT EXISTS idx_vectors_partition ON vectors(dimension, mode, id)',
    '''
    CREATE TABLE IF NOT EXISTS working_memory (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        role TEXT NOT NULL,          -- 'user' or 'assistant'
        content TEXT NOT NULL,
        created_at TEXT NOT NULL,
        compressed INTEGER NOT NULL DEFAULT 0,
        summary_id INTEGER           -- episodic summary this entry was folded into
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_working_session ON working_memory(session_id, compressed, id)',
    'CREATE INDEX IF NOT EXISTS idx_working_user_ts ON working_memory(user_id, created_at)',
    '''
    CREATE TABLE IF NOT EXISTS episodic_summaries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        sequence INTEGER NOT NULL,
        summary TEXT NOT NULL,
        key_points TEXT NOT NULL DEFAULT '[]',
        emotional_tone TEXT NOT NULL DEFAULT 'neutral',
        importance INTEGER NOT NULL DEFAULT 5,
        message_count INTEGER NOT NULL DEFAULT 0,
        start_time TEXT,
        end_time TEXT,
        archived INTEGER NOT NULL DEFAULT 0,
        is_super INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        UNIQUE (session_id, sequence)
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_summaries_user ON episodic_summaries(user_id, archived, created_at)',
    '''
    CREATE TABLE IF NOT EXISTS semantic_facts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        category TEXT NOT NULL,
        subject TEXT NOT NULL,
        content TEXT NOT NULL,
        importance REAL NOT NULL DEFAULT 5,
        confidence INTEGER NOT NULL DEFAULT 80,
        mention_count INTEGER NOT NULL DEFAULT 1,
        last_mentioned_at TEXT NOT NULL,
        source TEXT NOT NULL DEFAULT 'user',   -- 'user' or 'assistant'
        active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        UNIQUE (user_id, category, subject)
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_facts_user_active ON semantic_facts(user_id, active, importance DESC)',
    '''
    CREATE TABLE IF NOT EXISTS user_profiles (
        user_id TEXT PRIMARY KEY,
        personality_summary TEXT NOT NULL DEFAULT '',
        communication_style TEXT NOT NULL DEFAULT '',
        interests TEXT NOT NULL DEFAULT '[]',
        key_topics TEXT NOT NULL DEFAULT '[]',
        emotional_baseline TEXT NOT NULL DEFAULT 'neutral',
        updated_at TEXT NOT NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS memory_tasks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        task_type TEXT NOT NULL,     -- compress|fold_summaries|refresh_profile|decay
        status TEXT NOT NULL DEFAULT 'pending',
        priority INTEGER NOT NULL DEFAULT 0,
        attempts INTEGER NOT NULL DEFAULT 0,
        max_attempts INTEGER NOT NULL DEFAULT 3,
        last_error TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    ''',
    # At most one outstanding task per session and task type
    '''
    CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_outstanding
    ON memory_tasks(session_id, task_type) WHERE status IN ('pending', 'processing')
    ''',
    'CREATE INDEX IF NOT EXISTS idx_tasks_due ON memory_tasks(status, priority DESC, created_at)',
]


def now_iso(now: Optional[datetime] = None) -> str:
    """Timestamp format used for every persisted time column."""
    return (now or datetime.now()).isoformat(timespec="microseconds")


class Database:
    """Connection factory and schema owner for one SQLite file."""

    def __init__(self, db_path: str, timeout: float = 30.0):
        self.db_path = db_path
        self.timeout = timeout

    @contextmanager
    def connect(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a SQLite connection; commits on success, rolls back and raises PersistenceError on failure."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open database '{self.db_path}': {e}") from e

        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Database error: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_db(self):
        """Initialize the database with required tables."""
        with self.connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            for statement in SCHEMA:
                conn.execute(statement)

    def health_check(self) -> bool:
        """Check database health."""
        try:
            with self.connect() as conn:
                rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
                table_names = [row[0] for row in rows]
                return all(table in table_names for table in REQUIRED_TABLES)
        except Exception:
            return False
