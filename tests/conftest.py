"""
Shared fixtures: every test gets its own SQLite file under tmp_path.
"""

import pytest

from recall.agents.mock_llm import MockLanguageModel
from recall.core.config import RecallConfig
from recall.core.db import Database
from recall.core.memory import MemoryManager
from recall.core.tasks import TaskQueue


@pytest.fixture
def config(tmp_path):
    return RecallConfig(db_path=str(tmp_path / "recall.db"))


@pytest.fixture
def db(config):
    database = Database(config.db_path)
    database.init_db()
    return database


@pytest.fixture
def llm():
    return MockLanguageModel()


@pytest.fixture
def tasks(db, config):
    return TaskQueue(db, config.task_max_attempts, config.task_lease_sec)


@pytest.fixture
def manager(db, llm, config, tasks):
    return MemoryManager(db, llm, config, tasks=tasks)


@pytest.fixture
def count_rows(db):
    """Row counter for a table with an optional WHERE clause."""
    def count(table, where="1=1", params=()):
        with db.connect() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {table} WHERE {where}", params).fetchone()[0]
    return count
