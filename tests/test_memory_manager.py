"""
Tests for MemoryManager working memory: turn recording, immediate facts and compression triggering.
"""

import pytest

from recall.core.config import RecallConfig
from recall.core.errors import InputError
from recall.core.heartbeat import MemoryWorker
from recall.core.memory import MemoryManager
from recall.core.tasks import TASK_COMPRESS


@pytest.fixture
def small_manager(tmp_path, db, llm, tasks):
    config = RecallConfig(db_path=str(tmp_path / "recall.db"), compression_threshold=4, summary_batch_size=2)
    return MemoryManager(db, llm, config, tasks=tasks)


def facts_by_category(manager, user_id):
    return {f.category: f for f in manager.get_facts(user_id)}


class TestRecordTurn:
    """Test appending turns to working memory."""

    def test_turn_is_stored(self, manager):
        """Test that a recorded turn is returned and persisted uncompressed."""
        entry = manager.record_turn("s1", "u1", "user", "Hello there")

        assert entry.id is not None
        assert entry.role == "user"
        stored = manager.get_working_memory("s1")
        assert [(e.role, e.text, e.compressed) for e in stored] == [("user", "Hello there", False)]

    def test_turns_keep_insertion_order(self, manager):
        """Test that entries are returned in the order they were recorded."""
        for i in range(5):
            manager.record_turn("s1", "u1", "user" if i % 2 == 0 else "assistant", f"turn {i}")

        assert [e.text for e in manager.get_working_memory("s1")] == [f"turn {i}" for i in range(5)]

    @pytest.mark.parametrize("session_id,user_id,role,text", [
        ("", "u1", "user", "hi"),
        ("s1", "  ", "user", "hi"),
        ("s1", "u1", "system", "hi"),
        ("s1", "u1", "user", "   "),
    ])
    def test_invalid_turn_rejected(self, manager, count_rows, session_id, user_id, role, text):
        """Test that empty ids, empty text and unknown roles are rejected."""
        with pytest.raises(InputError):
            manager.record_turn(session_id, user_id, role, text)
        assert count_rows("working_memory") == 0


class TestImmediateFacts:
    """Test facts stored straight from user turns."""

    def test_english_facts(self, manager):
        """Test name and location extraction from one English turn."""
        manager.record_turn("s1", "u1", "user", "Hi, my name is Alice and I live in Paris.")
        facts = facts_by_category(manager, "u1")

        assert facts["identity"].content == "Name is Alice"
        assert facts["identity"].importance == 9
        assert facts["identity"].confidence == 85
        assert facts["location"].content == "Lives in Paris"
        assert facts["location"].source == "user"

    def test_work_and_hobby(self, manager):
        """Test occupation and liking extraction."""
        manager.record_turn("s1", "u1", "user", "I work as a software engineer, and I love hiking.")
        facts = facts_by_category(manager, "u1")

        assert facts["work"].content == "Works as software engineer"
        assert facts["hobby"].content == "Likes hiking"
        assert facts["hobby"].subject == "likes:hiking"

    def test_chinese_facts(self, manager):
        """Test name, age and location extraction from Chinese text."""
        manager.record_turn("s1", "u1", "user", "我叫小明，我今年25岁，我住在北京。")
        facts = facts_by_category(manager, "u1")

        assert facts["identity"].content == "Name is 小明"
        assert facts["age"].content == "Age is 25"
        assert facts["location"].content == "Lives in 北京"

    def test_assistant_turns_not_scanned(self, manager):
        """Test that assistant text never produces user facts."""
        manager.record_turn("s1", "u1", "assistant", "My name is Helper and I live in the cloud.")
        assert manager.get_facts("u1") == []

    def test_repeated_mention_reinforces(self, manager):
        """Test that repeating a fact bumps mentions and confidence instead of duplicating."""
        manager.record_turn("s1", "u1", "user", "my name is Alice")
        manager.record_turn("s2", "u1", "user", "My name is Alice, remember?")

        facts = manager.get_facts("u1")
        assert len(facts) == 1
        assert facts[0].mention_count == 2
        assert facts[0].confidence == 90

    def test_changed_value_replaces_content(self, manager):
        """Test that a new value for a single-valued attribute replaces the old one."""
        manager.record_turn("s1", "u1", "user", "I live in Paris")
        manager.record_turn("s1", "u1", "user", "I live in Berlin now")

        facts = [f for f in manager.get_facts("u1") if f.category == "location"]
        assert len(facts) == 1
        assert facts[0].content == "Lives in Berlin now"
        assert facts[0].mention_count == 2

    def test_facts_are_per_user(self, manager):
        """Test that facts never leak across users."""
        manager.record_turn("s1", "u1", "user", "my name is Alice")
        manager.record_turn("s2", "u2", "user", "my name is Bob")

        assert [f.content for f in manager.get_facts("u1")] == ["Name is Alice"]
        assert [f.content for f in manager.get_facts("u2")] == ["Name is Bob"]


class TestCompressionTrigger:
    """Test that reaching the threshold queues exactly one compress task."""

    def test_threshold_enqueues_once(self, small_manager, tasks):
        """Test that the task appears at the threshold and is not duplicated."""
        for i in range(3):
            small_manager.record_turn("s1", "u1", "user", f"message {i}")
        assert tasks.list_tasks() == []

        small_manager.record_turn("s1", "u1", "user", "message 3")
        small_manager.record_turn("s1", "u1", "user", "message 4")

        queued = tasks.list_tasks()
        assert len(queued) == 1
        assert queued[0].task_type == TASK_COMPRESS
        assert queued[0].session_id == "s1"
        assert queued[0].user_id == "u1"
        assert queued[0].status == "pending"

    def test_sessions_counted_separately(self, small_manager, tasks):
        """Test that backlogs of different sessions do not add up."""
        for i in range(2):
            small_manager.record_turn("s1", "u1", "user", f"a{i}")
            small_manager.record_turn("s2", "u1", "user", f"b{i}")

        assert tasks.list_tasks() == []

    def test_worker_drains_backlog(self, manager, tasks, llm):
        """Test the full path: 25 turns, one task, one summary of the oldest 10."""
        for i in range(25):
            manager.record_turn("s1", "u1", "user" if i % 2 == 0 else "assistant", f"turn number {i}")
        assert len(tasks.list_tasks("pending")) == 1

        counts = MemoryWorker(manager, tasks).tick()

        assert counts == {"claimed": 1, "completed": 1, "failed": 0}
        summaries = manager.get_summaries("u1")
        assert len(summaries) == 1
        assert summaries[0].sequence == 1
        assert summaries[0].message_count == 10
        entries = manager.get_working_memory("s1")
        assert [e.compressed for e in entries] == [True] * 10 + [False] * 15
        assert all(e.summary_id == summaries[0].id for e in entries[:10])
        assert tasks.list_tasks("completed")[0].attempts == 1
