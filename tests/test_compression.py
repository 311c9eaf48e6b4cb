"""
Tests for episodic compression and summary folding.
"""

import json
from unittest.mock import patch

import pytest

from recall.core.config import RecallConfig
from recall.core.dao import SUPER_SESSION_ID
from recall.core.db import now_iso
from recall.core.errors import LanguageModelError
from recall.core.memory import COMPRESSED, FAILED, SKIPPED, MemoryManager


def compression_reply(summary="They talked about work.", key_facts=(), importance=6, tone="neutral"):
    return json.dumps({
        "summary": summary,
        "key_facts": list(key_facts),
        "user_intent": "chat",
        "emotional_tone": tone,
        "importance_score": importance,
        "action_items": [],
    })


def record(manager, session_id, count, user_id="u1"):
    for i in range(count):
        manager.record_turn(session_id, user_id, "user" if i % 2 == 0 else "assistant", f"{session_id} turn {i}")


@pytest.fixture
def fold_manager(tmp_path, db, llm, tasks):
    config = RecallConfig(db_path=str(tmp_path / "recall.db"), fold_threshold=3)
    return MemoryManager(db, llm, config, tasks=tasks)


def add_summaries(manager, user_id, count, importance=5):
    with manager.db.connect() as conn:
        for i in range(count):
            session_id = f"{user_id}-session-{i}"
            manager.repo.insert_summary(conn, session_id, user_id, 1, f"summary {i}", [], "neutral", importance,
                                        10, now_iso(), now_iso(), now_iso())


class TestCompress:
    """Test compressing working memory into episodic summaries."""

    def test_compress_oldest_batch(self, manager, llm):
        """Test that the oldest batch becomes one summary with its metadata."""
        record(manager, "s1", 12)
        llm.queue(compression_reply("Discussed the weekend.", importance=6, tone="Positive"))

        outcome = manager.compress("s1", "u1")

        assert outcome.status == COMPRESSED
        assert outcome.items == 10
        summary = manager.get_summaries("u1", "s1")[0]
        assert summary.id == outcome.summary_id
        assert summary.summary_text == "Discussed the weekend."
        assert summary.emotional_tone == "positive"
        assert summary.importance == 6
        assert summary.message_count == 10
        entries = manager.get_working_memory("s1")
        assert summary.start_time == entries[0].created_at
        assert summary.end_time == entries[9].created_at
        assert [e.compressed for e in entries] == [True] * 10 + [False] * 2

    def test_prompt_contains_conversation(self, manager, llm):
        """Test that the batch is sent oldest first with role labels."""
        record(manager, "s1", 10)
        manager.compress("s1", "u1")

        conversation = llm.calls[-1][-1]["content"]
        assert conversation.splitlines()[0] == "user: s1 turn 0"
        assert conversation.splitlines()[-1] == "assistant: s1 turn 9"

    def test_partial_batch_skipped(self, manager, llm, count_rows):
        """Test that fewer than a batch of turns is left alone."""
        record(manager, "s1", 9)

        outcome = manager.compress("s1", "u1")

        assert outcome.status == SKIPPED
        assert llm.calls == []
        assert count_rows("episodic_summaries") == 0

    def test_sequences_increase_without_duplicates(self, manager):
        """Test that repeated compression covers each turn exactly once."""
        record(manager, "s1", 20)

        first = manager.compress("s1", "u1")
        second = manager.compress("s1", "u1")
        third = manager.compress("s1", "u1")

        assert (first.status, second.status, third.status) == (COMPRESSED, COMPRESSED, SKIPPED)
        summaries = manager.get_summaries("u1", "s1")
        assert [s.sequence for s in summaries] == [1, 2]
        summary_ids = [e.summary_id for e in manager.get_working_memory("s1")]
        assert summary_ids == [summaries[0].id] * 10 + [summaries[1].id] * 10

    def test_language_model_failure_changes_nothing(self, manager, llm, count_rows):
        """Test that an upstream failure leaves every tier untouched."""
        record(manager, "s1", 10)
        llm.queue(LanguageModelError("timed out"))

        outcome = manager.compress("s1", "u1")

        assert outcome.status == FAILED
        assert not outcome.ok
        assert "timed out" in outcome.error
        assert count_rows("episodic_summaries") == 0
        assert count_rows("working_memory", "compressed = 0") == 10

    @pytest.mark.parametrize("reply", [
        "not json at all",
        '{"summary": "x", "emotional_tone": "neutral", "importance_score": "high"}',
        '{"summary": "x", "emotional_tone": "ecstatic", "importance_score": 5}',
        '{"summary": "x", "emotional_tone": "neutral", "importance_score": 11}',
        '{"summary": "   ", "emotional_tone": "neutral", "importance_score": 5}',
        '["summary"]',
    ])
    def test_contract_violation_changes_nothing(self, manager, llm, count_rows, reply):
        """Test that malformed model output is rejected before any write."""
        record(manager, "s1", 10)
        llm.queue(reply)

        assert manager.compress("s1", "u1").status == FAILED
        assert count_rows("episodic_summaries") == 0
        assert count_rows("semantic_facts") == 0
        assert count_rows("working_memory", "compressed = 0") == 10

    def test_code_fenced_reply_accepted(self, manager, llm):
        """Test that a reply wrapped in a json code fence is parsed."""
        record(manager, "s1", 10)
        llm.queue("```json\n" + compression_reply("Fenced summary.") + "\n```")

        assert manager.compress("s1", "u1").status == COMPRESSED
        assert manager.get_summaries("u1")[0].summary_text == "Fenced summary."

    def test_key_facts_become_semantic_facts(self, manager, llm):
        """Test that key facts are categorised and stored with the summary importance."""
        record(manager, "s1", 10)
        llm.queue(compression_reply(key_facts=["Works at a hospital as a nurse", "Has two children", " "],
                                    importance=7))

        outcome = manager.compress("s1", "u1")

        assert outcome.facts == 2
        facts = {f.content: f for f in manager.get_facts("u1")}
        assert facts["Works at a hospital as a nurse"].category == "work"
        assert facts["Has two children"].category == "family"
        assert facts["Has two children"].importance == 7
        assert facts["Has two children"].confidence == 75
        assert manager.get_summaries("u1")[0].key_points == ["Works at a hospital as a nurse", "Has two children"]

    def test_concurrent_compression_rolls_back(self, manager, llm, count_rows):
        """Test that losing the race to flag entries writes nothing."""
        record(manager, "s1", 10)
        llm.queue(compression_reply(key_facts=["Has a dog"]))

        with patch.object(manager.repo, "mark_compressed", return_value=0):
            outcome = manager.compress("s1", "u1")

        assert outcome.status == SKIPPED
        assert count_rows("episodic_summaries") == 0
        assert count_rows("semantic_facts") == 0


class TestFoldSummaries:
    """Test folding old summaries into a super summary."""

    def test_fold_below_threshold_skipped(self, fold_manager, llm):
        """Test that nothing happens until enough summaries exist."""
        add_summaries(fold_manager, "u1", 2)

        assert fold_manager.compress_summaries("u1").status == SKIPPED
        assert llm.calls == []

    def test_fold_archives_and_creates_super(self, fold_manager, llm):
        """Test that folded summaries are archived and replaced by one super summary."""
        add_summaries(fold_manager, "u1", 3)
        llm.queue(json.dumps({"summary": "Long story short.", "key_points": ["likes tea"],
                              "emotional_tone": "neutral", "importance_score": 9}))

        outcome = fold_manager.compress_summaries("u1")

        assert outcome.status == COMPRESSED
        assert outcome.items == 3
        active = fold_manager.get_summaries("u1")
        assert len(active) == 1
        assert active[0].is_super
        assert active[0].session_id == SUPER_SESSION_ID
        assert active[0].summary_text == "Long story short."
        assert active[0].message_count == 30
        archived = [s for s in fold_manager.get_summaries("u1", include_archived=True) if s.archived]
        assert len(archived) == 3

    def test_fold_defaults_to_high_importance(self, fold_manager):
        """Test that the generated super summary is marked important."""
        add_summaries(fold_manager, "u1", 3)

        fold_manager.compress_summaries("u1")

        assert fold_manager.get_summaries("u1")[0].importance == 10

    def test_repeated_folds_get_new_sequences(self, fold_manager):
        """Test that each super summary takes the next sequence."""
        add_summaries(fold_manager, "u1", 3)
        fold_manager.compress_summaries("u1")
        add_summaries(fold_manager, "u2", 3)
        fold_manager.compress_summaries("u2")

        supers = [s for u in ("u1", "u2") for s in fold_manager.get_summaries(u) if s.is_super]
        assert sorted(s.sequence for s in supers) == [1, 2]

    def test_fold_failure_changes_nothing(self, fold_manager, llm):
        """Test that a failed fold archives nothing."""
        add_summaries(fold_manager, "u1", 3)
        llm.queue(LanguageModelError("down"))

        assert fold_manager.compress_summaries("u1").status == FAILED
        assert len(fold_manager.get_summaries("u1")) == 3
