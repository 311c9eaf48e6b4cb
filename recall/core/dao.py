"""
Data access for the memory tiers: working memory, episodic summaries,
semantic facts and user profiles.

Write methods take an open connection so callers can group several writes in
one transaction. Read methods open their own connection.
"""

import json
import sqlite3
from typing import Iterable, List, Optional

from .db import Database
from .schema import EpisodicSummary, SemanticFact, UserProfile, WorkingMemoryEntry

SUPER_SESSION_ID = "_super_"


def _placeholders(values) -> str:
    return ",".join("?" for _ in values)


class MemoryRepository:
    """All SQL for the conversational memory tables."""

    def __init__(self, db: Database):
        self.db = db

    # Working memory

    def insert_turn(self, conn: sqlite3.Connection, session_id: str, user_id: str, role: str,
                    text: str, created_at: str) -> WorkingMemoryEntry:
        cursor = conn.execute(
            "INSERT INTO working_memory (session_id, user_id, role, content, created_at) VALUES (?, ?, ?, ?, ?)",
            (session_id, user_id, role, text, created_at)
        )
        return WorkingMemoryEntry(cursor.lastrowid, session_id, user_id, role, text, created_at)

    def count_uncompressed(self, session_id: str) -> int:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM working_memory WHERE session_id = ? AND compressed = 0", (session_id,)
            ).fetchone()
        return row[0]

    def oldest_uncompressed(self, session_id: str, limit: int) -> List[WorkingMemoryEntry]:
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM working_memory WHERE session_id = ? AND compressed = 0 ORDER BY id ASC LIMIT ?",
                (session_id, limit)
            ).fetchall()
        return [WorkingMemoryEntry.from_row(row) for row in rows]

    def working_tail(self, session_id: str, limit: int) -> List[WorkingMemoryEntry]:
        """The newest `limit` uncompressed entries, oldest first."""
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM working_memory WHERE session_id = ? AND compressed = 0 ORDER BY id DESC LIMIT ?",
                (session_id, limit)
            ).fetchall()
        return [WorkingMemoryEntry.from_row(row) for row in reversed(rows)]

    def get_working_memory(self, session_id: str) -> List[WorkingMemoryEntry]:
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM working_memory WHERE session_id = ? ORDER BY id ASC", (session_id,)
            ).fetchall()
        return [WorkingMemoryEntry.from_row(row) for row in rows]

    def mark_compressed(self, conn: sqlite3.Connection, entry_ids: List[int], summary_id: int) -> int:
        """Flag entries as folded into a summary; already-compressed rows are left alone."""
        cursor = conn.execute(
            f"UPDATE working_memory SET compressed = 1, summary_id = ? WHERE id IN ({_placeholders(entry_ids)}) AND compressed = 0",
            [summary_id, *entry_ids]
        )
        return cursor.rowcount

    def purge_compressed(self, conn: sqlite3.Connection, cutoff: str) -> int:
        cursor = conn.execute(
            "DELETE FROM working_memory WHERE compressed = 1 AND summary_id IS NOT NULL AND created_at < ?",
            (cutoff,)
        )
        return cursor.rowcount

    def recently_active_users(self, since: str) -> List[str]:
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT DISTINCT user_id FROM working_memory WHERE created_at >= ? ORDER BY user_id", (since,)
            ).fetchall()
        return [row[0] for row in rows]

    # Episodic summaries

    def next_sequence(self, conn: sqlite3.Connection, session_id: str) -> int:
        row = conn.execute(
            "SELECT COALESCE(MAX(sequence), 0) FROM episodic_summaries WHERE session_id = ?", (session_id,)
        ).fetchone()
        return row[0] + 1

    def insert_summary(self, conn: sqlite3.Connection, session_id: str, user_id: str, sequence: int,
                       summary: str, key_points: List[str], emotional_tone: str, importance: int,
                       message_count: int, start_time: Optional[str], end_time: Optional[str],
                       created_at: str, is_super: bool = False) -> int:
        cursor = conn.execute("""
            INSERT INTO episodic_summaries
            (session_id, user_id, sequence, summary, key_points, emotional_tone, importance,
             message_count, start_time, end_time, archived, is_super, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
        """, (session_id, user_id, sequence, summary, json.dumps(key_points, ensure_ascii=False), emotional_tone,
              importance, message_count, start_time, end_time, int(is_super), created_at))
        return cursor.lastrowid

    def oldest_active_summaries(self, user_id: str, limit: int) -> List[EpisodicSummary]:
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM episodic_summaries WHERE user_id = ? AND archived = 0 ORDER BY created_at ASC, id ASC LIMIT ?",
                (user_id, limit)
            ).fetchall()
        return [EpisodicSummary.from_row(row) for row in rows]

    def archive_summaries(self, conn: sqlite3.Connection, summary_ids: List[int]) -> int:
        cursor = conn.execute(
            f"UPDATE episodic_summaries SET archived = 1 WHERE id IN ({_placeholders(summary_ids)}) AND archived = 0",
            summary_ids
        )
        return cursor.rowcount

    def session_summaries(self, user_id: str, session_id: str, limit: int) -> List[EpisodicSummary]:
        """Most recent active summaries of one session."""
        with self.db.connect() as conn:
            rows = conn.execute("""
                SELECT * FROM episodic_summaries
                WHERE user_id = ? AND session_id = ? AND archived = 0
                ORDER BY sequence DESC LIMIT ?
            """, (user_id, session_id, limit)).fetchall()
        return [EpisodicSummary.from_row(row) for row in rows]

    def important_summaries(self, user_id: str, exclude_session: str, min_importance: int,
                            limit: int) -> List[EpisodicSummary]:
        """Active summaries from other sessions (super summaries included) at or above an importance."""
        with self.db.connect() as conn:
            rows = conn.execute("""
                SELECT * FROM episodic_summaries
                WHERE user_id = ? AND session_id != ? AND archived = 0 AND importance >= ?
                ORDER BY importance DESC, created_at DESC, id DESC LIMIT ?
            """, (user_id, exclude_session, min_importance, limit)).fetchall()
        return [EpisodicSummary.from_row(row) for row in rows]

    def get_summaries(self, user_id: str, session_id: Optional[str] = None,
                      include_archived: bool = False) -> List[EpisodicSummary]:
        query = "SELECT * FROM episodic_summaries WHERE user_id = ?"
        params = [user_id]
        if session_id is not None:
            query += " AND session_id = ?"
            params.append(session_id)
        if not include_archived:
            query += " AND archived = 0"
        query += " ORDER BY created_at ASC, id ASC"

        with self.db.connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [EpisodicSummary.from_row(row) for row in rows]

    def users_with_active_summaries(self, min_count: int) -> List[str]:
        with self.db.connect() as conn:
            rows = conn.execute("""
                SELECT user_id FROM episodic_summaries WHERE archived = 0
                GROUP BY user_id HAVING COUNT(*) >= ? ORDER BY user_id
            """, (min_count,)).fetchall()
        return [row[0] for row in rows]

    # Semantic facts

    def upsert_fact(self, conn: sqlite3.Connection, user_id: str, category: str, subject: str, content: str,
                    importance: float, confidence: int, source: str, now: str, replace_content: bool = False) -> None:
        """
        Insert a fact or reinforce an existing one.

        Reinforcement bumps mention_count, refreshes last_mentioned_at, raises confidence by 5
        (capped at 100), reactivates the fact and never lowers importance.
        """
        conn.execute("""
            INSERT INTO semantic_facts
            (user_id, category, subject, content, importance, confidence, mention_count,
             last_mentioned_at, source, active, created_at)
            VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?, 1, ?)
            ON CONFLICT(user_id, category, subject) DO UPDATE SET
                content = CASE WHEN ? THEN excluded.content ELSE content END,
                mention_count = mention_count + 1,
                last_mentioned_at = excluded.last_mentioned_at,
                importance = MAX(importance, excluded.importance),
                confidence = MIN(confidence + 5, 100),
                active = 1
        """, (user_id, category, subject, content, float(importance), confidence, now, source, now,
              int(replace_content)))

    def get_facts(self, user_id: str, include_inactive: bool = False) -> List[SemanticFact]:
        query = "SELECT * FROM semantic_facts WHERE user_id = ?"
        if not include_inactive:
            query += " AND active = 1"
        query += " ORDER BY importance DESC, mention_count DESC, last_mentioned_at DESC, id ASC"
        with self.db.connect() as conn:
            rows = conn.execute(query, (user_id,)).fetchall()
        return [SemanticFact.from_row(row) for row in rows]

    def context_facts(self, user_id: str, source: str, min_confidence: int, limit: int) -> List[SemanticFact]:
        with self.db.connect() as conn:
            rows = conn.execute("""
                SELECT * FROM semantic_facts
                WHERE user_id = ? AND source = ? AND active = 1 AND confidence >= ?
                ORDER BY importance DESC, mention_count DESC, last_mentioned_at DESC, id ASC
                LIMIT ?
            """, (user_id, source, min_confidence, limit)).fetchall()
        return [SemanticFact.from_row(row) for row in rows]

    def decay_facts(self, conn: sqlite3.Connection, cutoff: str, rate: float, floor: float = 1.0) -> int:
        """Scale importance of stale active facts, never below floor and never upward."""
        cursor = conn.execute("""
            UPDATE semantic_facts SET importance = MAX(importance * ?, ?)
            WHERE active = 1 AND last_mentioned_at < ? AND importance > ?
        """, (rate, floor, cutoff, floor))
        return cursor.rowcount

    def deactivate_facts(self, conn: sqlite3.Connection, importance_floor: float, mention_floor: int) -> int:
        cursor = conn.execute(
            "UPDATE semantic_facts SET active = 0 WHERE active = 1 AND importance < ? AND mention_count < ?",
            (importance_floor, mention_floor)
        )
        return cursor.rowcount

    # User profiles

    def upsert_profile(self, conn: sqlite3.Connection, user_id: str, personality_summary: str,
                       communication_style: str, interests: Iterable[str], key_topics: Iterable[str],
                       emotional_baseline: str, now: str) -> None:
        conn.execute("""
            INSERT INTO user_profiles
            (user_id, personality_summary, communication_style, interests, key_topics, emotional_baseline, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                personality_summary = excluded.personality_summary,
                communication_style = excluded.communication_style,
                interests = excluded.interests,
                key_topics = excluded.key_topics,
                emotional_baseline = excluded.emotional_baseline,
                updated_at = excluded.updated_at
        """, (user_id, personality_summary, communication_style, json.dumps(list(interests), ensure_ascii=False),
              json.dumps(list(key_topics), ensure_ascii=False), emotional_baseline, now))

    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        with self.db.connect() as conn:
            row = conn.execute("SELECT * FROM user_profiles WHERE user_id = ?", (user_id,)).fetchone()
        return UserProfile.from_row(row) if row else None
