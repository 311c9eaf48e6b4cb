"""
Persisted record shapes for the memory tiers and the task table.
Rows are converted to these dataclasses at the repository boundary.
"""

import json
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class WorkingMemoryEntry:
    id: int
    session_id: str
    user_id: str
    role: str  # "user" or "assistant"
    text: str
    created_at: str
    compressed: bool = False
    summary_id: Optional[int] = None

    @classmethod
    def from_row(cls, row) -> "WorkingMemoryEntry":
        return cls(
            id=row["id"],
            session_id=row["session_id"],
            user_id=row["user_id"],
            role=row["role"],
            text=row["content"],
            created_at=row["created_at"],
            compressed=bool(row["compressed"]),
            summary_id=row["summary_id"],
        )


@dataclass
class EpisodicSummary:
    id: int
    session_id: str
    user_id: str
    sequence: int
    summary_text: str
    key_points: List[str]
    emotional_tone: str
    importance: int
    message_count: int
    start_time: Optional[str]
    end_time: Optional[str]
    archived: bool
    is_super: bool
    created_at: str

    @classmethod
    def from_row(cls, row) -> "EpisodicSummary":
        return cls(
            id=row["id"],
            session_id=row["session_id"],
            user_id=row["user_id"],
            sequence=row["sequence"],
            summary_text=row["summary"],
            key_points=json.loads(row["key_points"] or "[]"),
            emotional_tone=row["emotional_tone"],
            importance=row["importance"],
            message_count=row["message_count"],
            start_time=row["start_time"],
            end_time=row["end_time"],
            archived=bool(row["archived"]),
            is_super=bool(row["is_super"]),
            created_at=row["created_at"],
        )


@dataclass
class SemanticFact:
    id: int
    user_id: str
    category: str
    subject: str
    content: str
    importance: float
    confidence: int
    mention_count: int
    last_mentioned_at: str
    source: str  # "user" or "assistant"
    active: bool
    created_at: str

    @classmethod
    def from_row(cls, row) -> "SemanticFact":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            category=row["category"],
            subject=row["subject"],
            content=row["content"],
            importance=row["importance"],
            confidence=row["confidence"],
            mention_count=row["mention_count"],
            last_mentioned_at=row["last_mentioned_at"],
            source=row["source"],
            active=bool(row["active"]),
            created_at=row["created_at"],
        )


@dataclass
class UserProfile:
    user_id: str
    personality_summary: str
    communication_style: str
    interests: List[str]
    key_topics: List[str]
    emotional_baseline: str
    updated_at: str

    @classmethod
    def from_row(cls, row) -> "UserProfile":
        return cls(
            user_id=row["user_id"],
            personality_summary=row["personality_summary"],
            communication_style=row["communication_style"],
            interests=json.loads(row["interests"] or "[]"),
            key_topics=json.loads(row["key_topics"] or "[]"),
            emotional_baseline=row["emotional_baseline"],
            updated_at=row["updated_at"],
        )


@dataclass
class MemoryTask:
    id: int
    session_id: str
    user_id: str
    task_type: str
    status: str
    priority: int
    attempts: int
    max_attempts: int
    last_error: Optional[str]
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row) -> "MemoryTask":
        return cls(**{key: row[key] for key in row.keys()})


@dataclass
class DecayReport:
    """Outcome of one decay sweep."""
    decayed: int = 0
    deactivated: int = 0
    purged_entries: int = 0
    details: Dict[str, object] = field(default_factory=dict)
