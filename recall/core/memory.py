"""
Tiered conversational memory.

Working memory holds raw turns. Batches of old turns are compressed by the
language model into episodic summaries, which are folded into super summaries
once they pile up. Durable facts live in the semantic tier, reinforced on every
mention and decayed when not mentioned. build_context assembles all tiers into a
prompt without writing anything.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from ..agents.llm import ILanguageModel
from ..util.logging import logger
from .config import RecallConfig
from .dao import SUPER_SESSION_ID, MemoryRepository
from .db import Database, now_iso
from .errors import TaskError
from .facts import ASSISTANT_CATEGORIES, categorize_fact, extract_immediate_facts, fact_subject
from .schema import DecayReport, EpisodicSummary, SemanticFact, UserProfile, WorkingMemoryEntry
from .tasks import TASK_COMPRESS, TaskQueue
from .validation import (AssistantMemoryResult, CompressionResult, ProfileResult, SuperSummaryResult,
                         TurnRequest, parse_llm_json, validate_input)

COMPRESSED = "compressed"
SKIPPED = "skipped"
FAILED = "failed"

COMPRESS_TASK_PRIORITY = 10
COMPRESSED_FACT_CONFIDENCE = 75
ASSISTANT_FACT_IMPORTANCE = 8
ASSISTANT_FACT_CONFIDENCE = 90
IMPORTANT_SUMMARY_THRESHOLD = 7
PROFILE_SUMMARY_WINDOW = 5

COMPRESSION_PROMPT = """You compress conversation history into long-term memory.
Read the conversation and reply with a single JSON object and nothing else:
{
  "summary": "two or three sentences describing what was discussed",
  "key_facts": ["durable facts about the user, one short sentence each"],
  "user_intent": "what the user was trying to achieve",
  "emotional_tone": "positive" | "neutral" | "negative",
  "importance_score": integer from 1 (trivial) to 10 (critical),
  "action_items": ["follow-ups the assistant promised or the user asked for"]
}"""

FOLD_PROMPT = """You merge several conversation summaries into one long-term summary.
Keep what matters for future conversations and drop repetition.
Reply with a single JSON object and nothing else:
{
  "summary": "a compact paragraph covering all the summaries",
  "key_points": ["the most important points, one short sentence each"],
  "emotional_tone": "positive" | "neutral" | "negative",
  "importance_score": integer from 1 to 10
}"""

PROFILE_PROMPT = """You maintain a short profile of a user from what is known about them.
Reply with a single JSON object and nothing else:
{
  "personality_summary": "one or two sentences",
  "communication_style": "how the user prefers to communicate",
  "interests": ["interest", "..."],
  "key_topics": ["topic", "..."],
  "emotional_baseline": "positive" | "neutral" | "negative"
}"""

ASSISTANT_FACTS_PROMPT = """You review an assistant reply for things worth remembering: commitments
made, advice given, plans agreed, or key information provided to the user.
Reply with a single JSON object and nothing else:
{
  "has_important_content": true | false,
  "items": [{"type": "commitment" | "advice" | "plan" | "info", "content": "one sentence"}]
}"""


@dataclass
class CompressionOutcome:
    """Result of a compression or folding attempt."""
    status: str  # compressed, skipped or failed
    summary_id: Optional[int] = None
    items: int = 0
    facts: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != FAILED


class MemoryManager:
    """Owns the working, episodic and semantic memory tiers and the user profile."""

    def __init__(self, db: Database, llm: ILanguageModel, config: RecallConfig,
                 tasks: Optional[TaskQueue] = None, knowledge=None):
        self.db = db
        self.llm = llm
        self.config = config
        self.repo = MemoryRepository(db)
        self.tasks = tasks or TaskQueue(db, config.task_max_attempts, config.task_lease_sec)
        self.knowledge = knowledge  # optional VectorStore for knowledge chunks in context

    # Working memory

    def record_turn(self, session_id: str, user_id: str, role: str, text: str) -> WorkingMemoryEntry:
        """
        Append a turn to working memory.

        User turns are scanned for personal facts, which are stored immediately.
        When the session's uncompressed backlog reaches the compression threshold a
        compress task is queued (at most one outstanding per session).

        Raises:
            InputError: Empty ids or text, or role not user/assistant
        """
        request = validate_input(TurnRequest, session_id=session_id, user_id=user_id, role=role, text=text)
        now = now_iso()

        facts = extract_immediate_facts(request.text) if request.role == "user" else []
        with self.db.connect() as conn:
            entry = self.repo.insert_turn(conn, request.session_id, request.user_id, request.role, request.text, now)
            for fact in facts:
                self.repo.upsert_fact(conn, request.user_id, fact.category, fact.subject, fact.content,
                                      fact.importance, fact.confidence, "user", now, replace_content=True)

        if facts:
            logger.log_memory_operation("immediate_facts", request.user_id, request.session_id, {
                "categories": [f.category for f in facts]
            })

        backlog = self.repo.count_uncompressed(request.session_id)
        if backlog >= self.config.compression_threshold:
            self.tasks.enqueue(request.session_id, request.user_id, TASK_COMPRESS, priority=COMPRESS_TASK_PRIORITY)
        return entry

    def get_working_memory(self, session_id: str) -> List[WorkingMemoryEntry]:
        return self.repo.get_working_memory(session_id)

    def purge_compressed(self, older_than_hours: Optional[int] = None, now: Optional[datetime] = None) -> int:
        """Delete compressed turns already captured by a summary and older than the retention window."""
        hours = older_than_hours if older_than_hours is not None else self.config.working_retention_hours
        cutoff = now_iso((now or datetime.now()) - timedelta(hours=hours))
        with self.db.connect() as conn:
            removed = self.repo.purge_compressed(conn, cutoff)
        if removed:
            logger.log_operation("memory.purge_compressed", "success", {"removed": removed, "cutoff": cutoff})
        return removed

    # Episodic tier

    def compress(self, session_id: str, user_id: str) -> CompressionOutcome:
        """
        Summarise the oldest full batch of uncompressed turns.

        Nothing is written unless the language model returns a valid result; then the
        summary, its facts and the compressed flags are committed together.
        """
        batch_size = self.config.summary_batch_size
        entries = self.repo.oldest_uncompressed(session_id, batch_size)
        if len(entries) < batch_size:
            return CompressionOutcome(SKIPPED, items=len(entries))

        conversation = "\n".join(f"{e.role}: {e.text}" for e in entries)
        try:
            reply = self.llm.chat([
                {"role": "system", "content": COMPRESSION_PROMPT},
                {"role": "user", "content": conversation},
            ])
            result = parse_llm_json(reply.text, CompressionResult)
        except Exception as e:
            logger.log_memory_operation("compress", user_id, session_id, {"error": str(e)}, status="failed")
            return CompressionOutcome(FAILED, error=str(e))

        now = now_iso()
        entry_ids = [e.id for e in entries]
        try:
            with self.db.connect() as conn:
                sequence = self.repo.next_sequence(conn, session_id)
                summary_id = self.repo.insert_summary(
                    conn, session_id, user_id, sequence, result.summary, result.key_facts,
                    result.emotional_tone, result.importance_score, len(entries),
                    entries[0].created_at, entries[-1].created_at, now
                )
                for fact in result.key_facts:
                    self.repo.upsert_fact(conn, user_id, categorize_fact(fact), fact_subject(fact), fact,
                                          result.importance_score, COMPRESSED_FACT_CONFIDENCE, "user", now)
                if self.repo.mark_compressed(conn, entry_ids, summary_id) != len(entry_ids):
                    raise TaskError("entries were compressed by another worker")
        except TaskError as e:
            logger.log_memory_operation("compress", user_id, session_id, {"reason": str(e)}, status="skipped")
            return CompressionOutcome(SKIPPED, error=str(e))

        logger.log_memory_operation("compress", user_id, session_id, {
            "summary_id": summary_id,
            "sequence": sequence,
            "entries": len(entries),
            "facts": len(result.key_facts),
        })
        return CompressionOutcome(COMPRESSED, summary_id=summary_id, items=len(entries), facts=len(result.key_facts))

    def compress_summaries(self, user_id: str) -> CompressionOutcome:
        """Fold the oldest active summaries into one super summary once enough have piled up."""
        threshold = self.config.fold_threshold
        summaries = self.repo.oldest_active_summaries(user_id, threshold)
        if len(summaries) < threshold:
            return CompressionOutcome(SKIPPED, items=len(summaries))

        listing = "\n\n".join(
            f"[{i}] ({s.start_time or s.created_at} to {s.end_time or s.created_at}) {s.summary_text}"
            for i, s in enumerate(summaries, 1)
        )
        try:
            reply = self.llm.chat([
                {"role": "system", "content": FOLD_PROMPT},
                {"role": "user", "content": listing},
            ])
            result = parse_llm_json(reply.text, SuperSummaryResult)
        except Exception as e:
            logger.log_memory_operation("fold_summaries", user_id, details={"error": str(e)}, status="failed")
            return CompressionOutcome(FAILED, error=str(e))

        now = now_iso()
        summary_ids = [s.id for s in summaries]
        starts = [s.start_time for s in summaries if s.start_time]
        ends = [s.end_time for s in summaries if s.end_time]
        try:
            with self.db.connect() as conn:
                if self.repo.archive_summaries(conn, summary_ids) != len(summary_ids):
                    raise TaskError("summaries were folded by another worker")
                super_id = self.repo.insert_summary(
                    conn, SUPER_SESSION_ID, user_id, self.repo.next_sequence(conn, SUPER_SESSION_ID),
                    result.summary, result.key_points, result.emotional_tone, result.importance_score,
                    sum(s.message_count for s in summaries),
                    min(starts) if starts else None, max(ends) if ends else None, now, is_super=True
                )
        except TaskError as e:
            logger.log_memory_operation("fold_summaries", user_id, details={"reason": str(e)}, status="skipped")
            return CompressionOutcome(SKIPPED, error=str(e))

        logger.log_memory_operation("fold_summaries", user_id, details={"super_id": super_id, "folded": len(summaries)})
        return CompressionOutcome(COMPRESSED, summary_id=super_id, items=len(summaries))

    def get_summaries(self, user_id: str, session_id: Optional[str] = None,
                      include_archived: bool = False) -> List[EpisodicSummary]:
        return self.repo.get_summaries(user_id, session_id, include_archived)

    # Semantic tier

    def get_facts(self, user_id: str, include_inactive: bool = False) -> List[SemanticFact]:
        return self.repo.get_facts(user_id, include_inactive)

    def decay(self, now: Optional[datetime] = None) -> DecayReport:
        """
        Fade facts not mentioned recently, then deactivate the ones left with
        little importance and few mentions. Importance never goes up here.
        """
        now = now or datetime.now()
        cutoff = now_iso(now - timedelta(days=self.config.decay_after_days))
        with self.db.connect() as conn:
            decayed = self.repo.decay_facts(conn, cutoff, self.config.decay_rate)
            deactivated = self.repo.deactivate_facts(conn, self.config.importance_floor, self.config.mention_floor)

        report = DecayReport(decayed=decayed, deactivated=deactivated, details={"cutoff": cutoff})
        logger.log_operation("memory.decay", "success", {"decayed": decayed, "deactivated": deactivated})
        return report

    def extract_assistant_facts(self, user_id: str, text: str) -> int:
        """Store commitments, advice, plans and key information from an assistant reply."""
        if not text or not text.strip():
            return 0
        try:
            reply = self.llm.chat([
                {"role": "system", "content": ASSISTANT_FACTS_PROMPT},
                {"role": "user", "content": text},
            ])
            result = parse_llm_json(reply.text, AssistantMemoryResult)
        except Exception as e:
            logger.log_memory_operation("assistant_facts", user_id, details={"error": str(e)}, status="failed")
            return 0

        if not result.has_important_content or not result.items:
            return 0

        now = now_iso()
        with self.db.connect() as conn:
            for item in result.items:
                self.repo.upsert_fact(conn, user_id, ASSISTANT_CATEGORIES[item.type], fact_subject(item.content),
                                      item.content, ASSISTANT_FACT_IMPORTANCE, ASSISTANT_FACT_CONFIDENCE,
                                      "assistant", now)

        logger.log_memory_operation("assistant_facts", user_id, details={"stored": len(result.items)})
        return len(result.items)

    # Profile

    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        return self.repo.get_profile(user_id)

    def refresh_profile(self, user_id: str) -> bool:
        """Rebuild the user profile from active facts and recent summaries. False when skipped or failed."""
        facts = self.repo.get_facts(user_id)
        if len(facts) < self.config.profile_min_facts:
            return False

        summaries = self.repo.get_summaries(user_id)[-PROFILE_SUMMARY_WINDOW:]
        material = "Known facts:\n" + "\n".join(f"- [{f.category}] {f.content}" for f in facts)
        if summaries:
            material += "\n\nRecent conversations:\n" + "\n".join(f"- {s.summary_text}" for s in summaries)

        try:
            reply = self.llm.chat([
                {"role": "system", "content": PROFILE_PROMPT},
                {"role": "user", "content": material},
            ])
            result = parse_llm_json(reply.text, ProfileResult)
        except Exception as e:
            logger.log_memory_operation("refresh_profile", user_id, details={"error": str(e)}, status="failed")
            return False

        with self.db.connect() as conn:
            self.repo.upsert_profile(conn, user_id, result.personality_summary, result.communication_style,
                                     result.interests, result.key_topics, result.emotional_baseline, now_iso())
        logger.log_memory_operation("refresh_profile", user_id, details={"facts": len(facts)})
        return True

    # Context assembly

    def build_context(self, user_id: str, session_id: str, query: Optional[str] = None) -> List[Dict[str, str]]:
        """
        Assemble a prompt from every tier, in order: persona with profile and
        assistant commitments, user facts, summaries, knowledge chunks for the
        query, then the uncompressed working tail. Reads only.
        """
        config = self.config
        messages = [{"role": "system", "content": self._preamble(user_id)}]

        facts = self.repo.context_facts(user_id, "user", config.min_fact_confidence, config.max_context_facts)
        if facts:
            lines = "\n".join(f"- [{f.category}] {f.content}" for f in facts)
            messages.append({"role": "system", "content": f"What you know about the user:\n{lines}"})

        current = self.repo.session_summaries(user_id, session_id, config.max_context_summaries)
        earlier = self.repo.important_summaries(user_id, session_id, IMPORTANT_SUMMARY_THRESHOLD,
                                                config.max_context_summaries)
        if current or earlier:
            sections = []
            if earlier:
                sections.append("From earlier conversations:\n" + "\n".join(f"- {s.summary_text}" for s in earlier))
            if current:
                # Oldest first within the session
                sections.append("Earlier in this conversation:\n" + "\n".join(
                    f"- {s.summary_text}" for s in reversed(current)))
            messages.append({"role": "system", "content": "\n\n".join(sections)})

        if query and query.strip() and self.knowledge is not None:
            hits = self.knowledge.search(query, config.default_top_k)
            if hits:
                lines = "\n\n".join(f"[{h.source_name} #{h.chunk_index}] {h.text}" for h in hits)
                messages.append({"role": "system", "content": f"Relevant knowledge:\n{lines}"})

        for entry in self.repo.working_tail(session_id, config.working_memory_size):
            messages.append({"role": entry.role, "content": entry.text})
        return messages

    def _preamble(self, user_id: str) -> str:
        parts = [self.config.persona_prompt]

        profile = self.repo.get_profile(user_id)
        if profile:
            profile_lines = [f"Personality: {profile.personality_summary}",
                             f"Communication style: {profile.communication_style}"]
            if profile.interests:
                profile_lines.append(f"Interests: {', '.join(profile.interests)}")
            if profile.key_topics:
                profile_lines.append(f"Key topics: {', '.join(profile.key_topics)}")
            parts.append("About the user:\n" + "\n".join(profile_lines))

        commitments = self.repo.context_facts(user_id, "assistant", self.config.min_fact_confidence,
                                              self.config.max_context_facts)
        if commitments:
            parts.append("Things you said to this user before:\n" + "\n".join(
                f"- ({f.category.replace('assistant_', '')}) {f.content}" for f in commitments))
        return "\n\n".join(parts)
