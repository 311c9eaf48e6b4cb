"""
Persisted background task queue.

Claiming is an optimistic compare-and-set on status, so several workers can poll
the same table and a task is only ever run by the worker whose UPDATE flipped it.
"""

from datetime import datetime, timedelta
from typing import List, Optional

from ..util.logging import logger
from .db import Database, now_iso
from .schema import MemoryTask

TASK_COMPRESS = "compress"
TASK_FOLD_SUMMARIES = "fold_summaries"
TASK_REFRESH_PROFILE = "refresh_profile"
TASK_DECAY = "decay"

TASK_TYPES = (TASK_COMPRESS, TASK_FOLD_SUMMARIES, TASK_REFRESH_PROFILE, TASK_DECAY)

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

# Decay is global; it is queued under a fixed session/user
SYSTEM_ID = "_system_"


class TaskQueue:
    """Task table with deduplicated enqueue and atomic claim."""

    def __init__(self, db: Database, max_attempts: int = 3, lease_sec: int = 600):
        self.db = db
        self.max_attempts = max_attempts
        self.lease_sec = lease_sec

    def enqueue(self, session_id: str, user_id: str, task_type: str, priority: int = 0,
                now: Optional[datetime] = None) -> Optional[int]:
        """
        Queue a task unless one of the same type is already outstanding for the session.

        Returns:
            New task id, or None when deduplicated
        """
        if task_type not in TASK_TYPES:
            raise ValueError(f"Unknown task type: {task_type}")

        timestamp = now_iso(now)
        with self.db.connect() as conn:
            cursor = conn.execute("""
                INSERT OR IGNORE INTO memory_tasks
                (session_id, user_id, task_type, status, priority, attempts, max_attempts, created_at, updated_at)
                VALUES (?, ?, ?, 'pending', ?, 0, ?, ?, ?)
            """, (session_id, user_id, task_type, priority, self.max_attempts, timestamp, timestamp))
            task_id = cursor.lastrowid if cursor.rowcount == 1 else None

        if task_id is None:
            logger.debug(f"Task {task_type} already outstanding for session {session_id}")
        else:
            logger.log_task(task_id, task_type, "queued", {"session_id": session_id, "priority": priority})
        return task_id

    def reclaim_stale(self, now: Optional[datetime] = None) -> int:
        """
        Return tasks whose claim has outlived the lease to the queue.

        A stale claim counts as a failed attempt, so a task that keeps killing
        its worker is eventually abandoned.
        """
        cutoff = now_iso((now or datetime.now()) - timedelta(seconds=self.lease_sec))
        with self.db.connect() as conn:
            reclaimed = conn.execute("""
                UPDATE memory_tasks
                SET attempts = attempts + 1,
                    status = CASE WHEN attempts + 1 >= max_attempts THEN 'failed' ELSE 'pending' END,
                    last_error = 'claim expired', updated_at = ?
                WHERE status = 'processing' AND updated_at < ?
            """, (now_iso(now), cutoff)).rowcount

        if reclaimed:
            logger.log_operation("tasks.reclaim_stale", "success", {"reclaimed": reclaimed, "lease_sec": self.lease_sec})
        return reclaimed

    def claim_batch(self, limit: int = 5, now: Optional[datetime] = None) -> List[MemoryTask]:
        """Claim up to `limit` pending tasks, highest priority then oldest first."""
        self.reclaim_stale(now)
        with self.db.connect() as conn:
            candidates = conn.execute("""
                SELECT id FROM memory_tasks WHERE status = 'pending'
                ORDER BY priority DESC, created_at ASC, id ASC LIMIT ?
            """, (limit,)).fetchall()

        claimed_ids = []
        for row in candidates:
            with self.db.connect() as conn:
                cursor = conn.execute(
                    "UPDATE memory_tasks SET status = 'processing', updated_at = ? WHERE id = ? AND status = 'pending'",
                    (now_iso(now), row["id"])
                )
                if cursor.rowcount == 1:
                    claimed_ids.append(row["id"])

        if not claimed_ids:
            return []
        with self.db.connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM memory_tasks WHERE id IN ({','.join('?' for _ in claimed_ids)})", claimed_ids
            ).fetchall()
        tasks = {row["id"]: MemoryTask.from_row(row) for row in rows}
        return [tasks[task_id] for task_id in claimed_ids if task_id in tasks]

    def complete(self, task: MemoryTask) -> None:
        with self.db.connect() as conn:
            conn.execute(
                "UPDATE memory_tasks SET status = 'completed', attempts = attempts + 1, updated_at = ? WHERE id = ?",
                (now_iso(), task.id)
            )
        logger.log_task(task.id, task.task_type, STATUS_COMPLETED, {"session_id": task.session_id})

    def fail(self, task: MemoryTask, error: str) -> str:
        """
        Record a failed attempt. The task returns to pending until max_attempts is
        reached, then it is marked failed and abandoned.

        Returns:
            The task's new status
        """
        attempts = task.attempts + 1
        status = STATUS_PENDING if attempts < task.max_attempts else STATUS_FAILED
        with self.db.connect() as conn:
            conn.execute(
                "UPDATE memory_tasks SET status = ?, attempts = ?, last_error = ?, updated_at = ? WHERE id = ?",
                (status, attempts, str(error)[:500], now_iso(), task.id)
            )

        task.attempts = attempts
        task.status = status
        logger.log_task(task.id, task.task_type, "retry" if status == STATUS_PENDING else "abandoned", {
            "session_id": task.session_id,
            "attempts": attempts,
            "error": str(error)[:200],
        })
        return status

    def release(self, task: MemoryTask) -> bool:
        """Hand a claimed task back to the queue without counting an attempt."""
        with self.db.connect() as conn:
            released = conn.execute(
                "UPDATE memory_tasks SET status = 'pending', updated_at = ? WHERE id = ? AND status = 'processing'",
                (now_iso(), task.id)
            ).rowcount == 1

        if released:
            task.status = STATUS_PENDING
            logger.log_task(task.id, task.task_type, "released", {"session_id": task.session_id})
        return released

    def get(self, task_id: int) -> Optional[MemoryTask]:
        with self.db.connect() as conn:
            row = conn.execute("SELECT * FROM memory_tasks WHERE id = ?", (task_id,)).fetchone()
        return MemoryTask.from_row(row) if row else None

    def list_tasks(self, status: Optional[str] = None) -> List[MemoryTask]:
        query = "SELECT * FROM memory_tasks"
        params = []
        if status:
            query += " WHERE status = ?"
            params.append(status)
        query += " ORDER BY id ASC"
        with self.db.connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [MemoryTask.from_row(row) for row in rows]
