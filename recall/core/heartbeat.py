"""
Heartbeat scheduler and the background memory worker it drives.

The heartbeat runs registered callables on fixed intervals measured with a
monotonic clock. The worker drains the persisted task table and enqueues the
periodic sweeps (folding, profile refresh, decay).
"""

import threading
import time
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from ..util.logging import logger
from .db import now_iso
from .errors import PersistenceError, TaskError
from .memory import FAILED, MemoryManager
from .schema import MemoryTask
from .tasks import (SYSTEM_ID, TASK_COMPRESS, TASK_DECAY, TASK_FOLD_SUMMARIES, TASK_REFRESH_PROFILE,
                    TaskQueue)

FOLD_TASK_PRIORITY = 5
PROFILE_TASK_PRIORITY = 1
DECAY_TASK_PRIORITY = 0
PROFILE_ACTIVITY_WINDOW_HOURS = 1


class Heartbeat:
    """Cooperative interval scheduler."""

    def __init__(self, clock: Callable[[], float] = time.monotonic, sleep_interval: float = 0.1):
        self.clock = clock
        self.sleep_interval = sleep_interval
        self.tasks: Dict[str, Dict] = {}  # task_name -> {func, interval, last_run}
        self.running = False

    def register_task(self, name: str, interval_sec: int, func: Callable):
        """
        Register a task to be executed periodically.

        Args:
            name: Unique task identifier
            interval_sec: How often to run this task in seconds
            func: Function to call (should be fast and not block)
        """
        if not callable(func):
            raise ValueError(f"Task function must be callable: {func}")
        if interval_sec < 1:
            raise ValueError(f"Interval must be >= 1 second: {interval_sec}")

        self.tasks[name] = {"func": func, "interval": interval_sec, "last_run": None}
        logger.info(f"Registered heartbeat task '{name}' (every {interval_sec}s)")

    def unregister_task(self, name: str):
        self.tasks.pop(name, None)

    def list_tasks(self) -> List[str]:
        return list(self.tasks.keys())

    def should_run_task(self, name: str) -> bool:
        task_info = self.tasks[name]
        if task_info["last_run"] is None:
            return True  # Run immediately if never run
        return self.clock() - task_info["last_run"] >= task_info["interval"]

    def run_task(self, name: str) -> bool:
        """Run one task and record timing. Failures are logged, never raised."""
        task_info = self.tasks[name]
        start_time = self.clock()
        try:
            task_info["func"]()
            status = "success"
        except Exception as e:
            status = "failed"
            logger.error(f"Heartbeat task '{name}' failed: {e}")
        end_time = self.clock()
        task_info["last_run"] = end_time
        logger.log_heartbeat_task(name, start_time, end_time, status)
        return status == "success"

    def run_pending(self) -> List[str]:
        """Run every due task once; returns the names that ran."""
        ran = []
        for name in list(self.tasks.keys()):
            if self.should_run_task(name):
                self.run_task(name)
                ran.append(name)
        return ran

    def reset_task(self, name: str):
        """Force a task to run on the next cycle."""
        if name in self.tasks:
            self.tasks[name]["last_run"] = None

    def start(self, shutdown_event: threading.Event):
        """Loop until shutdown_event is set."""
        if self.running:
            raise RuntimeError("Heartbeat already running")

        self.running = True
        logger.info(f"Starting heartbeat loop with tasks: {self.list_tasks()}")
        try:
            while not shutdown_event.is_set():
                self.run_pending()
                shutdown_event.wait(self.sleep_interval)
        finally:
            self.running = False
            logger.info("Heartbeat loop stopped")

    def get_status(self) -> Dict[str, object]:
        return {
            "status": "running" if self.running else "stopped",
            "tasks": {
                name: {
                    "interval_sec": info["interval"],
                    "last_run": info["last_run"],
                    "next_run": info["last_run"] + info["interval"] if info["last_run"] is not None else None,
                }
                for name, info in self.tasks.items()
            },
        }


class MemoryWorker:
    """Claims due memory tasks and runs them against the memory manager."""

    def __init__(self, manager: MemoryManager, tasks: Optional[TaskQueue] = None):
        self.manager = manager
        self.config = manager.config
        self.tasks = tasks or manager.tasks

    def tick(self) -> Dict[str, int]:
        """Process one claimed batch. A failing task never stops the others."""
        claimed = self.tasks.claim_batch(self.config.task_batch_size)
        counts = {"claimed": len(claimed), "completed": 0, "failed": 0}

        for position, task in enumerate(claimed):
            try:
                self._run(task)
            except PersistenceError as e:
                self._hand_back(task, claimed[position + 1:], e)
                raise
            except Exception as e:
                self.tasks.fail(task, str(e))
                counts["failed"] += 1
            else:
                self.tasks.complete(task)
                counts["completed"] += 1

        if claimed:
            logger.log_operation("worker.tick", "success", counts)
        return counts

    def _hand_back(self, failed: MemoryTask, unprocessed: List[MemoryTask], error: PersistenceError):
        """
        Return the batch to the queue after a database error. The database may still
        be unavailable; tasks that cannot be updated now are recovered by the lease.
        """
        try:
            self.tasks.fail(failed, str(error))
            for task in unprocessed:
                self.tasks.release(task)
        except PersistenceError as e:
            logger.error(f"Could not return {len(unprocessed) + 1} claimed tasks to the queue: {e}")

    def _run(self, task: MemoryTask):
        if task.task_type == TASK_COMPRESS:
            outcome = self.manager.compress(task.session_id, task.user_id)
            if outcome.status == FAILED:
                raise TaskError(outcome.error or "compression failed")
        elif task.task_type == TASK_FOLD_SUMMARIES:
            outcome = self.manager.compress_summaries(task.user_id)
            if outcome.status == FAILED:
                raise TaskError(outcome.error or "summary folding failed")
        elif task.task_type == TASK_REFRESH_PROFILE:
            self.manager.refresh_profile(task.user_id)
        elif task.task_type == TASK_DECAY:
            report = self.manager.decay()
            report.purged_entries = self.manager.purge_compressed()
            logger.log_operation("worker.decay", "success", {
                "decayed": report.decayed,
                "deactivated": report.deactivated,
                "purged_entries": report.purged_entries,
            })
        else:
            raise TaskError(f"Unknown task type: {task.task_type}")

    def fold_sweep(self) -> int:
        """Queue summary folding for every user with enough active summaries."""
        queued = 0
        for user_id in self.manager.repo.users_with_active_summaries(self.config.fold_threshold):
            # Folding is per user, so the user id doubles as the dedup key
            if self.tasks.enqueue(user_id, user_id, TASK_FOLD_SUMMARIES, priority=FOLD_TASK_PRIORITY):
                queued += 1
        return queued

    def profile_sweep(self, now: Optional[datetime] = None) -> int:
        """Queue profile refresh for users active in the last hour."""
        since = now_iso((now or datetime.now()) - timedelta(hours=PROFILE_ACTIVITY_WINDOW_HOURS))
        queued = 0
        for user_id in self.manager.repo.recently_active_users(since):
            if self.tasks.enqueue(user_id, user_id, TASK_REFRESH_PROFILE, priority=PROFILE_TASK_PRIORITY):
                queued += 1
        return queued

    def decay_sweep(self) -> bool:
        return self.tasks.enqueue(SYSTEM_ID, SYSTEM_ID, TASK_DECAY, priority=DECAY_TASK_PRIORITY) is not None

    def register(self, heartbeat: Heartbeat):
        """Register the worker's jobs on a heartbeat using the configured intervals."""
        heartbeat.register_task("process_tasks", self.config.poll_interval_sec, self.tick)
        heartbeat.register_task("fold_sweep", self.config.fold_sweep_interval_sec, self.fold_sweep)
        heartbeat.register_task("decay_sweep", self.config.decay_interval_sec, self.decay_sweep)
        heartbeat.register_task("profile_sweep", self.config.profile_sweep_interval_sec, self.profile_sweep)
