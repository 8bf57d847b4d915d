# -*- coding: utf-8 -*-
"""
In-memory AI generation task queue.

Tasks wait in a pending list ordered by priority (then submission time) and are
executed on worker threads, at most ``max_concurrent_tasks`` at a time. Each
task type is served by one registered executor; failed attempts are retried
with exponential back-off. Nothing is persisted.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

log = logging.getLogger("jinmai.queue")

TASK_TYPES = ("text", "image", "audio", "video", "3d")
PRIORITY_ORDER = {"urgent": 4, "high": 3, "medium": 2, "low": 1}
TASK_STATUSES = ("pending", "running", "completed", "failed", "cancelled")


@dataclass
class TaskQueueConfig:
    max_concurrent_tasks: int = 3
    default_priority: str = "medium"
    retry_attempts: int = 2
    retry_delay_s: float = 1.0


@dataclass
class AITask:
    id: str
    type: str
    prompt: str
    priority: str
    status: str  # "pending" | "running" | "completed" | "failed" | "cancelled"
    created_at: float
    started_at: float = 0.0
    completed_at: float = 0.0
    error: str = ""
    result: Any = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    progress: float = 0.0
    attempts: int = 0
    on_progress: Optional[Callable[[float, Any], None]] = field(default=None, repr=False)
    on_complete: Optional[Callable[[Any], None]] = field(default=None, repr=False)
    on_error: Optional[Callable[[str], None]] = field(default=None, repr=False)
    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def report_progress(self, progress: float, data: Any = None) -> None:
        self.progress = max(0.0, min(100.0, float(progress or 0.0)))
        cb = self.on_progress
        if cb is None:
            return
        try:
            cb(self.progress, data)
        except Exception:
            log.exception("on_progress callback failed for %s", self.id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "prompt": self.prompt,
            "priority": self.priority,
            "status": self.status,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "error": self.error,
            "result": self.result,
            "metadata": dict(self.metadata or {}),
            "progress": self.progress,
            "attempts": self.attempts,
        }


TaskExecutor = Callable[[AITask], Any]


def _sort_key(task: AITask):
    return (-PRIORITY_ORDER.get(task.priority, 0), task.created_at)


class AITaskQueue:
    def __init__(self, config: Optional[TaskQueueConfig] = None, *, history_limit: int = 200):
        self.config = config or TaskQueueConfig()
        self.history_limit = max(0, int(history_limit))
        self._lock = threading.Lock()
        self._changed = threading.Condition(self._lock)
        self._pending: List[AITask] = []
        self._running: Dict[str, AITask] = {}
        self._history: "OrderedDict[str, AITask]" = OrderedDict()
        self._executors: Dict[str, TaskExecutor] = {}
        self._counter = 0

    def _next_id(self) -> str:
        tid = f"task_{int(time.time() * 1000)}_{self._counter}"
        self._counter += 1
        return tid

    def register_executor(self, task_type: str, executor: TaskExecutor) -> None:
        if task_type not in TASK_TYPES:
            raise ValueError(f"unknown task type: {task_type}")
        with self._lock:
            self._executors[task_type] = executor

    def add_task(
        self,
        task_type: str,
        prompt: str,
        *,
        priority: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        on_progress: Optional[Callable[[float, Any], None]] = None,
        on_complete: Optional[Callable[[Any], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
    ) -> AITask:
        if task_type not in TASK_TYPES:
            raise ValueError(f"unknown task type: {task_type}")
        priority = str(priority or self.config.default_priority or "medium").strip().lower()
        if priority not in PRIORITY_ORDER:
            raise ValueError(f"unknown priority: {priority}")

        with self._lock:
            task = AITask(
                id=self._next_id(),
                type=task_type,
                prompt=prompt or "",
                priority=priority,
                status="pending",
                created_at=time.time(),
                metadata=dict(metadata or {}),
                on_progress=on_progress,
                on_complete=on_complete,
                on_error=on_error,
            )
            self._pending.append(task)
            # Stable sort keeps FIFO order for equal priority and timestamp.
            self._pending.sort(key=_sort_key)
            self._changed.notify_all()
        log.info("queued %s (%s, %s)", task.id, task.type, task.priority)
        self._dispatch()
        return task

    def _active_count(self) -> int:
        return len(self._running)

    def _dispatch(self) -> None:
        started: List[AITask] = []
        with self._lock:
            limit = max(1, int(self.config.max_concurrent_tasks or 1))
            while self._pending and self._active_count() < limit:
                task = self._pending.pop(0)
                task.status = "running"
                task.started_at = time.time()
                self._running[task.id] = task
                started.append(task)
            if started:
                self._changed.notify_all()
        for task in started:
            threading.Thread(target=self._execute, args=(task,), name=f"aitask-{task.id}", daemon=True).start()

    def _execute(self, task: AITask) -> None:
        retries = max(0, int(self.config.retry_attempts or 0))
        base_delay = max(0.0, float(self.config.retry_delay_s or 0.0))
        attempts = 0
        last_error = ""

        while attempts <= retries and not task.cancelled:
            with self._lock:
                executor = self._executors.get(task.type)
            task.attempts += 1
            try:
                if executor is None:
                    raise LookupError(f"No executor registered for task type: {task.type}")
                result = executor(task)
            except Exception as e:
                attempts += 1
                last_error = str(e) or e.__class__.__name__
                log.warning("%s attempt %d failed: %s", task.id, attempts, last_error)
                if attempts <= retries:
                    delay = base_delay * (2 ** (attempts - 1))
                    if task.cancel_event.wait(delay):
                        break
                continue
            self._finish(task, status="completed", result={"success": True, "data": result})
            return

        if task.cancelled:
            self._finish(task, status="cancelled", error=last_error)
        else:
            self._finish(task, status="failed", error=last_error or "Unknown error")

    def _finish(self, task: AITask, *, status: str, result: Any = None, error: str = "") -> None:
        notify = None
        with self._lock:
            self._running.pop(task.id, None)
            if task.status == "cancelled":
                # Canceled while running: the late result is discarded.
                pass
            else:
                task.status = status
                task.completed_at = time.time()
                if status == "completed":
                    task.result = result
                    task.progress = 100.0
                    notify = ("complete", task.result)
                elif status == "failed":
                    task.error = error
                    notify = ("error", error)
                else:
                    task.error = error
            self._remember(task)
            self._changed.notify_all()

        log.info("%s %s", task.id, task.status)
        if notify is not None:
            kind, value = notify
            cb = task.on_complete if kind == "complete" else task.on_error
            if cb is not None:
                try:
                    cb(value)
                except Exception:
                    log.exception("on_%s callback failed for %s", kind, task.id)
        self._dispatch()

    def _remember(self, task: AITask) -> None:
        if self.history_limit <= 0:
            return
        self._history[task.id] = task
        self._history.move_to_end(task.id)
        while len(self._history) > self.history_limit:
            self._history.popitem(last=False)

    def get_task(self, task_id: str) -> Optional[AITask]:
        with self._lock:
            for t in self._pending:
                if t.id == task_id:
                    return t
            t = self._running.get(task_id)
            if t is not None:
                return t
            return self._history.get(task_id)

    def get_task_status(self, task_id: str) -> Optional[str]:
        t = self.get_task(task_id)
        return t.status if t is not None else None

    def get_all_tasks(self) -> List[AITask]:
        """Pending tasks in dispatch order."""
        with self._lock:
            return list(self._pending)

    def list_tasks(self) -> List[AITask]:
        with self._lock:
            return list(self._pending) + list(self._running.values()) + list(self._history.values())

    def cancel_task(self, task_id: str) -> bool:
        with self._lock:
            for i, t in enumerate(self._pending):
                if t.id == task_id:
                    self._pending.pop(i)
                    t.status = "cancelled"
                    t.completed_at = time.time()
                    t.cancel_event.set()
                    self._remember(t)
                    self._changed.notify_all()
                    log.info("%s cancelled while pending", task_id)
                    return True
            t = self._running.get(task_id)
            if t is None or t.status != "running":
                return False
            t.status = "cancelled"
            t.completed_at = time.time()
            t.cancel_event.set()
            self._changed.notify_all()
        log.info("%s cancel requested while running", task_id)
        return True

    def get_queue_stats(self) -> dict:
        with self._lock:
            pending = list(self._pending)
            running = [t for t in self._running.values() if t.status == "running"]
            finished = list(self._history.values())
        everything = pending + running + finished
        by_status = {s: 0 for s in TASK_STATUSES}
        for t in everything:
            by_status[t.status] = by_status.get(t.status, 0) + 1
        by_priority = {p: 0 for p in ("low", "medium", "high", "urgent")}
        for t in pending:
            by_priority[t.priority] = by_priority.get(t.priority, 0) + 1
        return {
            "totalTasks": len(pending) + len(running),
            "pendingTasks": len(pending),
            "runningTasks": len(running),
            "byStatus": by_status,
            "byPriority": by_priority,
        }

    def clear_queue(self) -> int:
        """Drop pending tasks and cancel running ones. Returns how many were affected."""
        with self._lock:
            dropped = list(self._pending)
            self._pending = []
            running = [t for t in self._running.values() if t.status == "running"]
            now = time.time()
            for t in dropped + running:
                t.status = "cancelled"
                t.completed_at = now
                t.cancel_event.set()
            for t in dropped:
                self._remember(t)
            self._changed.notify_all()
        if dropped or running:
            log.info("queue cleared: %d pending dropped, %d running cancelled", len(dropped), len(running))
        return len(dropped) + len(running)

    def set_max_concurrent_tasks(self, n: int) -> None:
        n = int(n)
        if n < 1:
            raise ValueError("max_concurrent_tasks must be >= 1")
        with self._lock:
            self.config.max_concurrent_tasks = n
        self._dispatch()

    def wait_idle(self, timeout_s: Optional[float] = None) -> bool:
        """Block until nothing is pending or executing. Returns False on timeout."""
        with self._changed:
            return self._changed.wait_for(lambda: not self._pending and not self._running, timeout=timeout_s)
