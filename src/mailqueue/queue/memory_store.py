"""In-process task store honoring the atomic claim contract."""

from __future__ import annotations

import itertools
import threading
from dataclasses import replace
from datetime import datetime
from typing import Any

from mailqueue.queue.models import TaskCreate, TaskStatus, TaskView


class InMemoryTaskStore:
    """Dict-backed store for tests and single-process embedding.

    One mutex guards every read-modify-write, which gives the same guarantees
    as the SQL claim: no task is handed to two concurrent claimers.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._tasks: dict[int, TaskView] = {}

    def close(self) -> None:
        return None

    def insert(self, task: TaskCreate, *, now: datetime, session: Any = None) -> int:
        if session is not None:
            raise TypeError("InMemoryTaskStore cannot join an external unit of work.")
        with self._lock:
            task_id = next(self._ids)
            self._tasks[task_id] = TaskView(
                id=task_id,
                kind=task.kind,
                recipient=task.recipient,
                owner_ref=task.owner_ref,
                payload=task.payload,
                attempts=0,
                max_attempts=task.max_attempts,
                status=TaskStatus.PENDING,
                last_error=None,
                created_at=now,
                processed_at=None,
                next_eligible_at=now,
            )
            return task_id

    def claim_next(self, *, now: datetime) -> TaskView | None:
        with self._lock:
            eligible = [
                task
                for task in self._tasks.values()
                if task.status == TaskStatus.PENDING and task.next_eligible_at <= now
            ]
            if not eligible:
                return None
            candidate = min(eligible, key=lambda task: (task.created_at, task.id))
            claimed = replace(
                candidate,
                status=TaskStatus.PROCESSING,
                attempts=candidate.attempts + 1,
                claimed_at=now,
            )
            self._tasks[claimed.id] = claimed
            return replace(claimed)

    def mark_completed(self, *, task_id: int, now: datetime) -> bool:
        return self._update_processing(task_id, status=TaskStatus.COMPLETED, processed_at=now)

    def mark_failed(self, *, task_id: int, now: datetime, error: str) -> bool:
        return self._update_processing(
            task_id,
            status=TaskStatus.FAILED,
            processed_at=now,
            last_error=error,
        )

    def schedule_retry(self, *, task_id: int, next_eligible_at: datetime, error: str) -> bool:
        return self._update_processing(
            task_id,
            status=TaskStatus.PENDING,
            next_eligible_at=next_eligible_at,
            last_error=error,
            claimed_at=None,
        )

    def _update_processing(self, task_id: int, **changes: Any) -> bool:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status != TaskStatus.PROCESSING:
                return False
            self._tasks[task_id] = replace(task, **changes)
            return True

    def reclaim_stale(self, *, now: datetime, claimed_before: datetime, error: str) -> int:
        reclaimed = 0
        with self._lock:
            for task_id, task in list(self._tasks.items()):
                if task.status != TaskStatus.PROCESSING:
                    continue
                if task.claimed_at is None or task.claimed_at > claimed_before:
                    continue
                if task.attempts >= task.max_attempts:
                    self._tasks[task_id] = replace(
                        task,
                        status=TaskStatus.FAILED,
                        processed_at=now,
                        last_error=error,
                    )
                else:
                    self._tasks[task_id] = replace(
                        task,
                        status=TaskStatus.PENDING,
                        next_eligible_at=now,
                        claimed_at=None,
                        last_error=error,
                    )
                reclaimed += 1
        return reclaimed

    def get_task(self, task_id: int) -> TaskView | None:
        with self._lock:
            task = self._tasks.get(task_id)
            return replace(task) if task is not None else None

    def list_tasks(self, *, status: TaskStatus | None = None, limit: int = 50) -> list[TaskView]:
        with self._lock:
            tasks = sorted(self._tasks.values(), key=lambda task: task.id, reverse=True)
            if status is not None:
                tasks = [task for task in tasks if task.status == status]
            return [replace(task) for task in tasks[:limit]]

    def count_by_status(self) -> dict[TaskStatus, int]:
        counts = dict.fromkeys(TaskStatus, 0)
        with self._lock:
            for task in self._tasks.values():
                counts[task.status] += 1
        return counts
