"""Task store contract the queue is written against."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from mailqueue.queue.models import TaskCreate, TaskStatus, TaskView


class TaskStore(Protocol):
    """Durable task rows with an atomic claim.

    Every mutating method except ``insert`` and ``claim_next`` only touches
    rows currently in ``processing`` and returns ``False`` (or 0) when the
    guard does not match, so a late or duplicate call never corrupts a
    terminal task.
    """

    def insert(self, task: TaskCreate, *, now: datetime, session: Any = None) -> int:
        """Insert one pending task eligible at ``now``; return its id."""

    def claim_next(self, *, now: datetime) -> TaskView | None:
        """Move the oldest eligible pending task to processing, attempts + 1.

        Rows held by a concurrent claim are skipped, never waited on.
        """

    def mark_completed(self, *, task_id: int, now: datetime) -> bool: ...

    def mark_failed(self, *, task_id: int, now: datetime, error: str) -> bool: ...

    def schedule_retry(
        self,
        *,
        task_id: int,
        next_eligible_at: datetime,
        error: str,
    ) -> bool: ...

    def reclaim_stale(self, *, now: datetime, claimed_before: datetime, error: str) -> int:
        """Release processing tasks claimed at or before ``claimed_before``."""

    def get_task(self, task_id: int) -> TaskView | None: ...

    def list_tasks(self, *, status: TaskStatus | None = None, limit: int = 50) -> list[TaskView]:
        ...

    def count_by_status(self) -> dict[TaskStatus, int]: ...

    def close(self) -> None: ...
