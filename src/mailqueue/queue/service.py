"""Task lifecycle operations over an explicitly passed task store."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from mailqueue.queue.backoff import DEFAULT_BACKOFF_UNIT, backoff_delay
from mailqueue.queue.errors import InvalidTaskError
from mailqueue.queue.models import (
    DEFAULT_MAX_ATTEMPTS,
    TaskCreate,
    TaskKind,
    TaskStatus,
    TaskView,
)
from mailqueue.queue.store import TaskStore
from mailqueue.storage.common import utc_now

logger = logging.getLogger(__name__)


class TaskQueue:
    """Enqueue, claim, complete and fail notification tasks.

    Holds no state between calls; all coordination lives in the store's
    atomic claim, so any number of processes may share one backlog.
    """

    def __init__(
        self,
        store: TaskStore,
        *,
        clock: Callable[[], datetime] = utc_now,
        backoff_unit: timedelta = DEFAULT_BACKOFF_UNIT,
        default_max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        self.store = store
        self.clock = clock
        self.backoff_unit = backoff_unit
        self.default_max_attempts = default_max_attempts

    def enqueue(  # noqa: PLR0913
        self,
        kind: TaskKind | str,
        recipient: str,
        owner_ref: int | None,
        payload: bytes,
        *,
        max_attempts: int | None = None,
        session: Any = None,
    ) -> int:
        """Insert a pending task and return its id.

        Pass ``session`` to enqueue inside the caller's own unit of work; the
        caller then owns the commit.
        """

        task = TaskCreate.build(
            kind=kind,
            recipient=recipient,
            owner_ref=owner_ref,
            payload=payload,
            max_attempts=max_attempts if max_attempts is not None else self.default_max_attempts,
        )
        task_id = self.store.insert(task, now=self.clock(), session=session)
        logger.debug("Enqueued task_id=%s kind=%s", task_id, task.kind.value)
        return task_id

    def claim_next(self) -> TaskView | None:
        """Claim the oldest eligible task, or None when there is no work."""

        return self.store.claim_next(now=self.clock())

    def complete(self, task_id: int) -> bool:
        """Mark a processing task completed; no-op (False) otherwise."""

        return self.store.mark_completed(task_id=task_id, now=self.clock())

    def fail(self, task_id: int, attempts: int, max_attempts: int, error_message: str) -> bool:
        """Record a failed attempt: retry with backoff, or fail permanently at the ceiling.

        ``attempts`` is the claimed task's attempt count, so it is at least 1;
        anything lower raises InvalidTaskError without touching the store.
        """

        if attempts < 1 or max_attempts < 1:
            raise InvalidTaskError(
                "fail() needs attempts >= 1 and max_attempts >= 1, "
                f"got attempts={attempts} max_attempts={max_attempts}",
            )
        now = self.clock()
        if attempts >= max_attempts:
            return self.store.mark_failed(task_id=task_id, now=now, error=error_message)
        return self.store.schedule_retry(
            task_id=task_id,
            next_eligible_at=now + backoff_delay(attempts, self.backoff_unit),
            error=error_message,
        )

    def reclaim_stale(self, stale_after: timedelta) -> int:
        """Release tasks stuck in processing longer than ``stale_after``."""

        now = self.clock()
        reclaimed = self.store.reclaim_stale(
            now=now,
            claimed_before=now - stale_after,
            error=(
                f"Claim expired after {int(stale_after.total_seconds())}s without "
                "completion (worker crashed or stalled)."
            ),
        )
        if reclaimed:
            logger.warning("Reclaimed %d stale processing task(s)", reclaimed)
        return reclaimed

    def get_task(self, task_id: int) -> TaskView | None:
        return self.store.get_task(task_id)

    def list_tasks(self, *, status: TaskStatus | None = None, limit: int = 50) -> list[TaskView]:
        return self.store.list_tasks(status=status, limit=limit)

    def count_by_status(self) -> dict[TaskStatus, int]:
        return self.store.count_by_status()
