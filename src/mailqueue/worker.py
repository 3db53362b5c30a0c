"""Polling worker that delivers queued notification tasks."""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum

from mailqueue.delivery.base import Delivery
from mailqueue.queue.errors import TaskStoreError, UnknownTaskKindError
from mailqueue.queue.models import TaskView
from mailqueue.queue.service import TaskQueue

logger = logging.getLogger(__name__)


class WorkerState(str, Enum):
    """Worker lifecycle: running claims work, draining only finishes it."""

    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
    idle_ticks: int = 0
    store_errors: int = 0

    def add(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.completed += other.completed
        self.retried += other.retried
        self.failed += other.failed
        self.idle_ticks += other.idle_ticks
        self.store_errors += other.store_errors


class QueueWorker:
    """Claims at most one task per tick and routes the delivery outcome.

    Horizontal scaling means running more worker processes against the same
    store; the claim guarantees they never share a task.
    """

    def __init__(
        self,
        *,
        queue: TaskQueue,
        delivery: Delivery,
        worker_id: str,
        poll_interval_seconds: float = 1.0,
        stale_processing_seconds: int = 1_800,
    ) -> None:
        self.queue = queue
        self.delivery = delivery
        self.worker_id = worker_id
        self.poll_interval_seconds = poll_interval_seconds
        self.stale_processing_seconds = stale_processing_seconds
        self._state = WorkerState.RUNNING
        self._stop_event = threading.Event()
        self._stop_reason: str | None = None
        self._current_task_id: int | None = None

    @property
    def state(self) -> WorkerState:
        return self._state

    def request_stop(self, reason: str = "requested") -> None:
        """Switch to draining: finish the in-flight task, claim nothing new."""

        if self._state is not WorkerState.RUNNING:
            return
        self._state = WorkerState.DRAINING
        self._stop_reason = reason
        self._stop_event.set()
        if self._current_task_id is not None:
            logger.info(
                "Shutdown requested (%s), finishing task_id=%s before exit",
                reason,
                self._current_task_id,
            )
        else:
            logger.info("Shutdown requested (%s), no task in flight", reason)

    def run_once(self) -> WorkerRunSummary:
        """Run one tick: claim at most one task and resolve it."""

        summary = WorkerRunSummary()
        if self._state is not WorkerState.RUNNING:
            return summary

        try:
            self._recover_stale_claims()
            task = self.queue.claim_next()
        except UnknownTaskKindError as error:
            summary.processed = 1
            self._fail_unknown_kind(error=error, summary=summary)
            return summary
        except TaskStoreError:
            logger.exception("Task store error while claiming; retrying next tick")
            summary.store_errors = 1
            return summary

        if task is None:
            summary.idle_ticks = 1
            return summary

        summary.processed = 1
        self._current_task_id = task.id
        try:
            self._process(task=task, summary=summary)
        finally:
            self._current_task_id = None
        return summary

    def run_loop(self, *, max_ticks: int | None = None) -> WorkerRunSummary:
        """Tick on a fixed interval until a stop is requested or max_ticks elapse."""

        aggregate = WorkerRunSummary()
        ticks = 0
        with self._signal_handlers():
            logger.info(
                "Worker %s started (poll_interval=%ss)",
                self.worker_id,
                self.poll_interval_seconds,
            )
            while self._state is WorkerState.RUNNING:
                tick_started = time.monotonic()
                aggregate.add(self.run_once())
                ticks += 1
                if max_ticks is not None and ticks >= max_ticks:
                    break
                elapsed = time.monotonic() - tick_started
                self._sleep_with_stop(self.poll_interval_seconds - elapsed)

        self._state = WorkerState.STOPPED
        logger.info(
            "Worker %s stopped (%s): processed=%d completed=%d retried=%d failed=%d",
            self.worker_id,
            self._stop_reason or "tick limit",
            aggregate.processed,
            aggregate.completed,
            aggregate.retried,
            aggregate.failed,
        )
        return aggregate

    def _recover_stale_claims(self) -> None:
        if self.stale_processing_seconds <= 0:
            return
        self.queue.reclaim_stale(timedelta(seconds=self.stale_processing_seconds))

    def _process(self, *, task: TaskView, summary: WorkerRunSummary) -> None:
        logger.info(
            "Processing task_id=%s kind=%s recipient=%s attempt=%d/%d",
            task.id,
            task.kind.value,
            task.recipient,
            task.attempts,
            task.max_attempts,
        )
        try:
            self.delivery.deliver(task)
        except Exception as error:  # noqa: BLE001
            self._record_failure(
                task_id=task.id,
                attempts=task.attempts,
                max_attempts=task.max_attempts,
                error_message=str(error) or type(error).__name__,
                summary=summary,
            )
            return

        try:
            completed = self.queue.complete(task.id)
        except TaskStoreError:
            logger.exception("Failed to mark task_id=%s as completed", task.id)
            summary.store_errors += 1
            return
        if not completed:
            logger.warning("Task task_id=%s was no longer processing at completion", task.id)
            return
        summary.completed = 1
        logger.info("Delivered task_id=%s kind=%s", task.id, task.kind.value)

    def _record_failure(  # noqa: PLR0913
        self,
        *,
        task_id: int,
        attempts: int,
        max_attempts: int,
        error_message: str,
        summary: WorkerRunSummary,
    ) -> None:
        logger.error(
            "Delivery failed task_id=%s attempt=%d/%d: %s",
            task_id,
            attempts,
            max_attempts,
            error_message,
        )
        try:
            recorded = self.queue.fail(task_id, attempts, max_attempts, error_message)
        except TaskStoreError:
            logger.exception("Failed to mark task_id=%s as failed", task_id)
            summary.store_errors += 1
            return
        if not recorded:
            logger.warning("Task task_id=%s was no longer processing at failure", task_id)
            return
        if attempts >= max_attempts:
            summary.failed = 1
            logger.warning(
                "Task task_id=%s permanently failed after %d attempts",
                task_id,
                attempts,
            )
        else:
            summary.retried = 1
            logger.info("Task task_id=%s will be retried (next attempt %d)", task_id, attempts + 1)

    def _fail_unknown_kind(self, *, error: UnknownTaskKindError, summary: WorkerRunSummary) -> None:
        # Retrying cannot fix the kind, so the attempt counted by the claim is the last one.
        self._record_failure(
            task_id=error.task_id,
            attempts=max(error.attempts, error.max_attempts),
            max_attempts=error.max_attempts,
            error_message=str(error),
            summary=summary,
        )

    def _sleep_with_stop(self, seconds: float) -> None:
        if seconds > 0:
            self._stop_event.wait(seconds)

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(reason=name)

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
