from __future__ import annotations

import os
import signal
from datetime import datetime

import allure
import pytest

from mailqueue.delivery.base import DeliveryError
from mailqueue.queue.errors import TaskStoreError
from mailqueue.queue.memory_store import InMemoryTaskStore
from mailqueue.queue.models import TaskKind, TaskStatus, TaskView
from mailqueue.queue.service import TaskQueue
from mailqueue.queue.sql_store import SqlTaskStore
from mailqueue.worker import QueueWorker, WorkerState

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Delivery Worker"),
]


class RecordingDelivery:
    """Delivery double that records tasks and fails for chosen recipients."""

    def __init__(self, failing: set[str] | None = None) -> None:
        self.delivered: list[int] = []
        self.failing = failing or set()

    def deliver(self, task: TaskView) -> None:
        if task.recipient in self.failing:
            raise DeliveryError(f"mailbox {task.recipient} unavailable")
        self.delivered.append(task.id)


class FlakyClaimStore(InMemoryTaskStore):
    """Memory store whose first claim hits a store outage."""

    def __init__(self) -> None:
        super().__init__()
        self.claim_failures = 1

    def claim_next(self, *, now: datetime) -> TaskView | None:
        if self.claim_failures:
            self.claim_failures -= 1
            raise TaskStoreError("claim", "database is locked")
        return super().claim_next(now=now)


def _worker(queue: TaskQueue, delivery, **kwargs) -> QueueWorker:
    return QueueWorker(
        queue=queue,
        delivery=delivery,
        worker_id="worker-test",
        poll_interval_seconds=0,
        **kwargs,
    )


def _memory_queue(clock, store: InMemoryTaskStore | None = None) -> TaskQueue:
    return TaskQueue(store or InMemoryTaskStore(), clock=clock)


def test_run_once_completes_delivered_task(clock) -> None:
    queue = _memory_queue(clock)
    task_id = queue.enqueue(TaskKind.NOTIFICATION, "ann@example.com", None, b"{}")
    delivery = RecordingDelivery()

    summary = _worker(queue, delivery).run_once()

    assert summary.processed == 1
    assert summary.completed == 1
    assert delivery.delivered == [task_id]
    task = queue.get_task(task_id)
    assert task is not None
    assert task.status == TaskStatus.COMPLETED


def test_run_once_on_empty_queue_is_idle_tick(clock) -> None:
    summary = _worker(_memory_queue(clock), RecordingDelivery()).run_once()

    assert summary.processed == 0
    assert summary.idle_ticks == 1


def test_delivery_failure_schedules_retry_then_fails_permanently(clock) -> None:
    queue = _memory_queue(clock)
    task_id = queue.enqueue(
        TaskKind.NOTIFICATION,
        "down@example.com",
        None,
        b"{}",
        max_attempts=2,
    )
    worker = _worker(queue, RecordingDelivery(failing={"down@example.com"}))

    first = worker.run_once()
    assert first.retried == 1
    retried = queue.get_task(task_id)
    assert retried is not None
    assert retried.status == TaskStatus.PENDING
    assert retried.last_error == "mailbox down@example.com unavailable"

    assert worker.run_once().idle_ticks == 1
    clock.advance(minutes=1)
    second = worker.run_once()
    assert second.failed == 1
    failed = queue.get_task(task_id)
    assert failed is not None
    assert failed.status == TaskStatus.FAILED
    assert failed.attempts == 2


def test_unexpected_delivery_exception_does_not_stop_loop(clock) -> None:
    class ExplodingOnce:
        def __init__(self) -> None:
            self.calls = 0

        def deliver(self, task: TaskView) -> None:
            self.calls += 1
            if self.calls == 1:
                raise KeyError("template")

    queue = _memory_queue(clock)
    broken = queue.enqueue(TaskKind.NOTIFICATION, "a@example.com", None, b"{}")
    healthy = queue.enqueue(TaskKind.NOTIFICATION, "b@example.com", None, b"{}")

    summary = _worker(queue, ExplodingOnce()).run_loop(max_ticks=3)

    assert summary.processed == 2
    assert summary.retried == 1
    assert summary.completed == 1
    assert summary.idle_ticks == 1
    broken_task = queue.get_task(broken)
    healthy_task = queue.get_task(healthy)
    assert broken_task is not None
    assert healthy_task is not None
    assert broken_task.status == TaskStatus.PENDING
    assert broken_task.last_error == "'template'"
    assert healthy_task.status == TaskStatus.COMPLETED


def test_store_error_is_counted_and_next_tick_recovers(clock) -> None:
    queue = _memory_queue(clock, FlakyClaimStore())
    task_id = queue.enqueue(TaskKind.NOTIFICATION, "ann@example.com", None, b"{}")
    delivery = RecordingDelivery()

    summary = _worker(queue, delivery).run_loop(max_ticks=2)

    assert summary.store_errors == 1
    assert summary.completed == 1
    assert delivery.delivered == [task_id]


def test_request_stop_during_delivery_drains_in_flight_task(clock) -> None:
    queue = _memory_queue(clock)
    first = queue.enqueue(TaskKind.NOTIFICATION, "a@example.com", None, b"{}")
    second = queue.enqueue(TaskKind.NOTIFICATION, "b@example.com", None, b"{}")

    class StoppingDelivery:
        def __init__(self) -> None:
            self.worker: QueueWorker | None = None
            self.states: list[WorkerState] = []

        def deliver(self, task: TaskView) -> None:
            assert self.worker is not None
            self.worker.request_stop("test")
            self.states.append(self.worker.state)

    delivery = StoppingDelivery()
    worker = _worker(queue, delivery)
    delivery.worker = worker

    summary = worker.run_loop()

    assert delivery.states == [WorkerState.DRAINING]
    assert worker.state is WorkerState.STOPPED
    assert summary.processed == 1
    assert summary.completed == 1
    first_task = queue.get_task(first)
    second_task = queue.get_task(second)
    assert first_task is not None
    assert second_task is not None
    assert first_task.status == TaskStatus.COMPLETED
    assert second_task.status == TaskStatus.PENDING


def test_run_once_claims_nothing_after_stop(clock) -> None:
    queue = _memory_queue(clock)
    task_id = queue.enqueue(TaskKind.NOTIFICATION, "a@example.com", None, b"{}")
    worker = _worker(queue, RecordingDelivery())
    worker.request_stop()

    summary = worker.run_once()

    assert summary.processed == 0
    assert worker.state is WorkerState.DRAINING
    task = queue.get_task(task_id)
    assert task is not None
    assert task.status == TaskStatus.PENDING


@pytest.mark.skipif(not hasattr(signal, "SIGTERM"), reason="requires POSIX signals")
def test_sigterm_drains_and_restores_handlers(clock) -> None:
    queue = _memory_queue(clock)
    first = queue.enqueue(TaskKind.NOTIFICATION, "a@example.com", None, b"{}")
    queue.enqueue(TaskKind.NOTIFICATION, "b@example.com", None, b"{}")
    original_handler = signal.getsignal(signal.SIGTERM)

    class SignalingDelivery:
        def deliver(self, task: TaskView) -> None:
            os.kill(os.getpid(), signal.SIGTERM)

    worker = _worker(queue, SignalingDelivery())
    summary = worker.run_loop(max_ticks=10)

    assert summary.completed == 1
    assert worker.state is WorkerState.STOPPED
    assert signal.getsignal(signal.SIGTERM) == original_handler
    first_task = queue.get_task(first)
    assert first_task is not None
    assert first_task.status == TaskStatus.COMPLETED
    assert queue.count_by_status()[TaskStatus.PENDING] == 1


def test_worker_reclaims_stale_claims_before_claiming(clock) -> None:
    queue = _memory_queue(clock)
    task_id = queue.enqueue(TaskKind.NOTIFICATION, "a@example.com", None, b"{}")
    abandoned = queue.claim_next()
    assert abandoned is not None

    clock.advance(seconds=61)
    delivery = RecordingDelivery()
    summary = _worker(queue, delivery, stale_processing_seconds=60).run_once()

    assert summary.completed == 1
    assert delivery.delivered == [task_id]
    task = queue.get_task(task_id)
    assert task is not None
    assert task.attempts == 2


def test_stale_recovery_disabled_with_zero_threshold(clock) -> None:
    queue = _memory_queue(clock)
    queue.enqueue(TaskKind.NOTIFICATION, "a@example.com", None, b"{}")
    assert queue.claim_next() is not None

    clock.advance(days=1)
    summary = _worker(queue, RecordingDelivery(), stale_processing_seconds=0).run_once()

    assert summary.idle_ticks == 1
    assert queue.count_by_status()[TaskStatus.PROCESSING] == 1


def test_unknown_kind_is_failed_permanently(sql_store: SqlTaskStore, clock) -> None:
    with sql_store.engine.begin() as connection:
        connection.exec_driver_sql(
            "INSERT INTO email_queue "
            "(kind, recipient, payload, attempts, max_attempts, status, "
            "created_at, next_eligible_at) "
            "VALUES ('fax', 'old@example.com', x'7b7d', 0, 5, 'pending', "
            "'2026-10-19 11:00:00.000000', '2026-10-19 11:00:00.000000')",
        )
    queue = TaskQueue(sql_store, clock=clock)
    delivery = RecordingDelivery()

    summary = _worker(queue, delivery).run_once()

    assert summary.processed == 1
    assert summary.failed == 1
    assert delivery.delivered == []
    with sql_store.engine.connect() as connection:
        status, attempts, last_error = connection.exec_driver_sql(
            "SELECT status, attempts, last_error FROM email_queue",
        ).one()
    assert status == "failed"
    assert attempts == 1
    assert "Unknown task kind 'fax'" in last_error
