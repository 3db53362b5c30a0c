"""Controllers for queue CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta

from mailqueue.config import Settings
from mailqueue.delivery import build_delivery
from mailqueue.queue.models import TaskKind, TaskStatus, TaskView, encode_payload
from mailqueue.queue.service import TaskQueue
from mailqueue.queue.sql_store import SqlTaskStore
from mailqueue.worker import QueueWorker


@dataclass(slots=True)
class EnqueueCommand:
    """CLI input for task enqueue."""

    db_url: str | None
    kind: str
    recipient: str
    owner_ref: int | None
    payload_json: str
    max_attempts: int | None


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for worker execution."""

    db_url: str | None
    once: bool
    max_ticks: int | None


@dataclass(slots=True)
class ListTasksCommand:
    """CLI input for task listing."""

    db_url: str | None
    status: str | None
    limit: int


@dataclass(slots=True)
class InspectTaskCommand:
    db_url: str | None
    task_id: int


@dataclass(slots=True)
class ReclaimCommand:
    """CLI input for manual stale-claim recovery."""

    db_url: str | None
    stale_seconds: int | None


@dataclass(slots=True)
class StatsCommand:
    db_url: str | None


class QueueCliController:
    """Coordinates enqueue, worker, and inspection CLI operations."""

    def enqueue(self, command: EnqueueCommand) -> list[str]:
        settings = _settings(command.db_url)
        try:
            data = json.loads(command.payload_json)
        except json.JSONDecodeError as error:
            raise ValueError(f"--payload is not valid JSON: {error}") from error
        if not isinstance(data, dict):
            raise ValueError("--payload must be a JSON object.")

        with _queue(settings) as queue:
            task_id = queue.enqueue(
                command.kind,
                command.recipient,
                command.owner_ref,
                encode_payload(data),
                max_attempts=command.max_attempts,
            )
        return [f"Task enqueued: task_id={task_id} kind={command.kind} status=pending"]

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = _settings(command.db_url)
        with _queue(settings) as queue:
            worker = QueueWorker(
                queue=queue,
                delivery=build_delivery(settings),
                worker_id=settings.worker.worker_id,
                poll_interval_seconds=settings.worker.poll_interval_seconds,
                stale_processing_seconds=settings.worker.stale_processing_seconds,
            )
            summary = (
                worker.run_once() if command.once else worker.run_loop(max_ticks=command.max_ticks)
            )

        return [
            "Worker summary: "
            f"processed={summary.processed} completed={summary.completed} "
            f"retried={summary.retried} failed={summary.failed} "
            f"idle_ticks={summary.idle_ticks} store_errors={summary.store_errors}",
        ]

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        settings = _settings(command.db_url)
        status_filter = _parse_status(command.status)
        with _queue(settings) as queue:
            tasks = queue.list_tasks(status=status_filter, limit=command.limit)

        lines = [f"Tasks: {len(tasks)}"]
        lines.extend(f"  {_task_line(task)}" for task in tasks)
        return lines

    def inspect_task(self, command: InspectTaskCommand) -> list[str]:
        settings = _settings(command.db_url)
        with _queue(settings) as queue:
            task = queue.get_task(command.task_id)
        if task is None:
            return [f"Task not found: {command.task_id}"]

        return [
            f"Task: {task.id}",
            f"Kind: {_kind_label(task)}",
            f"Recipient: {task.recipient}",
            f"Owner: {task.owner_ref if task.owner_ref is not None else '-'}",
            f"Status: {task.status.value}",
            f"Attempts: {task.attempts}/{task.max_attempts}",
            f"Created: {task.created_at.isoformat()}",
            f"Next eligible: {task.next_eligible_at.isoformat()}",
            f"Claimed: {task.claimed_at.isoformat() if task.claimed_at else '-'}",
            f"Processed: {task.processed_at.isoformat() if task.processed_at else '-'}",
            f"Last error: {task.last_error or '-'}",
            f"Payload bytes: {len(task.payload)}",
        ]

    def reclaim(self, command: ReclaimCommand) -> list[str]:
        settings = _settings(command.db_url)
        stale_seconds = (
            command.stale_seconds
            if command.stale_seconds is not None
            else settings.worker.stale_processing_seconds
        )
        if stale_seconds <= 0:
            raise ValueError("Stale threshold must be > 0 seconds.")
        with _queue(settings) as queue:
            reclaimed = queue.reclaim_stale(timedelta(seconds=stale_seconds))
        return [f"Reclaimed stale tasks: {reclaimed} (claimed more than {stale_seconds}s ago)"]

    def stats(self, command: StatsCommand) -> list[str]:
        settings = _settings(command.db_url)
        with _queue(settings) as queue:
            counts = queue.count_by_status()
        total = sum(counts.values())
        lines = [f"Tasks total: {total}"]
        lines.extend(f"  {status.value}: {counts[status]}" for status in TaskStatus)
        return lines


def _settings(db_url: str | None) -> Settings:
    settings = Settings.from_env(db_url=db_url)
    settings.validate()
    return settings


@contextmanager
def _queue(settings: Settings) -> Iterator[TaskQueue]:
    store = SqlTaskStore(settings.db_url, busy_timeout_ms=settings.sqlite_busy_timeout_ms)
    store.init_schema()
    try:
        yield TaskQueue(
            store,
            backoff_unit=timedelta(seconds=settings.queue.backoff_unit_seconds),
            default_max_attempts=settings.queue.max_attempts,
        )
    finally:
        store.close()


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    try:
        return TaskStatus(value)
    except ValueError as error:
        raise ValueError(f"Unsupported status filter: {value}") from error


def _task_line(task: TaskView) -> str:
    return (
        f"{task.id} kind={_kind_label(task)} status={task.status.value} "
        f"attempts={task.attempts}/{task.max_attempts} recipient={task.recipient} "
        f"next_eligible_at={task.next_eligible_at.isoformat()}"
    )


def _kind_label(task: TaskView) -> str:
    if isinstance(task.kind, TaskKind):
        return task.kind.value
    return f"{task.kind} (unknown kind)"
