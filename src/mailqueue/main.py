"""CLI entrypoint for mailqueue."""

import logging
import os
import sys
from collections.abc import Callable

import rich_click as click

from mailqueue import __version__
from mailqueue.controllers import (
    EnqueueCommand,
    InspectTaskCommand,
    ListTasksCommand,
    QueueCliController,
    ReclaimCommand,
    StatsCommand,
    WorkerCommand,
)
from mailqueue.queue.errors import TaskStoreError
from mailqueue.queue.models import TaskKind, TaskStatus

click.rich_click.USE_MARKDOWN = True
QUEUE_CONTROLLER = QueueCliController()

_DB_URL_HELP = "Database URL (SQLAlchemy form). Defaults to MAILQUEUE_DB_URL."


@click.group()
@click.version_option(version=__version__, prog_name="mailqueue")
@click.option(
    "--log-level",
    type=click.Choice(["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"], case_sensitive=False),
    default=lambda: os.getenv("MAILQUEUE_LOG_LEVEL", "INFO"),
    show_default="MAILQUEUE_LOG_LEVEL or INFO",
    help="Log verbosity.",
)
def mailqueue(log_level: str) -> None:
    """Durable notification queue CLI."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
        force=True,
    )


@mailqueue.command("enqueue")
@click.option("--db-url", default=None, help=_DB_URL_HELP)
@click.option(
    "--kind",
    required=True,
    type=click.Choice([kind.value for kind in TaskKind], case_sensitive=False),
    help="Notification kind; selects the message template.",
)
@click.option("--recipient", required=True, help="Destination email address.")
@click.option("--owner-ref", type=int, default=None, help="Originating user id, if any.")
@click.option(
    "--payload",
    "payload_json",
    default="{}",
    show_default=True,
    help="Template data as a JSON object.",
)
@click.option(
    "--max-attempts",
    type=click.IntRange(min=1),
    default=None,
    help="Attempts before the task fails permanently. Defaults to MAILQUEUE_MAX_ATTEMPTS.",
)
def enqueue(  # noqa: PLR0913
    db_url: str | None,
    kind: str,
    recipient: str,
    owner_ref: int | None,
    payload_json: str,
    max_attempts: int | None,
) -> None:
    """Enqueue one notification task."""

    _emit(
        lambda: QUEUE_CONTROLLER.enqueue(
            EnqueueCommand(
                db_url=db_url,
                kind=kind.lower(),
                recipient=recipient,
                owner_ref=owner_ref,
                payload_json=payload_json,
                max_attempts=max_attempts,
            ),
        ),
    )


@mailqueue.command("worker")
@click.option("--db-url", default=None, help=_DB_URL_HELP)
@click.option("--once", is_flag=True, default=False, help="Run a single tick and exit.")
@click.option(
    "--max-ticks",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many ticks (default: run until SIGINT/SIGTERM).",
)
def worker(db_url: str | None, once: bool, max_ticks: int | None) -> None:
    """Run the delivery worker; SIGINT/SIGTERM drains the in-flight task and exits."""

    _emit(
        lambda: QUEUE_CONTROLLER.run_worker(
            WorkerCommand(db_url=db_url, once=once, max_ticks=max_ticks),
        ),
    )


@mailqueue.group()
def tasks() -> None:
    """Task inspection commands."""


@tasks.command("list")
@click.option("--db-url", default=None, help=_DB_URL_HELP)
@click.option(
    "--status",
    type=click.Choice([status.value for status in TaskStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Maximum number of tasks, newest first.",
)
def tasks_list(db_url: str | None, status: str | None, limit: int) -> None:
    """List recent tasks."""

    _emit(
        lambda: QUEUE_CONTROLLER.list_tasks(
            ListTasksCommand(
                db_url=db_url,
                status=status.lower() if status else None,
                limit=limit,
            ),
        ),
    )


@tasks.command("inspect")
@click.option("--db-url", default=None, help=_DB_URL_HELP)
@click.argument("task_id", type=int)
def tasks_inspect(db_url: str | None, task_id: int) -> None:
    """Show one task."""

    _emit(
        lambda: QUEUE_CONTROLLER.inspect_task(InspectTaskCommand(db_url=db_url, task_id=task_id)),
    )


@tasks.command("reclaim")
@click.option("--db-url", default=None, help=_DB_URL_HELP)
@click.option(
    "--stale-seconds",
    type=click.IntRange(min=1),
    default=None,
    help="Claim age threshold. Defaults to MAILQUEUE_STALE_PROCESSING_SECONDS.",
)
def tasks_reclaim(db_url: str | None, stale_seconds: int | None) -> None:
    """Release tasks stuck in processing after a worker crash."""

    _emit(
        lambda: QUEUE_CONTROLLER.reclaim(
            ReclaimCommand(db_url=db_url, stale_seconds=stale_seconds),
        ),
    )


@mailqueue.command("stats")
@click.option("--db-url", default=None, help=_DB_URL_HELP)
def stats(db_url: str | None) -> None:
    """Show task counts per status."""

    _emit(lambda: QUEUE_CONTROLLER.stats(StatsCommand(db_url=db_url)))


def _emit(produce_lines: Callable[[], list[str]]) -> None:
    try:
        lines = produce_lines()
    except (ValueError, TaskStoreError) as error:
        raise click.ClickException(str(error)) from error
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    mailqueue()
