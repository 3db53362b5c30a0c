from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner
from sqlalchemy import text

from mailqueue import __version__
from mailqueue.main import mailqueue
from mailqueue.queue.sql_store import SqlTaskStore

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("CLI Ops"),
]


@pytest.fixture()
def db_url(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setenv("MAILQUEUE_DB_URL", url)
    monkeypatch.setenv("MAILQUEUE_DELIVERY_BACKEND", "log")
    monkeypatch.setenv("MAILQUEUE_POLL_INTERVAL_SECONDS", "0")
    return url


def test_version_option() -> None:
    result = CliRunner().invoke(mailqueue, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_enqueue_worker_and_inspect(db_url: str) -> None:
    runner = CliRunner()
    payload = json.dumps({"name": "Ann", "verification_url": "https://example.com/v/1"})

    enqueued = runner.invoke(
        mailqueue,
        [
            "enqueue",
            "--kind",
            "verification",
            "--recipient",
            "ann@example.com",
            "--owner-ref",
            "17",
            "--payload",
            payload,
        ],
    )
    assert enqueued.exit_code == 0, enqueued.output
    assert "Task enqueued: task_id=1 kind=verification status=pending" in enqueued.output

    listed = runner.invoke(mailqueue, ["tasks", "list", "--status", "pending"])
    assert listed.exit_code == 0, listed.output
    assert "Tasks: 1" in listed.output
    assert "kind=verification status=pending attempts=0/3" in listed.output

    worked = runner.invoke(mailqueue, ["worker", "--once"])
    assert worked.exit_code == 0, worked.output
    assert "Worker summary: processed=1 completed=1 retried=0 failed=0" in worked.output

    inspected = runner.invoke(mailqueue, ["tasks", "inspect", "1"])
    assert inspected.exit_code == 0, inspected.output
    assert "Status: completed" in inspected.output
    assert "Attempts: 1/3" in inspected.output
    assert "Owner: 17" in inspected.output

    stats = runner.invoke(mailqueue, ["stats", "--db-url", db_url])
    assert stats.exit_code == 0, stats.output
    assert "Tasks total: 1" in stats.output
    assert "completed: 1" in stats.output


def test_worker_fails_payload_missing_template_fields(db_url: str) -> None:
    runner = CliRunner()
    runner.invoke(
        mailqueue,
        [
            "enqueue",
            "--kind",
            "password_reset",
            "--recipient",
            "a@example.com",
            "--max-attempts",
            "1",
        ],
    )

    worked = runner.invoke(mailqueue, ["worker", "--max-ticks", "2"])

    assert worked.exit_code == 0, worked.output
    assert "processed=1 completed=0 retried=0 failed=1 idle_ticks=1" in worked.output
    inspected = runner.invoke(mailqueue, ["tasks", "inspect", "1"])
    assert "Status: failed" in inspected.output
    assert "Payload missing template field(s): name, reset_url" in inspected.output


def test_enqueue_rejects_non_object_payload(db_url: str) -> None:
    result = CliRunner().invoke(
        mailqueue,
        ["enqueue", "--kind", "notification", "--recipient", "a@example.com", "--payload", "[1]"],
    )

    assert result.exit_code != 0
    assert "--payload must be a JSON object." in result.output


def test_inspect_missing_task(db_url: str) -> None:
    result = CliRunner().invoke(mailqueue, ["tasks", "inspect", "404"])

    assert result.exit_code == 0
    assert "Task not found: 404" in result.output


def test_reclaim_reports_count(db_url: str) -> None:
    result = CliRunner().invoke(mailqueue, ["tasks", "reclaim", "--stale-seconds", "60"])

    assert result.exit_code == 0, result.output
    assert "Reclaimed stale tasks: 0 (claimed more than 60s ago)" in result.output


def test_list_and_inspect_show_rows_with_unknown_kind(db_url: str) -> None:
    store = SqlTaskStore(db_url)
    store.init_schema()
    with store.engine.begin() as connection:
        connection.execute(
            text(
                "INSERT INTO email_queue (kind, recipient, payload, created_at, next_eligible_at) "
                "VALUES ('fax', 'old@example.com', x'7b7d', "
                "'2026-10-19 11:00:00', '2026-10-19 11:00:00')"
            ),
        )
    store.close()
    runner = CliRunner()
    runner.invoke(
        mailqueue,
        ["enqueue", "--kind", "notification", "--recipient", "new@example.com"],
    )

    listed = runner.invoke(mailqueue, ["tasks", "list"])
    assert listed.exit_code == 0, listed.output
    assert "Tasks: 2" in listed.output
    assert "1 kind=fax (unknown kind) status=pending" in listed.output
    assert "2 kind=notification status=pending" in listed.output

    inspected = runner.invoke(mailqueue, ["tasks", "inspect", "1"])
    assert inspected.exit_code == 0, inspected.output
    assert "Kind: fax (unknown kind)" in inspected.output
