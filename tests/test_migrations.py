from pathlib import Path

import allure
from sqlalchemy import text

from mailqueue.queue.sql_store import SqlTaskStore
from mailqueue.storage.common import sqlite_url

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Schema Migrations"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    store = SqlTaskStore(sqlite_url(str(tmp_path / "migrations.db")))
    store.init_schema()

    with store.engine.connect() as connection:
        version = connection.execute(
            text("SELECT version_num FROM alembic_version LIMIT 1"),
        ).scalar_one()
        assert version == "20261019_0001"

        columns = {
            str(row[1]) for row in connection.execute(text("PRAGMA table_info(email_queue)"))
        }
        assert columns == {
            "id",
            "kind",
            "recipient",
            "owner_ref",
            "payload",
            "attempts",
            "max_attempts",
            "status",
            "last_error",
            "created_at",
            "processed_at",
            "next_eligible_at",
            "claimed_at",
        }

        indexes = connection.execute(
            text(
                """
                SELECT name
                FROM sqlite_master
                WHERE type = 'index'
                  AND tbl_name = 'email_queue'
                  AND name LIKE 'idx_%'
                ORDER BY name
                """
            ),
        ).fetchall()
        assert [str(row[0]) for row in indexes] == [
            "idx_email_queue_owner_ref",
            "idx_email_queue_processing",
        ]

        journal_mode = connection.execute(text("PRAGMA journal_mode")).scalar_one()
        assert str(journal_mode).lower() == "wal"
    store.close()


def test_migration_server_defaults_apply_to_raw_inserts(tmp_path: Path) -> None:
    store = SqlTaskStore(sqlite_url(str(tmp_path / "defaults.db")))
    store.init_schema()

    with store.engine.begin() as connection:
        connection.execute(
            text(
                "INSERT INTO email_queue (kind, recipient, payload, created_at, next_eligible_at) "
                "VALUES ('notification', 'a@example.com', x'7b7d', "
                "'2026-10-19 12:00:00', '2026-10-19 12:00:00')"
            ),
        )
        row = connection.execute(
            text("SELECT attempts, max_attempts, status FROM email_queue"),
        ).one()
    assert tuple(row) == (0, 3, "pending")
    store.close()
