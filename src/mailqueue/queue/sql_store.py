"""SQL task store backed by SQLModel (SQLite or PostgreSQL)."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from mailqueue.queue.errors import TaskStoreError, UnknownTaskKindError
from mailqueue.queue.models import TaskCreate, TaskKind, TaskStatus, TaskView
from mailqueue.storage.alembic_runner import upgrade_head
from mailqueue.storage.common import build_engine, to_db_datetime, to_utc_aware_datetime
from mailqueue.storage.sqlmodel_models import EmailTask


class SqlTaskStore:
    """Queue persistence facade over the ``email_queue`` table.

    PostgreSQL claims with ``SELECT ... FOR UPDATE SKIP LOCKED``. SQLite has no
    row locks, so the claim is a compare-and-swap: a conditional UPDATE guarded
    on ``status = 'pending'`` that moves on to the next candidate when another
    claimer won the row.
    """

    def __init__(self, db_url: str, *, busy_timeout_ms: int = 5000) -> None:
        self.db_url = db_url
        self.engine = build_engine(db_url, busy_timeout_ms=busy_timeout_ms)
        dialect = self.engine.dialect.name
        self._naive_datetimes = dialect == "sqlite"
        self._skip_locked = dialect == "postgresql"

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        with self._store_errors("init_schema"):
            upgrade_head(self.db_url)

    def session(self) -> Session:
        """Open a session on this store's engine for a caller-owned unit of work."""

        return Session(self.engine)

    def insert(self, task: TaskCreate, *, now: datetime, session: Session | None = None) -> int:
        row = EmailTask(
            kind=task.kind.value,
            recipient=task.recipient,
            owner_ref=task.owner_ref,
            payload=task.payload,
            attempts=0,
            max_attempts=task.max_attempts,
            status=TaskStatus.PENDING.value,
            created_at=self._db_datetime(now),
            next_eligible_at=self._db_datetime(now),
        )
        with self._store_errors("enqueue"):
            if session is not None:
                session.add(row)
                session.flush()
                return _require_id(row)
            with Session(self.engine) as own_session:
                own_session.add(row)
                own_session.commit()
                own_session.refresh(row)
                return _require_id(row)

    def claim_next(self, *, now: datetime) -> TaskView | None:
        with self._store_errors("claim"):
            if self._skip_locked:
                return self._claim_skip_locked(now=now)
            return self._claim_compare_and_swap(now=now)

    def _claim_skip_locked(self, *, now: datetime) -> TaskView | None:
        with Session(self.engine) as session:
            candidate = session.exec(
                self._eligible_statement(now=now).with_for_update(skip_locked=True),
            ).one_or_none()
            if candidate is None:
                session.rollback()
                return None
            candidate.status = TaskStatus.PROCESSING.value
            candidate.attempts += 1
            candidate.claimed_at = self._db_datetime(now)
            session.add(candidate)
            session.commit()
            session.refresh(candidate)
            return _to_task_view(candidate)

    def _claim_compare_and_swap(self, *, now: datetime) -> TaskView | None:
        while True:
            with Session(self.engine) as session:
                candidate = session.exec(self._eligible_statement(now=now)).one_or_none()
                if candidate is None:
                    return None

                result = session.exec(
                    sa_update(EmailTask)
                    .where(
                        col(EmailTask.id) == candidate.id,
                        col(EmailTask.status) == TaskStatus.PENDING.value,
                        col(EmailTask.next_eligible_at) <= self._db_datetime(now),
                    )
                    .values(
                        status=TaskStatus.PROCESSING.value,
                        attempts=col(EmailTask.attempts) + 1,
                        claimed_at=self._db_datetime(now),
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue
                session.commit()

                claimed = session.exec(
                    select(EmailTask).where(EmailTask.id == candidate.id),
                ).one()
                return _to_task_view(claimed)

    def _eligible_statement(self, *, now: datetime):
        return (
            select(EmailTask)
            .where(
                EmailTask.status == TaskStatus.PENDING.value,
                EmailTask.next_eligible_at <= self._db_datetime(now),
            )
            .order_by(col(EmailTask.created_at).asc(), col(EmailTask.id).asc())
            .limit(1)
        )

    def mark_completed(self, *, task_id: int, now: datetime) -> bool:
        return self._update_processing(
            "complete",
            task_id=task_id,
            values={
                "status": TaskStatus.COMPLETED.value,
                "processed_at": self._db_datetime(now),
            },
        )

    def mark_failed(self, *, task_id: int, now: datetime, error: str) -> bool:
        return self._update_processing(
            "fail",
            task_id=task_id,
            values={
                "status": TaskStatus.FAILED.value,
                "processed_at": self._db_datetime(now),
                "last_error": error,
            },
        )

    def schedule_retry(self, *, task_id: int, next_eligible_at: datetime, error: str) -> bool:
        return self._update_processing(
            "schedule_retry",
            task_id=task_id,
            values={
                "status": TaskStatus.PENDING.value,
                "next_eligible_at": self._db_datetime(next_eligible_at),
                "last_error": error,
                "claimed_at": None,
            },
        )

    def _update_processing(self, operation: str, *, task_id: int, values: dict[str, object]) -> bool:
        with self._store_errors(operation), Session(self.engine) as session:
            result = session.exec(
                sa_update(EmailTask)
                .where(
                    col(EmailTask.id) == task_id,
                    col(EmailTask.status) == TaskStatus.PROCESSING.value,
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def reclaim_stale(self, *, now: datetime, claimed_before: datetime, error: str) -> int:
        stale = (
            col(EmailTask.status) == TaskStatus.PROCESSING.value,
            col(EmailTask.claimed_at) <= self._db_datetime(claimed_before),
        )
        with self._store_errors("reclaim_stale"), Session(self.engine) as session:
            exhausted = session.exec(
                sa_update(EmailTask)
                .where(*stale, col(EmailTask.attempts) >= col(EmailTask.max_attempts))
                .values(
                    status=TaskStatus.FAILED.value,
                    processed_at=self._db_datetime(now),
                    last_error=error,
                ),
            )
            released = session.exec(
                sa_update(EmailTask)
                .where(*stale, col(EmailTask.attempts) < col(EmailTask.max_attempts))
                .values(
                    status=TaskStatus.PENDING.value,
                    next_eligible_at=self._db_datetime(now),
                    claimed_at=None,
                    last_error=error,
                ),
            )
            session.commit()
            return exhausted.rowcount + released.rowcount

    def get_task(self, task_id: int) -> TaskView | None:
        """Read one task; an out-of-set kind is returned as the raw stored string."""

        with self._store_errors("get_task"), Session(self.engine) as session:
            row = session.exec(select(EmailTask).where(EmailTask.id == task_id)).one_or_none()
            return _to_task_view(row, strict_kind=False) if row is not None else None

    def list_tasks(self, *, status: TaskStatus | None = None, limit: int = 50) -> list[TaskView]:
        """List recent tasks, optionally filtered by status."""

        with self._store_errors("list_tasks"), Session(self.engine) as session:
            statement = select(EmailTask).order_by(col(EmailTask.id).desc()).limit(limit)
            if status is not None:
                statement = statement.where(EmailTask.status == status.value)
            rows = session.exec(statement).all()
            return [_to_task_view(row, strict_kind=False) for row in rows]

    def count_by_status(self) -> dict[TaskStatus, int]:
        with self._store_errors("count_by_status"), Session(self.engine) as session:
            rows = session.exec(
                select(EmailTask.status, func.count()).group_by(EmailTask.status),
            ).all()
        counts = dict.fromkeys(TaskStatus, 0)
        for status, count in rows:
            counts[TaskStatus(status)] = int(count)
        return counts

    def _db_datetime(self, value: datetime) -> datetime:
        if self._naive_datetimes:
            return to_db_datetime(value)
        return to_utc_aware_datetime(value)

    @contextmanager
    def _store_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as error:
            raise TaskStoreError(operation, str(error)) from error


def _require_id(row: EmailTask) -> int:
    if row.id is None:
        raise TaskStoreError("enqueue", "store did not assign a task id")
    return row.id


def _to_task_view(row: EmailTask, *, strict_kind: bool = True) -> TaskView:
    if row.id is None:
        raise TaskStoreError("read", "task row without id")
    kind: TaskKind | str
    try:
        kind = TaskKind(row.kind)
    except ValueError as error:
        if strict_kind:
            raise UnknownTaskKindError(
                task_id=row.id,
                kind=row.kind,
                attempts=row.attempts,
                max_attempts=row.max_attempts,
            ) from error
        kind = row.kind
    return TaskView(
        id=row.id,
        kind=kind,
        recipient=row.recipient,
        owner_ref=row.owner_ref,
        payload=bytes(row.payload),
        attempts=row.attempts,
        max_attempts=row.max_attempts,
        status=TaskStatus(row.status),
        last_error=row.last_error,
        created_at=to_utc_aware_datetime(row.created_at),
        processed_at=(
            to_utc_aware_datetime(row.processed_at) if row.processed_at is not None else None
        ),
        next_eligible_at=to_utc_aware_datetime(row.next_eligible_at),
        claimed_at=to_utc_aware_datetime(row.claimed_at) if row.claimed_at is not None else None,
    )
