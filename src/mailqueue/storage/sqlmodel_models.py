"""SQLModel ORM tables for the notification queue."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, Index, LargeBinary, Text, text
from sqlmodel import Field, SQLModel

_ACTIVE_STATUSES_PREDICATE = "status IN ('pending', 'processing')"


class EmailTask(SQLModel, table=True):
    __tablename__ = "email_queue"  # type: ignore[bad-override]
    __table_args__ = (
        Index(
            "idx_email_queue_processing",
            "status",
            "next_eligible_at",
            sqlite_where=text(_ACTIVE_STATUSES_PREDICATE),
            postgresql_where=text(_ACTIVE_STATUSES_PREDICATE),
        ),
        Index(
            "idx_email_queue_owner_ref",
            "owner_ref",
            sqlite_where=text("owner_ref IS NOT NULL"),
            postgresql_where=text("owner_ref IS NOT NULL"),
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    kind: str
    recipient: str
    owner_ref: int | None = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    payload: bytes = Field(sa_column=Column(LargeBinary, nullable=False))
    attempts: int = Field(default=0)
    max_attempts: int = Field(default=3)
    status: str = Field(default="pending")
    last_error: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    processed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    next_eligible_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    claimed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
