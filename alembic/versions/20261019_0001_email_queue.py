"""Create email_queue table for durable notification tasks."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None

_ACTIVE_STATUSES_PREDICATE = "status IN ('pending', 'processing')"


def upgrade() -> None:
    op.create_table(
        "email_queue",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("recipient", sa.String(), nullable=False),
        sa.Column("owner_ref", sa.BigInteger(), nullable=True),
        sa.Column("payload", sa.LargeBinary(), nullable=False),
        sa.Column("attempts", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("max_attempts", sa.Integer(), server_default=sa.text("3"), nullable=False),
        sa.Column("status", sa.String(), server_default="pending", nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_eligible_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_email_queue_processing",
        "email_queue",
        ["status", "next_eligible_at"],
        sqlite_where=sa.text(_ACTIVE_STATUSES_PREDICATE),
        postgresql_where=sa.text(_ACTIVE_STATUSES_PREDICATE),
    )
    op.create_index(
        "idx_email_queue_owner_ref",
        "email_queue",
        ["owner_ref"],
        sqlite_where=sa.text("owner_ref IS NOT NULL"),
        postgresql_where=sa.text("owner_ref IS NOT NULL"),
    )


def downgrade() -> None:
    op.drop_index("idx_email_queue_owner_ref", table_name="email_queue")
    op.drop_index("idx_email_queue_processing", table_name="email_queue")
    op.drop_table("email_queue")
