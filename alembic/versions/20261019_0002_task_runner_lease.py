"""Add runner lease columns to tasks for live-run detection."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("tasks", sa.Column("runner_id", sa.String(), nullable=True))
    op.add_column("tasks", sa.Column("heartbeat_at", sa.DateTime(timezone=True), nullable=True))
    op.execute(
        sa.text(
            """
            UPDATE tasks
            SET heartbeat_at = COALESCE(heartbeat_at, finished_at, updated_at)
            WHERE status = 'active'
            """,
        ),
    )


def downgrade() -> None:
    op.drop_column("tasks", "heartbeat_at")
    op.drop_column("tasks", "runner_id")
