"""add background_tasks table for the job queue

Revision ID: 3b1f0c9a2d47
Revises:
Create Date: 2026-10-19 09:12:31.418220

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "3b1f0c9a2d47"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "background_tasks",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("task_name", sa.Text, nullable=False, comment="Job kind name"),
        sa.Column(
            "task_hash",
            sa.Text,
            nullable=False,
            comment="Content hash of the serialized payload",
        ),
        sa.Column(
            "payload",
            sa.JSON().with_variant(postgresql.JSONB(), "postgresql"),
            nullable=False,
            comment="Serialized job arguments",
        ),
        # Policy
        sa.Column(
            "timeout_msecs",
            sa.BigInteger,
            nullable=False,
            comment="Execution timeout in milliseconds",
        ),
        sa.Column("max_retries", sa.Integer, nullable=False, comment="Retry budget"),
        sa.Column(
            "retries",
            sa.Integer,
            nullable=False,
            server_default="0",
            comment="Retries consumed",
        ),
        # Timestamps
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "scheduled_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment="Earliest time to run job",
        ),
        sa.Column(
            "running_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="When a worker claimed the job",
        ),
        sa.Column(
            "done_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="When the job reached a terminal state",
        ),
        sa.Column("error", sa.Text, nullable=True, comment="Failure detail"),
    )

    # Claim scans only ever look at unclaimed, unfinished rows
    op.create_index(
        "ix_background_tasks_pending",
        "background_tasks",
        ["scheduled_at"],
        postgresql_where=sa.text("done_at IS NULL AND running_at IS NULL"),
    )
    op.create_index(
        "ix_background_tasks_task_hash", "background_tasks", ["task_hash"]
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_background_tasks_task_hash", table_name="background_tasks")
    op.drop_index("ix_background_tasks_pending", table_name="background_tasks")
    op.drop_table("background_tasks")
