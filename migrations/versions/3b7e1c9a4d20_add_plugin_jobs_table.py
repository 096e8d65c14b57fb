"""add plugin_jobs table for plugin background jobs

Revision ID: 3b7e1c9a4d20
Revises:
Create Date: 2026-01-20 08:27:56.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b7e1c9a4d20"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "plugin_jobs",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("plugin_id", sa.Text, nullable=False, comment="Owning plugin"),
        sa.Column(
            "type", sa.Text, nullable=False, comment="Handler key within the plugin"
        ),
        sa.Column("payload", sa.JSON, nullable=False, comment="Handler input"),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="pending",
            comment="Job status: pending|running|completed|failed",
        ),
        sa.Column("result", sa.JSON, nullable=True, comment="Last outcome payload"),
        sa.Column(
            "priority",
            sa.Integer,
            nullable=False,
            server_default="100",
            comment="Lower value is serviced first",
        ),
        sa.Column(
            "run_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment="Earliest time the job may be acquired",
        ),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        # Lease fields
        sa.Column(
            "lock_timeout",
            sa.Integer,
            nullable=False,
            server_default="300",
            comment="Lease duration in seconds",
        ),
        sa.Column(
            "locked_by", sa.Text, nullable=True, comment="Worker id holding the lease"
        ),
        sa.Column(
            "locked_at", sa.TIMESTAMP(timezone=True), nullable=True, comment="Lease start"
        ),
        # Timestamps
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed')",
            name="plugin_jobs_status_check",
        ),
        sa.CheckConstraint(
            "attempts <= max_attempts", name="plugin_jobs_attempts_check"
        ),
    )

    # Acquisition scans pending, due, unlocked rows
    op.create_index(
        "ix_plugin_jobs_status_run_at_locked_at",
        "plugin_jobs",
        ["status", "run_at", "locked_at"],
    )
    op.create_index("ix_plugin_jobs_plugin_id", "plugin_jobs", ["plugin_id"])
    op.create_index(
        "ix_plugin_jobs_priority_created_at", "plugin_jobs", ["priority", "created_at"]
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_plugin_jobs_priority_created_at", table_name="plugin_jobs")
    op.drop_index("ix_plugin_jobs_plugin_id", table_name="plugin_jobs")
    op.drop_index("ix_plugin_jobs_status_run_at_locked_at", table_name="plugin_jobs")
    op.drop_table("plugin_jobs")
